"""音频转码模块：ffmpeg 发现与调用、转码结果缓存。"""

from sessionhub.transcode.cache import (
    CacheEntry,
    MediaArtifact,
    TranscodeCache,
    mime_extension,
    needs_conversion,
)
from sessionhub.transcode.ffmpeg import AudioParams, FFmpegTranscoder

__all__ = [
    "CacheEntry",
    "MediaArtifact",
    "TranscodeCache",
    "mime_extension",
    "needs_conversion",
    "AudioParams",
    "FFmpegTranscoder",
]
