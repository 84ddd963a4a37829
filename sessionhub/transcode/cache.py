"""
转码缓存 - 按内容 ID 缓存 ffmpeg 转码结果，带 TTL 过期和并发去重。

【流程】convert(buffer, mime_type, key)
1. 媒体类型不需要转换 → 原样返回（不调用 ffmpeg）
2. ffmpeg 不可用 → TranscoderUnavailableError
3. 缓存命中且未过期 → 直接读盘返回（不调用 ffmpeg）
4. 同一 key 已有转码在进行 → 等待那一次的结果
5. 否则：写入输入文件 → ffmpeg 转码 → 记录缓存条目 → 删除输入文件

【过期】
条目超过 TTL 后不再被返回（即使文件还在）；文件由 sweep() 定期物理删除。
条目只在转码完全成功后才可见。
"""

import asyncio
import hashlib
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from loguru import logger

from sessionhub.config.schema import Config
from sessionhub.errors import TranscodeError, TranscoderUnavailableError, UnsupportedFormatError
from sessionhub.transcode.ffmpeg import AudioParams, FFmpegTranscoder
from sessionhub.utils.helpers import ensure_dir, safe_filename

ORIGINAL_FORMAT = "original"
MP3_FORMAT = "mp3"
MP3_MIME = "audio/mpeg"

# 需要转成 MP3 才能被普遍播放的音频类型
CONVERTIBLE_MIME_TYPES = frozenset({
    "audio/ogg",
    "audio/opus",
    "audio/webm",
    "audio/aac",
    "audio/m4a",
    "audio/wav",
    "audio/flac",
})

# 媒体类型 → 输入文件扩展名（ffmpeg 依赖扩展名辅助判断容器格式）
MIME_EXTENSIONS = {
    "audio/ogg": "ogg",
    "audio/opus": "opus",
    "audio/webm": "webm",
    "audio/aac": "aac",
    "audio/m4a": "m4a",
    "audio/mp4": "m4a",
    "audio/x-m4a": "m4a",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/flac": "flac",
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
}


def normalize_mime(mime_type: str | None) -> str:
    """去掉参数部分并转小写，如 'audio/ogg; codecs=opus' → 'audio/ogg'。"""
    if not mime_type:
        return ""
    return mime_type.split(";", 1)[0].strip().lower()


def needs_conversion(mime_type: str | None) -> bool:
    return normalize_mime(mime_type) in CONVERTIBLE_MIME_TYPES


def mime_extension(mime_type: str | None) -> str:
    """媒体类型对应的文件扩展名；未知类型取子类型，仍无法确定时为 bin。"""
    mime = normalize_mime(mime_type)
    if mime in MIME_EXTENSIONS:
        return MIME_EXTENSIONS[mime]
    subtype = mime.partition("/")[2]
    return safe_filename(subtype) if subtype else "bin"


@dataclass
class CacheEntry:
    """
    缓存条目。

    属性:
        path: 转码产物文件（归缓存所有）
        created_at: 创建时间（Unix 秒）
        original_size: 原始字节数
        converted_size: 转码后字节数
    """

    path: Path
    created_at: float
    original_size: int
    converted_size: int

    def is_expired(self, ttl_s: float, now: float | None = None) -> bool:
        return (now if now is not None else time.time()) - self.created_at > ttl_s


@dataclass
class MediaArtifact:
    """
    convert() 的返回值。

    属性:
        data: 媒体内容
        mime_type: 媒体类型（转码后为 audio/mpeg）
        converted: 是否经过转码
        from_cache: 是否来自缓存（或并发去重共享的结果）
        path: 缓存文件路径（原样返回时为 None）
    """

    data: bytes
    mime_type: str
    converted: bool = False
    from_cache: bool = False
    path: Path | None = None


class TranscodeCache:
    """
    转码缓存。

    参数:
        transcoder: ffmpeg 转码器（需先 detect()）
        cache_dir: 缓存目录
        ttl_s: 条目有效期
    """

    def __init__(self, transcoder: FFmpegTranscoder, cache_dir: Path, ttl_s: float = 2 * 60 * 60):
        self.transcoder = transcoder
        self.cache_dir = cache_dir
        self.ttl_s = ttl_s
        self._entries: dict[str, CacheEntry] = {}
        self._inflight: dict[str, asyncio.Future] = {}

    @classmethod
    def from_config(cls, config: Config) -> "TranscodeCache":
        tc = config.transcode
        transcoder = FFmpegTranscoder(
            ffmpeg_path=tc.ffmpeg_path,
            timeout_s=tc.timeout_s,
            params=AudioParams(bitrate_kbps=tc.bitrate_kbps, sample_rate=tc.sample_rate, channels=tc.channels),
        )
        return cls(transcoder, config.audio_cache_path, ttl_s=tc.ttl_s)

    @property
    def available(self) -> bool:
        return self.transcoder.available

    # ------------------------------------------------------------------
    # 格式协商
    # ------------------------------------------------------------------

    def supported_formats(self, mime_type: str | None) -> set[str]:
        """该媒体类型可请求的输出格式：总有 original，音频在 ffmpeg 可用时加 mp3。"""
        formats = {ORIGINAL_FORMAT}
        if normalize_mime(mime_type).startswith("audio/") and self.available:
            formats.add(MP3_FORMAT)
        return formats

    def is_valid_format(self, fmt: str, mime_type: str | None) -> bool:
        return fmt.lower() in self.supported_formats(mime_type)

    # ------------------------------------------------------------------
    # 转码
    # ------------------------------------------------------------------

    async def convert(self, buffer: bytes, mime_type: str, key: str) -> MediaArtifact:
        """
        按需转码：只有 CONVERTIBLE_MIME_TYPES 中的类型会被转成 MP3。

        参数:
            buffer: 原始媒体内容
            mime_type: 原始媒体类型
            key: 内容 ID（缓存键）

        异常:
            TranscoderUnavailableError: 需要转码但 ffmpeg 不可用
            TranscodeError / TranscodeTimeoutError: 转码失败
        """
        if not needs_conversion(mime_type):
            return MediaArtifact(data=buffer, mime_type=mime_type)
        return await self._convert_cached(buffer, mime_type, key)

    async def convert_for_format(self, buffer: bytes, mime_type: str, key: str, fmt: str | None) -> MediaArtifact:
        """
        按调用方请求的输出格式返回媒体。

        异常:
            TranscoderUnavailableError: 请求 mp3 但 ffmpeg 不可用
            UnsupportedFormatError: 该媒体类型不支持请求的格式
        """
        fmt = (fmt or ORIGINAL_FORMAT).lower()
        if fmt == ORIGINAL_FORMAT:
            return MediaArtifact(data=buffer, mime_type=mime_type)

        supported = self.supported_formats(mime_type)
        if fmt not in supported:
            if fmt == MP3_FORMAT and normalize_mime(mime_type).startswith("audio/"):
                raise TranscoderUnavailableError("ffmpeg is not available")
            raise UnsupportedFormatError(fmt, mime_type, supported)

        if MIME_EXTENSIONS.get(normalize_mime(mime_type)) == MP3_FORMAT:
            return MediaArtifact(data=buffer, mime_type=MP3_MIME)
        return await self._convert_cached(buffer, mime_type, key)

    def get(self, key: str) -> CacheEntry | None:
        """未过期的缓存条目；过期或不存在返回 None。"""
        entry = self._entries.get(key)
        if entry is None or entry.is_expired(self.ttl_s):
            return None
        return entry

    async def _convert_cached(self, buffer: bytes, mime_type: str, key: str) -> MediaArtifact:
        if not self.available:
            raise TranscoderUnavailableError("ffmpeg is not available")

        entry = self.get(key)
        if entry is not None:
            data = await self._read(key, entry)
            if data is not None:
                logger.debug(f"Transcode cache hit: {key}")
                return MediaArtifact(data=data, mime_type=MP3_MIME, converted=True, from_cache=True, path=entry.path)

        inflight = self._inflight.get(key)
        if inflight is not None:
            logger.debug(f"Joining in-flight conversion: {key}")
            entry = await asyncio.shield(inflight)
            data = await asyncio.to_thread(entry.path.read_bytes)
            return MediaArtifact(data=data, mime_type=MP3_MIME, converted=True, from_cache=True, path=entry.path)

        future = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            entry = await self._transcode(buffer, mime_type, key)
            future.set_result(entry)
        except BaseException as e:
            error = e if isinstance(e, Exception) else TranscodeError("Conversion cancelled")
            future.set_exception(error)
            future.exception()  # 没有等待者时避免 "exception was never retrieved"
            raise
        finally:
            self._inflight.pop(key, None)

        data = await asyncio.to_thread(entry.path.read_bytes)
        return MediaArtifact(data=data, mime_type=MP3_MIME, converted=True, path=entry.path)

    async def _read(self, cache_key: str, entry: CacheEntry) -> bytes | None:
        try:
            return await asyncio.to_thread(entry.path.read_bytes)
        except OSError as e:
            logger.warning(f"Cached file for {cache_key} unreadable, converting again: {e}")
            self._entries.pop(cache_key, None)
            return None

    def artifact_stem(self, cache_key: str) -> str:
        """缓存文件名：内容 ID 的摘要，不同 ID 不会落到同一个文件。"""
        return hashlib.sha256(cache_key.encode("utf-8")).hexdigest()

    async def _transcode(self, buffer: bytes, mime_type: str, cache_key: str) -> CacheEntry:
        stem = self.artifact_stem(cache_key)
        input_path = self.cache_dir / f"{stem}.input.{mime_extension(mime_type)}"
        output_path = self.cache_dir / f"{stem}.mp3"

        started = time.monotonic()
        try:
            ensure_dir(self.cache_dir)
            await asyncio.to_thread(input_path.write_bytes, buffer)
        except OSError as e:
            logger.error(f"Could not write conversion input for {cache_key}: {e}")
            raise TranscodeError(f"Could not write conversion input: {e}") from e

        try:
            await self.transcoder.convert(input_path, output_path)
            converted_size = output_path.stat().st_size
        except OSError as e:
            logger.error(f"Conversion failed for {cache_key} ({mime_type}): {e}")
            raise TranscodeError(f"Conversion output unavailable: {e}") from e
        except TranscodeError as e:
            logger.error(f"Conversion failed for {cache_key} ({mime_type}): {e}")
            raise
        finally:
            input_path.unlink(missing_ok=True)

        entry = CacheEntry(
            path=output_path,
            created_at=time.time(),
            original_size=len(buffer),
            converted_size=converted_size,
        )
        self._entries[cache_key] = entry
        logger.info(
            f"Converted {cache_key} ({mime_type}, {entry.original_size} → {entry.converted_size} bytes)"
            f" in {time.monotonic() - started:.2f}s"
        )
        return entry

    # ------------------------------------------------------------------
    # 清理与统计
    # ------------------------------------------------------------------

    async def sweep(self) -> int:
        """删除过期条目及其文件。文件删除失败只记录日志，条目照样移除。返回清理数量。"""
        now = time.time()
        expired = [
            key for key, entry in self._entries.items()
            if entry.is_expired(self.ttl_s, now) and key not in self._inflight
        ]
        for key in expired:
            entry = self._entries.pop(key)
            try:
                await asyncio.to_thread(entry.path.unlink, missing_ok=True)
            except OSError as e:
                logger.warning(f"Could not delete cached file {entry.path}: {e}")
        if expired:
            logger.info(f"Transcode cache sweep removed {len(expired)} entries")
        return len(expired)

    def stats(self) -> dict[str, Any]:
        original = sum(e.original_size for e in self._entries.values())
        converted = sum(e.converted_size for e in self._entries.values())
        return {
            "entries": len(self._entries),
            "inflight": len(self._inflight),
            "total_original_bytes": original,
            "total_converted_bytes": converted,
            "compression_ratio": round(converted / original, 3) if original else 0.0,
            "ttl_s": self.ttl_s,
            "available": self.available,
        }

    def entries(self) -> list[dict[str, Any]]:
        """逐条列出缓存条目（包括已过期但尚未清理的）。"""
        now = time.time()
        return [
            {
                "key": key,
                "path": str(entry.path),
                "age_s": round(now - entry.created_at, 1),
                "original_size": entry.original_size,
                "converted_size": entry.converted_size,
                "expired": entry.is_expired(self.ttl_s, now),
            }
            for key, entry in self._entries.items()
        ]
