"""
ffmpeg 转码引擎 - 发现 ffmpeg 可执行文件，并把任意音频转为 MP3。

【发现顺序】（启动时执行一次，结果缓存）
1. 配置中指定的随包分发路径（transcode.ffmpeg_path）
2. PATH 查找（shutil.which）
3. 常见安装路径
每个候选都要在 5 秒内成功执行 `ffmpeg -version` 才会被采用。

【转码】
ffmpeg -y -i <输入> -vn -acodec libmp3lame -b:a 128k -ar 44100 -ac 2 -f mp3
       -progress pipe:1 -nostats <输出>

进度信息从 stdout 逐行读取；整个过程受硬超时保护，超时强制 kill 进程。
失败时删除不完整的输出文件。
"""

import asyncio
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from loguru import logger

from sessionhub.errors import TranscodeError, TranscodeTimeoutError, TranscoderUnavailableError

VERIFY_TIMEOUT_S = 5.0

# 常见安装路径（PATH 中找不到时逐个尝试）
COMMON_FFMPEG_PATHS = [
    "/usr/bin/ffmpeg",
    "/usr/local/bin/ffmpeg",
    "/opt/homebrew/bin/ffmpeg",
    "/opt/local/bin/ffmpeg",
    "/snap/bin/ffmpeg",
    "C:\\ffmpeg\\bin\\ffmpeg.exe",
]

ProgressCallback = Callable[[float], None]


@dataclass(frozen=True)
class AudioParams:
    """MP3 输出参数。"""
    bitrate_kbps: int = 128
    sample_rate: int = 44100
    channels: int = 2


class FFmpegTranscoder:
    """
    ffmpeg 子进程封装。

    属性:
        configured_path: 配置中指定的 ffmpeg 路径（可为空）
        timeout_s: 单次转码硬超时
        params: MP3 输出参数
        _path: 发现的 ffmpeg 路径（None 表示不可用）
        _detected: 是否已执行过发现
    """

    def __init__(self, ffmpeg_path: str = "", timeout_s: float = 60.0, params: AudioParams | None = None):
        self.configured_path = ffmpeg_path
        self.timeout_s = timeout_s
        self.params = params or AudioParams()
        self._path: str | None = None
        self._detected = False

    @property
    def available(self) -> bool:
        return self._path is not None

    @property
    def path(self) -> str | None:
        return self._path

    def candidates(self) -> list[str]:
        """按优先级列出候选路径（去重）。"""
        found: list[str] = []
        for candidate in (self.configured_path, shutil.which("ffmpeg"), *COMMON_FFMPEG_PATHS):
            if candidate and candidate not in found:
                found.append(candidate)
        return found

    async def detect(self) -> str | None:
        """
        发现可用的 ffmpeg。只在第一次调用时真正执行，之后返回缓存结果。

        返回:
            ffmpeg 路径；未找到时返回 None（转码功能禁用）
        """
        if self._detected:
            return self._path
        for candidate in self.candidates():
            if await self._verify(candidate):
                self._path = candidate
                break
        self._detected = True

        if self._path:
            logger.info(f"ffmpeg found at {self._path}")
        else:
            logger.warning("ffmpeg not found, audio conversion disabled")
        return self._path

    async def _verify(self, candidate: str) -> bool:
        """执行 `<candidate> -version`，限时内退出码为 0 才算可用。"""
        try:
            process = await asyncio.create_subprocess_exec(
                candidate,
                "-version",
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError:
            return False
        try:
            await asyncio.wait_for(process.wait(), timeout=VERIFY_TIMEOUT_S)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.debug(f"ffmpeg candidate {candidate} timed out")
            return False
        return process.returncode == 0

    def build_command(self, input_path: Path, output_path: Path) -> list[str]:
        return [
            self._path or "ffmpeg",
            "-y",
            "-i", str(input_path),
            "-vn",
            "-acodec", "libmp3lame",
            "-b:a", f"{self.params.bitrate_kbps}k",
            "-ar", str(self.params.sample_rate),
            "-ac", str(self.params.channels),
            "-f", "mp3",
            "-progress", "pipe:1",
            "-nostats",
            str(output_path),
        ]

    async def convert(
        self,
        input_path: Path,
        output_path: Path,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        """
        把 input_path 转为 MP3 写入 output_path。

        参数:
            input_path: 输入文件
            output_path: 输出文件（失败时会被删除）
            on_progress: 进度回调，参数为已处理的音频秒数

        异常:
            TranscoderUnavailableError: ffmpeg 不可用
            TranscodeTimeoutError: 超时（进程已被 kill）
            TranscodeError: ffmpeg 无法启动、非零退出或无输出
        """
        if not self.available:
            raise TranscoderUnavailableError("ffmpeg is not available")

        try:
            process = await asyncio.create_subprocess_exec(
                *self.build_command(input_path, output_path),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.error(f"Could not launch ffmpeg at {self._path}: {e}")
            raise TranscodeError(f"Could not launch ffmpeg: {e}") from e

        try:
            stderr = await asyncio.wait_for(self._communicate(process, on_progress), timeout=self.timeout_s)
        except asyncio.TimeoutError:
            self._kill(process)
            await process.wait()
            output_path.unlink(missing_ok=True)
            raise TranscodeTimeoutError(f"ffmpeg timed out after {self.timeout_s}s")
        except asyncio.CancelledError:
            self._kill(process)
            await asyncio.shield(process.wait())
            output_path.unlink(missing_ok=True)
            raise

        if process.returncode != 0:
            output_path.unlink(missing_ok=True)
            tail = stderr.decode("utf-8", errors="replace").strip()[-500:]
            raise TranscodeError(f"ffmpeg exited with code {process.returncode}: {tail}")
        if not output_path.exists() or output_path.stat().st_size == 0:
            output_path.unlink(missing_ok=True)
            raise TranscodeError("ffmpeg produced no output")

    async def _communicate(
        self, process: asyncio.subprocess.Process, on_progress: ProgressCallback | None
    ) -> bytes:
        """并行读取 stdout 进度和 stderr，等待进程退出，返回 stderr 内容。"""

        async def read_progress() -> None:
            async for raw in process.stdout:
                key, _, value = raw.decode("utf-8", errors="replace").strip().partition("=")
                if key == "out_time_ms" and on_progress and value.isdigit():
                    # ffmpeg 的 out_time_ms 实际单位是微秒
                    on_progress(int(value) / 1_000_000)

        _, stderr = await asyncio.gather(read_progress(), process.stderr.read())
        await process.wait()
        return stderr

    @staticmethod
    def _kill(process: asyncio.subprocess.Process) -> None:
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
