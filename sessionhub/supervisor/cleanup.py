"""
清理服务 - 三个独立节奏的周期任务。

- 无活动会话清理：每 session_cleanup_interval_s 执行一次
- 未完成会话清理：每 unfinished_cleanup_interval_s 执行一次
- 转码缓存清理：每 audio_cleanup_interval_s 执行一次
"""

from loguru import logger

from sessionhub.config.schema import SupervisorConfig
from sessionhub.session.manager import SessionManager
from sessionhub.supervisor.periodic import PeriodicService
from sessionhub.transcode.cache import TranscodeCache


class CleanupService:
    """组合三个周期任务，统一启动和停止。"""

    def __init__(
        self,
        manager: SessionManager,
        cache: TranscodeCache | None = None,
        config: SupervisorConfig | None = None,
    ):
        config = config or SupervisorConfig()
        self.manager = manager
        self.cache = cache
        self.services = [
            PeriodicService(
                "Inactive session cleanup",
                config.session_cleanup_interval_s,
                manager.cleanup_inactive_sessions,
            ),
            PeriodicService(
                "Unfinished session cleanup",
                config.unfinished_cleanup_interval_s,
                manager.cleanup_unfinished_sessions,
            ),
        ]
        if cache is not None:
            self.services.append(
                PeriodicService("Transcode cache cleanup", config.audio_cleanup_interval_s, cache.sweep)
            )

    async def start(self) -> None:
        for service in self.services:
            await service.start()

    def stop(self) -> None:
        for service in self.services:
            service.stop()
        logger.info("Cleanup services stopped")

    async def run_once(self) -> dict[str, int]:
        """立即执行一轮全部清理，返回各项清理数量。"""
        result = {
            "inactive": await self.manager.cleanup_inactive_sessions(),
            "unfinished": await self.manager.cleanup_unfinished_sessions(),
        }
        if self.cache is not None:
            result["audio"] = await self.cache.sweep()
        return result
