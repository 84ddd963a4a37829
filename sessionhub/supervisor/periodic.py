"""
周期任务基类 - 按固定间隔重复执行一个异步动作。

工作方式：先等待一个间隔，再执行一次 _tick()，循环往复。
单次执行的异常只记录日志，不会终止循环。
健康巡检和各类清理任务都建立在它之上。
"""

import asyncio
from typing import Any, Callable, Coroutine

from loguru import logger


class PeriodicService:
    """
    周期任务。

    参数:
        name: 任务名称（用于日志）
        interval_s: 执行间隔秒数
        action: 每次执行的异步回调；子类也可以直接覆盖 _tick()
        enabled: 是否启用
    """

    def __init__(
        self,
        name: str,
        interval_s: float,
        action: Callable[[], Coroutine[Any, Any, Any]] | None = None,
        enabled: bool = True,
    ):
        self.name = name
        self.interval_s = interval_s
        self.action = action
        self.enabled = enabled
        self._running = False
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """启动周期循环。enabled=False 时直接返回。"""
        if not self.enabled:
            logger.info(f"{self.name} disabled")
            return
        if self._task is not None:
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"{self.name} started (every {self.interval_s}s)")

    def stop(self) -> None:
        """停止周期循环并取消任务。"""
        self._running = False
        if self._task:
            self._task.cancel()
            self._task = None

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.interval_s)
                if self._running:
                    await self._tick()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"{self.name} error: {e}")

    async def _tick(self) -> Any:
        if self.action:
            return await self.action()
        return None

    async def trigger_now(self) -> Any:
        """立即执行一次（不影响周期节奏），主要用于调试和测试。"""
        return await self._tick()
