"""
异步事件总线模块 - 会话状态通知的发布/订阅中枢。

核心组件（状态机、重连流程、销毁流程）只调用 publish(session_id, event, payload)，
不关心事件如何送达；外部层（如 Socket 推送）通过 subscribe() 按会话 ID 注册回调。

事件流向：
  EventRelay / SessionManager → publish() → 事件队列 → dispatch() → 订阅者回调

【设计要点】
- 单一队列 + 单一分发任务：同一会话的事件按发布顺序送达
- 单个回调的异常只记录日志，不影响其他订阅者和后续事件
- 通配订阅（subscribe_all）用于需要观察所有会话的组件（如日志、监控）
"""

import asyncio
from typing import Awaitable, Callable

from loguru import logger

from sessionhub.bus.events import SESSION_DESTROYED, SessionEvent

EventCallback = Callable[[SessionEvent], Awaitable[None]]


class EventBus:
    """
    会话事件总线。

    属性:
        queue: 待分发的事件队列
        _subscribers: 按会话 ID 分组的回调 {session_id: [callback, ...]}
        _wildcard: 订阅所有会话的回调列表
        _running: 分发器运行状态标志
    """

    def __init__(self):
        self.queue: asyncio.Queue[SessionEvent] = asyncio.Queue()
        self._subscribers: dict[str, list[EventCallback]] = {}
        self._wildcard: list[EventCallback] = []
        self._running = False
        self._task: asyncio.Task | None = None

    async def publish(self, session_id: str, event: str, payload: dict | None = None) -> None:
        """
        发布一条会话事件（非阻塞，只入队）。

        参数:
            session_id: 事件所属会话
            event: 事件名称
            payload: 事件数据
        """
        await self.queue.put(SessionEvent(session_id=session_id, event=event, payload=payload or {}))

    def subscribe(self, session_id: str, callback: EventCallback) -> Callable[[], None]:
        """
        订阅指定会话的事件。

        返回:
            取消订阅函数，调用后该回调不再收到事件
        """
        self._subscribers.setdefault(session_id, []).append(callback)

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(session_id)
            if callbacks and callback in callbacks:
                callbacks.remove(callback)
                if not callbacks:
                    del self._subscribers[session_id]

        return unsubscribe

    def subscribe_all(self, callback: EventCallback) -> None:
        """订阅所有会话的事件。"""
        self._wildcard.append(callback)

    def subscriber_count(self, session_id: str) -> int:
        return len(self._subscribers.get(session_id, []))

    async def deliver(self, event: SessionEvent) -> None:
        """把一条事件送达所有相关订阅者。"""
        callbacks = list(self._subscribers.get(event.session_id, [])) + list(self._wildcard)
        for callback in callbacks:
            try:
                await callback(event)
            except Exception as e:
                logger.error(f"Error delivering {event.event} for session {event.session_id}: {e}")
        # 终态通知送达后，该会话的订阅者不再有意义
        if event.event == SESSION_DESTROYED:
            self._subscribers.pop(event.session_id, None)

    async def dispatch(self) -> None:
        """
        事件分发器（后台常驻任务）。

        使用 1 秒超时轮询队列，确保 stop() 之后能及时退出。
        每处理完一条事件调用 task_done()，因此 join() 可以等待队列清空。
        """
        self._running = True
        while self._running:
            try:
                event = await asyncio.wait_for(self.queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            try:
                await self.deliver(event)
            finally:
                self.queue.task_done()

    def start(self) -> None:
        """在后台启动分发器任务。"""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.dispatch())

    async def stop(self) -> None:
        """停止分发器并等待其退出。"""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def join(self) -> None:
        """等待当前队列中的所有事件分发完毕。"""
        await self.queue.join()

    @property
    def pending(self) -> int:
        """待分发的事件数量。"""
        return self.queue.qsize()
