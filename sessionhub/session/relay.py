"""
事件中继 - 引擎事件到会话状态转换的唯一翻译者。

每个挂载的引擎对应一个中继任务，该任务是引擎事件队列的唯一消费者，
因此同一会话的事件严格按引擎发出的顺序应用到状态机。

事件流向：
  引擎.events → EventRelay._consume() → apply() → SessionRecord 状态变化
                                               → EventBus.publish()

【过期引擎】
会话重连或销毁后，旧引擎可能还有残留事件。中继在每条事件前检查
record.engine is engine，不一致说明引擎已被卸下，中继直接退出。
"""

import asyncio

from loguru import logger

from sessionhub.bus import events as ev
from sessionhub.bus.queue import EventBus
from sessionhub.engine.base import (
    ENGINE_AUTH_FAILURE,
    ENGINE_AUTHENTICATED,
    ENGINE_DISCONNECTED,
    ENGINE_ERROR,
    ENGINE_LOADING_PROGRESS,
    ENGINE_QR,
    ENGINE_READY,
    LOGOUT_REASON,
    BaseEngine,
    EngineEvent,
    teardown_engine,
)
from sessionhub.session.models import LifecycleState, SessionRecord
from sessionhub.utils.helpers import monotonic_s

# 原样转发的消息级事件（只刷新活动时间，不影响状态机）
PASSTHROUGH_EVENTS = frozenset({
    ev.MESSAGE,
    ev.MESSAGE_ACK,
    ev.MESSAGE_REVOKE,
    ev.MESSAGE_REACTION,
})


class EventRelay:
    """
    引擎事件中继。

    属性:
        bus: 状态通知发布目标
        anti_automation_window_ms: READY 之后多久内的 LOGOUT 视为疑似风控
        _tasks: 运行中的中继任务
    """

    def __init__(self, bus: EventBus, anti_automation_window_ms: int = 120_000):
        self.bus = bus
        self.anti_automation_window_ms = anti_automation_window_ms
        self._tasks: set[asyncio.Task] = set()

    def watch(self, record: SessionRecord, engine: BaseEngine) -> asyncio.Task:
        """为新挂载的引擎启动中继任务。"""
        task = asyncio.create_task(self._consume(record, engine))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _consume(self, record: SessionRecord, engine: BaseEngine) -> None:
        while True:
            event = await engine.events.get()
            if event is None:
                break
            if record.engine is not engine:
                logger.debug(f"[{record.session_id}] Dropping {event.name} from detached engine")
                break
            try:
                await self.apply(record, engine, event)
            except Exception as e:
                logger.error(f"[{record.session_id}] Failed to apply engine event {event.name}: {e}")

    async def apply(self, record: SessionRecord, engine: BaseEngine, event: EngineEvent) -> None:
        """
        把一条引擎事件应用到会话记录上，并发布对应的状态通知。

        参数:
            record: 目标会话
            engine: 产生事件的引擎（与 record.engine 不一致时丢弃）
            event: 引擎事件
        """
        if record.engine is not engine:
            logger.debug(f"[{record.session_id}] Ignoring {event.name} from stale engine")
            return

        sid = record.session_id
        payload = event.payload
        name = event.name

        if name == ENGINE_QR:
            record.qr_payload = payload.get("qr")
            record.touch()
            await self.bus.publish(sid, ev.QR, {"qr": record.qr_payload})

        elif name == ENGINE_AUTHENTICATED:
            if record.is_authenticated and record.state in (LifecycleState.AUTHENTICATED, LifecycleState.READY):
                logger.debug(f"[{sid}] Duplicate authenticated event ignored")
                return
            record.is_authenticated = True
            if record.state != LifecycleState.READY:
                record.state = LifecycleState.AUTHENTICATED
            record.touch()
            logger.info(f"[{sid}] Authenticated")
            await self.bus.publish(sid, ev.AUTHENTICATED, {})

        elif name == ENGINE_READY:
            if record.is_ready:
                logger.debug(f"[{sid}] Duplicate ready event ignored")
                return
            record.is_ready = True
            record.is_authenticated = True
            record.state = LifecycleState.READY
            record.qr_payload = None
            record.phone_identity = payload.get("phone") or record.phone_identity
            record.ready_at = monotonic_s()
            record.touch()
            logger.info(f"[{sid}] Ready ({record.phone_identity or 'unknown'})")
            await self.bus.publish(sid, ev.READY, {"phone": record.phone_identity})

        elif name == ENGINE_LOADING_PROGRESS:
            record.touch()
            await self.bus.publish(sid, ev.LOADING_SCREEN, dict(payload))

        elif name == ENGINE_DISCONNECTED:
            await self._on_disconnected(record, payload.get("reason"))

        elif name in (ENGINE_AUTH_FAILURE, ENGINE_ERROR):
            message = payload.get("message") or payload.get("error") or name
            detached = record.detach_engine(LifecycleState.CREATED)
            record.is_authenticated = False
            record.qr_payload = None
            record.ready_at = None
            logger.error(f"[{sid}] Engine {name}: {message}")
            record.failure_reported = True
            await self.bus.publish(sid, ev.AUTH_FAILURE, {"error": message})
            await teardown_engine(detached)

        elif name in PASSTHROUGH_EVENTS:
            record.touch()
            await self.bus.publish(sid, name, dict(payload))

        else:
            logger.debug(f"[{sid}] Unhandled engine event {name}")

    async def _on_disconnected(self, record: SessionRecord, reason: str | None) -> None:
        """
        处理引擎断开。

        READY 之后短时间内被 LOGOUT 是典型的风控特征：记录诊断日志并在
        通知中带上 possible_anti_automation 标志，但仍按普通断开处理，
        保留认证状态以便重连后直接恢复。窗口之外的 LOGOUT 视为用户主动登出。
        """
        sid = record.session_id
        flagged = False
        if reason == LOGOUT_REASON and record.ready_at is not None:
            elapsed_ms = (monotonic_s() - record.ready_at) * 1000
            if elapsed_ms < self.anti_automation_window_ms:
                flagged = True
                logger.warning(
                    f"[{sid}] Logged out {elapsed_ms:.0f}ms after ready: possible anti-automation detection"
                )

        detached = record.detach_engine(LifecycleState.DISCONNECTED)
        record.ready_at = None
        if reason == LOGOUT_REASON and not flagged:
            record.is_authenticated = False
        logger.info(f"[{sid}] Disconnected: {reason}")

        await self.bus.publish(sid, ev.DISCONNECTED, {
            "reason": reason,
            "possible_anti_automation": flagged,
        })
        await teardown_engine(detached)

    async def stop(self) -> None:
        """取消所有中继任务。"""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    @property
    def active(self) -> int:
        return len(self._tasks)
