"""
会话管理器 - sessionhub 核心对外的唯一入口。

职责：
- 会话的创建、取代、启动、销毁
- 引擎启动（主方案 + 回退方案，带初始化超时）
- 重连协议（闸门 + 重置 + 主/回退方案重启）
- 健康探测、活动时间刷新、只读快照、统计
- 无活动 / 未完成会话的清理（由 CleanupService 定期调用）

【取代语义】
同一用户再次创建会话时，用户映射在 get_or_create_session() 返回前同步
指向新会话；旧会话的销毁作为后台任务执行，调用方无需等待。后台任务失败
只记录日志。旧会话 ID 在销毁完成前仍可查到，此时 require_session()
抛出 SessionSupersededError 而不是 SessionNotFoundError。

【Java 开发者类比】
- SessionManager 类似 Spring 中的 @Service，注册表是它持有的 Repository
- _tasks 类似一个只记录失败的 ExecutorService
"""

import asyncio
import tempfile
from pathlib import Path
from typing import Any, Coroutine

from loguru import logger

from sessionhub.bus import events as ev
from sessionhub.bus.events import SessionEvent
from sessionhub.bus.queue import EventBus, EventCallback
from sessionhub.config.schema import Config
from sessionhub.engine.base import EngineFactory, EngineProfile, teardown_engine
from sessionhub.errors import EngineStartError, SessionNotFoundError, SessionSupersededError
from sessionhub.session.models import LifecycleState, SessionRecord, SessionSnapshot
from sessionhub.session.registry import SessionRegistry
from sessionhub.session.relay import EventRelay
from sessionhub.utils.helpers import ensure_dir, monotonic_s, remove_dir, safe_filename


class SessionManager:
    """
    多用户会话管理器。

    参数:
        config: 根配置
        bus: 事件总线（状态通知发布目标）
        engine_factory: 引擎工厂 (session_id, data_dir, profile) -> BaseEngine
        registry: 会话注册表（默认新建）
    """

    def __init__(
        self,
        config: Config,
        bus: EventBus,
        engine_factory: EngineFactory,
        registry: SessionRegistry | None = None,
    ):
        self.config = config
        self.bus = bus
        self.engine_factory = engine_factory
        self.registry = registry or SessionRegistry()
        self.relay = EventRelay(bus, config.sessions.anti_automation_window_ms)
        self._tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # 目录
    # ------------------------------------------------------------------

    def session_dir(self, session_id: str) -> Path:
        """主方案的会话数据目录。"""
        return self.config.sessions_path / safe_filename(session_id)

    def fallback_dir(self, session_id: str) -> Path:
        """回退方案的会话数据目录（与主方案隔离）。"""
        root = self.config.fallback_path or Path(tempfile.gettempdir()) / "sessionhub_fallback"
        return root / f"fallback_{safe_filename(session_id)}"

    # ------------------------------------------------------------------
    # 创建 / 查询
    # ------------------------------------------------------------------

    def get_or_create_session(self, user_key: str | None, device_info: dict[str, Any]) -> str:
        """
        为用户创建新会话，总是返回新的会话 ID。

        如果该用户已有当前会话，旧会话在后台销毁（不阻塞本调用）。

        参数:
            user_key: 用户标识；为空时从 device_info 派生
            device_info: 设备信息

        返回:
            新会话 ID
        """
        record, superseded = self.registry.create(user_key, device_info)
        if superseded is not None:
            self.spawn(self.destroy_session(superseded.session_id), f"destroy superseded {superseded.session_id}")
        logger.info(f"Created session {record.session_id} for user {record.user_id}")
        return record.session_id

    def get_session(self, session_id: str) -> SessionRecord | None:
        return self.registry.get(session_id)

    def require_session(self, session_id: str) -> SessionRecord:
        """
        获取会话，会话不可用时抛出可区分的异常。

        异常:
            SessionNotFoundError: 会话不存在
            SessionSupersededError: 会话仍存在但已被同一用户的新会话取代
        """
        record = self.registry.get(session_id)
        if record is None or record.destroyed:
            raise SessionNotFoundError(session_id)
        if not self.registry.is_current(session_id):
            raise SessionSupersededError(session_id, self.registry.current_session_id(record.user_id))
        return record

    def is_user_session_current(self, session_id: str) -> bool:
        return self.registry.is_current(session_id)

    def snapshot(self, session_id: str) -> SessionSnapshot | None:
        record = self.registry.get(session_id)
        return record.snapshot() if record else None

    def touch_session(self, session_id: str) -> bool:
        """刷新会话活动时间（外部 API 流量调用）。"""
        record = self.registry.get(session_id)
        if record is None:
            return False
        record.touch()
        return True

    async def subscribe(self, session_id: str, callback: EventCallback):
        """
        订阅会话事件，并立即向新订阅者回放当前状态（就绪信息或最新二维码）。

        返回:
            取消订阅函数
        """
        unsubscribe = self.bus.subscribe(session_id, callback)
        record = self.registry.get(session_id)
        replay = None
        if record is not None and record.is_ready:
            replay = SessionEvent(session_id, ev.READY, {"phone": record.phone_identity})
        elif record is not None and record.qr_payload:
            replay = SessionEvent(session_id, ev.QR, {"qr": record.qr_payload})
        if replay is not None:
            try:
                await callback(replay)
            except Exception as e:
                logger.error(f"Error replaying {replay.event} to subscriber of {session_id}: {e}")
        return unsubscribe

    def stats(self) -> dict[str, int]:
        """会话统计。"""
        records = self.registry.records()
        ready = sum(1 for r in records if r.is_ready)
        return {
            "total_sessions": len(records),
            "users": self.registry.user_count,
            "ready": ready,
            "not_ready": len(records) - ready,
            "reconnecting": sum(1 for r in records if r.reconnecting),
        }

    # ------------------------------------------------------------------
    # 启动
    # ------------------------------------------------------------------

    async def start_session(self, session_id: str) -> bool:
        """
        启动会话的自动化引擎（主方案失败时自动尝试回退方案）。

        幂等：会话已持有引擎、正在启动或正在重连时直接返回 True。

        异常:
            SessionNotFoundError / SessionSupersededError: 会话不可用
            EngineStartError: 主方案和回退方案均启动失败
        """
        record = self.require_session(session_id)
        if record.engine is not None or record.reconnecting or record.starting:
            logger.debug(f"[{session_id}] Start ignored: engine already present or starting")
            return True

        record.starting = True
        record.failure_reported = False
        try:
            record.touch()
            if await self._start_with_fallback(record):
                return True
        finally:
            record.starting = False

        if record.destroyed:
            raise SessionNotFoundError(session_id)
        if not record.failure_reported:
            await self.bus.publish(session_id, ev.AUTH_FAILURE, {"error": "Engine failed to start"})
        raise EngineStartError(f"Session {session_id}: engine failed to start with all profiles")

    async def _start_with_fallback(self, record: SessionRecord) -> bool:
        for profile in (EngineProfile.PRIMARY, EngineProfile.FALLBACK):
            if record.destroyed:
                return False
            if await self._start_engine(record, profile):
                return True
            logger.warning(f"[{record.session_id}] {profile.value} start failed")
        return False

    async def _start_engine(self, record: SessionRecord, profile: EngineProfile) -> bool:
        """
        用指定方案创建、挂载并启动一个引擎。

        引擎在第一次 await 之前同步挂载到会话上，因此并发的 start 能看到它。
        初始化超时或启动异常时，若引擎仍挂在会话上则卸下并把会话重置为 CREATED。
        """
        sid = record.session_id
        if profile == EngineProfile.PRIMARY:
            data_dir = ensure_dir(self.session_dir(sid))
            timeout = self.config.engine.init_timeout_s
        else:
            data_dir = ensure_dir(self.fallback_dir(sid))
            timeout = self.config.engine.fallback_init_timeout_s

        engine = self.engine_factory(sid, data_dir, profile)
        record.attach_engine(engine, profile)
        self.relay.watch(record, engine)
        logger.info(f"[{sid}] Starting engine ({profile.value}, timeout {timeout}s)")

        try:
            await asyncio.wait_for(engine.start(), timeout=timeout)
        except Exception as e:
            reason = "initialization timed out" if isinstance(e, asyncio.TimeoutError) else str(e)
            logger.error(f"[{sid}] Engine start failed ({profile.value}): {reason}")
            if record.engine is engine:
                record.detach_engine(LifecycleState.CREATED)
                record.is_authenticated = False
                record.qr_payload = None
            await teardown_engine(engine)
            return False

        # 启动期间会话被销毁或引擎已被卸下（销毁方负责释放引擎）
        if record.engine is not engine:
            return False
        logger.info(f"[{sid}] Engine initialized ({profile.value})")
        return True

    # ------------------------------------------------------------------
    # 销毁
    # ------------------------------------------------------------------

    async def destroy_session(self, session_id: str) -> bool:
        """
        销毁会话（幂等）。

        流程：
        1. 同步地从两张索引中移除并标记为 DESTROYED
        2. 尽力销毁引擎
        3. 尽力删除主方案和回退方案的数据目录
        4. 发布 session_destroyed

        返回:
            True 表示本次调用执行了销毁，False 表示会话不存在或已被销毁
        """
        record = self.registry.remove(session_id)
        if record is None:
            return False

        engine = record.detach_engine(LifecycleState.DESTROYED)
        record.qr_payload = None
        logger.info(f"Destroying session {session_id} (user {record.user_id})")

        await teardown_engine(engine)
        await remove_dir(self.session_dir(session_id))
        await remove_dir(self.fallback_dir(session_id))
        await self.bus.publish(session_id, ev.SESSION_DESTROYED, {"userId": record.user_id})
        return True

    # ------------------------------------------------------------------
    # 健康与重连
    # ------------------------------------------------------------------

    async def is_session_healthy(self, session_id: str) -> bool:
        """
        快速健康检查：会话存在、持有引擎、已就绪、未在重连，且探测在限时内返回状态。

        不加锁，结果可能已过期。
        """
        record = self.registry.get(session_id)
        if record is None or record.engine is None or not record.is_ready or record.reconnecting:
            return False
        try:
            state = await asyncio.wait_for(
                record.engine.get_state(), timeout=self.config.supervisor.fast_probe_timeout_s
            )
        except Exception as e:
            logger.warning(f"[{session_id}] Health probe failed: {e!r}")
            return False
        return state is not None

    async def reconnect_session(self, session_id: str) -> bool:
        """
        重连会话。

        同一会话同一时刻最多一个重连在执行，并发请求直接丢弃。
        流程：发布 reconnecting → 销毁旧引擎 → 重置状态 → 主方案启动 →
        失败则回退方案启动 → 均失败发布 reconnection_failed。
        认证数据保存在磁盘上，新引擎启动后会自行恢复登录态。

        返回:
            True 表示重连成功
        """
        record = self.registry.get(session_id)
        if record is None or record.destroyed:
            logger.debug(f"[{session_id}] Reconnect skipped: session not found")
            return False
        if not record.try_begin_reconnect():
            logger.info(f"[{session_id}] Reconnect already in progress, request dropped")
            return False

        try:
            logger.info(f"[{session_id}] Reconnecting")
            await self.bus.publish(session_id, ev.RECONNECTING, {})
            if record.destroyed:
                return False

            stale = record.detach_engine(LifecycleState.CREATED)
            record.is_authenticated = False
            record.qr_payload = None
            record.ready_at = None
            await teardown_engine(stale)

            if await self._start_with_fallback(record):
                logger.info(f"[{session_id}] Reconnected ({record.profile.value})")
                return True

            if not record.destroyed:
                logger.error(f"[{session_id}] Reconnection failed with all profiles")
                await self.bus.publish(session_id, ev.RECONNECTION_FAILED, {})
            return False
        finally:
            record.end_reconnect()

    def schedule_reconnect(self, session_id: str) -> asyncio.Task:
        """后台执行 reconnect_session，调用方不等待。"""
        return self.spawn(self.reconnect_session(session_id), f"reconnect {session_id}")

    # ------------------------------------------------------------------
    # 清理
    # ------------------------------------------------------------------

    async def cleanup_inactive_sessions(self) -> int:
        """销毁超过 session_timeout_s 没有活动的会话。返回销毁数量。"""
        cutoff = monotonic_s() - self.config.sessions.session_timeout_s
        count = 0
        for record in self.registry.records():
            if record.last_activity < cutoff and await self.destroy_session(record.session_id):
                count += 1
        if count:
            logger.info(f"Cleaned up {count} inactive sessions")
        return count

    async def cleanup_unfinished_sessions(self) -> int:
        """销毁创建超过 unfinished_timeout_s 仍未就绪也未认证的会话。返回销毁数量。"""
        # 从 created_at 而不是 last_activity 算起：二维码刷新会更新 last_activity
        cutoff = monotonic_s() - self.config.sessions.unfinished_timeout_s
        count = 0
        for record in self.registry.records():
            if record.is_ready or record.is_authenticated or record.reconnecting:
                continue
            if record.created_at < cutoff and await self.destroy_session(record.session_id):
                count += 1
        if count:
            logger.info(f"Cleaned up {count} unfinished sessions")
        return count

    # ------------------------------------------------------------------
    # 后台任务
    # ------------------------------------------------------------------

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        """启动一个后台任务；任务失败只记录日志。"""
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Background task '{task.get_name()}' failed: {exc!r}")

    async def wait_idle(self) -> None:
        """等待所有后台任务（取代销毁、计划中的重连）完成。"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """销毁所有会话并停止事件中继。"""
        await self.wait_idle()
        records = self.registry.records()
        for record in records:
            await self.destroy_session(record.session_id)
        await self.wait_idle()
        await self.relay.stop()
        logger.info(f"Session manager shut down ({len(records)} sessions destroyed)")
