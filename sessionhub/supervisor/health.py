"""
健康巡检服务 - 定期审计所有当前会话，对不健康的会话发起重连。

巡检规则（按顺序）：
1. 只检查其用户的当前会话（已被取代的会话正在销毁，不需要修复）
2. 最近 activity_grace_s 内有活动的会话跳过（流量本身证明它活着）
3. 正在启动或重连的会话跳过
4. 没有引擎或尚未就绪 → 重连
5. 存活探测超时、报错或返回空状态 → 重连

重连通过 SessionManager.schedule_reconnect() 在后台执行，
单个会话的慢重连不会拖住整轮巡检。
"""

import asyncio

from loguru import logger

from sessionhub.config.schema import SupervisorConfig
from sessionhub.session.manager import SessionManager
from sessionhub.session.models import SessionRecord
from sessionhub.supervisor.periodic import PeriodicService
from sessionhub.utils.helpers import monotonic_s


class HealthSupervisor(PeriodicService):
    """会话健康巡检。"""

    def __init__(self, manager: SessionManager, config: SupervisorConfig | None = None, enabled: bool = True):
        config = config or SupervisorConfig()
        super().__init__("Health supervisor", config.health_check_interval_s, enabled=enabled)
        self.manager = manager
        self.config = config

    async def _tick(self) -> list[str]:
        return await self.audit()

    async def audit(self) -> list[str]:
        """
        执行一轮巡检。

        返回:
            本轮被安排重连的会话 ID 列表
        """
        now = monotonic_s()
        scheduled: list[str] = []

        for record in self.manager.registry.records():
            sid = record.session_id
            if not self.manager.is_user_session_current(sid):
                continue
            if now - record.last_activity < self.config.activity_grace_s:
                logger.debug(f"[{sid}] Health check skipped: recent activity")
                continue
            if record.reconnecting or record.starting:
                logger.debug(f"[{sid}] Health check skipped: start or reconnect in progress")
                continue

            reason = await self._check(record)
            if reason:
                logger.warning(f"[{sid}] Unhealthy ({reason}), scheduling reconnect")
                self.manager.schedule_reconnect(sid)
                scheduled.append(sid)

        if scheduled:
            logger.info(f"Health check: {len(scheduled)} sessions scheduled for reconnect")
        return scheduled

    async def _check(self, record: SessionRecord) -> str | None:
        """返回不健康原因；健康时返回 None。"""
        engine = record.engine
        if engine is None:
            return "no engine"
        if not record.is_ready:
            return "not ready"
        try:
            state = await asyncio.wait_for(engine.get_state(), timeout=self.config.probe_timeout_s)
        except asyncio.TimeoutError:
            return "probe timed out"
        except Exception as e:
            return f"probe failed: {e}"
        if state is None:
            return "no state reported"
        return None
