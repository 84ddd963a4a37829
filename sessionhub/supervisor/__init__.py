"""
巡检模块 - 会话健康巡检与周期清理。

HealthSupervisor 定期探测会话引擎并对不健康的会话发起重连；
CleanupService 定期回收无活动会话、未完成会话和过期的转码缓存。
"""

from sessionhub.supervisor.cleanup import CleanupService
from sessionhub.supervisor.health import HealthSupervisor
from sessionhub.supervisor.periodic import PeriodicService

__all__ = ["CleanupService", "HealthSupervisor", "PeriodicService"]
