"""
会话数据模型 - 会话记录与生命周期状态。

【生命周期】
CREATED → INITIALIZING → AUTHENTICATED → READY
INITIALIZING / AUTHENTICATED / READY → DISCONNECTED
任意状态 → DESTROYED（终态）

"正在重连" 不是一个状态，而是正交的 reconnecting 标志。

【不变量】
engine 非空 当且仅当 state ∈ {INITIALIZING, AUTHENTICATED, READY}。
attach_engine() / detach_engine() 是修改 engine 的唯一入口，二者同时维护 state。
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from sessionhub.engine.base import BaseEngine, EngineProfile
from sessionhub.utils.helpers import monotonic_s


class LifecycleState(str, Enum):
    """会话生命周期状态。"""
    CREATED = "created"
    INITIALIZING = "initializing"
    AUTHENTICATED = "authenticated"
    READY = "ready"
    DISCONNECTED = "disconnected"
    DESTROYED = "destroyed"


# 持有引擎的状态集合
ENGINE_STATES = frozenset({
    LifecycleState.INITIALIZING,
    LifecycleState.AUTHENTICATED,
    LifecycleState.READY,
})


@dataclass
class SessionRecord:
    """
    单个用户会话的完整状态。

    属性:
        session_id: 会话 ID（uuid4，永不复用）
        user_id: 所属用户 ID（设备指纹派生）
        device_info: 创建时的设备信息（创建后不再修改）
        engine: 独占的自动化引擎实例
        state: 生命周期状态
        is_authenticated: 是否已通过认证
        is_ready: 是否可收发消息
        qr_payload: 最新登录二维码内容（就绪或销毁时清空）
        phone_identity: 登录账号标识（就绪时设置）
        created_at: 创建时间（单调时钟秒）
        last_activity: 最近活动时间（任何流量或引擎进度都会刷新）
        ready_at: 进入 READY 的时间（单调时钟秒）
        reconnecting: 重连闸门，同一时刻最多一个重连在执行
        starting: start_session 正在执行（主方案失败切换回退方案的间隙也保持为 True）
        failure_reported: 本次启动期间中继是否已发布过 auth_failure
        profile: 当前引擎使用的启动方案
    """

    session_id: str
    user_id: str
    device_info: dict[str, Any] = field(default_factory=dict)
    engine: BaseEngine | None = None
    state: LifecycleState = LifecycleState.CREATED
    is_authenticated: bool = False
    is_ready: bool = False
    qr_payload: str | None = None
    phone_identity: str | None = None
    created_at: float = field(default_factory=monotonic_s)
    last_activity: float = field(default_factory=monotonic_s)
    ready_at: float | None = None
    reconnecting: bool = False
    starting: bool = False
    failure_reported: bool = False
    profile: EngineProfile | None = None

    @property
    def destroyed(self) -> bool:
        return self.state == LifecycleState.DESTROYED

    def touch(self) -> None:
        """刷新最近活动时间。"""
        self.last_activity = monotonic_s()

    def try_begin_reconnect(self) -> bool:
        """
        获取重连闸门（同步的测试并设置，中间没有 await，在事件循环内是原子的）。

        返回:
            True 表示获取成功，调用方必须在 finally 中调用 end_reconnect()
        """
        if self.reconnecting or self.starting or self.destroyed:
            return False
        self.reconnecting = True
        return True

    def end_reconnect(self) -> None:
        self.reconnecting = False

    def attach_engine(self, engine: BaseEngine, profile: EngineProfile) -> None:
        """挂载新引擎并进入 INITIALIZING。"""
        self.engine = engine
        self.profile = profile
        self.state = LifecycleState.INITIALIZING

    def detach_engine(self, state: LifecycleState) -> BaseEngine | None:
        """
        卸下引擎并切换到不持有引擎的状态。

        参数:
            state: 目标状态（CREATED / DISCONNECTED / DESTROYED）

        返回:
            被卸下的引擎（由调用方负责销毁），没有则返回 None
        """
        engine = self.engine
        self.engine = None
        self.is_ready = False
        self.state = state
        return engine

    def snapshot(self) -> "SessionSnapshot":
        """生成只读快照（供外部层读取，不暴露引擎对象）。"""
        return SessionSnapshot(
            session_id=self.session_id,
            user_id=self.user_id,
            state=self.state,
            is_authenticated=self.is_authenticated,
            is_ready=self.is_ready,
            qr_payload=self.qr_payload,
            phone_identity=self.phone_identity,
            reconnecting=self.reconnecting,
            has_engine=self.engine is not None,
            profile=self.profile,
            idle_s=monotonic_s() - self.last_activity,
        )


@dataclass(frozen=True)
class SessionSnapshot:
    """会话只读快照。"""

    session_id: str
    user_id: str
    state: LifecycleState
    is_authenticated: bool
    is_ready: bool
    qr_payload: str | None
    phone_identity: str | None
    reconnecting: bool
    has_engine: bool
    profile: EngineProfile | None
    idle_s: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "userId": self.user_id,
            "state": self.state.value,
            "isAuthenticated": self.is_authenticated,
            "isReady": self.is_ready,
            "qr": self.qr_payload,
            "phone": self.phone_identity,
            "reconnecting": self.reconnecting,
            "hasEngine": self.has_engine,
            "profile": self.profile.value if self.profile else None,
            "idleSeconds": round(self.idle_s, 1),
        }
