"""
自动化引擎基类模块 - 定义核心与外部自动化引擎之间的统一契约。

核心从不实现远端自动化协议本身（驱动无头浏览器操作第三方 Web 客户端），
只通过本模块定义的接口监督它：
- start()：启动引擎，返回即表示初始化完成（超时由调用方用 wait_for 控制）
- destroy()：销毁引擎并释放资源（浏览器进程、连接等）
- get_state()：存活探测，返回引擎报告的连接状态
- events：引擎事件队列，由 EventRelay 作为唯一消费者按顺序读取

【事件名称】
qr / authenticated / ready / loading_progress / auth_failure /
disconnected / error 以及消息级事件 message / message_ack /
message_revoke / message_reaction。

【启动方案】
PRIMARY 为完整配置（反检测参数齐全，初始化超时较长）；
FALLBACK 为保守配置（精简参数、独立数据目录、超时更短），
在主方案失败时使用。
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable

from loguru import logger

# 引擎事件名称
ENGINE_QR = "qr"
ENGINE_AUTHENTICATED = "authenticated"
ENGINE_READY = "ready"
ENGINE_LOADING_PROGRESS = "loading_progress"
ENGINE_AUTH_FAILURE = "auth_failure"
ENGINE_DISCONNECTED = "disconnected"
ENGINE_ERROR = "error"

# 远端明确登出时的断开原因
LOGOUT_REASON = "LOGOUT"


class EngineProfile(str, Enum):
    """引擎启动方案。"""
    PRIMARY = "primary"
    FALLBACK = "fallback"


@dataclass
class EngineEvent:
    """
    引擎事件 - 引擎向核心报告的一条原始事件。

    属性:
        name: 事件名称（见本模块 ENGINE_* 常量，或消息级事件名）
        payload: 事件数据（如二维码字符串、断开原因、手机号）
    """

    name: str
    payload: dict[str, Any] = field(default_factory=dict)


class BaseEngine(ABC):
    """
    自动化引擎抽象基类 - 每个会话独占一个引擎实例。

    属性:
        session_id: 引擎所属会话 ID
        data_dir: 引擎持久化认证数据的目录（断线重连后凭此恢复登录态）
        profile: 启动方案
        events: 事件队列；子类通过 emit() 写入，EventRelay 读取
    """

    def __init__(self, session_id: str, data_dir: Path, profile: EngineProfile = EngineProfile.PRIMARY):
        self.session_id = session_id
        self.data_dir = data_dir
        self.profile = profile
        self.events: asyncio.Queue[EngineEvent | None] = asyncio.Queue()

    def emit(self, name: str, **payload: Any) -> None:
        """向事件队列写入一条事件。"""
        self.events.put_nowait(EngineEvent(name=name, payload=payload))

    def close_events(self) -> None:
        """写入结束标记，通知 EventRelay 该引擎不会再有事件。"""
        self.events.put_nowait(None)

    @abstractmethod
    async def start(self) -> None:
        """启动引擎。失败时抛出异常。"""

    @abstractmethod
    async def destroy(self) -> None:
        """销毁引擎。调用后引擎不可再用。"""

    @abstractmethod
    async def get_state(self) -> str | None:
        """存活探测。返回 None 表示引擎未连接。"""


# 引擎工厂：根据会话 ID、数据目录和启动方案创建引擎实例
EngineFactory = Callable[[str, Path, EngineProfile], BaseEngine]


async def teardown_engine(engine: BaseEngine | None, timeout: float = 10.0) -> bool:
    """
    尽力销毁引擎：超时或异常只记录日志，不向上抛出。
    无论销毁是否成功都会写入结束标记，保证该引擎的中继任务退出。

    返回:
        True 表示销毁正常完成
    """
    if engine is None:
        return False
    try:
        await asyncio.wait_for(engine.destroy(), timeout=timeout)
        return True
    except Exception as e:
        logger.warning(f"[{engine.session_id}] Engine teardown failed: {e!r}")
        return False
    finally:
        engine.close_events()
