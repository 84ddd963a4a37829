"""
会话事件类型定义模块 - 定义事件总线中传输的数据结构。

核心会把会话状态变化以 SessionEvent 的形式发布到总线，
外部订阅者（WebSocket 推送层、日志、测试等）按会话 ID 订阅。
事件名称沿用对外协议中的字符串，不做枚举化，方便外部层直接转发。
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

# 会话生命周期事件
QR = "qr"                                    # 新的登录二维码
AUTHENTICATED = "authenticated"              # 认证成功
READY = "ready"                              # 会话就绪，可收发消息
LOADING_SCREEN = "loading_screen"            # 引擎加载进度
AUTH_FAILURE = "auth_failure"                # 认证失败 / 引擎错误 / 初始化超时
DISCONNECTED = "disconnected"                # 引擎断开
RECONNECTING = "reconnecting"                # 开始重连
RECONNECTION_FAILED = "reconnection_failed"  # 主方案和回退方案均重连失败
SESSION_DESTROYED = "session_destroyed"      # 会话已销毁（终态通知）

# 消息级事件（原样转发，不影响状态机）
MESSAGE = "message"
MESSAGE_ACK = "message_ack"
MESSAGE_REVOKE = "message_revoke"
MESSAGE_REACTION = "message_reaction"


@dataclass
class SessionEvent:
    """
    会话事件 - 核心发布给外部订阅者的一条状态通知。

    属性:
        session_id: 事件所属会话 ID（订阅路由键）
        event: 事件名称（见本模块常量）
        payload: 事件数据（如二维码内容、断开原因、错误信息）
        timestamp: 事件产生时间
    """

    session_id: str
    event: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)
