"""
事件总线模块 - 实现会话核心与外部订阅者之间的解耦通信。

核心只负责决定“发布什么事件”，事件如何送达（WebSocket 房间、回调、日志）
由订阅者决定。同一会话的事件保持发布顺序。
"""

from sessionhub.bus.events import SessionEvent
from sessionhub.bus.queue import EventBus

__all__ = ["EventBus", "SessionEvent"]
