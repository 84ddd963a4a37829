"""会话模块：身份派生、会话记录、注册表、事件中继与会话管理器。"""

from sessionhub.session.identity import derive_user_id
from sessionhub.session.manager import SessionManager
from sessionhub.session.models import LifecycleState, SessionRecord, SessionSnapshot
from sessionhub.session.registry import SessionRegistry
from sessionhub.session.relay import EventRelay

__all__ = [
    "derive_user_id",
    "SessionManager",
    "LifecycleState",
    "SessionRecord",
    "SessionSnapshot",
    "SessionRegistry",
    "EventRelay",
]
