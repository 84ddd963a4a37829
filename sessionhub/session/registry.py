"""
会话注册表 - 维护两张索引：会话 ID → 会话记录、用户 ID → 当前会话 ID。

所有方法都是同步的：注册表只在事件循环的同步片段中被修改，
因此 create() / remove() 对其他协程而言是原子的。
"""

import uuid
from typing import Any

from loguru import logger

from sessionhub.session.identity import derive_user_id
from sessionhub.session.models import SessionRecord


class SessionRegistry:
    """
    会话注册表。

    属性:
        _sessions: 会话 ID → 会话记录
        _users: 用户 ID → 当前会话 ID（每个用户最多一个当前会话）
    """

    def __init__(self):
        self._sessions: dict[str, SessionRecord] = {}
        self._users: dict[str, str] = {}

    def create(
        self, user_key: str | None, device_info: dict[str, Any]
    ) -> tuple[SessionRecord, SessionRecord | None]:
        """
        为用户创建新会话，并把用户映射指向它。

        参数:
            user_key: 调用方提供的用户标识；为空时从设备信息派生
            device_info: 设备信息

        返回:
            (新会话记录, 被取代的旧会话记录或 None)
            旧记录仍留在 _sessions 中，直到调用方异步销毁它
        """
        user_id = user_key or derive_user_id(device_info)
        record = SessionRecord(
            session_id=str(uuid.uuid4()),
            user_id=user_id,
            device_info=dict(device_info),
        )

        superseded = None
        previous_id = self._users.get(user_id)
        if previous_id is not None:
            superseded = self._sessions.get(previous_id)

        self._sessions[record.session_id] = record
        self._users[user_id] = record.session_id

        if superseded:
            logger.info(f"User {user_id}: session {superseded.session_id} superseded by {record.session_id}")
        return record, superseded

    def remove(self, session_id: str) -> SessionRecord | None:
        """从两张索引中移除会话。用户映射只在仍指向本会话时才删除。"""
        record = self._sessions.pop(session_id, None)
        if record is None:
            return None
        if self._users.get(record.user_id) == session_id:
            del self._users[record.user_id]
        return record

    def get(self, session_id: str) -> SessionRecord | None:
        return self._sessions.get(session_id)

    def current_session_id(self, user_id: str) -> str | None:
        return self._users.get(user_id)

    def is_current(self, session_id: str) -> bool:
        """会话是否存在且是其用户的当前会话。"""
        record = self._sessions.get(session_id)
        return record is not None and self._users.get(record.user_id) == session_id

    def records(self) -> list[SessionRecord]:
        """所有会话记录的快照列表（遍历期间注册表可以被修改）。"""
        return list(self._sessions.values())

    @property
    def user_count(self) -> int:
        return len(self._users)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions
