"""
Bridge 引擎实现 - 通过 WebSocket 驱动外部自动化桥接服务。

架构特点：
- 桥接模式：Python <-> WebSocket <-> Node.js Bridge <-> 无头浏览器 <-> 第三方 Web 客户端
- 每个会话独占一条 WebSocket 连接，连接即引擎句柄
- 支持认证令牌（bridge_token）进行桥接服务鉴权

消息协议（Python <-> Bridge，JSON）：
- auth：发送认证令牌
- start：启动会话（携带 sessionId、dataPath、profile）
- started / start_failed：启动结果
- get_state：存活探测请求，桥接服务以 {"type": "response", "id": ...} 回复
- destroy：销毁会话
- qr / authenticated / ready / loading_screen / auth_failure /
  disconnected / error / message / message_ack / message_revoke /
  message_reaction：引擎事件，写入事件队列

依赖：
- websockets：Python WebSocket 客户端库
- 外部 Bridge 服务（需独立部署运行）
"""

import asyncio
import itertools
import json
from pathlib import Path
from typing import Any

import websockets
from loguru import logger

from sessionhub.engine.base import (
    ENGINE_DISCONNECTED,
    ENGINE_LOADING_PROGRESS,
    BaseEngine,
    EngineEvent,
    EngineFactory,
    EngineProfile,
)

# Bridge 消息类型 → 引擎事件名（未列出的类型按原名转发）
_EVENT_ALIASES = {"loading_screen": ENGINE_LOADING_PROGRESS}

_FORWARDED_TYPES = {
    "qr",
    "authenticated",
    "ready",
    "loading_screen",
    "auth_failure",
    "disconnected",
    "error",
    "message",
    "message_ack",
    "message_revoke",
    "message_reaction",
}


class BridgeEngine(BaseEngine):
    """
    基于 WebSocket 桥接服务的自动化引擎。

    属性:
        bridge_url: 桥接服务地址
        bridge_token: 桥接服务认证令牌
        _ws: WebSocket 连接对象
        _reader: 后台读取任务
        _pending: 等待响应的请求 {请求 ID: Future}
        _started: start() 等待的启动结果
        _destroyed: 是否已主动销毁（区分主动关闭与意外断开）
    """

    def __init__(
        self,
        session_id: str,
        data_dir: Path,
        profile: EngineProfile,
        bridge_url: str,
        bridge_token: str = "",
    ):
        super().__init__(session_id, data_dir, profile)
        self.bridge_url = bridge_url
        self.bridge_token = bridge_token
        self._ws = None
        self._reader: asyncio.Task | None = None
        self._pending: dict[int, asyncio.Future] = {}
        self._ids = itertools.count(1)
        self._started: asyncio.Future | None = None
        self._destroyed = False

    async def start(self) -> None:
        """
        连接桥接服务并启动会话。

        流程：
        1. 建立 WebSocket 连接，发送认证令牌（如果配置了）
        2. 启动后台读取任务
        3. 发送 start 指令，等待 started / start_failed
        """
        loop = asyncio.get_running_loop()
        self._started = loop.create_future()

        logger.info(f"[{self.session_id}] Connecting to bridge at {self.bridge_url} ({self.profile.value})")
        self._ws = await websockets.connect(self.bridge_url)
        if self.bridge_token:
            await self._send({"type": "auth", "token": self.bridge_token})
        self._reader = asyncio.create_task(self._read_loop())

        await self._send({
            "type": "start",
            "sessionId": self.session_id,
            "dataPath": str(self.data_dir),
            "profile": self.profile.value,
        })
        await self._started

    async def get_state(self) -> str | None:
        """发送 get_state 请求并等待桥接服务回复。"""
        if self._ws is None or self._destroyed:
            return None
        request_id = next(self._ids)
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self._send({"type": "get_state", "id": request_id})
            result = await future
        finally:
            self._pending.pop(request_id, None)
        return result.get("state") if isinstance(result, dict) else result

    async def destroy(self) -> None:
        """
        销毁引擎：通知桥接服务销毁会话，关闭连接，取消读取任务。

        只执行一次；重复调用直接返回。
        """
        if self._destroyed:
            return
        self._destroyed = True

        ws = self._ws
        self._ws = None
        if ws is not None:
            try:
                await ws.send(json.dumps({"type": "destroy", "sessionId": self.session_id}))
            except websockets.ConnectionClosed:
                pass
            await ws.close()

        if self._reader:
            self._reader.cancel()
            self._reader = None
        self._fail_pending(ConnectionError("Engine destroyed"))
        self.close_events()

    async def _send(self, payload: dict[str, Any]) -> None:
        if self._ws is None:
            raise ConnectionError("Bridge not connected")
        await self._ws.send(json.dumps(payload))

    async def _read_loop(self) -> None:
        """持续读取桥接服务消息；连接意外断开时补发 disconnected 事件。"""
        ws = self._ws
        try:
            async for raw in ws:
                try:
                    self._handle_bridge_message(raw)
                except Exception as e:
                    logger.error(f"[{self.session_id}] Error handling bridge message: {e}")
        except asyncio.CancelledError:
            return
        except websockets.ConnectionClosed as e:
            logger.warning(f"[{self.session_id}] Bridge connection closed: {e}")

        if not self._destroyed:
            self._fail_pending(ConnectionError("Bridge connection closed"))
            self.emit(ENGINE_DISCONNECTED, reason="BRIDGE_CLOSED")

    def _handle_bridge_message(self, raw: str | bytes) -> None:
        """
        处理桥接服务发来的一条消息。

        - started / start_failed：完成 start() 的等待
        - response：完成对应请求 ID 的等待
        - 引擎事件：写入事件队列
        """
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"[{self.session_id}] Invalid JSON from bridge: {str(raw)[:100]}")
            return

        msg_type = data.get("type")

        if msg_type == "started":
            if self._started and not self._started.done():
                self._started.set_result(None)

        elif msg_type == "start_failed":
            if self._started and not self._started.done():
                self._started.set_exception(RuntimeError(data.get("error") or "Bridge start failed"))

        elif msg_type == "response":
            future = self._pending.get(data.get("id"))
            if future and not future.done():
                if data.get("error"):
                    future.set_exception(RuntimeError(data["error"]))
                else:
                    future.set_result(data.get("result"))

        elif msg_type in _FORWARDED_TYPES:
            payload = {k: v for k, v in data.items() if k != "type"}
            self.events.put_nowait(self._as_event(msg_type, payload))

        else:
            logger.debug(f"[{self.session_id}] Ignoring bridge message type {msg_type}")

    def _as_event(self, msg_type: str, payload: dict[str, Any]) -> EngineEvent:
        return EngineEvent(name=_EVENT_ALIASES.get(msg_type, msg_type), payload=payload)

    def _fail_pending(self, error: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        if self._started and not self._started.done():
            self._started.set_exception(error)


def bridge_engine_factory(bridge_url: str, bridge_token: str = "") -> EngineFactory:
    """
    创建 BridgeEngine 工厂函数。

    返回的工厂按 SessionManager 需要的签名 (session_id, data_dir, profile) 构造引擎。
    """

    def factory(session_id: str, data_dir: Path, profile: EngineProfile) -> BaseEngine:
        return BridgeEngine(session_id, data_dir, profile, bridge_url, bridge_token)

    return factory
