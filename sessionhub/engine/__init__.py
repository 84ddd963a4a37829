"""自动化引擎模块：引擎契约与 WebSocket 桥接实现。"""

from sessionhub.engine.base import BaseEngine, EngineEvent, EngineFactory, EngineProfile, teardown_engine
from sessionhub.engine.bridge import BridgeEngine, bridge_engine_factory

__all__ = [
    "BaseEngine",
    "EngineEvent",
    "EngineFactory",
    "EngineProfile",
    "teardown_engine",
    "BridgeEngine",
    "bridge_engine_factory",
]
