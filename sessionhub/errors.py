"""
异常类型定义 - sessionhub 核心对外抛出的所有异常。

异常分类（对应错误处理策略）：
- 调用方误用：SessionNotFoundError / SessionSupersededError
  同步抛给调用方，二者必须可区分，调用方据此决定是否改用当前会话重试
- 引擎启动失败：EngineStartError（主方案和回退方案都失败时才会抛出）
- 转码失败：TranscodeError 及其子类，调用方应回退为直接返回原始媒体

资源清理失败（删目录、销毁引擎）不在这里：它们只记录日志，从不向上传播。
"""


class SessionHubError(Exception):
    """sessionhub 所有业务异常的基类。"""


class SessionNotFoundError(SessionHubError):
    """会话 ID 不存在（从未创建或已被销毁）。"""

    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class SessionSupersededError(SessionHubError):
    """
    会话已被同一用户的新会话取代（旧会话可能仍在异步销毁中）。

    属性:
        session_id: 调用方传入的旧会话 ID
        current_session_id: 该用户当前有效的会话 ID（可能为 None）
    """

    def __init__(self, session_id: str, current_session_id: str | None):
        super().__init__(
            f"Session {session_id} has been replaced by a newer session"
            f" ({current_session_id})"
        )
        self.session_id = session_id
        self.current_session_id = current_session_id


class EngineStartError(SessionHubError):
    """自动化引擎启动失败（包括初始化超时）。"""


class TranscodeError(SessionHubError):
    """ffmpeg 转码失败。"""


class TranscodeTimeoutError(TranscodeError):
    """ffmpeg 转码超时（进程已被强制终止）。"""


class TranscoderUnavailableError(TranscodeError):
    """启动时未发现可用的 ffmpeg，转码功能被禁用。"""


class UnsupportedFormatError(SessionHubError):
    """请求的输出格式不被该媒体类型支持。"""

    def __init__(self, fmt: str, mime_type: str, supported: set[str]):
        super().__init__(
            f"Unsupported format '{fmt}' for media type '{mime_type}'"
        )
        self.format = fmt
        self.mime_type = mime_type
        self.supported = supported
