"""
配置数据模型定义 (config/schema.py)
=================================
本模块使用 Pydantic 定义 sessionhub 的完整配置结构。
所有配置项都有默认值，用户只需在 config.json 中覆盖需要修改的部分。

整体配置结构（树形）：
Config (根配置)
├── sessions      - 会话存储与超时配置
├── supervisor    - 健康巡检与各类清理任务的间隔
├── engine        - 自动化引擎（Bridge 服务）连接参数与启动超时
├── transcode     - ffmpeg 转码参数与缓存 TTL
└── gateway       - 对外服务监听地址（供外部 HTTP 层使用）

时间单位约定：字段名以 _s 结尾为秒，以 _ms 结尾为毫秒。
"""

from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SessionsConfig(BaseModel):
    """会话存储与生命周期超时配置。"""
    data_dir: str = "~/.sessionhub"  # 数据根目录（会话目录、音频缓存都在其下）
    session_timeout_s: int = 24 * 60 * 60  # 无活动会话的回收时间（24 小时）
    unfinished_timeout_s: int = 15 * 60  # 未完成登录的会话回收时间（15 分钟）
    anti_automation_window_ms: int = 120_000  # READY 后多久内被登出视为疑似风控


class SupervisorConfig(BaseModel):
    """
    巡检服务配置。

    health_check_interval_s 控制健康巡检频率；其余三个间隔分别对应
    无活动会话清理、未完成会话清理和音频缓存清理。
    """
    health_check_interval_s: int = 5 * 60  # 健康巡检间隔
    activity_grace_s: int = 5 * 60  # 最近有活动的会话跳过巡检
    probe_timeout_s: float = 10.0  # 巡检时存活探测超时
    fast_probe_timeout_s: float = 5.0  # is_session_healthy 的快速探测超时
    session_cleanup_interval_s: int = 60 * 60  # 无活动会话清理间隔（1 小时）
    unfinished_cleanup_interval_s: int = 5 * 60  # 未完成会话清理间隔
    audio_cleanup_interval_s: int = 30 * 60  # 转码缓存清理间隔


class EngineConfig(BaseModel):
    """自动化引擎配置。引擎运行在独立的 Bridge 进程中，通过 WebSocket 通信。"""
    bridge_url: str = "ws://localhost:3001"  # Bridge 服务的 WebSocket 地址
    bridge_token: str = ""  # Bridge 认证令牌（可选但推荐设置）
    init_timeout_s: float = 45.0  # 主启动方案的初始化超时
    fallback_init_timeout_s: float = 20.0  # 回退启动方案的初始化超时
    fallback_dir: str = ""  # 回退方案的会话数据目录（为空时使用系统临时目录）


class TranscodeConfig(BaseModel):
    """音频转码配置。输出固定为 MP3。"""
    ffmpeg_path: str = ""  # 随包分发的 ffmpeg 路径（优先于 PATH 查找）
    cache_dir: str = ""  # 转码缓存目录（为空时使用 <data_dir>/audio_cache）
    ttl_s: int = 2 * 60 * 60  # 转码结果缓存 TTL（2 小时）
    bitrate_kbps: int = 128  # 输出码率
    sample_rate: int = 44100  # 输出采样率
    channels: int = 2  # 输出声道数（立体声）
    timeout_s: float = 60.0  # 单次转码的硬超时，超时强制 kill ffmpeg


class GatewayConfig(BaseModel):
    """对外服务配置（HTTP/WebSocket 层由外部组件实现，这里只保存监听地址）。"""
    host: str = "0.0.0.0"
    port: int = 3000


class Config(BaseSettings):
    """
    sessionhub 根配置类。

    继承自 Pydantic 的 BaseSettings，除了支持从 JSON 文件加载外，
    还支持从环境变量读取配置：
    - 环境变量前缀: SESSIONHUB_
    - 嵌套分隔符: __ (双下划线)
    - 示例: SESSIONHUB_ENGINE__BRIDGE_URL=ws://bridge:3001 可覆盖 engine.bridge_url
    """
    sessions: SessionsConfig = Field(default_factory=SessionsConfig)
    supervisor: SupervisorConfig = Field(default_factory=SupervisorConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    transcode: TranscodeConfig = Field(default_factory=TranscodeConfig)
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)

    @property
    def data_path(self) -> Path:
        """获取展开后的数据根目录绝对路径（将 ~ 展开为用户主目录）。"""
        return Path(self.sessions.data_dir).expanduser()

    @property
    def sessions_path(self) -> Path:
        """每个会话的数据目录都位于此目录下，以会话 ID 命名。"""
        return self.data_path / "sessions"

    @property
    def audio_cache_path(self) -> Path:
        """转码缓存目录；未显式配置时位于数据根目录下。"""
        if self.transcode.cache_dir:
            return Path(self.transcode.cache_dir).expanduser()
        return self.data_path / "audio_cache"

    @property
    def fallback_path(self) -> Path | None:
        """回退方案的数据目录；返回 None 表示由引擎层使用系统临时目录。"""
        if self.engine.fallback_dir:
            return Path(self.engine.fallback_dir).expanduser()
        return None

    model_config = SettingsConfigDict(
        env_prefix="SESSIONHUB_",
        env_nested_delimiter="__",
    )
