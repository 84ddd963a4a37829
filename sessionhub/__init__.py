"""
sessionhub - 多租户消息会话托管核心

模块概述：
    本文件是 sessionhub 包的入口文件（__init__.py），定义了包的元信息。
    sessionhub 在单个进程内托管大量彼此独立、长期运行的自动化消息会话，
    每个终端用户一个会话，由核心统一创建、巡检、重连和销毁。

    整个框架的核心功能包括：
    - 会话注册表（一个用户同一时刻只有一个“当前”会话）
    - 会话生命周期状态机（由外部引擎事件驱动）
    - 健康巡检与重连（主启动方案 + 保守的回退方案）
    - 音频转码缓存（ffmpeg 转换结果按 TTL 缓存，并合并并发请求）
"""

# 版本号，遵循语义化版本规范（主版本.次版本.修订号）
__version__ = "0.1.0"

# 项目 logo 表情符号，用于 CLI 输出等场景的品牌标识
__logo__ = "📡"
