"""
配置加载工具模块 (config/loader.py)
=================================
本模块负责 sessionhub 配置文件的加载和保存：
- 配置文件默认路径: ~/.sessionhub/config.json
- 配置文件使用 camelCase（驼峰命名），Python 内部使用 snake_case
- 加载时自动 camelCase → snake_case，保存时自动 snake_case → camelCase
- 文件损坏时降级使用默认配置（记录警告，不中断启动）
"""

import json
from pathlib import Path
from typing import Any

from loguru import logger

from sessionhub.config.schema import Config


def get_config_path() -> Path:
    """获取默认配置文件路径: ~/.sessionhub/config.json"""
    return Path.home() / ".sessionhub" / "config.json"


def load_config(config_path: Path | None = None) -> Config:
    """
    从 JSON 文件加载配置，若文件不存在则返回默认配置。

    加载流程：
    1. 确定配置文件路径（传入的路径 或 默认路径）
    2. 读取 JSON，将 camelCase 键名转换为 snake_case
    3. 交给 Config 构造函数验证
       （文件中未出现的配置项再从环境变量 SESSIONHUB_* 读取）

    参数:
        config_path: 可选的配置文件路径。为 None 时使用默认路径。

    返回:
        Config 配置对象实例
    """
    path = config_path or get_config_path()

    if path.exists():
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return Config(**convert_keys(data))
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning(f"Failed to load config from {path}: {e}; using defaults")

    return Config()


def save_config(config: Config, config_path: Path | None = None) -> Path:
    """
    将配置对象保存为 JSON 文件（camelCase 键名，带缩进）。

    返回:
        实际写入的文件路径
    """
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    data = convert_to_camel(config.model_dump())
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    return path


def convert_keys(data: Any) -> Any:
    """递归地将字典键名从 camelCase 转换为 snake_case。"""
    if isinstance(data, dict):
        return {camel_to_snake(k): convert_keys(v) for k, v in data.items()}
    if isinstance(data, list):
        return [convert_keys(item) for item in data]
    return data


def convert_to_camel(data: Any) -> Any:
    """递归地将字典键名从 snake_case 转换为 camelCase。"""
    if isinstance(data, dict):
        return {snake_to_camel(k): convert_to_camel(v) for k, v in data.items()}
    if isinstance(data, list):
        return [convert_to_camel(item) for item in data]
    return data


def camel_to_snake(name: str) -> str:
    """
    将 camelCase 字符串转换为 snake_case。
    例: "ttlS" → "ttl_s", "bridgeUrl" → "bridge_url"
    """
    result = []
    for i, char in enumerate(name):
        if char.isupper() and i > 0:
            result.append("_")
        result.append(char.lower())
    return "".join(result)


def snake_to_camel(name: str) -> str:
    """
    将 snake_case 字符串转换为 camelCase。
    例: "bridge_url" → "bridgeUrl", "ttl_s" → "ttlS"
    """
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)
