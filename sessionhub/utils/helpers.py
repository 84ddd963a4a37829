"""
工具函数集合 - sessionhub 项目全局通用的辅助函数。

函数分类：
- 路径管理：ensure_dir, safe_filename
- 目录清理：remove_dir（尽力删除，失败只记日志）
- 时间工具：monotonic_s
"""

import asyncio
import shutil
import time
from pathlib import Path

from loguru import logger


def ensure_dir(path: Path) -> Path:
    """
    确保目录存在，不存在则递归创建。

    参数:
        path: 目标目录路径

    返回:
        创建后的目录路径（原样返回）
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


async def remove_dir(path: Path) -> bool:
    """
    递归删除目录（尽力而为）。

    删除在线程池中执行，不阻塞事件循环；任何失败只记录日志，不抛出。

    返回:
        True 表示目录已删除，False 表示目录不存在或删除失败
    """
    if not path.exists():
        return False
    try:
        await asyncio.to_thread(shutil.rmtree, path)
        logger.debug(f"Deleted directory: {path}")
        return True
    except OSError as e:
        logger.warning(f"Could not delete directory {path}: {e}")
        return False


def monotonic_s() -> float:
    """单调时钟秒数，用于活动时间和超时计算（不受系统时间调整影响）。"""
    return time.monotonic()


def safe_filename(name: str) -> str:
    """
    将字符串转换为安全的文件名。

    替换的不安全字符包括：< > : " / \\ | ? * 以及空白
    会话 ID 和媒体 ID 都来自外部，拼接进路径前必须经过这里。
    """
    unsafe = '<>:"/\\|?* \t\n'
    for char in unsafe:
        name = name.replace(char, "_")
    return name.strip("._") or "_"
