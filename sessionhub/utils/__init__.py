"""
工具函数模块 - 提供 sessionhub 项目全局通用的辅助函数。

本模块包含：
- ensure_dir：确保目录存在
- remove_dir：尽力递归删除目录
- safe_filename：外部输入转安全文件名
"""

from sessionhub.utils.helpers import ensure_dir, remove_dir, safe_filename

__all__ = ["ensure_dir", "remove_dir", "safe_filename"]
