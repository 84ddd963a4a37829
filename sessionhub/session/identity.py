"""
用户身份派生 - 从设备指纹计算稳定的用户 ID。

同一份设备信息（无论字段顺序如何）总是得到同一个用户 ID，
因此同一台设备重复登录会命中同一个用户映射，从而触发旧会话取代。
"""

import hashlib
import json
from typing import Any

USER_ID_LENGTH = 16


def derive_user_id(device_info: dict[str, Any] | str) -> str:
    """
    计算用户 ID：设备信息规范化 JSON 的 SHA-256 十六进制摘要前 16 位。

    参数:
        device_info: 设备指纹（字典会按键排序后序列化；字符串直接使用）

    返回:
        16 位小写十六进制字符串
    """
    if isinstance(device_info, str):
        canonical = device_info
    else:
        canonical = json.dumps(device_info, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:USER_ID_LENGTH]
