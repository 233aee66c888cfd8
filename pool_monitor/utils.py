"""
工具函数模块
"""

from datetime import datetime, timezone

from .errors import MalformedIdentifierError


def utc_now_iso() -> str:
    """当前 UTC 时间（ISO 8601，秒精度）"""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def encode_id(raw) -> str:
    """BLOB → 小写 hex；已经是字符串的原样返回"""
    if raw is None:
        return ""
    if isinstance(raw, (bytes, bytearray, memoryview)):
        return bytes(raw).hex()
    return str(raw)


def decode_id(node_id: str) -> bytes:
    """
    hex → BLOB

    Raises:
        MalformedIdentifierError: 非法 hex（只影响单个节点，不影响整批）
    """
    if not isinstance(node_id, str) or not node_id:
        raise MalformedIdentifierError(node_id, "empty")
    value = node_id[2:] if node_id.startswith("0x") else node_id
    try:
        return bytes.fromhex(value)
    except ValueError as e:
        raise MalformedIdentifierError(node_id) from e
