"""
异常定义

- TransientIOError：RPC / 数据库不可达，下一轮对账或下一次请求自然重试
- ChainLookupError：链上记录查询 I/O 失败
- MalformedIdentifierError：节点 ID 无法解析，只影响单个 key

"未找到"不是异常，用 None / 空列表表示。
"""


class PoolMonitorError(Exception):
    """Base class for pool monitor errors."""


class TransientIOError(PoolMonitorError):
    """RPC 或数据库暂时不可用"""


class ChainLookupError(TransientIOError):
    pass


class MalformedIdentifierError(PoolMonitorError):
    def __init__(self, node_id, reason: str = "not a hex string"):
        super().__init__(f"malformed node id {node_id!r}: {reason}")
        self.node_id = node_id
