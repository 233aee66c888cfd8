"""
链上记录查询

- poet_registration：PoET 轮次注册（节点 local.sql）
- atxs：ATX 激活记录（节点 state.sql）

两者均为外部权威数据，只读。未找到返回 None / 空列表，
只有 I/O 失败才抛 ChainLookupError。
"""

import logging
from typing import List, Optional

from .database import Database
from .errors import ChainLookupError
from .models import ActivationRecord, RoundRegistration
from .utils import decode_id, encode_id

logger = logging.getLogger(__name__)


class LedgerDatabase(Database):
    """只读链上库，错误统一为 ChainLookupError"""

    error_cls = ChainLookupError

    def __init__(self, db_path: str, timeout: int = 30):
        super().__init__(db_path, timeout=timeout, read_only=True)


class ChainLookup:
    """注册 / 激活记录查询"""

    def __init__(self, registration_path: str, activation_path: str, timeout: int = 30):
        self.registrations = LedgerDatabase(registration_path, timeout=timeout)
        self.activations = LedgerDatabase(activation_path, timeout=timeout)

    def list_registrations(self, node_id: str, round_id) -> List[RoundRegistration]:
        """
        某节点某轮的全部注册记录

        排序：round_end 倒序，其次 rowid 倒序（最新的在前）。

        Raises:
            MalformedIdentifierError: node_id 非法
            ChainLookupError: 查询失败
        """
        raw_id = decode_id(node_id)
        with self.registrations.get_conn() as conn:
            cursor = conn.execute("""
                SELECT address, round_id, round_end
                FROM poet_registration
                WHERE id = ? AND round_id = ?
                ORDER BY round_end DESC, rowid DESC
            """, (raw_id, str(round_id)))
            return [
                RoundRegistration(
                    node_id=node_id,
                    round_id=str(row["round_id"]),
                    deadline=row["round_end"] or 0,
                    address=encode_id(row["address"]),
                )
                for row in cursor.fetchall()
            ]

    def lookup_registration(self, node_id: str, round_id) -> Optional[RoundRegistration]:
        """某节点某轮的注册记录（多条时取最新一条）"""
        registrations = self.list_registrations(node_id, round_id)
        if len(registrations) > 1:
            logger.debug(f"{len(registrations)} registrations for {node_id} round {round_id}, using latest")
        return registrations[0] if registrations else None

    def lookup_activation(self, node_id: str, epoch: int) -> Optional[ActivationRecord]:
        """某节点某纪元的 ATX（多条时取 rowid 最大的一条）"""
        raw_id = decode_id(node_id)
        with self.activations.get_conn() as conn:
            row = conn.execute("""
                SELECT id, epoch, effective_num_units, coinbase
                FROM atxs
                WHERE pubkey = ? AND epoch = ?
                ORDER BY rowid DESC
                LIMIT 1
            """, (raw_id, epoch)).fetchone()
            if row is None:
                return None
            return ActivationRecord(
                node_id=node_id,
                epoch=row["epoch"],
                activation_id=encode_id(row["id"]),
                effective_units=row["effective_num_units"] or 0,
                reward_address=encode_id(row["coinbase"]),
            )
