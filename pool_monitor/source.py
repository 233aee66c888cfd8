"""
本地承诺读取

矿池自己的 initial_post 表（外部权威数据，只读）。
"""

import logging
from typing import List

from pydantic import ValidationError

from .database import Database
from .models import StorageCommitment
from .utils import encode_id

logger = logging.getLogger(__name__)


class SourceKeyReader(Database):
    """initial_post 只读访问"""

    def __init__(self, db_path: str, timeout: int = 30):
        super().__init__(db_path, timeout=timeout, read_only=True)

    def total_count(self) -> int:
        """承诺总数"""
        with self.get_conn() as conn:
            return conn.execute("SELECT COUNT(*) FROM initial_post").fetchone()[0]

    def total_units(self) -> int:
        """承诺单元总数（空表为 0）"""
        with self.get_conn() as conn:
            return conn.execute("SELECT COALESCE(SUM(num_units), 0) FROM initial_post").fetchone()[0]

    def page(self, limit: int, offset: int) -> List[StorageCommitment]:
        """
        分页读取承诺

        按 rowid 排序，保证分页确定且不重叠。
        单行数据非法（如 num_units 为 NULL）时记录并跳过该行，
        因此返回条数可能少于 limit。
        """
        with self.get_conn() as conn:
            cursor = conn.execute("""
                SELECT rowid, id, num_units
                FROM initial_post
                ORDER BY rowid
                LIMIT ? OFFSET ?
            """, (limit, offset))
            rows = cursor.fetchall()

        keys = []
        for row in rows:
            try:
                keys.append(StorageCommitment(node_id=encode_id(row["id"]), allocated_units=row["num_units"]))
            except ValidationError as e:
                logger.warning(
                    f"Skip malformed initial_post row {row['rowid']}: "
                    f"{e.error_count()} invalid field(s)"
                )
        return keys
