"""
数据库操作抽象层

封装所有 SQLite 操作：
- Database：连接管理基类（只读库 / 自有库通用）
- CacheStore：本系统自有的缓存库，注册 / 激活记录的幂等镜像与聚合查询
"""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Optional, Tuple, Type

from .errors import TransientIOError
from .models import ActivationRecord, RoundRegistration
from .utils import utc_now_iso

logger = logging.getLogger(__name__)


class Database:
    """数据库操作基类"""

    error_cls: Type[TransientIOError] = TransientIOError

    def __init__(self, db_path: str, timeout: int = 30, read_only: bool = False):
        """
        初始化数据库连接参数

        Args:
            db_path: 数据库文件路径
            timeout: 锁等待超时（秒）
            read_only: 以只读模式打开（外部库，本系统不写）
        """
        self.db_path = Path(db_path)
        self.timeout = timeout
        self.read_only = read_only

        if not read_only:
            # 确保目录存在
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        if self.read_only:
            uri = f"{self.db_path.resolve().as_uri()}?mode=ro"
            return sqlite3.connect(uri, uri=True, timeout=self.timeout)
        return sqlite3.connect(str(self.db_path), timeout=self.timeout)

    @contextmanager
    def get_conn(self):
        """
        获取数据库连接（上下文管理器）

        每次调用独立连接、独立事务；sqlite3.Error 统一转换为 error_cls。

        使用方式：
            with db.get_conn() as conn:
                cursor = conn.execute("SELECT ...")
        """
        try:
            conn = self._connect()
        except sqlite3.Error as e:
            raise self.error_cls(f"cannot open {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise self.error_cls(f"{self.db_path.name}: {e}") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()


CACHE_SCHEMA = """
CREATE TABLE IF NOT EXISTS cached_registrations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    node_id TEXT NOT NULL,
    round_id TEXT NOT NULL,
    units INTEGER NOT NULL DEFAULT 0,
    deadline INTEGER NOT NULL DEFAULT 0,
    address TEXT NOT NULL DEFAULT '',
    updated_at TEXT NOT NULL,
    UNIQUE (node_id, round_id)
);

CREATE INDEX IF NOT EXISTS idx_cached_registrations_round ON cached_registrations(round_id);

CREATE TABLE IF NOT EXISTS cached_activations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    node_id TEXT NOT NULL,
    epoch INTEGER NOT NULL,
    activation_id TEXT NOT NULL DEFAULT '',
    effective_units INTEGER NOT NULL DEFAULT 0,
    units INTEGER NOT NULL DEFAULT 0,
    reward_address TEXT NOT NULL DEFAULT '',
    updated_at TEXT NOT NULL,
    UNIQUE (node_id, epoch)
);

CREATE INDEX IF NOT EXISTS idx_cached_activations_epoch ON cached_activations(epoch);
"""


class CacheStore(Database):
    """
    缓存库

    只有 Synchronizer 写入；每次 upsert 单独提交，
    (node_id, round_id) / (node_id, epoch) 唯一，重复对账只会更新不会重复插入。
    行永不删除。
    """

    def init_schema(self):
        """建表（幂等），并切换到 WAL 以便读请求不会看到半写入的行"""
        with self.get_conn() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(CACHE_SCHEMA)
        logger.info(f"Cache schema ready: {self.db_path}")

    # =========================================================================
    # 写入
    # =========================================================================

    def upsert_registration(self, node_id: str, units: int, registration: RoundRegistration):
        """写入 / 更新一条注册镜像"""
        with self.get_conn() as conn:
            conn.execute("""
                INSERT INTO cached_registrations (node_id, round_id, units, deadline, address, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT (node_id, round_id) DO UPDATE SET
                    units = excluded.units,
                    deadline = excluded.deadline,
                    address = excluded.address,
                    updated_at = excluded.updated_at
            """, (
                node_id, str(registration.round_id), units,
                registration.deadline, registration.address, utc_now_iso()
            ))

    def upsert_activation(self, node_id: str, units: int, activation: ActivationRecord):
        """写入 / 更新一条激活镜像"""
        with self.get_conn() as conn:
            conn.execute("""
                INSERT INTO cached_activations (
                    node_id, epoch, activation_id, effective_units, units, reward_address, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (node_id, epoch) DO UPDATE SET
                    activation_id = excluded.activation_id,
                    effective_units = excluded.effective_units,
                    units = excluded.units,
                    reward_address = excluded.reward_address,
                    updated_at = excluded.updated_at
            """, (
                node_id, activation.epoch, activation.activation_id,
                activation.effective_units, units, activation.reward_address, utc_now_iso()
            ))

    # =========================================================================
    # 聚合查询
    # =========================================================================

    def aggregate_registered(self, round_id) -> Tuple[int, int]:
        """某轮已注册节点数与承诺单元总数"""
        with self.get_conn() as conn:
            row = conn.execute("""
                SELECT COUNT(*) AS count, COALESCE(SUM(units), 0) AS num_units
                FROM cached_registrations
                WHERE round_id = ?
            """, (str(round_id),)).fetchone()
            return row["count"], row["num_units"]

    def aggregate_activated(self, epoch: int) -> Tuple[int, int]:
        """某纪元已激活节点数与有效单元总数"""
        with self.get_conn() as conn:
            row = conn.execute("""
                SELECT COUNT(*) AS count, COALESCE(SUM(effective_units), 0) AS num_units
                FROM cached_activations
                WHERE epoch = ?
            """, (epoch,)).fetchone()
            return row["count"], row["num_units"]

    def lookup_activation_cached(self, node_id: str, epoch: int) -> Optional[ActivationRecord]:
        """按节点 + 纪元读取缓存中的激活记录"""
        with self.get_conn() as conn:
            row = conn.execute("""
                SELECT node_id, epoch, activation_id, effective_units, reward_address
                FROM cached_activations
                WHERE node_id = ? AND epoch = ?
            """, (node_id, epoch)).fetchone()
            return ActivationRecord(**dict(row)) if row else None
