"""
测试公共夹具

在 tmp_path 下创建三个 SQLite 库：
- local.sql：initial_post + poet_registration
- state.sql：atxs
- poolstats.db：缓存库
"""

import asyncio
import sqlite3
import sys
from pathlib import Path

import pytest

# 添加项目路径到 sys.path
sys.path.insert(0, str(Path(__file__).parent.parent))

from pool_monitor.aggregation import AggregationService
from pool_monitor.chain import ChainLookup
from pool_monitor.config import AppConfig, DatabaseConfig
from pool_monitor.context import AppContext
from pool_monitor.database import CacheStore
from pool_monitor.epoch_clock import compute_window
from pool_monitor.errors import TransientIOError
from pool_monitor.source import SourceKeyReader
from pool_monitor.synchronizer import Synchronizer


LOCAL_SCHEMA = """
CREATE TABLE IF NOT EXISTS initial_post (
    id BLOB NOT NULL,
    num_units INTEGER
);
CREATE TABLE IF NOT EXISTS poet_registration (
    id BLOB NOT NULL,
    address BLOB,
    round_id TEXT NOT NULL,
    round_end INTEGER
);
"""

STATE_SCHEMA = """
CREATE TABLE IF NOT EXISTS atxs (
    id BLOB NOT NULL,
    pubkey BLOB NOT NULL,
    epoch INTEGER NOT NULL,
    effective_num_units INTEGER NOT NULL,
    coinbase BLOB
);
"""


def node_id(i: int) -> str:
    """测试用节点 ID（32 字节 hex）"""
    return f"{i:064x}"


class FakeClock:
    """可控的纪元时钟"""

    def __init__(self, epoch: int = 5, layer: int = None, fail: bool = False):
        self.epoch = epoch
        self.layer = layer if layer is not None else epoch * 4032
        self.fail = fail
        self.delay = 0.0
        self.calls = 0

    async def window(self):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise TransientIOError("node unreachable")
        return compute_window(self.epoch, self.layer)

    def open_next_round(self):
        """推进到下一轮已开放的 layer"""
        self.layer = self.epoch * 4032 + 2880


class Ledger:
    """往外部库写测试数据"""

    def __init__(self, local_path: Path, state_path: Path):
        self.local_path = local_path
        self.state_path = state_path
        with sqlite3.connect(local_path) as conn:
            conn.executescript(LOCAL_SCHEMA)
        with sqlite3.connect(state_path) as conn:
            conn.executescript(STATE_SCHEMA)

    def add_key(self, nid: str, units: int):
        with sqlite3.connect(self.local_path) as conn:
            conn.execute("INSERT INTO initial_post (id, num_units) VALUES (?, ?)", (bytes.fromhex(nid), units))

    def add_raw_key(self, raw_id, units: int):
        with sqlite3.connect(self.local_path) as conn:
            conn.execute("INSERT INTO initial_post (id, num_units) VALUES (?, ?)", (raw_id, units))

    def add_registration(self, nid: str, round_id: int, round_end: int = 1000, address: bytes = b"\xaa"):
        with sqlite3.connect(self.local_path) as conn:
            conn.execute(
                "INSERT INTO poet_registration (id, address, round_id, round_end) VALUES (?, ?, ?, ?)",
                (bytes.fromhex(nid), address, str(round_id), round_end)
            )

    def add_activation(self, nid: str, epoch: int, effective_units: int, atx_id: bytes = None,
                       coinbase: bytes = b"\xcb"):
        atx_id = atx_id or bytes.fromhex(nid)[:16] + epoch.to_bytes(16, "big")
        with sqlite3.connect(self.state_path) as conn:
            conn.execute(
                "INSERT INTO atxs (id, pubkey, epoch, effective_num_units, coinbase) VALUES (?, ?, ?, ?, ?)",
                (atx_id, bytes.fromhex(nid), epoch, effective_units, coinbase)
            )


@pytest.fixture
def ledger(tmp_path) -> Ledger:
    return Ledger(tmp_path / "local.sql", tmp_path / "state.sql")


@pytest.fixture
def source(ledger) -> SourceKeyReader:
    return SourceKeyReader(str(ledger.local_path))


@pytest.fixture
def chain(ledger) -> ChainLookup:
    return ChainLookup(str(ledger.local_path), str(ledger.state_path))


@pytest.fixture
def cache(tmp_path) -> CacheStore:
    store = CacheStore(str(tmp_path / "poolstats.db"))
    store.init_schema()
    return store


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(epoch=5)


@pytest.fixture
def synchronizer(clock, source, chain, cache) -> Synchronizer:
    return Synchronizer(clock=clock, source=source, chain=chain, cache=cache, page_size=50, interval=0)


@pytest.fixture
def aggregation(clock, source, chain, cache) -> AggregationService:
    return AggregationService(clock=clock, source=source, chain=chain, cache=cache)


@pytest.fixture
def ctx(tmp_path, ledger, clock, source, chain, cache, synchronizer, aggregation) -> AppContext:
    config = AppConfig(database=DatabaseConfig(
        source_path=str(ledger.local_path),
        registration_path=str(ledger.local_path),
        activation_path=str(ledger.state_path),
        cache_path=str(tmp_path / "poolstats.db"),
    ))
    return AppContext(
        config=config,
        clock=clock,
        source=source,
        chain=chain,
        cache=cache,
        synchronizer=synchronizer,
        aggregation=aggregation,
    )
