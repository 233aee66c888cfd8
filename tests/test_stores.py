"""
测试存储层

- SourceKeyReader 分页与聚合
- ChainLookup 查询、多行取舍、非法 ID
- CacheStore 幂等 upsert 与聚合
"""

import pytest

from conftest import node_id

from pool_monitor.chain import ChainLookup
from pool_monitor.errors import ChainLookupError, MalformedIdentifierError, TransientIOError
from pool_monitor.models import ActivationRecord, RoundRegistration
from pool_monitor.source import SourceKeyReader


class TestSourceKeyReader:

    def test_empty_source(self, source, ledger):
        assert source.total_count() == 0
        assert source.total_units() == 0
        assert source.page(50, 0) == []

    def test_counts_and_units(self, source, ledger):
        for i in range(1, 4):
            ledger.add_key(node_id(i), 10 * i)
        assert source.total_count() == 3
        assert source.total_units() == 60

    def test_page_skips_rows_without_units(self, source, ledger):
        ledger.add_key(node_id(1), 4)
        ledger.add_raw_key(bytes.fromhex(node_id(2)), None)
        ledger.add_key(node_id(3), 6)

        keys = source.page(10, 0)
        assert [k.node_id for k in keys] == [node_id(1), node_id(3)]
        assert source.total_count() == 3
        assert source.total_units() == 10

    def test_page_order_is_insertion_order(self, source, ledger):
        ids = [node_id(i) for i in (9, 3, 7, 1, 5)]
        for nid in ids:
            ledger.add_key(nid, 4)

        first = source.page(2, 0)
        second = source.page(2, 2)
        third = source.page(2, 4)

        assert [k.node_id for k in first + second + third] == ids
        assert all(k.allocated_units == 4 for k in first)

    def test_missing_database_is_transient(self, tmp_path):
        reader = SourceKeyReader(str(tmp_path / "missing.sql"))
        with pytest.raises(TransientIOError):
            reader.total_count()


class TestChainLookup:

    def test_registration_not_found(self, chain, ledger):
        assert chain.lookup_registration(node_id(1), 4) is None
        assert chain.list_registrations(node_id(1), 4) == []

    def test_registration_found(self, chain, ledger):
        ledger.add_registration(node_id(1), 4, round_end=1234, address=b"\x01\x02")
        reg = chain.lookup_registration(node_id(1), 4)
        assert reg.node_id == node_id(1)
        assert reg.round_id == "4"
        assert reg.deadline == 1234
        assert reg.address == "0102"

    def test_registration_tie_break_latest_deadline(self, chain, ledger):
        ledger.add_registration(node_id(1), 4, round_end=200, address=b"\x02")
        ledger.add_registration(node_id(1), 4, round_end=300, address=b"\x03")
        ledger.add_registration(node_id(1), 4, round_end=100, address=b"\x01")

        assert chain.lookup_registration(node_id(1), 4).address == "03"
        assert [r.deadline for r in chain.list_registrations(node_id(1), 4)] == [300, 200, 100]

    def test_activation_found(self, chain, ledger):
        ledger.add_activation(node_id(2), 4, effective_units=7, atx_id=b"\xab" * 4, coinbase=b"\xcd")
        atx = chain.lookup_activation(node_id(2), 4)
        assert atx.epoch == 4
        assert atx.effective_units == 7
        assert atx.activation_id == "abababab"
        assert atx.reward_address == "cd"
        assert chain.lookup_activation(node_id(2), 5) is None

    def test_malformed_id(self, chain, ledger):
        with pytest.raises(MalformedIdentifierError):
            chain.lookup_registration("not-hex", 4)
        with pytest.raises(MalformedIdentifierError):
            chain.lookup_activation("", 4)

    def test_io_failure_is_chain_lookup_error(self, tmp_path):
        lookup = ChainLookup(str(tmp_path / "nope.sql"), str(tmp_path / "nope2.sql"))
        with pytest.raises(ChainLookupError):
            lookup.lookup_activation(node_id(1), 4)


class TestCacheStore:

    def test_upsert_registration_is_idempotent(self, cache):
        reg = RoundRegistration(node_id=node_id(1), round_id="4", deadline=10, address="aa")
        for _ in range(3):
            cache.upsert_registration(node_id(1), 8, reg)

        assert cache.aggregate_registered(4) == (1, 8)
        assert cache.aggregate_registered("4") == (1, 8)

    def test_upsert_registration_updates_units(self, cache):
        reg = RoundRegistration(node_id=node_id(1), round_id="4")
        cache.upsert_registration(node_id(1), 8, reg)
        cache.upsert_registration(node_id(1), 16, reg)
        assert cache.aggregate_registered(4) == (1, 16)

    def test_upsert_activation_is_idempotent(self, cache):
        atx = ActivationRecord(node_id=node_id(1), epoch=4, activation_id="ff", effective_units=6)
        cache.upsert_activation(node_id(1), 8, atx)
        cache.upsert_activation(node_id(1), 8, atx)
        cache.upsert_activation(node_id(2), 8, atx.model_copy(update={"node_id": node_id(2)}))

        assert cache.aggregate_activated(4) == (2, 12)
        assert cache.aggregate_activated(5) == (0, 0)

    def test_lookup_activation_cached(self, cache):
        atx = ActivationRecord(node_id=node_id(1), epoch=4, activation_id="ff",
                               effective_units=6, reward_address="cb")
        cache.upsert_activation(node_id(1), 8, atx)

        assert cache.lookup_activation_cached(node_id(1), 4) == atx
        assert cache.lookup_activation_cached(node_id(1), 3) is None

    def test_init_schema_is_repeatable(self, cache):
        cache.init_schema()
        assert cache.aggregate_registered(1) == (0, 0)
