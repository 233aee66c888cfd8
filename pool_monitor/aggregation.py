"""
总览 / 单节点视图计算

降级策略（可用性优先于准确性）：
- 纪元时钟不可用：所有依赖纪元的字段为 0 / 空
- 单个存储读失败：只有该字段为 0 / 空
每次降级都会记录 warning，API 仍返回 200。
"""

import asyncio
import logging
from typing import Callable, List, Optional, Tuple, TypeVar

from .chain import ChainLookup
from .database import CacheStore
from .epoch_clock import EpochClock
from .errors import PoolMonitorError, TransientIOError
from .models import (
    ActivationRecord, CountItem, CurrentNextItem, NodeInfo, Overview,
    RoundRegistration, StorageCommitment, WindowView
)
from .source import SourceKeyReader

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AggregationService:
    """总览与单节点信息"""

    def __init__(
        self,
        clock: EpochClock,
        source: SourceKeyReader,
        chain: ChainLookup,
        cache: CacheStore
    ):
        self.clock = clock
        self.source = source
        self.chain = chain
        self.cache = cache

    async def _degrade(self, field: str, fn: Callable[..., T], *args, default: T) -> T:
        """在线程中执行存储读取；失败时记录并返回默认值"""
        try:
            return await asyncio.to_thread(fn, *args)
        except PoolMonitorError as e:
            logger.warning(f"Degraded {field} to default: {e}")
            return default

    async def _window(self) -> Optional[WindowView]:
        try:
            return await self.clock.window()
        except TransientIOError as e:
            logger.warning(f"Epoch clock unavailable, epoch fields degraded: {e}")
            return None

    async def _count_item(self, field: str, fn: Callable[..., Tuple[int, int]], arg) -> CountItem:
        count, num_units = await self._degrade(field, fn, arg, default=(0, 0))
        return CountItem(count=count, num_units=num_units)

    async def overview(self) -> Overview:
        """
        总览

        init_posted 来自本地承诺库；registered / activated 来自缓存库，
        current 取 epoch - 1，next 取 epoch。
        """
        count = await self._degrade("init_posted.count", self.source.total_count, default=0)
        units = await self._degrade("init_posted.num_units", self.source.total_units, default=0)
        overview = Overview(init_posted=CountItem(count=count, num_units=units))

        window = await self._window()
        if window is None:
            return overview

        next_id = window.epoch
        overview.registered = CurrentNextItem(
            current=await self._count_item(
                "registered.current", self.cache.aggregate_registered, window.current_round),
            next=await self._count_item(
                "registered.next", self.cache.aggregate_registered, next_id),
        )
        overview.activated = CurrentNextItem(
            current=await self._count_item(
                "activated.current", self.cache.aggregate_activated, window.current_epoch_for_activation),
            next=await self._count_item(
                "activated.next", self.cache.aggregate_activated, next_id),
        )
        return overview

    async def _node_info(self, key: StorageCommitment, window: Optional[WindowView]) -> NodeInfo:
        info = NodeInfo(
            id=key.node_id,
            num_units=key.allocated_units,
            atx=ActivationRecord.empty(key.node_id),
        )
        if window is None:
            return info

        empty: List[RoundRegistration] = []
        # 注册实时查链（缓存可能滞后一轮对账）
        info.registrations = await self._degrade(
            f"registrations[{key.node_id}]",
            self.chain.list_registrations, key.node_id, window.current_round,
            default=empty,
        )
        if window.next_round is not None:
            info.next_registrations = await self._degrade(
                f"next_registrations[{key.node_id}]",
                self.chain.list_registrations, key.node_id, window.next_round,
                default=empty,
            )
        # 激活读缓存（纪元内变化很少）
        atx = await self._degrade(
            f"atx[{key.node_id}]",
            self.cache.lookup_activation_cached, key.node_id, window.current_epoch_for_activation,
            default=None,
        )
        if atx is not None:
            info.atx = atx
        return info

    async def nodes_info(self, limit: int, offset: int) -> List[NodeInfo]:
        """按本地承诺分页顺序返回节点信息"""
        keys = await self._degrade("nodes_info.page", self.source.page, limit, offset, default=[])
        if not keys:
            return []

        window = await self._window()
        return [await self._node_info(key, window) for key in keys]
