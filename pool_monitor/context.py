"""
应用上下文

启动时构建一次，同时交给对账任务与 API（app.state.ctx），不使用模块级全局变量。
"""

from dataclasses import dataclass

from .aggregation import AggregationService
from .chain import ChainLookup
from .config import AppConfig
from .database import CacheStore
from .epoch_clock import EpochClock
from .source import SourceKeyReader
from .synchronizer import Synchronizer


@dataclass
class AppContext:
    config: AppConfig
    clock: EpochClock
    source: SourceKeyReader
    chain: ChainLookup
    cache: CacheStore
    synchronizer: Synchronizer
    aggregation: AggregationService


def build_context(config: AppConfig) -> AppContext:
    """根据配置构建所有组件"""
    db = config.database
    clock = EpochClock(
        endpoint=config.node.endpoint,
        timeout=config.node.timeout,
        layers_per_epoch=config.epoch.layers_per_epoch,
        round_open_offset=config.epoch.round_open_offset,
    )
    source = SourceKeyReader(db.source_path, timeout=db.timeout)
    chain = ChainLookup(db.registration_path, db.activation_path, timeout=db.timeout)
    cache = CacheStore(db.cache_path, timeout=db.timeout)

    synchronizer = Synchronizer(
        clock=clock,
        source=source,
        chain=chain,
        cache=cache,
        page_size=config.sync.page_size,
        interval=config.sync.interval,
        concurrency=config.sync.concurrency,
        align_to_interval=config.sync.align_to_interval,
    )
    aggregation = AggregationService(clock=clock, source=source, chain=chain, cache=cache)

    return AppContext(
        config=config,
        clock=clock,
        source=source,
        chain=chain,
        cache=cache,
        synchronizer=synchronizer,
        aggregation=aggregation,
    )
