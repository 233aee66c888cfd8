"""
对账循环

每隔 interval 秒执行一轮：
1. 从链节点读取纪元窗口（失败则放弃本轮）
2. 分页遍历 initial_post
3. 每个 key 查询当前 / 下一轮的注册与激活，命中则写入缓存库
4. 休眠后进入下一轮

单个 key 失败只记录日志并跳过，不影响同页其他 key 和整轮。
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Tuple

from .chain import ChainLookup
from .database import CacheStore
from .epoch_clock import EpochClock
from .errors import MalformedIdentifierError, PoolMonitorError, TransientIOError
from .models import PassReport, StorageCommitment, WindowView
from .source import SourceKeyReader
from .utils import utc_now_iso

logger = logging.getLogger(__name__)


class SyncState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SLEEPING = "sleeping"


class Synchronizer:
    """
    对账器（进程内单飞：同一时刻最多一轮在跑）

    唯一写缓存库的组件。多进程共用同一缓存库需外部协调，
    main 中的单实例文件锁只覆盖同一台机器。
    """

    def __init__(
        self,
        clock: EpochClock,
        source: SourceKeyReader,
        chain: ChainLookup,
        cache: CacheStore,
        page_size: int = 50,
        interval: float = 1800,
        concurrency: int = 8,
        align_to_interval: bool = False
    ):
        self.clock = clock
        self.source = source
        self.chain = chain
        self.cache = cache
        self.page_size = page_size
        self.interval = interval
        self.concurrency = concurrency
        self.align_to_interval = align_to_interval

        self.state = SyncState.IDLE
        self.last_report: Optional[PassReport] = None
        self._lock = asyncio.Lock()

    # =========================================================================
    # 单个 key
    # =========================================================================

    def _key_steps(
        self, key: StorageCommitment, window: WindowView
    ) -> List[Tuple[str, int, Callable[[], Awaitable[bool]]]]:
        """按顺序：当前注册、当前激活、下一轮注册、下一纪元激活"""
        steps = [
            ("registration", window.current_round,
             lambda: self._sync_registration(key, window.current_round)),
            ("activation", window.current_epoch_for_activation,
             lambda: self._sync_activation(key, window.current_epoch_for_activation)),
        ]
        if window.next_round is not None:
            steps.append(("registration", window.next_round,
                          lambda: self._sync_registration(key, window.next_round)))
        if window.next_epoch is not None:
            steps.append(("activation", window.next_epoch,
                          lambda: self._sync_activation(key, window.next_epoch)))
        return steps

    async def _sync_registration(self, key: StorageCommitment, round_id: int) -> bool:
        registration = await asyncio.to_thread(self.chain.lookup_registration, key.node_id, round_id)
        if registration is None:
            return False
        await asyncio.to_thread(
            self.cache.upsert_registration, key.node_id, key.allocated_units, registration
        )
        return True

    async def _sync_activation(self, key: StorageCommitment, epoch: int) -> bool:
        activation = await asyncio.to_thread(self.chain.lookup_activation, key.node_id, epoch)
        if activation is None:
            return False
        await asyncio.to_thread(
            self.cache.upsert_activation, key.node_id, key.allocated_units, activation
        )
        return True

    async def sync_key(self, key: StorageCommitment, window: WindowView, report: PassReport) -> bool:
        """
        同步单个 key

        Returns:
            全部步骤成功返回 True；任一步骤失败返回 False（其余步骤照常执行）
        """
        ok = True
        for kind, target, step in self._key_steps(key, window):
            try:
                upserted = await step()
            except MalformedIdentifierError as e:
                # 非法 ID 后续步骤必然同样失败
                logger.warning(f"Skip key: {e}")
                ok = False
                break
            except PoolMonitorError as e:
                logger.warning(f"Key {key.node_id} {kind} {target} failed: {e}")
                ok = False
                continue
            except Exception as e:
                logger.error(f"Key {key.node_id} {kind} {target} unexpected error: {e}", exc_info=True)
                ok = False
                continue

            if upserted:
                if kind == "registration":
                    report.registrations_upserted += 1
                else:
                    report.activations_upserted += 1

        if ok:
            report.keys_processed += 1
        else:
            report.failed_keys += 1
        return ok

    # =========================================================================
    # 整轮
    # =========================================================================

    async def _run_pass(self, report: PassReport):
        try:
            window = await self.clock.window()
        except TransientIOError as e:
            logger.warning(f"Sync pass aborted, epoch clock unavailable: {e}")
            report.aborted = f"epoch clock: {e}"
            return
        report.window = window

        try:
            total = await asyncio.to_thread(self.source.total_count)
        except TransientIOError as e:
            logger.warning(f"Sync pass aborted, source store unavailable: {e}")
            report.aborted = f"source: {e}"
            return
        report.total_keys = total

        logger.info(
            f"Sync pass started: {total} keys, round={window.current_round} "
            f"epoch={window.current_epoch_for_activation} next_round={window.next_round}"
        )

        semaphore = asyncio.Semaphore(self.concurrency)

        async def _guarded(key: StorageCommitment):
            async with semaphore:
                await self.sync_key(key, window, report)

        for offset in range(0, total, self.page_size):
            try:
                keys = await asyncio.to_thread(self.source.page, self.page_size, offset)
            except TransientIOError as e:
                logger.warning(f"Skip page offset={offset}: {e}")
                continue

            # 非法行已在读取时跳过，计为失败 key
            expected = min(self.page_size, total - offset)
            if len(keys) < expected:
                report.failed_keys += expected - len(keys)

            await asyncio.gather(*(_guarded(key) for key in keys))
            logger.debug(f"Synced page offset={offset} ({len(keys)} keys)")

    async def run_pass(self) -> Optional[PassReport]:
        """
        执行一轮对账

        Returns:
            本轮报告；若已有一轮在跑则直接返回 None
        """
        if self._lock.locked():
            logger.warning("Sync pass already running, skipped")
            return None

        async with self._lock:
            self.state = SyncState.RUNNING
            report = PassReport(started_at=utc_now_iso())
            try:
                await self._run_pass(report)
            finally:
                report.finished_at = utc_now_iso()
                self.last_report = report
                self.state = SyncState.IDLE

            if report.aborted is None:
                logger.info(
                    f"Sync pass completed: {report.keys_processed}/{report.total_keys} keys ok, "
                    f"{report.failed_keys} failed, {report.registrations_upserted} registrations, "
                    f"{report.activations_upserted} activations"
                )
            return report

    def sleep_seconds(self, elapsed: float) -> float:
        """固定间隔；align_to_interval 时扣除本轮耗时"""
        if self.align_to_interval:
            return max(0.0, self.interval - elapsed)
        return self.interval

    async def run_forever(self):
        """运行对账循环"""
        logger.info(
            f"Starting synchronizer loop (interval={self.interval}s, page_size={self.page_size}, "
            f"concurrency={self.concurrency})"
        )

        while True:
            started = time.monotonic()
            try:
                await self.run_pass()
            except asyncio.CancelledError:
                logger.info("Synchronizer task cancelled")
                raise
            except Exception as e:
                logger.error(f"Synchronizer loop error: {e}", exc_info=True)

            self.state = SyncState.SLEEPING
            delay = self.sleep_seconds(time.monotonic() - started)
            logger.debug(f"Next sync pass in {delay:.0f}s")
            await asyncio.sleep(delay)
            self.state = SyncState.IDLE
