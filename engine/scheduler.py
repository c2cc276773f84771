# engine/scheduler.py
import asyncio
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Dict, Optional

import backoff

from config import settings
from engine.claims import ClaimLedger
from engine.distributor import RewardDistributor
from engine.errors import PriceUnavailable, StorageUnavailable
from engine.models import KEY_LAST_STAKING_PAYOUT, Block, TickResult
from engine.staking import StakingEngine
from engine.supply import SupplyController
from storage.base import Storage
from utils.clock import period_of, seconds_until_next_period, utc_now
from utils.logging import logger

STORAGE_UNAVAILABLE = "storage_unavailable"


def _retry_storage(func):
    return backoff.on_exception(
        backoff.expo,
        StorageUnavailable,
        max_time=lambda: settings.SCHEDULER_RETRY_MAX_TIME,
        max_value=10,
    )(func)


class BlockScheduler:
    """Produces one block per period and runs the daily housekeeping.

    Every step is idempotent on its own: the period marker guards production,
    the forfeited flag guards the sweep and the per-day payout marker guards
    staking, so a re-entered or repeated tick is harmless. A block whose
    supply was committed but whose claims could not be written is settled
    again from its allocation snapshot on every later tick until it lands.
    """

    def __init__(
        self,
        storage: Storage,
        supply: SupplyController,
        distributor: RewardDistributor,
        claims: ClaimLedger,
        staking: StakingEngine,
        period_seconds: int = 86400,
        poll_interval: int = 30,
        auto_mature: bool = False,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.storage = storage
        self.supply = supply
        self.distributor = distributor
        self.claims = claims
        self.staking = staking
        self.period_seconds = period_seconds
        self.poll_interval = poll_interval
        self.auto_mature = auto_mature
        self.clock = clock
        self._lock = asyncio.Lock()
        self._stopped = asyncio.Event()
        self._unsettled: Dict[int, Block] = {}

    async def run_pending(self, now: datetime = None) -> TickResult:
        now = now or self.clock()
        return await self.tick(period_of(now, self.period_seconds), now)

    async def tick(self, period: int, now: datetime = None) -> TickResult:
        now = now or self.clock()
        async with self._lock:
            result = TickResult(period=period)

            try:
                result.blocks_recovered = await self._recover()
            except StorageUnavailable as e:
                logger.error(f"Block recovery failed, will retry: {str(e)}")

            try:
                block, reason, claims_created = await self._produce(period, now)
                result.produced = block is not None
                result.block = block
                result.claims_created = claims_created
                result.skipped_reason = reason
            except StorageUnavailable as e:
                logger.error(f"Skipping block production for period {period}: {str(e)}")
                result.skipped_reason = STORAGE_UNAVAILABLE

            try:
                result.expired_swept = (await self.claims.sweep_expired(now)).count
                await self.supply.daily_reset(now.date())
            except StorageUnavailable as e:
                logger.error(f"Claim sweep failed: {str(e)}")

            try:
                result.stakes_paid = await self._pay_staking(now)
            except (StorageUnavailable, PriceUnavailable) as e:
                # Marker not written: the next poll today retries
                logger.error(f"Staking payout failed, will retry: {str(e)}")

            if self.auto_mature:
                try:
                    result.stakes_matured = await self.staking.mature_stakes(now)
                except StorageUnavailable as e:
                    logger.error(f"Stake maturation failed: {str(e)}")

            return result

    async def _produce(self, period: int, now: datetime):
        users, slot, reason = await self._reserve(period)
        if slot is None:
            return None, reason, 0

        block = Block(
            number=slot.number,
            height=slot.height,
            reward=slot.reward,
            total_hash_power=sum((u.hash_power for u in users), Decimal("0")),
            period=period,
            produced_at=now,
            allocations=self.distributor.allocate(slot.reward, users, period),
        )
        # Supply is committed: the block stays owed to its miners until settled
        self._unsettled[block.height] = block
        claims = await self._settle(block)
        return block, None, len(claims)

    @_retry_storage
    async def _reserve(self, period: int):
        """Snapshot users and commit the supply side of the block"""
        users = await self.storage.list_users()
        eligible = self.distributor.eligible(users, period)
        eligible_power = sum((u.hash_power for u in eligible), Decimal("0"))
        slot, reason = await self.supply.on_block_produced(period, eligible_power > 0)
        return users, slot, reason

    @_retry_storage
    async def _settle(self, block: Block):
        """Write the block and its claims; every step is safe to repeat"""
        await self.storage.create_block(block)
        claims = await self.distributor.distribute(block)
        await self.storage.mark_block_distributed(block.height)
        self._unsettled.pop(block.height, None)
        return claims

    async def _recover(self) -> int:
        """Settle blocks whose supply was committed but whose claims were not written"""
        pending = dict(self._unsettled)
        for block in await self.storage.undistributed_blocks():
            pending.setdefault(block.height, block)

        recovered = 0
        for height in sorted(pending):
            claims = await self._settle(pending[height])
            recovered += 1
            logger.warning(f"Recovered block {height}: {len(claims)} claims written")
        return recovered

    @_retry_storage
    async def _pay_staking(self, now: datetime) -> Optional[int]:
        """Run the staking payout once per UTC day; None when already done"""
        today = now.date()
        last = await self.storage.get_setting(KEY_LAST_STAKING_PAYOUT)
        if last and date.fromisoformat(last) >= today:
            return None
        paid = await self.staking.pay_daily_rewards(today, now)
        await self.storage.set_setting(KEY_LAST_STAKING_PAYOUT, today.isoformat())
        return paid

    async def run_forever(self):
        logger.info(
            f"Block scheduler started: period={self.period_seconds}s poll={self.poll_interval}s"
        )
        while not self._stopped.is_set():
            try:
                result = await self.run_pending()
                if result.produced:
                    logger.info(
                        f"Period {result.period}: block {result.block.height} with "
                        f"{result.claims_created} claims"
                    )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Scheduler tick failed: {str(e)}", exc_info=True)

            delay = min(
                self.poll_interval,
                max(seconds_until_next_period(self.clock(), self.period_seconds), 0.1),
            )
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
        logger.info("Block scheduler stopped")

    def stop(self):
        self._stopped.set()
