# engine/economy.py
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from engine.activity import ActivityTracker
from engine.claims import ClaimLedger
from engine.distributor import RewardDistributor
from engine.scheduler import BlockScheduler
from engine.staking import StakingEngine, curve_from_name
from engine.supply import SupplyController
from storage.base import Storage
from utils.clock import utc_now
from utils.price import PriceOracle
from utils.units import to_units


@dataclass
class Economy:
    """All engine components wired to one storage backend"""
    storage: Storage
    price_oracle: PriceOracle
    supply: SupplyController
    activity: ActivityTracker
    distributor: RewardDistributor
    claims: ClaimLedger
    staking: StakingEngine
    scheduler: BlockScheduler

    async def close(self):
        self.scheduler.stop()
        await self.price_oracle.close()
        await self.storage.close()


def build_economy(
    storage: Storage,
    config,
    price_oracle: PriceOracle,
    clock: Callable[[], datetime] = utc_now,
) -> Economy:
    period = config.BLOCK_PERIOD_SECONDS
    supply = SupplyController(
        storage,
        max_supply=to_units(config.MAX_SUPPLY),
        initial_reward=to_units(config.INITIAL_BLOCK_REWARD),
        halving_interval=config.HALVING_INTERVAL,
        period_seconds=period,
        reward_asset=config.REWARD_ASSET,
    )
    activity = ActivityTracker(
        storage,
        inactivity_window=timedelta(hours=config.INACTIVITY_WINDOW_HOURS),
        period_seconds=period,
        clock=clock,
    )
    distributor = RewardDistributor(
        storage,
        activity,
        claim_window=timedelta(hours=config.CLAIM_WINDOW_HOURS),
        dust_threshold=config.DUST_THRESHOLD_UNITS,
        clock=clock,
    )
    claims = ClaimLedger(storage, activity, reward_asset=config.REWARD_ASSET, clock=clock)
    staking = StakingEngine(
        storage,
        price_oracle,
        curve_from_name(config.APR_CURVE),
        asset=config.STAKE_ASSET,
        min_amount=to_units(config.MIN_STAKE_AMOUNT),
        clock=clock,
    )
    scheduler = BlockScheduler(
        storage, supply, distributor, claims, staking,
        period_seconds=period,
        poll_interval=config.SCHEDULER_POLL_INTERVAL,
        auto_mature=config.STAKE_AUTO_MATURE,
        clock=clock,
    )
    return Economy(
        storage=storage,
        price_oracle=price_oracle,
        supply=supply,
        activity=activity,
        distributor=distributor,
        claims=claims,
        staking=staking,
        scheduler=scheduler,
    )
