import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from engine.economy import build_economy
from engine.errors import PriceUnavailable, StorageUnavailable
from engine.scheduler import STORAGE_UNAVAILABLE
from engine.supply import ALREADY_PRODUCED, NO_HASH_POWER
from storage import MemoryStorage
from utils.clock import period_of
from utils.price import StaticPriceOracle
from utils.units import COIN, to_units

from conftest import START, make_user

MIDNIGHT = datetime(2025, 3, 2, tzinfo=timezone.utc)


def seed_miners(storage):
    earlier = START - timedelta(days=1)
    storage.add_user(make_user("a", "30", earlier))
    storage.add_user(make_user("b", "70", earlier))


async def test_block_produced_once_per_period(economy, storage, clock):
    seed_miners(storage)
    await economy.supply.initialize(clock.now)

    clock.set(MIDNIGHT)
    first = await economy.scheduler.run_pending()
    clock.advance(minutes=1)
    second = await economy.scheduler.run_pending()

    assert first.produced
    assert first.block.height == 1
    assert first.block.reward == 50 * COIN
    assert first.claims_created == 2
    assert not second.produced
    assert second.skipped_reason == ALREADY_PRODUCED
    assert len(await storage.list_blocks()) == 1
    assert sum(c.reward for c in await economy.claims.pending_claims("b")) == 35 * COIN


async def test_no_block_before_first_boundary(economy, storage, clock):
    seed_miners(storage)
    await economy.supply.initialize(clock.now)

    result = await economy.scheduler.run_pending()

    assert not result.produced
    assert result.skipped_reason == ALREADY_PRODUCED


async def test_concurrent_ticks_produce_one_block(economy, storage, clock):
    seed_miners(storage)
    await economy.supply.initialize(clock.now)
    clock.set(MIDNIGHT)

    results = await asyncio.gather(*(economy.scheduler.run_pending() for _ in range(3)))

    assert sum(r.produced for r in results) == 1
    assert (await economy.supply.state()).total_blocks == 1


async def test_zero_hash_power_skips_block_but_advances_marker(economy, storage, clock):
    storage.add_user(make_user("idle", "0", START - timedelta(days=1)))
    await economy.supply.initialize(clock.now)

    clock.set(MIDNIGHT)
    result = await economy.scheduler.run_pending()

    assert not result.produced
    assert result.skipped_reason == NO_HASH_POWER
    state = await economy.supply.state()
    assert state.last_period == period_of(MIDNIGHT, 86400)
    assert state.cumulative_minted == 0
    assert await storage.latest_block() is None


async def test_staking_paid_even_when_production_skipped(economy, storage, clock):
    # Hash power backs the stake, but the user never opted in to mining
    storage.add_user(make_user("s", "1000", None, BTC="2"))
    await economy.supply.initialize(clock.now)
    stake = await economy.staking.open_stake("s", to_units("1"), 12)

    clock.set(MIDNIGHT)
    result = await economy.scheduler.run_pending()

    assert not result.produced
    assert result.stakes_paid == 1
    assert (await storage.get_stake(stake.id)).total_rewards_paid == stake.daily_reward

    clock.advance(hours=1)
    later = await economy.scheduler.run_pending()
    assert later.stakes_paid is None


async def test_staking_payout_retried_after_price_failure(storage, config, clock):
    class FlakyOracle(StaticPriceOracle):
        failures = 1

        async def current_price(self, asset):
            if self.failures:
                self.failures -= 1
                raise PriceUnavailable("price feed down")
            return await super().current_price(asset)

    economy = build_economy(storage, config, StaticPriceOracle(Decimal("100"), clock), clock)
    storage.add_user(make_user("s", "1000", None, BTC="2"))
    await economy.staking.open_stake("s", to_units("1"), 12)
    economy.staking.price_oracle = FlakyOracle(Decimal("100"), clock)

    clock.set(MIDNIGHT)
    failed = await economy.scheduler.run_pending()
    clock.advance(seconds=30)
    retried = await economy.scheduler.run_pending()

    assert failed.stakes_paid is None
    assert retried.stakes_paid == 1


async def test_storage_outage_skips_period_and_recovers(config, clock):
    class FlakyStorage(MemoryStorage):
        outages = 1

        async def update_supply(self, mutator):
            if self.outages:
                self.outages -= 1
                raise StorageUnavailable("connection refused")
            return await super().update_supply(mutator)

    storage = FlakyStorage(initial_reward=50 * COIN)
    seed_miners(storage)
    economy = build_economy(storage, config, StaticPriceOracle(Decimal("100"), clock), clock)
    clock.set(MIDNIGHT)

    skipped = await economy.scheduler.run_pending()
    recovered = await economy.scheduler.run_pending()

    assert skipped.skipped_reason == STORAGE_UNAVAILABLE
    assert recovered.produced
    assert recovered.block.height == 1


async def test_tick_sweeps_expired_claims(economy, storage, clock):
    seed_miners(storage)
    await economy.supply.initialize(clock.now)
    clock.set(MIDNIGHT)
    await economy.scheduler.run_pending()

    clock.advance(days=1, minutes=1)
    result = await economy.scheduler.run_pending()

    assert result.produced
    assert result.expired_swept == 2
    assert (await economy.activity.activity("a")).missed_claims == 1


async def test_hourly_cadence_resets_block_number_daily(storage, config, clock):
    hourly = config.model_copy(update={"BLOCK_PERIOD_SECONDS": 3600})
    economy = build_economy(storage, hourly, StaticPriceOracle(Decimal("100"), clock), clock)
    seed_miners(storage)
    clock.set(datetime(2025, 3, 1, 21, 30, tzinfo=timezone.utc))
    await economy.supply.initialize(clock.now)

    numbers = []
    for _ in range(4):
        clock.advance(hours=1)
        result = await economy.scheduler.run_pending()
        numbers.append((result.block.number, result.block.height))

    assert numbers == [(1, 1), (2, 2), (1, 3), (2, 4)]


async def test_auto_mature_releases_stakes(storage, config, clock):
    maturing = config.model_copy(update={"STAKE_AUTO_MATURE": True})
    economy = build_economy(storage, maturing, StaticPriceOracle(Decimal("100"), clock), clock)
    storage.add_user(make_user("s", "1000", None, BTC="2"))
    stake = await economy.staking.open_stake("s", to_units("1"), 1)

    clock.advance(days=31)
    result = await economy.scheduler.run_pending()

    assert result.stakes_matured == 1
    # The unlock day is still paid before the stake is released
    assert result.stakes_paid == 1
    assert (await storage.get_user("s")).balance("BTC") == to_units("2") + stake.daily_reward


async def test_run_forever_stops_cleanly(economy, storage, clock):
    seed_miners(storage)
    await economy.supply.initialize(clock.now)

    task = asyncio.create_task(economy.scheduler.run_forever())
    await asyncio.sleep(0.05)
    economy.scheduler.stop()
    await asyncio.wait_for(task, timeout=2)

    assert task.done() and task.exception() is None


async def test_claim_write_outage_is_settled_on_next_tick(config, clock):
    class FlakyClaims(MemoryStorage):
        outages = 1

        async def create_claims(self, claims):
            if self.outages:
                self.outages -= 1
                raise StorageUnavailable("connection reset")
            return await super().create_claims(claims)

    storage = FlakyClaims(initial_reward=50 * COIN)
    seed_miners(storage)
    economy = build_economy(storage, config, StaticPriceOracle(Decimal("100"), clock), clock)
    await economy.supply.initialize(clock.now)
    clock.set(MIDNIGHT)

    failed = await economy.scheduler.run_pending()
    assert failed.skipped_reason == STORAGE_UNAVAILABLE
    assert [b.distributed for b in await storage.list_blocks()] == [False]

    clock.advance(minutes=1)
    later = await economy.scheduler.run_pending()

    assert later.skipped_reason == ALREADY_PRODUCED
    assert later.blocks_recovered == 1
    assert (await storage.latest_block()).distributed
    assert (await economy.supply.state()).cumulative_minted == 50 * COIN
    pending = await economy.claims.pending_claims("b")
    assert [c.reward for c in pending] == [35 * COIN]
    # Claims are time-boxed from when they were finally written
    assert pending[0].created_at == clock.now


async def test_block_write_outage_keeps_allocation_snapshot(config, clock):
    class FlakyBlocks(MemoryStorage):
        outages = 1

        async def create_block(self, block):
            if self.outages:
                self.outages -= 1
                raise StorageUnavailable("connection reset")
            return await super().create_block(block)

    storage = FlakyBlocks(initial_reward=50 * COIN)
    seed_miners(storage)
    economy = build_economy(storage, config, StaticPriceOracle(Decimal("100"), clock), clock)
    await economy.supply.initialize(clock.now)
    clock.set(MIDNIGHT)

    await economy.scheduler.run_pending()
    assert await storage.latest_block() is None

    # Hash power changes after production do not alter the owed split
    storage.add_user(make_user("b", "900", START - timedelta(days=1)))
    clock.advance(minutes=1)
    later = await economy.scheduler.run_pending()

    assert later.blocks_recovered == 1
    block = await storage.latest_block()
    assert block.allocations == {"a": 15 * COIN, "b": 35 * COIN}
    assert [c.reward for c in await economy.claims.pending_claims("b")] == [35 * COIN]


async def test_repeated_distribution_creates_no_duplicate_claims(economy, storage, clock):
    seed_miners(storage)
    await economy.supply.initialize(clock.now)
    clock.set(MIDNIGHT)
    result = await economy.scheduler.run_pending()

    again = await economy.distributor.distribute(result.block)

    assert again == []
    assert len(await economy.claims.pending_claims("a")) == 1
