import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from engine.errors import ALREADY_CLAIMED, EXPIRED, NOT_FOUND, ClaimError
from engine.models import Block
from utils.clock import period_of
from utils.units import COIN

from conftest import START, make_user

PERIOD = period_of(START, 86400) + 1


@pytest.fixture
def miners(storage):
    earlier = START - timedelta(days=1)
    storage.add_user(make_user("a", "30", earlier))
    storage.add_user(make_user("b", "70", earlier))


async def produce(economy, height=1, reward=50 * COIN):
    block = Block(
        number=height, height=height, reward=reward,
        total_hash_power=Decimal("100"), period=PERIOD + height - 1, produced_at=START,
    )
    return await economy.distributor.distribute(block)


def claim_of(claims, user_id):
    return next(c for c in claims if c.user_id == user_id)


async def test_pending_claims_newest_first(economy, miners, clock):
    await produce(economy, 1)
    clock.advance(hours=1)
    await produce(economy, 2)

    pending = await economy.claims.pending_claims("a")
    assert [c.block_height for c in pending] == [2, 1]


async def test_claim_one_credits_balance_and_activity(economy, storage, miners, clock):
    claim = claim_of(await produce(economy), "a")

    claimed = await economy.claims.claim_one(claim.id, "a")

    assert claimed.claimed and claimed.claimed_at == clock.now
    assert (await storage.get_user("a")).balance("GBTC") == 15 * COIN
    activity = await economy.activity.activity("a")
    assert activity.total_claims == 1
    assert activity.last_claim_time == clock.now
    assert activity.is_active
    assert await economy.claims.pending_claims("a") == []


async def test_concurrent_double_claim_succeeds_once(economy, storage, miners):
    claim = claim_of(await produce(economy), "a")

    results = await asyncio.gather(
        *(economy.claims.claim_one(claim.id, "a") for _ in range(5)),
        return_exceptions=True,
    )

    successes = [r for r in results if not isinstance(r, Exception)]
    failures = [r for r in results if isinstance(r, ClaimError)]
    assert len(successes) == 1
    assert len(failures) == 4
    assert all(f.reason == ALREADY_CLAIMED for f in failures)
    assert (await storage.get_user("a")).balance("GBTC") == 15 * COIN


async def test_claim_window_is_inclusive(economy, storage, miners, clock):
    claims = await produce(economy)
    a, b = claim_of(claims, "a"), claim_of(claims, "b")

    clock.advance(hours=24)
    await economy.claims.claim_one(a.id, "a")

    clock.advance(microseconds=1)
    with pytest.raises(ClaimError) as exc:
        await economy.claims.claim_one(b.id, "b")
    assert exc.value.reason == EXPIRED
    assert (await storage.get_user("b")).balance("GBTC") == 0


async def test_claim_of_someone_else_is_not_found(economy, miners):
    claim = claim_of(await produce(economy), "a")

    with pytest.raises(ClaimError) as exc:
        await economy.claims.claim_one(claim.id, "b")
    assert exc.value.reason == NOT_FOUND

    with pytest.raises(ClaimError) as exc:
        await economy.claims.claim_one("missing", "a")
    assert exc.value.reason == NOT_FOUND


async def test_claim_all_credits_once(economy, storage, miners, clock):
    await produce(economy, 1)
    clock.advance(hours=1)
    await produce(economy, 2)

    result = await economy.claims.claim_all("a")

    assert result.count == 2
    assert result.total_reward == 30 * COIN
    assert not result.nothing_to_claim
    assert (await storage.get_user("a")).balance("GBTC") == 30 * COIN
    assert (await economy.activity.activity("a")).total_claims == 1


async def test_claim_all_with_nothing_pending(economy, storage, miners):
    result = await economy.claims.claim_all("a")

    assert result.nothing_to_claim
    assert result.total_reward == 0
    assert (await storage.get_user("a")).balance("GBTC") == 0
    assert (await economy.activity.activity("a")).total_claims == 0


async def test_claim_all_skips_expired(economy, storage, miners, clock):
    await produce(economy, 1)
    clock.advance(hours=23)
    await produce(economy, 2)
    clock.advance(hours=2)

    result = await economy.claims.claim_all("a")

    assert result.count == 1
    assert [c.block_height for c in result.claims] == [2]


async def test_sweep_forfeits_each_claim_once(economy, storage, miners, clock):
    await produce(economy)
    clock.advance(hours=24, seconds=1)

    first = await economy.claims.sweep_expired()
    second = await economy.claims.sweep_expired()

    assert first.count == 2
    assert first.forfeited == 50 * COIN
    assert second.count == 0
    assert (await economy.activity.activity("a")).missed_claims == 1
    assert (await economy.activity.activity("b")).missed_claims == 1


async def test_forfeited_rewards_are_burned(economy, storage, miners, clock):
    slot, _ = await economy.supply.on_block_produced(PERIOD)
    await produce(economy, reward=slot.reward)
    clock.advance(hours=25)

    await economy.claims.sweep_expired()

    assert await storage.total_balance("GBTC") == 0
    assert (await economy.supply.state()).cumulative_minted == 50 * COIN
    assert await economy.claims.pending_claims("a") == []


async def test_sweep_ignores_claimed_and_live_claims(economy, miners, clock):
    claims = await produce(economy)
    await economy.claims.claim_one(claim_of(claims, "a").id, "a")
    clock.advance(hours=12)

    result = await economy.claims.sweep_expired()

    assert result.count == 0
