from datetime import timedelta
from decimal import Decimal

from engine.models import Block
from utils.clock import period_of
from utils.units import COIN

from conftest import START, make_user

PERIOD = period_of(START, 86400) + 1


def block(reward=50 * COIN, period=PERIOD):
    return Block(
        number=1,
        height=1,
        reward=reward,
        total_hash_power=Decimal("100"),
        period=period,
        produced_at=START,
    )


async def test_reward_split_by_hash_power(economy):
    earlier = START - timedelta(days=1)
    users = [make_user("a", "30", earlier), make_user("b", "70", earlier)]

    claims = await economy.distributor.distribute(block(), users)

    rewards = {c.user_id: c.reward for c in claims}
    assert rewards == {"a": 15 * COIN, "b": 35 * COIN}


async def test_users_opted_in_this_period_wait_for_the_next(economy):
    earlier = START - timedelta(days=1)
    users = [
        make_user("veteran", "50", earlier),
        # Same period as the block: first eligible block is the following one
        make_user("newcomer", "50", START + timedelta(days=1, hours=1)),
        make_user("idle", "0", earlier),
        make_user("never", "100"),
    ]

    claims = await economy.distributor.distribute(block(), users)

    assert [c.user_id for c in claims] == ["veteran"]
    assert claims[0].reward == 50 * COIN


async def test_shares_round_half_up_and_slack_is_not_redistributed(economy):
    earlier = START - timedelta(days=1)
    users = [make_user(uid, "1", earlier) for uid in ("a", "b", "c")]

    claims = await economy.distributor.distribute(block(reward=100), users)

    assert [c.reward for c in claims] == [33, 33, 33]


async def test_dust_rewards_are_not_materialized(economy):
    earlier = START - timedelta(days=1)
    users = [make_user("whale", "1000000000", earlier), make_user("minnow", "1", earlier)]

    claims = await economy.distributor.distribute(block(reward=10), users)

    assert [c.user_id for c in claims] == ["whale"]


async def test_claims_are_time_boxed_and_persisted(economy, storage, clock):
    earlier = START - timedelta(days=1)
    user = make_user("a", "10", earlier)
    storage.add_user(user)

    claims = await economy.distributor.distribute(block())

    assert len(claims) == 1
    claim = claims[0]
    assert claim.created_at == clock.now
    assert claim.expires_at == clock.now + timedelta(hours=24)
    assert claim.tx_hash.startswith("0x") and len(claim.tx_hash) == 66
    assert await storage.get_claim(claim.id) == claim


async def test_no_eligible_users_creates_nothing(economy):
    assert await economy.distributor.distribute(block(), []) == []


async def test_eligibility_rule_comes_from_the_activity_tracker(economy, monkeypatch):
    earlier = START - timedelta(days=1)
    users = [make_user("a", "30", earlier), make_user("b", "70", earlier)]
    monkeypatch.setattr(economy.activity, "is_eligible", lambda user, period: user.id == "b")

    claims = await economy.distributor.distribute(block(), users)

    assert [(c.user_id, c.reward) for c in claims] == [("b", 50 * COIN)]
