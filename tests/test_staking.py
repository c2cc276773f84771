from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from engine.errors import (
    APR_MISMATCH, BELOW_MINIMUM, INSUFFICIENT_BALANCE, INSUFFICIENT_COLLATERAL,
    INVALID_AMOUNT, INVALID_LOCK_PERIOD, StakeError,
)
from engine.models import StakeStatus
from engine.staking import (
    LinearAprCurve, TieredAprCurve, curve_from_name, daily_reward_for,
)
from utils.units import to_units

from conftest import START, make_user


@pytest.mark.parametrize("months,apr", [
    (1, "2.0"), (3, "3.6"), (6, "5.9"), (12, "10.6"), (18, "15.3"), (24, "20.0"),
])
def test_linear_curve(months, apr):
    assert LinearAprCurve().apr_for(months) == Decimal(apr)


def test_linear_curve_clamps_out_of_range():
    curve = LinearAprCurve()
    assert curve.apr_for(0) == Decimal("2.0")
    assert curve.apr_for(36) == Decimal("20.0")
    assert not curve.accepts(0)
    assert not curve.accepts(25)


def test_tiered_curve():
    curve = TieredAprCurve()
    assert [curve.apr_for(m) for m in (3, 6, 12, 24)] == [10, 15, 20, 30]
    assert not curve.accepts(4)
    with pytest.raises(StakeError):
        curve.apr_for(4)


def test_curve_selection():
    assert isinstance(curve_from_name("linear"), LinearAprCurve)
    assert isinstance(curve_from_name("Tiered"), TieredAprCurve)
    with pytest.raises(ValueError):
        curve_from_name("exponential")


def test_daily_reward_rounds_half_up():
    assert daily_reward_for(to_units("1"), Decimal("20")) == 54795
    assert daily_reward_for(to_units("0.5"), Decimal("10.6")) == 14521


@pytest.fixture
def staker(storage):
    # 1 BTC at a price of 100 needs 100 hash power
    storage.add_user(make_user("s", "1000", START - timedelta(days=1), BTC="2"))


async def test_open_stake_debits_balance_only(economy, storage, staker, clock):
    stake = await economy.staking.open_stake("s", to_units("1"), 12)

    assert stake.apr_percent == Decimal("10.6")
    assert stake.price_at_open == Decimal("100")
    assert stake.required_hash_power == Decimal("100")
    assert stake.daily_reward == daily_reward_for(to_units("1"), Decimal("10.6"))
    assert stake.unlocks_at == datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    assert stake.status == StakeStatus.ACTIVE

    user = await storage.get_user("s")
    assert user.balance("BTC") == to_units("1")
    # Collateral check does not consume hash power
    assert user.hash_power == Decimal("1000")


async def test_open_stake_accepts_matching_apr(economy, staker):
    stake = await economy.staking.open_stake("s", to_units("1"), 24, apr_percent=Decimal("20"))
    assert stake.apr_percent == Decimal("20.0")


@pytest.mark.parametrize("amount,months,apr,reason", [
    (0, 12, None, INVALID_AMOUNT),
    (-5, 12, None, INVALID_AMOUNT),
    (to_units("0.09"), 12, None, BELOW_MINIMUM),
    (to_units("1"), 0, None, INVALID_LOCK_PERIOD),
    (to_units("1"), 30, None, INVALID_LOCK_PERIOD),
    (to_units("1"), 12, Decimal("20"), APR_MISMATCH),
    (to_units("3"), 12, None, INSUFFICIENT_BALANCE),
])
async def test_open_stake_rejections(economy, storage, staker, amount, months, apr, reason):
    with pytest.raises(StakeError) as exc:
        await economy.staking.open_stake("s", amount, months, apr_percent=apr)

    assert exc.value.reason == reason
    assert (await storage.get_user("s")).balance("BTC") == to_units("2")
    assert await storage.list_stakes("s") == []


async def test_insufficient_collateral(economy, storage):
    storage.add_user(make_user("weak", "50", BTC="2"))

    with pytest.raises(StakeError) as exc:
        await economy.staking.open_stake("weak", to_units("1"), 12)

    assert exc.value.reason == INSUFFICIENT_COLLATERAL
    assert (await storage.get_user("weak")).balance("BTC") == to_units("2")


async def test_ten_days_of_payouts(economy, storage, staker, clock):
    stake = await economy.staking.open_stake("s", to_units("1"), 12)

    for _ in range(10):
        clock.advance(days=1)
        assert await economy.staking.pay_daily_rewards() == 1

    user = await storage.get_user("s")
    assert user.balance("BTC") == to_units("1") + 10 * stake.daily_reward
    assert user.hash_power == Decimal("1000")
    paid = await storage.get_stake(stake.id)
    assert paid.total_rewards_paid == 10 * stake.daily_reward
    assert paid.last_reward_at == clock.now
    history = await economy.staking.reward_history("s", stake.id)
    assert len(history) == 10
    assert all(entry.amount == stake.daily_reward for entry in history)


async def test_payout_is_idempotent_per_day(economy, storage, staker, clock):
    stake = await economy.staking.open_stake("s", to_units("1"), 12)
    clock.advance(days=1)

    assert await economy.staking.pay_daily_rewards() == 1
    clock.advance(hours=3)
    assert await economy.staking.pay_daily_rewards() == 0

    assert (await storage.get_stake(stake.id)).total_rewards_paid == stake.daily_reward


async def test_stakes_mature_after_unlock(economy, storage, staker, clock):
    stake = await economy.staking.open_stake("s", to_units("1"), 1)

    assert await economy.staking.mature_stakes() == 0
    clock.set(stake.unlocks_at)
    assert await economy.staking.mature_stakes() == 1

    assert (await storage.get_stake(stake.id)).status == StakeStatus.MATURED
    assert (await storage.get_user("s")).balance("BTC") == to_units("2")
    clock.advance(days=1)
    assert await economy.staking.pay_daily_rewards() == 0


async def test_user_stakes_summary(economy, staker):
    first = await economy.staking.open_stake("s", to_units("0.5"), 12)
    second = await economy.staking.open_stake("s", to_units("0.5"), 24)

    summary = await economy.staking.user_stakes("s")

    assert len(summary["stakes"]) == 2
    assert summary["total_staked"] == to_units("1")
    assert summary["total_daily_rewards"] == first.daily_reward + second.daily_reward
