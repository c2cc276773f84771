# engine/staking.py
import uuid
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Dict, List, Optional

from engine.errors import (
    APR_MISMATCH, BELOW_MINIMUM, INSUFFICIENT_BALANCE, INSUFFICIENT_COLLATERAL,
    INVALID_AMOUNT, INVALID_LOCK_PERIOD, NOT_FOUND, StakeError, UnknownUserError,
)
from engine.models import Stake, StakeStatus, StakingRewardEntry
from storage.base import Storage
from utils.clock import add_months, utc_now
from utils.logging import logger
from utils.price import PriceOracle
from utils.units import format_units, mul_div, units_value

ONE_DECIMAL = Decimal("0.1")


class AprCurve:
    """Maps a lock duration in months to an annual percentage rate"""
    name = "abstract"

    def accepts(self, months: int) -> bool:
        raise NotImplementedError

    def apr_for(self, months: int) -> Decimal:
        raise NotImplementedError

    def options(self) -> List[Dict]:
        raise NotImplementedError


class LinearAprCurve(AprCurve):
    """2% at one month rising linearly to 20% at 24 months"""
    name = "linear"

    def __init__(self, min_months: int = 1, max_months: int = 24,
                 min_apr: Decimal = Decimal("2"), max_apr: Decimal = Decimal("20")):
        self.min_months = min_months
        self.max_months = max_months
        self.min_apr = Decimal(min_apr)
        self.max_apr = Decimal(max_apr)

    def accepts(self, months: int) -> bool:
        return self.min_months <= months <= self.max_months

    def apr_for(self, months: int) -> Decimal:
        months = max(self.min_months, min(self.max_months, months))
        slope = (self.max_apr - self.min_apr) / (self.max_months - self.min_months)
        apr = self.min_apr + slope * (months - self.min_months)
        return apr.quantize(ONE_DECIMAL, rounding=ROUND_HALF_UP)

    def options(self) -> List[Dict]:
        return [
            {"months": m, "apr": self.apr_for(m)}
            for m in range(self.min_months, self.max_months + 1)
        ]


class TieredAprCurve(AprCurve):
    name = "tiered"

    DEFAULT_TIERS = {3: Decimal("10"), 6: Decimal("15"), 12: Decimal("20"), 24: Decimal("30")}

    def __init__(self, tiers: Dict[int, Decimal] = None):
        self.tiers = dict(tiers or self.DEFAULT_TIERS)

    def accepts(self, months: int) -> bool:
        return months in self.tiers

    def apr_for(self, months: int) -> Decimal:
        if months not in self.tiers:
            raise StakeError(f"No tier for a {months} month lock", INVALID_LOCK_PERIOD)
        return self.tiers[months]

    def options(self) -> List[Dict]:
        return [{"months": m, "apr": apr} for m, apr in sorted(self.tiers.items())]


def curve_from_name(name: str) -> AprCurve:
    curves = {"linear": LinearAprCurve, "tiered": TieredAprCurve}
    try:
        return curves[name.lower()]()
    except KeyError:
        raise ValueError(f"Unknown APR_CURVE: {name}")


def daily_reward_for(amount: int, apr_percent: Decimal) -> int:
    """amount * apr / 100 / 365, half-up to the unit"""
    return mul_div(amount, Decimal(apr_percent), Decimal(36500))


class StakingEngine:
    """Fixed-term stakes paying a daily yield in the staked asset.

    Collateral is a capacity check against hash power; the hash power is
    neither locked nor deducted and keeps earning block rewards.
    """

    def __init__(
        self,
        storage: Storage,
        price_oracle: PriceOracle,
        curve: AprCurve,
        asset: str = "BTC",
        min_amount: int = 10_000_000,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.storage = storage
        self.price_oracle = price_oracle
        self.curve = curve
        self.asset = asset
        self.min_amount = min_amount
        self.clock = clock

    def apr_for(self, months: int) -> Decimal:
        return self.curve.apr_for(months)

    async def open_stake(
        self,
        user_id: str,
        amount: int,
        lock_months: int,
        apr_percent: Optional[Decimal] = None,
        now: datetime = None,
    ) -> Stake:
        now = now or self.clock()
        if amount <= 0:
            raise StakeError("Stake amount must be positive", INVALID_AMOUNT)
        if amount < self.min_amount:
            raise StakeError(
                f"Minimum stake is {format_units(self.min_amount)} {self.asset}", BELOW_MINIMUM
            )
        if not self.curve.accepts(lock_months):
            raise StakeError(f"Lock period of {lock_months} months is not offered", INVALID_LOCK_PERIOD)

        apr = self.curve.apr_for(lock_months)
        if apr_percent is not None and Decimal(apr_percent) != apr:
            raise StakeError(
                f"APR {apr_percent}% does not match {apr}% for {lock_months} months", APR_MISMATCH
            )

        user = await self.storage.get_user(user_id)
        if user is None:
            raise UnknownUserError(f"User {user_id} not found")
        if user.balance(self.asset) < amount:
            raise StakeError(f"Insufficient {self.asset} balance", INSUFFICIENT_BALANCE)

        quote = await self.price_oracle.current_price(self.asset)
        required = units_value(amount, quote.price)
        if user.hash_power < required:
            raise StakeError(
                f"Insufficient hashrate. Need {required} but you have {user.hash_power}",
                INSUFFICIENT_COLLATERAL,
            )

        stake = Stake(
            id=uuid.uuid4().hex,
            user_id=user_id,
            locked_amount=amount,
            price_at_open=quote.price,
            required_hash_power=required,
            apr_percent=apr,
            lock_months=lock_months,
            daily_reward=daily_reward_for(amount, apr),
            opened_at=now,
            unlocks_at=add_months(now, lock_months),
        )
        created = await self.storage.open_stake(stake, self.asset)
        if created is None:
            # Balance moved between the check and the debit
            raise StakeError(f"Insufficient {self.asset} balance", INSUFFICIENT_BALANCE)

        logger.info(
            f"User {user_id} staked {format_units(amount)} {self.asset} for {lock_months} months at {apr}%"
        )
        return created

    async def pay_daily_rewards(self, today: date = None, now: datetime = None) -> int:
        """Pay one day of yield to every active stake not yet paid on ``today``"""
        now = now or self.clock()
        today = today or now.date()
        stakes = await self.storage.active_stakes()
        if not stakes:
            return 0

        quote = await self.price_oracle.current_price(self.asset)
        paid = 0
        for stake in stakes:
            entry = await self.storage.pay_stake_reward(stake.id, self.asset, quote.price, today, now)
            if entry is not None:
                paid += 1

        logger.info(f"Staking payout for {today.isoformat()}: {paid} of {len(stakes)} stakes paid")
        return paid

    async def mature_stakes(self, now: datetime = None) -> int:
        now = now or self.clock()
        matured = 0
        for stake in await self.storage.active_stakes():
            if stake.unlocks_at > now:
                continue
            if await self.storage.mature_stake(stake.id, self.asset, now) is not None:
                matured += 1
                logger.info(
                    f"Stake {stake.id} matured, released {format_units(stake.locked_amount)} {self.asset}"
                )
        return matured

    async def user_stakes(self, user_id: str) -> Dict:
        stakes = await self.storage.list_stakes(user_id)
        active = [s for s in stakes if s.status == StakeStatus.ACTIVE]
        return {
            "stakes": stakes,
            "total_staked": sum(s.locked_amount for s in active),
            "total_daily_rewards": sum(s.daily_reward for s in active),
            "total_rewards_paid": sum(s.total_rewards_paid for s in stakes),
        }

    async def reward_history(self, user_id: str, stake_id: str) -> List[StakingRewardEntry]:
        """Daily payouts of one stake, oldest first"""
        stake = await self.storage.get_stake(stake_id)
        if stake is None or stake.user_id != user_id:
            raise StakeError(f"Stake {stake_id} not found for user {user_id}", NOT_FOUND)
        return await self.storage.list_stake_rewards(stake_id)
