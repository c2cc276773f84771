from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from config import settings
from engine.economy import build_economy
from engine.models import User
from storage import MemoryStorage
from utils.price import StaticPriceOracle
from utils.units import COIN, to_units

START = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Controllable replacement for utc_now"""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, now: datetime) -> datetime:
        self.now = now
        return now


def make_user(user_id, hash_power="0", started_at=None, **balances) -> User:
    return User(
        id=user_id,
        username=user_id,
        hash_power=Decimal(hash_power),
        base_hash_power=Decimal(hash_power),
        mining_started_at=started_at,
        balances={asset: to_units(amount) for asset, amount in balances.items()},
    )


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def config():
    return settings.model_copy(update={
        "STORAGE_BACKEND": "memory",
        "BLOCK_PERIOD_SECONDS": 86400,
        "MAX_SUPPLY": "2100000",
        "INITIAL_BLOCK_REWARD": "50",
        "HALVING_INTERVAL": 4200,
        "APR_CURVE": "linear",
        "MIN_STAKE_AMOUNT": "0.1",
        "STAKE_AUTO_MATURE": False,
        "SCHEDULER_POLL_INTERVAL": 1,
    })


@pytest.fixture
def storage():
    return MemoryStorage(initial_reward=50 * COIN)


@pytest.fixture
def price_oracle(clock):
    return StaticPriceOracle(Decimal("100"), clock=clock)


@pytest.fixture
def economy(storage, config, price_oracle, clock):
    return build_economy(storage, config, price_oracle, clock=clock)


@pytest.fixture(autouse=True)
def no_retry_wait(monkeypatch):
    # Transient failures give up at once instead of backing off
    monkeypatch.setattr(settings, "SCHEDULER_RETRY_MAX_TIME", 0)
    monkeypatch.setattr(settings, "PRICE_API_RETRY_COUNT", 1)
