import asyncio

import pytest

from database import DatabasePool
from engine.models import KEY_CURRENT_REWARD, KEY_LAST_PERIOD
from storage import MemoryStorage, init_storage
from utils.cache import SUPPLY_CACHE
from utils.units import COIN

from conftest import make_user


async def test_memory_backend_is_forced():
    storage = await init_storage(50 * COIN, backend="memory")
    assert isinstance(storage, MemoryStorage)
    assert (await storage.get_supply_state()).current_reward == 50 * COIN


async def test_auto_falls_back_to_memory(monkeypatch):
    async def unreachable():
        return False

    monkeypatch.setattr(DatabasePool, "probe", unreachable)
    storage = await init_storage(50 * COIN, backend="auto")
    assert storage.name == "memory"


async def test_unknown_backend_rejected():
    with pytest.raises(ValueError):
        await init_storage(50 * COIN, backend="sqlite")


async def test_concurrent_credits_all_land(storage):
    storage.add_user(make_user("a"))

    await asyncio.gather(
        *(storage.credit_balance("a", "GBTC", 7) for _ in range(50)),
        *(storage.credit_balance("a", "BTC", 3) for _ in range(20)),
    )

    user = await storage.get_user("a")
    assert user.balance("GBTC") == 350
    assert user.balance("BTC") == 60


async def test_debit_refuses_overdraft(storage):
    storage.add_user(make_user("a", GBTC="1"))
    assert await storage.debit_balance("a", "GBTC", 2 * COIN) is None
    assert await storage.debit_balance("a", "GBTC", COIN) == 0


async def test_supply_state_round_trips_through_settings(storage):
    def mutate(state):
        state = state.model_copy()
        state.current_reward = 25 * COIN
        state.last_period = 20000
        return state, None

    await storage.update_supply(mutate)

    assert await storage.get_setting(KEY_CURRENT_REWARD) == str(25 * COIN)
    assert await storage.get_setting(KEY_LAST_PERIOD) == "20000"


async def test_failed_mutation_leaves_state_untouched(storage):
    def explode(state):
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        await storage.update_supply(explode)
    assert await storage.get_setting(KEY_CURRENT_REWARD) is None


def test_cache_key_ignores_injected_objects():
    async def handler(months=None, economy=None):
        return None

    plain = SUPPLY_CACHE(handler, "supply", kwargs={"months": 12, "economy": object()})
    other = SUPPLY_CACHE(handler, "supply", kwargs={"months": 12, "economy": object()})
    different = SUPPLY_CACHE(handler, "supply", kwargs={"months": 6})

    assert plain == other
    assert plain != different
    assert plain.startswith("supply:")
