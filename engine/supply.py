# engine/supply.py
"""Supply cap and halving schedule.

All state lives in the SupplyState record of the storage backend and is only
changed through ``Storage.update_supply``; nothing is cached in process memory.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from engine.errors import SupplyExhausted
from engine.models import BlockSlot, SupplyState
from storage.base import Storage
from utils.clock import period_of, period_start
from utils.logging import logger
from utils.units import format_units

ALREADY_PRODUCED = "already_produced"
SUPPLY_EXHAUSTED = "supply_exhausted"
NO_HASH_POWER = "no_hash_power"
ZERO_REWARD = "zero_reward"


class SupplyController:
    def __init__(
        self,
        storage: Storage,
        max_supply: int,
        initial_reward: int,
        halving_interval: int,
        period_seconds: int = 86400,
        reward_asset: str = "GBTC",
    ):
        if halving_interval <= 0:
            raise ValueError("halving_interval must be positive")
        self.storage = storage
        self.max_supply = max_supply
        self.initial_reward = initial_reward
        self.halving_interval = halving_interval
        self.period_seconds = period_seconds
        self.reward_asset = reward_asset

    @staticmethod
    def _apply_daily_reset(state: SupplyState, today: date) -> bool:
        if state.last_reset_date == today:
            return False
        if state.last_reset_date is not None:
            state.block_number = 1
        state.last_reset_date = today
        return True

    async def initialize(self, now: datetime) -> SupplyState:
        """Write defaults for missing cursors and run the start-up daily reset check.

        A fresh store treats the current period as already produced, so the first
        block lands on the next boundary.
        """
        current = period_of(now, self.period_seconds)
        today = now.date()

        def mutate(state: SupplyState) -> Tuple[SupplyState, SupplyState]:
            state = state.model_copy()
            if state.last_period is None:
                state.last_period = current
            if self._apply_daily_reset(state, today):
                logger.info(f"Daily reset applied for {today.isoformat()}")
            return state, state

        state = await self.storage.update_supply(mutate)
        logger.info(
            f"Supply initialized: reward={format_units(state.current_reward)} "
            f"minted={format_units(state.cumulative_minted)} total_blocks={state.total_blocks}"
        )
        return state

    async def state(self) -> SupplyState:
        return await self.storage.get_supply_state()

    async def current_reward(self) -> int:
        state = await self.storage.get_supply_state()
        if state.cumulative_minted >= self.max_supply:
            return 0
        return min(state.current_reward, self.max_supply - state.cumulative_minted)

    async def record_minted(self, amount: int) -> SupplyState:
        """Add an externally minted amount to the cumulative total"""
        if amount < 0:
            raise ValueError("amount must not be negative")

        def mutate(state: SupplyState):
            if state.cumulative_minted + amount > self.max_supply:
                raise SupplyExhausted(
                    f"Minting {format_units(amount)} would exceed the maximum supply"
                )
            state = state.model_copy()
            state.cumulative_minted += amount
            return state, state

        return await self.storage.update_supply(mutate)

    async def daily_reset(self, today: date) -> bool:
        """Reset the per-day block number when the UTC date changed"""
        def mutate(state: SupplyState):
            state = state.model_copy()
            return state, self._apply_daily_reset(state, today)

        return await self.storage.update_supply(mutate)

    def _produce(
        self, state: SupplyState, period: int, has_hash_power: bool
    ) -> Tuple[SupplyState, Tuple[Optional[BlockSlot], Optional[str]]]:
        if state.last_period is not None and period <= state.last_period:
            return state, (None, ALREADY_PRODUCED)

        state = state.model_copy()
        state.last_period = period
        self._apply_daily_reset(state, period_start(period, self.period_seconds).date())

        if state.cumulative_minted >= self.max_supply:
            state.current_reward = 0
            return state, (None, SUPPLY_EXHAUSTED)

        reward = state.current_reward
        if state.cumulative_minted + reward > self.max_supply:
            # Final block pays exactly what is left
            reward = self.max_supply - state.cumulative_minted
            state.current_reward = reward

        if not has_hash_power:
            return state, (None, NO_HASH_POWER)
        if reward <= 0:
            return state, (None, ZERO_REWARD)

        slot = BlockSlot(number=state.block_number, height=state.total_blocks + 1, reward=reward)
        state.cumulative_minted += reward
        state.total_blocks += 1
        state.block_number += 1

        if state.total_blocks % self.halving_interval == 0:
            if state.cumulative_minted >= self.max_supply:
                state.current_reward = 0
            else:
                state.current_reward = state.current_reward // 2
        return state, (slot, None)

    async def on_block_produced(
        self, period: int, has_hash_power: bool = True
    ) -> Tuple[Optional[BlockSlot], Optional[str]]:
        """Reserve the reward for the block of ``period``.

        Clamp, counters, period marker and halving are persisted in one atomic
        update before the reward is handed back. Returns ``(slot, None)`` when a
        block must be produced, otherwise ``(None, reason)``.
        """
        slot, reason = await self.storage.update_supply(
            lambda state: self._produce(state, period, has_hash_power)
        )
        if slot is not None:
            logger.info(
                f"Block reserved: height={slot.height} number={slot.number} "
                f"reward={format_units(slot.reward)}"
            )
            if slot.height % self.halving_interval == 0:
                logger.info(f"Halving applied after block height {slot.height}")
        else:
            logger.info(f"No block for period {period}: {reason}")
        return slot, reason

    async def metrics(self) -> Dict[str, Any]:
        state = await self.storage.get_supply_state()
        circulating = await self.storage.total_balance(self.reward_asset)
        current_halving = state.total_blocks // self.halving_interval
        next_halving = (current_halving + 1) * self.halving_interval
        percentage = (
            Decimal(state.cumulative_minted) * 100 / Decimal(self.max_supply)
        ).quantize(Decimal("0.01"))
        return {
            "total_mined": state.cumulative_minted,
            "circulating": circulating,
            "max_supply": self.max_supply,
            "percentage_mined": percentage,
            "current_block_reward": await self.current_reward(),
            "total_blocks": state.total_blocks,
            "block_number": state.block_number,
            "halving_progress": {
                "current": current_halving,
                "next_halving": next_halving,
                "blocks_remaining": next_halving - state.total_blocks,
            },
        }
