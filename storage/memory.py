# storage/memory.py
import asyncio
from datetime import datetime, date
from decimal import Decimal
from typing import Dict, List, Optional

from engine.models import (
    Block, Claim, MinerActivity, Stake, StakeStatus, StakingRewardEntry,
    SupplyState, User, SUPPLY_KEYS,
)
from storage.base import Storage, SupplyMutator, ActivityMutator
from utils.logging import logger
import uuid


class MemoryStorage(Storage):
    """Transient backend used when PostgreSQL is unreachable and in tests.

    A single asyncio lock serializes every read-modify-write.
    """
    name = "memory"

    def __init__(self, initial_reward: int = 0):
        super().__init__(initial_reward)
        self._lock = asyncio.Lock()
        self._settings: Dict[str, str] = {}
        self._users: Dict[str, User] = {}
        self._blocks: List[Block] = []
        self._claims: Dict[str, Claim] = {}
        self._activity: Dict[str, MinerActivity] = {}
        self._stakes: Dict[str, Stake] = {}
        self._stake_rewards: List[StakingRewardEntry] = []

    def add_user(self, user: User) -> User:
        """Seed a user synchronously (start-up fixtures, local simulations)"""
        self._users[user.id] = user.model_copy(deep=True)
        return user

    # Settings Store
    async def get_setting(self, key: str) -> Optional[str]:
        return self._settings.get(key)

    async def set_setting(self, key: str, value: str) -> None:
        async with self._lock:
            self._settings[key] = value

    async def get_supply_state(self) -> SupplyState:
        return SupplyState.from_settings(
            {key: self._settings.get(key) for key in SUPPLY_KEYS}, self.initial_reward
        )

    async def update_supply(self, mutator: SupplyMutator):
        async with self._lock:
            state = SupplyState.from_settings(
                {key: self._settings.get(key) for key in SUPPLY_KEYS}, self.initial_reward
            )
            new_state, result = mutator(state)
            self._settings.update(new_state.to_settings())
            return result

    # User Directory
    async def upsert_user(self, user: User) -> User:
        async with self._lock:
            self._users[user.id] = user.model_copy(deep=True)
        return user

    async def get_user(self, user_id: str) -> Optional[User]:
        user = self._users.get(user_id)
        return user.model_copy(deep=True) if user else None

    async def list_users(self) -> List[User]:
        return [u.model_copy(deep=True) for u in self._users.values()]

    async def start_mining(self, user_id: str, at: datetime) -> Optional[User]:
        async with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return None
            if user.mining_started_at is None:
                user.mining_started_at = at
            return user.model_copy(deep=True)

    def _credit(self, user_id: str, asset: str, amount: int) -> int:
        user = self._users.get(user_id)
        if user is None:
            raise KeyError(user_id)
        user.balances[asset] = user.balances.get(asset, 0) + amount
        return user.balances[asset]

    async def credit_balance(self, user_id: str, asset: str, amount: int) -> int:
        async with self._lock:
            return self._credit(user_id, asset, amount)

    async def debit_balance(self, user_id: str, asset: str, amount: int) -> Optional[int]:
        async with self._lock:
            user = self._users.get(user_id)
            if user is None or user.balances.get(asset, 0) < amount:
                return None
            return self._credit(user_id, asset, -amount)

    async def total_balance(self, asset: str) -> int:
        return sum(u.balances.get(asset, 0) for u in self._users.values())

    # Blocks
    async def create_block(self, block: Block) -> Block:
        async with self._lock:
            if not any(b.height == block.height for b in self._blocks):
                self._blocks.append(block)
        return block

    async def latest_block(self) -> Optional[Block]:
        return self._blocks[-1] if self._blocks else None

    async def list_blocks(self, limit: int = 20) -> List[Block]:
        return list(reversed(self._blocks[-limit:]))

    async def mark_block_distributed(self, height: int) -> None:
        async with self._lock:
            self._blocks = [
                b.model_copy(update={"distributed": True}) if b.height == height else b
                for b in self._blocks
            ]

    async def undistributed_blocks(self) -> List[Block]:
        return [b for b in self._blocks if not b.distributed]

    # Claims
    async def create_claims(self, claims: List[Claim]) -> List[Claim]:
        async with self._lock:
            taken = {(c.block_height, c.user_id) for c in self._claims.values()}
            created = []
            for claim in claims:
                if (claim.block_height, claim.user_id) in taken:
                    continue
                taken.add((claim.block_height, claim.user_id))
                self._claims[claim.id] = claim.model_copy()
                created.append(claim)
        return created

    async def get_claim(self, claim_id: str) -> Optional[Claim]:
        claim = self._claims.get(claim_id)
        return claim.model_copy() if claim else None

    async def pending_claims(self, user_id: str, now: datetime) -> List[Claim]:
        claims = [
            c.model_copy() for c in self._claims.values()
            if c.user_id == user_id and c.is_claimable(now)
        ]
        return sorted(claims, key=lambda c: c.created_at, reverse=True)

    async def claim_one(self, claim_id: str, user_id: str, asset: str, now: datetime) -> Optional[Claim]:
        async with self._lock:
            claim = self._claims.get(claim_id)
            if claim is None or claim.user_id != user_id or not claim.is_claimable(now):
                return None
            claim.claimed = True
            claim.claimed_at = now
            self._credit(user_id, asset, claim.reward)
            return claim.model_copy()

    async def claim_all(self, user_id: str, asset: str, now: datetime) -> List[Claim]:
        async with self._lock:
            claims = [
                c for c in self._claims.values()
                if c.user_id == user_id and c.is_claimable(now)
            ]
            if not claims:
                return []
            for claim in claims:
                claim.claimed = True
                claim.claimed_at = now
            self._credit(user_id, asset, sum(c.reward for c in claims))
            return [c.model_copy() for c in claims]

    async def forfeit_expired(self, now: datetime) -> List[Claim]:
        async with self._lock:
            expired = [
                c for c in self._claims.values()
                if not c.claimed and c.forfeited_at is None and c.is_expired(now)
            ]
            for claim in expired:
                claim.forfeited_at = now
            return [c.model_copy() for c in expired]

    # Miner activity
    async def get_activity(self, user_id: str) -> Optional[MinerActivity]:
        activity = self._activity.get(user_id)
        return activity.model_copy() if activity else None

    async def update_activity(self, user_id: str, mutator: ActivityMutator) -> MinerActivity:
        async with self._lock:
            current = self._activity.get(user_id)
            updated = mutator(current.model_copy() if current else None)
            self._activity[user_id] = updated
            return updated.model_copy()

    async def list_activity(self) -> List[MinerActivity]:
        return [a.model_copy() for a in self._activity.values()]

    # Staking
    async def open_stake(self, stake: Stake, asset: str) -> Optional[Stake]:
        async with self._lock:
            user = self._users.get(stake.user_id)
            if user is None or user.balances.get(asset, 0) < stake.locked_amount:
                return None
            self._credit(stake.user_id, asset, -stake.locked_amount)
            self._stakes[stake.id] = stake.model_copy()
            return stake

    async def get_stake(self, stake_id: str) -> Optional[Stake]:
        stake = self._stakes.get(stake_id)
        return stake.model_copy() if stake else None

    async def list_stakes(self, user_id: str) -> List[Stake]:
        stakes = [s.model_copy() for s in self._stakes.values() if s.user_id == user_id]
        return sorted(stakes, key=lambda s: s.opened_at, reverse=True)

    async def active_stakes(self) -> List[Stake]:
        return [s.model_copy() for s in self._stakes.values() if s.status == StakeStatus.ACTIVE]

    async def pay_stake_reward(
        self, stake_id: str, asset: str, price: Decimal, paid_on: date, now: datetime
    ) -> Optional[StakingRewardEntry]:
        async with self._lock:
            stake = self._stakes.get(stake_id)
            if stake is None or stake.status != StakeStatus.ACTIVE:
                return None
            if stake.last_reward_at is not None and stake.last_reward_at.date() >= paid_on:
                return None
            if stake.user_id not in self._users:
                logger.warning(f"Stake {stake_id} belongs to unknown user {stake.user_id}")
                return None
            entry = StakingRewardEntry(
                id=uuid.uuid4().hex,
                stake_id=stake.id,
                user_id=stake.user_id,
                amount=stake.daily_reward,
                price_at_payment=price,
                paid_at=now,
            )
            self._stake_rewards.append(entry)
            self._credit(stake.user_id, asset, stake.daily_reward)
            stake.total_rewards_paid += stake.daily_reward
            stake.last_reward_at = now
            return entry

    async def mature_stake(self, stake_id: str, asset: str, now: datetime) -> Optional[Stake]:
        async with self._lock:
            stake = self._stakes.get(stake_id)
            if stake is None or stake.status != StakeStatus.ACTIVE or now < stake.unlocks_at:
                return None
            stake.status = StakeStatus.MATURED
            self._credit(stake.user_id, asset, stake.locked_amount)
            return stake.model_copy()

    async def list_stake_rewards(self, stake_id: str) -> List[StakingRewardEntry]:
        return [e for e in self._stake_rewards if e.stake_id == stake_id]
