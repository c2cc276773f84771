# storage/base.py
from abc import ABC, abstractmethod
from datetime import datetime, date
from decimal import Decimal
from typing import Callable, List, Optional, Tuple, TypeVar

from engine.models import (
    Block, Claim, MinerActivity, Stake, StakingRewardEntry, SupplyState, User,
)

T = TypeVar("T")

# Pure function applied under the supply lock: returns the new state and a result
SupplyMutator = Callable[[SupplyState], Tuple[SupplyState, T]]
ActivityMutator = Callable[[Optional[MinerActivity]], MinerActivity]


class Storage(ABC):
    """Persistence contract shared by the in-memory and PostgreSQL backends.

    Every mutating method is atomic on its own: callers never need to hold a
    lock or a transaction across two calls.
    """
    name = "abstract"

    def __init__(self, initial_reward: int = 0):
        self.initial_reward = initial_reward

    async def close(self):
        return None

    # Settings Store
    @abstractmethod
    async def get_setting(self, key: str) -> Optional[str]: ...

    @abstractmethod
    async def set_setting(self, key: str, value: str) -> None: ...

    @abstractmethod
    async def get_supply_state(self) -> SupplyState: ...

    @abstractmethod
    async def update_supply(self, mutator: SupplyMutator) -> T:
        """Read, mutate and persist SupplyState as one atomic step."""

    # User Directory
    @abstractmethod
    async def upsert_user(self, user: User) -> User: ...

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[User]: ...

    @abstractmethod
    async def list_users(self) -> List[User]: ...

    @abstractmethod
    async def start_mining(self, user_id: str, at: datetime) -> Optional[User]:
        """Set mining_started_at if unset; returns the user (None if unknown)."""

    @abstractmethod
    async def credit_balance(self, user_id: str, asset: str, amount: int) -> int:
        """Atomically add to a balance; returns the new balance."""

    @abstractmethod
    async def debit_balance(self, user_id: str, asset: str, amount: int) -> Optional[int]:
        """Atomically subtract if covered; returns the new balance or None."""

    @abstractmethod
    async def total_balance(self, asset: str) -> int: ...

    async def total_hash_power(self) -> Decimal:
        users = await self.list_users()
        return sum((u.hash_power for u in users), Decimal("0"))

    # Blocks
    @abstractmethod
    async def create_block(self, block: Block) -> Block: ...

    @abstractmethod
    async def latest_block(self) -> Optional[Block]: ...

    @abstractmethod
    async def list_blocks(self, limit: int = 20) -> List[Block]: ...

    @abstractmethod
    async def mark_block_distributed(self, height: int) -> None: ...

    @abstractmethod
    async def undistributed_blocks(self) -> List[Block]:
        """Stored blocks whose claims were never fully written, oldest first."""

    # Claims
    @abstractmethod
    async def create_claims(self, claims: List[Claim]) -> List[Claim]:
        """Insert claims, skipping any (block_height, user_id) already present;
        returns the claims actually inserted."""

    @abstractmethod
    async def get_claim(self, claim_id: str) -> Optional[Claim]: ...

    @abstractmethod
    async def pending_claims(self, user_id: str, now: datetime) -> List[Claim]: ...

    @abstractmethod
    async def claim_one(self, claim_id: str, user_id: str, asset: str, now: datetime) -> Optional[Claim]:
        """Check-and-set a single claim and credit its reward in one step."""

    @abstractmethod
    async def claim_all(self, user_id: str, asset: str, now: datetime) -> List[Claim]:
        """Claim every pending unexpired claim of a user and credit the sum once."""

    @abstractmethod
    async def forfeit_expired(self, now: datetime) -> List[Claim]:
        """Mark newly expired unclaimed claims as forfeited and return them."""

    # Miner activity
    @abstractmethod
    async def get_activity(self, user_id: str) -> Optional[MinerActivity]: ...

    @abstractmethod
    async def update_activity(self, user_id: str, mutator: ActivityMutator) -> MinerActivity: ...

    @abstractmethod
    async def list_activity(self) -> List[MinerActivity]: ...

    # Staking
    @abstractmethod
    async def open_stake(self, stake: Stake, asset: str) -> Optional[Stake]:
        """Debit the locked amount and persist the stake; None if the balance is short."""

    @abstractmethod
    async def get_stake(self, stake_id: str) -> Optional[Stake]: ...

    @abstractmethod
    async def list_stakes(self, user_id: str) -> List[Stake]: ...

    @abstractmethod
    async def active_stakes(self) -> List[Stake]: ...

    @abstractmethod
    async def pay_stake_reward(
        self, stake_id: str, asset: str, price: Decimal, paid_on: date, now: datetime
    ) -> Optional[StakingRewardEntry]:
        """Pay one day of yield unless already paid on ``paid_on``."""

    @abstractmethod
    async def mature_stake(self, stake_id: str, asset: str, now: datetime) -> Optional[Stake]:
        """Move an unlocked active stake to matured and release its amount."""

    @abstractmethod
    async def list_stake_rewards(self, stake_id: str) -> List[StakingRewardEntry]: ...
