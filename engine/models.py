# engine/models.py
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Dict, List
from datetime import datetime, date
from decimal import Decimal
from enum import Enum

# Settings Store keys backing SupplyState
KEY_CURRENT_REWARD = "currentBlockReward"
KEY_BLOCK_NUMBER = "currentBlockNumber"
KEY_TOTAL_BLOCKS = "totalBlocksEverMined"
KEY_LAST_RESET_DATE = "lastResetDate"
KEY_CUMULATIVE_MINTED = "cumulativeMinted"
KEY_LAST_PERIOD = "lastProducedPeriod"
KEY_LAST_STAKING_PAYOUT = "lastStakingPayoutDate"

SUPPLY_KEYS = (
    KEY_CURRENT_REWARD,
    KEY_BLOCK_NUMBER,
    KEY_TOTAL_BLOCKS,
    KEY_LAST_RESET_DATE,
    KEY_CUMULATIVE_MINTED,
    KEY_LAST_PERIOD,
)


class User(BaseModel):
    id: str
    username: Optional[str] = None
    hash_power: Decimal = Decimal("0")
    base_hash_power: Decimal = Decimal("0")
    balances: Dict[str, int] = Field(default_factory=dict)
    mining_started_at: Optional[datetime] = None

    def balance(self, asset: str) -> int:
        return self.balances.get(asset, 0)


class SupplyState(BaseModel):
    cumulative_minted: int = 0
    current_reward: int = 0
    total_blocks: int = 0
    block_number: int = 1
    last_period: Optional[int] = None
    last_reset_date: Optional[date] = None

    @classmethod
    def from_settings(cls, values: Dict[str, Optional[str]], initial_reward: int) -> "SupplyState":
        """Build the state from raw Settings Store values; missing keys take defaults"""
        def _int(key, default):
            raw = values.get(key)
            return int(raw) if raw not in (None, "") else default

        reset = values.get(KEY_LAST_RESET_DATE)
        return cls(
            cumulative_minted=_int(KEY_CUMULATIVE_MINTED, 0),
            current_reward=_int(KEY_CURRENT_REWARD, initial_reward),
            total_blocks=_int(KEY_TOTAL_BLOCKS, 0),
            block_number=_int(KEY_BLOCK_NUMBER, 1),
            last_period=_int(KEY_LAST_PERIOD, None),
            last_reset_date=date.fromisoformat(reset) if reset else None,
        )

    def to_settings(self) -> Dict[str, str]:
        values = {
            KEY_CUMULATIVE_MINTED: str(self.cumulative_minted),
            KEY_CURRENT_REWARD: str(self.current_reward),
            KEY_TOTAL_BLOCKS: str(self.total_blocks),
            KEY_BLOCK_NUMBER: str(self.block_number),
        }
        if self.last_period is not None:
            values[KEY_LAST_PERIOD] = str(self.last_period)
        if self.last_reset_date is not None:
            values[KEY_LAST_RESET_DATE] = self.last_reset_date.isoformat()
        return values


class Block(BaseModel):
    model_config = ConfigDict(frozen=True)

    number: int
    height: int
    reward: int
    total_hash_power: Decimal
    period: int
    produced_at: datetime
    # user_id -> reward units fixed at production; None when no snapshot was taken
    allocations: Optional[Dict[str, int]] = None
    distributed: bool = False


class Claim(BaseModel):
    id: str
    user_id: str
    block_number: int
    block_height: int
    tx_hash: str
    reward: int
    created_at: datetime
    expires_at: datetime
    claimed: bool = False
    claimed_at: Optional[datetime] = None
    forfeited_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def is_claimable(self, now: datetime) -> bool:
        return not self.claimed and not self.is_expired(now)


class MinerActivity(BaseModel):
    user_id: str
    last_claim_time: Optional[datetime] = None
    total_claims: int = 0
    missed_claims: int = 0
    is_active: bool = False
    updated_at: Optional[datetime] = None


class MiningState(str, Enum):
    NOT_STARTED = "not_started"
    NOT_ELIGIBLE = "not_eligible"
    ELIGIBLE_NEXT_PERIOD = "eligible_next_period"
    ACTIVE = "active"
    INACTIVE = "inactive"


class StakeStatus(str, Enum):
    ACTIVE = "active"
    MATURED = "matured"


class Stake(BaseModel):
    id: str
    user_id: str
    locked_amount: int
    price_at_open: Decimal
    required_hash_power: Decimal
    apr_percent: Decimal
    lock_months: int
    daily_reward: int
    total_rewards_paid: int = 0
    opened_at: datetime
    unlocks_at: datetime
    status: StakeStatus = StakeStatus.ACTIVE
    last_reward_at: Optional[datetime] = None


class StakingRewardEntry(BaseModel):
    id: str
    stake_id: str
    user_id: str
    amount: int
    price_at_payment: Decimal
    paid_at: datetime


class BlockSlot(BaseModel):
    """Reward and counters reserved for one produced block"""
    number: int
    height: int
    reward: int


class ClaimAllResult(BaseModel):
    count: int
    total_reward: int
    claims: List[Claim] = Field(default_factory=list)

    @property
    def nothing_to_claim(self) -> bool:
        return self.count == 0


class SweepResult(BaseModel):
    count: int = 0
    forfeited: int = 0


class TickResult(BaseModel):
    period: int
    produced: bool = False
    block: Optional[Block] = None
    claims_created: int = 0
    expired_swept: int = 0
    stakes_paid: Optional[int] = None
    stakes_matured: int = 0
    blocks_recovered: int = 0
    skipped_reason: Optional[str] = None
