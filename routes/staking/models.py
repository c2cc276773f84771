# routes/staking/models.py
from pydantic import BaseModel, Field
from typing import Optional, List
from decimal import Decimal

class StakeRequest(BaseModel):
    amount: str = Field(..., description="Amount of the staked asset, e.g. \"0.5\"")
    lock_months: int = 12
    apr_percent: Optional[Decimal] = None

class StakeOut(BaseModel):
    id: str
    user_id: str
    amount: str
    price_at_open: str
    required_hash_power: str
    apr_percent: str
    lock_months: int
    daily_reward: str
    total_rewards_paid: str
    opened_at: str
    unlocks_at: str
    status: str
    last_reward_at: Optional[str] = None

class UserStakes(BaseModel):
    user_id: str
    asset: str
    current_price: str
    total_staked: str
    total_daily_rewards: str
    total_rewards_paid: str
    stakes: List[StakeOut]

class AprOption(BaseModel):
    months: int
    apr: str

class AprQuote(BaseModel):
    curve: str
    months: Optional[int] = None
    apr: Optional[str] = None
    options: List[AprOption]

class PriceOut(BaseModel):
    asset: str
    price: str
    as_of: str
    source: str
    stale: bool

class StakeRewardOut(BaseModel):
    id: str
    stake_id: str
    amount: str
    price_at_payment: str
    paid_at: str

class StakeRewardHistory(BaseModel):
    stake_id: str
    count: int
    total_paid: str
    rewards: List[StakeRewardOut]
