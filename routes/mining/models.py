# routes/mining/models.py
from pydantic import BaseModel
from typing import Optional, List

class ClaimOut(BaseModel):
    id: str
    block_number: int
    block_height: int
    tx_hash: str
    reward: str
    created_at: str
    expires_at: str
    claimed: bool
    claimed_at: Optional[str] = None

class PendingClaims(BaseModel):
    user_id: str
    count: int
    total_pending: str
    claims: List[ClaimOut]

class ClaimAllOut(BaseModel):
    count: int
    total_reward: str
    nothing_to_claim: bool
    claims: List[ClaimOut]

class MinerStatus(BaseModel):
    user_id: str
    last_claim_time: Optional[str] = None
    total_claims: int
    missed_claims: int
    is_active: bool

class MiningStatus(BaseModel):
    user_id: str
    state: str
    first_eligible_period: Optional[int] = None
    hash_power: str
    is_active: bool

class TickOut(BaseModel):
    period: int
    produced: bool
    block_number: Optional[int] = None
    block_height: Optional[int] = None
    reward: Optional[str] = None
    claims_created: int
    expired_swept: int
    stakes_paid: Optional[int] = None
    stakes_matured: int
    blocks_recovered: int = 0
    skipped_reason: Optional[str] = None
