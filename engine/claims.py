# engine/claims.py
from datetime import datetime
from typing import Callable, List

from engine.activity import ActivityTracker
from engine.errors import ALREADY_CLAIMED, EXPIRED, NOT_FOUND, ClaimError
from engine.models import Claim, ClaimAllResult, SweepResult
from storage.base import Storage
from utils.clock import utc_now
from utils.logging import logger
from utils.units import format_units


class ClaimLedger:
    """Pending rewards, claimable up to and including ``expires_at``.

    Expired claims are burned: the sweep records the miss and nothing is
    credited or returned to the supply.
    """

    def __init__(
        self,
        storage: Storage,
        activity: ActivityTracker,
        reward_asset: str = "GBTC",
        clock: Callable[[], datetime] = utc_now,
    ):
        self.storage = storage
        self.activity = activity
        self.reward_asset = reward_asset
        self.clock = clock

    async def pending_claims(self, user_id: str, now: datetime = None) -> List[Claim]:
        return await self.storage.pending_claims(user_id, now or self.clock())

    async def claim_one(self, claim_id: str, user_id: str, now: datetime = None) -> Claim:
        now = now or self.clock()
        claim = await self.storage.claim_one(claim_id, user_id, self.reward_asset, now)
        if claim is None:
            # Lost the check-and-set; work out why for the caller
            existing = await self.storage.get_claim(claim_id)
            if existing is None or existing.user_id != user_id:
                raise ClaimError(f"Claim {claim_id} not found", NOT_FOUND)
            if existing.claimed:
                raise ClaimError(f"Claim {claim_id} already claimed", ALREADY_CLAIMED)
            raise ClaimError(f"Claim {claim_id} expired at {existing.expires_at.isoformat()}", EXPIRED)

        await self.activity.record_outcome(user_id, claimed=True, now=now)
        logger.info(f"User {user_id} claimed {format_units(claim.reward)} from block {claim.block_height}")
        return claim

    async def claim_all(self, user_id: str, now: datetime = None) -> ClaimAllResult:
        now = now or self.clock()
        claims = await self.storage.claim_all(user_id, self.reward_asset, now)
        if not claims:
            return ClaimAllResult(count=0, total_reward=0)

        total = sum(c.reward for c in claims)
        await self.activity.record_outcome(user_id, claimed=True, now=now)
        logger.info(f"User {user_id} claimed {len(claims)} rewards totalling {format_units(total)}")
        return ClaimAllResult(count=len(claims), total_reward=total, claims=claims)

    async def sweep_expired(self, now: datetime = None) -> SweepResult:
        now = now or self.clock()
        expired = await self.storage.forfeit_expired(now)
        for claim in expired:
            await self.activity.record_outcome(claim.user_id, claimed=False, now=now)

        result = SweepResult(count=len(expired), forfeited=sum(c.reward for c in expired))
        if result.count:
            logger.info(f"Forfeited {result.count} expired claims ({format_units(result.forfeited)} burned)")
        return result
