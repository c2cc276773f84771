# engine/distributor.py
import secrets
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from engine.activity import ActivityTracker
from engine.models import Block, Claim, User
from storage.base import Storage
from utils.clock import utc_now
from utils.logging import logger
from utils.units import mul_div


class RewardDistributor:
    """Splits a block reward among eligible users by hash power share.

    Each share is rounded half-up to the unit; the rounding slack is neither
    redistributed nor carried over.
    """

    def __init__(
        self,
        storage: Storage,
        activity: ActivityTracker,
        claim_window: timedelta = timedelta(hours=24),
        dust_threshold: int = 1,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.storage = storage
        self.activity = activity
        self.claim_window = claim_window
        self.dust_threshold = dust_threshold
        self.clock = clock

    def eligible(self, users: List[User], period: int) -> List[User]:
        return [u for u in users if self.activity.is_eligible(u, period)]

    def shares(self, reward: int, users: List[User]) -> List[tuple]:
        """(user, units) pairs for the given eligible users, dust dropped"""
        if reward <= 0 or not users:
            return []
        total = sum((u.hash_power for u in users), Decimal("0"))
        if total <= 0:
            return []
        result = []
        for user in users:
            amount = mul_div(reward, user.hash_power, total)
            if amount < self.dust_threshold:
                logger.debug(f"Dropping dust reward of {amount} units for {user.id}")
                continue
            result.append((user, amount))
        return result

    def allocate(self, reward: int, users: List[User], period: int) -> Dict[str, int]:
        """Fix the per-user reward of a block from a users snapshot"""
        return {user.id: amount for user, amount in self.shares(reward, self.eligible(users, period))}

    async def distribute(self, block: Block, users: Optional[List[User]] = None) -> List[Claim]:
        """Create one claim per allocated user for ``block``.

        Without ``users`` the block's own allocation snapshot is used; a block
        carrying none is allocated against the current user directory.
        Re-running it for the same block creates no duplicates.
        """
        if users is not None:
            allocations = self.allocate(block.reward, users, block.period)
        elif block.allocations is not None:
            allocations = block.allocations
        else:
            allocations = self.allocate(block.reward, await self.storage.list_users(), block.period)

        if not allocations:
            logger.info(f"Block {block.height}: no eligible miners")
            return []

        claims = []
        for user_id, amount in allocations.items():
            created_at = self.clock()
            claims.append(Claim(
                id=uuid.uuid4().hex,
                user_id=user_id,
                block_number=block.number,
                block_height=block.height,
                tx_hash="0x" + secrets.token_hex(32),
                reward=amount,
                created_at=created_at,
                expires_at=created_at + self.claim_window,
            ))

        created = await self.storage.create_claims(claims)
        logger.info(
            f"Block {block.height}: distributed {sum(c.reward for c in created)} units "
            f"to {len(created)} of {len(allocations)} allocated miners"
        )
        return created
