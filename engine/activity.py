# engine/activity.py
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from engine.errors import EligibilityError, UnknownUserError
from engine.models import MinerActivity, MiningState, User
from storage.base import Storage
from utils.clock import period_of, utc_now
from utils.logging import logger


class ActivityTracker:
    """Per-miner claim counters and the eligibility state machine.

    ``is_active`` is advisory only: it never gates distribution.
    """

    def __init__(
        self,
        storage: Storage,
        inactivity_window: timedelta = timedelta(hours=48),
        period_seconds: int = 86400,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.storage = storage
        self.inactivity_window = inactivity_window
        self.period_seconds = period_seconds
        self.clock = clock

    def _is_active(self, last_claim_time: Optional[datetime], now: datetime) -> bool:
        if last_claim_time is None:
            return False
        return (now - last_claim_time) < self.inactivity_window

    async def record_outcome(self, user_id: str, claimed: bool, now: datetime = None) -> MinerActivity:
        now = now or self.clock()

        def mutate(current: Optional[MinerActivity]) -> MinerActivity:
            activity = current or MinerActivity(user_id=user_id)
            if claimed:
                activity.last_claim_time = now
                activity.total_claims += 1
            else:
                activity.missed_claims += 1
            activity.is_active = self._is_active(activity.last_claim_time, now)
            activity.updated_at = now
            return activity

        return await self.storage.update_activity(user_id, mutate)

    async def activity(self, user_id: str) -> MinerActivity:
        activity = await self.storage.get_activity(user_id)
        return activity or MinerActivity(user_id=user_id)

    async def miners_status(self, now: datetime = None) -> List[MinerActivity]:
        """Activity of every known miner, with is_active evaluated at ``now``"""
        now = now or self.clock()
        recorded: Dict[str, MinerActivity] = {
            a.user_id: a for a in await self.storage.list_activity()
        }
        status = []
        for user in await self.storage.list_users():
            if user.mining_started_at is None and user.id not in recorded:
                continue
            activity = recorded.get(user.id) or MinerActivity(user_id=user.id)
            activity.is_active = self._is_active(activity.last_claim_time, now)
            status.append(activity)
        return status

    async def active_miner_count(self, now: datetime = None) -> int:
        return sum(1 for a in await self.miners_status(now) if a.is_active)

    async def start_mining(self, user_id: str, now: datetime = None) -> User:
        """Opt a user in; the first eligible block is the next period's"""
        now = now or self.clock()
        user = await self.storage.get_user(user_id)
        if user is None:
            raise UnknownUserError(f"User {user_id} not found")
        if user.hash_power <= 0:
            raise EligibilityError(f"User {user_id} has no hash power")
        if user.mining_started_at is not None:
            return user

        user = await self.storage.start_mining(user_id, now)
        logger.info(f"User {user_id} started mining at {now.isoformat()}")
        return user

    def first_eligible_period(self, user: User) -> Optional[int]:
        if user.mining_started_at is None:
            return None
        return period_of(user.mining_started_at, self.period_seconds) + 1

    def is_eligible(self, user: User, period: int) -> bool:
        first = self.first_eligible_period(user)
        return user.hash_power > 0 and first is not None and first <= period

    async def mining_state(self, user_id: str, now: datetime = None) -> Dict:
        now = now or self.clock()
        user = await self.storage.get_user(user_id)
        if user is None:
            raise UnknownUserError(f"User {user_id} not found")

        first = self.first_eligible_period(user)
        activity = await self.activity(user_id)
        active = self._is_active(activity.last_claim_time, now)

        if first is None:
            state = MiningState.NOT_STARTED
        elif user.hash_power <= 0:
            # Opted in earlier but holds no hash power now: skipped by every block
            state = MiningState.NOT_ELIGIBLE
        elif period_of(now, self.period_seconds) < first:
            state = MiningState.ELIGIBLE_NEXT_PERIOD
        elif active:
            state = MiningState.ACTIVE
        else:
            state = MiningState.INACTIVE

        return {
            "user_id": user_id,
            "state": state,
            "first_eligible_period": first,
            "hash_power": user.hash_power,
            "is_active": active,
        }
