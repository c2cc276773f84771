# storage/postgres.py
import asyncio
import functools
import json
import uuid
from datetime import datetime, date
from decimal import Decimal
from typing import Dict, List, Optional

import asyncpg

from database import DatabasePool
from engine.errors import StorageUnavailable
from engine.models import (
    Block, Claim, MinerActivity, Stake, StakingRewardEntry, SupplyState, User, SUPPLY_KEYS,
)
from storage.base import Storage, SupplyMutator, ActivityMutator
from utils.logging import logger
from . import queries

TRANSIENT_ERRORS = (
    OSError,
    asyncio.TimeoutError,
    asyncpg.PostgresConnectionError,
    asyncpg.InterfaceError,
    asyncpg.CannotConnectNowError,
    asyncpg.TooManyConnectionsError,
)


def transient(func):
    """Surface connectivity failures as StorageUnavailable"""
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except TRANSIENT_ERRORS as e:
            logger.warning(f"Storage unavailable during {func.__name__}: {str(e)}")
            raise StorageUnavailable(str(e)) from e
    return wrapper


def _user(row, balances: Dict[str, int]) -> User:
    return User(
        id=row['id'],
        username=row['username'],
        hash_power=row['hash_power'],
        base_hash_power=row['base_hash_power'],
        mining_started_at=row['mining_started_at'],
        balances=balances,
    )


def _block(row) -> Block:
    return Block(
        number=row['block_number'],
        height=row['height'],
        reward=row['reward'],
        total_hash_power=row['total_hash_power'],
        period=row['period'],
        produced_at=row['produced_at'],
        allocations=json.loads(row['allocations']) if row['allocations'] is not None else None,
        distributed=row['distributed'],
    )


def _claim(row) -> Claim:
    return Claim(**dict(row))


def _activity(row) -> MinerActivity:
    return MinerActivity(**dict(row))


def _stake(row) -> Stake:
    return Stake(**dict(row))


def _reward(row) -> StakingRewardEntry:
    return StakingRewardEntry(**dict(row))


class PostgresStorage(Storage):
    """Durable backend on top of the shared asyncpg pool"""
    name = "postgres"

    def __init__(self, initial_reward: int = 0, pool: DatabasePool = DatabasePool):
        super().__init__(initial_reward)
        self.pool = pool

    @transient
    async def ensure_schema(self):
        async with self.pool.acquire() as conn:
            await conn.execute(queries.SCHEMA)
        logger.info("Database schema verified")

    async def close(self):
        await self.pool.close()

    # Settings Store
    @transient
    async def get_setting(self, key: str) -> Optional[str]:
        async with self.pool.acquire() as conn:
            return await conn.fetchval(queries.GET_SETTING, key)

    @transient
    async def set_setting(self, key: str, value: str) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(queries.SET_SETTING, key, value)

    async def _read_supply(self, conn) -> SupplyState:
        rows = await conn.fetch(queries.GET_SETTINGS, list(SUPPLY_KEYS))
        return SupplyState.from_settings({r['key']: r['value'] for r in rows}, self.initial_reward)

    @transient
    async def get_supply_state(self) -> SupplyState:
        async with self.pool.acquire() as conn:
            return await self._read_supply(conn)

    @transient
    async def update_supply(self, mutator: SupplyMutator):
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(queries.SUPPLY_LOCK)
                state = await self._read_supply(conn)
                new_state, result = mutator(state)
                await conn.executemany(
                    queries.SET_SETTING, list(new_state.to_settings().items())
                )
                return result

    # User Directory
    @transient
    async def upsert_user(self, user: User) -> User:
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(
                    queries.UPSERT_USER, user.id, user.username, user.hash_power,
                    user.base_hash_power, user.mining_started_at,
                )
                for asset, amount in user.balances.items():
                    await conn.execute(queries.SET_BALANCE, user.id, asset, amount)
        return user

    @transient
    async def get_user(self, user_id: str) -> Optional[User]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(queries.GET_USER, user_id)
            if row is None:
                return None
            balances = await conn.fetch(queries.USER_BALANCES, user_id)
        return _user(row, {b['asset']: b['amount'] for b in balances})

    @transient
    async def list_users(self) -> List[User]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(queries.LIST_USERS)
            balance_rows = await conn.fetch(queries.ALL_BALANCES)
        balances: Dict[str, Dict[str, int]] = {}
        for b in balance_rows:
            balances.setdefault(b['user_id'], {})[b['asset']] = b['amount']
        return [_user(row, balances.get(row['id'], {})) for row in rows]

    @transient
    async def total_hash_power(self) -> Decimal:
        async with self.pool.acquire() as conn:
            return Decimal(await conn.fetchval(queries.TOTAL_HASH_POWER))

    @transient
    async def start_mining(self, user_id: str, at: datetime) -> Optional[User]:
        async with self.pool.acquire() as conn:
            updated = await conn.fetchval(queries.START_MINING, user_id, at)
        if updated is None:
            return None
        return await self.get_user(user_id)

    @transient
    async def credit_balance(self, user_id: str, asset: str, amount: int) -> int:
        async with self.pool.acquire() as conn:
            return await conn.fetchval(queries.CREDIT_BALANCE, user_id, asset, amount)

    @transient
    async def debit_balance(self, user_id: str, asset: str, amount: int) -> Optional[int]:
        async with self.pool.acquire() as conn:
            return await conn.fetchval(queries.DEBIT_BALANCE, user_id, asset, amount)

    @transient
    async def total_balance(self, asset: str) -> int:
        async with self.pool.acquire() as conn:
            return int(await conn.fetchval(queries.TOTAL_BALANCE, asset))

    # Blocks
    @transient
    async def create_block(self, block: Block) -> Block:
        allocations = json.dumps(block.allocations) if block.allocations is not None else None
        async with self.pool.acquire() as conn:
            await conn.execute(
                queries.INSERT_BLOCK, block.height, block.number, block.reward,
                block.total_hash_power, block.period, block.produced_at, allocations,
            )
        return block

    @transient
    async def latest_block(self) -> Optional[Block]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(queries.LATEST_BLOCK)
        return _block(row) if row else None

    @transient
    async def list_blocks(self, limit: int = 20) -> List[Block]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(queries.LIST_BLOCKS, limit)
        return [_block(row) for row in rows]

    @transient
    async def mark_block_distributed(self, height: int) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(queries.MARK_BLOCK_DISTRIBUTED, height)

    @transient
    async def undistributed_blocks(self) -> List[Block]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(queries.UNDISTRIBUTED_BLOCKS)
        return [_block(row) for row in rows]

    # Claims
    @transient
    async def create_claims(self, claims: List[Claim]) -> List[Claim]:
        created = []
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                for c in claims:
                    inserted = await conn.fetchval(
                        queries.INSERT_CLAIM, c.id, c.user_id, c.block_number, c.block_height,
                        c.tx_hash, c.reward, c.created_at, c.expires_at,
                    )
                    if inserted is not None:
                        created.append(c)
        return created

    @transient
    async def get_claim(self, claim_id: str) -> Optional[Claim]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(queries.GET_CLAIM, claim_id)
        return _claim(row) if row else None

    @transient
    async def pending_claims(self, user_id: str, now: datetime) -> List[Claim]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(queries.PENDING_CLAIMS, user_id, now)
        return [_claim(row) for row in rows]

    @transient
    async def claim_one(self, claim_id: str, user_id: str, asset: str, now: datetime) -> Optional[Claim]:
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(queries.CLAIM_ONE, claim_id, user_id, now)
                if row is None:
                    return None
                await conn.fetchval(queries.CREDIT_BALANCE, user_id, asset, row['reward'])
        return _claim(row)

    @transient
    async def claim_all(self, user_id: str, asset: str, now: datetime) -> List[Claim]:
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                rows = await conn.fetch(queries.CLAIM_ALL, user_id, now)
                if not rows:
                    return []
                total = sum(row['reward'] for row in rows)
                await conn.fetchval(queries.CREDIT_BALANCE, user_id, asset, total)
        return [_claim(row) for row in rows]

    @transient
    async def forfeit_expired(self, now: datetime) -> List[Claim]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(queries.FORFEIT_EXPIRED, now)
        return [_claim(row) for row in rows]

    # Miner activity
    @transient
    async def get_activity(self, user_id: str) -> Optional[MinerActivity]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(queries.GET_ACTIVITY, user_id)
        return _activity(row) if row else None

    @transient
    async def update_activity(self, user_id: str, mutator: ActivityMutator) -> MinerActivity:
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                existing = await conn.fetchrow(queries.GET_ACTIVITY_FOR_UPDATE, user_id)
                if existing is None:
                    await conn.execute(queries.ENSURE_ACTIVITY, user_id)
                    await conn.fetchrow(queries.GET_ACTIVITY_FOR_UPDATE, user_id)
                updated = mutator(_activity(existing) if existing else None)
                await conn.execute(
                    queries.SAVE_ACTIVITY, user_id, updated.last_claim_time, updated.total_claims,
                    updated.missed_claims, updated.is_active, updated.updated_at,
                )
        return updated

    @transient
    async def list_activity(self) -> List[MinerActivity]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(queries.LIST_ACTIVITY)
        return [_activity(row) for row in rows]

    # Staking
    @transient
    async def open_stake(self, stake: Stake, asset: str) -> Optional[Stake]:
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                remaining = await conn.fetchval(
                    queries.DEBIT_BALANCE, stake.user_id, asset, stake.locked_amount
                )
                if remaining is None:
                    return None
                await conn.execute(
                    queries.INSERT_STAKE, stake.id, stake.user_id, stake.locked_amount,
                    stake.price_at_open, stake.required_hash_power, stake.apr_percent,
                    stake.lock_months, stake.daily_reward, stake.total_rewards_paid,
                    stake.opened_at, stake.unlocks_at, stake.status.value, stake.last_reward_at,
                )
        return stake

    @transient
    async def get_stake(self, stake_id: str) -> Optional[Stake]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(queries.GET_STAKE, stake_id)
        return _stake(row) if row else None

    @transient
    async def list_stakes(self, user_id: str) -> List[Stake]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(queries.USER_STAKES, user_id)
        return [_stake(row) for row in rows]

    @transient
    async def active_stakes(self) -> List[Stake]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(queries.ACTIVE_STAKES)
        return [_stake(row) for row in rows]

    @transient
    async def pay_stake_reward(
        self, stake_id: str, asset: str, price: Decimal, paid_on: date, now: datetime
    ) -> Optional[StakingRewardEntry]:
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(queries.PAY_STAKE, stake_id, paid_on, now)
                if row is None:
                    return None
                entry = StakingRewardEntry(
                    id=uuid.uuid4().hex,
                    stake_id=row['id'],
                    user_id=row['user_id'],
                    amount=row['daily_reward'],
                    price_at_payment=price,
                    paid_at=now,
                )
                await conn.execute(
                    queries.INSERT_STAKE_REWARD, entry.id, entry.stake_id, entry.user_id,
                    entry.amount, entry.price_at_payment, entry.paid_at,
                )
                await conn.fetchval(queries.CREDIT_BALANCE, entry.user_id, asset, entry.amount)
        return entry

    @transient
    async def mature_stake(self, stake_id: str, asset: str, now: datetime) -> Optional[Stake]:
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(queries.MATURE_STAKE, stake_id, now)
                if row is None:
                    return None
                await conn.fetchval(queries.CREDIT_BALANCE, row['user_id'], asset, row['locked_amount'])
        return _stake(row)

    @transient
    async def list_stake_rewards(self, stake_id: str) -> List[StakingRewardEntry]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(queries.STAKE_REWARDS, stake_id)
        return [_reward(row) for row in rows]
