# database.py
import asyncpg
import asyncio
from contextlib import asynccontextmanager
from typing import Optional, Dict, Any
from config import settings
from utils.logging import logger
import time
import backoff

class DatabasePool:
    _instance: Optional[asyncpg.Pool] = None
    _lock = asyncio.Lock()
    _last_connection_time: Dict[int, float] = {}
    _connection_attempts = 0

    @classmethod
    async def get_pool(cls) -> asyncpg.Pool:
        if not cls._instance:
            async with cls._lock:
                if not cls._instance:
                    cls._instance = await cls._create_pool()
        return cls._instance

    @classmethod
    @backoff.on_exception(
        backoff.expo,
        (asyncpg.TooManyConnectionsError, asyncpg.CannotConnectNowError, ConnectionError, OSError),
        max_tries=3,
        max_time=30
    )
    async def _create_pool(cls) -> asyncpg.Pool:
        """Create a new connection pool"""
        try:
            pool = await asyncpg.create_pool(
                host=settings.DB_HOST,
                port=settings.DB_PORT,
                user=settings.DB_USER,
                password=settings.DB_PASSWORD,
                database=settings.DB_NAME,
                min_size=settings.POOL_MIN_SIZE,
                max_size=settings.POOL_MAX_SIZE,
                max_queries=50000,
                max_inactive_connection_lifetime=600.0,  # 10 minutes
                timeout=settings.CONNECTION_TIMEOUT,
                command_timeout=settings.COMMAND_TIMEOUT,
                setup=cls._setup_connection,
            )
            logger.info(
                "Created database pool",
                extra={"min_size": settings.POOL_MIN_SIZE, "max_size": settings.POOL_MAX_SIZE}
            )
            return pool
        except Exception as e:
            logger.error(f"Failed to create connection pool: {str(e)}")
            raise

    @staticmethod
    async def _setup_connection(conn: asyncpg.Connection):
        """Configure each connection handed out by the pool"""
        await conn.execute('SET statement_timeout = 30000')  # 30 seconds
        await conn.execute('SET idle_in_transaction_session_timeout = 60000')  # 1 minute
        await conn.execute("SET application_name TO 'hashwave-engine'")

    @classmethod
    @asynccontextmanager
    async def acquire(cls):
        """Acquire a pooled connection, tracking how long it is held"""
        pool = await cls.get_pool()
        try:
            async with pool.acquire() as connection:
                conn_id = id(connection)
                cls._last_connection_time[conn_id] = time.time()
                cls._connection_attempts += 1
                try:
                    yield connection
                finally:
                    cls._last_connection_time.pop(conn_id, None)
        except asyncpg.TooManyConnectionsError:
            logger.warning("Too many connections while acquiring from pool")
            raise

    @classmethod
    async def probe(cls) -> bool:
        """Return True when the database answers a trivial query"""
        try:
            async with cls.acquire() as conn:
                await conn.fetchval("SELECT 1")
            return True
        except Exception as e:
            logger.warning(f"Database probe failed: {str(e)}")
            await cls.close()
            return False

    @classmethod
    async def close(cls):
        """Gracefully close the connection pool"""
        if cls._instance:
            await cls._instance.close()
            cls._instance = None
            cls._last_connection_time.clear()
            cls._connection_attempts = 0
            logger.info("Database pool closed and reset")

    @classmethod
    async def get_pool_stats(cls) -> Dict[str, Any]:
        """Get current pool statistics"""
        if not cls._instance:
            return {"status": "not_initialized"}

        return {
            "active_connections": len(cls._last_connection_time),
            "total_connection_attempts": cls._connection_attempts,
            "pool_min_size": cls._instance.get_min_size(),
            "pool_max_size": cls._instance.get_max_size(),
            "pool_size": cls._instance.get_size(),
            "pool_available": cls._instance.get_idle_size(),
        }
