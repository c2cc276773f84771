# storage/__init__.py
from config import settings
from database import DatabasePool
from utils.logging import logger

from .base import Storage
from .memory import MemoryStorage
from .postgres import PostgresStorage

__all__ = ["Storage", "MemoryStorage", "PostgresStorage", "init_storage"]


async def init_storage(initial_reward: int, backend: str = None) -> Storage:
    """Pick the storage backend once at start-up.

    "postgres" and "memory" are forced choices; "auto" probes the database
    and falls back to the in-memory backend when it does not answer.
    """
    backend = (backend or settings.STORAGE_BACKEND).lower()
    if backend not in ("auto", "postgres", "memory"):
        raise ValueError(f"Unknown STORAGE_BACKEND: {backend}")

    if backend == "memory":
        logger.info("Using in-memory storage")
        return MemoryStorage(initial_reward)

    if backend == "postgres" or await DatabasePool.probe():
        storage = PostgresStorage(initial_reward)
        await storage.ensure_schema()
        logger.info("Using PostgreSQL storage")
        return storage

    logger.warning("Database unreachable, falling back to in-memory storage")
    return MemoryStorage(initial_reward)
