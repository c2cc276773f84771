# utils/cache.py
from typing import Any, Callable, Optional
from fastapi import Request, Response
from fastapi_cache import FastAPICache
from fastapi_cache.backends.redis import RedisBackend
from fastapi_cache.coder import Coder
from redis import asyncio as aioredis
import hashlib
import json
from decimal import Decimal
from enum import Enum
import datetime
from pydantic import BaseModel

class JSONEncoder(json.JSONEncoder):
    """Custom JSON encoder that handles special types"""
    def default(self, obj):
        if isinstance(obj, BaseModel):
            return obj.model_dump(mode="json")
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, (datetime.datetime, datetime.date)):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, bytes):
            return obj.decode('utf-8')
        return super().default(obj)

class CustomCoder(Coder):
    """Custom coder to handle special types in Redis responses"""
    @classmethod
    def decode(cls, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, bytes):
            value = value.decode()
        if isinstance(value, str):
            return json.loads(value)
        return value

    @classmethod
    def encode(cls, value: Any) -> str:
        return json.dumps(value, cls=JSONEncoder)

class CustomRedisBackend(RedisBackend):
    """Redis backend storing plain strings"""
    async def get(self, key: str) -> Optional[str]:
        value = await self.redis.get(key)
        if isinstance(value, bytes):
            return value.decode()
        return value

    async def set(self, key: str, value: str, expire: Optional[int] = None) -> None:
        if isinstance(value, bytes):
            value = value.decode()
        await self.redis.set(key, value, ex=expire)

def create_cache_key_builder(namespace: str) -> Callable:
    """Creates a cache key builder that keeps only plain route parameters"""
    def key_builder(
        func: Callable,
        namespace: str = namespace,
        request: Optional[Request] = None,
        response: Optional[Response] = None,
        args: tuple = (),
        kwargs: Optional[dict] = None,
    ) -> str:
        cache_params = {}
        for key, value in (kwargs or {}).items():
            # Skip the request, injected engine objects and anything private
            if (
                isinstance(value, (str, int, float, bool, Decimal))
                and not key.startswith("_")
            ):
                cache_params[key] = value

        param_str = json.dumps(cache_params, sort_keys=True, cls=JSONEncoder)
        param_hash = hashlib.md5(param_str.encode()).hexdigest()[:8]
        return f"{namespace}:{func.__module__}:{func.__name__}:{param_hash}"

    return key_builder

# Key builders per cached area
SUPPLY_CACHE = create_cache_key_builder("supply")
NETWORK_CACHE = create_cache_key_builder("network")
STAKING_CACHE = create_cache_key_builder("staking")

async def setup_cache(redis_url: str):
    """Initialize Redis cache"""
    redis = aioredis.from_url(
        redis_url,
        encoding="utf8",
        decode_responses=True,
        max_connections=50,
        socket_timeout=5,
        socket_connect_timeout=5,
        socket_keepalive=True,
        health_check_interval=30,
        retry_on_timeout=True
    )

    backend = CustomRedisBackend(redis)
    FastAPICache.init(
        backend,
        prefix="fastapi-cache:",
        key_builder=NETWORK_CACHE,
        coder=CustomCoder
    )
    return redis
