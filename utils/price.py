# utils/price.py
import asyncio
import time
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Callable, Dict, Optional

import aiohttp
import backoff
from pydantic import BaseModel

from config import settings
from engine.errors import PriceUnavailable
from utils.clock import utc_now
from utils.logging import logger

# CoinGecko coin ids for the assets we quote
COINGECKO_IDS = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
}


class PriceQuote(BaseModel):
    asset: str
    price: Decimal
    as_of: datetime
    source: str
    stale: bool = False


class PriceOracle:
    """USD price of a staked asset"""
    name = "abstract"

    async def current_price(self, asset: str) -> PriceQuote:
        raise NotImplementedError

    async def close(self):
        return None


class StaticPriceOracle(PriceOracle):
    name = "static"

    def __init__(self, price: Decimal, clock: Callable[[], datetime] = utc_now):
        self.price = Decimal(price)
        self.clock = clock

    async def current_price(self, asset: str) -> PriceQuote:
        return PriceQuote(asset=asset, price=self.price, as_of=self.clock(), source=self.name)


class CoinGeckoPriceOracle(PriceOracle):
    """Quotes from the CoinGecko simple price API.

    Fresh quotes are cached for ``ttl`` seconds. When the API fails the last
    known good quote is served, then the configured fallback price.
    """
    name = "coingecko"

    def __init__(
        self,
        url: str = None,
        ttl: int = None,
        timeout: int = None,
        fallback: Optional[Decimal] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.url = url or settings.PRICE_API_URL
        self.ttl = settings.PRICE_CACHE_TTL if ttl is None else ttl
        self.timeout = aiohttp.ClientTimeout(total=timeout or settings.PRICE_API_TIMEOUT)
        self.fallback = Decimal(fallback) if fallback is not None else None
        self.clock = clock
        self._session: Optional[aiohttp.ClientSession] = None
        self._lock = asyncio.Lock()
        self._quotes: Dict[str, PriceQuote] = {}
        self._fetched_at: Dict[str, float] = {}

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    @backoff.on_exception(
        backoff.expo,
        (aiohttp.ClientError, asyncio.TimeoutError),
        max_tries=lambda: settings.PRICE_API_RETRY_COUNT,
        max_time=10,
    )
    async def fetch_price(self, asset: str) -> Decimal:
        coin_id = COINGECKO_IDS.get(asset.upper())
        if coin_id is None:
            raise PriceUnavailable(f"No CoinGecko id for {asset}")

        session = await self._get_session()
        params = {"ids": coin_id, "vs_currencies": "usd"}
        async with session.get(self.url, params=params) as response:
            response.raise_for_status()
            data = await response.json()

        try:
            return Decimal(str(data[coin_id]["usd"]))
        except (KeyError, TypeError, InvalidOperation):
            raise PriceUnavailable(f"Unexpected price payload for {asset}: {data}")

    async def current_price(self, asset: str) -> PriceQuote:
        async with self._lock:
            cached = self._quotes.get(asset)
            if cached and time.monotonic() - self._fetched_at[asset] < self.ttl:
                return cached

            try:
                price = await self.fetch_price(asset)
            except (aiohttp.ClientError, asyncio.TimeoutError, PriceUnavailable) as e:
                logger.warning(f"Price fetch for {asset} failed: {str(e)}")
                if cached:
                    return cached.model_copy(update={"stale": True})
                if self.fallback is not None:
                    return PriceQuote(
                        asset=asset, price=self.fallback, as_of=self.clock(),
                        source="fallback", stale=True,
                    )
                raise PriceUnavailable(f"No price available for {asset}") from e

            quote = PriceQuote(asset=asset, price=price, as_of=self.clock(), source=self.name)
            self._quotes[asset] = quote
            self._fetched_at[asset] = time.monotonic()
            return quote

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()


def build_price_oracle(config=settings) -> PriceOracle:
    source = config.PRICE_SOURCE.lower()
    if source == "static":
        return StaticPriceOracle(Decimal(config.PRICE_FALLBACK))
    if source == "coingecko":
        return CoinGeckoPriceOracle(
            url=config.PRICE_API_URL,
            ttl=config.PRICE_CACHE_TTL,
            timeout=config.PRICE_API_TIMEOUT,
            fallback=Decimal(config.PRICE_FALLBACK) if config.PRICE_FALLBACK else None,
        )
    raise ValueError(f"Unknown PRICE_SOURCE: {config.PRICE_SOURCE}")
