"""
Finnhub quote provider with a symbol validation cache.

The cache remembers whether a symbol is valid, never its price, so a
cache hit still performs a fresh quote fetch. A broken cache only costs
performance: lookups that fail fall back to a direct fetch.
"""
import asyncio
import logging
import re
from datetime import datetime, timezone
from typing import Optional, Protocol

import httpx
from pydantic import ValidationError

from price_checker.config import (
    FINNHUB_API_KEY,
    FINNHUB_BASE_URL,
    HEALTH_CHECK_SYMBOL,
    HEALTH_CHECK_TIMEOUT_SECONDS,
    PROVIDER_NAME,
    PROVIDER_TIMEOUT_SECONDS,
    require_api_key,
)
from price_checker.errors import (
    ErrorKind,
    PriceCheckerError,
    invalid_symbol,
    provider_error,
    provider_rate_limited,
    provider_unauthorized,
)
from price_checker.models import Quote, normalize_symbol
from price_checker.validation_cache import ValidationCache

logger = logging.getLogger(__name__)

SYMBOL_FORMAT = re.compile(r"[A-Za-z0-9.-]+")
MAX_SYMBOL_LENGTH = 10


class QuoteProvider(Protocol):
    name: str

    async def get_quote(self, symbol: str) -> Quote:
        ...

    async def is_healthy(self) -> bool:
        ...


def validate_symbol_format(symbol: str) -> str:
    """Normalize a raw symbol, rejecting obviously malformed input before any network call"""
    normalized = normalize_symbol(symbol)
    if not normalized:
        raise invalid_symbol(normalized, "Symbol cannot be empty")
    if len(normalized) > MAX_SYMBOL_LENGTH:
        raise invalid_symbol(normalized, f"Symbol too long (max {MAX_SYMBOL_LENGTH} characters)")
    if not SYMBOL_FORMAT.fullmatch(normalized):
        raise invalid_symbol(normalized, "Symbol contains invalid characters")
    return normalized


def classify_status(status_code: int, symbol: str, detail: str, provider: str = PROVIDER_NAME) -> PriceCheckerError:
    if status_code == 401:
        return provider_unauthorized(provider)
    if status_code == 429:
        return provider_rate_limited(provider)
    if status_code == 403:
        # Finnhub answers 403 for symbols outside the plan / unknown exchanges
        return invalid_symbol(symbol)
    return provider_error(detail or "Unknown API error", provider)


class FinnhubQuoteProvider:

    name = PROVIDER_NAME

    def __init__(
        self,
        api_key: Optional[str] = FINNHUB_API_KEY,
        cache: Optional[ValidationCache] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        base_url: str = FINNHUB_BASE_URL,
        timeout: float = PROVIDER_TIMEOUT_SECONDS,
        health_symbol: str = HEALTH_CHECK_SYMBOL,
        health_timeout: float = HEALTH_CHECK_TIMEOUT_SECONDS,
    ):
        self.api_key = require_api_key(api_key)
        self.cache = cache
        self.health_symbol = health_symbol
        self.health_timeout = health_timeout
        self._owns_client = http_client is None
        self.http = http_client or httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={"User-Agent": "stock-price-checker/1.0"},
        )

    async def aclose(self):
        if self._owns_client:
            await self.http.aclose()

    async def get_quote(self, symbol: str) -> Quote:
        symbol = validate_symbol_format(symbol)

        if self.cache is None:
            return await self._fetch_quote(symbol)

        try:
            cached = await self.cache.get(symbol)
        except Exception as e:
            logger.warning("Failed to check symbol validation cache for %s: %s", symbol, e)
            return await self._fetch_quote(symbol)

        if cached is False:
            logger.debug("Symbol %s is cached as invalid", symbol)
            raise invalid_symbol(symbol)
        if cached is True:
            logger.debug("Symbol validation cache hit for %s - fetching quote data", symbol)
            return await self._fetch_quote(symbol)

        logger.debug("Symbol validation cache miss for %s - validating with quote fetch", symbol)
        try:
            quote = await self._fetch_quote(symbol)
        except PriceCheckerError as e:
            if e.kind is ErrorKind.INVALID_SYMBOL:
                await self._remember(symbol, False)
            raise
        await self._remember(symbol, True)
        return quote

    async def _remember(self, symbol: str, valid: bool):
        try:
            await self.cache.set(symbol, valid)
            logger.debug("Cached validation result for %s: valid=%s", symbol, valid)
        except Exception as e:
            logger.warning("Failed to write symbol validation cache for %s: %s", symbol, e)

    async def _fetch_quote(self, symbol: str) -> Quote:
        try:
            response = await self.http.get("/quote", params={"symbol": symbol, "token": self.api_key})
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise classify_status(e.response.status_code, symbol, str(e), self.name) from e
        except httpx.HTTPError as e:
            raise provider_error(str(e) or type(e).__name__, self.name) from e
        except ValueError as e:
            raise provider_error(f"Malformed response: {e}", self.name) from e

        # Finnhub returns 200 with c == 0 for unknown symbols
        if not isinstance(data, dict) or not data.get("c"):
            raise invalid_symbol(symbol)

        try:
            quote = Quote(
                symbol=symbol,
                current_price=data["c"],
                change=data.get("d"),
                change_percent=data.get("dp"),
                high=data.get("h"),
                low=data.get("l"),
                open=data.get("o"),
                previous_close=data.get("pc"),
                timestamp=datetime.fromtimestamp(data["t"], tz=timezone.utc) if data.get("t") else None,
            )
        except (ValidationError, TypeError, ValueError, OverflowError, OSError) as e:
            raise provider_error(f"Malformed quote payload: {e}", self.name) from e

        if quote.current_price <= 0:
            raise invalid_symbol(symbol)

        logger.debug("Successfully fetched price for %s: %s", symbol, quote.current_price)
        return quote

    async def is_healthy(self) -> bool:
        try:
            await asyncio.wait_for(self.get_quote(self.health_symbol), timeout=self.health_timeout)
            return True
        except Exception as e:
            logger.warning("%s health check failed: %s", self.name, str(e) or type(e).__name__)
            return False
