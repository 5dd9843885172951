"""Shared plumbing for price provider clients."""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

from app.models import FailureKind, MarketClass, PriceQuote


class ProviderError(Exception):
    """A provider could not return a usable price."""

    def __init__(self, provider: str, kind: FailureKind, message: str = ""):
        self.provider = provider
        self.kind = kind
        super().__init__(f"{provider}: {kind.value}{f' ({message})' if message else ''}")


class RateLimiter:
    """Simple rate limiter for API calls."""

    def __init__(self, calls_per_minute: int = 1200):
        self.calls_per_minute = calls_per_minute
        self.interval = 60.0 / calls_per_minute
        self.last_call = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait if necessary to respect rate limit."""
        async with self._lock:
            now = asyncio.get_running_loop().time()
            wait_time = self.last_call + self.interval - now
            if wait_time > 0:
                await asyncio.sleep(wait_time)
            self.last_call = asyncio.get_running_loop().time()


class PriceClient:
    """Base class for REST price providers.

    Subclasses set ``name``, ``BASE_URL``, ``MARKETS`` and implement
    ``get_price``. Every failure surfaces as ``ProviderError``.
    Requests are not paced here; callers acquire ``rate_limiter`` before
    each call.
    """

    name = "provider"
    BASE_URL = ""
    MARKETS: frozenset[MarketClass] = frozenset()
    CALLS_PER_MINUTE = 60
    HEADERS: dict[str, str] = {}

    def __init__(self, api_key: str = "", timeout: float = 10.0):
        self.api_key = api_key
        self.timeout = timeout
        self.rate_limiter = RateLimiter(self.CALLS_PER_MINUTE)
        self._client: httpx.AsyncClient | None = None

    def supports(self, symbol: str, market: MarketClass) -> bool:
        return market in self.MARKETS

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.BASE_URL,
                headers=self.HEADERS,
                timeout=self.timeout,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _request(self, endpoint: str, params: dict[str, Any] | None = None) -> Any:
        """GET, mapping transport problems to ProviderError.

        Pacing is the caller's job: acquire ``rate_limiter`` first, outside
        any timeout meant for the request itself.
        """
        client = await self._get_client()
        try:
            response = await client.get(endpoint, params=params)
            response.raise_for_status()
            return response.json()
        except httpx.TimeoutException as e:
            raise ProviderError(self.name, FailureKind.TIMEOUT, str(e)) from e
        except httpx.HTTPStatusError as e:
            kind = (
                FailureKind.RATE_LIMITED
                if e.response.status_code == 429
                else FailureKind.HTTP_ERROR
            )
            raise ProviderError(self.name, kind, f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise ProviderError(self.name, FailureKind.HTTP_ERROR, str(e)) from e
        except ValueError as e:
            raise ProviderError(self.name, FailureKind.MALFORMED, "invalid JSON") from e

    def _unsupported(self, symbol: str) -> ProviderError:
        return ProviderError(self.name, FailureKind.UNSUPPORTED, symbol)

    def _quote(self, symbol: str, raw_price: Any) -> PriceQuote:
        """Validate a raw price and wrap it in a PriceQuote."""
        try:
            price = Decimal(str(raw_price))
        except (InvalidOperation, ValueError) as e:
            raise ProviderError(self.name, FailureKind.MALFORMED, f"bad price {raw_price!r}") from e
        if not price.is_finite() or price <= 0:
            raise ProviderError(self.name, FailureKind.MALFORMED, f"bad price {raw_price!r}")
        return PriceQuote(
            symbol=symbol,
            price=price,
            source=self.name,
            timestamp=datetime.now(timezone.utc),
        )

    async def get_price(self, symbol: str, market: MarketClass) -> PriceQuote:
        raise NotImplementedError
