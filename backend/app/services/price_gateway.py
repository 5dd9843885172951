"""Price gateway: ordered provider fallback per market class.

Each market class has an ordered list of clients. A fetch walks the list,
giving every client its own timeout, and returns the first good quote.
Nothing here raises to the caller: the result is always a PriceQuote or a
PriceFailure.
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable

from app.clients import (
    AlphaVantageClient,
    BinanceRestClient,
    CoinGeckoClient,
    FxRatesClient,
    PriceClient,
    ProviderError,
    RetryPolicy,
    TwelveDataClient,
    YahooFinanceClient,
    exponential_backoff,
    retry,
)
from app.config import Settings
from app.models import (
    FailureKind,
    Instrument,
    MarketClass,
    PriceFailure,
    PriceQuote,
    PriceResult,
)

logger = logging.getLogger(__name__)

# Last resort reference prices for commodities, refreshed by live quotes
COMMODITY_BASELINES = {
    "GOLD": Decimal("2650"),
    "SILVER": Decimal("31.5"),
    "OIL": Decimal("68.5"),
    "COPPER": Decimal("4.15"),
}

FALLBACK_SOURCE = "fallback"


class PriceUnavailable(Exception):
    """Raised inside the retry loop so a PriceFailure can be retried."""

    def __init__(self, failure: PriceFailure):
        self.failure = failure
        super().__init__(f"{failure.symbol}: {failure.kind.value}")


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, PriceUnavailable) and exc.failure.kind.retryable


@dataclass
class ProviderHealth:
    """Failure bookkeeping for one client."""

    failures: int = 0
    last_call: float = 0.0
    cooldown_until: float = 0.0
    successes: int = 0
    total_failures: int = 0


class PriceGateway:
    """Fetches latest prices through ordered provider fallback."""

    def __init__(
        self,
        clients: dict[MarketClass, list[PriceClient]],
        timeout: float = 8.0,
        retry_policy: RetryPolicy | None = None,
        max_failures: int = 3,
        cooldown_seconds: float = 300.0,
        commodity_jitter: float = 0.005,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
    ):
        self._clients = clients
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=3,
            backoff=exponential_backoff(2.0),
            retryable=_is_retryable,
        )
        self.max_failures = max_failures
        self.cooldown_seconds = cooldown_seconds
        self.commodity_jitter = commodity_jitter
        self._clock = clock
        self._rng = rng or random.Random()
        self._baselines: dict[str, Decimal] = dict(COMMODITY_BASELINES)
        self._health: dict[str, ProviderHealth] = {}
        for chain in clients.values():
            for client in chain:
                self._health.setdefault(client.name, ProviderHealth())

    @classmethod
    def from_settings(cls, settings: Settings) -> "PriceGateway":
        """Build provider chains. Keyed providers are left out when no key is set."""
        timeout = settings.provider_timeout
        binance = BinanceRestClient(timeout=timeout)
        coingecko = CoinGeckoClient(timeout=timeout)
        fxrates = FxRatesClient(timeout=timeout)
        yahoo = YahooFinanceClient(timeout=timeout)
        alpha = (
            AlphaVantageClient(settings.alpha_vantage_api_key, timeout=timeout)
            if settings.alpha_vantage_api_key
            else None
        )
        twelve = (
            TwelveDataClient(settings.twelve_data_api_key, timeout=timeout)
            if settings.twelve_data_api_key
            else None
        )

        def chain(*clients: PriceClient | None) -> list[PriceClient]:
            return [c for c in clients if c is not None]

        clients = {
            MarketClass.CRYPTO: chain(binance, coingecko, twelve),
            MarketClass.FOREX: chain(alpha, twelve, fxrates),
            MarketClass.STOCKS: chain(alpha, twelve, yahoo),
            MarketClass.COMMODITIES: chain(yahoo, twelve),
        }
        for market, providers in clients.items():
            logger.info(
                f"{market.value} providers: {', '.join(c.name for c in providers) or 'none'}"
            )

        return cls(
            clients,
            timeout=timeout,
            retry_policy=RetryPolicy(
                max_attempts=settings.retry_attempts,
                backoff=exponential_backoff(settings.retry_base_delay),
                retryable=_is_retryable,
            ),
            max_failures=settings.provider_max_failures,
            cooldown_seconds=settings.provider_cooldown_seconds,
            commodity_jitter=settings.commodity_jitter,
        )

    async def close(self) -> None:
        closed = set()
        for chain in self._clients.values():
            for client in chain:
                if id(client) not in closed:
                    closed.add(id(client))
                    await client.close()

    # ------------------------------------------------------------------
    # Provider health
    # ------------------------------------------------------------------

    def _available(self, name: str) -> bool:
        health = self._health[name]
        if health.failures < self.max_failures:
            return True
        if self._clock() < health.cooldown_until:
            return False
        # Cooldown over, start counting again
        health.failures = 0
        logger.info(f"{name} cooldown ended, resetting failures")
        return True

    def _mark(self, name: str, success: bool) -> None:
        health = self._health[name]
        health.last_call = self._clock()
        if success:
            health.successes += 1
            health.failures = max(0, health.failures - 1)
            return

        health.total_failures += 1
        health.failures += 1
        if health.failures >= self.max_failures:
            health.cooldown_until = health.last_call + self.cooldown_seconds
            logger.warning(
                f"{name} failed {health.failures} times, cooling down for "
                f"{self.cooldown_seconds:.0f}s"
            )

    def get_status(self) -> dict[str, dict]:
        """Availability, failure count and remaining cooldown per provider."""
        now = self._clock()
        status = {}
        for name, health in self._health.items():
            in_cooldown = health.failures >= self.max_failures and now < health.cooldown_until
            status[name] = {
                "available": not in_cooldown,
                "failures": health.failures,
                "max_failures": self.max_failures,
                "successes": health.successes,
                "total_failures": health.total_failures,
                "cooldown_remaining": round(health.cooldown_until - now, 1) if in_cooldown else 0,
            }
        return status

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    async def _attempt(self, client: PriceClient, symbol: str, market: MarketClass) -> PriceResult:
        # Waiting for our own rate limit is not a provider failure
        await client.rate_limiter.acquire()
        try:
            quote = await asyncio.wait_for(client.get_price(symbol, market), self.timeout)
        except asyncio.TimeoutError:
            kind, detail = FailureKind.TIMEOUT, f"no answer within {self.timeout}s"
        except ProviderError as e:
            kind, detail = e.kind, str(e)
        except Exception as e:
            logger.warning(f"{client.name} raised unexpectedly for {symbol}: {e}")
            kind, detail = FailureKind.MALFORMED, str(e)
        else:
            self._mark(client.name, True)
            return quote

        if kind != FailureKind.UNSUPPORTED:
            self._mark(client.name, False)
        return PriceFailure(symbol=symbol, kind=kind, attempted=(client.name,), detail=detail)

    async def fetch_price(self, symbol: str, market: MarketClass) -> PriceResult:
        """
        Fetch the latest price, falling back through the market's providers.

        Args:
            symbol: Instrument symbol
            market: Market class, selects the provider chain

        Returns:
            PriceQuote from the first provider that answers, a synthetic
            quote for commodities when every provider fails, otherwise
            PriceFailure. Never raises.
        """
        attempted: list[str] = []
        errors: list[str] = []

        for client in self._clients.get(market, []):
            if not client.supports(symbol, market) or not self._available(client.name):
                continue
            attempted.append(client.name)
            result = await self._attempt(client, symbol, market)
            if isinstance(result, PriceQuote):
                if market == MarketClass.COMMODITIES:
                    self._baselines[symbol] = result.price
                return result
            errors.append(f"{client.name}={result.kind.value}")

        if market == MarketClass.COMMODITIES and symbol in self._baselines:
            return self._synthetic_quote(symbol)

        if not attempted:
            logger.debug(f"{symbol}: no provider available for {market.value}")
            return PriceFailure(
                symbol=symbol,
                kind=FailureKind.NO_PRICE_AVAILABLE if self._clients.get(market) else FailureKind.UNSUPPORTED,
                detail="no provider available",
            )

        logger.warning(f"{symbol}: all providers failed ({', '.join(errors)})")
        return PriceFailure(
            symbol=symbol,
            kind=FailureKind.NO_PRICE_AVAILABLE,
            attempted=tuple(attempted),
            detail="; ".join(errors),
        )

    def _synthetic_quote(self, symbol: str) -> PriceQuote:
        baseline = self._baselines[symbol]
        jitter = self._rng.uniform(-self.commodity_jitter, self.commodity_jitter)
        price = (baseline * (1 + Decimal(str(round(jitter, 8))))).quantize(Decimal("0.0001"))
        logger.info(f"{symbol}: using fallback price {price}")
        return PriceQuote(symbol=symbol, price=price, source=FALLBACK_SOURCE)

    async def fetch_with_retry(self, instrument: Instrument) -> PriceResult:
        """fetch_price with backoff between full passes over the providers."""

        async def _once() -> PriceQuote:
            result = await self.fetch_price(instrument.symbol, instrument.market)
            if isinstance(result, PriceFailure):
                raise PriceUnavailable(result)
            return result

        try:
            return await retry(
                _once,
                self.retry_policy,
                description=f"price fetch {instrument.symbol}",
            )
        except PriceUnavailable as e:
            return e.failure
