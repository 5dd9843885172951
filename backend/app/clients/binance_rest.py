"""Binance spot REST client for latest crypto prices."""

from app.clients.base import PriceClient, ProviderError
from app.models import FailureKind, MarketClass, PriceQuote


class BinanceRestClient(PriceClient):
    """Binance spot ticker. Keyless, crypto pairs quoted in USDT/BUSD/BTC."""

    name = "binance"
    BASE_URL = "https://api.binance.com"
    MARKETS = frozenset({MarketClass.CRYPTO})
    CALLS_PER_MINUTE = 1200

    def supports(self, symbol: str, market: MarketClass) -> bool:
        return market in self.MARKETS and symbol.endswith(("USDT", "BUSD", "BTC"))

    async def get_price(self, symbol: str, market: MarketClass) -> PriceQuote:
        """
        Fetch the latest trade price.

        Args:
            symbol: Trading pair (e.g., "BTCUSDT")
            market: Market class of the symbol

        Returns:
            PriceQuote tagged with source "binance"
        """
        if not self.supports(symbol, market):
            raise self._unsupported(symbol)

        data = await self._request("/api/v3/ticker/price", {"symbol": symbol})
        if not isinstance(data, dict) or "price" not in data:
            raise ProviderError(self.name, FailureKind.MALFORMED, "missing price")
        return self._quote(symbol, data["price"])
