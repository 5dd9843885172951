"""Twelve Data latest price client."""

from app.clients.base import PriceClient, ProviderError
from app.models import FailureKind, MarketClass, PriceQuote

_COMMODITY_SYMBOLS = {
    "GOLD": "XAU/USD",
    "SILVER": "XAG/USD",
    "OIL": "WTI/USD",
}

_QUOTE_ASSETS = ("USDT", "USD")


def to_twelve_data_symbol(symbol: str, market: MarketClass) -> str | None:
    """Map an internal symbol to Twelve Data notation (BTC/USD, EUR/USD, AAPL)."""
    if market == MarketClass.STOCKS:
        return symbol
    if market == MarketClass.FOREX:
        return f"{symbol[:3]}/{symbol[3:]}" if len(symbol) == 6 else None
    if market == MarketClass.CRYPTO:
        for quote in _QUOTE_ASSETS:
            if symbol.endswith(quote) and len(symbol) > len(quote):
                return f"{symbol[: -len(quote)]}/USD"
        return None
    return _COMMODITY_SYMBOLS.get(symbol)


class TwelveDataClient(PriceClient):
    """Requires an API key. Covers every market class."""

    name = "twelvedata"
    BASE_URL = "https://api.twelvedata.com"
    MARKETS = frozenset(MarketClass)
    CALLS_PER_MINUTE = 8

    def supports(self, symbol: str, market: MarketClass) -> bool:
        return to_twelve_data_symbol(symbol, market) is not None

    async def get_price(self, symbol: str, market: MarketClass) -> PriceQuote:
        td_symbol = to_twelve_data_symbol(symbol, market)
        if td_symbol is None:
            raise self._unsupported(symbol)

        data = await self._request("/price", {"symbol": td_symbol, "apikey": self.api_key})
        if not isinstance(data, dict):
            raise ProviderError(self.name, FailureKind.MALFORMED, "unexpected payload")
        if "code" in data and "message" in data:
            kind = FailureKind.RATE_LIMITED if data["code"] == 429 else FailureKind.HTTP_ERROR
            raise ProviderError(self.name, kind, data["message"])
        if "price" not in data:
            raise ProviderError(self.name, FailureKind.MALFORMED, "missing price")
        return self._quote(symbol, data["price"])
