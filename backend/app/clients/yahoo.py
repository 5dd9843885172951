"""Yahoo Finance quote client for stocks and commodity futures."""

from app.clients.base import PriceClient, ProviderError
from app.models import FailureKind, MarketClass, PriceQuote

# Commodity name -> front-month futures ticker
FUTURES_TICKERS = {
    "GOLD": "GC=F",
    "SILVER": "SI=F",
    "OIL": "CL=F",
    "COPPER": "HG=F",
}


class YahooFinanceClient(PriceClient):
    """Keyless. Yahoo rejects requests without a browser-like user agent."""

    name = "yahoo"
    BASE_URL = "https://query1.finance.yahoo.com"
    MARKETS = frozenset({MarketClass.STOCKS, MarketClass.COMMODITIES})
    CALLS_PER_MINUTE = 60
    HEADERS = {"User-Agent": "Mozilla/5.0 (compatible; signal-engine)"}

    def _ticker(self, symbol: str, market: MarketClass) -> str | None:
        if market == MarketClass.STOCKS:
            return symbol
        if market == MarketClass.COMMODITIES:
            return FUTURES_TICKERS.get(symbol)
        return None

    def supports(self, symbol: str, market: MarketClass) -> bool:
        return self._ticker(symbol, market) is not None

    async def get_price(self, symbol: str, market: MarketClass) -> PriceQuote:
        ticker = self._ticker(symbol, market)
        if ticker is None:
            raise self._unsupported(symbol)

        data = await self._request("/v7/finance/quote", {"symbols": ticker})
        try:
            raw = data["quoteResponse"]["result"][0]["regularMarketPrice"]
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError(self.name, FailureKind.MALFORMED, f"no quote for {ticker}") from e
        return self._quote(symbol, raw)
