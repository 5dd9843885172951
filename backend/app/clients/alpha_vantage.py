"""Alpha Vantage client for forex rates and stock quotes."""

from app.clients.base import PriceClient, ProviderError
from app.models import FailureKind, MarketClass, PriceQuote


class AlphaVantageClient(PriceClient):
    """Requires an API key. Free tier allows 5 calls per minute."""

    name = "alphavantage"
    BASE_URL = "https://www.alphavantage.co"
    MARKETS = frozenset({MarketClass.FOREX, MarketClass.STOCKS})
    CALLS_PER_MINUTE = 5

    async def get_price(self, symbol: str, market: MarketClass) -> PriceQuote:
        if market == MarketClass.FOREX and len(symbol) == 6:
            data = await self._query(
                {
                    "function": "CURRENCY_EXCHANGE_RATE",
                    "from_currency": symbol[:3],
                    "to_currency": symbol[3:],
                }
            )
            block, field = "Realtime Currency Exchange Rate", "5. Exchange Rate"
        elif market == MarketClass.STOCKS:
            data = await self._query({"function": "GLOBAL_QUOTE", "symbol": symbol})
            block, field = "Global Quote", "05. price"
        else:
            raise self._unsupported(symbol)

        try:
            raw = data[block][field]
        except (KeyError, TypeError) as e:
            raise ProviderError(self.name, FailureKind.MALFORMED, f"missing {block}") from e
        return self._quote(symbol, raw)

    async def _query(self, params: dict[str, str]) -> dict:
        data = await self._request("/query", {**params, "apikey": self.api_key})
        if not isinstance(data, dict):
            raise ProviderError(self.name, FailureKind.MALFORMED, "unexpected payload")
        # Errors come back as HTTP 200 with a message field
        if "Error Message" in data:
            raise ProviderError(self.name, FailureKind.MALFORMED, data["Error Message"])
        if "Note" in data or "Information" in data:
            raise ProviderError(self.name, FailureKind.RATE_LIMITED, "API call frequency exceeded")
        return data
