"""FXRatesAPI client (keyless forex rates)."""

from app.clients.base import PriceClient, ProviderError
from app.models import FailureKind, MarketClass, PriceQuote


class FxRatesClient(PriceClient):
    name = "fxratesapi"
    BASE_URL = "https://api.fxratesapi.com"
    MARKETS = frozenset({MarketClass.FOREX})
    CALLS_PER_MINUTE = 30

    def supports(self, symbol: str, market: MarketClass) -> bool:
        return market in self.MARKETS and len(symbol) == 6

    async def get_price(self, symbol: str, market: MarketClass) -> PriceQuote:
        if not self.supports(symbol, market):
            raise self._unsupported(symbol)

        base, quote = symbol[:3], symbol[3:]
        data = await self._request("/latest", {"base": base, "currencies": quote})
        try:
            raw = data["rates"][quote]
        except (KeyError, TypeError) as e:
            raise ProviderError(self.name, FailureKind.MALFORMED, f"no rate for {quote}") from e
        return self._quote(symbol, raw)
