"""CoinGecko simple price client."""

from app.clients.base import PriceClient, ProviderError
from app.models import FailureKind, MarketClass, PriceQuote

# Exchange symbol -> CoinGecko coin id
COINGECKO_IDS = {
    "BTCUSD": "bitcoin",
    "BTCUSDT": "bitcoin",
    "ETHUSD": "ethereum",
    "ETHUSDT": "ethereum",
    "SOLUSDT": "solana",
    "BNBUSDT": "binancecoin",
    "ADAUSDT": "cardano",
    "DOTUSDT": "polkadot",
    "LINKUSDT": "chainlink",
    "LTCUSDT": "litecoin",
    "XRPUSDT": "ripple",
}


class CoinGeckoClient(PriceClient):
    """Keyless, heavily rate-limited (about 10 calls per minute)."""

    name = "coingecko"
    BASE_URL = "https://api.coingecko.com/api/v3"
    MARKETS = frozenset({MarketClass.CRYPTO})
    CALLS_PER_MINUTE = 10

    def supports(self, symbol: str, market: MarketClass) -> bool:
        return market in self.MARKETS and symbol in COINGECKO_IDS

    async def get_price(self, symbol: str, market: MarketClass) -> PriceQuote:
        coin_id = COINGECKO_IDS.get(symbol)
        if coin_id is None or market not in self.MARKETS:
            raise self._unsupported(symbol)

        data = await self._request(
            "/simple/price", {"ids": coin_id, "vs_currencies": "usd"}
        )
        try:
            raw = data[coin_id]["usd"]
        except (KeyError, TypeError) as e:
            raise ProviderError(self.name, FailureKind.MALFORMED, f"no usd price for {coin_id}") from e
        return self._quote(symbol, raw)
