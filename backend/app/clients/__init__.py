"""Price provider clients."""

from app.clients.base import PriceClient, ProviderError, RateLimiter
from app.clients.binance_rest import BinanceRestClient
from app.clients.coingecko import CoinGeckoClient
from app.clients.alpha_vantage import AlphaVantageClient
from app.clients.twelve_data import TwelveDataClient
from app.clients.fxrates import FxRatesClient
from app.clients.yahoo import YahooFinanceClient
from app.clients.retry import RetryPolicy, exponential_backoff, retry

__all__ = [
    "PriceClient",
    "ProviderError",
    "RateLimiter",
    "BinanceRestClient",
    "CoinGeckoClient",
    "AlphaVantageClient",
    "TwelveDataClient",
    "FxRatesClient",
    "YahooFinanceClient",
    "RetryPolicy",
    "exponential_backoff",
    "retry",
]
