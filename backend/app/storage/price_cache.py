"""Latest-price cache.

Keeps the most recent price for each symbol in memory and mirrors it to
Redis with a TTL. Writes are batched: ``update_price`` only marks a
symbol dirty and ``flush_pending_prices`` (run periodically by the task
runner) pushes every dirty symbol in one pipeline round-trip.

Data structure:
- price:{symbol} -> JSON {price, timestamp, source}
"""

from __future__ import annotations

import asyncio
import logging
import time

import orjson

from app.storage import cache

logger = logging.getLogger(__name__)

# Prices are refreshed every 30-120s, keep them a little longer than a long cycle
PRICE_TTL = 300

# Latest price per symbol
_latest_prices: dict[str, dict] = {}
# Symbols changed since the last flush
_dirty_symbols: set[str] = set()
_state_lock: asyncio.Lock | None = None


def _price_key(symbol: str) -> str:
    """Get the cache key for a symbol's price."""
    return f"{cache.KEY_PREFIX_PRICE}{symbol}"


def _get_state_lock() -> asyncio.Lock:
    global _state_lock
    if _state_lock is None:
        _state_lock = asyncio.Lock()
    return _state_lock


async def update_price(
    symbol: str,
    price: float,
    timestamp: float | None = None,
    source: str | None = None,
) -> None:
    """Record the latest price for a symbol.

    Args:
        symbol: Instrument symbol (e.g., "BTCUSDT")
        price: Latest price
        timestamp: Unix timestamp (defaults to now)
        source: Provider that supplied the price
    """
    async with _get_state_lock():
        _latest_prices[symbol] = {
            "price": price,
            "timestamp": timestamp or time.time(),
            "source": source,
        }
        _dirty_symbols.add(symbol)


async def flush_pending_prices() -> bool:
    """Flush all pending price updates to Redis using pipeline.

    Returns:
        True if flush was successful (or there was nothing to flush)
    """
    client = cache.get_client()
    if client is None:
        return False

    async with _get_state_lock():
        if not _dirty_symbols:
            return True

        data_to_flush = {
            symbol: orjson.dumps(_latest_prices[symbol])
            for symbol in _dirty_symbols
            if symbol in _latest_prices
        }
        _dirty_symbols.clear()

    # Execute Redis operations outside lock to avoid blocking updates
    try:
        async with client.pipeline(transaction=False) as pipe:
            for symbol, data in data_to_flush.items():
                pipe.setex(_price_key(symbol), PRICE_TTL, data)
            await pipe.execute()
        return True

    except Exception as e:
        logger.warning(f"Failed to flush prices to Redis: {e}")
        # Retry these symbols on the next flush
        async with _get_state_lock():
            _dirty_symbols.update(data_to_flush)
        return False


def get_price_immediate(symbol: str) -> dict | None:
    """Get the latest price from memory, even if not yet flushed to Redis."""
    return _latest_prices.get(symbol)


async def get_price(symbol: str) -> dict | None:
    """Get the latest price for a symbol, from memory first, then Redis."""
    data = get_price_immediate(symbol)
    if data is not None:
        return data

    if not cache.is_cache_available():
        return None
    return await cache.get_json(_price_key(symbol))


async def get_prices(symbols: list[str]) -> dict[str, dict | None]:
    """Get prices for multiple symbols, from memory first, then Redis."""
    prices = {s: _latest_prices.get(s) for s in symbols}
    missing = [s for s, data in prices.items() if data is None]
    if not missing or not cache.is_cache_available():
        return prices

    results = await cache.mget([_price_key(s) for s in missing])
    for symbol, data in zip(missing, results):
        if data is None:
            continue
        try:
            prices[symbol] = orjson.loads(data)
        except orjson.JSONDecodeError:
            logger.warning(f"Corrupt cached price for {symbol}")
    return prices


def is_price_fresh(price_data: dict | None, max_age_seconds: float = 150.0) -> bool:
    """Check if a price is fresh (not stale)."""
    if price_data is None:
        return False

    timestamp = price_data.get("timestamp")
    if timestamp is None:
        return False

    return time.time() - timestamp <= max_age_seconds


def clear() -> None:
    """Drop all in-memory prices."""
    _latest_prices.clear()
    _dirty_symbols.clear()
