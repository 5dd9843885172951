"""In-memory rolling price history per symbol.

The ingestion scheduler is the only writer. Scoring and position
monitoring read immutable snapshots, so a reader never sees a history
that is being appended to.
"""

import asyncio
import logging

from app.models import PriceHistory, PricePoint

logger = logging.getLogger(__name__)


class PriceHistoryRegistry:
    """Bounded price histories keyed by symbol."""

    def __init__(self, max_size: int = 50):
        self.max_size = max_size
        self._histories: dict[str, PriceHistory] = {}
        self._lock = asyncio.Lock()

    def _get_or_create(self, symbol: str) -> PriceHistory:
        history = self._histories.get(symbol)
        if history is None:
            history = PriceHistory(symbol=symbol, max_size=self.max_size)
            self._histories[symbol] = history
        return history

    async def append(self, point: PricePoint) -> bool:
        """Append a point to its symbol's history.

        Returns:
            False if the point is older than the newest stored point
        """
        async with self._lock:
            added = self._get_or_create(point.symbol).add(point)
        if not added:
            logger.debug(f"{point.symbol}: dropped out-of-order point at {point.timestamp}")
        return added

    async def load(self, symbol: str, points: list[PricePoint]) -> int:
        """Seed a symbol's history (oldest first), e.g. from the store at startup."""
        async with self._lock:
            history = self._get_or_create(symbol)
            return sum(1 for p in points if history.add(p))

    async def snapshot(self, symbol: str) -> tuple[PricePoint, ...]:
        """Immutable copy of a symbol's history, oldest first."""
        async with self._lock:
            history = self._histories.get(symbol)
            return tuple(history.points) if history else ()

    def latest(self, symbol: str) -> PricePoint | None:
        """Newest point for a symbol, without waiting for the lock."""
        history = self._histories.get(symbol)
        return history.latest if history else None

    def symbols(self) -> list[str]:
        return list(self._histories)

    def sizes(self) -> dict[str, int]:
        return {symbol: len(h) for symbol, h in self._histories.items()}
