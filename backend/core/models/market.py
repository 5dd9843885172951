"""Instrument and price series data models."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field


class MarketClass(str, Enum):
    """Asset class of an instrument."""

    CRYPTO = "crypto"
    FOREX = "forex"
    STOCKS = "stocks"
    COMMODITIES = "commodities"


class PriorityTier(str, Enum):
    """Ingestion priority. Higher tiers are refreshed first and more often."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


TIER_ORDER = (PriorityTier.HIGH, PriorityTier.MEDIUM, PriorityTier.LOW)


class Instrument(BaseModel):
    """A tradable symbol in the configured universe."""

    model_config = ConfigDict(frozen=True)

    symbol: str
    market: MarketClass
    priority: PriorityTier = PriorityTier.MEDIUM


class PricePoint(BaseModel):
    """A single observed price."""

    model_config = ConfigDict(frozen=True)

    symbol: str
    price: Decimal
    timestamp: datetime
    source: str
    market: MarketClass

    @property
    def is_synthetic(self) -> bool:
        return self.source == "fallback"


class PriceHistory(BaseModel):
    """Bounded rolling window of price points for one symbol."""

    symbol: str
    points: list[PricePoint] = Field(default_factory=list)
    max_size: int = 50

    def add(self, point: PricePoint) -> bool:
        """Append a point, evicting the oldest when full.

        Points older than the newest entry are rejected so that timestamps
        stay non-decreasing. Returns True if the point was stored.
        """
        if self.points and point.timestamp < self.points[-1].timestamp:
            return False

        self.points.append(point)
        if len(self.points) > self.max_size:
            self.points = self.points[-self.max_size :]
        return True

    def get_prices(self) -> list[Decimal]:
        """Get list of prices, oldest first."""
        return [p.price for p in self.points]

    @property
    def latest(self) -> PricePoint | None:
        return self.points[-1] if self.points else None

    def __len__(self) -> int:
        return len(self.points)
