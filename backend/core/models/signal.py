"""Signal data models."""

import hashlib
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from pydantic import BaseModel, Field

from core.models.market import MarketClass


class Direction(str, Enum):
    """Trade direction."""

    BUY = "BUY"
    SELL = "SELL"


class SignalStatus(str, Enum):
    """Lifecycle status of a stored signal."""

    ACTIVE = "active"
    EXPIRED = "expired"
    SUPERSEDED = "superseded"


class Timeframe(str, Enum):
    """Suggested holding horizon."""

    M15 = "15M"
    H1 = "1H"
    H4 = "4H"
    D1 = "1D"


class RiskTier(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def _generate_signal_id(symbol: str, created_at: datetime, direction: str) -> str:
    """Generate deterministic signal ID based on signal attributes.

    Scoring the same snapshot twice yields the same ID, so a repeated
    insert is an upsert rather than a duplicate.
    """
    ts_str = created_at.strftime("%Y%m%d%H%M%S%f")
    key = f"{symbol}:{ts_str}:{direction}"
    return hashlib.sha256(key.encode()).hexdigest()[:32]


class Signal(BaseModel):
    """Directional trading signal with confidence, target and stop."""

    id: str = ""  # Will be set in model_post_init
    symbol: str
    direction: Direction
    confidence: int = Field(ge=0, le=100)
    entry_price: Decimal
    target_price: Decimal
    stop_loss: Decimal
    timeframe: Timeframe
    market: MarketClass
    status: SignalStatus = SignalStatus.ACTIVE
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    expires_at: datetime | None = None
    source: str = "technical"
    risk: RiskTier = RiskTier.MEDIUM
    reasoning: str = ""
    indicators: dict[str, float | None] = Field(default_factory=dict)

    def model_post_init(self, __context) -> None:
        """Generate deterministic ID and default expiry."""
        if not self.id:
            object.__setattr__(
                self,
                "id",
                _generate_signal_id(self.symbol, self.created_at, self.direction.value),
            )
        if self.expires_at is None:
            object.__setattr__(self, "expires_at", self.created_at + timedelta(hours=1))

    def is_expired(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return self.expires_at is not None and self.expires_at <= now

