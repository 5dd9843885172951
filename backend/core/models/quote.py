"""Tagged results returned by the price gateway.

A fetch either produces a ``PriceQuote`` or a ``PriceFailure``; callers
branch on the type instead of inspecting loosely shaped payloads.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field


class FailureKind(str, Enum):
    """Why a price could not be obtained."""

    TIMEOUT = "timeout"
    HTTP_ERROR = "http_error"
    RATE_LIMITED = "rate_limited"
    MALFORMED = "malformed"
    UNSUPPORTED = "unsupported"
    NO_PRICE_AVAILABLE = "no_price_available"

    @property
    def retryable(self) -> bool:
        return self is not FailureKind.UNSUPPORTED


class PriceQuote(BaseModel):
    """A successfully fetched price."""

    model_config = ConfigDict(frozen=True)

    symbol: str
    price: Decimal
    source: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def ok(self) -> bool:
        return True


class PriceFailure(BaseModel):
    """A failed fetch, after every configured provider was tried."""

    model_config = ConfigDict(frozen=True)

    symbol: str
    kind: FailureKind = FailureKind.NO_PRICE_AVAILABLE
    attempted: tuple[str, ...] = ()
    detail: str = ""

    @property
    def ok(self) -> bool:
        return False


PriceResult = PriceQuote | PriceFailure
