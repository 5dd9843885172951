"""Demo position models."""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from uuid import uuid4
from pydantic import BaseModel, Field, model_validator

from core.models.market import MarketClass
from core.models.signal import Direction


class PositionStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class ClosureReason(str, Enum):
    """Why a position was closed."""

    MANUAL = "manual"
    TAKE_PROFIT_HIT = "take_profit_hit"
    STOP_LOSS_HIT = "stop_loss_hit"


class Position(BaseModel):
    """Simulated open or closed position."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    symbol: str
    direction: Direction
    quantity: Decimal = Field(gt=0)
    entry_price: Decimal
    current_price: Decimal | None = None
    target_price: Decimal | None = None
    stop_loss: Decimal | None = None
    market: MarketClass = MarketClass.CRYPTO
    signal_id: str | None = None
    opened_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    status: PositionStatus = PositionStatus.OPEN
    closure_reason: ClosureReason | None = None
    closed_at: datetime | None = None
    realized_pnl: Decimal | None = None
    unrealized_pnl: Decimal = Decimal("0")
    version: int = 0

    def model_post_init(self, __context) -> None:
        if self.current_price is None:
            object.__setattr__(self, "current_price", self.entry_price)

    @property
    def is_open(self) -> bool:
        return self.status == PositionStatus.OPEN

    def pnl_at(self, price: Decimal) -> Decimal:
        """P&L of the position if marked at ``price``."""
        if self.direction == Direction.BUY:
            return (price - self.entry_price) * self.quantity
        return (self.entry_price - price) * self.quantity

    @property
    def pnl_percentage(self) -> Decimal:
        cost = self.entry_price * self.quantity
        if cost == 0:
            return Decimal("0")
        pnl = self.realized_pnl if self.realized_pnl is not None else self.unrealized_pnl
        return pnl / cost * 100

    def mark(self, price: Decimal) -> None:
        """Refresh current price and unrealized P&L."""
        self.current_price = price
        self.unrealized_pnl = self.pnl_at(price)
        self.version += 1

    def check_crossing(self, price: Decimal) -> ClosureReason | None:
        """
        Check if price crosses the target or the stop.
        Target is checked before stop.
        """
        if not self.is_open:
            return None

        if self.direction == Direction.BUY:
            if self.target_price is not None and price >= self.target_price:
                return ClosureReason.TAKE_PROFIT_HIT
            if self.stop_loss is not None and price <= self.stop_loss:
                return ClosureReason.STOP_LOSS_HIT
        else:  # SELL
            if self.target_price is not None and price <= self.target_price:
                return ClosureReason.TAKE_PROFIT_HIT
            if self.stop_loss is not None and price >= self.stop_loss:
                return ClosureReason.STOP_LOSS_HIT

        return None

    def close(self, price: Decimal, reason: ClosureReason, closed_at: datetime | None = None) -> None:
        """Transition open -> closed at ``price``."""
        if not self.is_open:
            raise ValueError(f"Position {self.id} is already closed")

        self.current_price = price
        self.realized_pnl = self.pnl_at(price)
        self.unrealized_pnl = Decimal("0")
        self.status = PositionStatus.CLOSED
        self.closure_reason = reason
        self.closed_at = closed_at or datetime.now(timezone.utc)
        self.version += 1


class OpenPositionRequest(BaseModel):
    """Inbound trigger to open a demo position."""

    symbol: str
    direction: Direction
    quantity: Decimal = Field(gt=0)
    entry_price: Decimal = Field(gt=0)
    target_price: Decimal | None = None
    stop_loss: Decimal | None = None
    market: MarketClass | None = None
    signal_id: str | None = None

    @model_validator(mode="after")
    def _validate_levels(self):
        entry = self.entry_price
        if self.direction == Direction.BUY:
            if self.target_price is not None and self.target_price <= entry:
                raise ValueError("target_price must be above entry_price for BUY")
            if self.stop_loss is not None and self.stop_loss >= entry:
                raise ValueError("stop_loss must be below entry_price for BUY")
        else:
            if self.target_price is not None and self.target_price >= entry:
                raise ValueError("target_price must be below entry_price for SELL")
            if self.stop_loss is not None and self.stop_loss <= entry:
                raise ValueError("stop_loss must be above entry_price for SELL")
        return self
