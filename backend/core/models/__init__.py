"""Domain models shared by the service and its tests."""

from core.models.market import (
    Instrument,
    MarketClass,
    PriceHistory,
    PricePoint,
    PriorityTier,
    TIER_ORDER,
)
from core.models.quote import FailureKind, PriceFailure, PriceQuote, PriceResult
from core.models.signal import Direction, RiskTier, Signal, SignalStatus, Timeframe
from core.models.position import (
    ClosureReason,
    OpenPositionRequest,
    Position,
    PositionStatus,
)
from core.models.events import EventType
from core.models.config import MarketRiskProfile, ScoringConfig

__all__ = [
    "Instrument",
    "MarketClass",
    "PriceHistory",
    "PricePoint",
    "PriorityTier",
    "TIER_ORDER",
    "FailureKind",
    "PriceFailure",
    "PriceQuote",
    "PriceResult",
    "Direction",
    "RiskTier",
    "Signal",
    "SignalStatus",
    "Timeframe",
    "ClosureReason",
    "OpenPositionRequest",
    "Position",
    "PositionStatus",
    "EventType",
    "MarketRiskProfile",
    "ScoringConfig",
]
