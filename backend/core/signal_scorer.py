"""Composite multi-indicator signal scorer.

This module is pure business logic with no I/O dependencies. It turns a
price history into at most one directional Signal; persisting and
broadcasting that signal is the caller's job.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Sequence

from core.indicators import IndicatorCalculator, IndicatorSnapshot
from core.models import (
    Direction,
    Instrument,
    PricePoint,
    RiskTier,
    Signal,
    Timeframe,
)
from core.models.config import ScoringConfig

logger = logging.getLogger(__name__)

_PRICE_QUANT = Decimal("0.00000001")


@dataclass
class VoteTally:
    """Bullish/bearish votes and strength points from one snapshot."""

    bullish_votes: int = 0
    bearish_votes: int = 0
    bullish_strength: float = 0.0
    bearish_strength: float = 0.0
    reasons: list[str] = field(default_factory=list)

    def add(self, bullish: bool, weight: int, strength: float, reason: str) -> None:
        if bullish:
            self.bullish_votes += weight
            self.bullish_strength += strength
        else:
            self.bearish_votes += weight
            self.bearish_strength += strength
        self.reasons.append(reason)

    def direction(self, min_votes: int) -> Direction | None:
        """Side with strictly more votes, provided it has at least ``min_votes``."""
        if self.bullish_votes > self.bearish_votes and self.bullish_votes >= min_votes:
            return Direction.BUY
        if self.bearish_votes > self.bullish_votes and self.bearish_votes >= min_votes:
            return Direction.SELL
        return None

    def net_strength(self, direction: Direction) -> float:
        if direction == Direction.BUY:
            net = self.bullish_strength - self.bearish_strength
        else:
            net = self.bearish_strength - self.bullish_strength
        return max(0.0, net)


@dataclass
class ScoreResult:
    """Outcome of scoring one instrument, kept for logging and tests."""

    symbol: str
    snapshot: IndicatorSnapshot
    tally: VoteTally
    direction: Direction | None = None
    strength: float = 0.0
    confidence: int = 0
    rejected: str | None = None  # Reason no signal was produced


def select_timeframe(confidence: int) -> Timeframe:
    """Higher confidence suggests a longer holding horizon."""
    if confidence >= 85:
        return Timeframe.D1
    if confidence >= 75:
        return Timeframe.H4
    if confidence >= 65:
        return Timeframe.H1
    return Timeframe.M15


def risk_tier(confidence: int) -> RiskTier:
    if confidence > 80:
        return RiskTier.HIGH
    if confidence > 60:
        return RiskTier.MEDIUM
    return RiskTier.LOW


class SignalScorer:
    """Votes across indicators and derives confidence, stop and target."""

    def __init__(self, config: ScoringConfig | None = None):
        self.config = config or ScoringConfig()
        self.calculator = IndicatorCalculator(
            rsi_period=self.config.rsi_period,
            macd_fast=self.config.macd_fast,
            macd_slow=self.config.macd_slow,
            macd_signal=self.config.macd_signal,
            bollinger_period=self.config.bollinger_period,
            bollinger_std=self.config.bollinger_std,
            stochastic_period=self.config.stochastic_period,
            stochastic_signal=self.config.stochastic_signal,
            volatility_window=self.config.volatility_window,
        )

    def tally(self, snap: IndicatorSnapshot) -> VoteTally:
        """Collect votes from every indicator that has enough data."""
        cfg = self.config
        tally = VoteTally()
        price = snap.price

        # Moving average alignment
        if None not in (price, snap.sma5, snap.sma10, snap.sma20):
            if price > snap.sma5 > snap.sma10 > snap.sma20:
                tally.add(True, 2, 20.0, "moving averages aligned upward")
            elif price < snap.sma5 < snap.sma10 < snap.sma20:
                tally.add(False, 2, 20.0, "moving averages aligned downward")

        # MACD line vs signal line
        if snap.macd_line is not None and snap.macd_signal is not None:
            if snap.macd_line > snap.macd_signal:
                tally.add(True, 1, 10.0, "MACD above signal line")
            elif snap.macd_line < snap.macd_signal:
                tally.add(False, 1, 10.0, "MACD below signal line")

        # RSI extremes
        if snap.rsi is not None:
            if snap.rsi < cfg.rsi_oversold:
                depth = cfg.rsi_oversold - snap.rsi
                tally.add(True, 1, 10.0 + min(15.0, depth), f"RSI oversold ({snap.rsi:.1f})")
            elif snap.rsi > cfg.rsi_overbought:
                depth = snap.rsi - cfg.rsi_overbought
                tally.add(False, 1, 10.0 + min(15.0, depth), f"RSI overbought ({snap.rsi:.1f})")

        # Bollinger band breach
        if price is not None and snap.bollinger_lower is not None:
            if price < snap.bollinger_lower:
                tally.add(True, 1, 15.0, "price below lower Bollinger band")
            elif price > snap.bollinger_upper:
                tally.add(False, 1, 15.0, "price above upper Bollinger band")

        # Stochastic extremes
        if snap.stochastic_k is not None:
            if snap.stochastic_k < cfg.stochastic_oversold:
                tally.add(True, 1, 10.0, f"stochastic oversold ({snap.stochastic_k:.1f})")
            elif snap.stochastic_k > cfg.stochastic_overbought:
                tally.add(False, 1, 10.0, f"stochastic overbought ({snap.stochastic_k:.1f})")

        # Momentum of the last tick
        if snap.momentum_pct is not None and abs(snap.momentum_pct) > cfg.momentum_threshold_pct:
            strength = min(20.0, abs(snap.momentum_pct) * 10.0)
            tally.add(
                snap.momentum_pct > 0,
                1,
                strength,
                f"momentum {snap.momentum_pct:+.2f}%",
            )

        return tally

    def confidence(self, instrument: Instrument, strength: float, vol: float | None) -> int:
        """
        Confidence = (50 + weight * strength) * market multiplier * volatility factor,
        clamped to [0, max_confidence].
        """
        cfg = self.config
        profile = cfg.markets[instrument.market]
        value = (50.0 + cfg.strength_weight * strength) * profile.confidence_multiplier
        if vol is not None and vol > cfg.volatility_threshold:
            value *= cfg.volatility_penalty
        return max(0, min(cfg.max_confidence, round(value)))

    def evaluate(self, instrument: Instrument, points: Sequence[PricePoint]) -> ScoreResult:
        """Score an instrument without building a Signal."""
        cfg = self.config
        prices = [p.price for p in points]
        snap = self.calculator.snapshot(prices)
        tally = self.tally(snap)
        result = ScoreResult(symbol=instrument.symbol, snapshot=snap, tally=tally)

        if len(points) < cfg.min_history:
            result.rejected = f"insufficient history ({len(points)}/{cfg.min_history})"
            return result

        direction = tally.direction(cfg.min_votes)
        if direction is None:
            result.rejected = (
                f"no consensus (bull={tally.bullish_votes}, bear={tally.bearish_votes})"
            )
            return result

        result.direction = direction
        result.strength = tally.net_strength(direction)
        result.confidence = self.confidence(instrument, result.strength, snap.volatility)

        if result.strength < cfg.min_signal_strength:
            result.rejected = f"weak signal (strength={result.strength:.1f})"
        elif result.confidence < cfg.confidence_threshold:
            result.rejected = f"low confidence ({result.confidence})"
        return result

    def score(
        self,
        instrument: Instrument,
        points: Sequence[PricePoint],
        now: datetime | None = None,
    ) -> Signal | None:
        """
        Produce a signal for the instrument, or None.

        Args:
            instrument: Instrument being scored
            points: Price history snapshot, oldest first
            now: Creation time (defaults to current UTC time)

        Returns:
            Signal if every gate passes, otherwise None
        """
        result = self.evaluate(instrument, points)
        if result.rejected is not None:
            logger.debug(f"{instrument.symbol}: no signal, {result.rejected}")
            return None

        entry = points[-1].price
        stop, target = self.stop_and_target(
            instrument, result.direction, entry, result.snapshot.volatility
        )
        created_at = now or datetime.now(timezone.utc)

        return Signal(
            symbol=instrument.symbol,
            direction=result.direction,
            confidence=result.confidence,
            entry_price=entry,
            target_price=target,
            stop_loss=stop,
            timeframe=select_timeframe(result.confidence),
            market=instrument.market,
            created_at=created_at,
            expires_at=created_at + timedelta(minutes=self.config.signal_ttl_minutes),
            risk=risk_tier(result.confidence),
            reasoning="; ".join(result.tally.reasons),
            indicators=result.snapshot.as_dict(),
        )

    def stop_and_target(
        self,
        instrument: Instrument,
        direction: Direction,
        entry: Decimal,
        vol: float | None,
    ) -> tuple[Decimal, Decimal]:
        """Stop and target distances by market class, widened in volatile markets."""
        profile = self.config.markets[instrument.market]
        scale = 1.0 + min(1.0, (vol or 0.0) * 10.0)
        stop_pct = Decimal(str(round(profile.stop_pct * scale, 8)))
        target_pct = Decimal(str(round(profile.target_pct * scale, 8)))

        if direction == Direction.BUY:
            stop = entry * (1 - stop_pct)
            target = entry * (1 + target_pct)
        else:
            stop = entry * (1 + stop_pct)
            target = entry * (1 - target_pct)
        return stop.quantize(_PRICE_QUANT), target.quantize(_PRICE_QUANT)
