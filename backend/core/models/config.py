"""Scoring configuration models."""

from __future__ import annotations

from pydantic import BaseModel

from core.models.market import MarketClass


class MarketRiskProfile(BaseModel):
    """Per-market stop/target distance and confidence multiplier."""

    stop_pct: float
    target_pct: float
    confidence_multiplier: float = 1.0


class ScoringConfig(BaseModel):
    """Signal scoring parameters."""

    # Indicator periods
    rsi_period: int = 14
    macd_fast: int = 12
    macd_slow: int = 26
    macd_signal: int = 9
    bollinger_period: int = 20
    bollinger_std: float = 2.0
    stochastic_period: int = 14
    stochastic_signal: int = 3

    # Thresholds
    rsi_oversold: float = 30.0
    rsi_overbought: float = 70.0
    stochastic_oversold: float = 20.0
    stochastic_overbought: float = 80.0
    momentum_threshold_pct: float = 0.5

    # Gating
    min_history: int = 20
    min_votes: int = 2
    confidence_threshold: int = 60
    min_signal_strength: float = 25.0
    max_confidence: int = 95
    strength_weight: float = 0.5

    # Volatility: stddev / mean over the last `volatility_window` prices
    volatility_window: int = 20
    volatility_threshold: float = 0.02
    volatility_penalty: float = 0.9

    signal_ttl_minutes: int = 60

    markets: dict[MarketClass, MarketRiskProfile] = {
        MarketClass.CRYPTO: MarketRiskProfile(
            stop_pct=0.03, target_pct=0.06, confidence_multiplier=0.95
        ),
        MarketClass.FOREX: MarketRiskProfile(
            stop_pct=0.005, target_pct=0.01, confidence_multiplier=1.05
        ),
        MarketClass.STOCKS: MarketRiskProfile(stop_pct=0.02, target_pct=0.04),
        MarketClass.COMMODITIES: MarketRiskProfile(stop_pct=0.015, target_pct=0.03),
    }
