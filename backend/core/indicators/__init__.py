"""Technical indicators (pure math, no I/O)."""

from core.indicators.indicators import (
    sma,
    ema,
    highest,
    lowest,
    rsi,
    macd,
    bollinger_bands,
    stochastic,
    momentum,
    volatility,
    IndicatorSnapshot,
    IndicatorCalculator,
)

__all__ = [
    "sma",
    "ema",
    "highest",
    "lowest",
    "rsi",
    "macd",
    "bollinger_bands",
    "stochastic",
    "momentum",
    "volatility",
    "IndicatorSnapshot",
    "IndicatorCalculator",
]
