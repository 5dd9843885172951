"""Technical indicators for signal scoring.

Series functions take prices oldest-first and return a list of the same
length, with ``Decimal("NaN")`` wherever the indicator is not yet defined.
``IndicatorCalculator.snapshot`` reduces them to the latest values, using
``None`` for anything the history is too short to support.
"""

import math
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Sequence

import numpy as np


# =============================================================================
# NumPy kernels (float arrays, NaN-padded)
# =============================================================================

def _to_array(values: Sequence[Decimal | float]) -> np.ndarray:
    return np.array([float(v) for v in values], dtype=np.float64)


def _to_decimals(arr: np.ndarray) -> list[Decimal]:
    return [Decimal(str(v)) if not np.isnan(v) else Decimal("NaN") for v in arr]


def _sma_array(arr: np.ndarray, period: int) -> np.ndarray:
    result = np.full(len(arr), np.nan)
    if period <= 0 or len(arr) < period:
        return result

    for i in range(period - 1, len(arr)):
        result[i] = np.mean(arr[i - period + 1 : i + 1])
    return result


def _ema_array(arr: np.ndarray, period: int) -> np.ndarray:
    """EMA seeded with the SMA of the first full window.

    Leading NaNs in ``arr`` are skipped, so this also works on derived
    series such as the MACD line.
    """
    result = np.full(len(arr), np.nan)
    valid = np.flatnonzero(~np.isnan(arr))
    if period <= 0 or len(valid) < period:
        return result

    start = valid[0]
    multiplier = 2.0 / (period + 1)
    seed = start + period - 1
    result[seed] = np.mean(arr[start : seed + 1])

    for i in range(seed + 1, len(arr)):
        result[i] = arr[i] * multiplier + result[i - 1] * (1 - multiplier)
    return result


def _rolling(arr: np.ndarray, period: int, fn) -> np.ndarray:
    result = np.full(len(arr), np.nan)
    if period <= 0 or len(arr) < period:
        return result

    for i in range(period - 1, len(arr)):
        result[i] = fn(arr[i - period + 1 : i + 1])
    return result


def _rsi_array(arr: np.ndarray, period: int) -> np.ndarray:
    """RSI with Wilder smoothing. First value at index ``period``."""
    result = np.full(len(arr), np.nan)
    if len(arr) < period + 1:
        return result

    deltas = np.diff(arr)
    gains = np.where(deltas > 0, deltas, 0.0)
    losses = np.where(deltas < 0, -deltas, 0.0)

    avg_gain = np.mean(gains[:period])
    avg_loss = np.mean(losses[:period])
    result[period] = _rsi_value(avg_gain, avg_loss)

    for i in range(period + 1, len(arr)):
        avg_gain = (avg_gain * (period - 1) + gains[i - 1]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i - 1]) / period
        result[i] = _rsi_value(avg_gain, avg_loss)
    return result


def _rsi_value(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        # Flat series is neutral, all-gain series saturates
        return 50.0 if avg_gain == 0 else 100.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


def _stochastic_k_array(arr: np.ndarray, period: int) -> np.ndarray:
    hh = _rolling(arr, period, np.max)
    ll = _rolling(arr, period, np.min)
    result = np.full(len(arr), np.nan)
    for i in range(len(arr)):
        if np.isnan(hh[i]):
            continue
        span = hh[i] - ll[i]
        result[i] = 50.0 if span == 0 else (arr[i] - ll[i]) / span * 100.0
    return result


# =============================================================================
# Public series API
# =============================================================================

def sma(values: Sequence[Decimal], period: int) -> list[Decimal]:
    """
    Calculate Simple Moving Average.

    Args:
        values: Sequence of price values
        period: SMA period

    Returns:
        List of SMA values (same length as input, with NaN for initial values)
    """
    return _to_decimals(_sma_array(_to_array(values), period))


def ema(values: Sequence[Decimal], period: int) -> list[Decimal]:
    """
    Calculate Exponential Moving Average.

    The first defined value is the SMA of the first ``period`` values.

    Args:
        values: Sequence of price values
        period: EMA period

    Returns:
        List of EMA values (same length as input, with NaN for initial values)
    """
    return _to_decimals(_ema_array(_to_array(values), period))


def highest(values: Sequence[Decimal], period: int) -> list[Decimal]:
    """Calculate highest value over lookback period."""
    return _to_decimals(_rolling(_to_array(values), period, np.max))


def lowest(values: Sequence[Decimal], period: int) -> list[Decimal]:
    """Calculate lowest value over lookback period."""
    return _to_decimals(_rolling(_to_array(values), period, np.min))


def rsi(values: Sequence[Decimal], period: int = 14) -> list[Decimal]:
    """
    Calculate Relative Strength Index (Wilder).

    Needs ``period + 1`` prices for the first value.

    Args:
        values: Sequence of price values
        period: RSI period

    Returns:
        List of RSI values in [0, 100]
    """
    return _to_decimals(_rsi_array(_to_array(values), period))


def macd(
    values: Sequence[Decimal],
    fast: int = 12,
    slow: int = 26,
    signal: int = 9,
) -> tuple[list[Decimal], list[Decimal], list[Decimal]]:
    """
    Calculate MACD.

    line = EMA(fast) - EMA(slow), signal = EMA(signal) of the line,
    histogram = line - signal.

    Returns:
        Tuple of (line, signal, histogram) lists
    """
    line, sig, hist = _macd_arrays(_to_array(values), fast, slow, signal)
    return _to_decimals(line), _to_decimals(sig), _to_decimals(hist)


def _macd_arrays(arr: np.ndarray, fast: int, slow: int, signal: int):
    line = _ema_array(arr, fast) - _ema_array(arr, slow)
    sig = _ema_array(line, signal)
    return line, sig, line - sig


def bollinger_bands(
    values: Sequence[Decimal],
    period: int = 20,
    std_dev: float = 2.0,
) -> tuple[list[Decimal], list[Decimal], list[Decimal]]:
    """
    Calculate Bollinger Bands (population standard deviation).

    Returns:
        Tuple of (upper, middle, lower) lists
    """
    upper, middle, lower = _bollinger_arrays(_to_array(values), period, std_dev)
    return _to_decimals(upper), _to_decimals(middle), _to_decimals(lower)


def _bollinger_arrays(arr: np.ndarray, period: int, std_dev: float):
    middle = _sma_array(arr, period)
    deviation = _rolling(arr, period, np.std)
    return middle + std_dev * deviation, middle, middle - std_dev * deviation


def stochastic(
    values: Sequence[Decimal],
    period: int = 14,
    signal: int = 3,
) -> tuple[list[Decimal], list[Decimal]]:
    """
    Calculate the stochastic oscillator on a close-only series.

    High and low are taken as the highest and lowest close in the window.
    A flat window yields %K = 50.

    Returns:
        Tuple of (%K, %D) lists
    """
    k = _stochastic_k_array(_to_array(values), period)
    d = _sma_skip_nan(k, signal)
    return _to_decimals(k), _to_decimals(d)


def _sma_skip_nan(arr: np.ndarray, period: int) -> np.ndarray:
    """SMA over a NaN-prefixed series."""
    result = np.full(len(arr), np.nan)
    for i in range(period - 1, len(arr)):
        window = arr[i - period + 1 : i + 1]
        if not np.isnan(window).any():
            result[i] = np.mean(window)
    return result


def momentum(values: Sequence[Decimal]) -> float | None:
    """Percent change between the last two prices."""
    if len(values) < 2 or values[-2] == 0:
        return None
    prev, last = float(values[-2]), float(values[-1])
    return (last - prev) / prev * 100.0


def volatility(values: Sequence[Decimal], window: int = 20) -> float | None:
    """Coefficient of variation (stddev / mean) of the last ``window`` prices."""
    if len(values) < 2:
        return None
    arr = _to_array(values[-window:])
    mean = float(np.mean(arr))
    if mean == 0:
        return None
    return float(np.std(arr)) / mean


# =============================================================================
# Snapshot
# =============================================================================

@dataclass(frozen=True, slots=True)
class IndicatorSnapshot:
    """Latest indicator values for one symbol. ``None`` = insufficient data."""

    price: float | None = None
    sma5: float | None = None
    sma10: float | None = None
    sma20: float | None = None
    ema12: float | None = None
    ema26: float | None = None
    rsi: float | None = None
    macd_line: float | None = None
    macd_signal: float | None = None
    macd_histogram: float | None = None
    bollinger_upper: float | None = None
    bollinger_middle: float | None = None
    bollinger_lower: float | None = None
    stochastic_k: float | None = None
    stochastic_d: float | None = None
    momentum_pct: float | None = None
    volatility: float | None = None

    def as_dict(self) -> dict[str, float | None]:
        return asdict(self)


def _last(arr: np.ndarray) -> float | None:
    if len(arr) == 0:
        return None
    value = float(arr[-1])
    return None if math.isnan(value) else value


class IndicatorCalculator:
    """Calculator for every indicator the signal scorer votes on."""

    def __init__(
        self,
        rsi_period: int = 14,
        macd_fast: int = 12,
        macd_slow: int = 26,
        macd_signal: int = 9,
        bollinger_period: int = 20,
        bollinger_std: float = 2.0,
        stochastic_period: int = 14,
        stochastic_signal: int = 3,
        volatility_window: int = 20,
    ):
        self.rsi_period = rsi_period
        self.macd_fast = macd_fast
        self.macd_slow = macd_slow
        self.macd_signal = macd_signal
        self.bollinger_period = bollinger_period
        self.bollinger_std = bollinger_std
        self.stochastic_period = stochastic_period
        self.stochastic_signal = stochastic_signal
        self.volatility_window = volatility_window

    def snapshot(self, prices: Sequence[Decimal]) -> IndicatorSnapshot:
        """
        Calculate the latest value of every indicator.

        Args:
            prices: Price history, oldest first

        Returns:
            IndicatorSnapshot with None for indicators lacking data
        """
        if not prices:
            return IndicatorSnapshot()

        arr = _to_array(prices)
        line, sig, hist = _macd_arrays(arr, self.macd_fast, self.macd_slow, self.macd_signal)
        upper, middle, lower = _bollinger_arrays(arr, self.bollinger_period, self.bollinger_std)
        k = _stochastic_k_array(arr, self.stochastic_period)
        d = _sma_skip_nan(k, self.stochastic_signal)

        return IndicatorSnapshot(
            price=float(arr[-1]),
            sma5=_last(_sma_array(arr, 5)),
            sma10=_last(_sma_array(arr, 10)),
            sma20=_last(_sma_array(arr, 20)),
            ema12=_last(_ema_array(arr, 12)),
            ema26=_last(_ema_array(arr, 26)),
            rsi=_last(_rsi_array(arr, self.rsi_period)),
            macd_line=_last(line),
            macd_signal=_last(sig),
            macd_histogram=_last(hist),
            bollinger_upper=_last(upper),
            bollinger_middle=_last(middle),
            bollinger_lower=_last(lower),
            stochastic_k=_last(k),
            stochastic_d=_last(d),
            momentum_pct=momentum(prices),
            volatility=volatility(prices, self.volatility_window),
        )
