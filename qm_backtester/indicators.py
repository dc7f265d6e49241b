"""
Indicator Library
-----------------
Concrete indicators built on the framework in `indicator.py`.
Each factory binds an immutable params dataclass to stateless compute functions.

Edge policy:
- Not enough history -> NaN (SMA and Bollinger degrade to the latest raw value).
- Zero divisor -> the midpoint of the indicator's natural range (see NEUTRAL).
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from functools import partial
from typing import Any, Literal, Mapping

import numpy as np

from .indicator import History, Indicator

NAN = float("nan")

# Value returned when the indicator's divisor is zero (e.g. a flat series).
NEUTRAL: dict[str, float] = {
    "rsi": 50.0,
    "stochastic": 50.0,
    "williams_r": -50.0,
    "cci": 0.0,
}


def _pick(row: Any, field: str | None) -> float:
    if isinstance(row, Mapping):
        return float(row[field])
    return float(row)


@dataclass(frozen=True)
class WindowParams:
    period: int
    field: str | None = None

    def __post_init__(self) -> None:
        if self.period < 1:
            raise ValueError(f"period must be >= 1, got {self.period}")


@dataclass(frozen=True)
class HLCParams:
    period: int
    high: str | None = None
    low: str | None = None
    close: str | None = None

    def __post_init__(self) -> None:
        if self.period < 1:
            raise ValueError(f"period must be >= 1, got {self.period}")


# -----------------------------
# SMA
# -----------------------------
def _sma_compute(p: WindowParams, h: History) -> float:
    n = len(h)
    if n == 0:
        return NAN
    if n < p.period:
        return h.latest(p.field)
    return float(h.window(p.period, p.field).sum()) / p.period


def _sma_incremental(p: WindowParams, prev: float, row: Any, h: History) -> float:
    # Rolling update only once the previous value is itself a full-window mean.
    if len(h) <= p.period:
        return _sma_compute(p, h)
    dropped = h.value(-1 - p.period, p.field)
    return prev + (_pick(row, p.field) - dropped) / p.period


def sma(name: str = "sma", period: int = 5, field: str | None = None) -> Indicator:
    """Simple moving average. Degrades to the latest value below `period` rows."""
    p = WindowParams(period, field)
    return Indicator(
        name,
        partial(_sma_compute, p),
        incremental=partial(_sma_incremental, p),
        params=p,
    )


# -----------------------------
# EMA
# -----------------------------
def _ema_compute(p: WindowParams, h: History) -> float:
    n = len(h)
    if n < p.period:
        return NAN
    vals = h.window(n, p.field)
    k = 2.0 / (p.period + 1)
    ema = float(vals[: p.period].sum()) / p.period
    for v in vals[p.period :]:
        ema = float(v) * k + ema * (1 - k)
    return ema


def _ema_incremental(p: WindowParams, prev: float, row: Any, h: History) -> float:
    if len(h) <= p.period:
        return _ema_compute(p, h)
    k = 2.0 / (p.period + 1)
    return _pick(row, p.field) * k + prev * (1 - k)


def ema(name: str = "ema", period: int = 5, field: str | None = None) -> Indicator:
    """Exponential moving average seeded with the SMA of the first `period` rows."""
    p = WindowParams(period, field)
    return Indicator(
        name,
        partial(_ema_compute, p),
        incremental=partial(_ema_incremental, p),
        params=p,
    )


# -----------------------------
# Wilder average gain / loss, RSI
# -----------------------------
@dataclass(frozen=True)
class WilderParams:
    period: int
    field: str | None = None
    gains: bool = True


def _move(p: WilderParams, delta: float) -> float:
    if p.gains:
        return delta if delta > 0 else 0.0
    return -delta if delta < 0 else 0.0


def _wilder_compute(p: WilderParams, h: History) -> float:
    n = len(h)
    if n <= p.period:
        return NAN
    vals = h.window(n, p.field)
    diffs = np.diff(vals)
    avg = sum(_move(p, float(d)) for d in diffs[: p.period]) / p.period
    for d in diffs[p.period :]:
        avg = (avg * (p.period - 1) + _move(p, float(d))) / p.period
    return avg


def _wilder_incremental(p: WilderParams, prev: float, row: Any, h: History) -> float:
    if len(h) <= p.period + 1:
        return _wilder_compute(p, h)
    delta = _pick(row, p.field) - h.value(-2, p.field)
    return (prev * (p.period - 1) + _move(p, delta)) / p.period


def average_gain(name: str, period: int = 14, field: str | None = None) -> Indicator:
    p = WilderParams(period, field, gains=True)
    return Indicator(
        name,
        partial(_wilder_compute, p),
        incremental=partial(_wilder_incremental, p),
        params=p,
    )


def average_loss(name: str, period: int = 14, field: str | None = None) -> Indicator:
    p = WilderParams(period, field, gains=False)
    return Indicator(
        name,
        partial(_wilder_compute, p),
        incremental=partial(_wilder_incremental, p),
        params=p,
    )


@dataclass(frozen=True)
class RSIParams:
    period: int
    gain_col: str
    loss_col: str


def _rsi_compute(p: RSIParams, h: History) -> float:
    if len(h) <= p.period:
        return NAN
    gain = h.indicator(-1, p.gain_col)
    loss = h.indicator(-1, p.loss_col)
    if math.isnan(gain) or math.isnan(loss):
        return NAN
    if loss == 0:
        return NEUTRAL["rsi"] if gain == 0 else 100.0
    return 100.0 - 100.0 / (1.0 + gain / loss)


def rsi(name: str = "rsi", period: int = 14, field: str | None = None) -> Indicator:
    """Relative Strength Index over Wilder-smoothed gains and losses."""
    gain = average_gain(f"{name}_avg_gain", period, field)
    loss = average_loss(f"{name}_avg_loss", period, field)
    p = RSIParams(period, gain.name, loss.name)
    return Indicator(name, partial(_rsi_compute, p), depends_on=(gain, loss), params=p)


# -----------------------------
# MACD
# -----------------------------
@dataclass(frozen=True)
class DiffParams:
    left: str
    right: str


def _diff_compute(p: DiffParams, h: History) -> float:
    a = h.indicator(-1, p.left)
    b = h.indicator(-1, p.right)
    if math.isnan(a) or math.isnan(b):
        return NAN
    return a - b


def macd(
    name: str = "macd", fast: int = 12, slow: int = 26, field: str | None = None
) -> Indicator:
    """MACD line: EMA(fast) - EMA(slow). NaN until the slow EMA exists."""
    if fast >= slow:
        raise ValueError(f"macd: fast ({fast}) must be < slow ({slow})")
    ema_fast = ema(f"{name}_ema{fast}", fast, field)
    ema_slow = ema(f"{name}_ema{slow}", slow, field)
    p = DiffParams(ema_fast.name, ema_slow.name)
    return Indicator(
        name, partial(_diff_compute, p), depends_on=(ema_fast, ema_slow), params=p
    )


# -----------------------------
# Bollinger Bands
# -----------------------------
Band = Literal["upper", "middle", "lower"]


@dataclass(frozen=True)
class BollingerParams:
    period: int
    multiplier: float
    band: Band
    field: str | None = None

    def __post_init__(self) -> None:
        if self.band not in ("upper", "middle", "lower"):
            raise ValueError(f"unknown Bollinger band {self.band!r}")


def _bollinger_compute(p: BollingerParams, h: History) -> float:
    n = len(h)
    if n == 0:
        return NAN
    if n < p.period:
        return h.latest(p.field)
    w = h.window(p.period, p.field)
    mid = float(w.sum()) / p.period
    if p.band == "middle":
        return mid
    sd = math.sqrt(float(((w - mid) ** 2).sum()) / p.period)
    if p.band == "upper":
        return mid + p.multiplier * sd
    return mid - p.multiplier * sd


def bollinger(
    name: str = "bb",
    period: int = 20,
    multiplier: float = 2.0,
    band: Band = "middle",
    field: str | None = None,
) -> Indicator:
    p = BollingerParams(period, float(multiplier), band, field)
    return Indicator(name, partial(_bollinger_compute, p), params=p)


# -----------------------------
# High/Low/Close oscillators
# -----------------------------
def _hlc_windows(p: HLCParams, h: History, n: int) -> tuple[np.ndarray, ...]:
    return (
        h.window(n, p.high),
        h.window(n, p.low),
        h.window(n, p.close),
    )


def _cci_compute(p: HLCParams, h: History) -> float:
    if len(h) < p.period:
        return NAN
    hi, lo, cl = _hlc_windows(p, h, p.period)
    tp = (hi + lo + cl) / 3.0
    mean = float(tp.sum()) / p.period
    mean_dev = float(np.abs(tp - mean).sum()) / p.period
    if mean_dev == 0:
        return NEUTRAL["cci"]
    return (float(tp[-1]) - mean) / (0.015 * mean_dev)


def cci(
    name: str = "cci",
    period: int = 20,
    high: str | None = None,
    low: str | None = None,
    close: str | None = None,
) -> Indicator:
    """Commodity Channel Index; 0 when the typical price has no deviation."""
    p = HLCParams(period, high, low, close)
    return Indicator(name, partial(_cci_compute, p), params=p)


def _range_position(p: HLCParams, h: History) -> tuple[float, float, float] | None:
    if len(h) < p.period:
        return None
    hi, lo, _ = _hlc_windows(p, h, p.period)
    return float(hi.max()), float(lo.min()), h.latest(p.close)


def _stoch_k_compute(p: HLCParams, h: History) -> float:
    r = _range_position(p, h)
    if r is None:
        return NAN
    highest, lowest, close = r
    span = highest - lowest
    if span == 0:
        return NEUTRAL["stochastic"]
    return 100.0 * (close - lowest) / span


def _williams_compute(p: HLCParams, h: History) -> float:
    r = _range_position(p, h)
    if r is None:
        return NAN
    highest, lowest, close = r
    span = highest - lowest
    if span == 0:
        return NEUTRAL["williams_r"]
    return -100.0 * (highest - close) / span


def williams_r(
    name: str = "williams_r",
    period: int = 14,
    high: str | None = None,
    low: str | None = None,
    close: str | None = None,
) -> Indicator:
    """Williams %R in [-100, 0]; -50 for a zero high-low range."""
    p = HLCParams(period, high, low, close)
    return Indicator(name, partial(_williams_compute, p), params=p)


@dataclass(frozen=True)
class RollingColumnParams:
    """Rolling mean of another indicator column once `warmup` rows exist."""

    source: str
    period: int
    warmup: int


def _rolling_col_compute(p: RollingColumnParams, h: History) -> float:
    if len(h) < p.warmup:
        return NAN
    w = h.indicator_window(p.period, p.source)
    return float(w.sum()) / p.period


def _rolling_col_incremental(
    p: RollingColumnParams, prev: float, row: Any, h: History
) -> float:
    if len(h) <= p.warmup:
        return _rolling_col_compute(p, h)
    dropped = h.indicator(-1 - p.period, p.source)
    return prev + (h.indicator(-1, p.source) - dropped) / p.period


def stochastic(
    name: str = "stochastic",
    k_period: int = 14,
    d_period: int = 3,
    kind: Literal["k", "d"] = "k",
    high: str | None = None,
    low: str | None = None,
    close: str | None = None,
) -> Indicator:
    """Stochastic oscillator %K, or %D (SMA of %K) with a %K sub-indicator."""
    p = HLCParams(k_period, high, low, close)
    if kind == "k":
        return Indicator(name, partial(_stoch_k_compute, p), params=p)
    if kind != "d":
        raise ValueError(f"stochastic kind must be 'k' or 'd', got {kind!r}")

    k_ind = Indicator(f"{name}_k", partial(_stoch_k_compute, p), params=p)
    rp = RollingColumnParams(k_ind.name, d_period, k_period + d_period - 1)
    return Indicator(
        name,
        partial(_rolling_col_compute, rp),
        incremental=partial(_rolling_col_incremental, rp),
        depends_on=(k_ind,),
        params=rp,
    )


def _true_range_compute(p: HLCParams, h: History) -> float:
    n = len(h)
    if n == 0:
        return NAN
    hi = h.value(-1, p.high)
    lo = h.value(-1, p.low)
    if n == 1:
        return hi - lo
    prev_close = h.value(-2, p.close)
    return max(hi - lo, abs(hi - prev_close), abs(lo - prev_close))


def true_range(
    name: str = "tr",
    high: str | None = None,
    low: str | None = None,
    close: str | None = None,
) -> Indicator:
    p = HLCParams(1, high, low, close)
    return Indicator(name, partial(_true_range_compute, p), params=p)


@dataclass(frozen=True)
class ATRParams:
    period: int
    tr_col: str


def _atr_compute(p: ATRParams, h: History) -> float:
    n = len(h)
    if n < 2:
        return NAN
    if n < p.period + 1:
        # Partial window: mean of the true ranges that have a previous close.
        w = h.indicator_window(n - 1, p.tr_col)
        return float(w.sum()) / (n - 1)
    w = h.indicator_window(p.period, p.tr_col)
    return float(w.sum()) / p.period


def _atr_incremental(p: ATRParams, prev: float, row: Any, h: History) -> float:
    if len(h) <= p.period + 1:
        return _atr_compute(p, h)
    dropped = h.indicator(-1 - p.period, p.tr_col)
    return prev + (h.indicator(-1, p.tr_col) - dropped) / p.period


def atr(
    name: str = "atr",
    period: int = 14,
    high: str | None = None,
    low: str | None = None,
    close: str | None = None,
) -> Indicator:
    """Average True Range; averages the available ranges while warming up."""
    tr = true_range(f"{name}_tr", high, low, close)
    p = ATRParams(period, tr.name)
    return Indicator(
        name,
        partial(_atr_compute, p),
        incremental=partial(_atr_incremental, p),
        depends_on=(tr,),
        params=p,
    )


# -----------------------------
# Lag
# -----------------------------
@dataclass(frozen=True)
class LagParams:
    source: str
    periods: int


def _lag_compute(p: LagParams, h: History) -> float:
    return h.indicator(-1 - p.periods, p.source)


def lag(name: str, source: Indicator, periods: int = 1) -> Indicator:
    """Value of `source` `periods` rows back; used for crossover detection."""
    if periods < 1:
        raise ValueError(f"lag periods must be >= 1, got {periods}")
    p = LagParams(source.name, periods)
    return Indicator(name, partial(_lag_compute, p), depends_on=(source,), params=p)
