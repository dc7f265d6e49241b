"""
Tests for qm_backtester.indicators
----------------------------------
Coverage:
- Known values for SMA/EMA/Bollinger/ATR/stochastic on small series.
- Warmup (NaN) and degradation rules.
- Neutral values on flat input (RSI 50, stochastic 50, %R -50, CCI 0).
- Incremental path agrees with full recomputation at every row.
"""

import math

import numpy as np
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from qm_backtester.dataset import Dataset
from qm_backtester.indicator import History
from qm_backtester.indicators import (
    NEUTRAL,
    atr,
    average_gain,
    average_loss,
    bollinger,
    cci,
    ema,
    lag,
    macd,
    rsi,
    sma,
    stochastic,
    true_range,
    williams_r,
)

HLC = {"high": "high", "low": "low", "close": "close"}


def _col(values, ind):
    return Dataset(values).apply(ind).indicator_column(ind.name)


def _flat_bars(n, price=10.0):
    return [{"high": price, "low": price, "close": price} for _ in range(n)]


def _assert_incremental_matches_full(ds, ind):
    """Re-runs the full computation at each row and compares to the stored column."""
    col = ds.indicator_column(ind.name)
    full = np.array([ind.compute(History(ds.store, i + 1)) for i in range(len(ds))])
    np.testing.assert_allclose(col, full, rtol=1e-9, atol=1e-9, equal_nan=True)


# -----------------------------
# Moving averages
# -----------------------------
def test_sma_known_values_and_degradation():
    col = _col([1, 2, 3, 4, 5], sma("s", 3))
    # below the period the latest value is returned
    assert list(col) == [1.0, 2.0, 2.0, 3.0, 4.0]


def test_sma_period_boundary():
    # exactly `period` rows: the first full window, computed in full
    col = _col([2, 4, 6], sma("s", 3))
    assert col[-1] == pytest.approx(4.0)


def test_ema_known_values():
    col = _col([1, 2, 3, 4, 5, 6], ema("e", 3))
    assert np.isnan(col[:2]).all()
    assert list(col[2:]) == pytest.approx([2.0, 3.0, 4.0, 5.0])


def test_invalid_period():
    with pytest.raises(ValueError):
        sma("s", 0)
    with pytest.raises(ValueError):
        ema("e", -1)


# -----------------------------
# RSI
# -----------------------------
def test_rsi_warmup_and_flat_series():
    col = _col([5.0] * 10, rsi("r", 3))
    assert np.isnan(col[:3]).all()
    assert list(col[3:]) == [NEUTRAL["rsi"]] * 7


def test_rsi_monotonic_series():
    up = _col([float(i) for i in range(1, 12)], rsi("r", 4))
    down = _col([float(i) for i in range(12, 1, -1)], rsi("r", 4))
    assert list(up[4:]) == [100.0] * len(up[4:])
    assert list(down[4:]) == [0.0] * len(down[4:])


def test_average_gain_and_loss():
    ds = Dataset([1.0, 2.0, 4.0, 3.0, 5.0])
    ds.apply(average_gain("g", 2), average_loss("l", 2))
    g = ds.indicator_column("g")
    lo = ds.indicator_column("l")
    assert np.isnan(g[:2]).all()
    # seed: mean of the first two moves (+1, +2)
    assert g[2] == pytest.approx(1.5)
    assert lo[2] == pytest.approx(0.0)
    # Wilder smoothing: (prev * (n - 1) + move) / n
    assert g[3] == pytest.approx(0.75)
    assert lo[3] == pytest.approx(0.5)
    assert g[4] == pytest.approx((0.75 + 2.0) / 2)
    assert lo[4] == pytest.approx(0.25)


def test_rsi_value_from_averages(closes):
    ds = Dataset(closes).apply(rsi("r", 14))
    g = ds.indicator_column("r_avg_gain")[-1]
    lo = ds.indicator_column("r_avg_loss")[-1]
    assert ds.indicator_column("r")[-1] == pytest.approx(100 - 100 / (1 + g / lo))


# -----------------------------
# MACD / Bollinger
# -----------------------------
def test_macd_is_ema_difference(closes):
    ds = Dataset(closes).apply(macd("m", 3, 6))
    fast = ds.indicator_column("m_ema3")
    slow = ds.indicator_column("m_ema6")
    m = ds.indicator_column("m")
    assert np.isnan(m[:5]).all()
    np.testing.assert_allclose(m[5:], fast[5:] - slow[5:])


def test_macd_rejects_inverted_periods():
    with pytest.raises(ValueError):
        macd("m", 26, 12)


def test_bollinger_bands():
    ds = Dataset([1.0, 2.0, 3.0])
    ds.apply(
        bollinger("up", 3, 2.0, "upper"),
        bollinger("mid", 3, 2.0, "middle"),
        bollinger("lo", 3, 2.0, "lower"),
    )
    sd = math.sqrt(2.0 / 3.0)
    assert ds.indicator_column("mid")[-1] == pytest.approx(2.0)
    assert ds.indicator_column("up")[-1] == pytest.approx(2.0 + 2.0 * sd)
    assert ds.indicator_column("lo")[-1] == pytest.approx(2.0 - 2.0 * sd)
    # degraded rows echo the latest value
    assert ds.indicator_column("up")[0] == 1.0


def test_bollinger_flat_bands_collapse():
    col_u = _col([4.0] * 5, bollinger("u", 3, 2.0, "upper"))
    col_l = _col([4.0] * 5, bollinger("l", 3, 2.0, "lower"))
    assert list(col_u) == [4.0] * 5
    assert list(col_l) == [4.0] * 5


def test_bollinger_unknown_band():
    with pytest.raises(ValueError):
        bollinger("b", band="outer")


# -----------------------------
# High/Low/Close oscillators
# -----------------------------
def test_flat_oscillators_are_neutral():
    ds = Dataset(_flat_bars(6))
    ds.apply(
        cci("cci", 3, **HLC),
        williams_r("wr", 3, **HLC),
        stochastic("k", 3, **HLC),
    )
    assert np.isnan(ds.indicator_column("cci")[:2]).all()
    assert list(ds.indicator_column("cci")[2:]) == [NEUTRAL["cci"]] * 4
    assert list(ds.indicator_column("wr")[2:]) == [NEUTRAL["williams_r"]] * 4
    assert list(ds.indicator_column("k")[2:]) == [NEUTRAL["stochastic"]] * 4


def test_williams_and_stochastic_extremes():
    bars = [
        {"high": 10.0, "low": 8.0, "close": 9.0},
        {"high": 11.0, "low": 9.0, "close": 10.0},
        {"high": 12.0, "low": 10.0, "close": 12.0},
        {"high": 12.0, "low": 7.0, "close": 7.0},
    ]
    ds = Dataset(bars).apply(williams_r("wr", 3, **HLC), stochastic("k", 3, **HLC))
    wr = ds.indicator_column("wr")
    k = ds.indicator_column("k")
    # close at the window high
    assert wr[2] == pytest.approx(0.0)
    assert k[2] == pytest.approx(100.0)
    # close at the window low
    assert wr[3] == pytest.approx(-100.0)
    assert k[3] == pytest.approx(0.0)


def test_stochastic_d_is_mean_of_k(bar_records):
    ds = Dataset(bar_records).apply(stochastic("st", 5, 3, kind="d", **HLC))
    k = ds.indicator_column("st_k")
    d = ds.indicator_column("st")
    # %D needs k_period + d_period - 1 rows
    assert np.isnan(d[:6]).all()
    assert d[6] == pytest.approx(k[4:7].mean())
    assert d[-1] == pytest.approx(k[-3:].mean())


def test_stochastic_unknown_kind():
    with pytest.raises(ValueError):
        stochastic("st", kind="j")


def test_cci_known_value():
    bars = [{"high": v, "low": v, "close": v} for v in (1.0, 2.0, 3.0)]
    col = _col(bars, cci("c", 3, **HLC))
    # typical prices 1, 2, 3: mean 2, mean deviation 2/3
    assert col[-1] == pytest.approx(1.0 / (0.015 * (2.0 / 3.0)))


# -----------------------------
# True range / ATR
# -----------------------------
def test_true_range_and_atr():
    bars = [
        {"high": 10.0, "low": 9.0, "close": 9.5},
        {"high": 11.0, "low": 10.0, "close": 10.5},  # gap up: |11 - 9.5| = 1.5
        {"high": 11.0, "low": 9.0, "close": 9.5},  # range 2.0
        {"high": 10.0, "low": 9.5, "close": 9.8},  # range 0.5, |10 - 9.5| = 0.5
    ]
    ds = Dataset(bars).apply(true_range("tr", **HLC), atr("a", 2, **HLC))
    assert list(ds.indicator_column("tr")) == pytest.approx([1.0, 1.5, 2.0, 0.5])

    a = ds.indicator_column("a")
    assert math.isnan(a[0])
    assert a[1] == pytest.approx(1.5)
    assert a[2] == pytest.approx((1.5 + 2.0) / 2)
    assert a[3] == pytest.approx((2.0 + 0.5) / 2)


# -----------------------------
# Lag
# -----------------------------
def test_lag_shifts_source():
    src = sma("s", 2)
    ds = Dataset([1.0, 3.0, 5.0, 7.0]).apply(lag("s_prev", src, 2))
    s = ds.indicator_column("s")
    shifted = ds.indicator_column("s_prev")
    assert np.isnan(shifted[:2]).all()
    assert list(shifted[2:]) == list(s[:2])


def test_lag_periods_validation():
    with pytest.raises(ValueError):
        lag("x", sma("s", 2), 0)


# -----------------------------
# Incremental == full recomputation
# -----------------------------
@pytest.mark.parametrize(
    "factory",
    [
        lambda: sma("s", 5, "close"),
        lambda: ema("e", 5, "close"),
        lambda: average_gain("g", 5, "close"),
        lambda: average_loss("l", 5, "close"),
        lambda: atr("a", 5, **HLC),
        lambda: stochastic("st", 5, 3, kind="d", **HLC),
    ],
)
def test_incremental_matches_full(bar_records, factory):
    ind = factory()
    ds = Dataset(bar_records).apply(ind)
    _assert_incremental_matches_full(ds, ind)


@settings(max_examples=50, deadline=None)
@given(
    values=st.lists(
        st.floats(min_value=1.0, max_value=1000.0, allow_nan=False),
        min_size=1,
        max_size=60,
    ),
    period=st.integers(min_value=1, max_value=10),
)
def test_incremental_matches_full_property(values, period):
    for ind in (sma("s", period), ema("e", period), average_gain("g", period)):
        ds = Dataset(values).apply(ind)
        col = ds.indicator_column(ind.name)
        full = np.array(
            [ind.compute(History(ds.store, i + 1)) for i in range(len(ds))]
        )
        np.testing.assert_allclose(col, full, rtol=1e-7, atol=1e-6, equal_nan=True)
