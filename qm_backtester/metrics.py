"""
Performance Metrics
-------------------
Read-only analytics over a finished BacktestReport:
trade log frame, mark-to-market equity curve, drawdown and a summary dict.
"""

from __future__ import annotations

from typing import Any

import numpy as np
import pandas as pd

from .dataset import Dataset
from .report import BacktestReport

_TRADE_COLS = [
    "entry_index",
    "exit_index",
    "side",
    "entry_price",
    "exit_price",
    "shares",
    "capital_before",
    "capital_after",
    "pnl",
    "return_pct",
    "bars_held",
    "exit_reason",
]


def trades_frame(report: BacktestReport) -> pd.DataFrame:
    """One row per completed round trip."""
    rows: list[dict[str, Any]] = []
    entry = None
    for t in report.trades:
        if t.type == "entry":
            entry = t
            continue
        if entry is None:
            continue
        capital_before = entry.shares * entry.price
        pnl = t.capital - capital_before
        rows.append(
            {
                "entry_index": entry.quote.index,
                "exit_index": t.quote.index,
                "side": "short" if t.short else "long",
                "entry_price": entry.price,
                "exit_price": t.price,
                "shares": t.shares,
                "capital_before": capital_before,
                "capital_after": t.capital,
                "pnl": pnl,
                "return_pct": pnl / capital_before * 100.0 if capital_before else 0.0,
                "bars_held": t.quote.index - entry.quote.index,
                "exit_reason": t.exit_reason,
            }
        )
        entry = None

    if not rows:
        return pd.DataFrame(columns=_TRADE_COLS)
    return pd.DataFrame.from_records(rows, columns=_TRADE_COLS)


def equity_curve(
    dataset: Dataset, report: BacktestReport, price_field: str | None = None
) -> pd.Series:
    """
    Mark-to-market account value per row.
    Cash while flat; shares valued at the row price while a position is open.
    """
    prices = dataset.values(price_field)
    n = len(prices)
    equity = np.empty(n, dtype=float)

    events = {}
    for t in report.trades:
        events.setdefault(t.quote.index, []).append(t)

    cash = report.initial_capital
    shares = 0.0
    entry_price = 0.0
    short = False
    for i in range(n):
        for t in events.get(i, ()):
            if t.type == "entry":
                shares, entry_price, short, cash = t.shares, t.price, t.short, 0.0
            else:
                shares, cash = 0.0, t.capital
        if shares > 0:
            px = float(prices[i])
            equity[i] = max(0.0, shares * (2.0 * entry_price - px)) if short else shares * px
        else:
            equity[i] = cash

    return pd.Series(equity, name="equity")


def max_drawdown_pct(equity: np.ndarray | pd.Series) -> float:
    """Largest peak-to-trough decline as a fraction in [0, 1]."""
    eq = np.asarray(equity, dtype=float)
    if eq.size < 2:
        return 0.0

    running_high = np.maximum.accumulate(eq)
    safe_high = np.where(running_high > 0.0, running_high, np.nan)
    drops = 1.0 - eq / safe_high
    if np.isnan(drops).all():
        return 0.0
    return float(np.clip(np.nanmax(drops), 0.0, 1.0))


def summary(report: BacktestReport, equity: pd.Series | None = None) -> dict[str, Any]:
    """Flat dict of the ledger totals plus exit-reason breakdown."""
    trades = trades_frame(report)
    wins = trades.loc[trades["pnl"] > 0, "pnl"] if len(trades) else pd.Series(dtype=float)
    losses = trades.loc[trades["pnl"] <= 0, "pnl"] if len(trades) else pd.Series(dtype=float)

    out: dict[str, Any] = {
        "initial_capital": report.initial_capital,
        "final_capital": report.final_capital,
        "returns": report.returns,
        "returns_percentage": report.returns_percentage,
        "trades": report.number_of_trades,
        "winning_trades": report.number_of_winning_trades,
        "losing_trades": report.number_of_losing_trades,
        "win_rate": report.winning_rate,
        "profit": report.profit,
        "loss": report.loss,
        "avg_win": float(wins.mean()) if len(wins) else 0.0,
        "avg_loss": float(losses.mean()) if len(losses) else 0.0,
        "avg_bars_held": float(trades["bars_held"].mean()) if len(trades) else 0.0,
    }
    out.update(report.risk_metrics())
    if equity is not None:
        out["max_drawdown_pct"] = max_drawdown_pct(equity)
    return out
