"""
Backtest Report (Ledger)
------------------------
Capital/share accounting for a single full-capital position at a time.
Mutated once per entry and once per exit during a run, then closed.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Literal

from .position import ExitReason
from .quote import Quote


@dataclass(frozen=True)
class ExitContext:
    entry_price: float | None
    exit_price: float
    price_change: float | None
    price_change_pct: float | None
    bars_held: int | None


@dataclass(frozen=True)
class TradeRecord:
    """One ledger event. `capital` is the cash balance right after it."""

    type: Literal["entry", "exit"]
    quote: Quote
    price: float
    shares: float
    capital: float
    short: bool = False
    exit_reason: str | None = None
    exit_context: ExitContext | None = None


@dataclass
class BacktestReport:
    initial_capital: float
    current_capital: float = field(init=False)
    final_capital: float = field(init=False)
    shares_owned: float = 0.0
    profit: float = 0.0
    loss: float = 0.0
    number_of_trades: int = 0
    number_of_winning_trades: int = 0
    number_of_losing_trades: int = 0
    winning_rate: float = 0.0
    returns: float = 0.0
    returns_percentage: float = 0.0
    trades: list[TradeRecord] = field(default_factory=list)
    exit_reason_counts: Counter = field(default_factory=Counter)
    closed: bool = False
    _entry: TradeRecord | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self.initial_capital <= 0:
            raise ValueError(f"initial_capital must be > 0, got {self.initial_capital}")
        self.initial_capital = float(self.initial_capital)
        # current_capital: capital committed at the last entry (the win/loss baseline)
        # final_capital: cash balance
        self.current_capital = self.initial_capital
        self.final_capital = self.initial_capital

    def _check_open(self) -> None:
        if self.closed:
            raise RuntimeError("BacktestReport is closed; no further trades can be recorded")

    @property
    def in_position(self) -> bool:
        return self._entry is not None

    def mark_entry(self, price: float, quote: Quote, *, short: bool = False) -> TradeRecord:
        """
        Converts all cash into shares at `price`.
        A ruined account (no cash left) still books the round trip, with zero shares.
        """
        self._check_open()
        if self.in_position:
            raise RuntimeError("mark_entry called while a position is already open")
        if not price > 0:
            raise ValueError(f"entry price must be > 0, got {price}")

        shares = self.final_capital / price
        self.current_capital = self.final_capital
        self.shares_owned = shares
        self.final_capital = 0.0

        rec = TradeRecord("entry", quote, float(price), shares, 0.0, short=short)
        self.trades.append(rec)
        self._entry = rec
        return rec

    def mark_exit(
        self,
        price: float,
        quote: Quote,
        *,
        reason: ExitReason | str = ExitReason.STRATEGY,
    ) -> TradeRecord:
        """Sells all shares at `price` and classifies the round trip."""
        self._check_open()
        if self._entry is None:
            raise RuntimeError("mark_exit called without an open position")
        if price < 0:
            raise ValueError(f"exit price must be >= 0, got {price}")

        entry = self._entry
        shares = self.shares_owned
        if entry.short:
            # gains when the price falls: committed capital + shares * (entry - exit).
            # Losses stop at the committed capital (no margin).
            proceeds = max(0.0, shares * (2.0 * entry.price - price))
        else:
            proceeds = shares * price

        reason_value = ExitReason(reason).value
        change = price - entry.price
        ctx = ExitContext(
            entry_price=entry.price,
            exit_price=float(price),
            price_change=change,
            price_change_pct=change / entry.price * 100.0,
            bars_held=quote.index - entry.quote.index,
        )
        rec = TradeRecord(
            "exit",
            quote,
            float(price),
            shares,
            proceeds,
            short=entry.short,
            exit_reason=reason_value,
            exit_context=ctx,
        )
        self.trades.append(rec)

        capital_before = self.current_capital
        self.final_capital = proceeds
        if proceeds > capital_before:
            self.profit += proceeds - capital_before
            self.number_of_winning_trades += 1
        else:
            self.loss += capital_before - proceeds
            self.number_of_losing_trades += 1

        self.winning_rate = self.number_of_winning_trades / (
            self.number_of_winning_trades + self.number_of_losing_trades
        )
        self.exit_reason_counts[reason_value] += 1

        self.shares_owned = 0.0
        self._entry = None
        self.current_capital = self.final_capital
        self.number_of_trades += 1
        self.returns = self.final_capital - self.initial_capital
        self.returns_percentage = self.returns / self.initial_capital * 100.0
        return rec

    def close(self) -> BacktestReport:
        """Freezes the ledger; later mark_* calls raise RuntimeError."""
        self.closed = True
        return self

    # -----------------------------
    # Exit analytics
    # -----------------------------
    @property
    def exits(self) -> list[TradeRecord]:
        return [t for t in self.trades if t.type == "exit"]

    def risk_metrics(self) -> dict[str, Any]:
        total = len(self.exits)

        def _rate(n: int) -> float:
            return n / total if total else 0.0

        sl = self.exit_reason_counts[ExitReason.STOP_LOSS.value]
        tp = self.exit_reason_counts[ExitReason.TAKE_PROFIT.value]
        st = self.exit_reason_counts[ExitReason.STRATEGY.value]
        eod = self.exit_reason_counts[ExitReason.END_OF_DATA.value]
        return {
            "total_exits": total,
            "stop_loss_exits": sl,
            "take_profit_exits": tp,
            "strategy_exits": st,
            "end_of_data_exits": eod,
            "stop_loss_rate": _rate(sl),
            "take_profit_rate": _rate(tp),
            "strategy_exit_rate": _rate(st),
        }

    def analyze_stop_loss_exits(self) -> dict[str, Any] | None:
        """Aggregate view of stop-loss exits; None when there were none."""
        trades = [t for t in self.exits if t.exit_reason == ExitReason.STOP_LOSS.value]
        if not trades:
            return None
        pcts = [
            t.exit_context.price_change_pct
            for t in trades
            if t.exit_context is not None and t.exit_context.price_change_pct is not None
        ]
        return {
            "count": len(trades),
            "avg_loss_percent": sum(pcts) / len(pcts) if pcts else 0.0,
            "trades": trades,
        }
