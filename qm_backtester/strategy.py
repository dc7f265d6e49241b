"""
Strategy Evaluation
-------------------
Turns a quote and the previous TradePosition into the next one.

Priority (only the first matching rule applies):
1. stop-loss       (open positions only)
2. take-profit     (open positions only)
3. strategy exit   (open positions only)
4. entry
5. idle
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Any, Callable, Iterable

from .indicator import Indicator
from .indicators import ema, lag, rsi, sma
from .position import ExitReason, PositionKind, TradePosition, next_kind
from .quote import Quote

if TYPE_CHECKING:
    from .backtest import BacktestRunner
    from .dataset import Dataset
    from .report import BacktestReport

PositionFn = Callable[[Quote], bool]
RiskFn = Callable[[Quote, TradePosition], bool]
TriggerFn = Callable[[PositionKind, Quote], Any]


class Strategy:
    """Long-only or short-only decision logic plus the indicators it reads."""

    def __init__(
        self,
        name: str,
        *,
        indicators: Iterable[Indicator] = (),
        entry_when: PositionFn | None = None,
        exit_when: PositionFn | None = None,
        entry_short_when: PositionFn | None = None,
        exit_short_when: PositionFn | None = None,
        stop_loss_when: RiskFn | None = None,
        take_profit_when: RiskFn | None = None,
        on_trigger: TriggerFn | None = None,
        price_field: str | None = None,
    ) -> None:
        long_pair = (entry_when, exit_when)
        short_pair = (entry_short_when, exit_short_when)
        has_long = all(f is not None for f in long_pair)
        has_short = all(f is not None for f in short_pair)
        partial_pair = any(f is not None for f in long_pair) and not has_long
        partial_pair |= any(f is not None for f in short_pair) and not has_short

        if partial_pair:
            raise ValueError(
                f"Strategy {name!r}: entry and exit predicates must be given together"
            )
        if has_long == has_short:
            raise ValueError(
                f"Strategy {name!r}: configure exactly one of "
                "(entry_when, exit_when) or (entry_short_when, exit_short_when)"
            )

        self.name = name
        self.indicators: tuple[Indicator, ...] = tuple(indicators)
        self.short = has_short
        # the configured (entry, exit) pair; the side is fixed for the strategy
        self._pair = short_pair if has_short else long_pair
        self.stop_loss_when = stop_loss_when
        self.take_profit_when = take_profit_when
        self.on_trigger = on_trigger
        self.price_field = price_field

    def __repr__(self) -> str:
        side = "short" if self.short else "long"
        return f"Strategy({self.name!r}, {side}, indicators={[i.name for i in self.indicators]})"

    def _decide(
        self, quote: Quote, position: TradePosition
    ) -> tuple[PositionKind, ExitReason | None]:
        is_open = position.is_open()

        if is_open and self.stop_loss_when is not None:
            if self.stop_loss_when(quote, position):
                return PositionKind.EXIT, ExitReason.STOP_LOSS

        if is_open and self.take_profit_when is not None:
            if self.take_profit_when(quote, position):
                return PositionKind.EXIT, ExitReason.TAKE_PROFIT

        entry_fn, exit_fn = self._pair
        if is_open and exit_fn(quote):
            return PositionKind.EXIT, ExitReason.STRATEGY
        if entry_fn(quote):
            return PositionKind.ENTRY, None
        return PositionKind.IDLE, None

    def evaluate(
        self, quote: Quote, position: TradePosition | None = None
    ) -> TradePosition:
        """Returns the next position for `quote` given the previous one."""
        prev = position if position is not None else TradePosition()
        decision_kind, reason = self._decide(quote, prev)

        # Metadata only for the transitions that actually happen.
        meta: dict[str, Any] = {}
        upcoming = next_kind(prev.kind, decision_kind)
        if upcoming is PositionKind.ENTRY:
            meta = {
                "short": self.short,
                "entry_price": quote.price(self.price_field),
                "entry_index": quote.index,
            }
        elif upcoming is PositionKind.EXIT and reason is not None:
            meta = {"exit_reason": reason.value}

        nxt = TradePosition.update(prev, TradePosition(decision_kind, meta))

        if self.on_trigger is not None:
            self.on_trigger(nxt.kind, quote)
        return nxt

    def backtest(
        self,
        dataset: Dataset,
        runner: BacktestRunner,
    ) -> BacktestReport:
        """Shorthand for Backtest(dataset, self).run(...)."""
        from .backtest import Backtest

        return Backtest(dataset, self).run(
            runner.config, runner.on_entry_price, runner.on_exit_price
        )


# -----------------------------
# Risk predicates
# -----------------------------
def _move_pct(quote: Quote, position: TradePosition, field: str | None) -> float | None:
    entry = position.entry_price
    if entry is None or entry == 0:
        return None
    move = (quote.price(field) - entry) / entry * 100.0
    return -move if position.short else move


def stop_loss_pct(pct: float, field: str | None = None) -> RiskFn:
    """Fires once the adverse move from entry reaches `pct` percent."""
    if pct <= 0:
        raise ValueError(f"stop_loss_pct must be > 0, got {pct}")

    def _when(quote: Quote, position: TradePosition) -> bool:
        move = _move_pct(quote, position, field)
        return move is not None and move <= -pct

    return _when


def take_profit_pct(pct: float, field: str | None = None) -> RiskFn:
    """Fires once the favourable move from entry reaches `pct` percent."""
    if pct <= 0:
        raise ValueError(f"take_profit_pct must be > 0, got {pct}")

    def _when(quote: Quote, position: TradePosition) -> bool:
        move = _move_pct(quote, position, field)
        return move is not None and move >= pct

    return _when


# -----------------------------
# Presets
# -----------------------------
def _all_finite(*xs: float) -> bool:
    return not any(math.isnan(x) for x in xs)


def golden_cross(
    name: str = "golden-cross",
    *,
    fast_period: int = 9,
    slow_period: int = 20,
    source: str | None = "close",
    **risk: Any,
) -> Strategy:
    """Enters when a fast EMA crosses above a slow SMA; exits on the cross down."""
    fast = ema("fast_ema", fast_period, source)
    slow = sma("slow_sma", slow_period, source)
    prev_fast = lag("prev_fast_ema", fast)
    prev_slow = lag("prev_slow_sma", slow)

    def _cross(quote: Quote) -> tuple[float, float, float, float]:
        return (
            quote.indicator(fast.name),
            quote.indicator(slow.name),
            quote.indicator(prev_fast.name),
            quote.indicator(prev_slow.name),
        )

    def entry_when(quote: Quote) -> bool:
        f, s, pf, ps = _cross(quote)
        return _all_finite(f, s, pf, ps) and pf <= ps and f > s

    def exit_when(quote: Quote) -> bool:
        f, s, pf, ps = _cross(quote)
        return _all_finite(f, s, pf, ps) and pf >= ps and f < s

    return Strategy(
        name,
        indicators=[fast, slow, prev_fast, prev_slow],
        entry_when=entry_when,
        exit_when=exit_when,
        price_field=source,
        **risk,
    )


def rsi_mean_reversion(
    name: str = "rsi-mean-reversion",
    *,
    period: int = 14,
    oversold: float = 30.0,
    overbought: float = 70.0,
    trend_period: int | None = None,
    source: str | None = "close",
    **risk: Any,
) -> Strategy:
    """Buys oversold RSI (optionally only above a trend SMA); sells overbought."""
    if not oversold < overbought:
        raise ValueError(
            f"oversold ({oversold}) must be below overbought ({overbought})"
        )
    indicators: list[Indicator] = [rsi("rsi", period, source)]
    if trend_period is not None:
        indicators.append(sma("trend_sma", trend_period, source))

    def entry_when(quote: Quote) -> bool:
        value = quote.indicator("rsi")
        if not _all_finite(value) or value >= oversold:
            return False
        if trend_period is not None:
            trend = quote.indicator("trend_sma")
            return _all_finite(trend) and quote.price(source) >= trend
        return True

    def exit_when(quote: Quote) -> bool:
        value = quote.indicator("rsi")
        return _all_finite(value) and value >= overbought

    return Strategy(
        name,
        indicators=indicators,
        entry_when=entry_when,
        exit_when=exit_when,
        price_field=source,
        **risk,
    )


PRESETS: dict[str, Callable[..., Strategy]] = {
    "golden_cross": golden_cross,
    "rsi_mean_reversion": rsi_mean_reversion,
}


def build_preset(preset: str, name: str | None = None, **params: Any) -> Strategy:
    if preset not in PRESETS:
        raise ValueError(f"Unknown strategy preset {preset!r}; known: {sorted(PRESETS)}")
    if name is not None:
        params["name"] = name
    return PRESETS[preset](**params)

