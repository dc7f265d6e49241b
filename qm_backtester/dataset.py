"""
Dataset Orchestration
---------------------
Drives the columnar store, indicators and strategies.

Two entry points share the same per-row step:
- prepare(strategy): batch pass over the full history.
- add(value): streaming append of one row.

For row i the step computes every registered indicator over rows [0, i]
(incrementally when possible) and then evaluates every registered strategy
against its position at row i - 1. Because both paths run this step in row
order, N appends yield the same columns as one prepare over the same N rows.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Iterator, Sequence

import numpy as np
import pandas as pd

from .indicator import History, Indicator
from .position import IDLE, TradePosition
from .quote import Quote
from .storage import ColumnarStore
from .strategy import Strategy

logger = logging.getLogger(__name__)

OHLCV_COLS = ("open", "high", "low", "close", "volume")


class Dataset:
    """Time-ordered rows plus derived indicator and position columns."""

    def __init__(
        self, data: Iterable[Any] | None = None, *, initial_capacity: int = 1024
    ) -> None:
        self._store = ColumnarStore(initial_capacity)
        self._indicators: list[Indicator] = []
        self._indicator_by_name: dict[str, Indicator] = {}
        self._strategies: list[Strategy] = []
        self._strategy_by_name: dict[str, Strategy] = {}
        # rows already filled, per indicator / strategy name
        self._filled: dict[str, int] = {}
        self._evaluated: dict[str, int] = {}

        if data is not None:
            for value in data:
                self._store.append_value(value.value if isinstance(value, Quote) else value)

    @classmethod
    def from_frame(
        cls, df: pd.DataFrame, fields: Sequence[str] | None = None
    ) -> Dataset:
        """Builds a record dataset from a bar DataFrame (one record per row)."""
        frame = df.copy()
        frame.columns = [str(c).strip().lower() for c in frame.columns]

        if fields is None:
            fields = [c for c in OHLCV_COLS if c in frame.columns]
            if not fields:
                raise ValueError(
                    f"from_frame: no OHLCV columns found; got columns={list(frame.columns)}"
                )
        else:
            fields = [str(f).lower() for f in fields]
            missing = set(fields) - set(frame.columns)
            if missing:
                raise ValueError(
                    f"from_frame: missing columns {sorted(missing)}; "
                    f"got columns={list(frame.columns)}"
                )

        values = frame[list(fields)].astype("float64")
        return cls(
            dict(zip(fields, row)) for row in values.itertuples(index=False, name=None)
        )

    # -----------------------------
    # Introspection
    # -----------------------------
    def __len__(self) -> int:
        return len(self._store)

    @property
    def length(self) -> int:
        return len(self._store)

    @property
    def store(self) -> ColumnarStore:
        return self._store

    @property
    def indicators(self) -> tuple[Indicator, ...]:
        return tuple(self._indicators)

    @property
    def strategies(self) -> tuple[Strategy, ...]:
        return tuple(self._strategies)

    def indicator(self, name: str) -> Indicator | None:
        return self._indicator_by_name.get(name)

    # -----------------------------
    # Registration
    # -----------------------------
    def register_indicator(self, indicator: Indicator) -> bool:
        """
        Registers `indicator` after its dependencies. Idempotent by name.
        Returns False when it was already registered.
        """
        for dep in indicator.before_compute():
            self.register_indicator(dep)

        existing = self._indicator_by_name.get(indicator.name)
        if existing is not None:
            if existing is indicator or existing.signature == indicator.signature:
                return False
            raise ValueError(
                f"Indicator name {indicator.name!r} is already registered "
                "with a different definition"
            )

        self._indicators.append(indicator)
        self._indicator_by_name[indicator.name] = indicator
        self._filled[indicator.name] = 0
        self._store.ensure_column(indicator.name)
        logger.debug("registered indicator %s", indicator.name)
        return True

    def register_strategy(self, strategy: Strategy) -> bool:
        existing = self._strategy_by_name.get(strategy.name)
        if existing is not None:
            if existing is strategy:
                return False
            raise ValueError(
                f"Strategy name {strategy.name!r} is already registered on this dataset"
            )

        for ind in strategy.indicators:
            self.register_indicator(ind)

        self._strategies.append(strategy)
        self._strategy_by_name[strategy.name] = strategy
        self._evaluated[strategy.name] = 0
        self._store.ensure_position_column(strategy.name)
        logger.debug("registered strategy %s", strategy.name)
        return True

    # -----------------------------
    # Per-row step
    # -----------------------------
    def _compute_indicators(self, i: int) -> None:
        history = History(self._store, i + 1)
        for ind in self._indicators:
            if self._filled[ind.name] > i:
                continue
            prev = self._store.get_column_value(i - 1, ind.name) if i > 0 else np.nan
            self._store.set_column_value(i, ind.name, ind.compute_at(history, prev))
            self._filled[ind.name] = i + 1

    def _evaluate(self, i: int, strategy: Strategy) -> None:
        prev = self._store.get_position(i - 1, strategy.name) if i > 0 else None
        quote = self._quote(i, with_positions=False)
        position = strategy.evaluate(quote, prev if prev is not None else IDLE)
        self._store.set_position(i, strategy.name, position)
        self._evaluated[strategy.name] = i + 1

    def _advance(self) -> None:
        n = len(self._store)
        pending = list(self._filled.values()) + list(self._evaluated.values())
        start = min(pending, default=n)
        for i in range(start, n):
            self._compute_indicators(i)
            for strat in self._strategies:
                if self._evaluated[strat.name] <= i:
                    self._evaluate(i, strat)

    # -----------------------------
    # Public operations
    # -----------------------------
    def apply(self, *indicators: Indicator) -> Dataset:
        """Registers indicators and fills their columns over the existing rows."""
        for ind in indicators:
            self.register_indicator(ind)
        self._advance()
        return self

    def prepare(self, strategy: Strategy) -> Dataset:
        """Batch pass: indicators and positions for every row, in row order."""
        self.register_strategy(strategy)
        logger.debug("preparing %s over %d rows", strategy.name, len(self))
        self._advance()
        return self

    def add(self, value: Any) -> Dataset:
        """Streaming append: extends the store and derives the new row only."""
        self._store.append_value(value.value if isinstance(value, Quote) else value)
        self._advance()
        return self

    def extend(self, values: Iterable[Any]) -> Dataset:
        for v in values:
            self.add(v)
        return self

    # -----------------------------
    # Views
    # -----------------------------
    def _quote(self, i: int, *, with_positions: bool = True) -> Quote:
        store = self._store
        indicators = {ind.name: store.get_column_value(i, ind.name) for ind in self._indicators}
        positions: dict[str, TradePosition] = {}
        if with_positions:
            for s in self._strategies:
                pos = store.get_position(i, s.name)
                if pos is not None:
                    positions[s.name] = pos
        return Quote(i, store.get_value(i), indicators, positions)

    def at(self, index: int) -> Quote | None:
        """Quote at `index` (negative counts from the end); None if out of range."""
        i = index + len(self) if index < 0 else index
        if i < 0 or i >= len(self):
            return None
        return self._quote(i)

    def quotes(self) -> Iterator[Quote]:
        for i in range(len(self)):
            yield self._quote(i)

    def value_at(self, index: int, field: str | None = None) -> float:
        return self._store.get_field(index, field)

    def values(self, field: str | None = None) -> np.ndarray:
        return self._store.field_array(field).copy()

    def indicator_column(self, name: str) -> np.ndarray:
        return self._store.column(name)

    def position_column(self, name: str) -> list[TradePosition | None]:
        return self._store.position_column(name)

    def to_frame(self, index: Sequence[Any] | None = None) -> pd.DataFrame:
        """Tabular view: raw fields, indicator columns, position kinds."""
        store = self._store
        data: dict[str, Any] = {}
        if store.is_scalar:
            data["value"] = store.field_array(None).copy()
        else:
            for f in store.fields:
                data[f] = store.field_array(f).copy()
        for ind in self._indicators:
            data[ind.name] = store.column(ind.name)
        for s in self._strategies:
            data[s.name] = [
                p.kind.value if p is not None else None for p in store.position_column(s.name)
            ]
        return pd.DataFrame(data, index=index)
