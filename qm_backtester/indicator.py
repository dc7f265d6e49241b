"""
Indicator Framework
-------------------
An Indicator is a small value type bundling:
- compute(history): full recomputation from the history up to the last row.
- incremental(prev, row, history): optional O(1) update that must agree with compute.
- depends_on: sub-indicators that must be registered (and computed) first.

History is a read-only window over the store ending at the row being computed,
so batch preparation and streaming append run the exact same code.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable

import numpy as np

if TYPE_CHECKING:
    from .storage import ColumnarStore

ComputeFn = Callable[["History"], float]
IncrementalFn = Callable[[float, Any, "History"], float]


class History:
    """Rows [0, end) of a store. Negative indices count back from `end`."""

    __slots__ = ("_store", "_end")

    def __init__(self, store: ColumnarStore, end: int | None = None) -> None:
        self._store = store
        self._end = len(store) if end is None else int(end)

    def __len__(self) -> int:
        return self._end

    def _abs(self, index: int) -> int | None:
        i = self._end + index if index < 0 else index
        if i < 0 or i >= self._end:
            return None
        return i

    def value(self, index: int, field: str | None = None) -> float:
        """Raw numeric cell; NaN outside the window."""
        self._store.check_field(field)
        i = self._abs(index)
        if i is None:
            return float("nan")
        return self._store.get_field(i, field)

    def latest(self, field: str | None = None) -> float:
        return self.value(-1, field)

    def row(self, index: int = -1) -> Any:
        i = self._abs(index)
        return None if i is None else self._store.get_value(i)

    def indicator(self, index: int, name: str) -> float:
        i = self._abs(index)
        if i is None:
            return float("nan")
        return self._store.get_column_value(i, name)

    def window(self, n: int, field: str | None = None) -> np.ndarray:
        """Last n raw values (fewer if history is shorter)."""
        arr = self._store.field_array(field)
        return arr[max(0, self._end - n) : self._end]

    def indicator_window(self, n: int, name: str) -> np.ndarray:
        """Last n cells of an indicator column (fewer if history is shorter)."""
        return self._store.column_slice(name, self._end - n, self._end)


@dataclass(frozen=True, eq=False)
class Indicator:
    name: str
    compute: ComputeFn
    incremental: IncrementalFn | None = None
    depends_on: tuple["Indicator", ...] = ()
    params: Any = None

    def has_incremental(self) -> bool:
        return self.incremental is not None

    def before_compute(self) -> tuple["Indicator", ...]:
        """Sub-indicators to register ahead of this one."""
        return self.depends_on

    @property
    def signature(self) -> tuple[Any, ...]:
        """Identity used to detect two different definitions under one name."""
        fn = getattr(self.compute, "func", self.compute)
        return (self.name, fn, self.params)

    def compute_at(self, history: History, prev: float = float("nan")) -> float:
        """
        Value at the last row of `history`.
        Uses the incremental path when available and the previous value is valid.
        """
        if self.incremental is not None and len(history) > 1 and not math.isnan(prev):
            return float(self.incremental(prev, history.row(-1), history))
        return float(self.compute(history))
