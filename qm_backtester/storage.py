"""
Columnar Storage
----------------
Append-only backing store for a Dataset.
Raw rows live in float64 columns (one per field), derived indicator values in
NaN-filled float64 columns and position states in object columns.
All columns grow together by amortized doubling.
"""

from __future__ import annotations

from typing import Any, Mapping

import numpy as np

SCALAR = None


def _resolve(index: int, length: int) -> int | None:
    """Maps a positive/negative index onto [0, length), or None if out of range."""
    i = index + length if index < 0 else index
    if i < 0 or i >= length:
        return None
    return i


class ColumnarStore:
    """Append-only columnar storage with positive/negative row indexing."""

    def __init__(self, initial_capacity: int = 1024) -> None:
        if initial_capacity < 1:
            raise ValueError("initial_capacity must be >= 1")
        self._capacity = int(initial_capacity)
        self._length = 0
        # None until the first append fixes the shape; () for scalar rows.
        self._fields: tuple[str, ...] | None = None
        self._raw: dict[str | None, np.ndarray] = {}
        self._indicators: dict[str, np.ndarray] = {}
        self._positions: dict[str, np.ndarray] = {}

    def __len__(self) -> int:
        return self._length

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def fields(self) -> tuple[str, ...]:
        """Field names of record rows; empty for scalar rows (or before any append)."""
        return self._fields or ()

    @property
    def is_scalar(self) -> bool:
        return not self._fields

    # -----------------------------
    # Raw values
    # -----------------------------
    def _fix_shape(self, value: Any) -> None:
        if isinstance(value, Mapping):
            if not value:
                raise ValueError("record rows must have at least one field")
            self._fields = tuple(str(k) for k in value.keys())
            for f in self._fields:
                self._raw[f] = np.full(self._capacity, np.nan, dtype=np.float64)
        else:
            self._fields = ()
            self._raw[SCALAR] = np.full(self._capacity, np.nan, dtype=np.float64)

    def append_value(self, value: Any) -> int:
        """Appends one raw row and returns its index."""
        if self._fields is None:
            self._fix_shape(value)

        if self._length >= self._capacity:
            self._grow()

        i = self._length
        if self._fields:
            if not isinstance(value, Mapping):
                raise ValueError(
                    f"expected a record with fields {list(self._fields)}, got {value!r}"
                )
            missing = set(self._fields) - set(value.keys())
            extra = set(value.keys()) - set(self._fields)
            if missing or extra:
                raise ValueError(
                    f"record shape mismatch: missing={sorted(missing)} extra={sorted(map(str, extra))}"
                )
            for f in self._fields:
                self._raw[f][i] = float(value[f])
        else:
            if isinstance(value, Mapping):
                raise ValueError(f"expected a scalar row, got record {value!r}")
            self._raw[SCALAR][i] = float(value)

        self._length += 1
        return i

    def get_value(self, index: int) -> float | dict[str, float] | None:
        """Returns the raw row (float or record dict); None when out of range."""
        i = _resolve(index, self._length)
        if i is None:
            return None
        if self._fields:
            return {f: float(self._raw[f][i]) for f in self._fields}
        return float(self._raw[SCALAR][i])

    def check_field(self, field: str | None) -> str | None:
        if self._fields:
            if field is None:
                raise KeyError(
                    f"record rows need a field name; available: {list(self._fields)}"
                )
            if field not in self._raw:
                raise KeyError(
                    f"unknown field {field!r}; available: {list(self._fields)}"
                )
            return field
        if field is not None and self._fields is not None:
            raise KeyError(f"scalar rows have no field {field!r}")
        return SCALAR

    def get_field(self, index: int, field: str | None = None) -> float:
        """Numeric accessor for one cell of raw data; NaN when out of range."""
        key = self.check_field(field)
        i = _resolve(index, self._length)
        if i is None or key not in self._raw:
            return float("nan")
        return float(self._raw[key][i])

    def field_array(self, field: str | None = None) -> np.ndarray:
        """Read-only view of a raw column truncated to the current length."""
        key = self.check_field(field)
        if key not in self._raw:
            return np.empty(0, dtype=np.float64)
        view = self._raw[key][: self._length]
        view.flags.writeable = False
        return view

    # -----------------------------
    # Indicator columns
    # -----------------------------
    def ensure_column(self, name: str) -> None:
        if name not in self._indicators:
            self._indicators[name] = np.full(self._capacity, np.nan, dtype=np.float64)

    def has_column(self, name: str) -> bool:
        return name in self._indicators

    @property
    def column_names(self) -> list[str]:
        return list(self._indicators)

    def set_column_value(self, index: int, name: str, value: float) -> None:
        self.ensure_column(name)
        i = _resolve(index, self._length)
        # rows not yet appended are ignored
        if i is not None:
            self._indicators[name][i] = value

    def get_column_value(self, index: int, name: str) -> float:
        col = self._indicators.get(name)
        i = _resolve(index, self._length)
        if col is None or i is None:
            return float("nan")
        return float(col[i])

    def column(self, name: str) -> np.ndarray:
        col = self._indicators.get(name)
        if col is None:
            return np.full(self._length, np.nan, dtype=np.float64)
        return col[: self._length].copy()

    def column_slice(self, name: str, start: int, stop: int) -> np.ndarray:
        """Read-only view of rows [start, stop) of an indicator column."""
        start = max(0, start)
        stop = min(stop, self._length)
        col = self._indicators.get(name)
        if col is None:
            return np.full(max(0, stop - start), np.nan, dtype=np.float64)
        view = col[start:stop]
        view.flags.writeable = False
        return view

    # -----------------------------
    # Position columns
    # -----------------------------
    def ensure_position_column(self, name: str) -> None:
        if name not in self._positions:
            self._positions[name] = np.full(self._capacity, None, dtype=object)

    def has_position_column(self, name: str) -> bool:
        return name in self._positions

    @property
    def position_names(self) -> list[str]:
        return list(self._positions)

    def set_position(self, index: int, name: str, position: Any) -> None:
        self.ensure_position_column(name)
        i = _resolve(index, self._length)
        if i is not None:
            self._positions[name][i] = position

    def get_position(self, index: int, name: str) -> Any:
        col = self._positions.get(name)
        i = _resolve(index, self._length)
        if col is None or i is None:
            return None
        return col[i]

    def position_column(self, name: str) -> list[Any]:
        col = self._positions.get(name)
        if col is None:
            return [None] * self._length
        return list(col[: self._length])

    # -----------------------------
    # Growth
    # -----------------------------
    def _grow(self) -> None:
        new_cap = self._capacity * 2
        n = self._length

        def _extend(arr: np.ndarray, fill: Any) -> np.ndarray:
            out = np.full(new_cap, fill, dtype=arr.dtype)
            out[:n] = arr[:n]
            return out

        for k, arr in self._raw.items():
            self._raw[k] = _extend(arr, np.nan)
        for k, arr in self._indicators.items():
            self._indicators[k] = _extend(arr, np.nan)
        for k, arr in self._positions.items():
            self._positions[k] = _extend(arr, None)

        self._capacity = new_cap
