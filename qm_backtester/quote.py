"""
Quote View
----------
A materialized row (raw value + indicator values + positions), built on demand
from the columnar store. Never the canonical storage.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from .position import TradePosition


@dataclass(frozen=True)
class Quote:
    index: int
    value: float | Mapping[str, float]
    indicators: Mapping[str, float] = field(default_factory=dict)
    positions: Mapping[str, TradePosition] = field(default_factory=dict)

    def price(self, field: str | None = None) -> float:
        """Numeric value of the row: the scalar itself, or one record field."""
        if isinstance(self.value, Mapping):
            if field is None:
                raise KeyError(
                    f"record quote needs a field name; available: {list(self.value)}"
                )
            return float(self.value[field])
        if field is not None:
            raise KeyError(f"scalar quote has no field {field!r}")
        return float(self.value)

    def __getitem__(self, field: str) -> float:
        return self.price(field)

    def indicator(self, name: str) -> float:
        return float(self.indicators.get(name, float("nan")))

    def position(self, name: str) -> TradePosition | None:
        return self.positions.get(name)

    def to_dict(self) -> dict[str, Any]:
        row: dict[str, Any] = {"index": self.index}
        if isinstance(self.value, Mapping):
            row.update(self.value)
        else:
            row["value"] = self.value
        row.update(self.indicators)
        for name, pos in self.positions.items():
            row[name] = pos.kind.value if pos is not None else None
        return row
