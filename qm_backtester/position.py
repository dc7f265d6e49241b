"""
Trade Position State Machine
----------------------------
Four-state lifecycle of a simulated position: idle -> entry -> hold -> exit -> idle.
Positions are immutable values; every transition produces a fresh TradePosition
with merged metadata.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping


class PositionKind(str, Enum):
    IDLE = "idle"
    ENTRY = "entry"
    HOLD = "hold"
    EXIT = "exit"

    def is_open(self) -> bool:
        """True while capital is committed (just opened or held)."""
        return self in (PositionKind.ENTRY, PositionKind.HOLD)


class ExitReason(str, Enum):
    STOP_LOSS = "stop-loss"
    TAKE_PROFIT = "take-profit"
    STRATEGY = "strategy"
    END_OF_DATA = "end-of-data"


_I = PositionKind.IDLE
_N = PositionKind.ENTRY
_H = PositionKind.HOLD
_X = PositionKind.EXIT

# TRANSITIONS[current][decision] -> next
TRANSITIONS: Mapping[PositionKind, Mapping[PositionKind, PositionKind]] = MappingProxyType(
    {
        _I: MappingProxyType({_I: _I, _N: _N, _H: _I, _X: _I}),
        _N: MappingProxyType({_I: _H, _N: _H, _H: _H, _X: _X}),
        _H: MappingProxyType({_I: _H, _N: _H, _H: _H, _X: _X}),
        _X: MappingProxyType({_I: _I, _N: _N, _H: _I, _X: _I}),
    }
)

# Keys describing a single round trip. Dropped when a new cycle starts.
TRADE_KEYS = frozenset({"entry_price", "entry_index", "exit_reason", "exit_price"})


def next_kind(current: PositionKind | str, decision: PositionKind | str) -> PositionKind:
    return TRANSITIONS[PositionKind(current)][PositionKind(decision)]


def merge_metadata(
    old: Mapping[str, Any], new: Mapping[str, Any], *, reset_trade: bool = False
) -> Mapping[str, Any]:
    """
    Shallow copy-and-override: keys of `new` win, other keys of `old` persist.
    With reset_trade=True the trade-scoped keys of `old` are dropped first.
    """
    base = {k: v for k, v in old.items() if not (reset_trade and k in TRADE_KEYS)}
    base.update(new)
    return MappingProxyType(base)


@dataclass(frozen=True)
class TradePosition:
    """Position state plus immutable metadata (entry_price, exit_reason, short, ...)."""

    kind: PositionKind = PositionKind.IDLE
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", PositionKind(self.kind))
        if not isinstance(self.metadata, MappingProxyType):
            object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    @property
    def short(self) -> bool:
        return bool(self.metadata.get("short", False))

    @property
    def entry_price(self) -> float | None:
        return self.metadata.get("entry_price")

    @property
    def exit_reason(self) -> str | None:
        return self.metadata.get("exit_reason")

    def is_open(self) -> bool:
        return self.kind.is_open()

    @staticmethod
    def update(old: TradePosition, decision: TradePosition) -> TradePosition:
        """Applies `decision` to `old` through the transition table."""
        kind = next_kind(old.kind, decision.kind)
        # A new cycle (fresh entry or back to rest) must not inherit the last trade.
        reset = kind in (PositionKind.IDLE, PositionKind.ENTRY)
        return TradePosition(
            kind, merge_metadata(old.metadata, decision.metadata, reset_trade=reset)
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TradePosition):
            return NotImplemented
        return self.kind is other.kind and dict(self.metadata) == dict(other.metadata)

    def __hash__(self) -> int:
        return hash((self.kind, tuple(sorted(self.metadata))))

    def __repr__(self) -> str:
        return f"TradePosition({self.kind.value!r}, {dict(self.metadata)!r})"


IDLE = TradePosition(PositionKind.IDLE)
