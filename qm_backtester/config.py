"""
Configuration Schemas
---------------------
Dataclasses describing a backtest run, loadable from YAML.
Unknown keys are rejected up front (see validator.py).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .strategy import Strategy, build_preset, stop_loss_pct, take_profit_pct
from .validator import validate_keys


@dataclass
class BacktestCfg:
    """Ledger settings."""

    capital: float = 10_000.0
    name: str | None = None
    price_field: str | None = None

    def __post_init__(self) -> None:
        if self.capital is None or float(self.capital) <= 0:
            raise ValueError(f"Configuration Error: capital must be > 0, got {self.capital}")
        self.capital = float(self.capital)


@dataclass
class RiskCfg:
    """Optional percentage stop-loss / take-profit applied to preset strategies."""

    stop_loss_pct: float | None = None
    take_profit_pct: float | None = None

    def __post_init__(self) -> None:
        for key in ("stop_loss_pct", "take_profit_pct"):
            val = getattr(self, key)
            if val is not None and float(val) <= 0:
                raise ValueError(f"Configuration Error: {key} must be > 0, got {val}")


@dataclass
class StrategyCfg:
    """Preset strategy selection."""

    preset: str = "golden_cross"
    name: str | None = None
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class Config:
    """Root configuration object."""

    backtest: BacktestCfg = field(default_factory=BacktestCfg)
    strategy: StrategyCfg = field(default_factory=StrategyCfg)
    risk: RiskCfg = field(default_factory=RiskCfg)


def _merge_dc(obj: Any, patch: dict[str, Any]) -> Any:
    """Recursively merges a dictionary into a dataclass, re-running validation."""
    if not isinstance(patch, dict):
        return obj
    for k, v in patch.items():
        if not hasattr(obj, k):
            continue
        cur = getattr(obj, k)

        if hasattr(cur, "__dataclass_fields__") and isinstance(v, dict):
            _merge_dc(cur, v)
        else:
            setattr(obj, k, v)

    post_init = getattr(obj, "__post_init__", None)
    if post_init is not None:
        post_init()
    return obj


def config_from_dict(data: dict[str, Any]) -> Config:
    validate_keys(data, Config)
    cfg = Config()
    _merge_dc(cfg, data)
    return cfg


def load_config(path: str | Path) -> Config:
    """Loads configuration from a YAML file on top of the defaults."""
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(p, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Config Error: top level of {path} must be a mapping")

    return config_from_dict(data)


def build_strategy(cfg: Config) -> Strategy:
    """Builds the configured preset strategy with the configured risk predicates."""
    params = dict(cfg.strategy.params)
    if cfg.risk.stop_loss_pct is not None:
        params["stop_loss_when"] = stop_loss_pct(cfg.risk.stop_loss_pct)
    if cfg.risk.take_profit_pct is not None:
        params["take_profit_when"] = take_profit_pct(cfg.risk.take_profit_pct)
    return build_preset(cfg.strategy.preset, cfg.strategy.name, **params)
