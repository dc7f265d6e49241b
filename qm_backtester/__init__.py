"""
QM Backtester
-------------
An incremental backtesting engine for single-instrument strategies.
Columnar storage, incremental indicators and a four-state position machine;
batch preparation and streaming appends produce identical derived columns.
"""

from .backtest import Backtest, BacktestRunner
from .config import BacktestCfg, Config, load_config
from .dataset import Dataset
from .indicator import History, Indicator
from .position import ExitReason, PositionKind, TradePosition
from .quote import Quote
from .report import BacktestReport
from .storage import ColumnarStore
from .strategy import Strategy

__all__ = [
    "Backtest",
    "BacktestCfg",
    "BacktestReport",
    "BacktestRunner",
    "ColumnarStore",
    "Config",
    "Dataset",
    "ExitReason",
    "History",
    "Indicator",
    "PositionKind",
    "Quote",
    "Strategy",
    "TradePosition",
    "load_config",
]
