"""
Backtest Loop
-------------
Walks prepared position states in row order and books them into a
BacktestReport. Any position still open on the last row is force-closed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from .config import BacktestCfg
from .dataset import Dataset
from .position import ExitReason, PositionKind
from .quote import Quote
from .report import BacktestReport
from .strategy import Strategy

logger = logging.getLogger(__name__)

PriceFn = Callable[[Quote], float]


@dataclass(frozen=True)
class BacktestRunner:
    """Bundle of run arguments accepted by Strategy.backtest."""

    config: BacktestCfg
    on_entry_price: PriceFn | None = None
    on_exit_price: PriceFn | None = None


def _default_price(field: str | None) -> PriceFn:
    def _price(quote: Quote) -> float:
        return quote.price(field)

    return _price


class Backtest:
    """Runs one strategy over one dataset. The dataset is prepared eagerly."""

    def __init__(self, dataset: Dataset, strategy: Strategy) -> None:
        self.dataset = dataset
        self.strategy = strategy
        self.dataset.prepare(strategy)

    def run(
        self,
        config: BacktestCfg | None = None,
        on_entry_price: PriceFn | None = None,
        on_exit_price: PriceFn | None = None,
    ) -> BacktestReport:
        cfg = config if config is not None else BacktestCfg()
        field = cfg.price_field if cfg.price_field is not None else self.strategy.price_field
        entry_price = on_entry_price or _default_price(field)
        exit_price = on_exit_price or _default_price(field)

        report = BacktestReport(cfg.capital)
        name = self.strategy.name
        last = len(self.dataset) - 1

        for i in range(len(self.dataset)):
            quote = self.dataset.at(i)
            position = quote.position(name) if quote is not None else None
            if quote is None or position is None:
                continue

            if position.kind is PositionKind.ENTRY:
                report.mark_entry(entry_price(quote), quote, short=position.short)
            elif position.kind is PositionKind.EXIT:
                report.mark_exit(
                    exit_price(quote),
                    quote,
                    reason=position.exit_reason or ExitReason.STRATEGY,
                )

            if i == last and report.in_position:
                logger.debug("%s: forcing exit on the last row (%d)", name, i)
                report.mark_exit(exit_price(quote), quote, reason=ExitReason.END_OF_DATA)

        logger.debug(
            "%s: %d trades, final capital %.4f",
            name,
            report.number_of_trades,
            report.final_capital,
        )
        return report.close()
