# Script to verify batch/streaming determinism
from __future__ import annotations

import sys

import numpy as np
import pandas as pd

from qm_backtester.backtest import Backtest
from qm_backtester.config import Config, build_strategy, load_config
from qm_backtester.dataset import Dataset
from qm_backtester.metrics import equity_curve, summary


def df_fingerprint(df: pd.DataFrame) -> str:
    # Stable fingerprint based on values+index
    h = pd.util.hash_pandas_object(df, index=True).values
    return str(int(h.sum()))


def synth_bars(n: int = 2000, seed: int = 123) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    close = 100 + rng.normal(0, 0.5, size=n).cumsum()
    return pd.DataFrame(
        {
            "open": close + rng.uniform(-0.1, 0.1, n),
            "high": close + rng.uniform(0.05, 0.4, n),
            "low": close - rng.uniform(0.05, 0.4, n),
            "close": close,
            "volume": rng.integers(100, 1000, n).astype(float),
        }
    )


def main() -> None:
    # Optional: path to a YAML config; defaults otherwise
    cfg = load_config(sys.argv[1]) if len(sys.argv) > 1 else Config()
    bars = synth_bars()

    batch_strategy = build_strategy(cfg)
    batch = Dataset.from_frame(bars)
    r1 = Backtest(batch, batch_strategy).run(cfg.backtest)

    stream_strategy = build_strategy(cfg)
    stream = Dataset().prepare(stream_strategy)
    for rec in bars.to_dict("records"):
        stream.add(rec)
    r2 = Backtest(stream, stream_strategy).run(cfg.backtest)

    f1 = df_fingerprint(batch.to_frame())
    f2 = df_fingerprint(stream.to_frame())
    print(f"batch  fingerprint: {f1}")
    print(f"stream fingerprint: {f2}")

    if f1 != f2:
        raise SystemExit("FAIL: streamed columns differ from the batch pass")

    field = cfg.backtest.price_field or batch_strategy.price_field
    s1 = summary(r1, equity_curve(batch, r1, field))
    s2 = summary(r2, equity_curve(stream, r2, field))
    if s1 != s2:
        raise SystemExit("FAIL: report summary differs between batch and streaming runs")

    print(
        f"PASS: determinism verified ({len(batch)} rows, "
        f"{r1.number_of_trades} trades, final capital {r1.final_capital:.2f})."
    )


if __name__ == "__main__":
    main()
