import numpy as np
import pandas as pd

from qm_backtester.strategy import Strategy


def make_bars(n=120, seed=7, start=100.0):
    rng = np.random.default_rng(seed)
    close = start + rng.standard_normal(n).cumsum() / 2
    high = close + rng.uniform(0.05, 0.5, n)
    low = close - rng.uniform(0.05, 0.5, n)
    open_ = close + rng.uniform(-0.1, 0.1, n)
    vol = rng.integers(50, 200, n).astype(float)
    return pd.DataFrame(
        {"open": open_, "high": high, "low": low, "close": close, "volume": vol}
    )


def index_strategy(name="scripted", entries=(), exits=(), short=False, **kwargs):
    """Strategy that enters/exits on fixed row indices."""
    entries, exits = set(entries), set(exits)

    def entry_when(q):
        return q.index in entries

    def exit_when(q):
        return q.index in exits

    if short:
        return Strategy(
            name, entry_short_when=entry_when, exit_short_when=exit_when, **kwargs
        )
    return Strategy(name, entry_when=entry_when, exit_when=exit_when, **kwargs)
