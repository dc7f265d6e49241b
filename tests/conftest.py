"""
Pytest Fixtures
---------------
Shared resources for testing.
- closes: deterministic scalar price series (random walk).
- bar_records: OHLCV records built from the same walk.
- bars_df: the records as a DataFrame.
"""

from __future__ import annotations

import pytest

from tests.utils import make_bars


@pytest.fixture
def bars_df():
    """120 deterministic OHLCV bars."""
    return make_bars(120, seed=42)


@pytest.fixture
def closes(bars_df):
    return [float(x) for x in bars_df["close"]]


@pytest.fixture
def bar_records(bars_df):
    return bars_df.to_dict("records")
