"""
Pytest configuration and shared fixtures for NYC spatial join tests.
"""

from typing import Any, List, Optional, Sequence

import pandas as pd
import pytest


class FakeResult:
    """Minimal stand-in for a SQLAlchemy Result."""

    def __init__(self, columns: Sequence[str] = (), rows: Optional[List[tuple]] = None):
        self._columns = list(columns)
        self._rows = list(rows or [])

    def fetchall(self):
        return list(self._rows)

    def keys(self):
        return list(self._columns)

    def scalar(self):
        return self._rows[0][0] if self._rows else None


class FakeSession:
    """Records executed SQL and replays queued results (or raises queued errors)."""

    def __init__(self, results: Optional[List[Any]] = None):
        self._results = list(results or [])
        self.executions = []
        self.commit_calls = 0
        self.closed = False

    def execute(self, statement, params=None):
        self.executions.append((str(statement), params))
        if not self._results:
            return FakeResult()
        result = self._results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    def commit(self):
        self.commit_calls += 1

    def rollback(self):
        pass

    def close(self):
        self.closed = True


@pytest.fixture
def fake_result():
    return FakeResult


@pytest.fixture
def fake_session():
    return FakeSession


@pytest.fixture
def neighborhood_ratio_rows() -> pd.DataFrame:
    """Graduate degree aggregates per neighborhood, unranked."""
    return pd.DataFrame({
        "name": ["Soho", "Carnegie Hill", "Tribeca", "Harlem", "Empty Lot", "Upper West Side"],
        "boroname": ["Manhattan"] * 6,
        "numerator_total": [800, 1628, 900, 500, 0, 1600],
        "denominator_total": [2000, 3081, 2000, 5000, 0, 4000],
        "ratio": [40.0, 52.84, 45.0, 10.0, None, 40.0],
    })
