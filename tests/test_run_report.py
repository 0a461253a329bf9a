import sys
from contextlib import contextmanager

import pandas as pd
import pytest

import spatial_joins.run_report as run_report
from spatial_joins.errors import InvalidColumn, QueryExecutionError
from spatial_joins.runner import ProximityComparison


@pytest.fixture
def fake_db(monkeypatch):
    sessions = []

    @contextmanager
    def fake_get_db():
        sessions.append(object())
        yield sessions[-1]

    monkeypatch.setattr(run_report, "get_db", fake_get_db)
    monkeypatch.setattr(run_report, "test_connection", lambda: True)
    return sessions


def _run(monkeypatch, *argv):
    monkeypatch.setattr(sys, "argv", ["prog", *argv])
    with pytest.raises(SystemExit) as exc:
        run_report.main()
    return exc.value.code


def test_ratio_report_defaults(monkeypatch, capsys, fake_db):
    calls = {}

    def fake_ratio(db, **kwargs):
        calls.update(kwargs)
        return pd.DataFrame({"name": ["Carnegie Hill"], "boroname": ["Manhattan"], "ratio": [52.8]})

    monkeypatch.setattr(run_report, "run_ratio_report", fake_ratio)

    assert _run(monkeypatch, "ratio") == 0
    assert calls["layout"] == "neighborhood_tracts"
    assert calls["numerator"] == "edu_graduate_dipl"
    assert calls["denominator"] == "edu_total"
    assert calls["strategy"] == "centroid"
    assert calls["limit"] == 10
    assert calls["group_by"] is None
    assert "Carnegie Hill" in capsys.readouterr().out


def test_ratio_report_json_output(monkeypatch, capsys, fake_db):
    monkeypatch.setattr(
        run_report,
        "run_ratio_report",
        lambda db, **kwargs: pd.DataFrame({"name": ["Soho"], "ratio": [40.0]}),
    )

    assert _run(monkeypatch, "--format", "json", "ratio", "--strategy", "raw", "--limit", "3") == 0
    out = capsys.readouterr().out
    assert '"name": "Soho"' in out
    assert '"ratio": 40.0' in out


def test_ratio_report_invalid_column_exits_1(monkeypatch, fake_db):
    def fake_ratio(db, **kwargs):
        raise InvalidColumn(kwargs["numerator"], "nyc_census_tracts")

    monkeypatch.setattr(run_report, "run_ratio_report", fake_ratio)

    assert _run(monkeypatch, "ratio", "--numerator", "edu_phd") == 1


def test_query_execution_error_exits_1(monkeypatch, fake_db):
    def fake_audit(db, **kwargs):
        raise QueryExecutionError("Query execution failed: timeout", original=TimeoutError())

    monkeypatch.setattr(run_report, "audit_assignments", fake_audit)

    assert _run(monkeypatch, "audit") == 1


def test_proximity_report(monkeypatch, capsys, fake_db):
    calls = {}

    def fake_proximity(db, **kwargs):
        calls.update(kwargs)
        return ProximityComparison(
            layout="station_blocks",
            column="popn_total",
            radius=500.0,
            base_total=8175032.0,
            naive_total=10855873.0,
            deduplicated_total=5005743.0,
        )

    monkeypatch.setattr(run_report, "run_proximity_comparison", fake_proximity)

    assert _run(monkeypatch, "proximity") == 0
    assert calls == {"column": "popn_total", "radius": 500.0, "layout": "station_blocks"}
    out = capsys.readouterr().out
    assert "5,005,743" in out
    assert "5,850,130" in out


def test_audit_report_empty(monkeypatch, capsys, fake_db):
    monkeypatch.setattr(
        run_report,
        "audit_assignments",
        lambda db, **kwargs: pd.DataFrame(columns=["candidate_key", "assignments"]),
    )

    assert _run(monkeypatch, "audit", "--strategy", "centroid") == 0
    assert "(no rows)" in capsys.readouterr().out


def test_build_tracts(monkeypatch, capsys, fake_db):
    monkeypatch.setattr(run_report, "build_tract_tables", lambda db: 2166)

    assert _run(monkeypatch, "build-tracts") == 0
    assert "2166" in capsys.readouterr().out
    assert len(fake_db) == 1


def test_connection_failure_exits_1(monkeypatch):
    monkeypatch.setattr(run_report, "test_connection", lambda: False)

    assert _run(monkeypatch, "ratio") == 1


def test_unknown_layout_rejected_by_parser(monkeypatch, fake_db):
    assert _run(monkeypatch, "ratio", "--layout", "boroughs") == 2
