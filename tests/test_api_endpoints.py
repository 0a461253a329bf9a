import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

import spatial_joins.api.main as api_main
from config.database import get_db_session

RATIO_COLUMNS = ["name", "boroname", "numerator_total", "denominator_total", "ratio"]


@pytest.fixture
def client_with_db(fake_session):
    def _client(results):
        session = fake_session(results)
        api_main.app.dependency_overrides[get_db_session] = lambda: session
        return TestClient(api_main.app), session

    yield _client
    api_main.app.dependency_overrides.clear()


def test_root_endpoint():
    client = TestClient(api_main.app)
    resp = client.get("/")
    assert resp.status_code == 200
    body = resp.json()
    assert "name" in body
    assert body["endpoints"]["ratio_report"] == "/api/v1/reports/ratio"
    assert "station_blocks" in body["layouts"]
    assert body["strategies"] == ["raw", "centroid", "distinct_key"]


def test_health_endpoint(monkeypatch):
    monkeypatch.setattr(api_main, "test_connection", lambda: True)

    resp = TestClient(api_main.app).get("/health")

    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


def test_health_endpoint_degraded(monkeypatch):
    monkeypatch.setattr(api_main, "test_connection", lambda: False)

    resp = TestClient(api_main.app).get("/health")

    assert resp.status_code == 503
    assert resp.json()["database"] == "disconnected"


def test_ratio_report_endpoint(client_with_db, fake_result):
    rows = [
        ("Soho", "Manhattan", 800, 2000, 40.0),
        ("Carnegie Hill", "Manhattan", 1628, 3081, 52.84),
    ]
    client, session = client_with_db([fake_result(RATIO_COLUMNS, rows)])

    resp = client.get("/api/v1/reports/ratio", params={"strategy": "centroid", "limit": 5})

    assert resp.status_code == 200
    body = resp.json()
    assert body["strategy"] == "centroid"
    assert body["limit"] == 5
    assert [row["name"] for row in body["rows"]] == ["Carnegie Hill", "Soho"]
    sql, params = session.executions[0]
    assert "ST_Centroid" in sql
    assert params == {"limit": 5}


def test_ratio_report_endpoint_group_by(client_with_db, fake_result):
    client, session = client_with_db(
        [fake_result(["boroname", "numerator_total", "denominator_total", "ratio"], [])]
    )

    resp = client.get(
        "/api/v1/reports/ratio",
        params={"group_by": ["boroname"], "strategy": "distinct_key"},
    )

    assert resp.status_code == 200
    assert resp.json()["rows"] == []
    assert "GROUP BY boroname" in session.executions[0][0]


def test_ratio_report_invalid_column(client_with_db):
    client, session = client_with_db([])

    resp = client.get("/api/v1/reports/ratio", params={"numerator": "geom"})

    assert resp.status_code == 400
    assert "geom" in resp.json()["detail"]
    assert session.executions == []


def test_ratio_report_invalid_strategy(client_with_db):
    client, _ = client_with_db([])

    resp = client.get("/api/v1/reports/ratio", params={"strategy": "buffer"})

    assert resp.status_code == 400
    assert "buffer" in resp.json()["detail"]


def test_ratio_report_database_failure(client_with_db):
    client, _ = client_with_db([OperationalError("SELECT", {}, Exception("connection refused"))])

    resp = client.get("/api/v1/reports/ratio")

    assert resp.status_code == 503


def test_proximity_report_endpoint(client_with_db, fake_result):
    totals = ["total", "candidate_count"]
    client, session = client_with_db([
        fake_result(totals, [(8175032.0, 38794)]),
        fake_result(totals, [(10855873.0, 21000)]),
        fake_result(totals, [(5005743.0, 13000)]),
    ])

    resp = client.get("/api/v1/reports/proximity", params={"radius": 500})

    assert resp.status_code == 200
    body = resp.json()
    assert body["base_total"] == 8175032.0
    assert body["naive_total"] == 10855873.0
    assert body["deduplicated_total"] == 5005743.0
    assert body["double_counted"] == 10855873.0 - 5005743.0
    assert len(session.executions) == 3


def test_proximity_report_rejects_overlay_layout(client_with_db):
    client, _ = client_with_db([])

    resp = client.get("/api/v1/reports/proximity", params={"layout": "neighborhood_tracts"})

    assert resp.status_code == 400


def test_audit_report_endpoint(client_with_db, fake_result):
    client, _ = client_with_db(
        [fake_result(["candidate_key", "assignments"], [("36061000100", 2)])]
    )

    resp = client.get("/api/v1/reports/audit", params={"strategy": "raw"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["double_counted_candidates"] == 1
    assert body["rows"][0]["candidate_key"] == "36061000100"


def test_audit_report_centroid_on_proximity_layout(client_with_db):
    client, _ = client_with_db([])

    resp = client.get(
        "/api/v1/reports/audit", params={"layout": "station_blocks", "strategy": "centroid"}
    )

    assert resp.status_code == 400


def test_layouts_metadata():
    resp = TestClient(api_main.app).get("/api/v1/metadata/layouts")

    assert resp.status_code == 200
    body = resp.json()
    layouts = {layout["name"]: layout for layout in body["layouts"]}
    assert set(layouts) == {"neighborhood_tracts", "neighborhood_blocks", "station_blocks"}
    assert "edu_graduate_dipl" in layouts["neighborhood_tracts"]["summable_columns"]
    assert layouts["station_blocks"]["kind"] == "proximity"

    strategies = {s["name"]: s for s in body["strategies"]}
    assert strategies["centroid"]["supports_proximity"] is False
    assert strategies["distinct_key"]["deduplicates"] is True


def test_proximity_report_bad_radius_sends_no_sql(client_with_db):
    client, session = client_with_db([])

    resp = client.get("/api/v1/reports/proximity", params={"radius": -5})

    assert resp.status_code == 400
    assert "radius" in resp.json()["detail"]
    assert session.executions == []


def test_proximity_report_database_failure(client_with_db):
    client, session = client_with_db([OperationalError("SELECT", {}, Exception("timeout"))])

    resp = client.get("/api/v1/reports/proximity")

    assert resp.status_code == 503
    assert resp.json()["detail"].startswith("Report query failed")
    assert len(session.executions) == 1


def test_cors_origins_fall_back_to_local_dev():
    assert api_main.cors_origins("") == api_main.LOCAL_ORIGINS
    assert api_main.cors_origins(" https://a.example , ,https://b.example") == [
        "https://a.example",
        "https://b.example",
    ]
