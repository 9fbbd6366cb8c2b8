"""Tests for the HTTP API."""
from datetime import datetime, timezone
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from prom_mock.api import MockAPI, format_value, labels_map
from prom_mock.config import MockConfig
from prom_mock.fixtures import FixtureBook, load_fixtures
from prom_mock.series import Label
from prom_mock.storage import MemoryStorage

CONFIGS = Path(__file__).parent.parent / "configs"
NOW = datetime(2022, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
NOW_MS = 1641038400 * 1000


def write_body(*series):
    return {
        "timeseries": [
            {
                "labels": [{"name": k, "value": v} for k, v in labels],
                "samples": [{"timestamp": t, "value": v} for t, v in samples],
            }
            for labels, samples in series
        ]
    }


@pytest.fixture
def api():
    fixtures = load_fixtures(str(CONFIGS / "fixtures.yaml"))
    return MockAPI(MemoryStorage(), fixtures=fixtures, config=MockConfig(fixed_now=NOW))


@pytest.fixture
def client(api):
    return TestClient(api.app)


def test_healthz(client):
    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.text == "ok"


def test_fixture_query(client):
    response = client.get("/api/v1/query", params={"query": "up"})

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "success"
    assert body["data"]["resultType"] == "vector"
    assert "errorType" not in body


def test_fixture_error_route(client):
    body = client.get("/api/v1/query", params={"query": "broken_metric"}).json()

    assert body["status"] == "error"
    assert body["errorType"] == "bad_data"
    assert body["error"] == "parse error: unexpected character"


def test_fixture_catch_all_with_warnings(client):
    body = client.get("/api/v1/query", params={"query": "anything"}).json()

    assert body["warnings"] == ["catch-all fixture"]
    assert body["data"] == {"resultType": "vector", "result": []}


def test_fixture_query_range_relative(client):
    params = {
        "query": 'rate(http_requests_total{job="api"}[5m])',
        "start": str(NOW_MS // 1000 - 900),
        "end": "now",
        "step": "60s",
    }

    response = client.get("/api/v1/query_range", params=params)

    assert response.status_code == 200
    assert response.json()["data"]["resultType"] == "matrix"


def test_fixture_no_match():
    client = TestClient(MockAPI(MemoryStorage()).app)

    response = client.get("/api/v1/query_range", params={"query": "up", "start": "1", "end": "2"})

    assert response.status_code == 404
    assert response.json() == {
        "status": "error",
        "errorType": "not_found",
        "error": "no fixture matched",
    }


def test_huge_relative_offset_is_not_a_server_error():
    client = TestClient(MockAPI(MemoryStorage(), config=MockConfig(fixed_now=NOW)).app)
    params = {"query": "up", "start": "now-1000000d", "end": "now", "step": "1s"}

    response = client.get("/api/v1/query_range", params=params)
    assert response.status_code == 404
    assert response.json()["errorType"] == "not_found"

    client.post("/api/v1/write", json=write_body(([("__name__", "up")], [(NOW_MS - 1000, 1.0)])))
    response = client.get("/api/v1/query_range_simple", params=params)
    assert response.status_code == 200
    [item] = response.json()["data"]["result"]
    assert item["values"] == [[NOW_MS // 1000 - 1, "1"]]


def test_write_and_metadata(client):
    response = client.post("/api/v1/write", json=write_body(
        ([("__name__", "up"), ("job", "api")], [(NOW_MS - 1000, 1.0)]),
        ([("__name__", "up"), ("job", "db")], [(NOW_MS - 1000, 0.0)]),
    ))
    assert response.status_code == 204

    labels = client.get("/api/v1/labels").json()
    assert labels["status"] == "success"
    assert set(labels["data"]) == {"__name__", "job"}

    values = client.get("/api/v1/label/job/values").json()
    assert values["data"] == ["api", "db"]
    assert client.get("/api/v1/label/unknown/values").json()["data"] == []

    series = client.get("/api/v1/series").json()["data"]
    assert {"__name__": "up", "job": "api"} in series
    assert len(series) == 2


def test_write_rejects_bad_payloads(client):
    assert client.post("/api/v1/write", content=b"\x0a\x02garbage").status_code == 400
    assert client.post("/api/v1/write", json={"timeseries": [{"samples": [{"value": 1}]}]}).status_code == 400

    response = client.post(
        "/api/v1/write",
        content=b"{}",
        headers={"Content-Encoding": "snappy"}
    )
    assert response.status_code == 400


def test_query_simple(client):
    client.post("/api/v1/write", json=write_body(
        ([("__name__", "up"), ("job", "api")], [(NOW_MS - 60_000, 1.0), (NOW_MS - 30_000, 0.5)]),
        ([("__name__", "up"), ("job", "old")], [(NOW_MS - 3_600_000, 1.0)]),
    ))

    body = client.get("/api/v1/query_simple", params={"query": 'up{job=~"a.*|old"}'}).json()

    assert body["status"] == "success"
    assert body["data"]["resultType"] == "vector"
    [item] = body["data"]["result"]
    assert item["metric"] == {"__name__": "up", "job": "api"}
    assert item["value"] == [NOW_MS // 1000 - 30, "0.5"]


def test_query_range_simple(client):
    client.post("/api/v1/write", json=write_body(
        ([("__name__", "up"), ("job", "api")], [(1000, 1.0), (2000, 0.0), (5000, 1.0)]),
    ))

    body = client.get(
        "/api/v1/query_range_simple",
        params={"query": 'up{job="api"}', "start": "0", "end": "2", "step": "1s"}
    ).json()

    [item] = body["data"]["result"]
    assert body["data"]["resultType"] == "matrix"
    assert item["values"] == [[1, "1"], [2, "0"]]


def test_query_range_simple_relative(client):
    client.post("/api/v1/write", json=write_body(
        ([("__name__", "up")], [(NOW_MS - 120_000, 2.0), (NOW_MS - 7_200_000, 3.0)]),
    ))

    body = client.get(
        "/api/v1/query_range_simple",
        params={"query": "up", "start": "now-5m", "end": "now"}
    ).json()

    [item] = body["data"]["result"]
    assert item["values"] == [[NOW_MS // 1000 - 120, "2"]]


def test_bad_selector_is_400(client):
    response = client.get("/api/v1/query_simple", params={"query": 'up{job="api"'})

    assert response.status_code == 400
    body = response.json()
    assert body["status"] == "error"
    assert body["errorType"] == "bad_data"


def test_error_injection():
    api = MockAPI(MemoryStorage(), config=MockConfig(error_rate=1.0))
    client = TestClient(api.app)

    response = client.get("/api/v1/labels")

    assert response.status_code == 503
    assert response.text == "simulated failure"
    assert client.get("/healthz").status_code == 200


def test_clock_anchor_used_as_fixed_now():
    book = FixtureBook.model_validate({"defaults": {"clock_anchor": "2022-01-01T12:00:00Z"}})

    assert MockAPI(MemoryStorage(), fixtures=book).fixed_now == NOW
    assert MockAPI(MemoryStorage(), fixtures=book, config=MockConfig(fixed_now="2020-01-01T00:00:00Z")).fixed_now != NOW


def test_status_and_self_metrics(client):
    client.post("/api/v1/write", json=write_body(([("__name__", "up")], [(1000, 1.0), (2000, 1.0)])))
    client.get("/api/v1/query", params={"query": "up"})

    status = client.get("/status").json()
    assert status["series"] == 1
    assert status["fixture_routes"] == 4

    metrics = client.get("/metrics").text
    assert "prom_mock_samples_ingested_total 2.0" in metrics
    assert "prom_mock_active_series 1.0" in metrics
    assert 'prom_mock_fixture_lookups_total{endpoint="/api/v1/query",result="hit"} 1.0' in metrics


def test_format_value():
    assert format_value(1.0) == "1"
    assert format_value(0.25) == "0.25"
    assert format_value(float("nan")) == "NaN"
    assert format_value(float("-inf")) == "-Inf"


def test_labels_map_last_occurrence_wins():
    labels = [Label("__name__", "up"), Label("job", "a"), Label("job", "b")]

    assert labels_map(labels) == {"__name__": "up", "job": "b"}
