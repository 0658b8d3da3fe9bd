from fastapi.testclient import TestClient

from packages.water_usage_core.memory import AdaptiveWeightMemory, InMemoryStore
from services.estimator_api.main import app, get_memory

memory = AdaptiveWeightMemory(InMemoryStore())
app.dependency_overrides[get_memory] = lambda: memory
client = TestClient(app)


def test_distribute_endpoint():
    resp = client.post("/usage/distribute", json={
        "start_value": 1520.0, "end_value": 1604.5, "divisions": 24,
        "start_hour": 0, "profile": "residential", "precision": 1, "seed": 7,
    })
    assert resp.status_code == 200
    body = resp.json()
    assert len(body["results"]) == 24
    assert body["total"] == 84.5
    assert round(sum(r["value"] for r in body["results"]), 1) == 84.5
    assert body["results"][-1]["cumulative"] == 1604.5
    assert body["results"][0]["hour_label"] == "00:00"
    assert body["results"][0]["trend"] == "stable"
    assert body["summary"]["total"] == 84.5
    assert body["method_version"] == "swe-v1"


def test_seed_makes_response_repeatable():
    payload = {"start_value": 0, "end_value": 50, "divisions": 6, "start_hour": 8,
               "profile": "commercial", "precision": 2, "seed": 3}
    fresh = AdaptiveWeightMemory(InMemoryStore())
    app.dependency_overrides[get_memory] = lambda: fresh
    try:
        first = client.post("/usage/distribute", json=payload).json()["results"]
        fresh.store.write("smart_water_hourly_memory", {})
        second = client.post("/usage/distribute", json=payload).json()["results"]
    finally:
        app.dependency_overrides[get_memory] = lambda: memory
    assert first == second


def test_reversed_readings_rejected():
    resp = client.post("/usage/distribute", json={"start_value": 10, "end_value": 5, "divisions": 4})
    assert resp.status_code == 422
    assert "end_value" in resp.json()["detail"]


def test_divisions_bounds_enforced():
    for divisions in (0, 745):
        resp = client.post("/usage/distribute", json={"start_value": 0, "end_value": 5, "divisions": divisions})
        assert resp.status_code == 422
        assert resp.json()["detail"][0]["loc"] == ["body", "divisions"]


def test_precision_bounds_enforced():
    resp = client.post("/usage/distribute", json={"start_value": 0, "end_value": 5, "precision": 5})
    assert resp.status_code == 422


def test_memory_endpoint_reports_learned_hours():
    client.post("/usage/distribute", json={"start_value": 0, "end_value": 48, "divisions": 24,
                                           "start_hour": 0, "profile": "residential", "seed": 1})
    hours = client.get("/usage/memory").json()["hours"]
    assert len(hours) == 24
    assert "00:00" in hours
