"""
API tests -- FastAPI endpoints via TestClient (no live server needed).

Storage is swapped for an in-memory store through dependency overrides.
"""
import pytest
from fastapi.testclient import TestClient

from analysis_builder.api.dependencies import get_store
from analysis_builder.api.main import app
from analysis_builder.persistence.storage import InMemoryStore

FUNNEL_CONFIG = {
    "version": 1,
    "analysisType": "funnel",
    "funnelCube": "Events",
    "funnelBindingKey": {"dimension": "Events.userId"},
    "funnelTimeDimension": "Events.timestamp",
    "funnelSteps": [
        {"name": "Signup", "cube": "Events"},
        {"name": "Purchase", "cube": "Events"},
    ],
}


@pytest.fixture
def client():
    store = InMemoryStore()
    app.dependency_overrides[get_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "modes": ["query", "funnel", "flow", "retention"]}


# ── Catalog ──────────────────────────────────────────────

def test_measures_list(client):
    resp = client.get("/measures")
    assert resp.status_code == 200
    assert "Orders.count" in resp.json()["measures"]


def test_dimensions_list(client):
    resp = client.get("/dimensions")
    assert resp.status_code == 200
    by_name = {d["name"]: d for d in resp.json()}
    assert by_name["Orders.createdAt"]["type"] == "time"
    assert by_name["Orders.status"]["cube"] == "Orders"


def test_full_catalog(client):
    resp = client.get("/catalog")
    assert resp.status_code == 200
    assert {c["name"] for c in resp.json()["cubes"]} == {"Orders", "Events", "Users"}


# ── Analysis ─────────────────────────────────────────────

def test_validate_complete_funnel(client):
    resp = client.post("/analysis/validate", json=FUNNEL_CONFIG)
    assert resp.status_code == 200
    data = resp.json()
    assert data["analysis_type"] == "funnel"
    assert data["is_valid"] is True
    assert len(data["warnings"]) == 2  # steps without filters


def test_validate_incomplete_funnel(client):
    config = {**FUNNEL_CONFIG, "funnelSteps": FUNNEL_CONFIG["funnelSteps"][:1]}
    data = client.post("/analysis/validate", json=config).json()
    assert data["is_valid"] is False
    assert "A funnel requires at least 2 steps." in data["errors"]


def test_validate_malformed_config(client):
    resp = client.post("/analysis/validate", json={"analysisType": "cohort"})
    assert resp.status_code == 422


def test_validate_config_without_state(client):
    resp = client.post("/analysis/validate", json={"version": 1, "analysisType": "flow"})
    assert resp.status_code == 422


def test_build_funnel_request(client):
    data = client.post("/analysis/build", json=FUNNEL_CONFIG).json()
    assert data["is_valid"] is True
    assert data["request"]["funnel"]["bindingKey"] == "Events.userId"
    assert len(data["request"]["funnel"]["steps"]) == 2


def test_build_legacy_query_request(client):
    config = {"version": 1, "analysisType": "query", "query": {"measures": ["Orders.count"]}}
    data = client.post("/analysis/build", json=config).json()
    assert data["request"] == {"measures": ["Orders.count"]}


def test_build_incomplete_returns_null_request(client):
    config = {**FUNNEL_CONFIG, "funnelSteps": []}
    data = client.post("/analysis/build", json=config).json()
    assert data["is_valid"] is False
    assert data["request"] is None


def test_generate_mock(client):
    resp = client.post("/analysis/generate", json={"prompt": "revenue by status", "provider": "mock"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is True
    assert data["request"] == {"measures": ["Orders.totalAmount"], "dimensions": ["Orders.status"]}
    assert data["config"]["analysisType"] == "query"


def test_generate_unmatched_prompt(client):
    data = client.post("/analysis/generate", json={"prompt": "hello there", "provider": "mock"}).json()
    assert data["success"] is False
    assert data["error"]
    assert data["request"] is None


def test_generate_prompt_too_short(client):
    resp = client.post("/analysis/generate", json={"prompt": "hi"})
    assert resp.status_code == 422


# ── Workspace ────────────────────────────────────────────

def test_workspace_defaults(client):
    data = client.get("/workspace").json()
    assert data["activeType"] == "query"
    assert set(data["modes"]) == {"query", "funnel", "flow", "retention"}


def test_workspace_put_get_delete(client):
    resp = client.put("/workspace", json=FUNNEL_CONFIG)  # legacy single config
    assert resp.status_code == 200
    assert resp.json()["activeType"] == "funnel"

    data = client.get("/workspace").json()
    assert data["activeType"] == "funnel"
    assert data["modes"]["funnel"]["funnelCube"] == "Events"

    assert client.delete("/workspace").json() == {"deleted": "analysis-builder-workspace"}
    assert client.get("/workspace").json()["activeType"] == "query"


def test_workspace_put_rejects_garbage(client):
    resp = client.put("/workspace", json={"hello": "world"})
    assert resp.status_code == 422


# ── Recent fields ────────────────────────────────────────

def test_recent_fields(client):
    assert client.get("/recent-fields").json() == {"metrics": [], "breakdowns": []}
    client.post("/recent-fields", json={"field": "Orders.count", "category": "metrics"})
    data = client.post("/recent-fields", json={"field": "Orders.status", "category": "breakdowns"}).json()
    assert data == {"metrics": ["Orders.count"], "breakdowns": ["Orders.status"]}


def test_recent_fields_bad_category(client):
    resp = client.post("/recent-fields", json={"field": "Orders.count", "category": "filters"})
    assert resp.status_code == 422
