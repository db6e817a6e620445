"""Tests for the web API."""

import pytest
from pathlib import Path

# Only run if fastapi/httpx are installed
try:
    from fastapi.testclient import TestClient
    from omnistudio_resolver.web import create_app
    HAS_WEB = True
except ImportError:
    HAS_WEB = False

from omnistudio_resolver.cache import InMemoryBackend, SnapshotCache
from omnistudio_resolver.config import ResolverConfig
from omnistudio_resolver.service import HierarchyService

pytestmark = pytest.mark.skipif(not HAS_WEB, reason="web dependencies not installed")

FIXTURES = Path(__file__).parent / "fixtures"
BASE = "/api/omnistudio"


@pytest.fixture
def client():
    service = HierarchyService(
        config=ResolverConfig(source_dir=FIXTURES, fetch_timeout=5, max_workers=2),
        cache=SnapshotCache(InMemoryBackend()),
    )
    return TestClient(create_app(service))


@pytest.fixture
def loaded(client):
    res = client.post(f"{BASE}/org/load-all")
    assert res.status_code == 200
    return client


def test_load_all(client):
    res = client.post(f"{BASE}/org/load-all")
    assert res.status_code == 200
    data = res.json()
    assert data["total_components"] == 9
    assert data["integration_procedures"] == 7
    assert data["from_cache"] is False


def test_load_all_restores_from_cache(loaded):
    assert loaded.post(f"{BASE}/org/load-all").json()["from_cache"] is True
    forced = loaded.post(f"{BASE}/org/load-all", json={"force": True})
    assert forced.json()["from_cache"] is False


def test_load_all_missing_tenant_directory(client):
    res = client.post(f"{BASE}/no-such-org/load-all")
    assert res.status_code == 502


def test_force_reload(loaded):
    res = loaded.post(f"{BASE}/org/force-reload")
    assert res.status_code == 200
    assert res.json()["from_cache"] is False


def test_cached_component(loaded):
    res = loaded.get(f"{BASE}/org/integration-procedure/customer_getdetails/cached")
    assert res.status_code == 200
    data = res.json()
    assert data["found"] is True
    assert data["expanded_children"] == 2
    assert data["component"]["name"] == "Customer_GetDetails"


def test_cached_component_requires_reload(client):
    res = client.get(f"{BASE}/org/integration-procedure/Order_List/cached")
    assert res.status_code == 404
    assert res.json()["detail"]["requires_reload"] is True


def test_cached_component_not_found(loaded):
    res = loaded.get(f"{BASE}/org/integration-procedure/Nope/cached")
    assert res.status_code == 404
    assert res.json()["detail"]["requires_reload"] is False


def test_invalid_component_type(loaded):
    res = loaded.get(f"{BASE}/org/flexcard/Anything/cached")
    assert res.status_code == 400


def test_search(loaded):
    res = loaded.get(f"{BASE}/org/search", params={"component_type": "integration-procedure", "term": "cycle"})
    assert res.status_code == 200
    data = res.json()
    assert data["total_found"] == 2
    assert {i["name"] for i in data["instances"]} == {"Cycle_Alpha", "Cycle_Beta"}


def test_search_requires_reload(client):
    res = client.get(f"{BASE}/org/search", params={"component_type": "omniscript"})
    assert res.status_code == 404


def test_search_invalid_type(loaded):
    res = loaded.get(f"{BASE}/org/search", params={"component_type": "bogus"})
    assert res.status_code == 400


def test_child_hierarchy(client):
    res = client.get(f"{BASE}/org/ip-reference/Order_List/hierarchy")
    assert res.status_code == 200
    data = res.json()
    assert data["name"] == "Order_List"
    assert [s["name"] for s in data["hierarchy"]] == ["LoopOrders", "CallPricing"]


def test_child_hierarchy_not_found(client):
    res = client.get(f"{BASE}/org/ip-reference/Ghost_Proc/hierarchy")
    assert res.status_code == 404


def test_instance_details(client):
    res = client.get(f"{BASE}/org/integration-procedure/Customer_GetDetails/details")
    assert res.status_code == 200
    summary = res.json()["summary"]
    assert summary["children_count"] == 2
    assert summary["conditional_blocks_count"] == 1


def test_instance_details_omniscript(client):
    res = client.get(f"{BASE}/org/omniscript/Onboarding/details")
    assert res.status_code == 200
    assert res.json()["summary"]["procedure_type"] == "OmniScript"


def test_instance_details_not_found(client):
    res = client.get(f"{BASE}/org/integration-procedure/Ghost_Proc/details")
    assert res.status_code == 404


def test_instance_details_unsupported_type(client):
    res = client.get(f"{BASE}/org/data-mapper/DR_GetAccount/details")
    assert res.status_code == 400


def test_summary(loaded):
    res = loaded.get(f"{BASE}/org/summary")
    assert res.status_code == 200
    assert res.json()["counts"]["omniscripts"] == 1


def test_summary_requires_reload(client):
    res = client.get(f"{BASE}/org/summary")
    assert res.status_code == 404
    assert res.json()["detail"]["requires_reload"] is True


def test_cache_management(loaded):
    status = loaded.get(f"{BASE}/cache/status").json()
    assert status["backend"] == "memory"
    assert status["tenants"] == ["org"]

    toggled = loaded.post(f"{BASE}/cache/toggle", json={"enabled": False}).json()
    assert toggled["enabled"] is False

    assert loaded.post(f"{BASE}/org/cache/clear").json()["cleared"] is True
    assert loaded.get(f"{BASE}/cache/status").json()["tenants"] == []

    loaded.post(f"{BASE}/org/load-all")
    assert loaded.post(f"{BASE}/cache/clear-all").json() == {"cleared": 1}
