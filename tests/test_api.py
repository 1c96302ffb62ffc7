import pytest
from fastapi.testclient import TestClient

import database
import main
from catalog import parse_configuration, record_from_document
from compatibility import evaluate
from rules import load_rules
from schemas import CompatibilityRule, Component

from conftest import InMemoryBuildStore, StaticRuleStore, make_rule

SOCKET_RULE = make_rule(
    "socket_compatibility",
    {"cpu_key": "cpu", "motherboard_key": "motherboard", "socket_field": "socket"},
    id="socket", rule_name="CPU socket", error_message="CPU does not fit the motherboard",
)


@pytest.fixture
def build_store():
    return InMemoryBuildStore()


@pytest.fixture
def client(catalog, build_store):
    main.app.dependency_overrides[main.get_catalog] = lambda: catalog
    main.app.dependency_overrides[main.get_rule_store] = lambda: StaticRuleStore([SOCKET_RULE])
    main.app.dependency_overrides[main.get_build_store] = lambda: build_store
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


def test_root(client):
    assert client.get("/").json() == {"message": "PC Builder API"}


class TestValidate:
    def test_incompatible_build_is_a_successful_response(self, client):
        res = client.post("/api/pc-builder/validate", json={
            "configuration": {"cpu": {"id": "cpu-lga"}, "motherboard": {"id": "mb-am4"}},
        })
        assert res.status_code == 200
        body = res.json()
        assert body["success"] is True
        assert body["data"]["valid"] is False
        assert body["data"]["errors"] == [{
            "rule_id": "socket",
            "rule_name": "CPU socket",
            "message": "CPU does not fit the motherboard",
            "component_key": "motherboard",
        }]
        assert body["data"]["warnings"] == []

    def test_empty_configuration(self, client):
        res = client.post("/api/pc-builder/validate", json={"configuration": {}})
        assert res.json()["data"] == {"valid": True, "errors": [], "warnings": []}

    @pytest.mark.parametrize("body", [{}, {"configuration": None}, {"configuration": ["cpu"]}, {"configuration": {"cpu": 3}}])
    def test_malformed_configuration_is_rejected(self, client, body):
        res = client.post("/api/pc-builder/validate", json=body)
        assert res.status_code == 400
        assert res.json() == {"success": False, "message": "Invalid configuration"}


class TestCalculatePrice:
    def test_breakdown(self, client):
        res = client.post("/api/pc-builder/calculate-price", json={
            "configuration": {"gpu": {"id": "gpu-big", "name": "Big GPU"}, "psu": {"id": "psu-650"}},
        })
        data = res.json()["data"]
        assert data["subtotal"] == 500.0
        assert data["total"] == 500.0
        assert data["breakdown"][0] == {
            "component_key": "gpu",
            "product_id": "gpu-big",
            "product_name": "Big GPU",
            "quantity": 1,
            "unit_price": 400.0,
            "original_price": 500.0,
            "discount_percentage": 20.0,
            "total": 400.0,
        }

    def test_repeated_calls_are_identical(self, client):
        body = {"configuration": {"ram": [{"id": "ram-ddr4"}, {"id": "ram-ddr5"}], "cpu": {"id": "cpu-lga"}}}
        first = client.post("/api/pc-builder/calculate-price", json=body)
        second = client.post("/api/pc-builder/calculate-price", json=body)
        assert first.content == second.content

    def test_malformed(self, client):
        res = client.post("/api/pc-builder/calculate-price", json={"configuration": "cpu"})
        assert res.status_code == 400


class TestSaveAndCheckout:
    def test_guest_save(self, client, build_store):
        res = client.post("/api/pc-builder/save-build", json={"configuration": {"cpu": {"id": "cpu-am4"}}})
        assert res.status_code == 201
        data = res.json()["data"]
        assert data["total_estimated_price"] == 200.0
        assert build_store.builds[data["id"]]["user_id"] is None

    def test_save_accepts_client_total(self, client, build_store):
        res = client.post("/api/pc-builder/save-build", headers={"X-User-Id": "u9"},
                          json={"configuration": {"cpu": {"id": "cpu-am4"}}, "total_estimated_price": 199.5})
        data = res.json()["data"]
        assert data["total_estimated_price"] == 199.5
        assert build_store.builds[data["id"]]["user_id"] == "u9"

    def test_checkout_requires_user(self, client, build_store):
        res = client.post("/api/pc-builder/checkout", json={"configuration": {"cpu": {"id": "cpu-am4"}}})
        assert res.status_code == 401
        assert res.json()["message"] == "Authentication required"
        assert build_store.builds == {}

    def test_checkout(self, client, build_store):
        res = client.post("/api/pc-builder/checkout", headers={"X-User-Id": "u1"},
                          json={"configuration": {"cpu": {"id": "cpu-am4"}}, "total_price": 210})
        assert res.status_code == 200
        data = res.json()["data"]
        assert build_store.carts[data["cart_id"]]["total_amount"] == 210.0
        assert data["custom_build_id"] in build_store.builds

    def test_store_failure_is_a_server_error(self, client, build_store):
        build_store.fail_on = "recompute_cart_totals"
        res = client.post("/api/pc-builder/checkout", headers={"X-User-Id": "u1"},
                          json={"configuration": {"cpu": {"id": "cpu-am4"}}})
        assert res.status_code == 500
        assert res.json() == {"success": False, "message": "Failed to checkout PC build"}
        assert build_store.builds == {}
        assert build_store.carts == {}


class TestListings:
    def test_component_types(self, client):
        data = client.get("/api/pc-builder/component-types").json()["data"]
        assert [t["slug"] for t in data] == [
            "pc-case", "motherboard", "cpu", "psu-power-supply-unit", "storage", "memory", "gpu-graphics-card",
        ]

    def test_components_by_type(self, client):
        data = client.get("/api/pc-builder/components/cpu").json()["data"]
        assert [c["id"] for c in data] == ["cpu-am4", "cpu-lga"]
        assert data[1]["discounted_price"] == 225.0

    def test_unknown_component_type(self, client):
        res = client.get("/api/pc-builder/components/toasters")
        assert res.status_code == 404
        assert res.json()["message"] == "Component type not found"

    def test_compatibility_rules(self, client):
        data = client.get("/api/pc-builder/compatibility-rules").json()["data"]
        assert data[0]["id"] == "socket"
        assert data[0]["rule_config"]["socket_field"] == "socket"


def test_database_not_configured(monkeypatch):
    monkeypatch.setattr(database, "db", None)
    client = TestClient(main.app)
    res = client.post("/api/pc-builder/validate", json={"configuration": {}})
    assert res.status_code == 500
    assert res.json() == {"success": False, "message": "Database not configured"}
    assert client.post("/api/seed").status_code == 500


class TestSeedData:
    def test_seed_documents_match_schemas(self):
        for doc in main.SEED_COMPONENTS:
            Component(**doc)
        for doc in main.SEED_RULES:
            CompatibilityRule(**doc)

    def test_every_seed_rule_loads(self):
        docs = [dict(doc, _id=str(i)) for i, doc in enumerate(main.SEED_RULES)]
        assert len(load_rules(docs)) == len(main.SEED_RULES)

    def test_seeded_parts_form_a_valid_build(self):
        by_name = {doc["name"]: record_from_document(dict(doc, _id=doc["name"])) for doc in main.SEED_COMPONENTS}
        raw = {
            "cpu": {"id": "AMD Ryzen 5 5600"},
            "motherboard": {"id": "MSI B550-A Pro"},
            "ram": [{"id": "Corsair Vengeance 16GB (2x8) 3200"}],
            "storage": [{"id": "Samsung 970 EVO Plus 1TB"}],
            "gpu": {"id": "NVIDIA RTX 3060"},
            "case": {"id": "Corsair 4000D Airflow"},
            "psu": {"id": "Corsair RM650x"},
        }
        docs = [dict(doc, _id=str(i)) for i, doc in enumerate(main.SEED_RULES)]

        result = evaluate(parse_configuration(raw), by_name, load_rules(docs))
        assert result.valid is True
        assert result.warnings == []

        raw["gpu"] = {"id": "AMD Radeon RX 6700 XT"}
        raw["psu"] = {"id": "Seasonic Focus 400W"}
        raw["ram"] = [{"id": "G.SKILL Ripjaws S5 32GB (2x16) 5600"}]
        result = evaluate(parse_configuration(raw), by_name, load_rules(docs))
        assert [e.component_key for e in result.errors] == ["ram"]
        assert [w.component_key for w in result.warnings] == ["psu"]
