"""
Shared fixtures: in-memory stand-ins for the catalog, rule and build stores.
"""
import copy
import itertools
from contextlib import contextmanager
from decimal import Decimal

import pytest
from pymongo.errors import OperationFailure

from catalog import ComponentRecord, component_listing, summarize_component_types
from rules import load_rules, rule_listing
from schemas import Cart, SavedBuild


def make_component(id, category=None, price="100.00", discount="0", name=None, **specifications):
    return ComponentRecord(
        id=id,
        name=name or id,
        category=category,
        price=Decimal(str(price)),
        discount_percentage=Decimal(str(discount)),
        specifications=specifications,
    )


def make_rule(rule_type, rule_config, id="r1", rule_name=None, error_message=None, **extra):
    doc = {
        "_id": id,
        "rule_type": rule_type,
        "rule_name": rule_name or "{} rule".format(rule_type),
        "rule_config": rule_config,
        "error_message": error_message or "{} violated".format(rule_type),
        "is_active": True,
    }
    doc.update(extra)
    return doc


class StaticCatalog:
    def __init__(self, records=()):
        self.records = {r.id: r for r in records}
        self.requests = []

    def resolve(self, ids):
        ids = list(ids)
        self.requests.append(ids)
        return {i: self.records[i] for i in ids if i in self.records}

    def component_types(self):
        counts = {}
        for record in self.records.values():
            counts[record.category] = counts.get(record.category, 0) + 1
        return summarize_component_types(counts)

    def components_by_type(self, slug):
        docs = [
            {"_id": r.id, "name": r.name, "category": r.category, "price": r.price,
             "discount_percentage": r.discount_percentage, "specifications": r.specifications}
            for r in self.records.values() if r.category == slug
        ]
        return [component_listing(doc) for doc in sorted(docs, key=lambda d: d["name"])]


class StaticRuleStore:
    def __init__(self, docs=()):
        self.docs = list(docs)

    def active_rules(self):
        return load_rules(self.docs)

    def list_rules(self):
        return [rule_listing(doc) for doc in self.docs if doc.get("is_active", True)]


class InMemoryBuildStore:
    """Build store with snapshot/restore transactions.

    `fail_on` names a writer method that raises instead of writing, to
    exercise rollback.
    """

    def __init__(self, fail_on=None):
        self.builds = {}
        self.carts = {}
        self.cart_items = {}
        self.fail_on = fail_on
        self._ids = itertools.count(1)
        self.transactions_opened = 0

    def next_id(self):
        return str(next(self._ids))

    def create_build(self, build: SavedBuild) -> str:
        return _InMemoryWriter(self).create_build(build)

    @contextmanager
    def transaction(self):
        self.transactions_opened += 1
        snapshot = copy.deepcopy((self.builds, self.carts, self.cart_items))
        try:
            yield _InMemoryWriter(self)
        except Exception:
            self.builds, self.carts, self.cart_items = snapshot
            raise


class _InMemoryWriter:
    def __init__(self, store):
        self.store = store

    def _maybe_fail(self, step):
        if self.store.fail_on == step:
            raise OperationFailure("simulated failure in {}".format(step))

    def create_build(self, build: SavedBuild) -> str:
        self._maybe_fail("create_build")
        build_id = self.store.next_id()
        self.store.builds[build_id] = build.model_dump()
        return build_id

    def get_or_create_cart(self, user_id):
        self._maybe_fail("get_or_create_cart")
        for cart_id, cart in self.store.carts.items():
            if cart["user_id"] == user_id:
                return cart_id
        cart_id = self.store.next_id()
        self.store.carts[cart_id] = Cart(user_id=user_id).model_dump()
        return cart_id

    def upsert_cart_line_item(self, cart_id, build_id, price):
        self._maybe_fail("upsert_cart_line_item")
        key = (cart_id, build_id)
        item = self.store.cart_items.get(key)
        if item:
            item["quantity"] += 1
        else:
            self.store.cart_items[key] = {
                "cart_id": cart_id, "custom_build_id": build_id, "quantity": 1,
                "price_at_added": price, "discount_percentage": 0.0, "discounted_price": price,
            }

    def recompute_cart_totals(self, cart_id):
        self._maybe_fail("recompute_cart_totals")
        cart = self.store.carts[cart_id]
        subtotal = round(sum(
            i["discounted_price"] * i["quantity"]
            for i in self.store.cart_items.values() if i["cart_id"] == cart_id
        ), 2)
        cart["subtotal"] = subtotal
        cart["total_amount"] = round(subtotal - cart["discount_amount"], 2)
        return Cart(**cart)


@pytest.fixture
def parts():
    return [
        make_component("cpu-am4", "cpu", price="200.00", socket="AM4", tdp=105),
        make_component("cpu-lga", "cpu", price="250.00", discount="10", socket="LGA1700", tdp=125),
        make_component("mb-am4", "motherboard", price="150.00", socket="AM4", form_factor="ATX",
                       supported_memory_types=["DDR4"], storage_interfaces=["SATA", "NVMe"]),
        make_component("ram-ddr4", "memory", price="60.00", memory_type="DDR4"),
        make_component("ram-ddr5", "memory", price="90.00", memory_type="DDR5"),
        make_component("ssd-nvme", "storage", price="80.00", interface="NVMe"),
        make_component("hdd-sas", "storage", price="120.00", interface="SAS"),
        make_component("case-atx", "pc-case", price="90.00", supported_form_factors=["ATX", "mATX"]),
        make_component("case-itx", "pc-case", price="70.00", supported_form_factors=["ITX"]),
        make_component("gpu-big", "gpu-graphics-card", price="500.00", discount="20", tdp=300),
        make_component("psu-650", "psu-power-supply-unit", price="100.00", wattage=650),
    ]


@pytest.fixture
def catalog(parts):
    return StaticCatalog(parts)
