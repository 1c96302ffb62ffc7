"""
Component catalog access for the PC builder.

Turns a submitted configuration into validated component references and
resolves those references against the "component" collection. Anything the
catalog does not know about is left out of the resolved mapping; rule checks
and pricing treat that as missing data, not as a failure.
"""
import json
import logging
import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional, Union

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

import database

logger = logging.getLogger(__name__)

# PC Builder categories in display order: (slug, name)
PC_BUILDER_CATEGORIES = [
    ("pc-case", "PC Case"),
    ("motherboard", "Motherboard"),
    ("cpu", "CPU"),
    ("psu-power-supply-unit", "PSU (Power Supply Unit)"),
    ("storage", "Storage"),
    ("memory", "Memory"),
    ("gpu-graphics-card", "GPU (Graphics Card)"),
    ("cooling", "Cooling"),
    ("pc-fans", "PC Fans"),
    ("monitor", "Monitor"),
]

CENT = Decimal("0.01")
_LEADING_NUMBER = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")


class InvalidConfigurationError(ValueError):
    """Raised when a configuration is not a slot -> reference(s) mapping."""


# Configuration input

class ComponentRef(BaseModel):
    """A selected component inside a configuration slot. Extra display fields ride along."""
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    name: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_string(cls, value):
        if isinstance(value, bool):
            raise ValueError("component id must be a string or integer")
        if isinstance(value, int):
            return str(value)
        return value


SlotValue = Union[ComponentRef, List[Optional[ComponentRef]], None]
Configuration = Dict[str, SlotValue]

_configuration_adapter = TypeAdapter(Configuration)


def parse_configuration(raw: Any) -> Configuration:
    if not isinstance(raw, dict):
        raise InvalidConfigurationError("configuration must be an object")
    try:
        return _configuration_adapter.validate_python(raw)
    except ValidationError as exc:
        raise InvalidConfigurationError(str(exc)) from exc


def iter_refs(value: SlotValue) -> List[ComponentRef]:
    """Every reference in a slot that carries an id, in submission order."""
    if value is None:
        return []
    items = value if isinstance(value, list) else [value]
    return [item for item in items if item is not None and item.id]


def single_ref(value: SlotValue) -> Optional[ComponentRef]:
    # list-valued slots have no single component to compare
    if isinstance(value, ComponentRef) and value.id:
        return value
    return None


def collect_component_ids(configuration: Configuration) -> List[str]:
    seen = set()
    ids = []
    for value in configuration.values():
        for ref in iter_refs(value):
            if ref.id not in seen:
                seen.add(ref.id)
                ids.append(ref.id)
    return ids


# Specifications

def parse_number(value: Any) -> Optional[Decimal]:
    """Lenient numeric read: 650, "650", "650W" all give Decimal("650")."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    if isinstance(value, Decimal):
        return value
    if isinstance(value, str):
        match = _LEADING_NUMBER.match(value)
        if match:
            try:
                return Decimal(match.group(1))
            except InvalidOperation:
                return None
    return None


def parse_specifications(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return dict(raw)
    if isinstance(raw, str) and raw.strip():
        try:
            parsed = json.loads(raw)
        except ValueError:
            logger.debug("Unparseable specifications, using empty map: %r", raw[:80])
            return {}
        if isinstance(parsed, dict):
            return parsed
    return {}


def _is_empty(value: Any) -> bool:
    if isinstance(value, bool):
        return value is False
    if isinstance(value, (int, float, Decimal)):
        return value == 0
    return value is None or value == "" or value == []


class SpecSheet:
    """Read-only view over a component's specification map.

    Lookups take a list of keys and return the first one that is present and
    non-empty. A missing key is never an error, it just comes back as None.
    Keys nobody asks for stay in `raw` untouched.
    """

    SOCKET = "socket"
    FORM_FACTOR = "form_factor"
    FORM_FACTORS = "form_factors"
    SUPPORTED_FORM_FACTORS = "supported_form_factors"
    WATTAGE = "wattage"
    TDP = "tdp"
    POWER_CONSUMPTION = "power_consumption"
    MEMORY_TYPE = "memory_type"
    MEMORY_TYPES = "memory_types"
    SUPPORTED_MEMORY_TYPES = "supported_memory_types"
    TYPE = "type"
    INTERFACE = "interface"
    CONNECTION = "connection"
    STORAGE_INTERFACES = "storage_interfaces"
    SUPPORTED_STORAGE_INTERFACES = "supported_storage_interfaces"

    def __init__(self, raw: Optional[Dict[str, Any]] = None):
        self.raw = raw or {}

    def value(self, *keys: str) -> Any:
        for key in keys:
            candidate = self.raw.get(key)
            if not _is_empty(candidate):
                return candidate
        return None

    def values(self, *keys: str) -> List[Any]:
        """First list-valued key among `keys`; scalars under those keys are passed over."""
        for key in keys:
            candidate = self.raw.get(key)
            if isinstance(candidate, list) and candidate:
                return candidate
        return []

    def number(self, *keys: str) -> Optional[Decimal]:
        return parse_number(self.value(*keys))


# Resolved components

def round_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


class ComponentRecord(BaseModel):
    """Point in time snapshot of a catalog entry."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    category: Optional[str] = None
    price: Decimal = Field(Decimal("0"), ge=0)
    discount_percentage: Decimal = Field(Decimal("0"), ge=0, le=100)
    specifications: Dict[str, Any] = Field(default_factory=dict)

    @property
    def specs(self) -> SpecSheet:
        return SpecSheet(self.specifications)

    @property
    def discounted_price(self) -> Decimal:
        return round_money(self.price * (1 - self.discount_percentage / 100))


def record_from_document(doc: dict) -> ComponentRecord:
    return ComponentRecord(
        id=str(doc.get("_id", doc.get("id"))),
        name=doc.get("name") or "",
        category=doc.get("category"),
        price=parse_number(doc.get("price")) or Decimal("0"),
        discount_percentage=parse_number(doc.get("discount_percentage")) or Decimal("0"),
        specifications=parse_specifications(doc.get("specifications")),
    )


def records_from_documents(docs) -> Dict[str, ComponentRecord]:
    """Resolved records by id. Documents with out of range data stay unresolved."""
    records = {}
    for doc in docs:
        try:
            record = record_from_document(doc)
        except ValidationError as exc:
            logger.warning(
                "Leaving component %s unresolved, bad catalog data: %s",
                doc.get("_id", doc.get("id")),
                "; ".join(err["msg"] for err in exc.errors()),
            )
            continue
        records[record.id] = record
    return records


def serialize_doc(doc):
    if not doc:
        return doc
    doc = dict(doc)
    if "_id" in doc:
        doc["id"] = str(doc.pop("_id"))
    for key in ("created_at", "updated_at"):
        doc.pop(key, None)
    return doc


def component_listing(doc: dict) -> dict:
    """Catalog entry as shown in the builder's component picker."""
    record = record_from_document(doc)
    has_discount = record.discount_percentage > 0
    item = serialize_doc(doc)
    item.update(
        price=float(record.price),
        original_price=float(record.price) if has_discount else None,
        discounted_price=float(round_money(record.discounted_price)),
        discount_percentage=float(record.discount_percentage),
        specifications=record.specifications,
    )
    return item


def summarize_component_types(counts: Dict[str, int]) -> List[dict]:
    """Categories with at least one active component, in display order."""
    return [
        {"slug": slug, "name": name, "product_count": counts[slug]}
        for slug, name in PC_BUILDER_CATEGORIES
        if counts.get(slug, 0) > 0
    ]


def is_builder_category(slug: str) -> bool:
    return any(slug == known for known, _ in PC_BUILDER_CATEGORIES)


class MongoCatalog:
    """Catalog accessor backed by the "component" collection."""

    collection = "component"

    def resolve(self, ids: Iterable[str]) -> Dict[str, ComponentRecord]:
        object_ids = [ObjectId(i) for i in set(ids) if ObjectId.is_valid(i)]
        if not object_ids:
            return {}
        docs = database.db[self.collection].find({"_id": {"$in": object_ids}})
        return records_from_documents(docs)

    def component_types(self) -> List[dict]:
        slugs = [slug for slug, _ in PC_BUILDER_CATEGORIES]
        pipeline = [
            {"$match": {"is_active": True, "category": {"$in": slugs}}},
            {"$group": {"_id": "$category", "product_count": {"$sum": 1}}},
        ]
        counts = {row["_id"]: row["product_count"] for row in database.db[self.collection].aggregate(pipeline)}
        return summarize_component_types(counts)

    def components_by_type(self, slug: str) -> List[dict]:
        docs = database.db[self.collection].find({"category": slug, "is_active": True}).sort("name", 1)
        listings = []
        for doc in docs:
            try:
                listings.append(component_listing(doc))
            except ValidationError as exc:
                logger.warning("Hiding component %s from listing: %s", doc.get("_id"), exc.errors()[0]["msg"])
        return listings
