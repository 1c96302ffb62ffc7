"""
Compatibility rule loading.

Rule documents carry a free-form `rule_config`. Each rule type gets its own
pydantic config model, decoded once when the rule is loaded. A rule whose
config is missing required fields is dropped from the active set and logged,
it never reaches the user as a violation.
"""
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError

import database
from catalog import serialize_doc
from schemas import RuleType

logger = logging.getLogger(__name__)


class RuleConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class MaxQuantityConfig(RuleConfig):
    component_key: str = Field(..., min_length=1)
    max_quantity: int = Field(..., gt=0)


class SocketCompatibilityConfig(RuleConfig):
    cpu_key: str = Field(..., min_length=1)
    motherboard_key: str = Field(..., min_length=1)
    socket_field: str = Field(..., min_length=1)


class FormFactorConfig(RuleConfig):
    motherboard_key: str = Field(..., min_length=1)
    case_key: str = Field(..., min_length=1)
    form_factor_field: str = Field(..., min_length=1)


class PowerRequirementConfig(RuleConfig):
    psu_key: str = Field(..., min_length=1)
    power_field: str = Field(..., min_length=1)
    # None means every other slot in the configuration
    components: Optional[List[str]] = None


class MemoryTypeConfig(RuleConfig):
    ram_key: str = Field(..., min_length=1)
    motherboard_key: str = Field(..., min_length=1)
    memory_type_field: str = Field(..., min_length=1)


class StorageInterfaceConfig(RuleConfig):
    storage_key: str = Field(..., min_length=1)
    motherboard_key: str = Field(..., min_length=1)
    interface_field: str = Field(..., min_length=1)


class CustomConfig(RuleConfig):
    model_config = ConfigDict(frozen=True, extra="allow")

    validation_logic: Optional[str] = None
    severity: Optional[str] = None


CONFIG_TYPES: Dict[RuleType, Type[RuleConfig]] = {
    RuleType.MAX_QUANTITY: MaxQuantityConfig,
    RuleType.SOCKET_COMPATIBILITY: SocketCompatibilityConfig,
    RuleType.FORM_FACTOR: FormFactorConfig,
    RuleType.POWER_REQUIREMENT: PowerRequirementConfig,
    RuleType.MEMORY_TYPE: MemoryTypeConfig,
    RuleType.STORAGE_INTERFACE: StorageInterfaceConfig,
    RuleType.CUSTOM: CustomConfig,
}


@dataclass(frozen=True)
class ActiveRule:
    id: str
    rule_type: RuleType
    rule_name: str
    error_message: str
    config: RuleConfig
    category: Optional[str] = None


def parse_rule_config(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str) and raw.strip():
        try:
            parsed = json.loads(raw)
        except ValueError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def load_rule(doc: dict) -> Optional[ActiveRule]:
    """Decode a rule document, or return None when it cannot be evaluated."""
    rule_id = str(doc.get("_id", doc.get("id")))
    try:
        rule_type = RuleType(doc.get("rule_type"))
    except ValueError:
        logger.warning("Skipping rule %s: unknown rule type %r", rule_id, doc.get("rule_type"))
        return None

    config_type = CONFIG_TYPES[rule_type]
    try:
        config = config_type.model_validate(parse_rule_config(doc.get("rule_config")))
    except ValidationError as exc:
        missing = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
        logger.warning("Skipping %s rule %s: invalid config (%s)", rule_type.value, rule_id, missing)
        return None

    return ActiveRule(
        id=rule_id,
        rule_type=rule_type,
        rule_name=doc.get("rule_name") or "",
        error_message=doc.get("error_message") or "",
        config=config,
        category=doc.get("category"),
    )


def load_rules(docs) -> List[ActiveRule]:
    rules = []
    for doc in docs:
        if not doc.get("is_active", True):
            continue
        rule = load_rule(doc)
        if rule is not None:
            rules.append(rule)
    return rules


def rule_listing(doc: dict) -> dict:
    item = serialize_doc(doc)
    item["rule_config"] = parse_rule_config(item.get("rule_config"))
    return item


class MongoRuleStore:
    """Rule store backed by the "compatibilityrule" collection."""

    collection = "compatibilityrule"

    def active_rules(self) -> List[ActiveRule]:
        return load_rules(database.get_documents(self.collection, {"is_active": True}))

    def list_rules(self) -> List[dict]:
        docs = database.db[self.collection].find({"is_active": True}).sort([("rule_type", 1), ("category", 1)])
        return [rule_listing(doc) for doc in docs]
