"""
Compatibility engine

Runs every active rule against a configuration and the resolved component
records. Violations are data, not exceptions: a configuration is valid iff no
rule produced an error. Warnings never affect validity.
"""
import logging
import math
from decimal import Decimal
from typing import Callable, Dict, Iterator, List, NamedTuple, Optional, Type

from pydantic import BaseModel

from catalog import (
    ComponentRecord,
    Configuration,
    SpecSheet,
    collect_component_ids,
    iter_refs,
    parse_configuration,
    single_ref,
)
from rules import (
    ActiveRule,
    CustomConfig,
    FormFactorConfig,
    MaxQuantityConfig,
    MemoryTypeConfig,
    PowerRequirementConfig,
    RuleConfig,
    SocketCompatibilityConfig,
    StorageInterfaceConfig,
)

logger = logging.getLogger(__name__)

POWER_SAFETY_MARGIN = Decimal("1.20")

ERROR = "error"
WARNING = "warning"

Components = Dict[str, ComponentRecord]


class Violation(BaseModel):
    rule_id: str
    rule_name: str
    message: str
    component_key: str


class ValidationResult(BaseModel):
    valid: bool
    errors: List[Violation]
    warnings: List[Violation]


class Finding(NamedTuple):
    level: str
    component_key: str
    # None means "use the rule's error message"
    message: Optional[str] = None


def _resolve_single(configuration: Configuration, key: str, components: Components) -> Optional[ComponentRecord]:
    ref = single_ref(configuration.get(key))
    if ref is None:
        return None
    return components.get(ref.id)


def _format_watts(value: Decimal) -> str:
    return format(value.normalize(), "f")


# Per rule type checks

def check_max_quantity(config: MaxQuantityConfig, configuration: Configuration, components: Components) -> Iterator[Finding]:
    value = configuration.get(config.component_key)
    if value is None:
        return
    count = len(value) if isinstance(value, list) else 1
    if count > config.max_quantity:
        yield Finding(ERROR, config.component_key)


def check_socket_compatibility(config: SocketCompatibilityConfig, configuration: Configuration, components: Components) -> Iterator[Finding]:
    cpu = _resolve_single(configuration, config.cpu_key, components)
    motherboard = _resolve_single(configuration, config.motherboard_key, components)
    if cpu is None or motherboard is None:
        return

    cpu_socket = cpu.specs.value(config.socket_field, SpecSheet.SOCKET)
    board_socket = motherboard.specs.value(config.socket_field, SpecSheet.SOCKET)
    if cpu_socket and board_socket and cpu_socket != board_socket:
        yield Finding(ERROR, config.motherboard_key)


def check_form_factor(config: FormFactorConfig, configuration: Configuration, components: Components) -> Iterator[Finding]:
    motherboard = _resolve_single(configuration, config.motherboard_key, components)
    case = _resolve_single(configuration, config.case_key, components)
    if motherboard is None or case is None:
        return

    board_form_factor = motherboard.specs.value(config.form_factor_field, SpecSheet.FORM_FACTOR)
    supported = case.specs.values(
        config.form_factor_field, SpecSheet.SUPPORTED_FORM_FACTORS, SpecSheet.FORM_FACTORS
    )
    if board_form_factor and supported and board_form_factor not in supported:
        yield Finding(ERROR, config.case_key)


def total_power_draw(config: PowerRequirementConfig, configuration: Configuration, components: Components) -> Decimal:
    keys = config.components if config.components is not None else list(configuration)
    total = Decimal("0")
    for key in keys:
        if key == config.psu_key:
            continue
        for ref in iter_refs(configuration.get(key)):
            record = components.get(ref.id)
            if record is None:
                continue
            draw = record.specs.number(config.power_field, SpecSheet.TDP, SpecSheet.POWER_CONSUMPTION)
            total += draw or 0
    return total


def check_power_requirement(config: PowerRequirementConfig, configuration: Configuration, components: Components) -> Iterator[Finding]:
    psu = _resolve_single(configuration, config.psu_key, components)
    if psu is None:
        return

    wattage = psu.specs.number(config.power_field, SpecSheet.WATTAGE) or Decimal("0")
    draw = total_power_draw(config, configuration, components)
    required = draw * POWER_SAFETY_MARGIN

    if wattage < draw:
        yield Finding(ERROR, config.psu_key)
    elif wattage < required:
        yield Finding(
            WARNING,
            config.psu_key,
            "PSU wattage ({}W) is close to required power ({}W). Consider a higher wattage PSU.".format(
                _format_watts(wattage), math.ceil(required)
            ),
        )


def _check_supported_per_item(item_key: str, supported: list, item_fields, configuration: Configuration, components: Components) -> Iterator[Finding]:
    if not supported:
        return
    for ref in iter_refs(configuration.get(item_key)):
        record = components.get(ref.id)
        if record is None:
            continue
        item_value = record.specs.value(*item_fields)
        if item_value and item_value not in supported:
            yield Finding(ERROR, item_key)


def check_memory_type(config: MemoryTypeConfig, configuration: Configuration, components: Components) -> Iterator[Finding]:
    if configuration.get(config.ram_key) is None:
        return
    motherboard = _resolve_single(configuration, config.motherboard_key, components)
    if motherboard is None:
        return

    supported = motherboard.specs.values(
        config.memory_type_field, SpecSheet.SUPPORTED_MEMORY_TYPES, SpecSheet.MEMORY_TYPES
    )
    yield from _check_supported_per_item(
        config.ram_key,
        supported,
        (config.memory_type_field, SpecSheet.MEMORY_TYPE, SpecSheet.TYPE),
        configuration,
        components,
    )


def check_storage_interface(config: StorageInterfaceConfig, configuration: Configuration, components: Components) -> Iterator[Finding]:
    if configuration.get(config.storage_key) is None:
        return
    motherboard = _resolve_single(configuration, config.motherboard_key, components)
    if motherboard is None:
        return

    supported = motherboard.specs.values(
        config.interface_field, SpecSheet.SUPPORTED_STORAGE_INTERFACES, SpecSheet.STORAGE_INTERFACES
    )
    yield from _check_supported_per_item(
        config.storage_key,
        supported,
        (config.interface_field, SpecSheet.INTERFACE, SpecSheet.CONNECTION),
        configuration,
        components,
    )


def check_custom(config: CustomConfig, configuration: Configuration, components: Components) -> Iterator[Finding]:
    # Extension point: custom rules are loaded but do not run any check yet.
    return iter(())


CHECKERS: Dict[Type[RuleConfig], Callable[..., Iterator[Finding]]] = {
    MaxQuantityConfig: check_max_quantity,
    SocketCompatibilityConfig: check_socket_compatibility,
    FormFactorConfig: check_form_factor,
    PowerRequirementConfig: check_power_requirement,
    MemoryTypeConfig: check_memory_type,
    StorageInterfaceConfig: check_storage_interface,
    CustomConfig: check_custom,
}


def evaluate(configuration: Configuration, components: Components, rules: List[ActiveRule]) -> ValidationResult:
    """Apply every rule in order; one rule's findings never stop the next rule."""
    errors: List[Violation] = []
    warnings: List[Violation] = []

    for rule in rules:
        checker = CHECKERS[type(rule.config)]
        for finding in checker(rule.config, configuration, components):
            violation = Violation(
                rule_id=rule.id,
                rule_name=rule.rule_name,
                message=finding.message or rule.error_message,
                component_key=finding.component_key,
            )
            if finding.level == ERROR:
                errors.append(violation)
            else:
                warnings.append(violation)

    return ValidationResult(valid=not errors, errors=errors, warnings=warnings)


def validate_configuration(raw, catalog, rule_store) -> ValidationResult:
    """Validate(configuration): parse, resolve components, load rules, evaluate."""
    configuration = parse_configuration(raw)
    components = catalog.resolve(collect_component_ids(configuration))
    rules = rule_store.active_rules()
    result = evaluate(configuration, components, rules)
    logger.debug(
        "Validated %d slots against %d rules: %d errors, %d warnings",
        len(configuration), len(rules), len(result.errors), len(result.warnings),
    )
    return result
