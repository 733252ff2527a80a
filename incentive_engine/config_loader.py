# config_loader.py: program rules loader + validation
#
# Contract: the caller owns loading. A document either validates into an immutable
# ProgramRules value or raises ConfigurationError naming the offending field.
# There is no module-level cache and no fallback rules document.

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from incentive_engine.models import (
    AmountRule,
    MeasureRule,
    Program,
    MEASURE_CATEGORIES,
    PROGRAM_CATEGORIES,
)

config_logger = logging.getLogger('config_loader')

REQUIRED_FIELDS = [
    "version",
    "income_thresholds",
    "program_caps",
    "homes_coverage_rules",
    "programs",
    "measure_incentives",
    "certa_eligible_measures",
    "homes_allocation_priority",
]

REQUIRED_THRESHOLDS = [
    "weatherization_smi_max",
    "weatherization_fpl_max",
    "cpf_tier1_ami_max",
    "hear_moderate_ami_min",
    "hear_moderate_ami_max",
]

REQUIRED_CAPS = [
    "certa_household_cap",
    "homes_flex_site_cap",
    "homes_modeled_min",
    "homes_modeled_max",
    "hear_household_cap",
]

# Program roles the package templates are built from
REQUIRED_PROGRAM_IDS = ["ohcs_weatherization", "hear", "homes", "cpf", "energy_trust_standard", "certa"]

SHARED_POOLS = ("household", "site")

# Program keys used inside measure_incentives entries
AMOUNT_PROGRAM_KEYS = ["cpf", "hear", "standard"]

# Markers meaning "this program pays nothing for this measure"
NOT_OFFERED_MARKERS = ("included_in_insulation",)


class ConfigurationError(ValueError):
    """Raised when a rules document is missing a field or is structurally invalid."""


@dataclass(frozen=True)
class ProgramRules:
    version: str
    income_thresholds: Dict[str, float]
    program_caps: Dict[str, float]
    homes_coverage_rules: Dict[str, Dict[str, float]]
    programs: Dict[str, Program]
    measures: Dict[str, MeasureRule]
    certa_eligible_measures: Tuple[str, ...]
    homes_allocation_priority: Tuple[str, ...]

    @property
    def certa_household_cap(self) -> float:
        return float(self.program_caps["certa_household_cap"])

    @property
    def homes_flex_site_cap(self) -> float:
        return float(self.program_caps["homes_flex_site_cap"])

    @property
    def hear_household_cap(self) -> float:
        return float(self.program_caps["hear_household_cap"])

    def measure_rule(self, measure_id: str) -> Optional[MeasureRule]:
        return self.measures.get(measure_id)

    def program(self, program_id: str) -> Program:
        return self.programs[program_id]

    def is_certa_eligible(self, measure_id: str) -> bool:
        if measure_id in self.certa_eligible_measures:
            return True
        rule = self.measures.get(measure_id)
        return bool(rule and rule.certa_eligible)

    def homes_coverage_percent(self, income_band: str) -> float:
        band = self.homes_coverage_rules.get(income_band, {})
        return float(band.get("coverage_percent", 0))

    def pool_program_id(self, pool: str) -> str:
        for program in self.programs.values():
            if program.pool == pool:
                return program.id
        raise ConfigurationError(f"No program is configured for the '{pool}' shared pool")


# ---------- field helpers ----------
def _require_number(section: Dict[str, Any], key: str, where: str) -> float:
    if key not in section or section[key] is None:
        raise ConfigurationError(f"Missing required config field: {where}.{key}")
    value = section[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(f"Config field {where}.{key} must be a number, got {value!r}")
    return float(value)


def _parse_amount_rule(measure_id: str, program_key: str, raw: Dict[str, Any]) -> Optional[AmountRule]:
    """
    Normalise the flat keys of one program inside a measure entry into an AmountRule.
    Exactly one resolution mode may be configured per program.
    """
    flat = raw.get(program_key)
    per_sqft = raw.get(f"{program_key}_per_sqft")
    per_window = raw.get(f"{program_key}_per_window")

    modes = [m for m in (flat, per_sqft, per_window) if m not in (None, 0) and m not in NOT_OFFERED_MARKERS]
    if len(modes) > 1:
        raise ConfigurationError(
            f"measure_incentives.{measure_id}: program '{program_key}' has more than one amount mode"
        )
    if not modes:
        return None

    where = f"measure_incentives.{measure_id}"
    if per_sqft not in (None, 0):
        return AmountRule(mode="per_sqft", value=_require_number(raw, f"{program_key}_per_sqft", where))
    if per_window not in (None, 0):
        cap = raw.get(f"{program_key}_max")
        if cap is not None:
            cap = _require_number(raw, f"{program_key}_max", where)
        return AmountRule(mode="per_window", value=_require_number(raw, f"{program_key}_per_window", where), cap=cap)
    if flat == "full":
        return AmountRule(mode="full")
    if isinstance(flat, dict):
        tiers = []
        for housing_type, amount in flat.items():
            if isinstance(amount, bool) or not isinstance(amount, (int, float)):
                raise ConfigurationError(f"{where}.{program_key}.{housing_type} must be a number, got {amount!r}")
            tiers.append((housing_type, float(amount)))
        if not tiers:
            return None
        return AmountRule(mode="housing_type", by_housing_type=tuple(tiers))
    if isinstance(flat, str):
        raise ConfigurationError(f"{where}.{program_key} has unknown amount marker {flat!r}")
    return AmountRule(mode="flat", value=_require_number(raw, program_key, where))


def _parse_measure(measure_id: str, raw: Any, certa_list) -> MeasureRule:
    if not isinstance(raw, dict):
        raise ConfigurationError(f"measure_incentives.{measure_id} must be an object")
    category = raw.get("category", "envelope")
    if category not in MEASURE_CATEGORIES:
        raise ConfigurationError(f"measure_incentives.{measure_id}.category '{category}' is not one of {MEASURE_CATEGORIES}")

    amounts = []
    for key in AMOUNT_PROGRAM_KEYS:
        rule = _parse_amount_rule(measure_id, key, raw)
        if rule is not None:
            amounts.append((key, rule))

    return MeasureRule(
        measure_id=measure_id,
        category=category,
        base_cost=float(raw.get("base_cost", 0) or 0),
        homes_eligible=bool(raw.get("homes_eligible", False)),
        certa_eligible=bool(raw.get("certa_eligible", False)) or measure_id in certa_list,
        amounts=tuple(amounts),
        cpf_requirements=tuple(raw.get("cpf_requirements", ())),
    )


def _parse_program(raw: Any) -> Program:
    if not isinstance(raw, dict) or "id" not in raw:
        raise ConfigurationError(f"Every entry in programs needs an 'id', got {raw!r}")
    category = raw.get("category")
    if category not in PROGRAM_CATEGORIES:
        raise ConfigurationError(f"programs.{raw['id']}.category '{category}' is not one of {PROGRAM_CATEGORIES}")
    max_rebate = raw.get("max_rebate")
    return Program(
        id=raw["id"],
        name=raw.get("name", raw["id"]),
        category=category,
        cannot_stack_with=frozenset(raw.get("cannot_stack_with", ())),
        can_stack_with=frozenset(raw.get("can_stack_with", ())),
        income_qualified=bool(raw.get("income_qualified", False)),
        max_rebate=float(max_rebate) if max_rebate is not None else None,
        pool=raw.get("pool"),
        contact=raw.get("contact", ""),
    )


def validate_program_rules(config: Dict[str, Any]) -> ProgramRules:
    """
    Validate a raw rules document and return it as an immutable ProgramRules value.
    Raises ConfigurationError naming the first missing or malformed field.
    """
    if not isinstance(config, dict):
        raise ConfigurationError("Program rules document must be a JSON object")

    for field_name in REQUIRED_FIELDS:
        if field_name not in config or config[field_name] is None:
            raise ConfigurationError(f"Missing required config field: {field_name}")

    thresholds = config["income_thresholds"]
    threshold_values = {key: _require_number(thresholds, key, "income_thresholds") for key in REQUIRED_THRESHOLDS}
    for key, value in thresholds.items():
        threshold_values.setdefault(key, value)

    caps = config["program_caps"]
    cap_values = {key: _require_number(caps, key, "program_caps") for key in REQUIRED_CAPS}
    if cap_values["homes_flex_site_cap"] < 0:
        raise ConfigurationError("program_caps.homes_flex_site_cap must not be negative")
    if cap_values["certa_household_cap"] < 0:
        raise ConfigurationError("program_caps.certa_household_cap must not be negative")
    if cap_values["homes_modeled_min"] > cap_values["homes_modeled_max"]:
        raise ConfigurationError("program_caps.homes_modeled_min exceeds program_caps.homes_modeled_max")

    coverage_rules = config["homes_coverage_rules"]
    for band in ("low_income", "moderate_income"):
        if band not in coverage_rules:
            raise ConfigurationError(f"Missing required config field: homes_coverage_rules.{band}")
        _require_number(coverage_rules[band], "coverage_percent", f"homes_coverage_rules.{band}")

    programs = {}
    for raw_program in config["programs"]:
        program = _parse_program(raw_program)
        programs[program.id] = program
    for program_id in REQUIRED_PROGRAM_IDS:
        if program_id not in programs:
            raise ConfigurationError(f"Missing required config field: programs.{program_id}")
    for pool in SHARED_POOLS:
        members = [p.id for p in programs.values() if p.pool == pool]
        if len(members) != 1:
            raise ConfigurationError(f"programs: expected exactly one '{pool}' pool program, found {members}")

    certa_list = tuple(config["certa_eligible_measures"])
    measures_raw = config["measure_incentives"]
    if not isinstance(measures_raw, dict) or not measures_raw:
        raise ConfigurationError("No measure incentives defined in configuration")
    measures = {mid: _parse_measure(mid, raw, certa_list) for mid, raw in measures_raw.items()}

    rules = ProgramRules(
        version=str(config["version"]),
        income_thresholds=threshold_values,
        program_caps=cap_values,
        homes_coverage_rules=coverage_rules,
        programs=programs,
        measures=measures,
        certa_eligible_measures=certa_list,
        homes_allocation_priority=tuple(config["homes_allocation_priority"]),
    )
    config_logger.info(f"Validated program rules v{rules.version} ({len(measures)} measures, {len(programs)} programs)")
    return rules


def load_program_rules(path: str) -> ProgramRules:
    """Read a JSON rules document from disk and validate it."""
    if not os.path.exists(path):
        raise ConfigurationError(f"Missing program rules document at {path}")
    try:
        with open(path, "r") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Program rules document {path} is not valid JSON: {e}") from e
    return validate_program_rules(data)
