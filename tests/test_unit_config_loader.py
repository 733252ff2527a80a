import copy
import json
import sys
import os
import pytest

current_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.dirname(current_dir)
sys.path.insert(0, project_root)

from incentive_engine.config_loader import (
    ConfigurationError,
    REQUIRED_FIELDS,
    load_program_rules,
    validate_program_rules,
)
from incentive_engine.incentive_definitions import PROGRAM_RULES, PROGRAM_RULES_VERSION


@pytest.fixture
def raw_rules():
    """A private deep copy so each test can break it freely."""
    return copy.deepcopy(PROGRAM_RULES)


# ======================= 1. BUNDLED RULES =======================
def test_bundled_rules_validate(raw_rules):
    rules = validate_program_rules(raw_rules)
    assert rules.version == PROGRAM_RULES_VERSION
    assert rules.certa_household_cap == 2000
    assert rules.homes_flex_site_cap == 10000
    assert rules.hear_household_cap == 14000
    assert rules.pool_program_id("household") == "certa"
    assert rules.pool_program_id("site") == "homes"
    assert rules.homes_coverage_percent("moderate_income") == 50
    assert rules.homes_coverage_percent("not_eligible") == 0


def test_amount_modes_are_normalised(raw_rules):
    rules = validate_program_rules(raw_rules)

    assert rules.measure_rule("attic_insulation").amount_rule("cpf").mode == "per_sqft"
    assert rules.measure_rule("attic_insulation").amount_rule("hear").mode == "flat"

    window = rules.measure_rule("window_replacement").amount_rule("standard")
    assert window.mode == "per_window"
    assert window.cap == 500

    ductless = rules.measure_rule("heat_pump_ductless").amount_rule("cpf")
    assert ductless.mode == "housing_type"
    assert dict(ductless.by_housing_type)["manufactured"] == 3500

    assert rules.measure_rule("health_safety_repairs").amount_rule("cpf").mode == "full"


def test_not_offered_markers_resolve_to_no_rule(raw_rules):
    rules = validate_program_rules(raw_rules)
    assert rules.measure_rule("air_sealing").amount_rule("hear") is None        # included_in_insulation
    assert rules.measure_rule("duct_sealing").amount_rule("hear") is None       # null
    assert rules.measure_rule("health_safety_repairs").amount_rule("standard") is None   # zero


def test_certa_eligibility_uses_list_or_flag(raw_rules):
    rules = validate_program_rules(raw_rules)
    assert rules.is_certa_eligible("air_sealing")             # listed only
    assert rules.is_certa_eligible("electric_panel_upgrade")  # flag only
    assert not rules.is_certa_eligible("smart_thermostat")
    assert not rules.is_certa_eligible("not_a_measure")


# ======================= 2. MISSING FIELDS =======================
@pytest.mark.parametrize("field_name", REQUIRED_FIELDS)
def test_missing_top_level_field_is_named(raw_rules, field_name):
    del raw_rules[field_name]
    with pytest.raises(ConfigurationError, match=field_name):
        validate_program_rules(raw_rules)


@pytest.mark.parametrize("section, key", [
    ("program_caps", "certa_household_cap"),
    ("program_caps", "homes_flex_site_cap"),
    ("income_thresholds", "cpf_tier1_ami_max"),
])
def test_missing_nested_field_is_named(raw_rules, section, key):
    del raw_rules[section][key]
    with pytest.raises(ConfigurationError, match=f"{section}.{key}"):
        validate_program_rules(raw_rules)


def test_missing_required_program(raw_rules):
    raw_rules["programs"] = [p for p in raw_rules["programs"] if p["id"] != "certa"]
    with pytest.raises(ConfigurationError, match="programs.certa"):
        validate_program_rules(raw_rules)


def test_missing_coverage_band(raw_rules):
    del raw_rules["homes_coverage_rules"]["moderate_income"]
    with pytest.raises(ConfigurationError, match="homes_coverage_rules.moderate_income"):
        validate_program_rules(raw_rules)


# ======================= 3. STRUCTURAL ERRORS =======================
def test_non_numeric_cap_is_rejected(raw_rules):
    raw_rules["program_caps"]["homes_flex_site_cap"] = "ten thousand"
    with pytest.raises(ConfigurationError, match="must be a number"):
        validate_program_rules(raw_rules)


def test_negative_site_cap_is_rejected(raw_rules):
    raw_rules["program_caps"]["homes_flex_site_cap"] = -1
    with pytest.raises(ConfigurationError, match="homes_flex_site_cap"):
        validate_program_rules(raw_rules)


def test_modeled_bounds_must_be_ordered(raw_rules):
    raw_rules["program_caps"]["homes_modeled_min"] = 9000
    with pytest.raises(ConfigurationError, match="homes_modeled_min"):
        validate_program_rules(raw_rules)


def test_two_amount_modes_for_one_program_is_rejected(raw_rules):
    raw_rules["measure_incentives"]["attic_insulation"]["cpf"] = 900
    with pytest.raises(ConfigurationError, match="more than one amount mode"):
        validate_program_rules(raw_rules)


def test_unknown_amount_marker_is_rejected(raw_rules):
    raw_rules["measure_incentives"]["smart_thermostat"]["cpf"] = "lots"
    with pytest.raises(ConfigurationError, match="unknown amount marker"):
        validate_program_rules(raw_rules)


def test_unknown_measure_category_is_rejected(raw_rules):
    raw_rules["measure_incentives"]["smart_thermostat"]["category"] = "solar"
    with pytest.raises(ConfigurationError, match="category"):
        validate_program_rules(raw_rules)


def test_each_pool_needs_exactly_one_program(raw_rules):
    for program in raw_rules["programs"]:
        if program["id"] == "cpf":
            program["pool"] = "site"
    with pytest.raises(ConfigurationError, match="'site' pool"):
        validate_program_rules(raw_rules)


def test_empty_measure_incentives_is_rejected(raw_rules):
    raw_rules["measure_incentives"] = {}
    with pytest.raises(ConfigurationError, match="No measure incentives"):
        validate_program_rules(raw_rules)


def test_configuration_error_is_a_value_error():
    with pytest.raises(ValueError):
        validate_program_rules([])


# ======================= 4. LOADING FROM DISK =======================
def test_load_program_rules_from_json(tmp_path, raw_rules):
    path = tmp_path / "program_rules.json"
    path.write_text(json.dumps(raw_rules))

    rules = load_program_rules(str(path))
    assert rules.version == PROGRAM_RULES_VERSION
    assert rules.measure_rule("electric_panel_upgrade").amount_rule("cpf").mode == "full"
    assert len(rules.measures) == len(raw_rules["measure_incentives"])


def test_load_missing_file_fails_fast(tmp_path):
    with pytest.raises(ConfigurationError, match="Missing program rules document"):
        load_program_rules(str(tmp_path / "nope.json"))


def test_load_invalid_json_fails_fast(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{ not json")
    with pytest.raises(ConfigurationError, match="not valid JSON"):
        load_program_rules(str(path))


def test_rules_are_not_substituted_on_failure(raw_rules):
    """A broken document never quietly turns into default numbers."""
    raw_rules["program_caps"] = None
    with pytest.raises(ConfigurationError):
        validate_program_rules(raw_rules)
    # the bundled document itself is untouched
    assert PROGRAM_RULES["program_caps"]["certa_household_cap"] == 2000
