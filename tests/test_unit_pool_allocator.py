import logging
from dataclasses import replace
import sys
import os
import pytest

current_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.dirname(current_dir)
sys.path.insert(0, project_root)

from incentive_engine.config_loader import validate_program_rules
from incentive_engine.incentive_definitions import PROGRAM_RULES
from incentive_engine.models import (
    EligibilityTier,
    FULL_COVERAGE,
    IncentiveLineItem,
    IncentivePackage,
    Numeric,
    Recommendation,
)
from incentive_engine.pool_allocator import (
    allocate_site_pool,
    allocation_rank,
    apply_shared_pools,
    check_hear_household_cap,
    enforce_household_cap,
    sort_by_allocation_priority,
)


@pytest.fixture
def rules():
    return validate_program_rules(PROGRAM_RULES)


def _item(program_id, amount):
    return IncentiveLineItem(program_id=program_id, program_name=program_id.upper(), amount=amount)


def _rec(measure_id, cost, *items, category="envelope"):
    package = IncentivePackage(name=f"{measure_id} package", incentives=tuple(items))
    return Recommendation(measure_id=measure_id, category=category, estimated_cost=float(cost),
                          packages=(package,), best_package=package, net_cost=float(cost))


def _homes_amount(rec):
    items = rec.best_package.items_for("homes")
    return items[0].amount.value if items else 0


@pytest.fixture
def scenario_b():
    """Five HOMES-only measures, listed out of priority order on purpose."""
    placeholder = _item("homes", Numeric(0.0))
    return [
        _rec("window_replacement", 8000, placeholder),
        _rec("air_sealing", 1200, placeholder),
        _rec("wall_insulation", 2500, placeholder),
        _rec("attic_insulation", 3000, placeholder),
        _rec("health_safety_repairs", 4000, placeholder, category="health_safety"),
    ]


# ======================= 1. SITE POOL (HOMES) =======================
def test_scenario_b_greedy_by_priority(rules, scenario_b):
    recs, pool = allocate_site_pool(scenario_b, EligibilityTier.CPF_LOW_INCOME, rules)
    by_id = {rec.measure_id: rec for rec in recs}

    assert _homes_amount(by_id["health_safety_repairs"]) == 4000
    assert _homes_amount(by_id["attic_insulation"]) == 3000
    assert _homes_amount(by_id["wall_insulation"]) == 2500
    assert _homes_amount(by_id["air_sealing"]) == 500
    # exhausted pool: no zero-dollar HOMES line is left behind
    assert by_id["window_replacement"].best_package.items_for("homes") == ()

    assert pool.used == 10000
    assert pool.remaining == 0
    assert pool.utilization()["utilization_pct"] == 100
    assert [mid for mid, _ in pool.allocations] == [
        "health_safety_repairs", "attic_insulation", "wall_insulation", "air_sealing",
    ]


def test_output_keeps_input_order(rules, scenario_b):
    recs, _ = allocate_site_pool(scenario_b, EligibilityTier.CPF_LOW_INCOME, rules)
    assert [r.measure_id for r in recs] == [r.measure_id for r in scenario_b]


def test_allocator_does_not_mutate_input(rules, scenario_b):
    allocate_site_pool(scenario_b, EligibilityTier.CPF_LOW_INCOME, rules)
    for rec in scenario_b:
        assert rec.best_package.items_for("homes")[0].amount == Numeric(0.0)


def test_gap_excludes_other_incentives(rules):
    rec = _rec("attic_insulation", 3000, _item("homes", Numeric(0.0)), _item("cpf", Numeric(1800.0)))
    recs, pool = allocate_site_pool([rec], EligibilityTier.CPF_LOW_INCOME, rules)
    assert _homes_amount(recs[0]) == 1200
    assert pool.used == 1200


def test_moderate_income_is_clamped_to_half_the_cost(rules):
    rec = _rec("window_replacement", 8000, _item("homes", Numeric(0.0)),
               _item("energy_trust_standard", Numeric(500.0)))
    recs, _ = allocate_site_pool([rec], EligibilityTier.HEAR_MODERATE, rules)
    assert _homes_amount(recs[0]) == 4000


def test_fully_covered_measure_gets_no_homes_line(rules):
    rec = _rec("health_safety_repairs", 1500, _item("homes", Numeric(0.0)), _item("cpf", FULL_COVERAGE),
               category="health_safety")
    recs, pool = allocate_site_pool([rec], EligibilityTier.CPF_LOW_INCOME, rules)
    assert recs[0].best_package.program_ids() == {"cpf"}
    assert pool.used == 0


def test_homes_never_sits_beside_hear(rules):
    rec = _rec("attic_insulation", 3000, _item("hear", Numeric(1600.0)), _item("homes", Numeric(0.0)))
    recs, pool = allocate_site_pool([rec], EligibilityTier.CPF_LOW_INCOME, rules)
    assert recs[0].best_package.program_ids() == {"hear"}
    assert pool.used == 0


def test_standard_tier_strips_homes(rules):
    rec = _rec("attic_insulation", 3000, _item("homes", Numeric(2000.0)),
               _item("energy_trust_standard", Numeric(100.0)))
    recs, pool = allocate_site_pool([rec], EligibilityTier.STANDARD, rules)
    assert recs[0].best_package.program_ids() == {"energy_trust_standard"}
    assert pool.used == 0


def test_disabled_pool_strips_homes(rules, scenario_b):
    recs, pool = allocate_site_pool(scenario_b, EligibilityTier.CPF_LOW_INCOME, rules, enabled=False)
    assert all(not rec.best_package.incentives for rec in recs)
    assert pool.used == 0


def test_measures_without_homes_slot_are_untouched(rules):
    rec = _rec("smart_thermostat", 250, _item("cpf", Numeric(250.0)), category="hvac")
    recs, pool = allocate_site_pool([rec], EligibilityTier.CPF_LOW_INCOME, rules)
    assert recs[0] == rec
    assert pool.allocations == ()


# ======================= 2. PRIORITY ORDER =======================
def test_allocation_rank_matches_id_then_category():
    order = ["health_safety_repairs", "attic_insulation", "hvac"]
    assert allocation_rank(_rec("attic_insulation", 1), order) == 1
    assert allocation_rank(_rec("heat_pump_ducted", 1, category="hvac"), order) == 2
    assert allocation_rank(_rec("heat_pump_water_heater", 1, category="water_heating"), order) == 3


def test_unlisted_measures_sort_last_and_stay_stable():
    order = ["attic_insulation"]
    recs = [_rec("duct_sealing", 1), _rec("attic_insulation", 1), _rec("smart_thermostat", 1)]
    ordered = [rec.measure_id for _, rec in sort_by_allocation_priority(recs, order)]
    assert ordered == ["attic_insulation", "duct_sealing", "smart_thermostat"]


def test_priority_order_changes_the_split(rules, scenario_b):
    """A different order gives a different (still capped) split."""
    reordered = replace(rules, homes_allocation_priority=("window_replacement",))
    recs, pool = allocate_site_pool(scenario_b, EligibilityTier.CPF_LOW_INCOME, reordered)
    by_id = {rec.measure_id: rec for rec in recs}

    assert _homes_amount(by_id["window_replacement"]) == 8000
    assert pool.used == 10000


# ======================= 3. HOUSEHOLD POOL (CERTA) =======================
def test_scenario_c_even_split(rules):
    recs = [_rec(mid, 3000, _item("certa", Numeric(2000.0)))
            for mid in ("attic_insulation", "wall_insulation", "floor_insulation", "air_sealing")]
    capped, pool = enforce_household_cap(recs, rules)

    assert [rec.best_package.incentives[0].amount.value for rec in capped] == [500, 500, 500, 500]
    assert pool.used == 2000
    assert "shared across 4 measures" in capped[0].best_package.incentives[0].note


def test_household_remainder_goes_to_last(rules):
    recs = [_rec(mid, 3000, _item("certa", Numeric(2000.0)))
            for mid in ("attic_insulation", "wall_insulation", "floor_insulation")]
    capped, pool = enforce_household_cap(recs, rules)

    assert [rec.best_package.incentives[0].amount.value for rec in capped] == [666, 666, 668]
    assert pool.used == 2000


def test_household_under_cap_is_unchanged(rules):
    recs = [_rec("attic_insulation", 3000, _item("certa", Numeric(1500.0)))]
    capped, pool = enforce_household_cap(recs, rules)
    assert capped == recs
    assert pool.used == 1500
    assert pool.remaining == 500


# ======================= 4. HEAR MONITOR =======================
def test_hear_household_cap_is_reported(rules, caplog):
    recs = [_rec(mid, 12000, _item("hear", Numeric(8000.0)), category="hvac")
            for mid in ("heat_pump_ducted", "heat_pump_ductless")]
    with caplog.at_level(logging.WARNING):
        total, exceeded = check_hear_household_cap(recs, rules)

    assert total == 16000
    assert exceeded
    assert "exceeds household cap" in caplog.text


# ======================= 5. FULL PASS =======================
def test_apply_shared_pools_recomputes_totals(rules, scenario_b):
    result = apply_shared_pools(scenario_b, EligibilityTier.CPF_LOW_INCOME, rules)
    by_id = {rec.measure_id: rec for rec in result.recommendations}

    air = by_id["air_sealing"]
    assert air.total_incentives == 500
    assert air.net_cost == 700
    assert air.coverage == 42

    window = by_id["window_replacement"]
    assert window.total_incentives == 0
    assert window.net_cost == 8000

    assert result.site_pool.used <= result.site_pool.cap
    assert result.household_pool.used <= result.household_pool.cap
    assert not result.hear_cap_exceeded


def test_apply_shared_pools_is_idempotent(rules, scenario_b):
    first = apply_shared_pools(scenario_b, EligibilityTier.CPF_LOW_INCOME, rules)
    second = apply_shared_pools(first.recommendations, EligibilityTier.CPF_LOW_INCOME, rules)

    assert second.recommendations == first.recommendations
    assert second.site_pool == first.site_pool
    assert second.household_pool == first.household_pool


def test_both_pools_in_one_pass(rules):
    recs = [
        _rec("attic_insulation", 3000, _item("homes", Numeric(0.0)), _item("cpf", Numeric(1500.0)),
             _item("certa", Numeric(2000.0))),
        _rec("wall_insulation", 2500, _item("homes", Numeric(0.0)), _item("cpf", Numeric(1000.0)),
             _item("certa", Numeric(2000.0))),
    ]
    result = apply_shared_pools(recs, EligibilityTier.CPF_LOW_INCOME, rules)
    attic, wall = result.recommendations

    # CERTA is split first, so HOMES only fills what is left
    assert attic.best_package.items_for("certa")[0].amount.value == 1000
    assert _homes_amount(attic) == 500
    assert _homes_amount(wall) == 500
    assert attic.net_cost == 0
    assert wall.net_cost == 0
    assert result.household_pool.used == 2000
    assert result.site_pool.used == 1000


def test_full_coverage_hear_counts_as_measure_cost(rules):
    recs = [
        _rec("heat_pump_ducted", 12000, _item("hear", Numeric(8000.0)), category="hvac"),
        _rec("electric_panel_upgrade", 7000, _item("hear", FULL_COVERAGE), category="hvac"),
    ]
    total, exceeded = check_hear_household_cap(recs, rules)
    assert total == 15000
    assert exceeded
