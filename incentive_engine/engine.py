import logging

import pandas as pd

from incentive_engine.eligibility import get_eligibility_tier, tier_description
from incentive_engine.measure_resolver import apply_program_opt_outs, get_incentive_packages
from incentive_engine.models import (
    AssessmentInput,
    AssessmentResult,
    FullCoverage,
    Recommendation,
)
from incentive_engine.package_selector import select_package
from incentive_engine.pool_allocator import apply_shared_pools
from incentive_engine.stacking import StackingGraph

# --- Simplified and Concise Logging Setup ---
LOG_FORMAT = '%(asctime)s - %(levelname)s - [%(name)s] - %(message)s'
logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
engine_logger = logging.getLogger('incentive_engine')

FULL_COVERAGE_LABEL = "Full Coverage"


def build_recommendation(request, tier, rules, graph, opt_out_federal=False, opt_out_flex_pool=False) -> Recommendation:
    """Binds one requested measure to this assessment and attaches its candidate packages."""
    measure_rule = rules.measure_rule(request.measure_id)
    if request.estimated_cost is not None:
        cost = float(request.estimated_cost)
    else:
        cost = measure_rule.base_cost if measure_rule else 0.0

    packages = get_incentive_packages(request.measure_id, tier, request, rules, graph=graph)
    packages = apply_program_opt_outs(packages, rules,
                                      opt_out_federal=opt_out_federal,
                                      opt_out_flex_pool=opt_out_flex_pool)

    return Recommendation(
        measure_id=request.measure_id,
        category=measure_rule.category if measure_rule else "",
        estimated_cost=cost,
        packages=tuple(packages),
        net_cost=cost,
        description=request.description,
    )


# --- Master Assessment Pipeline ---
def run_assessment(assessment: AssessmentInput, rules) -> AssessmentResult:
    """
    Runs the full pipeline for one assessment:
    classify tier -> resolve packages -> pick best package per measure ->
    allocate shared pools across measures -> net cost per measure.

    Everything is built fresh per call; nothing is shared between assessments.
    """
    tier = get_eligibility_tier(assessment.ami_percent, assessment.smi_percent,
                                assessment.fpl_percent, rules.income_thresholds)
    engine_logger.info(f"Eligibility tier: {tier_description(tier)} "
                       f"(AMI {assessment.ami_percent}%, SMI {assessment.smi_percent}%, FPL {assessment.fpl_percent}%)")

    graph = StackingGraph.from_rules(rules)
    notes = []

    # Phase 1: local, per measure
    selected = []
    for request in assessment.measures:
        rec = build_recommendation(request, tier, rules, graph,
                                   opt_out_federal=assessment.opt_out_federal,
                                   opt_out_flex_pool=assessment.opt_out_flex_pool)
        if not rec.packages:
            notes.append(f"No incentives available for {request.measure_id}")
        selected.append(select_package(rec))

    # Phase 2: global, across measures
    allocation = apply_shared_pools(selected, tier, rules, graph=graph,
                                    site_pool_enabled=not assessment.opt_out_flex_pool)
    if allocation.hear_cap_exceeded:
        notes.append(f"HEAR total ${allocation.hear_total:,.0f} exceeds the "
                     f"${rules.hear_household_cap:,.0f} household cap")

    return AssessmentResult(
        tier=tier,
        recommendations=allocation.recommendations,
        household_pool=allocation.household_pool,
        site_pool=allocation.site_pool,
        hear_total=allocation.hear_total,
        hear_cap_exceeded=allocation.hear_cap_exceeded,
        rules_version=rules.version,
        notes=tuple(notes),
    )


# ======================= OUTPUT BUILDERS =======================
def _amount_for_output(amount):
    if isinstance(amount, FullCoverage):
        return FULL_COVERAGE_LABEL
    return amount.value


def _package_for_output(package):
    if package is None:
        return None
    return {
        "name": package.name,
        "note": package.note,
        "incentives": [
            {
                "program_id": item.program_id,
                "program": item.program_name,
                "amount": _amount_for_output(item.amount),
                "priority": item.priority,
                "note": item.note,
                "requirements": list(item.requirements),
                "contact": item.contact,
            }
            for item in package.incentives
        ],
    }


def assessment_output(result: AssessmentResult) -> dict:
    """Allocation output as plain data: per measure plus aggregate totals and pool utilization."""
    return {
        "rules_version": result.rules_version,
        "tier": result.tier.value,
        "tier_description": tier_description(result.tier),
        "measures": [
            {
                "measure_id": rec.measure_id,
                "category": rec.category,
                "estimated_cost": rec.estimated_cost,
                "best_package": _package_for_output(rec.best_package),
                "alternatives": [pkg.name for pkg in rec.packages],
                "total_incentives": rec.total_incentives,
                "net_cost": rec.net_cost,
                "coverage": rec.coverage,
            }
            for rec in result.recommendations
        ],
        "total_cost": result.total_cost,
        "total_incentives": result.total_incentives,
        "total_net_cost": result.total_net_cost,
        "pools": {
            "household": result.household_pool.utilization(),
            "site": result.site_pool.utilization(),
        },
        "hear_total": result.hear_total,
        "hear_cap_exceeded": result.hear_cap_exceeded,
        "notes": list(result.notes),
    }


def allocation_summary_frame(result: AssessmentResult) -> pd.DataFrame:
    """One row per measure, ready for a report table."""
    household_id = result.household_pool.program_id
    site_id = result.site_pool.program_id
    rows = []
    for rec in result.recommendations:
        package = rec.best_package
        items = package.incentives if package else ()
        rows.append({
            "Measure": rec.measure_id,
            "Category": rec.category,
            "Package": package.name if package else "No incentives available",
            "Estimated Cost ($)": rec.estimated_cost,
            "CERTA ($)": sum(i.amount.value for i in items if i.program_id == household_id and not i.is_full_coverage),
            "HOMES ($)": sum(i.amount.value for i in items if i.program_id == site_id and not i.is_full_coverage),
            "Total Incentives ($)": rec.total_incentives,
            "Net Cost ($)": rec.net_cost,
            "Coverage (%)": rec.coverage,
        })
    columns = ["Measure", "Category", "Package", "Estimated Cost ($)", "CERTA ($)", "HOMES ($)",
               "Total Incentives ($)", "Net Cost ($)", "Coverage (%)"]
    return pd.DataFrame(rows, columns=columns)
