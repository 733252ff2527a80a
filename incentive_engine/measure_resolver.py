"""
Measure Incentive Resolver

Builds the candidate incentive packages for one measure in one eligibility tier.
Each package is an alternative way to fund the measure; packages are never summed.

FUNDING PRIORITY (within a package):
  1. Federal funding first (HEAR or HOMES, never both on one measure)
  2. CPF / Energy Trust Standard fill the remaining gap
  3. CERTA enabling-repair funding is layered on for CERTA-eligible measures

HOMES line items are created as $0 placeholders here; the pool allocator sizes
them later against the site-wide flex cap.
"""

import logging
import math
from dataclasses import replace
from typing import List, Optional

from incentive_engine.models import (
    EligibilityTier,
    FULL_COVERAGE,
    IncentiveLineItem,
    IncentivePackage,
    MeasureRequest,
    Numeric,
)
from incentive_engine.stacking import StackingGraph

resolver_logger = logging.getLogger('measure_resolver')

# --- Program roles ---
WEATHERIZATION = "ohcs_weatherization"
HEAR = "hear"
HOMES = "homes"
CPF = "cpf"
STANDARD = "energy_trust_standard"
CERTA = "certa"

# Sizing assumptions when the assessment did not measure them
DEFAULT_SQFT = 1000
DEFAULT_WINDOW_COUNT = 10

HEAR_LOW_INCOME_PERCENT = 100
HEAR_MODERATE_PERCENT = 50


# ======================= 1. AMOUNT RESOLUTION =======================
def resolve_amount(amount_rule, details: MeasureRequest):
    """
    Resolves one AmountRule to Numeric | FullCoverage, or None when the program
    pays nothing for this measure.
    """
    if amount_rule is None:
        return None

    mode = amount_rule.mode
    if mode == "full":
        return FULL_COVERAGE

    if mode == "per_sqft":
        sqft = details.sqft or DEFAULT_SQFT
        dollars = math.floor(sqft * amount_rule.value)
    elif mode == "per_window":
        windows = details.window_count or DEFAULT_WINDOW_COUNT
        dollars = windows * amount_rule.value
        if amount_rule.cap is not None:
            dollars = min(dollars, amount_rule.cap)
    elif mode == "housing_type":
        tiers = dict(amount_rule.by_housing_type)
        if details.housing_type in tiers:
            dollars = tiers[details.housing_type]
        elif "single_family" in tiers:
            dollars = tiers["single_family"]
        else:
            dollars = amount_rule.by_housing_type[0][1]
    elif mode == "flat":
        dollars = amount_rule.value
    else:
        raise ValueError(f"Unknown amount mode '{mode}'")

    if dollars <= 0:
        return None
    return Numeric(float(dollars))


def get_cpf_amount(measure_rule, details: MeasureRequest):
    return resolve_amount(measure_rule.amount_rule("cpf"), details)


def get_standard_amount(measure_rule, details: MeasureRequest):
    return resolve_amount(measure_rule.amount_rule("standard"), details)


def get_hear_amount(measure_rule, percentage: float) -> Optional[Numeric]:
    """HEAR is a flat base amount scaled by the household's rebate percentage."""
    rule = measure_rule.amount_rule("hear")
    if rule is None or rule.mode != "flat":
        return None
    dollars = math.floor(rule.value * (percentage / 100))
    return Numeric(float(dollars)) if dollars > 0 else None


# ======================= 2. LINE ITEM HELPERS =======================
def _line_item(rules, program_id, amount, priority, note="", name=None, requirements=()):
    program = rules.program(program_id)
    return IncentiveLineItem(
        program_id=program_id,
        program_name=name or program.name,
        amount=amount,
        priority=priority,
        requirements=tuple(requirements),
        note=note,
        contact=program.contact,
    )


def _homes_placeholder(rules, priority=1):
    return _line_item(
        rules, HOMES, Numeric(0.0), priority,
        note=f"Allocated dynamically up to ${rules.homes_flex_site_cap:,.0f} site cap (fills gaps after other incentives)",
    )


def _certa_item(rules, priority):
    cap = rules.certa_household_cap
    return _line_item(
        rules, CERTA, Numeric(cap), priority,
        note=f"Capped at ${cap:,.0f} for enabling work; HOMES covers gaps above this",
    )


# ======================= 3. PACKAGE TEMPLATES PER TIER =======================
def _weatherization_packages(measure_rule, details, rules) -> List[IncentivePackage]:
    packages = [
        IncentivePackage(
            name="OHCS Weatherization (Primary)",
            incentives=(_line_item(
                rules, WEATHERIZATION, FULL_COVERAGE, 1,
                note="May have waitlist - check agency capacity",
                requirements=("Income verification", "Application approval"),
            ),),
            note="Full no-cost coverage (waitlist may apply)",
        )
    ]

    # HEAR 100% alternative - no waitlist
    hear_amount = get_hear_amount(measure_rule, HEAR_LOW_INCOME_PERCENT)
    if hear_amount:
        incentives = [_line_item(rules, HEAR, hear_amount, 1, name="HEAR 100% (IRA Federal)",
                                 note="Available even with OHCS eligibility - no waitlist")]
        if rules.is_certa_eligible(measure_rule.measure_id):
            incentives.append(_certa_item(rules, 2))
        packages.append(IncentivePackage(
            name="HEAR 100% Package (Faster Alternative)",
            incentives=tuple(incentives),
            note="Faster timeline than weatherization waitlist",
        ))

    if measure_rule.homes_eligible:
        packages.append(IncentivePackage(
            name="HOMES Package (Comprehensive Alternative)",
            incentives=(_homes_placeholder(rules, priority=2),),
            note="Good for comprehensive projects - no waitlist, flexible funding",
        ))

    # CPF alternative when the household is working with a community partner
    if details.cpf_eligible:
        cpf_amount = get_cpf_amount(measure_rule, details)
        if isinstance(cpf_amount, Numeric):
            packages.append(IncentivePackage(
                name="CPF Alternative",
                incentives=(_line_item(rules, CPF, cpf_amount, 2,
                                       requirements=measure_rule.cpf_requirements or ("Income verification", "Trade Ally")),),
                note="Enhanced CPF rebates via CBO partner",
            ))

    return packages


def _cpf_packages(measure_rule, details, rules) -> List[IncentivePackage]:
    packages = []
    measure_id = measure_rule.measure_id
    cpf_amount = get_cpf_amount(measure_rule, details)
    hear_amount = get_hear_amount(measure_rule, HEAR_LOW_INCOME_PERCENT)
    certa_eligible = rules.is_certa_eligible(measure_id)
    if not cpf_amount:
        return packages

    cpf_gap_item = _line_item(rules, CPF, cpf_amount, 2, requirements=measure_rule.cpf_requirements,
                              note="Gap funding to achieve no-cost (may exceed remaining cost)")

    if hear_amount:
        incentives = [
            _line_item(rules, HEAR, hear_amount, 1,
                       note=f"Primary federal funding - ${rules.hear_household_cap:,.0f} household cap applies"),
            cpf_gap_item,
        ]
        if certa_eligible:
            incentives.append(_certa_item(rules, 3))
        packages.append(IncentivePackage(
            name="HEAR + CPF Stack (No-Cost Path)",
            incentives=tuple(incentives),
            note="Federal $ first, CPF fills gaps - typically achieves $0 cost",
        ))

    if measure_rule.homes_eligible:
        incentives = [_homes_placeholder(rules, priority=1), cpf_gap_item]
        if certa_eligible:
            incentives.append(_certa_item(rules, 3))
        packages.append(IncentivePackage(
            name="HOMES + CPF Stack (No-Cost Path)",
            incentives=tuple(incentives),
            note="Federal whole-home rebate + CPF gap funding - typically achieves $0 cost",
        ))

    if not hear_amount and not measure_rule.homes_eligible:
        incentives = [_line_item(rules, CPF, cpf_amount, 1, requirements=measure_rule.cpf_requirements)]
        if certa_eligible:
            incentives.append(_certa_item(rules, 2))
        packages.append(IncentivePackage(name="CPF Package", incentives=tuple(incentives), note="Enhanced CPF rebates"))

    return packages


def _moderate_packages(measure_rule, details, rules) -> List[IncentivePackage]:
    packages = []
    standard_amount = get_standard_amount(measure_rule, details)
    hear_amount = get_hear_amount(measure_rule, HEAR_MODERATE_PERCENT)
    if not standard_amount:
        return packages

    standard_gap_item = _line_item(rules, STANDARD, standard_amount, 2, note="Gap funding for remaining costs")

    if hear_amount:
        packages.append(IncentivePackage(
            name="HEAR 50% + Standard",
            incentives=(
                _line_item(rules, HEAR, hear_amount, 1, name="HEAR 50% (IRA Federal)",
                           note=f"Federal funding applied first - ${rules.hear_household_cap:,.0f} household cap applies"),
                standard_gap_item,
            ),
            note="Federal $ first, standard programs fill gaps",
        ))

    if measure_rule.homes_eligible:
        packages.append(IncentivePackage(
            name="HOMES + Standard",
            incentives=(_homes_placeholder(rules, priority=1), standard_gap_item),
            note="Federal $ first for comprehensive envelope work",
        ))

    if not hear_amount and not measure_rule.homes_eligible:
        packages.append(IncentivePackage(
            name="Standard Programs",
            incentives=(_line_item(rules, STANDARD, standard_amount, 1),),
            note="Standard rebate available",
        ))

    return packages


def _standard_packages(measure_rule, details, rules) -> List[IncentivePackage]:
    # HOMES and HEAR are not available above the moderate-income ceiling
    standard_amount = get_standard_amount(measure_rule, details)
    if not standard_amount:
        return []
    return [IncentivePackage(
        name="Standard Programs",
        incentives=(_line_item(rules, STANDARD, standard_amount, 1),),
        note="Market-rate incentives (HOMES not available above the moderate-income ceiling)",
    )]


TIER_PACKAGE_BUILDERS = {
    EligibilityTier.WEATHERIZATION: _weatherization_packages,
    EligibilityTier.CPF_LOW_INCOME: _cpf_packages,
    EligibilityTier.HEAR_MODERATE: _moderate_packages,
    EligibilityTier.STANDARD: _standard_packages,
}


# ======================= 4. PUBLIC ENTRY POINT =======================
def get_incentive_packages(measure_id: str,
                           tier: EligibilityTier,
                           details: Optional[MeasureRequest],
                           rules,
                           graph: Optional[StackingGraph] = None) -> List[IncentivePackage]:
    """
    Returns the ordered candidate packages for a measure, or [] when the measure
    has no configured rule. Any package that violates the stacking graph is dropped.
    """
    measure_rule = rules.measure_rule(measure_id)
    if measure_rule is None:
        resolver_logger.warning(f"No incentive rule configured for measure '{measure_id}'")
        return []

    details = details or MeasureRequest(measure_id=measure_id)
    graph = graph or StackingGraph.from_rules(rules)

    packages = []
    for package in TIER_PACKAGE_BUILDERS[tier](measure_rule, details, rules):
        pairs = graph.conflicting_pairs(package)
        if pairs:
            resolver_logger.warning(f"Dropping package '{package.name}' for {measure_id}: conflicting programs {pairs}")
            continue
        packages.append(package)
    return packages


def apply_program_opt_outs(packages, rules, opt_out_federal=False, opt_out_flex_pool=False) -> List[IncentivePackage]:
    """
    Strips opted-out programs from candidate packages. A package that lost a
    line item is renamed after what it still funds; packages left empty, or
    left with the same programs as an earlier candidate, are dropped.
    """
    excluded = set()
    if opt_out_federal:
        excluded.update(p.id for p in rules.programs.values() if p.category == "federal")
    if opt_out_flex_pool:
        excluded.add(rules.pool_program_id("site"))
    if not excluded:
        return list(packages)

    kept = []
    seen = set()
    for package in packages:
        stripped = package.without(excluded)
        if not stripped.incentives or stripped.program_ids() in seen:
            continue
        if len(stripped.incentives) < len(package.incentives):
            removed = sorted({i.program_name for i in package.incentives if i.program_id in excluded})
            stripped = replace(
                stripped,
                name=" + ".join(item.program_name for item in stripped.incentives),
                note=f"{package.name} without {', '.join(removed)} (opted out)",
            )
        seen.add(stripped.program_ids())
        kept.append(stripped)
    return kept
