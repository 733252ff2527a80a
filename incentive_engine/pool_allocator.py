"""
Shared-Pool Allocator

Post-selection pass across ALL measures of one assessment. Two capped pools are
shared between measures:

  1. Household repair-assistance pool (CERTA) - fixed household cap. When the
     chosen packages ask for more than the cap, the cap is split evenly across
     the consuming measures and the remainder goes to the last one.
  2. Site flexible-fund pool (HOMES flex) - fixed site cap, handed out greedily
     in the configured priority order to fill each measure's remaining gap.
     HOMES never funds a measure that already carries a program it cannot
     stack with (HEAR). Not available to the Standard tier.

The allocator never mutates its input: it returns new Recommendation objects
and fresh SharedPool records, so re-running it on its own output is a no-op.

Outcomes depend on the priority order - a different order can produce a
different (still cap-respecting) split. Greedy-by-priority is the policy; it
does not try to maximise total household benefit.
"""

import logging
import math
from dataclasses import dataclass, replace
from typing import Optional, Tuple

from incentive_engine.eligibility import homes_income_band
from incentive_engine.measure_resolver import HEAR
from incentive_engine.models import (
    EligibilityTier,
    FullCoverage,
    Recommendation,
    SharedPool,
    amount_value,
)
from incentive_engine.net_cost import calculate_net_cost
from incentive_engine.stacking import StackingGraph

pool_logger = logging.getLogger('pool_allocator')

HOUSEHOLD_POOL = "household"
SITE_POOL = "site"


@dataclass(frozen=True)
class PoolAllocationResult:
    recommendations: Tuple[Recommendation, ...]
    household_pool: SharedPool
    site_pool: SharedPool
    hear_total: float = 0.0
    hear_cap_exceeded: bool = False


# ======================= HELPERS =======================
def _replace_items(recommendation, new_items):
    package = replace(recommendation.best_package, incentives=tuple(new_items))
    return replace(recommendation, best_package=package)


def _strip_program(recommendation, program_id):
    if recommendation.best_package is None:
        return recommendation
    if not recommendation.best_package.items_for(program_id):
        return recommendation
    return replace(recommendation, best_package=recommendation.best_package.without([program_id]))


def allocation_rank(recommendation, priority_order) -> int:
    """
    Position in the priority list, matched on measure id first and then category.
    Unlisted measures sort last.
    """
    if recommendation.measure_id in priority_order:
        return priority_order.index(recommendation.measure_id)
    if recommendation.category in priority_order:
        return priority_order.index(recommendation.category)
    return len(priority_order)


def sort_by_allocation_priority(recommendations, priority_order):
    """Returns (original index, recommendation) pairs in allocation order. Stable among ties."""
    priority_order = list(priority_order)
    indexed = list(enumerate(recommendations))
    return sorted(indexed, key=lambda pair: (allocation_rank(pair[1], priority_order), pair[0]))


# ======================= 1. HOUSEHOLD CAP (CERTA) =======================
def enforce_household_cap(recommendations, rules):
    """
    Caps the household repair-assistance pool across every chosen package.
    Returns (new recommendations, SharedPool).
    """
    program_id = rules.pool_program_id(HOUSEHOLD_POOL)
    cap = rules.certa_household_cap
    recs = list(recommendations)

    # First pass: collect usage in allocation (input) order
    usage = []
    for rec_idx, rec in enumerate(recs):
        if rec.best_package is None:
            continue
        for item_idx, item in enumerate(rec.best_package.incentives):
            if item.program_id == program_id and not isinstance(item.amount, FullCoverage):
                usage.append((rec_idx, item_idx, item.amount.value))

    total = sum(amount for _, _, amount in usage)
    if total > cap:
        n = len(usage)
        per_measure = math.floor(cap / n)
        pool_logger.warning(f"CERTA total (${total:,.0f}) exceeds household cap (${cap:,.0f}). "
                            f"Splitting across {n} measures.")
        for i, (rec_idx, item_idx, old_amount) in enumerate(usage):
            new_amount = cap - per_measure * (n - 1) if i == n - 1 else per_measure
            rec = recs[rec_idx]
            items = list(rec.best_package.incentives)
            items[item_idx] = items[item_idx].with_amount(
                new_amount,
                note=f"${new_amount:,.0f} of ${cap:,.0f} household cap (shared across {n} measures)",
            )
            recs[rec_idx] = _replace_items(rec, items)
            usage[i] = (rec_idx, item_idx, new_amount)
            pool_logger.info(f"  Adjusted CERTA for {rec.measure_id}: ${old_amount:,.0f} -> ${new_amount:,.0f}")

    pool = SharedPool(
        name="Household repair assistance (CERTA)",
        program_id=program_id,
        cap=cap,
        allocations=tuple((recs[rec_idx].measure_id, amount) for rec_idx, _, amount in usage),
    )
    return recs, pool


# ======================= 2. SITE CAP (HOMES FLEX) =======================
def allocate_site_pool(recommendations, tier, rules, graph: Optional[StackingGraph] = None, enabled=True):
    """
    Dynamically distributes the site flexible-fund cap across measures in priority
    order. Returns (new recommendations, SharedPool).
    """
    program_id = rules.pool_program_id(SITE_POOL)
    cap = rules.homes_flex_site_cap
    graph = graph or StackingGraph.from_rules(rules)
    recs = list(recommendations)
    pool_name = "Site flexible fund (HOMES)"

    if tier == EligibilityTier.STANDARD or not enabled:
        reason = "not available to this income tier" if enabled else "household opted out"
        pool_logger.info(f"HOMES flex pool skipped: {reason}")
        recs = [_strip_program(rec, program_id) for rec in recs]
        return recs, SharedPool(name=pool_name, program_id=program_id, cap=cap)

    coverage_percent = rules.homes_coverage_percent(homes_income_band(tier))
    exclusive = graph.exclusive_with(program_id)
    remaining = cap
    allocations = []

    pool_logger.info(f"Allocating HOMES funding across measures (max ${cap:,.0f} site cap)...")
    for rec_idx, rec in sort_by_allocation_priority(recs, rules.homes_allocation_priority):
        package = rec.best_package
        if package is None or not package.incentives:
            continue

        # HOMES can't share a measure with HEAR
        blocking = package.program_ids() & exclusive
        if blocking:
            if package.items_for(program_id):
                pool_logger.info(f"  {rec.measure_id}: has {sorted(blocking)}, removing HOMES (can't stack)")
                recs[rec_idx] = _strip_program(rec, program_id)
            continue

        if not package.items_for(program_id):
            continue   # measure's package has no HOMES slot

        # a full-coverage line counts as the whole cost, leaving no gap
        others = [item for item in package.incentives if item.program_id != program_id]
        gap = max(0.0, rec.estimated_cost - sum(amount_value(item.amount, rec.estimated_cost) for item in others))

        max_for_measure = min(gap, rec.estimated_cost * coverage_percent / 100)
        homes_amount = min(max_for_measure, remaining)

        if homes_amount > 0:
            note = f"${homes_amount:,.0f} of ${cap:,.0f} site cap (fills gap after other incentives)"
            new_items = []
            placed = False
            for item in package.incentives:
                if item.program_id != program_id:
                    new_items.append(item)
                elif not placed:
                    new_items.append(item.with_amount(homes_amount, note=note))
                    placed = True
            recs[rec_idx] = _replace_items(rec, new_items)
            remaining -= homes_amount
            allocations.append((rec.measure_id, homes_amount))
            pool_logger.info(f"  {rec.measure_id}: allocated ${homes_amount:,.0f} HOMES (${remaining:,.0f} remaining)")
        else:
            recs[rec_idx] = _strip_program(rec, program_id)
            if remaining <= 0:
                pool_logger.info(f"  {rec.measure_id}: HOMES site cap exhausted")
            else:
                pool_logger.info(f"  {rec.measure_id}: no HOMES needed (fully covered by other incentives)")

    pool = SharedPool(name=pool_name, program_id=program_id, cap=cap, allocations=tuple(allocations))
    pool_logger.info(f"HOMES allocation complete. Used: ${pool.used:,.0f} / ${cap:,.0f}")
    return recs, pool


# ======================= 3. HEAR HOUSEHOLD CAP MONITOR =======================
def check_hear_household_cap(recommendations, rules, hear_program_id=HEAR):
    """HEAR is capped per household but not redistributed; report the total and whether it is over."""
    total = 0.0
    for rec in recommendations:
        if rec.best_package is None:
            continue
        for item in rec.best_package.items_for(hear_program_id):
            total += amount_value(item.amount, rec.estimated_cost)
    exceeded = total > rules.hear_household_cap
    if exceeded:
        pool_logger.warning(f"HEAR total (${total:,.0f}) exceeds household cap (${rules.hear_household_cap:,.0f})")
    return total, exceeded


# ======================= MASTER ALLOCATION PASS =======================
def apply_shared_pools(recommendations,
                       tier: EligibilityTier,
                       rules,
                       graph: Optional[StackingGraph] = None,
                       site_pool_enabled: bool = True) -> PoolAllocationResult:
    """
    Runs the household cap, then the site cap, then recomputes every measure's
    totals from its final line items.
    """
    graph = graph or StackingGraph.from_rules(rules)

    recs, household_pool = enforce_household_cap(recommendations, rules)
    recs, site_pool = allocate_site_pool(recs, tier, rules, graph=graph, enabled=site_pool_enabled)

    finalized = []
    for rec in recs:
        calc = calculate_net_cost(rec.estimated_cost, rec.best_package)
        finalized.append(replace(
            rec,
            total_incentives=calc.total_incentives,
            net_cost=calc.net_cost,
            coverage=calc.coverage,
        ))

    hear_total, hear_exceeded = check_hear_household_cap(finalized, rules)

    return PoolAllocationResult(
        recommendations=tuple(finalized),
        household_pool=household_pool,
        site_pool=site_pool,
        hear_total=hear_total,
        hear_cap_exceeded=hear_exceeded,
    )
