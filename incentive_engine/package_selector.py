from dataclasses import replace

from incentive_engine.net_cost import calculate_net_cost


def get_best_package(packages, estimated_cost):
    """
    Picks the candidate with the greatest total incentive (full coverage counts as
    the measure cost). Ties go to a candidate that reaches $0 net cost, then to the
    earlier candidate.

    This is a per-measure choice. It does not anticipate shared-pool contention;
    the pool allocator rebalances afterwards.
    """
    if not packages:
        return None

    best_package = None
    best_key = None
    for package in packages:
        calc = calculate_net_cost(estimated_cost, package)
        key = (calc.total_incentives, calc.net_cost == 0)
        if best_key is None or key > best_key:
            best_key = key
            best_package = package
    return best_package


def select_package(recommendation):
    """Returns a copy of the recommendation with its best package chosen and totals filled in."""
    best = get_best_package(recommendation.packages, recommendation.estimated_cost)
    calc = calculate_net_cost(recommendation.estimated_cost, best)
    return replace(
        recommendation,
        best_package=best,
        total_incentives=calc.total_incentives,
        net_cost=calc.net_cost,
        coverage=calc.coverage,
    )
