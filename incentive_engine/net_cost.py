from dataclasses import dataclass

from incentive_engine.models import FullCoverage, round_half_up


@dataclass(frozen=True)
class NetCostResult:
    total_incentives: float
    net_cost: float
    coverage: int
    full_coverage: bool = False


def calculate_net_cost(estimated_cost: float, package) -> NetCostResult:
    """
    Totals a package against the measure cost.
    A full-coverage line item short-circuits to total = cost, 100% coverage, $0 net.
    """
    estimated_cost = float(estimated_cost or 0)
    if package is None or not package.incentives:
        return NetCostResult(total_incentives=0.0, net_cost=estimated_cost, coverage=0)

    total = 0.0
    for item in package.incentives:
        if isinstance(item.amount, FullCoverage):
            return NetCostResult(total_incentives=estimated_cost, net_cost=0.0, coverage=100, full_coverage=True)
        total += item.amount.value

    net_cost = max(0.0, estimated_cost - total)
    coverage = round_half_up(total * 100 / estimated_cost) if estimated_cost > 0 else 0
    return NetCostResult(total_incentives=total, net_cost=net_cost, coverage=coverage)
