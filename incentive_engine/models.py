import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, Tuple

# --- Eligibility Tiers ---
class EligibilityTier(str, Enum):
    WEATHERIZATION = "weatherization"    # <=60% SMI or <=200% FPL - no cost
    CPF_LOW_INCOME = "cpf_low"           # 60-80% AMI - CPF + HEAR 100%
    HEAR_MODERATE = "hear_moderate"      # 81-150% AMI - Standard + HEAR 50%
    STANDARD = "standard"                # >150% AMI - Standard only


MEASURE_CATEGORIES = ("health_safety", "envelope", "hvac", "water_heating")
PROGRAM_CATEGORIES = ("federal", "state", "utility", "local")


@dataclass(frozen=True)
class IncomeProfile:
    ami_percent: float
    smi_percent: float
    fpl_percent: float
    household_size: int = 0
    county: str = ""


# --- Amount variant: a dollar figure OR full coverage of the measure cost ---
@dataclass(frozen=True)
class Numeric:
    value: float

    def __post_init__(self):
        if self.value < 0:
            raise ValueError(f"Incentive amount cannot be negative: {self.value}")


@dataclass(frozen=True)
class FullCoverage:
    pass


FULL_COVERAGE = FullCoverage()


def amount_value(amount, cost: float) -> float:
    """Dollar value of an amount against a measure cost (full coverage = cost)."""
    if isinstance(amount, FullCoverage):
        return float(cost)
    return float(amount.value)


def round_half_up(value: float) -> int:
    """Whole-number rounding with halves going up (60.5 -> 61), not to even."""
    return int(math.floor(value + 0.5))


@dataclass(frozen=True)
class Program:
    id: str
    name: str
    category: str
    cannot_stack_with: frozenset = frozenset()
    can_stack_with: frozenset = frozenset()
    income_qualified: bool = False
    max_rebate: Optional[float] = None
    pool: Optional[str] = None   # "household" | "site" | None
    contact: str = ""


@dataclass(frozen=True)
class AmountRule:
    """
    How one program's amount is resolved for one measure.
    mode is one of: flat, per_sqft, per_window, housing_type, full.
    """
    mode: str
    value: float = 0.0
    cap: Optional[float] = None
    by_housing_type: Tuple[Tuple[str, float], ...] = ()


@dataclass(frozen=True)
class MeasureRule:
    measure_id: str
    category: str = "envelope"
    base_cost: float = 0.0
    homes_eligible: bool = False
    certa_eligible: bool = False
    amounts: Tuple[Tuple[str, AmountRule], ...] = ()   # (program key, rule)
    cpf_requirements: Tuple[str, ...] = ()

    def amount_rule(self, program_key: str) -> Optional[AmountRule]:
        for key, rule in self.amounts:
            if key == program_key:
                return rule
        return None


@dataclass(frozen=True)
class IncentiveLineItem:
    program_id: str
    program_name: str
    amount: object   # Numeric | FullCoverage
    priority: int = 1
    requirements: Tuple[str, ...] = ()
    note: str = ""
    contact: str = ""

    @property
    def is_full_coverage(self) -> bool:
        return isinstance(self.amount, FullCoverage)

    def with_amount(self, dollars: float, note: str = None) -> "IncentiveLineItem":
        return replace(self, amount=Numeric(dollars), note=self.note if note is None else note)


@dataclass(frozen=True)
class IncentivePackage:
    name: str
    incentives: Tuple[IncentiveLineItem, ...] = ()
    note: str = ""

    def program_ids(self) -> frozenset:
        return frozenset(item.program_id for item in self.incentives)

    def items_for(self, program_id: str) -> Tuple[IncentiveLineItem, ...]:
        return tuple(item for item in self.incentives if item.program_id == program_id)

    def without(self, program_ids) -> "IncentivePackage":
        drop = set(program_ids)
        return replace(self, incentives=tuple(i for i in self.incentives if i.program_id not in drop))


@dataclass(frozen=True)
class MeasureRequest:
    """One recommended measure as supplied by the assessment."""
    measure_id: str
    estimated_cost: Optional[float] = None
    sqft: Optional[float] = None
    window_count: Optional[int] = None
    housing_type: Optional[str] = None
    cpf_eligible: bool = False
    description: str = ""


@dataclass(frozen=True)
class Recommendation:
    measure_id: str
    category: str
    estimated_cost: float
    packages: Tuple[IncentivePackage, ...] = ()
    best_package: Optional[IncentivePackage] = None
    total_incentives: float = 0.0
    net_cost: float = 0.0
    coverage: int = 0
    description: str = ""


@dataclass(frozen=True)
class SharedPool:
    name: str
    program_id: str
    cap: float
    allocations: Tuple[Tuple[str, float], ...] = ()   # (measure id, dollars)

    @property
    def used(self) -> float:
        return sum(amount for _, amount in self.allocations)

    @property
    def remaining(self) -> float:
        return max(0.0, self.cap - self.used)

    def utilization(self) -> dict:
        return {
            "used": self.used,
            "cap": self.cap,
            "remaining": self.remaining,
            "utilization_pct": round_half_up(100 * self.used / self.cap) if self.cap > 0 else 0,
        }


@dataclass(frozen=True)
class AssessmentInput:
    ami_percent: float
    smi_percent: float
    fpl_percent: float
    measures: Tuple[MeasureRequest, ...] = ()
    household_size: int = 0
    county: str = ""
    opt_out_federal: bool = False
    opt_out_flex_pool: bool = False

    @classmethod
    def from_income_profile(cls, profile: IncomeProfile, measures, **flags) -> "AssessmentInput":
        return cls(
            ami_percent=profile.ami_percent,
            smi_percent=profile.smi_percent,
            fpl_percent=profile.fpl_percent,
            household_size=profile.household_size,
            county=profile.county,
            measures=tuple(measures),
            **flags,
        )


@dataclass(frozen=True)
class AssessmentResult:
    tier: EligibilityTier
    recommendations: Tuple[Recommendation, ...]
    household_pool: SharedPool
    site_pool: SharedPool
    hear_total: float = 0.0
    hear_cap_exceeded: bool = False
    rules_version: str = ""
    notes: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def total_cost(self) -> float:
        return sum(r.estimated_cost for r in self.recommendations)

    @property
    def total_incentives(self) -> float:
        return sum(r.total_incentives for r in self.recommendations)

    @property
    def total_net_cost(self) -> float:
        return sum(r.net_cost for r in self.recommendations)
