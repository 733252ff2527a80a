from incentive_engine.incentive_definitions import TIER_DESCRIPTIONS
from incentive_engine.models import EligibilityTier


# --- Eligibility Tier Classifier ---
def get_eligibility_tier(ami_percent: float,
                         smi_percent: float,
                         fpl_percent: float,
                         income_thresholds: dict) -> EligibilityTier:
    """
    Maps a household's income ratios to exactly one eligibility tier.
    First match wins, evaluated in a fixed order. Thresholds are inclusive on the
    favourable (lower-cost) side. Out-of-range percentages are not rejected here.
    """
    smi_max = income_thresholds["weatherization_smi_max"]
    fpl_max = income_thresholds["weatherization_fpl_max"]

    # Priority 1: Weatherization (no-cost comprehensive) - SMI, not AMI, or FPL
    if smi_percent <= smi_max or fpl_percent <= fpl_max:
        return EligibilityTier.WEATHERIZATION

    # Priority 2: CPF Income-Qualified
    if smi_max < ami_percent <= income_thresholds["cpf_tier1_ami_max"]:
        return EligibilityTier.CPF_LOW_INCOME

    # Priority 3: HEAR Moderate Income
    if income_thresholds["hear_moderate_ami_min"] < ami_percent <= income_thresholds["hear_moderate_ami_max"]:
        return EligibilityTier.HEAR_MODERATE

    # Priority 4: Standard Market Rate
    return EligibilityTier.STANDARD


def classify_income_profile(profile, income_thresholds: dict) -> EligibilityTier:
    return get_eligibility_tier(profile.ami_percent, profile.smi_percent, profile.fpl_percent, income_thresholds)


def tier_description(tier) -> str:
    """Human-readable label for a tier."""
    key = tier.value if isinstance(tier, EligibilityTier) else str(tier)
    return TIER_DESCRIPTIONS.get(key, key)


def homes_income_band(tier: EligibilityTier) -> str:
    """Which homes_coverage_rules band a tier draws its HOMES coverage percent from."""
    if tier == EligibilityTier.HEAR_MODERATE:
        return "moderate_income"
    if tier == EligibilityTier.STANDARD:
        return "not_eligible"
    return "low_income"
