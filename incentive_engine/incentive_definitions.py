# Structured definitions for the Oregon residential retrofit incentive programs (2025)
#
# PROGRAM_RULES is a complete rules document in the shape the config loader expects.
# It is NOT loaded implicitly anywhere: callers pass it through
# config_loader.validate_program_rules() the same way they would a JSON file.

PROGRAM_RULES_VERSION = "2025.1"

INCENTIVE_PROGRAMS = [
    # ==========================================================================================
    # 1. FEDERAL PROGRAMS (IRA)
    # ==========================================================================================
    {
        "id": "hear",
        "name": "HEAR (IRA Federal)",
        "category": "federal",
        "income_qualified": True,
        "max_rebate": 14000,
        # HEAR and HOMES can never fund the same measure
        "cannot_stack_with": ["homes"],
        "can_stack_with": ["cpf", "energy_trust_standard", "certa"],
        "contact": "Oregon DOE: 1-800-221-8035",
    },
    {
        "id": "homes",
        "name": "HOMES (IRA Federal)",
        "category": "federal",
        "income_qualified": True,
        "max_rebate": 8000,
        "pool": "site",   # Flex funding shared across the whole site
        "cannot_stack_with": ["hear"],
        "can_stack_with": ["cpf", "energy_trust_standard", "certa"],
        "contact": "Oregon DOE",
    },

    # ==========================================================================================
    # 2. STATE PROGRAMS
    # ==========================================================================================
    {
        "id": "ohcs_weatherization",
        "name": "Oregon Weatherization (OHCS)",
        "category": "state",
        "income_qualified": True,
        # Weatherization is standalone
        "cannot_stack_with": ["hear", "homes", "cpf", "energy_trust_standard", "certa"],
        "contact": "1-800-766-6861",
    },
    {
        "id": "certa",
        "name": "CERTA (Enabling Repairs)",
        "category": "state",
        "pool": "household",   # Capped per household, split across measures
        "can_stack_with": ["hear", "homes", "cpf", "energy_trust_standard"],
        "contact": "Oregon DOE",
    },

    # ==========================================================================================
    # 3. UTILITY-FUNDED PROGRAMS (Energy Trust of Oregon)
    # ==========================================================================================
    {
        "id": "cpf",
        "name": "CPF - Energy Trust",
        "category": "utility",
        "income_qualified": True,
        "cannot_stack_with": ["energy_trust_standard"],
        "can_stack_with": ["hear", "homes", "certa"],
        "contact": "Community Partner",
    },
    {
        "id": "energy_trust_standard",
        "name": "Energy Trust Standard",
        "category": "utility",
        "cannot_stack_with": ["cpf"],
        "can_stack_with": ["hear", "homes", "certa"],
        "contact": "Energy Trust: 1-866-368-7878",
    },
]


# Per-measure incentive rules. Each program key uses exactly one resolution mode:
#   "<program>": number              -> flat amount
#   "<program>": "full"              -> full coverage of measure cost
#   "<program>": {housing_type: n}   -> tiered by housing type
#   "<program>_per_sqft": rate       -> rate x area
#   "<program>_per_window": rate     -> rate x window count, capped by "<program>_max"
MEASURE_INCENTIVES = {
    "health_safety_repairs": {
        "category": "health_safety", "base_cost": 1500,
        "cpf": "full", "hear": None, "standard": 0,
        "homes_eligible": True, "certa_eligible": True,
    },
    "heat_pump_ductless": {
        "category": "hvac", "base_cost": 8500,
        "cpf": {"single_family": 1800, "manufactured": 3500, "multifamily": 2000},
        "hear": 8000, "standard": 800,
        "homes_eligible": True, "certa_eligible": False,
        "cpf_requirements": ["HSPF2 >= 8.1", "Replaces electric resistance"],
    },
    "heat_pump_ducted": {
        "category": "hvac", "base_cost": 12000,
        "cpf": {"single_family": 4000, "extended_capacity": 6000},
        "hear": 8000, "standard": 1500,
        "homes_eligible": True, "certa_eligible": False,
        "cpf_requirements": ["HSPF2 >= 7.5", "Replaces electric furnace"],
    },
    "attic_insulation": {
        "category": "envelope", "base_cost": 3000,
        "cpf_per_sqft": 1.5, "hear": 1600, "standard_per_sqft": 0.10,
        "homes_eligible": True, "certa_eligible": True,
        "cpf_requirements": ["R-value improvement to R-38+"],
    },
    "wall_insulation": {
        "category": "envelope", "base_cost": 2500,
        "cpf_per_sqft": 1.0, "hear": 1600, "standard_per_sqft": 0.08,
        "homes_eligible": True, "certa_eligible": True,
    },
    "floor_insulation": {
        "category": "envelope", "base_cost": 2200,
        "cpf_per_sqft": 1.2, "hear": 1600, "standard_per_sqft": 0.10,
        "homes_eligible": True, "certa_eligible": True,
    },
    "air_sealing": {
        "category": "envelope", "base_cost": 1200,
        "cpf": 800, "hear": "included_in_insulation", "standard": 400,
        "homes_eligible": True, "certa_eligible": False,
    },
    "heat_pump_water_heater": {
        "category": "water_heating", "base_cost": 2500,
        "cpf": 240, "hear": 1750, "standard": 240,
        "homes_eligible": False, "certa_eligible": False,
        "cpf_requirements": ["UEF >= 3.0", "30A circuit"],
    },
    "duct_sealing": {
        "category": "hvac", "base_cost": 800,
        "cpf": 600, "hear": None, "standard": 400,
        "homes_eligible": True, "certa_eligible": False,
    },
    "smart_thermostat": {
        "category": "hvac", "base_cost": 250,
        "cpf": 250, "hear": None, "standard": 250,
        "homes_eligible": False, "certa_eligible": False,
    },
    "window_replacement": {
        "category": "envelope", "base_cost": 8000,
        "cpf_per_sqft": 1.5, "hear": None,
        "standard_per_window": 50, "standard_max": 500,
        "homes_eligible": True, "certa_eligible": False,
    },
    "electric_panel_upgrade": {
        "category": "hvac", "base_cost": 3000,
        "cpf": "full", "hear": 4000, "standard": 0,
        "homes_eligible": False, "certa_eligible": True,
    },
}


PROGRAM_RULES = {
    "version": PROGRAM_RULES_VERSION,
    "income_thresholds": {
        "weatherization_smi_max": 60,
        "weatherization_fpl_max": 200,
        "cpf_tier1_ami_max": 80,
        "hear_moderate_ami_min": 80,
        "hear_moderate_ami_max": 150,
        "homes_ami_max": 150,
    },
    "program_caps": {
        "hear_household_cap": 14000,
        "homes_modeled_min": 2000,
        "homes_modeled_max": 8000,
        "homes_flex_site_cap": 10000,
        "certa_household_cap": 2000,
    },
    "homes_coverage_rules": {
        "low_income": {"ami_max": 80, "coverage_percent": 100},
        "moderate_income": {"ami_min": 81, "ami_max": 150, "coverage_percent": 50},
        "not_eligible": {"ami_min": 151, "coverage_percent": 0},
    },
    "programs": INCENTIVE_PROGRAMS,
    "measure_incentives": MEASURE_INCENTIVES,
    "certa_eligible_measures": [
        "attic_insulation",
        "wall_insulation",
        "floor_insulation",
        "air_sealing",
        "duct_sealing",
    ],
    # HOMES flex allocation order: measure ids first, then categories as a catch-all
    "homes_allocation_priority": [
        "health_safety_repairs",
        "attic_insulation",
        "wall_insulation",
        "floor_insulation",
        "air_sealing",
        "window_replacement",
        "duct_sealing",
    ],
}


# --- Static Tier Descriptions ---
TIER_DESCRIPTIONS = {
    "weatherization": "No-Cost Weatherization Eligible",
    "cpf_low": "Income-Qualified (CPF + HEAR 100%)",
    "hear_moderate": "Moderate-Income (Standard + HEAR 50%)",
    "standard": "Standard Incentives",
}
