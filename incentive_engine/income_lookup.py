import logging
from typing import Optional

import pandas as pd

from incentive_engine.models import IncomeProfile, round_half_up

income_logger = logging.getLogger('income_lookup')

THRESHOLD_COLUMNS = ["county", "household_size", "ami_100", "smi_100", "fpl_100"]


class IncomeThresholdTable:
    """
    County x household-size income thresholds (AMI/SMI/FPL at 100%, plus any
    published 60/80/150/200% columns). A missing row is reported as None, never
    defaulted; the caller decides whether to abort or ask for a correction.
    """

    def __init__(self, records):
        df = pd.DataFrame(list(records))
        missing = [col for col in THRESHOLD_COLUMNS if col not in df.columns]
        if missing:
            raise ValueError(f"Income threshold records are missing columns: {missing}")
        df["county"] = df["county"].astype(str).map(_normalise_county)
        df["household_size"] = df["household_size"].astype(int)
        # a later record for the same county and household size replaces the earlier one
        df = df.drop_duplicates(subset=["county", "household_size"], keep="last")
        self.df = df.set_index(["county", "household_size"]).sort_index()

    @classmethod
    def from_csv(cls, path: str) -> "IncomeThresholdTable":
        return cls(pd.read_csv(path).to_dict("records"))

    @classmethod
    def from_json(cls, path: str) -> "IncomeThresholdTable":
        return cls(pd.read_json(path).to_dict("records"))

    def counties(self) -> list:
        return sorted(self.df.index.get_level_values("county").unique())

    def get_thresholds(self, county: str, household_size: int) -> Optional[dict]:
        key = (_normalise_county(county), int(household_size))
        if key not in self.df.index:
            income_logger.warning(f"No threshold data found for {county}, household size {household_size}")
            return None
        return self.df.loc[key].to_dict()

    def calculate_income_profile(self, annual_income: float, county: str, household_size: int) -> Optional[IncomeProfile]:
        """
        Percentages of AMI/SMI/FPL computed from the exact 100% thresholds.
        Returns None when the county/household size is not in the table.
        """
        thresholds = self.get_thresholds(county, household_size)
        if thresholds is None:
            return None

        return IncomeProfile(
            ami_percent=_percent_of(annual_income, thresholds["ami_100"]),
            smi_percent=_percent_of(annual_income, thresholds["smi_100"]),
            fpl_percent=_percent_of(annual_income, thresholds["fpl_100"]),
            household_size=int(household_size),
            county=_normalise_county(county),
        )


def _normalise_county(county: str) -> str:
    # "Multnomah County" and "Multnomah" are the same key
    return county.strip().replace(" County", "")


def _percent_of(annual_income, threshold) -> int:
    # multiply before dividing so exact halves stay exact
    return round_half_up(float(annual_income) * 100 / float(threshold))
