import math
from datetime import datetime, timezone
from typing import Callable, Optional

from pydantic import BaseModel, ConfigDict, Field

# Numeric columns of the covid-csv-data collection. Values may be stored as
# strings, so they are always read through METRIC_FIELDS.
NUMERIC_FIELDS = (
    "total_cases",
    "new_cases",
    "total_deaths",
    "new_deaths",
    "total_cases_per_million",
    "new_cases_per_million",
    "total_deaths_per_million",
    "new_deaths_per_million",
    "stringency_index",
    "population_density",
    "median_age",
    "aged_65_older",
    "aged_70_older",
    "gdp_per_capita",
    "extreme_poverty",
    "cardiovasc_death_rate",
    "diabetes_prevalence",
    "female_smokers",
    "male_smokers",
    "hospital_beds_per_thousand",
    "life_expectancy",
    "human_development_index",
    "population",
    "excess_mortality_cumulative_absolute",
    "excess_mortality_cumulative",
    "excess_mortality",
    "excess_mortality_cumulative_per_million",
    "people_vaccinated_per_hundred",
)


def to_number(value) -> float | int:
    """Missing, empty, non-finite or unparseable values count as 0."""
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    return number if math.isfinite(number) else 0


def _accessor(field: str) -> Callable[[dict], float | int]:
    def read(row: dict):
        return to_number(row.get(field))
    return read


METRIC_FIELDS: dict[str, Callable[[dict], float | int]] = {
    field: _accessor(field) for field in NUMERIC_FIELDS
}


class ApiKey(BaseModel):
    """Document in the apikeys collection."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    key: str
    client_name: str = Field(alias="clientName")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    expires_at: datetime = Field(alias="expiresAt")

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at < now
