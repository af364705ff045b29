import re
from datetime import date
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_core import PydanticCustomError

from db.models import METRIC_FIELDS

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


class ComparisonQuery(BaseModel):
    """Validated parameters of the comparison endpoint."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    start_date: date = Field(alias="startDate")
    end_date: date = Field(alias="endDate")
    country: list[Annotated[str, Field(min_length=1)]] = Field(min_length=1)
    query_type: str = Field(min_length=1)
    page: int = 1
    limit: int = 10

    @field_validator("country", mode="before")
    @classmethod
    def _single_country_to_list(cls, value):
        if isinstance(value, str):
            return [value]
        return value

    @field_validator("query_type")
    @classmethod
    def _known_metric(cls, value: str) -> str:
        if value not in METRIC_FIELDS:
            raise ValueError(f"Unknown query_type '{value}'")
        return value

    @field_validator("page", "limit", mode="before")
    @classmethod
    def _default_when_unparseable(cls, value, info):
        # Unparseable paging input falls back to the default, it is not an error
        default = cls.model_fields[info.field_name].default
        match = _LEADING_INT.match(str(value)) if value is not None else None
        if not match:
            return default
        parsed = int(match.group(1))
        return parsed if parsed > 0 else default

    @model_validator(mode="after")
    def _start_before_end(self):
        if self.start_date > self.end_date:
            raise PydanticCustomError(
                "date_range",
                "startDate must be on or before endDate",
                {"fields": ["startDate", "endDate"]},
            )
        return self
