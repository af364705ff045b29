import math
from datetime import datetime, time, timezone
from decimal import ROUND_HALF_EVEN, Decimal

from fastapi import Depends
from loguru import logger
from pymongo.asynchronous.database import AsyncDatabase

from core.cache import ReadThroughCache, build_cache_key, get_cache
from core.config import COVID_COLLECTION
from core.database import get_db
from db.models import METRIC_FIELDS, to_number
from models import ComparisonQuery

REGION_AGGREGATES_KEY = "regions-aggregates-essentials"
VACCINATION_COVERAGE_KEY = "vaccination-coverage"


def as_double(field: str) -> dict:
    """Coerce a possibly string-typed field to double, null or garbage -> 0."""
    return {"$convert": {"input": f"${field}", "to": "double", "onError": 0, "onNull": 0}}


def round_half_even(value, places: int = 2) -> float:
    """Round on the decimal representation, ties to the even digit.

    Non-finite input rounds to 0 so it can never reach the JSON cache.
    """
    number = to_number(value)
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(number)).quantize(quantum, rounding=ROUND_HALF_EVEN))


def finite_row(row: dict) -> dict:
    """Replace non-finite float values (inf, nan) with 0."""
    return {
        k: (v if not isinstance(v, float) or math.isfinite(v) else 0)
        for k, v in row.items()
    }


def comparison_cache_key(query: ComparisonQuery) -> str:
    return build_cache_key(
        "comparison",
        query.start_date.isoformat(),
        query.end_date.isoformat(),
        query.country,
        query.query_type,
        "page", query.page,
        "limit", query.limit,
    )


def comparison_pipeline(query: ComparisonQuery) -> list[dict]:
    # Only the limit is applied; page takes part in the cache key but never skips rows
    start = datetime.combine(query.start_date, time.min, tzinfo=timezone.utc)
    end = datetime.combine(query.end_date, time.min, tzinfo=timezone.utc)
    return [
        {"$match": {"location": {"$in": list(query.country)}, "date": {"$gte": start, "$lte": end}}},
        {"$sort": {"date": 1}},
        {"$limit": query.limit},
        {"$project": {"_id": 0, "date": 1, "location": 1, query.query_type: 1}},
    ]


def group_by_date(rows: list[dict], metric: str) -> list[dict]:
    """Fold (date, location, value) rows into one object per date."""
    read = METRIC_FIELDS[metric]
    by_date: dict[str, dict] = {}
    for row in rows:
        row_date = row["date"]
        date_str = row_date.strftime("%Y-%m-%d") if isinstance(row_date, datetime) else str(row_date)[:10]
        entry = by_date.setdefault(date_str, {"date": date_str})
        entry[str(row["location"]).lower()] = read(row)
    return list(by_date.values())


REGION_AGGREGATES_PIPELINE = [
    {
        "$group": {
            "_id": "$continent",
            "total_cases": {"$sum": as_double("total_cases")},
            "total_deaths": {"$sum": as_double("total_deaths")},
            "female_smokers": {"$avg": as_double("female_smokers")},
            "male_smokers": {"$avg": as_double("male_smokers")},
            "aged_65_older": {"$avg": as_double("aged_65_older")},
            "aged_70_older": {"$avg": as_double("aged_70_older")},
        }
    },
    {"$sort": {"_id": 1}},
]

VACCINATION_COVERAGE_PIPELINE = [
    {
        "$group": {
            "_id": "$iso_code",
            "average_vaccinated": {"$avg": as_double("people_vaccinated_per_hundred")},
        }
    },
    {"$sort": {"_id": 1}},
    {"$project": {"_id": 0, "id": "$_id", "average_vaccinated": 1}},
]


class CovidStatsService:
    """Runs the fixed aggregation queries behind the read-through cache."""

    def __init__(self, collection, cache: ReadThroughCache):
        self.collection = collection
        self.cache = cache

    async def _aggregate(self, pipeline: list[dict], **kwargs) -> list[dict]:
        cursor = await self.collection.aggregate(pipeline, **kwargs)
        return await cursor.to_list(None)

    async def comparison(self, query: ComparisonQuery) -> list[dict]:
        async def compute():
            logger.info("Comparing {} for {} ({} to {})", query.query_type, ",".join(query.country),
                        query.start_date, query.end_date)
            rows = await self._aggregate(comparison_pipeline(query))
            return group_by_date(rows, query.query_type)

        return await self.cache.get_or_compute(comparison_cache_key(query), compute)

    async def region_aggregations(self) -> list[dict]:
        async def compute():
            logger.info("Aggregating region statistics")
            rows = await self._aggregate(REGION_AGGREGATES_PIPELINE, allowDiskUse=True)
            return [finite_row(row) for row in rows]

        return await self.cache.get_or_compute(REGION_AGGREGATES_KEY, compute)

    async def vaccination_coverage(self) -> list[dict]:
        async def compute():
            logger.info("Aggregating vaccination coverage")
            rows = await self._aggregate(VACCINATION_COVERAGE_PIPELINE)
            return [
                {"id": row.get("id"), "value": round_half_even(row.get("average_vaccinated"))}
                for row in rows
            ]

        return await self.cache.get_or_compute(VACCINATION_COVERAGE_KEY, compute)


def get_covid_service(
    db: AsyncDatabase = Depends(get_db),
    cache: ReadThroughCache = Depends(get_cache),
) -> CovidStatsService:
    return CovidStatsService(db[COVID_COLLECTION], cache)
