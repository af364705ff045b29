import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import ValidationError
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

# Add backend directory to path to allow absolute imports
sys.path.insert(0, str(Path(__file__).resolve().parent))

from core.config import API_PREFIX, CORS_ORIGINS, HOST, LOG_LEVEL, PORT, RATE_LIMIT, limiter
from core.cache import create_redis_client
from core.database import connect, create_mongo_client
from core.errors import InternalError, QueryValidationError, format_validation_errors
from core.logging import setup_logging
from models import ComparisonQuery
from services.api_keys import require_api_key
from services.covid import CovidStatsService, get_covid_service

setup_logging(LOG_LEVEL)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the MongoDB and Redis clients once, close them on shutdown."""
    mongo_client = create_mongo_client()
    redis_client = create_redis_client()
    try:
        app.state.db = await connect(mongo_client)
        await redis_client.ping()
        logger.info("Redis client connected")
    except Exception:
        logger.exception("Could not reach the dataset or cache store")
        await redis_client.aclose()
        await mongo_client.close()
        raise

    app.state.mongo_client = mongo_client
    app.state.redis = redis_client
    yield

    logger.info("Shutting down")
    await redis_client.aclose()
    await mongo_client.close()


app = FastAPI(title="COVID-19 Statistics API", lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_methods=["GET"],
    allow_headers=["Origin", "X-Requested-With", "Content-Type", "Accept", "X-API-Key"],
)


@app.exception_handler(QueryValidationError)
async def query_validation_error_handler(request: Request, exc: QueryValidationError):
    return JSONResponse(status_code=400, content={"errors": exc.errors})


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"errors": format_validation_errors(exc.errors())})


@app.exception_handler(InternalError)
async def internal_error_handler(request: Request, exc: InternalError):
    return JSONResponse(status_code=500, content={"error": exc.message})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


def comparison_query(
    startDate: Optional[str] = Query(default=None),
    endDate: Optional[str] = Query(default=None),
    country: Optional[list[str]] = Query(default=None),
    query_type: Optional[str] = Query(default=None),
    page: Optional[str] = Query(default=None),
    limit: Optional[str] = Query(default=None),
) -> ComparisonQuery:
    raw = {
        "startDate": startDate,
        "endDate": endDate,
        "country": country,
        "query_type": query_type,
        "page": page,
        "limit": limit,
    }
    try:
        # Absent parameters are left out so they report as missing
        return ComparisonQuery.model_validate({k: v for k, v in raw.items() if v is not None})
    except ValidationError as e:
        raise QueryValidationError(format_validation_errors(e.errors())) from e


router = APIRouter(prefix=API_PREFIX, dependencies=[Depends(require_api_key)])


@router.get("/comparison")
@limiter.limit(RATE_LIMIT)
async def get_comparison_data(
    request: Request,
    params: ComparisonQuery = Depends(comparison_query),
    service: CovidStatsService = Depends(get_covid_service),
):
    try:
        return await service.comparison(params)
    except Exception as e:
        logger.exception("Error fetching comparison data")
        raise InternalError() from e


@router.get("/region-aggregations")
@limiter.limit(RATE_LIMIT)
async def get_regions_aggregated_data(
    request: Request,
    service: CovidStatsService = Depends(get_covid_service),
):
    try:
        return await service.region_aggregations()
    except Exception as e:
        logger.exception("Error fetching continents data")
        raise InternalError() from e


@router.get("/vaccination-coverage")
@limiter.limit(RATE_LIMIT)
async def get_average_vaccinated_data(
    request: Request,
    service: CovidStatsService = Depends(get_covid_service),
):
    try:
        return await service.vaccination_coverage()
    except Exception as e:
        logger.exception("Error fetching average vaccination data")
        raise InternalError() from e


@app.get("/")
def read_root():
    return {"status": "Backend is running"}


app.include_router(router)


if __name__ == "__main__":
    # uvicorn turns SIGINT/SIGTERM into a lifespan shutdown
    uvicorn.run(app, host=HOST, port=PORT)
