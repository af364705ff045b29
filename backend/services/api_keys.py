from typing import Optional

from fastapi import Depends, Header, HTTPException
from loguru import logger
from pymongo.asynchronous.database import AsyncDatabase

from core import config
from core.database import get_db
from core.errors import InternalError
from db.models import ApiKey


async def require_api_key(
    x_api_key: Optional[str] = Header(default=None),
    db: AsyncDatabase = Depends(get_db),
) -> Optional[ApiKey]:
    """Reject requests without a valid, unexpired ``x-api-key`` header.

    A no-op unless API_KEY_REQUIRED is set.
    """
    if not config.API_KEY_REQUIRED:
        return None

    if not x_api_key:
        raise HTTPException(status_code=401, detail="API key is required")

    try:
        doc = await db[config.API_KEY_COLLECTION].find_one({"key": x_api_key})
        api_key = ApiKey.model_validate(doc) if doc else None
    except Exception as e:
        logger.exception("API key validation error")
        raise InternalError() from e

    if api_key is None:
        raise HTTPException(status_code=403, detail="Invalid API key")

    if api_key.is_expired():
        raise HTTPException(status_code=403, detail="API key has expired")

    return api_key
