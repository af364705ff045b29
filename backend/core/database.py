from fastapi import Request
from loguru import logger
from pymongo import AsyncMongoClient
from pymongo.asynchronous.database import AsyncDatabase

from core.config import MONGODB_DATABASE, MONGODB_URI


def create_mongo_client(uri: str = MONGODB_URI) -> AsyncMongoClient:
    return AsyncMongoClient(uri, tz_aware=True)


async def connect(client: AsyncMongoClient) -> AsyncDatabase:
    """Check the server is reachable and return the dataset database."""
    info = await client.server_info()
    logger.info("Connected to MongoDB {}", info.get("version"))
    return client.get_default_database(default=MONGODB_DATABASE)


def get_db(request: Request) -> AsyncDatabase:
    return request.app.state.db
