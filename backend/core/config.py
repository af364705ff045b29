import os
from dotenv import load_dotenv
from slowapi import Limiter
from pathlib import Path
from slowapi.util import get_remote_address

# Load .env
dotenv_path = Path(__file__).resolve().parent.parent / '.env'
load_dotenv(dotenv_path=dotenv_path)


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Server
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))
API_PREFIX = os.getenv("API_PREFIX", "/api")

# MongoDB
MONGODB_URI = os.getenv("MONGODB_URI", "mongodb://localhost:27017/covid")
MONGODB_DATABASE = os.getenv("MONGODB_DATABASE", "covid")  # used when the URI names no database
COVID_COLLECTION = os.getenv("COVID_COLLECTION", "covid-csv-data")
API_KEY_COLLECTION = os.getenv("API_KEY_COLLECTION", "apikeys")

# Redis
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379")
CACHE_TTL_SECONDS = int(os.getenv("CACHE_TTL_SECONDS", str(3600 * 24 * 7)))

# API keys
API_KEY_REQUIRED = _env_flag("API_KEY_REQUIRED")

# Rate Limiter
RATE_LIMIT = os.getenv("RATE_LIMIT", "100/15minutes")
limiter = Limiter(key_func=get_remote_address, enabled=_env_flag("RATE_LIMIT_ENABLED"))

# CORS
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "*").split(",")
    if origin.strip()
]
