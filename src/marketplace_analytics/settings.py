import os
from dotenv import load_dotenv

load_dotenv()

POSTGRES_DB = os.getenv("POSTGRES_DB", "analytics")
POSTGRES_USER = os.getenv("POSTGRES_USER", "analytics")
POSTGRES_PASSWORD = os.getenv("POSTGRES_PASSWORD", "analyticspass")
POSTGRES_HOST = os.getenv("POSTGRES_HOST", "postgres")
POSTGRES_PORT = os.getenv("POSTGRES_PORT", "5432")

REDIS_HOST = os.getenv("REDIS_HOST", "redis")
REDIS_PORT = os.getenv("REDIS_PORT", "6379")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Uploaded reports are stored as <report_id>_<file_name> under this directory
UPLOAD_DEST = os.getenv("UPLOAD_DEST", "./uploads")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


INGEST_MAX_WORKERS = max(1, _env_int("INGEST_MAX_WORKERS", 4))
INGEST_BATCH_SIZE = max(1, _env_int("INGEST_BATCH_SIZE", 1000))
INGEST_DELETE_SOURCE_ON_SUCCESS = _env_bool("INGEST_DELETE_SOURCE_ON_SUCCESS", True)


def _normalize_database_url(url: str) -> str:
    # Always use psycopg2 driver
    if "postgresql+psycopg://" in url:
        return url.replace("postgresql+psycopg://", "postgresql+psycopg2://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg2://", 1)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg2://", 1)
    return url


SQLALCHEMY_DATABASE_URL = _normalize_database_url(
    os.getenv("DATABASE_URL")
    or f"postgresql+psycopg2://{POSTGRES_USER}:{POSTGRES_PASSWORD}@{POSTGRES_HOST}:{POSTGRES_PORT}/{POSTGRES_DB}"
)

REDIS_URL = f"redis://{REDIS_HOST}:{REDIS_PORT}/0"
