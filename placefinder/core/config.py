"""Application configuration helpers."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

from placefinder.core.errors import ConfigError

logger = logging.getLogger(__name__)

STORE_BACKENDS = {"elasticsearch", "postgis"}


@dataclass(frozen=True)
class Settings:
    store_backend: str = "elasticsearch"
    elasticsearch_url: str = "http://localhost:9200"
    elasticsearch_username: Optional[str] = None
    elasticsearch_password: Optional[str] = None
    places_index: str = "places"
    database_url: str = ""
    store_max_retries: int = 5
    store_timeout: float = 30.0
    data_file: str = ""
    loader_workers: int = 1
    loader_flush_bytes: int = 5_000_000
    loader_flush_interval: float = 30.0
    page_size: int = 10
    recommend_size: int = 3
    max_result_window: int = 20000
    token_secret: str = ""
    token_ttl_seconds: int = 3 * 60 * 60
    port: int = 8888
    load_on_start: bool = False
    log_level: str = "INFO"


def _get_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be numeric, got {raw!r}") from exc
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {value}")
    return value


def _get_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    store_backend = os.getenv("STORE_BACKEND", "elasticsearch").strip().lower()
    if store_backend not in STORE_BACKENDS:
        raise ConfigError(f"STORE_BACKEND must be one of {sorted(STORE_BACKENDS)}, got {store_backend!r}")

    database_url = os.getenv("DATABASE_URL", "")
    token_secret = os.getenv("TOKEN_SECRET", "")
    data_file = os.getenv("PLACES_DATA_FILE", "")

    if store_backend == "postgis" and not database_url:
        logger.warning("DATABASE_URL is not set; database operations will fail.")
    if not token_secret:
        logger.warning("TOKEN_SECRET is not configured; token issuance and verification will fail.")
    if not data_file:
        logger.warning("PLACES_DATA_FILE is not configured; loads must pass --file explicitly.")

    return Settings(
        store_backend=store_backend,
        elasticsearch_url=os.getenv("ELASTICSEARCH_URL", "http://localhost:9200").rstrip("/"),
        elasticsearch_username=os.getenv("ELASTICSEARCH_USERNAME") or None,
        elasticsearch_password=os.getenv("ELASTICSEARCH_PASSWORD") or None,
        places_index=os.getenv("PLACES_INDEX", "places"),
        database_url=database_url,
        store_max_retries=_get_int("STORE_MAX_RETRIES", 5),
        store_timeout=_get_float("STORE_TIMEOUT", 30.0),
        data_file=data_file,
        loader_workers=_get_int("LOADER_WORKERS", os.cpu_count() or 1, minimum=1),
        loader_flush_bytes=_get_int("LOADER_FLUSH_BYTES", 5_000_000, minimum=1),
        loader_flush_interval=_get_float("LOADER_FLUSH_INTERVAL", 30.0),
        page_size=_get_int("PAGE_SIZE", 10, minimum=1),
        recommend_size=_get_int("RECOMMEND_SIZE", 3, minimum=1),
        max_result_window=_get_int("MAX_RESULT_WINDOW", 20000, minimum=1),
        token_secret=token_secret,
        token_ttl_seconds=_get_int("TOKEN_TTL_SECONDS", 3 * 60 * 60, minimum=1),
        port=_get_int("PORT", 8888, minimum=1),
        load_on_start=_get_bool("LOAD_ON_START"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
