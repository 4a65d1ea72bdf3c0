"""Build the configured store adapter."""

import logging

from placefinder.core.config import Settings
from placefinder.core.errors import ConfigError
from placefinder.core.store import Store
from placefinder.vendors.elasticsearch import ElasticsearchStore
from placefinder.vendors.postgis import PostgisStore

logger = logging.getLogger(__name__)


def build_store(settings: Settings) -> Store:
    if settings.store_backend == "elasticsearch":
        logger.info("Using Elasticsearch at %s index=%s", settings.elasticsearch_url, settings.places_index)
        return ElasticsearchStore(
            settings.elasticsearch_url,
            index=settings.places_index,
            username=settings.elasticsearch_username,
            password=settings.elasticsearch_password,
            max_retries=settings.store_max_retries,
            timeout=settings.store_timeout,
            max_result_window=settings.max_result_window,
        )
    if settings.store_backend == "postgis":
        logger.info("Using PostGIS table=%s", settings.places_index)
        return PostgisStore(
            settings.database_url,
            table=settings.places_index,
            # one connection per loader worker plus one for the reader side
            maxconn=max(5, settings.loader_workers + 1),
            connect_timeout=int(settings.store_timeout),
        )
    raise ConfigError(f"unknown store backend {settings.store_backend!r}")
