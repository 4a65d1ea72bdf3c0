"""Document store contract consumed by the loader and the query service."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from placefinder.core.errors import StoreRejection
from placefinder.core.models import CollectionSchema, GeoDistanceSort, SearchResult

BulkItem = Tuple[int, Dict[str, Any]]


def places_schema(name: str = "places", max_result_window: int = 20000) -> CollectionSchema:
    return CollectionSchema(name=name, max_result_window=max_result_window)


class Store(Protocol):
    """What any full-text and geo-capable backend must offer.

    ``upsert`` and ``bulk_upsert`` are idempotent per id. ``bulk_upsert``
    reports per-document refusals in its return value and only raises when the
    whole request failed (``ConnectionFailure``).
    """

    def create_collection(self, schema: CollectionSchema) -> None:
        ...

    def delete_collection(self, ignore_missing: bool = True) -> None:
        ...

    def upsert(self, doc_id: int, body: Dict[str, Any]) -> None:
        ...

    def bulk_upsert(self, items: Sequence[BulkItem]) -> List[StoreRejection]:
        ...

    def search(self, offset: int, limit: int, sort: Optional[GeoDistanceSort] = None) -> SearchResult:
        ...

    def refresh(self) -> None:
        """Make completed writes visible to search."""
        ...

    def close(self) -> None:
        ...
