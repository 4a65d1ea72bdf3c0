"""Core data models shared by the ingestion pipeline and the query service."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from placefinder.core.errors import DecodeFailure

# Mean earth radius, the one Elasticsearch uses for arc distances.
EARTH_RADIUS_KM = 6371.0087714


def _is_real(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclass(frozen=True, slots=True)
class GeoPoint:
    """Immutable latitude/longitude pair in decimal degrees."""

    lat: float
    lon: float

    def __post_init__(self) -> None:
        if not _is_real(self.lat) or not math.isfinite(self.lat) or not -90.0 <= self.lat <= 90.0:
            raise ValueError(f"latitude must be a finite number in [-90, 90], got {self.lat!r}")
        if not _is_real(self.lon) or not math.isfinite(self.lon) or not -180.0 <= self.lon <= 180.0:
            raise ValueError(f"longitude must be a finite number in [-180, 180], got {self.lon!r}")

    def distance_to(self, other: GeoPoint) -> float:
        """Great-circle (haversine) distance in kilometres."""
        lat1, lon1 = math.radians(self.lat), math.radians(self.lon)
        lat2, lon2 = math.radians(other.lat), math.radians(other.lon)
        h = math.sin((lat2 - lat1) / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin((lon2 - lon1) / 2) ** 2
        return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(h)))

    def to_source(self) -> Dict[str, float]:
        return {"lat": self.lat, "lon": self.lon}


@dataclass(slots=True)
class Place:
    """A point of interest as stored in the places collection."""

    id: int
    name: str
    address: str
    phone: str
    location: Optional[GeoPoint] = None

    def to_source(self) -> Dict[str, Any]:
        if self.location is None:
            raise ValueError(f"place {self.id} has no location and cannot be stored")
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "phone": self.phone,
            "location": self.location.to_source(),
        }

    @classmethod
    def from_source(cls, source: Any) -> Place:
        """Decode a stored document body, failing fast on any shape mismatch.

        A missing ``location`` decodes to ``None``; a present but malformed one
        is a ``DecodeFailure``.
        """
        if not isinstance(source, Mapping):
            raise DecodeFailure(f"document body must be an object, got {type(source).__name__}")

        doc_id = source.get("id")
        if isinstance(doc_id, float) and doc_id.is_integer():
            doc_id = int(doc_id)
        if not isinstance(doc_id, int) or isinstance(doc_id, bool):
            raise DecodeFailure(f"document id must be an integer, got {doc_id!r}")

        texts = {}
        for key in ("name", "address", "phone"):
            value = source.get(key)
            if not isinstance(value, str):
                raise DecodeFailure(f"document {doc_id} field {key!r} must be a string, got {value!r}")
            texts[key] = value

        location = None
        raw_location = source.get("location")
        if raw_location is not None:
            if not isinstance(raw_location, Mapping):
                raise DecodeFailure(f"document {doc_id} location must be an object, got {raw_location!r}")
            try:
                location = GeoPoint(lat=raw_location.get("lat"), lon=raw_location.get("lon"))
            except ValueError as exc:
                raise DecodeFailure(f"document {doc_id} has an invalid location: {exc}") from exc

        return cls(id=doc_id, location=location, **texts)

    def to_json(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "phone": self.phone,
            "location": self.location.to_source() if self.location else None,
        }


@dataclass(frozen=True)
class CollectionSchema:
    """Collection declaration handed to ``Store.create_collection``."""

    name: str
    text_fields: Sequence[str] = ("name", "address", "phone")
    id_field: str = "id"
    geo_field: str = "location"
    max_result_window: int = 20000


@dataclass(frozen=True)
class GeoDistanceSort:
    """Ascending great-circle distance from ``origin``, in kilometres."""

    origin: GeoPoint
    unit: str = "km"
    distance_type: str = "arc"
    order: str = "asc"


@dataclass(slots=True)
class SearchHit:
    place: Place
    sort: List[Any] = field(default_factory=list)


@dataclass(slots=True)
class SearchResult:
    hits: List[SearchHit]
    total: int

    @property
    def places(self) -> List[Place]:
        return [hit.place for hit in self.hits]


@dataclass(slots=True)
class Page:
    """One window of the listing; prev/next are not range-checked."""

    page_index: int
    page_size: int
    total: int
    places: List[Place]

    @property
    def prev_page(self) -> int:
        return self.page_index - 1

    @property
    def next_page(self) -> int:
        return self.page_index + 1

    @property
    def last_page(self) -> int:
        return self.total // self.page_size


@dataclass(slots=True)
class Recommendation:
    place: Place
    distance_km: float

    def to_json(self) -> Dict[str, Any]:
        payload = self.place.to_json()
        payload["distance_km"] = round(self.distance_km, 6)
        return payload
