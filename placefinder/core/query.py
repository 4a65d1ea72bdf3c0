"""Read-side operations over the places collection."""

import logging
import math
from typing import Any, List

from placefinder.core.errors import InvalidQuery
from placefinder.core.models import GeoDistanceSort, GeoPoint, Page, Recommendation
from placefinder.core.store import Store

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10
DEFAULT_RECOMMEND_SIZE = 3


def _coordinate(value: Any, name: str, bound: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidQuery(f"Invalid '{name}' value {value!r}")
    value = float(value)
    if not math.isfinite(value) or not -bound <= value <= bound:
        raise InvalidQuery(f"Invalid '{name}' value {value!r}")
    return value


class PlaceQueryService:
    """Paginated listing and nearest-place recommendation.

    Stateless apart from the injected store; safe to share between threads.
    """

    def __init__(
        self,
        store: Store,
        page_size: int = DEFAULT_PAGE_SIZE,
        recommend_size: int = DEFAULT_RECOMMEND_SIZE,
    ) -> None:
        if page_size < 1 or recommend_size < 1:
            raise ValueError("page_size and recommend_size must be positive")
        self.store = store
        self.page_size = page_size
        self.recommend_size = recommend_size

    def list_page(self, page_index: Any) -> Page:
        if isinstance(page_index, bool) or not isinstance(page_index, int) or page_index < 0:
            raise InvalidQuery(f"Invalid 'page' value {page_index!r}")

        result = self.store.search(offset=page_index * self.page_size, limit=self.page_size)
        logger.debug("Page %d: %d of %d places", page_index, len(result.hits), result.total)
        return Page(page_index=page_index, page_size=self.page_size, total=result.total, places=result.places)

    def recommend(self, lat: Any, lon: Any) -> List[Recommendation]:
        origin = GeoPoint(lat=_coordinate(lat, "lat", 90.0), lon=_coordinate(lon, "lon", 180.0))

        result = self.store.search(offset=0, limit=self.recommend_size, sort=GeoDistanceSort(origin=origin))
        recommendations = []
        for hit in result.hits:
            if hit.place.location is None:
                continue
            if hit.sort and isinstance(hit.sort[0], (int, float)):
                distance = float(hit.sort[0])
            else:
                distance = origin.distance_to(hit.place.location)
            recommendations.append(Recommendation(place=hit.place, distance_km=distance))
        return recommendations[: self.recommend_size]
