"""Elasticsearch adapter for the document store contract, spoken over the REST API."""

import json
import logging
from typing import Any, Dict, List, Optional, Sequence

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from placefinder.core.errors import (
    ConnectionFailure,
    DecodeFailure,
    PlacesError,
    SchemaFailure,
    StoreRejection,
)
from placefinder.core.models import CollectionSchema, GeoDistanceSort, Place, SearchHit, SearchResult
from placefinder.core.store import BulkItem

logger = logging.getLogger(__name__)

RETRY_STATUSES = (429, 502, 503, 504)


def build_session(max_retries: int = 5, backoff_factor: float = 0.5) -> requests.Session:
    """Session that retries transient failures before giving up."""
    session = requests.Session()
    retries = Retry(
        total=max_retries,
        backoff_factor=backoff_factor,
        status_forcelist=RETRY_STATUSES,
        allowed_methods=("GET", "POST", "PUT", "DELETE", "HEAD"),
    )
    session.mount("http://", HTTPAdapter(max_retries=retries))
    session.mount("https://", HTTPAdapter(max_retries=retries))
    return session


def _error_reason(payload: Any) -> str:
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            return f"{error.get('type', 'error')}: {error.get('reason', '')}".strip()
        if error:
            return str(error)
    return str(payload)[:500]


class ElasticsearchStore:
    """Places collection stored as one Elasticsearch index."""

    def __init__(
        self,
        base_url: str,
        index: str = "places",
        username: Optional[str] = None,
        password: Optional[str] = None,
        max_retries: int = 5,
        timeout: float = 30.0,
        max_result_window: int = 20000,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.index = index
        self.timeout = timeout
        self.max_result_window = max_result_window
        self._session = session or build_session(max_retries)
        if username:
            self._session.auth = (username, password or "")

    # ---------- transport ----------

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            response = self._session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            logger.error("Elasticsearch %s %s failed: %s", method, path, exc)
            raise ConnectionFailure(f"Elasticsearch unreachable at {self.base_url}: {exc}") from exc
        if response.status_code >= 500 or response.status_code == 429:
            logger.error("Elasticsearch %s %s returned %s: %s", method, path, response.status_code, response.text[:500])
            raise ConnectionFailure(f"Elasticsearch returned {response.status_code} for {method} {path}")
        return response

    @staticmethod
    def _json(response: requests.Response) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as exc:
            raise DecodeFailure(f"Elasticsearch returned a non-JSON body: {response.text[:200]!r}") from exc
        if not isinstance(payload, dict):
            raise DecodeFailure(f"Elasticsearch returned {type(payload).__name__}, expected an object")
        return payload

    # ---------- collection lifecycle ----------

    def delete_collection(self, ignore_missing: bool = True) -> None:
        params = {"ignore_unavailable": "true"} if ignore_missing else None
        response = self._request("DELETE", f"/{self.index}", params=params)
        if response.status_code == 404 and ignore_missing:
            logger.info("Index %s did not exist; nothing to delete", self.index)
            return
        if not response.ok:
            raise SchemaFailure(f"could not delete index {self.index}: {_error_reason(self._json(response))}")
        logger.info("Deleted index %s", self.index)

    def create_collection(self, schema: CollectionSchema) -> None:
        if schema.name != self.index:
            raise SchemaFailure(f"schema targets {schema.name!r} but this store writes to {self.index!r}")

        properties: Dict[str, Any] = {schema.id_field: {"type": "long"}}
        for name in schema.text_fields:
            properties[name] = {"type": "text"}
        properties[schema.geo_field] = {"type": "geo_point"}
        body = {
            "settings": {"index": {"max_result_window": schema.max_result_window}},
            "mappings": {"properties": properties},
        }

        response = self._request("PUT", f"/{self.index}", json=body)
        if not response.ok:
            raise SchemaFailure(f"could not create index {self.index}: {_error_reason(self._json(response))}")
        self.max_result_window = schema.max_result_window
        logger.info("Created index %s with fields %s", self.index, sorted(properties))

    def refresh(self) -> None:
        response = self._request("POST", f"/{self.index}/_refresh")
        if not response.ok:
            logger.warning("Refresh of %s returned %s", self.index, response.status_code)

    # ---------- writes ----------

    def upsert(self, doc_id: int, body: Dict[str, Any]) -> None:
        response = self._request("PUT", f"/{self.index}/_doc/{doc_id}", json=body)
        if not response.ok:
            raise StoreRejection(doc_id, _error_reason(self._json(response)))

    def bulk_upsert(self, items: Sequence[BulkItem]) -> List[StoreRejection]:
        if not items:
            return []

        lines = []
        for doc_id, body in items:
            lines.append(json.dumps({"index": {"_index": self.index, "_id": str(doc_id)}}))
            lines.append(json.dumps(body, ensure_ascii=False))
        payload = ("\n".join(lines) + "\n").encode("utf-8")

        response = self._request(
            "POST",
            "/_bulk",
            data=payload,
            headers={"Content-Type": "application/x-ndjson"},
        )
        result = self._json(response)
        if not response.ok:
            reason = _error_reason(result)
            return [StoreRejection(doc_id, reason) for doc_id, _ in items]
        if not result.get("errors"):
            return []
        return self._collect_rejections(items, result.get("items"))

    @staticmethod
    def _collect_rejections(items: Sequence[BulkItem], results: Any) -> List[StoreRejection]:
        if not isinstance(results, list) or len(results) != len(items):
            raise DecodeFailure("bulk response items do not line up with the submitted batch")

        rejections: List[StoreRejection] = []
        for (doc_id, _), entry in zip(items, results):
            action = entry.get("index") if isinstance(entry, dict) else None
            if not isinstance(action, dict):
                raise DecodeFailure(f"bulk response entry for {doc_id} is malformed: {entry!r}")
            status = action.get("status", 0)
            if isinstance(status, int) and 200 <= status < 300:
                continue
            rejections.append(StoreRejection(doc_id, _error_reason(action)))
        return rejections

    # ---------- reads ----------

    def search(self, offset: int, limit: int, sort: Optional[GeoDistanceSort] = None) -> SearchResult:
        # Elasticsearch refuses from + size beyond the window; past it only the total is fetched.
        beyond_window = offset + limit > self.max_result_window
        if beyond_window:
            body: Dict[str, Any] = {"size": 0, "track_total_hits": True}
        else:
            body = {"from": offset, "size": limit, "track_total_hits": True}
        if sort is not None:
            body["query"] = {"bool": {"filter": {"exists": {"field": "location"}}}}
        if sort is not None and not beyond_window:
            body["sort"] = [
                {
                    "_geo_distance": {
                        "location": sort.origin.to_source(),
                        "order": sort.order,
                        "unit": sort.unit,
                        "mode": "min",
                        "distance_type": sort.distance_type,
                        "ignore_unmapped": True,
                    }
                }
            ]

        response = self._request("POST", f"/{self.index}/_search", json=body)
        payload = self._json(response)
        if not response.ok:
            raise PlacesError(f"search on {self.index} rejected: {_error_reason(payload)}")
        result = self._decode_search(payload)
        if beyond_window:
            logger.debug("Offset %d is past the result window of %s; returning no hits", offset, self.index)
            return SearchResult(hits=[], total=result.total)
        return result

    @staticmethod
    def _decode_search(payload: Dict[str, Any]) -> SearchResult:
        hits = payload.get("hits")
        if not isinstance(hits, dict):
            raise DecodeFailure("search response has no 'hits' object")

        total = hits.get("total")
        if isinstance(total, dict):
            total = total.get("value")
        if not isinstance(total, int) or isinstance(total, bool):
            raise DecodeFailure(f"search response total is not an integer: {total!r}")

        raw_hits = hits.get("hits")
        if not isinstance(raw_hits, list):
            raise DecodeFailure("search response 'hits.hits' is not a list")

        decoded = []
        for raw in raw_hits:
            if not isinstance(raw, dict):
                raise DecodeFailure(f"search hit is not an object: {raw!r}")
            sort_values = raw.get("sort") or []
            if not isinstance(sort_values, list):
                raise DecodeFailure(f"search hit sort is not a list: {sort_values!r}")
            decoded.append(SearchHit(place=Place.from_source(raw.get("_source")), sort=sort_values))
        return SearchResult(hits=decoded, total=total)

    def close(self) -> None:
        self._session.close()
