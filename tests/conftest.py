import sys
import threading
from pathlib import Path

import pytest

# Ensure the `placefinder` package is importable when running pytest from the repo root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from placefinder.core import config  # noqa: E402
from placefinder.core.errors import SchemaFailure, StoreRejection  # noqa: E402
from placefinder.core.models import Place, SearchHit, SearchResult  # noqa: E402


class FakeStore:
    """In-memory store honouring the Store contract, recording every call."""

    def __init__(self, reject_ids=(), fail_schema=False):
        self.docs = {}
        self.calls = []
        self.batches = []
        self.reject_ids = set(reject_ids)
        self.fail_schema = fail_schema
        self.exists = False
        self._lock = threading.Lock()

    def delete_collection(self, ignore_missing=True):
        self.calls.append("delete_collection")
        self.docs.clear()
        self.exists = False

    def create_collection(self, schema):
        self.calls.append("create_collection")
        if self.fail_schema:
            raise SchemaFailure("mapper_parsing_exception: boom")
        self.schema = schema
        self.exists = True

    def upsert(self, doc_id, body):
        self.calls.append("upsert")
        if doc_id in self.reject_ids:
            raise StoreRejection(doc_id, "rejected")
        with self._lock:
            self.docs[doc_id] = body

    def bulk_upsert(self, items):
        with self._lock:
            self.calls.append("bulk_upsert")
            self.batches.append([doc_id for doc_id, _ in items])
            rejections = []
            for doc_id, body in items:
                if doc_id in self.reject_ids:
                    rejections.append(StoreRejection(doc_id, "mapper_parsing_exception: bad document"))
                    continue
                self.docs[doc_id] = body
            return rejections

    def search(self, offset, limit, sort=None):
        self.calls.append("search")
        places = [Place.from_source(body) for body in self.docs.values()]
        if sort is None:
            hits = [SearchHit(place=place) for place in places]
            total = len(hits)
        else:
            located = [place for place in places if place.location is not None]
            hits = sorted(
                (SearchHit(place=place, sort=[sort.origin.distance_to(place.location)]) for place in located),
                key=lambda hit: hit.sort[0],
            )
            total = len(hits)
        return SearchResult(hits=hits[offset : offset + limit], total=total)

    def refresh(self):
        self.calls.append("refresh")

    def close(self):
        self.calls.append("close")


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def clear_settings():
    config.get_settings.cache_clear()
    yield
    config.get_settings.cache_clear()


@pytest.fixture
def make_source(tmp_path):
    def _make(lines, name="data.csv"):
        path = tmp_path / name
        path.write_text("".join(f"{line}\n" for line in lines), encoding="utf-8")
        return str(path)

    return _make


@pytest.fixture
def two_cafes(make_source):
    return make_source(
        [
            "1\tCafé A\tAddr1\t555-1\t-73.9\t40.7",
            "2\tCafé B\tAddr2\t555-2\t-73.8\t40.8",
        ]
    )
