"""Bulk loader that replaces the places collection with the contents of a source file.

The reader thread streams the file and parses each row; parsed places go
through a bounded queue to a fixed pool of worker threads. Every worker owns
one open ``Batch`` and flushes it to the store when it grows past
``flush_bytes`` or gets older than ``flush_interval`` seconds, whichever comes
first. ``Store.bulk_upsert`` blocks the worker until the store answers, which
together with the bounded queue keeps memory flat when the store is slow.
"""

from __future__ import annotations

import enum
import json
import logging
import os
import queue
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from placefinder.core.errors import (
    ConnectionFailure,
    DecodeFailure,
    MalformedRecord,
    PlacesError,
    SchemaFailure,
    SourceUnreadable,
    StoreRejection,
)
from placefinder.core.models import CollectionSchema, Place
from placefinder.core.store import BulkItem, Store, places_schema
from placefinder.etl.parser import iter_lines, parse_line

logger = logging.getLogger(__name__)

DEFAULT_FLUSH_BYTES = 5_000_000
DEFAULT_FLUSH_INTERVAL = 30.0
MAX_REPORTED_FAILURES = 1000

_DONE = object()


class BatchState(enum.Enum):
    OPEN = "open"
    FLUSHING = "flushing"
    CLOSED = "closed"


class Batch:
    """Pending writes owned by a single worker."""

    def __init__(self) -> None:
        self.items: List[BulkItem] = []
        self.size_bytes = 0
        self.opened_at: Optional[float] = None
        self.state = BatchState.OPEN

    def __len__(self) -> int:
        return len(self.items)

    def add(self, doc_id: int, body: dict, size: int) -> None:
        if self.state is not BatchState.OPEN:
            raise RuntimeError(f"cannot add to a {self.state.value} batch")
        if self.opened_at is None:
            self.opened_at = time.monotonic()
        self.items.append((doc_id, body))
        self.size_bytes += size

    def age(self) -> float:
        if self.opened_at is None:
            return 0.0
        return time.monotonic() - self.opened_at

    def is_full(self, flush_bytes: int) -> bool:
        return self.size_bytes >= flush_bytes


@dataclass
class LoadReport:
    lines_read: int = 0
    indexed: int = 0
    skipped: int = 0
    rejected: int = 0
    undetermined: int = 0
    rejections: List[StoreRejection] = field(default_factory=list)
    malformed: List[MalformedRecord] = field(default_factory=list)
    cancelled: bool = False
    elapsed: float = 0.0

    def summary(self) -> str:
        return (
            f"lines_read={self.lines_read} indexed={self.indexed} skipped={self.skipped} "
            f"rejected={self.rejected} undetermined={self.undetermined} "
            f"cancelled={self.cancelled} elapsed={self.elapsed:.2f}s"
        )


class LoadCounters:
    """Aggregate outcomes reported concurrently by the workers."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._report = LoadReport()
        self.fatal: Optional[ConnectionFailure] = None

    def line_read(self) -> None:
        with self._lock:
            self._report.lines_read += 1

    def skip(self, error: MalformedRecord) -> None:
        with self._lock:
            self._report.skipped += 1
            if len(self._report.malformed) < MAX_REPORTED_FAILURES:
                self._report.malformed.append(error)

    def indexed(self, count: int) -> None:
        with self._lock:
            self._report.indexed += count

    def reject(self, rejections: Sequence[StoreRejection]) -> None:
        with self._lock:
            self._report.rejected += len(rejections)
            room = MAX_REPORTED_FAILURES - len(self._report.rejections)
            if room > 0:
                self._report.rejections.extend(rejections[:room])

    def undetermined(self, count: int) -> None:
        with self._lock:
            self._report.undetermined += count

    def set_fatal(self, error: ConnectionFailure) -> None:
        with self._lock:
            if self.fatal is None:
                self.fatal = error

    def snapshot(self, cancelled: bool, elapsed: float) -> LoadReport:
        with self._lock:
            report = self._report
            return LoadReport(
                lines_read=report.lines_read,
                indexed=report.indexed,
                skipped=report.skipped,
                rejected=report.rejected,
                undetermined=report.undetermined,
                rejections=list(report.rejections),
                malformed=list(report.malformed),
                cancelled=cancelled,
                elapsed=elapsed,
            )


class BulkLoader:
    def __init__(
        self,
        store: Store,
        workers: Optional[int] = None,
        flush_bytes: int = DEFAULT_FLUSH_BYTES,
        flush_interval: float = DEFAULT_FLUSH_INTERVAL,
        queue_size: Optional[int] = None,
        schema: Optional[CollectionSchema] = None,
    ) -> None:
        self.store = store
        self.workers = workers or os.cpu_count() or 1
        if self.workers < 1:
            raise ValueError("workers must be >= 1")
        if flush_bytes < 1 or flush_interval <= 0:
            raise ValueError("flush_bytes and flush_interval must be positive")
        self.flush_bytes = flush_bytes
        self.flush_interval = flush_interval
        self.queue_size = queue_size or self.workers * 256
        self.schema = schema or places_schema()

    def run(self, path: str, cancel_event: Optional[threading.Event] = None) -> LoadReport:
        """Drop, recreate and repopulate the collection from ``path``.

        Raises ``SourceUnreadable`` before touching the store, ``SchemaFailure``
        after the drop but before any write, and ``ConnectionFailure`` (with
        ``report`` attached) when the store became unreachable mid-load.
        """
        started = time.monotonic()
        cancel = cancel_event or threading.Event()

        try:
            handle = open(path, "r", encoding="utf-8", errors="replace")
        except OSError as exc:
            raise SourceUnreadable(f"cannot read source file {path}: {exc}") from exc

        with handle:
            logger.info("Replacing collection %s from %s", self.schema.name, path)
            self.store.delete_collection(ignore_missing=True)
            try:
                self.store.create_collection(self.schema)
            except SchemaFailure:
                logger.error("Schema creation failed; collection %s is left empty", self.schema.name)
                raise

            counters = LoadCounters()
            abort = threading.Event()
            pending: queue.Queue = queue.Queue(maxsize=self.queue_size)

            with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="bulk-loader") as executor:
                futures = [executor.submit(self._worker, pending, counters, abort) for _ in range(self.workers)]
                cancelled = False
                try:
                    cancelled = self._feed(handle, pending, counters, cancel, abort, futures)
                finally:
                    for _ in futures:
                        if not self._enqueue(pending, _DONE, futures):
                            break
                for future in futures:
                    future.result()

        report = counters.snapshot(cancelled=cancelled, elapsed=time.monotonic() - started)
        if counters.fatal is not None:
            logger.error("Load aborted: %s (%s)", counters.fatal, report.summary())
            counters.fatal.report = report
            raise counters.fatal

        try:
            self.store.refresh()
        except PlacesError as exc:
            logger.warning("Refresh after load failed: %s", exc)
        logger.info("Load finished: %s", report.summary())
        return report

    # ---------- reader side ----------

    def _feed(
        self,
        handle,
        pending: queue.Queue,
        counters: LoadCounters,
        cancel: threading.Event,
        abort: threading.Event,
        futures: List[Future],
    ) -> bool:
        """Stream the source into the queue; returns True when cancelled."""
        for line_number, line in iter_lines(handle):
            if cancel.is_set():
                logger.warning("Load cancelled after %d lines", line_number - 1)
                return True
            if abort.is_set():
                return False
            counters.line_read()
            try:
                place = parse_line(line, line_number=line_number)
            except MalformedRecord as exc:
                logger.warning("Skipping malformed record: %s", exc)
                counters.skip(exc)
                continue
            if not self._enqueue(pending, place, futures):
                return False
        return False

    @staticmethod
    def _enqueue(pending: queue.Queue, item: object, futures: List[Future]) -> bool:
        """Blocking put that gives up once every worker has exited."""
        while True:
            try:
                pending.put(item, timeout=0.5)
                return True
            except queue.Full:
                if all(future.done() for future in futures):
                    return False

    # ---------- worker side ----------

    def _worker(self, pending: queue.Queue, counters: LoadCounters, abort: threading.Event) -> None:
        batch = Batch()
        while True:
            timeout = None
            if len(batch):
                timeout = max(0.0, self.flush_interval - batch.age())
            try:
                item = pending.get(timeout=timeout)
            except queue.Empty:
                self._flush(batch, counters, abort)
                batch = Batch()
                continue

            if item is _DONE:
                self._flush(batch, counters, abort)
                return

            place: Place = item
            body = place.to_source()
            size = len(json.dumps(body, ensure_ascii=False).encode("utf-8"))
            batch.add(place.id, body, size)
            if batch.is_full(self.flush_bytes) or batch.age() >= self.flush_interval:
                self._flush(batch, counters, abort)
                batch = Batch()

    def _flush(self, batch: Batch, counters: LoadCounters, abort: threading.Event) -> None:
        batch.state = BatchState.FLUSHING
        items = batch.items
        try:
            if not items:
                return
            if abort.is_set():
                counters.reject([StoreRejection(doc_id, "load aborted before submission") for doc_id, _ in items])
                return

            try:
                rejections = self.store.bulk_upsert(items)
            except ConnectionFailure as exc:
                logger.error("Flush of %d documents failed, aborting load: %s", len(items), exc)
                counters.reject([StoreRejection(doc_id, str(exc)) for doc_id, _ in items])
                counters.set_fatal(exc)
                abort.set()
                return
            except DecodeFailure as exc:
                # The store took the request; which documents landed is unknown.
                logger.error("Outcome of %d documents undetermined: %s", len(items), exc)
                counters.undetermined(len(items))
                return
            except PlacesError as exc:
                logger.error("Flush of %d documents failed: %s", len(items), exc)
                counters.reject([StoreRejection(doc_id, str(exc)) for doc_id, _ in items])
                return

            for rejection in rejections:
                logger.warning("Store rejected document %s: %s", rejection.doc_id, rejection.reason)
            counters.reject(rejections)
            counters.indexed(len(items) - len(rejections))
            logger.debug("Flushed %d documents (%d bytes), %d rejected", len(items), batch.size_bytes, len(rejections))
        finally:
            batch.state = BatchState.CLOSED
