"""CLI job that reloads the places collection from a tab-separated source file."""

import argparse
import logging
import signal
import threading
from typing import Optional, Sequence

from placefinder.core.config import get_settings
from placefinder.core.errors import ConfigError, ConnectionFailure, PlacesError, SchemaFailure, SourceUnreadable
from placefinder.core.store import places_schema
from placefinder.jobs.bulk_load import BulkLoader, LoadReport
from placefinder.vendors.factory import build_store

logger = logging.getLogger(__name__)


def run_load_job(
    *,
    path: str,
    workers: int,
    flush_bytes: int,
    flush_interval: float,
    cancel_event: Optional[threading.Event] = None,
) -> LoadReport:
    if not path or not path.strip():
        raise ValueError("A source file path is required")

    settings = get_settings()
    store = build_store(settings)
    try:
        loader = BulkLoader(
            store,
            workers=workers,
            flush_bytes=flush_bytes,
            flush_interval=flush_interval,
            schema=places_schema(settings.places_index, settings.max_result_window),
        )
        return loader.run(path, cancel_event=cancel_event)
    finally:
        store.close()


def build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Reload the places collection from a TSV file")
    parser.add_argument("--file", dest="path", default=settings.data_file, help="Source file (id, name, address, phone, lon, lat)")
    parser.add_argument("--workers", dest="workers", type=int, default=settings.loader_workers, help="Concurrent submitters")
    parser.add_argument(
        "--flush-bytes",
        dest="flush_bytes",
        type=int,
        default=settings.loader_flush_bytes,
        help="Flush a batch once its serialized size reaches this many bytes",
    )
    parser.add_argument(
        "--flush-interval",
        dest="flush_interval",
        type=float,
        default=settings.loader_flush_interval,
        help="Flush a batch once it is this many seconds old",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    try:
        args = build_parser().parse_args(argv)
        logging.getLogger().setLevel(get_settings().log_level)
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        return 2

    cancel_event = threading.Event()

    def _cancel(signum, frame) -> None:
        logger.warning("Received signal %s; finishing in-flight batches", signum)
        cancel_event.set()

    signal.signal(signal.SIGINT, _cancel)
    signal.signal(signal.SIGTERM, _cancel)

    try:
        report = run_load_job(
            path=args.path,
            workers=args.workers,
            flush_bytes=args.flush_bytes,
            flush_interval=args.flush_interval,
            cancel_event=cancel_event,
        )
    except (ValueError, ConfigError, SourceUnreadable, SchemaFailure, ConnectionFailure) as exc:
        logger.error("Load failed: %s", exc)
        return 2
    except PlacesError as exc:
        logger.error("Load failed: %s", exc, exc_info=True)
        return 2

    for rejection in report.rejections[:20]:
        logger.warning("Rejected %s: %s", rejection.doc_id, rejection.reason)
    logger.info("Completed load: %s", report.summary())
    return 1 if report.rejected or report.undetermined else 0


if __name__ == "__main__":
    raise SystemExit(main())
