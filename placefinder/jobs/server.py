"""HTTP entrypoint exposing the places listing and recommendations."""

from __future__ import annotations

import logging
from typing import Any, Dict

from flask import Flask, jsonify, request

from placefinder.core.auth import TokenGate, require_token
from placefinder.core.config import get_settings
from placefinder.core.errors import ConnectionFailure, InvalidQuery, PlacesError
from placefinder.core.query import PlaceQueryService
from placefinder.core.store import places_schema
from placefinder.jobs.bulk_load import BulkLoader
from placefinder.vendors.factory import build_store

logger = logging.getLogger(__name__)


def create_app(service: PlaceQueryService, gate: TokenGate) -> Flask:
    app = Flask(__name__)

    # ---------- Errors ----------

    @app.errorhandler(InvalidQuery)
    def handle_invalid_query(exc: InvalidQuery) -> Any:
        return jsonify({"error": str(exc)}), 400

    @app.errorhandler(ConnectionFailure)
    def handle_connection_failure(exc: ConnectionFailure) -> Any:
        logger.error("Store unavailable: %s", exc)
        return jsonify({"error": "document store unavailable"}), 502

    @app.errorhandler(PlacesError)
    def handle_places_error(exc: PlacesError) -> Any:
        logger.exception("Request failed: %s", exc)
        return jsonify({"error": "internal server error"}), 500

    # ---------- Routes ----------

    @app.get("/healthz")
    def healthcheck() -> Any:
        return jsonify({"status": "ok", "page_size": service.page_size}), 200

    @app.get("/api/places")
    @app.get("/api/places/")
    def list_places() -> Any:
        raw_page = request.args.get("page", "0")
        try:
            page_index = int(raw_page)
        except ValueError:
            return jsonify({"error": f"Invalid 'page' value {raw_page!r}"}), 400

        page = service.list_page(page_index)
        payload: Dict[str, Any] = {
            "name": "Places",
            "total": page.total,
            "places": [place.to_json() for place in page.places],
            "prev_page": page.prev_page,
            "next_page": page.next_page,
            "last_page": page.last_page,
        }
        return jsonify(payload), 200

    @app.get("/api/recommend")
    @require_token(gate)
    def recommend() -> Any:
        try:
            lat = float(request.args.get("lat", ""))
            lon = float(request.args.get("lon", ""))
        except ValueError:
            return jsonify({"error": "Invalid 'location' value"}), 400

        recommendations = service.recommend(lat, lon)
        return jsonify({"name": "Recommendation", "places": [item.to_json() for item in recommendations]}), 200

    @app.get("/api/get_token")
    def get_token() -> Any:
        return jsonify({"token": gate.issue_token()}), 200

    return app


def main() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )

    store = build_store(settings)
    if settings.load_on_start:
        if not settings.data_file:
            raise SystemExit("LOAD_ON_START requires PLACES_DATA_FILE")
        loader = BulkLoader(
            store,
            workers=settings.loader_workers,
            flush_bytes=settings.loader_flush_bytes,
            flush_interval=settings.loader_flush_interval,
            schema=places_schema(settings.places_index, settings.max_result_window),
        )
        loader.run(settings.data_file)

    service = PlaceQueryService(store, page_size=settings.page_size, recommend_size=settings.recommend_size)
    app = create_app(service, TokenGate(settings.token_secret, settings.token_ttl_seconds))

    logger.info("[BOOT] Binding on 0.0.0.0:%d", settings.port)
    try:
        app.run(host="0.0.0.0", port=settings.port)
    finally:
        store.close()


if __name__ == "__main__":
    main()
