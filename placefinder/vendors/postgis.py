"""PostgreSQL/PostGIS adapter for the document store contract."""

import logging
import re
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Sequence

import psycopg2
from psycopg2 import pool

from placefinder.core.errors import ConnectionFailure, DecodeFailure, SchemaFailure, StoreRejection
from placefinder.core.models import CollectionSchema, GeoDistanceSort, Place, SearchHit, SearchResult
from placefinder.core.store import BulkItem

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")

_CREATE_TABLE = """
CREATE TABLE {table} (
    {id_field} BIGINT PRIMARY KEY,
    {text_columns},
    {geo_field} geography(Point, 4326)
);
CREATE INDEX {table}_{geo_field}_idx ON {table} USING GIST ({geo_field});
"""

_UPSERT = """
INSERT INTO {table} (
    id,
    name,
    address,
    phone,
    location
) VALUES (
    %(id)s,
    %(name)s,
    %(address)s,
    %(phone)s,
    CASE WHEN %(lon)s IS NOT NULL AND %(lat)s IS NOT NULL THEN
        ST_SetSRID(ST_MakePoint(%(lon)s, %(lat)s), 4326)::geography
    ELSE NULL END
)
ON CONFLICT (id) DO UPDATE SET
    name = EXCLUDED.name,
    address = EXCLUDED.address,
    phone = EXCLUDED.phone,
    location = EXCLUDED.location;
"""

_SELECT_COLUMNS = """
SELECT
    id,
    name,
    address,
    phone,
    ST_Y(location::geometry) AS lat,
    ST_X(location::geometry) AS lon
"""

# use_spheroid=false gives the great-circle distance on the mean-radius sphere.
_DISTANCE = "ST_Distance(location, ST_SetSRID(ST_MakePoint(%(origin_lon)s, %(origin_lat)s), 4326)::geography, false) / 1000.0"

# OFFSET is a BIGINT; anything past it is an empty page.
_MAX_OFFSET = 2**63 - 1

_LOST_CONNECTION = (psycopg2.OperationalError, psycopg2.InterfaceError)


def _identifier(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise ValueError(f"invalid SQL identifier: {name!r}")
    return name


def _prepare_params(doc_id: int, body: Dict[str, Any]) -> Dict[str, Any]:
    location = body.get("location") or {}
    return {
        "id": doc_id,
        "name": body.get("name"),
        "address": body.get("address"),
        "phone": body.get("phone"),
        "lat": location.get("lat"),
        "lon": location.get("lon"),
    }


def _rollback(conn: Any) -> bool:
    """Roll back, returning False when the connection is no longer usable."""
    try:
        conn.rollback()
    except psycopg2.Error as exc:
        logger.warning("Rollback failed, discarding connection: %s", exc)
        return False
    return True


class PostgisStore:
    """Places collection stored as one PostGIS table."""

    def __init__(
        self,
        dsn: str,
        table: str = "places",
        minconn: int = 1,
        maxconn: int = 5,
        connect_timeout: int = 10,
    ) -> None:
        if not dsn:
            raise ConnectionFailure("DATABASE_URL is required for database connections")
        self.dsn = dsn
        self.table = _identifier(table)
        self.minconn = minconn
        self.maxconn = maxconn
        self.connect_timeout = connect_timeout
        self._pool: Optional[pool.ThreadedConnectionPool] = None

    def _get_pool(self) -> pool.ThreadedConnectionPool:
        if self._pool is None:
            try:
                self._pool = pool.ThreadedConnectionPool(
                    self.minconn,
                    self.maxconn,
                    dsn=self.dsn,
                    connect_timeout=self.connect_timeout,
                )
            except psycopg2.OperationalError as exc:
                raise ConnectionFailure(f"could not connect to PostgreSQL: {exc}") from exc
            logger.info("Database connection pool initialised (max=%d)", self.maxconn)
        return self._pool

    @contextmanager
    def _connection(self) -> Iterator[Any]:
        """Pooled connection; commits on success and rolls back on error."""
        pg_pool = self._get_pool()
        try:
            conn = pg_pool.getconn()
        except (psycopg2.OperationalError, pool.PoolError) as exc:
            raise ConnectionFailure(f"could not obtain a database connection: {exc}") from exc
        broken = False
        try:
            yield conn
            conn.commit()
        except _LOST_CONNECTION as exc:
            broken = True
            _rollback(conn)
            raise ConnectionFailure(f"database connection failed: {exc}") from exc
        except Exception:
            broken = not _rollback(conn)
            raise
        finally:
            pg_pool.putconn(conn, close=broken)

    # ---------- collection lifecycle ----------

    def delete_collection(self, ignore_missing: bool = True) -> None:
        statement = "DROP TABLE IF EXISTS {table}" if ignore_missing else "DROP TABLE {table}"
        try:
            with self._connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(statement.format(table=self.table))
        except psycopg2.Error as exc:
            raise SchemaFailure(f"could not drop table {self.table}: {exc}") from exc
        logger.info("Dropped table %s", self.table)

    def create_collection(self, schema: CollectionSchema) -> None:
        if schema.name != self.table:
            raise SchemaFailure(f"schema targets {schema.name!r} but this store writes to {self.table!r}")

        text_columns = ",\n    ".join(f"{_identifier(name)} TEXT" for name in schema.text_fields)
        ddl = _CREATE_TABLE.format(
            table=self.table,
            id_field=_identifier(schema.id_field),
            text_columns=text_columns,
            geo_field=_identifier(schema.geo_field),
        )
        try:
            with self._connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("CREATE EXTENSION IF NOT EXISTS postgis")
                    cur.execute(ddl)
        except psycopg2.Error as exc:
            raise SchemaFailure(f"could not create table {self.table}: {exc}") from exc
        logger.info("Created table %s", self.table)

    def refresh(self) -> None:
        """Writes are visible on commit; nothing to do."""

    # ---------- writes ----------

    def upsert(self, doc_id: int, body: Dict[str, Any]) -> None:
        try:
            with self._connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(_UPSERT.format(table=self.table), _prepare_params(doc_id, body))
        except psycopg2.Error as exc:
            raise StoreRejection(doc_id, str(exc).strip()) from exc
        logger.debug("Upserted place %s", doc_id)

    def bulk_upsert(self, items: Sequence[BulkItem]) -> List[StoreRejection]:
        """Upsert a batch in one transaction, isolating each row in a savepoint."""
        rejections: List[StoreRejection] = []
        statement = _UPSERT.format(table=self.table)
        with self._connection() as conn:
            with conn.cursor() as cur:
                for doc_id, body in items:
                    cur.execute("SAVEPOINT bulk_item")
                    try:
                        cur.execute(statement, _prepare_params(doc_id, body))
                    except _LOST_CONNECTION:
                        raise
                    except psycopg2.Error as exc:
                        cur.execute("ROLLBACK TO SAVEPOINT bulk_item")
                        rejections.append(StoreRejection(doc_id, str(exc).strip()))
                        continue
                    cur.execute("RELEASE SAVEPOINT bulk_item")
        return rejections

    # ---------- reads ----------

    def search(self, offset: int, limit: int, sort: Optional[GeoDistanceSort] = None) -> SearchResult:
        params: Dict[str, Any] = {"offset": offset, "limit": limit}
        if sort is None:
            count_sql = f"SELECT COUNT(*) FROM {self.table}"
            rows_sql = f"{_SELECT_COLUMNS}, NULL AS distance_km FROM {self.table} ORDER BY id ASC LIMIT %(limit)s OFFSET %(offset)s"
        else:
            params.update(origin_lat=sort.origin.lat, origin_lon=sort.origin.lon)
            count_sql = f"SELECT COUNT(*) FROM {self.table} WHERE location IS NOT NULL"
            rows_sql = (
                f"{_SELECT_COLUMNS}, {_DISTANCE} AS distance_km FROM {self.table} "
                "WHERE location IS NOT NULL ORDER BY distance_km ASC, id ASC LIMIT %(limit)s OFFSET %(offset)s"
            )

        try:
            with self._connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(count_sql, params)
                    count_row = cur.fetchone()
                    rows = []
                    if offset <= _MAX_OFFSET:
                        cur.execute(rows_sql, params)
                        rows = cur.fetchall()
        except psycopg2.Error as exc:
            raise ConnectionFailure(f"search on {self.table} failed: {exc}") from exc

        if not count_row or not isinstance(count_row[0], int):
            raise DecodeFailure(f"count query returned {count_row!r}")
        return SearchResult(hits=[self._decode_row(row) for row in rows], total=count_row[0])

    @staticmethod
    def _decode_row(row: Sequence[Any]) -> SearchHit:
        if len(row) != 7:
            raise DecodeFailure(f"expected 7 columns, got {len(row)}")
        doc_id, name, address, phone, lat, lon, distance_km = row
        source: Dict[str, Any] = {"id": doc_id, "name": name, "address": address, "phone": phone}
        if lat is not None and lon is not None:
            source["location"] = {"lat": float(lat), "lon": float(lon)}
        sort_values = [float(distance_km)] if distance_km is not None else []
        return SearchHit(place=Place.from_source(source), sort=sort_values)

    def close(self) -> None:
        if self._pool is not None:
            self._pool.closeall()
            self._pool = None
