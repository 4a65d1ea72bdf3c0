"""Utilities for turning raw tab-separated source rows into places."""

import logging
import math
import re
from typing import Iterable, Iterator, Optional, Tuple

from placefinder.core.errors import MalformedRecord
from placefinder.core.models import GeoPoint, Place

logger = logging.getLogger(__name__)

FIELD_SEPARATOR = "\t"
# id, name, address, phone, longitude, latitude
FIELD_COUNT = 6
ID_FIELD, NAME_FIELD, ADDRESS_FIELD, PHONE_FIELD, LON_FIELD, LAT_FIELD = range(FIELD_COUNT)

# ASCII digits only: int() and float() also take "1_000" and non-Latin digits.
_INTEGER = re.compile(r"-?[0-9]+")
_DECIMAL = re.compile(r"[-+]?(?:[0-9]+(?:\.[0-9]*)?|\.[0-9]+)(?:[eE][-+]?[0-9]+)?")


def _parse_float(raw: str, index: int, label: str) -> float:
    if not _DECIMAL.fullmatch(raw):
        raise MalformedRecord(index, f"{label} {raw!r} is not a number")
    value = float(raw)
    if not math.isfinite(value):
        raise MalformedRecord(index, f"{label} {raw!r} is not finite")
    return value


def parse_line(line: str, line_number: Optional[int] = None) -> Place:
    """Parse one source row.

    The row carries longitude before latitude; the resulting GeoPoint is
    always (lat, lon). Errors carry ``line_number`` when one is given.
    """
    try:
        return _parse_fields(line)
    except MalformedRecord as exc:
        if line_number is None:
            raise
        raise MalformedRecord(exc.field_index, exc.reason, line_number) from exc


def _parse_fields(line: str) -> Place:
    fields = line.rstrip("\r\n").split(FIELD_SEPARATOR)
    if len(fields) != FIELD_COUNT:
        raise MalformedRecord(min(len(fields), FIELD_COUNT), f"expected {FIELD_COUNT} fields, got {len(fields)}")

    raw_id = fields[ID_FIELD].strip()
    if not _INTEGER.fullmatch(raw_id):
        raise MalformedRecord(ID_FIELD, f"id {raw_id!r} is not an integer")
    doc_id = int(raw_id)

    lon = _parse_float(fields[LON_FIELD].strip(), LON_FIELD, "longitude")
    lat = _parse_float(fields[LAT_FIELD].strip(), LAT_FIELD, "latitude")
    if not -180.0 <= lon <= 180.0:
        raise MalformedRecord(LON_FIELD, f"longitude {lon} outside [-180, 180]")
    if not -90.0 <= lat <= 90.0:
        raise MalformedRecord(LAT_FIELD, f"latitude {lat} outside [-90, 90]")

    return Place(
        id=doc_id,
        name=fields[NAME_FIELD],
        address=fields[ADDRESS_FIELD],
        phone=fields[PHONE_FIELD],
        location=GeoPoint(lat=lat, lon=lon),
    )


def iter_lines(handle: Iterable[str]) -> Iterator[Tuple[int, str]]:
    """Yield (line_number, text) for non-blank lines without reading ahead."""
    for line_number, line in enumerate(handle, start=1):
        if not line.strip():
            continue
        yield line_number, line
