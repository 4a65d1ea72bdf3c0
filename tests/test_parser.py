import io

import pytest

from placefinder.core.errors import MalformedRecord
from placefinder.etl import parser


def test_parse_line_swaps_lon_lat_columns():
    place = parser.parse_line("1\tCafé A\tAddr1\t555-1\t-73.9\t40.7\n")

    assert place.id == 1
    assert place.name == "Café A"
    assert place.address == "Addr1"
    assert place.phone == "555-1"
    assert place.location.lat == 40.7
    assert place.location.lon == -73.9


def test_parse_line_strips_windows_line_endings():
    place = parser.parse_line("7\tA\tB\tC\t37.6\t55.7\r\n")
    assert place.location.lat == 55.7


def test_parse_line_rejects_non_numeric_id():
    with pytest.raises(MalformedRecord) as excinfo:
        parser.parse_line("abc\tName\tAddr\t123\t10.0\t20.0")
    assert excinfo.value.field_index == parser.ID_FIELD


@pytest.mark.parametrize("raw_id", ["1_000", "١٢", "７", "+5", "7.0", ""])
def test_parse_line_rejects_decorated_or_non_ascii_ids(raw_id):
    with pytest.raises(MalformedRecord) as excinfo:
        parser.parse_line(f"{raw_id}\tName\tAddr\t123\t10.0\t20.0")
    assert excinfo.value.field_index == parser.ID_FIELD


@pytest.mark.parametrize("raw", ["1_0.5", "١٠", "infinity", "1e400"])
def test_parse_line_rejects_unusual_numeric_spellings(raw):
    with pytest.raises(MalformedRecord) as excinfo:
        parser.parse_line(f"1\tName\tAddr\t123\t{raw}\t20.0")
    assert excinfo.value.field_index == parser.LON_FIELD


def test_parse_line_accepts_plain_decimal_forms():
    place = parser.parse_line("-12\tName\tAddr\t123\t+1.5e1\t.5")
    assert place.id == -12
    assert place.location.lon == 15.0
    assert place.location.lat == 0.5


@pytest.mark.parametrize(
    "line, field_index",
    [
        ("1\tName\tAddr\t123\tnot-a-lon\t20.0", parser.LON_FIELD),
        ("1\tName\tAddr\t123\t10.0\t", parser.LAT_FIELD),
        ("1\tName\tAddr\t123\t10.0\tnan", parser.LAT_FIELD),
        ("1\tName\tAddr\t123\t200.0\t20.0", parser.LON_FIELD),
        ("1\tName\tAddr\t123\t10.0\t-91", parser.LAT_FIELD),
    ],
)
def test_parse_line_rejects_bad_coordinates(line, field_index):
    with pytest.raises(MalformedRecord) as excinfo:
        parser.parse_line(line)
    assert excinfo.value.field_index == field_index


def test_parse_line_rejects_wrong_field_count():
    with pytest.raises(MalformedRecord) as excinfo:
        parser.parse_line("1\tName\tAddr")
    assert excinfo.value.field_index == 3
    assert "expected 6 fields" in excinfo.value.reason


def test_parse_line_attaches_line_number():
    with pytest.raises(MalformedRecord) as excinfo:
        parser.parse_line("x\tName\tAddr\t1\t2\t3", line_number=42)
    assert excinfo.value.line_number == 42
    assert "line 42" in str(excinfo.value)


def test_iter_lines_skips_blank_lines_and_keeps_numbers():
    handle = io.StringIO("a\n\n   \nb\n")
    assert list(parser.iter_lines(handle)) == [(1, "a\n"), (4, "b\n")]
