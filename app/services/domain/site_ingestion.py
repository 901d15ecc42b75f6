"""
Domain service: tolerant ingestion of tabular site records.

Input rows come from heterogeneous spreadsheets, so every field is located
through header heuristics and every number goes through a forgiving parser:
- Unit suffixes and stray characters are stripped
- Decimal/thousands separators are detected per value
- Latitude/longitude are found by name, by substring or as X/Y by range
- Rows that cannot be resolved are dropped, never fatal
"""
import math
import re
import logging
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

from pydantic import ValidationError

from app.domain.models import PublicBuildingRecord, SiteRecord

logger = logging.getLogger(__name__)

Row = Mapping[str, Optional[str]]

_UNIT_SUFFIX = re.compile(r"\s*(km|kms|mi|m)\.?\s*$", re.IGNORECASE)
_DIGIT_GROUP_COMMAS = re.compile(r"^-?\d{1,3}(,\d{3}){2,}$")
_NON_NUMERIC = re.compile(r"[^0-9.\-]")
_HEADER_PUNCTUATION = re.compile(r"[_\-.()\[\]/:,]+")
_WHITESPACE = re.compile(r"\s+")
_NUMBER_TOKEN = re.compile(r"-?\d+(?:[.,]\d+)?")
_DISTANCE_UNIT = re.compile(r"(?<![a-z])(kms|km|mi|m)\.?\s*$", re.IGNORECASE)

KM_PER_UNIT = {"km": 1.0, "kms": 1.0, "m": 0.001, "mi": 1.609344}

# Candidate headers, in priority order
LAT_HEADERS = ["Latitude of W.T.P.", "latitude", "lat", "Y (Latitude)"]
LON_HEADERS = ["Longitude of W.T.P.", "longitude", "lon", "lng", "long", "X (Longitude)"]
Y_HEADERS = ["Y", "y"]
X_HEADERS = ["X", "x"]
# Leading space anchors the match to the start of a word ("population" is not a latitude)
LAT_SUBSTRINGS = [" lat"]
LON_SUBSTRINGS = [" lon", " lng"]
COMBINED_COORD_HEADERS = [
    "Coordinates (Lat, Long)",
    "Coordinates",
    "Coord",
    "Lat Long",
    "Lat/Lon",
    "Lat, Lon",
]
RADIUS_HEADERS = [
    "Plant Influence Radius (km)",
    "Coverage radius (km)",
    "radius_km",
    "Radius (km)",
    "radius",
]
RADIUS_SUBSTRINGS = ["radius", "influence", "coverage"]
NAME_HEADERS = ["W.T.P. Name", "WTP Name", "Name", "Site", "id", "ID"]
CAPACITY_HEADERS = ["Capacity (p.e.)", "Capacity", "p.e.", "PE"]
DESIGN_CAPACITY_HEADERS = [
    "Potenz. (A.E.)",
    "Potenz A.E.",
    "Potenz",
    "AE",
    "Design capacity",
    "Potential capacity",
]
BUILDING_NAME_HEADERS = ["Name of public building or public space", "Name", "Site", "id"]
BUILDING_CAPACITY_HEADERS = ["Yearly presence/ capacity", "Yearly presence", "Capacity"]


class NoValidRowsError(ValueError):
    """Raised when a whole batch of rows yields no usable record."""
    pass


# ============================================================
# Value parsing
# ============================================================

def parse_number(raw) -> Optional[float]:
    """
    Parse a loosely formatted number.

    Examples:
        "1.234,56 km" -> 1234.56
        "1,234.56"    -> 1234.56
        "12,5"        -> 12.5
        "1,234,567"   -> 1234567.0

    Args:
        raw: Cell value (any type)

    Returns:
        Finite float, or None if the value is not a number
    """
    if raw is None:
        return None
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return float(raw) if math.isfinite(raw) else None

    value = _UNIT_SUFFIX.sub("", str(raw).strip())
    has_comma = "," in value
    has_dot = "." in value

    if has_comma and has_dot:
        # Whichever separator comes last is the decimal one
        if value.rfind(",") > value.rfind("."):
            value = value.replace(".", "").replace(",", ".")
        else:
            value = value.replace(",", "")
    elif has_comma:
        if _DIGIT_GROUP_COMMAS.match(value):
            value = value.replace(",", "")
        else:
            value = value.replace(",", ".", 1)
    elif value.count(".") > 1:
        value = value.replace(".", "")

    value = _NON_NUMERIC.sub("", value)
    if value in ("", ".", "-", "-."):
        return None
    try:
        number = float(value)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def parse_distance_km(raw) -> Optional[float]:
    """
    Parse a distance in kilometres, converting metre and mile suffixes.

    Examples:
        "2 km"  -> 2.0
        "500 m" -> 0.5
        "3 mi"  -> 4.828032
    """
    number = parse_number(raw)
    if number is None or not isinstance(raw, str):
        return number
    unit = _DISTANCE_UNIT.search(raw.strip())
    if unit is None:
        return number
    return number * KM_PER_UNIT[unit.group(1).lower()]


def normalize_header(header) -> str:
    """Canonical form of a header for matching (lowercase, single spaces)."""
    text = str(header if header is not None else "").replace("\ufeff", "").strip().lower()
    text = _HEADER_PUNCTUATION.sub(" ", text)
    return _WHITESPACE.sub(" ", text).strip()


def _is_blank(value) -> bool:
    return value is None or str(value).strip() == ""


def pick(row: Row, candidates: Sequence[str]) -> Optional[tuple[str, str]]:
    """
    Find the first candidate header present in the row with a non-blank value.

    Args:
        row: Raw row (header -> text)
        candidates: Header names in priority order

    Returns:
        (original header, value) or None
    """
    by_normalized: dict[str, str] = {}
    for key in row.keys():
        by_normalized.setdefault(normalize_header(key), key)

    for candidate in candidates:
        key = by_normalized.get(normalize_header(candidate))
        if key is not None and not _is_blank(row[key]):
            return key, row[key]
    return None


def pick_number(row: Row, candidates: Sequence[str]) -> Optional[float]:
    found = pick(row, candidates)
    return parse_number(found[1]) if found else None


def find_number_by_header_substring(
    row: Row,
    substrings: Iterable[str],
    parse: Callable[[Any], Optional[float]] = parse_number,
    accept: Callable[[float], bool] = lambda number: True,
) -> Optional[tuple[str, float]]:
    """
    First header containing any of the substrings whose value parses and is accepted.

    Columns whose value fails ``accept`` are skipped, not fatal.
    """
    substrings = list(substrings)
    for key, value in row.items():
        normalized = " " + normalize_header(key)
        if any(s in normalized for s in substrings):
            number = parse(value)
            if number is not None and accept(number):
                return key, number
    return None


def _in_range(lat: float, lon: float) -> bool:
    return abs(lat) <= 90 and abs(lon) <= 180


def parse_combined_coordinates(value) -> Optional[tuple[float, float]]:
    """
    Read a "(lat, lon)" style cell.

    The first two numeric tokens are taken as (lat, lon) and swapped when
    that order is out of range.
    """
    if _is_blank(value):
        return None
    tokens = _NUMBER_TOKEN.findall(str(value))
    if len(tokens) < 2:
        return None
    first = float(tokens[0].replace(",", "."))
    second = float(tokens[1].replace(",", "."))

    if _in_range(first, second):
        return first, second
    if _in_range(second, first):
        return second, first
    return None


# ============================================================
# Field detection
# ============================================================

def detect_lat_lon(row: Row) -> Optional[tuple[float, float]]:
    """
    Locate latitude/longitude in a row.

    Order: explicit headers, headers containing lat/lon, generic X/Y by
    range (with axis swap), combined coordinate column.
    """
    lat = pick_number(row, LAT_HEADERS)
    lon = pick_number(row, LON_HEADERS)
    if lat is not None and lon is not None:
        return lat, lon

    lat_found = find_number_by_header_substring(row, LAT_SUBSTRINGS)
    lon_found = find_number_by_header_substring(row, LON_SUBSTRINGS)
    if lat_found and lon_found and lat_found[0] != lon_found[0]:
        return lat_found[1], lon_found[1]

    y = pick_number(row, Y_HEADERS)
    x = pick_number(row, X_HEADERS)
    if y is not None and x is not None:
        if _in_range(y, x):
            return y, x
        if _in_range(x, y):
            return x, y

    combined = pick(row, COMBINED_COORD_HEADERS)
    if combined:
        return parse_combined_coordinates(combined[1])
    return None


def detect_radius_km(row: Row) -> Optional[float]:
    """
    Radius in km from an explicit header, else from the first radius-like
    column holding a positive distance.
    """
    found = pick(row, RADIUS_HEADERS)
    radius = parse_distance_km(found[1]) if found else None
    if radius is not None and radius > 0:
        return radius

    found = find_number_by_header_substring(
        row,
        RADIUS_SUBSTRINGS,
        parse=parse_distance_km,
        accept=lambda number: number > 0,
    )
    return found[1] if found else None


def detect_production(row: Row) -> tuple[Optional[str], Optional[float]]:
    """
    Read the site's production driver (p.e.).

    Prefers the capacity family over the design/potential capacity family.

    Returns:
        (header text used, parsed value), both None when absent
    """
    for family in (CAPACITY_HEADERS, DESIGN_CAPACITY_HEADERS):
        found = pick(row, family)
        if found:
            value = parse_number(found[1])
            if value is not None:
                return found[0], value
    return None, None


def _name(row: Row, candidates: Sequence[str], default: str) -> str:
    found = pick(row, candidates)
    return str(found[1]).strip() if found else default


# ============================================================
# Row readers
# ============================================================

def read_site_row(row: Row, default_radius_km: Optional[float]) -> Optional[SiteRecord]:
    """
    Convert one raw row into a SiteRecord.

    Args:
        row: Raw row (header -> text)
        default_radius_km: Radius used when the row carries none

    Returns:
        SiteRecord, or None when lat/lon/radius cannot be resolved
    """
    coordinates = detect_lat_lon(row)
    if coordinates is None:
        return None

    radius_km = detect_radius_km(row)
    if radius_km is None:
        radius_km = default_radius_km
    if radius_km is None or radius_km <= 0:
        return None

    label, value = detect_production(row)
    try:
        return SiteRecord(
            lat=coordinates[0],
            lon=coordinates[1],
            radius_km=radius_km,
            name=_name(row, NAME_HEADERS, ""),
            production_label=label,
            production_value=value,
        )
    except ValidationError as e:
        logger.debug(f"Rejected site row: {e.errors()}")
        return None


def read_public_building_row(row: Row) -> Optional[PublicBuildingRecord]:
    """
    Convert one raw row into a PublicBuildingRecord, or None.
    """
    coordinates = detect_lat_lon(row)
    if coordinates is None:
        return None

    capacity = pick(row, BUILDING_CAPACITY_HEADERS)
    try:
        return PublicBuildingRecord(
            lat=coordinates[0],
            lon=coordinates[1],
            name=_name(row, BUILDING_NAME_HEADERS, "Public Building"),
            capacity_value=parse_number(capacity[1]) if capacity else None,
        )
    except ValidationError as e:
        logger.debug(f"Rejected public building row: {e.errors()}")
        return None


def ingest_sites(
    rows: Iterable[Row],
    default_radius_km: Optional[float] = None,
) -> list[SiteRecord]:
    """
    Parse raw rows into SiteRecords, silently dropping invalid rows.

    Raises:
        NoValidRowsError: If no row could be parsed
    """
    rows = list(rows)
    sites = []
    for index, row in enumerate(rows):
        site = read_site_row(row, default_radius_km)
        if site is None:
            logger.debug(f"Dropped site row {index}: no usable lat/lon/radius")
            continue
        sites.append(site)
    logger.info(f"Ingested {len(sites)}/{len(rows)} site rows")

    if not sites:
        raise NoValidRowsError("No valid rows found (lat/lon/radius missing).")
    return sites


def ingest_public_buildings(rows: Iterable[Row]) -> list[PublicBuildingRecord]:
    """
    Parse raw rows into PublicBuildingRecords, silently dropping invalid rows.

    Raises:
        NoValidRowsError: If no row could be parsed
    """
    rows = list(rows)
    buildings = [b for b in (read_public_building_row(r) for r in rows) if b]
    logger.info(f"Ingested {len(buildings)}/{len(rows)} public building rows")

    if not buildings:
        raise NoValidRowsError("No valid public building coordinates found.")
    return buildings


def apply_radius_override(
    sites: Sequence[SiteRecord],
    radius_km: Optional[float],
) -> list[SiteRecord]:
    """
    Give every site the same radius; a missing or non-positive override is ignored.
    """
    if radius_km is None or not math.isfinite(radius_km) or radius_km <= 0:
        return list(sites)
    return [site.model_copy(update={"radius_km": float(radius_km)}) for site in sites]
