# path: asbuilt-gps/asbuilt/services/format_ingest.py

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple
import csv
import io
import json
import logging
import math
import re
import xml.etree.ElementTree as ET

from asbuilt.errors import IngestError
from asbuilt.models.point_models import (
    GeographicRecord,
    IngestResult,
    ProjectedRecord,
    RawRecord,
)

logger = logging.getLogger(__name__)

MAX_IMPORT_RECORDS = 20_000

_EXT_FORMATS = {
    "csv": "csv",
    "txt": "csv",
    "xyz": "csv",
    "gpx": "gpx",
    "kml": "kml",
    "geojson": "geojson",
    "json": "geojson",
}

_NUMBER = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_DECIMAL_COMMA = re.compile(r"[+-]?\d+,\d+")

_UMLAUTS = str.maketrans({"ä": "ae", "ö": "oe", "ü": "ue", "ß": "ss"})

_ALIASES: Dict[str, Tuple[str, ...]] = {
    "lat": ("lat", "latitude", "breite", "latitudedeg", "y", "ywgs", "ywgs84"),
    "lng": ("lng", "lon", "long", "longitude", "laenge", "longitudedeg", "x", "xwgs", "xwgs84"),
    "easting": ("easting", "east", "rw", "rechtswert", "rechts", "ost", "ostwert", "e"),
    "northing": ("northing", "north", "hw", "hochwert", "hoch", "nord", "nordwert", "n"),
    "time": ("time", "timestamp", "zeit", "ts"),
}
_ROLE_BY_ALIAS = {alias: role for role, aliases in _ALIASES.items() for alias in aliases}


def detect_format(format_hint: str) -> str:
    hint = (format_hint or "").strip().lower()
    ext = hint.rsplit(".", 1)[-1]
    fmt = _EXT_FORMATS.get(ext)
    if fmt is None:
        raise IngestError(f"Format nicht unterstützt: {format_hint!r}")
    return fmt


def parse(data: bytes, format_hint: str) -> IngestResult:
    """Parse raw file bytes into raw coordinate records.

    Bad rows are skipped and counted; the import fails only when nothing
    usable survives. More than MAX_IMPORT_RECORDS records are truncated and
    flagged on the result.
    """
    fmt = detect_format(format_hint)
    if fmt == "csv":
        records, skipped = parse_delimited(decode_text(data))
    elif fmt == "gpx":
        records, skipped = parse_gpx(data)
    elif fmt == "kml":
        records, skipped = parse_kml(data)
    else:
        records, skipped = parse_geojson(data)

    if not records:
        raise IngestError(f"Keine Koordinaten gefunden ({fmt}, {skipped} Zeilen übersprungen)")
    if skipped:
        logger.info("%s import: skipped %d row(s) without a coordinate pair", fmt, skipped)

    total = len(records)
    truncated = total > MAX_IMPORT_RECORDS
    if truncated:
        logger.warning("%s import truncated: %d records found, keeping first %d", fmt, total, MAX_IMPORT_RECORDS)
        records = records[:MAX_IMPORT_RECORDS]

    return IngestResult(
        format=fmt,
        records=records,
        total_found=total,
        skipped_rows=skipped,
        truncated=truncated,
    )


# ---------------------------------------------------------------------------
# token helpers
# ---------------------------------------------------------------------------

def decode_text(data: bytes) -> str:
    for encoding in ("utf-8-sig", "cp1252"):
        try:
            return data.decode(encoding)
        except UnicodeDecodeError:
            continue
    return data.decode("latin-1")


def to_num(value) -> Optional[float]:
    if value is None:
        return None
    s = str(value).strip()
    # decimal comma: "4468123,45"
    if "," in s and "." not in s:
        s = s.replace(",", ".", 1)
    if not _NUMBER.fullmatch(s):
        return None
    n = float(s)
    return n if math.isfinite(n) else None


def norm_key(value) -> str:
    s = str(value or "").strip().lower().translate(_UMLAUTS)
    return re.sub(r"[^a-z0-9]", "", s)


def parse_time(value) -> Optional[int]:
    """Epoch milliseconds from an epoch number (s or ms) or an ISO-8601 string."""
    s = str(value or "").strip()
    if not s:
        return None
    n = to_num(s)
    if n is not None:
        # seconds vs milliseconds
        return int(n * 1000) if abs(n) < 1e11 else int(n)
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


# ---------------------------------------------------------------------------
# delimited text
# ---------------------------------------------------------------------------

def _comma_is_decimal(lines: Sequence[str]) -> bool:
    # "P1 4468123,45 5333000,12": every comma sits inside a whitespace separated number
    for line in lines:
        tokens = line.split()
        if len(tokens) < 2:
            return False
        if any("," in tok and not _DECIMAL_COMMA.fullmatch(tok) for tok in tokens):
            return False
    return True


def pick_delimiter(text: str) -> Optional[str]:
    lines = [line for line in text.splitlines()[:50] if line.strip()]
    sample = "\n".join(lines)
    # ";" first: German exports pair it with decimal commas
    for delimiter in (";", "\t"):
        if delimiter in sample:
            return delimiter
    if "," in sample and not _comma_is_decimal(lines):
        return ","
    return None  # whitespace separated (.xyz style)


def split_rows(text: str) -> List[List[str]]:
    delimiter = pick_delimiter(text)
    if delimiter is None:
        rows = [line.split() for line in text.splitlines()]
    else:
        rows = list(csv.reader(io.StringIO(text), delimiter=delimiter))
    return [[c.strip() for c in row] for row in rows if any(c.strip() for c in row)]


def header_roles(row: Sequence[str]) -> Optional[Dict[str, int]]:
    """Map coordinate roles to column indexes, or None if *row* is not a header."""
    # "P1;4468123,45;5333000,12" is data, not a header
    if positional_pair(row) is not None or all(to_num(c) is not None for c in row if c):
        return None
    roles: Dict[str, int] = {}
    for idx, cell in enumerate(row):
        role = _ROLE_BY_ALIAS.get(norm_key(cell))
        if role and role not in roles:
            roles[role] = idx
    return roles


def positional_pair(cells: Sequence[str]) -> Optional[Tuple[float, float]]:
    # Survey export: [id, RW, HW, z, ...]
    if len(cells) >= 3:
        e = to_num(cells[1])
        n = to_num(cells[2])
        if e is not None and n is not None:
            return e, n
    # fallback: [RW, HW]
    if len(cells) >= 2:
        e = to_num(cells[0])
        n = to_num(cells[1])
        if e is not None and n is not None:
            return e, n
    return None


def _cell(row: Sequence[str], idx: Optional[int]) -> Optional[str]:
    if idx is None or idx >= len(row):
        return None
    return row[idx]


def _named_records(rows: Sequence[Sequence[str]], roles: Dict[str, int]) -> Tuple[List[RawRecord], int]:
    geographic = "lat" in roles and "lng" in roles
    if geographic:
        a_idx, b_idx = roles["lat"], roles["lng"]
    else:
        a_idx, b_idx = roles["easting"], roles["northing"]
    time_idx = roles.get("time")

    records: List[RawRecord] = []
    skipped = 0
    for row in rows:
        a = to_num(_cell(row, a_idx))
        b = to_num(_cell(row, b_idx))
        if a is None or b is None:
            skipped += 1
            continue
        ts = parse_time(_cell(row, time_idx))
        if geographic:
            records.append(GeographicRecord(lat=a, lng=b, timestamp=ts))
        else:
            records.append(ProjectedRecord(easting=a, northing=b, timestamp=ts))
    return records, skipped


def _positional_records(rows: Sequence[Sequence[str]]) -> Tuple[List[RawRecord], int]:
    records: List[RawRecord] = []
    skipped = 0
    for row in rows:
        pair = positional_pair(row)
        if pair is None:
            skipped += 1
            continue
        records.append(ProjectedRecord(easting=pair[0], northing=pair[1]))
    return records, skipped


def parse_delimited(text: str) -> Tuple[List[RawRecord], int]:
    rows = split_rows(text)
    if not rows:
        return [], 0

    roles = header_roles(rows[0])
    if roles is None:
        return _positional_records(rows)

    body = rows[1:]
    if ("lat" in roles and "lng" in roles) or ("easting" in roles and "northing" in roles):
        records, skipped = _named_records(body, roles)
        if records:
            return records, skipped
    # Header without a usable coordinate pair: fall back to positions
    return _positional_records(body)


# ---------------------------------------------------------------------------
# GPX / KML
# ---------------------------------------------------------------------------

def _local(tag) -> str:
    return str(tag).rsplit("}", 1)[-1]


def _xml_root(data: bytes, fmt: str) -> ET.Element:
    try:
        return ET.fromstring(data)
    except ET.ParseError as e:
        raise IngestError(f"{fmt.upper()} ist kein gültiges XML: {e}") from e


def parse_gpx(data: bytes) -> Tuple[List[RawRecord], int]:
    root = _xml_root(data, "gpx")
    records: List[RawRecord] = []
    skipped = 0
    for el in root.iter():
        if _local(el.tag) not in ("wpt", "rtept", "trkpt"):
            continue
        lat = to_num(el.get("lat"))
        lng = to_num(el.get("lon"))
        if lat is None or lng is None:
            skipped += 1
            continue
        ts = None
        for child in el:
            if _local(child.tag) == "time":
                ts = parse_time(child.text)
                break
        records.append(GeographicRecord(lat=lat, lng=lng, timestamp=ts))
    return records, skipped


def _kml_tuples(text: Optional[str]) -> Tuple[List[Tuple[float, float]], int]:
    coords = []
    skipped = 0
    for triplet in (text or "").split():
        parts = triplet.split(",")
        lng = to_num(parts[0]) if len(parts) >= 2 else None
        lat = to_num(parts[1]) if len(parts) >= 2 else None
        if lng is None or lat is None:
            skipped += 1
            continue
        coords.append((lng, lat))
    return coords, skipped


def _kml_track(track: ET.Element) -> Tuple[List[RawRecord], int]:
    # gx:Track: <when> and <gx:coord>lng lat alt</gx:coord> are parallel lists
    whens = [parse_time(c.text) for c in track if _local(c.tag) == "when"]
    records: List[RawRecord] = []
    skipped = 0
    coords = [c for c in track if _local(c.tag) == "coord"]
    for idx, c in enumerate(coords):
        parts = (c.text or "").split()
        lng = to_num(parts[0]) if len(parts) >= 2 else None
        lat = to_num(parts[1]) if len(parts) >= 2 else None
        if lat is None or lng is None:
            skipped += 1
            continue
        ts = whens[idx] if idx < len(whens) else None
        records.append(GeographicRecord(lat=lat, lng=lng, timestamp=ts))
    return records, skipped


def parse_kml(data: bytes) -> Tuple[List[RawRecord], int]:
    root = _xml_root(data, "kml")
    records: List[RawRecord] = []
    skipped = 0
    for el in root.iter():
        if _local(el.tag) == "Track":
            track, bad = _kml_track(el)
            skipped += bad
            records.extend(track)
            continue
        if _local(el.tag) not in ("Point", "LineString"):
            continue
        for child in el:
            if _local(child.tag) != "coordinates":
                continue
            coords, bad = _kml_tuples(child.text)
            skipped += bad
            records.extend(GeographicRecord(lat=lat, lng=lng) for lng, lat in coords)
    return records, skipped


# ---------------------------------------------------------------------------
# GeoJSON
# ---------------------------------------------------------------------------

def _position(coord) -> Optional[Tuple[float, float]]:
    # GeoJSON positions are [lng, lat(, alt)]
    if not isinstance(coord, (list, tuple)) or len(coord) < 2:
        return None
    lng = to_num(coord[0])
    lat = to_num(coord[1])
    if lng is None or lat is None:
        return None
    return lat, lng


def parse_geojson(data: bytes) -> Tuple[List[RawRecord], int]:
    try:
        gj = json.loads(decode_text(data))
    except json.JSONDecodeError as e:
        raise IngestError(f"GeoJSON ist kein gültiges JSON: {e}") from e
    if not isinstance(gj, dict):
        raise IngestError("GeoJSON muss ein Objekt sein")

    kind = gj.get("type")
    if kind == "FeatureCollection":
        geometries = [f.get("geometry") for f in gj.get("features") or [] if isinstance(f, dict)]
    elif kind == "Feature":
        geometries = [gj.get("geometry")]
    else:
        geometries = [gj]

    records: List[RawRecord] = []
    skipped = 0
    for geom in geometries:
        if not isinstance(geom, dict):
            continue
        if geom.get("type") == "Point":
            positions = [geom.get("coordinates")]
        elif geom.get("type") == "LineString" and isinstance(geom.get("coordinates"), list):
            positions = geom["coordinates"]
        else:
            continue
        for coord in positions:
            pos = _position(coord)
            if pos is None:
                skipped += 1
                continue
            records.append(GeographicRecord(lat=pos[0], lng=pos[1]))
    return records, skipped
