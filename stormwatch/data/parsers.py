"""
Feed parsers for NHC track products.

Turns raw upstream documents into typed records:
- ArcGIS MapServer query responses (esriJSON or GeoJSON) -> GeoJSON features
- NHC active-storm KML -> ActiveStorm records

Security Note:
    Uses defusedxml to prevent XXE (XML External Entity) attacks.
    Never use standard xml.etree.ElementTree for untrusted input.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import defusedxml.ElementTree as ET
from defusedxml import DefusedXmlException

from stormwatch.exceptions import UpstreamFormatError
from stormwatch.models import categorize_by_wind

logger = logging.getLogger(__name__)

KML_NS = "http://www.opengis.net/kml/2.2"

NEXT_ADVISORY_HOURS = 6

STORM_TYPE_PREFIX = {
    "HU": "Hurricane",
    "TS": "Tropical Storm",
}


# =============================================================================
# ArcGIS / GeoJSON
# =============================================================================

def _esri_geometry_to_geojson(geometry: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Convert an esriJSON geometry into its GeoJSON equivalent."""
    if not geometry:
        return None
    if "x" in geometry and "y" in geometry:
        return {"type": "Point", "coordinates": [geometry["x"], geometry["y"]]}
    if "paths" in geometry:
        paths = geometry["paths"]
        if len(paths) == 1:
            return {"type": "LineString", "coordinates": paths[0]}
        return {"type": "MultiLineString", "coordinates": paths}
    if "rings" in geometry:
        return {"type": "Polygon", "coordinates": geometry["rings"]}
    return None


def parse_feature_collection(raw: Any) -> List[Dict[str, Any]]:
    """
    Parse an ArcGIS query response into a list of GeoJSON features.

    Accepts either a GeoJSON FeatureCollection or an esriJSON feature set
    (``attributes`` + ``geometry``), as bytes, text or already-decoded JSON.

    Raises:
        UpstreamFormatError: if the document is neither shape
    """
    if isinstance(raw, (bytes, str)):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            raise UpstreamFormatError(f"Invalid JSON: {e}") from e

    if not isinstance(raw, dict):
        raise UpstreamFormatError(f"Expected a JSON object, got {type(raw).__name__}")

    if "error" in raw:
        # ArcGIS reports service errors with HTTP 200 and an error body
        detail = raw["error"]
        message = detail.get("message") if isinstance(detail, dict) else detail
        raise UpstreamFormatError(f"ArcGIS error: {message}")

    features = raw.get("features")
    if not isinstance(features, list):
        raise UpstreamFormatError("Response has no 'features' array")

    parsed = []
    for feature in features:
        if not isinstance(feature, dict):
            continue
        if feature.get("type") == "Feature":
            parsed.append({
                "type": "Feature",
                "properties": dict(feature.get("properties") or {}),
                "geometry": feature.get("geometry"),
            })
        elif "attributes" in feature:
            parsed.append({
                "type": "Feature",
                "properties": dict(feature.get("attributes") or {}),
                "geometry": _esri_geometry_to_geojson(feature.get("geometry")),
            })
    return parsed


def feature_position(feature: Dict[str, Any]) -> Optional[tuple]:
    """Representative (lon, lat) of a feature: the point, or the first vertex."""
    geometry = feature.get("geometry") or {}
    coords = geometry.get("coordinates")
    # Drill into nested coordinate arrays until a position is found
    while isinstance(coords, list) and coords and isinstance(coords[0], list):
        coords = coords[0]
    if isinstance(coords, list) and len(coords) >= 2:
        try:
            return float(coords[0]), float(coords[1])
        except (TypeError, ValueError):
            return None
    return None


# =============================================================================
# NHC active-storm KML
# =============================================================================

@dataclass
class ActiveStorm:
    """One storm from the NHC active KML feed."""
    name: str
    storm_type: str
    atcf_id: Optional[str]
    category: str
    wind_speed: float
    pressure: float
    latitude: float
    longitude: float
    movement: str
    last_update: datetime
    next_update: datetime
    raw: Dict[str, Optional[str]] = field(default_factory=dict)


def storm_display_name(name: str, storm_type: Optional[str]) -> str:
    """
    Name prefixed by storm type, so the KML feed and the ArcGIS layers agree
    on ids: ('ERIN', 'HU') -> 'Hurricane Erin'.
    """
    name = name.strip()
    if name.isupper():
        name = name.title()
    prefix = STORM_TYPE_PREFIX.get((storm_type or "").upper(), "Tropical Depression")
    if name.lower().startswith(prefix.lower()):
        return name
    return f"{prefix} {name}"


def _digits(value: Optional[str]) -> float:
    """'130 mph' -> 130.0; missing or digit-free values -> 0.0."""
    if not value:
        return 0.0
    digits = re.sub(r"[^\d]", "", value)
    return float(digits) if digits else 0.0


def _signed_coordinate(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    match = re.match(r"\s*(-?\d+(?:\.\d+)?)\s*([NSEW]?)", value)
    if not match:
        return None
    number = float(match.group(1))
    if match.group(2) in ("S", "W") and number > 0:
        number = -number
    return number


def parse_nhc_datetime(value: Optional[str], now: Optional[datetime] = None) -> datetime:
    """
    Parse NHC advisory times.

    Handles ISO 8601 and the advisory style "8:00 PM EDT Mon Aug 18" (year
    taken from ``now``). Anything else falls back to ``now``.
    """
    now = now or datetime.now(timezone.utc)
    if not value:
        return now
    text = value.strip()
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    except ValueError:
        pass

    match = re.match(
        r"(\d{1,2}):(\d{2})\s*(AM|PM)\s+([A-Z]{3})\s+\w{3}\s+(\w{3})\s+(\d{1,2})",
        text,
        re.IGNORECASE,
    )
    if not match:
        logger.debug(f"Unrecognized NHC datetime '{value}', using now")
        return now

    hour, minute, meridiem, zone, month, day = match.groups()
    offsets = {"EDT": -4, "EST": -5, "CDT": -5, "CST": -6, "AST": -4,
               "PDT": -7, "PST": -8, "HST": -10, "UTC": 0, "GMT": 0}
    try:
        local = datetime.strptime(
            f"{now.year} {month} {day} {hour}:{minute} {meridiem.upper()}",
            "%Y %b %d %I:%M %p",
        )
    except ValueError:
        return now
    offset = timedelta(hours=offsets.get(zone.upper(), 0))
    return local.replace(tzinfo=timezone(offset)).astimezone(timezone.utc)


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _tc_values(extended: Any) -> Dict[str, Optional[str]]:
    """Collect the non-KML (``tc:``) children of an ExtendedData element by local name."""
    values = {}
    for child in extended.iter():
        if child is extended or not isinstance(child.tag, str):
            continue
        if child.tag.startswith("{") and not child.tag.startswith("{" + KML_NS):
            values[_local(child.tag)] = (child.text or "").strip() or None
    return values


def parse_active_storms(kml_text: str, now: Optional[datetime] = None) -> List[ActiveStorm]:
    """
    Parse NHC ``nhc_active.kml`` into ActiveStorm records.

    Each storm sits in a Folder whose ExtendedData holds ``tc:`` elements
    (name, type, centerLat, centerLon, dateTime, movement, minimumPressure,
    maxSustainedWind, atcfID). Folders without a name or position are skipped.

    Raises:
        UpstreamFormatError: if the document is not well-formed XML
    """
    now = now or datetime.now(timezone.utc)
    try:
        root = ET.fromstring(kml_text)
    except (ET.ParseError, DefusedXmlException) as e:
        raise UpstreamFormatError(f"Invalid KML: {e}") from e

    storms = []
    for folder in root.iter():
        if _local(folder.tag) != "Folder":
            continue
        extended = next(
            (child for child in folder if _local(child.tag) == "ExtendedData"), None
        )
        if extended is None:
            continue

        tc = _tc_values(extended)
        name = tc.get("name")
        lat = _signed_coordinate(tc.get("centerLat"))
        lon = _signed_coordinate(tc.get("centerLon"))
        if not name or lat is None or lon is None:
            continue

        storm_type = (tc.get("type") or "").upper()
        wind = _digits(tc.get("maxSustainedWind"))
        storms.append(ActiveStorm(
            name=storm_display_name(name, storm_type),
            storm_type=storm_type,
            atcf_id=tc.get("atcfID"),
            category=categorize_by_wind(wind),
            wind_speed=wind,
            pressure=_digits(tc.get("minimumPressure")),
            latitude=lat,
            longitude=lon,
            movement=tc.get("movement") or "Unknown",
            last_update=parse_nhc_datetime(tc.get("dateTime"), now=now),
            next_update=now + timedelta(hours=NEXT_ADVISORY_HOURS),
            raw={
                "dateTime": tc.get("dateTime"),
                "pressure": tc.get("minimumPressure"),
                "windSpeed": tc.get("maxSustainedWind"),
                "movement": tc.get("movement"),
            },
        ))

    logger.debug(f"Parsed {len(storms)} active storm(s) from KML")
    return storms
