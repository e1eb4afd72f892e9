"""
Location roster loading.

The roster is maintained outside this package (including the spatial join
that adds state, DOI region and HUC6). It arrives either as a CSV or as a
GeoJSON FeatureCollection whose feature properties carry the same fields;
geometry is ignored.
"""

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import pandas as pd

from .exceptions import ConfigurationError
from .models import DataType, LocationRecord, SourceType

logger = logging.getLogger(__name__)

# Roster field -> LocationRecord attribute
FIELD_MAP = {
    "Identifier": "location_id",
    "Name": "name",
    "Preferred.Label.for.PopUp.and.Modal": "display_name",
    "Total.Capacity": "capacity",
    "Active.Capacity": "active_capacity",
    "state": "state",
    "doiRegion": "doi_region",
    "huc6": "huc6",
    "Longitude": "longitude",
    "Latitude": "latitude",
    "Source.for.Storage.Data": "source",
    "Storage.Data.Type": "data_type",
    "TeacupUrl": "teacup_url",
}
PLACEHOLDER_IDS = {"", "--", "nan", "none"}


def classify_source(text: Any) -> SourceType:
    """
    Classify the free-text "source for storage data" field.

    Example:
        >>> classify_source("RISE (Pending)")
        <SourceType.RISE: 'rise'>
        >>> classify_source("https://waterdata.usgs.gov/monitoring-location/09380000")
        <SourceType.USGS: 'usgs'>
    """
    if text is None or (isinstance(text, float) and pd.isna(text)):
        return SourceType.UNKNOWN
    s = str(text).strip().lower()
    if not s:
        return SourceType.UNKNOWN
    if s.startswith("rise"):
        return SourceType.RISE
    if "usace" in s:
        return SourceType.USACE
    if s.startswith("usgs") or "waterdata.usgs" in s:
        return SourceType.USGS
    if "cdec" in s:
        return SourceType.CDEC
    return SourceType.UNKNOWN


def parse_number(value: Any) -> Optional[float]:
    """Parse a possibly comma-grouped number; blanks and junk become None."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return None if pd.isna(value) else float(value)
    text = re.sub(r"[,\s]", "", str(value))
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def _text(value: Any) -> Optional[str]:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return None
    text = str(value).strip()
    return text or None


def record_from_properties(props: Dict[str, Any]) -> Optional[LocationRecord]:
    """Build a LocationRecord from one roster row; placeholder ids yield None."""
    row = {attr: props.get(field) for field, attr in FIELD_MAP.items()}
    for attr in FIELD_MAP.values():
        if row.get(attr) is None and attr in props:
            row[attr] = props[attr]

    location_id = _text(row["location_id"])
    if location_id is None or location_id.lower() in PLACEHOLDER_IDS:
        return None
    if location_id.endswith(".0") and location_id[:-2].isdigit():
        location_id = location_id[:-2]

    name = _text(row["name"])
    return LocationRecord(
        location_id=location_id,
        display_name=_text(row["display_name"]) or name or location_id,
        source_type=classify_source(row["source"]),
        data_type=DataType.parse(_text(row["data_type"])),
        capacity=parse_number(row["capacity"]),
        active_capacity=parse_number(row["active_capacity"]),
        latitude=parse_number(row["latitude"]),
        longitude=parse_number(row["longitude"]),
        state=_text(row["state"]),
        doi_region=_text(row["doi_region"]),
        huc6=_text(row["huc6"]),
        name=name,
        teacup_url=_text(row["teacup_url"]),
    )


def records_from_rows(rows: Iterable[Dict[str, Any]]) -> List[LocationRecord]:
    records: List[LocationRecord] = []
    seen = set()
    skipped = 0
    for props in rows:
        record = record_from_properties(props)
        if record is None:
            skipped += 1
            continue
        if record.location_id in seen:
            logger.warning(f"Duplicate roster entry for {record.location_id}; keeping first")
            continue
        seen.add(record.location_id)
        records.append(record)
    if skipped:
        logger.info(f"Skipped {skipped} roster row(s) without an identifier")
    return records


def load_roster(path: Union[str, Path]) -> List[LocationRecord]:
    """
    Load the location roster from a ``.csv`` or ``.geojson``/``.json`` file.

    Raises:
        ConfigurationError: The file is missing or unreadable.
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Roster not found: {path}")

    try:
        if path.suffix.lower() in (".geojson", ".json"):
            with open(path, encoding="utf-8") as f:
                payload = json.load(f)
            features = payload.get("features") if isinstance(payload, dict) else None
            if features is None:
                raise ConfigurationError(f"{path} is not a GeoJSON FeatureCollection")
            rows = [(feature or {}).get("properties") or {} for feature in features]
        else:
            frame = pd.read_csv(path, dtype={"Identifier": str, "huc6": str})
            rows = frame.to_dict("records")
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"Could not read roster {path}: {e}") from e

    records = records_from_rows(rows)
    logger.info(f"Loaded {len(records)} locations from {path.name}")
    return records


def source_breakdown(locations: Iterable[LocationRecord]) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for loc in locations:
        key = SourceType(loc.source_type).value
        counts[key] = counts.get(key, 0) + 1
    return dict(sorted(counts.items()))
