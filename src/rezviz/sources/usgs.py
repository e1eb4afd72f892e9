"""
USGS Water Data OGC API daily values.
"""

import json
import logging
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd

from ..models import DataType, Observation, SourceType
from .base import SourceAdapter, build_url, date_chunks, frame_to_observations, parse_dates

logger = logging.getLogger(__name__)

STORAGE_PARAMETER = "00054"
# Tried in order; the first code returning any features wins
ELEVATION_PARAMETERS = ("62614", "72275", "62615")
MAX_PAGES = 50


def monitoring_location(location_id: str) -> str:
    site = str(location_id).strip()
    if site.upper().startswith("USGS-"):
        site = site[5:]
    return f"USGS-{site}"


class UsgsAdapter(SourceAdapter):
    """
    Adapter for the ``daily`` collection of the USGS OGC API.

    Storage series use parameter code 00054. Elevation series walk an ordered
    list of datum-specific codes and fall back to the next code when a query
    returns zero features.
    """

    source_type = SourceType.USGS
    name = "USGS"

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.last_parameter: Optional[str] = None
        # monitoring location -> parameter code that returned data
        self.parameters: Dict[str, str] = {}

    @staticmethod
    def parameter_codes(data_type: DataType) -> Tuple[str, ...]:
        if data_type == DataType.ELEVATION:
            return ELEVATION_PARAMETERS
        return (STORAGE_PARAMETER,)

    def build_url(
        self,
        location_id: str,
        start: date,
        end: date,
        parameter_code: str = STORAGE_PARAMETER,
        limit: Optional[int] = None,
    ) -> str:
        return build_url(
            f"{self.config.usgs_base_url}/collections/daily/items",
            {
                "f": "json",
                "monitoring_location_id": monitoring_location(location_id),
                "parameter_code": parameter_code,
                "time": f"{start.isoformat()}/{end.isoformat()}",
                "limit": limit or self.config.usgs_limit,
            },
        )

    def data_url(
        self, location_id: str, data_date: date, data_type: DataType = DataType.STORAGE
    ) -> Optional[str]:
        code = self.parameters.get(monitoring_location(location_id))
        if code is None:
            code = self.parameter_codes(data_type)[0]
        return self.build_url(location_id, data_date, data_date, code)

    def fetch(
        self,
        location_id: str,
        start: date,
        end: date,
        data_type: DataType = DataType.STORAGE,
    ) -> List[Observation]:
        for code in self.parameter_codes(data_type):
            records = self._fetch_parameter(location_id, start, end, code)
            if records:
                self.last_parameter = code
                self.parameters[monitoring_location(location_id)] = code
                frame = pd.DataFrame(records)
                return frame_to_observations(
                    self._normalize(frame), location_id, "first", start, end
                )
            logger.debug(f"USGS {location_id}: no features for parameter {code}")

        return []

    def _fetch_parameter(
        self, location_id: str, start: date, end: date, parameter_code: str
    ) -> List[Dict[str, Any]]:
        records: List[Dict[str, Any]] = []
        for chunk_start, chunk_end in date_chunks(start, end, self.config.usgs_chunk_days):
            url: Optional[str] = self.build_url(
                location_id, chunk_start, chunk_end, parameter_code
            )
            pages = 0
            while url and pages < MAX_PAGES:
                response = self._get(url, location_id)
                features, url = self.parse_page(response.text, location_id)
                records.extend(features)
                pages += 1
            if url:
                logger.warning(
                    f"USGS {location_id}: stopped after {MAX_PAGES} pages for "
                    f"{chunk_start} to {chunk_end}; later pages were not fetched"
                )
        return records

    def parse_page(
        self, text: str, location_id: str
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        """
        Parse one GeoJSON FeatureCollection page.

        Returns:
            ``(records, next_url)`` where records hold ``time``, ``value``
            and ``unit_of_measure`` from each feature's properties.
        """
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as e:
            raise self._malformed(f"Invalid JSON: {e}", location_id) from e

        if not isinstance(payload, dict) or "features" not in payload:
            raise self._malformed("Response has no 'features' member", location_id)

        features = payload.get("features") or []
        records = []
        for feature in features:
            props = (feature or {}).get("properties") or {}
            records.append(
                {
                    "time": props.get("time"),
                    "value": props.get("value"),
                    "unit_of_measure": props.get("unit_of_measure"),
                }
            )

        next_url = None
        if features:
            for link in payload.get("links") or []:
                if link.get("rel") == "next" and link.get("href"):
                    next_url = link["href"]
                    break
        return records, next_url

    def parse(
        self,
        text: str,
        location_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[Observation]:
        records, _ = self.parse_page(text, location_id)
        if not records:
            return []
        return frame_to_observations(
            self._normalize(pd.DataFrame(records)), location_id, "first", start, end
        )

    @staticmethod
    def _normalize(frame: pd.DataFrame) -> pd.DataFrame:
        return pd.DataFrame(
            {
                "date": parse_dates(frame["time"]),
                "value": pd.to_numeric(frame["value"], errors="coerce"),
                "unit": frame["unit_of_measure"],
            }
        )
