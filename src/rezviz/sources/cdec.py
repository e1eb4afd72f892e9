"""
California Data Exchange Center (CDEC) CSV servlet.
"""

import io
import logging
from datetime import date
from typing import Dict, List, Optional

import pandas as pd

from ..models import DataType, Observation, SourceType
from .base import SourceAdapter, build_url, frame_to_observations, parse_dates

logger = logging.getLogger(__name__)

STORAGE_SENSOR = 15
DAILY = "D"


class CdecAdapter(SourceAdapter):
    """
    Adapter for CDEC daily reservoir storage (sensor 15).

    The servlet refuses non-browser clients, so requests carry the configured
    browser-like User-Agent. Dates come from the first eight characters
    (``YYYYMMDD``) of the ``DATE TIME`` column.
    """

    source_type = SourceType.CDEC
    name = "CDEC"

    def default_headers(self) -> Dict[str, str]:
        return {"User-Agent": self.config.cdec_user_agent}

    def build_url(self, location_id: str, start: date, end: date) -> str:
        return build_url(
            f"{self.config.cdec_base_url}/dynamicapp/req/CSVDataServlet",
            {
                "Stations": str(location_id).strip().upper(),
                "SensorNums": STORAGE_SENSOR,
                "dur_code": DAILY,
                "Start": start.isoformat(),
                "End": end.isoformat(),
            },
        )

    def data_url(
        self, location_id: str, data_date: date, data_type: DataType = DataType.STORAGE
    ) -> Optional[str]:
        return self.build_url(location_id, data_date, data_date)

    def fetch(
        self,
        location_id: str,
        start: date,
        end: date,
        data_type: DataType = DataType.STORAGE,
    ) -> List[Observation]:
        url = self.build_url(location_id, start, end)
        response = self._get(url, location_id)
        observations = self.parse(response.text, location_id, start, end)
        logger.debug(f"CDEC {location_id}: {len(observations)} observations")
        return observations

    def parse(
        self,
        text: str,
        location_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[Observation]:
        if not text or not text.strip():
            return []

        try:
            frame = pd.read_csv(
                io.StringIO(text), dtype={"DATE TIME": str, "OBS DATE": str}
            )
        except pd.errors.EmptyDataError:
            return []
        except pd.errors.ParserError as e:
            raise self._malformed(f"Unparseable CSV: {e}", location_id) from e

        if "DATE TIME" not in frame.columns or "VALUE" not in frame.columns:
            if frame.empty or len(frame.columns) <= 1:
                return []
            raise self._malformed(
                f"Missing DATE TIME/VALUE columns, got {list(frame.columns)}", location_id
            )
        if frame.empty:
            return []

        unit = "af"
        if "UNITS" in frame.columns:
            units = frame["UNITS"].dropna()
            if not units.empty:
                unit = units.iloc[0]

        normalized = pd.DataFrame(
            {
                "date": parse_dates(frame["DATE TIME"], fmt="%Y%m%d", width=8),
                "value": pd.to_numeric(frame["VALUE"], errors="coerce"),
                "unit": unit,
            }
        )
        return frame_to_observations(normalized, location_id, "first", start, end)
