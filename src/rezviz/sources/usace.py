"""
USACE Corps Data Access (CDA) reporting timeseries.
"""

import logging
from datetime import date, timedelta
from typing import List, Optional, Tuple
from urllib.parse import quote

import pandas as pd

from ..exceptions import ConfigurationError
from ..models import DataType, Observation, SourceType
from .base import (
    SourceAdapter,
    build_url,
    date_chunks,
    frame_to_observations,
    normalize_unit,
    parse_dates,
)

logger = logging.getLogger(__name__)

COMMENT_MARKER = "#"
UNIT_MARKER = "##unit:"
DEFAULT_UNIT = "ac-ft"


def split_identifier(location_id: str) -> Tuple[str, str]:
    """
    Split a compound ``provider/timeseries_name`` identifier.

    Only the first ``/`` separates; the timeseries name may contain more.
    """
    text = str(location_id)
    provider, sep, ts_name = text.partition("/")
    if not sep or not provider or not ts_name:
        raise ConfigurationError(
            f"USACE identifier '{text}' is not in 'provider/timeseries_name' form"
        )
    return provider, ts_name


class UsaceAdapter(SourceAdapter):
    """
    Adapter for USACE CDA CSV timeseries.

    Responses carry ``##``-prefixed metadata lines (including ``##unit:``)
    followed by ``datetime,value`` lines. Sub-daily readings collapse to the
    last reading of each calendar day. Ranges are requested in chunks to stay
    under response-size limits.
    """

    source_type = SourceType.USACE
    name = "USACE"

    @property
    def request_delay(self) -> float:
        return self.config.usace_request_delay

    def timeseries_url(self, provider: str) -> str:
        return f"{self.config.usace_base_url}/providers/{quote(provider, safe='')}/timeseries"

    def build_url(self, location_id: str, start: date, end: date) -> str:
        provider, ts_name = split_identifier(location_id)
        exclusive_end = end + timedelta(days=1)
        window = build_url(
            "",
            {
                "begin": f"{start.isoformat()}T00:00:00.000Z",
                "end": f"{exclusive_end.isoformat()}T00:00:00.000Z",
                "format": "csv",
            },
        )
        # the timeseries name is fully percent-encoded, "/" included
        return f"{self.timeseries_url(provider)}?name={quote(ts_name, safe='')}&{window[1:]}"

    def data_url(
        self, location_id: str, data_date: date, data_type: DataType = DataType.STORAGE
    ) -> Optional[str]:
        try:
            provider, ts_name = split_identifier(location_id)
        except ConfigurationError:
            return None
        return f"{self.timeseries_url(provider)}?name={quote(ts_name, safe='')}"

    def fetch(
        self,
        location_id: str,
        start: date,
        end: date,
        data_type: DataType = DataType.STORAGE,
    ) -> List[Observation]:
        split_identifier(location_id)

        frames = []
        for chunk_start, chunk_end in date_chunks(start, end, self.config.usace_chunk_days):
            url = self.build_url(location_id, chunk_start, chunk_end)
            response = self._get(url, location_id)
            chunk = self.parse_frame(response.text, location_id)
            logger.debug(
                f"USACE {location_id} {chunk_start}..{chunk_end}: {len(chunk)} readings"
            )
            if not chunk.empty:
                frames.append(chunk)

        if not frames:
            return []
        return frame_to_observations(
            pd.concat(frames, ignore_index=True), location_id, "last", start, end
        )

    def parse(
        self,
        text: str,
        location_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[Observation]:
        return frame_to_observations(
            self.parse_frame(text, location_id), location_id, "last", start, end
        )

    def parse_frame(self, text: str, location_id: str) -> pd.DataFrame:
        """Parse one CDA CSV body into raw ``date, value, unit`` readings in upstream order."""
        empty = pd.DataFrame(columns=["date", "value", "unit"])
        if not text or not text.strip():
            return empty

        lines = text.replace("\r", "").split("\n")

        unit = DEFAULT_UNIT
        for line in lines:
            if line.startswith(UNIT_MARKER):
                unit = line[len(UNIT_MARKER):].strip() or DEFAULT_UNIT
                break

        data_lines = [
            line for line in lines if line.strip() and not line.startswith(COMMENT_MARKER)
        ]
        if not data_lines:
            return empty

        stamps, values = [], []
        for line in data_lines:
            if "," not in line:
                continue
            stamps.append(line.split(",", 1)[0].strip())
            values.append(line.rsplit(",", 1)[1].strip())

        if not stamps:
            raise self._malformed(
                f"No 'datetime,value' lines among {len(data_lines)} data lines", location_id
            )

        return pd.DataFrame(
            {
                "date": parse_dates(pd.Series(stamps)),
                "value": pd.to_numeric(pd.Series(values), errors="coerce"),
                "unit": normalize_unit(unit),
            }
        )
