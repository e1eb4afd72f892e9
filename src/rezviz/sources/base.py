"""
Base adapter for upstream reservoir time-series services.

Each adapter owns one ``httpx.Client``, throttles consecutive calls to its
upstream, retries transient failures and normalizes rows into
``Observation`` objects. Subclasses only know how to build URLs and parse
their wire format.
"""

import logging
import time
from abc import ABC, abstractmethod
from datetime import date, timedelta
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple
from urllib.parse import quote, urlencode

import httpx
import pandas as pd

from ..config import EngineConfig
from ..exceptions import MalformedResponse, SourceUnavailable, TransientNetworkError
from ..models import DataType, LocationRecord, Observation, SourceType
from ..retry import LinearBackoff, with_retry

logger = logging.getLogger(__name__)

# Raw upstream unit strings mapped onto the controlled vocabulary
UNIT_ALIASES = {
    "af": "af",
    "acre-ft": "af",
    "ac-ft": "af",
    "acre-feet": "af",
    "acre feet": "af",
    "acre-foot": "af",
    "acft": "af",
    "acre ft": "af",
    "ac ft": "af",
    "ac-ft.": "af",
    "ft": "ft",
    "feet": "ft",
    "ft.": "ft",
    "foot": "ft",
    "m": "m",
    "meters": "m",
    "m3": "m3",
    "cubic meters": "m3",
    "kaf": "kaf",
    "taf": "kaf",
    "thousand acre-feet": "kaf",
    "thousand acre-ft": "kaf",
    "thousand acre feet": "kaf",
}
UNKNOWN_UNIT = "unknown"
UNIT_VOCABULARY = frozenset(UNIT_ALIASES.values()) | {UNKNOWN_UNIT}


def normalize_unit(raw: Any, default: str = "af") -> str:
    """Map an upstream unit string to the controlled vocabulary."""
    if raw is None or (isinstance(raw, float) and pd.isna(raw)):
        return default
    text = str(raw).strip().lower()
    if not text or text in ("nan", "none", "null"):
        return default
    unit = UNIT_ALIASES.get(text)
    if unit is None:
        logger.warning(f"Unrecognized unit {raw!r}; recorded as '{UNKNOWN_UNIT}'")
        return UNKNOWN_UNIT
    return unit


def build_url(base: str, params: Dict[str, Any]) -> str:
    """Join a base URL and query parameters, keeping ``/`` and ``:`` literal."""
    query = urlencode(
        [(k, str(v)) for k, v in params.items() if v is not None],
        safe="/:,",
        quote_via=quote,
    )
    return f"{base}?{query}" if query else base


def date_chunks(start: date, end: date, chunk_days: int) -> Iterator[Tuple[date, date]]:
    """Split ``[start, end]`` into consecutive inclusive windows of ``chunk_days``."""
    if chunk_days < 1:
        raise ValueError("chunk_days must be at least 1")
    chunk_start = start
    while chunk_start <= end:
        chunk_end = min(chunk_start + timedelta(days=chunk_days - 1), end)
        yield chunk_start, chunk_end
        chunk_start = chunk_end + timedelta(days=1)


def frame_to_observations(
    frame: pd.DataFrame,
    location_id: str,
    keep: str = "first",
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> List[Observation]:
    """
    Collapse a ``date, value, unit`` frame to one Observation per day.

    Rows with a missing date or value are dropped, rows are stably sorted by
    date, and ``keep`` ("first" or "last") selects which reading of a day
    survives.
    """
    if frame.empty:
        return []

    frame = frame.dropna(subset=["date", "value"])
    if start is not None:
        frame = frame[frame["date"] >= start]
    if end is not None:
        frame = frame[frame["date"] <= end]
    if frame.empty:
        return []

    frame = frame.sort_values("date", kind="mergesort")
    frame = frame.drop_duplicates(subset="date", keep=keep)

    raw_units = frame["unit"].fillna("").astype(str)
    units = {raw: normalize_unit(raw) for raw in raw_units.unique()}
    return [
        Observation(
            location_id=location_id,
            date=row.date,
            value=float(row.value),
            unit=units[raw],
        )
        for row, raw in zip(frame.itertuples(index=False), raw_units)
    ]


def parse_dates(values: pd.Series, fmt: str = "%Y-%m-%d", width: int = 10) -> pd.Series:
    """Parse the leading ``width`` characters of each value as a calendar date."""
    text = values.astype(str).str.strip().str.slice(0, width)
    parsed = pd.to_datetime(text, format=fmt, errors="coerce")
    return parsed.dt.date.where(parsed.notna(), None)


class SourceAdapter(ABC):
    """
    Client for one upstream reservoir time-series service.

    Subclasses implement ``fetch`` and ``data_url``. ``fetch`` returns an
    empty list when the upstream answers with no usable rows and raises
    ``SourceUnavailable`` or ``MalformedResponse`` otherwise.
    """

    source_type: SourceType = SourceType.UNKNOWN
    name: str = "source"

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config or EngineConfig()
        self.timeout = timeout if timeout is not None else self.config.timeout
        self._client = client or httpx.Client(
            timeout=self.timeout,
            headers=self.default_headers(),
            follow_redirects=True,
        )
        self._sleep = sleep
        self._last_call: Optional[float] = None
        self.last_url: Optional[str] = None

    def default_headers(self) -> Dict[str, str]:
        return {"User-Agent": self.config.user_agent}

    @property
    def request_delay(self) -> float:
        """Minimum spacing in seconds between consecutive calls to this upstream."""
        return self.config.request_delay

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> "SourceAdapter":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(timeout={self.timeout})"

    def _throttle(self) -> None:
        if self._last_call is None or self.request_delay <= 0:
            return
        remaining = self.request_delay - (time.monotonic() - self._last_call)
        if remaining > 0:
            self._sleep(remaining)

    def _make_request(self, url: str, location_id: Optional[str] = None) -> httpx.Response:
        """Make a single GET with error handling."""
        self._throttle()
        self.last_url = url
        logger.debug(f"{self.name} GET {url}")

        try:
            response = self._client.get(url)
            response.raise_for_status()
            return response

        except httpx.TimeoutException as e:
            raise TransientNetworkError(
                f"Request timeout after {self.timeout}s",
                source=self.name,
                location_id=location_id,
            ) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status == 429:
                raise TransientNetworkError(
                    "Rate limit exceeded", source=self.name, location_id=location_id
                ) from e
            elif status >= 500:
                raise TransientNetworkError(
                    f"{self.name} service temporarily unavailable (HTTP {status})",
                    source=self.name,
                    location_id=location_id,
                ) from e
            else:
                raise SourceUnavailable(
                    f"HTTP error {status}: {e}",
                    source=self.name,
                    location_id=location_id,
                ) from e
        except httpx.RequestError as e:
            raise TransientNetworkError(
                f"Network error: {e}", source=self.name, location_id=location_id
            ) from e
        finally:
            self._last_call = time.monotonic()

    def _get(self, url: str, location_id: Optional[str] = None) -> httpx.Response:
        """GET with retry and backoff."""
        return with_retry(
            lambda: self._make_request(url, location_id),
            max_attempts=self.config.max_attempts,
            backoff=LinearBackoff(self.config.backoff_step),
            sleep=self._sleep,
            description=f"{self.name} request for {location_id}",
        )

    def _malformed(self, message: str, location_id: Optional[str]) -> MalformedResponse:
        return MalformedResponse(message, source=self.name, location_id=location_id)

    @abstractmethod
    def fetch(
        self,
        location_id: str,
        start: date,
        end: date,
        data_type: DataType = DataType.STORAGE,
    ) -> List[Observation]:
        """
        Fetch observations for ``location_id`` over ``[start, end]`` inclusive.

        Args:
            location_id: Upstream identifier of the location.
            start: First calendar day wanted.
            end: Last calendar day wanted (inclusive).
            data_type: Storage or elevation series.

        Returns:
            One Observation per day with data, sorted by date.
        """

    @abstractmethod
    def data_url(
        self, location_id: str, data_date: date, data_type: DataType = DataType.STORAGE
    ) -> Optional[str]:
        """Single-day URL for auditing a reported value."""

    def fetch_location(
        self, location: LocationRecord, start: date, end: date
    ) -> List[Observation]:
        return self.fetch(location.location_id, start, end, location.data_type)
