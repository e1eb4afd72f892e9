"""
Most-recent-valid-value resolution within a lookback window.
"""

import logging
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional, Union

import pandas as pd

from .models import LookbackMode, Observation
from .store import ObservationStore, normalize_observations, observations_frame

logger = logging.getLogger(__name__)


class LookbackResolver:
    """
    Resolve the value in effect for a location on a target date.

    Two modes are supported:

    - ``LookbackMode.CURRENT`` walks backward one day at a time from the
      target date, at most ``window_days`` days, and returns the first day
      with an observation. Used for the daily report.
    - ``LookbackMode.LATEST`` selects the observation with the maximum date
      in ``[target_date - window_days, target_date]`` from the merged table.
      Used for archival reconstruction.

    The returned Observation carries the date actually used, which may be
    earlier than the target date. ``None`` means nothing was found in the
    window; it is not an error.

    Example:
        >>> obs = [Observation("L1", date(2025, 1, 10), 5.0, "af")]
        >>> LookbackResolver(obs, window_days=7).resolve("L1", date(2025, 1, 15)).date
        datetime.date(2025, 1, 10)
    """

    def __init__(
        self,
        observations: Union[Iterable[Observation], pd.DataFrame, ObservationStore, None] = None,
        window_days: int = 7,
    ):
        if window_days < 0:
            raise ValueError("window_days must be non-negative")
        self.window_days = window_days

        if isinstance(observations, ObservationStore):
            frame = observations.to_frame()
        elif isinstance(observations, pd.DataFrame):
            frame = normalize_observations(observations)
        else:
            frame = normalize_observations(observations_frame(observations or []))
        self._frame = frame
        self._by_location: Dict[str, Dict[date, Observation]] = {}

    def _series(self, location_id: str) -> Dict[date, Observation]:
        location_id = str(location_id)
        if location_id not in self._by_location:
            rows = self._frame[self._frame["location_id"] == location_id]
            series: Dict[date, Observation] = {}
            for row in rows.itertuples(index=False):
                # first row per day wins
                series.setdefault(
                    row.date, Observation(location_id, row.date, float(row.value), row.unit)
                )
            self._by_location[location_id] = series
        return self._by_location[location_id]

    def resolve(
        self,
        location_id: str,
        target_date: date,
        window_days: Optional[int] = None,
        mode: LookbackMode = LookbackMode.CURRENT,
    ) -> Optional[Observation]:
        window = self.window_days if window_days is None else window_days
        if window < 0:
            raise ValueError("window_days must be non-negative")
        if LookbackMode(mode) == LookbackMode.CURRENT:
            return self._walk_back(location_id, target_date, window)
        return self._latest(location_id, target_date, window)

    def _walk_back(self, location_id: str, target_date: date, window: int) -> Optional[Observation]:
        series = self._series(location_id)
        for offset in range(window + 1):
            found = series.get(target_date - timedelta(days=offset))
            if found is not None:
                return found
        return None

    def _latest(self, location_id: str, target_date: date, window: int) -> Optional[Observation]:
        earliest = target_date - timedelta(days=window)
        candidates = [
            day for day in self._series(location_id) if earliest <= day <= target_date
        ]
        if not candidates:
            return None
        return self._series(location_id)[max(candidates)]

    def resolve_many(
        self,
        location_ids: Iterable[str],
        target_date: date,
        window_days: Optional[int] = None,
        mode: LookbackMode = LookbackMode.LATEST,
    ) -> Dict[str, Optional[Observation]]:
        """Resolve each location independently for the same target date."""
        return {
            str(loc): self.resolve(loc, target_date, window_days, mode)
            for loc in location_ids
        }

    @property
    def location_ids(self) -> List[str]:
        return sorted(self._frame["location_id"].unique())
