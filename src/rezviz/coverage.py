"""
Coverage filter: only locations with enough distinct water years in the
Baseline are reported with historical statistics.
"""

import logging
from datetime import date
from typing import Dict, Iterable, List, Set

import pandas as pd

from .store import ObservationStore

logger = logging.getLogger(__name__)


def water_year(day: date) -> int:
    """
    Water year of a date (Oct 1 of year Y-1 through Sep 30 of year Y is Y).

    Example:
        >>> water_year(date(1990, 10, 1))
        1991
        >>> water_year(date(1991, 9, 30))
        1991
    """
    return day.year + 1 if day.month >= 10 else day.year


def water_years(dates: Iterable[date]) -> Set[int]:
    return {water_year(d) for d in dates}


def count_water_years(dates: Iterable[date]) -> int:
    return len(water_years(dates))


class CoverageFilter:
    """
    Admit locations whose Baseline spans at least ``min_water_years`` distinct
    water years.

    Rejected locations stay in the report for current values; only their
    statistic fields are withheld.
    """

    def __init__(self, min_water_years: int = 20):
        self.min_water_years = min_water_years

    def coverage(self, baseline: ObservationStore) -> Dict[str, int]:
        """Distinct water-year count for every location in the Baseline."""
        frame = baseline.to_frame()
        if frame.empty:
            return {}
        dates = pd.to_datetime(frame["date"])
        wy = dates.dt.year + (dates.dt.month >= 10).astype(int)
        counts = pd.DataFrame({"location_id": frame["location_id"].values, "wy": wy.values})
        return {
            str(loc): int(n)
            for loc, n in counts.groupby("location_id")["wy"].nunique().items()
        }

    def admit(self, location_id: str, baseline: ObservationStore) -> bool:
        dates = baseline.frame_for(location_id)["date"]
        return count_water_years(dates) >= self.min_water_years

    def admitted_locations(
        self, location_ids: Iterable[str], baseline: ObservationStore
    ) -> Set[str]:
        """Subset of ``location_ids`` that passes the filter; rejections are logged."""
        counts = self.coverage(baseline)
        admitted: Set[str] = set()
        rejected: List[str] = []
        for location_id in location_ids:
            location_id = str(location_id)
            if counts.get(location_id, 0) >= self.min_water_years:
                admitted.add(location_id)
            elif location_id in counts:
                rejected.append(location_id)
                logger.info(
                    f"Excluding statistics for {location_id}: "
                    f"{counts[location_id]} water years < {self.min_water_years}"
                )
        if rejected:
            logger.info(
                f"{len(rejected)} location(s) below the {self.min_water_years}-water-year minimum"
            )
        return admitted
