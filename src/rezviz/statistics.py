"""
Day-of-year statistics over the historical Baseline.

Observations are grouped by the calendar ``(month, day)`` of their date, so
every Jan 1 across all baseline years forms one group and Feb 29 forms its
own group populated only by leap years. A location yields at most 366 rows.

Percentiles use linear interpolation between order statistics (Hyndman & Fan
type 7): for ``n`` sorted values and probability ``p`` the position is
``h = (n - 1) * p`` and the result interpolates between ``x[floor(h)]`` and
``x[ceil(h)]``. A single-value group returns that value for every percentile.
"""

import logging
from typing import Dict, Iterable, List, Optional

import pandas as pd

from .models import DailyStatistic, Observation
from .store import STATISTIC_COLUMNS, ObservationStore, StatisticsTable, observations_frame

logger = logging.getLogger(__name__)

PERCENTILES: Dict[str, float] = {
    "p10": 0.10,
    "p25": 0.25,
    "p50": 0.50,
    "p75": 0.75,
    "p90": 0.90,
}
INTERPOLATION = "linear"


def _location_unit(units: pd.Series) -> Optional[str]:
    units = units.dropna()
    return str(units.iloc[0]) if not units.empty else None


class StatisticsEngine:
    """
    Single entry point for computing DailyStatistic rows.

    Used identically by initial setup, backfill and manual-correction
    ingestion.
    """

    def __init__(self, interpolation: str = INTERPOLATION):
        self.interpolation = interpolation

    def compute(
        self, location_id: str, observations: Iterable[Observation]
    ) -> List[DailyStatistic]:
        """Compute the (month, day) table for one location's observations."""
        frame = observations_frame(observations)
        frame["location_id"] = str(location_id)
        table = self.compute_frame(frame)
        return [DailyStatistic.from_row(row) for row in table.to_dict("records")]

    def compute_frame(self, frame: pd.DataFrame) -> pd.DataFrame:
        """
        Compute statistics for every location in a Baseline-shaped frame.

        Args:
            frame: Columns ``location_id, date, value, unit``.

        Returns:
            DataFrame with ``STATISTIC_COLUMNS``, sorted by location, month
            and day.
        """
        data = frame.dropna(subset=["date", "value"])
        if data.empty:
            return pd.DataFrame(columns=STATISTIC_COLUMNS)

        dates = pd.to_datetime(data["date"])
        data = data.assign(
            location_id=data["location_id"].astype(str),
            month=dates.dt.month.values,
            day=dates.dt.day.values,
            value=data["value"].astype(float),
        )

        grouped = data.groupby(["location_id", "month", "day"], sort=True)["value"]
        table = grouped.agg(["min", "max", "mean", "count"])
        for column, q in PERCENTILES.items():
            table[column] = grouped.quantile(q, interpolation=self.interpolation)
        table = table.reset_index()

        units = data.groupby("location_id")["unit"].agg(_location_unit)
        table["unit"] = table["location_id"].map(units)
        table["count"] = table["count"].astype(int)

        return table[STATISTIC_COLUMNS]

    def compute_store(
        self, store: ObservationStore, location_ids: Optional[Iterable[str]] = None
    ) -> pd.DataFrame:
        """Compute statistics from the Baseline, optionally for a subset of locations."""
        frame = store.to_frame()
        if location_ids is not None:
            ids = {str(i) for i in location_ids}
            frame = frame[frame["location_id"].isin(ids)]
        return self.compute_frame(frame)

    def recompute(
        self,
        store: ObservationStore,
        table: StatisticsTable,
        location_ids: Iterable[str],
    ) -> int:
        """
        Recompute statistics for ``location_ids`` and replace their rows in ``table``.

        Returns:
            Number of statistic rows written.
        """
        ids = sorted({str(i) for i in location_ids})
        if not ids:
            return 0
        rows = self.compute_store(store, ids)
        table.replace_locations(ids, rows)
        logger.info(f"Recomputed statistics for {len(ids)} location(s): {len(rows)} rows")
        return len(rows)
