"""
Daily report assembly.

One output row per roster location, whether or not a current value or
historical statistics exist. Missing fields are left empty so consumers get a
fixed, predictable row count.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import pandas as pd

from .exceptions import StoreError
from .models import CurrentValue, DailyStatistic, LocationRecord, Observation

logger = logging.getLogger(__name__)

REPORT_COLUMNS = [
    "SiteName",
    "Lat",
    "Lon",
    "State",
    "DoiRegion",
    "Huc6",
    "DataUnits",
    "DataValue",
    "DataDate",
    "DateQueried",
    "DataDateMax",
    "DataDateP90",
    "DataDateP75",
    "DataDateP50",
    "DataDateP25",
    "DataDateP10",
    "DataDateMin",
    "DataDateAvg",
    "DataValuePctMdn",
    "DataValuePctAvg",
    "StatsPeriod",
    "MaxCapacity",
    "ActiveCapacity",
    "PctFull",
    "TeacupUrl",
    "DataUrl",
    "Comment",
]

# Report column -> DailyStatistic attribute
STATISTIC_FIELDS = {
    "DataDateMax": "max",
    "DataDateP90": "p90",
    "DataDateP75": "p75",
    "DataDateP50": "p50",
    "DataDateP25": "p25",
    "DataDateP10": "p10",
    "DataDateMin": "min",
    "DataDateAvg": "mean",
}

BACKFILL_COMMENT = "backfill"
DATE_FORMAT = "%m/%d/%Y"


def safe_ratio(numerator: Optional[float], denominator: Optional[float]) -> Optional[float]:
    """
    ``numerator / denominator``, or None if either is missing or the
    denominator is zero.

    Example:
        >>> safe_ratio(50.0, 200.0)
        0.25
        >>> safe_ratio(50.0, 0.0) is None
        True
    """
    if numerator is None or denominator is None:
        return None
    if _is_nan(numerator) or _is_nan(denominator) or denominator == 0:
        return None
    result = numerator / denominator
    if math.isinf(result):
        return None
    return result


def _is_nan(value: Any) -> bool:
    return isinstance(value, float) and math.isnan(value)


def format_date(day: Optional[date]) -> Optional[str]:
    return day.strftime(DATE_FORMAT) if day is not None else None


def report_filename(target_date: date) -> str:
    return f"droughtData{target_date:%Y%m%d}.csv"


def backfill_filename(run_date: date) -> str:
    return f"backfill_{run_date:%Y%m%d}.csv"


class ReportAssembler:
    """
    Join location metadata, the resolved current value and the day's
    historical statistic into report rows.

    Args:
        stats_period: Label written to ``StatsPeriod``.
        queried_on: Date written to ``DateQueried``; defaults to today.
    """

    def __init__(self, stats_period: str, queried_on: Optional[date] = None):
        self.stats_period = stats_period
        self.queried_on = queried_on

    def assemble(
        self,
        location: LocationRecord,
        current: Optional[Union[Observation, CurrentValue]] = None,
        statistic: Optional[DailyStatistic] = None,
        data_url: Optional[str] = None,
        comment: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Build one output row; never raises on missing inputs."""
        if isinstance(current, CurrentValue):
            data_url = data_url or current.data_url
            current = current.observation

        value = current.value if current is not None else None
        unit = current.unit if current is not None else None
        if unit is None and statistic is not None:
            unit = statistic.unit

        queried_on = self.queried_on or date.today()
        row: Dict[str, Any] = {
            "SiteName": location.display_name,
            "Lat": location.latitude,
            "Lon": location.longitude,
            "State": location.state,
            "DoiRegion": location.doi_region,
            "Huc6": location.huc6,
            "DataUnits": unit,
            "DataValue": value,
            "DataDate": format_date(current.date) if current is not None else None,
            "DateQueried": format_date(queried_on),
        }
        for column, attr in STATISTIC_FIELDS.items():
            row[column] = getattr(statistic, attr) if statistic is not None else None

        row["DataValuePctMdn"] = safe_ratio(value, statistic.p50 if statistic else None)
        row["DataValuePctAvg"] = safe_ratio(value, statistic.mean if statistic else None)
        row["StatsPeriod"] = self.stats_period
        row["MaxCapacity"] = location.capacity
        row["ActiveCapacity"] = location.active_capacity
        row["PctFull"] = safe_ratio(value, location.capacity)
        row["TeacupUrl"] = location.teacup_url
        row["DataUrl"] = data_url
        row["Comment"] = comment
        return row

    def assemble_report(
        self,
        locations: Iterable[LocationRecord],
        current_values: Dict[str, CurrentValue],
        statistics: Dict[str, DailyStatistic],
    ) -> pd.DataFrame:
        """
        One row per location, in roster order.

        Args:
            locations: The roster.
            current_values: Resolved values keyed by location_id.
            statistics: Admitted statistics for the report day keyed by
                location_id; locations absent here get empty statistic fields.
        """
        rows = []
        for location in locations:
            current = current_values.get(location.location_id)
            rows.append(
                self.assemble(location, current, statistics.get(location.location_id))
            )
        return pd.DataFrame(rows, columns=REPORT_COLUMNS)


def write_report(frame: pd.DataFrame, path: Union[str, Path]) -> Path:
    """Write a report CSV with missing values as empty strings."""
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        frame.to_csv(path, index=False, na_rep="", columns=REPORT_COLUMNS)
    except OSError as e:
        raise StoreError(f"Could not write report {path}: {e}") from e
    logger.info(f"Report written to {path} ({len(frame)} rows)")
    return path


@dataclass
class RunSummary:
    """Counts describing one daily run."""

    target_date: date
    total: int = 0
    with_data: int = 0
    with_statistics: int = 0
    by_source: Dict[str, int] = field(default_factory=dict)
    failed_locations: List[str] = field(default_factory=list)
    backfilled_locations: List[str] = field(default_factory=list)
    report_path: Optional[Path] = None
    backfill_path: Optional[Path] = None
    uploaded: Dict[str, bool] = field(default_factory=dict)
    failure_rate_threshold: float = 0.2

    @property
    def missing_data(self) -> int:
        return self.total - self.with_data

    @property
    def without_statistics(self) -> int:
        return self.total - self.with_statistics

    @property
    def missing_rate(self) -> float:
        return self.missing_data / self.total if self.total else 0.0

    @property
    def threshold_exceeded(self) -> bool:
        return self.total > 0 and self.missing_rate > self.failure_rate_threshold

    @classmethod
    def from_report(
        cls, target_date: date, report: pd.DataFrame, **kwargs: Any
    ) -> "RunSummary":
        return cls(
            target_date=target_date,
            total=len(report),
            with_data=int(report["DataValue"].notna().sum()),
            with_statistics=int(report["DataDateP50"].notna().sum()),
            **kwargs,
        )

    def log(self) -> None:
        logger.info(f"Total locations: {self.total}")
        logger.info(f"  With data: {self.with_data}")
        logger.info(f"  Missing data: {self.missing_data}")
        logger.info(f"  With historical stats: {self.with_statistics}")
        logger.info(f"  Without historical stats: {self.without_statistics}")
        for source, count in self.by_source.items():
            logger.info(f"  {source}: {count}")
        if self.threshold_exceeded:
            logger.warning(
                f"{self.missing_data} of {self.total} locations "
                f"({self.missing_rate:.0%}) have no current data, above the "
                f"{self.failure_rate_threshold:.0%} threshold"
            )
