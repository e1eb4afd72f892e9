"""
Data models for reservoir observations, locations and statistics.
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class SourceType(str, Enum):
    """Upstream service that publishes a location's storage series."""

    RISE = "rise"
    USACE = "usace"
    USGS = "usgs"
    CDEC = "cdec"
    UNKNOWN = "unknown"


class DataType(str, Enum):
    """What the upstream series measures."""

    STORAGE = "storage"
    ELEVATION = "elevation"

    @classmethod
    def parse(cls, value: Any) -> "DataType":
        if value is None:
            return cls.STORAGE
        text = str(value).strip().lower()
        if text == "elevation":
            return cls.ELEVATION
        return cls.STORAGE


class LookbackMode(str, Enum):
    """How LookbackResolver picks a value inside its window."""

    CURRENT = "current"  # walk back day by day from the target date
    LATEST = "latest"  # max date in [target - window, target] of a merged table


@dataclass(frozen=True)
class Observation:
    """One value for one location on one calendar day."""

    location_id: str
    date: date
    value: float
    unit: str

    def with_value(self, value: float, unit: str) -> "Observation":
        return Observation(self.location_id, self.date, value, unit)


@dataclass
class LocationRecord:
    """A reservoir from the location roster (read-only to the engine)."""

    location_id: str
    display_name: str
    source_type: SourceType = SourceType.UNKNOWN
    data_type: DataType = DataType.STORAGE
    capacity: Optional[float] = None
    active_capacity: Optional[float] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    state: Optional[str] = None
    doi_region: Optional[str] = None
    huc6: Optional[str] = None
    name: Optional[str] = None
    teacup_url: Optional[str] = None

    @property
    def coordinates(self) -> Optional[Tuple[float, float]]:
        if self.latitude is None or self.longitude is None:
            return None
        return (self.latitude, self.longitude)

    @property
    def is_elevation(self) -> bool:
        return self.data_type == DataType.ELEVATION


@dataclass
class ElevationCurve:
    """Ordered (elevation, storage) control points for one location."""

    location_id: str
    elevations: List[float]
    storages: List[float]

    def __post_init__(self) -> None:
        if len(self.elevations) != len(self.storages):
            raise ValueError(
                f"Curve for {self.location_id} has {len(self.elevations)} elevations "
                f"but {len(self.storages)} storages"
            )

    def __len__(self) -> int:
        return len(self.elevations)


@dataclass
class DailyStatistic:
    """Summary of all historical values for one (month, day) at one location."""

    location_id: str
    month: int
    day: int
    min: float
    max: float
    p10: float
    p25: float
    p50: float
    p75: float
    p90: float
    mean: float
    count: int
    unit: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "DailyStatistic":
        """Build from a statistics-table row (dict or pandas Series)."""
        unit = row.get("unit")
        if unit is not None and unit != unit:  # NaN
            unit = None
        return cls(
            location_id=str(row["location_id"]),
            month=int(row["month"]),
            day=int(row["day"]),
            min=float(row["min"]),
            max=float(row["max"]),
            p10=float(row["p10"]),
            p25=float(row["p25"]),
            p50=float(row["p50"]),
            p75=float(row["p75"]),
            p90=float(row["p90"]),
            mean=float(row["mean"]),
            count=int(row["count"]),
            unit=None if unit is None else str(unit),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "location_id": self.location_id,
            "month": self.month,
            "day": self.day,
            "min": self.min,
            "max": self.max,
            "p10": self.p10,
            "p25": self.p25,
            "p50": self.p50,
            "p75": self.p75,
            "p90": self.p90,
            "mean": self.mean,
            "count": self.count,
            "unit": self.unit,
        }


@dataclass
class CurrentValue:
    """Resolved "current" observation plus the URL used to obtain it."""

    location_id: str
    observation: Optional[Observation] = None
    data_url: Optional[str] = None
    errors: List[str] = field(default_factory=list)

    @property
    def has_data(self) -> bool:
        return self.observation is not None

    @property
    def value(self) -> Optional[float]:
        return self.observation.value if self.observation else None

    @property
    def data_date(self) -> Optional[date]:
        return self.observation.date if self.observation else None

    @property
    def unit(self) -> Optional[str]:
        return self.observation.unit if self.observation else None
