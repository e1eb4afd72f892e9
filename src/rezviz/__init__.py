"""
Reservoir storage reconciliation and historical-percentile engine.

Fetch current storage from RISE, USACE, USGS and CDEC, compare it with
30-water-year day-of-year statistics and write daily report tables.
"""

try:
    from importlib import metadata

    __version__ = metadata.version(__name__)
except Exception:
    __version__ = "unknown"

from .backfill import (
    BackfillCoordinator,
    BackfillResult,
    ingest_manual_csv,
    ingest_manual_directory,
    read_manual_csv,
)
from .config import EngineConfig
from .coverage import CoverageFilter, count_water_years, water_year
from .curves import ElevationConverter
from .exceptions import (
    ConfigurationError,
    MalformedResponse,
    MalformedUpstreamResponse,
    MissingCurve,
    RezvizError,
    SourceError,
    SourceUnavailable,
    StoreError,
    TransientNetworkError,
)
from .lookback import LookbackResolver
from .models import (
    CurrentValue,
    DailyStatistic,
    DataType,
    ElevationCurve,
    LocationRecord,
    LookbackMode,
    Observation,
    SourceType,
)
from .pipeline import (
    ArchiveBuilder,
    ArchiveResult,
    CurrentValueFetcher,
    DailyReportRun,
    ReportSink,
)
from .report import (
    REPORT_COLUMNS,
    ReportAssembler,
    RunSummary,
    safe_ratio,
    write_report,
)
from .retry import FixedBackoff, LinearBackoff, retrying, with_retry
from .roster import classify_source, load_roster
from .sources import (
    AdapterRegistry,
    CdecAdapter,
    RiseAdapter,
    SourceAdapter,
    UsaceAdapter,
    UsgsAdapter,
    get_adapter,
)
from .statistics import StatisticsEngine
from .store import ObservationStore, StatisticsTable

__all__ = [
    # Configuration
    "EngineConfig",
    # Models
    "CurrentValue",
    "DailyStatistic",
    "DataType",
    "ElevationCurve",
    "LocationRecord",
    "LookbackMode",
    "Observation",
    "SourceType",
    # Sources
    "AdapterRegistry",
    "CdecAdapter",
    "RiseAdapter",
    "SourceAdapter",
    "UsaceAdapter",
    "UsgsAdapter",
    "get_adapter",
    "classify_source",
    "load_roster",
    # Retry
    "FixedBackoff",
    "LinearBackoff",
    "retrying",
    "with_retry",
    # Core engine
    "ElevationConverter",
    "ObservationStore",
    "StatisticsTable",
    "StatisticsEngine",
    "LookbackResolver",
    "CoverageFilter",
    "count_water_years",
    "water_year",
    "BackfillCoordinator",
    "BackfillResult",
    "ingest_manual_csv",
    "ingest_manual_directory",
    "read_manual_csv",
    "REPORT_COLUMNS",
    "ReportAssembler",
    "RunSummary",
    "safe_ratio",
    "write_report",
    # Runs
    "ArchiveBuilder",
    "ArchiveResult",
    "CurrentValueFetcher",
    "DailyReportRun",
    "ReportSink",
    # Exceptions
    "RezvizError",
    "SourceError",
    "SourceUnavailable",
    "TransientNetworkError",
    "MalformedResponse",
    "MalformedUpstreamResponse",
    "ConfigurationError",
    "MissingCurve",
    "StoreError",
]
