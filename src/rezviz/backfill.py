"""
Automatic historical backfill for locations new to the Baseline, plus
ingestion of manually supplied correction files.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Union

import pandas as pd

from .config import EngineConfig
from .coverage import CoverageFilter
from .curves import ElevationConverter
from .exceptions import ConfigurationError, SourceError
from .models import LocationRecord, Observation, SourceType
from .report import BACKFILL_COMMENT, REPORT_COLUMNS, ReportAssembler
from .sources import AdapterRegistry
from .sources.base import frame_to_observations, parse_dates
from .statistics import StatisticsEngine
from .store import ObservationStore, StatisticsTable

logger = logging.getLogger(__name__)


@dataclass
class BackfillResult:
    """Outcome of one backfill pass."""

    new_locations: List[str] = field(default_factory=list)
    backfilled: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    no_data: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    observations_added: int = 0
    statistics_rows: int = 0
    records: pd.DataFrame = field(default_factory=lambda: pd.DataFrame(columns=REPORT_COLUMNS))

    @property
    def changed(self) -> bool:
        """True when the Baseline or Statistics table was modified."""
        return bool(self.backfilled)


class BackfillCoordinator:
    """
    Detect roster locations missing from the Baseline and fetch their full
    baseline-window history.

    Each pass:

    1. diffs the roster against the Baseline's location ids,
    2. fetches each new location over the baseline window through its
       source adapter, converting elevation series to storage,
    3. merges the result into the Baseline (first-seen wins),
    4. recomputes statistics for the affected locations only,
    5. emits backfill report rows tagged ``"backfill"``.

    A failure for one location is logged and skipped; the location stays
    absent from the Baseline and is picked up again on the next pass.
    Locations with an unrecognized source are skipped.
    """

    def __init__(
        self,
        registry: AdapterRegistry,
        store: ObservationStore,
        statistics: StatisticsTable,
        converter: Optional[ElevationConverter] = None,
        config: Optional[EngineConfig] = None,
        engine: Optional[StatisticsEngine] = None,
        coverage: Optional[CoverageFilter] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config or EngineConfig()
        self.registry = registry
        self.store = store
        self.statistics = statistics
        self.converter = converter or ElevationConverter()
        self.engine = engine or StatisticsEngine()
        self.coverage = coverage or CoverageFilter(self.config.min_water_years)
        self._sleep = sleep

    def find_new_locations(self, roster: Iterable[LocationRecord]) -> List[LocationRecord]:
        """Roster entries with no rows in the Baseline, in roster order."""
        known = self.store.location_ids
        return [loc for loc in roster if loc.location_id not in known]

    def fetch_history(self, location: LocationRecord) -> List[Observation]:
        """
        Fetch one location's baseline-window history as storage observations.

        Raises:
            SourceError: The upstream failed after retries or sent a bad body.
        """
        adapter = self.registry.for_location(location)
        start, end = self.config.baseline_start, self.config.baseline_end
        observations = adapter.fetch(location.location_id, start, end, location.data_type)
        if location.is_elevation and observations:
            logger.info(
                f"  Converting {len(observations)} elevation readings to storage"
            )
            observations = self.converter.convert_observations(
                location.location_id, observations
            )
        return [obs for obs in observations if start <= obs.date <= end]

    def run(self, roster: Iterable[LocationRecord], run_date: Optional[date] = None) -> BackfillResult:
        roster = list(roster)
        new_locations = self.find_new_locations(roster)
        if not new_locations:
            logger.info("No new locations require backfill")
            return BackfillResult()

        logger.info(f"Detected {len(new_locations)} new location(s) requiring backfill")
        for loc in new_locations:
            logger.info(f"  - {loc.display_name} (ID: {loc.location_id})")
        return self.backfill_locations(new_locations, run_date)

    def backfill_locations(
        self, locations: Iterable[LocationRecord], run_date: Optional[date] = None
    ) -> BackfillResult:
        """Fetch, merge and recompute for ``locations`` regardless of Baseline state."""
        locations = list(locations)
        result = BackfillResult(new_locations=[loc.location_id for loc in locations])
        fetched: Dict[str, List[Observation]] = {}

        for i, location in enumerate(locations, start=1):
            source = SourceType(location.source_type)
            suffix = " (elevation->storage)" if location.is_elevation else ""
            logger.info(
                f"[{i}/{len(locations)}] Backfilling {location.display_name} "
                f"(ID: {location.location_id}) [{source.value}]{suffix}"
            )
            if source == SourceType.UNKNOWN:
                logger.warning(f"  Unknown source for {location.location_id}; skipping backfill")
                result.skipped.append(location.location_id)
                continue
            if location.is_elevation and location.location_id not in self.converter:
                logger.error(
                    f"  No elevation-storage curve for {location.location_id}; skipping backfill"
                )
                result.failed.append(location.location_id)
                continue

            try:
                observations = self.fetch_history(location)
            except (SourceError, ConfigurationError) as e:
                logger.error(f"  Backfill failed for {location.location_id}: {e}")
                result.failed.append(location.location_id)
                observations = None

            if observations is not None:
                if observations:
                    logger.info(f"  Retrieved {len(observations)} historical observations")
                    fetched[location.location_id] = observations
                else:
                    logger.info("  No historical data retrieved")
                    result.no_data.append(location.location_id)

            if i < len(locations) and self.config.backfill_delay > 0:
                self._sleep(self.config.backfill_delay)

        for location_id, observations in fetched.items():
            result.observations_added += self.store.merge(observations)
        result.backfilled = list(fetched)

        if result.backfilled:
            result.statistics_rows = self.engine.recompute(
                self.store, self.statistics, result.backfilled
            )
            by_id = {loc.location_id: loc for loc in locations}
            result.records = self.backfill_records(
                [by_id[i] for i in result.backfilled], run_date
            )
            logger.info(
                f"Backfill added {result.observations_added} observations and "
                f"{result.statistics_rows} statistic rows for {len(result.backfilled)} location(s)"
            )
        if result.failed:
            logger.warning(
                f"Backfill failed for {len(result.failed)} location(s): {', '.join(result.failed)}"
            )
        return result

    def backfill_records(
        self, locations: Iterable[LocationRecord], run_date: Optional[date] = None
    ) -> pd.DataFrame:
        """One report row per Baseline observation of ``locations``."""
        locations = list(locations)
        assembler = ReportAssembler(self.config.stats_period, queried_on=run_date)
        admitted = self.coverage.admitted_locations(
            [loc.location_id for loc in locations], self.store
        )
        rows = []
        for location in locations:
            admit = location.location_id in admitted
            for obs in self.store.observations_for(location.location_id):
                stat = (
                    self.statistics.lookup(location.location_id, obs.date.month, obs.date.day)
                    if admit
                    else None
                )
                rows.append(assembler.assemble(location, obs, stat, comment=BACKFILL_COMMENT))
        return pd.DataFrame(rows, columns=REPORT_COLUMNS)


def read_manual_csv(
    path: Union[str, Path], location_id: str, config: Optional[EngineConfig] = None
) -> List[Observation]:
    """
    Read a ``datetime,value,unit`` correction file for one location.

    Rows outside the baseline window or without a value are dropped; the
    first row of each day is kept after sorting by date.
    """
    config = config or EngineConfig()
    path = Path(path)
    try:
        frame = pd.read_csv(path)
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"Could not read manual file {path}: {e}") from e

    columns = {str(c).strip().lower(): c for c in frame.columns}
    date_col = columns.get("datetime") or columns.get("date")
    if date_col is None or "value" not in columns:
        raise ConfigurationError(f"{path} needs 'datetime' and 'value' columns")

    normalized = pd.DataFrame(
        {
            "date": parse_dates(frame[date_col]),
            "value": pd.to_numeric(frame[columns["value"]], errors="coerce"),
            "unit": frame[columns["unit"]] if "unit" in columns else "af",
        }
    )
    observations = frame_to_observations(
        normalized, str(location_id), "first", config.baseline_start, config.baseline_end
    )
    logger.info(
        f"Read {len(frame)} rows from {path.name}; {len(observations)} daily values in window"
    )
    return observations


def ingest_manual_csv(
    path: Union[str, Path],
    location_id: str,
    store: ObservationStore,
    statistics: StatisticsTable,
    config: Optional[EngineConfig] = None,
    engine: Optional[StatisticsEngine] = None,
) -> int:
    """
    Replace a location's Baseline slice with a manual correction file and
    recompute its statistics.

    Returns:
        Number of observations now stored for the location. An empty file
        leaves the store untouched and returns 0.
    """
    observations = read_manual_csv(path, location_id, config)
    if not observations:
        logger.warning(f"No usable rows in {path}; baseline for {location_id} unchanged")
        return 0
    count = store.replace_location(str(location_id), observations)
    (engine or StatisticsEngine()).recompute(store, statistics, [str(location_id)])
    return count


def ingest_manual_directory(
    directory: Union[str, Path],
    location_ids: Iterable[str],
    store: ObservationStore,
    statistics: StatisticsTable,
    config: Optional[EngineConfig] = None,
    engine: Optional[StatisticsEngine] = None,
) -> Dict[str, int]:
    """Ingest ``<location_id>.csv`` files from ``directory``; missing files are skipped."""
    directory = Path(directory)
    counts: Dict[str, int] = {}
    for location_id in location_ids:
        path = directory / f"{location_id}.csv"
        if not path.exists():
            logger.info(f"Skipping {location_id}: {path} not found")
            continue
        counts[str(location_id)] = ingest_manual_csv(
            path, location_id, store, statistics, config, engine
        )
    return counts
