"""
Daily report run and archival reconstruction.

``DailyReportRun`` wires the components together for one target date:
load the Baseline and Statistics, backfill new locations, apply the
coverage filter, resolve each location's current value, then assemble and
write the report. ``ArchiveBuilder`` rebuilds reports for a date range from
the Baseline plus one bulk fetch of the post-baseline period, without
per-day API calls.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import date, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Union

import pandas as pd

from .backfill import BackfillCoordinator, BackfillResult
from .config import EngineConfig
from .coverage import CoverageFilter
from .curves import ElevationConverter
from .exceptions import ConfigurationError, SourceError
from .lookback import LookbackResolver
from .models import (
    CurrentValue,
    DailyStatistic,
    LocationRecord,
    LookbackMode,
    Observation,
    SourceType,
)
from .report import (
    ReportAssembler,
    RunSummary,
    backfill_filename,
    report_filename,
    safe_ratio,
    write_report,
)
from .roster import load_roster, source_breakdown
from .sources import AdapterRegistry
from .statistics import StatisticsEngine
from .store import ObservationStore, StatisticsTable, write_table

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

BASELINE_FILENAME = "historical_baseline.parquet"
STATISTICS_FILENAME = "historical_statistics.parquet"

ARCHIVE_COLUMNS = [
    "report_date",
    "location_id",
    "name",
    "state",
    "doi_region",
    "huc6",
    "latitude",
    "longitude",
    "capacity",
    "active_capacity",
    "data_date",
    "data_value",
    "data_unit",
    "hist_min",
    "hist_max",
    "hist_p10",
    "hist_p25",
    "hist_p50",
    "hist_p75",
    "hist_p90",
    "hist_mean",
    "pct_median",
    "pct_average",
    "pct_full",
]


class ReportSink(Protocol):
    """Destination for finished files (e.g. an open-data repository)."""

    def upload(self, path: Path) -> bool:
        ...


class CurrentValueFetcher:
    """
    Fetch and resolve each location's current value for a target date.

    The lookback window ``[target - lookback_days, target]`` is fetched in one
    call and resolved by walking back from the target date. Elevation
    locations are converted to storage; without a curve the value is dropped.
    """

    def __init__(
        self,
        registry: AdapterRegistry,
        converter: Optional[ElevationConverter] = None,
        config: Optional[EngineConfig] = None,
    ):
        self.config = config or EngineConfig()
        self.registry = registry
        self.converter = converter or ElevationConverter()

    def fetch_current(self, location: LocationRecord, target_date: date) -> CurrentValue:
        adapter = self.registry.for_location(location)
        start = target_date - timedelta(days=self.config.lookback_days)
        result = CurrentValue(location_id=location.location_id)
        # adapters are shared across locations of one source
        adapter.last_url = None

        try:
            observations = adapter.fetch(
                location.location_id, start, target_date, location.data_type
            )
        except (SourceError, ConfigurationError) as e:
            logger.warning(f"  {location.location_id}: {e}")
            result.errors.append(str(e))
            result.data_url = adapter.last_url
            return result

        result.data_url = adapter.last_url
        if location.is_elevation:
            observations = self.converter.convert_observations(
                location.location_id, observations
            )

        resolver = LookbackResolver(observations, self.config.lookback_days)
        result.observation = resolver.resolve(
            location.location_id, target_date, mode=LookbackMode.CURRENT
        )
        if result.data_url is None and result.observation is not None:
            result.data_url = adapter.data_url(
                location.location_id, result.observation.date, location.data_type
            )
        return result

    def fetch_all(
        self, locations: Iterable[LocationRecord], target_date: date
    ) -> Dict[str, CurrentValue]:
        """Sequentially resolve every location; adapters throttle their own upstream."""
        locations = list(locations)
        results: Dict[str, CurrentValue] = {}
        for i, location in enumerate(locations, start=1):
            suffix = " (elevation->storage)" if location.is_elevation else ""
            logger.info(
                f"[{i}/{len(locations)}] {location.display_name} "
                f"(ID: {location.location_id}) [{SourceType(location.source_type).value}]{suffix}"
            )
            current = self.fetch_current(location, target_date)
            if current.has_data:
                logger.info(
                    f"  Value: {current.value:,.0f} {current.unit} (date: {current.data_date})"
                )
            else:
                logger.info("  No data found")
            results[location.location_id] = current
        return results


class DailyReportRun:
    """
    One end-to-end daily report.

    Example:
        >>> run = DailyReportRun.from_paths(
        ...     roster_path="config/locations.geojson",
        ...     curves_path="config/elevation_storage_curves.csv",
        ...     output_dir="output",
        ...     report_dir="hydroshare",
        ... )  # doctest: +SKIP
        >>> summary = run.run()  # doctest: +SKIP
    """

    def __init__(
        self,
        roster: List[LocationRecord],
        store: ObservationStore,
        statistics: StatisticsTable,
        report_dir: PathLike,
        converter: Optional[ElevationConverter] = None,
        config: Optional[EngineConfig] = None,
        registry: Optional[AdapterRegistry] = None,
        backfill_registry: Optional[AdapterRegistry] = None,
        sink: Optional[ReportSink] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config or EngineConfig()
        self.roster = roster
        self.store = store
        self.statistics = statistics
        self.report_dir = Path(report_dir)
        self.converter = converter or ElevationConverter()
        self.registry = registry or AdapterRegistry(self.config)
        self.backfill_registry = backfill_registry or AdapterRegistry(
            self.config, timeout=self.config.backfill_timeout
        )
        self.sink = sink
        self.coverage = CoverageFilter(self.config.min_water_years)
        self.engine = StatisticsEngine()
        self._sleep = sleep

    @classmethod
    def from_paths(
        cls,
        roster_path: PathLike,
        output_dir: PathLike,
        report_dir: PathLike,
        curves_path: Optional[PathLike] = None,
        config: Optional[EngineConfig] = None,
        sink: Optional[ReportSink] = None,
    ) -> "DailyReportRun":
        """Load the roster, curves and persisted datasets from disk."""
        output_dir = Path(output_dir)
        converter = (
            ElevationConverter.from_csv(curves_path) if curves_path else ElevationConverter()
        )
        return cls(
            roster=load_roster(roster_path),
            store=ObservationStore.load(output_dir / BASELINE_FILENAME),
            statistics=StatisticsTable.load(output_dir / STATISTICS_FILENAME),
            report_dir=report_dir,
            converter=converter,
            config=config,
            sink=sink,
        )

    def close(self) -> None:
        self.registry.close()
        self.backfill_registry.close()

    def backfill(self, run_date: date) -> BackfillResult:
        coordinator = BackfillCoordinator(
            registry=self.backfill_registry,
            store=self.store,
            statistics=self.statistics,
            converter=self.converter,
            config=self.config,
            engine=self.engine,
            coverage=self.coverage,
            sleep=self._sleep,
        )
        result = coordinator.run(self.roster, run_date=run_date)
        if result.changed:
            self.store.save()
            self.statistics.save()
        return result

    def build_report(self, target_date: date, run_date: Optional[date] = None) -> pd.DataFrame:
        """Resolve current values and assemble the report frame for ``target_date``."""
        if len(self.store) == 0:
            logger.warning("Baseline is empty; no location can be admitted for statistics")
        admitted = self.coverage.admitted_locations(
            [loc.location_id for loc in self.roster], self.store
        )
        logger.info(f"{len(admitted)} of {len(self.roster)} locations admitted for statistics")

        fetcher = CurrentValueFetcher(self.registry, self.converter, self.config)
        current_values = fetcher.fetch_all(self.roster, target_date)

        statistics = self.statistics.for_date(target_date, admitted)
        assembler = ReportAssembler(self.config.stats_period, queried_on=run_date)
        return assembler.assemble_report(self.roster, current_values, statistics)

    def run(self, target_date: Optional[date] = None) -> RunSummary:
        run_date = date.today()
        target_date = target_date or run_date - timedelta(days=1)
        logger.info(f"Daily report for {target_date} (lookback {self.config.lookback_days} days)")

        self.converter.missing_curves(self.roster)
        backfill = self.backfill(run_date)

        report = self.build_report(target_date, run_date)
        report_path = write_report(report, self.report_dir / report_filename(target_date))

        backfill_path = None
        if not backfill.records.empty:
            backfill_path = write_report(
                backfill.records, self.report_dir / backfill_filename(run_date)
            )

        summary = RunSummary.from_report(
            target_date,
            report,
            by_source=source_breakdown(self.roster),
            failed_locations=[
                loc.location_id
                for loc, value in zip(self.roster, report["DataValue"])
                if pd.isna(value)
            ],
            backfilled_locations=backfill.backfilled,
            report_path=report_path,
            backfill_path=backfill_path,
            failure_rate_threshold=self.config.failure_rate_threshold,
        )
        summary.uploaded = self.upload(report_path, backfill_path, backfill.changed)
        summary.log()
        return summary

    def upload(
        self, report_path: Path, backfill_path: Optional[Path], datasets_changed: bool
    ) -> Dict[str, bool]:
        """Hand finished files to the sink; upload failures are logged, not raised."""
        if self.sink is None:
            logger.info("No report sink configured; skipping upload")
            return {}
        paths = [report_path]
        if backfill_path is not None:
            paths.append(backfill_path)
        if datasets_changed:
            paths.extend(p for p in (self.store.path, self.statistics.path) if p is not None)

        results: Dict[str, bool] = {}
        for path in paths:
            ok = bool(self.sink.upload(path))
            results[path.name] = ok
            if ok:
                logger.info(f"Uploaded {path.name}")
            else:
                logger.error(f"Upload failed for {path.name}")
        return results


@dataclass
class ArchiveResult:
    """Files and tables produced by an archive build."""

    start_date: date
    end_date: date
    reports: List[Path] = field(default_factory=list)
    archive: pd.DataFrame = field(default_factory=lambda: pd.DataFrame(columns=ARCHIVE_COLUMNS))
    archive_paths: List[Path] = field(default_factory=list)


def archive_basename(start_date: date, end_date: date) -> str:
    return f"reservoir_storage_archive_{start_date:%Y%m%d}_to_{end_date:%Y%m%d}"


class ArchiveBuilder:
    """
    Reconstruct daily reports for a date range.

    The Baseline is merged with a bulk fetch of ``baseline_end + 1`` through
    the range end; each day is then resolved with the latest observation in
    its lookback window.
    """

    def __init__(
        self,
        roster: List[LocationRecord],
        store: ObservationStore,
        statistics: StatisticsTable,
        registry: Optional[AdapterRegistry] = None,
        converter: Optional[ElevationConverter] = None,
        config: Optional[EngineConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config or EngineConfig()
        self.roster = roster
        self.store = store
        self.statistics = statistics
        self.registry = registry or AdapterRegistry(
            self.config, timeout=self.config.backfill_timeout
        )
        self.converter = converter or ElevationConverter()
        self.coverage = CoverageFilter(self.config.min_water_years)
        self._sleep = sleep

    def fetch_recent(self, end_date: date) -> ObservationStore:
        """Baseline merged with every location's post-baseline observations up to ``end_date``."""
        merged = ObservationStore(self.store.to_frame())
        start = self.config.baseline_end + timedelta(days=1)
        if end_date < start:
            return merged

        logger.info(f"Fetching recent data: {start} to {end_date}")
        for i, location in enumerate(self.roster, start=1):
            if SourceType(location.source_type) == SourceType.UNKNOWN:
                continue
            adapter = self.registry.for_location(location)
            try:
                observations = adapter.fetch(
                    location.location_id, start, end_date, location.data_type
                )
            except (SourceError, ConfigurationError) as e:
                logger.warning(f"  Recent fetch failed for {location.location_id}: {e}")
                continue
            if location.is_elevation:
                observations = self.converter.convert_observations(
                    location.location_id, observations
                )
            merged.merge(observations)
            if i % 20 == 0:
                logger.info(f"  [{i}/{len(self.roster)}] {location.display_name}")
            if self.config.chunk_delay > 0:
                self._sleep(self.config.chunk_delay)
        return merged

    def build(
        self,
        start_date: date,
        end_date: date,
        report_dir: Optional[PathLike] = None,
        archive_dir: Optional[PathLike] = None,
        merged: Optional[ObservationStore] = None,
    ) -> ArchiveResult:
        """
        Produce per-day reports and the long archive table.

        Args:
            start_date: First report date.
            end_date: Last report date (inclusive).
            report_dir: Where to write ``droughtDataYYYYMMDD.csv`` files; no
                daily files are written when omitted.
            archive_dir: Where to write the archive parquet and CSV; not
                written when omitted.
            merged: Pre-merged observations, skipping ``fetch_recent``.
        """
        if end_date < start_date:
            raise ValueError("end_date precedes start_date")
        merged = merged if merged is not None else self.fetch_recent(end_date)
        resolver = LookbackResolver(merged, self.config.lookback_days)
        admitted = self.coverage.admitted_locations(
            [loc.location_id for loc in self.roster], self.store
        )
        ids = [loc.location_id for loc in self.roster]
        result = ArchiveResult(start_date, end_date)

        archive_rows = []
        day = start_date
        n_days = (end_date - start_date).days + 1
        i = 0
        while day <= end_date:
            i += 1
            if i % 500 == 0 or day == end_date:
                logger.info(f"  [{i}/{n_days}] {day}")

            latest = resolver.resolve_many(ids, day, mode=LookbackMode.LATEST)
            statistics = self.statistics.for_date(day, admitted)
            current_values = {
                loc.location_id: self._current_value(loc, latest[loc.location_id])
                for loc in self.roster
            }

            if report_dir is not None:
                assembler = ReportAssembler(self.config.stats_period, queried_on=day)
                report = assembler.assemble_report(self.roster, current_values, statistics)
                result.reports.append(
                    write_report(report, Path(report_dir) / report_filename(day))
                )

            for loc in self.roster:
                obs = latest[loc.location_id]
                if obs is not None:
                    archive_rows.append(
                        self._archive_row(day, loc, obs, statistics.get(loc.location_id))
                    )
            day += timedelta(days=1)

        result.archive = pd.DataFrame(archive_rows, columns=ARCHIVE_COLUMNS)
        logger.info(
            f"Archive contains {len(result.archive)} rows "
            f"({result.archive['location_id'].nunique()} locations x {n_days} dates)"
        )
        if archive_dir is not None:
            base = Path(archive_dir) / archive_basename(start_date, end_date)
            result.archive_paths = [
                write_table(result.archive, base.with_suffix(".parquet")),
                write_table(result.archive, base.with_suffix(".csv")),
            ]
        return result

    def _current_value(self, location: LocationRecord, obs: Optional[Observation]) -> CurrentValue:
        current = CurrentValue(location_id=location.location_id, observation=obs)
        if obs is not None:
            adapter = self.registry.for_location(location)
            current.data_url = adapter.data_url(
                location.location_id, obs.date, location.data_type
            )
        return current

    @staticmethod
    def _archive_row(
        day: date,
        location: LocationRecord,
        obs: Observation,
        stat: Optional[DailyStatistic],
    ) -> Dict[str, Any]:
        return {
            "report_date": day,
            "location_id": location.location_id,
            "name": location.name or location.display_name,
            "state": location.state,
            "doi_region": location.doi_region,
            "huc6": location.huc6,
            "latitude": location.latitude,
            "longitude": location.longitude,
            "capacity": location.capacity,
            "active_capacity": location.active_capacity,
            "data_date": obs.date,
            "data_value": obs.value,
            "data_unit": obs.unit,
            "hist_min": stat.min if stat else None,
            "hist_max": stat.max if stat else None,
            "hist_p10": stat.p10 if stat else None,
            "hist_p25": stat.p25 if stat else None,
            "hist_p50": stat.p50 if stat else None,
            "hist_p75": stat.p75 if stat else None,
            "hist_p90": stat.p90 if stat else None,
            "hist_mean": stat.mean if stat else None,
            "pct_median": safe_ratio(obs.value, stat.p50 if stat else None),
            "pct_average": safe_ratio(obs.value, stat.mean if stat else None),
            "pct_full": safe_ratio(obs.value, location.capacity),
        }
