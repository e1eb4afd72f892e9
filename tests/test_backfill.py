"""
Tests for automatic backfill and manual correction ingestion.
"""

from datetime import date
from unittest.mock import Mock

import pytest

from rezviz.backfill import BackfillCoordinator, ingest_manual_csv, read_manual_csv
from rezviz.curves import ElevationConverter
from rezviz.exceptions import ConfigurationError, SourceUnavailable
from rezviz.models import DataType, ElevationCurve, LocationRecord, Observation, SourceType
from rezviz.report import BACKFILL_COMMENT, REPORT_COLUMNS
from rezviz.sources import AdapterRegistry
from rezviz.store import ObservationStore, StatisticsTable


def loc(location_id, source=SourceType.RISE, data_type=DataType.STORAGE):
    return LocationRecord(
        location_id, f"Lake {location_id}", source, data_type, capacity=1000.0
    )


@pytest.fixture
def adapter():
    return Mock()


@pytest.fixture
def coordinator(config, adapter):
    registry = AdapterRegistry(
        config, adapters={SourceType.RISE: adapter, SourceType.USGS: adapter}
    )
    return BackfillCoordinator(
        registry, ObservationStore(), StatisticsTable(), config=config, sleep=Mock()
    )


class TestBackfillCoordinator:
    """Test new-location detection and history backfill."""

    def test_find_new_locations(self, coordinator, jan1_observations):
        coordinator.store.merge(jan1_observations("A"))
        roster = [loc("A"), loc("B"), loc("C")]
        assert [l.location_id for l in coordinator.find_new_locations(roster)] == ["B", "C"]

    def test_backfill_new_location(self, coordinator, adapter, jan1_observations, config):
        adapter.fetch.return_value = jan1_observations("B", 250.0)

        result = coordinator.run([loc("B")], run_date=date(2025, 1, 16))

        adapter.fetch.assert_called_once_with(
            "B", config.baseline_start, config.baseline_end, DataType.STORAGE
        )
        assert result.backfilled == ["B"]
        assert result.changed
        assert result.observations_added == 30
        assert result.statistics_rows == 1
        assert "B" in coordinator.store
        assert coordinator.statistics.lookup("B", 1, 1).p50 == 250.0

    def test_records_tagged(self, coordinator, adapter, jan1_observations):
        adapter.fetch.return_value = jan1_observations("B", 250.0)

        records = coordinator.run([loc("B")], run_date=date(2025, 1, 16)).records

        assert list(records.columns) == REPORT_COLUMNS
        assert len(records) == 30
        assert set(records["Comment"]) == {BACKFILL_COMMENT}
        assert set(records["DateQueried"]) == {"01/16/2025"}
        assert records.iloc[0]["DataDate"] == "01/01/1991"
        assert records.iloc[0]["DataDateP50"] == 250.0
        assert records.iloc[0]["DataValuePctMdn"] == 1.0

    def test_records_without_coverage_have_no_statistics(
        self, coordinator, adapter, jan1_observations
    ):
        adapter.fetch.return_value = jan1_observations("B")[:15]

        result = coordinator.run([loc("B")])

        assert len(result.records) == 15
        assert result.records["DataDateP50"].isna().all()
        assert result.records["DataValue"].notna().all()

    def test_rerun_is_idempotent(self, coordinator, adapter, jan1_observations):
        """Backfilling the same history twice leaves both tables unchanged."""
        adapter.fetch.return_value = jan1_observations("B", 250.0)
        coordinator.backfill_locations([loc("B")])
        store_before = coordinator.store.to_frame().copy()
        stats_before = coordinator.statistics.to_frame().copy()

        result = coordinator.backfill_locations([loc("B")])

        assert result.observations_added == 0
        assert coordinator.store.to_frame().equals(store_before)
        assert coordinator.statistics.to_frame().reset_index(drop=True).equals(
            stats_before.reset_index(drop=True)
        )
        assert coordinator.run([loc("B")]).new_locations == []

    def test_failure_isolated(self, coordinator, adapter, jan1_observations):
        def fetch(location_id, start, end, data_type):
            if location_id == "bad":
                raise SourceUnavailable("RISE request failed after 3 attempts: timeout")
            return jan1_observations(location_id)

        adapter.fetch.side_effect = fetch

        result = coordinator.run([loc("good"), loc("bad"), loc("also")])

        assert result.backfilled == ["good", "also"]
        assert result.failed == ["bad"]
        assert "bad" not in coordinator.store
        assert coordinator.statistics.location_ids == {"good", "also"}

    def test_failed_location_retried_next_pass(self, coordinator, adapter, jan1_observations):
        adapter.fetch.side_effect = SourceUnavailable("down")
        coordinator.run([loc("B")])

        adapter.fetch.side_effect = None
        adapter.fetch.return_value = jan1_observations("B")
        result = coordinator.run([loc("B")])

        assert result.backfilled == ["B"]

    def test_unknown_source_skipped(self, coordinator, adapter):
        result = coordinator.run([loc("X", source=SourceType.UNKNOWN)])

        adapter.fetch.assert_not_called()
        assert result.skipped == ["X"]
        assert not result.changed

    def test_no_data(self, coordinator, adapter):
        adapter.fetch.return_value = []
        result = coordinator.run([loc("B")])
        assert result.no_data == ["B"]
        assert result.records.empty

    def test_elevation_converted(self, config, adapter):
        converter = ElevationConverter([ElevationCurve("UKL", [4000.0, 4100.0], [0.0, 1000.0])])
        coordinator = BackfillCoordinator(
            AdapterRegistry(config, adapters={SourceType.USGS: adapter}),
            ObservationStore(),
            StatisticsTable(),
            converter=converter,
            config=config,
        )
        adapter.fetch.return_value = [
            Observation("UKL", date(2000, 1, 1), 4050.0, "ft"),
            Observation("UKL", date(1980, 1, 1), 4050.0, "ft"),
        ]

        coordinator.run([loc("UKL", SourceType.USGS, DataType.ELEVATION)])

        stored = coordinator.store.observations_for("UKL")
        assert len(stored) == 1
        assert stored[0].value == 500.0
        assert stored[0].unit == "af"

    def test_elevation_without_curve_fails(self, coordinator, adapter):
        result = coordinator.run([loc("UKL", SourceType.USGS, DataType.ELEVATION)])

        adapter.fetch.assert_not_called()
        assert result.failed == ["UKL"]

    def test_delay_between_locations(self, config, adapter, jan1_observations):
        sleep = Mock()
        coordinator = BackfillCoordinator(
            AdapterRegistry(config, adapters={SourceType.RISE: adapter}),
            ObservationStore(),
            StatisticsTable(),
            config=config.with_overrides(backfill_delay=2.0),
            sleep=sleep,
        )
        adapter.fetch.side_effect = lambda location_id, *a: jan1_observations(location_id)

        coordinator.run([loc("A"), loc("B"), loc("C")])

        assert sleep.call_count == 2
        sleep.assert_called_with(2.0)


class TestManualIngest:
    """Test manual correction files."""

    def test_read_manual_csv(self, tmp_path, config):
        path = tmp_path / "7166.csv"
        path.write_text(
            "datetime,value,unit\n"
            "2000-01-02 00:00:00,20,af\n"
            "2000-01-01 06:00:00,5,af\n"
            "2000-01-01 18:00:00,6,af\n"
            "1980-01-01,1,af\n"
            "2001-01-01,,af\n"
        )

        observations = read_manual_csv(path, "7166", config)

        assert [(o.date, o.value) for o in observations] == [
            (date(2000, 1, 1), 5.0),
            (date(2000, 1, 2), 20.0),
        ]

    def test_missing_columns(self, tmp_path):
        path = tmp_path / "bad.csv"
        path.write_text("when,amount\n2000-01-01,5\n")
        with pytest.raises(ConfigurationError):
            read_manual_csv(path, "X")

    def test_ingest_replaces_slice(self, tmp_path, config, jan1_observations):
        store = ObservationStore.from_observations(
            jan1_observations("A", 10.0) + jan1_observations("B", 20.0)
        )
        statistics = StatisticsTable()
        path = tmp_path / "A.csv"
        path.write_text("date,value\n2000-01-01,99\n2001-01-01,99\n")

        count = ingest_manual_csv(path, "A", store, statistics, config)

        assert count == 2
        assert len(store.observations_for("A")) == 2
        assert len(store.observations_for("B")) == 30
        assert statistics.lookup("A", 1, 1).p50 == 99.0

    def test_empty_file_changes_nothing(self, tmp_path, config, jan1_observations):
        store = ObservationStore.from_observations(jan1_observations("A"))
        path = tmp_path / "A.csv"
        path.write_text("datetime,value\n")

        assert ingest_manual_csv(path, "A", store, StatisticsTable(), config) == 0
        assert len(store.observations_for("A")) == 30
