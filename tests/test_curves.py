"""
Tests for elevation-to-storage conversion.
"""

from datetime import date

import pandas as pd
import pytest

from rezviz.curves import ElevationConverter
from rezviz.exceptions import ConfigurationError, MissingCurve
from rezviz.models import DataType, ElevationCurve, LocationRecord, Observation


@pytest.fixture
def converter():
    return ElevationConverter(
        [ElevationCurve("UKL", [4136.0, 4140.0, 4143.3], [0.0, 300000.0, 562000.0])]
    )


class TestElevationConverter:
    """Test piecewise-linear conversion and clamping."""

    def test_interpolates(self, converter):
        assert converter.convert("UKL", 4138.0) == pytest.approx(150000.0)

    def test_exact_control_point(self, converter):
        assert converter.convert("UKL", 4140.0) == 300000.0

    def test_maximum_control_point_is_exact(self, converter):
        assert converter.convert("UKL", 4143.3) == 562000.0

    def test_clamps_above_maximum(self, converter):
        assert converter.convert("UKL", 4200.0) == 562000.0

    def test_clamps_below_minimum(self, converter):
        assert converter.convert("UKL", 4000.0) == 0.0
        assert converter.convert("UKL", 4136.0) == 0.0

    def test_monotonic(self, converter):
        elevations = [4130 + 0.25 * i for i in range(70)]
        storages = [converter.convert("UKL", e) for e in elevations]
        assert storages == sorted(storages)

    def test_missing_curve(self, converter):
        with pytest.raises(MissingCurve, match="No elevation-storage curve for location X"):
            converter.convert("X", 100.0)

    def test_missing_curve_is_configuration_error(self, converter):
        with pytest.raises(ConfigurationError):
            converter.convert("X", 100.0)

    def test_rejects_non_increasing_curve(self):
        with pytest.raises(ConfigurationError, match="strictly increasing"):
            ElevationConverter([ElevationCurve("A", [10.0, 10.0], [1.0, 2.0])])

    def test_rejects_empty_curve(self):
        with pytest.raises(ConfigurationError):
            ElevationConverter([ElevationCurve("A", [], [])])

    def test_curve_length_mismatch(self):
        with pytest.raises(ValueError):
            ElevationCurve("A", [1.0, 2.0], [1.0])

    def test_convert_observations(self, converter):
        observations = [
            Observation("UKL", date(2025, 1, 1), 4138.0, "ft"),
            Observation("UKL", date(2025, 1, 2), 4150.0, "ft"),
        ]
        converted = converter.convert_observations("UKL", observations)
        assert [o.value for o in converted] == [pytest.approx(150000.0), 562000.0]
        assert all(o.unit == "af" for o in converted)
        assert [o.date for o in converted] == [date(2025, 1, 1), date(2025, 1, 2)]

    def test_convert_observations_without_curve_drops_values(self, converter, caplog):
        observations = [Observation("X", date(2025, 1, 1), 10.0, "ft")]
        assert converter.convert_observations("X", observations) == []
        assert "No elevation-storage curve for location X" in caplog.text

    def test_missing_curves(self, converter):
        roster = [
            LocationRecord("UKL", "Upper Klamath", data_type=DataType.ELEVATION),
            LocationRecord("CLR", "Clear Lake", data_type=DataType.ELEVATION),
            LocationRecord("SHA", "Shasta", data_type=DataType.STORAGE),
        ]
        assert converter.missing_curves(roster) == ["CLR"]


class TestCurveLoading:
    """Test loading curves from tables."""

    def test_from_frame_sorts_points(self):
        frame = pd.DataFrame(
            {
                "location_id": ["B", "A", "A", "A"],
                "elevation_ft": [5.0, 30.0, 10.0, 20.0],
                "storage_af": [50.0, 300.0, 100.0, 200.0],
            }
        )
        converter = ElevationConverter.from_frame(frame)
        assert converter.location_ids == ["A", "B"]
        assert converter.curve("A").elevations == [10.0, 20.0, 30.0]
        assert converter.convert("A", 25.0) == 250.0

    def test_from_frame_plain_column_names(self):
        frame = pd.DataFrame(
            {"location_id": ["A", "A"], "elevation": [1.0, 2.0], "storage": [10.0, 20.0]}
        )
        assert ElevationConverter.from_frame(frame).convert("A", 1.5) == 15.0

    def test_from_frame_missing_column(self):
        frame = pd.DataFrame({"location_id": ["A"], "elevation": [1.0]})
        with pytest.raises(ConfigurationError, match="storage"):
            ElevationConverter.from_frame(frame)

    def test_from_csv_with_comments(self, tmp_path):
        path = tmp_path / "curves.csv"
        path.write_text(
            "# Upper Klamath curve\n"
            "location_id,elevation_ft,storage_af\n"
            "UKL,4136.0,0\n"
            "UKL,4143.3,562000\n"
        )
        converter = ElevationConverter.from_csv(path)
        assert "UKL" in converter
        assert converter.convert("UKL", 4143.3) == 562000.0

    def test_from_csv_missing_file(self, tmp_path):
        assert len(ElevationConverter.from_csv(tmp_path / "nope.csv")) == 0
