"""
Tests for report assembly and output.
"""

import math
from datetime import date

import pandas as pd
import pytest

from rezviz.models import CurrentValue, DailyStatistic, LocationRecord, Observation
from rezviz.report import (
    REPORT_COLUMNS,
    ReportAssembler,
    RunSummary,
    backfill_filename,
    report_filename,
    safe_ratio,
    write_report,
)

STATS_PERIOD = "10/1/1990 - 9/30/2020"


@pytest.fixture
def assembler():
    return ReportAssembler(STATS_PERIOD, queried_on=date(2025, 1, 16))


@pytest.fixture
def statistic():
    return DailyStatistic(
        location_id="7166",
        month=1,
        day=15,
        min=100.0,
        max=900.0,
        p10=200.0,
        p25=300.0,
        p50=400.0,
        p75=500.0,
        p90=600.0,
        mean=500.0,
        count=30,
        unit="af",
    )


class TestSafeRatio:
    """Test guarded division."""

    @pytest.mark.parametrize(
        "num,den,expected",
        [
            (50.0, 200.0, 0.25),
            (50.0, 0.0, None),
            (None, 10.0, None),
            (10.0, None, None),
            (float("nan"), 10.0, None),
            (10.0, float("nan"), None),
            (0.0, 10.0, 0.0),
        ],
    )
    def test_safe_ratio(self, num, den, expected):
        assert safe_ratio(num, den) == expected


class TestReportAssembler:
    """Test row construction."""

    def test_full_row(self, assembler, location, statistic):
        current = CurrentValue(
            "7166",
            observation=Observation("7166", date(2025, 1, 14), 800.0, "af"),
            data_url="https://rise.test/7166",
        )

        row = assembler.assemble(location, current, statistic)

        assert list(row) == REPORT_COLUMNS
        assert row["SiteName"] == "Lake Example"
        assert row["DataValue"] == 800.0
        assert row["DataDate"] == "01/14/2025"
        assert row["DateQueried"] == "01/16/2025"
        assert row["DataDateP50"] == 400.0
        assert row["DataDateAvg"] == 500.0
        assert row["DataDateMax"] == 900.0
        assert row["DataDateMin"] == 100.0
        assert row["DataValuePctMdn"] == 2.0
        assert row["DataValuePctAvg"] == 1.6
        assert row["PctFull"] == 0.8
        assert row["StatsPeriod"] == STATS_PERIOD
        assert row["MaxCapacity"] == 1000.0
        assert row["DataUrl"] == "https://rise.test/7166"
        assert row["Comment"] is None

    def test_no_current_value(self, assembler, location, statistic):
        row = assembler.assemble(location, None, statistic)

        assert row["DataValue"] is None
        assert row["DataDate"] is None
        assert row["DataUnits"] == "af"
        assert row["DataDateP50"] == 400.0
        assert row["DataValuePctMdn"] is None
        assert row["PctFull"] is None

    def test_no_statistic(self, assembler, location):
        obs = Observation("7166", date(2025, 1, 15), 800.0, "af")

        row = assembler.assemble(location, obs, None)

        for column in (
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
        ):
            assert row[column] is None
        assert row["PctFull"] == 0.8

    def test_zero_median_and_missing_capacity(self, assembler, statistic):
        location = LocationRecord("X", "No capacity")
        zero = DailyStatistic(**{**statistic.to_dict(), "p50": 0.0})
        obs = Observation("X", date(2025, 1, 15), 10.0, "af")

        row = assembler.assemble(location, obs, zero)

        assert row["DataValuePctMdn"] is None
        assert row["PctFull"] is None

    def test_report_has_one_row_per_location(self, assembler, location, statistic):
        other = LocationRecord("SHA", "Shasta Lake", capacity=4552000.0)
        current = {
            "7166": CurrentValue(
                "7166", observation=Observation("7166", date(2025, 1, 15), 800.0, "af")
            ),
            "SHA": CurrentValue("SHA"),
        }

        report = assembler.assemble_report([location, other], current, {"7166": statistic})

        assert list(report.columns) == REPORT_COLUMNS
        assert len(report) == 2
        assert list(report["SiteName"]) == ["Lake Example", "Shasta Lake"]
        assert pd.isna(report.loc[1, "DataValue"])

    def test_default_query_date_is_today(self, location):
        row = ReportAssembler(STATS_PERIOD).assemble(location)
        assert row["DateQueried"] == date.today().strftime("%m/%d/%Y")


class TestOutput:
    """Test report files and summaries."""

    def test_filenames(self):
        assert report_filename(date(2025, 1, 5)) == "droughtData20250105.csv"
        assert backfill_filename(date(2025, 1, 5)) == "backfill_20250105.csv"

    def test_missing_renders_empty(self, tmp_path, assembler, location):
        report = assembler.assemble_report([location], {}, {})
        path = write_report(report, tmp_path / "out" / "droughtData20250115.csv")

        lines = path.read_text().splitlines()

        assert lines[0] == ",".join(REPORT_COLUMNS)
        fields = lines[1].split(",")
        assert len(fields) == len(REPORT_COLUMNS)
        assert fields[REPORT_COLUMNS.index("DataValue")] == ""
        assert fields[REPORT_COLUMNS.index("DataDateP50")] == ""
        assert "NA" not in fields
        assert "nan" not in fields

    def test_run_summary(self):
        report = pd.DataFrame(
            {"DataValue": [1.0, None, None, 4.0, 5.0], "DataDateP50": [1.0, 1.0, None, None, None]}
        )
        summary = RunSummary.from_report(date(2025, 1, 15), report, failure_rate_threshold=0.2)

        assert summary.total == 5
        assert summary.with_data == 3
        assert summary.missing_data == 2
        assert summary.with_statistics == 2
        assert summary.without_statistics == 3
        assert math.isclose(summary.missing_rate, 0.4)
        assert summary.threshold_exceeded

    def test_run_summary_under_threshold(self, caplog):
        report = pd.DataFrame({"DataValue": [1.0] * 9 + [None], "DataDateP50": [1.0] * 10})
        summary = RunSummary.from_report(date(2025, 1, 15), report, failure_rate_threshold=0.2)

        summary.log()

        assert not summary.threshold_exceeded
        assert "threshold" not in caplog.text

    def test_run_summary_warns(self, caplog):
        report = pd.DataFrame({"DataValue": [None, None, 1.0], "DataDateP50": [None] * 3})
        RunSummary.from_report(date(2025, 1, 15), report).log()
        assert "above the 20% threshold" in caplog.text
