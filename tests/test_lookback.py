"""
Tests for lookback resolution.
"""

from datetime import date, timedelta

import pandas as pd
import pytest

from rezviz.lookback import LookbackResolver
from rezviz.models import LookbackMode, Observation
from rezviz.store import ObservationStore


def obs(day, value=1.0, location_id="L1"):
    return Observation(location_id, day, value, "af")


TARGET = date(2025, 1, 15)


class TestCurrentMode:
    """Test walking back from the target date."""

    def test_target_date_present(self):
        resolver = LookbackResolver([obs(TARGET, 5.0), obs(date(2025, 1, 14), 4.0)])
        found = resolver.resolve("L1", TARGET)
        assert found.date == TARGET
        assert found.value == 5.0

    def test_walks_back_to_most_recent(self):
        resolver = LookbackResolver([obs(date(2025, 1, 10), 3.0), obs(date(2025, 1, 12), 4.0)])
        found = resolver.resolve("L1", TARGET, window_days=7)
        assert found.date == date(2025, 1, 12)
        assert found.value == 4.0

    def test_window_boundary_inclusive(self):
        resolver = LookbackResolver([obs(TARGET - timedelta(days=7))])
        assert resolver.resolve("L1", TARGET, window_days=7) is not None
        assert resolver.resolve("L1", TARGET, window_days=6) is None

    def test_never_returns_future_date(self):
        resolver = LookbackResolver([obs(TARGET + timedelta(days=1)), obs(date(2025, 1, 9))])
        found = resolver.resolve("L1", TARGET)
        assert found.date <= TARGET
        assert found.date == date(2025, 1, 9)

    def test_none_when_window_empty(self):
        resolver = LookbackResolver([obs(date(2024, 12, 1))])
        assert resolver.resolve("L1", TARGET) is None

    def test_unknown_location(self):
        assert LookbackResolver([obs(TARGET)]).resolve("L2", TARGET) is None

    def test_zero_window(self):
        resolver = LookbackResolver([obs(date(2025, 1, 14))], window_days=0)
        assert resolver.resolve("L1", TARGET) is None

    def test_negative_window_rejected(self):
        with pytest.raises(ValueError):
            LookbackResolver([], window_days=-1)


class TestLatestMode:
    """Test range-available-latest resolution over a merged table."""

    def test_latest_in_window(self):
        store = ObservationStore.from_observations(
            [obs(date(2025, 1, 9), 1.0), obs(date(2025, 1, 13), 2.0), obs(date(2025, 1, 16), 3.0)]
        )
        resolver = LookbackResolver(store)

        found = resolver.resolve("L1", TARGET, mode=LookbackMode.LATEST)

        assert found.date == date(2025, 1, 13)
        assert found.value == 2.0

    def test_each_location_independent(self):
        frame = pd.DataFrame(
            {
                "location_id": ["A", "A", "B"],
                "date": [date(2025, 1, 15), date(2025, 1, 14), date(2025, 1, 8)],
                "value": [1.0, 2.0, 3.0],
                "unit": ["af", "af", "af"],
            }
        )
        resolver = LookbackResolver(frame, window_days=7)

        result = resolver.resolve_many(["A", "B", "C"], TARGET)

        assert result["A"].date == date(2025, 1, 15)
        assert result["B"].date == date(2025, 1, 8)
        assert result["C"] is None

    def test_modes_agree(self, daily_observations):
        observations = daily_observations("L1", date(2024, 1, 1), date(2024, 12, 31), step=5)
        resolver = LookbackResolver(observations, window_days=7)

        for offset in range(0, 366, 3):
            day = date(2024, 1, 1) + timedelta(days=offset)
            current = resolver.resolve("L1", day, mode=LookbackMode.CURRENT)
            latest = resolver.resolve("L1", day, mode=LookbackMode.LATEST)
            assert current == latest

    def test_none_iff_window_empty(self, daily_observations):
        observations = daily_observations("L1", date(2024, 1, 1), date(2024, 3, 1), step=10)
        dates = {o.date for o in observations}
        resolver = LookbackResolver(observations, window_days=3)

        for offset in range(70):
            day = date(2024, 1, 1) + timedelta(days=offset)
            window = {day - timedelta(days=k) for k in range(4)}
            found = resolver.resolve("L1", day, mode=LookbackMode.LATEST)
            assert (found is None) == (not (window & dates))
