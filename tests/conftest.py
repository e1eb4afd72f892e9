"""
Shared fixtures for rezviz tests.
"""

from datetime import date, timedelta
from unittest.mock import Mock

import httpx
import pytest

from rezviz.config import EngineConfig
from rezviz.models import DataType, LocationRecord, Observation, SourceType


@pytest.fixture
def config():
    """Config with all delays disabled."""
    return EngineConfig(
        request_delay=0.0,
        usace_request_delay=0.0,
        chunk_delay=0.0,
        backfill_delay=0.0,
        backoff_step=0.0,
    )


@pytest.fixture
def make_response():
    """Factory for real httpx responses bound to a request."""

    def _make(text="", status_code=200, json_data=None, url="https://example.test/data"):
        request = httpx.Request("GET", url)
        if json_data is not None:
            return httpx.Response(status_code, json=json_data, request=request)
        return httpx.Response(status_code, text=text, request=request)

    return _make


@pytest.fixture
def mock_client():
    """Mock standing in for an adapter's httpx.Client."""
    return Mock(spec=httpx.Client)


@pytest.fixture
def daily_observations():
    """Factory for one observation per day over an inclusive date range."""

    def _make(location_id, start, end, value=100.0, unit="af", step=1):
        observations = []
        day = start
        while day <= end:
            v = value(day) if callable(value) else value
            observations.append(Observation(location_id, day, float(v), unit))
            day += timedelta(days=step)
        return observations

    return _make


@pytest.fixture
def jan1_observations():
    """Jan 1 values for water years 1991 through 2020."""

    def _make(location_id, value=100.0):
        return [
            Observation(location_id, date(year, 1, 1), value, "af")
            for year in range(1991, 2021)
        ]

    return _make


@pytest.fixture
def location():
    return LocationRecord(
        location_id="7166",
        display_name="Lake Example",
        source_type=SourceType.RISE,
        data_type=DataType.STORAGE,
        capacity=1000.0,
        active_capacity=900.0,
        latitude=36.5,
        longitude=-106.2,
        state="NM",
        doi_region="7",
        huc6="130201",
        name="Example Dam",
    )
