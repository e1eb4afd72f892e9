"""
Run configuration for the reconciliation engine.

All tunables live on one frozen ``EngineConfig`` that is passed into each
component, so tests can build engines over synthetic date ranges without
touching module state.
"""

import os
from dataclasses import dataclass, fields, replace
from datetime import date
from typing import Any, Dict, Optional

from .exceptions import ConfigurationError

ENV_PREFIX = "REZVIZ_"


@dataclass(frozen=True)
class EngineConfig:
    """Configuration shared by adapters, stores and coordinators."""

    # Historical baseline (30 water years)
    baseline_start: date = date(1990, 10, 1)
    baseline_end: date = date(2020, 9, 30)

    # Daily resolution and coverage
    lookback_days: int = 7
    min_water_years: int = 20

    # HTTP behaviour
    timeout: float = 120.0
    backfill_timeout: float = 300.0
    max_attempts: int = 3
    backoff_step: float = 5.0
    request_delay: float = 0.25
    chunk_delay: float = 0.5
    backfill_delay: float = 1.0
    usace_request_delay: float = 1.0

    # Chunking for large ranges
    usace_chunk_days: int = 365
    usgs_chunk_days: int = 365
    rise_limit: int = 50000
    usgs_limit: int = 50000

    # Upstream endpoints
    rise_base_url: str = "https://api.wwdh.internetofwater.app"
    usace_base_url: str = "https://water.usace.army.mil/cda/reporting"
    usgs_base_url: str = "https://api.waterdata.usgs.gov/ogcapi/v0"
    cdec_base_url: str = "https://cdec.water.ca.gov"
    cdec_user_agent: str = "Mozilla/5.0 (rezviz reservoir client)"
    user_agent: str = "rezviz/0.1.0"

    # Reporting
    failure_rate_threshold: float = 0.2

    def __post_init__(self) -> None:
        if self.baseline_end < self.baseline_start:
            raise ConfigurationError(
                f"baseline_end {self.baseline_end} precedes baseline_start {self.baseline_start}"
            )
        if self.lookback_days < 0:
            raise ConfigurationError("lookback_days must be non-negative")
        if self.max_attempts < 1:
            raise ConfigurationError("max_attempts must be at least 1")
        if not 0.0 <= self.failure_rate_threshold <= 1.0:
            raise ConfigurationError("failure_rate_threshold must be within [0, 1]")

    @property
    def stats_period(self) -> str:
        """Human label of the baseline window, e.g. ``10/1/1990 - 9/30/2020``."""
        start, end = self.baseline_start, self.baseline_end
        return (
            f"{start.month}/{start.day}/{start.year} - "
            f"{end.month}/{end.day}/{end.year}"
        )

    def with_baseline(self, start: date, end: date) -> "EngineConfig":
        """Return a copy covering a different baseline window."""
        return replace(self, baseline_start=start, baseline_end=end)

    def with_overrides(self, **overrides: Any) -> "EngineConfig":
        return replace(self, **overrides)

    @classmethod
    def from_env(
        cls, environ: Optional[Dict[str, str]] = None, **overrides: Any
    ) -> "EngineConfig":
        """
        Build a config from ``REZVIZ_*`` environment variables.

        Field names map to upper-case variables, e.g. ``lookback_days`` is read
        from ``REZVIZ_LOOKBACK_DAYS`` and ``baseline_start`` from
        ``REZVIZ_BASELINE_START`` (ISO date). Explicit keyword overrides win.
        """
        env = os.environ if environ is None else environ
        values: Dict[str, Any] = {}

        for f in fields(cls):
            raw = env.get(ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            try:
                values[f.name] = _coerce(raw, f.default)
            except ValueError as e:
                raise ConfigurationError(
                    f"Invalid value for {ENV_PREFIX + f.name.upper()}: {raw!r}"
                ) from e

        values.update(overrides)
        return cls(**values)


def _coerce(raw: str, default: Any) -> Any:
    if isinstance(default, date):
        return date.fromisoformat(raw)
    if isinstance(default, bool):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    return raw
