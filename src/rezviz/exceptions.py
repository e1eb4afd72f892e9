"""
Exceptions for rezviz operations.
"""

from typing import Optional


class RezvizError(Exception):
    """Base exception for rezviz-related errors."""

    pass


class SourceError(RezvizError):
    """Error raised while talking to an upstream time-series service."""

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        location_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.source = source
        self.location_id = location_id

    def __str__(self) -> str:
        if self.source and self.location_id:
            return f"[{self.source}:{self.location_id}] {self.message}"
        if self.source:
            return f"[{self.source}] {self.message}"
        return self.message


class SourceUnavailable(SourceError):
    """Upstream could not be reached or answered non-2xx after retries."""

    pass


class TransientNetworkError(SourceUnavailable):
    """Timeout, connection failure, rate limit or 5xx. Safe to retry."""

    pass


class MalformedResponse(SourceError):
    """Upstream answered, but the body failed format validation."""

    pass


MalformedUpstreamResponse = MalformedResponse


class ConfigurationError(RezvizError):
    """Invalid configuration or input table."""

    pass


class MissingCurve(ConfigurationError):
    """An elevation-typed location has no elevation-storage curve."""

    def __init__(self, location_id: str):
        super().__init__(f"No elevation-storage curve for location {location_id}")
        self.location_id = location_id


class StoreError(RezvizError):
    """The Baseline or Statistics dataset could not be read or written."""

    pass
