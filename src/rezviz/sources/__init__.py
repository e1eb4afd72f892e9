"""
Upstream reservoir time-series sources.

One adapter per upstream service, all returning normalized ``Observation``
lists:

- RISE: USBR Reclamation Information Sharing Environment (via WWDH EDR)
- USACE: Corps Water Management System Data Access (CDA)
- USGS: Water Data OGC API daily values
- CDEC: California Data Exchange Center
"""

import logging
from typing import Dict, Optional, Type

from ..config import EngineConfig
from ..models import LocationRecord, SourceType
from .base import (
    UNIT_VOCABULARY,
    SourceAdapter,
    build_url,
    date_chunks,
    frame_to_observations,
    normalize_unit,
)
from .cdec import CdecAdapter
from .rise import RiseAdapter
from .usace import UsaceAdapter, split_identifier
from .usgs import ELEVATION_PARAMETERS, STORAGE_PARAMETER, UsgsAdapter

logger = logging.getLogger(__name__)

ADAPTER_CLASSES: Dict[SourceType, Type[SourceAdapter]] = {
    SourceType.RISE: RiseAdapter,
    SourceType.USACE: UsaceAdapter,
    SourceType.USGS: UsgsAdapter,
    SourceType.CDEC: CdecAdapter,
}

# Roster entries with an unrecognized source are queried through RISE
FALLBACK_SOURCE = SourceType.RISE


def get_adapter(
    source_type: SourceType,
    config: Optional[EngineConfig] = None,
    timeout: Optional[float] = None,
) -> SourceAdapter:
    """Create a new adapter for ``source_type`` (UNKNOWN maps to RISE)."""
    adapter_class = ADAPTER_CLASSES.get(SourceType(source_type))
    if adapter_class is None:
        adapter_class = ADAPTER_CLASSES[FALLBACK_SOURCE]
    return adapter_class(config=config, timeout=timeout)


class AdapterRegistry:
    """
    Lazily creates and caches one adapter per source type.

    Sharing a single adapter per upstream keeps the inter-call throttle
    effective across locations.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        timeout: Optional[float] = None,
        adapters: Optional[Dict[SourceType, SourceAdapter]] = None,
    ):
        self.config = config or EngineConfig()
        self.timeout = timeout
        self._adapters: Dict[SourceType, SourceAdapter] = dict(adapters or {})

    def get(self, source_type: SourceType) -> SourceAdapter:
        source_type = SourceType(source_type)
        if source_type not in ADAPTER_CLASSES:
            source_type = FALLBACK_SOURCE
        if source_type not in self._adapters:
            logger.debug(f"Creating {source_type.value} adapter")
            self._adapters[source_type] = get_adapter(
                source_type, self.config, self.timeout
            )
        return self._adapters[source_type]

    def for_location(self, location: LocationRecord) -> SourceAdapter:
        return self.get(location.source_type)

    def close(self) -> None:
        for adapter in self._adapters.values():
            adapter.close()
        self._adapters.clear()

    def __enter__(self) -> "AdapterRegistry":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


__all__ = [
    "ADAPTER_CLASSES",
    "AdapterRegistry",
    "CdecAdapter",
    "ELEVATION_PARAMETERS",
    "FALLBACK_SOURCE",
    "RiseAdapter",
    "STORAGE_PARAMETER",
    "UNIT_VOCABULARY",
    "SourceAdapter",
    "UsaceAdapter",
    "UsgsAdapter",
    "build_url",
    "date_chunks",
    "frame_to_observations",
    "get_adapter",
    "normalize_unit",
    "split_identifier",
]
