"""
Elevation-to-storage conversion for reservoirs that report pool elevation.

Curves are tables of ``(location_id, elevation, storage)`` control points.
Conversion is piecewise-linear between bracketing points and clamps to the
boundary storage outside the curve's domain; there is no extrapolation.
"""

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

import numpy as np
import pandas as pd

from .exceptions import ConfigurationError, MissingCurve
from .models import ElevationCurve, LocationRecord, Observation

logger = logging.getLogger(__name__)

ELEVATION_COLUMNS = ("elevation_ft", "elevation")
STORAGE_COLUMNS = ("storage_af", "storage")
STORAGE_UNIT = "af"


def _pick_column(frame: pd.DataFrame, candidates: Iterable[str], what: str) -> str:
    for name in candidates:
        if name in frame.columns:
            return name
    raise ConfigurationError(
        f"Curve table has no {what} column (expected one of {list(candidates)})"
    )


class ElevationConverter:
    """
    Piecewise-linear elevation -> storage lookup keyed by location.

    Example:
        >>> conv = ElevationConverter([ElevationCurve("L1", [100.0, 110.0], [0.0, 1000.0])])
        >>> conv.convert("L1", 105.0)
        500.0
        >>> conv.convert("L1", 200.0)
        1000.0
    """

    def __init__(self, curves: Optional[Iterable[ElevationCurve]] = None):
        self._curves: Dict[str, ElevationCurve] = {}
        for curve in curves or []:
            self.add_curve(curve)

    def add_curve(self, curve: ElevationCurve) -> None:
        """Register a curve, validating that elevations strictly increase."""
        if len(curve) == 0:
            raise ConfigurationError(f"Curve for {curve.location_id} has no control points")
        elevations = np.asarray(curve.elevations, dtype=float)
        if len(elevations) > 1 and not np.all(np.diff(elevations) > 0):
            raise ConfigurationError(
                f"Curve for {curve.location_id} is not strictly increasing in elevation"
            )
        self._curves[str(curve.location_id)] = curve

    @classmethod
    def from_frame(cls, frame: pd.DataFrame) -> "ElevationConverter":
        """
        Build from a ``location_id, elevation[_ft], storage[_af]`` table.

        Rows are ordered by elevation within each location before validation,
        so the input need not be pre-sorted; duplicate elevations are rejected.
        """
        if "location_id" not in frame.columns:
            raise ConfigurationError("Curve table has no location_id column")
        elev_col = _pick_column(frame, ELEVATION_COLUMNS, "elevation")
        stor_col = _pick_column(frame, STORAGE_COLUMNS, "storage")

        table = frame[["location_id", elev_col, stor_col]].dropna()
        table = table.assign(location_id=table["location_id"].astype(str))

        curves = []
        for location_id, group in table.groupby("location_id", sort=True):
            group = group.sort_values(elev_col, kind="mergesort")
            curves.append(
                ElevationCurve(
                    location_id=str(location_id),
                    elevations=group[elev_col].astype(float).tolist(),
                    storages=group[stor_col].astype(float).tolist(),
                )
            )
        converter = cls(curves)
        logger.info(
            f"Loaded elevation-storage curves for {len(converter)} location(s): "
            f"{', '.join(converter.location_ids)}"
        )
        return converter

    @classmethod
    def from_csv(cls, path: Union[str, Path]) -> "ElevationConverter":
        """Load curves from CSV; ``#`` lines are comments. A missing file yields no curves."""
        path = Path(path)
        if not path.exists():
            logger.info(f"No elevation-storage curves file at {path}")
            return cls()
        try:
            frame = pd.read_csv(path, comment="#")
        except (OSError, pd.errors.ParserError) as e:
            raise ConfigurationError(f"Could not read curve table {path}: {e}") from e
        return cls.from_frame(frame)

    def __len__(self) -> int:
        return len(self._curves)

    def __contains__(self, location_id: object) -> bool:
        return str(location_id) in self._curves

    @property
    def location_ids(self) -> List[str]:
        return sorted(self._curves)

    def curve(self, location_id: str) -> ElevationCurve:
        try:
            return self._curves[str(location_id)]
        except KeyError:
            raise MissingCurve(str(location_id)) from None

    def convert(self, location_id: str, elevation: float) -> float:
        """
        Convert one elevation reading to storage.

        Raises:
            MissingCurve: No curve is registered for ``location_id``.
        """
        curve = self.curve(location_id)
        # np.interp holds the end values outside [xp[0], xp[-1]]
        return float(np.interp(float(elevation), curve.elevations, curve.storages))

    def convert_observations(
        self, location_id: str, observations: List[Observation]
    ) -> List[Observation]:
        """
        Convert a fetched elevation series to storage observations.

        A missing curve is a configuration error: it is logged and every value
        is dropped rather than guessed.
        """
        if not observations:
            return []
        try:
            curve = self.curve(location_id)
        except MissingCurve as e:
            logger.error(f"{e}; dropping {len(observations)} elevation value(s)")
            return []

        elevations = np.array([obs.value for obs in observations], dtype=float)
        storages = np.interp(elevations, curve.elevations, curve.storages)
        return [
            obs.with_value(float(storage), STORAGE_UNIT)
            for obs, storage in zip(observations, storages)
        ]

    def missing_curves(self, locations: Iterable[LocationRecord]) -> List[str]:
        """Elevation-typed locations that have no curve."""
        missing = [
            loc.location_id
            for loc in locations
            if loc.is_elevation and loc.location_id not in self
        ]
        if missing:
            logger.warning(
                f"{len(missing)} location(s) report elevation but lack conversion curves: "
                f"{', '.join(missing)}"
            )
        return missing
