"""
Persisted Baseline and Statistics datasets.

Both datasets are read in full at the start of a run and fully rewritten at
the end; writes go to a temporary sibling file that then replaces the target,
so a crashed run never leaves a half-written table. I/O failures surface as
``StoreError``, the only error class that aborts a run.
"""

import logging
import os
from datetime import date
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Union

import pandas as pd
import pyarrow as pa

from .exceptions import StoreError
from .models import DailyStatistic, Observation

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

OBSERVATION_COLUMNS = ["location_id", "date", "value", "unit"]
STATISTIC_COLUMNS = [
    "location_id",
    "month",
    "day",
    "min",
    "max",
    "p10",
    "p25",
    "p50",
    "p75",
    "p90",
    "mean",
    "count",
    "unit",
]
KEY = ["location_id", "date"]


def read_table(path: PathLike) -> pd.DataFrame:
    """Read a parquet or CSV table, chosen by file suffix."""
    path = Path(path)
    try:
        if path.suffix == ".parquet":
            return pd.read_parquet(path)
        return pd.read_csv(path, dtype={"location_id": str})
    except (OSError, ValueError, pa.ArrowException) as e:
        raise StoreError(f"Could not read {path}: {e}") from e


def write_table(frame: pd.DataFrame, path: PathLike) -> Path:
    """Fully rewrite ``path`` with ``frame`` via a temporary file and rename."""
    path = Path(path)
    tmp = path.with_name(path.name + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.suffix == ".parquet":
            frame.to_parquet(tmp, index=False)
        else:
            frame.to_csv(tmp, index=False)
        os.replace(tmp, path)
    except (OSError, ValueError, pa.ArrowException) as e:
        if tmp.exists():
            tmp.unlink()
        raise StoreError(f"Could not write {path}: {e}") from e
    return path


def observations_frame(observations: Iterable[Observation]) -> pd.DataFrame:
    """Tabulate Observations with the Baseline's columns."""
    rows = [
        (str(obs.location_id), obs.date, float(obs.value), obs.unit)
        for obs in observations
    ]
    return pd.DataFrame(rows, columns=OBSERVATION_COLUMNS)


def normalize_observations(frame: pd.DataFrame) -> pd.DataFrame:
    """Coerce a raw table to Baseline columns and dtypes, dropping unusable rows."""
    missing = [c for c in OBSERVATION_COLUMNS if c not in frame.columns]
    if missing:
        raise StoreError(f"Observation table is missing columns {missing}")
    if frame.empty:
        return pd.DataFrame(columns=OBSERVATION_COLUMNS)

    out = frame[OBSERVATION_COLUMNS].copy()
    out["location_id"] = out["location_id"].astype(str)
    out["date"] = pd.to_datetime(out["date"], errors="coerce").dt.date
    out["value"] = pd.to_numeric(out["value"], errors="coerce")
    out = out.dropna(subset=["date", "value"])
    out["unit"] = out["unit"].fillna("af").astype(str)
    return out.reset_index(drop=True)


def _union(*frames: pd.DataFrame) -> pd.DataFrame:
    parts = [f for f in frames if not f.empty]
    if not parts:
        return pd.DataFrame(columns=OBSERVATION_COLUMNS)
    return pd.concat(parts, ignore_index=True)


def _as_frame(observations: Union[Iterable[Observation], pd.DataFrame]) -> pd.DataFrame:
    if isinstance(observations, pd.DataFrame):
        return normalize_observations(observations)
    return normalize_observations(observations_frame(observations))


class ObservationStore:
    """
    The Baseline: every historical Observation keyed by (location_id, date).

    Merges are unions with first-seen-wins de-duplication, so re-ingesting the
    same fetch leaves the store unchanged. The only mutation of existing rows
    is wholesale replacement of one location's slice.
    """

    def __init__(self, frame: Optional[pd.DataFrame] = None, path: Optional[PathLike] = None):
        self.path = Path(path) if path is not None else None
        if frame is None:
            frame = pd.DataFrame(columns=OBSERVATION_COLUMNS)
        frame = normalize_observations(frame)
        self._frame = frame.drop_duplicates(subset=KEY, keep="first").reset_index(drop=True)

    @classmethod
    def load(cls, path: PathLike) -> "ObservationStore":
        """Load a Baseline file; a missing file yields an empty store."""
        path = Path(path)
        if not path.exists():
            logger.info(f"No baseline at {path}; starting empty")
            return cls(path=path)
        store = cls(read_table(path), path=path)
        logger.info(
            f"Loaded baseline {path}: {len(store)} observations, "
            f"{len(store.location_ids)} locations"
        )
        return store

    @classmethod
    def from_observations(cls, observations: Iterable[Observation]) -> "ObservationStore":
        return cls(observations_frame(observations))

    def save(self, path: Optional[PathLike] = None) -> Path:
        target = Path(path) if path is not None else self.path
        if target is None:
            raise StoreError("No path given for saving the baseline")
        frame = self._frame.sort_values(KEY, kind="mergesort").reset_index(drop=True)
        written = write_table(frame, target)
        logger.info(f"Saved baseline {written}: {len(frame)} observations")
        return written

    def __len__(self) -> int:
        return len(self._frame)

    def __contains__(self, location_id: object) -> bool:
        return str(location_id) in self.location_ids

    def __repr__(self) -> str:
        return f"ObservationStore(observations={len(self)}, locations={len(self.location_ids)})"

    @property
    def location_ids(self) -> Set[str]:
        return set(self._frame["location_id"].unique())

    def to_frame(self) -> pd.DataFrame:
        return self._frame.copy()

    def frame_for(self, location_id: str) -> pd.DataFrame:
        frame = self._frame[self._frame["location_id"] == str(location_id)]
        return frame.sort_values("date", kind="mergesort").reset_index(drop=True)

    def observations_for(self, location_id: str) -> List[Observation]:
        return [
            Observation(row.location_id, row.date, float(row.value), row.unit)
            for row in self.frame_for(location_id).itertuples(index=False)
        ]

    def merge(self, observations: Union[Iterable[Observation], pd.DataFrame]) -> int:
        """
        Union new observations into the store.

        Existing (location_id, date) keys keep their current value.

        Returns:
            Number of rows actually added.
        """
        incoming = _as_frame(observations)
        if incoming.empty:
            return 0
        before = len(self._frame)
        combined = _union(self._frame, incoming)
        self._frame = combined.drop_duplicates(subset=KEY, keep="first").reset_index(drop=True)
        added = len(self._frame) - before
        logger.debug(f"Merged {len(incoming)} observations, {added} new")
        return added

    def replace_location(
        self, location_id: str, observations: Union[Iterable[Observation], pd.DataFrame]
    ) -> int:
        """Drop a location's slice and insert ``observations`` in its place."""
        location_id = str(location_id)
        incoming = _as_frame(observations)
        incoming = incoming.assign(location_id=location_id).drop_duplicates(
            subset=KEY, keep="first"
        )
        kept = self._frame[self._frame["location_id"] != location_id]
        removed = len(self._frame) - len(kept)
        self._frame = _union(kept, incoming)
        logger.info(
            f"Replaced baseline slice for {location_id}: "
            f"{removed} rows removed, {len(incoming)} inserted"
        )
        return len(incoming)

    def restrict_to_window(self, start: date, end: date) -> int:
        """Drop observations outside ``[start, end]``; returns rows dropped."""
        mask = (self._frame["date"] >= start) & (self._frame["date"] <= end)
        dropped = int((~mask).sum())
        if dropped:
            self._frame = self._frame[mask].reset_index(drop=True)
        return dropped

    def merge_partials(self, paths: Iterable[PathLike]) -> int:
        """
        Fold partial Baseline files from independent workers into this store.

        Files are merged in the order given; unreadable files raise StoreError.
        """
        added = 0
        for path in paths:
            partial = read_table(path)
            count = self.merge(partial)
            logger.info(f"Merged partial {path}: {count} new observations")
            added += count
        return added


class StatisticsTable:
    """The derived per-location (month, day) statistics table."""

    def __init__(self, frame: Optional[pd.DataFrame] = None, path: Optional[PathLike] = None):
        self.path = Path(path) if path is not None else None
        if frame is None or frame.empty:
            frame = pd.DataFrame(columns=STATISTIC_COLUMNS)
        missing = [c for c in STATISTIC_COLUMNS if c not in frame.columns]
        if missing:
            raise StoreError(f"Statistics table is missing columns {missing}")
        frame = frame[STATISTIC_COLUMNS].copy()
        frame["location_id"] = frame["location_id"].astype(str)
        self._frame = frame.reset_index(drop=True)
        self._index: Optional[Dict[tuple, int]] = None

    @classmethod
    def load(cls, path: PathLike) -> "StatisticsTable":
        path = Path(path)
        if not path.exists():
            logger.info(f"No statistics table at {path}; starting empty")
            return cls(path=path)
        table = cls(read_table(path), path=path)
        logger.info(f"Loaded statistics {path}: {len(table)} rows")
        return table

    def save(self, path: Optional[PathLike] = None) -> Path:
        target = Path(path) if path is not None else self.path
        if target is None:
            raise StoreError("No path given for saving statistics")
        frame = self._frame.sort_values(
            ["location_id", "month", "day"], kind="mergesort"
        ).reset_index(drop=True)
        written = write_table(frame, target)
        logger.info(f"Saved statistics {written}: {len(frame)} rows")
        return written

    def __len__(self) -> int:
        return len(self._frame)

    @property
    def location_ids(self) -> Set[str]:
        return set(self._frame["location_id"].unique())

    def to_frame(self) -> pd.DataFrame:
        return self._frame.copy()

    def rows_for(self, location_id: str) -> pd.DataFrame:
        return self._frame[self._frame["location_id"] == str(location_id)].reset_index(
            drop=True
        )

    def replace_locations(self, location_ids: Iterable[str], rows: pd.DataFrame) -> None:
        """Replace every row of ``location_ids`` with ``rows``."""
        ids = {str(i) for i in location_ids}
        kept = self._frame[~self._frame["location_id"].isin(ids)]
        if rows is not None and not rows.empty:
            kept = _union(kept, rows[STATISTIC_COLUMNS])
        self._frame = kept.reset_index(drop=True)
        self._index = None

    def lookup(self, location_id: str, month: int, day: int) -> Optional[DailyStatistic]:
        if self._index is None:
            self._index = {
                (loc, int(m), int(d)): i
                for i, (loc, m, d) in enumerate(
                    zip(self._frame["location_id"], self._frame["month"], self._frame["day"])
                )
            }
        i = self._index.get((str(location_id), int(month), int(day)))
        if i is None:
            return None
        return DailyStatistic.from_row(self._frame.iloc[i])

    def for_date(self, day: date, location_ids: Optional[Iterable[str]] = None) -> Dict[str, DailyStatistic]:
        """Statistics for ``day``'s calendar (month, day) keyed by location."""
        ids = location_ids if location_ids is not None else self.location_ids
        result = {}
        for location_id in ids:
            stat = self.lookup(location_id, day.month, day.day)
            if stat is not None:
                result[str(location_id)] = stat
        return result
