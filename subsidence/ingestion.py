"""
subsidence.ingestion
====================
Load and validate raw station observations into one long-format frame.

Public API
----------
Observation                      → one raw positional record
observations_to_frame(records)   → pd.DataFrame
load_observations(paths)         → pd.DataFrame
normalise_observations(df)       → pd.DataFrame  (typed, sorted copy)
validate_observations(df)        → None  (raises on schema errors)

The batch schema is ``station_id, timestamp, easting, northing, height,
geoid_separation`` plus any of the optional covariates
``temperature, precipitation, groundwater_level``.  Files exported by the
GNSS/RINEX processing collaborator may use camelCase headers
(``geoidSeparation``) and may omit ``station_id`` when a file holds one
station; in that case the file stem becomes the station id.
"""

from __future__ import annotations

import re
import warnings
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd

from .config import COORDINATE_COLUMNS, COVARIATE_COLUMNS, STATION_COL, TIME_COL


REQUIRED_COLUMNS: List[str] = [STATION_COL, TIME_COL] + COORDINATE_COLUMNS


# ======================================================================== #
#  1.  Record type                                                          #
# ======================================================================== #

@dataclass(frozen=True)
class Observation:
    """One raw coordinate solution of one station at one sampling instant."""
    station_id: str
    timestamp: str            # ISO-8601
    easting: float
    northing: float
    height: float
    geoid_separation: float
    temperature: Optional[float] = None
    precipitation: Optional[float] = None
    groundwater_level: Optional[float] = None


def observations_to_frame(records: Iterable[Observation]) -> pd.DataFrame:
    """Build an observation batch from :class:`Observation` records."""
    rows = [asdict(r) for r in records]
    df = pd.DataFrame(rows, columns=REQUIRED_COLUMNS + COVARIATE_COLUMNS)
    # Covariates absent from every record are dropped, not kept as NaN
    empty = [c for c in COVARIATE_COLUMNS if df[c].isna().all()]
    df = df.drop(columns=empty)
    return normalise_observations(df)


# ======================================================================== #
#  2.  File loading                                                         #
# ======================================================================== #

def _snake_case(name: str) -> str:
    name = name.strip()
    name = re.sub(r"(?<=[a-z0-9])([A-Z])", r"_\1", name)
    return re.sub(r"[\s\-]+", "_", name).lower()


def load_observations(paths: Sequence[str | Path]) -> pd.DataFrame:
    """
    Read one or more observation CSV files into a single batch.

    Parameters
    ----------
    paths : sequence of str or Path
        CSV files.  Column names are normalised to snake_case.

    Returns
    -------
    pd.DataFrame
        Validated batch sorted by ``station_id, timestamp``.
    """
    frames: List[pd.DataFrame] = []
    for path in paths:
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Observation file not found: {path}")
        df = pd.read_csv(path)
        df.columns = [_snake_case(c) for c in df.columns]
        if "station" in df.columns and STATION_COL not in df.columns:
            df = df.rename(columns={"station": STATION_COL})
        if STATION_COL not in df.columns:
            df[STATION_COL] = path.stem
        if df.empty:
            warnings.warn(f"Skipping empty observation file: {path}")
            continue
        frames.append(df)

    if not frames:
        raise ValueError("No observations loaded.")
    return normalise_observations(pd.concat(frames, ignore_index=True))


def normalise_observations(df: pd.DataFrame) -> pd.DataFrame:
    """
    Typed copy of a batch: string ids, naive UTC timestamps, float coordinates.

    Unparseable timestamps and coordinates become NaT/NaN; the cleaner drops
    those records and reports them per station.
    """
    validate_observations(df)
    out = df.copy()
    out[STATION_COL] = out[STATION_COL].astype(str)
    ts = pd.to_datetime(out[TIME_COL], utc=True, format="ISO8601", errors="coerce")
    out[TIME_COL] = ts.dt.tz_localize(None)
    for col in COORDINATE_COLUMNS + [c for c in COVARIATE_COLUMNS if c in out.columns]:
        out[col] = pd.to_numeric(out[col], errors="coerce").astype(np.float64)
    keep = REQUIRED_COLUMNS + [c for c in COVARIATE_COLUMNS if c in out.columns]
    out = out[keep].sort_values([STATION_COL, TIME_COL], kind="mergesort")
    return out.reset_index(drop=True)


# ======================================================================== #
#  3.  Validation                                                           #
# ======================================================================== #

def validate_observations(df: pd.DataFrame) -> None:
    """
    Check that the batch has every required column.

    Raises
    ------
    ValueError
        Listing the missing columns.
    """
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(
            f"Observation batch is missing required columns {missing}; "
            f"got {list(df.columns)}"
        )
