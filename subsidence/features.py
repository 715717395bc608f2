"""
subsidence.features
===================
Kinematic feature derivation from cleaned station observations.

Public API
----------
derive_features(df)                  → pd.DataFrame (FeatureRecords)
feature_columns(df, feature_config)  → list of model input columns

Definitions (per station, ordered by timestamp)
-----------------------------------------------
::

    dt_days[i]      = (t[i] - t[i-1]) in days              (0 at i = 0)
    subsidence[i]   = height[0] - height[i]                (baseline = first record)
    velocity[i]     = (subsidence[i] - subsidence[i-1]) / dt_days[i]
    acceleration[i] = (velocity[i] - velocity[i-1]) / dt_days[i]
    yearly_rate[i]  = velocity[i] * 365

velocity and acceleration are undefined at the first record and carried as
0.  Positive subsidence means the station sank.  Environmental covariates
pass through untouched.
"""

from __future__ import annotations

from typing import List, Optional

import numpy as np
import pandas as pd

from .config import (
    COVARIATE_COLUMNS,
    DAYS_PER_YEAR,
    KINEMATIC_COLUMNS,
    STATION_COL,
    TIME_COL,
    FeatureConfig,
)

_NS_PER_DAY = 86_400 * 10**9


def elapsed_days(timestamps: pd.Series) -> np.ndarray:
    """Days elapsed since the previous timestamp (0 for the first)."""
    ns = timestamps.to_numpy(dtype="datetime64[ns]").astype(np.int64)
    dt = np.zeros(len(ns), dtype=np.float64)
    if len(ns) > 1:
        dt[1:] = np.diff(ns) / _NS_PER_DAY
    return dt


def _first_difference(values: np.ndarray, dt: np.ndarray) -> np.ndarray:
    out = np.zeros_like(values)
    if len(values) > 1:
        out[1:] = (values[1:] - values[:-1]) / dt[1:]
    return out


def _derive_station(group: pd.DataFrame) -> pd.DataFrame:
    group = group.sort_values(TIME_COL, kind="mergesort").copy()
    height = group["height"].to_numpy(dtype=np.float64)
    dt = elapsed_days(group[TIME_COL])

    subsidence = height[0] - height
    velocity = _first_difference(subsidence, dt)
    acceleration = _first_difference(velocity, dt)

    group["dt_days"] = dt
    group["subsidence"] = subsidence
    group["velocity"] = velocity
    group["acceleration"] = acceleration
    group["yearly_rate"] = velocity * DAYS_PER_YEAR
    return group


def derive_features(df: pd.DataFrame) -> pd.DataFrame:
    """
    Add ``dt_days`` and the kinematic columns to a cleaned batch.

    Parameters
    ----------
    df : pd.DataFrame
        Output of :func:`subsidence.cleaning.clean_observations`.
        Timestamps must be strictly increasing within a station.

    Returns
    -------
    pd.DataFrame
        A new frame; the input is not modified.
    """
    if df.empty:
        out = df.copy()
        for col in ["dt_days"] + KINEMATIC_COLUMNS:
            out[col] = pd.Series(dtype=np.float64)
        return out

    parts = [_derive_station(g) for _, g in df.groupby(STATION_COL, sort=True)]
    out = pd.concat(parts, ignore_index=True)

    dup = out.groupby(STATION_COL)["dt_days"].apply(lambda s: (s.iloc[1:] <= 0).any())
    if dup.any():
        raise ValueError(
            f"Non-increasing timestamps for stations {list(dup[dup].index)}; "
            f"run clean_observations first."
        )
    return out


def feature_columns(
    df: pd.DataFrame,
    feature_config: Optional[FeatureConfig] = None,
) -> List[str]:
    """
    Model input columns for one context record.

    Kinematics always; station coordinates when configured; each requested
    covariate only if the batch carries it without gaps.
    """
    cfg = feature_config or FeatureConfig()
    cols: List[str] = list(KINEMATIC_COLUMNS)
    if cfg.include_coordinates:
        cols += ["easting", "northing"]
    for cov in cfg.covariates:
        if cov not in COVARIATE_COLUMNS:
            raise ValueError(f"Unknown covariate '{cov}'. Choose from {COVARIATE_COLUMNS}")
        if cov in df.columns and df[cov].notna().all():
            cols.append(cov)
    return cols
