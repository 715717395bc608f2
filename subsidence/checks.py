"""
subsidence.checks
=================
Data preview, sequence-integrity assertions, leakage and quality guards.

Can be run standalone (``python -m subsidence.checks observations.csv``)
or imported.
"""

from __future__ import annotations

import sys
import warnings
from typing import Dict, List

import numpy as np
import pandas as pd

from .config import (
    COORDINATE_COLUMNS,
    COVARIATE_COLUMNS,
    STATION_COL,
    TIME_COL,
)
from .sequencing import SequenceSet


# ======================================================================== #
#  Data preview                                                             #
# ======================================================================== #

def _expected_daily_records(df: pd.DataFrame) -> int:
    """Records a daily cadence would produce over each station's span."""
    if df.empty:
        return 0
    span = df.groupby(STATION_COL)[TIME_COL].agg(["min", "max"])
    days = (span["max"].dt.normalize() - span["min"].dt.normalize()).dt.days + 1
    return int(days.sum())


def data_preview(df: pd.DataFrame) -> Dict:
    """
    Summarise an observation batch before training.

    Parameters
    ----------
    df : pd.DataFrame
        Observation batch (see :func:`subsidence.ingestion.load_observations`).

    Returns
    -------
    dict
        ``total_records``, ``station_count``, ``date_range``,
        ``yearly_data`` (per year: records, station_count, completeness,
        quality), ``available_variables``, ``spatial_coverage`` and
        overall ``data_quality`` (completeness, consistency, accuracy).

    Notes
    -----
    *completeness* is records / records expected at a daily cadence over
    each station's observed span; *quality* (and overall *accuracy*) the
    fraction of records with a parsed timestamp and every coordinate
    finite; *consistency* the fraction of records whose (station,
    timestamp) is not a duplicate.
    """
    n = len(df)
    times = pd.to_datetime(df[TIME_COL]) if n else pd.Series([], dtype="datetime64[ns]")
    finite = (
        np.isfinite(df[COORDINATE_COLUMNS].to_numpy(dtype=np.float64)).all(axis=1)
        & times.notna().to_numpy()
        if n else np.empty(0, dtype=bool)
    )
    dated = bool(times.notna().any())
    frame = df.assign(**{TIME_COL: times, "_finite": finite})

    yearly: List[Dict] = []
    for year, g in frame.groupby(frame[TIME_COL].dt.year, sort=True):
        expected = _expected_daily_records(g)
        yearly.append({
            "year": int(year),
            "records": int(len(g)),
            "station_count": int(g[STATION_COL].nunique()),
            "completeness": float(min(len(g) / expected, 1.0)) if expected else 0.0,
            "quality": float(g["_finite"].mean()),
        })

    expected = _expected_daily_records(frame)
    duplicated = frame.duplicated([STATION_COL, TIME_COL]) if n else pd.Series([], dtype=bool)
    ok = frame[finite] if n else frame

    def _span(col: str) -> Dict[str, float]:
        if ok.empty:
            return {"min": float("nan"), "max": float("nan")}
        return {"min": float(ok[col].min()), "max": float(ok[col].max())}

    east, north = _span("easting"), _span("northing")
    return {
        "total_records": int(n),
        "station_count": int(df[STATION_COL].nunique()) if n else 0,
        "date_range": {
            "start": times.min().isoformat() if dated else None,
            "end": times.max().isoformat() if dated else None,
        },
        "yearly_data": yearly,
        "available_variables": [
            c for c in COORDINATE_COLUMNS + COVARIATE_COLUMNS
            if c in df.columns and df[c].notna().any()
        ],
        "spatial_coverage": {
            "min_easting": east["min"],
            "max_easting": east["max"],
            "min_northing": north["min"],
            "max_northing": north["max"],
        },
        "data_quality": {
            "completeness": float(min(n / expected, 1.0)) if expected else 0.0,
            "consistency": float(1.0 - duplicated.mean()) if n else 0.0,
            "accuracy": float(finite.mean()) if n else 0.0,
        },
    }


# ======================================================================== #
#  Sequence integrity                                                       #
# ======================================================================== #

def assert_sequence_integrity(seqs: SequenceSet) -> None:
    """
    Every sequence stays inside one station, has exactly ``L`` context
    records strictly before its target, and targets are contiguous
    (consecutive windows of a station advance by one record).
    """
    L = seqs.sequence_length
    last_end: Dict[str, int] = {}
    for s in seqs:
        ctx = s.context
        assert len(ctx) == L, f"{s.station_id}: context length {len(ctx)} != {L}"
        assert (ctx[STATION_COL].astype(str) == s.station_id).all(), (
            f"{s.station_id}: window crosses stations"
        )
        assert ctx[TIME_COL].iloc[-1] < s.target_time, (
            f"{s.station_id}: context not strictly before target at {s.target_time}"
        )
        prev = last_end.get(s.station_id)
        if prev is not None and seqs.max_gap_days is None:
            assert s.end == prev + 1, (
                f"{s.station_id}: non-contiguous targets {prev} → {s.end}"
            )
        last_end[s.station_id] = s.end

    counts = seqs.counts()
    if seqs.max_gap_days is None:
        for sid, c in counts.items():
            expected = max(0, len(seqs.station_frame(sid)) - L)
            assert c == expected, f"{sid}: {c} sequences, expected {expected}"


# ======================================================================== #
#  Data quality                                                             #
# ======================================================================== #

def assert_no_nan_in_features(df: pd.DataFrame, feature_cols: List[str]) -> None:
    """Verify that the final feature matrix has no NaN values."""
    nan_counts = df[feature_cols].isna().sum()
    has_nan = nan_counts[nan_counts > 0]
    assert has_nan.empty, f"NaN values in features:\n{has_nan}"


def assert_no_future_in_features(feature_cols: List[str]) -> None:
    """Feature names must not reference targets or future values."""
    suspicious = [
        c for c in feature_cols
        if any(kw in c.lower() for kw in ("target", "future", "label", "predicted"))
    ]
    assert not suspicious, f"Suspicious feature names (possible leakage): {suspicious}"


def assert_baseline(features: pd.DataFrame) -> None:
    """First record of every station has zero subsidence and velocity."""
    first = features.groupby(STATION_COL, sort=False).head(1)
    assert (first["subsidence"] == 0).all(), "Non-zero subsidence at station baseline"
    assert (first["velocity"] == 0).all(), "Non-zero velocity at station baseline"


def assert_fusion_weights(weights: np.ndarray, active: np.ndarray, atol: float = 1e-6) -> None:
    """Rows sum to 1 and inactive regions carry exactly 0."""
    weights = np.asarray(weights, dtype=np.float64)
    if weights.size == 0:
        return
    assert np.isfinite(weights).all(), "Non-finite fusion weights"
    assert np.allclose(weights.sum(axis=1), 1.0, atol=atol), "Fusion weights do not sum to 1"
    inactive = ~np.asarray(active, dtype=bool)
    assert (weights[:, inactive] == 0).all(), "Inactive region received weight"


# ======================================================================== #
#  Run all checks                                                           #
# ======================================================================== #

def run_all_checks(
    features: pd.DataFrame,
    feature_cols: List[str],
    seqs: SequenceSet,
) -> None:
    """Run the full battery of data-quality and sequence checks."""
    print("Running data quality and sequence checks...")

    assert_no_future_in_features(feature_cols)
    assert_no_nan_in_features(features, feature_cols)
    assert_baseline(features)
    assert_sequence_integrity(seqs)

    if len(seqs) == 0:
        warnings.warn("No sequences available for training.")
    print("  ✓ All data quality checks passed.")


if __name__ == "__main__":
    from .ingestion import load_observations

    if len(sys.argv) < 2:
        print("usage: python -m subsidence.checks OBSERVATIONS.csv [...]")
        sys.exit(1)
    preview = data_preview(load_observations(sys.argv[1:]))
    print(f"{preview['total_records']:,} records from {preview['station_count']} stations "
          f"({preview['date_range']['start']} → {preview['date_range']['end']})")
    for y in preview["yearly_data"]:
        print(f"  {y['year']}: {y['records']:>7,} records  stations={y['station_count']:<3d} "
              f"completeness={y['completeness']:.2f}  quality={y['quality']:.2f}")
