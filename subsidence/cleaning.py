"""
subsidence.cleaning
===================
Validate and filter raw station observations.

A record is dropped when

* its timestamp could not be parsed (NaT) or any coordinate (easting,
  northing, height, geoid separation) is NaN/±inf,
* it repeats an earlier (station, timestamp) pair, or
* its height departs from the station median by more than
  ``CleaningConfig.max_abs_subsidence`` — coordinate solutions
  occasionally jump by orders of magnitude and such spikes would dominate
  the derivative features downstream.

The median is recomputed after each pass until no record is dropped, so a
spike on a station's first record does not take the good records with it.
Stations that end up with fewer than ``min_records`` rows are excluded and
reported; nothing here raises for per-record or per-station problems.
Cleaning already cleaned data returns it unchanged.
"""

from __future__ import annotations

from typing import List, Optional, Tuple

import numpy as np
import pandas as pd

from .config import COORDINATE_COLUMNS, STATION_COL, TIME_COL, CleaningConfig
from .errors import Diagnostic


def clean_observations(
    df: pd.DataFrame,
    cleaning_config: Optional[CleaningConfig] = None,
    min_records: int = 0,
) -> Tuple[pd.DataFrame, List[Diagnostic]]:
    """
    Filter an observation batch.

    Parameters
    ----------
    df : pd.DataFrame
        Observation batch (see :mod:`subsidence.ingestion`).
    cleaning_config : CleaningConfig, optional
    min_records : int
        Minimum rows a station needs to stay in the batch; pass
        ``sequence_length + 1`` to keep only stations that can produce at
        least one sequence.

    Returns
    -------
    clean_df : pd.DataFrame
        Surviving records sorted by station and timestamp.
    diagnostics : list of Diagnostic
        One entry per station that lost records or was excluded.
    """
    cfg = cleaning_config or CleaningConfig()
    diagnostics: List[Diagnostic] = []

    out = df.sort_values([STATION_COL, TIME_COL], kind="mergesort")
    n_in = out.groupby(STATION_COL, sort=True).size()

    # --- Unparseable timestamps and non-finite coordinates ---
    coords = out[COORDINATE_COLUMNS].to_numpy(dtype=np.float64)
    out = out[np.isfinite(coords).all(axis=1) & out[TIME_COL].notna().to_numpy()]

    # --- Duplicate sampling instants ---
    out = out[~out.duplicated(subset=[STATION_COL, TIME_COL], keep="first")]

    # --- Spikes relative to the station median ---
    while not out.empty:
        centre = out.groupby(STATION_COL, sort=False)["height"].transform("median")
        keep = (centre - out["height"]).abs() <= cfg.max_abs_subsidence
        if keep.all():
            break
        out = out[keep]

    n_out = out.groupby(STATION_COL, sort=True).size().reindex(n_in.index, fill_value=0)
    for station, before in n_in.items():
        after = int(n_out[station])
        if after < before:
            diagnostics.append(Diagnostic(
                kind="data_quality",
                station_id=str(station),
                message=f"Station {station}: dropped {before - after} of "
                        f"{before} records (unparseable, non-finite, duplicate or spike).",
                details={"records_in": int(before), "records_out": after},
            ))

    # --- Insufficient history ---
    short = n_out[n_out < min_records].index
    for station in short:
        diagnostics.append(Diagnostic(
            kind="data_quality",
            station_id=str(station),
            message=f"Station {station}: only {int(n_out[station])} valid records, "
                    f"{min_records} required; excluded from training.",
            details={"records": int(n_out[station]), "required": int(min_records)},
        ))
    if len(short):
        out = out[~out[STATION_COL].isin(short)]

    return out.reset_index(drop=True), diagnostics
