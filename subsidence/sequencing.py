"""
subsidence.sequencing
=====================
Sliding-window sequences over per-station feature series.

For a station with records ``r[0..n-1]`` and sequence length ``L``, the
window ending at ``i`` (``i >= L``) has context ``r[i-L..i-1]`` and
target ``r[i]``.  Windows never cross stations and are skipped when any
step inside context + target exceeds ``max_gap_days``.  Without gaps a
station yields exactly ``max(0, n - L)`` sequences.

:class:`SequenceSet` is lazy and restartable: it holds the immutable
per-station frames and regenerates the same :class:`Sequence` objects on
every iteration.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple

import numpy as np
import pandas as pd

from .config import STATION_COL, TIME_COL


@dataclass(frozen=True, eq=False)
class Sequence:
    """``length`` context records of one station plus the record after them."""
    station_id: str
    frame: pd.DataFrame       # the station's full feature series
    end: int                  # positional index of the target record
    length: int

    @property
    def context(self) -> pd.DataFrame:
        return self.frame.iloc[self.end - self.length:self.end]

    @property
    def target(self) -> pd.Series:
        return self.frame.iloc[self.end]

    @property
    def target_time(self) -> pd.Timestamp:
        return self.frame[TIME_COL].iloc[self.end]


class SequenceSet:
    """
    Finite, restartable collection of sequences.

    Parameters
    ----------
    features : pd.DataFrame
        Output of :func:`subsidence.features.derive_features`.
    sequence_length : int
    max_gap_days : float, optional
        Largest allowed spacing between consecutive records of a window.
    """

    def __init__(
        self,
        features: pd.DataFrame,
        sequence_length: int,
        max_gap_days: Optional[float] = None,
    ):
        if sequence_length < 1:
            raise ValueError(f"sequence_length must be >= 1, got {sequence_length}")
        self.sequence_length = int(sequence_length)
        self.max_gap_days = max_gap_days
        self._stations: Dict[str, pd.DataFrame] = {
            str(sid): g.sort_values(TIME_COL, kind="mergesort").reset_index(drop=True)
            for sid, g in features.groupby(STATION_COL, sort=True)
        }
        self._ends: Dict[str, np.ndarray] = {
            sid: self._valid_ends(frame) for sid, frame in self._stations.items()
        }

    # ------------------------------------------------------------------ #

    def _valid_ends(self, frame: pd.DataFrame) -> np.ndarray:
        L = self.sequence_length
        n = len(frame)
        if n <= L:
            return np.empty(0, dtype=np.int64)
        ends = np.arange(L, n)
        if self.max_gap_days is None:
            return ends
        # gap[k] is True when the step into record k is too large
        gap = frame["dt_days"].to_numpy() > self.max_gap_days
        gap[0] = False
        csum = np.concatenate([[0], np.cumsum(gap)])
        # steps into records end-L+1 .. end must all be fine
        bad = csum[ends + 1] - csum[ends - L + 1]
        return ends[bad == 0]

    @property
    def stations(self) -> List[str]:
        return list(self._stations)

    def station_frame(self, station_id: str) -> pd.DataFrame:
        return self._stations[station_id]

    def counts(self) -> Dict[str, int]:
        """Number of sequences per station."""
        return {sid: len(ends) for sid, ends in self._ends.items()}

    def __len__(self) -> int:
        return int(sum(len(e) for e in self._ends.values()))

    def __iter__(self) -> Iterator[Sequence]:
        for sid, frame in self._stations.items():
            for end in self._ends[sid]:
                yield Sequence(sid, frame, int(end), self.sequence_length)

    # ------------------------------------------------------------------ #

    def to_arrays(
        self,
        feature_cols: List[str],
        target_col: str = "subsidence",
    ) -> Tuple[np.ndarray, np.ndarray, pd.DataFrame]:
        """
        Materialise the windows.

        Returns
        -------
        X : np.ndarray, shape (n, L, n_features)
        y : np.ndarray, shape (n,)
            Target-record value of ``target_col``.
        meta : pd.DataFrame
            One row per sequence: station, target timestamp, target
            location, last context subsidence and the target ``dt_days``.
        """
        L = self.sequence_length
        X_parts, y_parts, meta_parts = [], [], []
        for sid, frame in self._stations.items():
            ends = self._ends[sid]
            if len(ends) == 0:
                continue
            values = frame[feature_cols].to_numpy(dtype=np.float64)
            idx = ends[:, None] + np.arange(-L, 0)[None, :]
            X_parts.append(values[idx])
            y_parts.append(frame[target_col].to_numpy(dtype=np.float64)[ends])
            meta_parts.append(pd.DataFrame({
                STATION_COL: sid,
                TIME_COL: frame[TIME_COL].to_numpy()[ends],
                "easting": frame["easting"].to_numpy()[ends],
                "northing": frame["northing"].to_numpy()[ends],
                "last_subsidence": frame["subsidence"].to_numpy()[ends - 1],
                "dt_days": frame["dt_days"].to_numpy()[ends],
            }))

        if not X_parts:
            return (
                np.empty((0, L, len(feature_cols)), dtype=np.float64),
                np.empty(0, dtype=np.float64),
                pd.DataFrame(columns=[STATION_COL, TIME_COL, "easting", "northing",
                                      "last_subsidence", "dt_days"]),
            )
        return (
            np.concatenate(X_parts),
            np.concatenate(y_parts),
            pd.concat(meta_parts, ignore_index=True),
        )


def build_sequences(
    features: pd.DataFrame,
    sequence_length: int,
    max_gap_days: Optional[float] = None,
) -> SequenceSet:
    """Convenience constructor for :class:`SequenceSet`."""
    return SequenceSet(features, sequence_length, max_gap_days)
