"""
subsidence.splitting
====================
Temporal train / validation splitting and leakage-safe scaling.

Public API
----------
temporal_split(meta, validation_split)        → (train_idx, val_idx)
fit_scalers(X_train, y_train, scaler_type)     → SequenceScaler
check_no_leakage(meta, train_idx, val_idx)    → assertion-based audit

Sequences are ordered by target timestamp (ties broken by station id);
the earliest ``1 - validation_split`` fraction trains, the rest validates.
Future targets therefore never inform the fit of past ones.

Leakage checklist
-----------------
✓  Scalers fitted on training windows only.
✓  max(train target time) <= min(val target time).
✓  Train and validation indices are disjoint.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np
import pandas as pd
from sklearn.preprocessing import MinMaxScaler, RobustScaler, StandardScaler

from .config import STATION_COL, TIME_COL


# ======================================================================== #
#  1.  Splitting                                                            #
# ======================================================================== #

def temporal_split(
    meta: pd.DataFrame,
    validation_split: float,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Split sequences by target time.

    Parameters
    ----------
    meta : pd.DataFrame
        Sequence meta from :meth:`SequenceSet.to_arrays`.
    validation_split : float
        Fraction of sequences held out for validation.

    Returns
    -------
    train_idx, val_idx : np.ndarray
        Positional indices into ``meta`` (each sorted ascending).
    """
    n = len(meta)
    if n < 2:
        return np.arange(n), np.empty(0, dtype=np.int64)

    order = (
        meta[[TIME_COL, STATION_COL]]
        .reset_index(drop=True)
        .sort_values([TIME_COL, STATION_COL], kind="mergesort")
        .index.to_numpy()
    )
    n_train = int(round(n * (1.0 - validation_split)))
    n_train = min(max(n_train, 1), n - 1)
    return np.sort(order[:n_train]), np.sort(order[n_train:])


# ======================================================================== #
#  2.  Scaling (leakage-safe)                                               #
# ======================================================================== #

SCALER_REGISTRY = {
    "standard": StandardScaler,
    "minmax": MinMaxScaler,
    "robust": RobustScaler,
}


@dataclass
class SequenceScaler:
    """
    Affine feature / target normalisation ``x' = (x - offset) / divisor``.

    Stored as plain arrays so it serialises into the model metadata.
    """
    feature_offset: np.ndarray
    feature_divisor: np.ndarray
    target_offset: float
    target_divisor: float
    scaler_type: str = "standard"

    def transform_X(self, X: np.ndarray) -> np.ndarray:
        return ((X - self.feature_offset) / self.feature_divisor).astype(np.float32)

    def transform_y(self, y: np.ndarray) -> np.ndarray:
        return ((np.asarray(y, dtype=np.float64) - self.target_offset)
                / self.target_divisor).astype(np.float32)

    def inverse_y(self, y_scaled: np.ndarray) -> np.ndarray:
        return np.asarray(y_scaled, dtype=np.float64) * self.target_divisor + self.target_offset

    def to_dict(self) -> dict:
        return {
            "feature_offset": self.feature_offset.tolist(),
            "feature_divisor": self.feature_divisor.tolist(),
            "target_offset": float(self.target_offset),
            "target_divisor": float(self.target_divisor),
            "scaler_type": self.scaler_type,
        }

    @classmethod
    def from_dict(cls, raw: dict) -> "SequenceScaler":
        return cls(
            feature_offset=np.asarray(raw["feature_offset"], dtype=np.float64),
            feature_divisor=np.asarray(raw["feature_divisor"], dtype=np.float64),
            target_offset=float(raw["target_offset"]),
            target_divisor=float(raw["target_divisor"]),
            scaler_type=raw.get("scaler_type", "standard"),
        )


def _affine_params(scaler) -> Tuple[np.ndarray, np.ndarray]:
    """Express a fitted sklearn scaler as (offset, divisor)."""
    if isinstance(scaler, StandardScaler):
        return scaler.mean_, scaler.scale_
    if isinstance(scaler, RobustScaler):
        return scaler.center_, scaler.scale_
    if isinstance(scaler, MinMaxScaler):
        # x * scale_ + min_  ==  (x - (-min_ / scale_)) / (1 / scale_)
        return -scaler.min_ / scaler.scale_, 1.0 / scaler.scale_
    raise TypeError(f"Unsupported scaler: {type(scaler).__name__}")


def fit_scalers(
    X_train: np.ndarray,
    y_train: np.ndarray,
    scaler_type: str = "standard",
) -> SequenceScaler:
    """
    Fit feature and target scaling on **training windows only**.

    Parameters
    ----------
    X_train : np.ndarray, shape (n, L, n_features)
    y_train : np.ndarray, shape (n,)
    scaler_type : str
        One of ``'standard'``, ``'minmax'``, ``'robust'`` (features).
        Targets are always standardised.
    """
    cls = SCALER_REGISTRY.get(scaler_type)
    if cls is None:
        raise ValueError(
            f"Unknown scaler_type='{scaler_type}'. "
            f"Choose from {list(SCALER_REGISTRY)}"
        )
    n_features = X_train.shape[-1]
    scaler = cls()
    scaler.fit(X_train.reshape(-1, n_features))
    offset, divisor = _affine_params(scaler)
    divisor = np.where(np.isfinite(divisor) & (divisor > 0), divisor, 1.0)

    y = np.asarray(y_train, dtype=np.float64)
    y_std = float(y.std()) if len(y) else 1.0
    return SequenceScaler(
        feature_offset=np.asarray(offset, dtype=np.float64),
        feature_divisor=np.asarray(divisor, dtype=np.float64),
        target_offset=float(y.mean()) if len(y) else 0.0,
        target_divisor=y_std if y_std > 0 else 1.0,
        scaler_type=scaler_type,
    )


# ======================================================================== #
#  3.  Leakage checks / assertions                                          #
# ======================================================================== #

def check_no_leakage(
    meta: pd.DataFrame,
    train_idx: np.ndarray,
    val_idx: np.ndarray,
) -> None:
    """
    Verify the temporal split.

    Raises
    ------
    AssertionError
        With a descriptive message if any check fails.
    """
    assert len(np.intersect1d(train_idx, val_idx)) == 0, "LEAKAGE: train ∩ val != ∅"
    assert len(train_idx) > 0, "Train set is empty"
    if len(val_idx) == 0:
        return

    times = pd.to_datetime(meta[TIME_COL]).reset_index(drop=True)
    t_train_max = times.iloc[train_idx].max()
    t_val_min = times.iloc[val_idx].min()
    assert t_train_max <= t_val_min, (
        f"LEAKAGE: max train time ({t_train_max}) > min val time ({t_val_min})"
    )
