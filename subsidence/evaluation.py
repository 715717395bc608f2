"""
subsidence.evaluation
=====================
Hold-out metrics and bootstrap confidence for subsidence forecasts.

Metrics
-------
All metrics are computed in original units (metres) after the target
scaling has been inverted.

* **MSE**       — mean squared error.
* **RMSE**      — ``sqrt(MSE)``, always derived from the reported MSE.
* **MAE**       — mean absolute error.
* **R²**        — ``1 − SS_res / SS_tot`` (NaN for fewer than 2 samples).
* **Accuracy**  — fraction of forecasts with ``|error| ≤ tolerance``.

Confidence
----------
Hold-out residuals ``actual − predicted`` are resampled with replacement
``n_bootstrap`` times; each resample yields the ``(1−level)/2`` and
``(1+level)/2`` residual quantiles, and their bootstrap means give the
interval offsets ``(q_lo, q_hi)``.  A forecast ``p`` then gets the bounds
``p + q_lo``, ``p + q_hi`` and the confidence::

    half_width = (q_hi − q_lo) / 2
    confidence = 1 − half_width / (|p| + half_width)

Residuals are pooled per region when the region has at least
``min_region_residuals`` of them, otherwise the global pool is used.

Public API
----------
compute_metrics(y_true, y_pred, tolerance)      → dict
bootstrap_interval(residuals, ...)             → (q_lo, q_hi)
bootstrap_intervals(pred, regions, residuals, residual_regions, config)
                                               → (lower, upper, confidence)
build_model_metrics(y_true, y_pred, training_result, tolerance)
                                               → ModelMetrics
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np
from sklearn.metrics import mean_absolute_error, mean_squared_error, r2_score

from .config import EvaluationConfig
from .training import EpochMetric, TrainingResult


# ======================================================================== #
#  Metrics                                                                  #
# ======================================================================== #

def compute_metrics(
    y_true: np.ndarray,
    y_pred: np.ndarray,
    tolerance: float = 0.01,
) -> Dict[str, float]:
    """
    Parameters
    ----------
    y_true, y_pred : array-like, shape (n,)
    tolerance : float
        Absolute error (same units as ``y``) counted as an accurate forecast.

    Returns
    -------
    dict
        Keys: ``mse, rmse, mae, r2_score, accuracy``.
    """
    y_true = np.asarray(y_true, dtype=np.float64)
    y_pred = np.asarray(y_pred, dtype=np.float64)
    if y_true.shape != y_pred.shape:
        raise ValueError(f"Shape mismatch: {y_true.shape} vs {y_pred.shape}")
    if len(y_true) == 0:
        raise ValueError("Cannot compute metrics on an empty set.")

    mse = float(mean_squared_error(y_true, y_pred))
    metrics: Dict[str, float] = {
        "mse": mse,
        "rmse": math.sqrt(mse),
        "mae": float(mean_absolute_error(y_true, y_pred)),
    }
    # R² is undefined for a single sample
    metrics["r2_score"] = float(r2_score(y_true, y_pred)) if len(y_true) > 1 else float("nan")
    metrics["accuracy"] = float(np.mean(np.abs(y_true - y_pred) <= tolerance))
    return metrics


@dataclass
class ModelMetrics:
    """Report of one completed training run."""
    mse: float
    rmse: float
    mae: float
    accuracy: float
    r2_score: float
    training_loss: List[float] = field(default_factory=list)
    validation_loss: List[float] = field(default_factory=list)
    epoch_details: List[EpochMetric] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "mse": self.mse,
            "rmse": self.rmse,
            "mae": self.mae,
            "accuracy": self.accuracy,
            "r2_score": self.r2_score,
            "training_loss": list(self.training_loss),
            "validation_loss": list(self.validation_loss),
            "epoch_details": [e.to_dict() for e in self.epoch_details],
        }

    @classmethod
    def from_dict(cls, raw: dict) -> "ModelMetrics":
        # JSON stores non-finite values as null
        return cls(
            mse=_as_float(raw["mse"]),
            rmse=_as_float(raw["rmse"]),
            mae=_as_float(raw["mae"]),
            accuracy=_as_float(raw["accuracy"]),
            r2_score=_as_float(raw["r2_score"]),
            training_loss=[_as_float(v) for v in raw.get("training_loss", [])],
            validation_loss=[_as_float(v) for v in raw.get("validation_loss", [])],
            epoch_details=[
                EpochMetric(**{k: (v if k == "epoch" else _as_float(v)) for k, v in e.items()})
                for e in raw.get("epoch_details", [])
            ],
        )


def _as_float(value) -> float:
    return float("nan") if value is None else float(value)


def build_model_metrics(
    y_true: np.ndarray,
    y_pred: np.ndarray,
    training_result: TrainingResult,
    tolerance: float = 0.01,
) -> ModelMetrics:
    """Combine hold-out metrics with the epoch history of a training run."""
    m = compute_metrics(y_true, y_pred, tolerance)
    return ModelMetrics(
        mse=m["mse"],
        rmse=m["rmse"],
        mae=m["mae"],
        accuracy=m["accuracy"],
        r2_score=m["r2_score"],
        training_loss=training_result.training_loss,
        validation_loss=training_result.validation_loss,
        epoch_details=list(training_result.epoch_details),
    )


# ======================================================================== #
#  Bootstrap confidence                                                     #
# ======================================================================== #

def bootstrap_interval(
    residuals: np.ndarray,
    n_bootstrap: int = 1000,
    level: float = 0.95,
    rng: Optional[np.random.Generator] = None,
    chunk_size: int = 200,
) -> Tuple[float, float]:
    """
    Bootstrap estimate of the residual interval at ``level``.

    Returns
    -------
    (q_lo, q_hi) : offsets to add to a point forecast.
    """
    residuals = np.asarray(residuals, dtype=np.float64)
    residuals = residuals[np.isfinite(residuals)]
    n = len(residuals)
    if n == 0:
        return float("nan"), float("nan")
    if rng is None:
        rng = np.random.default_rng()

    alpha = (1.0 - level) / 2.0
    lo_sum, hi_sum = 0.0, 0.0
    done = 0
    while done < n_bootstrap:
        k = min(chunk_size, n_bootstrap - done)
        idx = rng.integers(0, n, size=(k, n))
        q = np.quantile(residuals[idx], [alpha, 1.0 - alpha], axis=1)
        lo_sum += float(q[0].sum())
        hi_sum += float(q[1].sum())
        done += k
    return lo_sum / n_bootstrap, hi_sum / n_bootstrap


def confidence_from_interval(pred: np.ndarray, half_width: np.ndarray) -> np.ndarray:
    """
    ``1 − hw / (|p| + hw)`` clipped to [0, 1]; a zero-width interval gives 1.

    A non-finite forecast or half-width gives 0.
    """
    pred = np.abs(np.asarray(pred, dtype=np.float64))
    hw = np.maximum(np.asarray(half_width, dtype=np.float64), 0.0)
    denom = pred + hw
    with np.errstate(divide="ignore", invalid="ignore"):
        conf = np.where(denom > 0, 1.0 - hw / denom, 1.0)
    conf = np.where(np.isfinite(hw) & np.isfinite(pred), conf, 0.0)
    return np.clip(conf, 0.0, 1.0)


def bootstrap_intervals(
    predictions: np.ndarray,
    regions: np.ndarray,
    residuals: np.ndarray,
    residual_regions: np.ndarray,
    config: Optional[EvaluationConfig] = None,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Per-prediction interval bounds and confidence.

    Parameters
    ----------
    predictions : (n,) forecasts in original units
    regions : (n,) region id of each forecast
    residuals : (m,) hold-out residuals ``actual − predicted``
    residual_regions : (m,) region id of each residual
    config : EvaluationConfig

    Returns
    -------
    lower, upper, confidence : np.ndarray, each shape (n,)
        Without any residual the bounds are NaN and the confidence 0.
    """
    cfg = config or EvaluationConfig()
    pred = np.asarray(predictions, dtype=np.float64)
    regions = np.asarray(regions)
    residuals = np.asarray(residuals, dtype=np.float64)
    residual_regions = np.asarray(residual_regions)

    rng = np.random.default_rng(cfg.seed)
    q_lo = np.full(len(pred), np.nan)
    q_hi = np.full(len(pred), np.nan)
    if len(pred) == 0:
        return q_lo.copy(), q_hi.copy(), np.zeros(0)

    global_interval = bootstrap_interval(
        residuals, cfg.n_bootstrap, cfg.confidence_level, rng
    )
    # Regions are visited in sorted order so the RNG stream is reproducible
    for region in np.unique(regions):
        pool = residuals[residual_regions == region]
        if len(pool) >= cfg.min_region_residuals:
            lo, hi = bootstrap_interval(pool, cfg.n_bootstrap, cfg.confidence_level, rng)
        else:
            lo, hi = global_interval
        mask = regions == region
        q_lo[mask] = lo
        q_hi[mask] = hi

    lower = pred + q_lo
    upper = pred + q_hi
    confidence = confidence_from_interval(pred, (q_hi - q_lo) / 2.0)
    return lower, upper, confidence
