"""
subsidence.inference
====================
Single-pass forecasting with a :class:`~subsidence.export.TrainedModel`.

For every sequence of the input feature batch:

1. window with the stored sequence length / gap limit;
2. scale with the stored training statistics;
3. run the fused regional predictors once (dropout off);
4. invert the target scaling;
5. attach bootstrap bounds, confidence and a risk level.

The forecast yearly rate is the step from the last context subsidence to
the forecast, annualised over the target's elapsed days.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from .config import DAYS_PER_YEAR, STATION_COL, TIME_COL, RiskLevel
from .errors import Diagnostic
from .evaluation import bootstrap_intervals
from .export import TrainedModel
from .risk import classify_many, risk_basis_values
from .sequencing import SequenceSet


@dataclass(frozen=True)
class PredictionResult:
    timestamp: pd.Timestamp
    actual_subsidence: float
    predicted_subsidence: float
    confidence: float
    risk_level: RiskLevel
    location: Dict[str, object]        # easting, northing, district
    station_id: str = ""
    region: int = 0
    predicted_yearly_rate: float = float("nan")
    lower: float = float("nan")
    upper: float = float("nan")

    def to_dict(self) -> dict:
        return {
            "timestamp": pd.Timestamp(self.timestamp).isoformat(),
            "station_id": self.station_id,
            "region": self.region,
            "actual_subsidence": self.actual_subsidence,
            "predicted_subsidence": self.predicted_subsidence,
            "predicted_yearly_rate": self.predicted_yearly_rate,
            "lower": self.lower,
            "upper": self.upper,
            "confidence": self.confidence,
            "risk_level": self.risk_level.value,
            "location": dict(self.location),
        }


def predict(
    trained: TrainedModel,
    features: pd.DataFrame,
    batch_size: int = 256,
) -> List[PredictionResult]:
    """
    Forecast every sequence of ``features``.

    Parameters
    ----------
    trained : TrainedModel
    features : pd.DataFrame
        Output of :func:`subsidence.features.derive_features`.
    batch_size : int
        Inference batch size (memory only; results do not depend on it).

    Returns
    -------
    list of PredictionResult
        Ordered by station, then target time.  Windows with a non-finite
        input are skipped and reported as a
        :class:`~subsidence.errors.DataQualityWarning`.
    """
    cfg = trained.config
    missing = [c for c in trained.feature_cols if c not in features.columns]
    if missing:
        raise ValueError(f"Feature batch is missing model inputs: {missing}")

    seqs = SequenceSet(features, cfg.model.sequence_length, cfg.cleaning.max_gap_days)
    X, y, meta = seqs.to_arrays(trained.feature_cols)
    if len(X) == 0:
        return []

    finite = np.isfinite(X).all(axis=(1, 2))
    if not finite.all():
        skipped = meta[~finite][STATION_COL].value_counts().sort_index()
        for sid, count in skipped.items():
            Diagnostic(
                kind="data_quality",
                station_id=str(sid),
                message=f"Station {sid}: {int(count)} windows with missing model "
                        f"inputs were not forecast.",
                details={"windows": int(count)},
            ).emit()
        X, y = X[finite], y[finite]
        meta = meta[finite].reset_index(drop=True)
        if len(X) == 0:
            return []

    regions = trained.assignment.assign(meta)
    scaled_pred, _ = trained.model.predict(
        trained.scaler.transform_X(X), regions, batch_size=batch_size
    )
    pred = trained.scaler.inverse_y(scaled_pred)

    dt = meta["dt_days"].to_numpy(dtype=np.float64)
    rate = (pred - meta["last_subsidence"].to_numpy(dtype=np.float64)) / dt * DAYS_PER_YEAR

    lower, upper, confidence = bootstrap_intervals(
        pred, regions, trained.residuals, trained.residual_regions, cfg.evaluation
    )
    levels = classify_many(
        risk_basis_values(pred, rate, cfg.evaluation.risk_basis),
        cfg.evaluation.thresholds,
    )

    results: List[PredictionResult] = []
    for i, row in enumerate(meta.itertuples(index=False)):
        sid = str(getattr(row, STATION_COL))
        results.append(PredictionResult(
            timestamp=pd.Timestamp(getattr(row, TIME_COL)),
            actual_subsidence=float(y[i]),
            predicted_subsidence=float(pred[i]),
            confidence=float(confidence[i]),
            risk_level=levels[i],
            location={
                "easting": float(row.easting),
                "northing": float(row.northing),
                "district": sid,
            },
            station_id=sid,
            region=int(regions[i]),
            predicted_yearly_rate=float(rate[i]),
            lower=float(lower[i]),
            upper=float(upper[i]),
        ))
    return results


def predictions_to_frame(results: List[PredictionResult]) -> pd.DataFrame:
    """Flatten prediction results into a table (one row per forecast)."""
    columns = [
        STATION_COL, TIME_COL, "region", "easting", "northing", "district",
        "actual_subsidence", "predicted_subsidence", "predicted_yearly_rate",
        "lower", "upper", "confidence", "risk_level",
    ]
    rows = [
        {
            STATION_COL: r.station_id,
            TIME_COL: r.timestamp,
            "region": r.region,
            "easting": r.location["easting"],
            "northing": r.location["northing"],
            "district": r.location["district"],
            "actual_subsidence": r.actual_subsidence,
            "predicted_subsidence": r.predicted_subsidence,
            "predicted_yearly_rate": r.predicted_yearly_rate,
            "lower": r.lower,
            "upper": r.upper,
            "confidence": r.confidence,
            "risk_level": r.risk_level.value,
        }
        for r in results
    ]
    return pd.DataFrame(rows, columns=columns)


def highest_risk(results: List[PredictionResult]) -> Optional[RiskLevel]:
    """Most severe level among ``results`` (None when empty)."""
    return max((r.risk_level for r in results), default=None)
