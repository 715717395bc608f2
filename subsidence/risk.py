"""
subsidence.risk
===============
Map forecast rates to :class:`~subsidence.config.RiskLevel`.

With ``r = |rate|``::

    r > critical  → critical
    r > high      → high
    r > medium    → medium
    otherwise     → low

Boundaries are exclusive: a rate exactly on a threshold stays in the lower
band.  A non-finite rate is classified as low.
"""

from __future__ import annotations

import math
from typing import List, Optional

import numpy as np

from .config import (
    GENERIC_THRESHOLDS,
    RiskBasis,
    RiskLevel,
    RiskThresholds,
)


def classify_risk(rate: float, thresholds: Optional[RiskThresholds] = None) -> RiskLevel:
    t = thresholds or GENERIC_THRESHOLDS
    r = abs(float(rate))
    if not math.isfinite(r):
        return RiskLevel.LOW
    if r > t.critical:
        return RiskLevel.CRITICAL
    if r > t.high:
        return RiskLevel.HIGH
    if r > t.medium:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def classify_many(
    rates: np.ndarray,
    thresholds: Optional[RiskThresholds] = None,
) -> List[RiskLevel]:
    return [classify_risk(r, thresholds) for r in np.asarray(rates, dtype=np.float64)]


def risk_basis_values(
    predicted_subsidence: np.ndarray,
    predicted_yearly_rate: np.ndarray,
    basis: RiskBasis = RiskBasis.YEARLY_RATE,
) -> np.ndarray:
    """Select the quantity the classifier is applied to."""
    if basis == RiskBasis.YEARLY_RATE:
        return np.asarray(predicted_yearly_rate, dtype=np.float64)
    if basis == RiskBasis.SUBSIDENCE:
        return np.asarray(predicted_subsidence, dtype=np.float64)
    raise ValueError(f"Unknown risk basis: {basis!r}")


def risk_summary(levels: List[RiskLevel]) -> dict:
    """Count of forecasts per risk level, every level present."""
    counts = {level.value: 0 for level in RiskLevel}
    for level in levels:
        counts[level.value] += 1
    return counts
