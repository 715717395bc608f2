"""
subsidence.errors
=================
Warning and exception taxonomy shared by every pipeline stage.

Recoverable conditions (a station with too little history, a region with
no sequences) are *warnings*: stages collect them as :class:`Diagnostic`
records returned next to their output and never raise for them.  Fatal
conditions (bad configuration, a diverging training run) are exceptions.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


# ======================================================================== #
#  Warning categories                                                       #
# ======================================================================== #

class DataQualityWarning(UserWarning):
    """A station or record was excluded because of insufficient or bad data."""


class InsufficientRegionData(UserWarning):
    """A region received zero sequences; its fusion weight is forced to 0."""


# ======================================================================== #
#  Fatal errors                                                             #
# ======================================================================== #

class InvalidConfig(ValueError):
    """A configuration field is outside its documented range."""

    def __init__(self, message: str, *, field: Optional[str] = None, value: Any = None):
        super().__init__(message)
        self.field = field
        self.value = value


class TrainingDivergence(RuntimeError):
    """
    The training loss became non-finite.

    ``epoch_details`` holds the EpochMetrics of every epoch that completed
    before the divergence, so callers can still inspect the run.
    """

    def __init__(
        self,
        message: str,
        *,
        epoch: Optional[int] = None,
        epoch_details: Optional[List[Any]] = None,
    ):
        super().__init__(message)
        self.epoch = epoch
        self.epoch_details = list(epoch_details or [])


# ======================================================================== #
#  Diagnostics                                                              #
# ======================================================================== #

_CATEGORIES = {
    "data_quality": DataQualityWarning,
    "region": InsufficientRegionData,
}


@dataclass(frozen=True)
class Diagnostic:
    """One non-fatal finding produced by a pipeline stage."""

    kind: str                      # 'data_quality' | 'region'
    message: str
    station_id: Optional[str] = None
    region: Optional[int] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def category(self) -> type:
        return _CATEGORIES.get(self.kind, UserWarning)

    def emit(self) -> None:
        """Re-issue the diagnostic through :mod:`warnings`."""
        warnings.warn(self.message, self.category, stacklevel=2)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "message": self.message,
            "station_id": self.station_id,
            "region": self.region,
            "details": dict(self.details),
        }
