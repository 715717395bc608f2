"""
subsidence.config
=================
Central configuration: constants, enumerations, dataclasses and sane defaults.

Every run is fully described by a :class:`PipelineConfig` that is
serialised alongside the trained model for reproducibility.  The model
hyper-parameters live in the immutable :class:`ModelConfig`, which is
range-checked on construction so that an invalid run is rejected before
any computation starts.
"""

from __future__ import annotations

import hashlib
import json
import math
import platform
import subprocess
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .errors import InvalidConfig


# ---------------------------------------------------------------------------
# Observation schema
# ---------------------------------------------------------------------------
STATION_COL: str = "station_id"
TIME_COL: str = "timestamp"

COORDINATE_COLUMNS: List[str] = ["easting", "northing", "height", "geoid_separation"]

# Environmental covariates carried through when the source provides them
COVARIATE_COLUMNS: List[str] = ["temperature", "precipitation", "groundwater_level"]

KINEMATIC_COLUMNS: List[str] = ["subsidence", "velocity", "acceleration", "yearly_rate"]

DAYS_PER_YEAR: float = 365.0


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------
class RiskLevel(str, Enum):
    """Risk category, totally ordered by severity."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def severity(self) -> int:
        return _SEVERITY[self.value]

    def __lt__(self, other):
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.severity < other.severity

    def __le__(self, other):
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.severity <= other.severity

    def __gt__(self, other):
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.severity > other.severity

    def __ge__(self, other):
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.severity >= other.severity


_SEVERITY = {"low": 0, "medium": 1, "high": 2, "critical": 3}


class PartitionStrategy(str, Enum):
    """How stations are assigned to regions."""
    HASH = "hash"          # stable SHA-256 of the station id
    SPATIAL = "spatial"    # k-means over mean station coordinates


class RiskBasis(str, Enum):
    """Quantity the risk classifier is applied to."""
    YEARLY_RATE = "yearly_rate"
    SUBSIDENCE = "subsidence"


# ---------------------------------------------------------------------------
# Risk thresholds
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class RiskThresholds:
    """
    Lower boundaries (exclusive) of the medium / high / critical bands.

    A value exactly on a boundary belongs to the lower-severity band.
    """
    medium: float = 0.1
    high: float = 0.3
    critical: float = 0.5
    name: str = "generic"

    def __post_init__(self):
        bounds = (self.medium, self.high, self.critical)
        if not all(math.isfinite(b) and b >= 0 for b in bounds):
            raise InvalidConfig(
                f"Risk thresholds must be finite and non-negative, got {bounds}",
                field="thresholds", value=bounds,
            )
        if not self.medium < self.high < self.critical:
            raise InvalidConfig(
                f"Risk thresholds must be strictly increasing "
                f"(medium < high < critical), got {bounds}",
                field="thresholds", value=bounds,
            )

    def to_dict(self) -> dict:
        return asdict(self)


# Generic metre-per-year calibration and the local Padang calibration
GENERIC_THRESHOLDS = RiskThresholds(0.1, 0.3, 0.5, name="generic")
PADANG_THRESHOLDS = RiskThresholds(0.015, 0.02, 0.03, name="padang")

THRESHOLD_PRESETS: Dict[str, RiskThresholds] = {
    "generic": GENERIC_THRESHOLDS,
    "padang": PADANG_THRESHOLDS,
}


# ---------------------------------------------------------------------------
# Model configuration
# ---------------------------------------------------------------------------
# Inclusive valid ranges for every ModelConfig field
MODEL_CONFIG_RANGES: Dict[str, Tuple[float, float]] = {
    "layers": (1, 10),
    "neurons": (32, 512),
    "epochs": (10, 1000),
    "batch_size": (8, 256),
    "learning_rate": (0.0001, 0.1),
    "parallel_regions": (1, 20),
    "sequence_length": (7, 365),
    "dropout_rate": (0.0, 0.8),
    "validation_split": (0.1, 0.4),
}

_INTEGER_FIELDS = ("layers", "neurons", "epochs", "batch_size",
                   "parallel_regions", "sequence_length")


@dataclass(frozen=True)
class ModelConfig:
    """Hyper-parameters of one parallel-LSTM training run (immutable)."""
    layers: int = 3
    neurons: int = 128
    epochs: int = 50
    batch_size: int = 32
    learning_rate: float = 0.001
    parallel_regions: int = 4
    sequence_length: int = 30
    dropout_rate: float = 0.2
    validation_split: float = 0.2

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Raise :class:`InvalidConfig` if any field is out of range."""
        for name, (lo, hi) in MODEL_CONFIG_RANGES.items():
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise InvalidConfig(
                    f"ModelConfig.{name} must be numeric, got {value!r}",
                    field=name, value=value,
                )
            if name in _INTEGER_FIELDS and not isinstance(value, int):
                raise InvalidConfig(
                    f"ModelConfig.{name} must be an integer, got {value!r}",
                    field=name, value=value,
                )
            if not (math.isfinite(value) and lo <= value <= hi):
                raise InvalidConfig(
                    f"ModelConfig.{name}={value!r} outside valid range [{lo}, {hi}]",
                    field=name, value=value,
                )

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict) -> "ModelConfig":
        known = {k: raw[k] for k in MODEL_CONFIG_RANGES if k in raw}
        return cls(**known)


# ---------------------------------------------------------------------------
# Stage configurations
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class CleaningConfig:
    """Observation filtering parameters."""
    max_abs_subsidence: float = 100.0   # drop coordinate spikes beyond this
    max_gap_days: float = 30.0          # no window may span a larger gap

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class FeatureConfig:
    """Which columns feed the recurrent model, and how they are scaled."""
    include_coordinates: bool = True
    covariates: Tuple[str, ...] = tuple(COVARIATE_COLUMNS)
    scaler_type: str = "standard"        # 'standard' | 'minmax' | 'robust'

    def to_dict(self) -> dict:
        d = asdict(self)
        d["covariates"] = list(self.covariates)
        return d


@dataclass(frozen=True)
class RegionConfig:
    """Station → region partitioning."""
    strategy: PartitionStrategy = PartitionStrategy.HASH
    random_seed: int = 42                # k-means seed (spatial strategy)

    def to_dict(self) -> dict:
        return {"strategy": self.strategy.value, "random_seed": self.random_seed}


@dataclass(frozen=True)
class TrainerConfig:
    """Optimisation policy around the ModelConfig hyper-parameters."""
    seed: int = 42
    patience: Optional[int] = 10         # None disables early stopping
    l2_penalty: float = 1e-5
    clip_norm: float = 1.0
    lr_decay: float = 0.95
    lr_decay_every: int = 10
    accuracy_tolerance: float = 0.01     # |error| ≤ tol counts as accurate (m)
    max_epochs: Optional[int] = None     # caller-imposed cap on ModelConfig.epochs
    n_jobs: Optional[int] = None         # regional worker threads (None = parallel_regions)

    def __post_init__(self):
        if self.patience is not None and self.patience < 1:
            raise InvalidConfig("TrainerConfig.patience must be >= 1 or None",
                                field="patience", value=self.patience)
        if self.max_epochs is not None and self.max_epochs < 1:
            raise InvalidConfig("TrainerConfig.max_epochs must be >= 1 or None",
                                field="max_epochs", value=self.max_epochs)
        if self.clip_norm <= 0 or self.l2_penalty < 0:
            raise InvalidConfig("TrainerConfig.clip_norm must be > 0 and l2_penalty >= 0",
                                field="clip_norm", value=self.clip_norm)
        if not 0 < self.lr_decay <= 1 or self.lr_decay_every < 1:
            raise InvalidConfig("TrainerConfig.lr_decay must be in (0, 1] "
                                "and lr_decay_every >= 1",
                                field="lr_decay", value=self.lr_decay)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class EvaluationConfig:
    """Hold-out metrics, bootstrap confidence and risk classification."""
    n_bootstrap: int = 1000
    confidence_level: float = 0.95
    min_region_residuals: int = 20       # below this a region uses global residuals
    risk_basis: RiskBasis = RiskBasis.YEARLY_RATE
    thresholds: RiskThresholds = GENERIC_THRESHOLDS
    seed: int = 42

    def __post_init__(self):
        if self.n_bootstrap < 1:
            raise InvalidConfig("EvaluationConfig.n_bootstrap must be >= 1",
                                field="n_bootstrap", value=self.n_bootstrap)
        if not 0.0 < self.confidence_level < 1.0:
            raise InvalidConfig("EvaluationConfig.confidence_level must be in (0, 1)",
                                field="confidence_level", value=self.confidence_level)

    def to_dict(self) -> dict:
        return {
            "n_bootstrap": self.n_bootstrap,
            "confidence_level": self.confidence_level,
            "min_region_residuals": self.min_region_residuals,
            "risk_basis": self.risk_basis.value,
            "thresholds": self.thresholds.to_dict(),
            "seed": self.seed,
        }


# ---------------------------------------------------------------------------
# Master configuration
# ---------------------------------------------------------------------------
@dataclass
class PipelineConfig:
    """Master configuration for one end-to-end run."""

    # -- Paths --
    output_dir: str = "runs"

    # -- Sub-configs --
    model: ModelConfig = field(default_factory=ModelConfig)
    cleaning: CleaningConfig = field(default_factory=CleaningConfig)
    features: FeatureConfig = field(default_factory=FeatureConfig)
    regions: RegionConfig = field(default_factory=RegionConfig)
    trainer: TrainerConfig = field(default_factory=TrainerConfig)
    evaluation: EvaluationConfig = field(default_factory=EvaluationConfig)

    # -- Export --
    export_format: str = "parquet"       # predictions: 'parquet' | 'csv'

    # -- Reproducibility --
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())

    # ----- helpers -----
    def with_seed(self, seed: int) -> "PipelineConfig":
        """Copy with every RNG seed replaced."""
        return replace(
            self,
            regions=replace(self.regions, random_seed=seed),
            trainer=replace(self.trainer, seed=seed),
            evaluation=replace(self.evaluation, seed=seed),
        )

    def to_dict(self) -> dict:
        return {
            "output_dir": self.output_dir,
            "model": self.model.to_dict(),
            "cleaning": self.cleaning.to_dict(),
            "features": self.features.to_dict(),
            "regions": self.regions.to_dict(),
            "trainer": self.trainer.to_dict(),
            "evaluation": self.evaluation.to_dict(),
            "export_format": self.export_format,
            "created_at": self.created_at,
        }

    def save(self, path: str | Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_dict(), indent=2))

    @classmethod
    def from_dict(cls, raw: dict) -> "PipelineConfig":
        raw = dict(raw)
        raw["model"] = ModelConfig.from_dict(raw.get("model", {}))
        raw["cleaning"] = CleaningConfig(**raw.get("cleaning", {}))
        fc = dict(raw.get("features", {}))
        if "covariates" in fc:
            fc["covariates"] = tuple(fc["covariates"])
        raw["features"] = FeatureConfig(**fc)
        rc = dict(raw.get("regions", {}))
        if "strategy" in rc:
            rc["strategy"] = PartitionStrategy(rc["strategy"])
        raw["regions"] = RegionConfig(**rc)
        raw["trainer"] = TrainerConfig(**raw.get("trainer", {}))
        ec = dict(raw.get("evaluation", {}))
        if "risk_basis" in ec:
            ec["risk_basis"] = RiskBasis(ec["risk_basis"])
        if "thresholds" in ec:
            ec["thresholds"] = RiskThresholds(**ec["thresholds"])
        raw["evaluation"] = EvaluationConfig(**ec)
        return cls(**raw)

    @classmethod
    def load(cls, path: str | Path) -> "PipelineConfig":
        return cls.from_dict(json.loads(Path(path).read_text()))


# ---------------------------------------------------------------------------
# Environment / reproducibility snapshot
# ---------------------------------------------------------------------------
def get_environment_info() -> dict:
    """Capture runtime environment for metadata."""
    import numpy as np
    import torch

    info = {
        "python": platform.python_version(),
        "platform": platform.platform(),
        "numpy": np.__version__,
        "torch": torch.__version__,
        "timestamp": datetime.now().isoformat(),
    }
    try:
        info["git_commit"] = (
            subprocess.check_output(
                ["git", "rev-parse", "HEAD"], stderr=subprocess.DEVNULL
            )
            .decode()
            .strip()
        )
    except (OSError, subprocess.CalledProcessError):
        info["git_commit"] = None
    return info


def file_hash(filepath: str | Path, algo: str = "sha256") -> str:
    """Compute hash of a file for provenance tracking."""
    h = hashlib.new(algo)
    with open(filepath, "rb") as f:
        for chunk in iter(lambda: f.read(1 << 20), b""):
            h.update(chunk)
    return h.hexdigest()
