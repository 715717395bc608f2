"""
subsidence.export
=================
Trained-model artifact, prediction export and metadata logging.

Responsibilities
----------------
* Bundle everything inference needs (weights, config, feature columns,
  scaler statistics, region mapping, hold-out residuals) in one
  :class:`TrainedModel` that is immutable once created.
* Save it as ``metadata.json`` (config, metrics, timestamp, …) next to
  ``model.pt`` (torch state dict) and load it back.
* Save prediction tables as Parquet (primary) or CSV.

Folder layout
-------------
::

    runs/
        pipeline_config.json          ← master config snapshot
        run_<timestamp>/
            metadata.json
            model.pt
            predictions.parquet
            diagnostics.json
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd
import torch

from .config import PipelineConfig, file_hash, get_environment_info
from .evaluation import ModelMetrics
from .models.plstm import ParallelLSTM
from .regions import RegionAssignment
from .splitting import SequenceScaler

METADATA_FILE = "metadata.json"
WEIGHTS_FILE = "model.pt"


# ======================================================================== #
#  Trained model artifact                                                   #
# ======================================================================== #

@dataclass
class TrainedModel:
    """
    Everything produced by one training run.

    Created once by the runner and replaced wholesale by the next run;
    nothing mutates it after construction.
    """
    model: ParallelLSTM
    config: PipelineConfig
    feature_cols: List[str]
    scaler: SequenceScaler
    assignment: RegionAssignment
    residuals: np.ndarray
    residual_regions: np.ndarray
    metrics: Optional[ModelMetrics] = None
    status: str = "completed"
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())

    def __post_init__(self):
        self.model.eval()

    @property
    def input_size(self) -> int:
        return len(self.feature_cols)

    # ------------------------------------------------------------------ #

    def metadata(self) -> Dict[str, Any]:
        return {
            "timestamp": self.created_at,
            "status": self.status,
            "config": self.config.to_dict(),
            "metrics": self.metrics.to_dict() if self.metrics is not None else None,
            "feature_cols": list(self.feature_cols),
            "scaler": self.scaler.to_dict(),
            "regions": self.assignment.to_dict(),
            "active_regions": self.model.active_regions(),
            "residuals": _make_serialisable(np.asarray(self.residuals)),
            "residual_regions": _make_serialisable(np.asarray(self.residual_regions)),
        }

    def save(
        self,
        out_dir: str | Path,
        files_used: Optional[List[str]] = None,
    ) -> Path:
        """
        Write ``metadata.json`` and ``model.pt`` into ``out_dir``.

        Returns the directory written.
        """
        out_dir = Path(out_dir)
        out_dir.mkdir(parents=True, exist_ok=True)

        meta = self.metadata()
        meta["environment"] = get_environment_info()
        if files_used:
            meta["files_used"] = {
                os.path.basename(f): file_hash(f)
                for f in files_used
                if os.path.exists(f)
            }

        torch.save(self.model.state_dict(), out_dir / WEIGHTS_FILE)
        (out_dir / METADATA_FILE).write_text(
            json.dumps(_make_serialisable(meta), indent=2, default=str)
        )
        return out_dir

    @classmethod
    def load(cls, in_dir: str | Path, device: str = "cpu") -> "TrainedModel":
        in_dir = Path(in_dir)
        meta_path = in_dir / METADATA_FILE
        weights_path = in_dir / WEIGHTS_FILE
        for p in (meta_path, weights_path):
            if not p.exists():
                raise FileNotFoundError(f"Missing artifact file: {p}")

        meta = json.loads(meta_path.read_text())
        config = PipelineConfig.from_dict(meta["config"])
        feature_cols = list(meta["feature_cols"])

        model = ParallelLSTM.from_config(config.model, len(feature_cols))
        active = np.zeros(config.model.parallel_regions, dtype=bool)
        active[meta["active_regions"]] = True
        model.set_active_regions(active)
        state = torch.load(weights_path, map_location=device, weights_only=True)
        model.load_state_dict(state)
        model.to(device)

        metrics = meta.get("metrics")
        return cls(
            model=model,
            config=config,
            feature_cols=feature_cols,
            scaler=SequenceScaler.from_dict(meta["scaler"]),
            assignment=RegionAssignment.from_dict(meta["regions"]),
            residuals=np.asarray(meta.get("residuals", []), dtype=np.float64),
            residual_regions=np.asarray(meta.get("residual_regions", []), dtype=np.int64),
            metrics=ModelMetrics.from_dict(metrics) if metrics else None,
            status=meta.get("status", "completed"),
            created_at=meta.get("timestamp", datetime.now().isoformat()),
        )


# ======================================================================== #
#  Save datasets                                                            #
# ======================================================================== #

def save_dataframe(
    df: pd.DataFrame,
    path: str | Path,
    fmt: str = "parquet",
) -> str:
    """
    Save a DataFrame to disk.

    Parameters
    ----------
    df : pd.DataFrame
    path : str or Path
        Target file path (extension will be corrected).
    fmt : str
        ``'parquet'`` (default) or ``'csv'``.

    Returns
    -------
    str  – actual path written.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    if fmt == "parquet":
        path = path.with_suffix(".parquet")
        df.to_parquet(path, index=False)
    elif fmt == "csv":
        path = path.with_suffix(".csv")
        df.to_csv(path, index=False)
    else:
        raise ValueError(f"Unsupported format: {fmt}")

    return str(path)


def save_json(obj: Any, path: str | Path) -> str:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(_make_serialisable(obj), indent=2, default=str))
    return str(path)


# ======================================================================== #
#  Internal helpers                                                         #
# ======================================================================== #

def _make_serialisable(obj: Any) -> Any:
    """Recursively convert numpy types (and non-finite floats) for JSON."""
    if isinstance(obj, dict):
        return {k: _make_serialisable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_make_serialisable(v) for v in obj]
    if isinstance(obj, np.ndarray):
        return _make_serialisable(obj.tolist())
    if isinstance(obj, (np.bool_,)):
        return bool(obj)
    if isinstance(obj, (np.integer,)):
        return int(obj)
    if isinstance(obj, (float, np.floating)):
        value = float(obj)
        return value if np.isfinite(value) else None
    return obj
