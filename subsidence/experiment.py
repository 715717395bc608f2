"""
subsidence.experiment
=====================
Forecast runner: orchestrates one training + forecasting run end to end.

.. code-block:: text

    observations → clean → derive features → window → partition stations
                 → temporal split → scale (train only) → train
                 → evaluate on hold-out → forecast → export

Everything a run produces lands in ``<output_dir>/<run_name>/``
(``metadata.json``, ``model.pt``, ``predictions.parquet``,
``diagnostics.json``); the master config is written to
``<output_dir>/pipeline_config.json``.

Public API
----------
ForecastRunner(config) – instantiate once, call .run(observations)
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd

from .checks import data_preview, run_all_checks
from .cleaning import clean_observations
from .config import PipelineConfig
from .errors import Diagnostic
from .evaluation import ModelMetrics, build_model_metrics
from .export import TrainedModel, save_dataframe, save_json
from .features import derive_features, feature_columns
from .inference import PredictionResult, predict, predictions_to_frame
from .ingestion import load_observations, normalise_observations
from .regions import empty_region_diagnostics, partition_stations
from .risk import risk_summary
from .sequencing import SequenceSet
from .splitting import check_no_leakage, fit_scalers, temporal_split
from .training import EpochMetric, ProgressCallback, Trainer, TrainingStatus


@dataclass
class ForecastResult:
    status: TrainingStatus
    trained: TrainedModel
    metrics: ModelMetrics
    predictions: List[PredictionResult]
    diagnostics: List[Diagnostic] = field(default_factory=list)
    preview: Dict = field(default_factory=dict)
    run_dir: Optional[Path] = None


class ForecastRunner:
    """
    End-to-end forecast orchestrator.

    Parameters
    ----------
    config : PipelineConfig
        Master configuration.
    progress_callback : callable, optional
        Forwarded to the :class:`~subsidence.training.Trainer`.  Defaults
        to printing one line per epoch when ``verbose``.
    cancel_event : threading.Event, optional
        Set it from another thread to stop training at the next batch.
    skip_checks : bool
        If True, skip the sequence / data-quality check battery (faster).
    save : bool
        Write artifacts to ``config.output_dir``.
    verbose : bool
    """

    def __init__(
        self,
        config: PipelineConfig,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
        skip_checks: bool = False,
        save: bool = True,
        verbose: bool = True,
    ):
        config.model.validate()
        self.cfg = config
        self.cancel_event = cancel_event or threading.Event()
        self.skip_checks = skip_checks
        self.save = save
        self.verbose = verbose
        self.progress_callback = progress_callback or (
            self._print_epoch if verbose else None
        )

    # ------------------------------------------------------------------ #
    #  Reporting                                                           #
    # ------------------------------------------------------------------ #

    def _log(self, msg: str) -> None:
        if self.verbose:
            print(msg)

    @staticmethod
    def _print_epoch(fraction: float, label: str,
                     details: Optional[List[EpochMetric]]) -> None:
        if not details:
            return
        e = details[-1]
        print(f"    epoch {e.epoch:>3d}  train={e.training_loss:.5f}  "
              f"val={e.validation_loss:.5f}  acc={e.accuracy:.3f}  "
              f"lr={e.learning_rate:.2e}  ({e.duration:.1f}s)  [{fraction:4.0%}]")

    # ------------------------------------------------------------------ #
    #  Main entry points                                                   #
    # ------------------------------------------------------------------ #

    def run_files(self, paths: List[str], run_name: Optional[str] = None) -> ForecastResult:
        """Load observation CSVs and :meth:`run` on them."""
        return self.run(load_observations(paths), run_name=run_name, files_used=paths)

    def run(
        self,
        observations: pd.DataFrame,
        run_name: Optional[str] = None,
        files_used: Optional[List[str]] = None,
    ) -> ForecastResult:
        """
        Execute one training + forecasting run.

        Returns
        -------
        ForecastResult

        Raises
        ------
        TrainingDivergence
            If the loss became non-finite.
        ValueError
            If no sequence can be built from the observations.
        """
        cfg = self.cfg
        mcfg = cfg.model
        t0 = time.time()
        diagnostics: List[Diagnostic] = []

        observations = normalise_observations(observations)
        run_dir = None
        if self.save:
            run_name = run_name or f"run_{datetime.now():%Y%m%d-%H%M%S}"
            run_dir = Path(cfg.output_dir) / run_name
            cfg.save(Path(cfg.output_dir) / "pipeline_config.json")

        # 1. Preview + clean
        preview = data_preview(observations)
        self._log(f"Observations: {preview['total_records']:,} records, "
                  f"{preview['station_count']} stations "
                  f"({preview['date_range']['start']} → {preview['date_range']['end']})")

        clean, diags = clean_observations(
            observations, cfg.cleaning, min_records=mcfg.sequence_length + 1
        )
        diagnostics.extend(diags)
        self._log(f"  ✓ Cleaned: {len(clean):,} records kept, "
                  f"{len(diags)} diagnostic(s)")

        # 2. Features + sequences
        features = derive_features(clean)
        feat_cols = feature_columns(features, cfg.features)
        seqs = SequenceSet(features, mcfg.sequence_length, cfg.cleaning.max_gap_days)
        if not self.skip_checks:
            run_all_checks(features, feat_cols, seqs)

        X, y, meta = seqs.to_arrays(feat_cols)
        if len(X) == 0:
            self._emit(diagnostics)
            raise ValueError(
                f"No sequences of length {mcfg.sequence_length} could be built "
                f"from the observations."
            )
        self._log(f"  Sequences: {len(X):,} × {mcfg.sequence_length} steps × "
                  f"{len(feat_cols)} features")

        # 3. Regions + split
        assignment = partition_stations(features, mcfg.parallel_regions, cfg.regions)
        region_ids = assignment.assign(meta)
        train_idx, val_idx = temporal_split(meta, mcfg.validation_split)
        if not self.skip_checks:
            check_no_leakage(meta, train_idx, val_idx)

        diagnostics.extend(empty_region_diagnostics(assignment, region_ids[train_idx]))
        active = assignment.counts(region_ids[train_idx]) > 0
        self._log(f"  Split — train: {len(train_idx):,}  val: {len(val_idx):,}  "
                  f"active regions: {int(active.sum())}/{mcfg.parallel_regions}")

        # 4. Scale (train only) + train
        scaler = fit_scalers(X[train_idx], y[train_idx], cfg.features.scaler_type)
        X_s = scaler.transform_X(X)
        y_s = scaler.transform_y(y)

        trainer = Trainer(
            mcfg, cfg.trainer,
            progress_callback=self.progress_callback,
            cancel_event=self.cancel_event,
        )
        self._log(f"  Training ({trainer.n_epochs} epochs max)...")
        result = trainer.fit(
            X_s[train_idx], y_s[train_idx], region_ids[train_idx],
            X_s[val_idx], y_s[val_idx], region_ids[val_idx],
            active_regions=active,
            target_divisor=scaler.target_divisor,
        )
        if result.status == TrainingStatus.DIVERGED:
            self._emit(diagnostics)
            result.raise_for_status()
        self._log(f"  ✓ Training {result.status.value} after "
                  f"{len(result.epoch_details)} epoch(s), best epoch {result.best_epoch}")

        # 5. Hold-out evaluation
        eval_idx = val_idx if len(val_idx) else train_idx
        pred_s, _ = result.model.predict(X_s[eval_idx], region_ids[eval_idx])
        pred = scaler.inverse_y(pred_s)
        metrics = build_model_metrics(
            y[eval_idx], pred, result, cfg.trainer.accuracy_tolerance
        )
        self._log(f"  Hold-out: RMSE={metrics.rmse:.5f}  MAE={metrics.mae:.5f}  "
                  f"R²={metrics.r2_score:.3f}  acc={metrics.accuracy:.3f}")

        trained = TrainedModel(
            model=result.model,
            config=cfg,
            feature_cols=feat_cols,
            scaler=scaler,
            assignment=assignment,
            residuals=y[eval_idx] - pred,
            residual_regions=region_ids[eval_idx],
            metrics=metrics,
            status=result.status.value,
        )

        # 6. Forecast every sequence
        predictions = predict(trained, features)
        counts = risk_summary([p.risk_level for p in predictions])
        self._log(f"  Forecasts: {len(predictions):,}  risk: {counts}")

        # 7. Export
        if run_dir is not None:
            trained.save(run_dir, files_used=files_used)
            save_dataframe(predictions_to_frame(predictions),
                           run_dir / "predictions", fmt=cfg.export_format)
            save_json({
                "preview": preview,
                "diagnostics": [d.to_dict() for d in diagnostics],
                "risk_summary": counts,
            }, run_dir / "diagnostics.json")
            self._log(f"  ✓ Artifacts written to {run_dir}")

        self._emit(diagnostics)
        self._log(f"\n✓ Run completed in {time.time() - t0:.1f}s")

        return ForecastResult(
            status=result.status,
            trained=trained,
            metrics=metrics,
            predictions=predictions,
            diagnostics=diagnostics,
            preview=preview,
            run_dir=run_dir,
        )

    # ------------------------------------------------------------------ #

    @staticmethod
    def _emit(diagnostics: List[Diagnostic]) -> None:
        for d in diagnostics:
            d.emit()
