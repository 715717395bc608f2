#!/usr/bin/env python3
"""
run_forecast.py
===============
Main entry point for the parallel-LSTM land-subsidence forecasting pipeline.

Usage
-----
  # Train + forecast on station CSVs
  python run_forecast.py --observations data/stations/*.csv

  # Synthetic Padang stations, fast smoke-test
  python run_forecast.py --demo --quick

  # Custom config from JSON, local risk calibration
  python run_forecast.py --config runs/pipeline_config.json \
      --observations data/padang.csv --thresholds padang

Pipeline Flow
-------------
::

  station CSVs  ──→  parse timestamps, validate schema
       │
       ▼
  clean  (non-finite coordinates, spikes, duplicate timestamps)
       │
       ▼
  derive features  (subsidence, velocity, acceleration, yearly rate)
       │
       ▼
  window  (L context records → next record, per station)
       │
       ▼
  partition stations into N regions  (hash / k-means)
       │
       ▼
  split  (temporal: earliest targets train, latest validate)
       │
       ▼
  scale  (fit on train, transform all)
       │
       ▼
  train  N regional LSTMs + attention fusion
       │
       ▼
  evaluate → bootstrap confidence → risk classification
       │
       ▼
  metadata.json  +  model.pt  +  predictions.parquet
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import replace
from pathlib import Path

# Ensure the project root is on sys.path
PROJECT_ROOT = Path(__file__).resolve().parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from subsidence.config import (
    THRESHOLD_PRESETS,
    CleaningConfig,
    EvaluationConfig,
    FeatureConfig,
    ModelConfig,
    PartitionStrategy,
    PipelineConfig,
    RegionConfig,
    TrainerConfig,
)
from subsidence.errors import InvalidConfig, TrainingDivergence
from subsidence.experiment import ForecastRunner
from subsidence.synthetic import generate_observations


# ======================================================================== #
#  Preset configurations                                                    #
# ======================================================================== #

def default_config() -> PipelineConfig:
    """Full production configuration."""
    return PipelineConfig(
        output_dir="runs",
        model=ModelConfig(
            layers=3,
            neurons=128,
            epochs=50,
            batch_size=32,
            learning_rate=0.001,
            parallel_regions=4,
            sequence_length=30,
            dropout_rate=0.2,
            validation_split=0.2,
        ),
        cleaning=CleaningConfig(max_abs_subsidence=100.0, max_gap_days=30.0),
        features=FeatureConfig(include_coordinates=True, scaler_type="standard"),
        regions=RegionConfig(strategy=PartitionStrategy.SPATIAL, random_seed=42),
        trainer=TrainerConfig(seed=42, patience=10),
        evaluation=EvaluationConfig(n_bootstrap=1000, confidence_level=0.95),
    )


def quick_config() -> PipelineConfig:
    """Fast smoke-test configuration (small network, few epochs)."""
    cfg = default_config()
    cfg.output_dir = "runs_quick"
    cfg.model = replace(cfg.model, layers=1, neurons=32, epochs=10,
                        batch_size=64, sequence_length=14)
    cfg.trainer = replace(cfg.trainer, patience=3)
    cfg.evaluation = replace(cfg.evaluation, n_bootstrap=200)
    return cfg


# ======================================================================== #
#  CLI                                                                      #
# ======================================================================== #

def parse_args():
    parser = argparse.ArgumentParser(
        description="Parallel-LSTM Land-Subsidence Forecasting Pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--observations",
        type=str,
        nargs="+",
        default=None,
        help="Station observation CSV file(s).",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a pipeline_config.json file.",
    )
    parser.add_argument(
        "--demo",
        action="store_true",
        help="Train on synthetic Padang stations instead of CSV input.",
    )
    parser.add_argument(
        "--quick",
        action="store_true",
        help="Run a fast smoke-test with a small network and few epochs.",
    )
    parser.add_argument(
        "--thresholds",
        type=str,
        default=None,
        choices=sorted(THRESHOLD_PRESETS),
        help="Risk threshold calibration (default: from config, generic).",
    )
    parser.add_argument(
        "--output-dir",
        type=str,
        default=None,
        help="Override the output directory.",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Override every random seed.",
    )
    parser.add_argument(
        "--skip-checks",
        action="store_true",
        help="Skip sequence/quality checks for faster iteration.",
    )
    return parser.parse_args()


def main():
    args = parse_args()
    if not args.demo and not args.observations:
        print("error: pass --observations CSV [...] or --demo", file=sys.stderr)
        sys.exit(2)

    # Build config
    try:
        if args.config:
            cfg = PipelineConfig.load(args.config)
            print(f"Loaded config from {args.config}")
        elif args.quick:
            cfg = quick_config()
            print("Using QUICK config (smoke-test mode)")
        else:
            cfg = default_config()
            print("Using DEFAULT config")
    except InvalidConfig as e:
        print(f"Invalid configuration ({e.field}={e.value!r}): {e}", file=sys.stderr)
        sys.exit(2)

    if args.seed is not None:
        cfg = cfg.with_seed(args.seed)
    if args.thresholds:
        cfg.evaluation = replace(cfg.evaluation, thresholds=THRESHOLD_PRESETS[args.thresholds])
    if args.output_dir:
        cfg.output_dir = args.output_dir

    m = cfg.model
    print(f"\nPipeline Configuration:")
    print(f"  Output dir     : {cfg.output_dir}")
    print(f"  Network        : {m.parallel_regions} regions × {m.layers} layers × "
          f"{m.neurons} units (dropout {m.dropout_rate})")
    print(f"  Training       : {m.epochs} epochs, batch {m.batch_size}, "
          f"lr {m.learning_rate}, val split {m.validation_split}")
    print(f"  Sequence len   : {m.sequence_length}")
    print(f"  Regions        : {cfg.regions.strategy.value}")
    print(f"  Risk           : {cfg.evaluation.thresholds.name} "
          f"({cfg.evaluation.risk_basis.value})")
    print(f"  Seed           : {cfg.trainer.seed}")
    print()

    runner = ForecastRunner(config=cfg, skip_checks=args.skip_checks)
    try:
        if args.demo:
            n_days = 180 if args.quick else 730
            result = runner.run(generate_observations(n_stations=10, n_days=n_days,
                                                      seed=cfg.trainer.seed))
        else:
            result = runner.run_files(args.observations)
    except TrainingDivergence as e:
        print(f"\nTraining diverged in epoch {e.epoch} "
              f"({len(e.epoch_details)} completed epoch(s)): {e}", file=sys.stderr)
        sys.exit(1)

    metrics = result.metrics
    print(f"\n{'='*60}")
    print("  SUMMARY")
    print(f"{'='*60}")
    print(f"  Status   : {result.status.value}")
    print(f"  Epochs   : {len(metrics.epoch_details)}")
    print(f"  MSE      : {metrics.mse:.6f}")
    print(f"  RMSE     : {metrics.rmse:.6f}")
    print(f"  MAE      : {metrics.mae:.6f}")
    print(f"  R²       : {metrics.r2_score:.4f}")
    print(f"  Accuracy : {metrics.accuracy:.3f}")
    if result.run_dir is not None:
        print(f"\nResults saved to: {result.run_dir}")


if __name__ == "__main__":
    main()
