"""
Subsidence — Parallel-LSTM land-subsidence forecasting pipeline.

Flow:
  station observations → cleaning → kinematic features → sequences
  → region partitioning → regional LSTMs + attention fusion → training
  → evaluation (metrics, bootstrap confidence) → risk classification
  → export

Modules
-------
config      : Central configuration dataclasses, enums and constants
errors      : Warning / exception taxonomy and Diagnostic records
ingestion   : Observation records, CSV loading, schema validation
cleaning    : clean_observations (non-finite, spikes, duplicates)
features    : derive_features (subsidence, velocity, acceleration, rate)
sequencing  : SequenceSet (lazy sliding windows per station)
regions     : partition_stations (hash / spatial k-means)
splitting   : temporal_split, fit_scalers, leakage checks
models/     : RegionalLSTM, AttentionFuser, ParallelLSTM
training    : Trainer, EpochMetric, TrainingResult
evaluation  : Metrics (MSE, RMSE, MAE, R², accuracy) and bootstrap bounds
risk        : classify_risk
inference   : predict → PredictionResult list
export      : TrainedModel artifact, Parquet/CSV export, metadata
checks      : data_preview, sequence integrity and quality assertions
synthetic   : Deterministic synthetic Padang stations
experiment  : ForecastRunner — end-to-end run with logging and export
"""

__version__ = "0.1.0"
