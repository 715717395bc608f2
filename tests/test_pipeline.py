"""
tests/test_pipeline.py
======================
Unit tests for the data-side modules (config → sequences → regions → split).
Run with:  python -m pytest tests/ -v
"""

from __future__ import annotations

import hashlib
import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

# Ensure project root is importable
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))


def _station(sid, heights, start="2021-01-01", easting=128500.0, northing=9894500.0,
             freq="D"):
    n = len(heights)
    return pd.DataFrame({
        "station_id": sid,
        "timestamp": pd.date_range(start, periods=n, freq=freq),
        "easting": easting,
        "northing": northing,
        "height": np.asarray(heights, dtype=np.float64),
        "geoid_separation": 25.3,
    })


# ======================================================================== #
#  Config tests                                                             #
# ======================================================================== #

class TestConfig:
    def test_model_config_defaults(self):
        from subsidence.config import ModelConfig
        cfg = ModelConfig()
        assert cfg.layers == 3
        assert cfg.neurons == 128
        assert cfg.epochs == 50
        assert cfg.sequence_length == 30
        assert cfg.parallel_regions == 4

    @pytest.mark.parametrize("field,value", [
        ("layers", 0),
        ("neurons", 16),
        ("epochs", 5),
        ("batch_size", 512),
        ("learning_rate", 1.0),
        ("parallel_regions", 21),
        ("sequence_length", 6),
        ("dropout_rate", 0.9),
        ("validation_split", 0.05),
    ])
    def test_out_of_range_rejected(self, field, value):
        from subsidence.config import ModelConfig
        from subsidence.errors import InvalidConfig
        with pytest.raises(InvalidConfig) as exc:
            ModelConfig(**{field: value})
        assert exc.value.field == field
        assert exc.value.value == value

    def test_non_integer_layers_rejected(self):
        from subsidence.config import ModelConfig
        from subsidence.errors import InvalidConfig
        with pytest.raises(InvalidConfig, match="integer"):
            ModelConfig(layers=2.5)

    @pytest.mark.parametrize("field", ["neurons", "layers", "batch_size"])
    def test_integral_float_rejected(self, field):
        from subsidence.config import ModelConfig
        from subsidence.errors import InvalidConfig
        with pytest.raises(InvalidConfig, match="integer") as exc:
            ModelConfig(**{field: float(getattr(ModelConfig(), field))})
        assert exc.value.field == field

    def test_float_layers_from_json_rejected(self):
        from subsidence.config import ModelConfig
        from subsidence.errors import InvalidConfig
        raw = ModelConfig().to_dict()
        raw["layers"] = 2.0
        with pytest.raises(InvalidConfig):
            ModelConfig.from_dict(raw)

    def test_invalid_config_is_value_error(self):
        from subsidence.config import ModelConfig
        with pytest.raises(ValueError):
            ModelConfig(neurons=1024)

    def test_range_boundaries_accepted(self):
        from subsidence.config import ModelConfig
        ModelConfig(layers=1, neurons=32, epochs=10, batch_size=8,
                    learning_rate=0.0001, parallel_regions=1, sequence_length=7,
                    dropout_rate=0.0, validation_split=0.1)
        ModelConfig(layers=10, neurons=512, epochs=1000, batch_size=256,
                    learning_rate=0.1, parallel_regions=20, sequence_length=365,
                    dropout_rate=0.8, validation_split=0.4)

    def test_thresholds_must_increase(self):
        from subsidence.config import RiskThresholds
        from subsidence.errors import InvalidConfig
        with pytest.raises(InvalidConfig):
            RiskThresholds(0.3, 0.1, 0.5)

    def test_pipeline_config_roundtrip(self, tmp_path):
        from subsidence.config import (
            PADANG_THRESHOLDS, EvaluationConfig, ModelConfig, PartitionStrategy,
            PipelineConfig, RegionConfig,
        )
        cfg = PipelineConfig(
            model=ModelConfig(layers=2, neurons=64, sequence_length=14),
            regions=RegionConfig(strategy=PartitionStrategy.SPATIAL, random_seed=7),
            evaluation=EvaluationConfig(thresholds=PADANG_THRESHOLDS),
        )
        path = tmp_path / "cfg.json"
        cfg.save(path)
        loaded = PipelineConfig.load(path)
        assert loaded.model == cfg.model
        assert loaded.regions.strategy == PartitionStrategy.SPATIAL
        assert loaded.evaluation.thresholds == PADANG_THRESHOLDS
        assert loaded.features.covariates == cfg.features.covariates
        assert loaded.to_dict() == cfg.to_dict()

    def test_with_seed_replaces_every_seed(self):
        from subsidence.config import PipelineConfig
        cfg = PipelineConfig().with_seed(123)
        assert cfg.trainer.seed == 123
        assert cfg.regions.random_seed == 123
        assert cfg.evaluation.seed == 123

    def test_risk_level_ordering(self):
        from subsidence.config import RiskLevel
        assert RiskLevel.LOW < RiskLevel.MEDIUM < RiskLevel.HIGH < RiskLevel.CRITICAL
        assert max([RiskLevel.HIGH, RiskLevel.LOW, RiskLevel.CRITICAL]) == RiskLevel.CRITICAL

    def test_file_hash(self, tmp_path):
        from subsidence.config import file_hash
        f = tmp_path / "dummy.txt"
        f.write_text("hello")
        h = file_hash(f)
        assert isinstance(h, str) and len(h) == 64  # sha256 hex digest


# ======================================================================== #
#  Ingestion tests                                                          #
# ======================================================================== #

class TestIngestion:
    def test_load_camel_case_without_station_column(self, tmp_path):
        from subsidence.ingestion import load_observations
        path = tmp_path / "PDG1.csv"
        pd.DataFrame({
            "timestamp": ["2021-01-02T00:00:00Z", "2021-01-01T00:00:00Z"],
            "easting": [128500.0, 128500.1],
            "northing": [9894500.0, 9894500.1],
            "height": [10.0, 10.01],
            "geoidSeparation": [25.3, 25.3],
        }).to_csv(path, index=False)

        df = load_observations([path])
        assert list(df["station_id"].unique()) == ["PDG1"]
        assert "geoid_separation" in df.columns
        assert df["timestamp"].is_monotonic_increasing
        assert df["timestamp"].dt.tz is None
        assert df["height"].dtype == np.float64

    def test_missing_file_raises(self, tmp_path):
        from subsidence.ingestion import load_observations
        with pytest.raises(FileNotFoundError):
            load_observations([tmp_path / "nope.csv"])

    def test_missing_column_raises(self):
        from subsidence.ingestion import validate_observations
        df = pd.DataFrame({"station_id": ["a"], "timestamp": ["2021-01-01"]})
        with pytest.raises(ValueError, match="easting"):
            validate_observations(df)

    def test_observations_to_frame_drops_absent_covariates(self):
        from subsidence.ingestion import Observation, observations_to_frame
        df = observations_to_frame([
            Observation("S1", "2021-01-01T00:00:00", 1.0, 2.0, 10.0, 25.0, temperature=27.0),
            Observation("S1", "2021-01-02T00:00:00", 1.0, 2.0, 9.99, 25.0, temperature=26.5),
        ])
        assert "temperature" in df.columns
        assert "precipitation" not in df.columns
        assert len(df) == 2


# ======================================================================== #
#  Cleaning tests                                                           #
# ======================================================================== #

class TestCleaning:
    @pytest.fixture
    def dirty_df(self):
        good = _station("A", 10.0 - 0.001 * np.arange(20))
        bad = _station("B", 10.0 - 0.001 * np.arange(20), easting=129000.0)
        bad.loc[3, "height"] = np.nan
        bad.loc[5, "easting"] = np.inf
        bad.loc[8, "height"] = 10.0 - 500.0          # spike
        dup = bad.iloc[[10]].copy()
        dup["height"] = 123.0
        short = _station("C", [10.0, 9.99, 9.98])
        return pd.concat([good, bad, dup, short], ignore_index=True)

    def test_drops_invalid_records(self, dirty_df):
        from subsidence.cleaning import clean_observations
        clean, diags = clean_observations(dirty_df, min_records=5)
        b = clean[clean["station_id"] == "B"]
        assert len(b) == 20 - 3
        assert np.isfinite(clean[["easting", "northing", "height"]].to_numpy()).all()
        assert not clean.duplicated(["station_id", "timestamp"]).any()
        # first occurrence of a duplicated instant is kept
        assert 123.0 not in b["height"].to_numpy()
        assert {d.station_id for d in diags} == {"B", "C"}
        assert all(d.kind == "data_quality" for d in diags)

    def test_short_station_excluded_not_raised(self, dirty_df):
        from subsidence.cleaning import clean_observations
        from subsidence.errors import DataQualityWarning
        clean, diags = clean_observations(dirty_df, min_records=5)
        assert "C" not in set(clean["station_id"])
        short = [d for d in diags if d.station_id == "C"]
        assert len(short) == 1
        assert short[0].category is DataQualityWarning
        with pytest.warns(DataQualityWarning):
            short[0].emit()

    def test_sorted_output(self, dirty_df):
        from subsidence.cleaning import clean_observations
        shuffled = dirty_df.sample(frac=1.0, random_state=0)
        clean, _ = clean_observations(shuffled)
        for _, g in clean.groupby("station_id"):
            assert g["timestamp"].is_monotonic_increasing

    def test_idempotent(self, dirty_df):
        from subsidence.cleaning import clean_observations
        once, _ = clean_observations(dirty_df, min_records=5)
        twice, diags = clean_observations(once, min_records=5)
        pd.testing.assert_frame_equal(once, twice)
        assert diags == []

    def test_spike_on_first_record(self):
        from subsidence.cleaning import clean_observations
        heights = 10.0 - 0.001 * np.arange(20)
        heights[0] = 510.0
        clean, diags = clean_observations(_station("A", heights), min_records=8)
        assert len(clean) == 19
        np.testing.assert_allclose(clean["height"].to_numpy(), heights[1:])
        assert len(diags) == 1
        assert diags[0].details == {"records_in": 20, "records_out": 19}

        again, diags = clean_observations(clean, min_records=8)
        pd.testing.assert_frame_equal(clean, again)
        assert diags == []

    def test_unparseable_timestamp_dropped(self):
        from subsidence.cleaning import clean_observations
        from subsidence.ingestion import normalise_observations
        raw = _station("A", 10.0 - 0.001 * np.arange(10))
        raw["timestamp"] = raw["timestamp"].dt.strftime("%Y-%m-%dT%H:%M:%SZ")
        raw.loc[4, "timestamp"] = "not-a-date"
        df = normalise_observations(raw)
        assert df["timestamp"].isna().sum() == 1

        clean, diags = clean_observations(df)
        assert len(clean) == 9
        assert clean["timestamp"].notna().all()
        assert [d.station_id for d in diags] == ["A"]


# ======================================================================== #
#  Feature tests                                                            #
# ======================================================================== #

class TestFeatures:
    @pytest.fixture
    def features(self):
        from subsidence.features import derive_features
        rng = np.random.default_rng(0)
        a = _station("A", 10.0 - np.cumsum(rng.uniform(0, 0.01, 30)))
        # irregular sampling: 1, 2, 3, ... day steps
        b = _station("B", 5.0 - np.cumsum(rng.uniform(0, 0.01, 10)))
        b["timestamp"] = pd.Timestamp("2021-01-01") + pd.to_timedelta(
            np.cumsum(np.arange(10)), unit="D"
        )
        return derive_features(pd.concat([a, b], ignore_index=True))

    def test_baseline_is_zero(self, features):
        first = features.groupby("station_id").head(1)
        assert (first["subsidence"] == 0.0).all()
        assert (first["velocity"] == 0.0).all()
        assert (first["acceleration"] == 0.0).all()
        assert (first["dt_days"] == 0.0).all()

    def test_subsidence_definition(self, features):
        for _, g in features.groupby("station_id"):
            h = g["height"].to_numpy()
            np.testing.assert_array_equal(g["subsidence"].to_numpy(), h[0] - h)

    def test_velocity_exact(self, features):
        for _, g in features.groupby("station_id"):
            s = g["subsidence"].to_numpy()
            v = g["velocity"].to_numpy()
            dt = g["dt_days"].to_numpy()
            for i in range(1, len(g)):
                assert v[i] == (s[i] - s[i - 1]) / dt[i]

    def test_acceleration_and_rate(self, features):
        for _, g in features.groupby("station_id"):
            v = g["velocity"].to_numpy()
            a = g["acceleration"].to_numpy()
            dt = g["dt_days"].to_numpy()
            np.testing.assert_array_equal(a[1:], (v[1:] - v[:-1]) / dt[1:])
            np.testing.assert_array_equal(g["yearly_rate"].to_numpy(), v * 365.0)

    def test_irregular_spacing(self, features):
        b = features[features["station_id"] == "B"]
        np.testing.assert_array_equal(b["dt_days"].to_numpy(), np.arange(10, dtype=float))

    def test_deterministic(self, features):
        from subsidence.features import derive_features
        raw = features.drop(columns=["dt_days", "subsidence", "velocity",
                                     "acceleration", "yearly_rate"])
        pd.testing.assert_frame_equal(derive_features(raw), derive_features(raw))

    def test_non_increasing_timestamps_raise(self):
        from subsidence.features import derive_features
        df = _station("A", [10.0, 9.9, 9.8])
        df.loc[2, "timestamp"] = df.loc[1, "timestamp"]
        with pytest.raises(ValueError, match="Non-increasing"):
            derive_features(df)

    def test_feature_columns(self, features):
        from subsidence.config import FeatureConfig
        from subsidence.features import feature_columns
        cols = feature_columns(features, FeatureConfig())
        assert cols[:4] == ["subsidence", "velocity", "acceleration", "yearly_rate"]
        assert "easting" in cols
        assert "temperature" not in cols        # batch has no covariates
        cols = feature_columns(features, FeatureConfig(include_coordinates=False))
        assert "easting" not in cols
        with pytest.raises(ValueError):
            feature_columns(features, FeatureConfig(covariates=("humidity",)))


# ======================================================================== #
#  Sequencing tests                                                         #
# ======================================================================== #

class TestSequencing:
    def test_forty_day_scenario(self):
        from subsidence.features import derive_features
        from subsidence.sequencing import build_sequences
        from subsidence.synthetic import linear_station

        feats = derive_features(linear_station(n_days=40, daily_drop=0.01))
        seqs = build_sequences(feats, 30)
        assert len(seqs) == 10
        X, y, meta = seqs.to_arrays(["subsidence", "velocity"])
        assert X.shape == (10, 30, 2)
        assert (y > 0).all()
        # heights fall 0.01 m per day → subsidence grows 0.01 m per day
        np.testing.assert_allclose(X[:, 1:, 1], 0.01, rtol=1e-6)
        assert (meta["last_subsidence"].to_numpy() < y).all()

    @pytest.mark.parametrize("n,L", [(5, 7), (7, 7), (8, 7), (40, 30), (100, 7)])
    def test_count_and_contiguity(self, n, L):
        from subsidence.checks import assert_sequence_integrity
        from subsidence.features import derive_features
        from subsidence.sequencing import SequenceSet

        feats = derive_features(_station("A", 10.0 - 0.001 * np.arange(n)))
        seqs = SequenceSet(feats, L)
        assert len(seqs) == max(0, n - L)
        assert_sequence_integrity(seqs)
        targets = [s.end for s in seqs]
        assert targets == list(range(L, n))

    def test_never_crosses_stations(self):
        from subsidence.features import derive_features
        from subsidence.sequencing import SequenceSet

        df = pd.concat([
            _station("A", 10.0 - 0.001 * np.arange(12)),
            _station("B", 10.0 - 0.002 * np.arange(9), easting=129000.0),
        ], ignore_index=True)
        seqs = SequenceSet(derive_features(df), 7)
        assert seqs.counts() == {"A": 5, "B": 2}
        for s in seqs:
            assert (s.context["station_id"] == s.station_id).all()
            assert s.target["station_id"] == s.station_id

    def test_restartable(self):
        from subsidence.features import derive_features
        from subsidence.sequencing import SequenceSet

        seqs = SequenceSet(derive_features(_station("A", np.linspace(10, 9, 20))), 7)
        first = [(s.station_id, s.end) for s in seqs]
        second = [(s.station_id, s.end) for s in seqs]
        assert first == second and len(first) == 13

    def test_gap_skips_windows(self):
        from subsidence.features import derive_features
        from subsidence.sequencing import SequenceSet

        df = _station("A", 10.0 - 0.001 * np.arange(20))
        # 60-day hole before record 10
        df.loc[10:, "timestamp"] = df.loc[10:, "timestamp"] + pd.Timedelta(days=60)
        feats = derive_features(df)
        assert len(SequenceSet(feats, 7)) == 13
        gapped = SequenceSet(feats, 7, max_gap_days=30.0)
        # windows whose context or target step crosses record 10 are skipped
        ends = [s.end for s in gapped]
        assert ends == [7, 8, 9, 17, 18, 19]

    def test_empty_arrays(self):
        from subsidence.features import derive_features
        from subsidence.sequencing import SequenceSet

        seqs = SequenceSet(derive_features(_station("A", [10.0] * 7)), 7)
        X, y, meta = seqs.to_arrays(["subsidence"])
        assert X.shape == (0, 7, 1)
        assert len(y) == 0 and meta.empty


# ======================================================================== #
#  Region tests                                                             #
# ======================================================================== #

class TestRegions:
    @pytest.fixture
    def stations(self):
        frames = []
        centres = [(100.0, 0.0), (0.0, 0.0), (0.0, 100.0), (100.0, 100.0)]
        for k in range(12):
            cx, cy = centres[k % 4]
            frames.append(_station(f"S{k:02d}", np.linspace(10, 9.9, 5),
                                   easting=cx + k * 0.1, northing=cy - k * 0.1))
        return pd.concat(frames, ignore_index=True)

    def test_hash_is_sha256_mod_n(self):
        from subsidence.regions import stable_hash_region
        expected = int(hashlib.sha256(b"PDG1").hexdigest(), 16) % 4
        assert stable_hash_region("PDG1", 4) == expected

    def test_hash_partition_stable(self, stations):
        from subsidence.regions import partition_stations
        a = partition_stations(stations, 4)
        b = partition_stations(stations.iloc[::-1], 4)
        assert a.mapping == b.mapping
        assert set(a.mapping) == set(stations["station_id"])

    def test_spatial_partition_ordered_by_centroid(self, stations):
        from subsidence.config import PartitionStrategy, RegionConfig
        from subsidence.regions import partition_stations
        a = partition_stations(stations, 4, RegionConfig(strategy=PartitionStrategy.SPATIAL))
        b = partition_stations(stations, 4, RegionConfig(strategy=PartitionStrategy.SPATIAL))
        assert a.mapping == b.mapping
        # centroids sorted by easting, then northing
        c = np.asarray(a.centroids)
        assert (np.diff(c[:, 0]) >= 0).all()
        # stations around the same centre share a region
        assert a.mapping["S00"] == a.mapping["S04"] == a.mapping["S08"]
        assert a.mapping["S01"] == 0            # (0, 0) cluster comes first

    def test_unseen_station_falls_back(self, stations):
        from subsidence.config import PartitionStrategy, RegionConfig
        from subsidence.regions import RegionAssignment, partition_stations, stable_hash_region
        spatial = partition_stations(stations, 4, RegionConfig(strategy=PartitionStrategy.SPATIAL))
        assert spatial.region_of("NEW", 0.5, 0.5) == spatial.mapping["S01"]
        assert spatial.region_of("NEW") == stable_hash_region("NEW", 4)
        hashed = partition_stations(stations, 4)
        assert hashed.region_of("NEW") == stable_hash_region("NEW", 4)
        assert RegionAssignment.from_dict(spatial.to_dict()) == spatial

    def test_more_regions_than_stations(self, stations):
        from subsidence.config import PartitionStrategy, RegionConfig
        from subsidence.errors import InsufficientRegionData
        from subsidence.regions import empty_region_diagnostics, partition_stations
        two = stations[stations["station_id"].isin(["S00", "S01"])]
        a = partition_stations(two, 5, RegionConfig(strategy=PartitionStrategy.SPATIAL))
        meta = pd.DataFrame({"station_id": ["S00", "S01", "S01"]})
        ids = a.assign(meta)
        counts = a.counts(ids)
        assert len(counts) == 5 and counts.sum() == 3
        diags = empty_region_diagnostics(a, ids)
        assert len(diags) == 3
        assert all(d.category is InsufficientRegionData for d in diags)


# ======================================================================== #
#  Splitting tests                                                          #
# ======================================================================== #

class TestSplitting:
    @pytest.fixture
    def meta(self):
        t = pd.date_range("2021-01-01", periods=50, freq="D")
        return pd.DataFrame({
            "station_id": ["A"] * 50 + ["B"] * 50,
            "timestamp": list(t) + list(t),
        })

    def test_temporal_split(self, meta):
        from subsidence.splitting import check_no_leakage, temporal_split
        tr, va = temporal_split(meta, 0.2)
        assert len(tr) == 80 and len(va) == 20
        assert len(np.intersect1d(tr, va)) == 0
        check_no_leakage(meta, tr, va)
        assert meta["timestamp"].iloc[tr].max() <= meta["timestamp"].iloc[va].min()

    def test_leakage_detected(self, meta):
        from subsidence.splitting import check_no_leakage
        tr = np.arange(0, 60)
        va = np.arange(60, 100)
        with pytest.raises(AssertionError, match="LEAKAGE"):
            check_no_leakage(meta, tr, va)
        with pytest.raises(AssertionError, match="LEAKAGE"):
            check_no_leakage(meta, np.arange(0, 10), np.arange(5, 15))

    def test_scaler_fit_train_only(self):
        from subsidence.splitting import fit_scalers
        X_train = np.arange(24, dtype=float).reshape(4, 3, 2)
        y_train = np.array([1.0, 2.0, 3.0, 4.0])
        scaler = fit_scalers(X_train, y_train, "standard")
        Xs = scaler.transform_X(X_train)
        np.testing.assert_allclose(Xs.reshape(-1, 2).mean(axis=0), 0.0, atol=1e-6)
        assert scaler.transform_y(np.array([10.0]))[0] > 1.0
        np.testing.assert_allclose(scaler.inverse_y(scaler.transform_y(y_train)), y_train,
                                   rtol=1e-6)

    def test_constant_feature_safe(self):
        from subsidence.splitting import SequenceScaler, fit_scalers
        X = np.ones((3, 7, 2))
        for kind in ("standard", "minmax", "robust"):
            scaler = fit_scalers(X, np.ones(3), kind)
            assert np.isfinite(scaler.transform_X(X)).all()
            assert scaler.target_divisor == 1.0
            restored = SequenceScaler.from_dict(scaler.to_dict())
            np.testing.assert_array_equal(restored.feature_divisor, scaler.feature_divisor)
        with pytest.raises(ValueError):
            fit_scalers(X, np.ones(3), "quantile")


# ======================================================================== #
#  Risk tests                                                               #
# ======================================================================== #

class TestRisk:
    @pytest.mark.parametrize("rate,level", [
        (0.0, "low"),
        (0.1, "low"),
        (0.10001, "medium"),
        (0.3, "medium"),
        (0.5, "high"),
        (0.50001, "critical"),
        (-0.4, "high"),
        (float("nan"), "low"),
    ])
    def test_generic_boundaries(self, rate, level):
        from subsidence.risk import classify_risk
        assert classify_risk(rate).value == level

    def test_padang_thresholds(self):
        from subsidence.config import PADANG_THRESHOLDS, RiskLevel
        from subsidence.risk import classify_many
        levels = classify_many(np.array([0.01, 0.016, 0.025, 0.035]), PADANG_THRESHOLDS)
        assert levels == [RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.CRITICAL]

    def test_basis_selection(self):
        from subsidence.config import RiskBasis
        from subsidence.risk import risk_basis_values
        sub, rate = np.array([0.2]), np.array([0.7])
        assert risk_basis_values(sub, rate)[0] == 0.7
        assert risk_basis_values(sub, rate, RiskBasis.SUBSIDENCE)[0] == 0.2


# ======================================================================== #
#  Preview / synthetic tests                                                #
# ======================================================================== #

class TestPreview:
    def test_synthetic_deterministic(self):
        from subsidence.synthetic import generate_observations
        a = generate_observations(n_stations=3, n_days=20, seed=1)
        b = generate_observations(n_stations=3, n_days=20, seed=1)
        pd.testing.assert_frame_equal(a, b)
        assert a["station_id"].nunique() == 3
        assert len(a) == 60

    def test_data_preview(self):
        from subsidence.checks import data_preview
        from subsidence.synthetic import generate_observations
        df = generate_observations(n_stations=2, n_days=400, seed=0)
        df.loc[0, "height"] = np.nan
        p = data_preview(df)
        assert p["total_records"] == 800
        assert p["station_count"] == 2
        assert [y["year"] for y in p["yearly_data"]] == [2021, 2022]
        y2021 = p["yearly_data"][0]
        assert y2021["records"] == 730
        assert y2021["completeness"] == pytest.approx(1.0)
        assert y2021["quality"] == pytest.approx(729 / 730)
        assert "temperature" in p["available_variables"]
        cov = p["spatial_coverage"]
        assert cov["min_easting"] <= cov["max_easting"]
        assert p["data_quality"]["consistency"] == 1.0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
