"""
subsidence.regions
==================
Deterministic station → region partitioning.

Each *station* (never an individual sequence) is assigned to one of
``parallel_regions`` regions, so every sequence inherits exactly one region
from its station.  The fusion layer learns weights indexed by region id,
hence the assignment must be identical between training and inference:

**HASH**     – ``sha256(station_id) mod N``.  Independent of the other
               stations in the batch and of the Python process
               (``hash()`` is salted per process and therefore unusable).
**SPATIAL**  – k-means over each station's mean easting/northing with a
               fixed seed.  Clusters are renumbered by centroid
               (easting, then northing) so ids do not depend on k-means'
               internal label order.

The fitted :class:`RegionAssignment` is stored in the trained artifact and
reused at inference.  Stations unseen during training fall back to the
nearest centroid (spatial) or to the hash rule.  With more regions than
stations the surplus regions stay empty; the fuser gives them weight 0.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
from sklearn.cluster import KMeans

from .config import STATION_COL, PartitionStrategy, RegionConfig
from .errors import Diagnostic


def stable_hash_region(station_id: str, n_regions: int) -> int:
    """Process-independent hash bucket of a station id."""
    digest = hashlib.sha256(str(station_id).encode("utf-8")).hexdigest()
    return int(digest, 16) % n_regions


@dataclass(frozen=True)
class RegionAssignment:
    """Fitted station → region mapping."""
    n_regions: int
    strategy: PartitionStrategy
    mapping: Dict[str, int]
    centroids: List[Tuple[float, float]] = field(default_factory=list)

    # ------------------------------------------------------------------ #

    def region_of(
        self,
        station_id: str,
        easting: Optional[float] = None,
        northing: Optional[float] = None,
    ) -> int:
        sid = str(station_id)
        if sid in self.mapping:
            return self.mapping[sid]
        if self.centroids and easting is not None and northing is not None:
            c = np.asarray(self.centroids, dtype=np.float64)
            d = (c[:, 0] - easting) ** 2 + (c[:, 1] - northing) ** 2
            return int(np.argmin(d))
        return stable_hash_region(sid, self.n_regions)

    def assign(self, meta: pd.DataFrame) -> np.ndarray:
        """Region id of every row of a sequence-meta frame."""
        if meta.empty:
            return np.empty(0, dtype=np.int64)
        has_xy = {"easting", "northing"} <= set(meta.columns)
        out = np.empty(len(meta), dtype=np.int64)
        for i, row in enumerate(meta.itertuples(index=False)):
            sid = getattr(row, STATION_COL)
            if has_xy:
                out[i] = self.region_of(sid, row.easting, row.northing)
            else:
                out[i] = self.region_of(sid)
        return out

    def counts(self, region_ids: np.ndarray) -> np.ndarray:
        """Sequences per region (length ``n_regions``)."""
        return np.bincount(np.asarray(region_ids, dtype=np.int64),
                           minlength=self.n_regions)

    def stations_in(self, region: int) -> List[str]:
        return sorted(s for s, r in self.mapping.items() if r == region)

    # ------------------------------------------------------------------ #

    def to_dict(self) -> dict:
        return {
            "n_regions": self.n_regions,
            "strategy": self.strategy.value,
            "mapping": dict(self.mapping),
            "centroids": [list(c) for c in self.centroids],
        }

    @classmethod
    def from_dict(cls, raw: dict) -> "RegionAssignment":
        return cls(
            n_regions=int(raw["n_regions"]),
            strategy=PartitionStrategy(raw["strategy"]),
            mapping={str(k): int(v) for k, v in raw["mapping"].items()},
            centroids=[tuple(c) for c in raw.get("centroids", [])],
        )


# ======================================================================== #
#  Partitioning                                                             #
# ======================================================================== #

def partition_stations(
    features: pd.DataFrame,
    n_regions: int,
    region_config: Optional[RegionConfig] = None,
) -> RegionAssignment:
    """
    Fit a station → region assignment.

    Parameters
    ----------
    features : pd.DataFrame
        Must contain ``station_id`` and, for the spatial strategy,
        ``easting`` and ``northing``.
    n_regions : int
        ``ModelConfig.parallel_regions``.
    region_config : RegionConfig, optional
    """
    cfg = region_config or RegionConfig()
    if n_regions < 1:
        raise ValueError(f"n_regions must be >= 1, got {n_regions}")

    stations = sorted(features[STATION_COL].astype(str).unique())

    if cfg.strategy == PartitionStrategy.HASH:
        mapping = {s: stable_hash_region(s, n_regions) for s in stations}
        return RegionAssignment(n_regions, cfg.strategy, mapping)

    if cfg.strategy == PartitionStrategy.SPATIAL:
        if not stations:
            return RegionAssignment(n_regions, cfg.strategy, {})
        xy = (
            features.assign(**{STATION_COL: features[STATION_COL].astype(str)})
            .groupby(STATION_COL)[["easting", "northing"]]
            .mean()
            .loc[stations]
        )
        k = min(n_regions, len(stations))
        km = KMeans(n_clusters=k, random_state=cfg.random_seed, n_init=10)
        labels = km.fit_predict(xy.to_numpy(dtype=np.float64))

        centres = km.cluster_centers_
        order = np.lexsort((centres[:, 1], centres[:, 0]))
        relabel = np.empty(k, dtype=np.int64)
        relabel[order] = np.arange(k)

        mapping = {s: int(relabel[l]) for s, l in zip(stations, labels)}
        centroids = [tuple(map(float, centres[j])) for j in order]
        return RegionAssignment(n_regions, cfg.strategy, mapping, centroids)

    raise ValueError(f"Unknown partition strategy: {cfg.strategy}")


def empty_region_diagnostics(
    assignment: RegionAssignment,
    region_ids: np.ndarray,
) -> List[Diagnostic]:
    """One diagnostic per region that received no sequences."""
    counts = assignment.counts(region_ids)
    return [
        Diagnostic(
            kind="region",
            region=int(r),
            message=f"Region {r} received 0 sequences; its fusion weight is fixed at 0.",
        )
        for r in np.flatnonzero(counts == 0)
    ]
