"""
subsidence.synthetic
====================
Deterministic synthetic observation batches for demos and tests.

Stations are placed in the districts of Padang (West Sumatra, UTM 47S)
and sink at the district's characteristic rate.  Heights carry a small
seasonal term plus Gaussian noise; temperature, precipitation and
groundwater level follow an annual cycle.  The same ``seed`` always
produces the same frame.
"""

from __future__ import annotations

from typing import List, NamedTuple, Optional

import numpy as np
import pandas as pd

from .config import DAYS_PER_YEAR, STATION_COL, TIME_COL


class District(NamedTuple):
    name: str
    easting: float
    northing: float
    rate: float          # subsidence, m / year (positive = sinking)


PADANG_DISTRICTS: List[District] = [
    District("Padang Barat", 128500.0, 9894500.0, 0.025),
    District("Padang Timur", 129200.0, 9894000.0, 0.018),
    District("Padang Utara", 129500.0, 9896500.0, 0.012),
    District("Padang Selatan", 128300.0, 9892000.0, 0.035),
    District("Koto Tangah", 131000.0, 9898500.0, 0.020),
    District("Nanggalo", 130000.0, 9897200.0, 0.015),
    District("Pauh", 131500.0, 9900000.0, 0.010),
    District("Lubuk Kilangan", 133000.0, 9890000.0, 0.028),
    District("Lubuk Begalung", 132000.0, 9892500.0, 0.022),
    District("Kuranji", 130800.0, 9896000.0, 0.019),
]


def _slug(name: str) -> str:
    return name.lower().replace(" ", "-")


def generate_observations(
    n_stations: int = 10,
    n_days: int = 365,
    seed: int = 42,
    start: str = "2021-01-01",
    noise_std: float = 0.001,
    seasonal_amplitude: float = 0.002,
    base_height: float = 10.0,
    geoid_separation: float = 25.3,
    covariates: bool = True,
    districts: Optional[List[District]] = None,
) -> pd.DataFrame:
    """
    Daily observations for ``n_stations`` stations over ``n_days`` days.

    Station ``k`` sits in district ``k mod len(districts)``, a few hundred
    metres from the district centre.  Station ids are the district slug
    plus a running number (``padang-barat-01``).

    Returns
    -------
    pd.DataFrame
        Observation batch sorted by station then timestamp.
    """
    if n_stations < 1 or n_days < 1:
        raise ValueError("n_stations and n_days must be >= 1")
    districts = districts or PADANG_DISTRICTS
    rng = np.random.default_rng(seed)

    day = np.arange(n_days, dtype=np.float64)
    times = pd.date_range(start, periods=n_days, freq="D")
    season = np.sin(2.0 * np.pi * day / DAYS_PER_YEAR)

    frames = []
    for k in range(n_stations):
        d = districts[k % len(districts)]
        sid = f"{_slug(d.name)}-{k // len(districts) + 1:02d}"
        east = d.easting + rng.uniform(-500.0, 500.0)
        north = d.northing + rng.uniform(-500.0, 500.0)
        h0 = base_height + rng.uniform(-2.0, 2.0)

        height = (
            h0
            - d.rate * day / DAYS_PER_YEAR
            + seasonal_amplitude * season
            + rng.normal(0.0, noise_std, n_days)
        )
        frame = pd.DataFrame({
            STATION_COL: sid,
            TIME_COL: times,
            "easting": east + rng.normal(0.0, 0.002, n_days),
            "northing": north + rng.normal(0.0, 0.002, n_days),
            "height": height,
            "geoid_separation": geoid_separation,
        })
        if covariates:
            frame["temperature"] = 26.0 + 3.0 * season + rng.uniform(0.0, 2.0, n_days)
            frame["precipitation"] = np.maximum(
                0.0, 150.0 + 100.0 * season + rng.uniform(0.0, 50.0, n_days)
            )
            frame["groundwater_level"] = 5.0 + 2.0 * season + rng.uniform(0.0, 1.0, n_days)
        frames.append(frame)

    return (
        pd.concat(frames, ignore_index=True)
        .sort_values([STATION_COL, TIME_COL], kind="mergesort")
        .reset_index(drop=True)
    )


def linear_station(
    station_id: str = "S1",
    n_days: int = 40,
    start_height: float = 10.0,
    daily_drop: float = 0.01,
    start: str = "2021-01-01",
    easting: float = 128500.0,
    northing: float = 9894500.0,
) -> pd.DataFrame:
    """Noise-free daily series of one station sinking ``daily_drop`` per day."""
    return pd.DataFrame({
        STATION_COL: station_id,
        TIME_COL: pd.date_range(start, periods=n_days, freq="D"),
        "easting": easting,
        "northing": northing,
        "height": start_height - daily_drop * np.arange(n_days, dtype=np.float64),
        "geoid_separation": 25.3,
    })
