"""
Shared fixtures for the territory analysis tests.

Provides synthetic observation fixes, morphometrics and model datasets plus
temporary directories so each test module can focus on verifying analysis
logic against known inputs.
"""

import os
import tempfile

import numpy as np
import pandas as pd
import pytest


# ---------------------------------------------------------------------------
# Constants for synthetic test data
# ---------------------------------------------------------------------------
# Field-site centre inside UTM zone 10N (San Francisco Presidio).
CENTRE_LON, CENTRE_LAT = -122.46, 37.80
# One degree of latitude ≈ 111 km; territories span a few tens of meters.
DEG_PER_M = 1.0 / 111_000.0


def gaussian_points(n, sd_x=30.0, sd_y=20.0, seed=0, centre=(550_000.0, 4_180_000.0)):
    """Helper: n bivariate normal fixes in projected meters."""
    rng = np.random.default_rng(seed)
    return np.column_stack([
        rng.normal(centre[0], sd_x, n),
        rng.normal(centre[1], sd_y, n),
    ])


def _territory_frame(n_per_bird, seed=0):
    rng = np.random.default_rng(seed)
    rows = []
    for i, (bird_id, n) in enumerate(n_per_bird.items()):
        lon0 = CENTRE_LON + 0.004 * i
        for _ in range(n):
            rows.append({
                "bird_id": bird_id,
                "longitude": lon0 + rng.normal(0.0, 30.0 * DEG_PER_M),
                "latitude": CENTRE_LAT + rng.normal(0.0, 20.0 * DEG_PER_M),
            })
    return pd.DataFrame(rows)


@pytest.fixture
def tmp_dir():
    """Provide a temporary directory that is cleaned up after test."""
    with tempfile.TemporaryDirectory(prefix="territory_test_") as d:
        yield d


@pytest.fixture
def points():
    """60 projected fixes of one bird (sd 30 m east, 20 m north)."""
    return gaussian_points(60)


@pytest.fixture
def points_by_bird():
    """Three birds with 40, 25 and 12 projected fixes."""
    return {
        "BIRD_A": gaussian_points(40, seed=1),
        "BIRD_B": gaussian_points(25, sd_x=15.0, sd_y=15.0, seed=2),
        "BIRD_C": gaussian_points(12, sd_x=40.0, sd_y=10.0, seed=3),
    }


@pytest.fixture
def territory_df():
    """Geographic fixes for three birds near the Presidio."""
    return _territory_frame({"BIRD_A": 40, "BIRD_B": 25, "BIRD_C": 12})


@pytest.fixture
def condition_df():
    """Morphometrics with weight increasing allometrically with wing."""
    rng = np.random.default_rng(7)
    wing = rng.normal(70.0, 2.5, 30)
    weight = 0.004 * wing ** 2.3 * rng.lognormal(0.0, 0.03, 30)
    return pd.DataFrame({
        "bird_id": [f"B{i:02d}" for i in range(30)],
        "wing": wing,
        "weight": weight,
        "habitat": ["urban" if i % 2 else "rural" for i in range(30)],
    })


@pytest.fixture
def model_df():
    """Per-bird model dataset where territory size tracks comm_distance."""
    rng = np.random.default_rng(11)
    n = 40
    habitat = np.array(["urban"] * (n // 2) + ["rural"] * (n // 2))
    comm = np.where(habitat == "urban", 70.0, 45.0) + rng.normal(0.0, 6.0, n)
    area = 80.0 * comm + rng.normal(0.0, 300.0, n)
    return pd.DataFrame({
        "bird_id": [f"B{i:02d}" for i in range(n)],
        "habitat": habitat,
        "dialect": np.where(rng.random(n) < 0.5, "SFB", "BAY"),
        "age": np.where(rng.random(n) < 0.5, "ASY", "SY"),
        "noise": rng.normal(60.0, 4.0, n),
        "comm_distance": comm,
        "condition": rng.normal(25.0, 1.5, n),
        "area_75": np.clip(area, 100.0, None),
    })


@pytest.fixture
def input_csvs(tmp_dir, territory_df, condition_df, model_df):
    """Write the three input tables and return their paths."""
    paths = {
        "territory": os.path.join(tmp_dir, "territories.csv"),
        "condition": os.path.join(tmp_dir, "condition.csv"),
        "model": os.path.join(tmp_dir, "model.csv"),
    }
    territory_df.to_csv(paths["territory"], index=False)
    condition_df.to_csv(paths["condition"], index=False)
    model_df.to_csv(paths["model"], index=False)
    return paths
