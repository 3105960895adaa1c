"""
Loaders for the three input tables.

Each loader reads a delimited file with pandas, validates the column
contract with the matching pandera schema (raising SchemaError on missing
or mistyped columns) and returns a clean DataFrame. Validation failures are
setup errors and are never swallowed.
"""

import os

import pandas as pd

from territory_analysis.errors import SchemaError
from territory_analysis.logging_config import get_analysis_logger
from territory_analysis.pipeline_types import BirdId, Observation
from territory_analysis.schemas import (
    ConditionSchema,
    ModelDatasetSchema,
    TerritorySchema,
    validate_schema,
)

log = get_analysis_logger(__name__)


def _read_table(path, sep=None):
    if not os.path.exists(path):
        raise FileNotFoundError(f"Input file not found: {path}")
    # sep=None sniffs comma/semicolon/tab delimited exports.
    df = pd.read_csv(path, sep=sep, engine="python" if sep is None else "c")
    df.columns = [str(c).strip() for c in df.columns]
    log.info("Read %s: %d rows, columns=%s", path, len(df), list(df.columns))
    return df


def check_roster(df, roster, id_col="bird_id"):
    """Raise SchemaError if any bird_id in df is not in roster."""
    known = {str(b) for b in roster}
    unknown = sorted(set(df[id_col].astype(str)) - known)
    if unknown:
        raise SchemaError(
            f"{len(unknown)} bird id(s) not in the roster: {unknown[:10]}"
        )


def load_roster(path, sep=","):
    """Bird ids from a roster file: its ``bird_id`` column, else its first column."""
    df = _read_table(path, sep=sep)
    col = "bird_id" if "bird_id" in df.columns else df.columns[0]
    ids = df[col].dropna().astype(str).str.strip()
    ids = ids[ids != ""]
    if ids.empty:
        raise SchemaError(f"Roster {path} lists no bird ids")
    return sorted(set(ids))


def load_territory_observations(path, roster=None, sep=None):
    """Load GPS/observation fixes (bird_id, longitude, latitude, ...).

    Parameters
    ----------
    path : str
        Delimited file with at least bird_id, longitude, latitude.
    roster : iterable of str, optional
        Known bird ids; observations of unknown birds raise SchemaError.

    Returns
    -------
    pd.DataFrame
    """
    raw = _read_table(path, sep=sep)
    df, _ = validate_schema(raw, TerritorySchema, "load_territories")
    df["bird_id"] = df["bird_id"].str.strip()
    if roster is not None:
        check_roster(df, roster)
    counts = df.groupby("bird_id").size()
    log.info("Loaded %d observations for %d birds (min %d, max %d per bird)",
             len(df), len(counts), counts.min(), counts.max())
    return df


def load_condition_data(path, sep=None):
    """Load morphometrics (bird_id, wing, weight, habitat)."""
    raw = _read_table(path, sep=sep)
    df, _ = validate_schema(raw, ConditionSchema, "load_condition")
    df["bird_id"] = df["bird_id"].str.strip()
    return df


def load_model_dataset(path, sep=None):
    """Load the combined per-bird model dataset."""
    raw = _read_table(path, sep=sep)
    if "habitat" in raw:
        raw["habitat"] = raw["habitat"].astype(str).str.strip().str.lower()
    df, _ = validate_schema(raw, ModelDatasetSchema, "load_model_dataset")
    df["bird_id"] = df["bird_id"].str.strip()
    return df


def to_observations(df):
    """Projected observation rows as immutable Observation records.

    Rows without projected coordinates (skipped by the projector) are left
    out.
    """
    projected = df.dropna(subset=["easting", "northing"])
    return [
        Observation(
            bird_id=BirdId(row.bird_id),
            longitude=float(row.longitude),
            latitude=float(row.latitude),
            easting=float(row.easting),
            northing=float(row.northing),
        )
        for row in projected.itertuples(index=False)
    ]


def observations_by_bird(df):
    """Group projected coordinates per bird.

    Returns
    -------
    dict[BirdId, np.ndarray]
        (n, 2) easting/northing array per bird, birds in sorted order.
    """
    projected = df.dropna(subset=["easting", "northing"])
    return {
        BirdId(str(bird)): group[["easting", "northing"]].to_numpy(dtype=float)
        for bird, group in projected.groupby("bird_id", sort=True)
    }


def summarize_observations(df):
    """Per-bird observation counts and projected extent."""
    projected = df.dropna(subset=["easting", "northing"])
    summary = projected.groupby("bird_id").agg(
        n_points=("easting", "size"),
        easting_range=("easting", lambda s: s.max() - s.min()),
        northing_range=("northing", lambda s: s.max() - s.min()),
    ).reset_index()
    return summary
