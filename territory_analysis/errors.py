"""
Exception taxonomy for the territory analysis.

Per-record and per-trial operations catch these and record a missing
value; setup stages (schema validation, population-level fits) let them
propagate and abort the run.
"""


class TerritoryAnalysisError(Exception):
    """Base class for all analysis errors."""


class SchemaError(TerritoryAnalysisError, ValueError):
    """Input table is missing required columns or has mistyped values."""


class ProjectionError(TerritoryAnalysisError):
    """Coordinate outside the projection's domain or malformed projection."""


class InsufficientDataError(TerritoryAnalysisError, ValueError):
    """Too few points or individuals for a stable statistical fit."""


class DegenerateGeometryError(TerritoryAnalysisError):
    """Points are coincident or collinear; the density has no finite extent."""
