"""
Pandera DataFrame schemas for input contracts and output sanity gates.

Input schemas check column presence and types (with numeric coercion so
integer-typed CSV columns pass); output schemas check the derived tables
before they are written.

Usage:
    from territory_analysis.schemas import TerritorySchema, validate_schema
    df, warnings = validate_schema(raw, TerritorySchema, "load_territories")
"""

import pandera as pa
from pandera import Check, Column, DataFrameSchema

from territory_analysis import config
from territory_analysis.errors import SchemaError
from territory_analysis.logging_config import get_analysis_logger

log = get_analysis_logger(__name__)


# ── Territory observations ──────────────────────────────────────────────

# Coordinate ranges are not checked here: out-of-domain points
# are handled per record by the projector.
TerritorySchema = DataFrameSchema(
    columns={
        "bird_id": Column(str, nullable=False, coerce=True),
        "longitude": Column(float, nullable=False, coerce=True),
        "latitude": Column(float, nullable=False, coerce=True),
        "timestamp": Column(str, nullable=True, coerce=True, required=False),
    },
    strict=False,
    coerce=False,
    name="TerritorySchema",
)


# ── Body condition measurements ─────────────────────────────────────────

ConditionSchema = DataFrameSchema(
    columns={
        "bird_id": Column(str, nullable=False, coerce=True),
        "wing": Column(float, Check.greater_than(0.0), nullable=False, coerce=True),
        "weight": Column(float, Check.greater_than(0.0), nullable=False, coerce=True),
        "habitat": Column(str, nullable=False, coerce=True),
    },
    strict=False,
    coerce=False,
    name="ConditionSchema",
)


# ── Combined model dataset ──────────────────────────────────────────────

ModelDatasetSchema = DataFrameSchema(
    columns={
        "bird_id": Column(str, nullable=False, coerce=True),
        "habitat": Column(str, Check.isin(list(config.HABITAT_GROUPS)),
                          nullable=False, coerce=True),
        "dialect": Column(str, nullable=False, coerce=True),
        "age": Column(str, nullable=False, coerce=True),
        "noise": Column(float, nullable=False, coerce=True),
        "comm_distance": Column(float, Check.greater_than_or_equal_to(0.0),
                                nullable=False, coerce=True),
        "condition": Column(float, Check.greater_than(0.0), nullable=False,
                            coerce=True),
        "area_75": Column(float, Check.greater_than_or_equal_to(0.0),
                          nullable=False, coerce=True),
    },
    strict=False,
    coerce=False,
    name="ModelDatasetSchema",
)


# ── Sample-size validation outputs ──────────────────────────────────────

TrialsSchema = DataFrameSchema(
    columns={
        "bird_id": Column(str, nullable=False),
        "sample_size": Column(int, Check.greater_than(0), nullable=False),
        "trial": Column(int, Check.greater_than_or_equal_to(0), nullable=False),
        "area": Column(float, Check.greater_than(0.0), nullable=True),
        "h_value": Column(float, Check.greater_than(0.0), nullable=False),
    },
    strict=False,
    coerce=False,
    name="TrialsSchema",
)

SummarySchema = DataFrameSchema(
    columns={
        "bird_id": Column(str, nullable=False),
        "sample_size": Column(int, Check.greater_than(0), nullable=False),
        "mean_area": Column(float, Check.greater_than(0.0), nullable=True),
        "se_area": Column(float, Check.greater_than_or_equal_to(0.0), nullable=True),
        "n_valid": Column(int, Check.greater_than_or_equal_to(0), nullable=False),
    },
    strict=False,
    coerce=False,
    name="SummarySchema",
)


# ── Convenience validation function ─────────────────────────────────────

def validate_schema(df, schema, step_name, strict=True):
    """Validate a DataFrame against a Pandera schema.

    Parameters
    ----------
    df : pd.DataFrame
        DataFrame to validate.
    schema : pa.DataFrameSchema
        Schema to validate against.
    step_name : str
        Analysis step name for error messages.
    strict : bool
        If True, raise on failure. If False, log and return warnings.

    Returns
    -------
    tuple[pd.DataFrame, list[str]]
        The (coerced) DataFrame and validation warning messages. In lenient
        mode a failing frame is returned unchanged.

    Raises
    ------
    SchemaError
        If strict=True and the frame is missing, empty, or fails validation.
    """
    warnings_list = []

    if df is None:
        msg = f"[{step_name}] DataFrame is None"
        if strict:
            raise SchemaError(msg)
        return df, [msg]

    if len(df) == 0:
        msg = f"[{step_name}] DataFrame is empty (0 rows)"
        if strict:
            raise SchemaError(msg)
        return df, [msg]

    try:
        return schema.validate(df, lazy=True), warnings_list
    except pa.errors.SchemaErrors as exc:
        for failure in exc.failure_cases.itertuples():
            msg = (
                f"[{step_name}] Schema violation: "
                f"column='{failure.column}' check='{failure.check}' "
                f"failure_case={failure.failure_case}"
            )
            warnings_list.append(msg)

        if strict:
            raise SchemaError(
                f"[{step_name}] Schema validation failed with "
                f"{len(warnings_list)} errors: " + "; ".join(warnings_list[:5])
            ) from exc

    for msg in warnings_list:
        log.warning(msg)
    return df, warnings_list
