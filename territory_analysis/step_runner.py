"""
Run one analysis stage and record what happened to it.

Every stage of the pipeline goes through run_step(), so a failing stage
shows up in analysis_run.json as an error entry instead of ending the run.
"""

import time
import traceback
from typing import Callable, TypeVar

import pandas as pd

from territory_analysis.errors import TerritoryAnalysisError
from territory_analysis.logging_config import get_analysis_logger, log_step_result
from territory_analysis.pipeline_types import StepResult, StepStatus, now_iso

T = TypeVar("T")

log = get_analysis_logger(__name__)

# Failures caused by the input data. Anything else is a bug and keeps its
# traceback.
INPUT_ERRORS = (
    TerritoryAnalysisError,
    FileNotFoundError,
    ValueError,
    KeyError,
    pd.errors.EmptyDataError,
    pd.errors.ParserError,
)


def run_step(
    step_name: str,
    fn: Callable[..., T],
    *args,
    input_summary: dict | None = None,
    output_summary_fn: Callable[[T], dict] | None = None,
    expected_exceptions: tuple[type[Exception], ...] = INPUT_ERRORS,
    **kwargs,
) -> tuple[StepResult, T | None]:
    """Call ``fn(*args, **kwargs)`` as the stage ``step_name``.

    An exception from ``expected_exceptions`` is stored as
    ``"<Type>: <message>"``; any other exception stores the full traceback.
    ``output_summary_fn`` runs only on success and only when ``fn``
    returned something other than None.

    Returns
    -------
    tuple[StepResult, T | None]
        The step record and fn's return value (None on error).
    """
    result = StepResult(
        step_name=step_name,
        status=StepStatus.SUCCESS.value,
        input_summary=dict(input_summary or {}),
    )
    data = None
    start = time.perf_counter()
    try:
        data = fn(*args, **kwargs)
    except expected_exceptions as exc:
        result.status = StepStatus.ERROR.value
        result.error = f"{type(exc).__name__}: {exc}"
    except Exception:
        log.exception("%s raised an unexpected error", step_name)
        result.status = StepStatus.ERROR.value
        result.error = traceback.format_exc()
    else:
        if output_summary_fn is not None and data is not None:
            result.output_summary = output_summary_fn(data)

    result.timing_seconds = time.perf_counter() - start
    result.completed_at = now_iso()
    log_step_result(log, result)
    return result, data
