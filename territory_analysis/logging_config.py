"""
Logging for the territory analysis.

Two sinks: a console stream for the operator, and one JSON Lines file per
analysis run (``{output_dir}/analysis.jsonl``) that keeps the structured
fields of every record, so a run's stage results, per-bird skips and
validation progress can be read back next to its outputs.

Usage:
    from territory_analysis.logging_config import get_analysis_logger
    log = get_analysis_logger(__name__)
    log.warning("too few fixes", extra={"bird_id": "WCS_07"})
"""

import json
import logging
import os
import uuid

_run_id = None

# Attributes copied from ``extra=`` into the JSON entry.
STRUCTURED_FIELDS = (
    "step_name", "status", "input_summary", "output_summary", "timing_seconds",
    "warnings", "bird_id", "sample_size", "trials_completed", "trials_total",
)


def get_run_id():
    """Return the current run id, generating one if needed."""
    global _run_id
    if _run_id is None:
        _run_id = uuid.uuid4().hex[:8]
    return _run_id


def set_run_id(run_id=None):
    """Set (or regenerate) the run id stamped on every record."""
    global _run_id
    _run_id = run_id or uuid.uuid4().hex[:8]
    return _run_id


class RunIdFilter(logging.Filter):
    """Stamp the current run id on each record a handler emits."""

    def filter(self, record):
        record.run_id = get_run_id()
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line, with the structured ``extra`` fields."""

    def format(self, record):
        entry = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S.") +
                         f"{int(record.msecs):03d}",
            "level": record.levelname,
            "logger": record.name,
            "run_id": getattr(record, "run_id", None),
            "message": record.getMessage(),
        }
        for key in STRUCTURED_FIELDS:
            if hasattr(record, key):
                entry[key] = getattr(record, key)
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Console lines prefixed with the bird (and sample size) a record is about."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s [%(levelname)s] %(context)s%(message)s",
            datefmt="%H:%M:%S",
        )

    def format(self, record):
        bird_id = getattr(record, "bird_id", None)
        sample_size = getattr(record, "sample_size", None)
        if bird_id is None:
            record.context = ""
        elif sample_size is None:
            record.context = f"{bird_id}: "
        else:
            record.context = f"{bird_id} n={sample_size}: "
        return super().format(record)


_console_handler = None
_run_handler = None


def setup_logging(run_dir=None, console_level=None, file_level=logging.DEBUG):
    """Attach the console handler and point the run log at ``run_dir``.

    The console handler is attached once per process. Each distinct
    ``run_dir`` gets its own ``analysis.jsonl``; switching to a new
    directory closes the previous run's file first.

    Parameters
    ----------
    run_dir : str, optional
        Output directory of the current run.
    console_level : int, optional
        Default: the LOG_LEVEL environment variable, else INFO.
    file_level : int
        Level for the run log. Default: DEBUG.

    Returns
    -------
    str or None
        Path of the active run log.
    """
    global _console_handler, _run_handler
    root = logging.getLogger()

    if _console_handler is None:
        if console_level is None:
            env_level = os.environ.get("LOG_LEVEL", "INFO").upper()
            console_level = getattr(logging, env_level, logging.INFO)
        root.setLevel(logging.DEBUG)
        _console_handler = logging.StreamHandler()
        _console_handler.setLevel(console_level)
        _console_handler.setFormatter(ConsoleFormatter())
        _console_handler.addFilter(RunIdFilter())
        root.addHandler(_console_handler)

    if run_dir:
        path = os.path.abspath(os.path.join(run_dir, "analysis.jsonl"))
        if _run_handler is None or _run_handler.baseFilename != path:
            close_run_log()
            os.makedirs(run_dir, exist_ok=True)
            handler = logging.FileHandler(path)
            handler.setLevel(file_level)
            handler.setFormatter(JsonFormatter())
            handler.addFilter(RunIdFilter())
            root.addHandler(handler)
            _run_handler = handler

    return _run_handler.baseFilename if _run_handler is not None else None


def close_run_log():
    """Detach and close the run log. Returns its path, or None if none was open."""
    global _run_handler
    if _run_handler is None:
        return None
    logging.getLogger().removeHandler(_run_handler)
    _run_handler.close()
    path = _run_handler.baseFilename
    _run_handler = None
    return path


def get_analysis_logger(name):
    """Logger for an analysis module; attaches the console handler on first use."""
    if _console_handler is None:
        setup_logging()
    return logging.getLogger(name)


def log_step_result(logger, result):
    """Log a finished stage from its StepResult.

    Errors go out at ERROR with the last line of the captured error, skips
    at WARNING with their reasons, successes at INFO with the output summary.
    """
    line = f"[{result.step_name}] {result.status} ({result.timing_seconds:.1f}s)"
    if result.status == "error":
        level = logging.ERROR
        if result.error:
            line += " " + result.error.strip().splitlines()[-1]
    elif result.status == "skipped":
        level = logging.WARNING
        if result.warnings:
            line += " " + "; ".join(result.warnings)
    else:
        level = logging.INFO
        if result.output_summary:
            line += f" output={result.output_summary}"

    extra = {
        "step_name": result.step_name,
        "status": result.status,
        "timing_seconds": result.timing_seconds,
    }
    if result.input_summary:
        extra["input_summary"] = result.input_summary
    if result.output_summary:
        extra["output_summary"] = result.output_summary
    if result.warnings:
        extra["warnings"] = result.warnings
    logger.log(level, line, extra=extra)


def log_trial_progress(logger, completed, total=None):
    """Log resampling progress as completed/total trials."""
    if total:
        logger.info("Sample-size validation: %d/%d trials (%.0f%%)",
                    completed, total, 100.0 * completed / total,
                    extra={"trials_completed": completed, "trials_total": total})
    else:
        logger.info("Sample-size validation: %d trials", completed,
                    extra={"trials_completed": completed})
