"""
Sample-size validation of kernel home-range estimates.

For each bird, random subsets of its fixes are drawn at increasing sample
sizes (10, 20, ..., 90), the home range is re-estimated from each subset
with the bird's full-data reference bandwidth held fixed, and the resulting
areas are summarised as mean ± standard error per (bird, sample size). If a
bird was located often enough, the mean area plateaus as the sample size
approaches its full count.

METHODOLOGY:
- Subsets are drawn uniformly WITHOUT replacement.
- The bandwidth is never re-derived from a subset, so the curve reflects
  sample size only, not bandwidth-selection noise.
- Sample sizes above a bird's number of fixes are skipped explicitly and
  reported, never silently under-sampled. Non-positive sizes are skipped
  the same way and repeated sizes run once.
- A failed trial (degenerate subset, too few finite points) is recorded as
  NaN with the error name and the run continues.
Citation: Seaman, D.E. et al. (1999). J. Wildlife Management, 63(2), 739-747.

Reproducibility: one seed per (bird, sample size) task is drawn from the
injected generator, in task order, before any work starts. Serial and
parallel runs therefore produce the same trial table.
"""

import os
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass, field

import numpy as np
import pandas as pd

from territory_analysis import config
from territory_analysis.errors import DegenerateGeometryError, InsufficientDataError
from territory_analysis.formulas.kernel_density import estimate_home_range
from territory_analysis.logging_config import get_analysis_logger, log_trial_progress
from territory_analysis.pipeline_types import BirdId, TrialResult

log = get_analysis_logger(__name__)

_TRIAL_ERRORS = (InsufficientDataError, DegenerateGeometryError, ValueError)

TRIAL_COLUMNS = ["bird_id", "sample_size", "trial", "area", "h_value", "error"]


class TrialCollector:
    """Append-only store of trial results with progress reporting.

    Parameters
    ----------
    total : int, optional
        Expected number of trials, for progress messages.
    progress : callable, optional
        Called as ``progress(completed, total)`` after each batch.
    log_every : int, optional
        Log progress every N trials. Default:
        config.VALIDATION_PROGRESS_EVERY.
    """

    def __init__(self, total=None, progress=None, log_every=None):
        self.total = total
        self._progress = progress
        self._log_every = log_every or config.VALIDATION_PROGRESS_EVERY
        self._records = []
        self._next_log = self._log_every

    def __len__(self):
        return len(self._records)

    @property
    def completed(self):
        return len(self._records)

    def append(self, trial):
        self.extend([trial])

    def extend(self, trials):
        self._records.extend(trials)
        if self._progress is not None:
            self._progress(self.completed, self.total)
        if self.completed >= self._next_log:
            log_trial_progress(log, self.completed, self.total)
            self._next_log = (self.completed // self._log_every + 1) * self._log_every

    def records(self):
        return tuple(self._records)

    def to_frame(self):
        """Trials as a DataFrame sorted by (bird_id, sample_size, trial)."""
        df = pd.DataFrame([t.to_dict() for t in self._records], columns=TRIAL_COLUMNS)
        df = df.astype({"sample_size": "int64", "trial": "int64",
                        "area": "float64", "h_value": "float64"})
        return df.sort_values(["bird_id", "sample_size", "trial"]).reset_index(drop=True)


@dataclass
class ValidationResult:
    """Outcome of a sample-size validation run."""

    trials: pd.DataFrame
    summary: pd.DataFrame
    skipped: list = field(default_factory=list)  # (bird_id, sample_size, reason)
    failed_birds: list = field(default_factory=list)

    @property
    def n_trials(self):
        return len(self.trials)

    @property
    def n_failed_trials(self):
        return int(self.trials["area"].isna().sum())


def draw_subsample_indices(n_points, sample_size, rng):
    """Indices of a uniform random subset drawn without replacement.

    Raises
    ------
    ValueError
        If sample_size exceeds n_points or is not positive.
    """
    if sample_size <= 0:
        raise ValueError(f"sample_size must be positive, got {sample_size}")
    if sample_size > n_points:
        raise ValueError(
            f"Cannot draw {sample_size} of {n_points} points without replacement"
        )
    return rng.choice(n_points, size=sample_size, replace=False)


def _run_task(task):
    """Worker: all trials for one (bird, sample size) combination.

    Args:
        task: Tuple of (bird_id, points, h, sample_size, n_trials, percent, seed).

    Returns:
        List of TrialResult, one per trial.
    """
    bird_id, points, h, sample_size, n_trials, percent, seed = task
    rng = np.random.default_rng(seed)
    results = []
    for trial in range(n_trials):
        try:
            idx = draw_subsample_indices(len(points), sample_size, rng)
            estimate = estimate_home_range(points[idx], h=h, percent=percent,
                                           bird_id=bird_id)
            results.append(TrialResult(bird_id, sample_size, trial, estimate.area, h))
        except _TRIAL_ERRORS as exc:
            results.append(TrialResult(bird_id, sample_size, trial, np.nan, h,
                                       error=type(exc).__name__))
    return results


def _record_task_failure(collector, task, exc):
    """Record every trial of a task that raised outside the per-trial guard."""
    bird_id, _, h, sample_size, n_trials, _, _ = task
    log.error("Validation task failed for %s at n=%d: %s", bird_id, sample_size, exc,
              extra={"bird_id": bird_id, "sample_size": sample_size})
    collector.extend(
        TrialResult(bird_id, sample_size, trial, np.nan, h, error=type(exc).__name__)
        for trial in range(n_trials)
    )


def plan_tasks(points_by_bird, smoothing_params, sample_sizes):
    """Valid (bird, sample size) combinations plus the skipped ones.

    Sample sizes are deduplicated and sorted. Sizes that are not positive
    or exceed the bird's number of fixes are skipped with a reason.

    Returns
    -------
    tuple[list[tuple], list[tuple]]
        (bird_id, points, h, sample_size) tasks in bird/size order, and
        (bird_id, sample_size, reason) skips.
    """
    tasks = []
    skipped = []
    grid = sorted({int(n) for n in sample_sizes})
    for bird_id in sorted(points_by_bird):
        points = np.asarray(points_by_bird[bird_id], dtype=float)
        if bird_id not in smoothing_params:
            log.warning("No smoothing parameter for %s; bird skipped", bird_id,
                        extra={"bird_id": bird_id})
            skipped.extend((bird_id, n, "no_bandwidth") for n in grid)
            continue
        h = smoothing_params[bird_id]
        for n in grid:
            if n <= 0:
                skipped.append((bird_id, n, "non_positive_sample_size"))
                continue
            if n > len(points):
                skipped.append((bird_id, n, "exceeds_available_points"))
                continue
            tasks.append((bird_id, points, h, n))

    by_reason = {}
    for bird_id, n, reason in skipped:
        by_reason.setdefault(reason, []).append(f"{bird_id}@{n}")
    for reason, combos in by_reason.items():
        log.info("Skipped %d bird/sample-size combination(s) (%s): %s",
                 len(combos), reason, combos)
    return tasks, skipped


def run_sample_size_validation(points_by_bird, smoothing_params, sample_sizes=None,
                               n_trials=None, percent=None, rng=None,
                               max_workers=1, progress=None):
    """Resample each bird's fixes at increasing sample sizes.

    Parameters
    ----------
    points_by_bird : dict[BirdId, np.ndarray]
        Full set of projected fixes per bird.
    smoothing_params : Mapping[BirdId, float]
        Reference bandwidth per bird from its full dataset.
    sample_sizes : sequence of int, optional
        Default: config.VALIDATION_SAMPLE_SIZES (10..90 by 10).
    n_trials : int, optional
        Draws per sample size. Default: config.VALIDATION_TRIALS (100).
    percent : float, optional
        Contour level. Default: config.VALIDATION_PERCENT (95).
    rng : np.random.Generator, optional
        Random source. Default: seeded with config.VALIDATION_SEED.
    max_workers : int
        Worker processes (1 = run in-process).
    progress : callable, optional
        ``progress(completed, total)`` after each finished task.

    Returns
    -------
    ValidationResult

    Raises
    ------
    InsufficientDataError
        No birds, or no bird produced a single valid trial.
    """
    if sample_sizes is None:
        sample_sizes = config.VALIDATION_SAMPLE_SIZES
    if n_trials is None:
        n_trials = config.VALIDATION_TRIALS
    if percent is None:
        percent = config.VALIDATION_PERCENT
    if rng is None:
        rng = np.random.default_rng(config.VALIDATION_SEED)
    if max_workers is None:
        max_workers = max(1, (os.cpu_count() or 2) - 1)

    if not points_by_bird:
        raise InsufficientDataError("No birds to validate")

    planned, skipped = plan_tasks(points_by_bird, smoothing_params, sample_sizes)
    seeds = rng.integers(0, 2 ** 32, size=len(planned))
    tasks = [
        (bird_id, points, h, n, n_trials, percent, int(seed))
        for (bird_id, points, h, n), seed in zip(planned, seeds)
    ]

    collector = TrialCollector(total=len(tasks) * n_trials, progress=progress)
    log.info("Running sample-size validation: %d birds, %d tasks x %d trials, "
             "%d worker(s)", len(points_by_bird), len(tasks), n_trials, max_workers)

    if max_workers == 1 or len(tasks) <= 1:
        for task in tasks:
            try:
                collector.extend(_run_task(task))
            except Exception as exc:
                _record_task_failure(collector, task, exc)
    else:
        with ProcessPoolExecutor(max_workers=max_workers) as executor:
            futures = {executor.submit(_run_task, t): t for t in tasks}
            for future in as_completed(futures):
                try:
                    collector.extend(future.result())
                except Exception as exc:
                    _record_task_failure(collector, futures[future], exc)

    trials = collector.to_frame()
    summary = summarize_trials(trials)

    valid_by_bird = trials.groupby("bird_id")["area"].count() if len(trials) else pd.Series(dtype=int)
    failed_birds = sorted(
        set(points_by_bird) - set(valid_by_bird[valid_by_bird > 0].index)
    )
    for bird_id in failed_birds:
        log.error("Bird %s has zero valid trials", bird_id, extra={"bird_id": bird_id})
    if len(failed_birds) == len(points_by_bird):
        raise InsufficientDataError("No bird produced a valid resampling trial")

    log.info("Sample-size validation complete: %d trials (%d failed), %d skipped "
             "combination(s), %d failed bird(s)",
             len(trials), int(trials["area"].isna().sum()), len(skipped),
             len(failed_birds))
    return ValidationResult(trials=trials, summary=summary, skipped=skipped,
                            failed_birds=[BirdId(b) for b in failed_birds])


def summarize_trials(trials):
    """Mean area and standard error per (bird_id, sample_size).

    ``se_area = sd(area) / sqrt(n_valid)`` over valid trials only.
    Combinations with no valid trial keep a row with NaN statistics and
    ``no_valid_trials=True``.
    """
    if trials.empty:
        return pd.DataFrame(columns=["bird_id", "sample_size", "mean_area", "se_area",
                                     "n_trials", "n_valid", "no_valid_trials"])
    grouped = trials.groupby(["bird_id", "sample_size"])["area"]
    summary = grouped.agg(
        mean_area="mean",
        sd_area=lambda a: a.std(ddof=1),
        n_trials="size",
        n_valid="count",
    ).reset_index()
    summary["se_area"] = summary["sd_area"] / np.sqrt(summary["n_valid"].where(summary["n_valid"] > 0))
    summary["n_trials"] = summary["n_trials"].astype("int64")
    summary["n_valid"] = summary["n_valid"].astype("int64")
    summary["no_valid_trials"] = summary["n_valid"] == 0
    return summary[["bird_id", "sample_size", "mean_area", "se_area",
                    "n_trials", "n_valid", "no_valid_trials"]]


def plateau_check(summary, tolerance=None):
    """Whether each bird's mean area has levelled off.

    Compares the two largest sample sizes with valid trials; the estimate
    has plateaued when their relative difference is within tolerance.

    Returns
    -------
    pd.DataFrame
        Columns: bird_id, largest_n, previous_n, relative_change, plateaued.
    """
    if tolerance is None:
        tolerance = config.PLATEAU_TOLERANCE
    rows = []
    valid = summary[~summary["no_valid_trials"]]
    for bird_id, group in valid.groupby("bird_id"):
        group = group.sort_values("sample_size")
        if len(group) < 2:
            rows.append({"bird_id": bird_id, "largest_n": int(group["sample_size"].iloc[-1]),
                         "previous_n": np.nan, "relative_change": np.nan,
                         "plateaued": False})
            continue
        prev, last = group.iloc[-2], group.iloc[-1]
        change = abs(last["mean_area"] - prev["mean_area"]) / prev["mean_area"]
        rows.append({
            "bird_id": bird_id,
            "largest_n": int(last["sample_size"]),
            "previous_n": int(prev["sample_size"]),
            "relative_change": float(change),
            "plateaued": bool(change <= tolerance),
        })
    return pd.DataFrame(rows, columns=["bird_id", "largest_n", "previous_n",
                                       "relative_change", "plateaued"])


def describe_plateau(plateau):
    """One readable line per bird of a plateau_check() table."""
    lines = []
    for row in plateau.itertuples(index=False):
        if pd.isna(row.relative_change):
            lines.append(f"{row.bird_id}: only n={row.largest_n} has valid trials; "
                         "plateau not assessed")
            continue
        state = "plateaued" if row.plateaued else "still changing"
        lines.append(f"{row.bird_id}: n={int(row.previous_n)} -> {row.largest_n} "
                     f"change {100 * row.relative_change:.1f}% ({state})")
    return lines
