"""
Analysis runner: territory size, sample-size validation, body condition
and model selection.

Every stage runs through run_step() so timing, errors and outputs are
recorded in a StepResult. Setup stages (loading/validating input tables,
population-level fits) are fatal for the analysis they belong to: the
remaining stages of that analysis are marked skipped and the failure is
reported with the stage name and reason. Per-bird and per-trial problems
are handled inside the stages and never abort a run.

Usage:
    territory-analysis --analysis all --territory-csv data/territories.csv \
        --condition-csv data/condition.csv --model-csv data/model.csv
"""

import argparse
import json
import os
import time

import numpy as np
import pandas as pd

from territory_analysis import config
from territory_analysis.data_loading import (
    load_condition_data,
    load_model_dataset,
    load_roster,
    load_territory_observations,
    observations_by_bird,
)
from territory_analysis.errors import InsufficientDataError
from territory_analysis.formulas.condition import compute_condition_index
from territory_analysis.formulas.model_selection import (
    best_model_report,
    compare_habitats,
    fit_candidate_models,
    model_selection_table,
)
from territory_analysis.formulas.projection import project_observations
from territory_analysis.home_range import (
    estimate_smoothing_parameters,
    estimate_territories,
    export_contours,
    smoothing_parameter_table,
    territory_area_table,
)
from territory_analysis.logging_config import (
    close_run_log,
    get_analysis_logger,
    log_step_result,
    set_run_id,
    setup_logging,
)
from territory_analysis.pipeline_types import (
    AnalysisRunResult,
    StepResult,
    StepStatus,
)
from territory_analysis.sample_size_validation import (
    describe_plateau,
    plateau_check,
    run_sample_size_validation,
)
from territory_analysis.schemas import SummarySchema, TrialsSchema, validate_schema
from territory_analysis.step_runner import run_step
from territory_analysis import visualization

log = get_analysis_logger(__name__)

ANALYSES = ("territory", "validation", "condition", "models")


# ── Helpers ──────────────────────────────────────────────────────────────


def _output_path(args, key):
    return os.path.join(args.output_dir, config.OUTPUT_FILES[key])


def _plot_path(args, name):
    return os.path.join(args.output_dir, config.PLOTS_SUBDIR, name)


def _write_csv(df, path, run_result):
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    df.to_csv(path, index=False)
    run_result.output_files.append(path)
    log.info("Saved: %s (%d rows)", path, len(df))
    return path


def _skip(run_result, step_names, reason):
    for name in step_names:
        result = StepResult(step_name=name, status=StepStatus.SKIPPED.value,
                            warnings=[reason])
        log_step_result(log, result)
        run_result.step_results.append(result)


def _parse_int_list(value):
    """Parse "10-90:10", "10-90" (step 10) or "10,20,30"."""
    if "-" in value:
        bounds, _, step = value.partition(":")
        start, end = bounds.split("-")
        return list(range(int(start), int(end) + 1, int(step or 10)))
    return [int(v) for v in value.split(",") if v.strip()]


# ── Territory + validation ──────────────────────────────────────────────


def _read_observations(territory_csv, roster_csv=None):
    roster = load_roster(roster_csv) if roster_csv else None
    return load_territory_observations(territory_csv, roster=roster)


def _load_and_project(args, run_result):
    step, observations = run_step(
        "load_territories", _read_observations, args.territory_csv, args.roster,
        input_summary={"path": args.territory_csv, "roster": args.roster},
        output_summary_fn=lambda df: {"rows": len(df), "birds": df["bird_id"].nunique()},
    )
    run_result.step_results.append(step)
    if not step.ok:
        return None, None

    step, projected = run_step(
        "project_coordinates", project_observations, observations, args.projection,
        output_summary_fn=lambda df: {"projected": int(df["easting"].notna().sum()),
                                      "skipped": int(df["easting"].isna().sum())},
    )
    run_result.step_results.append(step)
    if not step.ok:
        return None, None

    step, smoothing = run_step(
        "estimate_smoothing_parameters", _smoothing_parameters, projected,
        output_summary_fn=lambda m: {"birds": len(m)},
    )
    run_result.step_results.append(step)
    if not step.ok:
        return None, None
    return projected, smoothing


def _smoothing_parameters(projected):
    params = estimate_smoothing_parameters(observations_by_bird(projected))
    if not params:
        raise InsufficientDataError("No bird has enough fixes for a reference bandwidth")
    return params


def run_territory_analysis(args, run_result, projected, smoothing):
    """Territory areas per bird at each contour level, plus contours."""
    _write_csv(smoothing_parameter_table(smoothing),
               _output_path(args, "smoothing_parameters"), run_result)

    step, estimated = run_step(
        "estimate_territories", estimate_territories,
        observations_by_bird(projected),
        percents=args.percents,
        with_contours=args.export_contours,
        smoothing_params=smoothing,
        crs=args.projection,
        input_summary={"percents": list(args.percents)},
        output_summary_fn=lambda r: {"birds": r[0]["bird_id"].nunique()},
    )
    run_result.step_results.append(step)
    if not step.ok:
        return None

    areas_long, contours = estimated
    _write_csv(areas_long, _output_path(args, "territory_areas_long"), run_result)
    wide = territory_area_table(areas_long)
    _write_csv(wide, _output_path(args, "territory_areas"), run_result)

    if contours is not None and not contours.empty:
        path = export_contours(contours, _output_path(args, "contours"))
        run_result.output_files.append(path)
        if not args.no_plots:
            level = config.TERRITORY_PERCENT
            if level not in args.percents:
                level = args.percents[-1]
            run_result.output_files.append(visualization.plot_territory_contours(
                contours, projected, _plot_path(args, "territory_contours.png"),
                percent=level,
            ))
    return wide


def run_validation_analysis(args, run_result, projected, smoothing):
    """Sample-size validation trials and their summary."""
    step, validation = run_step(
        "sample_size_validation", run_sample_size_validation,
        observations_by_bird(projected), smoothing,
        sample_sizes=args.sample_sizes,
        n_trials=args.trials,
        percent=args.validation_percent,
        rng=np.random.default_rng(args.seed),
        max_workers=args.workers,
        input_summary={"sample_sizes": list(args.sample_sizes), "trials": args.trials,
                       "percent": args.validation_percent, "seed": args.seed},
        output_summary_fn=lambda v: {"trials": v.n_trials,
                                     "failed_trials": v.n_failed_trials,
                                     "skipped": len(v.skipped),
                                     "failed_birds": v.failed_birds},
    )
    run_result.step_results.append(step)
    if not step.ok:
        return None

    for df, schema, name in ((validation.trials, TrialsSchema, "trials"),
                             (validation.summary, SummarySchema, "summary")):
        _, warnings = validate_schema(df, schema, f"validation_{name}", strict=False)
        step.warnings.extend(warnings)
    if validation.failed_birds:
        step.warnings.append(f"Birds with zero valid trials: {validation.failed_birds}")

    _write_csv(validation.trials, _output_path(args, "trials"), run_result)
    plateau = plateau_check(validation.summary)
    for line in describe_plateau(plateau):
        log.info(line)
    summary = validation.summary.merge(
        plateau[["bird_id", "plateaued"]],
        on="bird_id", how="left",
    )
    _write_csv(summary, _output_path(args, "summary"), run_result)
    if not args.no_plots:
        path = visualization.plot_sample_size_curves(
            validation.summary, _plot_path(args, "sample_size_validation.png"))
        if path:
            run_result.output_files.append(path)
    return validation


# ── Condition ────────────────────────────────────────────────────────────


def run_condition_analysis(args, run_result):
    """Scaled Mass Index for every measured bird."""
    step, condition_df = run_step(
        "load_condition", load_condition_data, args.condition_csv,
        input_summary={"path": args.condition_csv},
        output_summary_fn=lambda df: {"rows": len(df)},
    )
    run_result.step_results.append(step)
    if not step.ok:
        _skip(run_result, ["condition_index"], "load_condition failed")
        return None

    step, computed = run_step(
        "condition_index", compute_condition_index, condition_df,
        output_summary_fn=lambda r: r[1].to_dict(),
    )
    run_result.step_results.append(step)
    if not step.ok:
        return None

    scored, params = computed
    log.info("Condition parameters: slope=%.4f r=%.4f exponent=%.4f L0=%.2f (n=%d)",
             params.slope, params.r, params.exponent, params.l0, params.n)
    _write_csv(scored, _output_path(args, "condition"), run_result)
    if not args.no_plots:
        run_result.output_files.append(
            visualization.plot_condition(scored, _plot_path(args, "condition.png")))
    return scored


# ── Models ───────────────────────────────────────────────────────────────


def _habitat_tests(model_df):
    rows = [
        compare_habitats(model_df, "comm_distance"),
        compare_habitats(model_df, config.MODEL_RESPONSE, transform="sqrt"),
    ]
    return pd.DataFrame(rows)


def run_model_analysis(args, run_result):
    """Candidate model ranking and urban/rural Welch t-tests."""
    step, model_df = run_step(
        "load_model_dataset", load_model_dataset, args.model_csv,
        input_summary={"path": args.model_csv},
        output_summary_fn=lambda df: {"rows": len(df)},
    )
    run_result.step_results.append(step)
    if not step.ok:
        _skip(run_result, ["model_selection", "habitat_tests"], "load_model_dataset failed")
        return None

    step, ranked = run_step(
        "model_selection", fit_candidate_models, model_df,
        transform=args.response_transform,
        output_summary_fn=lambda r: {"best": r[0].name, "aicc": round(r[0].aicc, 2)},
    )
    run_result.step_results.append(step)
    if step.ok:
        _write_csv(model_selection_table(ranked), _output_path(args, "model_selection"),
                   run_result)
        report = best_model_report(ranked)
        log.info("Best model: %s (AICc=%.2f, weight=%.2f, R²=%.3f)\n%s",
                 report["formula"], report["aicc"], report["weight"],
                 report["r_squared"], report["coefficients"].to_string(index=False))

    step, tests = run_step(
        "habitat_tests", _habitat_tests, model_df,
        output_summary_fn=lambda df: dict(zip(df["variable"], df["p_value"].round(4))),
    )
    run_result.step_results.append(step)
    if step.ok:
        _write_csv(tests, _output_path(args, "habitat_tests"), run_result)
        if not args.no_plots:
            run_result.output_files.append(visualization.plot_habitat_comparison(
                model_df, "comm_distance", _plot_path(args, "comm_distance_by_habitat.png")))
    return ranked


# ── Entry points ─────────────────────────────────────────────────────────


def run_analysis(args):
    """Run the selected analyses and return an AnalysisRunResult."""
    analyses = list(ANALYSES) if args.analysis == "all" else [args.analysis]
    run_result = AnalysisRunResult(output_dir=args.output_dir, analyses=analyses)
    start_time = time.time()
    os.makedirs(args.output_dir, exist_ok=True)

    if "territory" in analyses or "validation" in analyses:
        projected, smoothing = _load_and_project(args, run_result)
        if projected is None:
            dependents = []
            if "territory" in analyses:
                dependents.append("estimate_territories")
            if "validation" in analyses:
                dependents.append("sample_size_validation")
            _skip(run_result, dependents, "territory setup failed")
        else:
            if "territory" in analyses:
                run_territory_analysis(args, run_result, projected, smoothing)
            if "validation" in analyses:
                run_validation_analysis(args, run_result, projected, smoothing)

    if "condition" in analyses:
        run_condition_analysis(args, run_result)

    if "models" in analyses:
        run_model_analysis(args, run_result)

    run_result.total_time_seconds = time.time() - start_time
    return run_result


def save_run_result(run_result, output_dir):
    """Save AnalysisRunResult as JSON for provenance."""
    result_path = os.path.join(output_dir, config.OUTPUT_FILES["run_result"])
    with open(result_path, "w") as f:
        json.dump(run_result.to_dict(), f, indent=2, default=str)
    log.info("Run result saved: %s", result_path)
    return result_path


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Bird territory size, sample-size validation, body "
                    "condition and model selection"
    )
    parser.add_argument(
        "--analysis",
        choices=list(ANALYSES) + ["all"],
        default="all",
        help="Which analysis to run",
    )
    parser.add_argument("--territory-csv", default=config.DEFAULT_TERRITORY_CSV,
                        dest="territory_csv", help="Observation fixes (bird_id, longitude, latitude)")
    parser.add_argument("--roster", default=None,
                        help="CSV of known bird ids; fixes from any other bird fail the load")
    parser.add_argument("--condition-csv", default=config.DEFAULT_CONDITION_CSV,
                        dest="condition_csv", help="Morphometrics (bird_id, wing, weight, habitat)")
    parser.add_argument("--model-csv", default=config.DEFAULT_MODEL_CSV,
                        dest="model_csv", help="Combined per-bird model dataset")
    parser.add_argument("--output-dir", default=config.DEFAULT_OUTPUT_DIR,
                        dest="output_dir", help="Output directory")
    parser.add_argument("--projection", default=config.UTM_PROJ,
                        help="Target planar projection (proj4 string or EPSG code)")
    parser.add_argument(
        "--percents",
        default=",".join(str(p) for p in config.TERRITORY_PERCENTS),
        help="Comma-separated contour levels for the territory table",
    )
    parser.add_argument("--export-contours", action="store_true", default=False,
                        dest="export_contours", help="Write contour polygons")
    parser.add_argument(
        "--sample-sizes",
        default=",".join(str(n) for n in config.VALIDATION_SAMPLE_SIZES),
        dest="sample_sizes",
        help='Sample sizes: "10,20,30" or "10-90:10"',
    )
    parser.add_argument("--trials", type=int, default=config.VALIDATION_TRIALS,
                        help="Random draws per sample size")
    parser.add_argument("--validation-percent", type=float,
                        default=config.VALIDATION_PERCENT, dest="validation_percent",
                        help="Contour level for the sample-size validation")
    parser.add_argument("--seed", type=int, default=config.VALIDATION_SEED,
                        help="Random seed for the validation draws")
    parser.add_argument("--workers", type=int, default=1,
                        help="Worker processes for the validation")
    parser.add_argument("--response-transform", choices=["none", "sqrt"],
                        default="none", dest="response_transform",
                        help="Transform of territory area in the candidate models")
    parser.add_argument("--no-plots", action="store_true", default=False,
                        dest="no_plots", help="Skip figure generation")
    args = parser.parse_args(argv)

    args.percents = [int(p) if float(p).is_integer() else float(p)
                     for p in args.percents.split(",") if p.strip()]
    args.sample_sizes = _parse_int_list(args.sample_sizes)
    if args.response_transform == "none":
        args.response_transform = None
    return args


def main(argv=None):
    args = parse_args(argv)

    run_id = set_run_id()
    setup_logging(run_dir=args.output_dir)
    log.info("Territory analysis: %s (run_id=%s)", args.analysis, run_id)

    try:
        run_result = run_analysis(args)
        save_run_result(run_result, args.output_dir)

        log.info("Analysis complete in %.1fs", run_result.total_time_seconds)
        if run_result.failed_steps:
            log.error("Failed steps: %s", [s.step_name for s in run_result.failed_steps])
            return 1
        log.info("All steps succeeded.")
        return 0
    finally:
        close_run_log()


if __name__ == "__main__":
    raise SystemExit(main())
