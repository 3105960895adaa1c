#!/usr/bin/env python3
"""
Standalone sample-size validation runner.

Resamples each bird's fixes at increasing sample sizes, re-estimates the
95% kernel home range with the bird's full-data bandwidth, and writes the
trial table, the mean ± SE summary and the per-bird curves.

Usage (run from project root):
    python3 scripts/run_sample_size_validation.py --output-dir ./outputs \
        --territory-csv ./data/WCS2021_territories.csv --trials 100 --workers 4
"""

import argparse
import os
import sys

import numpy as np

from territory_analysis import config
from territory_analysis.data_loading import (
    load_territory_observations,
    observations_by_bird,
)
from territory_analysis.formulas.projection import project_observations
from territory_analysis.home_range import estimate_smoothing_parameters
from territory_analysis.logging_config import close_run_log, get_analysis_logger, setup_logging
from territory_analysis.sample_size_validation import (
    describe_plateau,
    plateau_check,
    run_sample_size_validation,
)
from territory_analysis.visualization import plot_sample_size_curves

log = get_analysis_logger(__name__)


def main():
    parser = argparse.ArgumentParser(
        description="Run the kernel home-range sample-size validation"
    )
    parser.add_argument("--output-dir", default=config.DEFAULT_OUTPUT_DIR)
    parser.add_argument("--territory-csv", default=config.DEFAULT_TERRITORY_CSV)
    parser.add_argument("--sample-sizes",
                        default=",".join(str(n) for n in config.VALIDATION_SAMPLE_SIZES),
                        help="Comma-separated sample sizes to test")
    parser.add_argument("--trials", type=int, default=config.VALIDATION_TRIALS)
    parser.add_argument("--seed", type=int, default=config.VALIDATION_SEED)
    parser.add_argument("--workers", type=int, default=1)
    args = parser.parse_args()

    if not os.path.isfile(args.territory_csv):
        log.error("Territory file not found: %s", args.territory_csv)
        sys.exit(1)

    setup_logging(run_dir=args.output_dir)
    try:
        _run(args)
    finally:
        close_run_log()


def _run(args):
    observations = project_observations(load_territory_observations(args.territory_csv))
    points_by_bird = observations_by_bird(observations)
    smoothing = estimate_smoothing_parameters(points_by_bird)

    sample_sizes = [int(n.strip()) for n in args.sample_sizes.split(",")]
    log.info("Sample sizes: %s, %d trials each, seed %d",
             sample_sizes, args.trials, args.seed)

    result = run_sample_size_validation(
        points_by_bird, smoothing,
        sample_sizes=sample_sizes,
        n_trials=args.trials,
        rng=np.random.default_rng(args.seed),
        max_workers=args.workers,
    )

    os.makedirs(args.output_dir, exist_ok=True)
    result.trials.to_csv(
        os.path.join(args.output_dir, config.OUTPUT_FILES["trials"]), index=False)
    result.summary.to_csv(
        os.path.join(args.output_dir, config.OUTPUT_FILES["summary"]), index=False)

    for line in describe_plateau(plateau_check(result.summary)):
        log.info(line)

    plot_sample_size_curves(
        result.summary,
        os.path.join(args.output_dir, config.PLOTS_SUBDIR, "sample_size_validation.png"),
    )
    log.info("Sample-size validation complete.")


if __name__ == "__main__":
    main()
