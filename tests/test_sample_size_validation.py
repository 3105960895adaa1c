"""
Tests for territory_analysis/sample_size_validation.py.

The validation must never over-sample, must hold each bird's bandwidth
fixed across trials, must be reproducible from a seed (serially and in
parallel), and must survive individual trial failures.
"""

import os

import numpy as np
import pandas as pd
import pytest

from territory_analysis.errors import InsufficientDataError
from territory_analysis.formulas.kernel_density import reference_bandwidth
from territory_analysis.home_range import estimate_smoothing_parameters
from territory_analysis.sample_size_validation import (
    TrialCollector,
    describe_plateau,
    draw_subsample_indices,
    plan_tasks,
    plateau_check,
    run_sample_size_validation,
    summarize_trials,
)
from territory_analysis.pipeline_types import TrialResult
from tests.conftest import gaussian_points


def _run(points_by_bird, seed=3, **kwargs):
    kwargs.setdefault("sample_sizes", [10, 20, 30])
    kwargs.setdefault("n_trials", 5)
    return run_sample_size_validation(
        points_by_bird,
        estimate_smoothing_parameters(points_by_bird),
        rng=np.random.default_rng(seed),
        **kwargs,
    )


class TestDrawSubsampleIndices:

    def test_unique_and_in_range(self):
        rng = np.random.default_rng(0)
        idx = draw_subsample_indices(40, 30, rng)
        assert len(idx) == 30
        assert len(set(idx.tolist())) == 30
        assert idx.min() >= 0 and idx.max() < 40

    def test_full_draw_is_permutation(self):
        idx = draw_subsample_indices(12, 12, np.random.default_rng(0))
        assert sorted(idx.tolist()) == list(range(12))

    def test_oversampling_rejected(self):
        with pytest.raises(ValueError, match="without replacement"):
            draw_subsample_indices(12, 20, np.random.default_rng(0))

    @pytest.mark.parametrize("n", [0, -1])
    def test_non_positive_rejected(self, n):
        with pytest.raises(ValueError):
            draw_subsample_indices(12, n, np.random.default_rng(0))


class TestPlanTasks:

    def test_sizes_above_count_skipped_explicitly(self, points_by_bird):
        smoothing = estimate_smoothing_parameters(points_by_bird)
        tasks, skipped = plan_tasks(points_by_bird, smoothing, [10, 20, 30])
        planned = {(t[0], t[3]) for t in tasks}
        # BIRD_C has 12 fixes, BIRD_B 25.
        assert ("BIRD_C", 10) in planned
        assert ("BIRD_C", 20) not in planned
        assert ("BIRD_B", 30) not in planned
        assert ("BIRD_C", 20, "exceeds_available_points") in skipped
        assert ("BIRD_C", 30, "exceeds_available_points") in skipped
        assert ("BIRD_B", 30, "exceeds_available_points") in skipped
        assert len(tasks) + len(skipped) == 3 * 3

    def test_bird_without_bandwidth_skipped(self, points_by_bird):
        smoothing = {"BIRD_A": 10.0, "BIRD_B": 8.0}
        _, skipped = plan_tasks(points_by_bird, smoothing, [10])
        assert ("BIRD_C", 10, "no_bandwidth") in skipped

    @pytest.mark.parametrize("size", [0, -10])
    def test_non_positive_sizes_skipped(self, points_by_bird, size):
        smoothing = estimate_smoothing_parameters(points_by_bird)
        tasks, skipped = plan_tasks(points_by_bird, smoothing, [size, 10])
        assert all(t[3] == 10 for t in tasks)
        for bird_id in points_by_bird:
            assert (bird_id, size, "non_positive_sample_size") in skipped

    def test_repeated_sizes_planned_once(self, points_by_bird):
        smoothing = estimate_smoothing_parameters(points_by_bird)
        tasks, _ = plan_tasks(points_by_bird, smoothing, [20, 10, 10, 20.0])
        planned = [(t[0], t[3]) for t in tasks]
        assert len(planned) == len(set(planned))
        assert [n for b, n in planned if b == "BIRD_A"] == [10, 20]


class TestRunValidation:

    def test_no_oversampling(self, points_by_bird):
        result = _run(points_by_bird)
        counts = {b: len(p) for b, p in points_by_bird.items()}
        for row in result.trials.itertuples(index=False):
            assert row.sample_size <= counts[row.bird_id]

    def test_trial_count(self, points_by_bird):
        result = _run(points_by_bird)
        # A: 10, 20, 30; B: 10, 20; C: 10 -> 6 combinations x 5 trials.
        assert result.n_trials == 6 * 5
        assert len(result.skipped) == 3

    def test_bandwidth_fixed_at_full_data_value(self, points_by_bird):
        result = _run(points_by_bird)
        for bird_id, group in result.trials.groupby("bird_id"):
            expected = reference_bandwidth(points_by_bird[bird_id])
            assert group["h_value"].nunique() == 1
            assert group["h_value"].iloc[0] == pytest.approx(expected)

    def test_areas_vary_across_trials(self, points_by_bird):
        result = _run(points_by_bird)
        sub = result.trials[(result.trials["bird_id"] == "BIRD_A")
                            & (result.trials["sample_size"] == 10)]
        assert sub["area"].nunique() > 1

    def test_full_sample_trials_identical(self):
        """Drawing every fix always gives the same area."""
        pts = {"X": np.random.default_rng(4).normal(0.0, 25.0, (20, 2))}
        result = _run(pts, sample_sizes=[20])
        assert result.trials["area"].nunique() == 1

    def test_deterministic_given_seed(self, points_by_bird, tmp_dir):
        paths = []
        for i in range(2):
            path = os.path.join(tmp_dir, f"trials_{i}.csv")
            _run(points_by_bird, seed=99).trials.to_csv(path, index=False)
            paths.append(path)
        with open(paths[0], "rb") as a, open(paths[1], "rb") as b:
            assert a.read() == b.read()

    def test_different_seed_differs(self, points_by_bird):
        a = _run(points_by_bird, seed=1).trials["area"]
        b = _run(points_by_bird, seed=2).trials["area"]
        assert not np.allclose(a, b)

    def test_parallel_matches_serial(self, points_by_bird):
        serial = _run(points_by_bird, seed=5, max_workers=1).trials
        parallel = _run(points_by_bird, seed=5, max_workers=2).trials
        pd.testing.assert_frame_equal(serial, parallel)

    @pytest.mark.parametrize("max_workers", [1, 2])
    def test_zero_sample_size_skipped_in_any_mode(self, max_workers):
        birds = {"A": gaussian_points(30, seed=1), "B": gaussian_points(30, seed=2)}
        result = run_sample_size_validation(
            birds, estimate_smoothing_parameters(birds), sample_sizes=[0, 10],
            n_trials=2, rng=np.random.default_rng(4), max_workers=max_workers,
        )
        assert len(result.trials) == 4
        assert result.trials["area"].notna().all()
        assert set(result.trials["sample_size"]) == {10}
        assert ("A", 0, "non_positive_sample_size") in result.skipped
        assert ("B", 0, "non_positive_sample_size") in result.skipped
        assert result.failed_birds == []

    def test_zero_sample_size_serial_matches_parallel(self):
        birds = {"A": gaussian_points(30, seed=1), "B": gaussian_points(30, seed=2)}
        smoothing = estimate_smoothing_parameters(birds)
        runs = [
            run_sample_size_validation(birds, smoothing, sample_sizes=[0, 10], n_trials=2,
                                       rng=np.random.default_rng(4), max_workers=w).trials
            for w in (1, 2)
        ]
        pd.testing.assert_frame_equal(runs[0], runs[1])

    def test_failed_trials_recorded_not_fatal(self, points_by_bird):
        """A bird whose subsets are all collinear fails every trial."""
        x = np.linspace(0.0, 200.0, 15)
        birds = dict(points_by_bird)
        birds["LINE"] = np.column_stack([x, 3.0 * x])
        smoothing = dict(estimate_smoothing_parameters(points_by_bird))
        smoothing["LINE"] = 10.0
        result = run_sample_size_validation(
            birds, smoothing, sample_sizes=[10], n_trials=3,
            rng=np.random.default_rng(0),
        )
        line = result.trials[result.trials["bird_id"] == "LINE"]
        assert len(line) == 3
        assert line["area"].isna().all()
        assert (line["error"] == "DegenerateGeometryError").all()
        assert result.failed_birds == ["LINE"]
        assert result.n_failed_trials == 3
        # The other birds are unaffected.
        assert result.trials[result.trials["bird_id"] != "LINE"]["area"].notna().all()

    def test_all_birds_failing_raises(self):
        x = np.linspace(0.0, 200.0, 15)
        birds = {"LINE": np.column_stack([x, 3.0 * x])}
        with pytest.raises(InsufficientDataError):
            run_sample_size_validation(birds, {"LINE": 10.0}, sample_sizes=[10],
                                       n_trials=2, rng=np.random.default_rng(0))

    def test_no_birds_raises(self):
        with pytest.raises(InsufficientDataError):
            run_sample_size_validation({}, {})

    def test_progress_callback(self, points_by_bird):
        calls = []
        _run(points_by_bird, progress=lambda done, total: calls.append((done, total)))
        assert calls[-1] == (30, 30)
        assert [c[0] for c in calls] == sorted(c[0] for c in calls)


class TestSummarizeTrials:

    def test_mean_and_standard_error(self):
        trials = pd.DataFrame({
            "bird_id": ["A"] * 4,
            "sample_size": [10] * 4,
            "trial": [0, 1, 2, 3],
            "area": [100.0, 200.0, 300.0, np.nan],
            "h_value": [5.0] * 4,
            "error": [None, None, None, "DegenerateGeometryError"],
        })
        row = summarize_trials(trials).iloc[0]
        assert row["mean_area"] == pytest.approx(200.0)
        assert row["se_area"] == pytest.approx(100.0 / np.sqrt(3))
        assert row["n_trials"] == 4
        assert row["n_valid"] == 3
        assert not row["no_valid_trials"]

    def test_no_valid_trials_flagged(self):
        trials = pd.DataFrame({
            "bird_id": ["A", "A"], "sample_size": [10, 10], "trial": [0, 1],
            "area": [np.nan, np.nan], "h_value": [5.0, 5.0],
            "error": ["InsufficientDataError"] * 2,
        })
        row = summarize_trials(trials).iloc[0]
        assert row["no_valid_trials"]
        assert np.isnan(row["mean_area"])
        assert np.isnan(row["se_area"])

    def test_empty(self):
        assert summarize_trials(pd.DataFrame(columns=["bird_id", "sample_size",
                                                      "area"])).empty


class TestPlateauCheck:

    def test_plateau_detected(self):
        summary = pd.DataFrame({
            "bird_id": ["A", "A", "A", "B", "B"],
            "sample_size": [10, 20, 30, 10, 20],
            "mean_area": [500.0, 900.0, 920.0, 300.0, 600.0],
            "se_area": [10.0] * 5,
            "n_trials": [5] * 5,
            "n_valid": [5] * 5,
            "no_valid_trials": [False] * 5,
        })
        result = plateau_check(summary).set_index("bird_id")
        assert result.loc["A", "plateaued"]
        assert result.loc["A", "largest_n"] == 30
        assert not result.loc["B", "plateaued"]
        assert result.loc["B", "relative_change"] == pytest.approx(1.0)

    def test_single_size_bird_described_without_change(self):
        summary = pd.DataFrame({
            "bird_id": ["A", "A", "C"],
            "sample_size": [10, 20, 10],
            "mean_area": [500.0, 510.0, 300.0],
            "se_area": [10.0] * 3,
            "n_trials": [5] * 3,
            "n_valid": [5] * 3,
            "no_valid_trials": [False] * 3,
        })
        plateau = plateau_check(summary)
        assert pd.isna(plateau.set_index("bird_id").loc["C", "relative_change"])
        lines = describe_plateau(plateau)
        assert lines[0] == "A: n=10 -> 20 change 2.0% (plateaued)"
        assert lines[1] == "C: only n=10 has valid trials; plateau not assessed"
        assert "nan" not in " ".join(lines)


class TestTrialCollector:

    def test_append_only_and_sorted_frame(self):
        collector = TrialCollector(total=3)
        collector.append(TrialResult("B", 10, 0, 50.0, 2.0))
        collector.extend([TrialResult("A", 20, 1, 70.0, 2.0),
                          TrialResult("A", 20, 0, 60.0, 2.0)])
        assert collector.completed == 3
        assert len(collector.records()) == 3
        df = collector.to_frame()
        assert df["bird_id"].tolist() == ["A", "A", "B"]
        assert df["trial"].tolist() == [0, 1, 0]
        assert df["sample_size"].dtype == np.int64

    def test_records_is_snapshot(self):
        collector = TrialCollector()
        collector.append(TrialResult("A", 10, 0, 1.0, 1.0))
        snapshot = collector.records()
        collector.append(TrialResult("A", 10, 1, 2.0, 1.0))
        assert len(snapshot) == 1

    def test_progress_logged_every_n_trials(self, caplog):
        collector = TrialCollector(total=6, log_every=2)
        with caplog.at_level("INFO", logger="territory_analysis.sample_size_validation"):
            collector.extend(TrialResult("A", 10, t, 1.0, 1.0) for t in range(3))
            collector.extend(TrialResult("A", 20, t, 1.0, 1.0) for t in range(3))
        progress = [r.trials_completed for r in caplog.records
                    if hasattr(r, "trials_completed")]
        assert progress == [3, 6]
