"""
Pure computational functions for the territory analysis.

This subpackage holds the science: projection, kernel home-range
estimation, the Scaled Mass Index and model selection. config.py retains
runtime parameters, paths and thresholds.
"""

from territory_analysis.formulas.projection import (
    project_coordinates,
    unproject_coordinates,
    project_observations,
)
from territory_analysis.formulas.kernel_density import (
    HREF,
    KernelUD,
    reference_bandwidth,
    kernel_ud,
    home_range_area,
    home_range_contour,
    estimate_home_range,
)
from territory_analysis.formulas.condition import (
    compute_condition_index,
    fit_condition_parameters,
    scaled_mass_index,
)
from territory_analysis.formulas.model_selection import (
    CANDIDATE_MODELS,
    aicc,
    fit_candidate_models,
    best_model_report,
    welch_t_test,
    welch_t_test_from_stats,
    compare_habitats,
)

__all__ = [
    # projection
    "project_coordinates",
    "unproject_coordinates",
    "project_observations",
    # kernel density
    "HREF",
    "KernelUD",
    "reference_bandwidth",
    "kernel_ud",
    "home_range_area",
    "home_range_contour",
    "estimate_home_range",
    # condition
    "compute_condition_index",
    "fit_condition_parameters",
    "scaled_mass_index",
    # model selection
    "CANDIDATE_MODELS",
    "aicc",
    "fit_candidate_models",
    "best_model_report",
    "welch_t_test",
    "welch_t_test_from_stats",
    "compare_habitats",
]
