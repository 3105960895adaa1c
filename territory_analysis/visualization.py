"""
Figures for the territory analysis.

- Sample-size curves: mean ± SE territory area against number of fixes
  (Supplemental Figure 1).
- Territory contours over the observed fixes (Supplemental Figure 2).
- Weight against wing length coloured by condition, marked by habitat.
- Urban vs rural comparison of a model variable.
"""

import os

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np

from territory_analysis import config
from territory_analysis.logging_config import get_analysis_logger

log = get_analysis_logger(__name__)


def _save(fig, output_path):
    os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
    fig.savefig(output_path, dpi=config.MAP_DPI, bbox_inches="tight")
    plt.close(fig)
    log.info("Saved: %s", output_path)
    return output_path


def plot_sample_size_curves(summary, output_path, birds=None, ncols=4):
    """Mean ± SE area vs sample size, one panel per bird.

    Parameters
    ----------
    summary : pd.DataFrame
        Output of summarize_trials().
    output_path : str
    birds : list[str], optional
        Subset of birds to draw (default: all).
    """
    if birds is not None:
        summary = summary[summary["bird_id"].isin(birds)]
    bird_ids = sorted(summary["bird_id"].unique())
    if not bird_ids:
        log.warning("No sample-size summary rows to plot")
        return None

    ncols = min(ncols, len(bird_ids))
    nrows = int(np.ceil(len(bird_ids) / ncols))
    fig, axes = plt.subplots(nrows, ncols, figsize=(4 * ncols, 3.2 * nrows),
                             squeeze=False)
    for ax, bird_id in zip(axes.flat, bird_ids):
        sub = summary[(summary["bird_id"] == bird_id) & ~summary["no_valid_trials"]]
        sub = sub.sort_values("sample_size")
        ax.errorbar(sub["sample_size"], sub["mean_area"], yerr=sub["se_area"],
                    fmt="o", color="black", capsize=0, markersize=4)
        ax.set_title(bird_id, fontsize=11)
        ax.set_xlabel("Number of locations")
        ax.set_ylabel("Territory area (m²)")
        ax.grid(True, alpha=0.3)
    for ax in list(axes.flat)[len(bird_ids):]:
        ax.set_visible(False)

    fig.suptitle("Territory area vs. sample size", fontsize=13)
    plt.tight_layout()
    return _save(fig, output_path)


def plot_territory_contours(contours, observations, output_path, percent=None):
    """Contour polygons at one level with the projected fixes on top."""
    if percent is None:
        percent = config.TERRITORY_PERCENT
    fig, ax = plt.subplots(figsize=(10, 10))
    level = contours[contours["percent"] == percent]
    if not level.empty:
        level.plot(ax=ax, column="bird_id", alpha=0.35, edgecolor="black",
                   linewidth=0.6, cmap="tab20")
    pts = observations.dropna(subset=["easting", "northing"])
    ax.scatter(pts["easting"], pts["northing"], s=4, color="black", alpha=0.6)
    ax.set_xlabel("Easting (m)")
    ax.set_ylabel("Northing (m)")
    ax.set_title(f"{percent}% kernel territories", fontsize=13)
    ax.set_aspect("equal")
    return _save(fig, output_path)


def plot_condition(condition_df, output_path):
    """Weight vs wing length, coloured by Scaled Mass Index, marked by habitat."""
    fig, ax = plt.subplots(figsize=(8, 6))
    markers = ["o", "^", "s", "D"]
    scatter = None
    for marker, (habitat, group) in zip(markers, condition_df.groupby("habitat")):
        scatter = ax.scatter(group["wing"], group["weight"], c=group["condition"],
                             cmap="viridis", marker=marker, label=habitat,
                             vmin=condition_df["condition"].min(),
                             vmax=condition_df["condition"].max())
    if scatter is not None:
        fig.colorbar(scatter, ax=ax, label="Condition (SMI)")
    ax.set_xlabel("Wing length (mm)")
    ax.set_ylabel("Weight (g)")
    ax.legend(title="Habitat")
    ax.grid(True, alpha=0.3)
    return _save(fig, output_path)


def plot_habitat_comparison(model_df, value_col, output_path, transform=None,
                            groups=None):
    """Box plot of one variable by habitat group."""
    if groups is None:
        groups = config.HABITAT_GROUPS
    values = model_df[value_col].astype(float)
    if transform == "sqrt":
        values = np.sqrt(values)
    data = [values[model_df["habitat"] == g].dropna() for g in groups]

    fig, ax = plt.subplots(figsize=(6, 5))
    ax.boxplot(data)
    ax.set_xticks(range(1, len(groups) + 1), labels=list(groups))
    label = f"sqrt({value_col})" if transform == "sqrt" else value_col
    ax.set_ylabel(label)
    ax.set_title(f"{label} by habitat")
    ax.grid(axis="y", alpha=0.3)
    return _save(fig, output_path)
