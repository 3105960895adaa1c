"""
Per-bird territory estimation.

Fits one kernel UD per bird with the reference bandwidth, extracts areas at
the configured contour levels and, optionally, the contour polygons for
export. A failing bird (too few fixes, degenerate geometry) is logged and
left out; the remaining birds are still estimated.
"""

import os
from types import MappingProxyType

import geopandas as gpd
import pandas as pd

from territory_analysis import config
from territory_analysis.errors import DegenerateGeometryError, InsufficientDataError
from territory_analysis.formulas.kernel_density import (
    HREF,
    home_range_area,
    home_range_contour,
    kernel_ud,
    reference_bandwidth,
)
from territory_analysis.logging_config import get_analysis_logger
from territory_analysis.pipeline_types import BirdId

log = get_analysis_logger(__name__)

_BIRD_ERRORS = (InsufficientDataError, DegenerateGeometryError)


def estimate_smoothing_parameters(points_by_bird):
    """Reference bandwidth per bird from its full set of fixes.

    Parameters
    ----------
    points_by_bird : dict[BirdId, np.ndarray]

    Returns
    -------
    MappingProxyType[BirdId, float]
        Read-only mapping; birds whose bandwidth cannot be derived are
        omitted with a warning.
    """
    params = {}
    for bird_id, points in sorted(points_by_bird.items()):
        try:
            params[BirdId(bird_id)] = reference_bandwidth(points)
        except _BIRD_ERRORS as exc:
            log.warning("No reference bandwidth for %s: %s", bird_id, exc,
                        extra={"bird_id": bird_id})
    log.info("Derived reference bandwidths for %d of %d birds",
             len(params), len(points_by_bird))
    return MappingProxyType(params)


def smoothing_parameter_table(smoothing_params):
    return pd.DataFrame(
        {"bird_id": list(smoothing_params.keys()),
         "h": list(smoothing_params.values())}
    )


def estimate_territories(points_by_bird, percents=None, with_contours=False,
                         smoothing_params=None, crs=None):
    """Territory area at each contour level for every bird.

    Parameters
    ----------
    points_by_bird : dict[BirdId, np.ndarray]
        Projected fixes per bird.
    percents : sequence of float, optional
        Default: config.TERRITORY_PERCENTS (25, 50, 75, 95).
    with_contours : bool
        Also build contour polygons.
    smoothing_params : Mapping[BirdId, float], optional
        Bandwidth per bird. Birds missing from the mapping use "href".
    crs : str, optional
        CRS of the contours GeoDataFrame. Default: config.UTM_PROJ.

    Returns
    -------
    tuple[pd.DataFrame, gpd.GeoDataFrame | None]
        Long table (bird_id, percent, area_m2, h, n_points) and contours.
    """
    if percents is None:
        percents = config.TERRITORY_PERCENTS
    if crs is None:
        crs = config.UTM_PROJ
    smoothing_params = smoothing_params or {}

    rows = []
    contour_rows = []
    for bird_id, points in sorted(points_by_bird.items()):
        try:
            ud = kernel_ud(points, h=smoothing_params.get(bird_id, HREF))
        except _BIRD_ERRORS as exc:
            log.warning("Skipping territory for %s: %s", bird_id, exc,
                        extra={"bird_id": bird_id})
            continue

        for percent in percents:
            rows.append({
                "bird_id": bird_id,
                "percent": percent,
                "area_m2": home_range_area(ud, percent),
                "h": ud.h,
                "n_points": ud.n_points,
            })
            if with_contours:
                contour_rows.append({
                    "bird_id": bird_id,
                    "percent": percent,
                    "area_m2": rows[-1]["area_m2"],
                    "geometry": home_range_contour(ud, percent),
                })

    areas = pd.DataFrame(rows, columns=["bird_id", "percent", "area_m2", "h", "n_points"])
    contours = None
    if with_contours:
        contours = gpd.GeoDataFrame(
            contour_rows,
            columns=["bird_id", "percent", "area_m2", "geometry"],
            geometry="geometry",
            crs=crs,
        )
    log.info("Estimated territories for %d birds at %s%%",
             areas["bird_id"].nunique(), list(percents))
    return areas, contours


def territory_area_table(areas_long):
    """Wide per-bird table with one ``area_<percent>`` column per level."""
    if areas_long.empty:
        return pd.DataFrame(columns=["bird_id"])
    wide = areas_long.pivot(index="bird_id", columns="percent", values="area_m2")
    wide.columns = [f"area_{int(p) if float(p).is_integer() else p}" for p in wide.columns]
    return wide.reset_index()


def export_contours(contours, path):
    """Write contour polygons to a vector file (driver from the extension)."""
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    contours.to_file(path)
    log.info("Saved %d contour(s): %s", len(contours), path)
    return path
