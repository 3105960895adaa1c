"""
Kernel density home-range estimation (utilization distribution).

Pure functions, no I/O, fully deterministic. Follows the fixed-kernel
method of Worton (1989) as implemented by adehabitatHR's ``kernelUD``,
``kernel.area`` and ``getverticeshr``:

1. A bivariate normal kernel of bandwidth h is centred on every location
   and evaluated on a regular square-cell grid (KDEpy's FFT convolution
   of the linearly binned points).
2. The grid is normalized to unit volume.
3. The X% home range is the smallest set of cells holding X% of the
   volume (cells sorted by density, cumulated from the top).

Bandwidth has two modes. ``"href"`` derives h from the spatial dispersion
of the points and is only used once per bird on the full dataset. A float
h is used as given, so subsample area differences are not confounded with
bandwidth re-estimation.
"""

from dataclasses import dataclass

import numpy as np
from KDEpy import FFTKDE
from shapely.geometry import box
from shapely.ops import unary_union

from territory_analysis import config
from territory_analysis.errors import DegenerateGeometryError, InsufficientDataError
from territory_analysis.pipeline_types import HomeRangeEstimate

HREF = "href"


@dataclass(frozen=True)
class KernelUD:
    """Utilization distribution evaluated on a regular grid."""

    x_axis: np.ndarray  # cell-centre eastings, ascending
    y_axis: np.ndarray  # cell-centre northings, ascending
    density: np.ndarray  # shape (len(y_axis), len(x_axis)), sums to 1
    h: float
    h_method: str
    cell_size: float
    n_points: int

    @property
    def cell_area(self):
        return self.cell_size ** 2


def _as_points(points):
    arr = np.asarray(points, dtype=float)
    if arr.ndim != 2 or arr.shape[1] != 2:
        raise ValueError(f"points must have shape (n, 2), got {arr.shape}")
    arr = arr[np.all(np.isfinite(arr), axis=1)]
    if len(arr) < config.MIN_POINTS_FOR_KDE:
        raise InsufficientDataError(
            f"{len(arr)} point(s) available; at least "
            f"{config.MIN_POINTS_FOR_KDE} required for a kernel fit"
        )
    return arr


def check_geometry(points):
    """Raise DegenerateGeometryError for coincident or collinear points."""
    centered = points - points.mean(axis=0)
    if np.linalg.matrix_rank(centered) < 2:
        raise DegenerateGeometryError(
            f"{len(points)} points are coincident or collinear; "
            "the density surface has no finite extent"
        )


def reference_bandwidth(points):
    """Reference bandwidth h_ref = 0.5 * (sd_x + sd_y) * n^(-1/6).

    Parameters
    ----------
    points : array-like, shape (n, 2)
        Projected coordinates in meters.

    Returns
    -------
    float
        Bandwidth in meters.
    """
    pts = _as_points(points)
    check_geometry(pts)
    sigma = 0.5 * (np.std(pts[:, 0], ddof=1) + np.std(pts[:, 1], ddof=1))
    return float(sigma * len(pts) ** (-1.0 / 6.0))


def _resolve_bandwidth(points, h):
    if isinstance(h, str):
        if h != HREF:
            raise ValueError(f"Unknown bandwidth mode {h!r}; use 'href' or a number")
        return reference_bandwidth(points), HREF
    h = float(h)
    if not np.isfinite(h) or h <= 0:
        raise DegenerateGeometryError(f"Bandwidth must be finite and positive, got {h}")
    return h, "fixed"


def _grid_axes(points, h, grid_size, extent):
    """Square-cell grid covering the points plus a margin on every side."""
    lo = points.min(axis=0)
    hi = points.max(axis=0)
    span = float(np.max(hi - lo))
    margin = max(extent * span, config.KDE_MIN_MARGIN_H * h)
    lo = lo - margin
    hi = hi + margin
    cell = float(np.max(hi - lo)) / grid_size
    centre = (lo + hi) / 2.0
    offsets = (np.arange(grid_size) - (grid_size - 1) / 2.0) * cell
    return centre[0] + offsets, centre[1] + offsets, cell


def kernel_ud(points, h=HREF, grid_size=None, extent=None):
    """Fit a bivariate normal kernel UD on a regular grid.

    Parameters
    ----------
    points : array-like, shape (n, 2)
        Projected coordinates in meters (rows with NaN are dropped).
    h : "href" or float
        Bandwidth mode or fixed bandwidth in meters.
    grid_size : int, optional
        Cells per side. Default: config.KDE_GRID_SIZE (60).
    extent : float, optional
        Margin as a multiple of the point span. Default:
        config.KDE_GRID_EXTENT (1.0).

    Returns
    -------
    KernelUD

    Raises
    ------
    InsufficientDataError
        Fewer than config.MIN_POINTS_FOR_KDE valid points.
    DegenerateGeometryError
        Coincident/collinear points or a non-positive bandwidth.
    """
    if grid_size is None:
        grid_size = config.KDE_GRID_SIZE
    if extent is None:
        extent = config.KDE_GRID_EXTENT

    pts = _as_points(points)
    check_geometry(pts)
    h_value, h_method = _resolve_bandwidth(pts, h)

    x_axis, y_axis, cell = _grid_axes(pts, h_value, grid_size, extent)

    # KDEpy wants grid points in cartesian order, first coordinate slowest.
    grid = np.column_stack([np.repeat(x_axis, len(y_axis)), np.tile(y_axis, len(x_axis))])
    values = FFTKDE(kernel="gaussian", bw=h_value).fit(pts).evaluate(grid)
    # FFT round-off leaves tiny negative values far from the points.
    density = np.clip(values, 0.0, None).reshape(len(x_axis), len(y_axis)).T

    total = density.sum()
    if not np.isfinite(total) or total <= 0:
        raise DegenerateGeometryError("Kernel density has no mass on the grid")
    density = density / total

    return KernelUD(
        x_axis=x_axis,
        y_axis=y_axis,
        density=density,
        h=h_value,
        h_method=h_method,
        cell_size=cell,
        n_points=len(pts),
    )


def contour_mask(ud, percent):
    """Boolean grid mask of the smallest cell set holding ``percent``% of volume."""
    if not 0 < percent <= 100:
        raise ValueError(f"percent must be in (0, 100], got {percent}")
    flat = ud.density.ravel()
    order = np.argsort(flat, kind="stable")[::-1]
    cumulative = np.cumsum(flat[order])
    n_cells = int(np.searchsorted(cumulative, percent / 100.0 * cumulative[-1])) + 1
    n_cells = min(n_cells, flat.size)
    mask = np.zeros(flat.size, dtype=bool)
    mask[order[:n_cells]] = True
    return mask.reshape(ud.density.shape)


def home_range_area(ud, percent):
    """Area (m²) enclosed by the ``percent``% volume contour."""
    return float(contour_mask(ud, percent).sum() * ud.cell_area)


def home_range_contour(ud, percent):
    """Polygon (or MultiPolygon) outlining the ``percent``% home range."""
    mask = contour_mask(ud, percent)
    half = ud.cell_size / 2.0
    # Shared edge coordinates so neighbouring cells union without slivers.
    x_edges = ud.x_axis[0] - half + np.arange(len(ud.x_axis) + 1) * ud.cell_size
    y_edges = ud.y_axis[0] - half + np.arange(len(ud.y_axis) + 1) * ud.cell_size
    rows, cols = np.nonzero(mask)
    cells = [
        box(x_edges[c], y_edges[r], x_edges[c + 1], y_edges[r + 1])
        for r, c in zip(rows, cols)
    ]
    return unary_union(cells)


def estimate_home_range(points, h=HREF, percent=None, bird_id=None,
                        with_contour=False, grid_size=None, extent=None):
    """Fit a kernel UD and return the home-range estimate at one level.

    Parameters
    ----------
    points : array-like, shape (n, 2)
        Projected coordinates in meters.
    h : "href" or float
        Bandwidth mode or fixed bandwidth.
    percent : float, optional
        Contour level in (0, 100]. Default: config.TERRITORY_PERCENT (75).
    bird_id : str, optional
        Carried through to the estimate.
    with_contour : bool
        Also build the contour polygon.

    Returns
    -------
    HomeRangeEstimate
    """
    if percent is None:
        percent = config.TERRITORY_PERCENT
    ud = kernel_ud(points, h=h, grid_size=grid_size, extent=extent)
    return HomeRangeEstimate(
        bird_id=bird_id,
        percent=percent,
        area=home_range_area(ud, percent),
        h=ud.h,
        h_method=ud.h_method,
        n_points=ud.n_points,
        contour=home_range_contour(ud, percent) if with_contour else None,
    )
