"""
Geographic to planar (UTM) coordinate projection.

Pure functions, no I/O. Area computations need metric coordinates, so
every bird's longitude/latitude fixes are projected before the kernel fit.
The geographic source CRS is the target projection's own datum (NAD83 for
the default zone 10 string), matching a proj4 ``project()`` call.

A fix is projectable when it lies inside both the geographic domain and the
projection's domain: the CRS's declared area of use, or, for bare proj4
strings that declare none, config.UTM_MAX_MERIDIAN_OFFSET degrees either
side of the central meridian. Transverse Mercator returns finite but
meaningless eastings far outside that band, so the check cannot be left to
pyproj.
"""

from functools import lru_cache

import numpy as np
import pandas as pd
from pyproj import CRS, Transformer
from pyproj.exceptions import CRSError, ProjError

from territory_analysis import config
from territory_analysis.errors import ProjectionError
from territory_analysis.logging_config import get_analysis_logger

log = get_analysis_logger(__name__)


@lru_cache(maxsize=8)
def _target_crs(proj):
    try:
        target = CRS.from_user_input(proj)
    except CRSError as exc:
        raise ProjectionError(f"Malformed projection specification {proj!r}: {exc}") from exc
    if not target.is_projected:
        raise ProjectionError(f"Projection {proj!r} is not a projected CRS")
    return target


def _transformers(proj):
    """Build forward and inverse transformers for a projection string."""
    target = _target_crs(proj)
    source = target.geodetic_crs
    forward = Transformer.from_crs(source, target, always_xy=True)
    inverse = Transformer.from_crs(target, source, always_xy=True)
    return forward, inverse


def _central_meridian(target):
    operation = target.coordinate_operation
    if operation is None:
        return None
    for param in operation.params:
        if param.name.lower().startswith("longitude of"):
            return float(param.value)
    return None


def projection_domain(proj=None):
    """Longitude/latitude bounds inside which ``proj`` is valid.

    Returns
    -------
    tuple[float, float, float, float]
        (lon_min, lon_max, lat_min, lat_max) in degrees.
    """
    if proj is None:
        proj = config.UTM_PROJ
    target = _target_crs(proj)
    lon_lo, lon_hi = config.LONGITUDE_RANGE
    lat_lo, lat_hi = config.LATITUDE_RANGE

    area = target.area_of_use
    # An area crossing the antimeridian (west > east) falls through to the
    # meridian band.
    if area is not None and area.west <= area.east:
        return (max(lon_lo, area.west), min(lon_hi, area.east),
                max(lat_lo, area.south), min(lat_hi, area.north))

    lon_0 = _central_meridian(target)
    if lon_0 is not None:
        offset = config.UTM_MAX_MERIDIAN_OFFSET
        return (max(lon_lo, lon_0 - offset), min(lon_hi, lon_0 + offset),
                lat_lo, lat_hi)
    return (lon_lo, lon_hi, lat_lo, lat_hi)


def _as_pairs(coords, label):
    arr = np.asarray(coords, dtype=float)
    if arr.ndim == 1 and arr.size == 2:
        arr = arr.reshape(1, 2)
    if arr.ndim != 2 or arr.shape[1] != 2:
        raise ProjectionError(f"{label} must be a sequence of pairs, got shape {arr.shape}")
    return arr


def valid_geographic_mask(lon, lat, proj=None):
    """Boolean mask of coordinates inside the geographic domain.

    With ``proj`` the mask is further limited to projection_domain(proj).
    """
    lon = np.asarray(lon, dtype=float)
    lat = np.asarray(lat, dtype=float)
    if proj is None:
        lon_lo, lon_hi = config.LONGITUDE_RANGE
        lat_lo, lat_hi = config.LATITUDE_RANGE
    else:
        lon_lo, lon_hi, lat_lo, lat_hi = projection_domain(proj)
    with np.errstate(invalid="ignore"):
        return (
            np.isfinite(lon) & np.isfinite(lat)
            & (lon >= lon_lo) & (lon <= lon_hi)
            & (lat >= lat_lo) & (lat <= lat_hi)
        )


def project_coordinates(lonlat, proj=None):
    """Project (longitude, latitude) pairs to (easting, northing) in meters.

    Parameters
    ----------
    lonlat : array-like, shape (n, 2)
        Ordered longitude/latitude pairs in degrees.
    proj : str, optional
        Target projection (proj4 string, EPSG code, WKT).
        Default: config.UTM_PROJ.

    Returns
    -------
    np.ndarray, shape (n, 2)
        Easting/northing pairs in the same order as the input.

    Raises
    ------
    ProjectionError
        Malformed or non-projected specification, or any coordinate outside
        the valid geographic domain or the projection's domain.
    """
    if proj is None:
        proj = config.UTM_PROJ
    arr = _as_pairs(lonlat, "lonlat")
    if len(arr) == 0:
        return np.empty((0, 2))

    for mask_proj, domain in ((None, "the geographic domain"),
                              (proj, f"the domain of {proj!r}")):
        bad = ~valid_geographic_mask(arr[:, 0], arr[:, 1], proj=mask_proj)
        if bad.any():
            first = int(np.flatnonzero(bad)[0])
            raise ProjectionError(
                f"{int(bad.sum())} coordinate(s) outside {domain} "
                f"(first at index {first}: {tuple(arr[first])})"
            )

    forward, _ = _transformers(proj)
    try:
        x, y = forward.transform(arr[:, 0], arr[:, 1], errcheck=True)
    except ProjError as exc:
        raise ProjectionError(f"Projection failed: {exc}") from exc

    out = np.column_stack([np.asarray(x, dtype=float), np.asarray(y, dtype=float)])
    if not np.all(np.isfinite(out)):
        raise ProjectionError("Projection produced non-finite coordinates")
    return out


def unproject_coordinates(en, proj=None):
    """Inverse of project_coordinates: (easting, northing) -> (lon, lat)."""
    if proj is None:
        proj = config.UTM_PROJ
    arr = _as_pairs(en, "en")
    if len(arr) == 0:
        return np.empty((0, 2))
    if not np.all(np.isfinite(arr)):
        raise ProjectionError("Planar coordinates must be finite")

    _, inverse = _transformers(proj)
    try:
        lon, lat = inverse.transform(arr[:, 0], arr[:, 1], errcheck=True)
    except ProjError as exc:
        raise ProjectionError(f"Inverse projection failed: {exc}") from exc
    return np.column_stack([np.asarray(lon, dtype=float), np.asarray(lat, dtype=float)])


def project_observations(df, proj=None, lon_col="longitude", lat_col="latitude"):
    """Add ``easting``/``northing`` columns to an observation table.

    Rows outside the geographic or projection domain are kept with NaN
    projected coordinates and a warning, so one bad fix does not abort the
    run. Columns are assigned by name, never by position.

    Parameters
    ----------
    df : pd.DataFrame
        Must contain lon_col and lat_col.
    proj : str, optional
        Default: config.UTM_PROJ.

    Returns
    -------
    pd.DataFrame
        Copy of df with float ``easting`` and ``northing`` columns.
    """
    if proj is None:
        proj = config.UTM_PROJ
    out = df.copy()
    lon = out[lon_col].to_numpy(dtype=float)
    lat = out[lat_col].to_numpy(dtype=float)
    valid = valid_geographic_mask(lon, lat, proj=proj)

    easting = np.full(len(out), np.nan)
    northing = np.full(len(out), np.nan)
    if valid.any():
        en = project_coordinates(np.column_stack([lon[valid], lat[valid]]), proj=proj)
        easting[valid] = en[:, 0]
        northing[valid] = en[:, 1]

    n_bad = int((~valid).sum())
    if n_bad:
        bad_ids = out.loc[~valid, "bird_id"].unique().tolist() if "bird_id" in out else []
        log.warning("Skipped %d observation(s) outside the projection domain (birds: %s)",
                    n_bad, bad_ids)

    out["easting"] = pd.Series(easting, index=out.index)
    out["northing"] = pd.Series(northing, index=out.index)
    return out
