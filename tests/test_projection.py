"""
Tests for territory_analysis/formulas/projection.py.

Covers the forward/inverse round trip, domain and specification errors,
and the per-record skip behaviour of project_observations().
"""

import numpy as np
import pandas as pd
import pytest

from territory_analysis import config
from territory_analysis.errors import ProjectionError
from territory_analysis.formulas.projection import (
    project_coordinates,
    project_observations,
    projection_domain,
    unproject_coordinates,
    valid_geographic_mask,
)


class TestProjectCoordinates:

    def test_central_meridian_maps_to_false_easting(self):
        """UTM zone 10's central meridian (-123°) has easting 500 000 m."""
        en = project_coordinates([[-123.0, 37.8]])
        assert en.shape == (1, 2)
        assert en[0, 0] == pytest.approx(500_000.0, abs=1e-3)
        assert 4_100_000 < en[0, 1] < 4_300_000

    def test_order_preserved(self):
        lonlat = np.array([[-122.46, 37.80], [-122.40, 37.75], [-122.50, 37.85]])
        en = project_coordinates(lonlat)
        assert en.shape == (3, 2)
        # East of the previous point means a larger easting.
        assert en[1, 0] > en[0, 0] > en[2, 0]
        assert en[2, 1] > en[0, 1] > en[1, 1]

    def test_round_trip(self):
        lonlat = np.array([[-122.46, 37.80], [-121.9, 38.2], [-123.5, 36.9]])
        back = unproject_coordinates(project_coordinates(lonlat))
        np.testing.assert_allclose(back, lonlat, atol=1e-6)

    def test_single_pair_accepted(self):
        assert project_coordinates([-122.46, 37.80]).shape == (1, 2)

    def test_empty_input(self):
        assert project_coordinates(np.empty((0, 2))).shape == (0, 2)

    def test_epsg_code_accepted(self):
        en = project_coordinates([[-123.0, 37.8]], proj="EPSG:26910")
        assert en[0, 0] == pytest.approx(500_000.0, abs=1e-3)


class TestProjectionErrors:

    def test_latitude_out_of_domain(self):
        with pytest.raises(ProjectionError, match="outside the geographic domain"):
            project_coordinates([[-122.46, 95.0]])

    def test_longitude_out_of_domain(self):
        with pytest.raises(ProjectionError):
            project_coordinates([[-200.0, 37.8]])

    def test_nan_coordinate(self):
        with pytest.raises(ProjectionError):
            project_coordinates([[np.nan, 37.8]])

    def test_malformed_specification(self):
        with pytest.raises(ProjectionError, match="Malformed"):
            project_coordinates([[-122.46, 37.80]], proj="+proj=not_a_projection")

    def test_geographic_crs_rejected(self):
        with pytest.raises(ProjectionError, match="not a projected CRS"):
            project_coordinates([[-122.46, 37.80]], proj="EPSG:4326")

    def test_wrong_shape(self):
        with pytest.raises(ProjectionError):
            project_coordinates([[1.0, 2.0, 3.0]])

    def test_inverse_rejects_non_finite(self):
        with pytest.raises(ProjectionError):
            unproject_coordinates([[np.inf, 4_180_000.0]])


class TestValidGeographicMask:

    def test_mask(self):
        mask = valid_geographic_mask([0.0, 181.0, -122.0, np.nan],
                                     [0.0, 10.0, -91.0, 10.0])
        assert mask.tolist() == [True, False, False, False]


class TestProjectObservations:

    def test_adds_named_columns(self, territory_df):
        out = project_observations(territory_df)
        assert {"easting", "northing"} <= set(out.columns)
        assert out["easting"].notna().all()
        assert out["easting"].between(400_000, 700_000).all()
        assert out["northing"].between(4_000_000, 4_400_000).all()
        # Input frame untouched.
        assert "easting" not in territory_df.columns

    def test_columns_assigned_by_name(self, territory_df):
        """Shuffled column order must not swap easting and northing."""
        shuffled = territory_df[["latitude", "bird_id", "longitude"]]
        a = project_observations(territory_df)
        b = project_observations(shuffled)
        np.testing.assert_allclose(a["easting"], b["easting"])
        np.testing.assert_allclose(a["northing"], b["northing"])

    def test_invalid_rows_skipped_not_fatal(self, territory_df):
        df = territory_df.copy()
        df.loc[0, "latitude"] = 120.0
        out = project_observations(df)
        assert np.isnan(out.loc[0, "easting"])
        assert np.isnan(out.loc[0, "northing"])
        assert out["easting"].iloc[1:].notna().all()

    def test_matches_pairwise_projection(self):
        df = pd.DataFrame({"bird_id": ["X", "X"],
                           "longitude": [-122.46, -122.40],
                           "latitude": [37.80, 37.75]})
        out = project_observations(df)
        expected = project_coordinates(df[["longitude", "latitude"]].to_numpy())
        np.testing.assert_allclose(out[["easting", "northing"]].to_numpy(), expected)


class TestProjectionDomain:

    def test_proj4_string_uses_central_meridian_band(self):
        lon_lo, lon_hi, lat_lo, lat_hi = projection_domain()
        offset = config.UTM_MAX_MERIDIAN_OFFSET
        assert lon_lo == pytest.approx(-123.0 - offset)
        assert lon_hi == pytest.approx(-123.0 + offset)
        assert (lat_lo, lat_hi) == config.LATITUDE_RANGE

    def test_epsg_code_uses_area_of_use(self):
        lon_lo, lon_hi, _, _ = projection_domain("EPSG:26910")
        assert lon_lo == pytest.approx(-126.0, abs=0.1)
        assert lon_hi == pytest.approx(-120.0, abs=0.1)

    def test_far_from_central_meridian_rejected(self):
        """Transverse Mercator would return a finite but meaningless easting."""
        with pytest.raises(ProjectionError, match="domain of"):
            project_coordinates([[100.0, 45.0]])

    def test_mask_with_projection(self):
        mask = valid_geographic_mask([-122.4, 100.0, -140.0], [37.7, 45.0, 37.7],
                                     proj=config.UTM_PROJ)
        assert mask.tolist() == [True, False, False]

    def test_out_of_zone_fix_skipped_per_record(self):
        df = pd.DataFrame({
            "bird_id": ["A"] * 6,
            "longitude": [-122.40, -122.41, -122.39, -122.40, -122.42, 100.0],
            "latitude": [37.70, 37.71, 37.69, 37.72, 37.70, 45.0],
        })
        out = project_observations(df)
        assert out["easting"].notna().sum() == 5
        assert np.isnan(out.loc[5, "easting"])
        assert out["easting"].dropna().between(500_000, 600_000).all()
