import pytest
import geopandas as gpd
from shapely.geometry import Point

from proximitykit.errors import CrsMismatchError, DegenerateDistanceUnitError
from proximitykit.utilities.geometry import assert_same_crs, normalize_layers, reproject, assert_projected, \
  to_crs_units, from_crs_units, get_linear_unit_factor, get_crs, is_likely_epsg4326, crs_equal


def _points(coords, crs):
  return gpd.GeoDataFrame({"name": [f"p{i}" for i in range(len(coords))]}, geometry=[Point(c) for c in coords], crs=crs)


def test_assert_same_crs_mismatch():
  a = _points([(0, 0)], 32610)
  b = _points([(0, 0)], 3857)
  with pytest.raises(CrsMismatchError):
    assert_same_crs(a, b, labels=["sales", "markets"])


def test_assert_same_crs_missing():
  a = _points([(0, 0)], 32610)
  b = gpd.GeoDataFrame(geometry=[Point(0, 0)])
  with pytest.raises(CrsMismatchError):
    assert_same_crs(a, b)


def test_assert_same_crs_ok():
  assert_same_crs(_points([(0, 0)], 32610), _points([(1, 1)], "EPSG:32610"))


def test_normalize_layers_does_not_mutate():
  layers = {
    "wgs": _points([(-122.4, 37.7)], 4326),
    "utm": _points([(550000, 4170000)], 32610)
  }
  out = normalize_layers(layers, 32610)

  assert crs_equal(out["wgs"].crs, 32610)
  assert crs_equal(out["utm"].crs, 32610)
  # originals untouched
  assert crs_equal(layers["wgs"].crs, 4326)
  assert layers["wgs"].geometry.iloc[0].x == pytest.approx(-122.4)
  assert out["utm"] is not layers["utm"]


def test_normalize_layers_missing_crs():
  layers = {"nocrs": gpd.GeoDataFrame(geometry=[Point(0, 0)])}
  with pytest.raises(CrsMismatchError):
    normalize_layers(layers, 32610)


def test_reproject_round_trip():
  coords = [(-122.41, 37.77), (-122.27, 37.80), (-121.89, 37.33)]
  gdf = _points(coords, 4326)
  back = reproject(reproject(gdf, 32610), 4326)
  for p, (x, y) in zip(back.geometry, coords):
    assert p.x == pytest.approx(x, abs=1e-9)
    assert p.y == pytest.approx(y, abs=1e-9)


def test_assert_projected_rejects_degrees():
  with pytest.raises(DegenerateDistanceUnitError):
    assert_projected(_points([(-122.4, 37.7)], 4326))
  assert_projected(_points([(550000, 4170000)], 32610))


def test_unit_conversion():
  assert to_crs_units(0.5, "mile", 32610) == pytest.approx(804.672)
  assert to_crs_units(1, "mile", 32610) == pytest.approx(1609.344)
  assert from_crs_units(1000.0, "km", 32610) == pytest.approx(1.0)
  # California zone 3, US survey feet
  assert get_linear_unit_factor(2227) == pytest.approx(1200 / 3937)
  assert to_crs_units(1, "ft", 2227) == pytest.approx(0.3048 / (1200 / 3937))
  with pytest.raises(ValueError):
    to_crs_units(1, "furlong", 32610)


def test_get_crs_local_projections():
  gdf = _points([(-122.4, 37.7), (-122.3, 37.8)], 4326)
  assert get_crs(gdf, "latlon").to_epsg() == 4326
  for projection_type in ["equal_area", "equal_distance", "conformal"]:
    crs = get_crs(gdf, projection_type)
    assert crs.is_projected
    assert get_linear_unit_factor(crs) == 1.0
  with pytest.raises(ValueError):
    get_crs(gdf, "mystery")


def test_is_likely_epsg4326():
  assert is_likely_epsg4326(_points([(-122.4, 37.7)], 4326))
  assert not is_likely_epsg4326(_points([(550000, 4170000)], 32610))
  assert not is_likely_epsg4326(gpd.GeoDataFrame(geometry=[], crs=4326))
