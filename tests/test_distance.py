import numpy as np
import pytest
import geopandas as gpd
from shapely.geometry import Point, box

from proximitykit.distance import calc_distance_to_nearest, perform_distance_calculations
from proximitykit.errors import CrsMismatchError, DegenerateDistanceUnitError, InvalidGeometryError


CRS = 32610


def _points(coords, crs=CRS):
  return gpd.GeoDataFrame(
    {"key": [str(i) for i in range(len(coords))]},
    geometry=[Point(c) for c in coords],
    crs=crs
  )


def test_distance_exact():
  gdf = calc_distance_to_nearest(_points([(1000, 0)]), _points([(0, 0)]), "farmers_market")
  assert gdf["dist_to_farmers_market"].iloc[0] == 1000.0


def test_distance_nearest_of_many_and_units():
  markets = _points([(0, 0), (5000, 0), (0, -300)])
  sales = _points([(4000, 0), (0, 100), (3, 4)])
  gdf = calc_distance_to_nearest(sales, markets, "market", unit="km")
  assert gdf["dist_to_market"].tolist() == pytest.approx([1.0, 0.1, 0.005])


def test_distance_non_negative_and_zero_only_on_coincidence():
  rng = np.random.default_rng(1337)
  coords = [tuple(c) for c in rng.uniform(-10000, 10000, size=(200, 2))]
  markets = _points(coords[:10])
  gdf = calc_distance_to_nearest(_points(coords), markets, "market")
  distances = gdf["dist_to_market"].values

  assert (distances >= 0).all()
  assert (distances[:10] == 0).all()
  assert (distances[10:] > 0).all()


def test_distance_to_polygons_uses_nearest_join():
  parks = gpd.GeoDataFrame({"name": ["park"]}, geometry=[box(0, 0, 100, 100)], crs=CRS)
  gdf = calc_distance_to_nearest(_points([(150, 50), (50, 50), (100, 250)]), parks, "park")
  assert gdf["dist_to_park"].tolist() == pytest.approx([50.0, 0.0, 150.0])


def test_distance_input_untouched():
  sales = _points([(1000, 0)])
  calc_distance_to_nearest(sales, _points([(0, 0)]), "market")
  assert "dist_to_market" not in sales


def test_distance_rejects_geographic_crs():
  with pytest.raises(DegenerateDistanceUnitError):
    calc_distance_to_nearest(_points([(-122.4, 37.7)], 4326), _points([(-122.3, 37.8)], 4326), "market")


def test_distance_rejects_crs_mismatch():
  with pytest.raises(CrsMismatchError):
    calc_distance_to_nearest(_points([(1000, 0)]), _points([(0, 0)], 3857), "market")


def test_distance_rejects_empty_control_and_bad_unit():
  with pytest.raises(ValueError):
    calc_distance_to_nearest(_points([(1000, 0)]), _points([]), "market")
  with pytest.raises(ValueError):
    calc_distance_to_nearest(_points([(1000, 0)]), _points([(0, 0)]), "market", unit="furlong")


def test_distance_rejects_missing_geometry():
  sales = gpd.GeoDataFrame({"key": ["a", "b"]}, geometry=[Point(1, 1), None], crs=CRS)
  with pytest.raises(InvalidGeometryError):
    calc_distance_to_nearest(sales, _points([(0, 0)]), "market")


def test_perform_distance_calculations():
  layers = {"farmers_markets": _points([(0, 0)]), "parks": _points([(0, 3000)])}
  gdf = perform_distance_calculations(
    _points([(1000, 0)]),
    ["farmers_markets", {"id": "park", "source": "parks", "unit": "mile"}],
    layers
  )
  assert gdf["dist_to_farmers_markets"].iloc[0] == pytest.approx(1000.0)
  assert gdf["dist_to_park"].iloc[0] == pytest.approx(np.hypot(1000, 3000) / 1609.344)

  with pytest.raises(ValueError):
    perform_distance_calculations(_points([(1000, 0)]), ["schools"], layers)


def test_duplicate_distance_fields_rejected():
  layers = {"farmers_markets": _points([(0, 0)]), "parks": _points([(0, 3000)])}
  with pytest.raises(ValueError, match="dist_to_farmers_markets"):
    perform_distance_calculations(
      _points([(1000, 0)]),
      ["farmers_markets", {"id": "farmers_markets", "source": "parks"}],
      layers
    )
