import numpy as np
import pandas as pd
import pytest
import geopandas as gpd
from shapely.geometry import Point, box

from proximitykit.data import materialize_points, load_sales, load_layer, load_dataframes, write_enriched
from proximitykit.errors import InvalidGeometryError
from proximitykit.utilities.geometry import crs_equal


def _sales():
  return pd.DataFrame({
    "key": ["a", "b", "c"],
    "sale_price": [500000, 650000, 720000],
    "year_built": [1955, 1987, 2004],
    "latitude": [37.77, 37.80, 37.33],
    "longitude": [-122.41, -122.27, -121.89]
  })


def test_materialize_points_keeps_coordinates():
  df = _sales()
  gdf = materialize_points(df)

  assert isinstance(gdf, gpd.GeoDataFrame)
  assert crs_equal(gdf.crs, 4326)
  assert gdf["latitude"].tolist() == df["latitude"].tolist()
  assert gdf["longitude"].tolist() == df["longitude"].tolist()
  assert gdf.geometry.iloc[0].x == pytest.approx(-122.41)
  assert gdf.geometry.iloc[0].y == pytest.approx(37.77)
  assert "geometry" not in df


def test_materialize_points_reprojects():
  gdf = materialize_points(_sales(), crs=32610)
  assert crs_equal(gdf.crs, 32610)
  assert gdf.geometry.iloc[0].x > 100000
  assert gdf["longitude"].iloc[0] == pytest.approx(-122.41)


def test_missing_longitude_raises():
  df = _sales()
  df.loc[1, "longitude"] = np.nan
  with pytest.raises(InvalidGeometryError) as e:
    materialize_points(df, crs=32610)
  assert e.value.keys == ["b"]


def test_non_finite_and_out_of_range_raise():
  df = _sales()
  df.loc[0, "latitude"] = np.inf
  df.loc[2, "latitude"] = 95.0
  with pytest.raises(InvalidGeometryError) as e:
    materialize_points(df)
  assert sorted(e.value.keys) == ["a", "c"]


def test_non_numeric_coordinate_raises():
  df = _sales()
  df["longitude"] = df["longitude"].astype(object)
  df.loc[2, "longitude"] = "unknown"
  with pytest.raises(InvalidGeometryError):
    materialize_points(df)


def test_skip_invalid_drops_with_warning():
  df = _sales()
  df.loc[1, "longitude"] = None
  with pytest.warns(UserWarning):
    gdf = materialize_points(df, on_invalid="skip")
  assert gdf["key"].tolist() == ["a", "c"]


def test_bad_policy():
  with pytest.raises(ValueError):
    materialize_points(_sales(), on_invalid="ignore")


def test_missing_coordinate_field():
  with pytest.raises(ValueError):
    materialize_points(_sales().drop(columns=["latitude"]))


def test_load_sales_renames_and_generates_keys(tmp_path):
  path = tmp_path / "sales.csv"
  pd.DataFrame({
    "PRICE": [100, 200],
    "LAT": [37.7, 37.8],
    "LON": [-122.4, -122.3]
  }).to_csv(path, index=False)

  df = load_sales({"filename": str(path), "load": {"sale_price": "PRICE", "latitude": "LAT", "longitude": "LON"}})
  assert df["sale_price"].tolist() == [100, 200]
  assert df["key"].tolist() == ["0", "1"]
  assert "latitude" in df and "longitude" in df


def test_load_sales_duplicate_keys(tmp_path):
  path = tmp_path / "sales.csv"
  pd.DataFrame({"key": ["x", "x"], "latitude": [1, 2], "longitude": [1, 2]}).to_csv(path, index=False)
  with pytest.raises(ValueError):
    load_sales({"filename": str(path)})


def test_load_sales_bad_extension():
  with pytest.raises(ValueError):
    load_sales({"filename": "sales.xlsx"})


def test_load_layer_assigns_supplied_crs(tmp_path):
  path = tmp_path / "zips.parquet"
  gdf = gpd.GeoDataFrame({"ZIP": ["94110", "94612"], "extra": [1, 2]}, geometry=[box(0, 0, 1, 1), box(1, 0, 2, 1)], crs=3857)
  gdf.to_parquet(path)

  with pytest.warns(UserWarning):
    layer = load_layer({"filename": str(path), "epsg": 32610, "fields": ["ZIP"], "load": {"zip": "ZIP"}})
  assert crs_equal(layer.crs, 32610)
  assert list(layer.columns) == ["zip", "geometry"]
  # the file itself is untouched
  assert crs_equal(gpd.read_parquet(path).crs, 3857)


def test_load_layer_requires_epsg(tmp_path):
  with pytest.raises(ValueError):
    load_layer({"filename": str(tmp_path / "zips.parquet")})


def test_load_layer_missing_field(tmp_path):
  path = tmp_path / "markets.parquet"
  gpd.GeoDataFrame({"name": ["m"]}, geometry=[Point(0, 0)], crs=32610).to_parquet(path)
  with pytest.raises(ValueError):
    load_layer({"filename": str(path), "epsg": 32610, "fields": ["market_name"]})


def test_load_dataframes(tmp_path):
  sales_path = tmp_path / "sales.csv"
  _sales().to_csv(sales_path, index=False)
  markets_path = tmp_path / "markets.parquet"
  gpd.GeoDataFrame({"name": ["m"]}, geometry=[Point(-122.4, 37.7)], crs=4326).to_parquet(markets_path)

  settings = {
    "data": {
      "sales": {"filename": str(sales_path)},
      "layers": {"farmers_markets": {"filename": str(markets_path), "epsg": 4326}}
    }
  }
  df, layers = load_dataframes(settings)
  assert len(df) == 3
  assert list(layers.keys()) == ["farmers_markets"]
  assert crs_equal(layers["farmers_markets"].crs, 4326)


def test_write_enriched(tmp_path):
  gdf = materialize_points(_sales(), crs=32610)
  write_enriched(gdf, str(tmp_path / "out" / "sales.parquet"))
  write_enriched(gdf, str(tmp_path / "out" / "sales.csv"))

  back = gpd.read_parquet(tmp_path / "out" / "sales.parquet")
  assert crs_equal(back.crs, 32610)
  assert back["key"].tolist() == ["a", "b", "c"]

  df = pd.read_csv(tmp_path / "out" / "sales.csv")
  assert df["geometry"].iloc[0].startswith("POINT")

  with pytest.raises(ValueError):
    write_enriched(gdf, str(tmp_path / "sales.xlsx"))
