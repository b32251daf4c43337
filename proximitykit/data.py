import os
import warnings

import numpy as np
import pandas as pd
import geopandas as gpd
from pyproj import CRS

from proximitykit.errors import InvalidGeometryError
from proximitykit.utilities.data import check_unique_keys
from proximitykit.utilities.geometry import reproject


def materialize_points(
    df_in: pd.DataFrame,
    crs=None,
    source_crs=4326,
    lat_field: str = "latitude",
    lon_field: str = "longitude",
    key: str = "key",
    on_invalid: str = "raise",
    verbose: bool = False
) -> gpd.GeoDataFrame:
  """
  Build a point geometry for every record from its latitude/longitude fields.

  The raw coordinate fields are kept as ordinary columns so downstream consumers never have to invert the geometry.
  A record is invalid if either coordinate is missing or non-finite, or, when the source CRS is geographic, if it lies
  outside [-90, 90] latitude or [-180, 180] longitude.

  :param df_in: Tabular records.
  :type df_in: pandas.DataFrame
  :param crs: CRS to reproject the points into. If None the points stay in `source_crs`.
  :param source_crs: CRS the coordinate fields are expressed in (default EPSG:4326).
  :param lat_field: Name of the latitude (y) field.
  :type lat_field: str, optional
  :param lon_field: Name of the longitude (x) field.
  :type lon_field: str, optional
  :param key: Primary key field, used to report invalid records.
  :type key: str, optional
  :param on_invalid: "raise" to abort on any invalid record, "skip" to drop invalid records with a warning.
  :type on_invalid: str, optional
  :param verbose: If True, prints progress information.
  :type verbose: bool, optional
  :returns: A new GeoDataFrame with a point "geometry" column.
  :rtype: geopandas.GeoDataFrame
  :raises InvalidGeometryError: If `on_invalid` is "raise" and any record is invalid.
  :raises ValueError: If a coordinate field is missing or `on_invalid` is not recognized.
  """
  if on_invalid not in ["raise", "skip"]:
    raise ValueError(f"Invalid on_invalid value: {on_invalid}. Expected 'raise' or 'skip'.")
  for field in [lat_field, lon_field]:
    if field not in df_in:
      raise ValueError(f"Coordinate field '{field}' not found in DataFrame. Available columns: {df_in.columns.tolist()}")

  df = pd.DataFrame(df_in).drop(columns=["geometry"], errors="ignore").copy()
  lat = pd.to_numeric(df[lat_field], errors="coerce").astype("float64")
  lon = pd.to_numeric(df[lon_field], errors="coerce").astype("float64")

  idx_bad = ~(np.isfinite(lat) & np.isfinite(lon))
  if CRS.from_user_input(source_crs).is_geographic:
    idx_bad = idx_bad | lat.abs().gt(90) | lon.abs().gt(180)

  n_bad = int(idx_bad.sum())
  if n_bad > 0:
    bad_keys = df.loc[idx_bad, key].tolist() if key in df else df.index[idx_bad].tolist()
    if on_invalid == "raise":
      raise InvalidGeometryError(
        f"Found {n_bad} records with missing, non-finite, or out-of-range coordinates in '{lat_field}'/'{lon_field}'. "
        f"Offending keys: {bad_keys[:10]}{'...' if n_bad > 10 else ''}",
        keys=bad_keys
      )
    warnings.warn(f"Dropped {n_bad} records with missing, non-finite, or out-of-range coordinates.")
    df = df.loc[~idx_bad]
    lat = lat.loc[~idx_bad]
    lon = lon.loc[~idx_bad]

  if verbose:
    print(f"--> materialized {len(df):,} points from '{lon_field}'/'{lat_field}'")

  gdf = gpd.GeoDataFrame(
    df,
    geometry=gpd.points_from_xy(lon.values, lat.values),
    crs=source_crs
  )
  if crs is not None:
    gdf = reproject(gdf, crs)
  return gdf


def load_sales(entry: dict, verbose: bool = False) -> pd.DataFrame:
  """
  Load the tabular sales records described by a settings entry.

  The entry's "load" map renames source columns: ``{"sale_price": "PRICE"}`` loads "PRICE" as "sale_price". If the
  data has no key field, one is generated from the row number.

  :param entry: The `data.sales` settings entry.
  :type entry: dict
  :param verbose: If True, prints progress information.
  :type verbose: bool, optional
  :returns: The sales DataFrame.
  :rtype: pandas.DataFrame
  :raises ValueError: If the file type is unsupported or keys are duplicated.
  """
  filename = entry.get("filename", "")
  if filename == "":
    raise ValueError("No sales filename found in settings. Set data.sales.filename.")
  key = entry.get("key", "key")

  if verbose:
    print(f"Loading \"{filename}\"...")

  ext = str(filename).split(".")[-1].lower()
  if ext == "csv":
    df = pd.read_csv(filename)
  elif ext == "parquet":
    df = pd.read_parquet(filename)
  else:
    raise ValueError(f"Unsupported file extension: {ext}")

  rename_map = {original: new for new, original in entry.get("load", {}).items()}
  df = df.rename(columns=rename_map)

  if key not in df:
    df[key] = [str(i) for i in range(len(df))]
  check_unique_keys(df, key, f"sales data \"{filename}\"")

  if verbose:
    print(f"--> {len(df):,} sales")
  return df


def load_layer(entry: dict, verbose: bool = False) -> gpd.GeoDataFrame:
  """
  Load a vector layer and stamp it with the caller-supplied EPSG code.

  Source files may lack embedded CRS metadata (or carry the wrong one), so the CRS always comes from the settings
  entry's "epsg" value, overriding whatever the file declares.

  :param entry: A `data.layers.<id>` settings entry with "filename", "epsg", and optionally "fields".
  :type entry: dict
  :param verbose: If True, prints progress information.
  :type verbose: bool, optional
  :returns: The layer.
  :rtype: geopandas.GeoDataFrame
  :raises ValueError: If the filename or EPSG code is missing, or a requested field is absent.
  """
  filename = entry.get("filename", "")
  if filename == "":
    raise ValueError(f"Layer entry has no filename: {entry}")
  epsg = entry.get("epsg")
  if epsg is None:
    raise ValueError(f"Layer \"{filename}\" has no 'epsg' code. The CRS of every layer must be supplied explicitly.")

  if verbose:
    print(f"Loading \"{filename}\"...")

  ext = str(filename).split(".")[-1].lower()
  if ext == "parquet":
    gdf = gpd.read_parquet(filename)
  else:
    gdf = gpd.read_file(filename)

  if gdf.crs is not None and not CRS.from_user_input(gdf.crs).equals(CRS.from_epsg(int(epsg))):
    warnings.warn(f"Layer \"{filename}\" declares {gdf.crs.to_string()} but settings say EPSG:{epsg}. Using EPSG:{epsg}.")
  gdf = gdf.set_crs(epsg=int(epsg), allow_override=True)

  fields = entry.get("fields")
  if fields is not None:
    for field in fields:
      if field not in gdf:
        raise ValueError(f"Field '{field}' not found in layer \"{filename}\". Available columns: {gdf.columns.tolist()}")
    gdf = gdf[fields + [gdf.geometry.name]]

  rename_map = {original: new for new, original in entry.get("load", {}).items()}
  gdf = gdf.rename(columns=rename_map)

  n_empty = int((gdf.geometry.isna() | gdf.geometry.is_empty).sum())
  if n_empty > 0:
    warnings.warn(f"Dropped {n_empty} features with no geometry from \"{filename}\".")
    gdf = gdf[~(gdf.geometry.isna() | gdf.geometry.is_empty)]

  if verbose:
    print(f"--> {len(gdf):,} features")
  return gdf.reset_index(drop=True)


def load_dataframes(settings: dict, verbose: bool = False) -> tuple[pd.DataFrame, dict[str, gpd.GeoDataFrame]]:
  """
  Load the sales records and every configured layer.

  :param settings: Settings dictionary.
  :type settings: dict
  :param verbose: If True, prints progress information.
  :type verbose: bool, optional
  :returns: The sales DataFrame and a dictionary of layers by id.
  :rtype: tuple[pandas.DataFrame, dict[str, geopandas.GeoDataFrame]]
  """
  s_data = settings.get("data", {})
  df_sales = load_sales(s_data.get("sales", {}), verbose=verbose)
  layers = {}
  for _id, entry in s_data.get("layers", {}).items():
    if isinstance(entry, str):
      raise ValueError(f"Layer '{_id}' must be a dictionary with 'filename' and 'epsg', found: {entry}")
    layers[_id] = load_layer(entry, verbose=verbose)
  return df_sales, layers


def write_enriched(gdf: gpd.GeoDataFrame, path: str, verbose: bool = False):
  """
  Write the enriched sales. Parquet keeps the geometry, CSV stores it as WKT.

  :param gdf: Enriched sales.
  :type gdf: geopandas.GeoDataFrame
  :param path: Output path ending in ".parquet" or ".csv".
  :type path: str
  :raises ValueError: If the file extension is unsupported.
  """
  base_path = os.path.dirname(path)
  if base_path != "":
    os.makedirs(base_path, exist_ok=True)
  ext = str(path).split(".")[-1].lower()
  if ext == "parquet":
    gdf.to_parquet(path, engine="pyarrow")
  elif ext == "csv":
    df = pd.DataFrame(gdf.drop(columns="geometry"))
    df["geometry"] = gdf.geometry.to_wkt()
    df.to_csv(path, index=False)
  else:
    raise ValueError(f"Unsupported file extension: {ext}")
  if verbose:
    print(f"Wrote {len(gdf):,} rows to \"{path}\"")
