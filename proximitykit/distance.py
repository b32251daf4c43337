import numpy as np
import pandas as pd
import geopandas as gpd
from scipy.spatial import cKDTree

from proximitykit.errors import InvalidGeometryError
from proximitykit.utilities.geometry import assert_same_crs, assert_projected, from_crs_units


def calc_distance_to_nearest(
    gdf_in: gpd.GeoDataFrame,
    gdf_control: gpd.GeoDataFrame,
    _id: str,
    unit: str = "m",
    verbose: bool = False
) -> gpd.GeoDataFrame:
  """
  Calculate the distance from every row to the nearest feature of a control layer.

  Both layers must share a projected CRS. When every geometry on both sides is a point the nearest neighbor comes from
  a KD-tree, otherwise from geopandas' STRtree-backed nearest join. Either way the lookup is logarithmic in the size of
  the control layer.

  :param gdf_in: Base GeoDataFrame.
  :type gdf_in: geopandas.GeoDataFrame
  :param gdf_control: Features to measure distance to (e.g. farmers markets).
  :type gdf_control: geopandas.GeoDataFrame
  :param _id: Identifier used for naming the distance column, "dist_to_<_id>".
  :type _id: str
  :param unit: Unit of the output distance: "m", "km", "mile", or "ft".
  :type unit: str, optional
  :param verbose: If True, prints progress information.
  :type verbose: bool, optional
  :returns: A new GeoDataFrame with the distance column added.
  :rtype: geopandas.GeoDataFrame
  :raises CrsMismatchError: If the layers don't share a CRS.
  :raises DegenerateDistanceUnitError: If the shared CRS is geographic.
  :raises InvalidGeometryError: If a base row has no geometry.
  :raises ValueError: If the control layer is empty or the unit is unsupported.
  """
  assert_same_crs(gdf_in, gdf_control, labels=["base", _id])
  assert_projected(gdf_in, "distance")
  # validates the unit before any work happens
  from_crs_units(0.0, unit, gdf_in.crs)

  gdf_control = gdf_control[~(gdf_control.geometry.isna() | gdf_control.geometry.is_empty)]
  if len(gdf_control) == 0:
    raise ValueError(f"Control layer '{_id}' has no features. Cannot calculate distances to it.")

  idx_no_geom = gdf_in.geometry.isna() | gdf_in.geometry.is_empty
  if idx_no_geom.any():
    raise InvalidGeometryError(f"Found {int(idx_no_geom.sum())} rows with no geometry before distance calculation for '{_id}'.")

  field = get_distance_field(_id)
  gdf = gdf_in.copy()
  if len(gdf) == 0:
    gdf[field] = pd.Series(dtype="float64")
    return gdf

  all_points = gdf.geom_type.eq("Point").all() and gdf_control.geom_type.eq("Point").all()
  if all_points:
    distances = _nearest_distances_kdtree(gdf, gdf_control)
  else:
    distances = _nearest_distances_strtree(gdf, gdf_control)

  gdf[field] = from_crs_units(distances, unit, gdf.crs)

  if verbose:
    method = "kd-tree" if all_points else "strtree"
    print(f"--> {field}: {len(gdf):,} rows vs {len(gdf_control):,} features ({method}), median = {np.median(gdf[field]):.2f} {unit}")
  return gdf


def get_distance_field(_id: str) -> str:
  return f"dist_to_{_id}"


def _nearest_distances_kdtree(gdf: gpd.GeoDataFrame, gdf_control: gpd.GeoDataFrame) -> np.ndarray:
  coords_control = np.column_stack([gdf_control.geometry.x.values, gdf_control.geometry.y.values])
  coords = np.column_stack([gdf.geometry.x.values, gdf.geometry.y.values])
  tree = cKDTree(coords_control)
  distances, _ = tree.query(coords, k=1)
  return np.asarray(distances, dtype="float64")


def _nearest_distances_strtree(gdf: gpd.GeoDataFrame, gdf_control: gpd.GeoDataFrame) -> np.ndarray:
  gdf_left = gpd.GeoDataFrame({"__row_id__": np.arange(len(gdf))}, geometry=gdf.geometry.values, crs=gdf.crs)
  gdf_right = gpd.GeoDataFrame(geometry=gdf_control.geometry.values, crs=gdf_control.crs)
  nearest = gpd.sjoin_nearest(gdf_left, gdf_right, how="left", distance_col="__distance__")
  # equidistant ties produce one row per tied feature
  nearest = nearest.sort_values(by=["__row_id__", "__distance__"]).drop_duplicates(subset="__row_id__")
  distances = np.full(len(gdf), np.nan, dtype="float64")
  distances[nearest["__row_id__"].to_numpy()] = nearest["__distance__"].to_numpy()
  return distances


def perform_distance_calculations(
    gdf_in: gpd.GeoDataFrame,
    s_dist: list,
    layers: dict[str, gpd.GeoDataFrame],
    verbose: bool = False
) -> gpd.GeoDataFrame:
  """
  Perform distance calculations based on enrichment instructions.

  Each entry is a layer id or a dict with "id", and optionally "source" (layer id, defaults to "id") and "unit"
  (default "m").

  :param gdf_in: Base GeoDataFrame.
  :type gdf_in: geopandas.GeoDataFrame
  :param s_dist: Distance calculation instructions.
  :type s_dist: list
  :param layers: Layers by id.
  :type layers: dict[str, geopandas.GeoDataFrame]
  :param verbose: If True, prints progress information.
  :type verbose: bool, optional
  :returns: GeoDataFrame with calculated distance fields.
  :rtype: geopandas.GeoDataFrame
  :raises ValueError: If a distance entry is invalid or two entries would write the same field.
  """
  if not isinstance(s_dist, list):
    s_dist = [s_dist]
  if verbose and len(s_dist) > 0:
    print("Performing distance calculations...")

  gdf = gdf_in.copy()
  fields = []
  for entry in s_dist:
    if isinstance(entry, str):
      entry = {"id": entry}
    elif not isinstance(entry, dict):
      raise ValueError(f"Invalid distance entry: {entry}")
    _id = entry.get("id")
    if _id is None:
      raise ValueError("No 'id' found in distance entry.")
    source = entry.get("source", _id)
    if source not in layers:
      raise ValueError(f"Distance layer '{source}' not found in layers. Available layers: {list(layers.keys())}")
    field = get_distance_field(_id)
    if field in fields:
      raise ValueError(f"Distance entry '{_id}' would overwrite '{field}', which an earlier entry already wrote. Give each entry a unique 'id'.")
    fields.append(field)
    gdf = calc_distance_to_nearest(gdf, layers[source], _id, entry.get("unit", "m"), verbose)
  return gdf
