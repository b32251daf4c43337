import warnings

import numpy as np
import geopandas as gpd
from pandas.api.extensions import take

from proximitykit.errors import JoinAmbiguityWarning
from proximitykit.utilities.data import warn_unmatched
from proximitykit.utilities.geometry import assert_same_crs


PREDICATES = ["within", "contains_centroid"]


def perform_spatial_join(
    gdf_in: gpd.GeoDataFrame,
    gdf_overlay: gpd.GeoDataFrame,
    fields: list[str] = None,
    _id: str = "overlay",
    predicate: str = "within",
    verbose: bool = False
) -> gpd.GeoDataFrame:
  """
  Attach the attributes of the polygon each geometry falls strictly within.

  Every input row appears exactly once in the output. Rows outside every polygon (or exactly on a boundary) get null
  attributes. A row inside more than one polygon takes the first one in the overlay's row order, and a
  JoinAmbiguityWarning is emitted.

  :param gdf_in: Base GeoDataFrame (usually sale points).
  :type gdf_in: geopandas.GeoDataFrame
  :param gdf_overlay: Polygon layer.
  :type gdf_overlay: geopandas.GeoDataFrame
  :param fields: Overlay fields to attach. Defaults to every non-geometry field.
  :type fields: list[str], optional
  :param _id: Name of the overlay layer, used in messages.
  :type _id: str, optional
  :param predicate: "within" or "contains_centroid".
  :type predicate: str, optional
  :param verbose: If True, prints progress information.
  :type verbose: bool, optional
  :returns: A new GeoDataFrame.
  :rtype: geopandas.GeoDataFrame
  :raises CrsMismatchError: If the two layers don't share a CRS.
  :raises ValueError: If the predicate is invalid or a field is missing.
  """
  gdf, _, _ = _perform_spatial_join(gdf_in, gdf_overlay, fields, _id, predicate, verbose)
  return gdf


def _perform_spatial_join(
    gdf_in: gpd.GeoDataFrame,
    gdf_overlay: gpd.GeoDataFrame,
    fields: list[str],
    _id: str,
    predicate: str,
    verbose: bool,
    warn_empty: bool = True
) -> tuple[gpd.GeoDataFrame, int, int]:
  if predicate not in PREDICATES:
    raise ValueError(f"Invalid spatial join predicate: {predicate}. Expected one of {PREDICATES}")
  assert_same_crs(gdf_in, gdf_overlay, labels=["base", _id])
  if "__overlay_id__" in gdf_overlay:
    raise ValueError("The overlay GeoDataFrame already contains a '__overlay_id__' column. This column is used internally by the spatial join function, and must not be present in the overlay GeoDataFrame.")

  geom_col = gdf_overlay.geometry.name
  if fields is None:
    fields = [field for field in gdf_overlay.columns if field != geom_col]
  for field in fields:
    if field not in gdf_overlay:
      raise ValueError(f"Field to tag '{field}' not found in geometry dataframe '{_id}'.")

  n = len(gdf_in)

  # Join on positional ids so the base index can be anything, including non-unique
  left_geom = gdf_in.geometry.values
  if predicate == "contains_centroid":
    left_geom = gdf_in.geometry.centroid.values
  gdf_left = gpd.GeoDataFrame({"__row_id__": np.arange(n)}, geometry=left_geom, crs=gdf_in.crs)
  gdf_right = gpd.GeoDataFrame(
    {"__overlay_id__": np.arange(len(gdf_overlay))},
    geometry=gdf_overlay.geometry.values,
    crs=gdf_overlay.crs
  )

  joined = gpd.sjoin(gdf_left, gdf_right, how="inner", predicate="within")
  joined = joined[["__row_id__", "__overlay_id__"]]

  counts = joined.groupby("__row_id__").size()
  n_ambiguous = int(counts.gt(1).sum())
  if n_ambiguous > 0:
    warnings.warn(
      f"{n_ambiguous} rows fall within more than one polygon of '{_id}'. Using the first matching polygon in layer order.",
      JoinAmbiguityWarning
    )

  joined = joined.sort_values(by=["__row_id__", "__overlay_id__"]).drop_duplicates(subset="__row_id__", keep="first")

  positions = np.full(n, -1, dtype=np.int64)
  positions[joined["__row_id__"].to_numpy()] = joined["__overlay_id__"].to_numpy()
  n_unmatched = int((positions < 0).sum())

  gdf = gdf_in.copy()
  gdf = gdf.drop(columns=fields, errors="ignore")
  for field in fields:
    values = gdf_overlay[field].to_numpy()
    gdf[field] = take(values, positions, allow_fill=True)

  if verbose:
    print(f"--> {_id}: {n - n_unmatched:,}/{n:,} matched, {n_ambiguous:,} ambiguous")
  if warn_empty:
    warn_unmatched(n_unmatched, n, _id, verbose)

  return gdf, n_ambiguous, n_unmatched


def perform_spatial_joins(
    gdf_in: gpd.GeoDataFrame,
    s_joins: list,
    layers: dict[str, gpd.GeoDataFrame],
    verbose: bool = False
) -> tuple[gpd.GeoDataFrame, dict]:
  """
  Perform spatial joins based on a list of join instructions.

  Strings in `s_joins` are interpreted as layer ids; dicts must contain an "id" and may contain "fields" and
  "predicate" (default "within").

  :param gdf_in: Base GeoDataFrame.
  :type gdf_in: geopandas.GeoDataFrame
  :param s_joins: List of join instructions.
  :type s_joins: list
  :param layers: Layers by id.
  :type layers: dict[str, geopandas.GeoDataFrame]
  :param verbose: If True, prints progress messages.
  :type verbose: bool, optional
  :returns: The joined GeoDataFrame and per-layer diagnostics ({"ambiguous": n, "unmatched": n}).
  :rtype: tuple[geopandas.GeoDataFrame, dict]
  :raises ValueError: If an entry is malformed or refers to a missing layer.
  """
  if not isinstance(s_joins, list):
    s_joins = [s_joins]

  if verbose and len(s_joins) > 0:
    print("Performing spatial joins...")

  gdf = gdf_in
  diagnostics = {}
  for entry in s_joins:
    if isinstance(entry, str):
      entry = {"id": entry}
    elif not isinstance(entry, dict):
      raise ValueError(f"Invalid join entry: {entry}")
    _id = entry.get("id")
    if _id is None:
      raise ValueError("No 'id' found in join entry.")
    if _id not in layers:
      raise ValueError(f"Join layer '{_id}' not found in layers. Available layers: {list(layers.keys())}")
    predicate = entry.get("predicate", "within")
    gdf, n_ambiguous, n_unmatched = _perform_spatial_join(gdf, layers[_id], entry.get("fields"), _id, predicate, verbose)
    diagnostics[_id] = {"ambiguous": n_ambiguous, "unmatched": n_unmatched}

  if gdf is gdf_in:
    gdf = gdf_in.copy()
  return gdf, diagnostics
