import os

import numpy as np
import pandas as pd
import geopandas as gpd
from shapely.ops import unary_union

from proximitykit.joins import _perform_spatial_join
from proximitykit.utilities.data import coalesce_flags
from proximitykit.utilities.geometry import assert_projected, assert_same_crs, to_crs_units
from proximitykit.utilities.settings import DEFAULT_BANDS


def build_buffer_rings(
    gdf_control: gpd.GeoDataFrame,
    bands: list[dict] = None,
    unit: str = "mile",
    resolution: int = 16
) -> gpd.GeoDataFrame:
  """
  Build disjoint proximity bands around a control layer.

  For each band radius, every control feature is buffered and the buffers are unioned into one region. Each region
  then has every smaller region subtracted from it, so a band means "within this radius, but not within any smaller
  one". Buffering, unioning, then subtracting, in that order, leaves no gaps or overlaps where neighboring features'
  circles meet.

  :param gdf_control: Features to build bands around (e.g. water treatment plants). Must be in a projected CRS.
  :type gdf_control: geopandas.GeoDataFrame
  :param bands: List of {"name": str, "radius": float}. Defaults to half-mile, 1-mile, and 5-mile bands.
  :type bands: list[dict], optional
  :param unit: Unit of the radii: "m", "km", "mile", or "ft".
  :type unit: str, optional
  :param resolution: Segments per quarter circle used to approximate each buffer.
  :type resolution: int, optional
  :returns: One row per band, smallest first, with "name", "inner_radius", "outer_radius", "unit", and "geometry".
  :rtype: geopandas.GeoDataFrame
  :raises DegenerateDistanceUnitError: If the control layer's CRS is geographic.
  :raises ValueError: If the bands are malformed or the control layer is empty.
  """
  if bands is None:
    bands = DEFAULT_BANDS
  bands = _validate_bands(bands)
  assert_projected(gdf_control, "buffer")

  geoms = gdf_control.geometry[~(gdf_control.geometry.isna() | gdf_control.geometry.is_empty)]
  if len(geoms) == 0:
    raise ValueError("Cannot build buffer rings around an empty layer.")

  rows = []
  covered = None
  inner_radius = 0.0
  for band in bands:
    distance = to_crs_units(band["radius"], unit, gdf_control.crs)
    region = unary_union(list(geoms.buffer(distance, quad_segs=resolution)))
    ring = region if covered is None else region.difference(covered)
    covered = region if covered is None else covered.union(region)
    rows.append({
      "name": band["name"],
      "inner_radius": inner_radius,
      "outer_radius": float(band["radius"]),
      "unit": unit,
      "geometry": ring
    })
    inner_radius = float(band["radius"])

  return gpd.GeoDataFrame(rows, geometry="geometry", crs=gdf_control.crs)


def _validate_bands(bands: list) -> list[dict]:
  if not isinstance(bands, list) or len(bands) == 0:
    raise ValueError(f"Bands must be a non-empty list of {{\"name\", \"radius\"}} entries, found: {bands}")
  for band in bands:
    if not isinstance(band, dict) or "name" not in band or "radius" not in band:
      raise ValueError(f"Invalid band entry: {band}. Expected {{\"name\": str, \"radius\": float}}.")
    radius = band["radius"]
    if isinstance(radius, bool) or not isinstance(radius, (int, float, np.integer, np.floating)):
      raise ValueError(f"Band '{band['name']}' must have a numeric radius, found: {radius!r}")
    if not np.isfinite(radius) or radius <= 0:
      raise ValueError(f"Band '{band['name']}' must have a positive radius, found: {radius}")
  names = [band["name"] for band in bands]
  if len(set(names)) != len(names):
    raise ValueError(f"Band names must be unique, found: {names}")
  bands = sorted(bands, key=lambda b: b["radius"])
  radii = [band["radius"] for band in bands]
  if len(set(radii)) != len(radii):
    raise ValueError(f"Band radii must be distinct, found: {radii}")
  return bands


def tag_buffer_rings(
    gdf_in: gpd.GeoDataFrame,
    rings: gpd.GeoDataFrame,
    prefix: str = "",
    verbose: bool = False
) -> gpd.GeoDataFrame:
  """
  Add one boolean column per ring: True if the row's point lies strictly within that ring.

  Missing matches are coalesced to False right after each join, so the flags never hold nulls.

  :param gdf_in: Base GeoDataFrame.
  :type gdf_in: geopandas.GeoDataFrame
  :param rings: Output of build_buffer_rings().
  :type rings: geopandas.GeoDataFrame
  :param prefix: Prefix for the flag column names.
  :type prefix: str, optional
  :param verbose: If True, prints progress information.
  :type verbose: bool, optional
  :returns: A new GeoDataFrame.
  :rtype: geopandas.GeoDataFrame
  :raises CrsMismatchError: If the layers don't share a CRS.
  :raises ValueError: If more than one flag ends up true for a row.
  """
  assert_same_crs(gdf_in, rings, labels=["base", "rings"])
  gdf = gdf_in
  fields = []
  for _, ring in rings.iterrows():
    field = f"{prefix}{ring['name']}"
    overlay = gpd.GeoDataFrame({field: [True]}, geometry=[ring["geometry"]], crs=rings.crs)
    gdf, _, _ = _perform_spatial_join(gdf, overlay, [field], field, "within", False, warn_empty=False)
    gdf = coalesce_flags(gdf, [field])
    fields.append(field)
    if verbose:
      print(f"--> {field}: {int(gdf[field].sum()):,} rows")

  n_flags = gdf[fields].sum(axis=1) if len(fields) > 0 else pd.Series(0, index=gdf.index)
  if n_flags.gt(1).any():
    raise ValueError(f"{int(n_flags.gt(1).sum())} rows fall in more than one proximity band. The rings are not disjoint.")
  if gdf is gdf_in:
    gdf = gdf_in.copy()
  return gdf


def perform_ring_calculations(
    gdf_in: gpd.GeoDataFrame,
    s_rings: list,
    layers: dict[str, gpd.GeoDataFrame],
    verbose: bool = False
) -> tuple[gpd.GeoDataFrame, dict[str, gpd.GeoDataFrame]]:
  """
  Build and tag proximity bands based on enrichment instructions.

  Each entry is a layer id or a dict with "id", and optionally "source", "bands", "unit" (default "mile"),
  "prefix" (default ""), and "resolution".

  Each ring layer gets a "field" column naming the flag column its band was written to.

  :returns: The tagged GeoDataFrame and the ring layers by entry id.
  :rtype: tuple[geopandas.GeoDataFrame, dict[str, geopandas.GeoDataFrame]]
  :raises ValueError: If an entry is invalid, or two entries would write the same flag column.
  """
  if not isinstance(s_rings, list):
    s_rings = [s_rings]
  if verbose and len(s_rings) > 0:
    print("Performing proximity band calculations...")

  gdf = gdf_in.copy()
  rings_out = {}
  flag_fields = []
  for entry in s_rings:
    if isinstance(entry, str):
      entry = {"id": entry}
    elif not isinstance(entry, dict):
      raise ValueError(f"Invalid ring entry: {entry}")
    _id = entry.get("id")
    if _id is None:
      raise ValueError("No 'id' found in ring entry.")
    source = entry.get("source", _id)
    if source not in layers:
      raise ValueError(f"Ring layer '{source}' not found in layers. Available layers: {list(layers.keys())}")
    if verbose:
      print(f"--> {_id}")
    rings = build_buffer_rings(
      layers[source],
      entry.get("bands"),
      entry.get("unit", "mile"),
      entry.get("resolution", 16)
    )
    prefix = entry.get("prefix", "")
    rings["field"] = [f"{prefix}{name}" for name in rings["name"]]
    reused = [field for field in rings["field"] if field in flag_fields]
    if len(reused) > 0:
      raise ValueError(f"Ring entry '{_id}' would overwrite flags {reused} written by an earlier entry. Set a unique 'prefix' on it.")
    flag_fields += rings["field"].tolist()
    gdf = tag_buffer_rings(gdf, rings, prefix, verbose)
    rings_out[_id] = rings
  return gdf, rings_out


def write_rings(rings: gpd.GeoDataFrame, path: str, layer: str = None, verbose: bool = False):
  """
  Persist a ring layer for inspection. The format follows the extension: .gpkg, .geojson, .shp, or .parquet.

  :raises ValueError: If the file extension is unsupported.
  """
  base_path = os.path.dirname(path)
  if base_path != "":
    os.makedirs(base_path, exist_ok=True)
  ext = str(path).split(".")[-1].lower()
  if ext == "gpkg":
    rings.to_file(path, driver="GPKG", layer=layer or "rings")
  elif ext == "geojson":
    rings.to_file(path, driver="GeoJSON")
  elif ext == "shp":
    rings.to_file(path)
  elif ext == "parquet":
    rings.to_parquet(path, engine="pyarrow")
  else:
    raise ValueError(f"Unsupported file extension: {ext}")
  if verbose:
    print(f"Wrote {len(rings)} rings to \"{path}\"")
