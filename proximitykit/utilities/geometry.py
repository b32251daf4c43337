import warnings

import numpy as np
import geopandas as gpd
from pyproj import CRS

from proximitykit.errors import CrsMismatchError, DegenerateDistanceUnitError


METERS_PER_UNIT = {
  "m": 1.0,
  "km": 1000.0,
  "mile": 1609.344,
  "ft": 0.3048
}


def get_crs(gdf: gpd.GeoDataFrame, projection_type: str) -> CRS:
  """
  Return a CRS appropriate for a given kind of measurement, centred on the layer's extent.

  :param gdf: Input GeoDataFrame (must have a CRS).
  :type gdf: geopandas.GeoDataFrame
  :param projection_type: One of "latlon", "equal_area", "equal_distance", or "conformal".
  :type projection_type: str
  :returns: A pyproj CRS.
  :rtype: pyproj.CRS
  :raises ValueError: If the projection type is unknown.
  """
  if projection_type == "latlon":
    return CRS.from_epsg(4326)

  if gdf.crs is None:
    raise CrsMismatchError("Cannot pick a local CRS for a GeoDataFrame with no CRS.")

  lon, lat = _get_center_lonlat(gdf)

  if projection_type == "equal_area":
    proj = f"+proj=laea +lat_0={lat} +lon_0={lon} +datum=WGS84 +units=m +no_defs"
  elif projection_type == "equal_distance":
    proj = f"+proj=aeqd +lat_0={lat} +lon_0={lon} +datum=WGS84 +units=m +no_defs"
  elif projection_type == "conformal":
    proj = f"+proj=tmerc +lat_0={lat} +lon_0={lon} +k=1 +datum=WGS84 +units=m +no_defs"
  else:
    raise ValueError(f"Unknown projection type: {projection_type}")
  return CRS.from_proj4(proj)


def _get_center_lonlat(gdf: gpd.GeoDataFrame):
  minx, miny, maxx, maxy = gdf.to_crs(epsg=4326).total_bounds
  return (minx + maxx) / 2, (miny + maxy) / 2


def is_likely_epsg4326(gdf: gpd.GeoDataFrame) -> bool:
  """
  Guess whether a GeoDataFrame's coordinates are longitude/latitude degrees, regardless of its declared CRS.

  :param gdf: Input GeoDataFrame.
  :type gdf: geopandas.GeoDataFrame
  :returns: True if every coordinate falls inside [-180, 180] x [-90, 90].
  :rtype: bool
  """
  if len(gdf) == 0 or gdf.geometry.isna().all():
    return False
  minx, miny, maxx, maxy = gdf.total_bounds
  if not np.all(np.isfinite([minx, miny, maxx, maxy])):
    return False
  return -180 <= minx <= 180 and -180 <= maxx <= 180 and -90 <= miny <= 90 and -90 <= maxy <= 90


def crs_equal(a, b) -> bool:
  """
  Compare two CRS-like values. A missing CRS never equals anything, including another missing CRS.
  """
  if a is None or b is None:
    return False
  return CRS.from_user_input(a).equals(CRS.from_user_input(b))


def assert_same_crs(*gdfs: gpd.GeoDataFrame, labels: list[str] = None):
  """
  Verify that every GeoDataFrame shares one CRS.

  :param gdfs: The layers taking part in a cross-layer operation.
  :type gdfs: geopandas.GeoDataFrame
  :param labels: Optional names for the layers, used in error messages.
  :type labels: list[str], optional
  :raises CrsMismatchError: If any layer has no CRS or the CRS differ.
  """
  if labels is None:
    labels = [f"layer {i}" for i in range(len(gdfs))]
  for gdf, label in zip(gdfs, labels):
    if gdf.crs is None:
      raise CrsMismatchError(f"'{label}' has no CRS. Assign one before combining it with other layers.")
  first = gdfs[0]
  for gdf, label in zip(gdfs[1:], labels[1:]):
    if not crs_equal(first.crs, gdf.crs):
      raise CrsMismatchError(
        f"CRS mismatch: '{labels[0]}' is {first.crs.to_string()} but '{label}' is {gdf.crs.to_string()}. "
        f"Reproject the layers to a common CRS first."
      )


def reproject(gdf: gpd.GeoDataFrame, crs) -> gpd.GeoDataFrame:
  """
  Return a copy of the layer in the given CRS. The input is never modified.

  :param gdf: Input GeoDataFrame.
  :type gdf: geopandas.GeoDataFrame
  :param crs: Target CRS (anything pyproj accepts: EPSG int, "EPSG:xxxx", CRS).
  :returns: A new GeoDataFrame.
  :rtype: geopandas.GeoDataFrame
  :raises CrsMismatchError: If the layer has no CRS to reproject from.
  """
  if gdf.crs is None:
    raise CrsMismatchError("Cannot reproject a GeoDataFrame with no CRS.")
  if crs_equal(gdf.crs, crs):
    return gdf.copy()
  return gdf.to_crs(crs)


def normalize_layers(layers: dict[str, gpd.GeoDataFrame], target_crs, verbose: bool = False) -> dict[str, gpd.GeoDataFrame]:
  """
  Bring every layer into one target CRS.

  Layers already in the target CRS are copied, mismatched ones are reprojected. The caller's dictionary and layers are
  left untouched.

  :param layers: Layers by id.
  :type layers: dict[str, geopandas.GeoDataFrame]
  :param target_crs: The working CRS.
  :param verbose: If True, prints which layers were reprojected.
  :type verbose: bool, optional
  :returns: A new dictionary of layers, all in the target CRS.
  :rtype: dict[str, geopandas.GeoDataFrame]
  :raises CrsMismatchError: If any layer has no CRS.
  """
  target = CRS.from_user_input(target_crs)
  out = {}
  for _id, gdf in layers.items():
    if gdf.crs is None:
      raise CrsMismatchError(f"Layer '{_id}' has no CRS. Supply its EPSG code when loading it.")
    if crs_equal(gdf.crs, target):
      out[_id] = gdf.copy()
    else:
      if verbose:
        print(f"--> reprojecting '{_id}' from {gdf.crs.to_string()} to {target.to_string()}")
      if target.is_projected and not gdf.crs.is_geographic and is_likely_epsg4326(gdf):
        warnings.warn(f"Layer '{_id}' is declared as {gdf.crs.to_string()} but its coordinates look like degrees. Check the EPSG code you supplied for it.")
      out[_id] = gdf.to_crs(target)
  return out


def assert_projected(gdf: gpd.GeoDataFrame, operation: str = "distance"):
  """
  Verify that a layer is in a projected CRS with a linear unit.

  :param gdf: Input GeoDataFrame.
  :type gdf: geopandas.GeoDataFrame
  :param operation: Name of the operation, used in the error message.
  :type operation: str, optional
  :raises CrsMismatchError: If the layer has no CRS.
  :raises DegenerateDistanceUnitError: If the CRS is geographic.
  """
  if gdf.crs is None:
    raise CrsMismatchError(f"Cannot perform {operation} calculations on a GeoDataFrame with no CRS.")
  get_linear_unit_factor(gdf.crs, operation)


def get_linear_unit_factor(crs, operation: str = "distance") -> float:
  """
  Metres per unit of the CRS's first axis.

  :raises DegenerateDistanceUnitError: If the CRS is geographic or has no linear unit.
  """
  crs = CRS.from_user_input(crs)
  if crs.is_geographic:
    raise DegenerateDistanceUnitError(
      f"Cannot perform {operation} calculations in geographic CRS {crs.to_string()}: its units are degrees. "
      f"Reproject to a projected CRS first."
    )
  axis = crs.axis_info[0] if len(crs.axis_info) > 0 else None
  if axis is None or axis.unit_conversion_factor is None or axis.unit_conversion_factor <= 0:
    raise DegenerateDistanceUnitError(f"CRS {crs.to_string()} has no linear unit; cannot perform {operation} calculations.")
  return float(axis.unit_conversion_factor)


def _get_meters_per_unit(unit: str) -> float:
  if unit not in METERS_PER_UNIT:
    raise ValueError(f"Unsupported unit '{unit}'. Expected one of {list(METERS_PER_UNIT.keys())}")
  return METERS_PER_UNIT[unit]


def to_crs_units(value, unit: str, crs):
  """Convert a length expressed in `unit` into the linear unit of `crs`."""
  return value * _get_meters_per_unit(unit) / get_linear_unit_factor(crs)


def from_crs_units(value, unit: str, crs):
  """Convert a length expressed in the linear unit of `crs` into `unit`."""
  return value * get_linear_unit_factor(crs) / _get_meters_per_unit(unit)
