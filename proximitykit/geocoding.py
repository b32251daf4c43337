from typing import Callable, Optional

import numpy as np
import pandas as pd


# address -> (latitude, longitude), or None when the address can't be resolved
Geocoder = Callable[[str], Optional[tuple[float, float]]]


def fill_missing_coordinates(
    df_in: pd.DataFrame,
    geocoder: Geocoder,
    address_field: str = "address",
    lat_field: str = "latitude",
    lon_field: str = "longitude",
    verbose: bool = False
) -> pd.DataFrame:
  """
  Fill in missing coordinates by geocoding each affected row's address.

  The geocoder is supplied by the caller, along with whatever rate limiting and retry behavior it needs. Rows it can't
  resolve keep their missing coordinates and will be rejected by materialize_points().

  :param df_in: Tabular records.
  :type df_in: pandas.DataFrame
  :param geocoder: Callable from address to (latitude, longitude) or None.
  :type geocoder: Geocoder
  :param address_field: Field holding the address string.
  :type address_field: str, optional
  :param lat_field: Latitude field.
  :type lat_field: str, optional
  :param lon_field: Longitude field.
  :type lon_field: str, optional
  :param verbose: If True, prints how many rows were resolved.
  :type verbose: bool, optional
  :returns: A new DataFrame.
  :rtype: pandas.DataFrame
  :raises ValueError: If the address field is missing.
  """
  if address_field not in df_in:
    raise ValueError(f"Address field '{address_field}' not found in DataFrame.")
  df = df_in.copy()
  for field in [lat_field, lon_field]:
    if field not in df:
      df[field] = np.nan
    df[field] = pd.to_numeric(df[field], errors="coerce").astype("float64")

  lat = df[lat_field].to_numpy(copy=True)
  lon = df[lon_field].to_numpy(copy=True)
  addresses = df[address_field].to_numpy()
  missing = np.flatnonzero(~(np.isfinite(lat) & np.isfinite(lon)))

  n_resolved = 0
  for i in missing:
    address = addresses[i]
    if pd.isna(address) or str(address).strip() == "":
      continue
    result = geocoder(str(address))
    if result is None:
      continue
    lat[i], lon[i] = result
    n_resolved += 1

  df[lat_field] = lat
  df[lon_field] = lon
  if verbose:
    print(f"--> geocoded {n_resolved:,}/{len(missing):,} rows with missing coordinates")
  return df
