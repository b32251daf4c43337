import warnings

import pandas as pd


def boolify_series(series: pd.Series, na_handling: str = "na_false") -> pd.Series:
  """
  Convert a series that may hold nulls or string representations of booleans into a non-nullable boolean series.

  :param series: Input series.
  :type series: pandas.Series
  :param na_handling: "na_false" or "na_true": what missing values become.
  :type na_handling: str, optional
  :returns: Boolean series.
  :rtype: pandas.Series
  :raises ValueError: If `na_handling` is not recognized.
  """
  if na_handling == "na_false":
    fill = False
  elif na_handling == "na_true":
    fill = True
  else:
    raise ValueError(f"Invalid na_handling value: {na_handling}. Expected 'na_true' or 'na_false'.")

  if series.dtype in ["object", "string", "str"]:
    lowered = series.astype("string").str.lower().str.strip()
    mapped = lowered.map({
      "true": True, "t": True, "1": True, "y": True, "yes": True,
      "false": False, "f": False, "0": False, "n": False, "no": False
    })
    # anything unrecognized ("none", "n/a", "-", ...) is treated as missing
    series = mapped.astype("object")

  series = series.astype("object").where(series.notna(), fill)
  return series.astype(bool)


def coalesce_flags(df_in: pd.DataFrame, fields: list[str], na_handling: str = "na_false") -> pd.DataFrame:
  """
  Turn each of the given columns into a non-nullable boolean column. Missing columns are created with the NA value.

  :param df_in: Input DataFrame.
  :type df_in: pandas.DataFrame
  :param fields: Columns to coalesce.
  :type fields: list[str]
  :param na_handling: "na_false" or "na_true".
  :type na_handling: str, optional
  :returns: A new DataFrame.
  :rtype: pandas.DataFrame
  """
  df = df_in.copy()
  for field in fields:
    if field not in df:
      df[field] = pd.NA
    df[field] = boolify_series(df[field], na_handling)
  return df


def check_unique_keys(df: pd.DataFrame, key: str, context: str):
  """
  :raises ValueError: If `key` is missing or has duplicate values.
  """
  if key not in df:
    raise ValueError(f"No '{key}' field found in {context}. This field is required.")
  n_dupes = df.duplicated(subset=key).sum()
  if n_dupes > 0:
    raise ValueError(f"Found {n_dupes} duplicate keys for key \"{key}\" in {context}. De-duplicate your data and try again.")


def warn_unmatched(n_unmatched: int, n_total: int, _id: str, verbose: bool = False):
  if n_unmatched == 0:
    return
  if verbose:
    print(f"--> {n_unmatched}/{n_total} rows fell outside every polygon of '{_id}'")
  if n_unmatched == n_total and n_total > 0:
    warnings.warn(f"No rows matched any polygon of '{_id}'. Check that the layers overlap and share a CRS.")
