from dataclasses import dataclass, field

import pandas as pd
import geopandas as gpd
from joblib import Parallel, delayed
from statsmodels.regression.linear_model import RegressionResults

from proximitykit.data import materialize_points, load_dataframes, write_enriched
from proximitykit.distance import perform_distance_calculations, get_distance_field
from proximitykit.joins import perform_spatial_joins
from proximitykit.modeling import fit_price_model
from proximitykit.rings import perform_ring_calculations, write_rings
from proximitykit.utilities.data import check_unique_keys
from proximitykit.utilities.geometry import normalize_layers, get_linear_unit_factor
from proximitykit.utilities.settings import get_working_crs, get_source_crs, get_key_field, get_enrich_settings, \
  get_model_settings
from proximitykit.utilities.timing import TimingData


@dataclass
class EnrichmentResult:
  """
  Everything an enrichment run produces.

  Attributes:
      sales (gpd.GeoDataFrame): The enriched sales, one row per valid input record, in the working CRS.
      rings (dict[str, gpd.GeoDataFrame]): Proximity band layers, by ring entry id.
      diagnostics (dict): Counts describing the run: dropped records, and ambiguous/unmatched rows per joined layer.
      timing (TimingData): Seconds spent in each stage.
      model (RegressionResults): The fitted price model, if one was requested.
  """
  sales: gpd.GeoDataFrame
  rings: dict[str, gpd.GeoDataFrame] = field(default_factory=dict)
  diagnostics: dict = field(default_factory=dict)
  timing: TimingData = field(default_factory=TimingData)
  model: RegressionResults | None = None

  def __getitem__(self, key):
    return getattr(self, key)


def enrich_sales(
    df_sales: pd.DataFrame,
    layers: dict[str, gpd.GeoDataFrame],
    settings: dict,
    verbose: bool = False
) -> EnrichmentResult:
  """
  Turn raw sales records into model-ready enriched sales.

  Stages, in order:

  1. Reproject every layer into the working CRS.
  2. Build point geometries from the sales' coordinates.
  3. Join administrative polygon layers ("within" semantics).
  4. Distance-to-nearest features and proximity band flags. These two only read the joined base and add disjoint
     columns, so with `enrich.parallel` they run concurrently.
  5. Assemble the new columns onto the base.

  Any failure aborts the whole run; no partial output is returned. None of the inputs are modified.

  :param df_sales: Sales records with a key, coordinates, and whatever attributes the model needs.
  :type df_sales: pandas.DataFrame
  :param layers: Layers by id, each with its own CRS.
  :type layers: dict[str, geopandas.GeoDataFrame]
  :param settings: Settings dictionary.
  :type settings: dict
  :param verbose: If True, prints progress information.
  :type verbose: bool, optional
  :returns: The enriched sales, ring layers, diagnostics, and timings.
  :rtype: EnrichmentResult
  """
  t = TimingData()
  t.start("total")

  working_crs = get_working_crs(settings)
  get_linear_unit_factor(working_crs, "enrichment")

  s_sales = settings.get("data", {}).get("sales", {})
  s_enrich = get_enrich_settings(settings)
  key = get_key_field(settings)
  check_unique_keys(df_sales, key, "sales data")

  if verbose:
    print(f"Enriching {len(df_sales):,} sales in {working_crs}...")

  with t.measure("normalize"):
    layers = normalize_layers(layers, working_crs, verbose)

  with t.measure("points"):
    gdf = materialize_points(
      df_sales,
      crs=working_crs,
      source_crs=get_source_crs(settings),
      lat_field=s_sales.get("latitude", "latitude"),
      lon_field=s_sales.get("longitude", "longitude"),
      key=key,
      on_invalid=s_sales.get("on_invalid", "raise"),
      verbose=verbose
    )
  diagnostics = {"dropped_invalid": len(df_sales) - len(gdf)}

  with t.measure("joins"):
    gdf, join_diagnostics = perform_spatial_joins(gdf, s_enrich.get("joins", []), layers, verbose)
  diagnostics["joins"] = join_diagnostics

  stages = [
    ("distances", _distance_stage, s_enrich.get("distances", [])),
    ("rings", _ring_stage, s_enrich.get("rings", []))
  ]
  if s_enrich.get("parallel", False):
    if verbose:
      print("Running feature stages in parallel...")
    results = Parallel(n_jobs=len(stages), backend="threading")(
      delayed(func)(gdf, entries, layers, verbose) for _, func, entries in stages
    )
  else:
    results = [func(gdf, entries, layers, verbose) for _, func, entries in stages]

  rings = {}
  flag_fields = []
  for (name, _, _), (df_new, stage_rings, stage_time) in zip(stages, results):
    clash = [col for col in df_new.columns if col in gdf.columns]
    if len(clash) > 0:
      raise ValueError(f"Stage '{name}' produced columns that already exist: {clash}. Rename or drop them in the input, or set a 'prefix'.")
    for col in df_new.columns:
      gdf[col] = df_new[col].values
    if name == "rings":
      flag_fields = list(df_new.columns)
    rings.update(stage_rings)
    t.results[name] = stage_time

  n_null_flags = int(gdf[flag_fields].isna().sum().sum()) if len(flag_fields) > 0 else 0
  if n_null_flags > 0:
    raise ValueError(f"Found {n_null_flags} null proximity flags after enrichment. This should not happen.")

  t.stop("total")
  if verbose:
    print("***ALL TIMING***")
    print(t.print())
    print("****************")

  return EnrichmentResult(sales=gdf, rings=rings, diagnostics=diagnostics, timing=t)


def _distance_stage(gdf: gpd.GeoDataFrame, entries: list, layers: dict, verbose: bool):
  t = TimingData()
  with t.measure("distances"):
    out = perform_distance_calculations(gdf, entries, layers, verbose)
  if not isinstance(entries, list):
    entries = [entries]
  fields = [get_distance_field(entry if isinstance(entry, str) else entry["id"]) for entry in entries]
  return pd.DataFrame(out[fields]), {}, t.get("distances")


def _ring_stage(gdf: gpd.GeoDataFrame, entries: list, layers: dict, verbose: bool):
  t = TimingData()
  with t.measure("rings"):
    out, rings = perform_ring_calculations(gdf, entries, layers, verbose)
  fields = [field for layer in rings.values() for field in layer["field"]]
  return pd.DataFrame(out[fields]), rings, t.get("rings")


def run(settings: dict, verbose: bool = False) -> EnrichmentResult:
  """
  Load the configured inputs, enrich them, write the configured outputs, and fit the price model if one is
  configured.

  :param settings: Settings dictionary (see utilities.settings.load_settings()).
  :type settings: dict
  :param verbose: If True, prints progress information.
  :type verbose: bool, optional
  :returns: The enrichment result, with `model` set if model.ind_vars is non-empty.
  :rtype: EnrichmentResult
  """
  df_sales, layers = load_dataframes(settings, verbose)
  result = enrich_sales(df_sales, layers, settings, verbose)

  s_output = settings.get("output", {})
  if s_output.get("enriched"):
    write_enriched(result.sales, s_output["enriched"], verbose)
  if s_output.get("rings"):
    for _id, rings in result.rings.items():
      write_rings(rings, f"{s_output['rings']}/{_id}.gpkg", layer=_id, verbose=verbose)

  s_model = get_model_settings(settings)
  ind_vars = s_model.get("ind_vars", [])
  if len(ind_vars) > 0:
    result.model = fit_price_model(
      result.sales,
      s_model.get("dep_var", "sale_price"),
      ind_vars,
      s_model.get("intercept", True),
      verbose
    )
  return result
