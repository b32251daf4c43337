import copy
import json


DEFAULT_BANDS = [
  {"name": "within_half_mile", "radius": 0.5},
  {"name": "within_1_mile", "radius": 1.0},
  {"name": "within_5_mile", "radius": 5.0}
]


def get_default_settings() -> dict:
  """
  The settings every run starts from. User settings are merged on top of these.
  """
  return {
    "crs": {
      "source": 4326,
      "working": None
    },
    "data": {
      "sales": {
        "filename": "",
        "key": "key",
        "latitude": "latitude",
        "longitude": "longitude",
        "on_invalid": "raise"
      },
      "layers": {}
    },
    "enrich": {
      "parallel": False,
      "joins": [],
      "distances": [],
      "rings": []
    },
    "model": {
      "dep_var": "sale_price",
      "ind_vars": [],
      "intercept": True
    },
    "output": {
      "enriched": None,
      "rings": None
    }
  }


def merge_settings(base: dict, overlay: dict) -> dict:
  """
  Deep-merge `overlay` onto `base`, returning a new dictionary. Dictionaries merge key by key, anything else in
  `overlay` replaces what's in `base`.
  """
  out = copy.deepcopy(base)
  for key, value in overlay.items():
    if isinstance(value, dict) and isinstance(out.get(key), dict):
      out[key] = merge_settings(out[key], value)
    else:
      out[key] = copy.deepcopy(value)
  return out


def load_settings(path: str = "in/settings.json", settings_object: dict = None) -> dict:
  """
  Load settings from a JSON file (or use a provided dictionary) and merge them over the defaults.

  :param path: Path to the settings file.
  :type path: str, optional
  :param settings_object: Settings dictionary to use instead of reading `path`.
  :type settings_object: dict, optional
  :returns: The merged settings dictionary.
  :rtype: dict
  """
  if settings_object is None:
    with open(path, "r") as f:
      settings_object = json.load(f)
  return merge_settings(get_default_settings(), settings_object)


def get_source_crs(settings: dict):
  return settings.get("crs", {}).get("source", 4326)


def get_working_crs(settings: dict):
  """
  The projected CRS every cross-layer operation runs in.

  :raises ValueError: If no working CRS is configured.
  """
  crs = settings.get("crs", {}).get("working")
  if crs is None:
    raise ValueError("No working CRS found in settings. Set crs.working to the EPSG code of a projected CRS.")
  return crs


def get_key_field(settings: dict) -> str:
  return settings.get("data", {}).get("sales", {}).get("key", "key")


def get_enrich_settings(settings: dict) -> dict:
  return settings.get("enrich", {})


def get_model_settings(settings: dict) -> dict:
  return settings.get("model", {})
