import numpy as np
import pandas as pd
import pytest

from proximitykit.utilities.data import boolify_series, coalesce_flags, check_unique_keys
from proximitykit.utilities.timing import TimingData


def test_coalesce_flags():
  df = pd.DataFrame({"a": [True, np.nan, None], "b": ["yes", "no", "n/a"]})
  out = coalesce_flags(df, ["a", "b", "c"])
  assert out["a"].tolist() == [True, False, False]
  assert out["b"].tolist() == [True, False, False]
  assert out["c"].tolist() == [False, False, False]
  assert all(out[c].dtype == bool for c in ["a", "b", "c"])
  assert "c" not in df


def test_boolify_na_true():
  assert boolify_series(pd.Series([np.nan, 0.0, 1.0]), "na_true").tolist() == [True, False, True]
  with pytest.raises(ValueError):
    boolify_series(pd.Series([1]), "maybe")


def test_check_unique_keys():
  check_unique_keys(pd.DataFrame({"key": [1, 2]}), "key", "test")
  with pytest.raises(ValueError):
    check_unique_keys(pd.DataFrame({"key": [1, 1]}), "key", "test")
  with pytest.raises(ValueError):
    check_unique_keys(pd.DataFrame({"id": [1]}), "key", "test")


def test_timing_accumulates():
  t = TimingData()
  with t.measure("stage"):
    pass
  first = t.get("stage")
  assert first >= 0
  t.start("stage")
  assert t.is_running("stage")
  t.stop("stage")
  assert not t.is_running("stage")
  assert t.get("stage") >= first
  assert t.stop("never started") == -1
  assert "stage:" in t.print()
