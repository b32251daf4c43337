import numpy as np
import pandas as pd
import statsmodels.api as sm
from statsmodels.regression.linear_model import RegressionResults


def simple_ols(
    df: pd.DataFrame,
    ind_var: str,
    dep_var: str,
    intercept: bool = True
) -> dict:
  """
  Fit a one-variable OLS regression and return the headline statistics.

  :param df: Input DataFrame.
  :type df: pandas.DataFrame
  :param ind_var: Independent variable.
  :type ind_var: str
  :param dep_var: Dependent variable.
  :type dep_var: str
  :param intercept: Whether to fit an intercept.
  :type intercept: bool, optional
  :returns: Dictionary with slope, intercept, r2, adj_r2, pval, mse, rmse, and std_err.
  :rtype: dict
  """
  results = fit_price_model(df, dep_var, [ind_var], intercept)
  return {
    "slope": results.params[ind_var],
    "intercept": results.params["const"] if "const" in results.params else 0,
    "r2": results.rsquared,
    "adj_r2": results.rsquared_adj,
    "pval": results.pvalues[ind_var],
    "mse": results.mse_resid,
    "rmse": np.sqrt(results.mse_resid),
    "std_err": results.bse[ind_var]
  }


def fit_price_model(
    df: pd.DataFrame,
    dep_var: str,
    ind_vars: list[str],
    intercept: bool = True,
    verbose: bool = False
) -> RegressionResults:
  """
  Fit an ordinary least squares model of `dep_var` on `ind_vars`.

  Boolean covariates (such as proximity band flags) are cast to 0/1. Null values are rejected rather than dropped,
  since silently losing rows would change what the model describes.

  :param df: Enriched sales.
  :type df: pandas.DataFrame
  :param dep_var: Dependent variable, e.g. "sale_price".
  :type dep_var: str
  :param ind_vars: Independent variables.
  :type ind_vars: list[str]
  :param intercept: Whether to add a constant term.
  :type intercept: bool, optional
  :param verbose: If True, prints the model summary.
  :type verbose: bool, optional
  :returns: Fitted statsmodels results.
  :rtype: statsmodels.regression.linear_model.RegressionResults
  :raises ValueError: If a field is missing or contains nulls, or no independent variables are given.
  """
  if len(ind_vars) == 0:
    raise ValueError("No independent variables given. Set model.ind_vars.")
  for field in [dep_var] + ind_vars:
    if field not in df:
      raise ValueError(f"Model field '{field}' not found in DataFrame. Available columns: {df.columns.tolist()}")

  nulls = [field for field in [dep_var] + ind_vars if df[field].isna().any()]
  if len(nulls) > 0:
    raise ValueError(f"Model fields contain null values: {nulls}. Fill or filter them before fitting.")

  y = df[dep_var].astype(np.float64)
  X = df[ind_vars].copy()
  for col in X.columns:
    if X[col].dtype == bool:
      X[col] = X[col].astype(int)
  X = X.astype(np.float64)
  if intercept:
    X = sm.add_constant(X, has_constant="add")

  results = sm.OLS(y, X).fit()
  if verbose:
    print(results.summary())
  return results


def summarize_model(results: RegressionResults) -> pd.DataFrame:
  """
  Tabulate coefficients, standard errors, t-values, and p-values, one row per term.
  """
  return pd.DataFrame({
    "coef": results.params,
    "std_err": results.bse,
    "t": results.tvalues,
    "pval": results.pvalues
  })
