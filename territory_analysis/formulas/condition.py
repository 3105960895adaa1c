"""
Scaled Mass Index of body condition.

Pure functions, no I/O. Following Peig & Green (2009):

    SMI_i = M_i * (L0 / L_i) ** b_SMA
    b_SMA = b_OLS / r

where M is body mass (weight), L a linear body measurement (wing length),
L0 the population mean of L, b_OLS the OLS slope of M on L and r the
Pearson correlation between M and L. The parameters are population-level:
they are fitted once per dataset and reused for every individual.
"""

import numpy as np
import statsmodels.api as sm
from scipy import stats

from territory_analysis import config
from territory_analysis.errors import DegenerateGeometryError, InsufficientDataError
from territory_analysis.pipeline_types import ConditionParameters


def fit_condition_parameters(wing, weight, min_individuals=None):
    """Fit the population parameters of the Scaled Mass Index.

    Parameters
    ----------
    wing : array-like
        Wing length per individual.
    weight : array-like
        Body mass per individual. Pairs with NaN in either are dropped.
    min_individuals : int, optional
        Default: config.MIN_INDIVIDUALS_FOR_CONDITION (3).

    Returns
    -------
    ConditionParameters

    Raises
    ------
    InsufficientDataError
        Fewer than min_individuals complete pairs.
    DegenerateGeometryError
        Zero variance in wing or weight (correlation undefined).
    """
    if min_individuals is None:
        min_individuals = config.MIN_INDIVIDUALS_FOR_CONDITION

    wing = np.asarray(wing, dtype=float)
    weight = np.asarray(weight, dtype=float)
    mask = np.isfinite(wing) & np.isfinite(weight)
    wing, weight = wing[mask], weight[mask]
    n = len(wing)

    if n < min_individuals:
        raise InsufficientDataError(
            f"{n} individual(s) with wing and weight; at least "
            f"{min_individuals} required for the condition regression"
        )
    if np.ptp(wing) == 0 or np.ptp(weight) == 0:
        raise DegenerateGeometryError(
            "Wing length or weight has zero variance; correlation is undefined"
        )

    model = sm.OLS(weight, sm.add_constant(wing)).fit()
    slope = float(model.params[1])
    r, _ = stats.pearsonr(weight, wing)
    r = float(r)

    return ConditionParameters(
        slope=slope,
        r=r,
        exponent=slope / r,
        l0=float(np.mean(wing)),
        n=n,
    )


def scaled_mass_index(weight, wing, params):
    """Scaled Mass Index for each individual from fitted parameters.

    Parameters
    ----------
    weight, wing : array-like
        Per-individual body mass and wing length.
    params : ConditionParameters
        Population parameters from fit_condition_parameters().

    Returns
    -------
    np.ndarray
        Condition score per individual (NaN where inputs are missing).
    """
    weight = np.asarray(weight, dtype=float)
    wing = np.asarray(wing, dtype=float)
    return weight * (params.l0 / wing) ** params.exponent


def compute_condition_index(df, wing_col="wing", weight_col="weight"):
    """Add a ``condition`` column to a morphometrics table.

    The population parameters are fitted once on the whole table and then
    applied to every row.

    Returns
    -------
    tuple[pd.DataFrame, ConditionParameters]
    """
    params = fit_condition_parameters(df[wing_col], df[weight_col])
    out = df.copy()
    out["condition"] = scaled_mass_index(out[weight_col], out[wing_col], params)
    return out, params
