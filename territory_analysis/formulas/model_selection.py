"""
Candidate linear models of territory size, AICc ranking and Welch t-tests.

Pure functions, no I/O. The candidate set is every subset of the four
predictors (communication distance, age, body condition, background noise),
16 models including the intercept-only null. Names and formulas are both
derived from CANDIDATE_MODELS so they cannot drift apart.

AICc follows Burnham & Anderson (2002) with K counting the residual
variance, as in R's AICcmodavg for ``lm`` fits:

    AICc = -2 log L + 2K + 2K(K + 1) / (n - K - 1)
"""

from dataclasses import replace
from itertools import combinations

import numpy as np
import pandas as pd
import statsmodels.formula.api as smf
from scipy import stats

from territory_analysis import config
from territory_analysis.errors import InsufficientDataError
from territory_analysis.pipeline_types import ModelCandidate

NULL_MODEL = "null"


def _candidate_models(predictors):
    models = []
    for size in range(len(predictors) + 1):
        for subset in combinations(predictors, size):
            name = " + ".join(subset) if subset else NULL_MODEL
            models.append((name, subset))
    return tuple(models)


# Ordered (name, predictors) pairs; index i of names and formulas always
# refers to the same model.
CANDIDATE_MODELS = _candidate_models(config.MODEL_PREDICTORS)


def build_formula(predictors, response=None, transform=None):
    """Patsy formula for a predictor subset, e.g. ``np.sqrt(area_75) ~ age``."""
    if response is None:
        response = config.MODEL_RESPONSE
    lhs = f"np.sqrt({response})" if transform == "sqrt" else response
    rhs = " + ".join(predictors) if predictors else "1"
    return f"{lhs} ~ {rhs}"


def aicc(log_likelihood, k, n):
    """Second-order (small-sample) Akaike Information Criterion."""
    if n - k - 1 <= 0:
        return np.inf
    return -2.0 * log_likelihood + 2.0 * k + (2.0 * k * (k + 1)) / (n - k - 1)


def fit_candidate(df, name, predictors, response=None, transform=None):
    """Fit one candidate with OLS and score it."""
    formula = build_formula(predictors, response=response, transform=transform)
    fit = smf.ols(formula, data=df).fit()
    n = int(fit.nobs)
    k = len(fit.params) + 1
    return ModelCandidate(
        name=name,
        predictors=tuple(predictors),
        formula=formula,
        params=fit.params.to_dict(),
        pvalues=fit.pvalues.to_dict(),
        n=n,
        k=k,
        log_likelihood=float(fit.llf),
        r_squared=float(fit.rsquared),
        aicc=float(aicc(fit.llf, k, n)),
    )


def rank_candidates(candidates):
    """Sort candidates by AICc and attach delta AICc, Akaike weight and rank."""
    ordered = sorted(candidates, key=lambda c: c.aicc)
    best = ordered[0].aicc
    deltas = np.array([c.aicc - best for c in ordered])
    rel = np.exp(-0.5 * deltas)
    weights = rel / rel.sum()
    return [
        replace(c, delta_aicc=float(d), weight=float(w), rank=i + 1)
        for i, (c, d, w) in enumerate(zip(ordered, deltas, weights))
    ]


def fit_candidate_models(df, response=None, transform=None, candidates=None):
    """Fit and rank the candidate set.

    Parameters
    ----------
    df : pd.DataFrame
        Model dataset (see schemas.ModelDatasetSchema). Rows with missing
        values in any used column are dropped so every candidate is scored
        on the same observations.
    response : str, optional
        Default: config.MODEL_RESPONSE ("area_75").
    transform : {None, "sqrt"}
        Optional transform of the response.
    candidates : sequence of (name, predictors), optional
        Default: CANDIDATE_MODELS.

    Returns
    -------
    list[ModelCandidate]
        Ranked best first.
    """
    if response is None:
        response = config.MODEL_RESPONSE
    if candidates is None:
        candidates = CANDIDATE_MODELS

    used = sorted({p for _, preds in candidates for p in preds} | {response})
    data = df.dropna(subset=used)
    max_k = max(len(preds) for _, preds in candidates) + 2
    if len(data) < max_k + 2:
        raise InsufficientDataError(
            f"{len(data)} complete row(s); at least {max_k + 2} needed to "
            "score the largest candidate model"
        )

    fitted = [
        fit_candidate(data, name, preds, response=response, transform=transform)
        for name, preds in candidates
    ]
    return rank_candidates(fitted)


def model_selection_table(ranked):
    """Ranked candidates as a DataFrame (one row per model)."""
    return pd.DataFrame([c.to_dict() for c in ranked])


def best_model_report(ranked, alpha=None):
    """Coefficients and significance of the top-ranked model."""
    if alpha is None:
        alpha = config.SIGNIFICANCE_ALPHA
    best = ranked[0]
    coefficients = pd.DataFrame({
        "term": list(best.params.keys()),
        "estimate": list(best.params.values()),
        "p_value": [best.pvalues[t] for t in best.params],
    })
    coefficients["significant"] = coefficients["p_value"] < alpha
    return {
        "name": best.name,
        "formula": best.formula,
        "aicc": best.aicc,
        "weight": best.weight,
        "r_squared": best.r_squared,
        "coefficients": coefficients,
    }


# ── Two-sample comparisons ──────────────────────────────────────────────


def welch_t_test(a, b, alpha=None):
    """Welch's unequal-variance two-sample t-test.

    Parameters
    ----------
    a, b : array-like
        Samples (NaN dropped).

    Returns
    -------
    dict
        Keys: t_statistic, p_value, df, mean_a, mean_b, n_a, n_b, significant.
    """
    if alpha is None:
        alpha = config.SIGNIFICANCE_ALPHA
    a = np.asarray(a, dtype=float)
    b = np.asarray(b, dtype=float)
    a, b = a[np.isfinite(a)], b[np.isfinite(b)]
    if len(a) < 2 or len(b) < 2:
        raise InsufficientDataError(
            f"Welch t-test needs at least 2 values per group (got {len(a)}, {len(b)})"
        )
    t, p = stats.ttest_ind(a, b, equal_var=False)
    va, vb = a.var(ddof=1) / len(a), b.var(ddof=1) / len(b)
    dof = (va + vb) ** 2 / (va ** 2 / (len(a) - 1) + vb ** 2 / (len(b) - 1))
    return {
        "t_statistic": float(t),
        "p_value": float(p),
        "df": float(dof),
        "mean_a": float(a.mean()),
        "mean_b": float(b.mean()),
        "n_a": len(a),
        "n_b": len(b),
        "significant": bool(p < alpha),
    }


def welch_t_test_from_stats(mean_a, se_a, n_a, mean_b, se_b, n_b, alpha=None):
    """Welch t-test from group means, standard errors and sizes."""
    if alpha is None:
        alpha = config.SIGNIFICANCE_ALPHA
    sd_a = se_a * np.sqrt(n_a)
    sd_b = se_b * np.sqrt(n_b)
    t, p = stats.ttest_ind_from_stats(mean_a, sd_a, n_a, mean_b, sd_b, n_b,
                                      equal_var=False)
    dof = (se_a ** 2 + se_b ** 2) ** 2 / (
        se_a ** 4 / (n_a - 1) + se_b ** 4 / (n_b - 1)
    )
    return {
        "t_statistic": float(t),
        "p_value": float(p),
        "df": float(dof),
        "mean_a": float(mean_a),
        "mean_b": float(mean_b),
        "n_a": int(n_a),
        "n_b": int(n_b),
        "significant": bool(p < alpha),
    }


def compare_habitats(df, value_col, group_col="habitat", groups=None,
                     transform=None, alpha=None):
    """Welch t-test of ``value_col`` between two habitat groups.

    Parameters
    ----------
    df : pd.DataFrame
    value_col : str
        e.g. "comm_distance" or "area_75".
    groups : tuple[str, str], optional
        Default: config.HABITAT_GROUPS ("urban", "rural").
    transform : {None, "sqrt"}
        Applied to the values before testing.

    Returns
    -------
    dict
        welch_t_test() result plus variable, transform and group labels.
    """
    if groups is None:
        groups = config.HABITAT_GROUPS
    values = df[value_col].astype(float)
    if transform == "sqrt":
        values = np.sqrt(values)
    elif transform is not None:
        raise ValueError(f"Unknown transform {transform!r}")

    a = values[df[group_col] == groups[0]]
    b = values[df[group_col] == groups[1]]
    result = welch_t_test(a, b, alpha=alpha)
    result.update({
        "variable": value_col,
        "transform": transform or "none",
        "group_a": groups[0],
        "group_b": groups[1],
    })
    return result
