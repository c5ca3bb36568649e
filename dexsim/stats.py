"""
dexsim/stats.py

Per-feature test statistics for differential expression.

Three competing scores are assembled for every feature:

    classical_t      — two-sample t computed directly from the matrix,
                       independent of the model fit (Welch by default).

    moderated_t      — empirical-Bayes t from the model fitting adapter,
                       with the feature variance shrunk towards a common
                       prior.

    log_fold_change  — the fitted group-1 minus group-0 difference, with no
                       variance scaling at all.

The ordinary (unmoderated) t from the fit and its moderated p-value are
carried alongside so the bundle can be ranked by any of them.
"""

import warnings

import numpy as np
import pandas as pd
from scipy.stats import false_discovery_control
from typing import Optional

from dexsim.exceptions import DegenerateVarianceError, DimensionMismatchError
from dexsim.fit import _check_matrix, check_design


DEGENERATE_POLICIES = ("raise", "exclude", "infinite")

BUNDLE_COLUMNS = [
    "feature",
    "classical_t",
    "moderated_t",
    "ordinary_t",
    "log_fold_change",
    "p_value",
    "adj_p_value",
]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def classical_t(
    row,
    groups,
    equal_var: bool = False,
    feature_index: Optional[int] = None,
) -> float:
    """
    Two-sample t-statistic for a single feature.

    Parameters
    ----------
    row : array-like
        Expression values of one feature, one per sample.
    groups : array-like of {0, 1}
        Group label per sample. The statistic is group 1 minus group 0.
    equal_var : bool
        False (default) → Welch: (m1 − m0) / sqrt(v1/n1 + v0/n0).
        True            → pooled-variance Student t, the convention used by
                          the linear model fit.
    feature_index : int, optional
        Row index reported in DegenerateVarianceError.

    Returns
    -------
    float

    Raises
    ------
    ValueError
        If the row contains NaN or infinite values.
    DegenerateVarianceError
        If every value within either group is identical.
    InvalidDesignError
        If either group has fewer than 2 samples.
    DimensionMismatchError
        If len(groups) != len(row).

    Notes
    -----
    With equal group sizes the Welch and pooled statistics coincide.
    """
    row = np.asarray(row, dtype=float)
    if not np.isfinite(row).all():
        raise ValueError("Expression row contains non-finite values.")
    groups = check_design(groups, row.shape[0])

    x0 = row[groups == 0]
    x1 = row[groups == 1]

    if np.ptp(x0) == 0 or np.ptp(x1) == 0:
        raise DegenerateVarianceError(
            "Zero within-group variance; t-statistic is undefined", feature_index
        )

    return float(_t_from_groups(x0[None, :], x1[None, :], equal_var)[0])


def classical_t_all(
    matrix,
    groups,
    equal_var: bool = False,
    on_degenerate: str = "raise",
) -> np.ndarray:
    """
    Vectorised classical_t over every row of a features × samples matrix.

    Parameters
    ----------
    on_degenerate : str
        What to do with features whose within-group variance is zero:

        "raise"    → DegenerateVarianceError naming the first such feature.
        "exclude"  → NaN; the false-discovery evaluator drops NaN scores.
        "infinite" → ±inf with the sign of the mean difference (0 when the
                     group means are equal as well).

    Returns
    -------
    np.ndarray
        One statistic per feature.
    """
    _check_policy(on_degenerate)
    matrix = _check_matrix(matrix)
    groups = check_design(groups, matrix.shape[1])

    x0 = matrix[:, groups == 0]
    x1 = matrix[:, groups == 1]

    degenerate = (np.ptp(x0, axis=1) == 0) | (np.ptp(x1, axis=1) == 0)
    if degenerate.any() and on_degenerate == "raise":
        first = int(np.flatnonzero(degenerate)[0])
        raise DegenerateVarianceError(
            f"Zero within-group variance in {int(degenerate.sum())} feature(s)", first
        )

    with np.errstate(divide="ignore", invalid="ignore"):
        stat = _t_from_groups(x0, x1, equal_var)

    if degenerate.any():
        if on_degenerate == "exclude":
            stat[degenerate] = np.nan
        else:
            diff = x1.mean(axis=1) - x0.mean(axis=1)
            stat[degenerate] = np.sign(diff[degenerate]) * np.inf
            stat[degenerate & (diff == 0)] = 0.0
    return stat


def log_fold_change(fit: pd.DataFrame) -> np.ndarray:
    """Group-1 minus group-0 coefficient from a fitted model."""
    return fit["coefficient"].values.astype(float)


def assemble_bundle(
    matrix,
    groups,
    fit: pd.DataFrame,
    on_degenerate: str = "raise",
    equal_var: bool = False,
) -> pd.DataFrame:
    """
    Combine the competing statistics into one row per feature.

    Parameters
    ----------
    matrix : np.ndarray or pd.DataFrame
        Features × samples expression matrix. When a DataFrame is given its
        index supplies the feature names; otherwise features are numbered
        from 0.
    groups : array-like of {0, 1}
        Group label per sample column.
    fit : pd.DataFrame
        Output of dexsim.fit.fit_model for the same matrix and groups.
    on_degenerate : str
        Policy for zero-variance features, see classical_t_all. With
        "exclude" a warning reports how many features were dropped.
    equal_var : bool
        Variance convention for the classical t.

    Returns
    -------
    pd.DataFrame
        Columns: feature, classical_t, moderated_t, ordinary_t,
        log_fold_change, p_value, adj_p_value (Benjamini–Hochberg).

    Raises
    ------
    DimensionMismatchError
        If the fit does not have one row per feature.
    DegenerateVarianceError
        Under on_degenerate="raise", naming the first offending feature.
    ValueError
        If the matrix contains NaN or infinite values.
    """
    if isinstance(matrix, pd.DataFrame):
        features = matrix.index.tolist()
        values = matrix.values.astype(float)
    else:
        values = np.asarray(matrix, dtype=float)
        features = list(range(values.shape[0]))

    if len(fit) != values.shape[0]:
        raise DimensionMismatchError(
            f"Fit has {len(fit)} rows but the matrix has {values.shape[0]} features."
        )

    ct = classical_t_all(values, groups, equal_var=equal_var, on_degenerate=on_degenerate)

    n_excluded = int(np.isnan(ct).sum())
    if n_excluded:
        warnings.warn(
            f"{n_excluded} feature(s) with zero within-group variance excluded "
            "from classical-t ranking."
        )

    p_value = fit["p_value"].values.astype(float)

    return pd.DataFrame({
        "feature": features,
        "classical_t": ct,
        "moderated_t": fit["moderated_t"].values.astype(float),
        "ordinary_t": fit["ordinary_t"].values.astype(float),
        "log_fold_change": log_fold_change(fit),
        "p_value": p_value,
        "adj_p_value": false_discovery_control(p_value, method="bh"),
    })[BUNDLE_COLUMNS]


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _t_from_groups(x0, x1, equal_var):
    """Row-wise t-statistic for two (features × samples) blocks."""
    n0 = x0.shape[1]
    n1 = x1.shape[1]
    m0 = x0.mean(axis=1)
    m1 = x1.mean(axis=1)
    v0 = x0.var(axis=1, ddof=1)
    v1 = x1.var(axis=1, ddof=1)

    if equal_var:
        pooled = ((n0 - 1) * v0 + (n1 - 1) * v1) / (n0 + n1 - 2)
        se = np.sqrt(pooled * (1.0 / n0 + 1.0 / n1))
    else:
        se = np.sqrt(v0 / n0 + v1 / n1)
    return (m1 - m0) / se


def _check_policy(on_degenerate):
    if on_degenerate not in DEGENERATE_POLICIES:
        raise ValueError(
            f"Unknown on_degenerate policy '{on_degenerate}'. "
            "Choose from: 'raise', 'exclude', 'infinite'."
        )
