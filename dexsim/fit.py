"""
dexsim/fit.py

Linear model fit with empirical Bayes variance moderation.

This is the model-fitting seam of the pipeline. The default fitter follows
the limma approach (Smyth 2004):

    1. Fit the same two-column design (intercept, group indicator) to every
       feature by ordinary least squares.
    2. Treat the residual variances s2_g as draws from a scaled inverse
       chi-square prior, and estimate the prior (s2_prior, df_prior) by the
       method of moments on log(s2_g).
    3. Shrink each s2_g towards s2_prior, weighting by degrees of freedom,
       and use the shrunk variance in the t-statistic (the moderated t).

Any other callable with the same output columns can be passed to
fit_model() in place of the default.
"""

import warnings

import numpy as np
import pandas as pd
from scipy import special
from scipy.stats import t as t_dist
from typing import Callable, Optional

from dexsim.exceptions import DimensionMismatchError, InvalidDesignError


REQUIRED_COLUMNS = (
    "coefficient",
    "stdev_unscaled",
    "sigma",
    "df_residual",
    "moderated_t",
    "df_total",
    "p_value",
)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def fit_model(
    matrix: np.ndarray,
    groups,
    fitter: Optional[Callable] = None,
) -> pd.DataFrame:
    """
    Fit the two-group model to every feature and moderate the variances.

    Parameters
    ----------
    matrix : np.ndarray
        Features × samples expression matrix. All entries must be finite.
    groups : array-like of {0, 1}
        Group label per sample column.
    fitter : callable, optional
        ``fitter(matrix, groups) -> pd.DataFrame`` returning one row per
        feature with at least the columns in REQUIRED_COLUMNS. Defaults to
        ``ebayes(lm_fit(matrix, groups))``.

    Returns
    -------
    pd.DataFrame
        One row per feature. Always includes ``ordinary_t``; it is derived
        as coefficient / (stdev_unscaled * sigma) when the fitter omits it.

    Raises
    ------
    DimensionMismatchError
        If len(groups) != n_samples, or the fitter returns the wrong number
        of rows.
    InvalidDesignError
        If either group has fewer than 2 samples.
    ValueError
        If the matrix has non-finite entries or the fitter output is
        missing required columns.
    """
    matrix = _check_matrix(matrix)
    groups = check_design(groups, matrix.shape[1])

    if fitter is None:
        result = ebayes(lm_fit(matrix, groups))
    else:
        result = fitter(matrix, groups)

    missing = [c for c in REQUIRED_COLUMNS if c not in result.columns]
    if missing:
        raise ValueError(f"Fitter output is missing columns: {missing}.")
    if len(result) != matrix.shape[0]:
        raise DimensionMismatchError(
            f"Fitter returned {len(result)} rows for {matrix.shape[0]} features."
        )

    if "ordinary_t" not in result.columns:
        result = result.copy()
        result["ordinary_t"] = _ordinary_t(
            result["coefficient"].values,
            result["stdev_unscaled"].values,
            result["sigma"].values,
        )
    return result


def design_matrix(groups) -> np.ndarray:
    """Intercept plus group-indicator design, shape (n_samples, 2)."""
    groups = np.asarray(groups, dtype=float)
    return np.column_stack([np.ones_like(groups), groups])


def lm_fit(matrix: np.ndarray, groups) -> pd.DataFrame:
    """
    Ordinary least squares fit of every feature against the two-group design.

    All features share the same design, so the whole matrix is solved in a
    single lstsq call.

    Returns
    -------
    pd.DataFrame
        intercept       — fitted group-0 mean
        coefficient     — group 1 minus group 0 (the log fold change)
        stdev_unscaled  — sqrt of the (X'X)^-1 diagonal entry for the contrast
        sigma           — residual standard deviation
        df_residual     — n_samples - 2
    """
    matrix = np.asarray(matrix, dtype=float)
    design = design_matrix(groups)
    n_features, n_samples = matrix.shape

    beta, _, rank, _ = np.linalg.lstsq(design, matrix.T, rcond=None)
    if rank < design.shape[1]:
        raise InvalidDesignError("Design matrix is rank deficient.")

    residuals = matrix - (design @ beta).T
    df_residual = n_samples - design.shape[1]
    s2 = (residuals ** 2).sum(axis=1) / df_residual

    unscaled = np.linalg.inv(design.T @ design)

    return pd.DataFrame({
        "intercept": beta[0],
        "coefficient": beta[1],
        "stdev_unscaled": np.full(n_features, np.sqrt(unscaled[1, 1])),
        "sigma": np.sqrt(s2),
        "df_residual": np.full(n_features, df_residual),
    })


def ebayes(fit: pd.DataFrame) -> pd.DataFrame:
    """
    Empirical Bayes moderation of an lm_fit() result.

    Adds the columns s2_prior, df_prior, s2_post, ordinary_t, moderated_t,
    df_total and p_value. The input frame is not modified.

    The total degrees of freedom are capped at the pooled residual degrees
    of freedom across all features, as limma does, so that an infinite
    prior never yields a normal-theory p-value from a handful of samples.
    """
    result = fit.copy()
    s2 = result["sigma"].values ** 2
    df_residual = result["df_residual"].values.astype(float)

    s2_post, s2_prior, df_prior = squeeze_var(s2, df_residual)

    coef = result["coefficient"].values
    unscaled = result["stdev_unscaled"].values

    with np.errstate(divide="ignore", invalid="ignore"):
        moderated_t = coef / (unscaled * np.sqrt(s2_post))

    df_total = np.minimum(df_prior + df_residual, df_residual.sum())

    result["s2_prior"] = s2_prior
    result["df_prior"] = df_prior
    result["s2_post"] = s2_post
    result["ordinary_t"] = _ordinary_t(coef, unscaled, result["sigma"].values)
    result["moderated_t"] = moderated_t
    result["df_total"] = df_total
    result["p_value"] = 2.0 * t_dist.sf(np.abs(moderated_t), df_total)
    return result


def squeeze_var(s2, df) -> tuple:
    """
    Shrink per-feature variances towards a fitted scaled-F prior.

    Parameters
    ----------
    s2 : array-like
        Residual variances, one per feature.
    df : array-like or float
        Residual degrees of freedom for each variance.

    Returns
    -------
    tuple of (np.ndarray, float, float)
        s2_post   — posterior variances
        s2_prior  — prior (location) variance
        df_prior  — prior degrees of freedom; np.inf means complete
                    shrinkage to s2_prior

    Notes
    -----
    s2_post = (df_prior * s2_prior + df * s2) / (df_prior + df)
    """
    s2 = np.asarray(s2, dtype=float)
    df = np.broadcast_to(np.asarray(df, dtype=float), s2.shape)

    s2_prior, df_prior = fit_f_dist(s2, df)

    if np.isinf(df_prior):
        return np.full_like(s2, s2_prior), s2_prior, df_prior

    s2_post = (df_prior * s2_prior + df * s2) / (df_prior + df)
    return s2_post, s2_prior, df_prior


def fit_f_dist(s2, df) -> tuple:
    """
    Moment estimation of a scaled F distribution for sample variances.

    Matches the mean and variance of log(s2) to their expectations under
    s2 ~ s2_prior * F(df, df_prior), using digamma and trigamma.

    Returns
    -------
    tuple of (float, float)
        (s2_prior, df_prior)
    """
    s2 = np.asarray(s2, dtype=float)
    df = np.broadcast_to(np.asarray(df, dtype=float), s2.shape)

    ok = np.isfinite(s2) & np.isfinite(df) & (df > 1e-15)
    x = np.maximum(s2[ok], 0.0)
    d = df[ok]
    n = x.size

    if n == 0:
        raise ValueError("No usable variances to estimate the prior from.")
    if n == 1:
        return float(x[0]), 0.0

    # Zero variances would give log(0); floor them relative to the median.
    m = float(np.median(x))
    if m == 0:
        warnings.warn("More than half of residual variances are exactly zero.")
        m = 1.0
    x = np.maximum(x, 1e-5 * m)

    z = np.log(x)
    e = z - special.digamma(d / 2) + np.log(d / 2)
    emean = float(e.mean())
    evar = float(((e - emean) ** 2).sum() / (n - 1))
    evar -= float(special.polygamma(1, d / 2).mean())

    if evar > 0:
        df_prior = 2.0 * trigamma_inverse(evar)
        s2_prior = float(np.exp(emean + special.digamma(df_prior / 2) - np.log(df_prior / 2)))
    else:
        df_prior = np.inf
        s2_prior = float(np.exp(emean))

    return s2_prior, df_prior


def trigamma_inverse(x: float) -> float:
    """
    Solve trigamma(y) = x for y > 0 by Newton iteration.

    Starting value and stopping rule follow Smyth (2004). Iterating on
    1/trigamma keeps the update monotone, so the method converges from the
    starting point without step control.
    """
    x = float(x)
    if x <= 0:
        raise ValueError(f"trigamma_inverse requires x > 0, got {x}.")
    if x > 1e7:
        return 1.0 / np.sqrt(x)
    if x < 1e-6:
        return 1.0 / x

    y = 0.5 + 1.0 / x
    for _ in range(50):
        tri = float(special.polygamma(1, y))
        dif = tri * (1.0 - tri / x) / float(special.polygamma(2, y))
        y += dif
        if -dif / y < 1e-8:
            break
    else:
        warnings.warn("trigamma_inverse: iteration limit exceeded.")
    return y


def check_design(groups, n_samples: int) -> np.ndarray:
    """
    Validate a group assignment against the matrix it labels.

    Returns
    -------
    np.ndarray
        The groups as an int array.

    Raises
    ------
    DimensionMismatchError
        If groups is not one-dimensional with length n_samples.
    InvalidDesignError
        If labels are not 0/1 or either group has fewer than 2 samples.
    """
    groups = np.asarray(groups)
    if groups.ndim != 1 or groups.shape[0] != n_samples:
        raise DimensionMismatchError(
            f"Group assignment has length {groups.size}, expected {n_samples} "
            "(one label per sample column)."
        )
    if not np.isin(groups, (0, 1)).all():
        raise InvalidDesignError("Group labels must be 0 or 1.")

    groups = groups.astype(int)
    counts = np.bincount(groups, minlength=2)
    if counts.min() < 2:
        raise InvalidDesignError(
            f"Each group needs at least 2 samples, got {counts[0]} and {counts[1]}."
        )
    return groups


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _ordinary_t(coef, stdev_unscaled, sigma):
    with np.errstate(divide="ignore", invalid="ignore"):
        return coef / (stdev_unscaled * sigma)


def _check_matrix(matrix) -> np.ndarray:
    matrix = np.asarray(matrix, dtype=float)
    if matrix.ndim != 2:
        raise ValueError(f"Expression matrix must be 2-D, got {matrix.ndim} dimensions.")
    if not np.isfinite(matrix).all():
        raise ValueError("Expression matrix contains non-finite values.")
    return matrix
