"""
dexsim/evaluate.py

Ground-truth evaluation of differential-expression rankings.

For a scoring statistic, features are ranked strongest-evidence first and
the top k are "selected". The false-discovery curve counts how many of the
top k selections are truly null, for every k from 1 to N. Curves for
different statistics share the k axis and the ground truth, so they can be
compared directly: the lower the curve, the better the statistic separates
differential from null features.

Note: this is a literal selection count. It is not a calibrated estimate
of the false discovery rate, and it makes no use of the p-value scale
beyond its ordering.
"""

import numpy as np
import pandas as pd

from dexsim.exceptions import DimensionMismatchError


DEFAULT_STATISTICS = ("classical_t", "moderated_t", "log_fold_change")

# Statistic → sort ascending? Signed statistics are ranked by magnitude.
_RANKING = {
    "classical_t": False,
    "moderated_t": False,
    "ordinary_t": False,
    "log_fold_change": False,
    "p_value": True,
    "adj_p_value": True,
}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def false_discovery_curve(scores, truth, ascending: bool = False) -> pd.DataFrame:
    """
    Count false positives among the top-k ranked features, for every k.

    Parameters
    ----------
    scores : array-like of float
        One ranking score per feature. NaN marks a feature excluded from
        ranking; it is dropped before the curve is built.
    truth : array-like of {0, 1}
        Ground-truth label per feature (1 = truly differential).
    ascending : bool
        False → larger scores are stronger evidence (e.g. |t|).
        True  → smaller scores are stronger evidence (e.g. p-values).

    Returns
    -------
    pd.DataFrame
        Columns k (1..n_ranked) and false_count. false_count is
        non-decreasing and ends at the number of ranked null features.

    Raises
    ------
    DimensionMismatchError
        If scores and truth differ in length.
    ValueError
        If truth contains values other than 0 and 1.
    """
    scores = np.asarray(scores, dtype=float)
    truth = _check_truth(truth, scores.shape[0])

    order = ranking_order(scores, ascending=ascending)
    false_count = np.cumsum(truth[order] == 0)

    return pd.DataFrame({
        "k": np.arange(1, order.size + 1),
        "false_count": false_count.astype(int),
    })


def ranking_order(scores, ascending: bool = False) -> np.ndarray:
    """
    Feature indices, strongest evidence first.

    Ties keep ascending feature index (stable sort); NaN scores are
    omitted.
    """
    scores = np.asarray(scores, dtype=float)
    keep = np.flatnonzero(~np.isnan(scores))
    key = scores[keep] if ascending else -scores[keep]
    return keep[np.argsort(key, kind="stable")]


def rank_scores(bundle: pd.DataFrame, statistic: str) -> tuple:
    """
    Convert a bundle column into a ranking score.

    Returns
    -------
    tuple of (np.ndarray, bool)
        (scores, ascending). t-statistics and log fold changes are ranked
        by absolute value, descending; p-values ascending.

    Raises
    ------
    ValueError
        If statistic is not a known bundle column.
    """
    if statistic not in _RANKING:
        raise ValueError(
            f"Unknown statistic '{statistic}'. "
            f"Choose from: {', '.join(repr(s) for s in _RANKING)}."
        )
    ascending = _RANKING[statistic]
    values = bundle[statistic].values.astype(float)
    return (values if ascending else np.abs(values)), ascending


def compare_statistics(
    bundle: pd.DataFrame,
    truth,
    statistics=DEFAULT_STATISTICS,
) -> pd.DataFrame:
    """
    False-discovery curves for several statistics on a shared k axis.

    Parameters
    ----------
    bundle : pd.DataFrame
        Output of dexsim.stats.assemble_bundle.
    truth : array-like of {0, 1}
        Ground-truth label per feature.
    statistics : sequence of str
        Bundle columns to compare.

    Returns
    -------
    pd.DataFrame
        Column k plus one false_count column per statistic, named after the
        statistic. If a statistic excluded features (NaN scores), its
        column is NaN beyond its last ranked k.
    """
    curves = []
    for stat in statistics:
        scores, ascending = rank_scores(bundle, stat)
        curve = false_discovery_curve(scores, truth, ascending=ascending)
        curves.append(curve.set_index("k")["false_count"].rename(stat))

    return pd.concat(curves, axis=1).rename_axis("k").reset_index()


def top_table(bundle: pd.DataFrame, by: str = "p_value", n: int = 10) -> pd.DataFrame:
    """
    The n top-ranked features of a bundle, in the order the curve uses.

    Parameters
    ----------
    bundle : pd.DataFrame
        Output of dexsim.stats.assemble_bundle.
    by : str
        Statistic to rank by (see rank_scores).
    n : int
        Number of rows to return.

    Returns
    -------
    pd.DataFrame
        Subset of bundle rows with a fresh 0..n-1 index and a ``rank``
        column starting at 1.
    """
    scores, ascending = rank_scores(bundle, by)
    order = ranking_order(scores, ascending=ascending)[:n]
    table = bundle.iloc[order].reset_index(drop=True)
    table.insert(0, "rank", np.arange(1, len(table) + 1))
    return table


def evaluation_report(
    bundle: pd.DataFrame,
    truth,
    k: int,
    statistics=DEFAULT_STATISTICS,
) -> pd.DataFrame:
    """
    Selection accuracy of each statistic at a fixed cut-off.

    Parameters
    ----------
    bundle : pd.DataFrame
        Output of dexsim.stats.assemble_bundle.
    truth : array-like of {0, 1}
        Ground-truth label per feature.
    k : int
        Number of top-ranked features selected. Clipped to the number of
        ranked features.

    Returns
    -------
    pd.DataFrame
        One row per statistic: statistic, k, false_positives,
        true_positives, precision, recall.
    """
    if k < 1:
        raise ValueError(f"k must be at least 1, got {k}.")

    truth = _check_truth(truth, len(bundle))
    n_true = int(truth.sum())

    records = []
    for stat in statistics:
        scores, ascending = rank_scores(bundle, stat)
        selected = ranking_order(scores, ascending=ascending)[:k]
        tp = int(truth[selected].sum())
        fp = int(selected.size - tp)
        records.append({
            "statistic": stat,
            "k": int(selected.size),
            "false_positives": fp,
            "true_positives": tp,
            "precision": round(tp / selected.size, 3) if selected.size else 0.0,
            "recall": round(tp / n_true, 3) if n_true else 0.0,
        })
    return pd.DataFrame(records)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _check_truth(truth, n_features):
    truth = np.asarray(truth)
    if truth.ndim != 1 or truth.shape[0] != n_features:
        raise DimensionMismatchError(
            f"Ground-truth labels have length {truth.size}, expected {n_features}."
        )
    if not np.isin(truth, (0, 1)).all():
        raise ValueError("Ground-truth labels must be 0 or 1.")
    return truth.astype(int)
