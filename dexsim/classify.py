"""
dexsim/classify.py

Classification of samples from expression profiles.

Thin wrappers over scikit-learn for the companion workflow: train a
classifier on a samples × features matrix, predict, and estimate accuracy
by cross-validation or bootstrap resampling.

    "svm"  — support vector machine (linear kernel unless overridden)
    "knn"  — k-nearest neighbours
    "tsp"  — k top-scoring pairs (Geman et al. 2004; Tan et al. 2005), a
             rank-based rule that only compares genes within a sample,
             so it is invariant to per-sample normalisation

Note that the matrices here are samples × features (scikit-learn
convention), the transpose of the simulation matrices.
"""

import numpy as np
from sklearn.base import BaseEstimator, ClassifierMixin, clone
from sklearn.model_selection import LeaveOneOut, StratifiedKFold, cross_val_score
from sklearn.neighbors import KNeighborsClassifier
from sklearn.svm import SVC
from sklearn.utils.validation import check_is_fitted, check_X_y, check_array
from typing import Optional, Union

from dexsim.exceptions import DimensionMismatchError, InvalidDesignError
from dexsim.stats import classical_t_all


METHODS = ("svm", "knn", "tsp")


# ---------------------------------------------------------------------------
# Top-scoring pairs
# ---------------------------------------------------------------------------

class TopScoringPairClassifier(ClassifierMixin, BaseEstimator):
    """
    k-TSP classifier for two classes.

    For every gene pair (i, j) the score is
    ``|P(x_i < x_j | class A) − P(x_i < x_j | class B)|``. The ``n_pairs``
    highest-scoring disjoint pairs are kept and each votes for the class in
    which its observed ordering is more frequent.

    Parameters
    ----------
    n_pairs : int
        Number of disjoint pairs to keep. Must be odd so votes cannot tie.
    max_features : int, optional
        Pair scores are quadratic in the number of genes, so genes are
        first filtered to the max_features with the largest Welch |t|.
        None uses every gene.
    """

    def __init__(self, n_pairs: int = 1, max_features: Optional[int] = 200):
        self.n_pairs = n_pairs
        self.max_features = max_features

    def fit(self, X, y):
        X, y = check_X_y(X, y)
        if self.n_pairs < 1 or self.n_pairs % 2 == 0:
            raise ValueError(f"n_pairs must be a positive odd number, got {self.n_pairs}.")

        self.classes_, encoded = np.unique(y, return_inverse=True)
        if self.classes_.size != 2:
            raise InvalidDesignError(
                f"Top-scoring pairs needs exactly 2 classes, got {self.classes_.size}."
            )

        candidates = self._candidate_features(X, encoded)
        Xc = X[:, candidates]

        p0 = _pair_frequencies(Xc[encoded == 0])
        p1 = _pair_frequencies(Xc[encoded == 1])
        delta = np.abs(p0 - p1)

        # Upper triangle only; each unordered pair scored once.
        iu, ju = np.triu_indices(candidates.size, k=1)
        pair_scores = delta[iu, ju]
        order = np.argsort(-pair_scores, kind="stable")

        pairs, scores, directions = [], [], []
        used = set()
        for idx in order:
            i, j = int(iu[idx]), int(ju[idx])
            if i in used or j in used:
                continue
            pairs.append((int(candidates[i]), int(candidates[j])))
            scores.append(float(pair_scores[idx]))
            # True → "x_i < x_j" is the class-1 ordering.
            directions.append(bool(p1[i, j] > p0[i, j]))
            used.update((i, j))
            if len(pairs) == self.n_pairs:
                break

        if len(pairs) < self.n_pairs:
            raise ValueError(
                f"Only {len(pairs)} disjoint pairs available for n_pairs={self.n_pairs}."
            )

        self.pairs_ = pairs
        self.pair_scores_ = np.array(scores)
        self._directions = np.array(directions)
        self.n_features_in_ = X.shape[1]
        return self

    def predict(self, X):
        check_is_fitted(self, "pairs_")
        X = check_array(X)
        if X.shape[1] != self.n_features_in_:
            raise DimensionMismatchError(
                f"X has {X.shape[1]} features, expected {self.n_features_in_}."
            )
        i, j = np.array(self.pairs_).T
        less = X[:, i] < X[:, j]
        votes_for_1 = (less == self._directions).sum(axis=1)
        return self.classes_[(votes_for_1 > self.n_pairs / 2).astype(int)]

    def _candidate_features(self, X, encoded):
        n_features = X.shape[1]
        if self.max_features is None or self.max_features >= n_features:
            return np.arange(n_features)
        # The t filter needs two samples per class.
        if np.bincount(encoded).min() < 2:
            return np.arange(n_features)
        t = classical_t_all(X.T, encoded, on_degenerate="exclude")
        strength = np.nan_to_num(np.abs(t), nan=0.0)
        return np.sort(np.argsort(-strength, kind="stable")[: self.max_features])


# ---------------------------------------------------------------------------
# Train / predict / validate
# ---------------------------------------------------------------------------

def make_classifier(method: str = "svm", **params):
    """
    Build an unfitted classifier.

    Parameters
    ----------
    method : str
        "svm", "knn" or "tsp".
    **params
        Passed to the estimator constructor. For "svm" the kernel defaults
        to "linear".

    Raises
    ------
    ValueError
        If method is unknown.
    """
    if method == "svm":
        params.setdefault("kernel", "linear")
        return SVC(**params)
    elif method == "knn":
        return KNeighborsClassifier(**params)
    elif method == "tsp":
        return TopScoringPairClassifier(**params)
    else:
        raise ValueError(
            f"Unknown method '{method}'. Choose from: 'svm', 'knn', 'tsp'."
        )


def train(features, labels, method: str = "svm", **params):
    """Fit a classifier on a samples × features matrix."""
    features, labels = _check_samples(features, labels)
    return make_classifier(method, **params).fit(features, labels)


def predict(model, features) -> np.ndarray:
    """Predicted labels for a samples × features matrix."""
    return model.predict(np.asarray(features, dtype=float))


def cross_validate(
    features,
    labels,
    method: str = "svm",
    folds: Union[int, str] = 5,
    n_bootstrap: int = 100,
    seed: Optional[int] = 0,
    **params,
) -> dict:
    """
    Estimate classification accuracy by resampling.

    Parameters
    ----------
    features : array-like
        Samples × features matrix.
    labels : array-like
        Class label per sample.
    method : str
        Classifier, see make_classifier.
    folds : int or str
        int         → stratified k-fold with that many folds (shuffled).
        "loo"       → leave-one-out.
        "bootstrap" → out-of-bag accuracy over n_bootstrap resamples.
    n_bootstrap : int
        Resamples for folds="bootstrap".
    seed : int, optional
        Random seed for fold shuffling and bootstrap draws.
    **params
        Classifier parameters.

    Returns
    -------
    dict
        accuracy     — mean accuracy over splits
        accuracy_sd  — SD of the per-split accuracy
        n_splits     — number of splits that were scored
        method       — classifier name
        validation   — "kfold", "loo" or "bootstrap"
    """
    features, labels = _check_samples(features, labels)
    model = make_classifier(method, **params)

    if folds == "bootstrap":
        scores = _bootstrap_scores(model, features, labels, n_bootstrap, seed)
        validation = "bootstrap"
    elif folds == "loo":
        scores = cross_val_score(model, features, labels, cv=LeaveOneOut())
        validation = "loo"
    elif isinstance(folds, (int, np.integer)) and not isinstance(folds, bool):
        cv = StratifiedKFold(n_splits=int(folds), shuffle=True, random_state=seed)
        scores = cross_val_score(model, features, labels, cv=cv)
        validation = "kfold"
    else:
        raise ValueError(
            f"Unknown folds '{folds}'. Use an int, 'loo' or 'bootstrap'."
        )

    scores = np.asarray(scores, dtype=float)
    return {
        "accuracy": round(float(scores.mean()), 4),
        "accuracy_sd": round(float(scores.std()), 4),
        "n_splits": int(scores.size),
        "method": method,
        "validation": validation,
    }


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _pair_frequencies(X):
    """P(x_i < x_j) over the rows of X, as a features × features matrix."""
    freq = np.zeros((X.shape[1], X.shape[1]))
    for row in X:
        freq += row[:, None] < row[None, :]
    return freq / X.shape[0]


def _bootstrap_scores(model, features, labels, n_bootstrap, seed):
    rng = np.random.default_rng(seed)
    n = labels.shape[0]
    scores = []
    for _ in range(n_bootstrap):
        idx = rng.integers(0, n, size=n)
        oob = np.setdiff1d(np.arange(n), idx)
        # Skip draws that leave nothing to score or fewer than two samples
        # of either class to learn from.
        _, counts = np.unique(labels[idx], return_counts=True)
        if oob.size == 0 or counts.size < 2 or counts.min() < 2:
            continue
        fitted = clone(model).fit(features[idx], labels[idx])
        scores.append(float((fitted.predict(features[oob]) == labels[oob]).mean()))

    if not scores:
        raise ValueError("No usable bootstrap resamples; increase n_bootstrap.")
    return scores


def _check_samples(features, labels):
    features = np.asarray(features, dtype=float)
    labels = np.asarray(labels)
    if features.ndim != 2:
        raise ValueError(f"features must be 2-D (samples × features), got {features.ndim}-D.")
    if labels.shape[0] != features.shape[0]:
        raise DimensionMismatchError(
            f"{labels.shape[0]} labels for {features.shape[0]} samples."
        )
    return features, labels
