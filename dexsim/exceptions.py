"""
dexsim/exceptions.py

Error types raised at the boundaries of the simulation pipeline.

All of them subclass ValueError as well as DexsimError, so callers that
already guard numeric code with ``except ValueError`` keep working.
"""

from typing import Optional


class DexsimError(Exception):
    """Base class for pipeline errors."""


class DimensionMismatchError(DexsimError, ValueError):
    """A label sequence does not match the matrix it accompanies."""


class InvalidDesignError(DexsimError, ValueError):
    """The group assignment cannot support a two-group comparison."""


class DegenerateVarianceError(DexsimError, ValueError):
    """
    A group's sample variance is exactly zero for a feature.

    Parameters
    ----------
    message : str
        Human-readable description.
    feature_index : int, optional
        Row index of the offending feature, when known.
    """

    def __init__(self, message: str, feature_index: Optional[int] = None):
        if feature_index is not None:
            message = f"{message} (feature index {feature_index})"
        super().__init__(message)
        self.feature_index = feature_index
