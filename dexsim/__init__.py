"""
dexsim — Differential EXpression statistic SIMulation

Top-level package exposing the dexsim public API.
"""

from dexsim import simulate
from dexsim.simulate import simulate_expression, simulate_expression_frame, get_ground_truth
from dexsim.fit import fit_model, lm_fit, ebayes, squeeze_var
from dexsim.stats import classical_t, classical_t_all, log_fold_change, assemble_bundle
from dexsim.evaluate import (
    false_discovery_curve,
    compare_statistics,
    evaluation_report,
    top_table,
)
from dexsim.classify import train, predict, cross_validate, TopScoringPairClassifier
from dexsim.config import SimulationConfig, load_config
from dexsim.pipeline import run_comparison, repeat_trials
from dexsim.exceptions import (
    DexsimError,
    DegenerateVarianceError,
    DimensionMismatchError,
    InvalidDesignError,
)

__version__ = "0.1.0"
__all__ = [
    "simulate",
    "simulate_expression",
    "simulate_expression_frame",
    "get_ground_truth",
    "fit_model",
    "lm_fit",
    "ebayes",
    "squeeze_var",
    "classical_t",
    "classical_t_all",
    "log_fold_change",
    "assemble_bundle",
    "false_discovery_curve",
    "compare_statistics",
    "evaluation_report",
    "top_table",
    "train",
    "predict",
    "cross_validate",
    "TopScoringPairClassifier",
    "SimulationConfig",
    "load_config",
    "run_comparison",
    "repeat_trials",
    "DexsimError",
    "DegenerateVarianceError",
    "DimensionMismatchError",
    "InvalidDesignError",
]
