"""
dexsim/config.py

Simulation parameters and their JSON configuration files.
"""

import json
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Optional, Union

from dexsim.stats import DEGENERATE_POLICIES


@dataclass
class SimulationConfig:
    """
    Parameters of one statistic-comparison run.

    The first six fields are the generation parameters of
    dexsim.simulate.simulate_expression. on_degenerate decides how
    zero-variance features are ranked (see dexsim.stats.classical_t_all);
    report_k is the cut-off used for the summary report and n_trials the
    number of seeds used by repeated runs.
    """

    n_features: int = 1000
    n_samples: int = 6
    diff_fraction: float = 0.1
    true_fold_change: float = 2.0
    prior_df: float = 4.0
    prior_scale: float = 0.3
    seed: Optional[int] = 42
    on_degenerate: str = "raise"
    report_k: int = 100
    n_trials: int = 10

    def __post_init__(self):
        if self.on_degenerate not in DEGENERATE_POLICIES:
            raise ValueError(
                f"Unknown on_degenerate policy '{self.on_degenerate}'. "
                "Choose from: 'raise', 'exclude', 'infinite'."
            )
        if self.report_k < 1:
            raise ValueError(f"report_k must be at least 1, got {self.report_k}.")
        if self.n_trials < 1:
            raise ValueError(f"n_trials must be at least 1, got {self.n_trials}.")

    @classmethod
    def from_dict(cls, data: dict) -> "SimulationConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown config keys: {', '.join(unknown)}.")
        return cls(**data)

    def simulation_params(self) -> dict:
        """Keyword arguments for simulate_expression."""
        return {
            "n_features": self.n_features,
            "n_samples": self.n_samples,
            "diff_fraction": self.diff_fraction,
            "true_fold_change": self.true_fold_change,
            "prior_df": self.prior_df,
            "prior_scale": self.prior_scale,
            "seed": self.seed,
        }

    def to_dict(self) -> dict:
        return asdict(self)


def load_json_config(path: Union[str, Path]) -> dict[str, Any]:
    """Load a config mapping from a JSON file."""
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")
    if config_path.suffix.lower() != ".json":
        raise ValueError(
            f"Unsupported config format for '{config_path}'. Use a .json config file."
        )

    try:
        with open(config_path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
    except json.JSONDecodeError as exc:
        raise ValueError(
            f"Invalid JSON in config '{config_path}' at line {exc.lineno}, "
            f"column {exc.colno}: {exc.msg}"
        ) from exc

    if not isinstance(data, dict):
        raise ValueError(
            f"Invalid config root in '{config_path}': expected JSON object, got {type(data).__name__}."
        )
    return data


def load_config(path: Union[str, Path]) -> SimulationConfig:
    """Read a JSON file into a SimulationConfig."""
    return SimulationConfig.from_dict(load_json_config(path))
