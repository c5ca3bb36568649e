"""Command-line interface for dexsim statistic comparisons."""

import argparse
import logging
import sys
from typing import Optional, Sequence

from dexsim.config import SimulationConfig, load_json_config
from dexsim.exceptions import DexsimError
from dexsim.pipeline import repeat_trials, run_comparison

logger = logging.getLogger(__name__)

_PARAMS = (
    ("n_features", int),
    ("n_samples", int),
    ("diff_fraction", float),
    ("true_fold_change", float),
    ("prior_df", float),
    ("prior_scale", float),
    ("seed", int),
    ("on_degenerate", str),
    ("report_k", int),
    ("n_trials", int),
)


def setup_logging(level: str = "INFO") -> logging.Logger:
    root = logging.getLogger("dexsim")
    root.setLevel(level.upper())
    root.handlers.clear()
    formatter = logging.Formatter("%(asctime)s | %(levelname)s | %(message)s")
    sh = logging.StreamHandler()
    sh.setFormatter(formatter)
    root.addHandler(sh)
    return root


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dexsim",
        description="Compare classical t, moderated t and log fold change on simulated data.",
    )
    parser.add_argument("--log-level", default="INFO")
    sub = parser.add_subparsers(dest="command", required=True)

    compare = sub.add_parser("compare", help="Single run; print false-discovery curves.")
    _add_config_args(compare)
    compare.add_argument(
        "--cutoffs", type=int, nargs="+", default=[10, 50, 100, 200, 500],
        help="k values at which to print the curves.",
    )

    trials = sub.add_parser("trials", help="Repeated seeded runs; print per-trial summary.")
    _add_config_args(trials)

    return parser


def config_from_args(args: argparse.Namespace) -> SimulationConfig:
    """Config file values, overridden by any parameter given on the command line."""
    data = load_json_config(args.config) if args.config else {}
    for name, _ in _PARAMS:
        value = getattr(args, name)
        if value is not None:
            data[name] = value
    return SimulationConfig.from_dict(data)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        setup_logging(args.log_level)
        config = config_from_args(args)
        if args.command == "compare":
            result = run_comparison(config)
            curves = result["curves"]
            print(curves[curves["k"].isin(args.cutoffs)].to_string(index=False))
            print()
            print(result["report"].to_string(index=False))
        else:
            summary = repeat_trials(config)
            print(summary.to_string(index=False))
            print()
            print(summary.drop(columns="seed").mean().to_string())
    except (DexsimError, ValueError, FileNotFoundError) as exc:
        logger.error("%s", exc)
        return 1
    return 0


def _add_config_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", help="JSON file with simulation parameters.")
    for name, kind in _PARAMS:
        parser.add_argument(f"--{name.replace('_', '-')}", dest=name, type=kind, default=None)


if __name__ == "__main__":
    sys.exit(main())
