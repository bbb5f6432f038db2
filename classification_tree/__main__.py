"""
Run an experiment sweep from a JSON configuration.

Usage:
    python -m classification_tree config/expe.json
    python -m classification_tree config/expe.json --workers 4 --splits 5 \\
        --plot results/merge_curves.png -v
"""

import argparse
import os
import sys
from collections import OrderedDict

import numpy as np
from loguru import logger

from .config import load_config
from .data import load_all_datasets
from .errors import InputError
from .harness import ExperimentHarness
from .plotting import plot_merge_curves
from .report import ReportRenderer

LOG_FORMAT = "{time:HH:mm:ss}|{level:<7}|{message}"


def setup_logging(verbose: bool = False, log_file: str = None):
    logger.enable("classification_tree")
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO",
               format=LOG_FORMAT)
    if log_file:
        logger.add(log_file, rotation="30 MB", level="DEBUG")


def parse_args(argv=None):
    p = argparse.ArgumentParser(
        prog="python -m classification_tree",
        description="Build and merge classification trees over a "
                    "parameter sweep and write LaTeX result tables.")
    p.add_argument("config", help="experiment JSON file")
    p.add_argument("--base-dir", default=None,
                   help="directory relative config paths resolve against "
                        "(default: current directory)")
    p.add_argument("--workers", type=int, default=1,
                   help="worker processes (default: 1)")
    p.add_argument("--splits", type=int, default=10,
                   help="random train/test splits per dataset (default: 10)")
    p.add_argument("--test-size", type=float, default=0.2,
                   help="test fraction; 0 trains on everything (default: 0.2)")
    p.add_argument("--seed", type=int, default=42)
    p.add_argument("--plot", default=None,
                   help="write test accuracy vs mergePercentage to this PNG")
    p.add_argument("--log-file", default=None)
    p.add_argument("-v", "--verbose", action="store_true")
    return p.parse_args(argv)


def print_summary(results):
    """Mean test accuracy and size per dataset, D and split mode."""
    groups = OrderedDict()
    for r in results:
        key = (r.dataset, r.method, r.params["D"], r.params["multivariate"])
        groups.setdefault(key, []).append(r)

    print(f"\n{'=' * 96}")
    print("SUMMARY (means over splits, lambd and mergePercentage)")
    print(f"{'=' * 96}")
    print(f"{'Dataset':<30} {'Method':<12} {'D':>3} {'Mode':<6} "
          f"|{'Train':>8} {'Test':>8} |{'Leaves':>8} {'Built':>8} "
          f"|{'Time':>7} {'TO':>4}")
    print("─" * 96)
    for (name, method, depth, mv), runs in groups.items():
        test = np.array([r.test_accuracy for r in runs], dtype=float)
        test_txt = (f"{np.nanmean(test):>8.4f}"
                    if np.any(~np.isnan(test)) else f"{'--':>8}")
        print(f"{name:<30} {method:<12} {depth:>3} "
              f"{'multi' if mv else 'uni':<6} "
              f"|{np.mean([r.train_accuracy for r in runs]):>8.4f} "
              f"{test_txt} "
              f"|{np.mean([r.n_leaves for r in runs]):>8.1f} "
              f"{np.mean([r.n_leaves_before for r in runs]):>8.1f} "
              f"|{np.mean([r.build_time for r in runs]):>7.3f} "
              f"{sum(r.timed_out for r in runs):>4}")
    print("─" * 96)


def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging(args.verbose, args.log_file)

    try:
        config = load_config(args.config, args.base_dir)
        datasets = load_all_datasets(config.instances_path)
        if not datasets:
            logger.error(f"No datasets loaded from {config.instances_path}")
            return 1

        harness = ExperimentHarness(config, n_workers=args.workers,
                                    n_splits=args.splits,
                                    test_size=args.test_size,
                                    random_state=args.seed)
        results = harness.run(datasets)

        if config.latex_format_paths and config.latex_output_file:
            renderer = ReportRenderer.from_paths(config.latex_format_paths)
            renderer.write(results, config.latex_output_file)
    except (InputError, OSError) as e:
        logger.error(str(e))
        return 2

    print_summary(results)

    if args.plot:
        out_dir = os.path.dirname(args.plot)
        if out_dir:
            os.makedirs(out_dir, exist_ok=True)
        metric = "test_accuracy" if args.test_size > 0 else "train_accuracy"
        plot_merge_curves(results, metric, args.plot)
        logger.info(f"Saved merge curves to {args.plot}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
