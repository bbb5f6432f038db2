"""Merge curves: a metric against mergePercentage."""

from collections import OrderedDict
from typing import Optional, Sequence

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np

from .harness import METRICS, RunResult
from .report import METRIC_LABELS


def merge_curves(results: Sequence[RunResult], metric: str,
                 dataset: Optional[str] = None) -> "OrderedDict":
    """{(D, multivariate): (percentages, means)} averaged over the rest."""
    if metric not in METRICS:
        raise ValueError(f"Unknown metric {metric!r}")
    acc = OrderedDict()
    for r in results:
        if dataset is not None and r.dataset != dataset:
            continue
        key = (r.params["D"], r.params["multivariate"])
        v = float(r.value(metric))
        if np.isnan(v):
            continue
        acc.setdefault(key, {}).setdefault(
            float(r.params["mergePercentage"]), []).append(v)

    curves = OrderedDict()
    for key in sorted(acc, key=lambda k: (k[0], k[1])):
        pcts = sorted(acc[key])
        curves[key] = (np.array(pcts),
                       np.array([np.mean(acc[key][p]) for p in pcts]))
    return curves


def plot_merge_curves(results: Sequence[RunResult], metric: str, path: str,
                      dataset: Optional[str] = None) -> str:
    curves = merge_curves(results, metric, dataset)

    fig, ax = plt.subplots(figsize=(7, 4.5))
    for (depth, multivariate), (x, y) in curves.items():
        style = "-" if multivariate else "--"
        mode = "multivariate" if multivariate else "univariate"
        ax.plot(x, y, style, marker="o", markersize=3,
                label=f"D={depth}, {mode}")

    ax.set_xlabel("mergePercentage")
    ax.set_ylabel(METRIC_LABELS[metric])
    ax.set_title(dataset if dataset else "all datasets")
    ax.grid(True, alpha=0.3)
    if curves:
        ax.legend(fontsize=8)
    fig.tight_layout()
    fig.savefig(path, dpi=150)
    plt.close(fig)
    return path
