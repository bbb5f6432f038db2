"""
LaTeX tables from harness results.

A table format is a small JSON file::

    {
        "caption": "Test accuracy after merging",
        "label": "tab:accuracy",
        "rowKey": "dataset",
        "columnKeys": ["multivariate", "D"],
        "metrics": ["test_accuracy", "n_leaves"],
        "filters": {"mergePercentage": [0, 50, 100]},
        "precision": 3,
        "bestIsMax": {"test_accuracy": true, "n_leaves": false},
        "pairedTest": {"parameter": "multivariate", "metric": "test_accuracy"}
    }

Every cell is the mean of a metric over the results matching its row and
column (splits and every parameter not named by the table are averaged
out). The best cell of each row and metric is bold and an average row
closes the table.
"""

import json
import os
from collections import OrderedDict
from dataclasses import dataclass, field
from itertools import product
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
from loguru import logger
from scipy import stats

from .config import PARAMETER_KEYS
from .errors import ConfigError
from .harness import METRICS, RunResult

FORMAT_KEYS = ("caption", "label", "rowKey", "columnKeys", "metrics",
               "filters", "precision", "bestIsMax", "pairedTest")

GROUP_KEYS = ("dataset", "method") + tuple(PARAMETER_KEYS)

METRIC_LABELS = {
    "train_accuracy": "train acc.",
    "test_accuracy": "test acc.",
    "n_leaves_before": "leaves (built)",
    "n_leaves": "leaves",
    "n_nodes": "nodes",
    "depth": "depth",
    "build_time": "time (s)",
    "timed_out": "timed out",
}

# Metrics where smaller is better unless a format says otherwise.
_MINIMIZED = {"n_leaves_before", "n_leaves", "n_nodes", "depth",
              "build_time", "timed_out"}

_LATEX_SPECIALS = OrderedDict([
    ("\\", r"\textbackslash{}"),
    ("&", r"\&"), ("%", r"\%"), ("$", r"\$"), ("#", r"\#"), ("_", r"\_"),
    ("{", r"\{"), ("}", r"\}"),
    ("~", r"\textasciitilde{}"), ("^", r"\textasciicircum{}"),
])


def latex_escape(text) -> str:
    return "".join(_LATEX_SPECIALS.get(ch, ch) for ch in str(text))


def format_value(v) -> str:
    if isinstance(v, bool):
        return "true" if v else "false"
    if isinstance(v, float) and v.is_integer():
        return str(int(v))
    return str(v)


# =============================================================================
# TABLE FORMAT
# =============================================================================

@dataclass(frozen=True)
class LatexFormat:
    metrics: Tuple[str, ...]
    caption: str = ""
    label: str = ""
    row_key: str = "dataset"
    column_keys: Tuple[str, ...] = ()
    filters: Dict[str, tuple] = field(default_factory=dict)
    precision: int = 3
    best_is_max: Union[bool, Dict[str, bool], None] = None
    paired_test: Optional[Dict[str, str]] = None

    def is_max(self, metric: str) -> bool:
        if isinstance(self.best_is_max, Mapping):
            if metric in self.best_is_max:
                return bool(self.best_is_max[metric])
        elif self.best_is_max is not None:
            return bool(self.best_is_max)
        return metric not in _MINIMIZED

    @classmethod
    def from_mapping(cls, doc: Mapping, source: str = "") -> "LatexFormat":
        where = f"{source}: " if source else ""
        if not isinstance(doc, Mapping):
            raise ConfigError(f"{where}table format must be a JSON object")
        unknown = [k for k in doc if k not in FORMAT_KEYS]
        if unknown:
            raise ConfigError(f"{where}unknown table format key(s) {unknown}")

        metrics = doc.get("metrics")
        if isinstance(metrics, str):
            metrics = [metrics]
        if not metrics:
            raise ConfigError(f"{where}'metrics' must list at least one metric")
        for m in metrics:
            if m not in METRICS:
                raise ConfigError(f"{where}unknown metric {m!r}, "
                                  f"expected one of {list(METRICS)}")

        row_key = doc.get("rowKey", "dataset")
        column_keys = doc.get("columnKeys", [])
        if isinstance(column_keys, str):
            column_keys = [column_keys]
        for k in [row_key] + list(column_keys):
            if k not in GROUP_KEYS:
                raise ConfigError(f"{where}cannot group by {k!r}, "
                                  f"expected one of {list(GROUP_KEYS)}")
        if row_key in column_keys:
            raise ConfigError(f"{where}{row_key!r} is both row and column key")

        filters = {}
        for k, allowed in (doc.get("filters") or {}).items():
            if k not in GROUP_KEYS:
                raise ConfigError(f"{where}cannot filter on {k!r}")
            if not isinstance(allowed, list):
                allowed = [allowed]
            filters[k] = tuple(allowed)

        precision = doc.get("precision", 3)
        if not isinstance(precision, int) or isinstance(precision, bool) \
                or precision < 0:
            raise ConfigError(f"{where}precision must be an integer >= 0")

        paired = doc.get("pairedTest")
        if paired is not None:
            if (not isinstance(paired, Mapping)
                    or paired.get("parameter") not in PARAMETER_KEYS
                    or paired.get("metric") not in METRICS):
                raise ConfigError(
                    f"{where}pairedTest needs a 'parameter' among "
                    f"{list(PARAMETER_KEYS)} and a 'metric' among "
                    f"{list(METRICS)}")
            paired = dict(paired)

        return cls(metrics=tuple(metrics), caption=doc.get("caption", ""),
                   label=doc.get("label", ""), row_key=row_key,
                   column_keys=tuple(column_keys), filters=filters,
                   precision=precision, best_is_max=doc.get("bestIsMax"),
                   paired_test=paired)


def load_latex_format(path: str) -> LatexFormat:
    try:
        with open(path, "r", encoding="utf-8") as f:
            doc = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"{path}: invalid JSON: {e}") from e
    return LatexFormat.from_mapping(doc, source=path)


# =============================================================================
# PAIRED TEST
# =============================================================================

@dataclass(frozen=True)
class PairedComparison:
    parameter: str
    metric: str
    a: object
    b: object
    n_pairs: int
    mean_diff: float
    statistic: float
    pvalue: float


def paired_comparison(results: Sequence[RunResult], parameter: str,
                      metric: str) -> Optional[PairedComparison]:
    """
    Wilcoxon signed-rank test of ``metric`` between the two values of
    ``parameter``. Runs are paired on everything else (dataset, method,
    split and the other parameters). None unless the parameter takes exactly
    two values and at least three complete pairs exist.
    """
    levels = []
    for r in results:
        v = r.value(parameter)
        if v not in levels:
            levels.append(v)
    if len(levels) != 2:
        return None
    a, b = levels

    pairs = OrderedDict()
    for r in results:
        rest = tuple((k, format_value(v)) for k, v in r.params.items()
                     if k != parameter)
        key = (r.dataset, r.method, r.split, rest)
        slot = pairs.setdefault(key, [None, None])
        slot[0 if r.value(parameter) == a else 1] = float(r.value(metric))

    x = np.array([p[0] for p in pairs.values()
                  if p[0] is not None and p[1] is not None], dtype=float)
    y = np.array([p[1] for p in pairs.values()
                  if p[0] is not None and p[1] is not None], dtype=float)
    ok = ~(np.isnan(x) | np.isnan(y))
    x, y = x[ok], y[ok]
    if len(x) < 3:
        return None

    d = x - y
    if not np.any(d != 0):
        stat, p = 0.0, 1.0
    else:
        stat, p = stats.wilcoxon(d)
    return PairedComparison(parameter, metric, a, b, len(d),
                            float(d.mean()), float(stat), float(p))


# =============================================================================
# RENDERER
# =============================================================================

def _distinct(results: Sequence[RunResult], key: str) -> list:
    seen = []
    for r in results:
        v = r.value(key)
        if v not in seen:
            seen.append(v)
    return seen


class ReportRenderer:
    """Renders one LaTeX table per format, in format order."""

    def __init__(self, formats: Sequence[LatexFormat]):
        self.formats = list(formats)

    @classmethod
    def from_paths(cls, paths: Sequence[str]) -> "ReportRenderer":
        return cls([load_latex_format(p) for p in paths])

    def render(self, results: Sequence[RunResult]) -> str:
        return "\n\n".join(self.render_table(fmt, results)
                           for fmt in self.formats) + "\n"

    def write(self, results: Sequence[RunResult], path: str) -> str:
        latex = self.render(results)
        out_dir = os.path.dirname(path)
        if out_dir:
            os.makedirs(out_dir, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(latex)
        logger.info(f"Wrote {len(self.formats)} table(s) to {path}")
        return latex

    def render_table(self, fmt: LatexFormat,
                     results: Sequence[RunResult]) -> str:
        rows_in = [r for r in results
                   if all(r.value(k) in allowed
                          for k, allowed in fmt.filters.items())]

        row_values = _distinct(rows_in, fmt.row_key)
        columns = list(product(*[_distinct(rows_in, k)
                                 for k in fmt.column_keys]))
        n_cols = len(columns)

        # cells[metric][row][col] = mean over matching runs (nan if none)
        buckets = {}
        for r in rows_in:
            col = tuple(r.value(k) for k in fmt.column_keys)
            buckets.setdefault((r.value(fmt.row_key), col), []).append(r)

        cells = {}
        for m in fmt.metrics:
            grid = np.full((len(row_values), n_cols), np.nan)
            for i, rv in enumerate(row_values):
                for j, col in enumerate(columns):
                    vals = np.array([float(r.value(m))
                                     for r in buckets.get((rv, col), [])])
                    vals = vals[~np.isnan(vals)]
                    if len(vals):
                        grid[i, j] = vals.mean()
            cells[m] = grid

        lines = [r"\begin{table}[htbp]", r"\centering\small"]
        if fmt.caption:
            lines.append(r"\caption{" + latex_escape(fmt.caption) + "}")
        if fmt.label:
            lines.append(r"\label{" + fmt.label + "}")

        colspec = "l" + "".join("|" + "c" * n_cols for _ in fmt.metrics)
        lines.append(r"\begin{tabular}{" + colspec + "}")
        lines.append(r"\toprule")

        metric_head = [r"\multicolumn{%d}{c}{%s}"
                       % (n_cols, latex_escape(METRIC_LABELS[m]))
                       for m in fmt.metrics]
        if fmt.column_keys:
            lines.append(" & " + " & ".join(metric_head) + r" \\")
            col_labels = [latex_escape(", ".join(
                f"{k}={format_value(v)}" for k, v in zip(fmt.column_keys, col)))
                for col in columns]
            lines.append(latex_escape(fmt.row_key) + " & "
                         + " & ".join(col_labels * len(fmt.metrics)) + r" \\")
        else:
            lines.append(latex_escape(fmt.row_key) + " & "
                         + " & ".join(latex_escape(METRIC_LABELS[m])
                                      for m in fmt.metrics) + r" \\")
        lines.append(r"\midrule")

        for i, rv in enumerate(row_values):
            parts = [latex_escape(format_value(rv))]
            for m in fmt.metrics:
                parts.extend(self._format_row(cells[m][i], fmt, m))
            lines.append(" & ".join(parts) + r" \\")

        lines.append(r"\midrule")
        avg = [f"average ({len(row_values)})"]
        for m in fmt.metrics:
            grid = cells[m]
            for j in range(n_cols):
                col = grid[:, j]
                col = col[~np.isnan(col)]
                avg.append(f"{col.mean():.{fmt.precision}f}"
                           if len(col) else "--")
        lines.append(" & ".join(avg) + r" \\")

        lines.append(r"\bottomrule")
        lines.append(r"\end{tabular}")

        if fmt.paired_test:
            cmp_ = paired_comparison(rows_in, fmt.paired_test["parameter"],
                                     fmt.paired_test["metric"])
            if cmp_ is not None:
                lines.append(self._format_paired(cmp_))

        lines.append(r"\end{table}")
        return "\n".join(lines)

    @staticmethod
    def _format_row(values: np.ndarray, fmt: LatexFormat,
                    metric: str) -> List[str]:
        texts = [f"{v:.{fmt.precision}f}" if not np.isnan(v) else "--"
                 for v in values]
        finite = values[~np.isnan(values)]
        if len(finite) < 2:
            return texts
        best = finite.max() if fmt.is_max(metric) else finite.min()
        best_text = f"{best:.{fmt.precision}f}"
        return [r"\textbf{" + t + "}" if t == best_text else t
                for t in texts]

    @staticmethod
    def _format_paired(c: PairedComparison) -> str:
        a = latex_escape(f"{c.parameter}={format_value(c.a)}")
        b = latex_escape(f"{c.parameter}={format_value(c.b)}")
        return (r"\par\smallskip{\footnotesize Wilcoxon signed-rank, "
                f"{a} vs {b} on {latex_escape(METRIC_LABELS[c.metric])}: "
                f"mean diff ${c.mean_diff:+.4f}$, $p={c.pvalue:.4f}$ "
                f"($n={c.n_pairs}$)}}")
