import json
import os

import pytest

from classification_tree import ConfigError, RunResult
from classification_tree.plotting import merge_curves, plot_merge_curves
from classification_tree.report import (
    LatexFormat, ReportRenderer, latex_escape, load_latex_format,
    paired_comparison,
)


def _result(dataset, multivariate, test_accuracy, split=0, D=2, pct=0,
            n_leaves=4):
    return RunResult(
        dataset=dataset, method="build_tree", split=split,
        params={"time_limit": 10, "lambd": 0.9, "mergePercentage": pct,
                "multivariate": multivariate, "D": D},
        train_accuracy=1.0, test_accuracy=test_accuracy,
        n_leaves_before=8, n_leaves=n_leaves, n_nodes=2 * n_leaves - 1,
        depth=D, build_time=0.01, timed_out=False)


@pytest.fixture
def results():
    return [_result("iris_like", True, 0.9), _result("iris_like", False, 0.8),
            _result("wine_like", True, 0.7), _result("wine_like", False, 0.75)]


def test_latex_escape():
    assert latex_escape("a_b&c%") == r"a\_b\&c\%"
    assert latex_escape("50$ #1 {x}") == r"50\$ \#1 \{x\}"


def test_render_table(results):
    fmt = LatexFormat(metrics=("test_accuracy",), caption="Acc_table",
                      label="tab:acc", column_keys=("multivariate",))
    latex = ReportRenderer([fmt]).render_table(fmt, results)
    assert r"\caption{Acc\_table}" in latex
    assert r"\label{tab:acc}" in latex
    assert r"multivariate=true & multivariate=false" in latex
    assert r"iris\_like & \textbf{0.900} & 0.800 \\" in latex
    assert r"wine\_like & 0.700 & \textbf{0.750} \\" in latex
    assert r"average (2) & 0.800 & 0.775 \\" in latex
    assert latex.startswith(r"\begin{table}")
    assert latex.endswith(r"\end{table}")


def test_smaller_is_better_for_size(results):
    results = [_result("a", True, 0.9, n_leaves=3),
               _result("a", False, 0.9, n_leaves=6)]
    fmt = LatexFormat(metrics=("n_leaves",), column_keys=("multivariate",),
                      precision=1)
    latex = ReportRenderer([fmt]).render_table(fmt, results)
    assert r"a & \textbf{3.0} & 6.0 \\" in latex


def test_filters_and_means():
    results = [_result("a", True, 0.6, split=0, pct=0),
               _result("a", True, 0.8, split=1, pct=0),
               _result("a", True, 0.1, split=0, pct=100)]
    fmt = LatexFormat(metrics=("test_accuracy",),
                      filters={"mergePercentage": (0,)})
    latex = ReportRenderer([fmt]).render_table(fmt, results)
    assert r"a & 0.700 \\" in latex


def test_format_from_mapping_rejects_bad_documents():
    with pytest.raises(ConfigError):
        LatexFormat.from_mapping({"metrics": ["f1"]})
    with pytest.raises(ConfigError):
        LatexFormat.from_mapping({"metrics": ["test_accuracy"], "colour": 1})
    with pytest.raises(ConfigError):
        LatexFormat.from_mapping({"metrics": ["test_accuracy"],
                                  "rowKey": "weather"})
    with pytest.raises(ConfigError):
        LatexFormat.from_mapping({"metrics": []})


def test_shipped_latex_format(repo_root):
    fmt = load_latex_format(os.path.join(repo_root, "config",
                                         "latexTable.json"))
    assert fmt.row_key == "dataset"
    assert fmt.is_max("test_accuracy")
    assert not fmt.is_max("n_leaves")


def test_paired_comparison():
    results = []
    for split in range(6):
        results.append(_result("a", True, 0.80 + 0.01 * split, split=split))
        results.append(_result("a", False, 0.70 + 0.005 * split, split=split))
    cmp_ = paired_comparison(results, "multivariate", "test_accuracy")
    assert cmp_.n_pairs == 6
    assert cmp_.a is True and cmp_.b is False
    assert cmp_.mean_diff > 0
    assert 0.0 < cmp_.pvalue < 0.1


def test_paired_comparison_edge_cases(results):
    # Two pairs only.
    assert paired_comparison(results, "multivariate", "test_accuracy") is None
    # One level only.
    assert paired_comparison(results, "D", "test_accuracy") is None
    same = [_result("a", mv, 0.5, split=s)
            for s in range(4) for mv in (True, False)]
    assert paired_comparison(same, "multivariate",
                             "test_accuracy").pvalue == 1.0


def test_write_creates_directories(tmp_path, results):
    fmt_path = tmp_path / "fmt.json"
    fmt_path.write_text(json.dumps({"metrics": ["test_accuracy"],
                                    "caption": "first"}))
    renderer = ReportRenderer.from_paths([str(fmt_path), str(fmt_path)])
    out = tmp_path / "results" / "tables.tex"
    renderer.write(results, str(out))
    text = out.read_text()
    assert text.count(r"\begin{table}") == 2


def test_merge_curves(tmp_path):
    results = [_result("a", mv, 0.9 - pct / 1000, pct=pct, D=D)
               for D in (2, 3) for mv in (True, False) for pct in (0, 50, 100)]
    curves = merge_curves(results, "test_accuracy")
    assert list(curves) == [(2, False), (2, True), (3, False), (3, True)]
    x, y = curves[(2, True)]
    assert x.tolist() == [0.0, 50.0, 100.0]
    assert y[0] > y[-1]

    path = plot_merge_curves(results, "test_accuracy",
                             str(tmp_path / "curves.png"))
    assert os.path.getsize(path) > 0
