import json
import os

import pytest

from classification_tree import (
    BuildParameters, ConfigError, InvalidDepthBound, InvalidPercentage,
    InvalidTimeLimit, ParameterGrid, load_config,
)
from classification_tree.config import ExperimentConfig

GRID = {"time_limit": [10], "lambd": [0.9],
        "mergePercentage": [100, 90, 80, 70, 60, 50, 40, 30, 20, 10, 0],
        "multivariate": [True, False], "D": [2, 3, 4, 5]}


def test_shipped_config(repo_root):
    config = load_config(os.path.join(repo_root, "config", "expe.json"),
                         base_dir=repo_root)
    assert config.instances_path == os.path.join(repo_root, "data")
    assert config.resolution_methods == ("build_tree",)
    assert config.latex_format_paths == (
        os.path.join(repo_root, "config", "latexTable.json"),)
    assert config.latex_output_file == os.path.join(
        repo_root, "results", "result_tables.tex")
    assert len(config.parameters) == 88
    assert len(list(config.parameters.combinations())) == 88


def test_combination_order():
    combos = list(ParameterGrid.from_mapping(GRID).combinations())
    first = combos[0]
    assert (first.time_limit, first.lambd, first.merge_percentage,
            first.multivariate, first.max_depth) == (10, 0.9, 100, True, 2)
    assert [c.max_depth for c in combos[:4]] == [2, 3, 4, 5]
    assert combos[4].multivariate is False
    assert combos[8].merge_percentage == 90
    assert combos[-1].to_dict() == {"time_limit": 10, "lambd": 0.9,
                                    "mergePercentage": 0,
                                    "multivariate": False, "D": 5}


def test_combination_build_parameters():
    combo = next(ParameterGrid.from_mapping(GRID).combinations())
    params = combo.build_parameters(min_samples_leaf=2)
    assert params == BuildParameters(time_limit=10, max_depth=2, lambd=0.9,
                                     multivariate=True, min_samples_leaf=2)
    params.validate()


def test_builds_shared_across_merge_percentages():
    combos = list(ParameterGrid.from_mapping(GRID).combinations())
    assert len({c.build_key() for c in combos}) == 8


def test_defaults_for_optional_parameters():
    grid = ParameterGrid.from_mapping({"time_limit": 5, "D": [1, 2]})
    assert grid.lambd == (0.0,)
    assert grid.merge_percentage == (0,)
    assert grid.multivariate == (False,)
    assert len(grid) == 2


@pytest.mark.parametrize("mapping, error", [
    (dict(GRID, depth=[2]), ConfigError),
    ({"time_limit": [10]}, ConfigError),
    ({"D": [2]}, ConfigError),
    (dict(GRID, D=[]), ConfigError),
    (dict(GRID, D=[-1]), InvalidDepthBound),
    (dict(GRID, D=[2.5]), InvalidDepthBound),
    (dict(GRID, time_limit=[0]), InvalidTimeLimit),
    (dict(GRID, mergePercentage=[150]), InvalidPercentage),
    (dict(GRID, multivariate=["yes"]), ConfigError),
])
def test_grid_rejects_bad_mappings(mapping, error):
    with pytest.raises(error):
        ParameterGrid.from_mapping(mapping)


def _doc(**overrides):
    doc = {"instancesPaths": "./data", "resolutionMethods": ["build_tree"],
           "latexFormatPath": ["./config/latexTable.json"],
           "latexOutputFile": "./results/out.tex",
           "parametersToCombine": GRID}
    doc.update(overrides)
    return doc


def test_unknown_top_level_key():
    with pytest.raises(ConfigError):
        ExperimentConfig.from_mapping(_doc(extra=1))


def test_unknown_resolution_method():
    with pytest.raises(ConfigError):
        ExperimentConfig.from_mapping(_doc(resolutionMethods=["cart"]))


def test_single_string_paths(tmp_path):
    config = ExperimentConfig.from_mapping(
        _doc(latexFormatPath="fmt.json", resolutionMethods="build_tree"),
        base_dir=str(tmp_path))
    assert config.latex_format_paths == (str(tmp_path / "fmt.json"),)
    assert config.resolution_methods == ("build_tree",)


def test_load_config_invalid_json(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{not json")
    with pytest.raises(ConfigError):
        load_config(str(path))


def test_load_config_from_file(tmp_path):
    path = tmp_path / "expe.json"
    path.write_text(json.dumps(_doc()))
    config = load_config(str(path), base_dir=str(tmp_path))
    assert config.instances_path == str(tmp_path / "data")
