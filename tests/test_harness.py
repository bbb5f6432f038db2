import math
from collections import OrderedDict

import numpy as np
import pytest

from classification_tree import (
    ConfigError, ExperimentConfig, ExperimentHarness, FeatureMatrix,
    ParameterGrid,
)
from classification_tree.harness import train_test_splits


def _config(**grid):
    grid.setdefault("time_limit", (10,))
    grid.setdefault("max_depth", (1, 2))
    grid.setdefault("merge_percentage", (100, 0))
    return ExperimentConfig(instances_path="", resolution_methods=("build_tree",),
                            latex_format_paths=(), latex_output_file="",
                            parameters=ParameterGrid(**grid))


@pytest.fixture
def datasets(blobs, four_points):
    rng = np.random.RandomState(3)
    X = rng.normal(size=(60, 2))
    y = (X[:, 0] > 0).astype(int)
    return OrderedDict([("blobs", blobs.subset(np.arange(0, 400, 5))),
                        ("halves", FeatureMatrix(X, y, name="halves"))])


def test_train_test_splits_are_stratified(blobs):
    splits = train_test_splits(blobs, n_splits=3, test_size=0.2,
                               random_state=0)
    assert len(splits) == 3
    for train, test in splits:
        assert len(train) == 320 and len(test) == 80
        assert not set(train) & set(test)
        assert (blobs.y[test] == 3).sum() == 40


def test_train_test_splits_fall_back_without_stratification():
    fm = FeatureMatrix(np.arange(10.0).reshape(10, 1),
                       [0] * 9 + [1])
    splits = train_test_splits(fm, n_splits=2, test_size=0.2)
    assert len(splits) == 2
    assert all(len(te) == 2 for _, te in splits)


def test_zero_test_size_trains_on_everything(blobs):
    splits = train_test_splits(blobs, n_splits=5, test_size=0.0)
    assert len(splits) == 1
    train, test = splits[0]
    assert len(train) == len(blobs) and len(test) == 0


@pytest.mark.parametrize("n, test_size", [(1, 0.2), (2, 0.6), (4, 0.8)])
def test_tiny_dataset_trains_on_everything(n, test_size):
    fm = FeatureMatrix(np.arange(n * 2.0).reshape(n, 2), [0] * n)
    splits = train_test_splits(fm, n_splits=3, test_size=test_size)
    assert len(splits) == 1
    train, test = splits[0]
    assert train.tolist() == list(range(n)) and len(test) == 0


def test_single_instance_dataset_runs():
    data = OrderedDict([("one", FeatureMatrix([[1.0, 2.0]], [0], name="one"))])
    harness = ExperimentHarness(_config(max_depth=(2,), merge_percentage=(0,)),
                                n_splits=3)
    results = harness.run(data)
    assert len(results) == 1
    assert results[0].n_leaves == 1
    assert results[0].train_accuracy == 1.0
    assert math.isnan(results[0].test_accuracy)


def test_run_order_and_counts(datasets):
    harness = ExperimentHarness(_config(), n_splits=2, random_state=0)
    results = harness.run(datasets)
    # 2 datasets x 2 splits x 4 combinations
    assert len(results) == 16
    assert [r.dataset for r in results[:8]] == ["blobs"] * 8
    assert [r.split for r in results[:8]] == [0] * 4 + [1] * 4
    assert [(r.params["mergePercentage"], r.params["D"])
            for r in results[:4]] == [(100, 1), (100, 2), (0, 1), (0, 2)]
    for r in results:
        assert r.method == "build_tree"
        assert r.n_leaves <= r.n_leaves_before
        assert 0.0 <= r.train_accuracy <= 1.0
        assert 0.0 <= r.test_accuracy <= 1.0
        assert r.depth <= r.params["D"]
        if r.params["mergePercentage"] == 0:
            assert r.n_leaves == r.n_leaves_before
        else:
            assert r.n_leaves == 1


def test_zero_test_size_results(datasets):
    harness = ExperimentHarness(_config(max_depth=(2,), merge_percentage=(0,)),
                                n_splits=3, test_size=0.0)
    results = harness.run(datasets)
    assert len(results) == 2
    assert all(math.isnan(r.test_accuracy) for r in results)
    assert results[1].train_accuracy == 1.0


def test_process_pool_matches_sequential(datasets):
    config = _config()
    seq = ExperimentHarness(config, n_workers=1, n_splits=2,
                            random_state=0).run(datasets)
    par = ExperimentHarness(config, n_workers=2, n_splits=2,
                            random_state=0).run(datasets)

    def strip(r):
        d = r.to_dict()
        d.pop("build_time")
        return d

    assert [strip(r) for r in par] == [strip(r) for r in seq]


def test_run_result_value(datasets):
    r = ExperimentHarness(_config(max_depth=(1,), merge_percentage=(0,)),
                          n_splits=1).run(datasets)[0]
    assert r.value("dataset") == "blobs"
    assert r.value("D") == 1
    assert r.value("n_leaves") == r.n_leaves
    with pytest.raises(KeyError):
        r.value("nope")


@pytest.mark.parametrize("kwargs", [{"test_size": 1.0}, {"test_size": -0.1},
                                    {"n_splits": 0}])
def test_harness_rejects_bad_settings(kwargs):
    with pytest.raises(ConfigError):
        ExperimentHarness(_config(), **kwargs)
