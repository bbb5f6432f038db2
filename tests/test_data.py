import numpy as np
import pytest

from classification_tree import (
    FeatureMatrix, InconsistentDimensions, Instance, load_all_datasets,
    load_dataset,
)


def test_feature_matrix_views(four_points):
    fm = four_points
    assert len(fm) == 4
    assert fm.n_features == 2
    assert fm.n_classes == 2
    assert fm.class_counts().tolist() == [2, 2]
    assert fm[2] == Instance((1.0, 0.0), 1)
    assert [inst.label for inst in fm] == [0, 0, 1, 1]


def test_feature_matrix_is_read_only(four_points):
    assert not four_points.X.flags.writeable
    assert not four_points.codes.flags.writeable
    with pytest.raises(ValueError):
        four_points.X[0, 0] = 5.0


def test_labels_are_coded_in_sorted_order():
    fm = FeatureMatrix([[0.0], [1.0], [2.0]], [9, 4, 9])
    assert fm.classes.tolist() == [4, 9]
    assert fm.codes.tolist() == [1, 0, 1]


def test_from_instances_rejects_mixed_lengths():
    with pytest.raises(InconsistentDimensions):
        FeatureMatrix.from_instances([Instance((0.0, 1.0), 0),
                                      Instance((1.0,), 1)])


def test_from_instances_empty():
    fm = FeatureMatrix.from_instances([])
    assert len(fm) == 0


@pytest.mark.parametrize("X, y", [
    ([[0.0, 1.0], [1.0, 2.0]], [0]),
    ([[0.0, np.nan], [1.0, 2.0]], [0, 1]),
    ([[0.0, np.inf], [1.0, 2.0]], [0, 1]),
    ([0.0, 1.0], [0, 1]),
    ([[0.0], [1.0]], [0, 1.5]),
    ([[0.0], [1.0]], [0, np.nan]),
])
def test_invalid_matrices(X, y):
    with pytest.raises(InconsistentDimensions):
        FeatureMatrix(X, y)


def test_integral_float_labels_are_accepted():
    fm = FeatureMatrix([[0.0], [1.0]], [0.0, 2.0])
    assert fm.y.tolist() == [0, 2]


def test_subset_recodes_labels(blobs):
    sub = blobs.subset(np.arange(150))
    assert len(sub) == 150
    assert sub.classes.tolist() == [3]
    assert sub.name == "blobs"


def test_load_dataset(tmp_path):
    path = tmp_path / "toy.dl8"
    path.write_text("0 1 0 1\n1 0 1 1\n1 0 0 0\n")
    fm = load_dataset(str(path))
    assert fm.name == "toy"
    assert len(fm) == 3
    assert fm.n_features == 3
    assert fm.y.tolist() == [0, 1, 1]


def test_load_dataset_rejects_fractional_labels(tmp_path):
    path = tmp_path / "bad.txt"
    path.write_text("0.5 1 0\n1 0 1\n")
    with pytest.raises(InconsistentDimensions):
        load_dataset(str(path))


def test_load_all_datasets_skips_bad_files(tmp_path):
    (tmp_path / "b.dl8").write_text("0 1\n1 0\n")
    (tmp_path / "a.txt").write_text("1 2 3\n0 4 5\n")
    (tmp_path / "broken.txt").write_text("x y z\n")
    (tmp_path / "notes.md").write_text("ignored\n")
    datasets = load_all_datasets(str(tmp_path))
    assert list(datasets) == ["a", "b"]
    assert datasets["a"].n_features == 2


def test_load_all_datasets_missing_dir(tmp_path):
    assert len(load_all_datasets(str(tmp_path / "nothing"))) == 0
