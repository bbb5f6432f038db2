import os

import numpy as np
import pytest

from classification_tree import FeatureMatrix, Split, StopReason, Tree

REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


@pytest.fixture
def repo_root():
    return REPO_ROOT


@pytest.fixture
def four_points():
    X = np.array([[0.0, 0.0], [0.0, 1.0], [1.0, 0.0], [1.0, 1.0]])
    y = np.array([0, 0, 1, 1])
    return FeatureMatrix(X, y, name="four_points")


@pytest.fixture
def blobs():
    """Two overlapping Gaussian classes in 3D, labels 3 and 7."""
    rng = np.random.RandomState(0)
    X = np.vstack([rng.normal(0.0, 1.0, size=(200, 3)),
                   rng.normal(1.0, 1.0, size=(200, 3))])
    y = np.array([3] * 200 + [7] * 200)
    return FeatureMatrix(X, y, name="blobs")


@pytest.fixture
def diagonal():
    """Classes separated by x0 + x1 = 0: no axis-aligned split is exact."""
    rng = np.random.RandomState(1)
    X = rng.uniform(-1.0, 1.0, size=(400, 2))
    y = (X[:, 0] + X[:, 1] > 0).astype(int)
    return FeatureMatrix(X, y, name="diagonal")


@pytest.fixture
def small_tree():
    r"""
    Hand-built depth-2 tree over one feature::

            0 [6,4]
           /        \
       1 [5,1]     2 [1,3]
       /    \      /    \
    3 [5,0] 4 [0,1] 5 [1,0] 6 [0,3]
    """
    tree = Tree(classes=np.array([0, 1]), n_features=1, max_depth=2)
    root = tree.add_node(np.array([6, 4]), 0)
    left = tree.add_node(np.array([5, 1]), 1)
    right = tree.add_node(np.array([1, 3]), 1)
    tree.set_split(root, Split.univariate(0, 0.5), left, right)
    a = tree.add_node(np.array([5, 0]), 2)
    b = tree.add_node(np.array([0, 1]), 2)
    tree.set_split(left, Split.univariate(0, 0.25), a, b)
    c = tree.add_node(np.array([1, 0]), 2)
    d = tree.add_node(np.array([0, 3]), 2)
    tree.set_split(right, Split.univariate(0, 0.75), c, d)
    for leaf in (a, b, c, d):
        tree.set_leaf(leaf, StopReason.PURE)
    return tree
