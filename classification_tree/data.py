"""
Labeled training data.

``FeatureMatrix`` is an immutable view over ``Instance`` records: a float64
feature block ``X`` (n_samples, n_features), the raw integer labels ``y``,
the sorted distinct ``classes`` and the per-instance class ``codes`` into
``classes``. All arrays are flagged read-only.
"""

import os
import glob
from collections import OrderedDict
from dataclasses import dataclass
from typing import Iterable, Iterator, Sequence, Tuple

import numpy as np
from loguru import logger

from .errors import InconsistentDimensions


@dataclass(frozen=True)
class Instance:
    features: Tuple[float, ...]
    label: int

    @property
    def n_features(self) -> int:
        return len(self.features)


def _readonly(a: np.ndarray) -> np.ndarray:
    a.setflags(write=False)
    return a


class FeatureMatrix:
    """Read-only labeled feature block shared by the harness and builders."""

    __slots__ = ("X", "y", "classes", "codes", "name")

    def __init__(self, X, y, name: str = ""):
        try:
            X = np.array(X, dtype=np.float64)
        except ValueError as e:
            raise InconsistentDimensions(f"ragged feature rows: {e}") from e
        y = np.asarray(y)
        if y.dtype.kind == "f":
            if not np.all(np.isfinite(y)) or np.any(y != np.floor(y)):
                raise InconsistentDimensions("labels must be integers")
        try:
            y = np.array(y, dtype=np.int64)
        except (TypeError, ValueError) as e:
            raise InconsistentDimensions(f"labels must be integers: {e}") from e

        if X.ndim == 1 and X.size == 0:
            X = X.reshape(0, 0)
        if X.ndim != 2:
            raise InconsistentDimensions(f"X must be 2D, got {X.ndim}D")
        if len(X) != len(y):
            raise InconsistentDimensions(
                f"X/y length mismatch: {len(X)} vs {len(y)}")
        if y.ndim != 1:
            raise InconsistentDimensions(f"y must be 1D, got {y.ndim}D")
        if np.any(np.isnan(X)):
            raise InconsistentDimensions("X contains NaN values")
        if np.any(np.isinf(X)):
            raise InconsistentDimensions("X contains Inf values")

        classes, codes = np.unique(y, return_inverse=True)

        self.X = _readonly(np.ascontiguousarray(X))
        self.y = _readonly(y)
        self.classes = _readonly(classes.astype(np.int64))
        self.codes = _readonly(codes.reshape(-1).astype(np.int64))
        self.name = name

    @classmethod
    def from_instances(cls, instances: Iterable[Instance],
                       name: str = "") -> "FeatureMatrix":
        instances = list(instances)
        if not instances:
            return cls(np.zeros((0, 0)), np.zeros(0, dtype=np.int64), name)

        width = instances[0].n_features
        for i, inst in enumerate(instances):
            if inst.n_features != width:
                raise InconsistentDimensions(
                    f"instance {i} has {inst.n_features} features, "
                    f"expected {width}")

        X = np.array([inst.features for inst in instances],
                     dtype=np.float64).reshape(len(instances), width)
        y = np.array([inst.label for inst in instances], dtype=np.int64)
        return cls(X, y, name)

    def __len__(self) -> int:
        return len(self.y)

    def __getitem__(self, i: int) -> Instance:
        return Instance(tuple(float(v) for v in self.X[i]), int(self.y[i]))

    def __iter__(self) -> Iterator[Instance]:
        for i in range(len(self)):
            yield self[i]

    @property
    def n_features(self) -> int:
        return self.X.shape[1]

    @property
    def n_classes(self) -> int:
        return len(self.classes)

    def class_counts(self) -> np.ndarray:
        return np.bincount(self.codes, minlength=self.n_classes)

    def subset(self, indices: Sequence[int]) -> "FeatureMatrix":
        """Rows ``indices`` as a new FeatureMatrix (labels re-coded)."""
        indices = np.asarray(indices, dtype=np.int64)
        return FeatureMatrix(self.X[indices], self.y[indices], self.name)

    def __repr__(self) -> str:
        return (f"FeatureMatrix(name={self.name!r}, n={len(self)}, "
                f"features={self.n_features}, classes={self.n_classes})")


# =============================================================================
# DATASET FILES
# =============================================================================

DATASET_SUFFIXES = (".dl8", ".txt")


def load_dataset(filepath: str) -> FeatureMatrix:
    """
    Load one whitespace-separated numeric table.

    Format: ``label f1 f2 ... fn`` per line, no header. The first column is
    the integer class label, the rest are the features.
    """
    data = np.loadtxt(filepath, dtype=np.float64, ndmin=2)
    name = os.path.splitext(os.path.basename(filepath))[0]

    if data.size == 0:
        return FeatureMatrix(np.zeros((0, 0)), np.zeros(0, dtype=np.int64),
                             name)
    if data.shape[1] < 2:
        raise InconsistentDimensions(
            f"{filepath}: need a label and at least one feature, "
            f"got shape {data.shape}")

    labels = data[:, 0]
    if not np.all(labels == np.round(labels)):
        raise InconsistentDimensions(f"{filepath}: labels must be integers")

    return FeatureMatrix(data[:, 1:], labels.astype(np.int64), name)


def load_all_datasets(data_dir: str) -> "OrderedDict[str, FeatureMatrix]":
    """Load every dataset file in ``data_dir``, ordered by file name."""
    paths = sorted(
        p for suffix in DATASET_SUFFIXES
        for p in glob.glob(os.path.join(data_dir, "*" + suffix)))

    datasets = OrderedDict()
    if not paths:
        logger.warning(f"No dataset files in {os.path.abspath(data_dir)}")
        return datasets

    for path in paths:
        try:
            fm = load_dataset(path)
        except (OSError, ValueError) as e:
            logger.warning(f"Skipping {path}: {e}")
            continue
        if len(fm) == 0:
            logger.warning(f"Skipping {path}: no instances")
            continue
        datasets[fm.name] = fm
        logger.info(f"Loaded {fm.name:<30} n={len(fm):>6} "
                    f"features={fm.n_features:>4} classes={fm.n_classes}")

    return datasets
