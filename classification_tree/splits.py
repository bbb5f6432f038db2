"""
Split rules and split search.

A ``Split`` sends an instance to the left child when its rule holds:

- univariate:   ``x[feature] <= threshold`` (``Direction.LE``) or
                ``x[feature] >  threshold`` (``Direction.GT``)
- multivariate: ``weights . x + bias <= threshold``

``SplitEvaluator.evaluate`` returns the best ``SplitCandidate`` for a node,
or ``None`` when no admissible split improves the node's impurity by more
than ``IMPROVEMENT_EPS`` (pure node, constant features, or every boundary
violating ``min_samples_leaf``).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import numpy as np
from loguru import logger
from sklearn.linear_model import Ridge

from .deadline import Deadline
from .kernels import (
    CRITERIA, TIE_EPS, best_sorted_threshold, histogram, mask_impurity,
    node_impurity,
)

# A split must beat the parent impurity by more than this.
IMPROVEMENT_EPS = 1e-9


class Direction(Enum):
    LE = "<="
    GT = ">"


@dataclass(frozen=True, eq=False)
class Split:
    threshold: float
    feature: int = -1
    direction: Direction = Direction.LE
    weights: Optional[np.ndarray] = None
    bias: float = 0.0

    def __post_init__(self):
        if self.weights is None:
            if self.feature < 0:
                raise ValueError(
                    f"Univariate split needs a feature index, got {self.feature}")
            return
        w = np.array(self.weights, dtype=np.float64).reshape(-1)
        if w.size == 0 or not np.any(w != 0.0):
            raise ValueError("Multivariate split needs a non-zero weight vector")
        if not np.all(np.isfinite(w)):
            raise ValueError("Multivariate split weights must be finite")
        w.setflags(write=False)
        object.__setattr__(self, "weights", w)

    @classmethod
    def univariate(cls, feature: int, threshold: float,
                   direction: Direction = Direction.LE) -> "Split":
        return cls(threshold=float(threshold), feature=int(feature),
                   direction=direction)

    @classmethod
    def multivariate(cls, weights, bias: float, threshold: float) -> "Split":
        return cls(threshold=float(threshold), weights=weights,
                   bias=float(bias))

    @property
    def is_multivariate(self) -> bool:
        return self.weights is not None

    def project(self, X: np.ndarray) -> np.ndarray:
        if self.is_multivariate:
            return X @ self.weights + self.bias
        return X[:, self.feature]

    def evaluate(self, X: np.ndarray) -> np.ndarray:
        """Boolean mask: True where the instance goes to the left child."""
        X = np.asarray(X, dtype=np.float64)
        if X.ndim == 1:
            X = X.reshape(1, -1)
        p = self.project(X)
        if not self.is_multivariate and self.direction == Direction.GT:
            return p > self.threshold
        return p <= self.threshold

    def same_as(self, other: "Split") -> bool:
        if self.is_multivariate != other.is_multivariate:
            return False
        if self.is_multivariate:
            return (np.array_equal(self.weights, other.weights)
                    and self.bias == other.bias
                    and self.threshold == other.threshold)
        return (self.feature == other.feature
                and self.threshold == other.threshold
                and self.direction == other.direction)

    def to_dict(self) -> dict:
        if self.is_multivariate:
            return {"weights": self.weights.tolist(), "bias": self.bias,
                    "threshold": self.threshold}
        return {"feature": self.feature, "threshold": self.threshold,
                "direction": self.direction.value}

    def __str__(self) -> str:
        if self.is_multivariate:
            terms = " + ".join(f"{w:.4f}*x[{j}]"
                               for j, w in enumerate(self.weights) if w != 0.0)
            return f"({terms} + {self.bias:.4f} <= {self.threshold:.4f})"
        return f"(x[{self.feature}] {self.direction.value} {self.threshold:.4f})"


@dataclass
class SplitCandidate:
    split: Split
    impurity: float            # weighted impurity of the two children
    parent_impurity: float
    left_mask: np.ndarray = field(repr=False)

    @property
    def improvement(self) -> float:
        return self.parent_impurity - self.impurity

    @property
    def n_left(self) -> int:
        return int(self.left_mask.sum())

    @property
    def n_right(self) -> int:
        return int(len(self.left_mask) - self.left_mask.sum())


def _midpoint(lo: float, hi: float) -> float:
    t = lo + (hi - lo) / 2.0
    # Adjacent floats can round the midpoint up onto ``hi``.
    if t >= hi:
        t = lo
    return t


# =============================================================================
# SPLIT EVALUATOR
# =============================================================================

class SplitEvaluator:
    """
    Best split for one node's instance subset.

    Univariate search sorts every feature once (stable sort) and scans all
    midpoints between consecutive distinct values with incremental class
    histograms: O(n log n) per feature. Ties go to the lowest feature index,
    then the lowest threshold.

    Multivariate search is a deterministic local search over unit-norm
    hyperplanes in standardized feature space. Starting points are the best
    univariate split (as an axis-aligned hyperplane) and a ridge fit of the
    majority-class indicator. Coordinate descent then perturbs one weight at
    a time, re-optimizing the threshold on the projection after every move,
    and halves the step when a full sweep brings no improvement. The search
    polls its deadline before every move and returns the best hyperplane
    found so far when it fires.
    """

    def __init__(self, criterion: str = "gini", min_samples_leaf: int = 1,
                 max_search_iter: int = 50, initial_step: float = 1.0,
                 min_step: float = 1e-3, ridge_alpha: float = 1.0):
        if criterion not in CRITERIA:
            raise ValueError(f"Unknown criterion {criterion!r}, "
                             f"expected one of {sorted(CRITERIA)}")
        self.criterion = criterion
        self.min_samples_leaf = max(1, int(min_samples_leaf))
        self.max_search_iter = max_search_iter
        self.initial_step = initial_step
        self.min_step = min_step
        self.ridge_alpha = ridge_alpha
        self._crit = CRITERIA[criterion]

    def impurity(self, codes: np.ndarray, n_classes: int) -> float:
        return float(node_impurity(histogram(codes, n_classes),
                                   len(codes), self._crit))

    def evaluate(self, X: np.ndarray, codes: np.ndarray, n_classes: int,
                 multivariate: bool = False,
                 deadline: Optional[Deadline] = None) -> Optional[SplitCandidate]:
        """Best candidate for the subset ``(X, codes)``, or None."""
        X = np.ascontiguousarray(X, dtype=np.float64)
        codes = np.ascontiguousarray(codes, dtype=np.int64)
        n = len(codes)
        if n < 2 * self.min_samples_leaf:
            return None

        parent = self.impurity(codes, n_classes)
        if parent <= IMPROVEMENT_EPS:
            return None

        best = self._search_univariate(X, codes, n_classes, parent)

        if multivariate and X.shape[1] >= 2:
            oblique = self._search_oblique(X, codes, n_classes, parent,
                                           best, deadline)
            if oblique is not None and (
                    best is None or oblique.impurity < best.impurity - TIE_EPS):
                best = oblique

        if best is None or best.improvement <= IMPROVEMENT_EPS:
            return None
        return best

    # ── Univariate ──────────────────────────────────────────────────

    def _search_univariate(self, X, codes, n_classes, parent):
        best_imp = np.inf
        best_feature = -1
        best_threshold = 0.0

        for f in range(X.shape[1]):
            col = X[:, f]
            order = np.argsort(col, kind="mergesort")
            values = np.ascontiguousarray(col[order])
            imp, pos = best_sorted_threshold(
                values, np.ascontiguousarray(codes[order]), n_classes,
                self.min_samples_leaf, self._crit)
            if pos < 0:
                continue
            if imp < best_imp - TIE_EPS:
                best_imp = imp
                best_feature = f
                best_threshold = _midpoint(values[pos], values[pos + 1])

        if best_feature < 0:
            return None

        split = Split.univariate(best_feature, best_threshold)
        return SplitCandidate(split, float(best_imp), parent,
                              split.evaluate(X))

    # ── Multivariate ────────────────────────────────────────────────

    def _best_on_projection(self, proj, codes, n_classes):
        order = np.argsort(proj, kind="mergesort")
        values = np.ascontiguousarray(proj[order])
        imp, pos = best_sorted_threshold(
            values, np.ascontiguousarray(codes[order]), n_classes,
            self.min_samples_leaf, self._crit)
        if pos < 0:
            return np.inf, 0.0
        return float(imp), _midpoint(values[pos], values[pos + 1])

    def _ridge_start(self, Z, codes, n_classes):
        majority = int(np.argmax(np.bincount(codes, minlength=n_classes)))
        target = (codes == majority).astype(np.float64)
        ridge = Ridge(alpha=self.ridge_alpha)
        ridge.fit(Z, target)
        w = np.asarray(ridge.coef_, dtype=np.float64).ravel()
        norm = np.linalg.norm(w)
        if not np.isfinite(norm) or norm <= 1e-12:
            return None
        return w / norm

    def _search_oblique(self, X, codes, n_classes, parent, warm, deadline):
        mu = X.mean(axis=0)
        sigma = X.std(axis=0)
        active = sigma > 1e-12
        if active.sum() < 2:
            return None
        sigma = np.where(active, sigma, 1.0)
        Z = (X - mu) / sigma

        starts = []
        if warm is not None and not warm.split.is_multivariate:
            w0 = np.zeros(X.shape[1])
            w0[warm.split.feature] = 1.0
            starts.append(w0)
        if deadline is None or not deadline.expired():
            w_ridge = self._ridge_start(Z[:, active], codes, n_classes)
            if w_ridge is not None:
                w1 = np.zeros(X.shape[1])
                w1[active] = w_ridge
                starts.append(w1)
        if not starts:
            return None

        best_w, best_imp, best_t = None, np.inf, 0.0
        for w in starts:
            imp, t = self._best_on_projection(Z @ w, codes, n_classes)
            if imp < best_imp - TIE_EPS:
                best_w, best_imp, best_t = w, imp, t
        if best_w is None:
            return None

        step = self.initial_step
        n_moves = 0
        aborted = False
        for _ in range(self.max_search_iter):
            if step < self.min_step:
                break
            improved = False
            for j in np.flatnonzero(active):
                if deadline is not None and deadline.expired():
                    aborted = True
                    break
                for delta in (step, -step):
                    w = best_w.copy()
                    w[j] += delta
                    norm = np.linalg.norm(w)
                    if norm <= 1e-12:
                        continue
                    w /= norm
                    imp, t = self._best_on_projection(Z @ w, codes, n_classes)
                    if imp < best_imp - TIE_EPS:
                        best_w, best_imp, best_t = w, imp, t
                        improved = True
                        n_moves += 1
                        break
            if aborted:
                break
            if not improved:
                step /= 2.0

        if aborted:
            logger.debug(f"Oblique search cut by deadline after {n_moves} moves")

        # Back to raw feature space: w.z = (w/sigma).x - (w/sigma).mu
        weights = np.where(active, best_w / sigma, 0.0)
        if not np.any(weights != 0.0):
            return None
        bias = -float(weights @ mu)
        split = Split.multivariate(weights, bias, best_t)

        # Score the split by its own rule so the recorded partition is exact.
        mask = split.evaluate(X)
        n_left = int(mask.sum())
        if (n_left < self.min_samples_leaf
                or len(mask) - n_left < self.min_samples_leaf):
            return None
        imp = float(mask_impurity(mask, codes, n_classes, self._crit))
        return SplitCandidate(split, imp, parent, mask)
