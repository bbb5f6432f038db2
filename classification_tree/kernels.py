"""
JIT-compiled impurity kernels.

Class histograms are float64 count vectors indexed by class code. The
criterion is passed as an int so a single compiled kernel serves both.
"""

import numpy as np
from numba import njit

GINI = 0
ENTROPY = 1

CRITERIA = {"gini": GINI, "entropy": ENTROPY}

# Two impurities closer than this are considered tied.
TIE_EPS = 1e-12


@njit(cache=True, nogil=True)
def node_impurity(counts, n, criterion):
    if n <= 0:
        return 0.0
    if criterion == ENTROPY:
        h = 0.0
        for c in range(counts.shape[0]):
            if counts[c] > 0:
                p = counts[c] / n
                h -= p * np.log2(p)
        return h
    s = 0.0
    for c in range(counts.shape[0]):
        p = counts[c] / n
        s += p * p
    return 1.0 - s


@njit(cache=True, nogil=True)
def histogram(codes, n_classes):
    h = np.zeros(n_classes, dtype=np.float64)
    for i in range(codes.shape[0]):
        h[codes[i]] += 1.0
    return h


@njit(cache=True, nogil=True)
def best_sorted_threshold(values, codes, n_classes, min_leaf, criterion):
    """Single sweep over ``values`` sorted ascending (``codes`` aligned).

    Returns (weighted child impurity, boundary position). The boundary ``i``
    separates ``values[:i+1]`` from ``values[i+1:]``; -1 means no admissible
    boundary. Among equal impurities the earliest boundary wins.
    """
    n = values.shape[0]
    total = histogram(codes, n_classes)
    left = np.zeros(n_classes, dtype=np.float64)
    right = np.zeros(n_classes, dtype=np.float64)

    best_imp = np.inf
    best_pos = -1

    for i in range(n - 1):
        left[codes[i]] += 1.0
        if values[i + 1] <= values[i]:
            continue
        n_left = i + 1
        n_right = n - n_left
        if n_left < min_leaf or n_right < min_leaf:
            continue
        for c in range(n_classes):
            right[c] = total[c] - left[c]
        imp = (n_left * node_impurity(left, n_left, criterion)
               + n_right * node_impurity(right, n_right, criterion)) / n
        if imp < best_imp - TIE_EPS:
            best_imp = imp
            best_pos = i

    return best_imp, best_pos


@njit(cache=True, nogil=True)
def mask_impurity(mask, codes, n_classes, criterion):
    """Weighted child impurity of the partition given by a boolean mask."""
    n = codes.shape[0]
    left = np.zeros(n_classes, dtype=np.float64)
    right = np.zeros(n_classes, dtype=np.float64)
    n_left = 0
    for i in range(n):
        if mask[i]:
            left[codes[i]] += 1.0
            n_left += 1
        else:
            right[codes[i]] += 1.0
    n_right = n - n_left
    if n == 0:
        return 0.0
    return (n_left * node_impurity(left, n_left, criterion)
            + n_right * node_impurity(right, n_right, criterion)) / n


# =============================================================================
# JIT WARMUP
# =============================================================================

def warmup_jit():
    """Pre-compile all kernels so compilation is not charged to a build."""
    values = np.array([0.0, 1.0, 2.0, 3.0], dtype=np.float64)
    codes = np.array([0, 0, 1, 1], dtype=np.int64)
    for criterion in (GINI, ENTROPY):
        best_sorted_threshold(values, codes, 2, 1, criterion)
        mask_impurity(values < 1.5, codes, 2, criterion)
        node_impurity(histogram(codes, 2), 4.0, criterion)
