"""
Time-bounded tree construction.

Growth is depth-first, left child before right, so node ids come out in
preorder and a build is deterministic for a fixed input (and, with
``multivariate=False``, bit-identical between runs). Every node visit polls
the shared deadline; once it fires, each node still open becomes a leaf with
``StopReason.DEADLINE`` and the build returns a complete, valid tree.
"""

import math
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

import numpy as np
from loguru import logger

from .data import FeatureMatrix
from .deadline import Deadline
from .errors import (
    EmptyDataset, InvalidDepthBound, InvalidRegularization, InvalidTimeLimit,
    InputError,
)
from .kernels import CRITERIA, histogram
from .splits import SplitEvaluator
from .tree import StopReason, Tree


# =============================================================================
# PARAMETERS
# =============================================================================

@dataclass(frozen=True)
class BuildParameters:
    """Hyperparameters of one build.

    time_limit:
        Wall-clock budget in seconds, counted from the start of ``build``.
    lambd:
        Regularization weight. A split is kept only if its root-normalized
        impurity reduction exceeds ``lambd * complexity_penalty``.
    max_depth:
        Depth bound ``D``; the root is at depth 0.
    multivariate:
        Search oblique hyperplanes instead of single-feature thresholds.
        One mode holds for the whole tree.
    search_share:
        Fraction of the remaining budget one multivariate search may use.
    """
    time_limit: float
    max_depth: int
    lambd: float = 0.0
    multivariate: bool = False
    min_samples_split: int = 2
    min_samples_leaf: int = 1
    complexity_penalty: float = 0.01
    criterion: str = "gini"
    search_share: float = 0.5
    max_search_iter: int = 50

    def validate(self):
        if (not isinstance(self.max_depth, (int, np.integer))
                or isinstance(self.max_depth, bool) or self.max_depth < 0):
            raise InvalidDepthBound(
                f"D must be a non-negative integer, got {self.max_depth!r}")
        if (isinstance(self.time_limit, bool)
                or not isinstance(self.time_limit, (int, float, np.number))
                or math.isnan(self.time_limit) or self.time_limit <= 0):
            raise InvalidTimeLimit(
                f"time_limit must be > 0 seconds, got {self.time_limit!r}")
        if math.isnan(self.lambd) or self.lambd < 0:
            raise InvalidRegularization(f"lambd must be >= 0, got {self.lambd!r}")
        if self.complexity_penalty < 0:
            raise InvalidRegularization(
                f"complexity_penalty must be >= 0, got {self.complexity_penalty!r}")
        if self.criterion not in CRITERIA:
            raise InputError(f"Unknown criterion {self.criterion!r}")
        if self.min_samples_split < 2 or self.min_samples_leaf < 1:
            raise InputError("min_samples_split must be >= 2 and "
                             "min_samples_leaf >= 1")
        if not 0.0 < self.search_share <= 1.0:
            raise InputError(
                f"search_share must be in (0, 1], got {self.search_share!r}")


# =============================================================================
# TREE BUILDER
# =============================================================================

class TreeBuilder:
    """
    Grows one Tree per ``build`` call.

    With ``n_jobs > 1`` the calling thread keeps expanding nodes that hold at
    least ``parallel_min_samples`` instances and hands every smaller child
    subtree to a thread pool. Workers grow detached arenas sequentially (no
    nested submission); their results are grafted back and the arena is
    renumbered in preorder. Sibling subtrees never share instances and every
    worker polls the one Deadline of the build.

    ``clock`` is the time source of that Deadline.
    """

    def __init__(self, n_jobs: int = 1, parallel_min_samples: int = 2000,
                 verbose_depth: int = 3, clock=time.perf_counter):
        self.n_jobs = max(1, int(n_jobs))
        self.parallel_min_samples = parallel_min_samples
        self.verbose_depth = verbose_depth
        self.clock = clock

    def build(self, data: FeatureMatrix, params: BuildParameters) -> Tree:
        params.validate()
        if len(data) == 0:
            raise EmptyDataset("FeatureMatrix has zero instances")

        deadline = Deadline(params.time_limit, clock=self.clock)
        evaluator = SplitEvaluator(
            criterion=params.criterion,
            min_samples_leaf=params.min_samples_leaf,
            max_search_iter=params.max_search_iter,
        )
        ctx = _BuildContext(data, params, evaluator, deadline)

        tree = _new_tree(data, params)
        indices = np.arange(len(data), dtype=np.int64)

        if self.n_jobs > 1:
            with ThreadPoolExecutor(max_workers=self.n_jobs) as pool:
                pending = []
                self._grow(tree, ctx, indices, 0, pool, pending)
                # Graft in submission order; each future's subtree lands
                # under the node that spawned it.
                for parent_id, side, future in pending:
                    subtree, timed_out = future.result()
                    tree.graft(parent_id, side, subtree)
                    ctx.timed_out |= timed_out
            tree = tree.compact()
        else:
            self._grow(tree, ctx, indices, 0, None, None)

        tree.build_time = deadline.elapsed()
        tree.timed_out = ctx.timed_out
        if tree.timed_out:
            logger.info(f"Deadline of {params.time_limit}s reached, "
                        f"tree truncated: {tree.get_summary()}")
        else:
            logger.debug(f"Built tree: {tree.get_summary()}")
        return tree

    def _grow(self, tree, ctx, indices, depth, pool, pending):
        """Depth-first growth of the subtree over ``indices`` into ``tree``."""
        root_id = tree.add_node(ctx.histogram(indices), depth)
        stack = [(root_id, indices)]

        while stack:
            node_id, idx = stack.pop()

            found = ctx.try_split(tree, node_id, idx, self.verbose_depth)
            if found is None:
                continue
            cand, gain = found

            child_depth = tree.nodes[node_id].depth + 1
            children = []
            for side, child_idx in (("left", idx[cand.left_mask]),
                                    ("right", idx[~cand.left_mask])):
                child_id = tree.add_node(ctx.histogram(child_idx), child_depth)
                children.append((side, child_id, child_idx))
            tree.set_split(node_id, cand.split, children[0][1],
                           children[1][1], gain)

            delegate = (pool is not None
                        and len(idx) >= self.parallel_min_samples)
            # Right pushed first so the left subtree is expanded first.
            for side, child_id, child_idx in reversed(children):
                if delegate and len(child_idx) < self.parallel_min_samples:
                    # Placeholder leaf until the worker's subtree is grafted.
                    tree.set_leaf(child_id, StopReason.DEADLINE)
                    pending.append((node_id, side, pool.submit(
                        self._grow_detached, ctx, child_idx, child_depth)))
                else:
                    stack.append((child_id, child_idx))

        return root_id

    def _grow_detached(self, ctx, indices, depth):
        sub = _new_tree(ctx.data, ctx.params)
        local = ctx.fork()
        self._grow(sub, local, indices, depth, None, None)
        return sub, local.timed_out


def _new_tree(data: FeatureMatrix, params: BuildParameters) -> Tree:
    return Tree(classes=np.array(data.classes), n_features=data.n_features,
                max_depth=params.max_depth, lambd=params.lambd,
                multivariate=params.multivariate, criterion=params.criterion)


class _BuildContext:
    """Per-build state read by every node visit."""

    def __init__(self, data, params, evaluator, deadline):
        self.data = data
        self.params = params
        self.evaluator = evaluator
        self.deadline = deadline
        self.timed_out = False
        self.n_total = len(data)
        self.root_impurity = evaluator.impurity(data.codes, data.n_classes)

    def fork(self) -> "_BuildContext":
        ctx = _BuildContext.__new__(_BuildContext)
        ctx.__dict__.update(self.__dict__)
        ctx.timed_out = False
        return ctx

    def histogram(self, idx):
        return histogram(self.data.codes[idx], self.data.n_classes)

    def try_split(self, tree, node_id, idx, verbose_depth):
        """(candidate, gain) for node ``node_id``, or None once it is a leaf."""
        params = self.params
        node = tree.nodes[node_id]
        n = len(idx)

        reason = None
        if self.deadline.expired():
            self.timed_out = True
            reason = StopReason.DEADLINE
        elif node.depth >= params.max_depth:
            reason = StopReason.MAX_DEPTH
        elif np.count_nonzero(node.histogram) <= 1:
            reason = StopReason.PURE
        elif n < params.min_samples_split or n < 2 * params.min_samples_leaf:
            reason = StopReason.MIN_SAMPLES
        if reason is not None:
            tree.set_leaf(node_id, reason)
            return None

        search_deadline = (self.deadline.share(params.search_share)
                           if params.multivariate else self.deadline)
        cand = self.evaluator.evaluate(
            self.data.X[idx], self.data.codes[idx], self.data.n_classes,
            multivariate=params.multivariate, deadline=search_deadline)

        if cand is None:
            tree.set_leaf(node_id, StopReason.NO_VALID_SPLIT)
            return None

        gain = (n / self.n_total) * cand.improvement / self.root_impurity
        if gain - params.lambd * params.complexity_penalty <= 0:
            tree.set_leaf(node_id, StopReason.REGULARIZED)
            return None

        if node.depth < verbose_depth:
            logger.debug(f"{'  ' * node.depth}SPLIT node={node_id} {cand.split} "
                         f"(gain={gain:.4f}, n={n}, left={cand.n_left}, "
                         f"right={cand.n_right})")
        return cand, gain


def build_tree(data: FeatureMatrix, time_limit: float, max_depth: int,
               lambd: float = 0.0, multivariate: bool = False,
               **kwargs) -> Tree:
    """One-call build with default engine settings."""
    params = BuildParameters(time_limit=time_limit, max_depth=max_depth,
                             lambd=lambd, multivariate=multivariate, **kwargs)
    return TreeBuilder().build(data, params)
