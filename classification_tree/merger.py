"""
Post-hoc leaf merging.

A merge collapses an internal node whose two children are leaves into one
leaf. Its cost is the number of extra training errors the collapse causes:

    err(left + right) - err(left) - err(right),   err(h) = sum(h) - max(h)

which is never negative. Candidates are taken cheapest first (lower node id
on ties). A collapse can turn the parent into a new candidate; it joins the
queue and may be merged in the same pass while the budget lasts.
"""

import heapq
import math
import numbers
from dataclasses import dataclass
from typing import List, Tuple

import numpy as np
from loguru import logger

from .errors import InvalidPercentage
from .tree import Tree


def _errors(h: np.ndarray) -> int:
    return int(h.sum() - h.max()) if len(h) else 0


def merge_cost(tree: Tree, node_id: int) -> int:
    """Training errors added by collapsing ``node_id`` into a leaf."""
    node = tree.nodes[node_id]
    left = tree.nodes[node.left]
    right = tree.nodes[node.right]
    return (_errors(node.histogram) - _errors(left.histogram)
            - _errors(right.histogram))


def check_percentage(merge_percentage) -> float:
    if (isinstance(merge_percentage, bool)
            or not isinstance(merge_percentage, numbers.Real)):
        raise InvalidPercentage(
            f"mergePercentage must be a number, got {merge_percentage!r}")
    pct = float(merge_percentage)
    if math.isnan(pct) or not 0.0 <= pct <= 100.0:
        raise InvalidPercentage(
            f"mergePercentage must be in [0, 100], got {merge_percentage!r}")
    return pct


@dataclass(frozen=True)
class MergeCandidate:
    node_id: int
    cost: int


@dataclass(frozen=True)
class MergePlan:
    """Ordered collapses for one pass over one tree."""
    merge_percentage: float
    n_leaves_start: int
    budget: int
    steps: Tuple[MergeCandidate, ...]

    @property
    def total_cost(self) -> int:
        return sum(s.cost for s in self.steps)

    @property
    def n_leaves_end(self) -> int:
        return self.n_leaves_start - len(self.steps)


class LeafMerger:
    """
    ``merge(tree, pct)`` performs ``floor(pct * n_leaves / 100)`` merges,
    counted on the leaves present at the start of the pass, or fewer when the
    tree runs out of sibling-leaf pairs (a single leaf has none).

    The input tree is never mutated: ``apply`` works on a copy, so a reader
    holding the source tree never sees a half-merged tree.
    """

    def plan(self, tree: Tree, merge_percentage) -> MergePlan:
        pct = check_percentage(merge_percentage)
        n_leaves = tree.n_leaves
        budget = int(pct * n_leaves // 100)

        parents = tree.parents()
        leaf = {i: tree.nodes[i].is_leaf for i in tree.preorder()}

        heap = [(merge_cost(tree, i), i) for i in tree.sibling_leaf_pairs()]
        heapq.heapify(heap)

        steps: List[MergeCandidate] = []
        while heap and len(steps) < budget:
            cost, node_id = heapq.heappop(heap)
            steps.append(MergeCandidate(node_id, cost))
            leaf[node_id] = True

            parent_id = parents.get(node_id)
            if parent_id is None:
                continue
            parent = tree.nodes[parent_id]
            if leaf[parent.left] and leaf[parent.right]:
                heapq.heappush(heap, (merge_cost(tree, parent_id), parent_id))

        return MergePlan(pct, n_leaves, budget, tuple(steps))

    def apply(self, tree: Tree, plan: MergePlan) -> Tree:
        if plan.n_leaves_start != tree.n_leaves:
            raise ValueError(
                f"plan made for {plan.n_leaves_start} leaves, "
                f"tree has {tree.n_leaves}")
        if not plan.steps:
            return tree.copy()

        out = tree.copy()
        for step in plan.steps:
            logger.debug(f"MERGE node={step.node_id} cost={step.cost}")
            out.collapse(step.node_id)
        out = out.compact()

        logger.debug(f"Merged {len(plan.steps)}/{plan.budget} "
                     f"(pct={plan.merge_percentage:g}): leaves "
                     f"{plan.n_leaves_start} -> {out.n_leaves}, "
                     f"+{plan.total_cost} training errors")
        return out

    def merge(self, tree: Tree, merge_percentage) -> Tree:
        return self.apply(tree, self.plan(tree, merge_percentage))


def merge_leaves(tree: Tree, merge_percentage) -> Tree:
    return LeafMerger().merge(tree, merge_percentage)
