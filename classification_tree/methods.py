"""
Resolution methods selectable from ``resolutionMethods``.

A method grows one tree on a training set and returns it together with one
merged tree per requested ``mergePercentage``. Building once and merging
many times is equivalent to a build per percentage: merging never touches
the tree it starts from.
"""

from typing import Callable, Dict, List, Sequence, Tuple

from .builder import BuildParameters, TreeBuilder
from .data import FeatureMatrix
from .merger import LeafMerger
from .tree import Tree

MethodResult = Tuple[Tree, List[Tuple[float, Tree]]]


def run_build_tree(train: FeatureMatrix, params: BuildParameters,
                   merge_percentages: Sequence[float],
                   n_jobs: int = 1) -> MethodResult:
    tree = TreeBuilder(n_jobs=n_jobs).build(train, params)
    merger = LeafMerger()
    return tree, [(pct, merger.merge(tree, pct)) for pct in merge_percentages]


RESOLUTION_METHODS: Dict[str, Callable[..., MethodResult]] = {
    "build_tree": run_build_tree,
}
