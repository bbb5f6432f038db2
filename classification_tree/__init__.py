"""
Time-bounded classification trees.

Grow a tree under a wall-clock budget and a depth bound, with univariate or
oblique splits and a regularization weight, then merge leaves post hoc::

    from classification_tree import FeatureMatrix, build_tree, merge_leaves

    data = FeatureMatrix(X, y)
    tree = build_tree(data, time_limit=10, max_depth=4, lambd=0.1)
    pruned = merge_leaves(tree, 30)
    pruned.print_tree()

Logging goes through loguru and is disabled for this package until the
caller runs ``logger.enable("classification_tree")``.
"""

from loguru import logger

from .builder import BuildParameters, TreeBuilder, build_tree
from .config import (
    Combination, ExperimentConfig, ParameterGrid, load_config,
)
from .data import FeatureMatrix, Instance, load_all_datasets, load_dataset
from .deadline import Deadline
from .errors import (
    ConfigError, EmptyDataset, InconsistentDimensions, InputError,
    InvalidDepthBound, InvalidPercentage, InvalidRegularization,
    InvalidTimeLimit, MalformedTree,
)
from .harness import ExperimentHarness, RunResult
from .kernels import warmup_jit
from .merger import LeafMerger, MergeCandidate, MergePlan, merge_leaves
from .splits import Direction, Split, SplitCandidate, SplitEvaluator
from .tree import Node, StopReason, Tree

__version__ = "0.1.0"

logger.disable("classification_tree")

__all__ = [
    "BuildParameters", "Combination", "ConfigError", "Deadline",
    "Direction", "EmptyDataset", "ExperimentConfig", "ExperimentHarness",
    "FeatureMatrix", "InconsistentDimensions", "InputError", "Instance",
    "InvalidDepthBound", "InvalidPercentage", "InvalidRegularization",
    "InvalidTimeLimit", "LeafMerger", "MalformedTree", "MergeCandidate",
    "MergePlan", "Node", "ParameterGrid", "RunResult", "Split",
    "SplitCandidate", "SplitEvaluator", "StopReason", "Tree", "TreeBuilder",
    "build_tree", "load_all_datasets", "load_config", "load_dataset",
    "merge_leaves", "warmup_jit",
]
