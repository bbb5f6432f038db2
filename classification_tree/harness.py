"""
Experiment harness: datasets x splits x methods x parameter combinations.

Combinations that differ only in ``mergePercentage`` share one build; the
merge pass runs once per percentage on that build. Every (dataset, split,
method, combination) yields one ``RunResult``. Results always come back in
that nesting order, whatever the number of worker processes.
"""

import math
import time
from collections import OrderedDict
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

import numpy as np
from loguru import logger
from sklearn.model_selection import ShuffleSplit, StratifiedShuffleSplit

from .config import Combination, ExperimentConfig
from .data import FeatureMatrix, load_all_datasets
from .errors import ConfigError, EmptyDataset
from .kernels import warmup_jit
from .methods import RESOLUTION_METHODS

METRICS = ("train_accuracy", "test_accuracy", "n_leaves_before", "n_leaves",
           "n_nodes", "depth", "build_time", "timed_out")


@dataclass
class RunResult:
    dataset: str
    method: str
    split: int
    params: Dict[str, object]
    train_accuracy: float
    test_accuracy: float
    n_leaves_before: int
    n_leaves: int
    n_nodes: int
    depth: int
    build_time: float
    timed_out: bool

    def value(self, key: str):
        """A metric, a parameter (config name) or dataset/method/split."""
        if key in ("dataset", "method", "split") or key in METRICS:
            return getattr(self, key)
        if key in self.params:
            return self.params[key]
        raise KeyError(key)

    def to_dict(self) -> dict:
        d = OrderedDict(dataset=self.dataset, method=self.method,
                        split=self.split)
        d.update(self.params)
        for m in METRICS:
            d[m] = getattr(self, m)
        return d


# =============================================================================
# TRAIN / TEST SPLITS
# =============================================================================

def train_test_splits(data: FeatureMatrix, n_splits: int = 10,
                      test_size: float = 0.2,
                      random_state: int = 42) -> List[Tuple[np.ndarray, np.ndarray]]:
    """
    ``n_splits`` shuffled train/test index pairs, stratified when every class
    has at least two instances. ``test_size=0`` gives a single split that
    trains on everything, and so does a dataset too small to hold out a
    test set.
    """
    n = len(data)
    if test_size <= 0:
        return [(np.arange(n), np.arange(0))]
    if math.ceil(test_size * n) >= n:
        logger.warning(f"{data.name}: {n} instance(s) leave no training set "
                       f"at test_size={test_size}, training on all of them")
        return [(np.arange(n), np.arange(0))]

    counts = data.class_counts()
    if counts.min() >= 2:
        splitter = StratifiedShuffleSplit(n_splits=n_splits,
                                          test_size=test_size,
                                          random_state=random_state)
        try:
            return list(splitter.split(data.X, data.codes))
        except ValueError as e:
            # Test or train side smaller than the number of classes.
            logger.debug(f"{data.name}: no stratified split ({e})")
    splitter = ShuffleSplit(n_splits=n_splits, test_size=test_size,
                            random_state=random_state)
    return list(splitter.split(data.X))


# =============================================================================
# TASKS
# =============================================================================

@dataclass
class _Task:
    dataset: str
    dataset_index: int
    method_index: int
    split: int
    method: str
    train: FeatureMatrix
    test: FeatureMatrix
    combos: List[Tuple[int, Combination]] = field(default_factory=list)


def _warm_worker():
    warmup_jit()


def _run_task(task: _Task) -> List[Tuple[tuple, RunResult]]:
    """Runs in a worker process: one build, one merge per percentage."""
    method = RESOLUTION_METHODS[task.method]
    first = task.combos[0][1]
    params = first.build_parameters()
    tree, merged = method(task.train, params,
                          [c.merge_percentage for _, c in task.combos])

    n_leaves_before = tree.n_leaves
    out = []
    for (combo_index, combo), (_, mtree) in zip(task.combos, merged):
        test_acc = (mtree.score(task.test.X, task.test.y)
                    if len(task.test) else float("nan"))
        result = RunResult(
            dataset=task.dataset, method=task.method, split=task.split,
            params=dict(combo.to_dict()),
            train_accuracy=mtree.score(task.train.X, task.train.y),
            test_accuracy=test_acc,
            n_leaves_before=n_leaves_before,
            n_leaves=mtree.n_leaves,
            n_nodes=mtree.n_nodes,
            depth=mtree.depth,
            build_time=tree.build_time,
            timed_out=tree.timed_out,
        )
        key = (task.dataset_index, task.split, task.method_index, combo_index)
        out.append((key, result))
    return out


# =============================================================================
# HARNESS
# =============================================================================

class ExperimentHarness:
    """
    Runs every resolution method of ``config`` on every dataset.

    ``n_workers > 1`` spreads tasks over a process pool (one build per
    worker at a time, nothing shared but the pickled inputs).
    """

    def __init__(self, config: ExperimentConfig, n_workers: int = 1,
                 n_splits: int = 10, test_size: float = 0.2,
                 random_state: int = 42):
        for m in config.resolution_methods:
            if m not in RESOLUTION_METHODS:
                raise ConfigError(f"Unknown resolution method {m!r}")
        if not 0.0 <= test_size < 1.0 or math.isnan(test_size):
            raise ConfigError(f"test_size must be in [0, 1), got {test_size!r}")
        if n_splits < 1:
            raise ConfigError(f"n_splits must be >= 1, got {n_splits!r}")
        self.config = config
        self.n_workers = max(1, int(n_workers))
        self.n_splits = n_splits
        self.test_size = test_size
        self.random_state = random_state
        self.results_: List[RunResult] = []

    def make_tasks(self, datasets: Mapping[str, FeatureMatrix]) -> List[_Task]:
        groups = OrderedDict()
        for i, combo in enumerate(self.config.parameters.combinations()):
            groups.setdefault(combo.build_key(), []).append((i, combo))

        tasks = []
        for d_idx, (name, data) in enumerate(datasets.items()):
            if len(data) == 0:
                raise EmptyDataset(f"dataset {name!r} has no instances")
            splits = train_test_splits(data, self.n_splits, self.test_size,
                                       self.random_state)
            for s_idx, (tr, te) in enumerate(splits):
                train, test = data.subset(tr), data.subset(te)
                for m_idx, method in enumerate(self.config.resolution_methods):
                    for combos in groups.values():
                        tasks.append(_Task(name, d_idx, m_idx, s_idx, method,
                                           train, test, list(combos)))
        return tasks

    def run(self, datasets: Optional[Mapping[str, FeatureMatrix]] = None
            ) -> List[RunResult]:
        if datasets is None:
            datasets = load_all_datasets(self.config.instances_path)
        tasks = self.make_tasks(datasets)
        n_runs = sum(len(t.combos) for t in tasks)
        logger.info(f"{len(datasets)} datasets, {len(tasks)} builds, "
                    f"{n_runs} runs, {self.n_workers} worker(s)")

        t0 = time.perf_counter()
        keyed = []
        if self.n_workers > 1 and len(tasks) > 1:
            with ProcessPoolExecutor(max_workers=self.n_workers,
                                     initializer=_warm_worker) as pool:
                for k, out in enumerate(pool.map(_run_task, tasks)):
                    keyed.extend(out)
                    self._progress(k, tasks)
        else:
            warmup_jit()
            for k, task in enumerate(tasks):
                keyed.extend(_run_task(task))
                self._progress(k, tasks)

        keyed.sort(key=lambda kr: kr[0])
        self.results_ = [r for _, r in keyed]
        logger.info(f"{n_runs} runs done in {time.perf_counter() - t0:.1f}s")
        return self.results_

    def _progress(self, k: int, tasks: List[_Task]):
        task = tasks[k]
        combo = task.combos[0][1]
        logger.info(f"[{k + 1}/{len(tasks)}] {task.dataset} "
                    f"split={task.split} {task.method} D={combo.max_depth} "
                    f"multivariate={combo.multivariate} lambd={combo.lambd}")
