"""
Arena-backed classification tree.

Nodes live in ``Tree.nodes`` and refer to their children by index; the root
is node 0. Every node keeps the class histogram of the training instances
that reached it, so an internal node's histogram is always the sum of its
children's. Turning such a node into a leaf is therefore an O(1) re-link.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

import numpy as np

from .errors import MalformedTree
from .splits import Split


class StopReason(Enum):
    MAX_DEPTH = "MAX_DEPTH"
    PURE = "PURE"
    MIN_SAMPLES = "MIN_SAMPLES"
    DEADLINE = "DEADLINE"
    NO_VALID_SPLIT = "NO_VALID_SPLIT"
    REGULARIZED = "REGULARIZED"
    MERGED = "MERGED"


NO_CHILD = -1


@dataclass
class Node:
    histogram: np.ndarray
    depth: int
    split: Optional[Split] = None
    left: int = NO_CHILD
    right: int = NO_CHILD
    reason: Optional[StopReason] = None
    gain: float = 0.0

    @property
    def is_leaf(self) -> bool:
        return self.split is None

    @property
    def n_samples(self) -> int:
        return int(self.histogram.sum())

    @property
    def prediction(self) -> int:
        """Majority class code (lowest code on ties)."""
        return int(np.argmax(self.histogram))

    def copy(self) -> "Node":
        return Node(self.histogram, self.depth, self.split, self.left,
                    self.right, self.reason, self.gain)


@dataclass
class Tree:
    classes: np.ndarray
    n_features: int
    max_depth: int
    lambd: float = 0.0
    multivariate: bool = False
    criterion: str = "gini"
    nodes: List[Node] = field(default_factory=list)
    build_time: float = 0.0
    timed_out: bool = False

    ROOT = 0

    # ── Arena primitives ────────────────────────────────────────────

    def add_node(self, histogram: np.ndarray, depth: int) -> int:
        h = np.asarray(histogram, dtype=np.int64)
        h.setflags(write=False)
        self.nodes.append(Node(h, depth))
        return len(self.nodes) - 1

    def set_split(self, node_id: int, split: Split, left: int, right: int,
                  gain: float = 0.0):
        node = self.nodes[node_id]
        node.split = split
        node.left = left
        node.right = right
        node.reason = None
        node.gain = gain

    def set_leaf(self, node_id: int, reason: StopReason):
        node = self.nodes[node_id]
        node.split = None
        node.left = NO_CHILD
        node.right = NO_CHILD
        node.reason = reason

    def collapse(self, node_id: int):
        """Replace an internal node whose children are both leaves by a leaf."""
        node = self.nodes[node_id]
        if node.is_leaf:
            raise MalformedTree(f"node {node_id} is already a leaf")
        if not (self.nodes[node.left].is_leaf
                and self.nodes[node.right].is_leaf):
            raise MalformedTree(f"node {node_id} has a non-leaf child")
        self.set_leaf(node_id, StopReason.MERGED)

    def graft(self, node_id: int, side: str, subtree: "Tree") -> int:
        """Append ``subtree``'s reachable nodes and hang them under ``node_id``."""
        offset = len(self.nodes)
        mapping = {}
        order = subtree.preorder()
        for k, old in enumerate(order):
            mapping[old] = offset + k
        for old in order:
            node = subtree.nodes[old].copy()
            if not node.is_leaf:
                node.left = mapping[node.left]
                node.right = mapping[node.right]
            self.nodes.append(node)
        parent = self.nodes[node_id]
        if side == "left":
            parent.left = offset
        else:
            parent.right = offset
        return offset

    # ── Traversal ───────────────────────────────────────────────────

    def preorder(self) -> List[int]:
        if not self.nodes:
            return []
        out = []
        seen = set()
        stack = [self.ROOT]
        while stack:
            i = stack.pop()
            if i in seen:
                raise MalformedTree(f"node {i} reachable twice")
            seen.add(i)
            out.append(i)
            node = self.nodes[i]
            if not node.is_leaf:
                for child in (node.right, node.left):
                    if not 0 <= child < len(self.nodes):
                        raise MalformedTree(
                            f"node {i} has missing child {child}")
                    stack.append(child)
        return out

    def leaf_ids(self) -> List[int]:
        return [i for i in self.preorder() if self.nodes[i].is_leaf]

    def parents(self) -> Dict[int, int]:
        out = {}
        for i in self.preorder():
            node = self.nodes[i]
            if not node.is_leaf:
                out[node.left] = i
                out[node.right] = i
        return out

    def sibling_leaf_pairs(self) -> List[int]:
        """Internal nodes whose two children are leaves."""
        return [i for i in self.preorder()
                if not self.nodes[i].is_leaf
                and self.nodes[self.nodes[i].left].is_leaf
                and self.nodes[self.nodes[i].right].is_leaf]

    @property
    def root(self) -> Node:
        return self.nodes[self.ROOT]

    @property
    def n_nodes(self) -> int:
        return len(self.preorder())

    @property
    def n_leaves(self) -> int:
        return len(self.leaf_ids())

    @property
    def depth(self) -> int:
        return max((self.nodes[i].depth for i in self.leaf_ids()), default=0)

    def class_distribution(self) -> np.ndarray:
        return np.array(self.root.histogram)

    def stop_reasons(self) -> Dict[str, int]:
        counts = {}
        for i in self.leaf_ids():
            key = self.nodes[i].reason.value if self.nodes[i].reason else "?"
            counts[key] = counts.get(key, 0) + 1
        return counts

    # ── Prediction ──────────────────────────────────────────────────

    def apply(self, X: np.ndarray) -> np.ndarray:
        """Leaf id reached by every row of ``X``."""
        X = np.asarray(X, dtype=np.float64)
        if X.ndim == 1:
            X = X.reshape(1, -1)
        out = np.full(len(X), self.ROOT, dtype=np.int64)
        self._batch_traverse(self.ROOT, X, np.arange(len(X)), out)
        return out

    def _batch_traverse(self, node_id, X, indices, out):
        stack = [(node_id, indices)]
        while stack:
            i, idx = stack.pop()
            if len(idx) == 0:
                continue
            node = self.nodes[i]
            if node.is_leaf:
                out[idx] = i
                continue
            mask = node.split.evaluate(X[idx])
            stack.append((node.right, idx[~mask]))
            stack.append((node.left, idx[mask]))

    def predict(self, X: np.ndarray) -> np.ndarray:
        leaves = self.apply(X)
        codes = np.array([self.nodes[i].prediction for i in leaves],
                         dtype=np.int64)
        return self.classes[codes] if len(codes) else codes

    def score(self, X: np.ndarray, y: np.ndarray) -> float:
        y = np.asarray(y)
        if len(y) == 0:
            return 0.0
        return float((self.predict(X) == y).mean())

    def training_errors(self) -> int:
        """Misclassified training instances implied by the leaf histograms."""
        return int(sum(self.nodes[i].n_samples - self.nodes[i].histogram.max()
                       for i in self.leaf_ids()))

    # ── Copy / layout ───────────────────────────────────────────────

    def _empty_like(self) -> "Tree":
        return Tree(self.classes, self.n_features, self.max_depth,
                    self.lambd, self.multivariate, self.criterion,
                    build_time=self.build_time, timed_out=self.timed_out)

    def copy(self) -> "Tree":
        out = self._empty_like()
        out.nodes = [n.copy() for n in self.nodes]
        return out

    def compact(self) -> "Tree":
        """Copy holding only reachable nodes, renumbered in preorder."""
        out = self._empty_like()
        order = self.preorder()
        mapping = {old: new for new, old in enumerate(order)}
        for old in order:
            node = self.nodes[old].copy()
            if not node.is_leaf:
                node.left = mapping[node.left]
                node.right = mapping[node.right]
            out.nodes.append(node)
        return out

    def same_as(self, other: "Tree") -> bool:
        """Structural and numeric identity, node by node in preorder."""
        a, b = self.preorder(), other.preorder()
        if len(a) != len(b) or not np.array_equal(self.classes, other.classes):
            return False
        for i, j in zip(a, b):
            x, y = self.nodes[i], other.nodes[j]
            if x.is_leaf != y.is_leaf or x.depth != y.depth:
                return False
            if not np.array_equal(x.histogram, y.histogram):
                return False
            if not x.is_leaf and not x.split.same_as(y.split):
                return False
        return True

    # ── Invariants ──────────────────────────────────────────────────

    def validate(self):
        """Raise MalformedTree if any structural invariant is broken."""
        if not self.nodes:
            raise MalformedTree("tree has no nodes")
        for i in self.preorder():
            node = self.nodes[i]
            if node.depth > self.max_depth:
                raise MalformedTree(
                    f"node {i} at depth {node.depth} > bound {self.max_depth}")
            if node.is_leaf:
                continue
            for child in (node.left, node.right):
                if self.nodes[child].depth != node.depth + 1:
                    raise MalformedTree(f"child {child} of {i} has bad depth")
            total = (self.nodes[node.left].histogram
                     + self.nodes[node.right].histogram)
            if not np.array_equal(total, node.histogram):
                raise MalformedTree(
                    f"children of node {i} do not partition its instances")

    # ── Export ──────────────────────────────────────────────────────

    def _node_dict(self, i: int) -> dict:
        node = self.nodes[i]
        d = {"n_samples": node.n_samples,
             "histogram": node.histogram.tolist(),
             "prediction": int(self.classes[node.prediction])}
        if node.is_leaf:
            d["reason"] = node.reason.value if node.reason else None
            return d
        d["split"] = node.split.to_dict()
        d["left"] = self._node_dict(node.left)
        d["right"] = self._node_dict(node.right)
        return d

    def to_dict(self) -> dict:
        return {"classes": self.classes.tolist(),
                "max_depth": self.max_depth,
                "lambd": self.lambd,
                "multivariate": self.multivariate,
                "build_time": self.build_time,
                "timed_out": self.timed_out,
                "root": self._node_dict(self.ROOT)}

    def format_tree(self) -> str:
        lines = []
        stack = [(self.ROOT, "", "Root")]
        while stack:
            i, indent, prefix = stack.pop()
            node = self.nodes[i]
            label = int(self.classes[node.prediction])
            if node.is_leaf:
                reason = node.reason.value if node.reason else "?"
                lines.append(f"{indent}{prefix}: LEAF class={label} "
                             f"n={node.n_samples} "
                             f"hist={node.histogram.tolist()} [{reason}]")
            else:
                lines.append(f"{indent}{prefix}: {node.split} "
                             f"(gain={node.gain:.4f}, n={node.n_samples})")
                stack.append((node.right, indent + "  ", "F"))
                stack.append((node.left, indent + "  ", "T"))
        return "\n".join(lines)

    def print_tree(self):
        print(self.format_tree())

    def get_summary(self) -> str:
        return (f"Nodes={self.n_nodes}, Leaves={self.n_leaves}, "
                f"Depth={self.depth}, Time={self.build_time:.3f}s, "
                f"TimedOut={self.timed_out}, Stops={self.stop_reasons()}")
