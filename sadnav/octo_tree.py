"""Octree with exact or approximate k-nearest-neighbour search."""

from __future__ import annotations

import heapq
import itertools
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

import numpy as np

from sadnav.bfnn import INVALID_ID, _as_point, _as_points, _workers

logger = logging.getLogger(__name__)


def _zeros() -> np.ndarray:
    return np.zeros(3)


@dataclass(eq=False)
class Box3D:
    """Axis-aligned box given by its lower and upper corners."""

    lower: np.ndarray = field(default_factory=_zeros)
    upper: np.ndarray = field(default_factory=_zeros)

    def __post_init__(self) -> None:
        self.lower = np.array(self.lower, dtype=float).reshape(3)
        self.upper = np.array(self.upper, dtype=float).reshape(3)

    def inside(self, pt) -> bool:
        """Whether ``pt`` lies in the box, borders included."""
        p = _as_point(pt)
        return bool(np.all(p <= self.upper) and np.all(p >= self.lower))

    def distance(self, pt) -> float:
        """Largest per-axis distance from ``pt`` to the box; zero inside."""
        p = _as_point(pt)
        below = float(np.max(self.lower - p))
        above = float(np.max(p - self.upper))
        return max(0.0, below, above)


@dataclass(eq=False)
class OctoTreeNode:
    node_id: int = -1
    point_idx: int = -1  # -1 for a node that holds no point
    box: Box3D = field(default_factory=Box3D)
    children: list[OctoTreeNode] | None = None

    def is_leaf(self) -> bool:
        return self.children is None


class OctoTree:
    """Octree that splits every node holding more than one point into eight.

    Coincident points cannot be separated and share one leaf holding the
    first of them. Pruning compares the box distance of a child against the
    current k-th squared distance, scaled by ``alpha`` when approximate
    search is on.
    """

    def __init__(self) -> None:
        self._root: OctoTreeNode | None = None
        self._cloud = np.zeros((0, 3))
        self._nodes: dict[int, OctoTreeNode] = {}
        self._size = 0
        self._next_id = 0
        self.approximate = False
        self.alpha = 1.0

    @property
    def root(self) -> OctoTreeNode | None:
        return self._root

    def _new_node(self, box: Box3D) -> OctoTreeNode:
        node = OctoTreeNode(node_id=self._next_id, box=box)
        self._next_id += 1
        return node

    def build_tree(self, cloud) -> bool:
        """Build the tree; returns False for an empty cloud."""
        pts = _as_points(cloud)
        if len(pts) == 0:
            return False
        self.clear()
        self._cloud = pts.copy()

        self._root = self._new_node(Box3D(pts.min(axis=0), pts.max(axis=0)))
        stack = [(self._root, np.arange(len(pts)))]
        while stack:
            node, indices = stack.pop()
            self._nodes[node.node_id] = node
            if len(indices) == 0:
                continue
            if len(indices) == 1 or np.all(self._cloud[indices] == self._cloud[indices[0]]):
                self._size += 1
                node.point_idx = int(indices[0])
                continue
            child_indices = self._expand(node, indices)
            # pushed in reverse so the first child is expanded first
            stack.extend(reversed(list(zip(node.children, child_indices))))
        return True

    def _expand(self, node: OctoTreeNode, indices: np.ndarray) -> list[np.ndarray]:
        lower, upper = node.box.lower, node.box.upper
        center = 0.5 * (lower + upper)
        children = []
        for i in range(8):
            lo = lower.copy()
            hi = center.copy()
            for axis in range(3):
                if i & (1 << axis):
                    lo[axis] = center[axis]
                    hi[axis] = upper[axis]
            children.append(self._new_node(Box3D(lo, hi)))
        node.children = children

        pts = self._cloud[indices]
        unassigned = np.ones(len(indices), dtype=bool)
        child_indices = []
        for child in children:
            inside = np.all((pts >= child.box.lower) & (pts <= child.box.upper), axis=1)
            take = inside & unassigned
            child_indices.append(indices[take])
            unassigned &= ~take
        return child_indices

    def get_closest_point(self, pt, k: int = 5) -> list[int]:
        """Indices of the ``k`` nearest points to ``pt``, nearest first."""
        if k <= 0:
            raise ValueError(f"k must be positive, got {k}")
        if k > self._size:
            raise ValueError(f"cannot set k larger than cloud size: {k}, {self._size}")
        return self._search(_as_point(pt), k)

    def _search(self, point: np.ndarray, k: int) -> list[int]:
        heap: list[tuple[float, int, int]] = []
        self._knn(point, self._root, heap, k, itertools.count())
        ordered = sorted(heap, key=lambda item: (-item[0], item[1]))
        return [idx for _, _, idx in ordered]

    def get_closest_point_mt(self, cloud, k: int = 5) -> list[tuple[int, int]]:
        """``k`` matches per query point; missing neighbours are ``INVALID_ID``."""
        if k <= 0:
            raise ValueError(f"k must be positive, got {k}")
        pts = _as_points(cloud)
        if k > self._size:
            logger.error("cannot set k larger than cloud size: %d, %d", k, self._size)
            return [(INVALID_ID, j) for j in range(len(pts)) for _ in range(k)]

        with ThreadPoolExecutor(max_workers=_workers()) as pool:
            results = list(pool.map(lambda p: self._search(p, k), pts))
        matches = []
        for j, found in enumerate(results):
            for i in range(k):
                matches.append((found[i] if i < len(found) else INVALID_ID, j))
        return matches

    def _knn(self, point, node: OctoTreeNode, heap, k: int, counter) -> None:
        if node.is_leaf():
            if node.point_idx != -1:
                self._leaf_distance(point, node, heap, k, counter)
            return

        # search the child holding the point first, or the closest one
        children = node.children
        idx_child = -1
        min_dis = float("inf")
        for i, child in enumerate(children):
            if child.box.inside(point):
                idx_child = i
                break
            d = child.box.distance(point)
            if d < min_dis:
                idx_child, min_dis = i, d

        self._knn(point, children[idx_child], heap, k, counter)
        for i, child in enumerate(children):
            if i != idx_child and self._need_expand(point, child, heap, k):
                self._knn(point, child, heap, k, counter)

    def _need_expand(self, point, node: OctoTreeNode, heap, k: int) -> bool:
        if len(heap) < k:
            return True
        d = node.box.distance(point)
        worst = -heap[0][0]
        if self.approximate:
            return d * d < worst * self.alpha
        return d * d < worst

    def _leaf_distance(self, point, node: OctoTreeNode, heap, k: int, counter) -> None:
        diff = point - self._cloud[node.point_idx]
        dis2 = float(diff @ diff)
        item = (-dis2, next(counter), node.point_idx)
        if len(heap) < k:
            heapq.heappush(heap, item)
        elif dis2 < -heap[0][0]:
            heapq.heapreplace(heap, item)

    def set_approximate(self, use_ann: bool = True, alpha: float = 0.1) -> None:
        self.approximate = use_ann
        self.alpha = alpha

    def __len__(self) -> int:
        """Number of leaves holding a point."""
        return self._size

    def clear(self) -> None:
        self._nodes = {}
        self._root = None
        self._size = 0
        self._next_id = 0