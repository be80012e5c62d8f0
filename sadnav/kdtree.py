"""K-d tree with exact or approximate k-nearest-neighbour search."""

from __future__ import annotations

import heapq
import itertools
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

import numpy as np

from sadnav.bfnn import INVALID_ID, _as_point, _as_points, _workers

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class KdTreeNode:
    node_id: int = -1
    point_idx: int = 0
    axis_index: int = 0
    split_thresh: float = 0.0
    left: KdTreeNode | None = None
    right: KdTreeNode | None = None

    def is_leaf(self) -> bool:
        return self.left is None and self.right is None


class KdTree:
    """Binary space partition split at the mean of the axis of largest spread.

    Points that cannot be separated (all equal) share one leaf holding the
    first of them. With approximate search on, a branch is only visited when
    its squared plane distance is below ``alpha`` times the current k-th
    squared distance.
    """

    def __init__(self) -> None:
        self._root: KdTreeNode | None = None
        self._cloud = np.zeros((0, 3))
        self._nodes: dict[int, KdTreeNode] = {}
        self._size = 0
        self._next_id = 0
        self.approximate = True
        self.alpha = 0.1

    def build_tree(self, cloud) -> bool:
        """Build the tree; returns False for an empty cloud."""
        pts = _as_points(cloud)
        if len(pts) == 0:
            return False
        self.clear()
        self._cloud = pts.copy()

        stack: list[tuple[np.ndarray, KdTreeNode | None, str]] = [
            (np.arange(len(pts)), None, "")
        ]
        while stack:
            indices, parent, side = stack.pop()
            node = KdTreeNode(node_id=self._next_id)
            self._next_id += 1
            if parent is None:
                self._root = node
            else:
                setattr(parent, side, node)
            self._nodes[node.node_id] = node

            if len(indices) == 1:
                self._size += 1
                node.point_idx = int(indices[0])
                continue

            split = self._find_split(indices)
            if split is None:
                self._size += 1
                node.point_idx = int(indices[0])
                continue

            node.axis_index, node.split_thresh, left, right = split
            # right first so the left subtree is numbered first
            stack.append((right, node, "right"))
            stack.append((left, node, "left"))
        return True

    def _find_split(self, indices: np.ndarray):
        pts = self._cloud[indices]
        mean = pts.mean(axis=0)
        var = ((pts - mean) ** 2).sum(axis=0) / (len(pts) - 1)
        axis = int(np.argmax(var))
        thresh = float(mean[axis])
        mask = pts[:, axis] < thresh
        left, right = indices[mask], indices[~mask]
        if len(left) == 0 or len(right) == 0:
            return None
        return axis, thresh, left, right

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

    def _knn(self, point, node: KdTreeNode, heap, k: int, counter) -> None:
        if node.is_leaf():
            self._leaf_distance(point, node, heap, k, counter)
            return
        if point[node.axis_index] < node.split_thresh:
            this_side, that_side = node.left, node.right
        else:
            this_side, that_side = node.right, node.left
        self._knn(point, this_side, heap, k, counter)
        if self._need_expand(point, node, heap, k):
            self._knn(point, that_side, heap, k, counter)

    def _need_expand(self, point, node: KdTreeNode, heap, k: int) -> bool:
        if len(heap) < k:
            return True
        d = point[node.axis_index] - node.split_thresh
        worst = -heap[0][0]
        if self.approximate:
            return d * d < worst * self.alpha
        return d * d < worst

    def _leaf_distance(self, point, node: KdTreeNode, heap, k: int, counter) -> None:
        diff = point - self._cloud[node.point_idx]
        dis2 = float(diff @ diff)
        item = (-dis2, next(counter), node.point_idx)
        if len(heap) < k:
            heapq.heappush(heap, item)
        elif dis2 < -heap[0][0]:
            heapq.heapreplace(heap, item)

    def set_enable_ann(self, use_ann: bool = True, alpha: float = 0.1) -> None:
        self.approximate = use_ann
        self.alpha = alpha

    def __len__(self) -> int:
        """Number of leaves."""
        return self._size

    def clear(self) -> None:
        self._nodes = {}
        self._root = None
        self._size = 0
        self._next_id = 0

    def describe(self) -> list[str]:
        """One line per node, in node id order; the lines are also logged."""
        lines = []
        for node_id in sorted(self._nodes):
            node = self._nodes[node_id]
            if node.is_leaf():
                line = f"leaf node: {node.node_id}, idx: {node.point_idx}"
            else:
                line = (
                    f"node: {node.node_id}, axis: {node.axis_index}, "
                    f"th: {node.split_thresh:g}"
                )
            logger.info(line)
            lines.append(line)
        return lines