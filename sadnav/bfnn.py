"""Brute-force nearest-neighbour search over point clouds.

A cloud is an array-like of shape (N, 3) or wider; only the first three
columns (x, y, z) take part in the search. Matches are ``(ref_index,
query_index)`` pairs.
"""

from __future__ import annotations

import os
from concurrent.futures import ThreadPoolExecutor

import numpy as np

INVALID_ID = -1
"""Index used in matches for a query point that found no neighbour."""

_CHUNK = 256


def _workers() -> int:
    return min(32, os.cpu_count() or 1)


def _as_points(cloud) -> np.ndarray:
    arr = np.asarray(cloud, dtype=float)
    if arr.size == 0:
        return np.zeros((0, 3))
    if arr.ndim != 2 or arr.shape[1] < 3:
        raise ValueError("a cloud must have shape (N, 3) or wider")
    return arr[:, :3]


def _as_point(point) -> np.ndarray:
    arr = np.asarray(point, dtype=float).reshape(-1)
    if arr.size < 3:
        raise ValueError("a point needs x, y and z")
    return arr[:3]


def _squared_distances(pts: np.ndarray, point: np.ndarray) -> np.ndarray:
    diff = pts - point
    return np.einsum("ij,ij->i", diff, diff)


def _nearest(pts: np.ndarray, point: np.ndarray) -> int:
    if len(pts) == 0:
        raise ValueError("cannot search an empty cloud")
    return int(np.argmin(_squared_distances(pts, point)))


def _nearest_k(pts: np.ndarray, point: np.ndarray, k: int) -> list[int]:
    if k < 0 or k > len(pts):
        raise ValueError(f"k must be between 0 and the cloud size {len(pts)}, got {k}")
    order = np.argsort(_squared_distances(pts, point), kind="stable")
    return [int(i) for i in order[:k]]


def bfnn_point(cloud, point) -> int:
    """Index of the point in ``cloud`` closest to ``point``."""
    return _nearest(_as_points(cloud), _as_point(point))


def bfnn_point_k(cloud, point, k: int = 5) -> list[int]:
    """Indices of the ``k`` points closest to ``point``, nearest first."""
    return _nearest_k(_as_points(cloud), _as_point(point), k)


def bfnn_cloud(cloud1, cloud2) -> list[tuple[int, int]]:
    """Nearest point in ``cloud1`` for every point of ``cloud2``, one at a time."""
    ref = _as_points(cloud1)
    query = _as_points(cloud2)
    return [(_nearest(ref, q), j) for j, q in enumerate(query)]


def bfnn_cloud_mt(cloud1, cloud2) -> list[tuple[int, int]]:
    """Same result as :func:`bfnn_cloud`, computed in parallel chunks."""
    ref = _as_points(cloud1)
    query = _as_points(cloud2)
    if len(query) == 0:
        return []
    if len(ref) == 0:
        raise ValueError("cannot search an empty cloud")

    def chunk_nearest(start: int) -> np.ndarray:
        block = query[start : start + _CHUNK]
        diff = block[:, None, :] - ref[None, :, :]
        return np.argmin(np.einsum("ijk,ijk->ij", diff, diff), axis=1)

    starts = range(0, len(query), _CHUNK)
    with ThreadPoolExecutor(max_workers=_workers()) as pool:
        nearest = np.concatenate(list(pool.map(chunk_nearest, starts)))
    return [(int(i), j) for j, i in enumerate(nearest)]


def bfnn_cloud_mt_k(cloud1, cloud2, k: int = 5) -> list[tuple[int, int]]:
    """The ``k`` nearest points in ``cloud1`` for every point of ``cloud2``.

    The result holds ``k`` consecutive matches per query point, nearest first.
    """
    ref = _as_points(cloud1)
    query = _as_points(cloud2)
    with ThreadPoolExecutor(max_workers=_workers()) as pool:
        neighbours = list(pool.map(lambda q: _nearest_k(ref, q, k), query))
    return [(i, j) for j, found in enumerate(neighbours) for i in found]