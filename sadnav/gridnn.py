"""Grid-based approximate nearest-neighbour search in 2D or 3D cells."""

from __future__ import annotations

import enum
import logging
from concurrent.futures import ThreadPoolExecutor

import numpy as np

from sadnav.bfnn import INVALID_ID, _as_point, _as_points, _nearest, _workers

logger = logging.getLogger(__name__)


class NearbyType(enum.Enum):
    CENTER = "center"  # the point's own cell only
    NEARBY4 = "nearby4"  # 2D: plus left, right, up, down
    NEARBY8 = "nearby8"  # 2D: plus the four corners
    NEARBY6 = "nearby6"  # 3D: plus the six face neighbours


_OFFSETS = {
    (2, NearbyType.CENTER): [(0, 0)],
    (2, NearbyType.NEARBY4): [(0, 0), (-1, 0), (1, 0), (0, 1), (0, -1)],
    (2, NearbyType.NEARBY8): [
        (0, 0), (-1, 0), (1, 0), (0, 1), (0, -1),
        (-1, -1), (-1, 1), (1, -1), (1, 1),
    ],
    (3, NearbyType.CENTER): [(0, 0, 0)],
    (3, NearbyType.NEARBY6): [
        (0, 0, 0), (-1, 0, 0), (1, 0, 0), (0, 1, 0),
        (0, -1, 0), (0, 0, -1), (0, 0, 1),
    ],
}


def _round_half_away(values: np.ndarray) -> np.ndarray:
    return np.where(values >= 0, np.floor(values + 0.5), np.ceil(values - 0.5))


class GridNN:
    """Nearest neighbour among the points of the query's cell and its neighbours.

    A point's cell key is its first ``dim`` coordinates rounded to the nearest
    integer, half away from zero.
    """

    def __init__(
        self,
        resolution: float = 0.1,
        nearby_type: NearbyType = NearbyType.NEARBY4,
        dim: int = 2,
    ) -> None:
        if dim not in (2, 3):
            raise ValueError(f"grid dimension must be 2 or 3, got {dim}")
        self.dim = dim
        self.resolution = resolution
        self.inv_resolution = 1.0 / resolution

        if dim == 2 and nearby_type is NearbyType.NEARBY6:
            logger.info("2D grid does not support nearby6, using nearby4 instead.")
            nearby_type = NearbyType.NEARBY4
        elif dim == 3 and nearby_type not in (NearbyType.NEARBY6, NearbyType.CENTER):
            logger.info("3D grid does not support nearby4/8, using nearby6 instead.")
            nearby_type = NearbyType.NEARBY6
        self.nearby_type = nearby_type
        self.nearby_grids = list(_OFFSETS[(dim, nearby_type)])

        self._grids: dict[tuple[int, ...], list[int]] = {}
        self._cloud = np.zeros((0, 3))

    def _key(self, point: np.ndarray) -> tuple[int, ...]:
        return tuple(int(c) for c in _round_half_away(point[: self.dim]))

    def set_point_cloud(self, cloud) -> bool:
        """Index ``cloud`` into cells."""
        pts = _as_points(cloud)
        self._grids = {}
        for idx, pt in enumerate(pts):
            self._grids.setdefault(self._key(pt), []).append(idx)
        self._cloud = pts.copy()
        logger.info("grids: %d", len(self._grids))
        return True

    def get_closest_point(self, pt):
        """``(closest_point, index)`` for ``pt``, or None if its cells are empty."""
        point = _as_point(pt)
        key = self._key(point)
        candidates: list[int] = []
        for delta in self.nearby_grids:
            cell = tuple(k + d for k, d in zip(key, delta))
            candidates.extend(self._grids.get(cell, ()))
        if not candidates:
            return None
        best = candidates[_nearest(self._cloud[candidates], point)]
        return self._cloud[best].copy(), best

    def get_closest_point_for_cloud(self, ref, query) -> list[tuple[int, int]]:
        """Matches for every query point that found a neighbour, in query order."""
        matches = []
        for idx, q in enumerate(_as_points(query)):
            found = self.get_closest_point(q)
            if found is not None:
                matches.append((found[1], idx))
        return matches

    def get_closest_point_for_cloud_mt(self, ref, query) -> list[tuple[int, int]]:
        """One match per query point; failures are ``(INVALID_ID, INVALID_ID)``."""
        pts = _as_points(query)

        def match(idx: int) -> tuple[int, int]:
            found = self.get_closest_point(pts[idx])
            if found is None:
                return INVALID_ID, INVALID_ID
            return found[1], idx

        with ThreadPoolExecutor(max_workers=_workers()) as pool:
            return list(pool.map(match, range(len(pts))))