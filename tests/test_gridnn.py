import numpy as np
import pytest

from sadnav.bfnn import INVALID_ID, bfnn_cloud
from sadnav.gridnn import GridNN, NearbyType


def evaluate_matches(truth, esti):
    truth_set = set(truth)
    esti_set = set(esti)
    effective = [d for d in esti if d[0] != INVALID_ID and d[1] != INVALID_ID]
    fp = sum(1 for d in effective if d not in truth_set)
    fn = sum(1 for d in truth if d not in esti_set)
    return fp, fn


def lattice_clouds(seed):
    rng = np.random.default_rng(seed)
    base = np.array([[i, j, 0.0] for i in range(5) for j in range(5)])
    ref = base + rng.uniform(-0.1, 0.1, size=base.shape)
    query = base + rng.uniform(-0.1, 0.1, size=base.shape)
    return ref, query


def random_clouds(seed):
    rng = np.random.default_rng(seed)
    return rng.uniform(-3, 3, size=(300, 3)), rng.uniform(-3, 3, size=(200, 3))


def test_nearby_type_coercion():
    assert GridNN(0.1, NearbyType.NEARBY6, dim=2).nearby_type is NearbyType.NEARBY4
    assert GridNN(0.1, NearbyType.NEARBY8, dim=3).nearby_type is NearbyType.NEARBY6
    assert GridNN(0.1, NearbyType.CENTER, dim=3).nearby_type is NearbyType.CENTER


def test_nearby_grid_counts():
    assert len(GridNN(0.1, NearbyType.CENTER).nearby_grids) == 1
    assert len(GridNN(0.1, NearbyType.NEARBY4).nearby_grids) == 5
    assert len(GridNN(0.1, NearbyType.NEARBY8).nearby_grids) == 9
    assert len(GridNN(0.1, NearbyType.NEARBY6, dim=3).nearby_grids) == 7


def test_invalid_dim_raises():
    with pytest.raises(ValueError):
        GridNN(0.1, NearbyType.CENTER, dim=4)


def test_cells_round_half_away_from_zero():
    grid = GridNN(0.1, NearbyType.CENTER)
    grid.set_point_cloud([[0.5, 0.0, 0.0], [-0.5, 0.0, 0.0]])
    point, idx = grid.get_closest_point([0.6, 0.0, 0.0])
    assert idx == 0
    assert np.allclose(point, [0.5, 0.0, 0.0])
    assert grid.get_closest_point([-0.7, 0.0, 0.0])[1] == 1
    assert grid.get_closest_point([0.4, 0.0, 0.0]) is None


def test_neighbour_cells_are_searched():
    center = GridNN(0.1, NearbyType.CENTER)
    nearby = GridNN(0.1, NearbyType.NEARBY4)
    cloud = [[1.0, 0.0, 0.0]]
    center.set_point_cloud(cloud)
    nearby.set_point_cloud(cloud)
    assert center.get_closest_point([0.0, 0.0, 0.0]) is None
    assert nearby.get_closest_point([0.0, 0.0, 0.0])[1] == 0


@pytest.mark.parametrize(
    "nearby_type, dim",
    [
        (NearbyType.CENTER, 2),
        (NearbyType.NEARBY4, 2),
        (NearbyType.NEARBY8, 2),
        (NearbyType.NEARBY6, 3),
    ],
)
def test_lattice_matches_brute_force(nearby_type, dim):
    ref, query = lattice_clouds(7)
    truth = bfnn_cloud(ref, query)
    grid = GridNN(0.1, nearby_type, dim=dim)
    grid.set_point_cloud(ref)
    single = grid.get_closest_point_for_cloud(ref, query)
    multi = grid.get_closest_point_for_cloud_mt(ref, query)
    assert evaluate_matches(truth, single) == (0, 0)
    assert evaluate_matches(truth, multi) == (0, 0)


@pytest.mark.parametrize("nearby_type", [NearbyType.CENTER, NearbyType.NEARBY4, NearbyType.NEARBY8])
def test_single_and_multi_thread_agree(nearby_type):
    ref, query = random_clouds(11)
    grid = GridNN(0.1, nearby_type)
    grid.set_point_cloud(ref)
    single = grid.get_closest_point_for_cloud(ref, query)
    multi = grid.get_closest_point_for_cloud_mt(ref, query)
    assert len(multi) == len(query)
    assert [m for m in multi if m[0] != INVALID_ID] == single


def test_grid_matches_never_beat_brute_force():
    ref, query = random_clouds(13)
    truth = dict((q, r) for r, q in bfnn_cloud(ref, query))
    grid = GridNN(0.1, NearbyType.NEARBY8)
    grid.set_point_cloud(ref)
    matches = grid.get_closest_point_for_cloud(ref, query)
    assert matches
    for r, q in matches:
        d_grid = np.linalg.norm(ref[r] - query[q])
        d_true = np.linalg.norm(ref[truth[q]] - query[q])
        assert d_grid >= d_true - 1e-12


def test_more_neighbours_find_more_matches():
    ref, query = random_clouds(17)
    counts = []
    for nearby_type in (NearbyType.CENTER, NearbyType.NEARBY4, NearbyType.NEARBY8):
        grid = GridNN(0.1, nearby_type)
        grid.set_point_cloud(ref)
        counts.append(len(grid.get_closest_point_for_cloud(ref, query)))
    assert counts[0] <= counts[1] <= counts[2]