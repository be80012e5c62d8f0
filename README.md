# sadnav

Building blocks for vehicle localisation: rigid-body maths, IMU dead
reckoning, an error-state Kalman filter, IMU preintegration,
nearest-neighbour search over point clouds and simple point-cloud images.
Everything is plain Python on top of NumPy.

## Installation

```
pip install .
```

To run the test suite:

```
pip install .[test]
pytest
```

## What is inside

| Module | Contents |
| --- | --- |
| `sadnav.lie` | SO(3) helpers (`hat`, `vee`, `so3_exp`, `so3_log`, `right_jacobian`, `right_jacobian_inverse`, `rot_z`, `quaternion_from_matrix`, `matrix_from_quaternion`) and the `SE3` rigid transform (`inverse`, `@` composition, `act`, `matrix`) |
| `sadnav.measurements` | `IMU`, `Odom`, `GNSS` readings and the `NavState` navigation state |
| `sadnav.imu_integration` | `IMUIntegration`: direct integration of IMU readings with known, fixed biases |
| `sadnav.static_imu_init` | `StaticIMUInit` and `StaticInitOptions`: estimates gyro/accelerometer bias, noise and gravity while the vehicle stands still |
| `sadnav.eskf` | `ESKF` and `ESKFOptions`: an 18-state error-state Kalman filter with IMU prediction and wheel-speed, GNSS and SE(3) pose updates |
| `sadnav.imu_preintegration` | `IMUPreintegration` and `PreintegrationOptions`: preintegrated IMU deltas with bias Jacobians and covariance |
| `sadnav.inertial_edge` | `EdgeInertial`: the 9-dimensional preintegration residual, its Jacobians and its 24x24 Hessian |
| `sadnav.bfnn` | Brute-force nearest and k-nearest neighbour over clouds (`bfnn_point`, `bfnn_point_k`, `bfnn_cloud`, `bfnn_cloud_mt`, `bfnn_cloud_mt_k`) |
| `sadnav.gridnn` | `GridNN` with `NearbyType`: 2D/3D grid-cell nearest neighbour |
| `sadnav.kdtree` | `KdTree`: k-nearest neighbour with optional approximate search |
| `sadnav.octo_tree` | `OctoTree` with `Box3D`: octree k-nearest neighbour |
| `sadnav.projections` | `generate_bev_image` and `generate_range_image`: bird's-eye and range images as RGB `uint8` arrays |
| `sadnav.motion` | `simulate_circular_motion`: an endless stream of states of a vehicle driving in a circle |

Clouds are array-likes of shape (N, 3) or wider; only x, y and z are used.
Matches are `(reference_index, query_index)` pairs, and the parallel
searches mark a missing neighbour with `sadnav.bfnn.INVALID_ID` (-1).

## A short tour

Preintegrate IMU readings and predict the end state:

```python
import numpy as np
from sadnav.measurements import IMU, NavState
from sadnav.imu_preintegration import IMUPreintegration, PreintegrationOptions

gravity = np.array([0.0, 0.0, -9.8])
preinteg = IMUPreintegration(PreintegrationOptions())
for i in range(1, 101):
    imu = IMU(0.01 * i, np.array([0.0, 0.0, np.pi]), -gravity)
    preinteg.integrate(imu, 0.01)

end = preinteg.predict(NavState(0.0), gravity)
```

Filter with an ESKF once the static initialiser has succeeded:

```python
from sadnav.eskf import ESKF, ESKFOptions
from sadnav.static_imu_init import StaticIMUInit, StaticInitOptions

init = StaticIMUInit(StaticInitOptions())
eskf = ESKF(ESKFOptions())
# feed init.add_odom(...) and init.add_imu(...) until init.init_success, then
eskf.set_initial_conditions(ESKFOptions(), init.init_bg, init.init_ba, init.gravity)
# eskf.predict(imu), eskf.observe_gps(gnss), eskf.nominal_state()
```

`ESKF.observe_gps` takes the first GNSS reading as the pose outright and
raises `ValueError` for a later reading without a valid heading.

Search a point cloud for neighbours:

```python
from sadnav.kdtree import KdTree

tree = KdTree()
tree.build_tree(cloud)
nearest = tree.get_closest_point(query_point, 5)  # indices, nearest first
```

`KdTree.get_closest_point` and `OctoTree.get_closest_point` raise
`ValueError` when `k` exceeds the number of leaves. The k-d tree starts
with approximate search on (`alpha` 0.1); call `set_enable_ann(False)` for
exact results. The octree starts exact.

## Command line

```
sadnav-motion
```

runs the circular-motion simulation and prints `pose: x y z` at each
0.05 s step, paced in real time until interrupted. Options:
`--angular_velocity` (degrees per second, default 10), `--linear_velocity`
(m/s, default 5), `--use_quaternion`, `--steps N` and `--no-sleep`.

## What it does not do

- It reads no files: no point-cloud files, recorded sensor logs or map
  tiles. Data goes in as NumPy arrays and measurement objects.
- It does not convert latitude/longitude to UTM; `GNSS.utm_pose` must be
  filled in by the caller.
- `EdgeInertial` supplies residuals, Jacobians and a Hessian, but there is
  no graph optimiser that solves with them.
- The image functions return arrays and write nothing to disk, and there is
  no viewer window for states or clouds.