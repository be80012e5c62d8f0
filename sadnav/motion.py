"""Simulation of a vehicle driving in a circle at constant speed and turn rate."""

from __future__ import annotations

import argparse
import itertools
import time
from collections.abc import Iterator

import numpy as np

from sadnav.lie import matrix_from_quaternion, quaternion_from_matrix, so3_exp
from sadnav.measurements import NavState

_DEG2RAD = np.pi / 180.0


def _quat_mul(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    aw, ax, ay, az = a
    bw, bx, by, bz = b
    return np.array(
        [
            aw * bw - ax * bx - ay * by - az * bz,
            aw * bx + ax * bw + ay * bz - az * by,
            aw * by - ax * bz + ay * bw + az * bx,
            aw * bz + ax * by - ay * bx + az * bw,
        ]
    )


def simulate_circular_motion(
    angular_velocity_deg: float = 10.0,
    linear_velocity: float = 5.0,
    dt: float = 0.05,
    use_quaternion: bool = False,
) -> Iterator[NavState]:
    """Endless sequence of states, one per step of ``dt`` seconds.

    Each step moves the vehicle along its heading at ``linear_velocity`` and
    then turns it by the body-frame yaw rate, either through the SO(3)
    exponential or a first-order quaternion update.
    """
    omega = np.array([0.0, 0.0, angular_velocity_deg * _DEG2RAD])
    v_body = np.array([linear_velocity, 0.0, 0.0])
    rotation = np.eye(3)
    position = np.zeros(3)
    elapsed = 0.0
    while True:
        v_world = rotation @ v_body
        position = position + v_world * dt

        if use_quaternion:
            dq = np.concatenate([[1.0], 0.5 * omega * dt])
            q = _quat_mul(quaternion_from_matrix(rotation), dq)
            rotation = matrix_from_quaternion(q)
        else:
            rotation = rotation @ so3_exp(omega * dt)

        elapsed += dt
        yield NavState(elapsed, rotation, position, v_world)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Simulate a vehicle driving in a circle.")
    parser.add_argument("--angular_velocity", type=float, default=10.0, help="yaw rate in degrees per second")
    parser.add_argument("--linear_velocity", type=float, default=5.0, help="forward speed in m/s")
    parser.add_argument("--use_quaternion", action="store_true", help="update the rotation with quaternions")
    parser.add_argument("--steps", type=int, default=None, help="number of steps; runs until interrupted if omitted")
    parser.add_argument("--no-sleep", action="store_true", help="do not pace the steps in real time")
    args = parser.parse_args(argv)

    dt = 0.05
    states = simulate_circular_motion(
        args.angular_velocity, args.linear_velocity, dt, args.use_quaternion
    )
    if args.steps is not None:
        states = itertools.islice(states, args.steps)

    try:
        for state in states:
            x, y, z = state.position
            print(f"pose: {x:.6f} {y:.6f} {z:.6f}")
            if not args.no_sleep:
                time.sleep(dt)
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    raise SystemExit(main())