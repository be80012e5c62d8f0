"""18-dimensional error-state Kalman filter for IMU / GNSS / odometry fusion.

State order: position, velocity, rotation, gyro bias, accelerometer bias, gravity.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from sadnav.lie import SE3, hat, so3_exp, so3_log
from sadnav.measurements import GNSS, IMU, NavState, Odom

logger = logging.getLogger(__name__)

_DEG2RAD = np.pi / 180.0


@dataclass
class ESKFOptions:
    imu_dt: float = 0.01
    # IMU noises are discrete-time standard deviations
    gyro_var: float = 1e-5
    acce_var: float = 1e-2
    bias_gyro_var: float = 1e-6
    bias_acce_var: float = 1e-4

    odom_var: float = 0.5
    odom_span: float = 0.1
    wheel_radius: float = 0.155
    circle_pulse: float = 1024.0

    gnss_pos_noise: float = 0.1
    gnss_height_noise: float = 0.1
    gnss_ang_noise: float = 1.0 * _DEG2RAD

    update_bias_gyro: bool = True
    update_bias_acce: bool = True


class ESKF:
    """Error-state Kalman filter with IMU prediction and pose, GNSS and wheel-speed updates."""

    def __init__(self, options: ESKFOptions | None = None) -> None:
        self.options = options if options is not None else ESKFOptions()
        self._time = 0.0
        self._p = np.zeros(3)
        self._v = np.zeros(3)
        self._R = np.eye(3)
        self._bg = np.zeros(3)
        self._ba = np.zeros(3)
        self._g = np.array([0.0, 0.0, -9.8])
        self._dx = np.zeros(18)
        self._cov = np.eye(18)
        self._Q = np.zeros((18, 18))
        self._odom_noise = np.zeros((3, 3))
        self._gnss_noise = np.zeros((6, 6))
        self._first_gnss = True
        self._build_noise(self.options)

    @property
    def gravity(self) -> np.ndarray:
        return self._g.copy()

    @property
    def cov(self) -> np.ndarray:
        return self._cov.copy()

    @property
    def current_time(self) -> float:
        return self._time

    def set_initial_conditions(self, options, init_bg, init_ba, gravity=(0.0, 0.0, -9.8)) -> None:
        self._build_noise(options)
        self.options = options
        self._bg = np.array(init_bg, dtype=float).reshape(3)
        self._ba = np.array(init_ba, dtype=float).reshape(3)
        self._g = np.array(gravity, dtype=float).reshape(3)
        self._cov = np.eye(18) * 1e-4

    def predict(self, imu: IMU) -> bool:
        """Propagate with one IMU reading; returns False if the reading was skipped."""
        dt = imu.timestamp - self._time
        if dt > 5 * self.options.imu_dt or dt < 0:
            logger.info("skip this imu because dt = %s", dt)
            self._time = imu.timestamp
            return False

        acc = imu.acce - self._ba
        gyr = imu.gyro - self._bg
        acc_world = self._R @ acc
        new_p = self._p + self._v * dt + 0.5 * acc_world * dt * dt + 0.5 * self._g * dt * dt
        new_v = self._v + acc_world * dt + self._g * dt
        new_R = self._R @ so3_exp(gyr * dt)
        self._R, self._v, self._p = new_R, new_v, new_p

        eye3 = np.eye(3)
        F = np.eye(18)
        F[0:3, 3:6] = eye3 * dt
        F[3:6, 6:9] = -self._R @ hat(acc) * dt
        F[3:6, 12:15] = -self._R * dt
        F[3:6, 15:18] = eye3 * dt
        F[6:9, 6:9] = so3_exp(-gyr * dt)
        F[6:9, 9:12] = -eye3 * dt

        self._dx = F @ self._dx
        self._cov = F @ self._cov @ F.T + self._Q
        self._time = imu.timestamp
        return True

    def observe_wheel_speed(self, odom: Odom) -> bool:
        H = np.zeros((3, 18))
        H[:, 3:6] = np.eye(3)
        K = self._cov @ H.T @ np.linalg.inv(H @ self._cov @ H.T + self._odom_noise)

        o = self.options
        scale = o.wheel_radius / o.circle_pulse * 2 * np.pi / o.odom_span
        average_vel = 0.5 * (odom.left_pulse * scale + odom.right_pulse * scale)
        vel_world = self._R @ np.array([average_vel, 0.0, 0.0])

        self._dx = K @ (vel_world - self._v)
        self._cov = (np.eye(18) - K @ H) @ self._cov
        self._update_and_reset()
        return True

    def observe_gps(self, gnss: GNSS) -> bool:
        """Correct with a GNSS pose; the first reading sets the pose directly."""
        if self._first_gnss:
            self._R = gnss.utm_pose.rotation.copy()
            self._p = gnss.utm_pose.translation.copy()
            self._first_gnss = False
            self._time = gnss.unix_time
            return True

        if not gnss.heading_valid:
            raise ValueError("GNSS observation requires a valid heading")
        self.observe_se3(gnss.utm_pose, self.options.gnss_pos_noise, self.options.gnss_ang_noise)
        self._time = gnss.unix_time
        return True

    def observe_se3(self, pose: SE3, trans_noise: float = 0.1, ang_noise: float = 1.0 * _DEG2RAD) -> bool:
        H = np.zeros((6, 18))
        H[0:3, 0:3] = np.eye(3)
        H[3:6, 6:9] = np.eye(3)

        V = np.diag([trans_noise] * 3 + [ang_noise] * 3)
        K = self._cov @ H.T @ np.linalg.inv(H @ self._cov @ H.T + V)

        innov = np.concatenate(
            [pose.translation - self._p, so3_log(self._R.T @ pose.rotation)]
        )
        self._dx = K @ innov
        self._cov = (np.eye(18) - K @ H) @ self._cov
        self._update_and_reset()
        return True

    def nominal_state(self) -> NavState:
        return NavState(self._time, self._R, self._p, self._v, self._bg, self._ba)

    def nominal_se3(self) -> SE3:
        return SE3(self._R, self._p)

    def set_state(self, state: NavState, gravity) -> None:
        self._time = state.timestamp
        self._R = state.rotation.copy()
        self._p = state.position.copy()
        self._v = state.velocity.copy()
        self._bg = state.bg.copy()
        self._ba = state.ba.copy()
        self._g = np.array(gravity, dtype=float).reshape(3)

    def set_cov(self, cov) -> None:
        self._cov = np.array(cov, dtype=float).reshape(18, 18)

    def _build_noise(self, options: ESKFOptions) -> None:
        ev, et = options.acce_var, options.gyro_var
        eg, ea = options.bias_gyro_var, options.bias_acce_var
        self._Q = np.diag([0.0] * 3 + [ev] * 3 + [et] * 3 + [eg] * 3 + [ea] * 3 + [0.0] * 3)

        # the odometry noise follows the options currently held by the filter
        o2 = self.options.odom_var**2
        self._odom_noise = np.diag([o2] * 3)

        gp2 = options.gnss_pos_noise**2
        gh2 = options.gnss_height_noise**2
        ga2 = options.gnss_ang_noise**2
        self._gnss_noise = np.diag([gp2, gp2, gh2, ga2, ga2, ga2])

    def _update_and_reset(self) -> None:
        dx = self._dx
        self._p = self._p + dx[0:3]
        self._v = self._v + dx[3:6]
        self._R = self._R @ so3_exp(dx[6:9])
        if self.options.update_bias_gyro:
            self._bg = self._bg + dx[9:12]
        if self.options.update_bias_acce:
            self._ba = self._ba + dx[12:15]
        self._g = self._g + dx[15:18]

        J = np.eye(18)
        J[6:9, 6:9] = np.eye(3) - 0.5 * hat(dx[6:9])
        self._cov = J @ self._cov @ J.T
        self._dx = np.zeros(18)