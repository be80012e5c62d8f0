"""Bias and noise estimation from an IMU at rest."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass

import numpy as np

from sadnav.measurements import IMU, Odom

logger = logging.getLogger(__name__)


@dataclass
class StaticInitOptions:
    init_time_seconds: float = 10.0
    init_imu_queue_max_size: int = 2000
    static_odom_pulse: int = 5
    max_static_gyro_var: float = 0.5
    max_static_acce_var: float = 0.05
    gravity_norm: float = 9.81
    use_speed_for_static_checking: bool = True


def _mean_and_cov_diag(samples) -> tuple[np.ndarray, np.ndarray]:
    data = np.array(samples, dtype=float)
    mean = data.mean(axis=0)
    cov = ((data - mean) ** 2).sum(axis=0) / (len(data) - 1)
    return mean, cov


class StaticIMUInit:
    """Collects IMU readings while the vehicle is still and estimates
    gyro and accelerometer biases, their noise and the gravity vector.

    When odometry is used, readings are only collected while both wheel
    pulse counts stay below ``static_odom_pulse``.
    """

    def __init__(self, options: StaticInitOptions | None = None) -> None:
        self.options = options if options is not None else StaticInitOptions()
        self.init_success = False
        self.cov_gyro = np.zeros(3)
        self.cov_acce = np.zeros(3)
        self.init_bg = np.zeros(3)
        self.init_ba = np.zeros(3)
        self.gravity = np.zeros(3)
        self.is_static = False
        self.current_time = 0.0
        self._queue: deque[IMU] = deque()
        self._init_start_time = 0.0

    def add_imu(self, imu: IMU) -> None:
        if self.init_success:
            return

        if self.options.use_speed_for_static_checking and not self.is_static:
            logger.warning("waiting for the vehicle to stand still")
            self._queue.clear()
            return

        if not self._queue:
            self._init_start_time = imu.timestamp
        self._queue.append(imu)

        if imu.timestamp - self._init_start_time > self.options.init_time_seconds:
            self._try_init()

        while len(self._queue) > self.options.init_imu_queue_max_size:
            self._queue.popleft()

        self.current_time = imu.timestamp

    def add_odom(self, odom: Odom) -> None:
        if self.init_success:
            return
        limit = self.options.static_odom_pulse
        self.is_static = odom.left_pulse < limit and odom.right_pulse < limit
        self.current_time = odom.timestamp

    def _try_init(self) -> bool:
        if len(self._queue) < 10:
            return False

        mean_gyro, cov_gyro = _mean_and_cov_diag([imu.gyro for imu in self._queue])
        mean_acce, _ = _mean_and_cov_diag([imu.acce for imu in self._queue])

        gravity = -mean_acce / np.linalg.norm(mean_acce) * self.options.gravity_norm
        mean_acce, cov_acce = _mean_and_cov_diag([imu.acce + gravity for imu in self._queue])
        self.gravity = gravity
        self.cov_gyro = cov_gyro
        self.cov_acce = cov_acce

        if np.linalg.norm(cov_gyro) > self.options.max_static_gyro_var:
            logger.error(
                "gyro noise too large: %s > %s",
                np.linalg.norm(cov_gyro),
                self.options.max_static_gyro_var,
            )
            return False

        if np.linalg.norm(cov_acce) > self.options.max_static_acce_var:
            logger.error(
                "accelerometer noise too large: %s > %s",
                np.linalg.norm(cov_acce),
                self.options.max_static_acce_var,
            )
            return False

        self.init_bg = mean_gyro
        self.init_ba = mean_acce
        logger.info(
            "IMU initialised after %.3f s, bg=%s, ba=%s, gravity=%s",
            self.current_time - self._init_start_time,
            self.init_bg,
            self.init_ba,
            self.gravity,
        )
        self.init_success = True
        return True