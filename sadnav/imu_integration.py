"""Dead reckoning by direct integration of IMU readings."""

from __future__ import annotations

import numpy as np

from sadnav.lie import so3_exp
from sadnav.measurements import IMU, NavState


class IMUIntegration:
    """Integrates IMU readings with known, fixed biases."""

    def __init__(self, gravity, init_bg, init_ba) -> None:
        self.gravity = np.array(gravity, dtype=float).reshape(3)
        self.bg = np.array(init_bg, dtype=float).reshape(3)
        self.ba = np.array(init_ba, dtype=float).reshape(3)
        self.rotation = np.eye(3)
        self.velocity = np.zeros(3)
        self.position = np.zeros(3)
        self.timestamp = 0.0

    def add_imu(self, imu: IMU) -> None:
        """Integrate one reading; gaps outside (0, 0.1) s only move the clock."""
        dt = imu.timestamp - self.timestamp
        if 0.0 < dt < 0.1:
            acc_world = self.rotation @ (imu.acce - self.ba)
            self.position = (
                self.position
                + self.velocity * dt
                + 0.5 * self.gravity * dt * dt
                + 0.5 * acc_world * dt * dt
            )
            self.velocity = self.velocity + acc_world * dt + self.gravity * dt
            self.rotation = self.rotation @ so3_exp((imu.gyro - self.bg) * dt)
        self.timestamp = imu.timestamp

    def nav_state(self) -> NavState:
        return NavState(
            self.timestamp, self.rotation, self.position, self.velocity, self.bg, self.ba
        )