"""IMU preintegration between two keyframes, with bias Jacobians and noise."""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from sadnav.lie import hat, right_jacobian, so3_exp
from sadnav.measurements import IMU, NavState


def _zeros() -> np.ndarray:
    return np.zeros(3)


@dataclass
class PreintegrationOptions:
    """Initial biases and measurement noise (standard deviations)."""

    init_bg: np.ndarray = field(default_factory=_zeros)
    init_ba: np.ndarray = field(default_factory=_zeros)
    noise_gyro: float = 1e-2
    noise_acce: float = 1e-1


class IMUPreintegration:
    """Accumulates IMU readings into relative rotation, velocity and position.

    The deltas are taken at the biases ``bg`` and ``ba`` given by the options;
    :meth:`delta_rotation`, :meth:`delta_velocity` and :meth:`delta_position`
    correct them to first order for other biases.
    """

    def __init__(self, options: PreintegrationOptions | None = None) -> None:
        options = options if options is not None else PreintegrationOptions()
        self.bg = np.array(options.init_bg, dtype=float).reshape(3)
        self.ba = np.array(options.init_ba, dtype=float).reshape(3)
        ng2 = options.noise_gyro**2
        na2 = options.noise_acce**2
        self.noise_gyro_acce = np.diag([ng2] * 3 + [na2] * 3)

        self.dt = 0.0
        self.cov = np.zeros((9, 9))

        self.dR = np.eye(3)
        self.dv = np.zeros(3)
        self.dp = np.zeros(3)

        self.dR_dbg = np.zeros((3, 3))
        self.dV_dbg = np.zeros((3, 3))
        self.dV_dba = np.zeros((3, 3))
        self.dP_dbg = np.zeros((3, 3))
        self.dP_dba = np.zeros((3, 3))

    def integrate(self, imu: IMU, dt: float) -> None:
        """Add one IMU reading held for ``dt`` seconds."""
        gyr = imu.gyro - self.bg
        acc = imu.acce - self.ba
        dR = self.dR
        dt2 = dt * dt

        self.dp = self.dp + self.dv * dt + 0.5 * (dR @ acc) * dt2
        self.dv = self.dv + (dR @ acc) * dt

        # the rotation delta is updated last because A and B use the current one
        A = np.eye(9)
        B = np.zeros((9, 6))
        acc_hat = hat(acc)

        A[3:6, 0:3] = -dR * dt @ acc_hat
        A[6:9, 0:3] = -0.5 * dR @ acc_hat * dt2
        A[6:9, 3:6] = dt * np.eye(3)

        B[3:6, 3:6] = dR * dt
        B[6:9, 3:6] = 0.5 * dR * dt2

        self.dP_dba = self.dP_dba + self.dV_dba * dt - 0.5 * dR * dt2
        self.dP_dbg = self.dP_dbg + self.dV_dbg * dt - 0.5 * dR * dt2 @ acc_hat @ self.dR_dbg
        self.dV_dba = self.dV_dba - dR * dt
        self.dV_dbg = self.dV_dbg - dR * dt @ acc_hat @ self.dR_dbg

        omega = gyr * dt
        right_j = right_jacobian(omega)
        delta_r = so3_exp(omega)
        self.dR = dR @ delta_r

        A[0:3, 0:3] = delta_r.T
        B[0:3, 0:3] = right_j * dt

        self.cov = A @ self.cov @ A.T + B @ self.noise_gyro_acce @ B.T
        self.dR_dbg = delta_r.T @ self.dR_dbg - right_j * dt
        self.dt += dt

    def predict(self, start: NavState, gravity=(0.0, 0.0, -9.81)) -> NavState:
        """State reached from ``start`` after the integrated interval."""
        g = np.array(gravity, dtype=float).reshape(3)
        rj = start.rotation @ self.dR
        vj = start.rotation @ self.dv + start.velocity + g * self.dt
        pj = (
            start.rotation @ self.dp
            + start.position
            + start.velocity * self.dt
            + 0.5 * g * self.dt * self.dt
        )
        return NavState(start.timestamp + self.dt, rj, pj, vj, self.bg, self.ba)

    def delta_rotation(self, bg) -> np.ndarray:
        return self.dR @ so3_exp(self.dR_dbg @ (np.asarray(bg, dtype=float) - self.bg))

    def delta_velocity(self, bg, ba) -> np.ndarray:
        return (
            self.dv
            + self.dV_dbg @ (np.asarray(bg, dtype=float) - self.bg)
            + self.dV_dba @ (np.asarray(ba, dtype=float) - self.ba)
        )

    def delta_position(self, bg, ba) -> np.ndarray:
        return (
            self.dp
            + self.dP_dbg @ (np.asarray(bg, dtype=float) - self.bg)
            + self.dP_dba @ (np.asarray(ba, dtype=float) - self.ba)
        )