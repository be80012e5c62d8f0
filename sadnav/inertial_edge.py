"""Preintegration residual linking two navigation states."""

from __future__ import annotations

import numpy as np

from sadnav.imu_preintegration import IMUPreintegration
from sadnav.lie import SE3, hat, right_jacobian, right_jacobian_inverse, so3_log


class EdgeInertial:
    """9-dimensional residual (rotation, velocity, position) of a preintegration.

    It connects pose, velocity, gyro bias and accelerometer bias of the first
    state with pose and velocity of the second. Pose perturbations are taken
    as ``R @ exp(d_theta)`` for rotation and ``p + d_p`` for translation, and
    a pose block has its rotation columns first.
    """

    def __init__(self, preinteg: IMUPreintegration, gravity, weight: float = 1.0) -> None:
        self.preint = preinteg
        self.dt = preinteg.dt
        self.grav = np.array(gravity, dtype=float).reshape(3)
        self.information = np.linalg.inv(preinteg.cov) * weight

    def compute_error(self, pose1: SE3, v1, bg1, ba1, pose2: SE3, v2) -> np.ndarray:
        v1 = np.asarray(v1, dtype=float)
        v2 = np.asarray(v2, dtype=float)
        dt, g = self.dt, self.grav

        dR = self.preint.delta_rotation(bg1)
        dv = self.preint.delta_velocity(bg1, ba1)
        dp = self.preint.delta_position(bg1, ba1)

        r1t = pose1.rotation.T
        er = so3_log(dR.T @ r1t @ pose2.rotation)
        ev = r1t @ (v2 - v1 - g * dt) - dv
        ep = r1t @ (pose2.translation - pose1.translation - v1 * dt - g * dt * dt / 2) - dp
        return np.concatenate([er, ev, ep])

    def linearize(self, pose1: SE3, v1, bg1, ba1, pose2: SE3, v2) -> list[np.ndarray]:
        """Jacobians of the residual for each of the six vertices, in order."""
        pre = self.preint
        vi = np.asarray(v1, dtype=float)
        vj = np.asarray(v2, dtype=float)
        bg = np.asarray(bg1, dtype=float)
        dt, g = self.dt, self.grav
        dbg = bg - pre.bg

        r1 = pose1.rotation
        r1t = r1.T
        r2 = pose2.rotation
        pi, pj = pose1.translation, pose2.translation

        dR = pre.delta_rotation(bg)
        eR = dR.T @ r1t @ r2
        er = so3_log(eR)
        inv_jr = right_jacobian_inverse(er)

        j_pose1 = np.zeros((9, 6))
        j_pose1[0:3, 0:3] = -inv_jr @ (r2.T @ r1)
        j_pose1[3:6, 0:3] = hat(r1t @ (vj - vi - g * dt))
        j_pose1[6:9, 0:3] = hat(r1t @ (pj - pi - vi * dt - 0.5 * g * dt * dt))
        j_pose1[6:9, 3:6] = -r1t

        j_v1 = np.zeros((9, 3))
        j_v1[3:6] = -r1t
        j_v1[6:9] = -r1t * dt

        j_bg1 = np.zeros((9, 3))
        j_bg1[0:3] = -inv_jr @ eR.T @ right_jacobian(pre.dR_dbg @ dbg) @ pre.dR_dbg
        j_bg1[3:6] = -pre.dV_dbg
        j_bg1[6:9] = -pre.dP_dbg

        j_ba1 = np.zeros((9, 3))
        j_ba1[3:6] = -pre.dV_dba
        j_ba1[6:9] = -pre.dP_dba

        j_pose2 = np.zeros((9, 6))
        j_pose2[0:3, 0:3] = inv_jr
        j_pose2[6:9, 3:6] = r1t

        j_v2 = np.zeros((9, 3))
        j_v2[3:6] = r1t

        return [j_pose1, j_v1, j_bg1, j_ba1, j_pose2, j_v2]

    def hessian(self, pose1: SE3, v1, bg1, ba1, pose2: SE3, v2) -> np.ndarray:
        """24x24 Gauss-Newton Hessian ``J^T * information * J`` over all vertices."""
        jac = np.hstack(self.linearize(pose1, v1, bg1, ba1, pose2, v2))
        return jac.T @ self.information @ jac