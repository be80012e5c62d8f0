"""Rotation and rigid-transform helpers on SO(3) and SE(3).

Rotations are 3x3 numpy arrays, tangent vectors are length-3 arrays and
quaternions are ``(w, x, y, z)`` arrays.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

_SMALL_ANGLE = 1e-10


def _vec3(v) -> np.ndarray:
    return np.asarray(v, dtype=float).reshape(3)


def hat(v) -> np.ndarray:
    """Skew-symmetric matrix of ``v`` so that ``hat(a) @ b == cross(a, b)``."""
    x, y, z = _vec3(v)
    return np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]])


def vee(m) -> np.ndarray:
    """Inverse of :func:`hat`."""
    m = np.asarray(m, dtype=float)
    return np.array([m[2, 1], m[0, 2], m[1, 0]])


def so3_exp(omega) -> np.ndarray:
    """Exponential map from a rotation vector to a rotation matrix."""
    w = _vec3(omega)
    theta = float(np.linalg.norm(w))
    k = hat(w)
    if theta < _SMALL_ANGLE:
        return np.eye(3) + k + 0.5 * (k @ k)
    return (
        np.eye(3)
        + (np.sin(theta) / theta) * k
        + ((1.0 - np.cos(theta)) / theta**2) * (k @ k)
    )


def so3_log(rotation) -> np.ndarray:
    """Logarithm map from a rotation matrix to a rotation vector of norm <= pi."""
    q = quaternion_from_matrix(rotation)
    w = q[0]
    vec = q[1:]
    n = float(np.linalg.norm(vec))
    if n < _SMALL_ANGLE:
        scale = 2.0 / w - (2.0 / 3.0) * n * n / w**3
    elif abs(w) < _SMALL_ANGLE:
        scale = (np.pi if w > 0 else -np.pi) / n
    else:
        scale = 2.0 * np.arctan(n / w) / n
    return scale * vec


def right_jacobian(omega) -> np.ndarray:
    """Right Jacobian of SO(3) at the rotation vector ``omega``."""
    w = _vec3(omega)
    theta = float(np.linalg.norm(w))
    if theta < 1e-5:
        return np.eye(3)
    k = hat(w)
    return (
        np.eye(3)
        - ((1.0 - np.cos(theta)) / theta**2) * k
        + ((theta - np.sin(theta)) / theta**3) * (k @ k)
    )


def right_jacobian_inverse(omega) -> np.ndarray:
    """Inverse of the right Jacobian of SO(3) at ``omega``."""
    w = _vec3(omega)
    theta = float(np.linalg.norm(w))
    k = hat(w)
    if theta < 1e-5:
        return np.eye(3) + 0.5 * k
    coeff = 1.0 / theta**2 - (1.0 + np.cos(theta)) / (2.0 * theta * np.sin(theta))
    return np.eye(3) + 0.5 * k + coeff * (k @ k)


def rot_z(angle: float) -> np.ndarray:
    """Rotation about the z axis by ``angle`` radians."""
    c, s = np.cos(angle), np.sin(angle)
    return np.array([[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]])


def quaternion_from_matrix(rotation) -> np.ndarray:
    """Unit quaternion ``(w, x, y, z)`` of a rotation matrix."""
    m = np.asarray(rotation, dtype=float).reshape(3, 3)
    diag_sum = float(m[0, 0] + m[1, 1] + m[2, 2])
    q = np.zeros(4)
    if diag_sum > 0.0:
        s = np.sqrt(diag_sum + 1.0)
        q[0] = 0.5 * s
        s = 0.5 / s
        q[1] = (m[2, 1] - m[1, 2]) * s
        q[2] = (m[0, 2] - m[2, 0]) * s
        q[3] = (m[1, 0] - m[0, 1]) * s
    else:
        i = int(np.argmax(np.diag(m)))
        j = (i + 1) % 3
        k = (j + 1) % 3
        s = np.sqrt(m[i, i] - m[j, j] - m[k, k] + 1.0)
        q[1 + i] = 0.5 * s
        s = 0.5 / s
        q[0] = (m[k, j] - m[j, k]) * s
        q[1 + j] = (m[j, i] + m[i, j]) * s
        q[1 + k] = (m[k, i] + m[i, k]) * s
    return q / np.linalg.norm(q)


def matrix_from_quaternion(q) -> np.ndarray:
    """Rotation matrix of the quaternion ``(w, x, y, z)``; it is normalised first."""
    q = np.asarray(q, dtype=float).reshape(4)
    norm = float(np.linalg.norm(q))
    if norm == 0.0:
        raise ValueError("quaternion must not be zero")
    w, x, y, z = q / norm
    return np.array(
        [
            [1 - 2 * (y * y + z * z), 2 * (x * y - w * z), 2 * (x * z + w * y)],
            [2 * (x * y + w * z), 1 - 2 * (x * x + z * z), 2 * (y * z - w * x)],
            [2 * (x * z - w * y), 2 * (y * z + w * x), 1 - 2 * (x * x + y * y)],
        ]
    )


@dataclass(eq=False)
class SE3:
    """Rigid transform made of a rotation matrix and a translation."""

    rotation: np.ndarray = field(default_factory=lambda: np.eye(3))
    translation: np.ndarray = field(default_factory=lambda: np.zeros(3))

    def __post_init__(self) -> None:
        self.rotation = np.array(self.rotation, dtype=float).reshape(3, 3)
        self.translation = np.array(self.translation, dtype=float).reshape(3)

    def inverse(self) -> SE3:
        rt = self.rotation.T
        return SE3(rt, -rt @ self.translation)

    def __matmul__(self, other):
        if not isinstance(other, SE3):
            return NotImplemented
        return SE3(
            self.rotation @ other.rotation,
            self.rotation @ other.translation + self.translation,
        )

    def act(self, point) -> np.ndarray:
        """Transform one point of shape (3,) or many of shape (N, 3)."""
        pts = np.asarray(point, dtype=float)
        return pts @ self.rotation.T + self.translation

    def matrix(self) -> np.ndarray:
        m = np.eye(4)
        m[:3, :3] = self.rotation
        m[:3, 3] = self.translation
        return m