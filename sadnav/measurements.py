"""Sensor readings and navigation state records."""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from sadnav.lie import SE3


def _zeros() -> np.ndarray:
    return np.zeros(3)


def _vec3(value) -> np.ndarray:
    return np.array(value, dtype=float).reshape(3)


@dataclass(eq=False)
class IMU:
    """One IMU reading: angular rate (rad/s) and specific force (m/s^2)."""

    timestamp: float = 0.0
    gyro: np.ndarray = field(default_factory=_zeros)
    acce: np.ndarray = field(default_factory=_zeros)

    def __post_init__(self) -> None:
        self.gyro = _vec3(self.gyro)
        self.acce = _vec3(self.acce)


@dataclass(frozen=True)
class Odom:
    """Wheel encoder reading: pulses of the left and right wheels."""

    timestamp: float = 0.0
    left_pulse: float = 0.0
    right_pulse: float = 0.0


@dataclass(eq=False)
class GNSS:
    """GNSS reading together with its pose in the UTM frame."""

    unix_time: float = 0.0
    lat_lon_alt: np.ndarray = field(default_factory=_zeros)
    heading: float = 0.0
    heading_valid: bool = False
    utm_pose: SE3 = field(default_factory=SE3)
    utm_valid: bool = False

    def __post_init__(self) -> None:
        self.lat_lon_alt = _vec3(self.lat_lon_alt)


@dataclass(eq=False)
class NavState:
    """Navigation state: rotation, position, velocity and IMU biases."""

    timestamp: float = 0.0
    rotation: np.ndarray = field(default_factory=lambda: np.eye(3))
    position: np.ndarray = field(default_factory=_zeros)
    velocity: np.ndarray = field(default_factory=_zeros)
    bg: np.ndarray = field(default_factory=_zeros)
    ba: np.ndarray = field(default_factory=_zeros)

    def __post_init__(self) -> None:
        self.rotation = np.array(self.rotation, dtype=float).reshape(3, 3)
        self.position = _vec3(self.position)
        self.velocity = _vec3(self.velocity)
        self.bg = _vec3(self.bg)
        self.ba = _vec3(self.ba)

    def pose(self) -> SE3:
        return SE3(self.rotation, self.position)