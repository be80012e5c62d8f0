"""Rigid-body maths, IMU integration and filtering, and point-cloud nearest-neighbour search for vehicle localisation."""

__version__ = "0.1.0"

__all__ = [
    "bfnn",
    "eskf",
    "gridnn",
    "imu_integration",
    "imu_preintegration",
    "inertial_edge",
    "kdtree",
    "lie",
    "measurements",
    "motion",
    "octo_tree",
    "projections",
    "static_imu_init",
]