import numpy as np
import pytest

from sadnav.eskf import ESKF, ESKFOptions
from sadnav.imu_preintegration import IMUPreintegration, PreintegrationOptions
from sadnav.lie import quaternion_from_matrix, so3_exp, so3_log
from sadnav.measurements import IMU, NavState


def _quat_close(r1, r2, tol):
    q1 = quaternion_from_matrix(r1)
    q2 = quaternion_from_matrix(r2)
    return min(np.linalg.norm(q1 - q2), np.linalg.norm(q1 + q2)) < tol


def _run_against_direct(omega, acce_body, gravity):
    span = 0.01
    start = NavState(0.0)
    pre = IMUPreintegration()
    R = np.eye(3)
    t = np.zeros(3)
    v = np.zeros(3)
    for i in range(1, 101):
        acce = acce_body - gravity
        pre.integrate(IMU(span * i, omega, acce), span)
        state = pre.predict(start, gravity)

        t = t + v * span + 0.5 * gravity * span * span + 0.5 * (R @ acce) * span * span
        v = v + gravity * span + (R @ acce) * span
        R = R @ so3_exp(omega * span)

        np.testing.assert_allclose(state.position, t, atol=1e-2)
        np.testing.assert_allclose(state.velocity, v, atol=1e-2)
        assert _quat_close(R, state.rotation, 1e-4)
    return pre


def test_rotation_matches_direct_integration():
    gravity = np.array([0.0, 0.0, -9.8])
    pre = _run_against_direct(np.array([0.0, 0.0, np.pi]), np.zeros(3), gravity)
    assert pre.dt == pytest.approx(1.0)


def test_acceleration_matches_direct_integration():
    gravity = np.array([0.0, 0.0, -9.8])
    pre = _run_against_direct(np.zeros(3), np.array([0.1, 0.0, 0.0]), gravity)
    end = pre.predict(NavState(0.0), gravity)
    np.testing.assert_allclose(end.velocity, [0.1, 0.0, 0.0], atol=1e-6)


def test_default_predict_gravity():
    pre = IMUPreintegration()
    for i in range(1, 101):
        pre.integrate(IMU(0.01 * i), 0.01)
    end = pre.predict(NavState(0.0))
    np.testing.assert_allclose(end.velocity, [0.0, 0.0, -9.81], atol=1e-9)
    assert end.timestamp == pytest.approx(1.0)


def test_predict_without_integration_keeps_state():
    pre = IMUPreintegration()
    start = NavState(2.0, so3_exp([0.1, 0.2, 0.3]), [1.0, 2.0, 3.0], [0.5, 0.0, 0.0])
    end = pre.predict(start)
    np.testing.assert_allclose(end.rotation, start.rotation)
    np.testing.assert_allclose(end.position, start.position)
    np.testing.assert_allclose(end.velocity, start.velocity)
    assert end.timestamp == 2.0


def _integrate_readings(options, steps=50):
    pre = IMUPreintegration(options)
    for i in range(steps):
        gyro = [0.1, -0.2 + 0.01 * i, 0.3]
        acce = [0.5, -0.2, 9.8 + 0.02 * i]
        pre.integrate(IMU(0.01 * (i + 1), gyro, acce), 0.01)
    return pre


def test_bias_correction_matches_reintegration():
    bg0 = np.array([0.01, -0.02, 0.005])
    ba0 = np.array([0.05, 0.02, -0.03])
    pre = _integrate_readings(PreintegrationOptions(init_bg=bg0, init_ba=ba0))

    delta_g = np.array([1e-3, -2e-3, 1.5e-3])
    delta_a = np.array([-2e-3, 1e-3, 3e-3])
    redo = _integrate_readings(
        PreintegrationOptions(init_bg=bg0 + delta_g, init_ba=ba0 + delta_a)
    )

    corrected_r = pre.delta_rotation(bg0 + delta_g)
    assert np.linalg.norm(so3_log(corrected_r.T @ redo.dR)) < 1e-6
    np.testing.assert_allclose(pre.delta_velocity(bg0 + delta_g, ba0 + delta_a), redo.dv, atol=1e-6)
    np.testing.assert_allclose(pre.delta_position(bg0 + delta_g, ba0 + delta_a), redo.dp, atol=1e-6)


def test_deltas_at_reference_bias_are_raw():
    bg0 = np.array([0.01, 0.0, 0.0])
    ba0 = np.array([0.0, 0.02, 0.0])
    pre = _integrate_readings(PreintegrationOptions(init_bg=bg0, init_ba=ba0))
    np.testing.assert_allclose(pre.delta_rotation(bg0), pre.dR)
    np.testing.assert_allclose(pre.delta_velocity(bg0, ba0), pre.dv)
    np.testing.assert_allclose(pre.delta_position(bg0, ba0), pre.dp)


def test_covariance_is_symmetric_and_positive():
    pre = _integrate_readings(PreintegrationOptions())
    np.testing.assert_allclose(pre.cov, pre.cov.T, atol=1e-15)
    assert np.all(np.linalg.eigvalsh(pre.cov) > 0)


def test_noise_matrix_from_options():
    pre = IMUPreintegration(PreintegrationOptions(noise_gyro=0.5, noise_acce=2.0))
    np.testing.assert_allclose(np.diag(pre.noise_gyro_acce), [0.25] * 3 + [4.0] * 3)


def test_matches_eskf_prediction():
    bg = np.array([0.001, -0.002, 0.0005])
    ba = np.array([0.02, -0.01, 0.03])
    eskf = ESKF()
    eskf.set_initial_conditions(ESKFOptions(), bg, ba, [0.0, 0.0, -9.81])
    start = eskf.nominal_state()
    pre = IMUPreintegration(PreintegrationOptions(init_bg=bg, init_ba=ba))

    for i in range(1, 101):
        imu = IMU(0.01 * i, [0.05, 0.1, 0.2], [0.3, -0.1, 9.9])
        current = eskf.nominal_state().timestamp
        eskf.predict(imu)
        pre.integrate(imu, imu.timestamp - current)

        pred = pre.predict(start, eskf.gravity)
        ref = eskf.nominal_state()
        assert np.linalg.norm(pred.position - ref.position) < 1e-2
        assert np.linalg.norm(so3_log(pred.rotation.T @ ref.rotation)) < 1e-2
        assert np.linalg.norm(pred.velocity - ref.velocity) < 1e-2