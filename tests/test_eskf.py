import numpy as np
import pytest

from sadnav.eskf import ESKF, ESKFOptions
from sadnav.lie import SE3, rot_z, so3_log
from sadnav.measurements import GNSS, IMU, NavState, Odom

DT = 0.01


def _run_predict(eskf, steps, gyro, acce, start=1):
    results = []
    for i in range(start, start + steps):
        results.append(eskf.predict(IMU(i * DT, gyro, acce)))
    return results


def _diag_sum(m):
    return float(np.diag(m).sum())


def test_default_state():
    eskf = ESKF()
    state = eskf.nominal_state()
    assert np.allclose(eskf.gravity, [0.0, 0.0, -9.8])
    assert np.allclose(state.position, 0.0)
    assert np.allclose(state.rotation, np.eye(3))
    assert np.allclose(eskf.cov, np.eye(18))


def test_large_gap_skips_prediction():
    eskf = ESKF()
    assert eskf.predict(IMU(1.0, [0.0, 0.0, 0.0], [5.0, 0.0, 0.0])) is False
    assert eskf.current_time == 1.0
    assert np.allclose(eskf.nominal_state().velocity, 0.0)


def test_backwards_time_skips_prediction():
    eskf = ESKF()
    eskf.predict(IMU(1.0, [0.0, 0.0, 0.0], [0.0, 0.0, 9.8]))
    assert eskf.predict(IMU(0.5, [0.0, 0.0, 0.0], [3.0, 0.0, 0.0])) is False
    assert eskf.current_time == 0.5
    assert np.allclose(eskf.nominal_state().velocity, 0.0)


def test_stationary_prediction():
    eskf = ESKF()
    diag_sum_before = _diag_sum(eskf.cov)
    results = _run_predict(eskf, 100, [0.0, 0.0, 0.0], -eskf.gravity)
    assert all(results)
    state = eskf.nominal_state()
    assert np.allclose(state.position, 0.0, atol=1e-9)
    assert np.allclose(state.velocity, 0.0, atol=1e-9)
    cov = eskf.cov
    assert _diag_sum(cov) > diag_sum_before
    assert np.allclose(cov, cov.T)


def test_constant_acceleration_prediction():
    eskf = ESKF()
    acc_x = 0.2
    steps = 100
    _run_predict(eskf, steps, [0.0, 0.0, 0.0], np.array([acc_x, 0.0, 0.0]) - eskf.gravity)
    t = steps * DT
    state = eskf.nominal_state()
    assert state.velocity[0] == pytest.approx(acc_x * t)
    assert state.position[0] == pytest.approx(0.5 * acc_x * t * t)
    assert state.timestamp == pytest.approx(t)


def test_set_initial_conditions():
    eskf = ESKF()
    bg = [0.01, 0.0, -0.01]
    ba = [0.1, 0.2, 0.3]
    eskf.set_initial_conditions(ESKFOptions(), bg, ba, [0.0, 0.0, -9.81])
    state = eskf.nominal_state()
    assert np.allclose(state.bg, bg)
    assert np.allclose(state.ba, ba)
    assert np.allclose(eskf.gravity, [0.0, 0.0, -9.81])
    assert np.allclose(eskf.cov, np.eye(18) * 1e-4)


def test_observe_se3_pulls_towards_pose():
    eskf = ESKF()
    target = SE3(rot_z(0.1), [1.0, -2.0, 0.5])
    cov_before = _diag_sum(eskf.cov[0:3, 0:3])
    assert eskf.observe_se3(target, 0.1, 0.01)
    state = eskf.nominal_state()
    assert np.linalg.norm(state.position - target.translation) < np.linalg.norm(target.translation)
    assert np.linalg.norm(so3_log(state.rotation.T @ target.rotation)) < 0.1
    assert _diag_sum(eskf.cov[0:3, 0:3]) < cov_before


def test_repeated_observations_converge():
    eskf = ESKF()
    target = SE3(rot_z(0.3), [2.0, 1.0, -1.0])
    for _ in range(50):
        eskf.observe_se3(target)
    se3 = eskf.nominal_se3()
    assert np.allclose(se3.translation, target.translation, atol=1e-3)
    assert np.allclose(se3.rotation, target.rotation, atol=1e-3)


def test_first_gps_sets_pose():
    eskf = ESKF()
    pose = SE3(rot_z(0.5), [10.0, 20.0, 1.0])
    assert eskf.observe_gps(GNSS(unix_time=3.0, heading_valid=True, utm_pose=pose))
    state = eskf.nominal_state()
    assert state.timestamp == 3.0
    assert np.allclose(state.position, pose.translation)
    assert np.allclose(state.rotation, pose.rotation)


def test_gps_without_heading_rejected():
    eskf = ESKF()
    eskf.observe_gps(GNSS(unix_time=1.0, heading_valid=True, utm_pose=SE3()))
    with pytest.raises(ValueError):
        eskf.observe_gps(GNSS(unix_time=2.0, heading_valid=False, utm_pose=SE3()))


def test_second_gps_updates_state():
    eskf = ESKF()
    eskf.observe_gps(GNSS(unix_time=1.0, heading_valid=True, utm_pose=SE3()))
    target = SE3(np.eye(3), [1.0, 0.0, 0.0])
    assert eskf.observe_gps(GNSS(unix_time=2.0, heading_valid=True, utm_pose=target))
    state = eskf.nominal_state()
    assert state.timestamp == 2.0
    assert 0.0 < state.position[0] <= 1.0


def test_zero_wheel_speed_slows_vehicle():
    eskf = ESKF()
    eskf.set_state(NavState(0.0, np.eye(3), np.zeros(3), [1.0, 0.0, 0.0]), [0.0, 0.0, -9.8])
    speeds = []
    for i in range(5):
        assert eskf.observe_wheel_speed(Odom(0.1 * i, 0, 0))
        speeds.append(np.linalg.norm(eskf.nominal_state().velocity))
    assert speeds[0] < 1.0
    assert all(b < a for a, b in zip(speeds, speeds[1:]))


def test_bias_updates_can_be_disabled():
    eskf = ESKF()
    options = ESKFOptions(update_bias_gyro=False, update_bias_acce=False)
    bg = np.array([0.01, 0.0, 0.0])
    ba = np.array([0.0, 0.02, 0.0])
    eskf.set_initial_conditions(options, bg, ba)
    _run_predict(eskf, 20, bg, ba - eskf.gravity)
    eskf.observe_se3(SE3(rot_z(0.2), [0.5, 0.5, 0.0]))
    state = eskf.nominal_state()
    assert np.allclose(state.bg, bg)
    assert np.allclose(state.ba, ba)


def test_set_state_and_cov_round_trip():
    eskf = ESKF()
    state = NavState(4.0, rot_z(0.2), [1.0, 2.0, 3.0], [0.1, 0.2, 0.3], [0.01, 0.0, 0.0], [0.0, 0.1, 0.0])
    eskf.set_state(state, [0.0, 0.0, -9.7])
    out = eskf.nominal_state()
    assert out.timestamp == 4.0
    assert np.allclose(out.rotation, state.rotation)
    assert np.allclose(out.velocity, state.velocity)
    assert np.allclose(out.ba, state.ba)
    assert np.allclose(eskf.gravity, [0.0, 0.0, -9.7])
    se3 = eskf.nominal_se3()
    assert np.allclose(se3.translation, state.position)

    cov = np.diag(np.arange(1.0, 19.0))
    eskf.set_cov(cov)
    cov[0, 0] = -1.0
    assert np.allclose(np.diag(eskf.cov), np.arange(1.0, 19.0))