from __future__ import annotations

import numpy as np
import pytest

from squarefid.config import CameraIntrinsics
from squarefid.fiducial.pose import UNIT_FIDUCIAL, QuadPoseEstimator, RigidTransform

CAMERA = CameraIntrinsics(width=640, height=480, fx=500.0, fy=500.0, cx=319.5, cy=239.5)


def _rot_x(a: float) -> np.ndarray:
    c, s = np.cos(a), np.sin(a)
    return np.array([[1.0, 0.0, 0.0], [0.0, c, -s], [0.0, s, c]])


def _project(pose: RigidTransform, XYZ: np.ndarray) -> np.ndarray:
    Xc = pose.apply(XYZ)
    K = CAMERA.K()
    return np.stack([K[0, 0] * Xc[:, 0] / Xc[:, 2] + K[0, 2], K[1, 1] * Xc[:, 1] / Xc[:, 2] + K[1, 2]], axis=1)


def test_pose_recovers_known_transform() -> None:
    # Target facing the camera: target y up, camera y down.
    truth = RigidTransform(R=_rot_x(0.4) @ np.diag([1.0, -1.0, -1.0]), t=np.array([0.1, -0.2, 4.0]))
    quad = _project(truth, UNIT_FIDUCIAL)
    assert quad[0, 0] < quad[1, 0] and quad[0, 1] < quad[3, 1]

    est = QuadPoseEstimator()
    est.set_intrinsic(CAMERA)
    pose = est.estimate(quad)
    assert pose is not None
    assert np.allclose(pose.R, truth.R, atol=1e-5)
    assert np.allclose(pose.t, truth.t, atol=1e-5)
    assert np.allclose(pose.as_matrix()[:3, 3], truth.t, atol=1e-5)
    assert np.allclose(_project(pose, UNIT_FIDUCIAL), quad, atol=1e-6)


def test_scaled_pose_keeps_rotation() -> None:
    pose = RigidTransform(R=np.eye(3), t=np.array([0.5, -1.0, 2.0]))
    big = pose.scaled(0.2)
    assert np.allclose(big.t, [0.1, -0.2, 0.4])
    assert np.array_equal(big.R, pose.R)
    assert np.allclose(big.rvec(), 0.0)


def test_pose_rejects_non_finite_corners() -> None:
    est = QuadPoseEstimator()
    est.set_intrinsic(CAMERA)
    quad = np.array([[100.0, 100.0], [200.0, 100.0], [200.0, 200.0], [np.nan, 200.0]])
    assert est.estimate(quad) is None


def test_pose_requires_intrinsics() -> None:
    with pytest.raises(RuntimeError):
        QuadPoseEstimator().estimate(np.zeros((4, 2)))
