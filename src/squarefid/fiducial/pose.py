from __future__ import annotations

import logging
from dataclasses import dataclass

import cv2
import numpy as np

from squarefid.config import CameraIntrinsics

LOGGER = logging.getLogger(__name__)


# Unit square, target center at the origin, corner order matching the quad:
# 0=(-r, r), 1=(r, r), 2=(r, -r), 3=(-r, -r) with r = 0.5.
UNIT_FIDUCIAL = np.array(
    [[-0.5, 0.5, 0.0], [0.5, 0.5, 0.0], [0.5, -0.5, 0.0], [-0.5, -0.5, 0.0]],
    dtype=np.float64,
)


@dataclass(frozen=True)
class RigidTransform:
    """X_camera = R @ X_target + t."""

    R: np.ndarray  # (3,3)
    t: np.ndarray  # (3,)

    def as_matrix(self) -> np.ndarray:
        T = np.eye(4, dtype=np.float64)
        T[:3, :3] = self.R
        T[:3, 3] = self.t.reshape(3)
        return T

    def rvec(self) -> np.ndarray:
        rvec, _ = cv2.Rodrigues(np.asarray(self.R, dtype=np.float64))
        return rvec.reshape(3)

    def apply(self, XYZ: np.ndarray) -> np.ndarray:
        XYZ = np.asarray(XYZ, dtype=np.float64).reshape(-1, 3)
        return (self.R @ XYZ.T).T + self.t.reshape(1, 3)

    def scaled(self, s: float) -> "RigidTransform":
        return RigidTransform(R=self.R.copy(), t=self.t.reshape(3) * float(s))


class QuadPoseEstimator:
    """
    Target-to-camera pose of a unit square fiducial from its four image corners.

    Corners must be in the distortion-free frame described by the intrinsics
    given to `set_intrinsic`. IPPE gives the initial solution, Levenberg-Marquardt
    polishes it.
    """

    def __init__(self, tol: float = 1e-6, max_iterations: int = 200) -> None:
        self.tol = float(tol)
        self.max_iterations = int(max_iterations)
        self._K: np.ndarray | None = None
        self._dist = np.zeros((5,), dtype=np.float64)

    def set_intrinsic(self, intrinsics: CameraIntrinsics) -> None:
        self._K = intrinsics.K()
        self._dist = intrinsics.dist()

    def estimate(self, quad: np.ndarray) -> RigidTransform | None:
        if self._K is None:
            raise RuntimeError("intrinsics not set")
        img = np.asarray(quad, dtype=np.float64).reshape(4, 2)
        if not np.all(np.isfinite(img)):
            return None
        try:
            ok, rvec, tvec = cv2.solvePnP(UNIT_FIDUCIAL, img, self._K, self._dist, flags=cv2.SOLVEPNP_IPPE_SQUARE)
            if not ok:
                return None
            criteria = (cv2.TERM_CRITERIA_EPS + cv2.TERM_CRITERIA_COUNT, self.max_iterations, self.tol)
            rvec, tvec = cv2.solvePnPRefineLM(UNIT_FIDUCIAL, img, self._K, self._dist, rvec, tvec, criteria=criteria)
        except cv2.error as e:
            LOGGER.debug("solvePnP failed: %s", e)
            return None

        tvec = np.asarray(tvec, dtype=np.float64).reshape(3)
        if not np.all(np.isfinite(tvec)) or tvec[2] <= 0.0:
            return None
        R, _ = cv2.Rodrigues(np.asarray(rvec, dtype=np.float64))
        return RigidTransform(R=np.asarray(R, dtype=np.float64), t=tvec)
