from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from squarefid.config import CameraIntrinsics


@dataclass(frozen=True)
class BrownDistortion:
    """
    Brown-Conrady distortion on normalized camera coordinates (x=X/Z, y=Y/Z).

    Parameters follow common OpenCV naming:
      radial: k1, k2, k3
      tangential: p1, p2
    """

    k1: float = 0.0
    k2: float = 0.0
    p1: float = 0.0
    p2: float = 0.0
    k3: float = 0.0

    def distort(self, x: np.ndarray, y: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        r2 = x * x + y * y
        r4 = r2 * r2
        r6 = r4 * r2
        radial = 1.0 + self.k1 * r2 + self.k2 * r4 + self.k3 * r6
        x2 = x * x
        y2 = y * y
        xy = x * y
        x_tan = 2.0 * self.p1 * xy + self.p2 * (r2 + 2.0 * x2)
        y_tan = self.p1 * (r2 + 2.0 * y2) + 2.0 * self.p2 * xy
        xd = x * radial + x_tan
        yd = y * radial + y_tan
        return xd, yd

    def undistort(self, xd: np.ndarray, yd: np.ndarray, iterations: int = 20) -> tuple[np.ndarray, np.ndarray]:
        """
        Iterative inverse of distort() for small/moderate distortion.
        """
        xd = np.asarray(xd, dtype=np.float64)
        yd = np.asarray(yd, dtype=np.float64)
        x = xd.copy()
        y = yd.copy()
        for _ in range(int(iterations)):
            x_est, y_est = self.distort(x, y)
            x += xd - x_est
            y += yd - y_est
        return x, y


def _border_pixels(width: int, height: int) -> tuple[np.ndarray, np.ndarray]:
    xs = np.arange(width, dtype=np.float64)
    ys = np.arange(height, dtype=np.float64)
    u = np.concatenate([xs, xs, np.zeros_like(ys), np.full_like(ys, width - 1)])
    v = np.concatenate([np.zeros_like(xs), np.full_like(xs, height - 1), ys, ys])
    return u, v


def full_view_intrinsics(intrinsics: "CameraIntrinsics") -> "CameraIntrinsics":
    """
    Distortion-free intrinsics for an undistorted image of the same size that
    keeps the whole field of view.

    The border of the distorted image is undistorted with the original pinhole,
    its bounding box is fitted into the image with one uniform scale. Every
    distorted pixel then lands inside [0, W-1] x [0, H-1].
    """
    w, h = int(intrinsics.width), int(intrinsics.height)
    fx, fy, cx, cy = float(intrinsics.fx), float(intrinsics.fy), float(intrinsics.cx), float(intrinsics.cy)
    dist = intrinsics.distortion()

    u, v = _border_pixels(w, h)
    x, y = dist.undistort((u - cx) / fx, (v - cy) / fy)
    uu = fx * x + cx
    vv = fy * y + cy

    x0, x1 = float(np.min(uu)), float(np.max(uu))
    y0, y1 = float(np.min(vv)), float(np.max(vv))
    scale = max((x1 - x0) / max(w - 1, 1), (y1 - y0) / max(h - 1, 1))
    if not np.isfinite(scale) or scale <= 0.0:
        raise ValueError("lens distortion model does not map the image border to a valid region")

    return intrinsics.with_pinhole(fx=fx / scale, fy=fy / scale, cx=(cx - x0) / scale, cy=(cy - y0) / scale)


class DistortedToUndistorted:
    """Distorted image pixel -> pixel of the undistorted (full view) image."""

    def __init__(self, distorted: "CameraIntrinsics", undistorted: "CameraIntrinsics") -> None:
        self._dist = distorted.distortion()
        self._src = (float(distorted.fx), float(distorted.fy), float(distorted.cx), float(distorted.cy))
        self._dst = (float(undistorted.fx), float(undistorted.fy), float(undistorted.cx), float(undistorted.cy))

    def __call__(self, x: np.ndarray, y: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        fx, fy, cx, cy = self._src
        nx, ny = self._dist.undistort((np.asarray(x, dtype=np.float64) - cx) / fx, (np.asarray(y, dtype=np.float64) - cy) / fy)
        fx2, fy2, cx2, cy2 = self._dst
        return fx2 * nx + cx2, fy2 * ny + cy2


class UndistortedToDistorted:
    """Pixel of the undistorted (full view) image -> distorted image pixel."""

    def __init__(self, distorted: "CameraIntrinsics", undistorted: "CameraIntrinsics") -> None:
        self._dist = distorted.distortion()
        self._src = (float(undistorted.fx), float(undistorted.fy), float(undistorted.cx), float(undistorted.cy))
        self._dst = (float(distorted.fx), float(distorted.fy), float(distorted.cx), float(distorted.cy))

    def __call__(self, x: np.ndarray, y: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        fx, fy, cx, cy = self._src
        xd, yd = self._dist.distort((np.asarray(x, dtype=np.float64) - cx) / fx, (np.asarray(y, dtype=np.float64) - cy) / fy)
        fx2, fy2, cx2, cy2 = self._dst
        return fx2 * xd + cx2, fy2 * yd + cy2


@dataclass(frozen=True)
class LensDistortionPixels:
    """
    Pixel-level lens distortion pair for one camera configuration.

    `undistorted` are the full-view intrinsics every undistorted coordinate
    (candidate corners, pose estimation) refers to.
    """

    distorted: "CameraIntrinsics"
    undistorted: "CameraIntrinsics"

    @classmethod
    def full_view(cls, intrinsics: "CameraIntrinsics") -> "LensDistortionPixels":
        return cls(distorted=intrinsics, undistorted=full_view_intrinsics(intrinsics))

    def dist_to_undist(self) -> DistortedToUndistorted:
        return DistortedToUndistorted(self.distorted, self.undistorted)

    def undist_to_dist(self) -> UndistortedToDistorted:
        return UndistortedToDistorted(self.distorted, self.undistorted)
