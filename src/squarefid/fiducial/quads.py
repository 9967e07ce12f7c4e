from __future__ import annotations

import logging
from typing import Protocol

import cv2
import numpy as np

from squarefid.config import QuadDetectorConfig, validate_quad_detector_config
from squarefid.core.orientation import signed_area
from squarefid.core.transforms import PointTransform

LOGGER = logging.getLogger(__name__)


class QuadDetector(Protocol):
    config: QuadDetectorConfig

    def set_lens_distortion(
        self,
        width: int,
        height: int,
        dist_to_undist: PointTransform | None,
        undist_to_dist: PointTransform | None,
    ) -> None: ...

    def detect(self, gray: np.ndarray, binary: np.ndarray) -> list[np.ndarray]: ...


class ContourQuadDetector:
    """
    Proposes quadrilateral candidates from the outer contours of dark blobs.

    Output corners are (4,2) float64 arrays, counter-clockwise (positive signed
    area, y down), starting from the corner closest to the image origin. When a
    lens distortion pair is set, corners are returned in the undistorted frame.
    """

    def __init__(self, config: QuadDetectorConfig | None = None) -> None:
        self.config = config or QuadDetectorConfig()
        validate_quad_detector_config(self.config)
        self._dist_to_undist: PointTransform | None = None
        self._undist_to_dist: PointTransform | None = None

    def set_lens_distortion(
        self,
        width: int,
        height: int,
        dist_to_undist: PointTransform | None,
        undist_to_dist: PointTransform | None,
    ) -> None:
        """Pass None for both transforms to work directly in image coordinates."""
        self._dist_to_undist = dist_to_undist
        self._undist_to_dist = undist_to_dist

    def detect(self, gray: np.ndarray, binary: np.ndarray) -> list[np.ndarray]:
        cfg = self.config
        binary = np.asarray(binary)
        if binary.dtype != np.uint8:
            binary = (binary > 0).astype(np.uint8) * 255
        h, w = binary.shape[:2]

        res = cv2.findContours(binary, cv2.RETR_CCOMP, cv2.CHAIN_APPROX_NONE)
        contours, hierarchy = res[-2], res[-1]
        if hierarchy is None or len(contours) == 0:
            return []
        hierarchy = np.asarray(hierarchy).reshape(-1, 4)

        gray_f = np.asarray(gray, dtype=np.float32)
        min_side = float(cfg.min_side_px)
        out: list[np.ndarray] = []
        for i, c in enumerate(contours):
            # Holes (inner boundaries) have a parent in the two-level hierarchy.
            if int(hierarchy[i, 3]) != -1:
                continue
            peri = cv2.arcLength(c, True)
            if peri < 4.0 * min_side:
                continue
            approx = cv2.approxPolyDP(c, float(cfg.approx_epsilon_fraction) * peri, True)
            if len(approx) != 4 or not cv2.isContourConvex(approx):
                continue
            quad = approx.reshape(4, 2).astype(np.float64)
            sides = np.linalg.norm(quad - np.roll(quad, -1, axis=0), axis=1)
            if float(np.min(sides)) < min_side:
                continue
            # A blob touching the image border has no visible outline there.
            if np.any(quad[:, 0] <= 1) or np.any(quad[:, 1] <= 1) or np.any(quad[:, 0] >= w - 2) or np.any(quad[:, 1] >= h - 2):
                continue

            if cfg.refine_corners:
                quad = self._refine_corners(gray_f, quad)

            if signed_area(quad) < 0.0:
                quad = quad[::-1].copy()
            start = int(np.argmin(quad[:, 0] + quad[:, 1]))
            quad = np.roll(quad, -start, axis=0)

            if self._dist_to_undist is not None:
                ux, uy = self._dist_to_undist(quad[:, 0], quad[:, 1])
                quad = np.stack([ux, uy], axis=1).astype(np.float64)
            out.append(quad)

        LOGGER.debug("found %d quadrilateral candidates", len(out))
        return out

    def _refine_corners(self, gray_f: np.ndarray, quad: np.ndarray) -> np.ndarray:
        win = int(self.config.corner_window_px)
        pts = quad.astype(np.float32).reshape(-1, 1, 2)
        criteria = (cv2.TERM_CRITERIA_EPS + cv2.TERM_CRITERIA_MAX_ITER, 40, 1e-3)
        refined = cv2.cornerSubPix(gray_f, pts, (win, win), (-1, -1), criteria)
        refined = np.asarray(refined, dtype=np.float64).reshape(4, 2)
        # Keep the integer estimate if a corner wandered off.
        moved = np.linalg.norm(refined - quad, axis=1)
        refined[moved > 2.0 * win] = quad[moved > 2.0 * win]
        return refined
