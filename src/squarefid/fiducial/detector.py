"""
Square fiducial pipeline.

Per frame: binarize -> propose quadrilaterals -> for every candidate estimate and
refine the canonical-square-to-quad homography, render the undistorted square,
decode it, fix the corner order from the decoded rotation, estimate the pose and
map the corners back into the (possibly lens-distorted) input image.

Lens distortion is removed sparsely: candidate corners live in the undistorted
"full view" frame, and the square is sampled from the raw input through
homography followed by the undistorted-to-distorted pixel map.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from squarefid.config import CameraIntrinsics, DetectorConfig, validate_detector_config, validate_quad_detector_config
from squarefid.core.distortion import LensDistortionPixels
from squarefid.core.homography import estimate_homography, refine_homography
from squarefid.core.image_io import as_gray
from squarefid.core.orientation import normalize_orientation
from squarefid.core.rectify import SquareRectifier
from squarefid.core.transforms import (
    CachedPixelTransform,
    HomographyTransform,
    IdentityTransform,
    PointTransform,
    SequenceTransform,
)
from squarefid.fiducial.binarize import Binarizer, ThresholdBinarizer
from squarefid.fiducial.decoders import DecodeResult, Decoder
from squarefid.fiducial.pose import QuadPoseEstimator, RigidTransform
from squarefid.fiducial.quads import ContourQuadDetector, QuadDetector

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class FoundFiducial:
    """
    One accepted marker.

    `corners` are in input image pixels (lens distortion included), ordered so
    that corner i matches the target-frame corner i of the unit fiducial
    (-r,r), (r,r), (r,-r), (-r,-r).
    """

    marker_id: int
    corners: np.ndarray  # (4,2)
    length_side: float
    target_to_camera: RigidTransform


class SquareFiducialDetector:
    """
    Must call `configure` before `process`.

    The rectified square and the homography model are reused across candidates,
    so one instance processes one frame at a time.
    """

    def __init__(
        self,
        decoder: Decoder,
        *,
        quad_detector: QuadDetector | None = None,
        binarizer: Binarizer | None = None,
        config: DetectorConfig | None = None,
    ) -> None:
        self.config = config or DetectorConfig()
        validate_detector_config(self.config)
        self.quad_detector = quad_detector if quad_detector is not None else ContourQuadDetector()
        validate_quad_detector_config(self.quad_detector.config)
        self.binarizer = binarizer if binarizer is not None else ThresholdBinarizer()
        self.decoder = decoder

        w = float(self.config.square_pixels)
        # Canonical square, same winding as the candidates.
        self._canonical = np.array([[0.0, 0.0], [w, 0.0], [w, w], [0.0, w]], dtype=np.float64)
        self._rectifier = SquareRectifier(self.config.square_pixels, self.config.interpolation)
        self._homography = HomographyTransform()
        self._square_to_input: PointTransform = self._homography
        self._undist_to_dist: PointTransform = IdentityTransform()
        self._pose = QuadPoseEstimator(tol=self.config.pose_tol, max_iterations=self.config.pose_max_iterations)

        self.intrinsics: CameraIntrinsics | None = None
        self.intrinsics_undist: CameraIntrinsics | None = None
        self.binary: np.ndarray | None = None
        self._found: list[FoundFiducial] = []

    @property
    def square(self) -> np.ndarray:
        """Last rendered square (shared buffer)."""
        return self._rectifier.square

    @property
    def found(self) -> list[FoundFiducial]:
        return list(self._found)

    def configure(self, intrinsics: CameraIntrinsics, cache: bool | None = None) -> None:
        """
        Set the camera model. Not safe to call while a frame is being processed.

        `cache` memoises the lens distortion maps on the pixel grid (ignored
        without lens distortion); defaults to `config.cache_distortion`.
        """
        cache = self.config.cache_distortion if cache is None else bool(cache)
        w, h = int(intrinsics.width), int(intrinsics.height)

        if intrinsics.is_distorted():
            # Full view: no pixel is discarded and every undistorted pixel stays inside the input image.
            lens = LensDistortionPixels.full_view(intrinsics)
            dist_to_undist: PointTransform = lens.dist_to_undist()
            undist_to_dist: PointTransform = lens.undist_to_dist()
            if cache:
                dist_to_undist = CachedPixelTransform(w, h, dist_to_undist)
                undist_to_dist = CachedPixelTransform(w, h, undist_to_dist)
            self.quad_detector.set_lens_distortion(w, h, dist_to_undist, undist_to_dist)
            self._square_to_input = SequenceTransform(self._homography, undist_to_dist)
            self._undist_to_dist = lens.undist_to_dist()
            undist = lens.undistorted
        else:
            self.quad_detector.set_lens_distortion(w, h, None, None)
            self._square_to_input = self._homography
            self._undist_to_dist = IdentityTransform()
            undist = intrinsics

        self._pose.set_intrinsic(undist)
        self.intrinsics = intrinsics
        self.intrinsics_undist = undist

    def process(self, image: np.ndarray) -> list[FoundFiducial]:
        """Detect fiducials in one frame. Results replace those of the previous frame."""
        if self.intrinsics is None:
            raise RuntimeError("configure() must be called before process()")
        self._found = []
        gray = as_gray(image)
        self.binary = self.binarizer(gray)
        candidates = self.quad_detector.detect(gray, self.binary)
        return self.process_candidates(gray, candidates)

    def process_candidates(self, gray: np.ndarray, candidates: list[np.ndarray]) -> list[FoundFiducial]:
        """
        Run the per-candidate stages on quadrilaterals given in the undistorted frame.
        """
        if self.intrinsics is None:
            raise RuntimeError("configure() must be called before process()")
        self._found = []
        gray = as_gray(gray)

        LOGGER.debug("processing %d candidates", len(candidates))
        for i, candidate in enumerate(candidates):
            quad = np.array(candidate, dtype=np.float64).reshape(4, 2)

            H = estimate_homography(self._canonical, quad)
            if H is None:
                LOGGER.debug("candidate %d: rejected initial homography", i)
                continue

            H_refined = refine_homography(
                H,
                self._canonical,
                quad,
                tol=self.config.refine_tol,
                max_iterations=self.config.refine_max_iterations,
            )
            if H_refined is None:
                LOGGER.debug("candidate %d: rejected refined homography", i)
                continue

            self._homography.set_model(H_refined)
            square = self._rectifier.rectify(gray, self._square_to_input)

            result = self.decoder.decode(square)
            if result is None:
                LOGGER.debug("candidate %d: no matching pattern", i)
                continue

            fiducial = self._prepare_for_output(quad, result)
            if fiducial is None:
                LOGGER.warning("candidate %d: pose estimation failed for marker %d, dropped", i, result.marker_id)
                continue
            LOGGER.debug("candidate %d: accepted marker %d (rotation %d)", i, result.marker_id, result.rotation)
            self._found.append(fiducial)

        return list(self._found)

    def _prepare_for_output(self, quad: np.ndarray, result: DecodeResult) -> FoundFiducial | None:
        normalize_orientation(quad, result.rotation)

        target_to_camera = self.compute_target_to_world(quad, result.length_side)
        if target_to_camera is None:
            return None

        # Back into input image coordinates.
        u, v = self._undist_to_dist(quad[:, 0], quad[:, 1])
        corners = np.stack([u, v], axis=1).astype(np.float64)
        return FoundFiducial(
            marker_id=int(result.marker_id),
            corners=corners,
            length_side=float(result.length_side),
            target_to_camera=target_to_camera,
        )

    def compute_target_to_world(self, quad: np.ndarray, length_side: float) -> RigidTransform | None:
        """
        Target-to-camera transform from undistorted corners in fiducial order.

        The pose is solved for a unit square and its translation scaled by `length_side`.
        """
        pose = self._pose.estimate(quad)
        if pose is None:
            return None
        return pose.scaled(length_side)
