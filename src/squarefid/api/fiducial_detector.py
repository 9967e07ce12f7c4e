from __future__ import annotations

from pathlib import Path

import numpy as np

from squarefid.config import CameraIntrinsics, DetectorConfig, QuadDetectorConfig
from squarefid.core.image_io import load_gray_u8
from squarefid.fiducial.binarize import Binarizer, ThresholdBinarizer
from squarefid.fiducial.decoders import BinaryGridDecoder, ImagePatternDecoder
from squarefid.fiducial.detector import FoundFiducial, SquareFiducialDetector
from squarefid.fiducial.pose import RigidTransform
from squarefid.fiducial.quads import ContourQuadDetector


class FiducialDetector:
    """
    Frame-level facade over `SquareFiducialDetector`: index based accessors for
    the fiducials of the last processed frame.
    """

    def __init__(self, alg: SquareFiducialDetector) -> None:
        self.alg = alg

    def set_intrinsic(self, intrinsics: CameraIntrinsics, cache: bool | None = None) -> None:
        self.alg.configure(intrinsics, cache=cache)

    def detect(self, image: np.ndarray) -> list[FoundFiducial]:
        return self.alg.process(image)

    @property
    def found(self) -> list[FoundFiducial]:
        return self.alg.found

    def total_found(self) -> int:
        return len(self.alg.found)

    def get_id(self, which: int) -> int:
        return self.alg.found[which].marker_id

    def get_width(self, which: int) -> float:
        return self.alg.found[which].length_side

    def get_corners(self, which: int) -> np.ndarray:
        return self.alg.found[which].corners.copy()

    def get_fiducial_to_camera(self, which: int) -> RigidTransform:
        return self.alg.found[which].target_to_camera


class SquareImageFiducialDetector(FiducialDetector):
    """Detector for user supplied image patterns."""

    def __init__(self, alg: SquareFiducialDetector) -> None:
        if not isinstance(alg.decoder, ImagePatternDecoder):
            raise TypeError("SquareImageFiducialDetector needs an ImagePatternDecoder")
        super().__init__(alg)

    @property
    def decoder(self) -> ImagePatternDecoder:
        return self.alg.decoder  # type: ignore[return-value]

    def add_pattern_image(self, pattern: np.ndarray, threshold: float, length_side: float) -> int:
        """
        Add a gray scale pattern (marker interior, no border); pixels above
        `threshold` are white. Returns the pattern id.
        """
        return self.decoder.add_pattern_image(pattern, threshold, length_side)

    def add_pattern_binary(self, binary: np.ndarray, length_side: float) -> int:
        """Add a binary pattern: 0 = black, 1 = white. Returns the pattern id."""
        return self.decoder.add_pattern_binary(binary, length_side)

    def add_pattern_file(self, path: str | Path, threshold: float, length_side: float) -> int:
        return self.add_pattern_image(load_gray_u8(path), threshold, length_side)


def _build(
    decoder,
    config: DetectorConfig | None,
    quad_config: QuadDetectorConfig | None,
    binarizer: Binarizer | None,
) -> SquareFiducialDetector:
    return SquareFiducialDetector(
        decoder,
        quad_detector=ContourQuadDetector(quad_config),
        binarizer=binarizer if binarizer is not None else ThresholdBinarizer(),
        config=config,
    )


def square_image_detector(
    *,
    config: DetectorConfig | None = None,
    quad_config: QuadDetectorConfig | None = None,
    binarizer: Binarizer | None = None,
    max_error_fraction: float = 0.1,
) -> SquareImageFiducialDetector:
    decoder = ImagePatternDecoder(max_error_fraction=max_error_fraction)
    return SquareImageFiducialDetector(_build(decoder, config, quad_config, binarizer))


def square_binary_detector(
    length_side: float = 1.0,
    *,
    config: DetectorConfig | None = None,
    quad_config: QuadDetectorConfig | None = None,
    binarizer: Binarizer | None = None,
) -> FiducialDetector:
    decoder = BinaryGridDecoder(length_side)
    return FiducialDetector(_build(decoder, config, quad_config, binarizer))
