from squarefid import config
from squarefid.api import FiducialDetector, SquareImageFiducialDetector, square_binary_detector, square_image_detector
from squarefid.config import CameraIntrinsics, ConfigValidationError, DetectorConfig, QuadDetectorConfig
from squarefid.fiducial.detector import FoundFiducial, SquareFiducialDetector

__all__ = [
    "config",
    "CameraIntrinsics",
    "ConfigValidationError",
    "DetectorConfig",
    "QuadDetectorConfig",
    "FiducialDetector",
    "FoundFiducial",
    "SquareFiducialDetector",
    "SquareImageFiducialDetector",
    "square_binary_detector",
    "square_image_detector",
]
