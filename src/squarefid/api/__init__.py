from squarefid.api.fiducial_detector import (
    FiducialDetector,
    SquareImageFiducialDetector,
    square_binary_detector,
    square_image_detector,
)

__all__ = [
    "FiducialDetector",
    "SquareImageFiducialDetector",
    "square_binary_detector",
    "square_image_detector",
]
