from __future__ import annotations

from pathlib import Path

import cv2
import numpy as np
from PIL import Image


def load_gray_u8(path: str | Path) -> np.ndarray:
    """
    Load an image file (png/webp/jpg/...) as grayscale uint8, e.g. a fiducial pattern.
    """
    with Image.open(Path(path)) as im:
        im = im.convert("L")
        arr = np.asarray(im, dtype=np.uint8)
    return arr


def as_gray(image: np.ndarray) -> np.ndarray:
    """
    Single-channel view of an input frame. Color frames are assumed BGR (OpenCV order).
    """
    image = np.asarray(image)
    if image.ndim == 2:
        return image
    if image.ndim == 3 and image.shape[2] == 1:
        return image[:, :, 0]
    if image.ndim == 3 and image.shape[2] in (3, 4):
        code = cv2.COLOR_BGR2GRAY if image.shape[2] == 3 else cv2.COLOR_BGRA2GRAY
        if image.dtype not in (np.uint8, np.uint16, np.float32):
            image = image.astype(np.float32)
        return cv2.cvtColor(image, code)
    raise ValueError(f"unsupported image shape: {image.shape}")
