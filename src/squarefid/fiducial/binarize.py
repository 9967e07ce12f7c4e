from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Protocol

import cv2
import numpy as np


ThresholdMethod = Literal["global", "otsu", "mean"]


class Binarizer(Protocol):
    def __call__(self, gray: np.ndarray) -> np.ndarray: ...


def _to_u8(gray: np.ndarray) -> np.ndarray:
    gray = np.asarray(gray)
    if gray.dtype == np.uint8:
        return gray
    return np.clip(np.rint(gray), 0, 255).astype(np.uint8)


@dataclass(frozen=True)
class ThresholdBinarizer:
    """
    Gray -> binary image where dark pixels (marker ink) are foreground (255).

    - `global`: fixed `threshold`
    - `otsu`: Otsu's threshold per image
    - `mean`: local mean over `block_px` minus `offset`
    """

    method: ThresholdMethod = "otsu"
    threshold: float = 128.0
    block_px: int = 31
    offset: float = 5.0

    def __call__(self, gray: np.ndarray) -> np.ndarray:
        img = _to_u8(gray)
        if img.ndim != 2:
            raise ValueError("expected a single-channel image")
        if self.method == "global":
            _t, out = cv2.threshold(img, float(self.threshold), 255, cv2.THRESH_BINARY_INV)
            return out
        if self.method == "otsu":
            _t, out = cv2.threshold(img, 0, 255, cv2.THRESH_BINARY_INV | cv2.THRESH_OTSU)
            return out
        if self.method == "mean":
            block = int(self.block_px) | 1
            return cv2.adaptiveThreshold(
                img, 255, cv2.ADAPTIVE_THRESH_MEAN_C, cv2.THRESH_BINARY_INV, max(block, 3), float(self.offset)
            )
        raise ValueError("method must be global|otsu|mean")
