from __future__ import annotations

import cv2
import numpy as np

from squarefid.core.transforms import PointTransform


_INTERP_FLAGS = {
    "nearest": cv2.INTER_NEAREST,
    "linear": cv2.INTER_LINEAR,
    "cubic": cv2.INTER_CUBIC,
}


class SquareRectifier:
    """
    Renders a fixed-size square patch from a source image through a point
    transform (square pixel -> source pixel).

    The output buffer is allocated once and overwritten by every call. Samples
    falling outside the source image take the value of the nearest border pixel.
    """

    def __init__(self, square_pixels: int, interpolation: str = "nearest") -> None:
        interpolation = str(interpolation)
        if interpolation not in _INTERP_FLAGS:
            raise ValueError("interpolation must be nearest|linear|cubic")
        self.square_pixels = int(square_pixels)
        self.interpolation = interpolation
        self.square = np.zeros((self.square_pixels, self.square_pixels), dtype=np.float32)
        yy, xx = np.meshgrid(
            np.arange(self.square_pixels, dtype=np.float64),
            np.arange(self.square_pixels, dtype=np.float64),
            indexing="ij",
        )
        self._grid_x = xx
        self._grid_y = yy
        self._map_x = np.empty((self.square_pixels, self.square_pixels), dtype=np.float32)
        self._map_y = np.empty((self.square_pixels, self.square_pixels), dtype=np.float32)

    def rectify(self, image: np.ndarray, transform: PointTransform) -> np.ndarray:
        """Fill and return the shared square buffer: square[y, x] = image(transform(x, y))."""
        image = np.asarray(image)
        if image.ndim != 2:
            raise ValueError("expected a single-channel image")
        if image.dtype not in (np.uint8, np.float32):
            image = image.astype(np.float32)

        u, v = transform(self._grid_x, self._grid_y)
        self._map_x[...] = u
        self._map_y[...] = v
        # Non-finite coordinates would make remap read garbage; clamp them onto the border.
        bad = ~(np.isfinite(self._map_x) & np.isfinite(self._map_y))
        if np.any(bad):
            self._map_x[bad] = 0.0
            self._map_y[bad] = 0.0

        sampled = cv2.remap(
            image,
            self._map_x,
            self._map_y,
            interpolation=_INTERP_FLAGS[self.interpolation],
            borderMode=cv2.BORDER_REPLICATE,
        )
        self.square[...] = sampled
        return self.square
