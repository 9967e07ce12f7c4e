"""
Pattern decoders for rectified square patches.

A decoder receives the undistorted square (black border included) and either
returns a `DecodeResult` or None when the patch is not one of its markers.

`DecodeResult.rotation` is the number of quarter-turns, clockwise on screen,
the patch must be turned to read the pattern in its canonical orientation.
Equivalently the patch equals `np.rot90(canonical, k=rotation)`.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import cv2
import numpy as np


@dataclass(frozen=True)
class DecodeResult:
    marker_id: int
    rotation: int
    length_side: float


class Decoder(Protocol):
    def decode(self, square: np.ndarray) -> DecodeResult | None: ...


def _threshold_patch(square: np.ndarray, min_contrast: float) -> tuple[np.ndarray, float] | None:
    """White mask (True = bright) of the patch using Otsu; None if the patch is flat."""
    sq = np.asarray(square, dtype=np.float32)
    lo, hi = float(np.min(sq)), float(np.max(sq))
    if hi - lo < float(min_contrast):
        return None
    u8 = np.clip(np.rint((sq - lo) * (255.0 / (hi - lo))), 0, 255).astype(np.uint8)
    t, _ = cv2.threshold(u8, 0, 255, cv2.THRESH_BINARY | cv2.THRESH_OTSU)
    return u8 > t, float(t)


def _border_px(width: int, border_fraction: float) -> int:
    return max(1, int(round(width * float(border_fraction))))


def _border_is_dark(white: np.ndarray, b: int, min_dark_fraction: float) -> bool:
    ring = np.ones(white.shape, dtype=bool)
    ring[b:-b, b:-b] = False
    return float(np.mean(~white[ring])) >= float(min_dark_fraction)


def _downsample(mask: np.ndarray, cells: int) -> np.ndarray:
    return cv2.resize(mask.astype(np.float32), (cells, cells), interpolation=cv2.INTER_AREA)


class ImagePatternDecoder:
    """
    Matches the interior of the patch against user supplied binary patterns.

    Patterns are the marker interior only (no black border), 1 = white. Each is
    stored at `grid` x `grid` resolution in its four rotations and matched by
    Hamming error.
    """

    def __init__(
        self,
        *,
        border_fraction: float = 0.25,
        grid: int = 16,
        max_error_fraction: float = 0.1,
        min_dark_border: float = 0.8,
        min_contrast: float = 10.0,
    ) -> None:
        if not 0.0 < border_fraction < 0.5:
            raise ValueError("border_fraction must be in (0, 0.5)")
        if grid < 2:
            raise ValueError("grid must be >= 2")
        self.border_fraction = float(border_fraction)
        self.grid = int(grid)
        self.max_error_fraction = float(max_error_fraction)
        self.min_dark_border = float(min_dark_border)
        self.min_contrast = float(min_contrast)
        self._patterns: list[np.ndarray] = []
        self._lengths: list[float] = []

    @property
    def patterns(self) -> list[np.ndarray]:
        return list(self._patterns)

    def add_pattern_binary(self, binary: np.ndarray, length_side: float) -> int:
        binary = np.asarray(binary)
        if binary.ndim != 2 or binary.shape[0] < 2 or binary.shape[1] < 2:
            raise ValueError("pattern must be a 2D image")
        if float(length_side) <= 0.0:
            raise ValueError("length_side must be > 0")
        pattern = _downsample(binary > 0, self.grid) >= 0.5
        self._patterns.append(pattern)
        self._lengths.append(float(length_side))
        return len(self._patterns) - 1

    def add_pattern_image(self, gray: np.ndarray, threshold: float, length_side: float) -> int:
        gray = np.asarray(gray, dtype=np.float64)
        return self.add_pattern_binary(gray > float(threshold), length_side)

    def length_side(self, marker_id: int) -> float:
        return self._lengths[int(marker_id)]

    def decode(self, square: np.ndarray) -> DecodeResult | None:
        if not self._patterns:
            return None
        th = _threshold_patch(square, self.min_contrast)
        if th is None:
            return None
        white, _t = th
        b = _border_px(white.shape[0], self.border_fraction)
        if not _border_is_dark(white, b, self.min_dark_border):
            return None

        inner = _downsample(white[b:-b, b:-b], self.grid) >= 0.5
        n = float(self.grid * self.grid)
        best: tuple[float, int, int] | None = None
        for idx, pattern in enumerate(self._patterns):
            for r in range(4):
                err = float(np.count_nonzero(inner != np.rot90(pattern, k=r))) / n
                if best is None or err < best[0]:
                    best = (err, idx, r)
        if best is None or best[0] > self.max_error_fraction:
            return None
        _err, idx, r = best
        return DecodeResult(marker_id=idx, rotation=r, length_side=self._lengths[idx])


class BinaryGridDecoder:
    """
    4x4 binary grid marker: the top-left interior cell is white and the other
    three interior corners are black in the canonical orientation. The
    remaining 12 cells carry the id, row-major, most significant bit first,
    white = 1.
    """

    CELLS = 4
    _CORNERS = ((0, 0), (0, 3), (3, 3), (3, 0))

    def __init__(
        self,
        length_side: float = 1.0,
        *,
        border_fraction: float = 0.25,
        min_dark_border: float = 0.8,
        min_contrast: float = 10.0,
        lengths: dict[int, float] | None = None,
    ) -> None:
        if float(length_side) <= 0.0:
            raise ValueError("length_side must be > 0")
        if not 0.0 < border_fraction < 0.5:
            raise ValueError("border_fraction must be in (0, 0.5)")
        self.default_length = float(length_side)
        self.border_fraction = float(border_fraction)
        self.min_dark_border = float(min_dark_border)
        self.min_contrast = float(min_contrast)
        self.lengths = dict(lengths or {})

    @classmethod
    def data_cells(cls) -> list[tuple[int, int]]:
        return [(r, c) for r in range(cls.CELLS) for c in range(cls.CELLS) if (r, c) not in cls._CORNERS]

    def length_side(self, marker_id: int) -> float:
        return float(self.lengths.get(int(marker_id), self.default_length))

    @classmethod
    def render(cls, marker_id: int, pixels: int, border_fraction: float = 0.25) -> np.ndarray:
        """Marker image (uint8, black border, no quiet zone) for `marker_id` in 0..4095."""
        marker_id = int(marker_id)
        if marker_id < 0 or marker_id >= 1 << 12:
            raise ValueError("marker_id must be in 0..4095")
        grid = np.zeros((cls.CELLS, cls.CELLS), dtype=np.uint8)
        grid[0, 0] = 1
        for i, (r, c) in enumerate(cls.data_cells()):
            grid[r, c] = (marker_id >> (11 - i)) & 1

        b = _border_px(int(pixels), border_fraction)
        img = np.zeros((int(pixels), int(pixels)), dtype=np.uint8)
        inner = cv2.resize(grid * 255, (int(pixels) - 2 * b, int(pixels) - 2 * b), interpolation=cv2.INTER_NEAREST)
        img[b:-b, b:-b] = inner
        return img

    def decode(self, square: np.ndarray) -> DecodeResult | None:
        th = _threshold_patch(square, self.min_contrast)
        if th is None:
            return None
        white, _t = th
        b = _border_px(white.shape[0], self.border_fraction)
        if not _border_is_dark(white, b, self.min_dark_border):
            return None

        inner = white[b:-b, b:-b]
        step = inner.shape[0] / float(self.CELLS)
        cells = np.zeros((self.CELLS, self.CELLS), dtype=bool)
        # Vote over the central half of each cell.
        for r in range(self.CELLS):
            for c in range(self.CELLS):
                y0 = int(round((r + 0.25) * step))
                y1 = max(y0 + 1, int(round((r + 0.75) * step)))
                x0 = int(round((c + 0.25) * step))
                x1 = max(x0 + 1, int(round((c + 0.75) * step)))
                cells[r, c] = float(np.mean(inner[y0:y1, x0:x1])) >= 0.5

        matches = []
        for rot in range(4):
            g = np.rot90(cells, k=-rot)
            corners = [bool(g[r, c]) for r, c in self._CORNERS]
            if corners == [True, False, False, False]:
                matches.append((rot, g))
        if len(matches) != 1:
            return None
        rot, g = matches[0]
        marker_id = 0
        for r, c in self.data_cells():
            marker_id = (marker_id << 1) | int(g[r, c])
        return DecodeResult(marker_id=marker_id, rotation=rot, length_side=self.length_side(marker_id))
