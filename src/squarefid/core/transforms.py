"""
Vectorised 2D point transforms.

A point transform is any callable `(x, y) -> (x', y')` taking and returning
float64 arrays of identical shape. They are chained with `SequenceTransform`
to build the single map used to resample a candidate square (canonical square
-> undistorted image -> distorted image).
"""
from __future__ import annotations

from typing import Protocol

import numpy as np
from scipy.ndimage import map_coordinates


class PointTransform(Protocol):
    def __call__(self, x: np.ndarray, y: np.ndarray) -> tuple[np.ndarray, np.ndarray]: ...


class IdentityTransform:
    def __call__(self, x: np.ndarray, y: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        return np.array(x, dtype=np.float64, copy=True), np.array(y, dtype=np.float64, copy=True)


class HomographyTransform:
    """
    Applies a 3x3 homography. The model is mutable so one instance can be wired
    into a `SequenceTransform` once and updated for every candidate.
    """

    def __init__(self, H: np.ndarray | None = None) -> None:
        self.H = np.eye(3, dtype=np.float64)
        if H is not None:
            self.set_model(H)

    def set_model(self, H: np.ndarray) -> None:
        self.H = np.asarray(H, dtype=np.float64).reshape(3, 3).copy()

    def __call__(self, x: np.ndarray, y: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        H = self.H
        w = H[2, 0] * x + H[2, 1] * y + H[2, 2]
        u = (H[0, 0] * x + H[0, 1] * y + H[0, 2]) / w
        v = (H[1, 0] * x + H[1, 1] * y + H[1, 2]) / w
        return u, v


class SequenceTransform:
    """Composition applied left to right: `SequenceTransform(a, b)(p) == b(a(p))`."""

    def __init__(self, *transforms: PointTransform) -> None:
        if not transforms:
            raise ValueError("SequenceTransform needs at least one transform")
        self.transforms = tuple(transforms)

    def __call__(self, x: np.ndarray, y: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        for t in self.transforms:
            x, y = t(x, y)
        return x, y


class CachedPixelTransform:
    """
    Memoises a transform on the integer pixel grid of a (width, height) image.

    Inputs inside the grid are served by bilinear interpolation of the cached
    values; inputs outside it go through the wrapped transform.
    """

    def __init__(self, width: int, height: int, transform: PointTransform) -> None:
        self.width = int(width)
        self.height = int(height)
        self.transform = transform
        yy, xx = np.meshgrid(np.arange(self.height, dtype=np.float64), np.arange(self.width, dtype=np.float64), indexing="ij")
        mx, my = transform(xx, yy)
        self.map_x = np.asarray(mx, dtype=np.float64)
        self.map_y = np.asarray(my, dtype=np.float64)

    def __call__(self, x: np.ndarray, y: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        shape = np.broadcast(x, y).shape
        x = np.broadcast_to(x, shape).reshape(-1)
        y = np.broadcast_to(y, shape).reshape(-1)

        inside = (x >= 0.0) & (x <= self.width - 1) & (y >= 0.0) & (y <= self.height - 1)
        u = np.empty_like(x)
        v = np.empty_like(y)
        if np.any(inside):
            coords = np.stack([y[inside], x[inside]], axis=0)
            u[inside] = map_coordinates(self.map_x, coords, order=1, mode="nearest")
            v[inside] = map_coordinates(self.map_y, coords, order=1, mode="nearest")
        if not np.all(inside):
            uo, vo = self.transform(x[~inside], y[~inside])
            u[~inside] = uo
            v[~inside] = vo
        return u.reshape(shape), v.reshape(shape)
