"""
Corner-order bookkeeping for square fiducials.

Conventions used throughout the package (image coordinates, y pointing down):

- A quadrilateral is a (4,2) array whose corners are in counter-clockwise order
  in the mathematical sense, i.e. positive shoelace area with y down. On screen
  that order reads clockwise: top-left, top-right, bottom-right, bottom-left
  for an upright square. It matches the canonical square
  {(0,0), (W,0), (W,W), (0,W)}.
- A decoder reports a rotation index r in {0,1,2,3}: the rectified patch must be
  turned r quarter-turns clockwise *on screen* to read the pattern canonically.
  On the corner list that is a counter-clockwise shift, so the pattern's
  corner 0 sits at quad index (4 - r) % 4.
"""
from __future__ import annotations

import numpy as np


def signed_area(quad: np.ndarray) -> float:
    q = np.asarray(quad, dtype=np.float64).reshape(-1, 2)
    x = q[:, 0]
    y = q[:, 1]
    return 0.5 * float(np.sum(x * np.roll(y, -1) - np.roll(x, -1) * y))


def counter_clockwise_steps(rotation: int) -> int:
    """Number of counter-clockwise corner shifts matching a visual-clockwise rotation index."""
    r = int(rotation)
    if r < 0 or r > 3:
        raise ValueError(f"rotation index must be in 0..3, got {rotation}")
    return (4 - r) % 4


def rotate_counter_clockwise(quad: np.ndarray) -> np.ndarray:
    """In place: corner i takes the value of corner i+1 (a<-b, b<-c, c<-d, d<-a)."""
    quad[...] = np.roll(quad, -1, axis=0)
    return quad


def normalize_orientation(quad: np.ndarray, rotation: int) -> np.ndarray:
    """
    Relabel the corners in place so corner 0 is the pattern's canonical corner 0.
    """
    for _ in range(counter_clockwise_steps(rotation)):
        rotate_counter_clockwise(quad)
    return quad
