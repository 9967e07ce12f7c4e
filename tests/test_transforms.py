from __future__ import annotations

import numpy as np
import pytest

from squarefid.core.homography import apply_homography
from squarefid.core.transforms import CachedPixelTransform, HomographyTransform, IdentityTransform, SequenceTransform


def test_homography_transform_matches_apply_homography():
    H = np.array([[1.2, 0.1, 30.0], [-0.05, 0.9, 12.0], [1e-4, -2e-4, 1.0]])
    pts = np.array([[0.0, 0.0], [10.0, 5.0], [99.0, 99.0]])
    u, v = HomographyTransform(H)(pts[:, 0], pts[:, 1])
    assert np.allclose(np.stack([u, v], axis=1), apply_homography(H, pts))


def test_homography_transform_model_is_updated_in_place():
    t = HomographyTransform()
    seq = SequenceTransform(t)
    x, y = seq(np.array([1.0]), np.array([2.0]))
    assert (float(x[0]), float(y[0])) == (1.0, 2.0)
    t.set_model(np.array([[2.0, 0.0, 0.0], [0.0, 2.0, 0.0], [0.0, 0.0, 1.0]]))
    x, y = seq(np.array([1.0]), np.array([2.0]))
    assert (float(x[0]), float(y[0])) == (2.0, 4.0)


def test_sequence_applies_left_to_right():
    def shift(x, y):
        return x + 1.0, y

    def double(x, y):
        return 2.0 * x, 2.0 * y

    x, y = SequenceTransform(shift, double)(np.array([1.0]), np.array([1.0]))
    assert (float(x[0]), float(y[0])) == (4.0, 2.0)
    with pytest.raises(ValueError):
        SequenceTransform()


def test_identity_returns_copies():
    x = np.array([1.0, 2.0])
    y = np.array([3.0, 4.0])
    u, v = IdentityTransform()(x, y)
    u[0] = 10.0
    assert x[0] == 1.0
    assert np.array_equal(v, y)


def test_cached_transform_inside_and_outside_grid():
    calls = {"n": 0}

    def smooth(x, y):
        calls["n"] += 1
        return x + 0.01 * x * x, y - 0.5

    cached = CachedPixelTransform(40, 30, smooth)
    n_build = calls["n"]

    # Integer pixels are exact, in-between points are bilinear.
    u, v = cached(np.array([3.0, 39.0]), np.array([4.0, 29.0]))
    assert np.allclose(u, [3.09, 39.0 + 0.01 * 39.0 * 39.0])
    assert np.allclose(v, [3.5, 28.5])
    assert calls["n"] == n_build

    u, _v = cached(np.array([10.5]), np.array([5.0]))
    assert abs(float(u[0]) - (10.5 + 0.01 * 10.5 * 10.5)) < 0.01

    u, v = cached(np.array([-5.0, 50.0]), np.array([3.0, 3.0]))
    assert calls["n"] == n_build + 1
    assert np.allclose(u, [-5.0 + 0.25, 50.0 + 25.0])
    assert np.allclose(v, [2.5, 2.5])


def test_cached_transform_preserves_shape():
    cached = CachedPixelTransform(8, 8, IdentityTransform())
    yy, xx = np.meshgrid(np.arange(5.0), np.arange(6.0), indexing="ij")
    u, v = cached(xx, yy)
    assert u.shape == (5, 6)
    assert np.allclose(u, xx)
    assert np.allclose(v, yy)
