from __future__ import annotations

import cv2
import numpy as np
import pytest

from squarefid.fiducial.decoders import BinaryGridDecoder, ImagePatternDecoder


def test_binary_grid_decodes_every_rotation() -> None:
    decoder = BinaryGridDecoder(0.15, lengths={7: 0.3})
    for marker_id in (0, 7, 0xA5C, 4095):
        img = BinaryGridDecoder.render(marker_id, 100)
        for k in range(4):
            res = decoder.decode(np.rot90(img, k=k))
            assert res is not None
            assert res.marker_id == marker_id
            assert res.rotation == k
            assert res.length_side == pytest.approx(0.3 if marker_id == 7 else 0.15)


def test_binary_grid_decodes_resampled_patch() -> None:
    decoder = BinaryGridDecoder()
    img = BinaryGridDecoder.render(1234, 100)
    # Rectified patches have their own resolution.
    patch = cv2.resize(img, (75, 75), interpolation=cv2.INTER_LINEAR).astype(np.float32)
    res = decoder.decode(patch)
    assert res is not None
    assert (res.marker_id, res.rotation) == (1234, 0)


def test_binary_grid_rejects_non_markers() -> None:
    decoder = BinaryGridDecoder()
    assert decoder.decode(np.zeros((100, 100), dtype=np.float32)) is None

    img = BinaryGridDecoder.render(99, 100)
    assert decoder.decode(255 - img) is None

    # No white orientation corner.
    no_anchor = img.copy()
    no_anchor[25:38, 25:38] = 0
    assert decoder.decode(no_anchor) is None


def test_binary_grid_render_validates_id() -> None:
    with pytest.raises(ValueError):
        BinaryGridDecoder.render(4096, 100)
    assert len(BinaryGridDecoder.data_cells()) == 12


def _patch(pattern: np.ndarray, scale: int = 4) -> np.ndarray:
    n = pattern.shape[0] * scale
    b = n // 2
    img = np.zeros((n + 2 * b, n + 2 * b), dtype=np.float32)
    img[b : b + n, b : b + n] = np.kron(pattern, np.ones((scale, scale))) * 255.0
    return img


def test_image_pattern_decoder_matches_id_and_rotation() -> None:
    rng = np.random.default_rng(5)
    a = rng.integers(0, 2, size=(16, 16)).astype(np.uint8)
    b = rng.integers(0, 2, size=(16, 16)).astype(np.uint8)
    other = rng.integers(0, 2, size=(16, 16)).astype(np.uint8)

    decoder = ImagePatternDecoder()
    assert decoder.decode(_patch(a)) is None
    assert decoder.add_pattern_binary(a, 0.1) == 0
    assert decoder.add_pattern_image(b * 200, 100.0, 0.25) == 1

    for k in range(4):
        res = decoder.decode(np.rot90(_patch(b), k=k))
        assert res is not None
        assert (res.marker_id, res.rotation) == (1, k)
        assert res.length_side == pytest.approx(0.25)

    res = decoder.decode(_patch(a))
    assert res is not None and res.marker_id == 0
    assert decoder.length_side(0) == pytest.approx(0.1)
    assert decoder.decode(_patch(other)) is None


def test_image_pattern_decoder_validation() -> None:
    decoder = ImagePatternDecoder()
    with pytest.raises(ValueError):
        decoder.add_pattern_binary(np.ones((16, 16)), 0.0)
    with pytest.raises(ValueError):
        decoder.add_pattern_binary(np.ones((16,)), 1.0)
    with pytest.raises(ValueError):
        ImagePatternDecoder(border_fraction=0.5)
