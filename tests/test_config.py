from __future__ import annotations

import json

import numpy as np
import pytest

from squarefid.config import (
    ConfigValidationError,
    QuadDetectorConfig,
    camera_intrinsics_to_dict,
    load_camera_intrinsics,
    parse_camera_intrinsics,
    parse_detector_config,
    validate_quad_detector_config,
)


def _camera_dict(**distortion):
    return {
        "image": {"width_px": 640, "height_px": 480},
        "pinhole": {"fx": 500.0, "fy": 510.0, "cx": 319.5, "cy": 239.5},
        "distortion": distortion,
    }


def test_parse_camera_intrinsics_ok():
    cam = parse_camera_intrinsics(_camera_dict(k1=-0.1))
    assert (cam.width, cam.height) == (640, 480)
    assert cam.K()[1, 1] == 510.0
    assert cam.is_distorted()
    assert np.allclose(cam.dist(), [-0.1, 0.0, 0.0, 0.0, 0.0])


def test_parse_camera_intrinsics_without_distortion():
    cam = parse_camera_intrinsics(_camera_dict())
    assert not cam.is_distorted()
    undist = cam.with_pinhole(400.0, 400.0, 300.0, 200.0)
    assert undist.width == cam.width
    assert undist.fx == 400.0


def test_parse_camera_intrinsics_rejects_missing_focal():
    data = _camera_dict()
    del data["pinhole"]["fx"]
    with pytest.raises(ConfigValidationError):
        parse_camera_intrinsics(data)


def test_parse_camera_intrinsics_rejects_bad_size():
    data = _camera_dict()
    data["image"]["width_px"] = 0
    with pytest.raises(ConfigValidationError):
        parse_camera_intrinsics(data)


def test_camera_intrinsics_json_roundtrip(tmp_path):
    cam = parse_camera_intrinsics(_camera_dict(k1=0.05, p2=0.001))
    path = tmp_path / "camera.json"
    path.write_text(json.dumps(camera_intrinsics_to_dict(cam)), encoding="utf-8")
    assert load_camera_intrinsics(path) == cam


def test_parse_detector_config_defaults_and_validation():
    cfg = parse_detector_config({})
    assert cfg.square_pixels == 100
    assert cfg.refine_max_iterations == 100
    assert cfg.refine_tol == pytest.approx(1e-4)
    assert cfg.interpolation == "nearest"

    with pytest.raises(ConfigValidationError):
        parse_detector_config({"interpolation": "lanczos4"})
    with pytest.raises(ConfigValidationError):
        parse_detector_config({"square_pixels": 4})


def test_quad_detector_config_must_be_counter_clockwise_quads():
    validate_quad_detector_config(QuadDetectorConfig())
    with pytest.raises(ConfigValidationError):
        validate_quad_detector_config(QuadDetectorConfig(clockwise=True))
    with pytest.raises(ConfigValidationError):
        validate_quad_detector_config(QuadDetectorConfig(number_of_sides=(3, 4)))
