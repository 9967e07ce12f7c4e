from __future__ import annotations

import json
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Literal

import numpy as np

from squarefid.core.distortion import BrownDistortion


Interpolation = Literal["nearest", "linear", "cubic"]


class ConfigValidationError(ValueError):
    pass


@dataclass(frozen=True)
class CameraIntrinsics:
    """
    Pinhole intrinsics plus Brown-Conrady lens distortion for one camera.

    Pixel convention: x right, y down, pixel centers at integer coordinates.
    """

    width: int
    height: int
    fx: float
    fy: float
    cx: float
    cy: float
    k1: float = 0.0
    k2: float = 0.0
    p1: float = 0.0
    p2: float = 0.0
    k3: float = 0.0

    def K(self) -> np.ndarray:
        return np.array(
            [[float(self.fx), 0.0, float(self.cx)], [0.0, float(self.fy), float(self.cy)], [0.0, 0.0, 1.0]],
            dtype=np.float64,
        )

    def dist(self) -> np.ndarray:
        return np.array([self.k1, self.k2, self.p1, self.p2, self.k3], dtype=np.float64)

    def distortion(self) -> BrownDistortion:
        return BrownDistortion(k1=self.k1, k2=self.k2, p1=self.p1, p2=self.p2, k3=self.k3)

    def is_distorted(self) -> bool:
        return bool(np.any(self.dist() != 0.0))

    def with_pinhole(self, fx: float, fy: float, cx: float, cy: float) -> "CameraIntrinsics":
        """Same image size, new pinhole parameters, no lens distortion."""
        return replace(self, fx=float(fx), fy=float(fy), cx=float(cx), cy=float(cy), k1=0.0, k2=0.0, p1=0.0, p2=0.0, k3=0.0)


@dataclass(frozen=True)
class DetectorConfig:
    square_pixels: int = 100
    refine_tol: float = 1e-4
    refine_max_iterations: int = 100
    interpolation: Interpolation = "nearest"
    cache_distortion: bool = False
    pose_tol: float = 1e-6
    pose_max_iterations: int = 200


@dataclass(frozen=True)
class QuadDetectorConfig:
    number_of_sides: tuple[int, ...] = (4,)
    clockwise: bool = False
    min_side_px: float = 10.0
    approx_epsilon_fraction: float = 0.04
    refine_corners: bool = True
    corner_window_px: int = 3


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise ConfigValidationError(msg)


def parse_camera_intrinsics(data: dict[str, Any]) -> CameraIntrinsics:
    image = data.get("image", {})
    pinhole = data.get("pinhole", {})
    brown = data.get("distortion", {}) or {}

    w_raw = image.get("width_px")
    h_raw = image.get("height_px")
    _require(w_raw is not None and h_raw is not None, "image.width_px and image.height_px are required")
    w = int(w_raw)
    h = int(h_raw)
    _require(w > 0 and h > 0, "image.width_px and image.height_px must be > 0")

    for key in ("fx", "fy", "cx", "cy"):
        _require(pinhole.get(key) is not None, f"pinhole.{key} is required")
    fx = float(pinhole["fx"])
    fy = float(pinhole["fy"])
    _require(fx > 0.0 and fy > 0.0, "pinhole.fx and pinhole.fy must be > 0")
    cx = float(pinhole["cx"])
    cy = float(pinhole["cy"])
    _require(np.isfinite(cx) and np.isfinite(cy), "pinhole.cx and pinhole.cy must be finite")

    coeffs = {k: float(brown.get(k, 0.0)) for k in ("k1", "k2", "p1", "p2", "k3")}
    _require(all(np.isfinite(v) for v in coeffs.values()), "distortion coefficients must be finite")

    return CameraIntrinsics(width=w, height=h, fx=fx, fy=fy, cx=cx, cy=cy, **coeffs)


def load_camera_intrinsics(path: Path) -> CameraIntrinsics:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return parse_camera_intrinsics(data)


def camera_intrinsics_to_dict(intrinsics: CameraIntrinsics) -> dict[str, Any]:
    return {
        "image": {"width_px": intrinsics.width, "height_px": intrinsics.height},
        "pinhole": {"fx": intrinsics.fx, "fy": intrinsics.fy, "cx": intrinsics.cx, "cy": intrinsics.cy},
        "distortion": {"k1": intrinsics.k1, "k2": intrinsics.k2, "p1": intrinsics.p1, "p2": intrinsics.p2, "k3": intrinsics.k3},
    }


def validate_detector_config(config: DetectorConfig) -> None:
    _require(int(config.square_pixels) >= 8, "square_pixels must be >= 8")
    _require(float(config.refine_tol) > 0.0, "refine_tol must be > 0")
    _require(int(config.refine_max_iterations) >= 1, "refine_max_iterations must be >= 1")
    _require(
        str(config.interpolation) in ("nearest", "linear", "cubic"),
        "interpolation must be nearest|linear|cubic",
    )
    _require(float(config.pose_tol) > 0.0, "pose_tol must be > 0")
    _require(int(config.pose_max_iterations) >= 1, "pose_max_iterations must be >= 1")


def parse_detector_config(data: dict[str, Any]) -> DetectorConfig:
    config = DetectorConfig(
        square_pixels=int(data.get("square_pixels", 100)),
        refine_tol=float(data.get("refine_tol", 1e-4)),
        refine_max_iterations=int(data.get("refine_max_iterations", 100)),
        interpolation=str(data.get("interpolation", "nearest")),  # type: ignore[arg-type]
        cache_distortion=bool(data.get("cache_distortion", False)),
        pose_tol=float(data.get("pose_tol", 1e-6)),
        pose_max_iterations=int(data.get("pose_max_iterations", 200)),
    )
    validate_detector_config(config)
    return config


def validate_quad_detector_config(config: QuadDetectorConfig) -> None:
    """
    Setup-time checks shared by the quadrilateral detector and the pipeline.

    Candidates must be quadrilaterals with counter-clockwise corner order
    (positive signed area with y pointing down).
    """
    sides = tuple(int(s) for s in config.number_of_sides)
    _require(len(sides) >= 1, "number_of_sides must not be empty")
    _require(sides[0] == 4, "quad detector not configured to detect quadrilaterals")
    _require(not config.clockwise, "output polygons need to be counter-clockwise")
    _require(config.min_side_px > 0.0, "min_side_px must be > 0")
    _require(0.0 < config.approx_epsilon_fraction < 0.5, "approx_epsilon_fraction must be in (0, 0.5)")
    _require(config.corner_window_px >= 1, "corner_window_px must be >= 1")
