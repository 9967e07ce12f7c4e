"""
Homography estimation between the canonical square and a candidate quadrilateral.

`estimate_homography` is a normalized DLT (Hartley conditioning, SVD null space).
`refine_homography` polishes it with Levenberg-Marquardt on the Sampson error,
the first-order geometric error of the DLT constraints.

Both return `None` instead of raising when the data are degenerate, so callers
can drop a candidate and carry on.
"""
from __future__ import annotations

import logging

import numpy as np
from scipy.optimize import least_squares

LOGGER = logging.getLogger(__name__)


def _as_points(pts: np.ndarray, name: str) -> np.ndarray:
    pts = np.asarray(pts, dtype=np.float64)
    if pts.ndim != 2 or pts.shape[1] != 2:
        raise ValueError(f"{name} must be (N,2)")
    return pts


def _normalize(pts: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    m = np.mean(pts, axis=0)
    d = np.sqrt(np.sum((pts - m[None, :]) ** 2, axis=1))
    s = float(np.sqrt(2.0) / (np.mean(d) + 1e-12))
    T = np.array([[s, 0.0, -s * m[0]], [0.0, s, -s * m[1]], [0.0, 0.0, 1.0]], dtype=np.float64)
    ph = np.concatenate([pts, np.ones((pts.shape[0], 1), dtype=np.float64)], axis=1)
    pn = (T @ ph.T).T[:, :2]
    return pn, T


def has_collinear_triplet(pts: np.ndarray, rel_tol: float = 1e-6) -> bool:
    """True if any three of the points are (nearly) collinear, relative to the point spread."""
    pts = _as_points(pts, "pts")
    diff = pts[:, None, :] - pts[None, :, :]
    span2 = float(np.max(np.sum(diff * diff, axis=-1)))
    if span2 <= 0.0:
        return True
    n = pts.shape[0]
    for i in range(n):
        for j in range(i + 1, n):
            for k in range(j + 1, n):
                a = pts[j] - pts[i]
                b = pts[k] - pts[i]
                if abs(float(a[0] * b[1] - a[1] * b[0])) <= rel_tol * span2:
                    return True
    return False


def normalize_homography(H: np.ndarray) -> np.ndarray:
    """Unit Frobenius norm, sign chosen so that H[2,2] >= 0."""
    H = np.asarray(H, dtype=np.float64).reshape(3, 3)
    H = H / np.linalg.norm(H)
    if H[2, 2] < 0.0:
        H = -H
    return H


def apply_homography(H: np.ndarray, pts: np.ndarray) -> np.ndarray:
    pts = _as_points(pts, "pts")
    H = np.asarray(H, dtype=np.float64).reshape(3, 3)
    ph = np.concatenate([pts, np.ones((pts.shape[0], 1), dtype=np.float64)], axis=1)
    q = (H @ ph.T).T
    return q[:, :2] / q[:, 2:3]


def estimate_homography(src_xy: np.ndarray, dst_uv: np.ndarray, *, rel_tol: float = 1e-6) -> np.ndarray | None:
    """
    Linear estimate of H with dst ~ H @ src from N >= 4 correspondences.

    Returns None when the system is degenerate (collinear corners or a
    rank-deficient design matrix).
    """
    src_xy = _as_points(src_xy, "src_xy")
    dst_uv = _as_points(dst_uv, "dst_uv")
    if src_xy.shape[0] != dst_uv.shape[0]:
        raise ValueError("src_xy and dst_uv must have same length")
    if src_xy.shape[0] < 4:
        raise ValueError("need >= 4 correspondences")
    if not (np.all(np.isfinite(src_xy)) and np.all(np.isfinite(dst_uv))):
        return None
    if has_collinear_triplet(src_xy, rel_tol) or has_collinear_triplet(dst_uv, rel_tol):
        return None

    Xn, T1 = _normalize(src_xy)
    Un, T2 = _normalize(dst_uv)

    A = np.zeros((2 * Xn.shape[0], 9), dtype=np.float64)
    for j, ((x, y), (u, v)) in enumerate(zip(Xn.tolist(), Un.tolist(), strict=True)):
        A[2 * j + 0] = [-x, -y, -1.0, 0.0, 0.0, 0.0, u * x, u * y, u]
        A[2 * j + 1] = [0.0, 0.0, 0.0, -x, -y, -1.0, v * x, v * y, v]

    # full_matrices=True: with exactly 4 points A is 8x9 and the null vector is the 9th row of vt.
    _u, s, vt = np.linalg.svd(A, full_matrices=True)
    if s[7] <= rel_tol * s[0]:
        return None
    Hn = vt[-1].reshape(3, 3)
    H = np.linalg.inv(T2) @ Hn @ T1
    if not np.all(np.isfinite(H)):
        return None
    H = normalize_homography(H)
    if not _maps_to_finite_side(H, src_xy):
        return None
    return H


def _maps_to_finite_side(H: np.ndarray, src_xy: np.ndarray) -> bool:
    """All source points must map in front of the line at infinity, on one side of it."""
    w = H[2, 0] * src_xy[:, 0] + H[2, 1] * src_xy[:, 1] + H[2, 2]
    scale = float(np.max(np.abs(w)))
    if not np.isfinite(scale) or scale <= 0.0:
        return False
    return bool(np.all(w > 1e-9 * scale) or np.all(w < -1e-9 * scale))


def sampson_residuals(H: np.ndarray, src_xy: np.ndarray, dst_uv: np.ndarray) -> np.ndarray:
    """
    Whitened algebraic residuals, two per correspondence.

    For each pair the squared norm of its two entries equals the Sampson error
    e^T (J J^T)^-1 e, with J the Jacobian of the DLT constraints with respect to
    (x, y, u, v).
    """
    H = np.asarray(H, dtype=np.float64).reshape(3, 3)
    x = src_xy[:, 0]
    y = src_xy[:, 1]
    u = dst_uv[:, 0]
    v = dst_uv[:, 1]

    w = H[2, 0] * x + H[2, 1] * y + H[2, 2]
    e1 = u * w - (H[0, 0] * x + H[0, 1] * y + H[0, 2])
    e2 = v * w - (H[1, 0] * x + H[1, 1] * y + H[1, 2])

    j1x = u * H[2, 0] - H[0, 0]
    j1y = u * H[2, 1] - H[0, 1]
    j2x = v * H[2, 0] - H[1, 0]
    j2y = v * H[2, 1] - H[1, 1]

    s00 = j1x * j1x + j1y * j1y + w * w
    s01 = j1x * j2x + j1y * j2y
    s11 = j2x * j2x + j2y * j2y + w * w

    # 2x2 Cholesky of J J^T.
    a = np.sqrt(np.maximum(s00, 1e-300))
    b = s01 / a
    c = np.sqrt(np.maximum(s11 - b * b, 1e-300))
    r1 = e1 / a
    r2 = (e2 - b * r1) / c
    return np.stack([r1, r2], axis=1).reshape(-1)


def refine_homography(
    H0: np.ndarray,
    src_xy: np.ndarray,
    dst_uv: np.ndarray,
    *,
    tol: float = 1e-4,
    max_iterations: int = 100,
) -> np.ndarray | None:
    """
    Levenberg-Marquardt refinement of H0 minimizing the Sampson error.

    The largest-magnitude entry of H0 is held fixed to remove the scale
    ambiguity, leaving 8 free parameters. Runs until the tolerance is met or the
    iteration cap is hit; returns None if the optimizer fails or the result is
    worse than the starting point.
    """
    src_xy = _as_points(src_xy, "src_xy")
    dst_uv = _as_points(dst_uv, "dst_uv")
    H0 = normalize_homography(H0)

    h0 = H0.reshape(-1)
    k = int(np.argmax(np.abs(h0)))
    h0 = h0 / h0[k]
    free = np.array([i for i in range(9) if i != k], dtype=np.int64)

    def unpack(p: np.ndarray) -> np.ndarray:
        h = np.empty((9,), dtype=np.float64)
        h[k] = 1.0
        h[free] = p
        return h.reshape(3, 3)

    def fun(p: np.ndarray) -> np.ndarray:
        return sampson_residuals(unpack(p), src_xy, dst_uv)

    p0 = h0[free].copy()
    r0 = fun(p0)
    if not np.all(np.isfinite(r0)):
        return None
    cost0 = 0.5 * float(np.dot(r0, r0))

    n = p0.size
    method = "lm" if r0.size >= n else "trf"
    try:
        sol = least_squares(
            fun,
            p0,
            method=method,
            xtol=float(tol),
            ftol=float(tol),
            max_nfev=int(max_iterations) * (n + 1),
        )
    except (ValueError, np.linalg.LinAlgError) as e:
        LOGGER.debug("homography refinement failed: %s", e)
        return None

    if sol.status < 0 or not np.all(np.isfinite(sol.x)) or not np.isfinite(sol.cost):
        return None
    if float(sol.cost) > cost0 * (1.0 + 1e-9) + 1e-18:
        return None

    H = normalize_homography(unpack(sol.x))
    if not _maps_to_finite_side(H, src_xy):
        return None
    return H
