# src/monoinit/geom/se3.py
from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from .camera import as_intrinsics

ORTHO_TOL = 1e-6
UNIT_TOL = 1e-6


def Rt_to_T(R: np.ndarray, t: np.ndarray) -> np.ndarray:
    T = np.eye(4)
    T[:3, :3] = R
    T[:3, 3] = np.asarray(t).reshape(3)
    return T


def inv_T(T: np.ndarray) -> np.ndarray:
    R = T[:3, :3]; t = T[:3, 3]
    Ti = np.eye(4)
    Ti[:3, :3] = R.T
    Ti[:3, 3] = -R.T @ t
    return Ti


def check_rotation(R: np.ndarray, tol: float = ORTHO_TOL) -> np.ndarray:
    R = np.asarray(R, dtype=np.float64)
    if R.shape != (3, 3):
        raise ValueError(f"Rotation must be 3x3, got shape {R.shape}")
    if not np.allclose(R.T @ R, np.eye(3), atol=tol):
        raise ValueError("Rotation is not orthonormal (R^T R != I)")
    if np.linalg.det(R) < 0.0:
        raise ValueError("Rotation has det(R) = -1 (reflection)")
    return R


def camera_center(R: np.ndarray, t: np.ndarray) -> np.ndarray:
    """Optical center of a camera x_cam = R X + t, in world coordinates: -R^T t."""
    return -np.asarray(R, dtype=np.float64).T @ np.asarray(t, dtype=np.float64).reshape(3)


@dataclass(frozen=True, eq=False)
class Pose:
    """
    Relative pose of camera 2 w.r.t. camera 1 (x2 = R x1 + t).

    The translation is a direction only: two monocular views cannot observe
    scale, so t is kept at unit norm.
    """

    R: np.ndarray
    t: np.ndarray

    def __post_init__(self):
        R = check_rotation(self.R)
        t = np.asarray(self.t, dtype=np.float64).reshape(-1)
        if t.shape != (3,):
            raise ValueError(f"Translation must have 3 elements, got {t.shape[0]}")
        n = float(np.linalg.norm(t))
        if abs(n - 1.0) > UNIT_TOL:
            raise ValueError(f"Translation must be unit norm, got |t|={n:.6g}")
        R = R.copy(); R.setflags(write=False)
        t = t.copy(); t.setflags(write=False)
        object.__setattr__(self, "R", R)
        object.__setattr__(self, "t", t)

    @property
    def T_cur_prev(self) -> np.ndarray:
        return Rt_to_T(self.R, self.t)

    @property
    def center(self) -> np.ndarray:
        return camera_center(self.R, self.t)


def world2pixel(X, R, t, K) -> np.ndarray:
    """
    Pinhole projection of world point(s) X through camera (R, t, K).

    Returns (2,) for a single point or (N,2) for (N,3) input. Meaningless for
    points with z <= 0 in the camera frame.
    """
    intr = as_intrinsics(K)
    X = np.asarray(X, dtype=np.float64)
    single = X.ndim == 1
    X = X.reshape(-1, 3)
    p_cam = (np.asarray(R, dtype=np.float64) @ X.T).T + np.asarray(t, dtype=np.float64).reshape(1, 3)
    u = intr.fx * p_cam[:, 0] / p_cam[:, 2] + intr.cx
    v = intr.fy * p_cam[:, 1] / p_cam[:, 2] + intr.cy
    uv = np.stack([u, v], axis=1)
    return uv[0] if single else uv


def pixel2world(uv, depth, R, t, K) -> np.ndarray:
    """Inverse of world2pixel for a known camera-frame depth z."""
    intr = as_intrinsics(K)
    uv = np.asarray(uv, dtype=np.float64)
    single = uv.ndim == 1
    uv = uv.reshape(-1, 2)
    z = np.broadcast_to(np.asarray(depth, dtype=np.float64), (uv.shape[0],))
    p_cam = np.stack(
        [(uv[:, 0] - intr.cx) / intr.fx * z, (uv[:, 1] - intr.cy) / intr.fy * z, z],
        axis=1,
    )
    R = np.asarray(R, dtype=np.float64)
    t = np.asarray(t, dtype=np.float64).reshape(1, 3)
    X = (R.T @ (p_cam - t).T).T
    return X[0] if single else X

