# src/monoinit/geom/camera.py
from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class CameraIntrinsics:
    """Pinhole intrinsics shared by both views of one initialization attempt."""

    fx: float
    fy: float
    cx: float
    cy: float

    def __post_init__(self):
        for name in ("fx", "fy", "cx", "cy"):
            v = float(getattr(self, name))
            if not np.isfinite(v):
                raise ValueError(f"CameraIntrinsics.{name} must be finite, got {v}")
        if self.fx <= 0.0 or self.fy <= 0.0:
            raise ValueError(f"Focal lengths must be positive, got fx={self.fx} fy={self.fy}")

    @property
    def K(self) -> np.ndarray:
        return np.array(
            [[self.fx, 0.0, self.cx], [0.0, self.fy, self.cy], [0.0, 0.0, 1.0]],
            dtype=np.float64,
        )

    @classmethod
    def from_matrix(cls, K) -> "CameraIntrinsics":
        if K is None:
            raise ValueError("Intrinsics matrix is None")
        K = np.asarray(K, dtype=np.float64)
        if K.shape != (3, 3):
            raise ValueError(f"Intrinsics matrix must be 3x3, got shape {K.shape}")
        if abs(K[0, 1]) > 1e-9:
            raise ValueError("Intrinsics matrix with non-zero skew is not supported")
        if not np.allclose(K[2], [0.0, 0.0, 1.0]):
            raise ValueError(f"Intrinsics matrix last row must be [0, 0, 1], got {K[2].tolist()}")
        return cls(fx=float(K[0, 0]), fy=float(K[1, 1]), cx=float(K[0, 2]), cy=float(K[1, 2]))

    @classmethod
    def from_dict(cls, d: dict) -> "CameraIntrinsics":
        missing = [k for k in ("fx", "fy", "cx", "cy") if k not in d]
        if missing:
            raise ValueError(f"camera section missing keys: {missing}")
        return cls(fx=float(d["fx"]), fy=float(d["fy"]), cx=float(d["cx"]), cy=float(d["cy"]))


def as_intrinsics(K) -> CameraIntrinsics:
    """Accepts a CameraIntrinsics or a 3x3 matrix."""
    if isinstance(K, CameraIntrinsics):
        return K
    return CameraIntrinsics.from_matrix(K)
