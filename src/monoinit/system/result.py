# src/monoinit/system/result.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from ..geom.se3 import Pose


class FailureReason(str, Enum):
    """Expected, recoverable outcomes: discard the frame pair and try the next one."""

    INSUFFICIENT_CORRESPONDENCES = "INSUFFICIENT_CORRESPONDENCES"
    DEGENERATE_POSE = "DEGENERATE_POSE"
    INSUFFICIENT_VALID_POINTS = "INSUFFICIENT_VALID_POINTS"
    WEAK_PARALLAX = "WEAK_PARALLAX"


OK = "OK"


@dataclass
class Evidence:
    num_input: int = 0
    num_inliers: int = 0
    inlier_ratio: float = 0.0
    detail: str = ""


@dataclass
class FilterResult:
    matches: np.ndarray      # (K,2) surviving index pairs
    mask: np.ndarray         # (M,) bool over the raw set
    evidence: Evidence
    valid: bool = True
    reason: str = OK

    @property
    def num_inliers(self) -> int:
        return int(self.mask.sum())


@dataclass
class PoseEstimate:
    pose: Pose | None
    inlier_mask: np.ndarray  # (K,) bool over the filtered set
    evidence: Evidence
    valid: bool = True
    reason: str = OK
    E: np.ndarray | None = None


@dataclass
class TriangulationResult:
    points3d: np.ndarray             # (N,3) validated points, empty on failure
    point_idx: np.ndarray            # (N,) correspondence index of each validated point
    inlier_mask: np.ndarray          # (K,) bool, narrowed from the pose inlier mask
    cos_parallax: np.ndarray         # (N,) cosine of each surviving point's triangulation angle
    evidence: Evidence
    median_cos: float | None = None
    valid: bool = True
    reason: str = OK

    @property
    def accepted_count(self) -> int:
        """Zero on any failure branch."""
        return int(self.points3d.shape[0]) if self.valid else 0


@dataclass
class InitResult:
    valid: bool
    reason: str
    pose: Pose | None = None
    matches: np.ndarray = field(default_factory=lambda: np.zeros((0, 2), np.int64))
    points3d: np.ndarray = field(default_factory=lambda: np.zeros((0, 3), np.float64))
    point_matches: np.ndarray = field(default_factory=lambda: np.zeros((0, 2), np.int64))
    inlier_mask: np.ndarray = field(default_factory=lambda: np.zeros((0,), bool))
    stages: dict = field(default_factory=dict)

    @property
    def num_points(self) -> int:
        return int(self.points3d.shape[0])
