# src/monoinit/modules/emat.py
from __future__ import annotations

import logging
from enum import Enum

import cv2
import numpy as np

from ..geom.camera import CameraIntrinsics, as_intrinsics
from ..geom.keypoints import gather_points
from ..geom.se3 import Pose
from ..system.config import InitConfig
from ..system.result import Evidence, FailureReason, PoseEstimate

logger = logging.getLogger(__name__)


class PoseCandidate(Enum):
    """The four (R, t) factorizations of an essential matrix: (rotation index, sign of t)."""

    R1_PLUS_T = (0, 1.0)
    R1_MINUS_T = (0, -1.0)
    R2_PLUS_T = (1, 1.0)
    R2_MINUS_T = (1, -1.0)

    def compose(self, R1: np.ndarray, R2: np.ndarray, t: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        r_idx, sign = self.value
        return (R1, R2)[r_idx], sign * t.reshape(3)


def projection_matrices(K: np.ndarray, R: np.ndarray, t: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """K[I|0] for camera 1 and K[R|t] for camera 2."""
    P1 = K @ np.hstack([np.eye(3), np.zeros((3, 1))])
    P2 = K @ np.hstack([R, np.asarray(t, dtype=np.float64).reshape(3, 1)])
    return P1, P2


def triangulate(P1: np.ndarray, P2: np.ndarray, p1: np.ndarray, p2: np.ndarray) -> np.ndarray:
    """(N,3) Euclidean points; rows at infinity come back non-finite."""
    if p1.shape[0] == 0:
        return np.zeros((0, 3), np.float64)
    # cv2.triangulatePoints expects 2xN
    X_h = cv2.triangulatePoints(P1, P2, p1.T.astype(np.float64), p2.T.astype(np.float64))
    with np.errstate(divide="ignore", invalid="ignore"):
        X = (X_h[:3, :] / X_h[3:4, :]).T
    return X


def cheirality_mask(R: np.ndarray, t: np.ndarray, p1: np.ndarray, p2: np.ndarray, K: np.ndarray) -> np.ndarray:
    """True where the triangulated point lies in front of both cameras."""
    P1, P2 = projection_matrices(K, R, t)
    X = triangulate(P1, P2, p1, p2)
    finite = np.all(np.isfinite(X), axis=1)
    X = np.where(finite[:, None], X, 0.0)
    z1 = X[:, 2]
    z2 = (X @ R.T + t.reshape(1, 3))[:, 2]
    return finite & (z1 > 0.0) & (z2 > 0.0)


def select_candidate(
    E: np.ndarray, p1: np.ndarray, p2: np.ndarray, K: np.ndarray, voters: np.ndarray
) -> tuple[PoseCandidate | None, dict[PoseCandidate, np.ndarray], tuple[np.ndarray, np.ndarray, np.ndarray]]:
    """
    Score every factorization of E by how many voters triangulate in front of
    both cameras. Returns (winner or None when there is no unique winner, per
    candidate masks, (R1, R2, t)).
    """
    R1, R2, t = cv2.decomposeEssentialMat(E)
    masks = {}
    for cand in PoseCandidate:
        R, tc = cand.compose(R1, R2, t)
        masks[cand] = voters & cheirality_mask(R, tc, p1, p2, K)

    ranked = sorted(PoseCandidate, key=lambda c: int(masks[c].sum()), reverse=True)
    best, second = ranked[0], ranked[1]
    n_best, n_second = int(masks[best].sum()), int(masks[second].sum())
    logger.debug("Cheirality votes: %s", {c.name: int(masks[c].sum()) for c in PoseCandidate})
    if n_best == 0 or n_best == n_second:
        return None, masks, (R1, R2, t)
    return best, masks, (R1, R2, t)


MIN_DISPARITY_RATIO = 0.5


def median_disparity(p1: np.ndarray, p2: np.ndarray, mask: np.ndarray) -> float:
    """Median pixel displacement over the masked correspondences."""
    if not mask.any():
        return 0.0
    return float(np.median(np.linalg.norm(p2[mask] - p1[mask], axis=1)))


def is_essential(E: np.ndarray, tol: float = 0.1) -> bool:
    """Rank 2 with two equal non-zero singular values, within tol (relative)."""
    if E is None or E.shape != (3, 3) or not np.all(np.isfinite(E)):
        return False
    s = np.linalg.svd(E, compute_uv=False)
    if s[0] < 1e-12:
        return False
    return (s[0] - s[1]) / s[0] <= tol and s[2] / s[0] <= tol


class RelativePoseEstimator:
    """
    Relative pose (monocular, up-to-scale) from an essential matrix.

    RANSAC uses cfg.ransac_prob and cfg.max_reproject_error (px). The four
    factorizations of E are disambiguated by cheirality over the RANSAC inliers.
    """

    def __init__(self, cfg: InitConfig):
        self.cfg = cfg

    def estimate(self, correspondences, keypoints_1, keypoints_2, intrinsics) -> PoseEstimate:
        p1, p2 = gather_points(correspondences, keypoints_1, keypoints_2)
        return self.estimate_points(p1, p2, intrinsics)

    def estimate_points(self, pts_1: np.ndarray, pts_2: np.ndarray, intrinsics: CameraIntrinsics | np.ndarray) -> PoseEstimate:
        K = as_intrinsics(intrinsics).K
        p1 = np.asarray(pts_1, dtype=np.float64)
        p2 = np.asarray(pts_2, dtype=np.float64)
        if p1.ndim != 2 or p1.shape[1] != 2 or p2.ndim != 2 or p2.shape[1] != 2:
            raise ValueError(f"Point arrays must have shape (N,2), got {p1.shape} and {p2.shape}")
        if p1.shape[0] != p2.shape[0]:
            raise ValueError(f"Point arrays differ in length: {p1.shape[0]} vs {p2.shape[0]}")

        n = p1.shape[0]
        ev = Evidence(num_input=n)
        empty = np.zeros((n,), bool)
        min_n = self.cfg.min_correspondences

        if n < min_n:
            ev.detail = f"{n} < min_correspondences={min_n}"
            return PoseEstimate(None, empty, ev, valid=False, reason=FailureReason.INSUFFICIENT_CORRESPONDENCES)

        try:
            # findEssentialMat expects points in pixels when K is provided.
            E, mask = cv2.findEssentialMat(
                p1,
                p2,
                cameraMatrix=K,
                method=cv2.RANSAC,
                prob=self.cfg.ransac_prob,
                threshold=self.cfg.max_reproject_error,
            )
        except cv2.error as ex:
            ev.detail = f"findEssentialMat: {ex}"
            return PoseEstimate(None, empty, ev, valid=False, reason=FailureReason.DEGENERATE_POSE)

        if E is None or mask is None:
            ev.detail = "findEssentialMat returned no model"
            return PoseEstimate(None, empty, ev, valid=False, reason=FailureReason.DEGENERATE_POSE)

        # E could be a stack of 3x3 solutions; take the first block.
        if E.shape[0] > 3 or E.shape[1] > 3:
            E = E[:3, :3]

        ransac_mask = mask.reshape(-1).astype(bool)
        ev.num_inliers = int(ransac_mask.sum())
        ev.inlier_ratio = float(ev.num_inliers) / float(n)

        if ev.num_inliers < min_n:
            ev.detail = f"RANSAC inliers {ev.num_inliers} < {min_n}"
            return PoseEstimate(None, ransac_mask, ev, valid=False, reason=FailureReason.DEGENERATE_POSE, E=E)
        if not is_essential(E):
            ev.detail = "estimated matrix is not a valid essential matrix"
            return PoseEstimate(None, ransac_mask, ev, valid=False, reason=FailureReason.DEGENERATE_POSE, E=E)

        # without motion every factorization of E fits the data
        disparity = median_disparity(p1, p2, ransac_mask)
        if disparity < MIN_DISPARITY_RATIO * self.cfg.max_reproject_error:
            ev.detail = f"median disparity {disparity:.3f} px, no measurable motion"
            return PoseEstimate(None, ransac_mask, ev, valid=False, reason=FailureReason.DEGENERATE_POSE, E=E)

        try:
            best, masks, (R1, R2, t) = select_candidate(E, p1, p2, K, ransac_mask)
        except cv2.error as ex:
            ev.detail = f"decomposeEssentialMat: {ex}"
            return PoseEstimate(None, ransac_mask, ev, valid=False, reason=FailureReason.DEGENERATE_POSE, E=E)

        if best is None:
            ev.detail = "no unique factorization with points in front of both cameras"
            return PoseEstimate(None, ransac_mask, ev, valid=False, reason=FailureReason.DEGENERATE_POSE, E=E)

        inlier_mask = masks[best]
        ev.num_inliers = int(inlier_mask.sum())
        ev.inlier_ratio = float(ev.num_inliers) / float(n)
        if ev.num_inliers < min_n:
            ev.detail = f"cheirality inliers {ev.num_inliers} < {min_n}"
            return PoseEstimate(None, inlier_mask, ev, valid=False, reason=FailureReason.DEGENERATE_POSE, E=E)

        R, t = best.compose(R1, R2, t)
        pose = Pose(R, t / np.linalg.norm(t))
        ev.detail = best.name
        logger.info("Relative pose: %s, inliers %d/%d", best.name, ev.num_inliers, n)
        return PoseEstimate(pose, inlier_mask, ev, E=E)
