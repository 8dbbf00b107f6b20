# src/monoinit/modules/triangulate.py
from __future__ import annotations

import logging

import cv2
import numpy as np

from ..geom.camera import CameraIntrinsics, as_intrinsics
from ..geom.se3 import Pose
from ..system.config import InitConfig
from ..system.result import Evidence, FailureReason, TriangulationResult
from .emat import projection_matrices, triangulate

logger = logging.getLogger(__name__)


def reprojection_errors(X: np.ndarray, R: np.ndarray, t: np.ndarray, K: np.ndarray, pts: np.ndarray) -> np.ndarray:
    """Pixel distance between pts and the projection of X through camera (R, t, K)."""
    if X.shape[0] == 0:
        return np.zeros((0,), np.float64)
    rvec, _ = cv2.Rodrigues(np.asarray(R, dtype=np.float64))
    tvec = np.asarray(t, dtype=np.float64).reshape(3, 1)
    proj, _ = cv2.projectPoints(X.reshape(-1, 1, 3), rvec, tvec, K, None)
    return np.linalg.norm(proj.reshape(-1, 2) - pts, axis=1)


def parallax_cosines(X: np.ndarray, O1: np.ndarray, O2: np.ndarray) -> np.ndarray:
    """cos of the angle at each X between the rays from O1 and from O2."""
    v1 = X - O1.reshape(1, 3)
    v2 = X - O2.reshape(1, 3)
    d1 = np.linalg.norm(v1, axis=1)
    d2 = np.linalg.norm(v2, axis=1)
    return np.sum(v1 * v2, axis=1) / (d1 * d2)


class TriangulationValidator:
    """
    Triangulates the pose inliers and decides whether the pair initializes.

    Per point, in order: positive depth in camera 1, reprojection error below
    cfg.max_reproject_error in both views, parallax angle above
    cfg.min_triangle_angle. Then over the survivors: at least
    cfg.min_init_3dpoint_num points and a median angle above
    cfg.median_triangle_angle. A point demoted at any gate is never promoted back.
    """

    def __init__(self, cfg: InitConfig):
        self.cfg = cfg

    def validate(
        self,
        points_1: np.ndarray,
        points_2: np.ndarray,
        pose: Pose,
        intrinsics: CameraIntrinsics | np.ndarray,
        inlier_mask: np.ndarray,
    ) -> TriangulationResult:
        if pose is None:
            raise ValueError("validate requires a pose; a degenerate pose estimate must not be triangulated")
        K = as_intrinsics(intrinsics).K
        p1 = np.asarray(points_1, dtype=np.float64)
        p2 = np.asarray(points_2, dtype=np.float64)
        if p1.ndim != 2 or p1.shape[1] != 2 or p2.ndim != 2 or p2.shape[1] != 2:
            raise ValueError(f"Point arrays must have shape (N,2), got {p1.shape} and {p2.shape}")
        if p1.shape[0] != p2.shape[0]:
            raise ValueError(f"Point arrays differ in length: {p1.shape[0]} vs {p2.shape[0]}")
        mask_in = np.asarray(inlier_mask).reshape(-1).astype(bool)
        if mask_in.shape[0] != p1.shape[0]:
            raise ValueError(f"Inlier mask has length {mask_in.shape[0]} for {p1.shape[0]} correspondences")

        mask = mask_in.copy()
        idx = np.nonzero(mask)[0]
        ev = Evidence(num_input=int(idx.shape[0]))

        R, t = pose.R, pose.t
        P1, P2 = projection_matrices(K, R, t)
        X = triangulate(P1, P2, p1[idx], p2[idx])

        # depth > 0 in camera 1; rows at infinity fail here too
        finite = np.all(np.isfinite(X), axis=1)
        ok = finite.copy()
        ok[finite] = X[finite, 2] > 0.0
        n_depth = int(ok.sum())

        # reprojection into both views
        e1 = np.full(idx.shape[0], np.inf)
        e2 = np.full(idx.shape[0], np.inf)
        e1[ok] = reprojection_errors(X[ok], np.eye(3), np.zeros(3), K, p1[idx][ok])
        e2[ok] = reprojection_errors(X[ok], R, t, K, p2[idx][ok])
        thr = self.cfg.max_reproject_error
        ok &= (e1 <= thr) & (e2 <= thr)
        n_reproj = int(ok.sum())
        logger.info("Valid 3D points after reprojection check: %d / %d", n_reproj, idx.shape[0])

        # parallax
        O1 = np.zeros(3)
        O2 = pose.center
        cos_all = np.full(idx.shape[0], np.nan)
        cos_all[ok] = parallax_cosines(X[ok], O1, O2)
        min_cos = np.cos(np.deg2rad(self.cfg.min_triangle_angle))
        ok[ok] = cos_all[ok] <= min_cos
        n_parallax = int(ok.sum())
        logger.info("Valid 3D points after angle check: %d / %d", n_parallax, idx.shape[0])

        mask[idx[~ok]] = False
        keep = idx[ok]
        cosines = cos_all[ok]
        ev.num_inliers = n_parallax
        ev.inlier_ratio = float(n_parallax) / float(max(idx.shape[0], 1))
        ev.detail = f"depth={n_depth} reproj={n_reproj} parallax={n_parallax}"

        def _fail(reason: FailureReason, median_cos: float | None = None) -> TriangulationResult:
            return TriangulationResult(
                points3d=np.zeros((0, 3), np.float64),
                point_idx=np.zeros((0,), np.int64),
                inlier_mask=mask,
                cos_parallax=cosines,
                evidence=ev,
                median_cos=median_cos,
                valid=False,
                reason=reason,
            )

        if n_parallax < self.cfg.min_init_3dpoint_num:
            logger.info("Initialization rejected: %d points < min_init_3dpoint_num=%d",
                        n_parallax, self.cfg.min_init_3dpoint_num)
            return _fail(FailureReason.INSUFFICIENT_VALID_POINTS)

        # smaller cosine = larger angle
        median_cos = float(np.sort(cosines)[n_parallax // 2])
        median_thresh = np.cos(np.deg2rad(self.cfg.median_triangle_angle))
        if median_cos > median_thresh:
            logger.info("Initialization rejected: median parallax %.3f deg < %.3f deg",
                        np.rad2deg(np.arccos(np.clip(median_cos, -1.0, 1.0))), self.cfg.median_triangle_angle)
            return _fail(FailureReason.WEAK_PARALLAX, median_cos)

        return TriangulationResult(
            points3d=X[ok],
            point_idx=keep.astype(np.int64),
            inlier_mask=mask,
            cos_parallax=cosines,
            evidence=ev,
            median_cos=median_cos,
        )
