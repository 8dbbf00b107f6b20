# src/monoinit/system/initializer.py
from __future__ import annotations

import numpy as np

from .config import InitConfig
from .result import Evidence, InitResult, OK
from .telemetry import Telemetry
from ..geom.camera import as_intrinsics
from ..geom.keypoints import gather_points
from ..modules.gms_filter import ConsistencyFn, CorrespondenceFilter
from ..modules.emat import RelativePoseEstimator
from ..modules.triangulate import TriangulationValidator


def _ev(ev: Evidence, valid: bool, reason) -> dict:
    return {
        "valid": bool(valid),
        "reason": str(getattr(reason, "value", reason)),
        "num_input": int(ev.num_input),
        "num_inliers": int(ev.num_inliers),
        "inlier_ratio": float(ev.inlier_ratio),
        "detail": ev.detail,
    }


def initialize(
    keypoints_1,
    size_1,
    keypoints_2,
    size_2,
    correspondences,
    intrinsics,
    cfg: InitConfig,
    *,
    consistency_fn: ConsistencyFn | None = None,
    telemetry: Telemetry | None = None,
    attempt_idx: int = 0,
) -> InitResult:
    """
    One two-view initialization attempt.

    Stages run strictly downstream:
      1) CorrespondenceFilter: raw matches -> consistent matches
      2) RelativePoseEstimator: matches -> (R, unit t) + inlier mask
      3) TriangulationValidator: pose + inliers -> validated 3D points

    Every expected failure comes back as InitResult(valid=False, reason=...);
    the caller discards the pair and tries the next one. Malformed inputs
    raise ValueError.
    """
    if cfg is None:
        raise ValueError("initialize requires an InitConfig")
    intr = as_intrinsics(intrinsics)

    stages: dict = {}

    def _done(res: InitResult) -> InitResult:
        if telemetry is not None:
            telemetry.log_result(attempt_idx, res)
        return res

    # --- 1) Correspondence filtering
    filt = CorrespondenceFilter(cfg, consistency_fn).filter(
        correspondences, keypoints_1, size_1, keypoints_2, size_2
    )
    stages["filter"] = _ev(filt.evidence, filt.valid, filt.reason)
    if not filt.valid:
        return _done(InitResult(valid=False, reason=filt.reason, matches=filt.matches, stages=stages))

    # --- 2) Relative pose
    pts_1, pts_2 = gather_points(filt.matches, keypoints_1, keypoints_2)
    est = RelativePoseEstimator(cfg).estimate_points(pts_1, pts_2, intr)
    stages["pose"] = _ev(est.evidence, est.valid, est.reason)
    if not est.valid:
        return _done(InitResult(
            valid=False, reason=est.reason, matches=filt.matches,
            inlier_mask=est.inlier_mask, stages=stages,
        ))

    # --- 3) Triangulation + acceptance gates
    tri = TriangulationValidator(cfg).validate(pts_1, pts_2, est.pose, intr, est.inlier_mask)
    stages["triangulation"] = _ev(tri.evidence, tri.valid, tri.reason)
    stages["triangulation"]["median_cos"] = None if tri.median_cos is None else float(tri.median_cos)
    if not tri.valid:
        return _done(InitResult(
            valid=False, reason=tri.reason, pose=est.pose, matches=filt.matches,
            inlier_mask=tri.inlier_mask, stages=stages,
        ))

    return _done(InitResult(
        valid=True,
        reason=OK,
        pose=est.pose,
        matches=filt.matches,
        points3d=tri.points3d,
        point_matches=filt.matches[tri.point_idx] if tri.point_idx.size else np.zeros((0, 2), np.int64),
        inlier_mask=tri.inlier_mask,
        stages=stages,
    ))
