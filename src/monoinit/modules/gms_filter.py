# src/monoinit/modules/gms_filter.py
from __future__ import annotations

import logging
from typing import Callable

import cv2
import numpy as np

from ..geom.keypoints import (
    as_cv_keypoints,
    as_matches,
    as_points,
    check_indices,
    check_size,
    dmatches_from_matches,
)
from ..system.config import GmsConfig, InitConfig
from ..system.result import Evidence, FailureReason, FilterResult

logger = logging.getLogger(__name__)

# (keypoints_1, size_1, keypoints_2, size_2, matches) -> (mask, num_inliers)
ConsistencyFn = Callable[..., tuple[np.ndarray, int]]


def gms_consistency(
    keypoints_1,
    size_1: tuple[int, int],
    keypoints_2,
    size_2: tuple[int, int],
    matches: np.ndarray,
    *,
    with_rotation: bool = False,
    with_scale: bool = False,
    threshold_factor: float = 6.0,
) -> tuple[np.ndarray, int]:
    """
    Grid-based motion statistics (GMS) over a raw match set.

    Args:
        keypoints_1, keypoints_2: cv2.KeyPoint lists or (N,2) pixel arrays.
        size_1, size_2: (width, height) of each image; only the grid layout uses them.
        matches: (M,2) index pairs.

    Returns:
        mask: (M,) bool, True where GMS keeps the match.
        num_inliers: mask.sum()
    """
    m = as_matches(matches)
    if m.shape[0] == 0:
        return np.zeros((0,), bool), 0

    # matchGMS lives in the contrib build
    kept = cv2.xfeatures2d.matchGMS(
        tuple(size_1),
        tuple(size_2),
        as_cv_keypoints(keypoints_1),
        as_cv_keypoints(keypoints_2),
        dmatches_from_matches(m),
        withRotation=with_rotation,
        withScale=with_scale,
        thresholdFactor=threshold_factor,
    )

    keep = {(d.queryIdx, d.trainIdx) for d in kept}
    mask = np.array([(int(i), int(j)) in keep for i, j in m], dtype=bool)
    return mask, int(mask.sum())


class CorrespondenceFilter:
    """
    Adapter boundary to an external correspondence-consistency filter.

    Any callable with the gms_consistency signature can be plugged in.
    """

    def __init__(self, cfg: InitConfig, consistency_fn: ConsistencyFn | None = None):
        self.cfg = cfg
        if consistency_fn is None:
            gms: GmsConfig = cfg.gms

            def consistency_fn(k1, s1, k2, s2, m):
                return gms_consistency(
                    k1, s1, k2, s2, m,
                    with_rotation=gms.with_rotation,
                    with_scale=gms.with_scale,
                    threshold_factor=gms.threshold_factor,
                )
        self.consistency_fn = consistency_fn

    def filter(self, correspondences, keypoints_1, size_1, keypoints_2, size_2) -> FilterResult:
        m = as_matches(correspondences)
        n1 = as_points(keypoints_1).shape[0]
        n2 = as_points(keypoints_2).shape[0]
        check_indices(m, n1, n2)
        size_1 = check_size(size_1, "size_1")
        size_2 = check_size(size_2, "size_2")

        ev = Evidence(num_input=int(m.shape[0]))
        if m.shape[0] == 0:
            return FilterResult(
                m, np.zeros((0,), bool), ev, valid=False,
                reason=FailureReason.INSUFFICIENT_CORRESPONDENCES,
            )

        mask, num_inliers = self.consistency_fn(keypoints_1, size_1, keypoints_2, size_2, m)
        mask = np.asarray(mask).reshape(-1).astype(bool)
        if mask.shape[0] != m.shape[0]:
            raise ValueError(
                f"Consistency filter returned a mask of length {mask.shape[0]} for {m.shape[0]} correspondences"
            )
        if int(num_inliers) != int(mask.sum()):
            raise ValueError(
                f"Consistency filter reported {int(num_inliers)} inliers but its mask has {int(mask.sum())}"
            )

        ev.num_inliers = int(mask.sum())
        ev.inlier_ratio = float(ev.num_inliers) / float(m.shape[0])
        logger.info("Refined matches (after consistency filter): %d/%d", ev.num_inliers, m.shape[0])

        filtered = m[mask]
        if filtered.shape[0] < self.cfg.min_correspondences:
            ev.detail = f"{filtered.shape[0]} < min_correspondences={self.cfg.min_correspondences}"
            return FilterResult(
                filtered, mask, ev, valid=False,
                reason=FailureReason.INSUFFICIENT_CORRESPONDENCES,
            )
        return FilterResult(filtered, mask, ev)
