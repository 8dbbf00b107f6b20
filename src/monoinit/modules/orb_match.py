# src/monoinit/modules/orb_match.py
from __future__ import annotations

import cv2
import numpy as np

from ..geom.keypoints import matches_from_dmatches
from ..system.config import OrbConfig


def orb_match(
    img0_gray_u8: np.ndarray,
    img1_gray_u8: np.ndarray,
    cfg: OrbConfig | None = None,
) -> tuple[list[cv2.KeyPoint], list[cv2.KeyPoint], np.ndarray, dict]:
    """
    ORB detection and brute-force Hamming matching between two grayscale images.

    This is the raw candidate set that CorrespondenceFilter refines; with
    cross_check the matches are one-to-one.

    Returns:
        kp0, kp1: cv2.KeyPoint lists
        matches: (M,2) int64 index pairs (idx into kp0, idx into kp1), sorted by descriptor distance
        info: dict with num_kp0, num_kp1, num_raw
    """
    cfg = cfg or OrbConfig()
    if img0_gray_u8 is None or img1_gray_u8 is None:
        raise ValueError("Input images are None")
    if img0_gray_u8.ndim != 2 or img1_gray_u8.ndim != 2:
        raise ValueError("orb_match expects grayscale images (H,W).")

    orb = cv2.ORB_create(nfeatures=cfg.nfeatures)
    kp0, des0 = orb.detectAndCompute(img0_gray_u8, None)
    kp1, des1 = orb.detectAndCompute(img1_gray_u8, None)
    kp0 = list(kp0 or [])
    kp1 = list(kp1 or [])

    info = {"num_kp0": len(kp0), "num_kp1": len(kp1), "num_raw": 0}
    if des0 is None or des1 is None or len(des0) == 0 or len(des1) == 0:
        return kp0, kp1, np.zeros((0, 2), np.int64), info

    bf = cv2.BFMatcher(cv2.NORM_HAMMING, crossCheck=cfg.cross_check)
    dm = sorted(bf.match(des0, des1), key=lambda m: m.distance)
    if cfg.max_matches is not None and len(dm) > cfg.max_matches:
        dm = dm[: cfg.max_matches]

    info["num_raw"] = len(dm)
    return kp0, kp1, matches_from_dmatches(dm), info
