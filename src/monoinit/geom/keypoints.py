# src/monoinit/geom/keypoints.py
from __future__ import annotations

from typing import Sequence

import cv2
import numpy as np


def as_points(keypoints) -> np.ndarray:
    """
    Pixel locations of a keypoint set as an (N,2) float64 array.

    Accepts a list of cv2.KeyPoint or anything array-like of shape (N,2).
    """
    if keypoints is None:
        raise ValueError("Keypoint set is None")
    if isinstance(keypoints, (list, tuple)) and len(keypoints) > 0 and isinstance(keypoints[0], cv2.KeyPoint):
        return np.array([kp.pt for kp in keypoints], dtype=np.float64).reshape(-1, 2)
    pts = np.asarray(keypoints, dtype=np.float64)
    if pts.size == 0:
        return np.zeros((0, 2), np.float64)
    if pts.ndim != 2 or pts.shape[1] != 2:
        raise ValueError(f"Keypoints must have shape (N,2), got {pts.shape}")
    if not np.all(np.isfinite(pts)):
        raise ValueError("Keypoints contain non-finite coordinates")
    return pts


def as_cv_keypoints(keypoints, size: float = 1.0) -> list[cv2.KeyPoint]:
    if isinstance(keypoints, (list, tuple)) and len(keypoints) > 0 and isinstance(keypoints[0], cv2.KeyPoint):
        return list(keypoints)
    pts = as_points(keypoints)
    return [cv2.KeyPoint(float(x), float(y), float(size)) for x, y in pts]


def as_matches(correspondences) -> np.ndarray:
    """Correspondences as an (M,2) int array of (idx_1, idx_2) pairs."""
    if correspondences is None:
        raise ValueError("Correspondence set is None")
    if isinstance(correspondences, (list, tuple)) and len(correspondences) > 0 and isinstance(correspondences[0], cv2.DMatch):
        return matches_from_dmatches(correspondences)
    m = np.asarray(correspondences)
    if m.size == 0:
        return np.zeros((0, 2), np.int64)
    if m.ndim != 2 or m.shape[1] != 2:
        raise ValueError(f"Correspondences must have shape (M,2), got {m.shape}")
    if not np.issubdtype(m.dtype, np.integer):
        if not np.all(np.equal(np.mod(m, 1), 0)):
            raise ValueError("Correspondence indices must be integers")
    return m.astype(np.int64)


def matches_from_dmatches(dmatches: Sequence[cv2.DMatch]) -> np.ndarray:
    if len(dmatches) == 0:
        return np.zeros((0, 2), np.int64)
    return np.array([(m.queryIdx, m.trainIdx) for m in dmatches], dtype=np.int64)


def dmatches_from_matches(matches: np.ndarray) -> list[cv2.DMatch]:
    return [cv2.DMatch(int(i), int(j), 0.0) for i, j in matches]


def check_indices(matches: np.ndarray, n1: int, n2: int) -> None:
    if matches.shape[0] == 0:
        return
    if matches.min() < 0:
        raise ValueError("Correspondence indices must be non-negative")
    if matches[:, 0].max() >= n1:
        raise ValueError(f"Correspondence index {int(matches[:, 0].max())} out of range for {n1} keypoints in image 1")
    if matches[:, 1].max() >= n2:
        raise ValueError(f"Correspondence index {int(matches[:, 1].max())} out of range for {n2} keypoints in image 2")


def gather_points(matches, keypoints_1, keypoints_2) -> tuple[np.ndarray, np.ndarray]:
    """Paired (M,2) pixel arrays for a correspondence set."""
    m = as_matches(matches)
    k1 = as_points(keypoints_1)
    k2 = as_points(keypoints_2)
    check_indices(m, k1.shape[0], k2.shape[0])
    if m.shape[0] == 0:
        return np.zeros((0, 2), np.float64), np.zeros((0, 2), np.float64)
    return k1[m[:, 0]], k2[m[:, 1]]


def check_size(size, name: str) -> tuple[int, int]:
    """Image size as (width, height)."""
    if size is None or len(size) != 2:
        raise ValueError(f"{name} must be a (width, height) pair, got {size!r}")
    w, h = int(size[0]), int(size[1])
    if w <= 0 or h <= 0:
        raise ValueError(f"{name} must be positive, got {(w, h)}")
    return w, h
