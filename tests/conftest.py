"""
Synthetic two-view scenes with exact observations.
"""

import cv2
import numpy as np
import pytest

from monoinit.geom.se3 import pixel2world, world2pixel
from monoinit.system.config import InitConfig

WIDTH, HEIGHT = 640, 480
K = np.array([[500.0, 0.0, 320.0], [0.0, 500.0, 240.0], [0.0, 0.0, 1.0]])


def make_scene(n=200, R=None, t=(-1.0, 0.0, 0.0), depth=(5.0, 8.0), seed=0, margin=20.0):
    """
    Random points seen by camera 1 at the origin and camera 2 at x2 = R x1 + t.

    Keypoints of image 2 are stored in shuffled order so correspondences are
    real index pairs. Only points visible in both images are kept.
    """
    rng = np.random.default_rng(seed)
    R = np.eye(3) if R is None else np.asarray(R, dtype=np.float64)
    t = np.asarray(t, dtype=np.float64)

    m = 4 * n
    uv1 = np.stack([rng.uniform(margin, WIDTH - margin, m), rng.uniform(margin, HEIGHT - margin, m)], axis=1)
    z = rng.uniform(depth[0], depth[1], m)
    X = pixel2world(uv1, z, np.eye(3), np.zeros(3), K)
    z2 = (X @ R.T + t)[:, 2]
    uv2 = world2pixel(X, R, t, K)
    vis = (
        (z2 > 0)
        & (uv2[:, 0] > margin) & (uv2[:, 0] < WIDTH - margin)
        & (uv2[:, 1] > margin) & (uv2[:, 1] < HEIGHT - margin)
    )
    idx = np.nonzero(vis)[0][:n]
    uv1, uv2, X = uv1[idx], uv2[idx], X[idx]

    order = rng.permutation(idx.shape[0])
    kp2 = uv2[order]
    inv = np.argsort(order)
    matches = np.stack([np.arange(idx.shape[0]), inv], axis=1).astype(np.int64)

    return {
        "kp1": uv1,
        "kp2": kp2,
        "matches": matches,
        "pts1": uv1,
        "pts2": uv2,
        "X": X,
        "R": R,
        "t": t,
        "K": K,
        "size": (WIDTH, HEIGHT),
    }


def inject_mismatches(matches, n2, fraction=0.2, seed=1):
    """Replace a fraction of rows with a wrong image-2 index. Returns (matches, injected row ids)."""
    rng = np.random.default_rng(seed)
    m = matches.copy()
    rows = rng.choice(m.shape[0], int(round(fraction * m.shape[0])), replace=False)
    for r in rows:
        j = m[r, 1]
        while j == m[r, 1]:
            j = int(rng.integers(0, n2))
        m[r, 1] = j
    return m, np.sort(rows)


def passthrough(k1, s1, k2, s2, m):
    return np.ones(len(m), bool), len(m)


def displacement_filter(k1, s1, k2, s2, m, radius=30.0):
    """Keeps matches whose pixel motion is close to the median motion."""
    d = np.asarray(k2)[m[:, 1]] - np.asarray(k1)[m[:, 0]]
    med = np.median(d, axis=0)
    mask = np.linalg.norm(d - med, axis=1) < radius
    return mask, int(mask.sum())


@pytest.fixture(autouse=True)
def _seed_opencv():
    cv2.setRNGSeed(12345)


@pytest.fixture
def cfg():
    return InitConfig()


@pytest.fixture
def scene():
    return make_scene()


@pytest.fixture
def rotated_scene():
    R, _ = cv2.Rodrigues(np.array([0.0, np.deg2rad(5.0), 0.0]))
    return make_scene(n=200, R=R, t=(-0.8, 0.1, 0.2), seed=3)
