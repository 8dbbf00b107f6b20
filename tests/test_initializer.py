"""
End-to-end tests of one initialization attempt
"""

import numpy as np
import pytest

from monoinit.geom.camera import CameraIntrinsics
from monoinit.system.config import InitConfig
from monoinit.system.initializer import initialize
from monoinit.system.result import FailureReason
from monoinit.system.telemetry import Telemetry

from conftest import K, displacement_filter, inject_mismatches, make_scene, passthrough


def run(s, cfg, matches=None, kp2=None, consistency_fn=passthrough, telemetry=None, intrinsics=K):
    return initialize(
        s["kp1"], s["size"],
        s["kp2"] if kp2 is None else kp2, s["size"],
        s["matches"] if matches is None else matches,
        intrinsics, cfg,
        consistency_fn=consistency_fn,
        telemetry=telemetry,
    )


class TestInitialize:
    def test_sideways_translation_succeeds(self, cfg, scene):
        tel = Telemetry()
        res = run(scene, cfg, telemetry=tel, intrinsics=CameraIntrinsics.from_matrix(K))

        n = scene["matches"].shape[0]
        assert res.valid, res.stages
        assert res.reason == "OK"
        np.testing.assert_allclose(res.pose.R, np.eye(3), atol=1e-3)
        np.testing.assert_allclose(res.pose.t, [-1.0, 0.0, 0.0], atol=1e-3)
        assert res.num_points == n
        assert res.inlier_mask.sum() == n

        # points are in camera 1's frame with a unit baseline
        X_true = scene["X"][res.point_matches[:, 0]]
        np.testing.assert_allclose(res.points3d, X_true, rtol=1e-3, atol=1e-3)
        assert np.all(res.points3d[:, 2] > 0)

        rec = tel.last()
        assert rec["valid"] is True and rec["attempt_idx"] == 0
        assert set(rec["stages"]) == {"filter", "pose", "triangulation"}
        assert rec["num_points"] == n

    def test_point_matches_link_back_to_keypoints(self, cfg, scene):
        res = run(scene, cfg)
        assert res.valid
        kp2 = scene["kp2"][res.point_matches[:, 1]]
        expected = scene["pts2"][res.point_matches[:, 0]]
        np.testing.assert_allclose(kp2, expected)

    def test_identical_images_fail(self, cfg, scene):
        matches = np.stack([np.arange(scene["kp1"].shape[0])] * 2, axis=1)
        res = run(scene, cfg, matches=matches, kp2=scene["kp1"].copy())

        assert not res.valid
        assert res.reason in (
            FailureReason.DEGENERATE_POSE,
            FailureReason.INSUFFICIENT_VALID_POINTS,
            FailureReason.WEAK_PARALLAX,
        )
        assert res.num_points == 0

    def test_injected_mismatches(self, cfg, scene):
        raw, injected = inject_mismatches(scene["matches"], scene["kp2"].shape[0])
        tel = Telemetry()
        res = run(scene, cfg, matches=raw, consistency_fn=displacement_filter, telemetry=tel)

        assert res.valid, res.stages
        assert tel.last()["stages"]["filter"]["num_inliers"] < raw.shape[0]
        injected_pairs = {tuple(p) for p in raw[injected]}
        accepted_pairs = {tuple(p) for p in res.point_matches}
        assert len(injected_pairs & accepted_pairs) == 0

    def test_mismatches_without_filtering_still_initialize(self, cfg, scene):
        raw, injected = inject_mismatches(scene["matches"], scene["kp2"].shape[0])
        res = run(scene, cfg, matches=raw)

        assert res.valid, res.stages
        injected_pairs = {tuple(p) for p in raw[injected]}
        accepted_pairs = {tuple(p) for p in res.point_matches}
        assert len(injected_pairs & accepted_pairs) <= 2
        np.testing.assert_allclose(res.pose.t, [-1.0, 0.0, 0.0], atol=1e-2)

    def test_filter_failure_stops_the_pipeline(self, scene):
        tel = Telemetry()
        cfg = InitConfig(min_correspondences=20)

        def reject_all(k1, s1, k2, s2, m):
            return np.zeros(len(m), bool), 0

        res = run(scene, cfg, consistency_fn=reject_all, telemetry=tel)
        assert not res.valid
        assert res.reason == FailureReason.INSUFFICIENT_CORRESPONDENCES
        assert res.pose is None
        assert set(tel.last()["stages"]) == {"filter"}
        assert tel.last()["reason"] == "INSUFFICIENT_CORRESPONDENCES"

    def test_weak_baseline_fails_on_median_angle(self):
        # 1 unit baseline at 60 to 90 units depth: about 0.6 to 1 degree of parallax
        s = make_scene(depth=(60.0, 90.0), t=(-1.0, 0.0, 0.0), seed=4)
        cfg = InitConfig(min_triangle_angle=0.3, median_triangle_angle=2.0, min_init_3dpoint_num=20)
        res = run(s, cfg)
        assert not res.valid
        assert res.reason == FailureReason.WEAK_PARALLAX
        assert res.pose is not None
        assert res.num_points == 0
        st = res.stages["triangulation"]
        assert st["num_inliers"] >= cfg.min_init_3dpoint_num
        assert st["median_cos"] > np.cos(np.deg2rad(cfg.median_triangle_angle))

    def test_mask_only_narrows(self, cfg, scene):
        pts2 = scene["kp2"].copy()
        rows = scene["matches"][:12, 1]
        pts2[rows, 1] += 4.0
        tel = Telemetry()
        res = run(scene, cfg, kp2=pts2, telemetry=tel)

        assert res.valid
        st = tel.last()["stages"]
        assert st["triangulation"]["num_inliers"] <= st["pose"]["num_inliers"] <= st["filter"]["num_inliers"]
        assert res.num_points == res.inlier_mask.sum()

    def test_attempt_index_is_recorded(self, cfg, scene):
        tel = Telemetry()
        initialize(
            scene["kp1"], scene["size"], scene["kp2"], scene["size"], scene["matches"], K, cfg,
            consistency_fn=passthrough, telemetry=tel, attempt_idx=7,
        )
        assert tel.attempts[0]["attempt_idx"] == 7

    def test_malformed_inputs_raise(self, cfg, scene):
        with pytest.raises(ValueError):
            run(scene, cfg, intrinsics=None)
        with pytest.raises(ValueError):
            initialize(
                scene["kp1"], scene["size"], scene["kp2"], scene["size"], scene["matches"], K, None,
                consistency_fn=passthrough,
            )
