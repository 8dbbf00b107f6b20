from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

import numpy as np
import yaml

from monoinit.dataset.frames import FrameSequence, read_gray
from monoinit.geom.se3 import inv_T
from monoinit.modules.orb_match import orb_match
from monoinit.system.config import InitConfig, load_config
from monoinit.system.initializer import initialize
from monoinit.system.result import InitResult
from monoinit.system.telemetry import Telemetry


def _attempt(img_1: np.ndarray, img_2: np.ndarray, cfg: InitConfig, telemetry: Telemetry, idx: int) -> InitResult:
    kp1, kp2, matches, info = orb_match(img_1, img_2, cfg.orb)
    print(f"[INFO] attempt {idx}: keypoints {info['num_kp0']}/{info['num_kp1']}, raw matches {info['num_raw']}")
    # (width, height)
    size_1 = (img_1.shape[1], img_1.shape[0])
    size_2 = (img_2.shape[1], img_2.shape[0])
    return initialize(kp1, size_1, kp2, size_2, matches, cfg.camera, cfg, telemetry=telemetry, attempt_idx=idx)


def _write_outputs(res: InitResult, cfg: InitConfig, telemetry: Telemetry, out_dir: Path) -> None:
    with open(out_dir / "metrics.json", "w", encoding="utf-8") as f:
        json.dump(telemetry.attempts, f, indent=2)
    with open(out_dir / "config_used.yaml", "w", encoding="utf-8") as f:
        yaml.safe_dump(cfg.to_dict(), f, sort_keys=False)
    print(f"[OK] wrote: {out_dir / 'metrics.json'}")

    if not res.valid:
        return

    # T_w_c of camera 2, world = camera 1
    T_w_c2 = inv_T(res.pose.T_cur_prev)
    with open(out_dir / "pose.txt", "w", encoding="utf-8") as f:
        f.write("# R (row-major) t, camera 2 w.r.t. camera 1 (x2 = R x1 + t), |t| = 1\n")
        f.write(" ".join(f"{v:.9f}" for v in res.pose.R.reshape(-1)) + " ")
        f.write(" ".join(f"{v:.9f}" for v in res.pose.t) + "\n")
        f.write("# camera 2 center in camera 1 frame\n")
        f.write(" ".join(f"{v:.9f}" for v in T_w_c2[:3, 3]) + "\n")
    np.savetxt(out_dir / "points3d.txt", res.points3d, fmt="%.6f", header="x y z (camera 1 frame, unit baseline)")
    print(f"[OK] wrote: {out_dir / 'pose.txt'}")
    print(f"[OK] wrote: {out_dir / 'points3d.txt'}")


def main() -> None:
    ap = argparse.ArgumentParser(description="Two-view monocular initialization")
    ap.add_argument("--config", type=str, default="configs/default.yaml")
    ap.add_argument("--img1", type=str, help="First image of a single pair")
    ap.add_argument("--img2", type=str, help="Second image of a single pair")
    ap.add_argument("--seq_dir", type=str, help="TUM sequence dir or image folder; retries pairs against --ref")
    ap.add_argument("--ref", type=int, default=0, help="Reference frame index in --seq_dir")
    ap.add_argument("--min_gap", type=int, default=5, help="Smallest frame gap to try")
    ap.add_argument("--step", type=int, default=1, help="Frame gap increment between attempts")
    ap.add_argument("--max_attempts", type=int, default=30)
    ap.add_argument("--out_dir", type=str, default="outputs")
    ap.add_argument("--log_level", type=str, default="INFO")
    args = ap.parse_args()

    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if bool(args.img1) == bool(args.seq_dir) or bool(args.img1) != bool(args.img2):
        ap.error("give either --img1 and --img2, or --seq_dir")

    print(f"[INFO] Loading config: {args.config}")
    cfg = load_config(args.config)
    if cfg.camera is None:
        ap.error(f"config {args.config} has no camera section")

    out_dir = Path(args.out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    print(f"[INFO] Output dir: {out_dir}")

    telemetry = Telemetry()
    res = None
    if args.img1:
        res = _attempt(read_gray(args.img1), read_gray(args.img2), cfg, telemetry, 0)
    else:
        seq = FrameSequence(args.seq_dir)
        print(f"[INFO] Sequence frames: {len(seq)}")
        for idx, (ts_ref, img_ref), (ts_cur, img_cur) in seq.iter_pairs(
            ref=args.ref, min_gap=args.min_gap, step=args.step, max_attempts=args.max_attempts
        ):
            res = _attempt(img_ref, img_cur, cfg, telemetry, idx)
            print(f"[INFO] pair ts {ts_ref:.6f} -> {ts_cur:.6f}: {getattr(res.reason, 'value', res.reason)}")
            if res.valid:
                break

    if res is None:
        print("[INFO] No frame pair to try.")
        return

    print(f"[INFO] attempts: {len(telemetry.attempts)}, success rate {telemetry.success_rate():.2f}")
    if res.valid:
        print(f"[OK] initialized with {res.num_points} points")
    else:
        print(f"[INFO] initialization failed: {getattr(res.reason, 'value', res.reason)}")
    _write_outputs(res, cfg, telemetry, out_dir)


if __name__ == "__main__":
    main()
