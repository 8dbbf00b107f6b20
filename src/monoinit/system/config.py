# src/monoinit/system/config.py
from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields

import yaml

from ..geom.camera import CameraIntrinsics


@dataclass(frozen=True)
class GmsConfig:
    with_rotation: bool = False
    with_scale: bool = False
    threshold_factor: float = 6.0


@dataclass(frozen=True)
class OrbConfig:
    nfeatures: int = 1000
    cross_check: bool = True
    max_matches: int | None = None


@dataclass(frozen=True)
class InitConfig:
    """
    Thresholds for one two-view initialization attempt.

    max_reproject_error: px, RANSAC inlier threshold and per-view reprojection gate.
    min_triangle_angle: deg, per-point parallax floor.
    median_triangle_angle: deg, floor on the median parallax of surviving points.
    min_init_3dpoint_num: minimum surviving points to accept initialization.
    min_correspondences: minimum matches (and RANSAC inliers) to attempt E.
    ransac_prob: RANSAC confidence.
    """

    max_reproject_error: float = 1.0
    min_triangle_angle: float = 1.0
    median_triangle_angle: float = 2.0
    min_init_3dpoint_num: int = 50
    min_correspondences: int = 15
    ransac_prob: float = 0.99
    gms: GmsConfig = field(default_factory=GmsConfig)
    orb: OrbConfig = field(default_factory=OrbConfig)
    camera: CameraIntrinsics | None = None

    def __post_init__(self):
        if not self.max_reproject_error > 0.0:
            raise ValueError(f"max_reproject_error must be > 0, got {self.max_reproject_error}")
        if not 0.0 < self.min_triangle_angle < 90.0:
            raise ValueError(f"min_triangle_angle must be in (0, 90) deg, got {self.min_triangle_angle}")
        if not 0.0 < self.median_triangle_angle < 90.0:
            raise ValueError(f"median_triangle_angle must be in (0, 90) deg, got {self.median_triangle_angle}")
        if self.min_init_3dpoint_num < 1:
            raise ValueError(f"min_init_3dpoint_num must be >= 1, got {self.min_init_3dpoint_num}")
        # five-point solver
        if self.min_correspondences < 5:
            raise ValueError(f"min_correspondences must be >= 5, got {self.min_correspondences}")
        if not 0.0 < self.ransac_prob < 1.0:
            raise ValueError(f"ransac_prob must be in (0, 1), got {self.ransac_prob}")

    @classmethod
    def from_dict(cls, cfg: dict | None) -> "InitConfig":
        cfg = dict(cfg or {})
        unknown = set(cfg) - {"init", "gms", "orb", "camera"}
        if unknown:
            raise ValueError(f"Unknown config sections: {sorted(unknown)}")

        kwargs = _section(cfg, "init", cls, skip={"gms", "orb", "camera"})
        kwargs["gms"] = GmsConfig(**_section(cfg, "gms", GmsConfig))
        kwargs["orb"] = OrbConfig(**_section(cfg, "orb", OrbConfig))
        if cfg.get("camera") is not None:
            kwargs["camera"] = CameraIntrinsics.from_dict(cfg["camera"])
        return cls(**kwargs)

    def to_dict(self) -> dict:
        out = {
            "init": {f.name: getattr(self, f.name) for f in fields(self) if f.name not in ("gms", "orb", "camera")},
            "gms": asdict(self.gms),
            "orb": asdict(self.orb),
        }
        if self.camera is not None:
            out["camera"] = asdict(self.camera)
        return out


def _section(cfg: dict, name: str, klass, skip: set[str] = frozenset()) -> dict:
    sec = cfg.get(name) or {}
    if not isinstance(sec, dict):
        raise ValueError(f"Config section '{name}' must be a mapping")
    allowed = {f.name for f in fields(klass)} - set(skip)
    unknown = set(sec) - allowed
    if unknown:
        raise ValueError(f"Unknown keys in '{name}': {sorted(unknown)}")
    return dict(sec)


def load_config(path: str) -> InitConfig:
    with open(path, "r", encoding="utf-8") as f:
        cfg = yaml.safe_load(f)
    return InitConfig.from_dict(cfg)
