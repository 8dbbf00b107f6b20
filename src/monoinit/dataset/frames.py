from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Iterator, List, Tuple

import cv2
import numpy as np

IMAGE_EXTS = (".png", ".jpg", ".jpeg", ".bmp", ".tif", ".tiff")


@dataclass
class FrameEntry:
    ts: float
    path: str


def _read_rgb_txt(rgb_txt_path: str) -> List[FrameEntry]:
    entries: List[FrameEntry] = []
    base = os.path.dirname(rgb_txt_path)

    with open(rgb_txt_path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if (not line) or line.startswith("#"):
                continue
            parts = line.split()
            if len(parts) < 2:
                continue
            entries.append(FrameEntry(ts=float(parts[0]), path=os.path.join(base, parts[1])))
    return entries


def _list_images(folder: str) -> List[FrameEntry]:
    names = sorted(n for n in os.listdir(folder) if n.lower().endswith(IMAGE_EXTS))
    return [FrameEntry(ts=float(i), path=os.path.join(folder, n)) for i, n in enumerate(names)]


def read_gray(path: str) -> np.ndarray:
    img = cv2.imread(path, cv2.IMREAD_GRAYSCALE)
    if img is None:
        raise FileNotFoundError(f"Failed to read image: {path}")
    return img


class FrameSequence:
    """
    Ordered frames of a TUM sequence (rgb.txt) or of a plain image folder
    (file-name order, timestamps are the frame numbers).
    """

    def __init__(self, seq_dir: str):
        if not os.path.isdir(seq_dir):
            raise FileNotFoundError(f"Missing sequence dir: {seq_dir}")
        self.seq_dir = seq_dir
        rgb_txt = os.path.join(seq_dir, "rgb.txt")
        if os.path.isfile(rgb_txt):
            self.entries = _read_rgb_txt(rgb_txt)
        else:
            self.entries = _list_images(seq_dir)
        if not self.entries:
            raise FileNotFoundError(f"No frames found in {seq_dir}")

    def __len__(self) -> int:
        return len(self.entries)

    def iter_pairs(
        self,
        *,
        ref: int = 0,
        min_gap: int = 1,
        step: int = 1,
        max_attempts: int | None = None,
    ) -> Iterator[Tuple[int, Tuple[float, np.ndarray], Tuple[float, np.ndarray]]]:
        """
        Candidate initialization pairs (ref, ref + min_gap), (ref, ref + min_gap + step), ...

        Yields (attempt_idx, (ts_ref, img_ref), (ts_cur, img_cur)); the reference
        image is read once.
        """
        if not 0 <= ref < len(self.entries):
            raise ValueError(f"ref index {ref} out of range for {len(self.entries)} frames")
        if min_gap < 1 or step < 1:
            raise ValueError("min_gap and step must be >= 1")
        e_ref = self.entries[ref]
        img_ref = read_gray(e_ref.path)
        attempt = 0
        for i in range(ref + min_gap, len(self.entries), step):
            if max_attempts is not None and attempt >= max_attempts:
                return
            e = self.entries[i]
            yield attempt, (e_ref.ts, img_ref), (e.ts, read_gray(e.path))
            attempt += 1
