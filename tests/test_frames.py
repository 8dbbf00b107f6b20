"""
Unit tests for frame sequences used to retry initialization
"""

import cv2
import numpy as np
import pytest

from monoinit.dataset.frames import FrameSequence, read_gray


def _write_images(folder, n):
    folder.mkdir(parents=True, exist_ok=True)
    for i in range(n):
        img = np.full((12, 16), 10 * i, np.uint8)
        cv2.imwrite(str(folder / f"{i:04d}.png"), img)


def test_image_folder(tmp_path):
    _write_images(tmp_path, 4)
    seq = FrameSequence(str(tmp_path))
    assert len(seq) == 4

    pairs = list(seq.iter_pairs(ref=0, min_gap=2))
    assert [p[0] for p in pairs] == [0, 1]
    (_, (ts_ref, img_ref), (ts_cur, img_cur)) = pairs[1]
    assert ts_ref == 0.0 and ts_cur == 3.0
    assert img_ref[0, 0] == 0 and img_cur[0, 0] == 30


def test_tum_rgb_txt(tmp_path):
    _write_images(tmp_path / "rgb", 3)
    (tmp_path / "rgb.txt").write_text(
        "# timestamp filename\n"
        "1305031102.175304 rgb/0000.png\n"
        "1305031102.211214 rgb/0001.png\n"
        "\n"
        "1305031102.243211 rgb/0002.png\n",
        encoding="utf-8",
    )
    seq = FrameSequence(str(tmp_path))
    assert len(seq) == 3
    pairs = list(seq.iter_pairs(ref=0, min_gap=1, max_attempts=1))
    assert len(pairs) == 1
    assert pairs[0][2][0] == pytest.approx(1305031102.211214)


def test_step_and_max_attempts(tmp_path):
    _write_images(tmp_path, 10)
    seq = FrameSequence(str(tmp_path))
    pairs = list(seq.iter_pairs(ref=1, min_gap=2, step=3, max_attempts=2))
    assert [p[2][0] for p in pairs] == [3.0, 6.0]


def test_errors(tmp_path):
    with pytest.raises(FileNotFoundError):
        FrameSequence(str(tmp_path / "missing"))
    with pytest.raises(FileNotFoundError):
        FrameSequence(str(tmp_path))
    with pytest.raises(FileNotFoundError):
        read_gray(str(tmp_path / "nope.png"))
    _write_images(tmp_path, 2)
    with pytest.raises(ValueError, match="out of range"):
        next(FrameSequence(str(tmp_path)).iter_pairs(ref=5))
