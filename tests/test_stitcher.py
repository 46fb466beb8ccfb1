import random

import numpy as np
import pytest

from panostitch.camera_estimator import CameraEstimationError
from panostitch.homography import Homography
from panostitch.match_info import MatchInfo
from panostitch.stitcher import Stitcher
from panostitch.stitcher_image import StitchingError

SCENE_W, SCENE_H = 80, 30
CROP_W = 40
STEP = 20


def _scene():
    ys, xs = np.mgrid[0:SCENE_H, 0:SCENE_W].astype(np.float32)
    return np.dstack([xs / SCENE_W, ys / SCENE_H, np.full_like(xs, 0.5)]).astype(np.float32)


def _crops(n):
    scene = _scene()
    return [scene[:, k * STEP:k * STEP + CROP_W].copy() for k in range(n)]


def detect(img):
    h, w = img.shape[:2]
    kpts, desc = [], []
    for y in range(1, h, 4):
        for x in range(1, w, 4):
            kpts.append((x - w / 2, y - h / 2))
            desc.append((float(img[y, x, 0]), float(img[y, x, 1])))
    for y in range(3, h, 4):
        for x in range(3, w, 4):
            kpts.append((x - w / 2, y - h / 2))
            desc.append((-1.0, -1.0))
    return np.array(kpts), desc


def match(d1, d2):
    lookup = {d: k for k, d in enumerate(d2) if d[0] >= 0}
    return [(i, lookup[d]) for i, d in enumerate(d1) if d[0] >= 0 and d in lookup]


def no_match(d1, d2):
    return []


def no_features(img):
    return np.zeros((0, 2)), []


def test_build_flat_reproduces_scene():
    st = Stitcher(
        _crops(3), detect, match,
        estimate_camera=False, trans=True,
        ransac_iterations=100, rng=random.Random(0),
    )
    out = st.build()
    assert out.ndim == 3 and out.shape[2] == 3
    assert abs(out.shape[1] - SCENE_W) <= 2
    assert abs(out.shape[0] - SCENE_H) <= 2
    valid = out[..., 0] >= 0
    assert valid.mean() > 0.8
    np.testing.assert_allclose(out[..., 2][valid], 0.5, atol=1e-4)
    row = out[out.shape[0] // 2]
    vals = row[row[:, 0] >= 0, 0]
    assert np.all(np.diff(vals) >= -1e-3)
    assert vals.max() - vals.min() > 0.9
    col = out[:, out.shape[1] // 2]
    yvals = col[col[:, 0] >= 0, 1]
    assert np.all(np.diff(yvals) >= -1e-3)


def test_build_without_features_fails():
    st = Stitcher(_crops(2), no_features, match)
    with pytest.raises(StitchingError, match="Cannot find feature"):
        st.build()


def test_ordered_input_requires_neighbours_to_match():
    st = Stitcher(_crops(3), detect, no_match, ordered_input=True, estimate_camera=False)
    with pytest.raises(StitchingError, match="don't match"):
        st.build()


def test_camera_estimation_needs_connected_images():
    st = Stitcher(_crops(2), detect, no_match, ransac_iterations=10)
    with pytest.raises(CameraEstimationError):
        st.build()


def _sample_info(conf):
    return MatchInfo(
        match=[((1.0, 2.0), (3.0, 4.0)), ((-5.5, 6.25), (7.0, -8.0))],
        confidence=conf,
        homo=Homography([1, 0, 2.5, 0, 1, -3, 0, 0, 1]),
    )


def test_matchinfo_round_trip(tmp_path):
    src = tmp_path / "in.txt"
    src.write_text(f"0 1\n{_sample_info(0.75).serialize()}\n1 0\n{_sample_info(0.5).serialize()}\n")
    st = Stitcher(_crops(2), detect, match)
    st.load_matchinfo(src)
    assert st.pairwise_matches[0][1] == _sample_info(0.75)
    assert st.pairwise_matches[1][0] == _sample_info(0.5)
    assert st.pairwise_matches[0][0].confidence == 0

    out = tmp_path / "out.txt"
    st.dump_matchinfo(out)
    other = Stitcher(_crops(2), detect, match)
    other.load_matchinfo(out)
    assert other.pairwise_matches == st.pairwise_matches


def test_dump_skips_nonpositive_confidence(tmp_path):
    src = tmp_path / "in.txt"
    src.write_text(f"0 1\n{_sample_info(-9.0).serialize()}\n")
    st = Stitcher(_crops(2), detect, match)
    st.load_matchinfo(src)
    assert st.pairwise_matches[0][1].confidence == -9.0
    out = tmp_path / "out.txt"
    st.dump_matchinfo(out)
    assert out.read_text().split() == []


def test_load_rejects_out_of_range_index(tmp_path):
    src = tmp_path / "in.txt"
    src.write_text(f"0 5\n{_sample_info(0.5).serialize()}\n")
    st = Stitcher(_crops(2), detect, match)
    with pytest.raises(ValueError):
        st.load_matchinfo(src)


def test_no_images_rejected():
    with pytest.raises(ValueError):
        Stitcher([], detect, match)