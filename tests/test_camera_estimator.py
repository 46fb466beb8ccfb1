import numpy as np
import pytest

from panostitch.camera import Camera
from panostitch.camera_estimator import CameraEstimationError, CameraEstimator
from panostitch.homography import Homography
from panostitch.match_info import MatchInfo
from panostitch.shape import Shape2D

SHAPE = Shape2D(400, 300)
FOCAL = 500.0


def _rot(rx, ry, rz):
    return Camera.angle_to_rotation(rx, ry, rz).to_matrix()


def _k(f):
    return np.diag([f, f, 1.0])


def _match(ri, rj):
    k = _k(FOCAL)
    h = k @ ri @ rj.T @ np.linalg.inv(k)
    pairs = []
    for x in np.linspace(-180, 180, 13):
        for y in np.linspace(-130, 130, 9):
            p = h @ np.array([x, y, 1.0])
            if p[2] <= 0:
                continue
            u, v = p[0] / p[2], p[1] / p[2]
            if SHAPE.shifted_in((u, v)):
                pairs.append(((float(u), float(v)), (float(x), float(y))))
    return MatchInfo(match=pairs, confidence=1.0, homo=Homography(h))


def _table(rots, edges):
    n = len(rots)
    table = [[MatchInfo() for _ in range(n)] for _ in range(n)]
    for i, j in edges:
        table[i][j] = _match(rots[i], rots[j])
        table[j][i] = _match(rots[j], rots[i])
    return table


ROTS = [_rot(0.02 * i, 0.3 * i, 0.0) for i in range(3)]


def _check_relative(cams):
    for i, j in [(0, 1), (1, 2), (0, 2)]:
        est = cams[i].rotation.to_matrix() @ cams[j].rotation.to_matrix().T
        truth = ROTS[i] @ ROTS[j].T
        assert np.allclose(est, truth, atol=2e-2)


@pytest.mark.parametrize("multipass", [0, 1])
def test_recovers_relative_rotations(multipass):
    table = _table(ROTS, [(0, 1), (1, 2)])
    est = CameraEstimator(table, [SHAPE] * 3, multipass_ba=multipass, straighten=False)
    cams = est.estimate()
    assert len(cams) == 3
    _check_relative(cams)
    for cam in cams:
        assert cam.focal == pytest.approx(FOCAL, rel=0.05)


def test_straighten_keeps_relative_rotations():
    table = _table(ROTS, [(0, 1), (1, 2)])
    cams = CameraEstimator(table, [SHAPE] * 3).estimate()
    _check_relative(cams)


def test_naive_focal_without_matches():
    table = [[MatchInfo() for _ in range(2)] for _ in range(2)]
    est = CameraEstimator(table, [Shape2D(300, 300), Shape2D(100, 100)])
    est.estimate_focal()
    assert [c.focal for c in est.cameras] == [300.0, 100.0]


def test_no_connection_raises():
    table = [[MatchInfo() for _ in range(3)] for _ in range(3)]
    with pytest.raises(CameraEstimationError):
        CameraEstimator(table, [SHAPE] * 3).estimate()


def test_disconnected_groups_raise():
    table = [[MatchInfo() for _ in range(4)] for _ in range(4)]
    for i, j in [(0, 1), (2, 3)]:
        table[i][j] = MatchInfo(confidence=0.5)
        table[j][i] = MatchInfo(confidence=0.5)
    with pytest.raises(CameraEstimationError, match="not connected"):
        CameraEstimator(table, [SHAPE] * 4, multipass_ba=2).estimate()


def test_length_mismatch_raises():
    table = [[MatchInfo() for _ in range(2)] for _ in range(2)]
    with pytest.raises(ValueError):
        CameraEstimator(table, [SHAPE])