"""Incremental bundle adjustment of camera parameters with Levenberg-Marquardt."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np

from .camera import GEO_EPS_SQR, Camera
from .homography import Homography
from .match_info import MatchInfo

log = logging.getLogger(__name__)

NR_PARAM_PER_CAMERA = 6
NR_TERM_PER_MATCH = 2
LM_MAX_ITER = 100

_DK_DFOCAL = np.array([[1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 0.0]])
_DK_DPPX = np.array([[0.0, 0.0, 1.0], [0.0, 0.0, 0.0], [0.0, 0.0, 0.0]])
_DK_DPPY = np.array([[0.0, 0.0, 0.0], [0.0, 0.0, 1.0], [0.0, 0.0, 0.0]])
_DK = (_DK_DFOCAL, _DK_DPPX, _DK_DPPY)


def _cross_matrix(x: float, y: float, z: float) -> np.ndarray:
    return np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]])


def _drdvi(r: np.ndarray) -> list[np.ndarray]:
    """Derivatives of a rotation matrix with respect to its axis-angle components."""
    v = np.array(Camera.rotation_to_angle(r))
    vsqr = float(v @ v)
    if vsqr < GEO_EPS_SQR:
        return [_cross_matrix(*axis) for axis in np.eye(3)]
    base = _cross_matrix(*v)
    eye = np.eye(3)
    out = []
    for i in range(3):
        m = base * v[i] + _cross_matrix(*np.cross(v, eye[i] - r[:, i]))
        out.append((m / vsqr) @ r)
    return out


def _params_of(cameras) -> np.ndarray:
    rows = [
        [c.focal, c.ppx, c.ppy, *Camera.rotation_to_angle(c.rotation)]
        for c in cameras
    ]
    return np.array(rows, dtype=float).reshape(-1)


def _cameras_of(params: np.ndarray) -> list[Camera]:
    return [
        Camera(
            focal=float(p[0]),
            aspect=1.0,
            ppx=float(p[1]),
            ppy=float(p[2]),
            rotation=Camera.angle_to_rotation(float(p[3]), float(p[4]), float(p[5])),
        )
        for p in np.asarray(params, dtype=float).reshape(-1, NR_PARAM_PER_CAMERA)
    ]


def _matrices(camera: Camera) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    k = camera.intrinsic()
    return k.to_matrix(), camera.rotation.to_matrix(), k.inverse().to_matrix()


@dataclass
class ErrorStats:
    """Residuals of all match terms, with their RMS and largest magnitude."""

    residuals: np.ndarray = field(default_factory=lambda: np.zeros(0))
    max: float = 0.0
    avg: float = 0.0

    def update_stats(self) -> None:
        r = np.asarray(self.residuals, dtype=float)
        self.residuals = r
        if r.size == 0:
            self.max = self.avg = 0.0
            return
        self.avg = float(np.sqrt(np.mean(r * r)))
        self.max = float(np.max(np.abs(r)))

    def num_terms(self) -> int:
        return len(self.residuals)


@dataclass
class _MatchPair:
    src: int
    dst: int
    to_pts: np.ndarray
    from_pts: np.ndarray


class IncrementalBundleAdjuster:
    """Refine the cameras in ``cameras`` (updated in place) from added matches.

    ``identity_idx`` names the camera whose rotation stays fixed.
    """

    def __init__(self, cameras: list[Camera], *, lm_lambda: float = 5.0) -> None:
        self.cameras = cameras
        self.lm_lambda = lm_lambda
        self.identity_idx: int | None = None
        self._pairs: list[_MatchPair] = []
        self._nr_points = 0
        self._idx_added: set[int] = set()
        self._index_map = [0] * len(cameras)

    def add_match(self, i: int, j: int, match: MatchInfo) -> None:
        """Add ``match``, which is matches[j][i] of the stitcher (from i to j)."""
        to_pts = np.array([p for p, _ in match.match], dtype=float).reshape(-1, 2)
        from_pts = np.array([p for _, p in match.match], dtype=float).reshape(-1, 2)
        self._pairs.append(_MatchPair(i, j, to_pts, from_pts))
        self._nr_points += len(to_pts)
        self._idx_added.add(i)
        self._idx_added.add(j)

    def _update_index_map(self) -> None:
        for cnt, i in enumerate(sorted(self._idx_added)):
            self._index_map[i] = cnt

    def _calc_error(self, params: np.ndarray) -> ErrorStats:
        cams = [_matrices(c) for c in _cameras_of(params)]
        parts = []
        for pair in self._pairs:
            kf, rf, _ = cams[self._index_map[pair.src]]
            _, rt, ktinv = cams[self._index_map[pair.dst]]
            h = kf @ rf @ rt.T @ ktinv
            pts = np.vstack([pair.to_pts.T, np.ones(len(pair.to_pts))])
            homo = h @ pts
            transformed = homo[:2] / homo[2]
            parts.append((pair.from_pts.T - transformed).T.reshape(-1))
        stats = ErrorStats(np.concatenate(parts) if parts else np.zeros(0))
        stats.update_stats()
        return stats

    def _jacobian(self, params: np.ndarray) -> np.ndarray:
        cams = [_matrices(c) for c in _cameras_of(params)]
        jac = np.zeros((NR_TERM_PER_MATCH * self._nr_points, NR_PARAM_PER_CAMERA * len(cams)))
        all_drdvi = [_drdvi(r) for _, r, _ in cams]
        row = 0
        for pair in self._pairs:
            fi = self._index_map[pair.src]
            ti = self._index_map[pair.dst]
            kf, rf, _ = cams[fi]
            _, rt, ktinv = cams[ti]
            rtinv = rt.T
            h = kf @ rf @ rtinv @ ktinv
            n = len(pair.to_pts)
            pts = np.vstack([pair.to_pts.T, np.ones(n)])
            homo = h @ pts
            hz_inv = 1.0 / homo[2]
            hz_sqr_inv = hz_inv * hz_inv

            def drdv(d: np.ndarray) -> np.ndarray:
                return np.vstack([
                    -d[0] * hz_inv + d[2] * homo[0] * hz_sqr_inv,
                    -d[1] * hz_inv + d[2] * homo[1] * hz_sqr_inv,
                ])

            dot_u2 = rf @ rtinv @ ktinv @ pts
            dfrom = [drdv(dk @ dot_u2) for dk in _DK]
            dot_u2 = rtinv @ ktinv @ pts
            dfrom += [drdv(kf @ dr @ dot_u2) for dr in all_drdvi[fi]]

            dot_u2 = -(ktinv @ pts)
            dto = [drdv(h @ dk @ dot_u2) for dk in _DK]
            m = kf @ rf
            dot_u2 = ktinv @ pts
            dto += [drdv(m @ dr.T @ dot_u2) for dr in all_drdvi[ti]]

            rows = slice(row, row + NR_TERM_PER_MATCH * n)
            for k, d in enumerate(dfrom):
                jac[rows, fi * NR_PARAM_PER_CAMERA + k] = d.T.reshape(-1)
            for k, d in enumerate(dto):
                jac[rows, ti * NR_PARAM_PER_CAMERA + k] = d.T.reshape(-1)
            row += NR_TERM_PER_MATCH * n
        return jac

    def _param_update(self, params: np.ndarray, residuals: np.ndarray) -> np.ndarray:
        jac = self._jacobian(params)
        jtj = jac.T @ jac
        b = jac.T @ residuals
        for i in range(jtj.shape[0]):
            if i % NR_PARAM_PER_CAMERA >= 3:
                jtj[i, i] += self.lm_lambda
            else:
                jtj[i, i] += self.lm_lambda / 10.0
        return np.linalg.lstsq(jtj, b, rcond=None)[0]

    def optimize(self) -> None:
        """Run Levenberg-Marquardt over all cameras that appear in added matches."""
        if not self._idx_added:
            raise RuntimeError("optimize() called without adding any matches")
        self._update_index_map()
        added = sorted(self._idx_added)
        params = _params_of(self.cameras[i] for i in added)
        stats = self._calc_error(params)
        best_err = stats.avg
        log.debug("BA: init err: %f", best_err)

        fixed = None
        if self.identity_idx is not None and self.identity_idx in self._idx_added:
            base = self._index_map[self.identity_idx] * NR_PARAM_PER_CAMERA
            fixed = slice(base + 3, base + 6)

        itr = 0
        nr_non_decrease = 0
        while itr < LM_MAX_ITER:
            itr += 1
            # the residuals of the latest trial are used, even when it was rejected
            update = self._param_update(params, stats.residuals)
            if fixed is not None:
                update[fixed] = 0.0
            new_params = params - update
            stats = self._calc_error(new_params)
            log.debug("BA: average err: %f, max: %f", stats.avg, stats.max)
            if stats.avg >= best_err - 1e-3:
                nr_non_decrease += 1
            else:
                nr_non_decrease = 0
                best_err = stats.avg
                params = new_params
            if nr_non_decrease > 5:
                break
        log.debug("BA: error %f after %d iterations", best_err, itr)

        for i, cam in zip(added, _cameras_of(params)):
            self.cameras[i] = cam

    def error_stats(self) -> ErrorStats:
        """Error of the current cameras over all added matches."""
        return self._calc_error(_params_of(self.cameras))


__all__ = ["ErrorStats", "IncrementalBundleAdjuster", "Homography"]