"""Camera intrinsics and rotations."""

from __future__ import annotations

import math
import statistics
from dataclasses import dataclass, field

import numpy as np

from .homography import Homography

EPS = 1e-6
GEO_EPS = 1e-7
GEO_EPS_SQR = 1e-14


def _focal_candidate(d1, d2, v1, v2):
    if v1 < v2:
        v1, v2 = v2, v1
    if v1 > 0 and v2 > 0:
        return np.sqrt(v1 if abs(d1) > abs(d2) else v2)
    if v1 > 0:
        return np.sqrt(v1)
    return None


def _focal_from_homography(homo: Homography) -> float:
    """Focal length implied by a rotation-only homography; 0 when it cannot be found."""
    h = [np.float64(v) for v in homo.data]
    with np.errstate(all="ignore"):
        d1 = h[6] * h[7]
        d2 = (h[7] - h[6]) * (h[7] + h[6])
        v1 = -(h[0] * h[1] + h[3] * h[4]) / d1
        v2 = (h[0] * h[0] + h[3] * h[3] - h[1] * h[1] - h[4] * h[4]) / d2
        f1 = _focal_candidate(d1, d2, v1, v2)
        if f1 is None:
            return 0.0

        d1 = h[0] * h[3] + h[1] * h[4]
        d2 = h[0] * h[0] + h[1] * h[1] - h[3] * h[3] - h[4] * h[4]
        v1 = -h[2] * h[5] / d1
        v2 = (h[5] * h[5] - h[2] * h[2]) / d2
        f0 = _focal_candidate(d1, d2, v1, v2)
        if f0 is None:
            return 0.0
        if np.isinf(f1) or np.isinf(f0):
            return 0.0
        return float(np.sqrt(f1 * f0))


def _as_matrix(r) -> np.ndarray:
    return r.to_matrix() if isinstance(r, Homography) else np.asarray(r, dtype=float)


@dataclass
class Camera:
    """Focal length, aspect ratio, principal point and rotation of one camera."""

    focal: float = 1.0
    aspect: float = 1.0
    ppx: float = 0.0
    ppy: float = 0.0
    rotation: Homography = field(default_factory=Homography.identity)

    def intrinsic(self) -> Homography:
        return Homography(
            [self.focal, 0, self.ppx, 0, self.focal * self.aspect, self.ppy, 0, 0, 1]
        )

    def intrinsic_inv(self) -> Homography:
        return self.intrinsic().inverse()

    def rotation_inv(self) -> Homography:
        return self.rotation.transpose()

    @staticmethod
    def estimate_focal(matches) -> float | None:
        """Median focal estimate over confident pairs of a square match table.

        Returns None when too few pairs give an estimate.
        """
        n = len(matches)
        estimates = [
            _focal_from_homography(info.homo)
            for i, row in enumerate(matches)
            for info in row[i + 1:]
            if info.confidence >= EPS
        ]
        if len(estimates) < min(n - 1, 3):
            return None
        return float(statistics.median(estimates))

    @staticmethod
    def rotation_to_angle(r) -> tuple[float, float, float]:
        """Axis-angle vector of the rotation nearest to ``r``."""
        u, _, vt = np.linalg.svd(_as_matrix(r))
        rn = u @ vt
        if np.linalg.det(rn) < 0:
            rn = -rn
        rx = rn[2, 1] - rn[1, 2]
        ry = rn[0, 2] - rn[2, 0]
        rz = rn[1, 0] - rn[0, 1]
        s = math.sqrt(rx * rx + ry * ry + rz * rz)
        if s < GEO_EPS:
            return (0.0, 0.0, 0.0)
        diag_sum = rn[0, 0] + rn[1, 1] + rn[2, 2]
        cos = min(max((diag_sum - 1) * 0.5, -1.0), 1.0)
        mul = math.acos(cos) / s
        return (float(rx * mul), float(ry * mul), float(rz * mul))

    @staticmethod
    def angle_to_rotation(rx: float, ry: float, rz: float) -> Homography:
        """Rotation matrix for an axis-angle vector."""
        theta_sq = rx * rx + ry * ry + rz * rz
        if theta_sq < GEO_EPS_SQR:
            return Homography([1, -rz, ry, rz, 1, -rx, -ry, rx, 1])
        theta = math.sqrt(theta_sq)
        ux, uy, uz = rx / theta, ry / theta, rz / theta
        u = np.array([ux, uy, uz])
        cross = np.array([[0, -uz, uy], [uz, 0, -ux], [-uy, ux, 0]])
        c, s = math.cos(theta), math.sin(theta)
        return Homography(c * np.eye(3) + (1 - c) * np.outer(u, u) + s * cross)

    @staticmethod
    def straighten(cameras: list[Camera]) -> None:
        """Rotate all cameras together so the panorama's horizon is level, in place."""
        xs = np.array([c.rotation.to_matrix()[0] for c in cameras])
        cov = xs.T @ xs
        _, _, vt = np.linalg.svd(cov)
        norm_y = vt[2]

        vz = sum((c.rotation.to_matrix()[2] for c in cameras), np.zeros(3))
        norm_x = np.cross(norm_y, vz)
        norm_x = norm_x / np.linalg.norm(norm_x)
        norm_z = np.cross(norm_x, norm_y)

        if float(np.sum(xs @ norm_x)) < 0:
            norm_x, norm_y = -norm_x, -norm_y

        r = Homography(np.column_stack([norm_x, norm_y, norm_z]))
        for c in cameras:
            c.rotation = c.rotation @ r

    def __str__(self) -> str:
        rx, ry, rz = Camera.rotation_to_angle(self.rotation)
        return (
            f"focal={self.focal:g}, ppx={self.ppx:g}, ppy={self.ppy:g}, "
            f"R={self.rotation}, theta={rx:g} {ry:g} {rz:g}"
        )