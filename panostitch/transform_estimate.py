"""RANSAC estimation of the transform between two matched keypoint sets."""

from __future__ import annotations

import math
import random
from enum import Enum

import numpy as np

from .homography import Homography, SingularMatrixError, overlap_region
from .match_info import MatchInfo
from .shape import Shape2D

ESTIMATE_MIN_NR_MATCH = 8


class TransformType(Enum):
    AFFINE = 0
    HOMO = 1


class TransformEstimationError(RuntimeError):
    """Raised when no acceptable transform is found; carries the confidence reached."""

    def __init__(self, message: str, confidence: float = 0.0) -> None:
        super().__init__(message)
        self.confidence = confidence


def get_perspective_transform(src, dst) -> np.ndarray:
    """Least-squares 3x3 matrix H with H(dst) ~ src."""
    src = np.asarray(src, dtype=float).reshape(-1, 2)
    dst = np.asarray(dst, dtype=float).reshape(-1, 2)
    if len(src) < 4 or len(src) != len(dst):
        raise ValueError("need at least 4 point pairs")
    rows, rhs = [], []
    for (u, v), (x, y) in zip(src, dst):
        rows.append([x, y, 1, 0, 0, 0, -u * x, -u * y])
        rhs.append(u)
        rows.append([0, 0, 0, x, y, 1, -v * x, -v * y])
        rhs.append(v)
    sol = np.linalg.lstsq(np.array(rows), np.array(rhs), rcond=None)[0]
    return np.append(sol, 1.0).reshape(3, 3)


def get_affine_transform(src, dst) -> np.ndarray:
    """Least-squares affine 3x3 matrix H with H(dst) ~ src."""
    src = np.asarray(src, dtype=float).reshape(-1, 2)
    dst = np.asarray(dst, dtype=float).reshape(-1, 2)
    if len(src) < 3 or len(src) != len(dst):
        raise ValueError("need at least 3 point pairs")
    rows, rhs = [], []
    for (u, v), (x, y) in zip(src, dst):
        rows.append([x, y, 1, 0, 0, 0])
        rhs.append(u)
        rows.append([0, 0, 0, x, y, 1])
        rhs.append(v)
    sol = np.linalg.lstsq(np.array(rows), np.array(rhs), rcond=None)[0]
    return np.append(sol, [0.0, 0.0, 1.0]).reshape(3, 3)


def _in_polygon(poly, pts: np.ndarray) -> np.ndarray:
    inside = np.zeros(len(pts), dtype=bool)
    if len(poly) < 3 or len(pts) == 0:
        return inside
    x, y = pts[:, 0], pts[:, 1]
    with np.errstate(divide="ignore", invalid="ignore"):
        for (x1, y1), (x2, y2) in zip(poly, list(poly[1:]) + list(poly[:1])):
            crosses = (y1 > y) != (y2 > y)
            xint = x1 + (y - y1) * (x2 - x1) / (y2 - y1)
            inside ^= crosses & (x < xint)
    return inside


def _polygon_area(poly) -> float:
    if len(poly) < 3:
        return 0.0
    p = np.asarray(poly, dtype=float)
    x, y = p[:, 0], p[:, 1]
    return float(abs(np.dot(x, np.roll(y, -1)) - np.dot(y, np.roll(x, -1))) * 0.5)


def _ratio(a: int, b: int) -> float:
    return a / b if b else math.inf


class TransformEstimation:
    """Find the transform from the second image to the first from matched keypoints.

    ``match`` holds pairs (index in kp1, index in kp2); keypoints are in
    half-shifted coordinates.
    """

    def __init__(
        self,
        match,
        kp1,
        kp2,
        shape1: Shape2D,
        shape2: Shape2D,
        *,
        transform_type: TransformType = TransformType.HOMO,
        ransac_iterations: int = 1500,
        ransac_inlier_thres: float = 5.0,
        inlier_in_match_ratio: float = 0.1,
        inlier_in_points_ratio: float = 0.04,
        rng: random.Random | None = None,
    ) -> None:
        self.match = [(int(a), int(b)) for a, b in match]
        self.kp1 = np.asarray(kp1, dtype=float).reshape(-1, 2)
        self.kp2 = np.asarray(kp2, dtype=float).reshape(-1, 2)
        self.shape1 = shape1
        self.shape2 = shape2
        self.transform_type = transform_type
        self.ransac_iterations = ransac_iterations
        self.inlier_in_match_ratio = inlier_in_match_ratio
        self.inlier_in_points_ratio = inlier_in_points_ratio
        self._rng = rng or random.Random()
        self._thres = (shape1.w + shape1.h) * 0.5 / 800 * ransac_inlier_thres
        idx1 = [a for a, _ in self.match]
        idx2 = [b for _, b in self.match]
        self._p1 = self.kp1[idx1] if idx1 else np.zeros((0, 2))
        self._p2 = self.kp2[idx2] if idx2 else np.zeros((0, 2))

    def get_transform(self) -> MatchInfo:
        """Return the inlier matches and the transform from image 2 to image 1."""
        nr_used = (6 if self.transform_type is TransformType.AFFINE else 8) // 2 + 4
        n = len(self.match)
        if n < nr_used:
            raise TransformEstimationError("too few matches", 0.0)
        best = None
        max_inliers = -1
        for _ in range(self.ransac_iterations):
            sample = self._rng.sample(range(n), nr_used)
            transform = self._calc_transform(sample)
            if transform is None or not transform.is_healthy():
                continue
            count = len(self._get_inliers(transform))
            if count > max_inliers:
                max_inliers = count
                best = transform
        if best is None:
            raise TransformEstimationError("no healthy transform found", 0.0)
        return self._fill_inliers(self._get_inliers(best))

    def _calc_transform(self, indices) -> Homography | None:
        p1 = self._p1[list(indices)]
        p2 = self._p2[list(indices)]

        def scale_of(pts):
            sqrsum = float(np.mean(np.sum(pts * pts, axis=1)))
            return math.sqrt(2.0 / sqrsum) if sqrsum > 0 else math.inf

        s1, s2 = scale_of(p1), scale_of(p2)
        if not (math.isfinite(s1) and math.isfinite(s2)):
            return None
        solve = (
            get_affine_transform
            if self.transform_type is TransformType.AFFINE
            else get_perspective_transform
        )
        try:
            homo = solve(p1 * s1, p2 * s2)
        except np.linalg.LinAlgError:
            return None
        t1_inv = np.diag([1.0 / s1, 1.0 / s1, 1.0])
        t2 = np.diag([s2, s2, 1.0])
        return Homography(t1_inv @ homo @ t2)

    def _get_inliers(self, trans: Homography) -> np.ndarray:
        if len(self._p2) == 0:
            return np.zeros(0, dtype=int)
        homo = np.column_stack([self._p2, np.ones(len(self._p2))]) @ trans.to_matrix().T
        with np.errstate(divide="ignore", invalid="ignore"):
            pts = homo[:, :2] / homo[:, 2:3]
            dist = np.sum((pts - self._p1) ** 2, axis=1)
            return np.flatnonzero(dist < self._thres ** 2)

    def _fill_inliers(self, inliers) -> MatchInfo:
        nr = len(inliers)
        if nr < ESTIMATE_MIN_NR_MATCH:
            raise TransformEstimationError("too few inliers", -float(nr))
        homo = self._calc_transform(inliers)
        if homo is None:
            raise TransformEstimationError("degenerate inliers", -float(nr))
        try:
            inv = homo.inverse()
        except SingularMatrixError:
            raise TransformEstimationError("transform not invertible", -float(nr)) from None

        def check(overlap, matched, keypoints):
            r_m = _ratio(nr, int(np.count_nonzero(_in_polygon(overlap, matched))))
            if r_m < self.inlier_in_match_ratio:
                raise TransformEstimationError("too few inliers in overlap", -float(nr))
            r_p = _ratio(nr, int(np.count_nonzero(_in_polygon(overlap, keypoints))))
            if r_p < 0.01 or r_p > 1:
                raise TransformEstimationError("bad keypoint ratio", -float(nr))
            return r_p

        overlap = overlap_region(self.shape1, self.shape2, homo, inv)
        r1p = check(overlap, self._p1, self.kp1)
        overlap = overlap_region(self.shape2, self.shape1, inv, homo)
        r2p = check(overlap, self._p2, self.kp2)

        confidence = (r1p + r2p) * 0.5
        if confidence < self.inlier_in_points_ratio:
            raise TransformEstimationError("confidence too low", confidence)
        area = _polygon_area(overlap)
        max_area = max(self.shape1.w * self.shape1.h, self.shape2.w * self.shape2.h)
        if area / max_area < 0.15:
            raise TransformEstimationError("overlap too small", confidence)

        match = [
            (tuple(map(float, self.kp1[self.match[i][0]])), tuple(map(float, self.kp2[self.match[i][1]])))
            for i in inliers
        ]
        return MatchInfo(match=match, confidence=confidence, homo=homo)