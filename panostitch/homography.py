"""3x3 projective transforms and overlap computation between images."""

from __future__ import annotations

import math
from collections.abc import Iterable, Iterator

import numpy as np

from .shape import Point, Shape2D

_MAX_PERSPECTIVE = 2e-3
_NR_POINT_ON_EDGE = 100


class SingularMatrixError(ValueError):
    """Raised when a homography cannot be inverted."""


def _token_stream(tokens: str | Iterable[str]) -> Iterator[str]:
    if isinstance(tokens, str):
        return iter(tokens.split())
    return iter(tokens)


class Homography:
    """An immutable 3x3 matrix acting on homogeneous 2D points."""

    __slots__ = ("_m",)

    def __init__(self, values) -> None:
        if isinstance(values, Homography):
            values = values._m
        m = np.array(values, dtype=float)
        if m.size != 9:
            raise ValueError(f"a homography needs 9 values, got {m.size}")
        m = m.reshape(3, 3)
        m.flags.writeable = False
        self._m = m

    @staticmethod
    def identity() -> Homography:
        return Homography(np.eye(3))

    @staticmethod
    def translation(dx: float, dy: float) -> Homography:
        return Homography([1, 0, dx, 0, 1, dy, 0, 0, 1])

    @property
    def data(self) -> tuple[float, ...]:
        """The nine entries in row-major order."""
        return tuple(float(v) for v in self._m.flat)

    def transpose(self) -> Homography:
        return Homography(self._m.T)

    def inverse(self) -> Homography:
        """Return the inverse, raising SingularMatrixError if there is none."""
        if not np.all(np.isfinite(self._m)):
            raise SingularMatrixError("homography has non-finite entries")
        try:
            if np.linalg.matrix_rank(self._m) < 3:
                raise SingularMatrixError("homography is not invertible")
            return Homography(np.linalg.inv(self._m))
        except np.linalg.LinAlgError as exc:
            raise SingularMatrixError("homography is not invertible") from exc

    def __matmul__(self, other):
        if not isinstance(other, Homography):
            return NotImplemented
        return Homography(self._m @ other._m)

    def __add__(self, other):
        if not isinstance(other, Homography):
            return NotImplemented
        return Homography(self._m + other._m)

    def __getitem__(self, idx: int) -> float:
        return float(self._m.reshape(-1)[idx])

    def __iter__(self):
        return iter(self.data)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Homography):
            return NotImplemented
        return bool(np.array_equal(self._m, other._m))

    __hash__ = None

    def scaled(self, factor: float) -> Homography:
        return Homography(self._m * factor)

    def trans(self, point):
        """Apply to a 2D or homogeneous 3D point; a 2xN or 3xN array maps column-wise."""
        p = np.asarray(point, dtype=float)
        if p.shape[0] == 2:
            p = np.concatenate([p, np.ones_like(p[:1])])
        elif p.shape[0] != 3:
            raise ValueError("point must have 2 or 3 components")
        res = self._m @ p
        if res.ndim == 1:
            return tuple(float(v) for v in res)
        return res

    def trans2d(self, point):
        """Apply and divide by the homogeneous coordinate."""
        res = np.asarray(self.trans(point), dtype=float)
        with np.errstate(divide="ignore", invalid="ignore"):
            denom = 1.0 / res[2]
            x, y = res[0] * denom, res[1] * denom
        if np.ndim(x) == 0:
            return (float(x), float(y))
        return np.vstack([x, y])

    def normalized(self) -> Homography:
        """Scale so that the Frobenius norm becomes 9."""
        fac = 9 / math.sqrt(float(np.sum(self._m * self._m)))
        return Homography(self._m * fac)

    def is_healthy(self) -> bool:
        """Reject transforms with strong perspective or that flip the image."""
        m = self.data
        if abs(m[6]) > _MAX_PERSPECTIVE or abs(m[7]) > _MAX_PERSPECTIVE:
            return False
        x0 = (m[2], m[5], m[8])
        x1 = (m[1] + m[2], m[4] + m[5], m[7] + m[8])
        if x1[1] <= x0[1]:
            return False
        x2 = (m[0] + m[1] + m[2], m[3] + m[4] + m[5], m[6] + m[7] + m[8])
        return x2[0] > x1[0]

    def to_matrix(self) -> np.ndarray:
        return np.array(self._m)

    def serialize(self) -> str:
        return " ".join(repr(v) for v in self.data)

    @staticmethod
    def deserialize(tokens) -> Homography:
        """Read nine numbers from a string or a token iterator, consuming only those."""
        it = _token_stream(tokens)
        values = []
        for _ in range(9):
            try:
                values.append(float(next(it)))
            except StopIteration:
                raise ValueError("not enough values for a homography") from None
        return Homography(values)

    def __repr__(self) -> str:
        return f"Homography({list(self.data)!r})"

    def __str__(self) -> str:
        rows = ("{:g} {:g} {:g}".format(*row) for row in self._m)
        return "[" + "; ".join(rows) + "]"


def _convex_hull(points: Iterable[Point]) -> list[Point]:
    pts = sorted(set(points))
    if len(pts) <= 2:
        return pts

    def cross(o, a, b):
        return (a[0] - o[0]) * (b[1] - o[1]) - (a[1] - o[1]) * (b[0] - o[0])

    def half(seq):
        chain: list[Point] = []
        for p in seq:
            while len(chain) >= 2 and cross(chain[-2], chain[-1], p) <= 0:
                chain.pop()
            chain.append(p)
        return chain

    lower = half(pts)
    upper = half(reversed(pts))
    return lower[:-1] + upper[:-1]


def overlap_region(shape1: Shape2D, shape2: Shape2D, homo, inv: Homography) -> list[Point]:
    """Polygon, in half-shifted coordinates of image 1, where image 2 overlaps it.

    ``homo`` maps image 2 to image 1 and ``inv`` is its inverse.  Sampled edge
    points are used rather than corners so that distorted transforms still work.
    """
    h = homo.to_matrix() if isinstance(homo, Homography) else np.asarray(homo, dtype=float)
    n = _NR_POINT_ON_EDGE
    hw, hh = shape2.halfw(), shape2.halfh()
    steps = np.arange(n)
    xs = -hw + steps * (shape2.w / n)
    ys = -hh + steps * (shape2.h / n)
    px = np.concatenate([xs, xs, np.full(n, -hw), np.full(n, hw)])
    py = np.concatenate([np.full(n, -hh), np.full(n, hh), ys, ys])
    transformed = h @ np.vstack([px, py, np.ones_like(px)])
    with np.errstate(divide="ignore", invalid="ignore"):
        denom = 1.0 / transformed[2]
        x = transformed[0] * denom
        y = transformed[1] * denom
    w1, h1 = shape1.halfw(), shape1.halfh()
    inside = (x >= -w1) & (x < w1) & (y >= -h1) & (y < h1)
    candidates: list[Point] = list(zip(x[inside].tolist(), y[inside].tolist()))

    for corner in shape1.shifted_corner():
        if shape2.shifted_in(inv.trans2d(corner)):
            candidates.append(corner)
    return _convex_hull(candidates)