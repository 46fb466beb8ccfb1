"""Projections between homogeneous 3D points and 2D panorama coordinates.

Functions accept a point as three components, or a 3xN array for many points.
"""

from __future__ import annotations

from enum import Enum

import numpy as np


def _components(v, n: int):
    arr = np.asarray(v, dtype=float)
    if arr.shape[0] != n:
        raise ValueError(f"expected {n} components")
    return tuple(arr)


def flat_homo2proj(homo):
    x, y, z = _components(homo, 3)
    with np.errstate(divide="ignore", invalid="ignore"):
        return (x / z, y / z)


def flat_proj2homo(proj):
    x, y = _components(proj, 2)
    return (x, y, np.ones_like(x))


def flat_gradproj(homo, gradhomo):
    """Given a point and its derivative, return the derivative of its flat projection."""
    hx, hy, hz = _components(homo, 3)
    gx, gy, gz = _components(gradhomo, 3)
    hz_inv = 1.0 / hz
    hz_sqr_inv = 1.0 / (hz * hz)
    return (gx * hz_inv - gz * hx * hz_sqr_inv, gy * hz_inv - gz * hy * hz_sqr_inv)


def cylindrical_homo2proj(homo):
    x, y, z = _components(homo, 3)
    with np.errstate(divide="ignore", invalid="ignore"):
        return (np.arctan2(x, z), y / np.hypot(x, z))


def cylindrical_proj2homo(proj):
    x, y = _components(proj, 2)
    return (np.sin(x), y, np.cos(x))


def spherical_homo2proj(homo):
    """Spherical projection; unlike the others it is not scale invariant."""
    x, y, z = _components(homo, 3)
    return (np.arctan2(x, z), np.arctan2(y, np.hypot(x, z)))


def spherical_proj2homo(proj):
    x, y = _components(proj, 2)
    return (np.sin(x), np.tan(y), np.cos(x))


def spherical_gradproj(homo, gradhomo):
    """Given a point and its derivative, return the derivative of its spherical projection."""
    hx, hy, hz = _components(homo, 3)
    gx, gy, gz = _components(gradhomo, 3)
    h_xz = hx * hx + hz * hz
    h_xz_r = np.sqrt(h_xz)
    h_xyz_inv = 1.0 / (h_xz + hy * hy)
    h_xz_inv = 1.0 / h_xz
    return (
        gx * hz * h_xz_inv - gz * hx * h_xz_inv,
        -gx * hx * hy * h_xyz_inv / h_xz_r
        + gy * h_xz_r * h_xyz_inv
        - gz * hy * hz * h_xyz_inv / h_xz_r,
    )


class ProjectionMethod(Enum):
    FLAT = 0
    CYLINDRICAL = 1
    SPHERICAL = 2

    def homo2proj(self, homo):
        return _HOMO2PROJ[self](homo)

    def proj2homo(self, proj):
        return _PROJ2HOMO[self](proj)


_HOMO2PROJ = {
    ProjectionMethod.FLAT: flat_homo2proj,
    ProjectionMethod.CYLINDRICAL: cylindrical_homo2proj,
    ProjectionMethod.SPHERICAL: spherical_homo2proj,
}

_PROJ2HOMO = {
    ProjectionMethod.FLAT: flat_proj2homo,
    ProjectionMethod.CYLINDRICAL: cylindrical_proj2homo,
    ProjectionMethod.SPHERICAL: spherical_proj2homo,
}