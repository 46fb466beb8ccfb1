"""Cylindrical warping of images and keypoints."""

from __future__ import annotations

import math

import numpy as np

from .imageref import interpolate
from .shape import Shape2D


class CylinderProject:
    """Projection of an image plane onto a cylinder of radius ``r``."""

    def __init__(self, r: int, center, sizefactor: int) -> None:
        self.r = int(r)
        self.center = tuple(float(v) for v in center)
        self.sizefactor = int(sizefactor)

    def _proj(self, x, y):
        dx = x - self.center[0]
        return np.arctan(dx / self.r), (y - self.center[1]) / np.hypot(dx, self.r)

    def _proj_r(self, x, y):
        return (
            self.r * np.tan(x) + self.center[0],
            y * self.r / np.cos(x) + self.center[1],
        )

    def project_shape(self, shape: Shape2D, pts):
        """Project keypoints given the image shape.

        Returns (new shape, projected keypoints, image offset).
        """
        jj, ii = np.meshgrid(np.arange(shape.w, dtype=float), np.arange(shape.h, dtype=float))
        px, py = self._proj(jj, ii)
        min_x = float(px.min()) if px.size else math.inf
        min_y = float(py.min()) if py.size else math.inf
        max_x = max(0.0, float(px.max())) if px.size else 0.0
        max_y = max(0.0, float(py.max())) if py.size else 0.0
        sf = self.sizefactor
        min_x, min_y, max_x, max_y = min_x * sf, min_y * sf, max_x * sf, max_y * sf
        offset = (-min_x, -min_y)
        size_x, size_y = int(max_x - min_x), int(max_y - min_y)

        new_pts = []
        for fx, fy in pts:
            x, y = self._proj(fx + shape.w // 2, fy + shape.h // 2)
            new_pts.append((
                float(x) * sf + offset[0] - size_x // 2,
                float(y) * sf + offset[1] - size_y // 2,
            ))
        return Shape2D(size_x, size_y), new_pts, offset

    def project_image(self, img, pts):
        """Project an image with its keypoints; returns (image, keypoints)."""
        img = np.asarray(img)
        shape = Shape2D(img.shape[1], img.shape[0])
        new_shape, new_pts, offset = self.project_shape(shape, pts)
        jj, ii = np.meshgrid(np.arange(new_shape.w, dtype=float), np.arange(new_shape.h, dtype=float))
        inv = 1.0 / self.sizefactor
        with np.errstate(all="ignore"):
            ox, oy = self._proj_r((jj - offset[0]) * inv, (ii - offset[1]) * inv)
        out = interpolate(img, oy, ox).astype(np.float32)
        return out.reshape(new_shape.h, new_shape.w, 3), new_pts


class CylinderWarper:
    """Warp images onto a cylinder whose centre height is scaled by ``h_factor``."""

    def __init__(self, h_factor: float, focal_length: float = 37.0) -> None:
        self.h_factor = h_factor
        self.focal_length = focal_length

    def _projector(self, w: int, h: int) -> CylinderProject:
        # 43.266 is the diagonal of a 36x24 frame
        r = int(math.hypot(w, h) * (self.focal_length / 43.266))
        return CylinderProject(r, (w // 2, h // 2 * self.h_factor, r), r)

    def warp_image(self, img, kpts):
        img = np.asarray(img)
        return self._projector(img.shape[1], img.shape[0]).project_image(img, kpts)

    def warp_shape(self, shape: Shape2D, kpts):
        new_shape, new_pts, _ = self._projector(shape.w, shape.h).project_shape(shape, kpts)
        return new_shape, new_pts