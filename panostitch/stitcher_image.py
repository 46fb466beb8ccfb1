"""A group of connected images with their transforms, and their final blending."""

from __future__ import annotations

import logging
import math
import sys
from dataclasses import dataclass, field

import numpy as np

from .blender import BlenderBase, LinearBlender
from .homography import Homography
from .imageref import ImageRef
from .multiband import MultiBandBlender
from .projection import ProjectionMethod
from .shape import Point

log = logging.getLogger(__name__)

_CORNER_SAMPLE = 100
_MAX_EDGE = 80000
_MAX_AREA = 1e9


class StitchingError(RuntimeError):
    """Raised when the stitched result is implausible."""


@dataclass
class ProjRange:
    min: Point = (0.0, 0.0)
    max: Point = (0.0, 0.0)

    def size(self) -> Point:
        return (self.max[0] - self.min[0], self.max[1] - self.min[1])


@dataclass
class ImageComponent:
    """One image: ``homo`` maps its plane to space, ``homo_inv`` maps back."""

    imgptr: ImageRef
    homo: Homography = field(default_factory=Homography.identity)
    homo_inv: Homography = field(default_factory=Homography.identity)
    range: ProjRange = field(default_factory=ProjRange)


def _edge_samples() -> np.ndarray:
    steps = np.arange(_CORNER_SAMPLE) / _CORNER_SAMPLE - 0.5
    half = np.full(_CORNER_SAMPLE, 0.5)
    xs = np.concatenate([steps, steps, -half, half])
    ys = np.concatenate([-half, half, steps, steps])
    return np.vstack([xs, ys])


@dataclass
class ConnectedImages:
    """Connected images, their transforms and the projection used to blend them."""

    component: list[ImageComponent] = field(default_factory=list)
    identity_idx: int = 0
    proj_method: ProjectionMethod = ProjectionMethod.FLAT
    proj_range: ProjRange = field(default_factory=ProjRange)
    multiband: int = 0
    max_output_size: int = 8000
    lazy_read: bool = False
    ordered_input: bool = False

    def shift_all_homo(self) -> None:
        """Make transforms act on image coordinates instead of half-shifted ones."""
        mid = self.identity_idx
        ref = self.component[mid].imgptr
        t2 = Homography.translation(ref.width() * 0.5, ref.height() * 0.5)
        for i, comp in enumerate(self.component):
            if i == mid:
                continue
            t1 = Homography.translation(comp.imgptr.width() * 0.5, comp.imgptr.height() * 0.5)
            comp.homo = t2 @ comp.homo @ t1.inverse()

    def calc_inverse_homo(self) -> None:
        for comp in self.component:
            comp.homo_inv = comp.homo.inverse()

    def update_proj_range(self) -> None:
        """Compute the projected range of every image and of the whole panorama."""
        samples = _edge_samples()
        big = sys.float_info.max
        proj_min = [big, big]
        proj_max = [-big, -big]
        for comp in self.component:
            w, h = comp.imgptr.width(), comp.imgptr.height()
            pts = samples * np.array([[w], [h]], dtype=float)
            homo = comp.homo.trans(pts)
            px, py = (np.asarray(v, dtype=float) for v in self.proj_method.homo2proj(homo))
            now_min = [big, big]
            now_max = [-big, -big]
            for axis, vals in enumerate((px, py)):
                finite = vals[~np.isnan(vals)]
                if finite.size:
                    now_min[axis] = float(finite.min())
                    now_max[axis] = float(finite.max())
            comp.range = ProjRange(tuple(now_min), tuple(now_max))
            proj_min = [min(a, b) for a, b in zip(proj_min, now_min)]
            proj_max = [max(a, b) for a, b in zip(proj_max, now_max)]
            log.debug("Range: (%f,%f)~(%f,%f)", *now_min, *now_max)
        self.proj_range = ProjRange(tuple(proj_min), tuple(proj_max))

    def get_final_resolution(self) -> Point:
        """Projected units per output pixel along x and y."""
        log.debug("projmin: %s, projmax: %s", self.proj_range.min, self.proj_range.max)
        ref = self.component[self.identity_idx].imgptr
        refw, refh = ref.width(), ref.height()
        identity_h = self.component[self.identity_idx].homo
        corner2 = identity_h.trans((refw / 2.0, refh / 2.0))
        corner1 = identity_h.trans((-refw / 2.0, -refh / 2.0))
        p2 = self.proj_method.homo2proj(corner2)
        p1 = self.proj_method.homo2proj(corner1)
        range_x = float(p2[0] - p1[0])
        range_y = float(p2[1] - p1[1])
        log.debug("Identity projection range: %f %f", range_x, range_y)
        if self.proj_method is not ProjectionMethod.FLAT:
            if range_x < 0:
                range_x += 2 * math.pi
            if range_y < 0:
                range_y += math.pi

        res_x, res_y = range_x / refw, range_y / refh
        size_x, size_y = self.proj_range.size()
        target_x, target_y = size_x / res_x, size_y / res_y
        max_edge = max(target_x, target_y)
        log.debug("Target Image Size: (%f, %f)", target_x, target_y)
        if max_edge > _MAX_EDGE or target_x * target_y > _MAX_AREA:
            raise StitchingError("Target size too large. Looks like a stitching failure!")
        if max_edge > self.max_output_size:
            ratio = max_edge / self.max_output_size
            res_x *= ratio
            res_y *= ratio
        log.debug("Resolution: %f,%f", res_x, res_y)
        return (res_x, res_y)

    def _make_blender(self) -> BlenderBase:
        if self.multiband > 0:
            return MultiBandBlender(self.multiband)
        return LinearBlender(lazy_read=self.lazy_read, ordered_input=self.ordered_input)

    def blend(self) -> np.ndarray:
        """Project every image onto the panorama and blend them."""
        res_x, res_y = self.get_final_resolution()
        min_x, min_y = self.proj_range.min
        size_x, size_y = self.proj_range.size()
        log.debug("Final Image Size: (%d, %d)", int(size_x / res_x), int(size_y / res_y))

        def to_img_coor(v: Point) -> tuple[int, int]:
            return (int((v[0] - min_x) / res_x), int((v[1] - min_y) / res_y))

        blender = self._make_blender()
        for cur in self.component:
            blender.add_image(
                to_img_coor(cur.range.min),
                to_img_coor(cur.range.max),
                cur.imgptr,
                self._coor_func(cur, res_x, res_y),
            )
        return blender.run()

    def _coor_func(self, cur: ImageComponent, res_x: float, res_y: float):
        min_x, min_y = self.proj_range.min
        method = self.proj_method
        homo_inv = cur.homo_inv
        cx, cy = cur.imgptr.shape().center()

        def func(t) -> Point:
            c = (t[0] * res_x + min_x, t[1] * res_y + min_y)
            homo = tuple(float(v) for v in method.proj2homo(c))
            x, y, z = homo_inv.trans(homo)
            if z < 0:
                # projected to the other side of the lens
                return (-10.0, -10.0)
            denom = 1.0 / z
            return (x * denom + cx, y * denom + cy)

        return func