"""Stitching of an ordered sequence of images pre-warped onto a cylinder."""

from __future__ import annotations

import logging
import math

import numpy as np

from .blender import LinearBlender
from .homography import Homography
from .imageref import ImageRef
from .projection import ProjectionMethod
from .stitcher import _StitcherBase
from .stitcher_image import StitchingError
from .transform_estimate import (
    TransformEstimationError,
    TransformType,
    get_perspective_transform,
)
from .warp import CylinderWarper

log = logging.getLogger(__name__)


class CylinderStitcher(_StitcherBase):
    """Warp every image to a cylinder, chain affine transforms, then correct perspective."""

    def __init__(
        self,
        images,
        feature_detector,
        matcher,
        *,
        focal_length: float = 37.0,
        slope_plain: float = 8e-3,
        **options,
    ) -> None:
        super().__init__(images, feature_detector, matcher, **options)
        self.focal_length = focal_length
        self.slope_plain = slope_plain

    def build(self) -> np.ndarray:
        """Run the pipeline and return the panorama as an HxWx3 array."""
        self._calc_feature()
        self.bundle.identity_idx = len(self.images) >> 1
        self._build_warp()
        self._free_feature()
        self.bundle.proj_method = ProjectionMethod.FLAT
        self.bundle.update_proj_range()
        return self._perspective_correction(self.bundle.blend())

    def _build_warp(self) -> None:
        n = len(self.images)
        mid = self.bundle.identity_idx
        comp = self.bundle.component
        for c in comp:
            c.homo = Homography.identity()

        matches = [self._match(k, k + 1) for k in range(n - 1)]

        best_factor = 1.0
        best_mats: list[Homography] = []
        if n - mid > 1:
            min_slope = math.inf

            def attempt(factor: float) -> float:
                nonlocal min_slope, best_factor, best_mats
                result = self._update_h_factor(factor, matches)
                if result is None:
                    return 0.0
                slope, mats = result
                if abs(slope) < min_slope:
                    min_slope = abs(slope)
                    best_factor = factor
                    best_mats = mats
                return slope

            factor = 1.0
            slope = attempt(factor)
            if not best_mats:
                raise StitchingError("Failed to find hfactor")
            order = 1.0 if best_mats[0].trans2d((0.0, 0.0))[0] > 0 else -1.0
            for k in range(3):
                if abs(slope) < self.slope_plain:
                    break
                factor += (order if slope < 0 else -order) / (5 * 2 ** k)
                slope = attempt(factor)
        log.debug("Best hfactor: %f", best_factor)

        warper = CylinderWarper(best_factor, self.focal_length)
        for k, ref in enumerate(self.images):
            ref.load()
            img, pts = warper.warp_image(ref.img, self.keypoints[k])
            warped = ImageRef(ref.fname, img=img)
            self.images[k] = warped
            comp[k].imgptr = warped
            self.keypoints[k] = np.asarray(pts, dtype=float).reshape(-1, 2)

        for k in range(mid + 1, n):
            comp[k].homo = best_mats[k - mid - 1]
        for i in range(mid - 1, -1, -1):
            reversed_match = [(b, a) for a, b in matches[i]]
            estimation = self._estimation(
                reversed_match,
                self.keypoints[i + 1],
                self.keypoints[i],
                self.images[i + 1].shape(),
                self.images[i].shape(),
                TransformType.AFFINE,
            )
            try:
                info = estimation.get_transform()
            except TransformEstimationError:
                raise StitchingError(f"Failed to match between image {i} and {i + 1}.") from None
            comp[i].homo = info.homo
        for i in range(mid - 2, -1, -1):
            comp[i].homo = comp[i + 1].homo @ comp[i].homo
        self.bundle.calc_inverse_homo()

    def _update_h_factor(self, factor: float, matches):
        """Chain transforms of the images right of the centre for one warp factor.

        Returns (slope, transforms) or None when some pair fails to match.
        """
        n = len(self.images)
        mid = self.bundle.identity_idx
        warper = CylinderWarper(factor, self.focal_length)
        shapes, kpts = [], []
        for k in range(mid, n):
            shape, pts = warper.warp_shape(self.images[k].shape(), self.keypoints[k])
            shapes.append(shape)
            kpts.append(np.asarray(pts, dtype=float).reshape(-1, 2))

        mats: list[Homography] = []
        for k in range(1, len(shapes)):
            estimation = self._estimation(
                matches[k - 1 + mid], kpts[k - 1], kpts[k], shapes[k - 1], shapes[k],
                TransformType.AFFINE,
            )
            try:
                mats.append(estimation.get_transform().homo)
            except TransformEstimationError:
                return None
        for k in range(1, len(mats)):
            mats[k] = mats[k - 1] @ mats[k]

        cx, cy = mats[-1].trans2d((0.0, 0.0))
        with np.errstate(divide="ignore", invalid="ignore"):
            slope = float(np.float64(cy) / np.float64(cx))
        log.debug("slope: %f", slope)
        return slope, mats

    def _perspective_correction(self, img) -> np.ndarray:
        img = np.asarray(img, dtype=np.float32)
        h, w = img.shape[:2]
        ref = self.images[self.bundle.identity_idx]
        refw, refh = ref.width(), ref.height()
        method = self.bundle.proj_method
        min_x, min_y = self.bundle.proj_range.min

        def to_ref_coor(comp, vx: float, vy: float):
            x = vx * comp.imgptr.width()
            y = vy * comp.imgptr.height()
            hx, hy, hz = comp.homo.trans((x, y))
            px, py = method.homo2proj((hx / refw, hy / refh, hz))
            return (float(px) * refw - min_x, float(py) * refh - min_y)

        front, back = self.bundle.component[0], self.bundle.component[-1]
        corners = [
            to_ref_coor(front, -0.5, -0.5),
            to_ref_coor(front, -0.5, 0.5),
            to_ref_coor(back, 0.5, -0.5),
            to_ref_coor(back, 0.5, 0.5),
        ]
        # stretch the four corners to a rectangle
        corners_std = [(0, 0), (0, h), (w, 0), (w, h)]
        inv = Homography(get_perspective_transform(corners, corners_std))

        blender = LinearBlender(lazy_read=self.lazy_read, ordered_input=self.ordered_input)
        tmp = ImageRef("this_should_not_be_used", img=img)
        blender.add_image(
            (0, 0), (w, h), tmp, lambda c: inv.trans2d((float(c[0]), float(c[1])))
        )
        return blender.run()