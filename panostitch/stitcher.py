"""Panorama stitching from a set of overlapping images.

Feature detection and descriptor matching are supplied by the caller:

* ``feature_detector(img)`` takes an HxWx3 float image and returns
  ``(keypoints, descriptors)``.  Keypoints are (x, y) in half-shifted
  coordinates, i.e. relative to the image centre.  ``descriptors`` may be any
  sequence the matcher understands.
* ``matcher(descriptors_i, descriptors_j)`` returns pairs
  ``(index in image i, index in image j)`` of matched features.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable, Iterable, Sequence
from dataclasses import replace
from pathlib import Path

import numpy as np

from .camera import Camera
from .camera_estimator import CameraEstimator
from .homography import Homography, _token_stream
from .imageref import ImageRef
from .match_info import MatchInfo
from .projection import ProjectionMethod
from .stitcher_image import ConnectedImages, ImageComponent, StitchingError
from .transform_estimate import (
    TransformEstimation,
    TransformEstimationError,
    TransformType,
)

log = logging.getLogger(__name__)

FeatureDetector = Callable[[np.ndarray], tuple]
Matcher = Callable[[object, object], Iterable[tuple[int, int]]]


def _as_ref(k: int, item) -> ImageRef:
    if isinstance(item, ImageRef):
        return item
    if isinstance(item, (str, Path)):
        return ImageRef(str(item))
    return ImageRef(f"image{k}", img=np.asarray(item, dtype=np.float32))


class _StitcherBase:
    """Images, their features and the bundle that holds their transforms."""

    def __init__(
        self,
        images: Sequence,
        feature_detector: FeatureDetector,
        matcher: Matcher,
        *,
        lazy_read: bool = False,
        ordered_input: bool = False,
        multiband: int = 0,
        max_output_size: int = 8000,
        ransac_iterations: int = 1500,
        ransac_inlier_thres: float = 5.0,
        inlier_in_match_ratio: float = 0.1,
        inlier_in_points_ratio: float = 0.04,
        rng: random.Random | None = None,
    ) -> None:
        self.images = [_as_ref(k, im) for k, im in enumerate(images)]
        if not self.images:
            raise ValueError("no images to stitch")
        self.feature_detector = feature_detector
        self.matcher = matcher
        self.lazy_read = lazy_read
        self.ordered_input = ordered_input
        self.ransac_iterations = ransac_iterations
        self.ransac_inlier_thres = ransac_inlier_thres
        self.inlier_in_match_ratio = inlier_in_match_ratio
        self.inlier_in_points_ratio = inlier_in_points_ratio
        self.rng = rng or random.Random()
        self.bundle = ConnectedImages(
            component=[ImageComponent(imgptr=ref) for ref in self.images],
            multiband=multiband,
            max_output_size=max_output_size,
            lazy_read=lazy_read,
            ordered_input=ordered_input,
        )
        self.descriptors: list = []
        self.keypoints: list[np.ndarray] = []

    def _calc_feature(self) -> None:
        self.descriptors = []
        self.keypoints = []
        for k, ref in enumerate(self.images):
            ref.load()
            kpts, desc = self.feature_detector(ref.img)
            if self.lazy_read:
                ref.release()
            kpts = np.asarray(kpts, dtype=float).reshape(-1, 2)
            if len(kpts) == 0:
                raise StitchingError(f"Cannot find feature in image {k}!")
            log.debug("Image %d has %d features", k, len(kpts))
            self.keypoints.append(kpts)
            self.descriptors.append(desc)

    def _free_feature(self) -> None:
        self.descriptors = []
        self.keypoints = []

    def _match(self, i: int, j: int) -> list[tuple[int, int]]:
        return [(int(a), int(b)) for a, b in self.matcher(self.descriptors[i], self.descriptors[j])]

    def _estimation(self, match, kp1, kp2, shape1, shape2, transform_type) -> TransformEstimation:
        return TransformEstimation(
            match,
            kp1,
            kp2,
            shape1,
            shape2,
            transform_type=transform_type,
            ransac_iterations=self.ransac_iterations,
            ransac_inlier_thres=self.ransac_inlier_thres,
            inlier_in_match_ratio=self.inlier_in_match_ratio,
            inlier_in_points_ratio=self.inlier_in_points_ratio,
            rng=self.rng,
        )


class Stitcher(_StitcherBase):
    """Stitch images by pairwise matching and camera estimation (or chained homographies)."""

    def __init__(
        self,
        images: Sequence,
        feature_detector: FeatureDetector,
        matcher: Matcher,
        *,
        estimate_camera: bool = True,
        trans: bool = False,
        multipass_ba: int = 1,
        straighten: bool = True,
        lm_lambda: float = 5.0,
        **options,
    ) -> None:
        super().__init__(images, feature_detector, matcher, **options)
        self.estimate_camera = estimate_camera
        self.trans = trans
        self.multipass_ba = multipass_ba
        self.straighten = straighten
        self.lm_lambda = lm_lambda
        # pairwise_matches[i][j].homo maps image j to image i, half-shifted coordinates
        self.pairwise_matches: list[list[MatchInfo]] = []

    def _reset_matches(self) -> None:
        n = len(self.images)
        self.pairwise_matches = [[MatchInfo() for _ in range(n)] for _ in range(n)]

    def build(self) -> np.ndarray:
        """Run the whole pipeline and return the panorama as an HxWx3 array."""
        self._calc_feature()
        self._reset_matches()
        if self.ordered_input:
            self._linear_pairwise_match()
        else:
            self._pairwise_match()
        self._free_feature()
        self.bundle.identity_idx = len(self.images) >> 1

        if self.estimate_camera:
            self._estimate_camera()
        else:
            self._build_linear_simple()
        self.pairwise_matches = []

        self.bundle.proj_method = (
            ProjectionMethod.SPHERICAL if self.estimate_camera else ProjectionMethod.FLAT
        )
        log.debug("Using projection method: %s", self.bundle.proj_method.name)
        self.bundle.update_proj_range()
        return self.bundle.blend()

    def _match_image(self, i: int, j: int) -> bool:
        match = self._match(i, j)
        transform_type = TransformType.AFFINE if self.trans else TransformType.HOMO
        estimation = self._estimation(
            match,
            self.keypoints[i],
            self.keypoints[j],
            self.images[i].shape(),
            self.images[j].shape(),
            transform_type,
        )
        try:
            info = estimation.get_transform()
        except TransformEstimationError as exc:
            if -int(exc.confidence) >= 8:
                log.debug(
                    "Reject bad match with %d inlier from %d to %d", -int(exc.confidence), i, j
                )
            return False
        inv = info.homo.inverse()
        inv = inv.scaled(1.0 / inv[8])
        log.debug(
            "Connection between image %d and %d, ninliers=%d/%d, conf=%f",
            i, j, len(info.match), len(match), info.confidence,
        )
        self.pairwise_matches[i][j] = info
        back = replace(info, match=list(info.match), homo=inv)
        back.reverse()
        self.pairwise_matches[j][i] = back
        return True

    def _pairwise_match(self) -> None:
        n = len(self.images)
        total = 0
        for i in range(n):
            for j in range(i + 1, n):
                if self._match_image(i, j):
                    total += len(self.pairwise_matches[i][j].match)
        log.debug("Total number of matched keypoint pairs: %d", total)

    def _linear_pairwise_match(self) -> None:
        n = len(self.images)
        for i in range(n):
            nxt = (i + 1) % n
            if not self._match_image(i, nxt):
                if i == n - 1:  # head and tail don't have to match
                    continue
                raise StitchingError(f"Image {i} and {nxt} don't match")

    def _estimate_camera(self) -> None:
        shapes = [ref.shape() for ref in self.images]
        cameras = CameraEstimator(
            self.pairwise_matches,
            shapes,
            multipass_ba=self.multipass_ba,
            straighten=self.straighten,
            lm_lambda=self.lm_lambda,
        ).estimate()
        for comp, cam in zip(self.bundle.component, cameras):
            comp.homo_inv = cam.intrinsic() @ cam.rotation
            comp.homo = cam.rotation_inv() @ cam.intrinsic().inverse()

    def _build_linear_simple(self) -> None:
        n = len(self.images)
        mid = self.bundle.identity_idx
        comp = self.bundle.component
        pm = self.pairwise_matches
        comp[mid].homo = Homography.identity()
        if mid + 1 < n:
            comp[mid + 1].homo = pm[mid][mid + 1].homo
            for k in range(mid + 2, n):
                comp[k].homo = comp[k - 1].homo @ pm[k - 1][k].homo
        if mid - 1 >= 0:
            comp[mid - 1].homo = pm[mid][mid - 1].homo
            for k in range(mid - 2, -1, -1):
                comp[k].homo = comp[k + 1].homo @ pm[k + 1][k].homo

        # the focal estimate only holds under a fixed-centre projection
        f = None
        if not self.trans:
            f = Camera.estimate_focal(pm)
        if f is None or f <= 0:
            log.debug("Cannot estimate focal. Will use a naive one.")
            ref = self.images[mid]
            f = 0.5 * (ref.width() + ref.height())
        scale = Homography([1.0 / f, 0, 0, 0, 1.0 / f, 0, 0, 0, 1])
        for c in comp:
            c.homo = scale @ c.homo
        self.bundle.calc_inverse_homo()

    def dump_matchinfo(self, path) -> None:
        """Write every match with positive confidence to a text file."""
        log.debug("Dump matchinfo to %s", path)
        with open(path, "w", encoding="utf-8") as fout:
            for i, row in enumerate(self.pairwise_matches):
                for j, m in enumerate(row):
                    if m.confidence <= 0:
                        continue
                    fout.write(f"{i} {j}\n{m.serialize()}\n")

    def load_matchinfo(self, path) -> None:
        """Read matches written by dump_matchinfo."""
        log.debug("Load matchinfo from %s", path)
        with open(path, encoding="utf-8") as fin:
            tokens = _token_stream(fin.read())
        self._reset_matches()
        n = len(self.images)
        while True:
            try:
                i = int(next(tokens))
            except StopIteration:
                break
            try:
                j = int(next(tokens))
            except StopIteration:
                raise ValueError("unexpected end of match file") from None
            if not (0 <= i < n and 0 <= j < n):
                raise ValueError(f"image index out of range: {i} {j}")
            self.pairwise_matches[i][j] = MatchInfo.deserialize(tokens)