"""Blending of warped images into one target image."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass

import numpy as np

from .imageref import ImageRef, interpolate

Coor = tuple[int, int]
CoorFunc = Callable[[Coor], tuple[float, float]]


@dataclass(frozen=True)
class Range:
    """A rectangle of target pixels; both ``min`` and ``max`` are inclusive (x, y)."""

    min: Coor
    max: Coor

    def contain(self, r: int, c: int) -> bool:
        return self.min[1] <= r <= self.max[1] and self.min[0] <= c <= self.max[0]

    def width(self) -> int:
        return self.max[0] - self.min[0] + 1

    def height(self) -> int:
        return self.max[1] - self.min[1] + 1

    def __str__(self) -> str:
        return f"min={self.min},max={self.max}"


@dataclass
class ImageToAdd:
    range: Range
    imgref: ImageRef
    coor_func: CoorFunc

    def map_coor(self, r: int, c: int):
        """Source coordinate (x, y) for target pixel (r, c), or None if outside the image."""
        x, y = self.coor_func((c, r))
        if x < 0 or x >= self.imgref.width() or y < 0 or y >= self.imgref.height():
            return None
        return (x, y)


class BlenderBase(ABC):
    @abstractmethod
    def add_image(self, upper_left, bottom_right, img: ImageRef, coor_func: CoorFunc) -> None:
        """Register an image covering a target range; coor_func maps target to source."""

    @abstractmethod
    def run(self) -> np.ndarray:
        """Produce the blended HxWx3 image; uncovered pixels are -1."""


class LinearBlender(BlenderBase):
    """Weighted average favouring pixels near each image's centre."""

    def __init__(self, *, lazy_read: bool = False, ordered_input: bool = False) -> None:
        self.lazy_read = lazy_read
        self.ordered_input = ordered_input
        self.images: list[ImageToAdd] = []
        self.target_size: Coor = (0, 0)

    def add_image(self, upper_left, bottom_right, img: ImageRef, coor_func: CoorFunc) -> None:
        ul = (int(upper_left[0]), int(upper_left[1]))
        br = (int(bottom_right[0]), int(bottom_right[1]))
        self.images.append(ImageToAdd(Range(ul, br), img, coor_func))
        self.target_size = (max(self.target_size[0], br[0]), max(self.target_size[1], br[1]))

    def run(self) -> np.ndarray:
        tx, ty = self.target_size
        acc = np.zeros((ty, tx, 3))
        wsum = np.zeros((ty, tx))
        end = 0 if self.lazy_read else 1
        for item in self.images:
            ref = item.imgref
            ref.load()
            data = ref.img
            width, height = ref.width(), ref.height()
            rng = item.range
            rows = range(max(rng.min[1], 0), min(rng.max[1] + end, ty))
            cols = range(max(rng.min[0], 0), min(rng.max[0] + end, tx))
            for i in rows:
                for j in cols:
                    coor = item.map_coor(i, j)
                    if coor is None:
                        continue
                    c, r = coor
                    color = interpolate(data, r, c)
                    if color[0] < 0:
                        continue
                    w = 0.5 - abs(c / width - 0.5)
                    if not self.ordered_input:
                        w *= 0.5 - abs(r / height - 0.5)
                    acc[i, j] += color * w
                    wsum[i, j] += w
            if self.lazy_read:
                ref.release()
        out = np.full((ty, tx, 3), -1.0)
        mask = wsum > 0
        out[mask] = acc[mask] / wsum[mask][:, None]
        return out.astype(np.float32)