"""Multi-band (Laplacian pyramid) blending of warped images."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace

import numpy as np
from scipy.ndimage import gaussian_filter

from .blender import BlenderBase, Coor, CoorFunc, ImageToAdd, Range
from .camera import EPS
from .imageref import ImageRef, interpolate

log = logging.getLogger(__name__)


@dataclass
class _Level:
    """One image at one pyramid level, placed at ``range`` on the target."""

    color: np.ndarray  # h x w x 3
    weight: np.ndarray  # h x w
    range: Range
    mask: np.ndarray  # True where the pixel is invalid


class MultiBandBlender(BlenderBase):
    """Blend band by band, each band weighted by a blurred winner-takes-all map."""

    def __init__(self, band_level: int = 5) -> None:
        self.band_level = band_level
        self._to_add: list[ImageToAdd] = []
        self.target_size: Coor = (0, 0)

    def add_image(self, upper_left, bottom_right, img: ImageRef, coor_func: CoorFunc) -> None:
        ul = (int(upper_left[0]), int(upper_left[1]))
        br = (int(bottom_right[0]), int(bottom_right[1]))
        self._to_add.append(ImageToAdd(Range(ul, br), img, coor_func))
        self.target_size = (max(self.target_size[0], br[0]), max(self.target_size[1], br[1]))

    def _overlap(self, rng: Range):
        """Slices of the target and of the image covering their common pixels."""
        tx, ty = self.target_size
        r0, r1 = max(rng.min[1], 0), min(rng.max[1] + 1, ty)
        c0, c1 = max(rng.min[0], 0), min(rng.max[0] + 1, tx)
        if r0 >= r1 or c0 >= c1:
            return None
        target = (slice(r0, r1), slice(c0, c1))
        image = (
            slice(r0 - rng.min[1], r1 - rng.min[1]),
            slice(c0 - rng.min[0], c1 - rng.min[0]),
        )
        return target, image

    def _create_first_level(self) -> list[_Level]:
        levels = []
        for item in self._to_add:
            ref = item.imgref
            ref.load()
            rng = item.range
            h, w = rng.height(), rng.width()
            xs = np.empty((h, w))
            ys = np.empty((h, w))
            for i in range(h):
                for j in range(w):
                    xs[i, j], ys[i, j] = item.coor_func((j + rng.min[0], i + rng.min[1]))
            colors = np.asarray(interpolate(ref.img, ys, xs), dtype=float).reshape(h, w, 3)
            invalid = colors.min(axis=-1) < 0
            with np.errstate(invalid="ignore"):
                nx = xs / ref.width() - 0.5
                ny = ys / ref.height() - 0.5
                weight = np.maximum(0.0, (0.5 - np.abs(nx)) * (0.5 - np.abs(ny))) + EPS
            weight[invalid] = 0.0
            # black rather than -1, which would spoil the blur
            colors[invalid] = 0.0
            ref.release()
            levels.append(_Level(colors, weight, rng, invalid))
        self._to_add = []
        return levels

    def _update_weight_map(self, levels: list[_Level]) -> None:
        tx, ty = self.target_size
        best = np.zeros((ty, tx))
        owner = np.full((ty, tx), -1)
        for k, lv in enumerate(levels):
            ov = self._overlap(lv.range)
            if ov is None:
                continue
            t_sl, i_sl = ov
            w = lv.weight[i_sl]
            better = w > best[t_sl]
            best[t_sl] = np.where(better, w, best[t_sl])
            owner[t_sl] = np.where(better, k, owner[t_sl])
        for k, lv in enumerate(levels):
            ov = self._overlap(lv.range)
            if ov is None:
                continue
            t_sl, i_sl = ov
            lv.weight[i_sl] = (owner[t_sl] == k).astype(float)

    @staticmethod
    def _create_next_level(level: int, images: list[_Level], nxt: list[_Level]) -> None:
        sigma = math.sqrt(level * 2 + 1.0) * 4
        for cur, nx in zip(images, nxt):
            nx.color = gaussian_filter(cur.color, sigma=(sigma, sigma, 0))
            nx.weight = gaussian_filter(cur.weight, sigma=sigma)

    def run(self) -> np.ndarray:
        images = self._create_first_level()
        self._update_weight_map(images)
        tx, ty = self.target_size
        target = np.full((ty, tx, 3), -1.0)
        target_mask = np.zeros((ty, tx), dtype=bool)

        nxt = [replace(lv, color=lv.color.copy(), weight=lv.weight.copy()) for lv in images]
        for level in range(self.band_level):
            is_last = level == self.band_level - 1
            log.debug("Blending level %d", level)
            if not is_last:
                self._create_next_level(level, images, nxt)
            isum = np.zeros((ty, tx, 3))
            wsum = np.zeros((ty, tx))
            for cur, nx in zip(images, nxt):
                ov = self._overlap(cur.range)
                if ov is None:
                    continue
                t_sl, i_sl = ov
                w = cur.weight[i_sl]
                ww = np.where(~cur.mask[i_sl] & (w > 0), w, 0.0)
                color = cur.color[i_sl]
                if not is_last:
                    color = color - nx.color[i_sl]
                isum[t_sl] += color * ww[..., None]
                wsum[t_sl] += ww
            ok = wsum >= EPS
            value = np.zeros_like(isum)
            value[ok] = isum[ok] / wsum[ok][:, None]
            first = ok & ~target_mask
            again = ok & target_mask
            target[first] = value[first]
            target[again] += value[again]
            target_mask |= ok
            images, nxt = nxt, images

        # a weighted Laplacian pyramid may over- or undershoot slightly
        target[target_mask] = np.clip(target[target_mask], 0.0, 1.0)
        return target.astype(np.float32)