"""Lazily loaded images and bilinear sampling."""

from __future__ import annotations

import numpy as np
from PIL import Image

from .shape import Shape2D

NO_COLOR = -1.0


def read_image(path) -> np.ndarray:
    """Read an image file as an HxWx3 float32 array with values in [0, 1]."""
    with Image.open(path) as im:
        rgb = im.convert("RGB")
        return np.asarray(rgb, dtype=np.float32) / 255.0


def interpolate(img, r, c) -> np.ndarray:
    """Bilinear sample of ``img`` at row ``r`` and column ``c``.

    ``r`` and ``c`` may be scalars or arrays of the same shape.  Points outside
    the image give the colour (-1, -1, -1).
    """
    img = np.asarray(img)
    h, w = img.shape[:2]
    r = np.asarray(r, dtype=float)
    c = np.asarray(c, dtype=float)
    valid = (r >= 0) & (c >= 0) & (r < h) & (c < w)
    rr = np.where(valid, r, 0.0)
    cc = np.where(valid, c, 0.0)
    r0 = np.floor(rr).astype(int)
    c0 = np.floor(cc).astype(int)
    r1 = np.minimum(r0 + 1, h - 1)
    c1 = np.minimum(c0 + 1, w - 1)
    fr = (rr - r0)[..., None]
    fc = (cc - c0)[..., None]
    out = (
        img[r0, c0] * (1 - fr) * (1 - fc)
        + img[r0, c1] * (1 - fr) * fc
        + img[r1, c0] * fr * (1 - fc)
        + img[r1, c1] * fr * fc
    )
    return np.where(valid[..., None], out, NO_COLOR)


class ImageRef:
    """A reference to an image file that is read on demand."""

    def __init__(self, fname: str, img: np.ndarray | None = None) -> None:
        self.fname = fname
        self.img: np.ndarray | None = None
        self._width = 0
        self._height = 0
        if img is not None:
            self._set(np.asarray(img, dtype=np.float32))

    def _set(self, img: np.ndarray) -> None:
        self.img = img
        self._height, self._width = img.shape[:2]

    def load(self) -> None:
        if self.img is None:
            self._set(read_image(self.fname))

    def release(self) -> None:
        self.img = None

    def width(self) -> int:
        return self._width

    def height(self) -> int:
        return self._height

    def shape(self) -> Shape2D:
        return Shape2D(self._width, self._height)