"""Image shapes and the half-shifted coordinate frame."""

from __future__ import annotations

from dataclasses import dataclass

Point = tuple[float, float]


@dataclass(frozen=True)
class Shape2D:
    """Width and height of an image, in pixels."""

    w: int
    h: int

    def halfw(self) -> float:
        return self.w * 0.5

    def halfh(self) -> float:
        return self.h * 0.5

    def center(self) -> Point:
        return (self.halfw(), self.halfh())

    def shifted_corner(self) -> list[Point]:
        """Corners in [-w/2, w/2] coordinates: top-left, top-right, bottom-left, bottom-right."""
        hw, hh = self.halfw(), self.halfh()
        return [(-hw, -hh), (hw, -hh), (-hw, hh), (hw, hh)]

    def shifted_in(self, p) -> bool:
        """Whether a point in half-shifted coordinates lies inside the shape."""
        x, y = p
        hw, hh = self.halfw(), self.halfh()
        return -hw <= x < hw and -hh <= y < hh

    def __str__(self) -> str:
        return f"w={self.w},h={self.h}"