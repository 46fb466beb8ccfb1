"""Matched keypoint pairs between two images and their transform."""

from __future__ import annotations

from dataclasses import dataclass, field

from .homography import Homography, _token_stream
from .shape import Point


def _next(it, what: str) -> str:
    try:
        return next(it)
    except StopIteration:
        raise ValueError(f"unexpected end of input while reading {what}") from None


@dataclass
class MatchInfo:
    """Inlier pairs (to, from) in half-shifted coordinates, with confidence and homography."""

    match: list[tuple[Point, Point]] = field(default_factory=list)
    confidence: float = 0.0
    homo: Homography = field(default_factory=Homography.identity)

    def reverse(self) -> None:
        """Swap the two points of every pair."""
        self.match = [(b, a) for a, b in self.match]

    def serialize(self) -> str:
        parts = [repr(float(self.confidence)), self.homo.serialize(), str(len(self.match))]
        for (x1, y1), (x2, y2) in self.match:
            parts.extend(repr(float(v)) for v in (x1, y1, x2, y2))
        return " ".join(parts)

    @staticmethod
    def deserialize(tokens) -> MatchInfo:
        """Read one record from a string or a token iterator, consuming only its tokens."""
        it = _token_stream(tokens)
        confidence = float(_next(it, "confidence"))
        homo = Homography.deserialize(it)
        count = int(_next(it, "match count"))
        if count < 0:
            raise ValueError(f"negative match count: {count}")
        match = []
        for _ in range(count):
            x1, y1, x2, y2 = (float(_next(it, "match")) for _ in range(4))
            match.append(((x1, y1), (x2, y2)))
        return MatchInfo(match=match, confidence=confidence, homo=homo)