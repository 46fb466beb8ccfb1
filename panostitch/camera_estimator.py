"""Estimation of all camera parameters from pairwise matches."""

from __future__ import annotations

import heapq
import itertools
import logging
from collections.abc import Callable
from dataclasses import replace

from .bundle_adjuster import IncrementalBundleAdjuster
from .camera import Camera
from .homography import Homography

log = logging.getLogger(__name__)


class CameraEstimationError(RuntimeError):
    """Raised when the images do not form one connected group."""


class CameraEstimator:
    """Estimate cameras from a square table of matches; matches[i][j].homo maps j to i."""

    def __init__(
        self,
        matches,
        image_shapes,
        *,
        multipass_ba: int = 1,
        straighten: bool = True,
        lm_lambda: float = 5.0,
    ) -> None:
        if len(matches) != len(image_shapes):
            raise ValueError("matches and image shapes differ in length")
        self.matches = matches
        self.shapes = list(image_shapes)
        self.n = len(matches)
        self.multipass_ba = multipass_ba
        self.straighten = straighten
        self.lm_lambda = lm_lambda
        self.cameras = [Camera() for _ in range(self.n)]

    def estimate_focal(self) -> None:
        """Assign an initial focal length to every camera."""
        focal = Camera.estimate_focal(self.matches)
        if focal is not None and focal > 0:
            for cam in self.cameras:
                cam.focal = focal
            log.debug("Estimated focal: %f", focal)
        else:
            log.debug("Cannot estimate focal. Will use a naive one.")
            for cam, shape in zip(self.cameras, self.shapes):
                cam.focal = (shape.w + shape.h) * 0.5

    def estimate(self) -> list[Camera]:
        self.estimate_focal()
        iba = IncrementalBundleAdjuster(self.cameras, lm_lambda=self.lm_lambda)
        vst = [False] * self.n

        def init_node(node: int) -> None:
            cam = self.cameras[node]
            cam.rotation = Homography.identity()
            cam.ppx = cam.ppy = 0.0
            iba.identity_idx = node

        def add_edge(now: int, nxt: int) -> None:
            log.debug("Best edge from %d to %d", now, nxt)
            k_from = self.cameras[now].intrinsic()
            k_to = self.cameras[nxt].intrinsic()
            hinv = self.matches[now][nxt].homo
            mat = k_from.inverse() @ hinv @ k_to
            cam = self.cameras[nxt]
            cam.rotation = (self.cameras[now].rotation_inv() @ mat).transpose()
            cam.ppx = cam.ppy = 0.0

            if self.multipass_ba > 0:
                vst[now] = vst[nxt] = True
                for i in range(self.n):
                    if not vst[i] or i == nxt:
                        continue
                    m = self.matches[nxt][i]
                    if m.match and m.confidence > 0:
                        iba.add_match(i, nxt, m)
                        if self.multipass_ba == 2:
                            log.debug("MULTIPASS_BA: %d -> %d", nxt, i)
                            iba.optimize()
                if self.multipass_ba == 1:
                    iba.optimize()

        self._traverse(init_node, add_edge)

        if self.multipass_ba == 0:
            for i in range(1, self.n):
                for j in range(i):
                    m = self.matches[j][i]
                    if m.match and m.confidence > 0:
                        iba.add_match(i, j, m)
            iba.optimize()

        if self.straighten:
            Camera.straighten(self.cameras)
        return [replace(c) for c in self.cameras]

    def _traverse(
        self,
        init_node: Callable[[int], None],
        add_edge: Callable[[int, int], None],
    ) -> None:
        n = self.n
        start = None
        best_weight = 0.0
        for i in range(n):
            for j in range(i + 1, n):
                w = self.matches[i][j].confidence
                if w > best_weight:
                    best_weight = w
                    start = i
        if start is None:
            raise CameraEstimationError("No connected images are found!")
        init_node(start)

        heap: list[tuple[float, int, int, int]] = []
        counter = itertools.count()
        vst = [False] * n

        def enqueue_edges_from(src: int) -> None:
            for i in range(n):
                if i != src and not vst[i]:
                    w = self.matches[src][i].confidence
                    if w > 0:
                        heapq.heappush(heap, (-w, next(counter), src, i))

        vst[start] = True
        enqueue_edges_from(start)
        cnt = 1
        while heap:
            _, _, src, dst = heapq.heappop(heap)
            while heap and vst[dst]:
                _, _, src, dst = heapq.heappop(heap)
            if vst[dst]:
                break
            vst[dst] = True
            cnt += 1
            add_edge(src, dst)
            enqueue_edges_from(dst)

        if cnt != n:
            unconnected = " ".join(str(i) for i in range(n) if not vst[i])
            raise CameraEstimationError(
                f"Found a tree of size {cnt}!={n}, image {unconnected} are not connected well!"
            )