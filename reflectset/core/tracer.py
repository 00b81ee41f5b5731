"""Reflective ray tracing against a scene and a bounded detector plane.

All rays of a sweep advance together: each loop iteration casts every ray
that is still travelling, reflects the ones that hit the scene and resolves
the ones that escaped. Rays never interact, so the aggregate does not depend
on evaluation order.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from enum import IntEnum
from typing import List
import numpy as np

from .detector import DetectorPlane
from .intersector import RayBundle, SceneQuery
from .utils import ensure_unit_vectors, get_logger, orthonormal_basis

_log = get_logger()


class RayStatus(IntEnum):
    TRAVELING = 0
    HIT = 1
    MISS = 2


@dataclass
class LightSource:
    """Square emitter of parallel rays; ``area_size`` is the side length."""
    position: np.ndarray = field(default_factory=lambda: np.array([0.0, 7.0, 0.0]))
    direction: np.ndarray = field(default_factory=lambda: np.array([0.0, -1.0, 0.0]))
    area_size: float = 2.0

    def __post_init__(self) -> None:
        self.position = np.asarray(self.position, dtype=np.float64).reshape(3)
        self.direction = ensure_unit_vectors(np.asarray(self.direction, dtype=np.float64).reshape(3))
        if self.area_size < 0:
            raise ValueError("area_size must be non-negative.")


def _grid_offsets(extent: float, n: int) -> np.ndarray:
    if n == 1:
        return np.zeros(1)
    return np.linspace(-extent / 2.0, extent / 2.0, n)


@dataclass
class RaySweep:
    origins: np.ndarray     # (n*n, 3)
    directions: np.ndarray  # (n*n, 3)

    def __len__(self) -> int:
        return len(self.origins)

    @staticmethod
    def from_light_source(light: LightSource, rays_per_axis: int) -> "RaySweep":
        """n x n grid over the emitter square; a single ray starts at its centre."""
        if rays_per_axis < 1:
            raise ValueError("rays_per_axis must be >= 1.")
        u, v = orthonormal_basis(light.direction)
        a = _grid_offsets(light.area_size, rays_per_axis)
        ii, jj = np.meshgrid(a, a, indexing="ij")
        origins = light.position + ii.reshape(-1, 1) * u + jj.reshape(-1, 1) * v
        directions = np.tile(light.direction, (len(origins), 1))
        return RaySweep(origins=origins, directions=directions)

    @staticmethod
    def from_detector(detector: DetectorPlane, rays_per_axis: int) -> "RaySweep":
        """n x n grid over the detector footprint, shooting along its forward normal."""
        if rays_per_axis < 1:
            raise ValueError("rays_per_axis must be >= 1.")
        xs = _grid_offsets(2.0 * detector.half_width, rays_per_axis)
        ys = _grid_offsets(2.0 * detector.half_height, rays_per_axis)
        ii, jj = np.meshgrid(xs, ys, indexing="ij")
        local = np.column_stack([ii.ravel(), jj.ravel(), np.zeros(ii.size)])
        origins = detector.to_world(local)
        directions = np.tile(detector.normal, (len(origins), 1))
        return RaySweep(origins=origins, directions=directions)


@dataclass
class RayState:
    origins: np.ndarray
    directions: np.ndarray
    reflections: np.ndarray
    status: np.ndarray

    @staticmethod
    def start(origins: np.ndarray, directions: np.ndarray) -> "RayState":
        o = np.array(origins, dtype=np.float64).reshape(-1, 3)
        d = ensure_unit_vectors(np.array(directions, dtype=np.float64).reshape(-1, 3))
        return RayState(
            origins=o,
            directions=d,
            reflections=np.zeros(len(o), dtype=np.int64),
            status=np.full(len(o), RayStatus.TRAVELING, dtype=np.int8),
        )


@dataclass
class SweepResult:
    hit: np.ndarray           # (N,) bool
    hit_points: np.ndarray    # (N, 3), zero for misses
    pixels: np.ndarray        # (N, 2) detector raster coords, -1 for misses
    reflections: np.ndarray   # (N,)
    segments: List[np.ndarray] = field(default_factory=list)  # per-ray polyline vertices

    @property
    def total(self) -> int:
        return int(len(self.hit))

    @property
    def hits(self) -> int:
        return int(np.count_nonzero(self.hit))

    @property
    def percentage(self) -> float:
        if self.total == 0:
            return 0.0
        return self.hits / self.total * 100.0


def reflect(directions: np.ndarray, normals: np.ndarray) -> np.ndarray:
    """Mirror ``directions`` about ``normals`` and renormalise."""
    d = np.asarray(directions, dtype=np.float64)
    n = np.asarray(normals, dtype=np.float64)
    r = d - 2.0 * np.sum(d * n, axis=-1, keepdims=True) * n
    return ensure_unit_vectors(r)


class ReflectiveTracer:
    """Bounce rays off the scene until they reach the detector or give up.

    Per travelling ray and iteration:
      * scene hit with a usable normal: reflect, step ``epsilon`` off the
        surface, count the bounce, then test the bounded detector along the
        new direction;
      * scene hit with a zero normal: miss;
      * no scene hit: the ray escapes and hits only if its current line
        crosses the detector ahead of it.
    Rays whose bounce count exceeds ``max_reflections`` are forced to miss.
    """

    def __init__(
        self,
        scene_query: SceneQuery,
        detector: DetectorPlane,
        max_reflections: int = 5,
        epsilon: float = 1e-4,
        record_segments: bool = True,
        escape_length: float = 100.0,
    ) -> None:
        if max_reflections < 0:
            raise ValueError("max_reflections must be >= 0.")
        if epsilon <= 0:
            raise ValueError("epsilon must be positive.")
        self.scene_query = scene_query
        self.detector = detector
        self.max_reflections = int(max_reflections)
        self.epsilon = float(epsilon)
        self.record_segments = record_segments
        self.escape_length = float(escape_length)

    def sweep(self, sweep: RaySweep) -> SweepResult:
        return self.trace(sweep.origins, sweep.directions)

    def trace(self, origins: np.ndarray, directions: np.ndarray) -> SweepResult:
        state = RayState.start(origins, directions)
        n = len(state.origins)
        hit_points = np.zeros((n, 3), dtype=np.float64)
        local_xy = np.zeros((n, 2), dtype=np.float64)
        paths: List[List[np.ndarray]] = [[o.copy()] for o in state.origins] if self.record_segments else []

        while True:
            active = np.nonzero(
                (state.status == RayStatus.TRAVELING) & (state.reflections <= self.max_reflections)
            )[0]
            if len(active) == 0:
                break
            hits = self.scene_query.cast(RayBundle(state.origins[active], state.directions[active]))

            escaped = active[~hits.mask]
            if len(escaped):
                self._resolve_escaped(state, escaped, hit_points, local_xy, paths)

            bounced = active[hits.mask]
            if len(bounced):
                self._bounce(
                    state, bounced, hits.points[hits.mask], hits.normals[hits.mask], hit_points, local_xy, paths
                )

        forced = state.status == RayStatus.TRAVELING
        if np.any(forced):
            _log.debug("%d rays exceeded %d reflections.", int(forced.sum()), self.max_reflections)
            state.status[forced] = RayStatus.MISS

        hit = state.status == RayStatus.HIT
        pixels = np.full((n, 2), -1, dtype=np.int64)
        if np.any(hit):
            pixels[hit] = self.detector.pixel_of(local_xy[hit])
        segments = [np.asarray(p) for p in paths]
        return SweepResult(
            hit=hit,
            hit_points=hit_points,
            pixels=pixels,
            reflections=state.reflections,
            segments=segments,
        )

    def _resolve_escaped(
        self,
        state: RayState,
        rows: np.ndarray,
        hit_points: np.ndarray,
        local_xy: np.ndarray,
        paths: List[List[np.ndarray]],
    ) -> None:
        o = state.origins[rows]
        d = state.directions[rows]
        mask, points, lxy = self.detector.intersect(o, d, plane_tolerance=np.inf, min_distance=self.epsilon)
        state.status[rows] = np.where(mask, RayStatus.HIT, RayStatus.MISS)
        hit_points[rows[mask]] = points[mask]
        local_xy[rows[mask]] = lxy[mask]
        if self.record_segments:
            ends = np.where(mask[:, None], points, o + d * self.escape_length)
            for i, end in zip(rows, ends):
                paths[i].append(end)

    def _bounce(
        self,
        state: RayState,
        rows: np.ndarray,
        points: np.ndarray,
        normals: np.ndarray,
        hit_points: np.ndarray,
        local_xy: np.ndarray,
        paths: List[List[np.ndarray]],
    ) -> None:
        if self.record_segments:
            for i, p in zip(rows, points):
                paths[i].append(p.copy())

        degenerate = ~np.any(normals, axis=1)
        if np.any(degenerate):
            _log.debug("Zero collision normal on %d rays; reflection impossible.", int(degenerate.sum()))
            state.status[rows[degenerate]] = RayStatus.MISS
        rows = rows[~degenerate]
        if len(rows) == 0:
            return
        points = points[~degenerate]
        new_dirs = reflect(state.directions[rows], normals[~degenerate])
        new_origins = points + self.epsilon * new_dirs
        state.directions[rows] = new_dirs
        state.origins[rows] = new_origins
        state.reflections[rows] += 1

        # past the limit: stay TRAVELING until the forced miss
        within = state.reflections[rows] <= self.max_reflections
        rows, new_origins, new_dirs = rows[within], new_origins[within], new_dirs[within]
        mask, det_points, lxy = self.detector.intersect(new_origins, new_dirs)
        state.status[rows[mask]] = RayStatus.HIT
        hit_points[rows[mask]] = det_points[mask]
        local_xy[rows[mask]] = lxy[mask]
        if self.record_segments:
            for i, p in zip(rows[mask], det_points[mask]):
                paths[i].append(p)
