from __future__ import annotations
from typing import Optional
import numpy as np

from .geometry import closest_points_on_triangles, random_point_on_triangles
from .utils import get_logger

_log = get_logger()

# Candidates sit exactly min_distance from their parent; allow for rounding.
_SPACING_RTOL = 1e-9


class PoissonDiskSampler:
    """Blue-noise point set on a triangle soup (Bridson-style active list).

    Candidates are drawn at exactly ``min_distance`` from an active point in a
    cone of elevation ``[-pi/4, pi/4]`` around the horizontal plane and kept
    when they lie within ``threshold_ratio * min_distance`` of the surface.
    Points therefore hug the surface without lying exactly on it; callers
    that need surface positions snap them with the closest-point query.
    Accepted points are pairwise at least ``min_distance`` apart; nothing
    else is guaranteed.
    """

    def __init__(
        self,
        min_distance: float,
        max_attempts: int = 30,
        projection_retries: int = 10,
        threshold_ratio: float = 0.1,
    ) -> None:
        if min_distance <= 0:
            raise ValueError("min_distance must be positive.")
        if max_attempts < 1 or projection_retries < 1:
            raise ValueError("max_attempts and projection_retries must be >= 1.")
        if threshold_ratio <= 0:
            raise ValueError("threshold_ratio must be positive.")
        self.min_distance = float(min_distance)
        self.max_attempts = int(max_attempts)
        self.projection_retries = int(projection_retries)
        self.threshold_ratio = float(threshold_ratio)

    @property
    def threshold(self) -> float:
        return self.threshold_ratio * self.min_distance

    def _directions(self, rng: np.random.Generator, n: int) -> np.ndarray:
        azimuth = rng.uniform(0.0, 2.0 * np.pi, n)
        elevation = rng.uniform(-np.pi / 4.0, np.pi / 4.0, n)
        ce = np.cos(elevation)
        return np.column_stack([np.cos(azimuth) * ce, np.sin(elevation), np.sin(azimuth) * ce])

    def candidates(self, tris: np.ndarray, point: np.ndarray, rng: np.random.Generator) -> list[Optional[np.ndarray]]:
        """One candidate per attempt, ``None`` where every retry missed the surface.

        Retries of an attempt are evaluated in order; the first one close
        enough to the surface wins.
        """
        n = self.max_attempts * self.projection_retries
        raw = point + self._directions(rng, n) * self.min_distance
        _, dist, _ = closest_points_on_triangles(raw, tris)
        near = (dist <= self.threshold).reshape(self.max_attempts, self.projection_retries)
        raw = raw.reshape(self.max_attempts, self.projection_retries, 3)
        first = np.argmax(near, axis=1)
        out: list[Optional[np.ndarray]] = []
        for attempt in range(self.max_attempts):
            if near[attempt, first[attempt]]:
                out.append(raw[attempt, first[attempt]])
            else:
                out.append(None)
        return out

    def sample(self, tris: np.ndarray, rng: np.random.Generator) -> np.ndarray:
        """Poisson-disk points near ``tris`` (F,3,3); returns (K,3) with K >= 1.

        Raises :class:`EmptyGeometryError` when the surface has no area.
        """
        tris = np.asarray(tris, dtype=np.float64).reshape(-1, 3, 3)
        first = random_point_on_triangles(tris, rng)
        accepted = [first]
        active = [first]
        min_sq = self.min_distance * self.min_distance * (1.0 - _SPACING_RTOL)

        while active:
            idx = int(rng.integers(len(active)))
            point = active[idx]
            placed = False
            pts = np.asarray(accepted)
            for cand in self.candidates(tris, point, rng):
                if cand is None:
                    continue
                if np.all(np.sum((pts - cand) ** 2, axis=1) >= min_sq):
                    accepted.append(cand)
                    active.append(cand)
                    placed = True
                    break
            if not placed:
                active.pop(idx)
                _log.debug("Active point %d exhausted; %d points accepted.", idx, len(accepted))
        return np.asarray(accepted)
