from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple
import numpy as np

from .utils import euler_to_matrix, get_logger

_log = get_logger()

# Rays nearly parallel to the detector plane never reach it.
PARALLEL_EPS = 1e-6


@dataclass
class DetectorPlane:
    """Bounded rectangular detector.

    ``rotation`` columns are the detector's local X, Y and Z axes in world
    space; local +Z is the forward normal. The active area spans
    ``[-half_width, half_width] x [-half_height, half_height]`` in local XY.
    """
    position: np.ndarray = field(default_factory=lambda: np.array([0.0, 7.76, 0.0]))
    rotation: np.ndarray = field(default_factory=lambda: np.eye(3))
    half_width: float = 2.0
    half_height: float = 2.0
    plane_tolerance: float = 0.01
    resolution: int = 15

    def __post_init__(self) -> None:
        self.position = np.asarray(self.position, dtype=np.float64).reshape(3)
        self.rotation = np.asarray(self.rotation, dtype=np.float64).reshape(3, 3)
        if self.half_width <= 0 or self.half_height <= 0:
            raise ValueError("Detector half extents must be positive.")
        if self.resolution < 1:
            raise ValueError("Detector resolution must be >= 1.")

    @staticmethod
    def horizontal(
        height: float = 7.76,
        size: float = 4.0,
        resolution: int = 15,
        plane_tolerance: float = 0.01,
    ) -> "DetectorPlane":
        """Square detector centred above the origin, facing down (-Y)."""
        rotation = np.column_stack([[1.0, 0.0, 0.0], [0.0, 0.0, 1.0], [0.0, -1.0, 0.0]])
        return DetectorPlane(
            position=np.array([0.0, height, 0.0]),
            rotation=rotation,
            half_width=size / 2.0,
            half_height=size / 2.0,
            plane_tolerance=plane_tolerance,
            resolution=resolution,
        )

    @staticmethod
    def mounted(
        position: Tuple[float, float, float],
        euler_deg: Tuple[float, float, float],
        width: float,
        height: float,
        resolution: int = 15,
        plane_tolerance: float = 0.01,
    ) -> "DetectorPlane":
        return DetectorPlane(
            position=np.asarray(position, dtype=np.float64),
            rotation=euler_to_matrix(euler_deg),
            half_width=width / 2.0,
            half_height=height / 2.0,
            plane_tolerance=plane_tolerance,
            resolution=resolution,
        )

    @property
    def normal(self) -> np.ndarray:
        return self.rotation[:, 2]

    @property
    def size(self) -> Tuple[float, float]:
        return 2.0 * self.half_width, 2.0 * self.half_height

    def to_local(self, points: np.ndarray) -> np.ndarray:
        return (np.asarray(points, dtype=np.float64) - self.position) @ self.rotation

    def to_world(self, local: np.ndarray) -> np.ndarray:
        return np.asarray(local, dtype=np.float64) @ self.rotation.T + self.position

    def intersect(
        self,
        origins: np.ndarray,
        directions: np.ndarray,
        plane_tolerance: Optional[float] = None,
        min_distance: float = 0.0,
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Bounded ray/detector test.

        Crossings closer than ``min_distance`` along the ray are rejected.
        Returns ``(mask (N,), world points (N,3), local xy (N,2))``. Rows that
        miss hold zeros. A local coordinate exactly on the boundary counts
        as a hit.
        """
        tol = self.plane_tolerance if plane_tolerance is None else float(plane_tolerance)
        o = np.asarray(origins, dtype=np.float64).reshape(-1, 3)
        d = np.asarray(directions, dtype=np.float64).reshape(-1, 3)
        n = self.normal

        denom = d @ n
        facing = np.abs(denom) >= PARALLEL_EPS
        t = np.divide((self.position - o) @ n, denom, out=np.full(len(o), -1.0), where=facing)
        points = o + d * t[:, None]
        local = self.to_local(points)
        mask = (
            facing
            & (t >= min_distance)
            & (np.abs(local[:, 0]) <= self.half_width)
            & (np.abs(local[:, 1]) <= self.half_height)
            & (np.abs(local[:, 2]) < tol)
        )
        points[~mask] = 0.0
        local_xy = np.where(mask[:, None], local[:, :2], 0.0)
        return mask, points, local_xy

    def pixel_of(self, local_xy: np.ndarray) -> np.ndarray:
        """Integer raster coordinates ``(px, py)`` of local detector points."""
        xy = np.asarray(local_xy, dtype=np.float64).reshape(-1, 2)
        extent = np.array([self.half_width, self.half_height])
        uv = (xy + extent) / (2.0 * extent)
        # np.rint rounds half to even, like Mathf.RoundToInt
        px = np.rint(uv * (self.resolution - 1)).astype(np.int64)
        return np.clip(px, 0, self.resolution - 1)


class DetectorImage:
    """RGBA raster of detector hits with a red border and optional noise."""

    HIT = (0, 255, 0, 255)
    BORDER = (255, 0, 0, 255)
    NOISE = (0, 255, 0, 255)

    def __init__(self, resolution: int, noise_probability: float = 0.05) -> None:
        if resolution < 1:
            raise ValueError("resolution must be >= 1.")
        if not 0.0 <= noise_probability <= 1.0:
            raise ValueError("noise_probability must lie in [0, 1].")
        self.resolution = int(resolution)
        self.noise_probability = float(noise_probability)
        self.pixels = np.zeros((self.resolution, self.resolution, 4), dtype=np.uint8)
        self._add_border()

    def _add_border(self) -> None:
        self.pixels[0, :] = self.BORDER
        self.pixels[-1, :] = self.BORDER
        self.pixels[:, 0] = self.BORDER
        self.pixels[:, -1] = self.BORDER

    def clear(self) -> None:
        self.pixels[1:-1, 1:-1] = 0

    def render(self, hit_pixels: np.ndarray, rng: Optional[np.random.Generator] = None) -> np.ndarray:
        """Clear the interior, mark hits, then sprinkle noise from ``rng``.

        ``hit_pixels`` rows of ``-1`` are misses and are skipped.
        """
        self.clear()
        px = np.asarray(hit_pixels, dtype=np.int64).reshape(-1, 2)
        px = px[np.all(px >= 0, axis=1)]
        # row index is the raster Y
        self.pixels[px[:, 1], px[:, 0]] = self.HIT
        if rng is not None and self.noise_probability > 0.0 and self.resolution > 2:
            inner = self.pixels[1:-1, 1:-1]
            noise = rng.random(inner.shape[:2]) < self.noise_probability
            inner[noise] = self.NOISE
        return self.pixels

    def lit_pixel_count(self) -> int:
        """Pixels painted in the hit colour; noise pixels share it and are included."""
        return int(np.count_nonzero(np.all(self.pixels == self.HIT, axis=-1)))

    def save(self, path: str | Path) -> Path:
        import matplotlib
        matplotlib.use("Agg")
        import matplotlib.pyplot as plt

        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        plt.imsave(str(path), self.pixels, origin="lower")
        _log.info("Detector image saved to %s", path)
        return path
