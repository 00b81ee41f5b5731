from __future__ import annotations
from dataclasses import dataclass
import numpy as np

from .geometry import point_triangle_distance
from .utils import get_logger

_log = get_logger()


@dataclass(frozen=True)
class VoxelGrid:
    labels: np.ndarray      # (N, N, N) uint8, indexed [x, y, z]
    config_id: int
    bounds_min: np.ndarray
    bounds_max: np.ndarray

    @property
    def resolution(self) -> int:
        return int(self.labels.shape[0])

    @property
    def occupied(self) -> int:
        return int(np.count_nonzero(self.labels))

    def to_record(self) -> str:
        """``CONFIG_VOXELS;<id>;<v0>;...;<vN^3-1>`` with x outermost and z innermost."""
        values = ";".join(str(int(v)) for v in self.labels.ravel(order="C"))
        return f"CONFIG_VOXELS;{self.config_id};{values}"


def cell_centers(bounds_min: np.ndarray, bounds_max: np.ndarray, resolution: int) -> np.ndarray:
    """Centres of an N^3 lattice spanning the box, shape (N, N, N, 3)."""
    size = (np.asarray(bounds_max) - np.asarray(bounds_min)) / resolution
    idx = np.arange(resolution) + 0.5
    xs = bounds_min[0] + idx * size[0]
    ys = bounds_min[1] + idx * size[1]
    zs = bounds_min[2] + idx * size[2]
    return np.stack(np.meshgrid(xs, ys, zs, indexing="ij"), axis=-1)


def voxelize(
    triangles: np.ndarray,
    config_id: int,
    resolution: int = 16,
    threshold: float = 0.2,
    max_pairs: int = 1_000_000,
) -> VoxelGrid:
    """Label every lattice cell whose centre lies within ``threshold`` of the surface.

    The lattice spans the world-space bounding box of ``triangles``. Cells are
    independent and evaluated in chunks of at most ``max_pairs`` cell/triangle
    pairs.
    """
    if resolution < 1:
        raise ValueError("resolution must be >= 1.")
    if threshold <= 0:
        raise ValueError("threshold must be positive.")
    tris = np.asarray(triangles, dtype=np.float64).reshape(-1, 3, 3)
    if len(tris) == 0:
        _log.warning("Voxelizing an empty mesh; returning an all-zero grid.")
        labels = np.zeros((resolution,) * 3, dtype=np.uint8)
        labels.setflags(write=False)
        return VoxelGrid(labels=labels, config_id=int(config_id), bounds_min=np.zeros(3), bounds_max=np.zeros(3))

    pts = tris.reshape(-1, 3)
    mn, mx = pts.min(axis=0), pts.max(axis=0)
    centers = cell_centers(mn, mx, resolution).reshape(-1, 3)

    a, b, c = tris[None, :, 0], tris[None, :, 1], tris[None, :, 2]
    min_dist = np.empty(len(centers), dtype=np.float64)
    chunk = max(1, max_pairs // len(tris))
    for start in range(0, len(centers), chunk):
        p = centers[start:start + chunk, None, :]
        d = np.asarray(point_triangle_distance(p, a, b, c)).reshape(len(p), -1)
        min_dist[start:start + chunk] = d.min(axis=1)

    occupied = min_dist < threshold
    labels = np.where(occupied, config_id, 0).astype(np.uint8).reshape((resolution,) * 3)
    labels.setflags(write=False)
    _log.debug("Voxelized %d triangles: %d/%d cells occupied.", len(tris), int(occupied.sum()), occupied.size)
    return VoxelGrid(labels=labels, config_id=int(config_id), bounds_min=mn, bounds_max=mx)
