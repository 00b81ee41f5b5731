from __future__ import annotations
from dataclasses import dataclass
from typing import Protocol, Optional, Tuple
import numpy as np
from .geometry import triangle_normals
from .scene import Scene
from .utils import get_logger, ensure_unit_vectors

_log = get_logger()

try:
    import trimesh  # type: ignore
    from trimesh.ray import ray_pyembree  # type: ignore
    _HAVE_EMBREE = True
except Exception:
    ray_pyembree = None  # type: ignore
    _HAVE_EMBREE = False


@dataclass
class RayBundle:
    origins: np.ndarray          # (M, 3)
    directions: np.ndarray       # (M, 3) unit
    max_range: float = 1e6

    def __post_init__(self) -> None:
        self.origins = np.asarray(self.origins, dtype=np.float64).reshape(-1, 3)
        self.directions = np.asarray(self.directions, dtype=np.float64).reshape(-1, 3)
        assert self.origins.shape == self.directions.shape
        self.directions = ensure_unit_vectors(self.directions)

    def __len__(self) -> int:
        return len(self.origins)


@dataclass
class Hit:
    point: np.ndarray
    normal: np.ndarray
    distance: float
    triangle: int


@dataclass
class SceneHits:
    """First hit per ray; rows of rays that hit nothing are masked out."""
    mask: np.ndarray        # (M,) bool
    points: np.ndarray      # (M, 3), zero where ~mask
    normals: np.ndarray     # (M, 3) unit geometric normals, zero for degenerate faces
    distances: np.ndarray   # (M,), inf where ~mask
    triangle_ids: np.ndarray  # (M,), -1 where ~mask

    @staticmethod
    def empty(n_rays: int) -> "SceneHits":
        return SceneHits(
            mask=np.zeros((n_rays,), dtype=bool),
            points=np.zeros((n_rays, 3), dtype=np.float64),
            normals=np.zeros((n_rays, 3), dtype=np.float64),
            distances=np.full((n_rays,), np.inf),
            triangle_ids=np.full((n_rays,), -1, dtype=np.int64),
        )

    def __getitem__(self, i: int) -> Optional[Hit]:
        if not self.mask[i]:
            return None
        return Hit(
            point=self.points[i].copy(),
            normal=self.normals[i].copy(),
            distance=float(self.distances[i]),
            triangle=int(self.triangle_ids[i]),
        )


class SceneQuery(Protocol):
    def cast(self, bundle: RayBundle) -> SceneHits: ...

    def cast_ray(self, origin: np.ndarray, direction: np.ndarray) -> Optional[Hit]: ...


class _CachedScene:
    """Triangles and normals of a scene, rebuilt when the scene revision moves."""

    def __init__(self, scene: Scene) -> None:
        self.scene = scene
        self._key: Optional[tuple] = None
        self._tris = np.zeros((0, 3, 3), dtype=np.float64)
        self._normals = np.zeros((0, 3), dtype=np.float64)

    def refresh(self) -> bool:
        key = self.scene.revision
        if key == self._key:
            return False
        self._tris = self.scene.triangles()
        self._normals = triangle_normals(self._tris)
        self._key = key
        _log.debug("Scene cache rebuilt with %d triangles.", len(self._tris))
        return True

    @property
    def triangles(self) -> np.ndarray:
        return self._tris

    @property
    def normals(self) -> np.ndarray:
        return self._normals


class NumpySceneQuery:
    """Brute-force vectorised Moller-Trumbore over all scene triangles.

    Faces are two-sided. Rays are processed in chunks so that at most
    ``max_pairs`` ray/triangle pairs are evaluated at once.
    """

    def __init__(self, scene: Scene, epsilon: float = 1e-12, max_pairs: int = 2_000_000) -> None:
        self._cache = _CachedScene(scene)
        self.epsilon = float(epsilon)
        self.max_pairs = int(max_pairs)

    @property
    def scene(self) -> Scene:
        return self._cache.scene

    def _first_hits(
        self,
        origins: np.ndarray,
        dirs: np.ndarray,
        tris: np.ndarray,
        max_range: float,
    ) -> Tuple[np.ndarray, np.ndarray]:
        v0 = tris[None, :, 0, :]
        edge1 = tris[None, :, 1, :] - v0
        edge2 = tris[None, :, 2, :] - v0
        d = dirs[:, None, :]
        pvec = np.cross(d, edge2)
        det = np.einsum("rti,rti->rt", np.broadcast_to(edge1, pvec.shape), pvec)
        ok = np.abs(det) > self.epsilon
        inv_det = np.divide(1.0, det, out=np.zeros_like(det), where=ok)
        tvec = origins[:, None, :] - v0
        u = np.einsum("rti,rti->rt", tvec, pvec) * inv_det
        qvec = np.cross(tvec, np.broadcast_to(edge1, tvec.shape))
        v = np.einsum("rti,rti->rt", np.broadcast_to(d, qvec.shape), qvec) * inv_det
        t = np.einsum("rti,rti->rt", np.broadcast_to(edge2, qvec.shape), qvec) * inv_det
        valid = ok & (u >= 0.0) & (u <= 1.0) & (v >= 0.0) & (u + v <= 1.0) & (t >= 0.0) & (t <= max_range)
        t = np.where(valid, t, np.inf)
        best = np.argmin(t, axis=1)
        return t[np.arange(len(t)), best], best

    def cast(self, bundle: RayBundle) -> SceneHits:
        self._cache.refresh()
        tris = self._cache.triangles
        n_rays = len(bundle)
        hits = SceneHits.empty(n_rays)
        if n_rays == 0 or len(tris) == 0:
            return hits

        chunk = max(1, self.max_pairs // len(tris))
        for start in range(0, n_rays, chunk):
            stop = min(start + chunk, n_rays)
            o = bundle.origins[start:stop]
            d = bundle.directions[start:stop]
            t, idx = self._first_hits(o, d, tris, float(bundle.max_range))
            hit = np.isfinite(t)
            rows = np.nonzero(hit)[0] + start
            hits.mask[rows] = True
            hits.distances[rows] = t[hit]
            hits.triangle_ids[rows] = idx[hit]
            hits.points[rows] = o[hit] + d[hit] * t[hit, None]
            hits.normals[rows] = self._cache.normals[idx[hit]]
        return hits

    def cast_ray(self, origin: np.ndarray, direction: np.ndarray) -> Optional[Hit]:
        return self.cast(RayBundle(np.asarray(origin)[None], np.asarray(direction)[None]))[0]


class EmbreeSceneQuery:
    """Embree via trimesh.ray.ray_pyembree (optional dependency)."""

    def __init__(self, scene: Scene) -> None:
        if not _HAVE_EMBREE:
            raise RuntimeError("pyembree not available. pip install reflectset[embree].")
        self._cache = _CachedScene(scene)
        self._inter = None

    @property
    def scene(self) -> Scene:
        return self._cache.scene

    def _ensure_intersector(self) -> None:
        if self._cache.refresh() or self._inter is None:
            tris = self._cache.triangles
            tm = trimesh.Trimesh(
                vertices=tris.reshape(-1, 3),
                faces=np.arange(len(tris) * 3).reshape(-1, 3),
                process=False,
            )
            self._inter = ray_pyembree.RayMeshIntersector(tm)

    def cast(self, bundle: RayBundle) -> SceneHits:
        self._ensure_intersector()
        n_rays = len(bundle)
        hits = SceneHits.empty(n_rays)
        if n_rays == 0 or len(self._cache.triangles) == 0:
            return hits

        locs, idx_ray, tri_ids = self._inter.intersects_location(
            bundle.origins, bundle.directions, multiple_hits=False
        )
        dists = np.linalg.norm(locs - bundle.origins[idx_ray], axis=1)
        keep = dists <= float(bundle.max_range)
        idx_ray = idx_ray[keep]
        tri_ids = tri_ids[keep]
        hits.mask[idx_ray] = True
        hits.points[idx_ray] = locs[keep]
        hits.distances[idx_ray] = dists[keep]
        hits.triangle_ids[idx_ray] = tri_ids
        hits.normals[idx_ray] = self._cache.normals[tri_ids]
        return hits

    def cast_ray(self, origin: np.ndarray, direction: np.ndarray) -> Optional[Hit]:
        return self.cast(RayBundle(np.asarray(origin)[None], np.asarray(direction)[None]))[0]


class AutoSceneQuery:
    """Picks the fastest available backend: Embree if present, else NumPy."""

    def __init__(self, scene: Scene) -> None:
        self.scene = scene
        self._impl: Optional[SceneQuery] = None

    def _choose(self) -> SceneQuery:
        if _HAVE_EMBREE:
            _log.info("AutoSceneQuery: using Embree.")
            return EmbreeSceneQuery(self.scene)
        _log.info("AutoSceneQuery: using NumPy brute-force intersector.")
        return NumpySceneQuery(self.scene)

    def cast(self, bundle: RayBundle) -> SceneHits:
        if self._impl is None:
            self._impl = self._choose()
        return self._impl.cast(bundle)

    def cast_ray(self, origin: np.ndarray, direction: np.ndarray) -> Optional[Hit]:
        if self._impl is None:
            self._impl = self._choose()
        return self._impl.cast_ray(origin, direction)


def make_scene_query(name: str, scene: Scene) -> SceneQuery:
    key = name.lower()
    if key == "numpy":
        return NumpySceneQuery(scene)
    if key == "embree":
        return EmbreeSceneQuery(scene)
    if key == "auto":
        return AutoSceneQuery(scene)
    raise ValueError(f"Unknown intersector '{name}'. Expected auto, numpy or embree.")
