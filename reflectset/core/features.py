from __future__ import annotations
from enum import IntEnum
from typing import List
import numpy as np

from .geometry import closest_points_on_triangles, triangle_normals, UP
from .mesh import Mesh, Transform
from .poisson import PoissonDiskSampler
from .primitives import hemisphere_mesh, spike_mesh
from .scene import FeatureInstance, FeatureKind, SolidObject
from .utils import get_logger, rotation_from_to, safe_normalize

_log = get_logger()


class SurfaceConfig(IntEnum):
    FLAT = 1
    SPIKES = 2
    HEMISPHERES = 3
    MIXED = 4

    @property
    def with_spikes(self) -> bool:
        return self in (SurfaceConfig.SPIKES, SurfaceConfig.MIXED)

    @property
    def with_hemispheres(self) -> bool:
        return self in (SurfaceConfig.HEMISPHERES, SurfaceConfig.MIXED)


class FeaturePlacer:
    """Scatters spikes and/or hemispheres over the base surface of a solid.

    ``relative_feature_size`` is a fraction of the solid's largest world
    bounding-box side; ``min_distance`` is the Poisson-disk spacing in world
    units.
    """

    def __init__(
        self,
        config: SurfaceConfig | int,
        relative_feature_size: float = 0.2,
        min_distance: float = 0.5,
        max_attempts: int = 30,
    ) -> None:
        if relative_feature_size <= 0:
            raise ValueError("relative_feature_size must be positive.")
        self.config = SurfaceConfig(config)
        self.relative_feature_size = float(relative_feature_size)
        self.sampler = PoissonDiskSampler(min_distance=min_distance, max_attempts=max_attempts)
        self._spike = spike_mesh()
        self._hemisphere = hemisphere_mesh()

    @property
    def min_distance(self) -> float:
        return self.sampler.min_distance

    def absolute_feature_size(self, solid: SolidObject) -> float:
        mn, mx = solid.world_bounds(include_features=False)
        return self.relative_feature_size * float(np.max(mx - mn))

    def _pick_kind(self, rng: np.random.Generator) -> FeatureKind:
        if self.config.with_spikes and self.config.with_hemispheres:
            return FeatureKind.SPIKE if rng.random() < 0.5 else FeatureKind.HEMISPHERE
        if self.config.with_spikes:
            return FeatureKind.SPIKE
        return FeatureKind.HEMISPHERE

    def _mesh_for(self, kind: FeatureKind) -> Mesh:
        return self._spike if kind is FeatureKind.SPIKE else self._hemisphere

    def place(self, solid: SolidObject, rng: np.random.Generator) -> List[FeatureInstance]:
        """Replace the solid's features with a fresh set and return them."""
        solid.clear_features()
        if self.config is SurfaceConfig.FLAT:
            return []

        tris = solid.base_triangles()
        samples = self.sampler.sample(tris, rng)
        points, _, idx = closest_points_on_triangles(samples, tris)
        normals = triangle_normals(tris)[idx]
        normals[~np.any(normals, axis=1)] = UP

        abs_size = self.absolute_feature_size(solid)
        local_scale = abs_size / solid.transform.uniform_scale()
        local_points = solid.transform.inverse_apply(points)
        local_normals, _ = safe_normalize(solid.transform.inverse_apply_normal(normals))

        features: List[FeatureInstance] = []
        for p, n in zip(local_points, local_normals):
            kind = self._pick_kind(rng)
            features.append(FeatureInstance(
                kind=kind,
                mesh=self._mesh_for(kind),
                transform=Transform(position=p, rotation=rotation_from_to(UP, n), scale=local_scale),
            ))
        solid.extend_features(features)
        _log.debug(
            "Placed %d features (config=%s, size=%.3f, min_distance=%.3f).",
            len(features), self.config.name, abs_size, self.min_distance,
        )
        return features
