from __future__ import annotations

from typing import List, Optional, Sequence

import numpy as np

from reflectset.core.features import FeaturePlacer, SurfaceConfig
from reflectset.core.mesh import Transform
from reflectset.core.primitives import ObjectFactory, ObjectType, scale_to_size
from reflectset.core.scene import Scene, SolidObject
from reflectset.core.utils import euler_to_matrix, get_logger, random_rotation

_log = get_logger()


class DriftingPopulation:
    """Feature-covered solids drifting and tumbling inside an axis-aligned box.

    Each solid gets its own feature pass, a uniform random orientation, a
    linear velocity in ``[-max_move_speed, max_move_speed]^3`` and an angular
    velocity (deg/s) in ``[-max_angular_speed, max_angular_speed]^3``.
    Velocity components flip when the next step would leave the box.
    """

    def __init__(
        self,
        count: int = 5,
        object_type: str = ObjectType.TETRAHEDRON.value,
        base_object_size: float = 2.0,
        feature_size: float = 0.2,
        min_feature_distance: float = 0.5,
        surface_config: int = int(SurfaceConfig.SPIKES),
        center: Sequence[float] = (0.0, 0.0, 0.0),
        area_size: Sequence[float] = (10.0, 10.0, 10.0),
        max_move_speed: float = 2.0,
        max_angular_speed: float = 60.0,
        rng: Optional[np.random.Generator] = None,
        factory: Optional[ObjectFactory] = None,
    ) -> None:
        if count < 0:
            raise ValueError("count must be non-negative.")
        if np.any(np.asarray(area_size) <= 0.0):
            raise ValueError("area_size components must be positive.")
        self.count = int(count)
        self.object_type = ObjectType(object_type)
        self.base_object_size = float(base_object_size)
        self.placer = FeaturePlacer(surface_config, feature_size, min_feature_distance)
        self.center = np.asarray(center, dtype=np.float64).reshape(3)
        self.half_extent = np.asarray(area_size, dtype=np.float64).reshape(3) / 2.0
        self.max_move_speed = float(max_move_speed)
        self.max_angular_speed = float(max_angular_speed)
        self.rng = rng if rng is not None else np.random.default_rng()
        self.factory = factory or ObjectFactory()

        self.solids: List[SolidObject] = []
        self.velocities = np.zeros((0, 3))
        self.angular_velocities = np.zeros((0, 3))
        self._scene = Scene(include_features=True)

    def spawn(self) -> List[SolidObject]:
        """Discard the current population and create ``count`` new solids."""
        self._scene.clear()
        mesh = self.factory.build(self.object_type)
        scale = scale_to_size(mesh, self.base_object_size)

        solids: List[SolidObject] = []
        for i in range(self.count):
            solid = SolidObject(mesh, Transform(scale=scale), name=f"solid_{i}")
            self.placer.place(solid, self.rng)
            offset = self.rng.uniform(-self.half_extent, self.half_extent)
            solid.set_position(self.center + offset)
            solid.set_rotation_matrix(random_rotation(self.rng))
            solids.append(solid)
            self._scene.add(solid)

        self.solids = solids
        self.velocities = self.rng.uniform(-self.max_move_speed, self.max_move_speed, (self.count, 3))
        self.angular_velocities = self.rng.uniform(-self.max_angular_speed, self.max_angular_speed, (self.count, 3))
        _log.info("Spawned %d %s solids.", self.count, self.object_type.value)
        return solids

    def advance(self, dt: float) -> None:
        for i, solid in enumerate(self.solids):
            position = solid.transform.position
            step = position + self.velocities[i] * dt
            outside = np.abs(step - self.center) > self.half_extent
            self.velocities[i, outside] *= -1.0
            solid.set_position(position + self.velocities[i] * dt)
            # rotate about the solid's own axes
            turn = euler_to_matrix(self.angular_velocities[i] * dt)
            solid.set_rotation_matrix(solid.transform.rotation @ turn)

    def positions(self) -> np.ndarray:
        if not self.solids:
            return np.zeros((0, 3))
        return np.vstack([s.transform.position for s in self.solids])

    def scene(self) -> Scene:
        return self._scene
