from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Tuple
import numpy as np

from .mesh import Mesh, Transform
from .utils import euler_to_matrix, get_logger, wrap_degrees

_log = get_logger()


class FeatureKind(str, Enum):
    SPIKE = "spike"
    HEMISPHERE = "hemisphere"


@dataclass
class FeatureInstance:
    """A surface feature owned by a solid.

    ``transform`` is expressed in the owning solid's local frame, so the
    feature follows the solid when it moves or rotates.
    """
    kind: FeatureKind
    mesh: Mesh
    transform: Transform


class SolidObject:
    """Base mesh, placement and attached features of one simulated object.

    Every mutation bumps :attr:`revision`; scene queries key their cached
    acceleration data on it.
    """

    def __init__(self, mesh: Mesh, transform: Optional[Transform] = None, name: str = "solid") -> None:
        self.name = name
        self._mesh = mesh
        self._transform = transform if transform is not None else Transform()
        self._features: list[FeatureInstance] = []
        self._revision = 0
        self.rotation_deg: Tuple[float, float, float] = (0.0, 0.0, 0.0)

    def _touch(self) -> None:
        self._revision += 1

    @property
    def revision(self) -> int:
        return self._revision

    @property
    def mesh(self) -> Mesh:
        return self._mesh

    @property
    def transform(self) -> Transform:
        return self._transform

    def set_transform(self, transform: Transform) -> None:
        self._transform = transform
        self._touch()

    def set_position(self, position: np.ndarray) -> None:
        self._transform.position = np.asarray(position, dtype=np.float64).reshape(3)
        self._touch()

    def set_rotation(self, euler_deg: Tuple[float, float, float]) -> None:
        """Orient the solid from Euler degrees (Z, then X, then Y)."""
        wrapped = wrap_degrees(euler_deg)
        self.rotation_deg = (float(wrapped[0]), float(wrapped[1]), float(wrapped[2]))
        self._transform.rotation = euler_to_matrix(euler_deg)
        self._touch()

    def set_rotation_matrix(self, rotation: np.ndarray) -> None:
        self._transform.rotation = np.asarray(rotation, dtype=np.float64).reshape(3, 3)
        self._touch()

    # -- features --
    @property
    def features(self) -> Tuple[FeatureInstance, ...]:
        return tuple(self._features)

    def extend_features(self, features: Iterable[FeatureInstance]) -> None:
        self._features.extend(features)
        self._touch()

    def clear_features(self) -> None:
        if self._features:
            _log.debug("Clearing %d features from %s.", len(self._features), self.name)
        self._features.clear()
        self._touch()

    # -- world geometry --
    def base_triangles(self) -> np.ndarray:
        return self._mesh.triangles(self._transform)

    def feature_triangles(self) -> np.ndarray:
        if not self._features:
            return np.zeros((0, 3, 3), dtype=np.float64)
        return np.concatenate(
            [f.mesh.triangles(self._transform.compose(f.transform)) for f in self._features], axis=0
        )

    def world_triangles(self, include_features: bool = True) -> np.ndarray:
        """World-space triangle soup, shape (F, 3, 3)."""
        base = self.base_triangles()
        if not include_features or not self._features:
            return base
        return np.concatenate([base, self.feature_triangles()], axis=0)

    def world_mesh(self, include_features: bool = True) -> Mesh:
        meshes = [self._mesh.transformed(self._transform)]
        if include_features:
            meshes.extend(f.mesh.transformed(self._transform.compose(f.transform)) for f in self._features)
        return Mesh.merge(meshes)

    def world_bounds(self, include_features: bool = False) -> tuple[np.ndarray, np.ndarray]:
        tris = self.world_triangles(include_features=include_features)
        if len(tris) == 0:
            raise ValueError(f"{self.name} has no triangles.")
        pts = tris.reshape(-1, 3)
        return pts.min(axis=0), pts.max(axis=0)


class Scene:
    """Set of solids that rays interact with."""

    def __init__(self, objects: Iterable[SolidObject] = (), include_features: bool = True) -> None:
        self._objects: list[SolidObject] = list(objects)
        self.include_features = include_features
        self._generation = 0

    @property
    def objects(self) -> Tuple[SolidObject, ...]:
        return tuple(self._objects)

    def add(self, obj: SolidObject) -> None:
        self._objects.append(obj)
        self._generation += 1

    def clear(self) -> None:
        self._objects.clear()
        self._generation += 1

    @property
    def revision(self) -> tuple:
        return (self._generation, self.include_features, tuple(o.revision for o in self._objects))

    def triangles(self) -> np.ndarray:
        parts = [o.world_triangles(include_features=self.include_features) for o in self._objects]
        parts = [p for p in parts if len(p)]
        if not parts:
            return np.zeros((0, 3, 3), dtype=np.float64)
        return np.concatenate(parts, axis=0)

    def bounds(self) -> tuple[np.ndarray, np.ndarray]:
        tris = self.triangles()
        if len(tris) == 0:
            raise ValueError("Scene has no triangles.")
        pts = tris.reshape(-1, 3)
        return pts.min(axis=0), pts.max(axis=0)
