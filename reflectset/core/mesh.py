from __future__ import annotations
from dataclasses import dataclass, field
from typing import Iterable, Optional
import numpy as np

from .utils import euler_to_matrix


class Mesh:
    """Indexed triangle mesh in local space.

    Arrays are copied and made read-only on construction; a mesh is replaced
    wholesale rather than edited.
    """
    def __init__(self, vertices: np.ndarray, faces: np.ndarray) -> None:
        verts = np.array(vertices, dtype=np.float64).reshape(-1, 3)
        tris = np.array(faces, dtype=np.int64).reshape(-1, 3)
        if tris.size and (tris.min() < 0 or tris.max() >= len(verts)):
            raise ValueError(f"Face index out of range for {len(verts)} vertices.")
        verts.setflags(write=False)
        tris.setflags(write=False)
        self._vertices = verts
        self._faces = tris

    @classmethod
    def empty(cls) -> "Mesh":
        return cls(np.zeros((0, 3)), np.zeros((0, 3), dtype=np.int64))

    @classmethod
    def merge(cls, meshes: Iterable["Mesh"]) -> "Mesh":
        vertices: list[np.ndarray] = []
        faces: list[np.ndarray] = []
        offset = 0
        for m in meshes:
            vertices.append(m.vertices)
            faces.append(m.faces + offset)
            offset += len(m.vertices)
        if not vertices:
            return cls.empty()
        return cls(np.vstack(vertices), np.vstack(faces))

    @property
    def vertices(self) -> np.ndarray:
        return self._vertices

    @property
    def faces(self) -> np.ndarray:
        return self._faces

    @property
    def is_empty(self) -> bool:
        return len(self._faces) == 0

    def __len__(self) -> int:
        return len(self._faces)

    def triangles(self, transform: Optional["Transform"] = None) -> np.ndarray:
        """Triangle corner positions, shape (F, 3, 3), optionally world-transformed."""
        verts = self._vertices if transform is None else transform.apply(self._vertices)
        if self.is_empty:
            return np.zeros((0, 3, 3), dtype=np.float64)
        return verts[self._faces]

    def bounds(self) -> tuple[np.ndarray, np.ndarray]:
        if len(self._vertices) == 0:
            raise ValueError("Mesh has no vertices.")
        return self._vertices.min(axis=0), self._vertices.max(axis=0)

    def transformed(self, transform: "Transform") -> "Mesh":
        return Mesh(transform.apply(self._vertices), self._faces)

    def to_trimesh(self):
        import trimesh
        return trimesh.Trimesh(vertices=np.array(self._vertices), faces=np.array(self._faces), process=False)


@dataclass
class Transform:
    """Local-to-world mapping: ``p_world = R @ (scale * p_local) + position``."""
    position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    rotation: np.ndarray = field(default_factory=lambda: np.eye(3))
    scale: np.ndarray = field(default_factory=lambda: np.ones(3))

    def __post_init__(self) -> None:
        self.position = np.asarray(self.position, dtype=np.float64).reshape(3)
        self.rotation = np.asarray(self.rotation, dtype=np.float64).reshape(3, 3)
        self.scale = np.broadcast_to(np.asarray(self.scale, dtype=np.float64), (3,)).copy()

    @staticmethod
    def from_euler(
        position: tuple[float, float, float] = (0.0, 0.0, 0.0),
        euler_deg: tuple[float, float, float] = (0.0, 0.0, 0.0),
        scale: float | tuple[float, float, float] = 1.0,
    ) -> "Transform":
        return Transform(position=np.asarray(position, dtype=np.float64), rotation=euler_to_matrix(euler_deg), scale=scale)

    def apply(self, p_local: np.ndarray) -> np.ndarray:
        p = np.asarray(p_local, dtype=np.float64)
        return (p * self.scale) @ self.rotation.T + self.position

    def apply_normal(self, d_local: np.ndarray) -> np.ndarray:
        """Map a surface normal to world space (inverse-transpose rule); not normalized."""
        d = np.asarray(d_local, dtype=np.float64)
        return (d / self.scale) @ self.rotation.T

    def inverse_apply(self, p_world: np.ndarray) -> np.ndarray:
        p = np.asarray(p_world, dtype=np.float64)
        return ((p - self.position) @ self.rotation) / self.scale

    def inverse_apply_normal(self, d_world: np.ndarray) -> np.ndarray:
        d = np.asarray(d_world, dtype=np.float64)
        return (d @ self.rotation) * self.scale

    def compose(self, child: "Transform") -> "Transform":
        """World transform of ``child`` expressed in this transform's local space.

        Exact when this transform's scale is uniform.
        """
        return Transform(
            position=self.apply(child.position),
            rotation=self.rotation @ child.rotation,
            scale=self.scale * child.scale,
        )

    def matrix(self) -> np.ndarray:
        m = np.eye(4)
        m[:3, :3] = self.rotation * self.scale
        m[:3, 3] = self.position
        return m

    def uniform_scale(self) -> float:
        return float(np.max(np.abs(self.scale)))
