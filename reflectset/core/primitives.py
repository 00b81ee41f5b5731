from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Optional

import numpy as np
import trimesh

from .mesh import Mesh
from .utils import get_logger

_log = get_logger()

# trimesh builds round primitives along +Z; the simulation is Y-up.
_Z_UP_TO_Y_UP = np.array([[1.0, 0.0, 0.0], [0.0, 0.0, 1.0], [0.0, -1.0, 0.0]])

SPIKE_BASE_HALF_WIDTH = 1.0 / 3.0


class ObjectType(str, Enum):
    TETRAHEDRON = "tetrahedron"
    CUBE = "cube"
    SPHERE = "sphere"
    CAPSULE = "capsule"
    CYLINDER = "cylinder"
    CUSTOM = "custom"


def _pyramid(half_width: float, height: float) -> Mesh:
    vertices = np.array([
        [-half_width, 0.0, -half_width],
        [half_width, 0.0, -half_width],
        [half_width, 0.0, half_width],
        [-half_width, 0.0, half_width],
        [0.0, height, 0.0],
    ])
    faces = np.array([
        [0, 1, 2], [0, 2, 3],  # base
        [0, 4, 1],
        [1, 4, 2],
        [2, 4, 3],
        [3, 4, 0],
    ], dtype=np.int64)
    return Mesh(vertices, faces)


def tetrahedron_mesh(height: float = 1.0) -> Mesh:
    """Square-based pyramid used as the default solid: apex over a 2x2 base."""
    return _pyramid(half_width=1.0, height=height)


def spike_mesh() -> Mesh:
    """Four-sided pyramid of unit height standing on the XZ plane, apex on +Y."""
    return _pyramid(half_width=SPIKE_BASE_HALF_WIDTH, height=1.0)


def uv_sphere_mesh(radius: float = 0.5, segments: int = 24, rings: int = 16) -> Mesh:
    """Latitude/longitude sphere with an exact equator ring (``rings`` must be even)."""
    if segments < 3:
        raise ValueError("segments must be at least 3.")
    if rings < 2 or rings % 2:
        raise ValueError("rings must be an even number >= 2.")

    phi = np.linspace(0.0, np.pi, rings + 1)
    theta = np.linspace(0.0, 2.0 * np.pi, segments, endpoint=False)
    ys = np.cos(phi)
    ys[rings // 2] = 0.0
    rs = np.sin(phi)
    rs[0] = rs[-1] = 0.0
    vertices = np.column_stack([
        (rs[:, None] * np.cos(theta)[None, :]).ravel(),
        np.repeat(ys, segments),
        (rs[:, None] * np.sin(theta)[None, :]).ravel(),
    ]) * radius

    faces = []
    for i in range(rings):
        for j in range(segments):
            p00 = i * segments + j
            p01 = i * segments + (j + 1) % segments
            p10 = (i + 1) * segments + j
            p11 = (i + 1) * segments + (j + 1) % segments
            if i != rings - 1:
                faces.append([p00, p11, p10])
            if i != 0:
                faces.append([p00, p01, p11])
    return Mesh(vertices, np.asarray(faces, dtype=np.int64))


def hemisphere_mesh(radius: float = 0.5, segments: int = 24, rings: int = 16) -> Mesh:
    """Upper half of a UV sphere: triangles with any vertex below the equator are dropped."""
    sphere = uv_sphere_mesh(radius=radius, segments=segments, rings=rings)
    keep = np.all(sphere.vertices[sphere.faces][:, :, 1] >= 0.0, axis=1)
    return Mesh(sphere.vertices, sphere.faces[keep])


def _from_trimesh(tm: "trimesh.Trimesh", rotate_to_y_up: bool = False) -> Mesh:
    vertices = np.asarray(tm.vertices, dtype=np.float64)
    if rotate_to_y_up:
        vertices = vertices @ _Z_UP_TO_Y_UP.T
    return Mesh(vertices, np.asarray(tm.faces, dtype=np.int64))


class ObjectFactory:
    """Builds base solids at unit-ish primitive sizes.

    The tetrahedron is built directly; round primitives come from
    ``trimesh.creation`` and custom shapes are loaded with ``trimesh``.
    A missing custom mesh falls back to a cube with a warning.
    """

    def __init__(self, sphere_count: int = 24, cylinder_sections: int = 24) -> None:
        self.sphere_count = int(sphere_count)
        self.cylinder_sections = int(cylinder_sections)

    def build(self, object_type: ObjectType | str, custom_mesh_path: Optional[str | Path] = None) -> Mesh:
        kind = ObjectType(object_type)
        if kind is ObjectType.TETRAHEDRON:
            return tetrahedron_mesh()
        if kind is ObjectType.CUBE:
            return _from_trimesh(trimesh.creation.box(extents=(1.0, 1.0, 1.0)))
        if kind is ObjectType.SPHERE:
            return _from_trimesh(
                trimesh.creation.uv_sphere(radius=0.5, count=[self.sphere_count, self.sphere_count]),
                rotate_to_y_up=True,
            )
        if kind is ObjectType.CAPSULE:
            return _from_trimesh(
                trimesh.creation.capsule(height=1.0, radius=0.5, count=[self.sphere_count, self.sphere_count]),
                rotate_to_y_up=True,
            )
        if kind is ObjectType.CYLINDER:
            return _from_trimesh(
                trimesh.creation.cylinder(radius=0.5, height=2.0, sections=self.cylinder_sections),
                rotate_to_y_up=True,
            )
        return self._load_custom(custom_mesh_path)

    def _load_custom(self, path: Optional[str | Path]) -> Mesh:
        if path is None or not Path(path).exists():
            _log.warning("Custom mesh '%s' is not available. Falling back to cube.", path)
            return self.build(ObjectType.CUBE)
        tm = trimesh.load(str(path), force="mesh", process=False)
        mesh = _from_trimesh(tm)
        if mesh.is_empty:
            _log.warning("Custom mesh '%s' has no triangles. Falling back to cube.", path)
            return self.build(ObjectType.CUBE)
        return mesh


def scale_to_size(mesh: Mesh, desired_size: float) -> float:
    """Uniform scale factor that makes the largest bounding-box side ``desired_size``.

    Returns 1.0 (and logs a warning) for meshes with zero extent.
    """
    if desired_size <= 0.0:
        raise ValueError("desired_size must be positive.")
    if len(mesh.vertices) == 0:
        _log.warning("Object has no vertices. Skipping scaling.")
        return 1.0
    mn, mx = mesh.bounds()
    max_side = float(np.max(mx - mn))
    if np.isclose(max_side, 0.0):
        _log.warning("Object has zero size. Skipping scaling.")
        return 1.0
    return desired_size / max_side
