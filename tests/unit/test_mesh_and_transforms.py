from __future__ import annotations

import numpy as np
import pytest

from reflectset.core.mesh import Mesh, Transform
from reflectset.core.utils import (
    euler_to_matrix,
    orthonormal_basis,
    random_rotation,
    rotation_from_to,
    safe_normalize,
    wrap_degrees,
)


def test_mesh_validates_indices_and_is_read_only() -> None:
    verts = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0]])
    with pytest.raises(ValueError):
        Mesh(verts, np.array([[0, 1, 3]]))
    mesh = Mesh(verts, np.array([[0, 1, 2]]))
    with pytest.raises(ValueError):
        mesh.vertices[0, 0] = 5.0
    assert len(mesh) == 1
    assert mesh.triangles().shape == (1, 3, 3)


def test_empty_mesh_and_merge() -> None:
    empty = Mesh.empty()
    assert empty.is_empty
    assert empty.triangles().shape == (0, 3, 3)
    with pytest.raises(ValueError):
        empty.bounds()

    tri = Mesh(np.eye(3), np.array([[0, 1, 2]]))
    merged = Mesh.merge([tri, tri])
    assert len(merged) == 2
    assert merged.faces.max() == 5
    assert Mesh.merge([]).is_empty


def test_euler_rotation_order_is_z_then_x_then_y() -> None:
    combined = euler_to_matrix((30.0, 40.0, 50.0))
    ry = euler_to_matrix((0.0, 40.0, 0.0))
    rx = euler_to_matrix((30.0, 0.0, 0.0))
    rz = euler_to_matrix((0.0, 0.0, 50.0))
    assert np.allclose(combined, ry @ rx @ rz)
    # yaw of +90 turns forward (+Z) into +X
    assert np.allclose(euler_to_matrix((0.0, 90.0, 0.0)) @ [0.0, 0.0, 1.0], [1.0, 0.0, 0.0])


def test_wrap_degrees_into_half_open_range() -> None:
    assert np.allclose(wrap_degrees([-90.0, 360.0, 725.0, 0.0]), [270.0, 0.0, 5.0, 0.0])
    assert np.all(wrap_degrees(np.array([-1e-14])) < 360.0)


def test_transform_roundtrip_and_normals() -> None:
    t = Transform.from_euler(position=(1.0, -2.0, 3.0), euler_deg=(10.0, 20.0, 30.0), scale=2.5)
    rng = np.random.default_rng(0)
    pts = rng.normal(size=(20, 3))
    assert np.allclose(t.inverse_apply(t.apply(pts)), pts)

    # tangent stays perpendicular to the mapped normal
    n_local = np.array([0.0, 1.0, 0.0])
    tangent = np.array([1.0, 0.0, 0.0])
    n_world = t.apply_normal(n_local)
    tangent_world = t.apply(tangent) - t.apply(np.zeros(3))
    assert abs(np.dot(n_world, tangent_world)) < 1e-9
    back, _ = safe_normalize(t.inverse_apply_normal(n_world))
    assert np.allclose(back, n_local)


def test_compose_matches_sequential_application() -> None:
    parent = Transform.from_euler(position=(0.0, 1.0, 0.0), euler_deg=(45.0, 0.0, 0.0), scale=2.0)
    child = Transform.from_euler(position=(0.5, 0.0, 0.0), euler_deg=(0.0, 90.0, 0.0), scale=0.2)
    p = np.array([[0.1, 0.2, 0.3], [1.0, 0.0, -1.0]])
    assert np.allclose(parent.compose(child).apply(p), parent.apply(child.apply(p)))
    assert parent.compose(child).uniform_scale() == pytest.approx(0.4)

    m = parent.matrix()
    homog = np.hstack([p, np.ones((2, 1))])
    assert np.allclose((homog @ m.T)[:, :3], parent.apply(p))


@pytest.mark.parametrize(
    "target",
    [(0.0, 1.0, 0.0), (0.0, -1.0, 0.0), (1.0, 0.0, 0.0), (0.3, -0.4, 0.866)],
)
def test_rotation_from_to_maps_source_onto_target(target) -> None:
    up = np.array([0.0, 1.0, 0.0])
    dst, _ = safe_normalize(np.asarray(target))
    r = rotation_from_to(up, dst)
    assert np.allclose(r @ up, dst)
    assert np.allclose(r.T @ r, np.eye(3))
    assert np.linalg.det(r) == pytest.approx(1.0)


def test_random_rotation_is_proper() -> None:
    rng = np.random.default_rng(4)
    for _ in range(10):
        r = random_rotation(rng)
        assert np.allclose(r @ r.T, np.eye(3))
        assert np.linalg.det(r) == pytest.approx(1.0)


def test_orthonormal_basis_for_downward_light() -> None:
    u, v = orthonormal_basis(np.array([0.0, -1.0, 0.0]))
    assert np.allclose(u, [1.0, 0.0, 0.0])
    assert np.allclose(v, [0.0, 0.0, 1.0])
    with pytest.raises(ValueError):
        orthonormal_basis(np.zeros(3))
