from __future__ import annotations

import logging

import numpy as np
import pytest

from reflectset.core.primitives import tetrahedron_mesh
from reflectset.core.voxelizer import cell_centers, voxelize


def test_cell_centers_span_the_box() -> None:
    centers = cell_centers(np.zeros(3), np.array([4.0, 2.0, 1.0]), 4)
    assert centers.shape == (4, 4, 4, 3)
    assert np.allclose(centers[0, 0, 0], [0.5, 0.25, 0.125])
    assert np.allclose(centers[-1, -1, -1], [3.5, 1.75, 0.875])
    # indexed [x, y, z]
    assert centers[1, 0, 0, 0] > centers[0, 0, 0, 0]
    assert centers[0, 0, 1, 2] > centers[0, 0, 0, 2]


def test_tetrahedron_grid_labels() -> None:
    grid = voxelize(tetrahedron_mesh().triangles(), config_id=2)
    assert grid.labels.shape == (16, 16, 16)
    assert grid.resolution == 16
    assert set(np.unique(grid.labels).tolist()) == {0, 2}
    assert 0 < grid.occupied < 4096
    assert np.allclose(grid.bounds_min, [-1.0, 0.0, -1.0])
    assert np.allclose(grid.bounds_max, [1.0, 1.0, 1.0])
    # the base face is covered, the air above a base corner is not
    assert grid.labels[8, 0, 8] == 2
    assert grid.labels[0, 15, 0] == 0


def test_labels_are_read_only() -> None:
    grid = voxelize(tetrahedron_mesh().triangles(), config_id=1, resolution=4)
    with pytest.raises(ValueError):
        grid.labels[0, 0, 0] = 3


def test_threshold_controls_occupancy() -> None:
    tris = tetrahedron_mesh().triangles()
    thin = voxelize(tris, 1, resolution=8, threshold=0.05)
    thick = voxelize(tris, 1, resolution=8, threshold=0.5)
    assert thin.occupied < thick.occupied


def test_chunked_voxelization_matches() -> None:
    tris = tetrahedron_mesh().triangles()
    a = voxelize(tris, 3, resolution=6)
    b = voxelize(tris, 3, resolution=6, max_pairs=1)
    assert np.array_equal(a.labels, b.labels)


def test_empty_mesh_gives_empty_grid(caplog) -> None:
    with caplog.at_level(logging.WARNING, logger="reflectset"):
        grid = voxelize(np.zeros((0, 3, 3)), config_id=4)
    assert grid.labels.shape == (16, 16, 16)
    assert grid.occupied == 0
    assert "empty mesh" in caplog.text


def test_record_layout() -> None:
    grid = voxelize(tetrahedron_mesh().triangles(), config_id=3, resolution=4)
    fields = grid.to_record().split(";")
    assert fields[0] == "CONFIG_VOXELS"
    assert fields[1] == "3"
    assert len(fields) == 2 + 64
    assert [int(v) for v in fields[2:]] == grid.labels.ravel(order="C").tolist()


def test_invalid_arguments() -> None:
    tris = tetrahedron_mesh().triangles()
    with pytest.raises(ValueError):
        voxelize(tris, 1, resolution=0)
    with pytest.raises(ValueError):
        voxelize(tris, 1, threshold=0.0)
