from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest
import yaml
from pydantic import ValidationError

from reflectset.config import ScenarioConfig, load_config
from reflectset.runtime.builders import (
    build_detector,
    build_rotations,
    build_simulation_config,
    rotation_grid,
)


def _write_config(tmp_path: Path, data: dict) -> Path:
    path = tmp_path / "scenario.yaml"
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


def test_empty_file_gives_defaults(tmp_path: Path) -> None:
    path = tmp_path / "empty.yaml"
    path.write_text("", encoding="utf-8")
    cfg = load_config(path)
    assert cfg.object.type == "tetrahedron"
    assert cfg.surface.config_id == 1
    assert cfg.light.rays_per_axis == 15
    assert cfg.detector.kind == "horizontal"
    assert cfg.sweep.config_ids == [1, 2, 3]
    assert cfg.output.dataset == (tmp_path / "dataset.txt").resolve()


def test_relative_paths_resolve_against_config_dir(tmp_path: Path) -> None:
    path = _write_config(tmp_path, {
        "object": {"type": "custom", "custom_mesh_path": "meshes/part.obj"},
        "output": {"dataset": "out/data.txt", "image": "out/det.png"},
    })
    cfg = load_config(path)
    assert cfg.object.custom_mesh_path == (tmp_path / "meshes" / "part.obj").resolve()
    assert cfg.output.dataset == (tmp_path / "out" / "data.txt").resolve()
    assert cfg.output.image == (tmp_path / "out" / "det.png").resolve()


@pytest.mark.parametrize(
    "data",
    [
        {"surface": {"config_id": 5}},
        {"light": {"direction": [0.0, 0.0, 0.0]}},
        {"sweep": {"config_ids": []}},
        {"sweep": {"feature_sizes": [0.1, -0.2]}},
        {"tracer": {"intersector": "optix"}},
        {"detector": {"kind": "curved"}},
    ],
)
def test_invalid_configs_are_rejected(tmp_path: Path, data: dict) -> None:
    with pytest.raises(ValidationError):
        load_config(_write_config(tmp_path, data))


def test_non_mapping_root_is_rejected(tmp_path: Path) -> None:
    path = tmp_path / "list.yaml"
    path.write_text("- 1\n- 2\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(path)


def test_mounted_detector_builds_from_euler(tmp_path: Path) -> None:
    cfg = load_config(_write_config(tmp_path, {
        "detector": {"kind": "mounted", "position": [0, 0, 5], "rotation_deg": [0, 180, 0], "width": 2, "height": 1},
    }))
    det = build_detector(cfg)
    assert np.allclose(det.normal, [0.0, 0.0, -1.0])
    assert det.size == (2.0, 1.0)


def test_simulation_config_mirrors_scenario() -> None:
    cfg = ScenarioConfig.model_validate({
        "object": {"type": "sphere", "base_size": 3.0},
        "surface": {"config_id": 3, "feature_size": 0.15, "min_feature_distance": 0.25},
        "light": {"rays_per_axis": 9, "area_size": 1.5},
        "detector": {"height": 9.0, "size": 6.0, "resolution": 30},
        "tracer": {"max_reflections": 2, "intersector": "numpy"},
        "voxels": {"resolution": 8, "include_features": True},
    })
    sim_cfg = build_simulation_config(cfg)
    assert sim_cfg.object_type == "sphere"
    assert sim_cfg.base_object_size == 3.0
    assert sim_cfg.surface_config == 3
    assert sim_cfg.min_feature_distance == 0.25
    assert sim_cfg.rays_per_axis == 9
    assert sim_cfg.light.area_size == 1.5
    assert sim_cfg.detector.resolution == 30
    assert sim_cfg.detector.position[1] == 9.0
    assert sim_cfg.max_reflections == 2
    assert sim_cfg.voxel_resolution == 8
    assert sim_cfg.voxelize_features is True


def test_rotation_grid_order() -> None:
    grid = list(rotation_grid(90.0))
    assert len(grid) == 64
    assert grid[0] == (0.0, 0.0, 0.0)
    assert grid[1] == (0.0, 0.0, 90.0)
    assert grid[4] == (0.0, 90.0, 0.0)
    assert grid[-1] == (270.0, 270.0, 270.0)
    assert sum(1 for _ in rotation_grid(5.0)) == 72 ** 3


def test_explicit_rotations_override_grid() -> None:
    cfg = ScenarioConfig.model_validate({"sweep": {"rotations": [[0, 0, 0], [45, 10, 5]]}})
    assert build_rotations(cfg) == [(0.0, 0.0, 0.0), (45.0, 10.0, 5.0)]
    cfg = ScenarioConfig.model_validate({"sweep": {"angle_step_deg": 120.0}})
    assert len(build_rotations(cfg)) == 27
