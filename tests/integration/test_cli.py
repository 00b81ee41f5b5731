from __future__ import annotations

from pathlib import Path

import trimesh
import yaml
from typer.testing import CliRunner

from reflectset.cli.main import app
from reflectset.core.exporter import read_dataset


def _write_config(tmp_path: Path, **overrides) -> Path:
    data = {
        "light": {"rays_per_axis": 5},
        "tracer": {"intersector": "numpy"},
        "voxels": {"resolution": 4},
        "sweep": {
            "config_ids": [1],
            "feature_sizes": [0.2],
            "min_feature_distances": [0.5],
            "rotations": [[0, 0, 0], [45, 0, 0]],
        },
        "output": {"dataset": "dataset.txt"},
        "rotation_deg": [45, 0, 0],
        "seed": 7,
    }
    data.update(overrides)
    path = tmp_path / "scenario.yaml"
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


def test_cli_simulate(tmp_path: Path) -> None:
    runner = CliRunner()
    cfg_path = _write_config(tmp_path)
    image = tmp_path / "detector.png"
    result = runner.invoke(app, ["simulate", str(cfg_path), "--image", str(image)])
    assert result.exit_code == 0, result.stdout
    assert "Rays hit detector:" in result.stdout
    assert "/25" in result.stdout
    assert image.exists()


def test_cli_simulate_overrides(tmp_path: Path) -> None:
    runner = CliRunner()
    cfg_path = _write_config(tmp_path)
    result = runner.invoke(
        app, ["simulate", str(cfg_path), "--rotation", "0,0,0", "--config-id", "2", "--seed", "3"]
    )
    assert result.exit_code == 0, result.stdout
    assert "with 0 features" not in result.stdout


def test_cli_simulate_rejects_bad_input(tmp_path: Path) -> None:
    runner = CliRunner()
    cfg_path = _write_config(tmp_path)
    assert runner.invoke(app, ["simulate", str(cfg_path), "--rotation", "1,2"]).exit_code != 0
    assert runner.invoke(app, ["simulate", str(cfg_path), "--config-id", "9"]).exit_code != 0

    bad = _write_config(tmp_path, surface={"config_id": 9})
    assert runner.invoke(app, ["simulate", str(bad)]).exit_code != 0


def test_cli_dataset_appends(tmp_path: Path) -> None:
    runner = CliRunner()
    cfg_path = _write_config(tmp_path)
    for _ in range(2):
        result = runner.invoke(app, ["dataset", str(cfg_path)])
        assert result.exit_code == 0, result.stdout
        assert "Completed 2 records over 1 surface configurations" in result.stdout

    out = tmp_path / "dataset.txt"
    text = out.read_text(encoding="utf-8")
    assert text.count("File format:") == 1
    contents = read_dataset(out)
    assert len(contents.records) == 4
    assert contents.voxels[1].size == 64


def test_cli_dataset_angle_step(tmp_path: Path) -> None:
    runner = CliRunner()
    cfg_path = _write_config(tmp_path)
    out = tmp_path / "grid" / "d.txt"
    result = runner.invoke(app, ["dataset", str(cfg_path), "--angle-step", "180", "--output", str(out)])
    assert result.exit_code == 0, result.stdout
    records = read_dataset(out).records
    assert len(records) == 8
    assert records[-1].rotation_deg == (180.0, 180.0, 180.0)

    bad = runner.invoke(app, ["dataset", str(cfg_path), "--angle-step", "0"])
    assert bad.exit_code != 0


def test_cli_voxels(tmp_path: Path) -> None:
    runner = CliRunner()
    cfg_path = _write_config(tmp_path)
    out = tmp_path / "voxels.txt"
    result = runner.invoke(app, ["voxels", str(cfg_path), "--config-id", "3", "--output", str(out)])
    assert result.exit_code == 0, result.stdout
    assert "/64 (config 3)" in result.stdout
    assert list(read_dataset(out).voxels) == [3]


def test_cli_trace(tmp_path: Path) -> None:
    runner = CliRunner()
    image = tmp_path / "trace.png"
    result = runner.invoke(app, [
        "trace", "--rotation", "45,0,0", "--rays-per-axis", "5",
        "--intersector", "numpy", "--image", str(image),
    ])
    assert result.exit_code == 0, result.stdout
    assert "Rays hit detector:" in result.stdout
    assert image.exists()

    assert runner.invoke(app, ["trace", "--config-id", "7"]).exit_code != 0
    assert runner.invoke(app, ["trace", "--object-type", "torus"]).exit_code != 0


def test_cli_mesh_export(tmp_path: Path) -> None:
    runner = CliRunner()
    out = tmp_path / "spiky.ply"
    result = runner.invoke(app, ["mesh", "export", str(out), "--min-distance", "0.6", "--seed", "2"])
    assert result.exit_code == 0, result.stdout
    assert "features on a tetrahedron" in result.stdout
    mesh = trimesh.load(str(out), force="mesh", process=False)
    assert len(mesh.faces) > 6
