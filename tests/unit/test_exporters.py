from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest
import trimesh

from reflectset.core.exporter import (
    HEADER_LINES,
    DatasetRecord,
    DatasetWriter,
    export_mesh,
    read_dataset,
)
from reflectset.core.primitives import tetrahedron_mesh
from reflectset.core.voxelizer import voxelize


def _record(**overrides) -> DatasetRecord:
    values = dict(
        config_id=2,
        rotation_deg=(10.0, 20.0, 30.0),
        percentage=12.5,
        feature_size=0.2,
        min_feature_distance=0.5,
    )
    values.update(overrides)
    return DatasetRecord(**values)


def test_record_line_format() -> None:
    assert _record().to_line() == "2;10.000;20.000;30.000;12.500;0.200;0.500"


def test_record_wraps_rotation() -> None:
    rec = _record(rotation_deg=(-90.0, 370.0, 360.0))
    assert rec.rotation_deg == (270.0, 10.0, 0.0)
    assert rec.to_line().startswith("2;270.000;10.000;0.000;")


def test_record_parse_roundtrip_and_errors() -> None:
    rec = DatasetRecord.from_line("4;5.000;0.000;355.000;81.333;0.150;0.300\n")
    assert rec.config_id == 4
    assert rec.rotation_deg == (5.0, 0.0, 355.0)
    assert rec.percentage == pytest.approx(81.333)
    with pytest.raises(ValueError):
        DatasetRecord.from_line("1;2;3")


def test_header_written_once(tmp_path: Path) -> None:
    path = tmp_path / "out" / "dataset.txt"
    with DatasetWriter(path) as w:
        w.write_record(_record())
        assert w.records_written == 1
    with DatasetWriter(path) as w:
        w.write_record(_record(config_id=3))

    lines = path.read_text(encoding="utf-8").splitlines()
    assert lines[: len(HEADER_LINES)] == list(HEADER_LINES)
    assert lines.count("File format:") == 1
    assert lines[len(HEADER_LINES)].startswith("2;")
    assert lines[-1].startswith("3;")


def test_voxels_and_records_read_back(tmp_path: Path) -> None:
    path = tmp_path / "dataset.txt"
    grid = voxelize(tetrahedron_mesh().triangles(), config_id=2, resolution=4)
    with DatasetWriter(path) as w:
        w.write_voxels(grid)
        w.write_record(_record())
        w.write_record(_record(rotation_deg=(5.0, 0.0, 0.0), percentage=40.0))
        assert w.voxel_blocks_written == 1

    contents = read_dataset(path)
    assert list(contents.voxels) == [2]
    assert np.array_equal(contents.voxels[2], grid.labels.ravel())
    assert len(contents.records) == 2
    assert contents.records[1].percentage == pytest.approx(40.0)


def test_read_dataset_reports_bad_lines(tmp_path: Path) -> None:
    path = tmp_path / "broken.txt"
    path.write_text("\n".join(HEADER_LINES) + "\n1;0;0\n", encoding="utf-8")
    with pytest.raises(ValueError, match="broken.txt:5"):
        read_dataset(path)


def test_writer_rejects_writes_after_close(tmp_path: Path) -> None:
    w = DatasetWriter(tmp_path / "d.txt")
    w.close()
    w.close()
    with pytest.raises(ValueError):
        w.write_record(_record())


def test_export_mesh_roundtrip(tmp_path: Path) -> None:
    out = export_mesh(tetrahedron_mesh(), tmp_path / "mesh" / "tetra.ply")
    assert out.exists()
    loaded = trimesh.load(str(out), force="mesh", process=False)
    assert len(loaded.faces) == 6
    assert len(loaded.vertices) == 5
