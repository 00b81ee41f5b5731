from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional, TextIO, Tuple
import numpy as np
import pathlib

from .mesh import Mesh
from .utils import get_logger, wrap_degrees
from .voxelizer import VoxelGrid

_log = get_logger()

VOXEL_TAG = "CONFIG_VOXELS"
HEADER_LINES = (
    "File format:",
    f"{VOXEL_TAG};config_id;voxels",
    "config_id;rotationX;rotationY;rotationZ;percentage;featureSize;minFeatureDistance",
    "",
)


@dataclass(frozen=True)
class DatasetRecord:
    config_id: int
    rotation_deg: Tuple[float, float, float]
    percentage: float
    feature_size: float
    min_feature_distance: float

    def __post_init__(self) -> None:
        wrapped = wrap_degrees(self.rotation_deg)
        object.__setattr__(self, "rotation_deg", (float(wrapped[0]), float(wrapped[1]), float(wrapped[2])))

    def to_line(self) -> str:
        rx, ry, rz = self.rotation_deg
        fields = [rx, ry, rz, self.percentage, self.feature_size, self.min_feature_distance]
        return ";".join([str(int(self.config_id))] + [f"{v:.3f}" for v in fields])

    @staticmethod
    def from_line(line: str) -> "DatasetRecord":
        parts = line.strip().split(";")
        if len(parts) != 7:
            raise ValueError(f"Expected 7 fields in dataset record, got {len(parts)}: {line!r}")
        return DatasetRecord(
            config_id=int(parts[0]),
            rotation_deg=(float(parts[1]), float(parts[2]), float(parts[3])),
            percentage=float(parts[4]),
            feature_size=float(parts[5]),
            min_feature_distance=float(parts[6]),
        )


class DatasetWriter:
    """Append-only semicolon dataset file.

    The header block is written only when the file is new or empty, so
    repeated runs keep extending the same file.
    """

    def __init__(self, path: str | pathlib.Path) -> None:
        self.path = pathlib.Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        is_empty = not self.path.exists() or self.path.stat().st_size == 0
        self._fh: Optional[TextIO] = open(self.path, "a", encoding="utf-8", newline="\n")
        self.records_written = 0
        self.voxel_blocks_written = 0
        if is_empty:
            self._fh.write("\n".join(HEADER_LINES) + "\n")
        _log.info("Opened dataset %s (append, header=%s)", self.path.name, is_empty)

    def _handle(self) -> TextIO:
        if self._fh is None:
            raise ValueError(f"Dataset writer for {self.path} is closed.")
        return self._fh

    def write_voxels(self, grid: VoxelGrid) -> None:
        self._handle().write(grid.to_record() + "\n")
        self.voxel_blocks_written += 1

    def write_record(self, record: DatasetRecord) -> None:
        self._handle().write(record.to_line() + "\n")
        self.records_written += 1

    def flush(self) -> None:
        if self._fh is not None:
            self._fh.flush()

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None

    def __enter__(self) -> "DatasetWriter":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


@dataclass
class DatasetContents:
    voxels: Dict[int, np.ndarray] = field(default_factory=dict)   # config id -> flat labels
    records: List[DatasetRecord] = field(default_factory=list)


def read_dataset(path: str | pathlib.Path) -> DatasetContents:
    """Parse a dataset file written by :class:`DatasetWriter`.

    Header lines are skipped. A later voxel block for the same config id
    replaces an earlier one.
    """
    contents = DatasetContents()
    with open(path, "r", encoding="utf-8") as f:
        for lineno, raw in enumerate(f, start=1):
            line = raw.strip()
            if not line or line in HEADER_LINES:
                continue
            if line.startswith(VOXEL_TAG + ";"):
                parts = line.split(";")
                contents.voxels[int(parts[1])] = np.asarray([int(v) for v in parts[2:]], dtype=np.uint8)
                continue
            try:
                contents.records.append(DatasetRecord.from_line(line))
            except ValueError as exc:
                raise ValueError(f"{path}:{lineno}: {exc}") from exc
    return contents


def export_mesh(mesh: Mesh, path: str | pathlib.Path) -> pathlib.Path:
    """Write ``mesh`` through trimesh; the format follows the file suffix."""
    path = pathlib.Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    mesh.to_trimesh().export(str(path))
    _log.info("Wrote %d triangles to %s", len(mesh), path)
    return path
