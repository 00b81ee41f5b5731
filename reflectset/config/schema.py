from __future__ import annotations

from pathlib import Path
from typing import Annotated, Literal, Optional, Union, List

import yaml
from pydantic import BaseModel, Field, model_validator


ObjectKind = Literal["tetrahedron", "cube", "sphere", "capsule", "cylinder", "custom"]


class ObjectConfig(BaseModel):
    type: ObjectKind = "tetrahedron"
    base_size: float = Field(2.0, gt=0.0)
    custom_mesh_path: Optional[Path] = None


class SurfaceConfigModel(BaseModel):
    config_id: int = Field(1, ge=1, le=4)
    feature_size: float = Field(0.2, gt=0.0)
    min_feature_distance: float = Field(0.5, gt=0.0)
    max_sampling_attempts: int = Field(30, ge=1)


class LightConfig(BaseModel):
    position: tuple[float, float, float] = (0.0, 7.0, 0.0)
    direction: tuple[float, float, float] = (0.0, -1.0, 0.0)
    area_size: float = Field(2.0, ge=0.0)
    rays_per_axis: int = Field(15, ge=1)

    @model_validator(mode="after")
    def _validate_direction(self) -> "LightConfig":
        if not any(self.direction):
            raise ValueError("light direction must be non-zero")
        return self


class HorizontalDetectorConfig(BaseModel):
    kind: Literal["horizontal"] = "horizontal"
    height: float = 7.76
    size: float = Field(4.0, gt=0.0)
    resolution: int = Field(15, ge=1)
    plane_tolerance: float = Field(0.01, gt=0.0)


class MountedDetectorConfig(BaseModel):
    kind: Literal["mounted"]
    position: tuple[float, float, float]
    rotation_deg: tuple[float, float, float] = (0.0, 0.0, 0.0)
    width: float = Field(4.0, gt=0.0)
    height: float = Field(4.0, gt=0.0)
    resolution: int = Field(15, ge=1)
    plane_tolerance: float = Field(0.01, gt=0.0)


DetectorConfig = Annotated[
    Union[HorizontalDetectorConfig, MountedDetectorConfig],
    Field(discriminator="kind"),
]


class TracerConfig(BaseModel):
    max_reflections: int = Field(5, ge=0)
    epsilon: float = Field(1e-4, gt=0.0)
    intersector: Literal["auto", "numpy", "embree"] = "auto"


class VoxelConfig(BaseModel):
    resolution: int = Field(16, ge=1)
    threshold: float = Field(0.2, gt=0.0)
    include_features: bool = False


class SweepConfig(BaseModel):
    """Parameter grid walked by the batch dataset generator."""
    config_ids: List[int] = Field(default_factory=lambda: [1, 2, 3])
    feature_sizes: List[float] = Field(default_factory=lambda: [0.1, 0.15, 0.2, 0.25, 0.3])
    min_feature_distances: List[float] = Field(default_factory=lambda: [0.1, 0.2, 0.3, 0.4])
    angle_step_deg: float = Field(5.0, gt=0.0, le=360.0)
    rotations: Optional[List[tuple[float, float, float]]] = None

    @model_validator(mode="after")
    def _validate_grid(self) -> "SweepConfig":
        if not self.config_ids or not self.feature_sizes or not self.min_feature_distances:
            raise ValueError("sweep lists must not be empty")
        if any(c < 1 or c > 4 for c in self.config_ids):
            raise ValueError("config_ids must lie in 1..4")
        if any(v <= 0.0 for v in self.feature_sizes + self.min_feature_distances):
            raise ValueError("feature sizes and min distances must be positive")
        return self


class OutputConfig(BaseModel):
    dataset: Path = Path("dataset.txt")
    image: Optional[Path] = None
    noise_probability: float = Field(0.05, ge=0.0, le=1.0)


class ScenarioConfig(BaseModel):
    object: ObjectConfig = ObjectConfig()
    surface: SurfaceConfigModel = SurfaceConfigModel()
    light: LightConfig = LightConfig()
    detector: DetectorConfig = HorizontalDetectorConfig()
    tracer: TracerConfig = TracerConfig()
    voxels: VoxelConfig = VoxelConfig()
    sweep: SweepConfig = SweepConfig()
    output: OutputConfig = OutputConfig()
    rotation_deg: tuple[float, float, float] = (0.0, 0.0, 0.0)
    seed: Optional[int] = None

    @model_validator(mode="before")
    @classmethod
    def _default_detector_kind(cls, data):
        if isinstance(data, dict) and isinstance(data.get("detector"), dict) and "kind" not in data["detector"]:
            data = {**data, "detector": {**data["detector"], "kind": "horizontal"}}
        return data


def load_config(path: str | Path) -> ScenarioConfig:
    path = Path(path)
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError("Configuration root must be a mapping.")
    cfg = ScenarioConfig.model_validate(data)
    cfg.output.dataset = (path.parent / cfg.output.dataset).resolve()
    if cfg.output.image is not None and not cfg.output.image.is_absolute():
        cfg.output.image = (path.parent / cfg.output.image).resolve()
    if cfg.object.custom_mesh_path is not None and not cfg.object.custom_mesh_path.is_absolute():
        cfg.object.custom_mesh_path = (path.parent / cfg.object.custom_mesh_path).resolve()
    return cfg
