from __future__ import annotations

from pathlib import Path
from typing import Iterator, List, Optional, Tuple

import numpy as np

from ..config import ScenarioConfig
from ..core.detector import DetectorImage, DetectorPlane
from ..core.exporter import DatasetWriter
from ..core.simulation import SimulationConfig
from ..core.tracer import LightSource


def build_light(cfg: ScenarioConfig) -> LightSource:
    light_cfg = cfg.light
    return LightSource(
        position=np.asarray(light_cfg.position, dtype=np.float64),
        direction=np.asarray(light_cfg.direction, dtype=np.float64),
        area_size=light_cfg.area_size,
    )


def build_detector(cfg: ScenarioConfig) -> DetectorPlane:
    det_cfg = cfg.detector
    if det_cfg.kind == "horizontal":
        return DetectorPlane.horizontal(
            height=det_cfg.height,
            size=det_cfg.size,
            resolution=det_cfg.resolution,
            plane_tolerance=det_cfg.plane_tolerance,
        )
    if det_cfg.kind == "mounted":
        return DetectorPlane.mounted(
            position=det_cfg.position,
            euler_deg=det_cfg.rotation_deg,
            width=det_cfg.width,
            height=det_cfg.height,
            resolution=det_cfg.resolution,
            plane_tolerance=det_cfg.plane_tolerance,
        )
    raise ValueError(f"Unsupported detector kind: {det_cfg.kind}")


def build_simulation_config(cfg: ScenarioConfig) -> SimulationConfig:
    obj = cfg.object
    surface = cfg.surface
    return SimulationConfig(
        object_type=obj.type,
        base_object_size=obj.base_size,
        custom_mesh_path=str(obj.custom_mesh_path) if obj.custom_mesh_path is not None else None,
        surface_config=surface.config_id,
        feature_size=surface.feature_size,
        min_feature_distance=surface.min_feature_distance,
        max_sampling_attempts=surface.max_sampling_attempts,
        light=build_light(cfg),
        detector=build_detector(cfg),
        rays_per_axis=cfg.light.rays_per_axis,
        max_reflections=cfg.tracer.max_reflections,
        epsilon=cfg.tracer.epsilon,
        intersector=cfg.tracer.intersector,
        voxel_resolution=cfg.voxels.resolution,
        voxel_threshold=cfg.voxels.threshold,
        voxelize_features=cfg.voxels.include_features,
    )


def build_image(cfg: ScenarioConfig, detector: DetectorPlane) -> DetectorImage:
    return DetectorImage(detector.resolution, noise_probability=cfg.output.noise_probability)


def build_writer(cfg: ScenarioConfig, path: Optional[Path] = None) -> DatasetWriter:
    return DatasetWriter(path if path is not None else cfg.output.dataset)


def rotation_grid(step_deg: float) -> Iterator[Tuple[float, float, float]]:
    """Euler triples over [0, 360)^3, X outermost and Z innermost."""
    angles = np.arange(0.0, 360.0, step_deg)
    for ax in angles:
        for ay in angles:
            for az in angles:
                yield (float(ax), float(ay), float(az))


def build_rotations(cfg: ScenarioConfig) -> List[Tuple[float, float, float]]:
    if cfg.sweep.rotations is not None:
        return [tuple(float(v) for v in r) for r in cfg.sweep.rotations]
    return list(rotation_grid(cfg.sweep.angle_step_deg))
