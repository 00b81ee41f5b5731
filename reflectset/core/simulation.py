from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple
import numpy as np

from .detector import DetectorPlane
from .exporter import DatasetRecord, DatasetWriter
from .features import FeaturePlacer, SurfaceConfig
from .intersector import SceneQuery, make_scene_query
from .mesh import Transform
from .primitives import ObjectFactory, ObjectType, scale_to_size
from .scene import FeatureInstance, Scene, SolidObject
from .tracer import LightSource, RaySweep, ReflectiveTracer, SweepResult
from .utils import get_logger
from .voxelizer import VoxelGrid, voxelize

_log = get_logger()


@dataclass
class SimulationConfig:
    object_type: str = ObjectType.TETRAHEDRON.value
    base_object_size: float = 2.0
    custom_mesh_path: Optional[str] = None
    surface_config: int = int(SurfaceConfig.FLAT)
    feature_size: float = 0.2            # relative to the largest side of the base solid
    min_feature_distance: float = 0.5
    max_sampling_attempts: int = 30
    light: LightSource = field(default_factory=LightSource)
    detector: DetectorPlane = field(default_factory=DetectorPlane.horizontal)
    rays_per_axis: int = 15
    max_reflections: int = 5
    epsilon: float = 1e-4
    intersector: str = "auto"
    voxel_resolution: int = 16
    voxel_threshold: float = 0.2
    voxelize_features: bool = False


class Simulation:
    """One solid under one light source and detector.

    Owns the solid, its features and the scene query. All randomness comes
    from ``rng``; ``generate_dataset`` reseeds it whenever the surface is
    rebuilt so records are reproducible per seed.
    """

    def __init__(
        self,
        cfg: Optional[SimulationConfig] = None,
        rng: Optional[np.random.Generator] = None,
        scene_query: Optional[SceneQuery] = None,
        factory: Optional[ObjectFactory] = None,
    ) -> None:
        self.cfg = cfg or SimulationConfig()
        if self.cfg.rays_per_axis < 1:
            raise ValueError("rays_per_axis must be >= 1.")
        self.rng = rng if rng is not None else np.random.default_rng()
        self.factory = factory or ObjectFactory()
        self.scene = Scene(include_features=True)
        self.scene_query = scene_query if scene_query is not None else make_scene_query(self.cfg.intersector, self.scene)
        self.tracer = ReflectiveTracer(
            self.scene_query,
            self.cfg.detector,
            max_reflections=self.cfg.max_reflections,
            epsilon=self.cfg.epsilon,
        )
        self.config_id = int(SurfaceConfig.FLAT)
        self.feature_size = self.cfg.feature_size
        self.min_feature_distance = self.cfg.min_feature_distance
        self.last_result: Optional[SweepResult] = None
        self._surface_key: Optional[Tuple[int, float, float]] = None
        self.solid = self.build_object()

    # -- object lifecycle --
    def build_object(self) -> SolidObject:
        mesh = self.factory.build(self.cfg.object_type, self.cfg.custom_mesh_path)
        scale = scale_to_size(mesh, self.cfg.base_object_size)
        solid = SolidObject(mesh, Transform(scale=scale), name=str(ObjectType(self.cfg.object_type).value))
        self.scene.clear()
        self.scene.add(solid)
        self.solid = solid
        self._surface_key = None
        _log.info("Built %s with %d triangles (scale %.3f).", solid.name, len(mesh), scale)
        return solid

    def apply_surface_configuration(
        self,
        config_id: int,
        feature_size: Optional[float] = None,
        min_feature_distance: Optional[float] = None,
    ) -> List[FeatureInstance]:
        config = SurfaceConfig(config_id)
        fs = self.feature_size if feature_size is None else float(feature_size)
        md = self.min_feature_distance if min_feature_distance is None else float(min_feature_distance)
        placer = FeaturePlacer(config, fs, md, max_attempts=self.cfg.max_sampling_attempts)
        features = placer.place(self.solid, self.rng)
        self.config_id = int(config)
        self.feature_size = fs
        self.min_feature_distance = md
        self._surface_key = (int(config), fs, md)
        _log.info("Surface configuration %s: %d features.", config.name, len(features))
        return features

    def clear_features(self) -> None:
        self.solid.clear_features()
        self._surface_key = None

    # -- measurements --
    def on_orientation_changed(self, rotation_deg: Tuple[float, float, float]) -> SweepResult:
        self.solid.set_rotation(rotation_deg)
        return self.cast_all_rays()

    def cast_all_rays(self) -> SweepResult:
        sweep = RaySweep.from_light_source(self.cfg.light, self.cfg.rays_per_axis)
        result = self.tracer.sweep(sweep)
        self.last_result = result
        _log.debug("Rays hit detector: %d/%d (%.1f%%)", result.hits, result.total, result.percentage)
        return result

    def get_voxel_grid(self, config_id: Optional[int] = None) -> VoxelGrid:
        cid = self.config_id if config_id is None else int(config_id)
        tris = self.solid.world_triangles(include_features=self.cfg.voxelize_features)
        return voxelize(tris, cid, resolution=self.cfg.voxel_resolution, threshold=self.cfg.voxel_threshold)

    def record_current_state(self) -> DatasetRecord:
        if self.last_result is None:
            raise RuntimeError("No sweep has been run yet.")
        return DatasetRecord(
            config_id=self.config_id,
            rotation_deg=self.solid.rotation_deg,
            percentage=self.last_result.percentage,
            feature_size=self.feature_size,
            min_feature_distance=self.min_feature_distance,
        )

    def generate_dataset(
        self,
        seed: int,
        config_id: int,
        feature_size: float,
        min_feature_distance: float,
        rotation: Tuple[float, float, float],
    ) -> DatasetRecord:
        """Orient, sweep and describe one sample.

        Features are regenerated from ``seed`` only when the surface
        parameters differ from the ones currently applied.
        """
        key = (int(SurfaceConfig(config_id)), float(feature_size), float(min_feature_distance))
        if key != self._surface_key:
            self.rng = np.random.default_rng(seed)
            self.apply_surface_configuration(config_id, feature_size, min_feature_distance)
        self.on_orientation_changed(rotation)
        return self.record_current_state()

    def run_to_writer(
        self,
        writer: DatasetWriter,
        rotations: Iterable[Tuple[float, float, float]],
        close: bool = True,
    ) -> Dict[str, Any]:
        """Write one voxel block for the current surface, then one record per rotation.

        Returns run statistics.
        """
        writer.write_voxels(self.get_voxel_grid())
        percentages: List[float] = []
        for rotation in rotations:
            self.on_orientation_changed(rotation)
            record = self.record_current_state()
            writer.write_record(record)
            percentages.append(record.percentage)
        if close:
            writer.close()
        stats = {
            "records": len(percentages),
            "mean_percentage": float(np.mean(percentages)) if percentages else 0.0,
        }
        _log.info("Simulation finished: %d records (mean %.2f%%)", stats["records"], stats["mean_percentage"])
        return stats
