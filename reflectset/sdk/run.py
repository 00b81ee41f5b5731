from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import numpy as np

from ..config import ScenarioConfig, load_config
from ..core.simulation import Simulation
from ..core.tracer import SweepResult
from ..core.utils import get_logger
from ..runtime.builders import (
    build_image,
    build_rotations,
    build_simulation_config,
    build_writer,
)

_log = get_logger()

DEFAULT_SEED = 12345


def _resolve(config: Union[str, Path, ScenarioConfig]) -> ScenarioConfig:
    return load_config(config) if not isinstance(config, ScenarioConfig) else config.model_copy(deep=True)


def _seed(cfg: ScenarioConfig, seed: Optional[int]) -> int:
    return seed if seed is not None else (cfg.seed if cfg.seed is not None else DEFAULT_SEED)


@dataclass(frozen=True)
class SimulationRunResult:
    """Outcome of a single oriented sweep."""

    percentage: float
    hits: int
    total: int
    rotation_deg: Tuple[float, float, float]
    feature_count: int
    sweep: SweepResult
    image_path: Optional[Path]
    config: ScenarioConfig


@dataclass(frozen=True)
class DatasetRunResult:
    """Summary of a batch dataset generation run."""

    stats: Dict[str, Any]
    output_path: Path
    config: ScenarioConfig


def simulate_from_config(
    config: Union[str, Path, ScenarioConfig],
    *,
    rotation: Optional[Tuple[float, float, float]] = None,
    seed: Optional[int] = None,
    image: Optional[Path] = None,
) -> SimulationRunResult:
    """Build the configured solid and surface, orient it and sweep the light source once.

    Parameters
    ----------
    config:
        Path to a YAML file or a pre-loaded :class:`~reflectset.config.schema.ScenarioConfig`.
    rotation:
        Optional Euler override (degrees); defaults to ``config.rotation_deg``.
    seed:
        Optional RNG seed. Falls back to the value in the config or ``12345``.
    image:
        Optional PNG path for the detector raster; defaults to ``config.output.image``.
    """
    cfg = _resolve(config)
    if rotation is not None:
        cfg.rotation_deg = tuple(float(v) for v in rotation)
    if image is not None:
        cfg.output.image = Path(image).resolve()

    rng = np.random.default_rng(_seed(cfg, seed))
    sim = Simulation(build_simulation_config(cfg), rng=rng)
    features = sim.apply_surface_configuration(cfg.surface.config_id)
    result = sim.on_orientation_changed(cfg.rotation_deg)

    image_path: Optional[Path] = None
    if cfg.output.image is not None:
        raster = build_image(cfg, sim.cfg.detector)
        raster.render(result.pixels, rng=rng)
        image_path = raster.save(cfg.output.image)

    _log.info(
        "Rays hit detector: %d/%d (%.1f%%) at rotation %s",
        result.hits, result.total, result.percentage, sim.solid.rotation_deg,
    )
    return SimulationRunResult(
        percentage=result.percentage,
        hits=result.hits,
        total=result.total,
        rotation_deg=sim.solid.rotation_deg,
        feature_count=len(features),
        sweep=result,
        image_path=image_path,
        config=cfg,
    )


def generate_dataset_from_config(
    config: Union[str, Path, ScenarioConfig],
    *,
    output: Optional[Path] = None,
    seed: Optional[int] = None,
) -> DatasetRunResult:
    """Walk the configured sweep grid and append every sample to the dataset file.

    For each ``(config_id, feature_size, min_feature_distance)`` combination
    the surface is regenerated, one voxel block is written, then one record
    per rotation.
    """
    cfg = _resolve(config)
    if output is not None:
        cfg.output.dataset = Path(output).resolve()
    cfg.output.dataset.parent.mkdir(parents=True, exist_ok=True)

    run_seed = _seed(cfg, seed)
    sim = Simulation(build_simulation_config(cfg), rng=np.random.default_rng(run_seed))
    rotations = build_rotations(cfg)
    writer = build_writer(cfg)

    combos = 0
    records = 0
    try:
        for config_id in cfg.sweep.config_ids:
            for feature_size in cfg.sweep.feature_sizes:
                for min_distance in cfg.sweep.min_feature_distances:
                    sim.rng = np.random.default_rng(run_seed)
                    sim.apply_surface_configuration(config_id, feature_size, min_distance)
                    stats = sim.run_to_writer(writer, rotations, close=False)
                    combos += 1
                    records += stats["records"]
    finally:
        writer.close()

    stats = {"combinations": combos, "records": records, "rotations": len(rotations)}
    _log.info("Dataset written to %s: %d combinations, %d records", cfg.output.dataset, combos, records)
    return DatasetRunResult(stats=stats, output_path=Path(cfg.output.dataset), config=cfg)
