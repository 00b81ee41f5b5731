from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Tuple

import numpy as np
import typer
from pydantic import ValidationError

from ..config import ScenarioConfig, load_config
from ..core.detector import DetectorImage, DetectorPlane
from ..core.exporter import DatasetWriter, export_mesh
from ..core.features import SurfaceConfig
from ..core.primitives import ObjectType
from ..core.simulation import Simulation, SimulationConfig
from ..core.tracer import LightSource
from ..runtime.builders import build_simulation_config
from ..sdk.run import generate_dataset_from_config, simulate_from_config

app = typer.Typer(help="Reflective ray-tracing dataset utilities")
mesh_app = typer.Typer(help="Mesh helpers")
app.add_typer(mesh_app, name="mesh")

OBJECT_TYPES = [t.value for t in ObjectType]


def _configure_logging(level: str) -> None:
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=numeric, format="[%(levelname)s] %(message)s")
    logging.getLogger("reflectset").setLevel(numeric)


def _load(config: Path) -> ScenarioConfig:
    try:
        return load_config(config)
    except (ValidationError, ValueError) as exc:
        raise typer.BadParameter(str(exc), param_hint="CONFIG") from exc


def _parse_triplet(text: str, param_hint: str) -> Tuple[float, float, float]:
    parts = [p for p in text.replace(",", " ").split() if p]
    try:
        values = tuple(float(p) for p in parts)
    except ValueError as exc:
        raise typer.BadParameter(f"Expected three numbers, got '{text}'.", param_hint=param_hint) from exc
    if len(values) != 3:
        raise typer.BadParameter(f"Expected three numbers, got '{text}'.", param_hint=param_hint)
    return values  # type: ignore[return-value]


def _check_config_id(config_id: int) -> int:
    if config_id not in {c.value for c in SurfaceConfig}:
        raise typer.BadParameter("config id must be one of 1, 2, 3, 4.", param_hint="--config-id")
    return config_id


@app.command("simulate")
def simulate(
    config: Path = typer.Argument(..., exists=True, readable=True, help="Path to YAML configuration file."),
    rotation: Optional[str] = typer.Option(None, "--rotation", "-r", help="Euler angles 'x,y,z' in degrees."),
    config_id: Optional[int] = typer.Option(None, "--config-id", help="Override surface configuration (1-4)."),
    image: Optional[Path] = typer.Option(None, "--image", help="Write the detector raster to this PNG."),
    seed: Optional[int] = typer.Option(None, "--seed", help="Override random seed."),
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level (e.g. INFO, DEBUG)."),
) -> None:
    """Run one oriented sweep of the scenario in a YAML config."""

    _configure_logging(log_level)
    cfg = _load(config)
    if config_id is not None:
        cfg.surface.config_id = _check_config_id(config_id)
    rot = _parse_triplet(rotation, "--rotation") if rotation is not None else None
    result = simulate_from_config(cfg, rotation=rot, seed=seed, image=image)
    typer.echo(
        f"Rays hit detector: {result.hits}/{result.total} ({result.percentage:.1f}%) "
        f"with {result.feature_count} features"
    )
    if result.image_path is not None:
        typer.echo(f"Detector image → {result.image_path}")


@app.command("dataset")
def dataset(
    config: Path = typer.Argument(..., exists=True, readable=True, help="Path to YAML configuration file."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Override dataset path (appended to)."),
    angle_step: Optional[float] = typer.Option(None, "--angle-step", help="Override the Euler grid step in degrees."),
    seed: Optional[int] = typer.Option(None, "--seed", help="Override random seed."),
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level (e.g. INFO, DEBUG)."),
) -> None:
    """Walk the sweep grid of a YAML config and append records to the dataset file."""

    _configure_logging(log_level)
    cfg = _load(config)
    if angle_step is not None:
        if angle_step <= 0.0 or angle_step > 360.0:
            raise typer.BadParameter("angle step must lie in (0, 360].", param_hint="--angle-step")
        cfg.sweep.angle_step_deg = angle_step
        cfg.sweep.rotations = None
    result = generate_dataset_from_config(cfg, output=output, seed=seed)
    typer.echo(
        f"Completed {result.stats['records']} records over {result.stats['combinations']} "
        f"surface configurations → {result.output_path}"
    )


@app.command("voxels")
def voxels(
    config: Path = typer.Argument(..., exists=True, readable=True, help="Path to YAML configuration file."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Append the voxel record to this dataset file."),
    config_id: Optional[int] = typer.Option(None, "--config-id", help="Override surface configuration (1-4)."),
    seed: Optional[int] = typer.Option(None, "--seed", help="Override random seed."),
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level (e.g. INFO, DEBUG)."),
) -> None:
    """Voxelize the configured solid at its configured rotation."""

    _configure_logging(log_level)
    cfg = _load(config)
    if config_id is not None:
        cfg.surface.config_id = _check_config_id(config_id)
    run_seed = seed if seed is not None else (cfg.seed if cfg.seed is not None else 12345)
    sim = Simulation(build_simulation_config(cfg), rng=np.random.default_rng(run_seed))
    sim.apply_surface_configuration(cfg.surface.config_id)
    sim.solid.set_rotation(cfg.rotation_deg)
    grid = sim.get_voxel_grid()
    if output is not None:
        with DatasetWriter(output) as writer:
            writer.write_voxels(grid)
    typer.echo(f"Occupied voxels: {grid.occupied}/{grid.labels.size} (config {grid.config_id})")


@app.command("trace")
def trace(
    object_type: str = typer.Option("tetrahedron", "--object-type", help=f"Base solid: {', '.join(OBJECT_TYPES)}."),
    config_id: int = typer.Option(1, "--config-id", help="Surface configuration (1 flat, 2 spikes, 3 hemispheres, 4 mixed)."),
    feature_size: float = typer.Option(0.2, "--feature-size", help="Feature size relative to the solid."),
    min_distance: float = typer.Option(0.5, "--min-distance", help="Minimum spacing between features."),
    rotation: str = typer.Option("0,0,0", "--rotation", "-r", help="Euler angles 'x,y,z' in degrees."),
    rays_per_axis: int = typer.Option(15, "--rays-per-axis", help="Rays per side of the light source grid."),
    max_reflections: int = typer.Option(5, "--max-reflections", help="Bounces before a ray is dropped."),
    detector_height: float = typer.Option(7.76, "--detector-height", help="Height of the horizontal detector."),
    detector_size: float = typer.Option(4.0, "--detector-size", help="Side length of the detector."),
    intersector: str = typer.Option("auto", "--intersector", help="Scene query backend: auto, numpy or embree."),
    image: Optional[Path] = typer.Option(None, "--image", help="Write the detector raster to this PNG."),
    seed: int = typer.Option(101, "--seed", help="Random seed for feature placement and noise."),
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level (e.g. INFO, DEBUG)."),
) -> None:
    """Quick single sweep driven entirely from CLI options."""

    if object_type not in OBJECT_TYPES:
        raise typer.BadParameter(f"object type must be one of {OBJECT_TYPES}.", param_hint="--object-type")
    _check_config_id(config_id)
    if rays_per_axis < 1:
        raise typer.BadParameter("rays per axis must be >= 1.", param_hint="--rays-per-axis")
    if feature_size <= 0.0 or min_distance <= 0.0:
        raise typer.BadParameter("feature size and min distance must be positive.", param_hint="--feature-size")
    if intersector not in {"auto", "numpy", "embree"}:
        raise typer.BadParameter("intersector must be auto, numpy or embree.", param_hint="--intersector")
    rot = _parse_triplet(rotation, "--rotation")
    _configure_logging(log_level)

    detector = DetectorPlane.horizontal(height=detector_height, size=detector_size, resolution=rays_per_axis)
    sim_cfg = SimulationConfig(
        object_type=object_type,
        feature_size=feature_size,
        min_feature_distance=min_distance,
        light=LightSource(),
        detector=detector,
        rays_per_axis=rays_per_axis,
        max_reflections=max_reflections,
        intersector=intersector,
    )
    rng = np.random.default_rng(seed)
    sim = Simulation(sim_cfg, rng=rng)
    sim.apply_surface_configuration(config_id)
    result = sim.on_orientation_changed(rot)
    typer.echo(f"Rays hit detector: {result.hits}/{result.total} ({result.percentage:.1f}%)")

    if image is not None:
        raster = DetectorImage(detector.resolution)
        raster.render(result.pixels, rng=rng)
        raster.save(image.resolve())


@mesh_app.command("export")
def mesh_export(
    output: Path = typer.Argument(..., help="Output mesh path; the suffix picks the format (.ply, .obj, .stl)."),
    object_type: str = typer.Option("tetrahedron", "--object-type", help=f"Base solid: {', '.join(OBJECT_TYPES)}."),
    config_id: int = typer.Option(2, "--config-id", help="Surface configuration (1-4)."),
    feature_size: float = typer.Option(0.2, "--feature-size", help="Feature size relative to the solid."),
    min_distance: float = typer.Option(0.5, "--min-distance", help="Minimum spacing between features."),
    rotation: str = typer.Option("0,0,0", "--rotation", "-r", help="Euler angles 'x,y,z' in degrees."),
    seed: int = typer.Option(101, "--seed", help="Random seed for feature placement."),
) -> None:
    """Export the world-space solid including its surface features."""

    if object_type not in OBJECT_TYPES:
        raise typer.BadParameter(f"object type must be one of {OBJECT_TYPES}.", param_hint="--object-type")
    _check_config_id(config_id)
    rot = _parse_triplet(rotation, "--rotation")

    sim_cfg = SimulationConfig(object_type=object_type, feature_size=feature_size, min_feature_distance=min_distance)
    sim = Simulation(sim_cfg, rng=np.random.default_rng(seed))
    sim.apply_surface_configuration(config_id)
    sim.solid.set_rotation(rot)
    out = export_mesh(sim.solid.world_mesh(include_features=True), output.resolve())
    typer.echo(f"Wrote {len(sim.solid.features)} features on a {object_type} to {out}")


def main() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
