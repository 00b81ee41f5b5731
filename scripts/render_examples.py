from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import matplotlib
import matplotlib.pyplot as plt
import numpy as np

from reflectset.config import load_config
from reflectset.core.detector import DetectorPlane
from reflectset.runtime.builders import build_detector
from reflectset.sdk import simulate_from_config
from reflectset.sdk.run import SimulationRunResult

matplotlib.use("Agg")


@dataclass(frozen=True)
class ExampleSpec:
    name: str
    config_path: Path
    max_paths: Optional[int] = None


EXAMPLES: List[ExampleSpec] = [
    ExampleSpec(name="tetra_flat", config_path=Path("examples/configs/tetra_flat.yaml")),
    ExampleSpec(name="tetra_spikes", config_path=Path("examples/configs/tetra_spikes.yaml")),
    ExampleSpec(name="sphere_mixed", config_path=Path("examples/configs/sphere_mixed.yaml"), max_paths=150),
]

IMAGE_DIR = Path("examples/images")


def _ensure_dirs() -> None:
    IMAGE_DIR.mkdir(parents=True, exist_ok=True)


def run_example(example: ExampleSpec, seed: Optional[int] = None) -> SimulationRunResult:
    cfg = load_config(example.config_path)
    return simulate_from_config(cfg, seed=seed)


def _detector_outline(detector: DetectorPlane) -> np.ndarray:
    hw, hh = detector.half_width, detector.half_height
    corners = np.array([[-hw, -hh, 0.0], [hw, -hh, 0.0], [hw, hh, 0.0], [-hw, hh, 0.0], [-hw, -hh, 0.0]])
    return detector.to_world(corners)


def render_paths(name: str, run: SimulationRunResult, detector: DetectorPlane, max_paths: Optional[int] = None) -> Path:
    sweep = run.sweep
    if not sweep.segments:
        raise ValueError(f"No ray paths recorded for {name}")
    idx = np.arange(sweep.total)
    if max_paths is not None and len(idx) > max_paths:
        idx = np.random.default_rng(0).choice(idx, size=max_paths, replace=False)

    fig = plt.figure(figsize=(10, 5), dpi=150)
    outline = _detector_outline(detector)
    # side view (X vs Y-up) and top view (X vs Z)
    for k, (axis, label) in enumerate([(1, "Y"), (2, "Z")]):
        ax = fig.add_subplot(1, 2, k + 1)
        for i in idx:
            path = sweep.segments[i]
            color = "tab:green" if sweep.hit[i] else "tab:gray"
            ax.plot(path[:, 0], path[:, axis], color=color, linewidth=0.4, alpha=0.6)
        ax.plot(outline[:, 0], outline[:, axis], color="tab:red", linewidth=1.5)
        ax.set_xlabel("X")
        ax.set_ylabel(label)
        ax.set_aspect("equal", adjustable="datalim")
        ax.set_title("Side view (XY)" if axis == 1 else "Top view (XZ)")
    fig.suptitle(f"{name.replace('_', ' ').title()}: {run.hits}/{run.total} rays ({run.percentage:.1f}%)")
    fig.tight_layout()
    out_path = IMAGE_DIR / f"{name}_paths.png"
    fig.savefig(out_path)
    plt.close(fig)
    return out_path


def generate_examples(names: List[str], seed: Optional[int] = None) -> None:
    _ensure_dirs()
    selected = EXAMPLES if not names else [example for example in EXAMPLES if example.name in names]
    if not selected:
        raise ValueError("No matching examples selected.")
    for example in selected:
        logging.info("Running example '%s'", example.name)
        run = run_example(example, seed=seed)
        if run.image_path is not None:
            logging.info("Saved %s", run.image_path)
        detector = build_detector(run.config)
        image_path = render_paths(example.name, run, detector, max_paths=example.max_paths)
        logging.info("Saved %s", image_path)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run reflectset example scenarios and render ray paths.")
    parser.add_argument("--example", "-e", action="append", help="Example name to run (default: all).")
    parser.add_argument("--seed", type=int, default=None, help="Override the seed of every example.")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO).")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO), format="[%(levelname)s] %(message)s")
    generate_examples(args.example or [], seed=args.seed)


if __name__ == "__main__":
    main()
