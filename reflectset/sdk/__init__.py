from .run import (
    DatasetRunResult,
    SimulationRunResult,
    generate_dataset_from_config,
    simulate_from_config,
)

__all__ = [
    "DatasetRunResult",
    "SimulationRunResult",
    "generate_dataset_from_config",
    "simulate_from_config",
]
