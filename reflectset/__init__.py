"""reflectset – reflective ray-tracing dataset generator.

Light rays leave a square source, bounce off a solid covered with procedural
spikes or hemispheres, and the fraction that reaches a bounded detector plane
is recorded together with a voxelized description of the solid:
- Triangle geometry kernel and meshes (core.geometry, core.mesh)
- Solids, features and scenes (core.scene, core.primitives, core.features)
- Poisson-disk surface sampling (core.poisson)
- Scene queries with NumPy / Embree backends (core.intersector)
- Reflective tracer and detector (core.tracer, core.detector)
- Voxelizer and dataset writer (core.voxelizer, core.exporter)
- Simulation driver (core.simulation)
"""

from .core.geometry import EmptyGeometryError, ReflectsetError
from .core.mesh import Mesh, Transform
from .core.scene import FeatureInstance, FeatureKind, Scene, SolidObject
from .core.primitives import ObjectFactory, ObjectType, hemisphere_mesh, spike_mesh, tetrahedron_mesh
from .core.poisson import PoissonDiskSampler
from .core.features import FeaturePlacer, SurfaceConfig
from .core.intersector import (RayBundle, SceneHits, SceneQuery,
                               NumpySceneQuery, EmbreeSceneQuery, AutoSceneQuery)
from .core.detector import DetectorImage, DetectorPlane
from .core.tracer import LightSource, RaySweep, ReflectiveTracer, SweepResult
from .core.voxelizer import VoxelGrid, voxelize
from .core.exporter import DatasetRecord, DatasetWriter, read_dataset
from .core.simulation import Simulation, SimulationConfig
from .motion.population import DriftingPopulation
