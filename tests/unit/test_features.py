from __future__ import annotations

import numpy as np
import pytest

from reflectset.core.features import FeaturePlacer, SurfaceConfig
from reflectset.core.geometry import (
    UP,
    closest_points_on_triangles,
    point_triangle_distance,
    triangle_normals,
)
from reflectset.core.mesh import Transform
from reflectset.core.primitives import tetrahedron_mesh
from reflectset.core.scene import FeatureKind, SolidObject


def _solid(scale: float = 1.0) -> SolidObject:
    return SolidObject(tetrahedron_mesh(), Transform(scale=scale), name="tetra")


def _world_anchor(solid: SolidObject, feature) -> np.ndarray:
    return solid.transform.compose(feature.transform).position


def _world_up(solid: SolidObject, feature) -> np.ndarray:
    r = solid.transform.compose(feature.transform).rotation
    return r @ UP


def test_surface_config_flags() -> None:
    assert not SurfaceConfig.FLAT.with_spikes and not SurfaceConfig.FLAT.with_hemispheres
    assert SurfaceConfig.SPIKES.with_spikes and not SurfaceConfig.SPIKES.with_hemispheres
    assert SurfaceConfig.HEMISPHERES.with_hemispheres and not SurfaceConfig.HEMISPHERES.with_spikes
    assert SurfaceConfig.MIXED.with_spikes and SurfaceConfig.MIXED.with_hemispheres
    with pytest.raises(ValueError):
        SurfaceConfig(5)


def test_flat_configuration_places_nothing() -> None:
    solid = _solid()
    assert FeaturePlacer(SurfaceConfig.FLAT).place(solid, np.random.default_rng(0)) == []
    assert solid.features == ()


def test_spikes_sit_on_the_surface_along_the_normal() -> None:
    solid = _solid()
    features = FeaturePlacer(SurfaceConfig.SPIKES, 0.2, 0.5).place(solid, np.random.default_rng(1))
    assert len(features) > 5
    assert all(f.kind is FeatureKind.SPIKE for f in features)

    tris = solid.base_triangles()
    normals = triangle_normals(tris)
    anchors = np.array([_world_anchor(solid, f) for f in features])
    _, dist, _ = closest_points_on_triangles(anchors, tris)
    assert np.all(dist < 1e-9)
    for f, p in zip(features, anchors):
        # anchors on an edge touch two faces; the up axis matches one of them
        touching = point_triangle_distance(p, tris[:, 0], tris[:, 1], tris[:, 2]) < 1e-9
        assert np.max(normals[touching] @ _world_up(solid, f)) > 0.999


def test_features_use_absolute_world_size() -> None:
    # a solid scaled x3 still gets features of relative * largest side
    solid = _solid(scale=3.0)
    placer = FeaturePlacer(SurfaceConfig.HEMISPHERES, 0.1, 1.0)
    features = placer.place(solid, np.random.default_rng(2))
    assert placer.absolute_feature_size(solid) == pytest.approx(0.6)
    for f in features:
        assert f.kind is FeatureKind.HEMISPHERE
        assert solid.transform.compose(f.transform).uniform_scale() == pytest.approx(0.6)


def test_mixed_configuration_uses_both_kinds() -> None:
    solid = _solid()
    features = FeaturePlacer(SurfaceConfig.MIXED, 0.1, 0.3).place(solid, np.random.default_rng(3))
    kinds = {f.kind for f in features}
    assert kinds == {FeatureKind.SPIKE, FeatureKind.HEMISPHERE}


def test_features_follow_solid_rotation() -> None:
    solid = _solid()
    FeaturePlacer(SurfaceConfig.SPIKES, 0.2, 0.5).place(solid, np.random.default_rng(4))
    before = np.array([_world_anchor(solid, f) for f in solid.features])
    solid.set_rotation((0.0, 90.0, 0.0))
    after = np.array([_world_anchor(solid, f) for f in solid.features])
    assert np.allclose(after, before @ solid.transform.rotation.T)


def test_place_replaces_previous_features() -> None:
    solid = _solid()
    placer = FeaturePlacer(SurfaceConfig.SPIKES, 0.2, 0.5)
    first = placer.place(solid, np.random.default_rng(5))
    rev = solid.revision
    second = placer.place(solid, np.random.default_rng(6))
    assert solid.revision > rev
    assert len(solid.features) == len(second)
    current = {id(f) for f in solid.features}
    assert all(id(f) not in current for f in first)


def test_same_seed_same_layout() -> None:
    a, b = _solid(), _solid()
    FeaturePlacer(SurfaceConfig.MIXED, 0.2, 0.5).place(a, np.random.default_rng(9))
    FeaturePlacer(SurfaceConfig.MIXED, 0.2, 0.5).place(b, np.random.default_rng(9))
    assert [f.kind for f in a.features] == [f.kind for f in b.features]
    for fa, fb in zip(a.features, b.features):
        assert np.allclose(fa.transform.position, fb.transform.position)


def test_invalid_feature_size() -> None:
    with pytest.raises(ValueError):
        FeaturePlacer(SurfaceConfig.SPIKES, relative_feature_size=0.0)
