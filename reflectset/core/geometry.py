"""Triangle geometry kernel.

Closest-point, distance and area-weighted sampling routines shared by the
surface sampler, the feature placer and the voxelizer. Every function accepts
broadcastable numpy arrays (points and triangle corners with a trailing axis
of 3) and is total for finite input: degenerate triangles and zero-length
edges never produce NaN.
"""
from __future__ import annotations
from typing import Optional, Tuple
import numpy as np

from .mesh import Mesh, Transform
from .utils import safe_normalize

# Relative tolerance on the squared Gram determinant below which a triangle
# is treated as degenerate (zero area).
_DEGENERATE_RTOL = 1e-12
_TINY = 1e-300

UP = np.array([0.0, 1.0, 0.0])


class ReflectsetError(Exception):
    """Base class for reflectset errors."""


class EmptyGeometryError(ReflectsetError, ValueError):
    """Raised when an operation needs surface area but the geometry has none."""


def _dot(u: np.ndarray, v: np.ndarray) -> np.ndarray:
    return np.einsum("...i,...i->...", u, v)


def _safe_div(num: np.ndarray, den: np.ndarray) -> np.ndarray:
    ok = np.abs(den) > _TINY
    return np.divide(num, np.where(ok, den, 1.0), out=np.zeros_like(num), where=ok)


def _flatten(*arrays: np.ndarray) -> Tuple[tuple, list[np.ndarray]]:
    parts = np.broadcast_arrays(*(np.asarray(x, dtype=np.float64) for x in arrays))
    shape = parts[0].shape
    return shape, [x.reshape(-1, 3) for x in parts]


def _unflatten(values: np.ndarray, shape: tuple) -> np.ndarray | float:
    out = values.reshape(shape)
    return float(out) if out.ndim == 0 else out


def closest_point_on_segment(p: np.ndarray, a: np.ndarray, b: np.ndarray) -> np.ndarray:
    shape, (p, a, b) = _flatten(p, a, b)
    ab = b - a
    t = np.clip(_safe_div(_dot(p - a, ab), _dot(ab, ab)), 0.0, 1.0)
    return (a + ab * t[:, None]).reshape(shape)


def point_segment_distance(p: np.ndarray, a: np.ndarray, b: np.ndarray) -> np.ndarray | float:
    shape, (p, a, b) = _flatten(p, a, b)
    q = closest_point_on_segment(p, a, b)
    return _unflatten(np.linalg.norm(p - q, axis=1), shape[:-1])


def _closest_on_edges(p: np.ndarray, a: np.ndarray, b: np.ndarray, c: np.ndarray) -> np.ndarray:
    candidates = np.stack([
        closest_point_on_segment(p, a, b),
        closest_point_on_segment(p, b, c),
        closest_point_on_segment(p, c, a),
    ], axis=0)
    dists = np.linalg.norm(candidates - p[None], axis=2)
    best = np.argmin(dists, axis=0)
    return candidates[best, np.arange(len(p))]


def _degenerate_mask(ab: np.ndarray, ac: np.ndarray) -> np.ndarray:
    n = np.cross(ab, ac)
    return _dot(n, n) <= _DEGENERATE_RTOL * _dot(ab, ab) * _dot(ac, ac)


def closest_point_on_triangle(p: np.ndarray, a: np.ndarray, b: np.ndarray, c: np.ndarray) -> np.ndarray:
    """Exact closest point on triangle ``abc`` to ``p``.

    Classifies ``p`` into one of the seven Voronoi regions of the triangle
    (three vertices, three edges, interior) with barycentric sign tests.
    Degenerate triangles fall back to the nearest point on their edges.
    """
    shape, (p, a, b, c) = _flatten(p, a, b, c)
    ab = b - a
    ac = c - a
    ap = p - a
    d1 = _dot(ab, ap)
    d2 = _dot(ac, ap)
    bp = p - b
    d3 = _dot(ab, bp)
    d4 = _dot(ac, bp)
    cp = p - c
    d5 = _dot(ab, cp)
    d6 = _dot(ac, cp)

    vc = d1 * d4 - d3 * d2
    vb = d5 * d2 - d1 * d6
    va = d3 * d6 - d5 * d4

    t_ab = _safe_div(d1, d1 - d3)
    t_ac = _safe_div(d2, d2 - d6)
    t_bc = _safe_div(d4 - d3, (d4 - d3) + (d5 - d6))
    denom = va + vb + vc
    v = _safe_div(vb, denom)
    w = _safe_div(vc, denom)

    regions = [
        (d1 <= 0) & (d2 <= 0),
        (d3 >= 0) & (d4 <= d3),
        (vc <= 0) & (d1 >= 0) & (d3 <= 0),
        (d6 >= 0) & (d5 <= d6),
        (vb <= 0) & (d2 >= 0) & (d6 <= 0),
        (va <= 0) & ((d4 - d3) >= 0) & ((d5 - d6) >= 0),
    ]
    choices = [
        a,
        b,
        a + ab * t_ab[:, None],
        c,
        a + ac * t_ac[:, None],
        b + (c - b) * t_bc[:, None],
    ]
    interior = a + ab * v[:, None] + ac * w[:, None]
    result = np.select([r[:, None] for r in regions], choices, default=interior)

    degenerate = _degenerate_mask(ab, ac)
    if np.any(degenerate):
        result[degenerate] = _closest_on_edges(p[degenerate], a[degenerate], b[degenerate], c[degenerate])
    return result.reshape(shape)


def point_triangle_distance(p: np.ndarray, a: np.ndarray, b: np.ndarray, c: np.ndarray) -> np.ndarray | float:
    """Euclidean distance from ``p`` to triangle ``abc``.

    Projects onto the triangle plane; when the projection falls outside the
    triangle, or the triangle is degenerate, uses the minimum of the three
    point-to-segment distances.
    """
    shape, (p, a, b, c) = _flatten(p, a, b, c)
    v0 = b - a
    v1 = c - a
    v2 = p - a
    dot00 = _dot(v0, v0)
    dot01 = _dot(v0, v1)
    dot02 = _dot(v0, v2)
    dot11 = _dot(v1, v1)
    dot12 = _dot(v1, v2)

    denom = dot00 * dot11 - dot01 * dot01
    degenerate = np.abs(denom) <= _DEGENERATE_RTOL * dot00 * dot11
    u = _safe_div(dot11 * dot02 - dot01 * dot12, denom)
    v = _safe_div(dot00 * dot12 - dot01 * dot02, denom)
    inside = ~degenerate & (u >= 0) & (v >= 0) & (u + v <= 1)

    proj = a + v0 * u[:, None] + v1 * v[:, None]
    d_plane = np.linalg.norm(p - proj, axis=1)
    d_edges = np.minimum.reduce([
        np.linalg.norm(p - closest_point_on_segment(p, a, b), axis=1),
        np.linalg.norm(p - closest_point_on_segment(p, b, c), axis=1),
        np.linalg.norm(p - closest_point_on_segment(p, c, a), axis=1),
    ])
    return _unflatten(np.where(inside, d_plane, d_edges), shape[:-1])


def triangle_areas(tris: np.ndarray) -> np.ndarray:
    tris = np.asarray(tris, dtype=np.float64)
    cross = np.cross(tris[..., 1, :] - tris[..., 0, :], tris[..., 2, :] - tris[..., 0, :])
    return 0.5 * np.linalg.norm(cross, axis=-1)


def triangle_normals(tris: np.ndarray) -> np.ndarray:
    """Unit face normals following the winding order; zero for degenerate faces."""
    tris = np.asarray(tris, dtype=np.float64)
    cross = np.cross(tris[..., 1, :] - tris[..., 0, :], tris[..., 2, :] - tris[..., 0, :])
    normals, _ = safe_normalize(cross)
    return normals


def closest_points_on_triangles(
    points: np.ndarray,
    tris: np.ndarray,
    max_pairs: int = 1_000_000,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Nearest surface point over a triangle soup for each query point.

    Returns ``(closest (P,3), distance (P,), triangle_index (P,))``. Points are
    processed in chunks so at most ``max_pairs`` point/triangle pairs are live.
    """
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    tris = np.asarray(tris, dtype=np.float64).reshape(-1, 3, 3)
    if len(tris) == 0:
        raise EmptyGeometryError("Closest-point query against an empty triangle set.")

    n_pts = len(points)
    closest = np.zeros((n_pts, 3), dtype=np.float64)
    dist = np.zeros((n_pts,), dtype=np.float64)
    index = np.zeros((n_pts,), dtype=np.int64)
    chunk = max(1, max_pairs // len(tris))
    a, b, c = tris[:, 0], tris[:, 1], tris[:, 2]
    for start in range(0, n_pts, chunk):
        stop = min(start + chunk, n_pts)
        p = points[start:stop, None, :]
        cp = closest_point_on_triangle(p, a[None], b[None], c[None])
        d = np.linalg.norm(cp - p, axis=2)
        best = np.argmin(d, axis=1)
        rows = np.arange(stop - start)
        closest[start:stop] = cp[rows, best]
        dist[start:stop] = d[rows, best]
        index[start:stop] = best
    return closest, dist, index


def nearest_triangle(tris: np.ndarray, p: np.ndarray) -> Tuple[np.ndarray, float, int]:
    closest, dist, index = closest_points_on_triangles(np.asarray(p).reshape(1, 3), tris)
    return closest[0], float(dist[0]), int(index[0])


def normal_at_point(tris: np.ndarray, p: np.ndarray) -> np.ndarray:
    """Normal of the triangle nearest to ``p``; +Y when that triangle is degenerate."""
    _, _, idx = nearest_triangle(tris, p)
    normal = triangle_normals(np.asarray(tris)[idx])
    if not np.any(normal):
        return UP.copy()
    return normal


def closest_point_on_mesh(mesh: Mesh, transform: Optional[Transform], p: np.ndarray) -> np.ndarray:
    """Closest world-space point on ``mesh`` (placed by ``transform``) to ``p``.

    Linear scan over all triangles; meshes here hold hundreds, not millions,
    of faces.
    """
    closest, _, _ = nearest_triangle(mesh.triangles(transform), p)
    return closest


def random_point_on_triangles(tris: np.ndarray, rng: np.random.Generator) -> np.ndarray:
    tris = np.asarray(tris, dtype=np.float64).reshape(-1, 3, 3)
    if len(tris) == 0:
        raise EmptyGeometryError("Cannot sample a point on a mesh without triangles.")
    areas = triangle_areas(tris)
    cumulative = np.cumsum(areas)
    total = float(cumulative[-1])
    if not total > 0.0:
        raise EmptyGeometryError("Cannot sample a point on a mesh with zero surface area.")

    # r lies in [0, total); side="right" never lands on a zero-area triangle
    r = rng.random() * total
    idx = min(int(np.searchsorted(cumulative, r, side="right")), len(tris) - 1)

    u, v = rng.random(2)
    if u + v > 1.0:
        u, v = 1.0 - u, 1.0 - v
    a, b, c = tris[idx]
    return a + u * (b - a) + v * (c - a)


def random_point_on_mesh_surface(
    mesh: Mesh,
    rng: np.random.Generator,
    transform: Optional[Transform] = None,
) -> np.ndarray:
    """Uniform random point on the (world-space) surface of ``mesh``.

    Triangles are chosen with probability proportional to their world-space
    area, then a point is drawn uniformly inside the chosen triangle.
    """
    return random_point_on_triangles(mesh.triangles(transform), rng)
