from __future__ import annotations
import numpy as np
import logging

def get_logger(name: str = "reflectset") -> logging.Logger:
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        fmt = logging.Formatter("[%(levelname)s] %(message)s")
        handler.setFormatter(fmt)
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
    return logger

def ensure_unit_vectors(v: np.ndarray, eps: float = 1e-12) -> np.ndarray:
    norms = np.linalg.norm(v, axis=-1, keepdims=True)
    norms = np.clip(norms, eps, None)
    return v / norms

def safe_normalize(v: np.ndarray, eps: float = 1e-12) -> tuple[np.ndarray, np.ndarray]:
    """Normalize along the last axis; zero-length vectors stay zero.

    Returns the normalized vectors and a boolean mask of the valid ones.
    """
    v = np.asarray(v, dtype=np.float64)
    norms = np.linalg.norm(v, axis=-1, keepdims=True)
    valid = norms > eps
    out = np.divide(v, np.where(valid, norms, 1.0), out=np.zeros_like(v), where=valid)
    return out, valid[..., 0]


def wrap_degrees(angles: float | np.ndarray) -> np.ndarray:
    """Wrap angles into [0, 360)."""
    wrapped = np.mod(np.asarray(angles, dtype=np.float64), 360.0)
    # np.mod can return exactly 360.0 for tiny negative inputs
    return np.where(wrapped >= 360.0, 0.0, wrapped)

def euler_to_matrix(euler_deg: tuple[float, float, float] | np.ndarray) -> np.ndarray:
    """Rotation matrix for Euler angles applied Z, then X, then Y (Y-up convention)."""
    rx, ry, rz = np.deg2rad(np.asarray(euler_deg, dtype=np.float64))
    cx, sx = np.cos(rx), np.sin(rx)
    cy, sy = np.cos(ry), np.sin(ry)
    cz, sz = np.cos(rz), np.sin(rz)
    Rx = np.array([[1,0,0],[0,cx,-sx],[0,sx,cx]])
    Ry = np.array([[cy,0,sy],[0,1,0],[-sy,0,cy]])
    Rz = np.array([[cz,-sz,0],[sz,cz,0],[0,0,1]])
    return Ry @ Rx @ Rz

def rotation_from_to(src: np.ndarray, dst: np.ndarray) -> np.ndarray:
    """Smallest rotation taking direction ``src`` onto direction ``dst``."""
    a, a_ok = safe_normalize(np.asarray(src, dtype=np.float64))
    b, b_ok = safe_normalize(np.asarray(dst, dtype=np.float64))
    if not (a_ok and b_ok):
        return np.eye(3)
    v = np.cross(a, b)
    c = float(np.dot(a, b))
    if c < -1.0 + 1e-9:
        # Opposite directions: rotate 180 degrees about any axis orthogonal to a
        helper = np.array([1.0, 0.0, 0.0]) if abs(a[0]) < 0.9 else np.array([0.0, 0.0, 1.0])
        axis, _ = safe_normalize(np.cross(a, helper))
        return 2.0 * np.outer(axis, axis) - np.eye(3)
    vx = np.array([[0.0, -v[2], v[1]], [v[2], 0.0, -v[0]], [-v[1], v[0], 0.0]])
    return np.eye(3) + vx + vx @ vx * (1.0 / (1.0 + c))

def random_rotation(rng: np.random.Generator) -> np.ndarray:
    """Uniformly distributed rotation matrix (Shoemake's quaternion method)."""
    u1, u2, u3 = rng.random(3)
    q = np.array([
        np.sqrt(1 - u1) * np.sin(2 * np.pi * u2),
        np.sqrt(1 - u1) * np.cos(2 * np.pi * u2),
        np.sqrt(u1) * np.sin(2 * np.pi * u3),
        np.sqrt(u1) * np.cos(2 * np.pi * u3),
    ])
    x, y, z, w = q
    return np.array([
        [1 - 2 * (y * y + z * z), 2 * (x * y - z * w), 2 * (x * z + y * w)],
        [2 * (x * y + z * w), 1 - 2 * (x * x + z * z), 2 * (y * z - x * w)],
        [2 * (x * z - y * w), 2 * (y * z + x * w), 1 - 2 * (x * x + y * y)],
    ])

def orthonormal_basis(direction: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Two unit vectors spanning the plane perpendicular to ``direction``.

    The first vector is the projection of world +X when possible so that an
    axis-aligned source keeps axis-aligned grid rows.
    """
    d, ok = safe_normalize(np.asarray(direction, dtype=np.float64))
    if not ok:
        raise ValueError("direction must be non-zero.")
    ref = np.array([1.0, 0.0, 0.0])
    if abs(float(np.dot(ref, d))) > 0.999:
        ref = np.array([0.0, 0.0, 1.0])
    u, _ = safe_normalize(ref - np.dot(ref, d) * d)
    v = np.cross(d, u)
    return u, v
