"""Conversions between pose representations, descriptor matrices and quaternions."""

from __future__ import annotations

import math

import numpy as np


def _as_rotation(rotation) -> np.ndarray:
    r = np.asarray(rotation, dtype=float)
    if r.shape != (3, 3):
        raise ValueError(f"rotation must be 3x3, got shape {r.shape}")
    return r


def _as_translation(translation) -> np.ndarray:
    t = np.asarray(translation, dtype=float).reshape(-1)
    if t.shape != (3,):
        raise ValueError(f"translation must have 3 elements, got {t.size}")
    return t


def to_descriptor_vector(descriptors) -> list[np.ndarray]:
    """Split a descriptor matrix into a list holding one row per descriptor."""
    matrix = np.asarray(descriptors)
    if matrix.ndim != 2:
        raise ValueError("descriptors must be a two-dimensional matrix")
    return list(matrix)


def se3_matrix(rotation, translation) -> np.ndarray:
    """Build a 4x4 homogeneous transform from a rotation and a translation."""
    transform = np.eye(4)
    transform[:3, :3] = _as_rotation(rotation)
    transform[:3, 3] = _as_translation(translation)
    return transform


def split_se3(transform) -> tuple[np.ndarray, np.ndarray]:
    """Return the rotation block and the translation column of a rigid transform."""
    matrix = np.asarray(transform, dtype=float)
    if matrix.ndim != 2 or matrix.shape[0] < 3 or matrix.shape[1] != 4:
        raise ValueError(f"transform must be 3x4 or 4x4, got shape {matrix.shape}")
    return matrix[:3, :3].copy(), matrix[:3, 3].copy()


def sim3_matrix(scale, rotation, translation) -> np.ndarray:
    """Build a 4x4 similarity transform [s*R | t]."""
    return se3_matrix(float(scale) * _as_rotation(rotation), translation)


def to_quaternion(rotation) -> list[float]:
    """Convert a rotation matrix into a quaternion ordered as [x, y, z, w]."""
    m = _as_rotation(rotation)
    trace = m[0, 0] + m[1, 1] + m[2, 2]
    q = [0.0, 0.0, 0.0]
    if trace > 0:
        s = math.sqrt(trace + 1.0)
        w = 0.5 * s
        s = 0.5 / s
        q = [(m[2, 1] - m[1, 2]) * s, (m[0, 2] - m[2, 0]) * s, (m[1, 0] - m[0, 1]) * s]
    else:
        i = 0
        if m[1, 1] > m[0, 0]:
            i = 1
        if m[2, 2] > m[i, i]:
            i = 2
        j = (i + 1) % 3
        k = (j + 1) % 3
        s = math.sqrt(m[i, i] - m[j, j] - m[k, k] + 1.0)
        q[i] = 0.5 * s
        s = 0.5 / s
        w = (m[k, j] - m[j, k]) * s
        q[j] = (m[j, i] + m[i, j]) * s
        q[k] = (m[k, i] + m[i, k]) * s
    return [float(q[0]), float(q[1]), float(q[2]), float(w)]