"""Two-view geometry: normalisation, homography and fundamental estimation,
triangulation and essential-matrix decomposition."""

from __future__ import annotations

import math
from dataclasses import dataclass, field

import numpy as np

from .descriptors import KeyPoint

# Above this cosine a point is treated as seen with too little parallax.
COS_PARALLAX_LIMIT = 0.99998


@dataclass
class RigidCheck:
    """Result of testing a rotation/translation hypothesis against matches."""

    n_good: int
    points: np.ndarray
    good: list[bool] = field(default_factory=list)
    parallax: float = 0.0


def _as_point_array(points) -> np.ndarray:
    array = np.asarray(points, dtype=float)
    if array.ndim != 2 or array.shape[1] != 2:
        raise ValueError("points must be an N x 2 array")
    return array


def normalize(keypoints) -> tuple[np.ndarray, np.ndarray]:
    """Centre keypoints and scale them to unit mean absolute deviation.

    Returns the normalised points as an N x 2 array and the 3x3 transform
    that maps homogeneous pixel coordinates onto them.
    """
    coords = np.array([(kp.x, kp.y) for kp in keypoints], dtype=float)
    if len(coords) == 0:
        raise ValueError("cannot normalise an empty set of keypoints")
    mean = coords.mean(axis=0)
    centred = coords - mean
    mean_dev = np.abs(centred).mean(axis=0)
    scale = 1.0 / mean_dev
    normalized = centred * scale
    transform = np.eye(3)
    transform[0, 0] = scale[0]
    transform[1, 1] = scale[1]
    transform[0, 2] = -mean[0] * scale[0]
    transform[1, 2] = -mean[1] * scale[1]
    return normalized, transform


def compute_h21(points1, points2) -> np.ndarray:
    """Estimate the homography mapping points1 onto points2 by DLT."""
    p1 = _as_point_array(points1)
    p2 = _as_point_array(points2)
    if p1.shape != p2.shape:
        raise ValueError("point sets must have the same size")
    u1, v1 = p1[:, 0], p1[:, 1]
    u2, v2 = p2[:, 0], p2[:, 1]
    zeros = np.zeros_like(u1)
    ones = np.ones_like(u1)
    rows_a = np.column_stack([zeros, zeros, zeros, -u1, -v1, -ones, v2 * u1, v2 * v1, v2])
    rows_b = np.column_stack([u1, v1, ones, zeros, zeros, zeros, -u2 * u1, -u2 * v1, -u2])
    a = np.empty((2 * len(p1), 9))
    a[0::2] = rows_a
    a[1::2] = rows_b
    _, _, vt = np.linalg.svd(a, full_matrices=True)
    return vt[8].reshape(3, 3)


def compute_f21(points1, points2) -> np.ndarray:
    """Estimate a rank-2 fundamental matrix with x2^T F21 x1 = 0 (eight-point)."""
    p1 = _as_point_array(points1)
    p2 = _as_point_array(points2)
    if p1.shape != p2.shape:
        raise ValueError("point sets must have the same size")
    u1, v1 = p1[:, 0], p1[:, 1]
    u2, v2 = p2[:, 0], p2[:, 1]
    a = np.column_stack(
        [u2 * u1, u2 * v1, u2, v2 * u1, v2 * v1, v2, u1, v1, np.ones_like(u1)]
    )
    _, _, vt = np.linalg.svd(a, full_matrices=True)
    f_pre = vt[8].reshape(3, 3)
    u, w, vt = np.linalg.svd(f_pre)
    w[2] = 0.0
    return u @ np.diag(w) @ vt


def triangulate(kp1: KeyPoint, kp2: KeyPoint, p1, p2) -> np.ndarray:
    """Linear triangulation of one correspondence from two 3x4 projection matrices."""
    p1 = np.asarray(p1, dtype=float)
    p2 = np.asarray(p2, dtype=float)
    a = np.vstack(
        [
            kp1.x * p1[2] - p1[0],
            kp1.y * p1[2] - p1[1],
            kp2.x * p2[2] - p2[0],
            kp2.y * p2[2] - p2[1],
        ]
    )
    _, _, vt = np.linalg.svd(a, full_matrices=True)
    x = vt[3]
    with np.errstate(divide="ignore", invalid="ignore"):
        return x[:3] / x[3]


def decompose_e(essential) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Split an essential matrix into its two rotations and unit translation."""
    e = np.asarray(essential, dtype=float)
    u, _, vt = np.linalg.svd(e)
    t = u[:, 2].copy()
    t /= np.linalg.norm(t)
    w = np.array([[0.0, -1.0, 0.0], [1.0, 0.0, 0.0], [0.0, 0.0, 1.0]])
    r1 = u @ w @ vt
    if np.linalg.det(r1) < 0:
        r1 = -r1
    r2 = u @ w.T @ vt
    if np.linalg.det(r2) < 0:
        r2 = -r2
    return r1, r2, t


def _reprojection_error(point, kp: KeyPoint, fx, fy, cx, cy) -> float:
    inv_z = 1.0 / point[2]
    x = fx * point[0] * inv_z + cx
    y = fy * point[1] * inv_z + cy
    return (x - kp.x) ** 2 + (y - kp.y) ** 2


def check_rt(rotation, translation, keys1, keys2, matches, inliers, calibration, th2) -> RigidCheck:
    """Triangulate inlier matches under [R|t] and count those that are consistent.

    A match counts when its point lies in front of both cameras (unless the
    parallax is too small to tell) and reprojects within th2 squared pixels
    in both images.  The reported parallax, in degrees, is taken from the
    51st smallest parallax cosine, or the largest if there are fewer.
    """
    r = np.asarray(rotation, dtype=float).reshape(3, 3)
    t = np.asarray(translation, dtype=float).reshape(3)
    k = np.asarray(calibration, dtype=float)
    fx, fy, cx, cy = k[0, 0], k[1, 1], k[0, 2], k[1, 2]

    good = [False] * len(keys1)
    points = np.zeros((len(keys1), 3))
    cos_parallaxes: list[float] = []

    proj1 = np.zeros((3, 4))
    proj1[:, :3] = k
    proj2 = k @ np.hstack([r, t[:, None]])
    origin2 = -r.T @ t

    n_good = 0
    with np.errstate(divide="ignore", invalid="ignore"):
        for (i1, i2), is_inlier in zip(matches, inliers):
            if not is_inlier:
                continue
            kp1, kp2 = keys1[i1], keys2[i2]
            p3d_c1 = triangulate(kp1, kp2, proj1, proj2)
            if not np.all(np.isfinite(p3d_c1)):
                good[i1] = False
                continue

            normal2 = p3d_c1 - origin2
            cos_parallax = float(
                np.dot(p3d_c1, normal2) / (np.linalg.norm(p3d_c1) * np.linalg.norm(normal2))
            )

            if p3d_c1[2] <= 0 and cos_parallax < COS_PARALLAX_LIMIT:
                continue
            p3d_c2 = r @ p3d_c1 + t
            if p3d_c2[2] <= 0 and cos_parallax < COS_PARALLAX_LIMIT:
                continue

            if _reprojection_error(p3d_c1, kp1, fx, fy, cx, cy) > th2:
                continue
            if _reprojection_error(p3d_c2, kp2, fx, fy, cx, cy) > th2:
                continue

            cos_parallaxes.append(cos_parallax)
            points[i1] = p3d_c1
            n_good += 1
            if cos_parallax < COS_PARALLAX_LIMIT:
                good[i1] = True

    parallax = 0.0
    if n_good > 0:
        cos_parallaxes.sort()
        idx = min(50, len(cos_parallaxes) - 1)
        value = max(-1.0, min(1.0, cos_parallaxes[idx]))
        parallax = math.degrees(math.acos(value))

    return RigidCheck(n_good=n_good, points=points, good=good, parallax=parallax)