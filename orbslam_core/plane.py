"""Planes fitted to map points for placing virtual objects, with the small
helpers an augmented-reality view needs: rotation exponentials, status labels
and the grid drawn on a plane."""

from __future__ import annotations

import math
import random

import numpy as np

# Below this rotation angle the exponential uses its second-order expansion.
_EPS = 1e-4
# A plane is only searched for when at least this many points are available.
MIN_PLANE_POINTS = 50
# Index of the sorted distance used as the robust spread of a hypothesis.
_MIN_RANK = 20
_RANK_FRACTION = 0.2
# Inliers lie closer than this factor times the best robust spread.
_INLIER_FACTOR = 1.4
_HALF_TURN = 3.14

_UP = np.array([0.0, 1.0, 0.0])

_GREEN = (0, 255, 0)
_RED = (255, 0, 0)


def exp_so3(x, y, z) -> np.ndarray:
    """Rotation matrix of the rotation vector (x, y, z)."""
    x, y, z = float(x), float(y), float(z)
    eye = np.eye(3)
    d2 = x * x + y * y + z * z
    d = math.sqrt(d2)
    w = np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]])
    if d < _EPS:
        return eye + w + 0.5 * (w @ w)
    return eye + w * math.sin(d) / d + (w @ w) * (1.0 - math.cos(d)) / d2


def _random_angle(rng) -> float:
    return -_HALF_TURN / 2 + rng.random() * _HALF_TURN


def _plane_transform(normal: np.ndarray, origin: np.ndarray, angle: float) -> np.ndarray:
    """World-to-plane transform whose y axis is the normal, spun by ``angle``."""
    v = np.cross(_UP, normal)
    sa = float(np.linalg.norm(v))
    ca = float(_UP @ normal)
    ang = math.atan2(sa, ca)
    if sa > 0:
        axis = v * ang / sa
    elif ca >= 0:
        axis = np.zeros(3)
    else:
        axis = np.array([math.pi, 0.0, 0.0])
    tpw = np.eye(4)
    tpw[:3, :3] = exp_so3(*axis) @ exp_so3(*(_UP * angle))
    tpw[:3, 3] = origin
    return tpw


class Plane:
    """A plane through a set of world points, oriented away from the camera
    that first observed it."""

    def __init__(self, points, tcw, angle=None):
        self.tcw = None if tcw is None else np.array(tcw, dtype=float)
        if self.tcw is not None and self.tcw.shape[0] < 3:
            raise ValueError("camera pose must be a 3x4 or 4x4 matrix")
        self.angle = _random_angle(random.Random()) if angle is None else float(angle)
        self.xc: np.ndarray | None = None
        self.normal = np.zeros(3)
        self.origin = np.zeros(3)
        self.tpw = np.eye(4)
        self.points = np.zeros((0, 3))
        self.recompute(points)

    @classmethod
    def from_normal(cls, normal, origin, angle=None) -> "Plane":
        """Plane with a given normal through a given origin."""
        plane = cls.__new__(cls)
        plane.tcw = None
        plane.xc = None
        plane.points = np.zeros((0, 3))
        plane.angle = _random_angle(random.Random()) if angle is None else float(angle)
        plane.normal = np.asarray(normal, dtype=float).reshape(3).copy()
        plane.origin = np.asarray(origin, dtype=float).reshape(3).copy()
        plane.tpw = _plane_transform(plane.normal, plane.origin, plane.angle)
        return plane

    def recompute(self, points) -> None:
        """Refit the plane to the given world points (the ones still valid)."""
        pts = np.asarray(points, dtype=float).reshape(-1, 3)
        if len(pts) == 0:
            raise ValueError("a plane needs at least one point")
        a_mat = np.column_stack([pts, np.ones(len(pts))])
        _, _, vt = np.linalg.svd(a_mat, full_matrices=True)
        a, b, c = (float(v) for v in vt[3, :3])

        origin = pts.mean(axis=0)
        f = 1.0 / math.sqrt(a * a + b * b + c * c)

        if self.xc is None:
            if self.tcw is None:
                raise RuntimeError("the plane has no camera pose to orient its normal")
            rotation = self.tcw[:3, :3]
            translation = self.tcw[:3, 3]
            camera_centre = -rotation.T @ translation
            self.xc = camera_centre - origin

        if float(self.xc @ np.array([a, b, c])) > 0:
            a, b, c = -a, -b, -c

        self.points = pts.copy()
        self.origin = origin
        self.normal = np.array([a * f, b * f, c * f])
        self.tpw = _plane_transform(self.normal, self.origin, self.angle)

    def gl_matrix(self) -> list[float]:
        """The world-to-plane transform as 16 values in column-major order."""
        matrix = self.tpw.copy()
        matrix[3] = [0.0, 0.0, 0.0, 1.0]
        return [float(v) for v in matrix.T.reshape(-1)]


def detect_plane(points, tcw, iterations=50, rng=None) -> Plane | None:
    """Find a dominant plane among well-observed world points by RANSAC.

    Returns None when there are fewer than 50 points or no inliers.
    """
    pts = np.asarray(points, dtype=float).reshape(-1, 3)
    n = len(pts)
    if n < MIN_PLANE_POINTS:
        return None
    rng = random.Random() if rng is None else rng

    homogeneous = np.column_stack([pts, np.ones(n)])
    rank = max(int(_RANK_FRACTION * n), _MIN_RANK)
    best_dist = 1e10
    best_distances: np.ndarray | None = None

    for _ in range(int(iterations)):
        available = list(range(n))
        chosen = []
        for _ in range(3):
            k = rng.randrange(len(available))
            chosen.append(available[k])
            available[k] = available[-1]
            available.pop()

        _, _, vt = np.linalg.svd(homogeneous[chosen], full_matrices=True)
        coeffs = vt[3]
        f = 1.0 / float(np.linalg.norm(coeffs))
        distances = np.abs(homogeneous @ coeffs) * f
        median = float(np.sort(distances)[rank])
        if median < best_dist:
            best_dist = median
            best_distances = distances

    if best_distances is None:
        return None
    threshold = _INLIER_FACTOR * best_dist
    inliers = pts[best_distances < threshold]
    if len(inliers) == 0:
        return None
    return Plane(inliers, tcw, _random_angle(rng))


def status_label(status, localization_mode) -> tuple[str, tuple[int, int, int]] | None:
    """Text and RGB colour describing a tracking status, or None for others."""
    if status == 1:
        return "SLAM NOT INITIALIZED", _RED
    mode = "LOCALIZATION" if localization_mode else "SLAM"
    if status == 2:
        return f"{mode} ON", _GREEN
    if status == 3:
        return f"{mode} LOST", _RED
    return None


def grid_lines(ndivs, ndivsize) -> list[tuple[tuple[float, float, float], tuple[float, float, float]]]:
    """Segments of a square grid in the x-z plane centred on the origin."""
    half = ndivs * ndivsize
    lines = []
    for n in range(2 * int(ndivs) + 1):
        offset = -half + ndivsize * n
        lines.append(((offset, 0.0, -half), (offset, 0.0, half)))
        lines.append(((-half, 0.0, offset), (half, 0.0, offset)))
    return lines