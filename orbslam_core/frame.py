"""Camera frames: keypoints, undistortion, feature grid, stereo depth and pose."""

from __future__ import annotations

import copy as _copy
import itertools
import math
import sys
from dataclasses import dataclass

import numpy as np

from .descriptors import KeyPoint, descriptor_distance

GRID_COLS = 64
GRID_ROWS = 48

# Undistortion is solved by fixed-point iteration.
_UNDISTORT_ITERATIONS = 5
# Half size of the correlation window and half range of the sliding search.
_PATCH_HALF = 5
_SEARCH_HALF = 5


def _round(value: float) -> int:
    """Round half away from zero."""
    if value >= 0:
        return int(math.floor(value + 0.5))
    return -int(math.floor(-value + 0.5))


@dataclass(frozen=True)
class CameraCalibration:
    """Pinhole intrinsics, distortion (k1, k2, p1, p2[, k3]), stereo baseline
    times focal length ``bf`` and the close/far depth threshold."""

    fx: float
    fy: float
    cx: float
    cy: float
    dist_coeffs: tuple[float, ...] = (0.0, 0.0, 0.0, 0.0)
    bf: float = 0.0
    th_depth: float = 0.0

    @property
    def k(self) -> np.ndarray:
        return np.array(
            [[self.fx, 0.0, self.cx], [0.0, self.fy, self.cy], [0.0, 0.0, 1.0]]
        )

    @property
    def inv_fx(self) -> float:
        return 1.0 / self.fx

    @property
    def inv_fy(self) -> float:
        return 1.0 / self.fy

    @property
    def baseline(self) -> float:
        return self.bf / self.fx

    @property
    def is_distorted(self) -> bool:
        """Whether keypoints need undistortion (decided by the first coefficient)."""
        return bool(self.dist_coeffs) and self.dist_coeffs[0] != 0.0

    def undistort_points(self, points) -> np.ndarray:
        """Remove lens distortion from N x 2 pixel coordinates."""
        pts = np.asarray(points, dtype=float).reshape(-1, 2)
        coeffs = list(self.dist_coeffs) + [0.0] * (5 - len(self.dist_coeffs))
        k1, k2, p1, p2, k3 = coeffs[:5]
        x0 = (pts[:, 0] - self.cx) / self.fx
        y0 = (pts[:, 1] - self.cy) / self.fy
        x, y = x0.copy(), y0.copy()
        for _ in range(_UNDISTORT_ITERATIONS):
            r2 = x * x + y * y
            icdist = 1.0 / (1.0 + ((k3 * r2 + k2) * r2 + k1) * r2)
            delta_x = 2.0 * p1 * x * y + p2 * (r2 + 2.0 * x * x)
            delta_y = p1 * (r2 + 2.0 * y * y) + 2.0 * p2 * x * y
            x = (x0 - delta_x) * icdist
            y = (y0 - delta_y) * icdist
        return np.column_stack([x * self.fx + self.cx, y * self.fy + self.cy])

    def image_bounds(self, width, height) -> tuple[float, float, float, float]:
        """Return (min_x, max_x, min_y, max_y) of the undistorted image."""
        if not self.is_distorted:
            return 0.0, float(width), 0.0, float(height)
        corners = self.undistort_points(
            [[0.0, 0.0], [width, 0.0], [0.0, height], [width, height]]
        )
        min_x = float(min(corners[0, 0], corners[2, 0]))
        max_x = float(max(corners[1, 0], corners[3, 0]))
        min_y = float(min(corners[0, 1], corners[1, 1]))
        max_y = float(max(corners[2, 1], corners[3, 1]))
        return min_x, max_x, min_y, max_y


class Frame:
    """One processed image: its features, stereo information and camera pose."""

    _ids = itertools.count()

    def __init__(self, keypoints, descriptors, timestamp, camera: CameraCalibration,
                 image_size, scale_factors):
        self.id = next(Frame._ids)
        self.timestamp = float(timestamp)
        self.camera = camera
        self.keys: list[KeyPoint] = list(keypoints)
        self.descriptors = np.asarray(descriptors, dtype=np.uint8).reshape(len(self.keys), -1)
        self.n = len(self.keys)

        factors = [float(s) for s in scale_factors]
        if not factors:
            raise ValueError("scale_factors must not be empty")
        self.scale_levels = len(factors)
        self.scale_factor = factors[1] if len(factors) > 1 else 1.0
        self.log_scale_factor = math.log(self.scale_factor)
        self.scale_factors = factors
        self.inv_scale_factors = [1.0 / s for s in factors]
        self.level_sigma2 = [s * s for s in factors]
        self.inv_level_sigma2 = [1.0 / s2 for s2 in self.level_sigma2]

        self.keys_un = self._undistort_keypoints()
        self.u_right = [-1.0] * self.n
        self.depth = [-1.0] * self.n
        self.map_points: list = [None] * self.n
        self.outliers = [False] * self.n
        self.right_keypoints: list[KeyPoint] = []
        self.right_descriptors = np.zeros((0, self.descriptors.shape[1]), dtype=np.uint8)
        self.reference_keyframe = None

        width, height = image_size
        self.min_x, self.max_x, self.min_y, self.max_y = camera.image_bounds(width, height)
        with np.errstate(divide="ignore"):
            self.grid_width_inv = float(np.float64(GRID_COLS) / (self.max_x - self.min_x))
            self.grid_height_inv = float(np.float64(GRID_ROWS) / (self.max_y - self.min_y))
        self.mb = camera.baseline

        self.tcw: np.ndarray | None = None
        self.rcw: np.ndarray | None = None
        self.rwc: np.ndarray | None = None
        self.t_cw: np.ndarray | None = None
        self.ow: np.ndarray | None = None

        self.grid: list[list[list[int]]] = [[[] for _ in range(GRID_ROWS)] for _ in range(GRID_COLS)]
        for i, kp in enumerate(self.keys_un):
            cell = self.pos_in_grid(kp)
            if cell is not None:
                self.grid[cell[0]][cell[1]].append(i)

    # ----------------------------------------------------------- construction

    @classmethod
    def monocular(cls, keypoints, descriptors, timestamp, camera, image_size, scale_factors):
        """Frame from a single image: no stereo information."""
        return cls(keypoints, descriptors, timestamp, camera, image_size, scale_factors)

    @classmethod
    def rgbd(cls, keypoints, descriptors, depth, timestamp, camera, scale_factors):
        """Frame from an image with a registered depth map."""
        depth_map = np.asarray(depth, dtype=float)
        height, width = depth_map.shape[:2]
        frame = cls(keypoints, descriptors, timestamp, camera, (width, height), scale_factors)
        frame.compute_stereo_from_rgbd(depth_map)
        return frame

    @classmethod
    def stereo(cls, keypoints, descriptors, right_keypoints, right_descriptors,
               left_pyramid, right_pyramid, timestamp, camera, scale_factors, th_low, th_high):
        """Frame from a rectified stereo pair, matching left features on the right."""
        base = np.asarray(left_pyramid[0])
        height, width = base.shape[:2]
        frame = cls(keypoints, descriptors, timestamp, camera, (width, height), scale_factors)
        frame.compute_stereo_matches(
            right_keypoints, right_descriptors, left_pyramid, right_pyramid, th_low, th_high
        )
        return frame

    def copy(self) -> "Frame":
        """Independent copy that keeps the same id."""
        other = _copy.copy(self)
        other.keys = list(self.keys)
        other.keys_un = list(self.keys_un)
        other.descriptors = self.descriptors.copy()
        other.right_keypoints = list(self.right_keypoints)
        other.right_descriptors = self.right_descriptors.copy()
        other.u_right = list(self.u_right)
        other.depth = list(self.depth)
        other.map_points = list(self.map_points)
        other.outliers = list(self.outliers)
        other.scale_factors = list(self.scale_factors)
        other.inv_scale_factors = list(self.inv_scale_factors)
        other.level_sigma2 = list(self.level_sigma2)
        other.inv_level_sigma2 = list(self.inv_level_sigma2)
        other.grid = [[list(cell) for cell in column] for column in self.grid]
        if self.tcw is not None:
            other.set_pose(self.tcw)
        return other

    # ------------------------------------------------------------------- pose

    def set_pose(self, tcw) -> None:
        """Set the world-to-camera transform and derive rotation and centre."""
        matrix = np.array(tcw, dtype=float)
        if matrix.shape != (4, 4):
            raise ValueError("pose must be a 4x4 matrix")
        self.tcw = matrix
        self.rcw = matrix[:3, :3].copy()
        self.rwc = self.rcw.T
        self.t_cw = matrix[:3, 3].copy()
        self.ow = -self.rcw.T @ self.t_cw

    # ------------------------------------------------------------------- grid

    def _undistort_keypoints(self) -> list[KeyPoint]:
        if not self.camera.is_distorted or not self.keys:
            return list(self.keys)
        points = self.camera.undistort_points([kp.pt for kp in self.keys])
        return [kp.moved(x, y) for kp, (x, y) in zip(self.keys, points)]

    def pos_in_grid(self, keypoint) -> tuple[int, int] | None:
        """Grid cell of a keypoint, or None when it falls outside the image."""
        pos_x = _round((keypoint.x - self.min_x) * self.grid_width_inv)
        pos_y = _round((keypoint.y - self.min_y) * self.grid_height_inv)
        if pos_x < 0 or pos_x >= GRID_COLS or pos_y < 0 or pos_y >= GRID_ROWS:
            return None
        return pos_x, pos_y

    def features_in_area(self, x, y, r, min_level=-1, max_level=-1) -> list[int]:
        """Indices of undistorted keypoints within r of (x, y), optionally by level."""
        min_cx = max(0, math.floor((x - self.min_x - r) * self.grid_width_inv))
        if min_cx >= GRID_COLS:
            return []
        max_cx = min(GRID_COLS - 1, math.ceil((x - self.min_x + r) * self.grid_width_inv))
        if max_cx < 0:
            return []
        min_cy = max(0, math.floor((y - self.min_y - r) * self.grid_height_inv))
        if min_cy >= GRID_ROWS:
            return []
        max_cy = min(GRID_ROWS - 1, math.ceil((y - self.min_y + r) * self.grid_height_inv))
        if max_cy < 0:
            return []

        check_levels = min_level > 0 or max_level >= 0
        found: list[int] = []
        for ix in range(min_cx, max_cx + 1):
            for iy in range(min_cy, max_cy + 1):
                for idx in self.grid[ix][iy]:
                    kp = self.keys_un[idx]
                    if check_levels:
                        if kp.octave < min_level:
                            continue
                        if max_level >= 0 and kp.octave > max_level:
                            continue
                    if abs(kp.x - x) < r and abs(kp.y - y) < r:
                        found.append(idx)
        return found

    # ----------------------------------------------------------------- stereo

    def compute_stereo_from_rgbd(self, depth) -> None:
        """Fill depth and virtual right coordinate from a registered depth map."""
        depth_map = np.asarray(depth, dtype=float)
        self.u_right = [-1.0] * self.n
        self.depth = [-1.0] * self.n
        for i, (kp, kp_un) in enumerate(zip(self.keys, self.keys_un)):
            d = float(depth_map[int(kp.y), int(kp.x)])
            if d > 0:
                self.depth[i] = d
                self.u_right[i] = kp_un.x - self.camera.bf / d

    def compute_stereo_matches(self, right_keypoints, right_descriptors, left_pyramid,
                               right_pyramid, th_low, th_high) -> None:
        """Match left keypoints along rows of the right image and refine by SAD."""
        self.right_keypoints = list(right_keypoints)
        self.right_descriptors = np.asarray(right_descriptors, dtype=np.uint8).reshape(
            len(self.right_keypoints), -1
        )
        self.u_right = [-1.0] * self.n
        self.depth = [-1.0] * self.n

        th_orb_dist = (th_high + th_low) // 2
        n_rows = np.asarray(left_pyramid[0]).shape[0]

        rows: list[list[int]] = [[] for _ in range(n_rows)]
        for ir, kp in enumerate(self.right_keypoints):
            r = 2.0 * self.scale_factors[kp.octave]
            max_r = min(n_rows - 1, math.ceil(kp.y + r))
            min_r = max(0, math.floor(kp.y - r))
            for yi in range(min_r, max_r + 1):
                rows[yi].append(ir)

        min_d = 0.0
        max_d = self.camera.bf / self.mb if self.mb > 0 else math.inf
        w = _PATCH_HALF
        span = _SEARCH_HALF
        dist_idx: list[tuple[int, int]] = []

        for il, kp_l in enumerate(self.keys):
            level = kp_l.octave
            row = int(kp_l.y)
            if row < 0 or row >= n_rows or not rows[row]:
                continue
            u_l = kp_l.x
            min_u = u_l - max_d
            max_u = u_l - min_d
            if max_u < 0:
                continue

            best_dist = th_high
            best_ir = 0
            d_l = self.descriptors[il]
            for ir in rows[row]:
                kp_r = self.right_keypoints[ir]
                if kp_r.octave < level - 1 or kp_r.octave > level + 1:
                    continue
                if min_u <= kp_r.x <= max_u:
                    dist = descriptor_distance(d_l, self.right_descriptors[ir])
                    if dist < best_dist:
                        best_dist = dist
                        best_ir = ir

            if best_dist >= th_orb_dist:
                continue

            u_r0 = self.right_keypoints[best_ir].x
            inv_scale = self.inv_scale_factors[level]
            su_l = _round(kp_l.x * inv_scale)
            sv_l = _round(kp_l.y * inv_scale)
            su_r0 = _round(u_r0 * inv_scale)

            img_l = np.asarray(left_pyramid[level], dtype=float)
            img_r = np.asarray(right_pyramid[level], dtype=float)
            if (sv_l - w < 0 or sv_l + w + 1 > img_l.shape[0]
                    or su_l - w < 0 or su_l + w + 1 > img_l.shape[1]
                    or sv_l + w + 1 > img_r.shape[0]):
                continue
            patch_l = img_l[sv_l - w:sv_l + w + 1, su_l - w:su_l + w + 1]
            patch_l = patch_l - patch_l[w, w]

            ini_u = su_r0 + span - w
            end_u = su_r0 + span + w + 1
            if ini_u < 0 or end_u >= img_r.shape[1] or su_r0 - span - w < 0:
                continue

            best_sad = sys.maxsize
            best_inc = 0
            sads = [0.0] * (2 * span + 1)
            for inc in range(-span, span + 1):
                c = su_r0 + inc
                patch_r = img_r[sv_l - w:sv_l + w + 1, c - w:c + w + 1]
                patch_r = patch_r - patch_r[w, w]
                sad = float(np.abs(patch_l - patch_r).sum())
                if sad < best_sad:
                    best_sad = int(sad)
                    best_inc = inc
                sads[span + inc] = sad

            if best_inc in (-span, span):
                continue

            dist1 = sads[span + best_inc - 1]
            dist2 = sads[span + best_inc]
            dist3 = sads[span + best_inc + 1]
            denominator = 2.0 * (dist1 + dist3 - 2.0 * dist2)
            if denominator == 0:
                continue
            delta = (dist1 - dist3) / denominator
            if delta < -1 or delta > 1:
                continue

            best_u_r = self.scale_factors[level] * (su_r0 + best_inc + delta)
            disparity = u_l - best_u_r
            if min_d <= disparity < max_d:
                if disparity <= 0:
                    disparity = 0.01
                    best_u_r = u_l - 0.01
                self.depth[il] = self.camera.bf / disparity
                self.u_right[il] = best_u_r
                dist_idx.append((best_sad, il))

        if not dist_idx:
            return
        dist_idx.sort()
        median = float(dist_idx[len(dist_idx) // 2][0])
        th_dist = 1.5 * 1.4 * median
        for dist, il in reversed(dist_idx):
            if dist < th_dist:
                break
            self.u_right[il] = -1.0
            self.depth[il] = -1.0

    def unproject_stereo(self, index) -> np.ndarray | None:
        """World coordinates of a keypoint with known depth, or None."""
        z = self.depth[index]
        if z <= 0:
            return None
        if self.rwc is None:
            raise RuntimeError("the frame has no pose")
        kp = self.keys_un[index]
        x = (kp.x - self.camera.cx) * z * self.camera.inv_fx
        y = (kp.y - self.camera.cy) * z * self.camera.inv_fy
        return self.rwc @ np.array([x, y, z]) + self.ow