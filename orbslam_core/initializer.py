"""Monocular map initialisation from two views.

A homography and a fundamental matrix are estimated in parallel RANSAC loops
over the same minimal sets.  The model with the better score is decomposed into
motion hypotheses, and the hypothesis that triangulates the most points with
enough parallax wins.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass

import numpy as np

from .descriptors import KeyPoint
from .twoview import check_rt, compute_f21, compute_h21, decompose_e, normalize

# Chi-square thresholds at 95% for one and two degrees of freedom.
_CHI2_ONE_DOF = 3.841
_CHI2_TWO_DOF = 5.991
_MIN_SET_SIZE = 8


@dataclass
class Reconstruction:
    """Relative motion of the second camera and the triangulated points.

    ``points`` is indexed like the reference keypoints; ``triangulated`` marks
    those points that were reconstructed with enough parallax.
    """

    rotation: np.ndarray
    translation: np.ndarray
    points: np.ndarray
    triangulated: list[bool]


def _coords(keypoints: list[KeyPoint]) -> np.ndarray:
    return np.array([(kp.x, kp.y) for kp in keypoints], dtype=float).reshape(-1, 2)


class Initializer:
    """Recovers the relative pose between a reference view and a current view."""

    def __init__(self, reference_keypoints, calibration, sigma=1.0, iterations=200):
        self.calibration = np.asarray(calibration, dtype=float).copy()
        if self.calibration.shape != (3, 3):
            raise ValueError("calibration must be a 3x3 matrix")
        self.keys1: list[KeyPoint] = list(reference_keypoints)
        self.sigma = float(sigma)
        self.sigma2 = self.sigma * self.sigma
        self.max_iterations = int(iterations)
        self.keys2: list[KeyPoint] = []
        self.matches: list[tuple[int, int]] = []
        self.matched1: list[bool] = []
        self.sets: list[list[int]] = []

    # ------------------------------------------------------------------ setup

    def _prepare(self, current_keypoints, matches12) -> None:
        self.keys2 = list(current_keypoints)
        self.matches = []
        self.matched1 = [False] * len(self.keys1)
        for i, j in enumerate(matches12):
            if j >= 0:
                self.matches.append((i, int(j)))
                if i < len(self.matched1):
                    self.matched1[i] = True

        n = len(self.matches)
        if n < _MIN_SET_SIZE:
            raise ValueError(
                f"at least {_MIN_SET_SIZE} matches are needed, got {n}"
            )

        rng = random.Random(0)
        self.sets = []
        for _ in range(self.max_iterations):
            available = list(range(n))
            chosen = []
            for _ in range(_MIN_SET_SIZE):
                k = rng.randrange(len(available))
                chosen.append(available[k])
                available[k] = available[-1]
                available.pop()
            self.sets.append(chosen)

    def _require_matches(self) -> None:
        if not self.matches:
            raise RuntimeError("no current view has been set; call initialize first")

    def _matched_coords(self) -> tuple[np.ndarray, np.ndarray]:
        idx1 = [i for i, _ in self.matches]
        idx2 = [j for _, j in self.matches]
        return _coords(self.keys1)[idx1], _coords(self.keys2)[idx2]

    # ------------------------------------------------------------- main entry

    def initialize(self, current_keypoints, matches12) -> Reconstruction | None:
        """Try to reconstruct the scene; return None if no model is reliable.

        ``matches12[i]`` is the index of the current keypoint matched to
        reference keypoint ``i``, or a negative value when there is none.
        """
        self._prepare(current_keypoints, matches12)

        inliers_h, score_h, h21 = self.find_homography()
        inliers_f, score_f, f21 = self.find_fundamental()

        total = score_h + score_f
        if total <= 0 or not math.isfinite(total):
            return None
        ratio_h = score_h / total

        if ratio_h > 0.40:
            if h21 is None:
                return None
            return self.reconstruct_h(inliers_h, h21, 1.0, 50)
        if f21 is None:
            return None
        return self.reconstruct_f(inliers_f, f21, 1.0, 50)

    # ----------------------------------------------------------------- RANSAC

    def find_homography(self) -> tuple[list[bool], float, np.ndarray | None]:
        """RANSAC over the minimal sets; return inliers, score and best H21."""
        self._require_matches()
        pn1, t1 = normalize(self.keys1)
        pn2, t2 = normalize(self.keys2)
        t2_inv = np.linalg.inv(t2)

        best_score = 0.0
        best_inliers = [False] * len(self.matches)
        best_h = None

        for chosen in self.sets:
            sel1 = pn1[[self.matches[idx][0] for idx in chosen]]
            sel2 = pn2[[self.matches[idx][1] for idx in chosen]]
            hn = compute_h21(sel1, sel2)
            h21 = t2_inv @ hn @ t1
            try:
                h12 = np.linalg.inv(h21)
            except np.linalg.LinAlgError:
                continue
            score, inliers = self.check_homography(h21, h12, self.sigma)
            if score > best_score:
                best_h = h21.copy()
                best_inliers = inliers
                best_score = score

        return best_inliers, best_score, best_h

    def find_fundamental(self) -> tuple[list[bool], float, np.ndarray | None]:
        """RANSAC over the minimal sets; return inliers, score and best F21."""
        self._require_matches()
        pn1, t1 = normalize(self.keys1)
        pn2, t2 = normalize(self.keys2)
        t2_t = t2.T

        best_score = 0.0
        best_inliers = [False] * len(self.matches)
        best_f = None

        for chosen in self.sets:
            sel1 = pn1[[self.matches[idx][0] for idx in chosen]]
            sel2 = pn2[[self.matches[idx][1] for idx in chosen]]
            fn = compute_f21(sel1, sel2)
            f21 = t2_t @ fn @ t1
            score, inliers = self.check_fundamental(f21, self.sigma)
            if score > best_score:
                best_f = f21.copy()
                best_inliers = inliers
                best_score = score

        return best_inliers, best_score, best_f

    # ---------------------------------------------------------------- scoring

    def check_homography(self, h21, h12, sigma) -> tuple[float, list[bool]]:
        """Score a homography by symmetric transfer error; return score and inliers."""
        self._require_matches()
        h21 = np.asarray(h21, dtype=float)
        h12 = np.asarray(h12, dtype=float)
        p1, p2 = self._matched_coords()
        th = _CHI2_TWO_DOF
        inv_sigma2 = 1.0 / (sigma * sigma)

        def transfer(h, src):
            homog = np.column_stack([src, np.ones(len(src))]) @ h.T
            return homog[:, :2] / homog[:, 2:3]

        with np.errstate(divide="ignore", invalid="ignore"):
            p2in1 = transfer(h12, p2)
            p1in2 = transfer(h21, p1)
            chi1 = ((p1 - p2in1) ** 2).sum(axis=1) * inv_sigma2
            chi2 = ((p2 - p1in2) ** 2).sum(axis=1) * inv_sigma2

        out1 = chi1 > th
        out2 = chi2 > th
        score = float(np.sum(np.where(out1, 0.0, th - chi1)) + np.sum(np.where(out2, 0.0, th - chi2)))
        inliers = [bool(v) for v in ~(out1 | out2)]
        return score, inliers

    def check_fundamental(self, f21, sigma) -> tuple[float, list[bool]]:
        """Score a fundamental matrix by epipolar distances; return score and inliers."""
        self._require_matches()
        f = np.asarray(f21, dtype=float)
        p1, p2 = self._matched_coords()
        inv_sigma2 = 1.0 / (sigma * sigma)

        h1 = np.column_stack([p1, np.ones(len(p1))])
        h2 = np.column_stack([p2, np.ones(len(p2))])

        with np.errstate(divide="ignore", invalid="ignore"):
            lines2 = h1 @ f.T  # l2 = F21 x1
            num2 = (lines2 * h2).sum(axis=1)
            chi1 = num2 * num2 / (lines2[:, 0] ** 2 + lines2[:, 1] ** 2) * inv_sigma2

            lines1 = h2 @ f  # l1 = x2^T F21
            num1 = (lines1 * h1).sum(axis=1)
            chi2 = num1 * num1 / (lines1[:, 0] ** 2 + lines1[:, 1] ** 2) * inv_sigma2

        out1 = chi1 > _CHI2_ONE_DOF
        out2 = chi2 > _CHI2_ONE_DOF
        score = float(
            np.sum(np.where(out1, 0.0, _CHI2_TWO_DOF - chi1))
            + np.sum(np.where(out2, 0.0, _CHI2_TWO_DOF - chi2))
        )
        inliers = [bool(v) for v in ~(out1 | out2)]
        return score, inliers

    # --------------------------------------------------------- reconstruction

    def _check(self, rotation, translation, inliers):
        return check_rt(
            rotation,
            translation,
            self.keys1,
            self.keys2,
            self.matches,
            inliers,
            self.calibration,
            4.0 * self.sigma2,
        )

    def reconstruct_f(self, inliers, f21, min_parallax=1.0, min_triangulated=50) -> Reconstruction | None:
        """Recover motion from a fundamental matrix, or None if ambiguous."""
        self._require_matches()
        inliers = list(inliers)
        n = sum(1 for v in inliers if v)
        k = self.calibration
        e21 = k.T @ np.asarray(f21, dtype=float) @ k

        r1, r2, t = decompose_e(e21)
        hypotheses = [(r1, t), (r2, t), (r1, -t), (r2, -t)]
        checks = [self._check(r, tr, inliers) for r, tr in hypotheses]

        counts = [c.n_good for c in checks]
        max_good = max(counts)
        min_good = max(int(0.9 * n), min_triangulated)
        similar = sum(1 for c in counts if c > 0.7 * max_good)

        if max_good < min_good or similar > 1:
            return None

        best = counts.index(max_good)
        check = checks[best]
        if check.parallax > min_parallax:
            rotation, translation = hypotheses[best]
            return Reconstruction(
                rotation=rotation.copy(),
                translation=translation.copy(),
                points=check.points,
                triangulated=check.good,
            )
        return None

    def reconstruct_h(self, inliers, h21, min_parallax=1.0, min_triangulated=50) -> Reconstruction | None:
        """Recover motion from a homography (Faugeras decomposition), or None."""
        self._require_matches()
        inliers = list(inliers)
        n = sum(1 for v in inliers if v)
        k = self.calibration
        a = np.linalg.inv(k) @ np.asarray(h21, dtype=float) @ k

        u, w, vt = np.linalg.svd(a)
        s = np.linalg.det(u) * np.linalg.det(vt)
        d1, d2, d3 = (float(x) for x in w)

        if d2 == 0 or d3 == 0 or d1 / d2 < 1.00001 or d2 / d3 < 1.00001:
            return None

        aux1 = math.sqrt((d1 * d1 - d2 * d2) / (d1 * d1 - d3 * d3))
        aux3 = math.sqrt((d2 * d2 - d3 * d3) / (d1 * d1 - d3 * d3))
        x1 = [aux1, aux1, -aux1, -aux1]
        x3 = [aux3, -aux3, aux3, -aux3]
        root = math.sqrt((d1 * d1 - d2 * d2) * (d2 * d2 - d3 * d3))

        hypotheses: list[tuple[np.ndarray, np.ndarray]] = []

        # d' = d2
        aux_stheta = root / ((d1 + d3) * d2)
        ctheta = (d2 * d2 + d1 * d3) / ((d1 + d3) * d2)
        stheta = [aux_stheta, -aux_stheta, -aux_stheta, aux_stheta]
        for a1, a3, st in zip(x1, x3, stheta):
            rp = np.eye(3)
            rp[0, 0] = ctheta
            rp[0, 2] = -st
            rp[2, 0] = st
            rp[2, 2] = ctheta
            rotation = s * u @ rp @ vt
            translation = u @ (np.array([a1, 0.0, -a3]) * (d1 - d3))
            hypotheses.append((rotation, translation / np.linalg.norm(translation)))

        # d' = -d2
        aux_sphi = root / ((d1 - d3) * d2)
        cphi = (d1 * d3 - d2 * d2) / ((d1 - d3) * d2)
        sphi = [aux_sphi, -aux_sphi, -aux_sphi, aux_sphi]
        for a1, a3, sp in zip(x1, x3, sphi):
            rp = np.eye(3)
            rp[0, 0] = cphi
            rp[0, 2] = sp
            rp[1, 1] = -1.0
            rp[2, 0] = sp
            rp[2, 2] = -cphi
            rotation = s * u @ rp @ vt
            translation = u @ (np.array([a1, 0.0, a3]) * (d1 + d3))
            hypotheses.append((rotation, translation / np.linalg.norm(translation)))

        best_good = 0
        second_good = 0
        best_idx = -1
        best_check = None
        for idx, (rotation, translation) in enumerate(hypotheses):
            check = self._check(rotation, translation, inliers)
            if check.n_good > best_good:
                second_good = best_good
                best_good = check.n_good
                best_idx = idx
                best_check = check
            elif check.n_good > second_good:
                second_good = check.n_good

        if (
            best_check is not None
            and second_good < 0.75 * best_good
            and best_check.parallax >= min_parallax
            and best_good > min_triangulated
            and best_good > 0.9 * n
        ):
            rotation, translation = hypotheses[best_idx]
            return Reconstruction(
                rotation=rotation.copy(),
                translation=translation.copy(),
                points=best_check.points,
                triangulated=best_check.good,
            )
        return None