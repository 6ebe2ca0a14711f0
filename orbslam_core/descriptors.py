"""Keypoints and binary descriptor distances."""

from __future__ import annotations

from dataclasses import dataclass, replace

import numpy as np


@dataclass(frozen=True)
class KeyPoint:
    """An image feature: position, size, orientation, response and pyramid level."""

    x: float
    y: float
    size: float = 0.0
    angle: float = -1.0
    response: float = 0.0
    octave: int = 0

    @property
    def pt(self) -> tuple[float, float]:
        return (self.x, self.y)

    def moved(self, x, y) -> "KeyPoint":
        """Return the same keypoint placed at a new position."""
        return replace(self, x=float(x), y=float(y))


def descriptor_distance(a, b) -> int:
    """Hamming distance between two binary descriptors given as byte arrays."""
    first = np.asarray(a, dtype=np.uint8).reshape(-1)
    second = np.asarray(b, dtype=np.uint8).reshape(-1)
    if first.shape != second.shape:
        raise ValueError("descriptors must have the same length")
    return int(np.unpackbits(np.bitwise_xor(first, second)).sum())