"""Stereo image sequence loaders for the EuRoC and KITTI dataset layouts."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from .datasets import _leading_number, _lines

# EuRoC timestamps are given in nanoseconds.
_NANOSECONDS = 1e9


@dataclass
class StereoSequence:
    """Left and right image file names paired with timestamps in seconds."""

    left_filenames: list[str]
    right_filenames: list[str]
    timestamps: list[float]

    def __post_init__(self) -> None:
        if len(self.left_filenames) != len(self.right_filenames):
            raise ValueError("different number of left and right images")
        if len(self.left_filenames) != len(self.timestamps):
            raise ValueError("image names and timestamps must have the same length")

    def __len__(self) -> int:
        return len(self.left_filenames)

    def __iter__(self) -> Iterator[tuple[str, str, float]]:
        return iter(zip(self.left_filenames, self.right_filenames, self.timestamps))


def load_euroc_stereo(left_path, right_path, times_path) -> StereoSequence:
    """Read a EuRoC timestamp file naming image pairs, with times in nanoseconds."""
    left: list[str] = []
    right: list[str] = []
    timestamps: list[float] = []
    for line in _lines(times_path):
        if not line:
            continue
        left.append(f"{left_path}/{line}.png")
        right.append(f"{right_path}/{line}.png")
        timestamps.append(_leading_number(line) / _NANOSECONDS)
    return StereoSequence(left, right, timestamps)


def load_kitti_stereo(sequence_path) -> StereoSequence:
    """Read times.txt of a KITTI sequence; images live in image_0/ and image_1/."""
    timestamps = [
        _leading_number(line)
        for line in _lines(Path(sequence_path) / "times.txt")
        if line
    ]
    left = [f"{sequence_path}/image_0/{i:06d}.png" for i in range(len(timestamps))]
    right = [f"{sequence_path}/image_1/{i:06d}.png" for i in range(len(timestamps))]
    return StereoSequence(left, right, timestamps)