"""Image sequence loaders for the EuRoC, KITTI and TUM dataset layouts, and
helpers for pacing playback and summarising tracking times."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

# EuRoC timestamps are given in nanoseconds.
_NANOSECONDS = 1e9
# Number of comment lines at the top of a TUM rgb.txt file.
_TUM_HEADER_LINES = 3


@dataclass
class ImageSequence:
    """Image file names paired with their timestamps in seconds."""

    filenames: list[str]
    timestamps: list[float]

    def __post_init__(self) -> None:
        if len(self.filenames) != len(self.timestamps):
            raise ValueError("filenames and timestamps must have the same length")

    def __len__(self) -> int:
        return len(self.filenames)

    def __iter__(self) -> Iterator[tuple[str, float]]:
        return iter(zip(self.filenames, self.timestamps))


@dataclass
class RGBDSequence:
    """Colour and depth image names, relative to the sequence folder, with timestamps."""

    rgb_filenames: list[str]
    depth_filenames: list[str]
    timestamps: list[float]

    def __post_init__(self) -> None:
        if len(self.rgb_filenames) != len(self.depth_filenames):
            raise ValueError("different number of images for rgb and depth")
        if len(self.rgb_filenames) != len(self.timestamps):
            raise ValueError("image names and timestamps must have the same length")

    def __len__(self) -> int:
        return len(self.rgb_filenames)

    def __iter__(self) -> Iterator[tuple[str, str, float]]:
        return iter(zip(self.rgb_filenames, self.depth_filenames, self.timestamps))


@dataclass(frozen=True)
class TimingSummary:
    """Median and mean of per-frame tracking times, in seconds."""

    median: float
    mean: float
    total: float
    count: int

    def __str__(self) -> str:
        return (
            f"median tracking time: {self.median}\n"
            f"mean tracking time: {self.mean}"
        )


def _lines(path) -> Iterator[str]:
    with open(path, encoding="utf-8") as handle:
        for raw in handle:
            yield raw.rstrip("\n")


def _leading_number(line: str) -> float:
    fields = line.split()
    if not fields:
        raise ValueError(f"no timestamp in line {line!r}")
    try:
        return float(fields[0])
    except ValueError as exc:
        raise ValueError(f"invalid timestamp in line {line!r}") from exc


def load_euroc_mono(image_path, times_path) -> ImageSequence:
    """Read a EuRoC timestamp file; each line names an image and gives its time in ns."""
    filenames: list[str] = []
    timestamps: list[float] = []
    for line in _lines(times_path):
        if not line:
            continue
        filenames.append(f"{image_path}/{line}.png")
        timestamps.append(_leading_number(line) / _NANOSECONDS)
    return ImageSequence(filenames, timestamps)


def load_kitti_mono(sequence_path) -> ImageSequence:
    """Read times.txt of a KITTI sequence and name the left images image_0/NNNNNN.png."""
    timestamps = [
        _leading_number(line)
        for line in _lines(Path(sequence_path) / "times.txt")
        if line
    ]
    filenames = [f"{sequence_path}/image_0/{i:06d}.png" for i in range(len(timestamps))]
    return ImageSequence(filenames, timestamps)


def load_tum_mono(sequence_path) -> ImageSequence:
    """Read rgb.txt of a TUM sequence, skipping its three header lines."""
    filenames: list[str] = []
    timestamps: list[float] = []
    for number, line in enumerate(_lines(Path(sequence_path) / "rgb.txt")):
        if number < _TUM_HEADER_LINES or not line:
            continue
        fields = line.split()
        if len(fields) < 2:
            raise ValueError(f"missing image name in line {line!r}")
        timestamps.append(_leading_number(line))
        filenames.append(f"{sequence_path}/{fields[1]}")
    return ImageSequence(filenames, timestamps)


def load_tum_rgbd(association_path) -> RGBDSequence:
    """Read a TUM association file: 'time rgb_name time depth_name' per line."""
    rgb: list[str] = []
    depth: list[str] = []
    timestamps: list[float] = []
    for line in _lines(association_path):
        if not line:
            continue
        fields = line.split()
        if len(fields) < 4:
            raise ValueError(f"association line needs four fields: {line!r}")
        timestamps.append(_leading_number(line))
        rgb.append(fields[1])
        depth.append(fields[3])
    return RGBDSequence(rgb, depth, timestamps)


def frame_wait(timestamps, index, elapsed) -> float:
    """Seconds to wait after tracking frame ``index`` to keep the recorded rate.

    The frame period is the gap to the next frame, or to the previous one for
    the last frame; a single frame has none.
    """
    stamps = list(timestamps)
    if not 0 <= index < len(stamps):
        raise IndexError(f"frame index {index} out of range")
    period = 0.0
    if index < len(stamps) - 1:
        period = stamps[index + 1] - stamps[index]
    elif index > 0:
        period = stamps[index] - stamps[index - 1]
    if elapsed < period:
        return period - elapsed
    return 0.0


def summarize_timings(times) -> TimingSummary:
    """Median (upper middle element) and mean of tracking times."""
    ordered = sorted(float(t) for t in times)
    if not ordered:
        raise ValueError("no tracking times to summarise")
    total = sum(ordered)
    return TimingSummary(
        median=ordered[len(ordered) // 2],
        mean=total / len(ordered),
        total=total,
        count=len(ordered),
    )