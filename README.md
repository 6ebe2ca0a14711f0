# orbslam_core

Building blocks for feature-based visual SLAM, written on top of NumPy.

The package works on keypoints, descriptors and poses that you supply; it
covers the geometry and bookkeeping around them.

## Modules

- `orbslam_core.descriptors` – the `KeyPoint` record (position, size, angle,
  response, octave; `moved(x, y)` returns a copy at a new position) and
  `descriptor_distance`, the Hamming distance between two binary descriptors
  given as byte arrays.
- `orbslam_core.converter` – `se3_matrix`, `sim3_matrix` and `split_se3` for
  4x4 rigid and similarity transforms, `to_quaternion` (returns `[x, y, z, w]`)
  and `to_descriptor_vector`, which splits a descriptor matrix into rows.
- `orbslam_core.twoview` – `normalize`, eight-point `compute_h21` and
  `compute_f21`, linear `triangulate`, `decompose_e` and `check_rt`, which
  triangulates the inlier matches under a motion hypothesis and returns a
  `RigidCheck` (number of good points, the points, per-point flags and the
  parallax in degrees).
- `orbslam_core.initializer` – `Initializer`, which runs RANSAC for a
  homography and a fundamental matrix over the same eight-point sets (seeded,
  so results are repeatable), picks the model by score ratio and reconstructs
  the relative motion as a `Reconstruction`, or returns `None` when no
  hypothesis is clearly best.
- `orbslam_core.frame` – `CameraCalibration` (intrinsics, radial/tangential
  distortion, `bf`, depth threshold; `undistort_points`, `image_bounds`) and
  `Frame`, built with `Frame.monocular`, `Frame.rgbd` or `Frame.stereo`. A frame
  undistorts its keypoints, places them in a 64 x 48 grid for
  `features_in_area` queries, takes depth from a depth map or from stereo
  matching along rows with sub-pixel SAD refinement, holds a pose set with
  `set_pose`, and back-projects keypoints with `unproject_stereo`.
- `orbslam_core.datasets` – `load_euroc_mono`, `load_kitti_mono`,
  `load_tum_mono` and `load_tum_rgbd`, returning `ImageSequence` or
  `RGBDSequence`; `frame_wait` for real-time playback pacing and
  `summarize_timings`, which returns a `TimingSummary` (median, mean, total,
  count).
- `orbslam_core.stereo_datasets` – `load_euroc_stereo` and `load_kitti_stereo`,
  returning a `StereoSequence`.
- `orbslam_core.frame_drawer` – `TrackingState`, `status_text` and
  `FrameDrawer`, whose `update` records a tracking result and whose `draw`
  returns a `FrameOverlay`: match lines during initialization, boxes around
  features matched to map points and to visual-odometry points, the match
  counts and the status line.
- `orbslam_core.plane` – `exp_so3`, the `Plane` class (fit to world points or
  built with `Plane.from_normal`; `recompute`, `gl_matrix` in column-major
  order), `detect_plane` (RANSAC plane search), `status_label` and
  `grid_lines`.

## Requirements

Python 3.10 or newer and NumPy.

## Usage

### Comparing descriptors

```python
import numpy as np
from orbslam_core.descriptors import descriptor_distance

a = np.zeros(32, dtype=np.uint8)
b = np.full(32, 0xFF, dtype=np.uint8)
print(descriptor_distance(a, b))  # 256
```

### Poses

```python
import numpy as np
from orbslam_core.converter import se3_matrix, split_se3, to_quaternion

T = se3_matrix(np.eye(3), [1.0, 2.0, 3.0])
rotation, translation = split_se3(T)
qx, qy, qz, qw = to_quaternion(rotation)
```

### Two-view geometry

```python
from orbslam_core.twoview import compute_f21, decompose_e

F = compute_f21(points1, points2)   # N x 2 arrays, N >= 8
R1, R2, t = decompose_e(K.T @ F @ K)
```

### Initializing a monocular map

```python
from orbslam_core.initializer import Initializer

init = Initializer(reference_keypoints, K, 1.0, 200)
reconstruction = init.initialize(current_keypoints, matches12)
if reconstruction is not None:
    R, t = reconstruction.rotation, reconstruction.translation
```

`matches12[i]` is the index of the current keypoint matched to reference
keypoint `i`, or a negative value when it has none. At least eight matches are
required; fewer raise `ValueError`.

### Loading a dataset

```python
from orbslam_core.datasets import load_kitti_mono, frame_wait, summarize_timings
from orbslam_core.stereo_datasets import load_kitti_stereo

sequence = load_kitti_mono("sequences/00")
for filename, timestamp in sequence:
    ...
stereo = load_kitti_stereo("sequences/00")
```

`frame_wait(timestamps, index, elapsed)` gives the seconds to pause after a
frame so playback keeps the recorded rate; `summarize_timings` reports the
median and mean tracking time of a run.

### Detecting a plane

```python
from orbslam_core.plane import detect_plane

plane = detect_plane(points, Tcw, 50, rng)
if plane is not None:
    model_view = plane.gl_matrix()
```

`detect_plane` returns `None` when fewer than fifty points are given; choosing
which points are observed well enough is left to the caller.

## What the package does not do

- It does not read images, build image pyramids or extract ORB features:
  keypoints, descriptors and pyramids are inputs.
- It has no tracker, local mapping, loop closing, bag-of-words vocabulary or
  map storage, and it does not save trajectories.
- `FrameDrawer` and `Plane` produce data to draw (boxes, lines, text, matrices);
  nothing is rendered and there is no viewer window.
- There are no command-line programs; the dataset loaders are functions to
  call from your own code.

## Running the tests

The test suite uses pytest, available through the `test` extra:

```
pip install -e .[test]
pytest
```