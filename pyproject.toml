[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "orbslam-core"
version = "0.1.0"
description = "Geometry and bookkeeping for feature-based visual SLAM: descriptor distances, pose conversions, two-view initialization, frames, dataset loaders, tracking overlays and plane detection."
requires-python = ">=3.10"
dependencies = [
    "numpy",
]
keywords = [
    "slam",
    "visual-odometry",
    "orb",
    "computer-vision",
    "homography",
    "fundamental-matrix",
    "triangulation",
    "stereo",
    "rgbd",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Image Processing",
    "Topic :: Scientific/Engineering :: Mathematics",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["orbslam_core"]

[tool.hatch.build.targets.sdist]
include = [
    "orbslam_core",
    "tests",
]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
