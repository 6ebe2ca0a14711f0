"""Geometry and bookkeeping for feature-based visual SLAM: descriptors, poses,
two-view initialization, frames, dataset loaders, tracking overlays and planes."""

__version__ = "0.1.0"