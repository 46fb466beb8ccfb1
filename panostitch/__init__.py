"""Panorama stitching from matched keypoints: transforms, cameras, bundle adjustment, projection and blending."""

__version__ = "0.1.0"