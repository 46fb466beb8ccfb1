[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "panostitch"
version = "0.1.0"
description = "Panorama stitching from matched keypoints: transform and camera estimation, bundle adjustment, projection and blending"
requires-python = ">=3.10"
keywords = ["panorama", "stitching", "homography", "ransac", "bundle-adjustment", "blending", "image-processing"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: Science/Research",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Scientific/Engineering :: Image Processing",
]
dependencies = [
    "numpy",
    "scipy",
    "pillow",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["panostitch"]

[tool.pytest.ini_options]
addopts = "-ra"
