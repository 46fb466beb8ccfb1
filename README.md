# panostitch

A library for stitching overlapping photographs into one panorama. You supply the
keypoints and the descriptor matches. The package then estimates transforms and
cameras, refines the cameras, projects every image and blends the result.

Images are `numpy` float32 arrays of shape `(height, width, 3)` with values in
`[0, 1]`. In the output, pixels that no input image covers are set to `-1`.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## What is in the package

| Module | Contents |
|---|---|
| `panostitch.shape` | `Shape2D`: image width and height, and helpers for half-shifted coordinates |
| `panostitch.homography` | `Homography` (an immutable 3×3 transform), `SingularMatrixError`, `overlap_region` |
| `panostitch.match_info` | `MatchInfo`: inlier point pairs with a confidence and a homography, serialized as text |
| `panostitch.projection` | flat, cylindrical and spherical projections, and `ProjectionMethod` to choose one |
| `panostitch.camera` | `Camera`: focal length, aspect ratio, principal point and rotation; focal estimation; axis-angle conversion; `straighten` |
| `panostitch.imageref` | `ImageRef` (an image file read on demand), `read_image` (via Pillow), `interpolate` (bilinear sampling) |
| `panostitch.transform_estimate` | `TransformEstimation` (RANSAC homography or affine fit with plausibility checks), `TransformType`, `TransformEstimationError`, `get_perspective_transform`, `get_affine_transform` |
| `panostitch.warp` | `CylinderProject` and `CylinderWarper`, which warp images and keypoints onto a cylinder |
| `panostitch.blender` | `LinearBlender`: a weighted average that favours pixels near each image's centre; `Range`, `ImageToAdd`, `BlenderBase` |
| `panostitch.multiband` | `MultiBandBlender`: Laplacian-pyramid blending, blurred with `scipy.ndimage.gaussian_filter` |
| `panostitch.bundle_adjuster` | `IncrementalBundleAdjuster`: Levenberg–Marquardt refinement of the cameras; `ErrorStats` |
| `panostitch.camera_estimator` | `CameraEstimator`: initial focal lengths, spanning-tree initialisation of rotations, bundle adjustment; `CameraEstimationError` |
| `panostitch.stitcher_image` | `ConnectedImages`: per-image transforms, projected range, output resolution and final blending; `ImageComponent`, `ProjRange`, `StitchingError` |
| `panostitch.stitcher` | `Stitcher`: the full pipeline with pairwise matching and camera estimation |
| `panostitch.cylstitcher` | `CylinderStitcher`: a pipeline for an ordered sequence of images. It warps them onto a cylinder, chains affine transforms and corrects the perspective at the end |

## Coordinates

Keypoints and homographies use *half-shifted* coordinates. The centre of an
image is the origin, so a point lies in `[-w/2, w/2) × [-h/2, h/2)`.
`Shape2D.shifted_corner()` and `Shape2D.shifted_in()` work in this frame.

In a match table, `matches[i][j].homo` maps points of image `j` into image `i`.

## Example: homographies

```python
from panostitch.homography import Homography
from panostitch.shape import Shape2D

h = Homography.translation(10.0, -5.0)
print(h.trans2d((0.0, 0.0)))          # (10.0, -5.0)
print((h @ h.inverse()).to_matrix())  # identity

shape = Shape2D(640, 480)
print(shape.shifted_corner())
```

## Example: a full panorama

`Stitcher` and `CylinderStitcher` each take three things:

- the images, given as file paths, `ImageRef` objects or arrays;
- a feature detector, called as `feature_detector(img)`, which returns
  `(keypoints, descriptors)`. The keypoints are `(x, y)` pairs in half-shifted
  coordinates;
- a matcher, called as `matcher(descriptors_i, descriptors_j)`, which returns
  pairs `(index in image i, index in image j)`.

```python
from panostitch.stitcher import Stitcher

stitcher = Stitcher(["a.jpg", "b.jpg", "c.jpg"], my_detector, my_matcher)
panorama = stitcher.build()   # HxWx3 float32 array
```

### `Stitcher` options

| Option | Effect |
|---|---|
| `estimate_camera` (default `True`) | Estimate cameras and use the spherical projection. If false, chain homographies and use the flat projection |
| `trans` | Fit affine transforms instead of homographies |
| `multipass_ba`, `straighten`, `lm_lambda` | Control the bundle adjustment |

### Options shared by both stitchers

| Option | Effect |
|---|---|
| `ordered_input` | Match only neighbouring images |
| `lazy_read` | Release image data after use |
| `multiband` | The number of bands for `MultiBandBlender`; `0` selects `LinearBlender` |
| `max_output_size` | The largest allowed output edge, in pixels |
| `ransac_iterations`, `ransac_inlier_thres`, `inlier_in_match_ratio`, `inlier_in_points_ratio` | Control the RANSAC fit and its plausibility checks |
| `rng` | The random number generator that RANSAC uses |

`CylinderStitcher` also takes `focal_length` and `slope_plain`.

### Saving and loading matches

`Stitcher.dump_matchinfo(path)` writes the current `pairwise_matches` table to a
text file. `Stitcher.load_matchinfo(path)` reads such a file back into that
table.

## Errors

Failures raise exceptions instead of returning status codes.

| Exception | Raised when |
|---|---|
| `SingularMatrixError` | A homography cannot be inverted. |
| `TransformEstimationError` | `TransformEstimation.get_transform()` finds no acceptable transform. The exception carries the confidence that was reached. |
| `CameraEstimationError` | The images do not form one connected group. |
| `StitchingError` | An image has no features, neighbouring ordered images do not match, a cylinder fit fails, or the output would be implausibly large. |

## What the package does not do

- It has no feature detector and no descriptor matcher. Both must be passed in
  as callables.
- It has no command-line program.
- It does not write image files. `build()` returns an array, and saving it is
  left to the caller.