# ellipsoidslam

Estimates object ellipsoids from single RGB-D frames. The package turns a
depth image and a detection box into a 3-D point cloud and keeps the points
above a supporting plane. It picks the Euclidean cluster nearest to the object
center and, for objects with a reflection-symmetry prior, completes the cloud
by mirroring it across an estimated symmetry plane. An ellipsoid aligned with
the supporting plane is then fitted to the result.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Modules

- `ellipsoidslam.matrix_utils`: converts between pose vectors
  (`x y z qx qy qz qw`) and 4x4 transforms (`transform_from_vector`,
  `vector_from_transform`). It also handles ZYX Euler angles, quaternions and
  rotation matrices, and homogeneous coordinates. Readers for
  whitespace-separated number files (`read_all_number_txt`,
  `read_obj_detection_txt`, `read_obj_detection2_txt`) and small helpers
  (`sort_indexes`, `normalize_to_pi`, `linespace`) live here too.
- `ellipsoidslam.dataprocess_utils`: reads numeric and string tables separated
  by spaces, tabs or commas, and writes matrices with 12 significant digits.
  It lists a directory and sorts file names by their numeric stem.
  `calibrate_measurement` checks a detection box against the image border and
  a minimum size.
- `ellipsoidslam.geometry`: the `PointXYZRGB` point dataclass and
  `CameraIntrinsic`, with `calibration_matrix()` returning K.
- `ellipsoidslam.plane`: `Plane` holds the parameters `A x + B y + C z + D = 0`.
  It has the `oplus` and `oplus_dual` updates and helpers for azimuth,
  elevation and the rotation onto a normal.
- `ellipsoidslam.pointcloud_filter`: back-projects every third pixel of a
  detection box (`point_cloud_in_rect`). It also does voxel-grid down-sampling
  (`downsample`), statistical outlier removal (`filter_outliers`,
  `downsample_and_filter`), ground filtering and rigid transforms
  (`transform_point_cloud`).
- `ellipsoidslam.symmetry_solver`: mirrors points and clouds across a plane
  (`symmetry_point_of_plane`, `symmetry_point_cloud`) and scores a mirrored
  cloud against the depth image and the nearest original points
  (`point_cloud_prob`). `SymmetrySolver.optimize_symmetry_plane` refines a plane
  with a small Levenberg-Marquardt loop over azimuth and distance.
- `ellipsoidslam.symmetry`: `Symmetry.estimate_symmetry` optimises several
  initial planes and returns the most probable result. `proj_depth_mat` turns
  a depth image into distances from the camera center.
- `ellipsoidslam.pca`: `process_pca`, `process_pca_normalized`,
  `adjust_chirality`, `align_z_axis_to_gravity`,
  `calib_rot_mat_to_ground_plane` and `distance_to_cloud`.
- `ellipsoidslam.ellipsoid_extractor`: the full pipeline in
  `EllipsoidExtractor`. It is tuned by `ExtractorConfig`, which sets the depth
  range, symmetry grid size, cluster tolerance and minimum size, center
  distance, symmetry sigma and iterations.

## Example

```python
import numpy as np
from ellipsoidslam.geometry import CameraIntrinsic
from ellipsoidslam.plane import Plane
from ellipsoidslam.ellipsoid_extractor import EllipsoidExtractor, ExtractionError

camera = CameraIntrinsic(fx=535.4, fy=539.2, cx=320.1, cy=247.6, scale=5000.0)
depth = np.load("depth.npy")                # uint16 depth image
pose = np.array([0, 0, 1.0, 0, 0, 0, 1.0])  # x y z qx qy qz qw, camera in world
bbox = np.array([200.0, 150.0, 400.0, 350.0])

extractor = EllipsoidExtractor()
extractor.set_supporting_plane(Plane(np.array([0.0, 0.0, 1.0, 0.0])))
extractor.open_symmetry()

try:
    estimate = extractor.estimate_local_ellipsoid(depth, bbox, 62, pose, camera)
except ExtractionError as err:
    print("no ellipsoid:", err, "state", err.state)
else:
    print(estimate.pose, estimate.scale, estimate.prob)
```

The returned `EllipsoidEstimate` is in the camera frame. Its `pose` is
`x y z qx qy qz qw` and its `scale` holds the half axis lengths. A supporting
plane must be set first; without one, extraction raises `RuntimeError`.
`ExtractionError.state` is `NO_POINTS`, `NO_CENTER` or `CLUSTER_NOT_FOUND`.

## What is not included

- Symmetry completion covers reflection symmetry (prior type 1) only. Labels
  with a dual-reflection prior, or with no prior, keep their observed points
  and get a probability of 1.
- The package works on one frame at a time. It keeps no map, does no
  multi-frame data association or optimisation, and has no viewer.
- It reads no dataset directories or settings files and has no command-line
  program. Depth images, poses, boxes and parameters are passed in by the
  caller.