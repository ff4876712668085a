"""Point-cloud extraction from depth images, down-sampling and outlier removal."""

from __future__ import annotations

import math
from dataclasses import replace

import numpy as np
from scipy.spatial import cKDTree

from .geometry import CameraIntrinsic, PointCloud, PointXYZRGB
from .matrix_utils import transform_from_vector

_PIXEL_STEP = 3
_MIN_DEPTH = 0.1
_GROUND_HEIGHT = 0.05
_DEFAULT_GRID = 0.02
_STDDEV_MULTIPLIER = 1.0


def _is_finite(p: PointXYZRGB) -> bool:
    return math.isfinite(p.x) and math.isfinite(p.y) and math.isfinite(p.z)


def _positions(cloud: PointCloud) -> np.ndarray:
    return np.array([[p.x, p.y, p.z] for p in cloud], dtype=float).reshape(-1, 3)


def xy_center(cloud: PointCloud) -> np.ndarray:
    """Mean x and y of a point cloud."""
    if not cloud:
        raise ValueError("cannot take the center of an empty point cloud")
    xyz = _positions(cloud)
    return xyz[:, :2].mean(axis=0)


def point_cloud_in_rect(
    depth,
    detect,
    camera: CameraIntrinsic,
    rgb=None,
    max_range: float = 100.0,
) -> PointCloud:
    """Back-project every third pixel of the box ``x1 y1 x2 y2`` into camera space.

    Pixels whose depth lies outside ``(0.1, max_range]`` are skipped. Colours
    come from a BGR image when one is given and are black otherwise.
    """
    depth_img = np.asarray(depth)
    rows, cols = depth_img.shape[:2]
    colour_img = None if rgb is None else np.asarray(rgb)
    if colour_img is not None and colour_img.shape[:2] != (rows, cols):
        raise ValueError("rgb and depth images must have the same size")

    x1, y1, x2, y2 = (int(v) for v in np.asarray(detect, dtype=float).ravel()[:4])
    ys = range(y1, y2, _PIXEL_STEP)
    xs = range(x1, x2, _PIXEL_STEP)
    if (ys and (ys[0] < 0 or ys[-1] >= rows)) or (xs and (xs[0] < 0 or xs[-1] >= cols)):
        raise IndexError("detection box lies outside the depth image")

    cloud: PointCloud = []
    for y in ys:
        for x in xs:
            z = float(depth_img[y, x]) / camera.scale
            if z <= _MIN_DEPTH or z > max_range:
                continue
            if colour_img is None:
                b = g = r = 0
            else:
                b, g, r = (int(c) for c in colour_img[y, x, :3])
            cloud.append(
                PointXYZRGB(
                    x=(x - camera.cx) * z / camera.fx,
                    y=(y - camera.cy) * z / camera.fy,
                    z=z,
                    r=r,
                    g=g,
                    b=b,
                    size=1,
                )
            )
    return cloud


def filter_ground(cloud: PointCloud) -> PointCloud:
    """Keep the points higher than 0.05 along z."""
    return [p for p in cloud if p.z > _GROUND_HEIGHT]


def downsample(cloud: PointCloud, grid: float = _DEFAULT_GRID) -> PointCloud:
    """Replace the points of every cubic voxel of side ``grid`` with their centroid.

    Colours are averaged and truncated; voxels come out ordered by z, then y,
    then x cell index. Non-finite points are dropped.
    """
    if grid <= 0:
        raise ValueError("grid size must be positive")
    points = [p for p in cloud if _is_finite(p)]
    if not points:
        return []
    xyz = _positions(points)
    colours = np.array([[p.r, p.g, p.b] for p in points], dtype=float)

    cells = np.floor(xyz / grid).astype(np.int64)
    cells -= cells.min(axis=0)
    dims = cells.max(axis=0) + 1
    keys = cells[:, 0] + cells[:, 1] * dims[0] + cells[:, 2] * dims[0] * dims[1]
    _, inverse, counts = np.unique(keys, return_inverse=True, return_counts=True)
    inverse = inverse.ravel()

    position_sums = np.zeros((counts.size, 3))
    colour_sums = np.zeros((counts.size, 3))
    np.add.at(position_sums, inverse, xyz)
    np.add.at(colour_sums, inverse, colours)
    centroids = position_sums / counts[:, np.newaxis]
    mean_colours = (colour_sums / counts[:, np.newaxis]).astype(int)

    return [
        PointXYZRGB(x=float(c[0]), y=float(c[1]), z=float(c[2]), r=int(k[0]), g=int(k[1]), b=int(k[2]))
        for c, k in zip(centroids, mean_colours)
    ]


def filter_outliers(cloud: PointCloud, num_neighbors: int = 100) -> PointCloud:
    """Statistical outlier removal.

    A point is dropped when its mean distance to its nearest neighbours exceeds
    the mean of those distances over the cloud by more than one standard deviation.
    """
    if num_neighbors < 1:
        raise ValueError("num_neighbors must be positive")
    points = [p for p in cloud if _is_finite(p)]
    if len(points) < 2:
        return list(points)
    xyz = _positions(points)
    k = min(num_neighbors, len(points) - 1)
    distances, _ = cKDTree(xyz).query(xyz, k=k + 1)
    mean_distances = distances[:, 1:].mean(axis=1)

    mean = mean_distances.mean()
    stddev = mean_distances.std(ddof=1)
    threshold = mean + _STDDEV_MULTIPLIER * stddev
    return [p for p, d in zip(points, mean_distances) if d <= threshold]


def downsample_and_filter(cloud: PointCloud, num_neighbors: int = 100) -> PointCloud:
    """Down-sample on a 0.02 grid, then remove statistical outliers."""
    return filter_outliers(downsample(cloud, _DEFAULT_GRID), num_neighbors)


def combine_point_clouds(first: PointCloud, second: PointCloud) -> PointCloud:
    """The points of ``first`` followed by those of ``second``."""
    return list(first) + list(second)


def transform_point_cloud(cloud: PointCloud, transform) -> PointCloud:
    """Apply a 4x4 transform or an ``x y z qx qy qz qw`` pose to every point."""
    t = np.asarray(transform, dtype=float)
    if t.shape == (7,):
        t = transform_from_vector(t)
    elif t.shape != (4, 4):
        raise ValueError("transform must be a 4x4 matrix or a 7-value pose")
    if not cloud:
        return []
    moved = _positions(cloud) @ t[:3, :3].T + t[:3, 3]
    return [
        replace(p, x=float(q[0]), y=float(q[1]), z=float(q[2]))
        for p, q in zip(cloud, moved)
    ]