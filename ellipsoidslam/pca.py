"""Principal component analysis of object points and axis alignment to gravity."""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace

import numpy as np

from .geometry import PointXYZRGB

_FAR_DISTANCE = 999999.0


def _as_xyz(points) -> np.ndarray:
    """Positions of a point cloud or an ``N x 3`` array as an ``N x 3`` array."""
    if isinstance(points, np.ndarray):
        xyz = np.asarray(points, dtype=float)
    else:
        items = list(points)
        if items and isinstance(items[0], PointXYZRGB):
            xyz = np.array([[p.x, p.y, p.z] for p in items], dtype=float)
        else:
            xyz = np.asarray(items, dtype=float)
    xyz = xyz.reshape(-1, 3) if xyz.size else np.zeros((0, 3))
    return xyz


@dataclass
class PCAResult:
    """Center, axes and spread of a point cloud.

    ``rot_mat`` holds one axis per column; ``covariance`` and ``scale`` hold the
    spread and the extent along those axes.
    """

    result: bool = True
    center: np.ndarray = field(default_factory=lambda: np.zeros(3))
    rot_mat: np.ndarray = field(default_factory=lambda: np.eye(3))
    covariance: np.ndarray = field(default_factory=lambda: np.zeros(3))
    scale: np.ndarray = field(default_factory=lambda: np.zeros(3))

    def __post_init__(self) -> None:
        self.center = np.asarray(self.center, dtype=float).ravel().copy()
        self.rot_mat = np.asarray(self.rot_mat, dtype=float).reshape(3, 3).copy()
        self.covariance = np.asarray(self.covariance, dtype=float).ravel().copy()
        self.scale = np.asarray(self.scale, dtype=float).ravel().copy()


def process_pca(points) -> PCAResult:
    """Centroid, principal axes and eigenvalues of the normalised covariance.

    Eigenvalues come in increasing order, with the matching eigenvectors as
    the columns of ``rot_mat``.
    """
    xyz = _as_xyz(points)
    if xyz.shape[0] == 0:
        raise ValueError("cannot analyse an empty point cloud")
    center = xyz.mean(axis=0)
    centered = xyz - center
    covariance = centered.T @ centered / xyz.shape[0]
    eigenvalues, eigenvectors = np.linalg.eigh(covariance)
    return PCAResult(
        result=True,
        center=center,
        rot_mat=eigenvectors,
        covariance=eigenvalues,
    )


def process_pca_normalized(points) -> PCAResult:
    """Spread of points already expressed in the object frame.

    The covariance is the mean square of each coordinate and the scale the
    largest absolute coordinate; center and axes are the identity frame.
    """
    xyz = _as_xyz(points)
    if xyz.shape[0] == 0:
        raise ValueError("cannot analyse an empty point cloud")
    return PCAResult(
        result=True,
        center=np.zeros(3),
        rot_mat=np.eye(3),
        covariance=(xyz * xyz).mean(axis=0),
        scale=np.abs(xyz).max(axis=0),
    )


def adjust_chirality(data: PCAResult) -> PCAResult:
    """Replace the third axis with the cross product of the first two."""
    rot = data.rot_mat.copy()
    rot[:, 2] = np.cross(rot[:, 0], rot[:, 1])
    return replace(data, rot_mat=rot)


def align_z_axis_to_gravity(data: PCAResult, plane_normal=None) -> PCAResult:
    """Reorder the axes so that the one closest to the plane normal becomes z.

    Without a normal the world z axis is used. The chosen axis is flipped to
    point along the normal; x is the next axis in cyclic order and y completes
    a right-handed frame. Covariances follow their axes.
    """
    if plane_normal is None:
        z_axis = np.array([0.0, 0.0, 1.0])
    else:
        n = np.asarray(plane_normal, dtype=float).ravel()[:3]
        norm = float(np.linalg.norm(n))
        if norm == 0.0:
            raise ValueError("plane normal has zero length")
        z_axis = n / norm

    max_cos = 0.0
    max_positive = True
    max_id = -1
    for i in range(3):
        cos_theta = float(data.rot_mat[:, i] @ z_axis)
        if abs(cos_theta) > max_cos:
            max_cos = abs(cos_theta)
            max_positive = cos_theta > 0
            max_id = i
    if max_id < 0:
        raise ValueError("no axis has a component along the gravity direction")

    x_id = (max_id + 1) % 3
    y_id = (max_id + 2) % 3
    rot = np.zeros((3, 3))
    rot[:, 2] = data.rot_mat[:, max_id] if max_positive else -data.rot_mat[:, max_id]
    rot[:, 0] = data.rot_mat[:, x_id]
    rot[:, 1] = np.cross(rot[:, 2], rot[:, 0])
    covariance = np.array(
        [data.covariance[x_id], data.covariance[y_id], data.covariance[max_id]]
    )
    return replace(data, rot_mat=rot, covariance=covariance)


def _angle_axis(theta: float, axis: np.ndarray) -> np.ndarray:
    c, s = math.cos(theta), math.sin(theta)
    skew = np.array(
        [
            [0.0, -axis[2], axis[1]],
            [axis[2], 0.0, -axis[0]],
            [-axis[1], axis[0], 0.0],
        ]
    )
    return c * np.eye(3) + s * skew + (1.0 - c) * np.outer(axis, axis)


def calib_rot_mat_to_ground_plane(rot, normal) -> np.ndarray:
    """Rotate ``rot`` by the smallest rotation taking its z axis onto ``normal``."""
    r = np.asarray(rot, dtype=float).reshape(3, 3)
    n = np.asarray(normal, dtype=float).ravel()[:3]
    z = r[:, 2]
    norm_n = float(np.linalg.norm(n))
    norm_z = float(np.linalg.norm(z))
    if norm_n == 0.0 or norm_z == 0.0:
        raise ValueError("normal and z axis must have non-zero length")
    axis = np.cross(z, n)
    axis_norm = float(np.linalg.norm(axis))
    if axis_norm > 0.0:
        axis = axis / axis_norm
    cos_theta = float(n @ z) / norm_n / norm_z
    theta = math.acos(max(-1.0, min(1.0, cos_theta)))
    return _angle_axis(theta, axis) @ r


def distance_to_cloud(point, cloud) -> float:
    """Smallest distance between ``point`` and any point of ``cloud``."""
    xyz = _as_xyz(cloud)
    if xyz.shape[0] == 0:
        raise ValueError("point cloud is empty")
    p = np.asarray(point, dtype=float).ravel()[:3]
    nearest = float(np.min(np.linalg.norm(xyz - p, axis=1)))
    return min(nearest, _FAR_DISTANCE)