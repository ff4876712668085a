"""Single-frame ellipsoid estimation from a depth image and a bounding box.

Object points are cut out of the depth image, filtered against a supporting
plane and split into Euclidean clusters. The cluster nearest to the object
center is analysed with PCA. When symmetry estimation is open, the cloud can be
completed by mirroring it across an estimated symmetry plane. The ellipsoid is
then fitted to the completed points.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace

import numpy as np
from scipy.sparse import coo_matrix
from scipy.sparse.csgraph import connected_components
from scipy.spatial import cKDTree

from .geometry import CameraIntrinsic, PointCloud, PointXYZRGB
from .matrix_utils import rotation_to_quat, transform_from_vector, vector_from_transform
from .pca import (
    adjust_chirality,
    align_z_axis_to_gravity,
    calib_rot_mat_to_ground_plane,
    distance_to_cloud,
    process_pca,
    process_pca_normalized,
)
from .plane import Plane
from .pointcloud_filter import downsample, point_cloud_in_rect, transform_point_cloud
from .symmetry import Symmetry, SymmetryOutputData, proj_depth_mat
from .symmetry_solver import symmetry_point_cloud

# Symmetry type per semantic label: 0 none, 1 reflection, 2 dual reflection.
_SYMMETRY_PRIOR = {58: 0, 59: 1, 62: 1, 57: 1, 66: 1, 63: 1, 64: 1, 41: 1, 28: 2}
_REFLECTION = 1

_EXTRACT_GRID = 0.01
_PLANE_MARGIN = 0.05
_CENTER_SAMPLES = 10
_MIN_CENTER_POINTS = 2
_MIN_DEPTH = 0.1

_INIT_STEPS = 1
_INIT_DIS_STEP = 0.2
_INIT_ANGLE_STEP = math.radians(5.0)


@dataclass(frozen=True)
class ExtractorConfig:
    """Parameters of the extraction."""

    depth_range: float = 6.0
    symmetry_grid_size: float = 0.02
    min_cluster_size: int = 100
    cluster_tolerance: float = 0.05
    center_distance: float = 0.5
    symmetry_sigma: float = 0.1
    symmetry_iterations: int = 5

    def __post_init__(self) -> None:
        for name in (
            "depth_range",
            "symmetry_grid_size",
            "min_cluster_size",
            "cluster_tolerance",
            "center_distance",
            "symmetry_sigma",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.symmetry_iterations < 0:
            raise ValueError("symmetry_iterations must not be negative")


@dataclass
class EllipsoidEstimate:
    """An ellipsoid in the camera frame.

    ``pose`` is ``x y z qx qy qz qw`` and ``scale`` the half axis lengths.
    """

    pose: np.ndarray
    scale: np.ndarray
    prob: float = 1.0


class ExtractionError(Exception):
    """The extraction failed; ``state`` tells at which step."""

    NO_CENTER = 1
    CLUSTER_NOT_FOUND = 2
    NO_POINTS = 4

    def __init__(self, state: int, message: str) -> None:
        super().__init__(message)
        self.state = state


def _pose_transform(pose) -> np.ndarray:
    p = np.asarray(pose, dtype=float).ravel()
    if p.size < 7:
        raise ValueError("pose must end with x y z qx qy qz qw")
    return transform_from_vector(p[-7:])


def _rigid(rot, translation) -> np.ndarray:
    quat = rotation_to_quat(rot)
    quat = quat / np.linalg.norm(quat)
    return transform_from_vector(np.concatenate([np.asarray(translation, dtype=float), quat]))


def _transform_plane(param, transform) -> np.ndarray:
    return np.linalg.inv(transform).T @ np.asarray(param, dtype=float)


def _xyz(points) -> np.ndarray:
    if isinstance(points, np.ndarray):
        return points.astype(float).reshape(-1, 3)
    items = list(points)
    if items and isinstance(items[0], PointXYZRGB):
        return np.array([[p.x, p.y, p.z] for p in items], dtype=float)
    return np.asarray(items, dtype=float).reshape(-1, 3)


def _initial_planes() -> list[Plane]:
    """Vertical planes sampled around the object center in distance and angle."""
    count = 2 * _INIT_STEPS + 1
    planes = []
    for i in range(count):
        dis = -_INIT_DIS_STEP * _INIT_STEPS + _INIT_DIS_STEP * i
        for m in range(count):
            angle = -_INIT_ANGLE_STEP * _INIT_STEPS + _INIT_ANGLE_STEP * m
            planes.append(Plane(np.array([math.cos(angle), math.sin(angle), 0.0, -dis])))
    return planes


def supporting_plane_filter(cloud: PointCloud, plane_param) -> PointCloud:
    """Keep the points more than 0.05 above the plane (positive side)."""
    param = plane_param.param if isinstance(plane_param, Plane) else np.asarray(plane_param, dtype=float).ravel()
    if param.size != 4:
        raise ValueError("plane parameters must hold 4 values")
    norm = float(np.linalg.norm(param[:3]))
    if norm == 0.0:
        raise ValueError("plane normal has zero length")
    return [p for p in cloud if (float(param[:3] @ p.position()) + param[3]) / norm > _PLANE_MARGIN]


def euclidean_clusters(points, tolerance: float, min_size: int) -> list[list[int]]:
    """Group points linked by distances up to ``tolerance``.

    Clusters smaller than ``min_size`` are dropped; the rest come largest
    first, each as sorted point indices.
    """
    if tolerance <= 0:
        raise ValueError("tolerance must be positive")
    xyz = _xyz(points)
    n = xyz.shape[0]
    if n == 0:
        return []
    pairs = cKDTree(xyz).query_pairs(tolerance, output_type="ndarray")
    graph = coo_matrix((np.ones(len(pairs)), (pairs[:, 0], pairs[:, 1])), shape=(n, n))
    count, labels = connected_components(graph, directed=False)
    clusters = [np.flatnonzero(labels == k) for k in range(count)]
    clusters = [c for c in clusters if min_size <= c.size <= n]
    clusters.sort(key=lambda c: (-c.size, int(c[0])))
    return [c.tolist() for c in clusters]


def estimate_center(depth, bbox, pose, camera: CameraIntrinsic, depth_range: float):
    """A coarse world-frame object center sampled around the middle of ``bbox``.

    Returns ``None`` when fewer than two sampled pixels have a valid depth.
    """
    img = np.asarray(depth)
    rows, cols = img.shape[:2]
    b = np.asarray(bbox, dtype=float).ravel()
    x = int((b[0] + b[2]) / 2.0)
    y = int((b[1] + b[3]) / 2.0)
    x_delta = int(abs(b[0] - b[2]) / 4.0 / _CENTER_SAMPLES)
    y_delta = int(abs(b[1] - b[3]) / 4.0 / _CENTER_SAMPLES)
    half = _CENTER_SAMPLES // 2

    samples = []
    for x_id in range(-half, half):
        for y_id in range(-half, half):
            u = x + x_id * x_delta
            v = y + y_id * y_delta
            if not (0 <= u < cols and 0 <= v < rows):
                raise IndexError("center samples lie outside the depth image")
            z = float(img[v, u]) / camera.scale
            if z <= _MIN_DEPTH or z > depth_range:
                continue
            samples.append(((u - camera.cx) * z / camera.fx, (v - camera.cy) * z / camera.fy, z))
    if len(samples) < _MIN_CENTER_POINTS:
        return None
    centroid = np.mean(np.array(samples), axis=0)
    t_wc = _pose_transform(pose)
    return t_wc[:3, :3] @ centroid + t_wc[:3, 3]


class EllipsoidExtractor:
    """Estimates object ellipsoids from RGB-D observations."""

    def __init__(self, config: ExtractorConfig | None = None) -> None:
        self.config = config or ExtractorConfig()
        self.plane: Plane | None = None
        self.symmetry_open = False
        self.label_symmetry: dict[int, int] = {}
        self.result = False
        self.points: PointCloud = []
        self.points_debug: PointCloud = []
        self.debug_center: np.ndarray | None = None
        self.debug_clusters: list[PointCloud] = []
        self.symmetry_output = SymmetryOutputData()
        self.extract_count = 0

    def open_symmetry(self) -> None:
        """Complete object clouds with estimated reflection symmetry."""
        self.label_symmetry = dict(_SYMMETRY_PRIOR)
        self.symmetry_open = True

    def set_supporting_plane(self, plane: Plane) -> None:
        """Set the plane the objects stand on, in world coordinates."""
        self.plane = plane

    def extract_point_cloud(self, depth, bbox, pose, camera: CameraIntrinsic) -> PointCloud:
        """Object points in world coordinates, or :class:`ExtractionError`."""
        if self.plane is None:
            raise RuntimeError("the supporting plane must be set first")
        cfg = self.config
        local = downsample(point_cloud_in_rect(depth, bbox, camera, None, cfg.depth_range), _EXTRACT_GRID)
        world = transform_point_cloud(local, _pose_transform(pose))
        self.points_debug = world

        filtered = supporting_plane_filter(world, self.plane)
        if not filtered:
            raise ExtractionError(ExtractionError.NO_POINTS, "no point left above the supporting plane")

        center = estimate_center(depth, bbox, pose, camera, cfg.depth_range)
        if center is None:
            raise ExtractionError(ExtractionError.NO_CENTER, "no valid depth near the box center")
        self.debug_center = center

        self.points = self._euclidean_filter(filtered, center)
        return self.points

    def _euclidean_filter(self, cloud: PointCloud, center) -> PointCloud:
        cfg = self.config
        clusters = euclidean_clusters(cloud, cfg.cluster_tolerance, cfg.min_cluster_size)
        groups = [[cloud[i] for i in c] for c in clusters]
        self.debug_clusters = groups
        chosen = None
        for group in groups:
            if len(groups) == 1:
                chosen = group
            if distance_to_cloud(center, group) < cfg.center_distance:
                chosen = group
                break
        if chosen is None:
            raise ExtractionError(ExtractionError.CLUSTER_NOT_FOUND, "no cluster lies near the object center")
        return [PointXYZRGB(p.x, p.y, p.z) for p in chosen]

    def estimate_local_ellipsoid(self, depth, bbox, label: int, pose, camera: CameraIntrinsic) -> EllipsoidEstimate:
        """Estimate the ellipsoid of the object in ``bbox``, in the camera frame.

        Only reflection symmetry (type 1) is estimated; other labels keep the
        observed points and a probability of 1.
        """
        self.extract_count += 1
        self.result = False
        self.symmetry_output = SymmetryOutputData()

        points = self.extract_point_cloud(depth, bbox, pose, camera)
        normal = self.plane.param[:3]

        data = process_pca(points)
        data = adjust_chirality(data)
        data = align_z_axis_to_gravity(data, normal)
        data = replace(data, rot_mat=calib_rot_mat_to_ground_plane(data.rot_mat, normal))
        center = data.center

        cloud = downsample(points, self.config.symmetry_grid_size)

        z_axis = normal / np.linalg.norm(normal)
        x_axis = data.rot_mat[:, 0] / np.linalg.norm(data.rot_mat[:, 0])
        y_axis = np.cross(z_axis, x_axis)
        t_wo = _rigid(np.column_stack([x_axis, y_axis, z_axis]), center)
        cloud_o = transform_point_cloud(cloud, np.linalg.inv(t_wo))

        sym_type = self.label_symmetry.get(label, -1) if self.symmetry_open else -1
        if sym_type == _REFLECTION:
            cloud_o, t_wo, prob = self._complete_with_symmetry(depth, bbox, pose, camera, cloud_o, t_wo, center, sym_type)
        else:
            prob = 1.0

        shape = process_pca_normalized(cloud_o)
        local = np.linalg.inv(_pose_transform(pose)) @ t_wo
        self.result = True
        return EllipsoidEstimate(pose=vector_from_transform(local), scale=shape.scale, prob=prob)

    def _complete_with_symmetry(self, depth, bbox, pose, camera, cloud_o, t_wo, center, sym_type):
        cfg = self.config
        t_ow = np.linalg.inv(t_wo)
        pose_o = vector_from_transform(t_ow @ _pose_transform(pose))
        solver = Symmetry(sigma=cfg.symmetry_sigma, iterations=cfg.symmetry_iterations)
        found = solver.estimate_symmetry(bbox, cloud_o, pose_o, proj_depth_mat(depth, camera), camera, _initial_planes())

        output = SymmetryOutputData(
            result=found.result,
            cloud=cloud_o,
            plane_vec=_transform_plane(found.plane.param, t_wo),
            prob=found.prob,
            center=np.asarray(center, dtype=float).copy(),
            symmetry_type=sym_type,
        )
        if found.result:
            combined = cloud_o + symmetry_point_cloud(cloud_o, found.plane)
            center_combined = _xyz(combined).mean(axis=0)
            output.center = t_wo[:3, :3] @ center_combined + t_wo[:3, 3]

            x_axis = found.plane.param[:3] / np.linalg.norm(found.plane.param[:3])
            z_axis = np.array([0.0, 0.0, 1.0])
            y_axis = np.cross(z_axis, x_axis)
            t_om = _rigid(np.column_stack([x_axis, y_axis, z_axis]), center_combined)
            cloud_o = transform_point_cloud(combined, np.linalg.inv(t_om))
            t_wo = t_wo @ t_om
            output.cloud = cloud_o
        self.symmetry_output = output
        return cloud_o, t_wo, found.prob