"""Estimation of a reflection-symmetry plane for an object point cloud.

A hypothetical symmetry plane mirrors the object points. Every mirrored point
that falls in an occluded part of the depth image costs nothing; every other
mirrored point costs its distance to the nearest original point. The plane is
refined with a small Levenberg-Marquardt loop over its azimuth and distance.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace

import numpy as np
from scipy.spatial import cKDTree

from .geometry import PointCloud
from .matrix_utils import transform_from_vector
from .plane import Plane

_NUMERIC_DELTA = 1e-9
_LAMBDA_TAU = 1e-5
_MAX_TRIALS_AFTER_FAILURE = 10
_GOOD_STEP_LOWER_SCALE = 1.0 / 3.0
_GOOD_STEP_UPPER_SCALE = 2.0 / 3.0
_DEFAULT_ITERATIONS = 5


def is_in_range(x: int, y: int, x_min: int, x_max: int, y_min: int, y_max: int) -> bool:
    """Whether ``(x, y)`` lies strictly inside the given rectangle."""
    return x_min < x < x_max and y_min < y < y_max


def _plane_param(plane) -> np.ndarray:
    if isinstance(plane, Plane):
        return plane.param
    param = np.asarray(plane, dtype=float).ravel()
    if param.size != 4:
        raise ValueError("plane parameters must hold 4 values")
    return param


def symmetry_point_of_plane(point, plane_param) -> np.ndarray:
    """Mirror a 3-D point across the plane ``A x + B y + C z + D = 0``."""
    p = np.asarray(point, dtype=float).ravel()
    if p.size != 3:
        raise ValueError("point must hold 3 values")
    param = _plane_param(plane_param)
    norm = float(np.linalg.norm(param[:3]))
    if norm == 0.0:
        raise ValueError("plane normal has zero length")
    normal = param[:3] / norm
    signed = float(param[:3] @ p + param[3])
    dis = abs(signed) / norm
    direction = -1.0 if signed > 0 else 1.0
    return p + 2.0 * direction * dis * normal


def _positions(cloud: PointCloud) -> np.ndarray:
    return np.array([[p.x, p.y, p.z] for p in cloud], dtype=float).reshape(-1, 3)


def symmetry_point_cloud(cloud: PointCloud, plane) -> PointCloud:
    """Mirror every point across ``plane``; mirrored points get a full green channel."""
    if not cloud:
        return []
    param = _plane_param(plane)
    norm = float(np.linalg.norm(param[:3]))
    if norm == 0.0:
        raise ValueError("plane normal has zero length")
    normal = param[:3] / norm
    xyz = _positions(cloud)
    signed = xyz @ param[:3] + param[3]
    direction = np.where(signed > 0, -1.0, 1.0)
    mirrored = xyz + (2.0 * direction * np.abs(signed) / norm)[:, np.newaxis] * normal
    return [
        replace(p, x=float(q[0]), y=float(q[1]), z=float(q[2]), g=255)
        for p, q in zip(cloud, mirrored)
    ]


def _as_transform(pose) -> np.ndarray:
    t = np.asarray(pose, dtype=float)
    if t.shape == (4, 4):
        return t
    flat = t.ravel()
    if flat.size < 7:
        raise ValueError("pose must be a 4x4 matrix or end with x y z qx qy qz qw")
    return transform_from_vector(flat[-7:])


def projection_matrix(campose_cw, calib) -> np.ndarray:
    """The 3x4 projection ``K [R | t]`` of a world-to-camera pose."""
    k = np.asarray(calib, dtype=float)
    if k.shape != (3, 3):
        raise ValueError("calibration must be a 3x3 matrix")
    return k @ _as_transform(campose_cw)[:3, :]


def _as_tree(tree) -> cKDTree:
    if isinstance(tree, cKDTree):
        return tree
    return cKDTree(np.asarray(tree, dtype=float).reshape(-1, 3))


def point_cloud_prob(bbox, cloud_sym: PointCloud, depth, pose, calib, scale: float, tree, sigma: float) -> float:
    """Average log-probability of a mirrored cloud against the original points.

    ``pose`` is the camera in the world (its last 7 values ``x y z qx qy qz qw``),
    ``tree`` a KD-tree of the original points (or the points themselves).
    Mirrored points that are not finite are left out of the average; when no
    point remains the result is ``-inf``.
    """
    if sigma <= 0:
        raise ValueError("sigma must be positive")
    n = len(cloud_sym)
    if n == 0:
        return -math.inf

    t_wc = _as_transform(pose)
    proj = projection_matrix(np.linalg.inv(t_wc), calib)
    camera_center = t_wc[:3, 3]
    depth_img = np.asarray(depth)
    rows, cols = depth_img.shape[:2]
    box = [int(v) for v in np.asarray(bbox, dtype=float).ravel()[:4]]

    xyz = _positions(cloud_sym)
    finite = np.all(np.isfinite(xyz), axis=1)
    with np.errstate(invalid="ignore", divide="ignore", over="ignore"):
        uvw = np.hstack([xyz, np.ones((n, 1))]) @ proj.T
        uv = uvw[:, :2] / uvw[:, 2:3]
    uv_finite = np.all(np.isfinite(uv), axis=1)
    pix = np.zeros((n, 2), dtype=np.int64)
    pix[uv_finite] = np.trunc(uv[uv_finite]).astype(np.int64)

    in_box = (
        uv_finite
        & (pix[:, 0] > box[0]) & (pix[:, 0] < box[2])
        & (pix[:, 1] > box[1]) & (pix[:, 1] < box[3])
    )
    inside = pix[in_box]
    if inside.size and (
        inside[:, 0].min() < 0 or inside[:, 1].min() < 0
        or inside[:, 0].max() >= cols or inside[:, 1].max() >= rows
    ):
        raise IndexError("bounding box reaches outside the depth image")

    observable = ~in_box
    if inside.size:
        d = depth_img[inside[:, 1], inside[:, 0]].astype(float)
        dist_cam = np.linalg.norm(xyz[in_box] - camera_center, axis=1)
        visible = (d != 0) & ~(dist_cam > d / scale)
        observable[np.flatnonzero(in_box)[visible]] = True

    invalid = observable & ~finite
    measured = observable & finite
    distances = np.zeros(n)
    if measured.any():
        distances[measured], _ = _as_tree(tree).query(xyz[measured], k=1)

    num_valid = n - int(invalid.sum())
    if num_valid <= 0:
        return -math.inf
    ln_total = float(np.sum(-0.5 * (distances / sigma) ** 2))
    return ln_total / num_valid


@dataclass
class SymmetrySolverData:
    """Outcome of one symmetry-plane optimisation."""

    plane: Plane
    init_plane: Plane
    prob: float
    init_error: float
    final_error: float
    sym_type: int = 1
    result: bool = True
    symmetry_cloud: PointCloud = field(default_factory=list)


@dataclass
class SymmetrySolver:
    """Optimises a reflection-symmetry plane for an object point cloud."""

    sigma: float = 1.0
    iterations: int = _DEFAULT_ITERATIONS
    borders: PointCloud | None = None

    def set_borders(self, borders: PointCloud) -> None:
        """Mirror only these border points instead of the whole cloud."""
        self.borders = list(borders)

    def optimize_symmetry_plane(self, bbox, init_plane: Plane, cloud: PointCloud, depth, pose, calib, scale: float) -> SymmetrySolverData:
        """Refine ``init_plane`` as the symmetry plane of ``cloud``."""
        if not cloud:
            raise ValueError("point cloud must not be empty")
        tree = cKDTree(_positions(cloud))
        source = self.borders if self.borders is not None else cloud

        def error_of(plane: Plane) -> tuple[float, PointCloud]:
            mirrored = symmetry_point_cloud(source, plane)
            cost = point_cloud_prob(bbox, mirrored, depth, pose, calib, scale, tree, self.sigma)
            return -cost, mirrored

        start = init_plane.copy()
        init_error, _ = error_of(start)
        estimate = self._levenberg_marquardt(start, init_error, lambda p: error_of(p)[0])
        final_error, mirrored = error_of(estimate)

        result_plane = estimate.copy()
        result_plane.color = np.array([1.0, 0.0, 0.0])
        return SymmetrySolverData(
            plane=result_plane,
            init_plane=init_plane.copy(),
            prob=math.exp(-final_error),
            init_error=init_error,
            final_error=final_error,
            sym_type=1,
            result=True,
            symmetry_cloud=mirrored,
        )

    @staticmethod
    def _apply(plane: Plane, step) -> Plane:
        moved = plane.copy()
        moved.oplus([step[0], 0.0, step[1]])
        return moved

    def _jacobian(self, plane: Plane, error_fn) -> np.ndarray:
        jac = np.zeros(2)
        for i in range(2):
            step = np.zeros(2)
            step[i] = _NUMERIC_DELTA
            forward = error_fn(self._apply(plane, step))
            backward = error_fn(self._apply(plane, -step))
            jac[i] = (forward - backward) / (2.0 * _NUMERIC_DELTA)
        return jac

    def _levenberg_marquardt(self, plane: Plane, error: float, error_fn) -> Plane:
        current = plane
        if not math.isfinite(error):
            return current
        chi = error * error
        lam: float | None = None
        ni = 2.0
        for _ in range(self.iterations):
            jac = self._jacobian(current, error_fn)
            if not np.all(np.isfinite(jac)):
                break
            hessian = np.outer(jac, jac)
            gradient = -jac * error
            if lam is None:
                lam = _LAMBDA_TAU * float(np.max(np.abs(np.diag(hessian))))
            trials = 0
            rho = 0.0
            while True:
                try:
                    dx = np.linalg.solve(hessian + lam * np.eye(2), gradient)
                except np.linalg.LinAlgError:
                    return current
                candidate = self._apply(current, dx)
                temp_error = error_fn(candidate)
                temp_chi = temp_error * temp_error if math.isfinite(temp_error) else math.inf
                scale = float(dx @ (lam * dx + gradient)) + 1e-3
                rho = (chi - temp_chi) / scale
                if rho > 0 and math.isfinite(temp_chi):
                    alpha = min(1.0 - (2.0 * rho - 1.0) ** 3, _GOOD_STEP_UPPER_SCALE)
                    lam *= max(_GOOD_STEP_LOWER_SCALE, alpha)
                    ni = 2.0
                    current, error, chi = candidate, temp_error, temp_chi
                else:
                    lam *= ni
                    ni *= 2.0
                trials += 1
                if not (rho < 0 and trials < _MAX_TRIALS_AFTER_FAILURE):
                    break
            if trials == _MAX_TRIALS_AFTER_FAILURE or rho == 0 or not math.isfinite(chi):
                break
        return current