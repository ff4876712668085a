"""Symmetry-plane estimation over several initial planes, and projected depth maps."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterable

import numpy as np

from .geometry import CameraIntrinsic, PointCloud
from .plane import Plane
from .symmetry_solver import SymmetrySolver, SymmetrySolverData

_UINT16_MAX = np.iinfo(np.uint16).max


def calculate_proj_z(f: float, d: float, xi: float, yi: float) -> float:
    """Turn the depth ``d`` of a pixel into its distance from the camera center.

    ``xi`` and ``yi`` are the pixel offsets from the principal point and ``f``
    the focal length.
    """
    if f == 0:
        raise ValueError("focal length must not be zero")
    return d * math.sqrt(xi * xi + f * f + yi * yi) / f


def proj_depth_mat(depth, camera: CameraIntrinsic) -> np.ndarray:
    """A 16-bit depth map whose values are distances to the camera center.

    Results are truncated towards zero and clipped to the 16-bit range.
    """
    img = np.asarray(depth)
    if img.ndim != 2:
        raise ValueError("depth must be a single-channel image")
    if camera.fx == 0:
        raise ValueError("focal length must not be zero")
    rows, cols = img.shape
    xi = np.arange(cols, dtype=float) - camera.cx
    yi = np.arange(rows, dtype=float) - camera.cy
    factor = np.sqrt(xi[np.newaxis, :] ** 2 + camera.fx**2 + yi[:, np.newaxis] ** 2) / camera.fx
    real = np.trunc(img.astype(float) * factor)
    return np.clip(real, 0, _UINT16_MAX).astype(np.uint16)


@dataclass
class SymmetryOutputData:
    """Summary of a symmetry estimation for an object."""

    result: bool = False
    cloud: PointCloud = field(default_factory=list)
    plane_vec: np.ndarray = field(default_factory=lambda: np.zeros(4))
    plane_vec2: np.ndarray = field(default_factory=lambda: np.zeros(4))
    prob: float = 0.0
    borders: PointCloud | None = None
    center: np.ndarray = field(default_factory=lambda: np.zeros(3))
    symmetry_type: int = 0


@dataclass
class Symmetry:
    """Chooses the best reflection-symmetry plane among several starting planes."""

    sigma: float = 1.0
    iterations: int = 5
    borders: PointCloud | None = None

    def set_borders(self, borders: PointCloud) -> None:
        """Use only these border points when mirroring the object."""
        self.borders = list(borders)

    def estimate_symmetry(
        self,
        bbox,
        cloud: PointCloud,
        pose,
        proj_depth,
        camera: CameraIntrinsic,
        init_planes: Iterable[Plane],
    ) -> SymmetrySolverData:
        """Optimise every initial plane and return the most probable result.

        Among results of equal probability the earliest initial plane wins.
        """
        if not cloud:
            raise ValueError("point cloud must not be empty")
        planes = list(init_planes)
        if not planes:
            raise ValueError("at least one initial plane is required")

        solver = SymmetrySolver(sigma=self.sigma, iterations=self.iterations)
        if self.borders is not None:
            solver.set_borders(self.borders)
        calib = camera.calibration_matrix()

        results = [
            solver.optimize_symmetry_plane(bbox, plane, cloud, proj_depth, pose, calib, camera.scale)
            for plane in planes
        ]
        return max(results, key=lambda data: data.prob)