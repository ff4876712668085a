"""Infinite planes ``A x + B y + C z + D = 0`` with on-manifold updates."""

from __future__ import annotations

import copy as _copy
import math
from dataclasses import dataclass, field

import numpy as np


def normalized(coeffs) -> np.ndarray:
    """Scale plane coefficients so that the normal has unit length."""
    c = np.asarray(coeffs, dtype=float).ravel()
    n = np.linalg.norm(c[:3])
    if n == 0.0:
        raise ValueError("plane normal has zero length")
    return c / n


def azimuth_of(vec) -> float:
    """Azimuth angle of a direction in the XY plane."""
    v = np.asarray(vec, dtype=float).ravel()
    return math.atan2(v[1], v[0])


def elevation_of(vec) -> float:
    """Elevation angle of a direction above the XY plane."""
    v = np.asarray(vec, dtype=float).ravel()
    return math.atan2(v[2], float(np.linalg.norm(v[:2])))


def rotation_from_normal(vec) -> np.ndarray:
    """Rotation taking the X axis onto the direction of ``vec``."""
    az = azimuth_of(vec)
    el = -elevation_of(vec)
    ca, sa = math.cos(az), math.sin(az)
    ce, se = math.cos(el), math.sin(el)
    rz = np.array([[ca, -sa, 0.0], [sa, ca, 0.0], [0.0, 0.0, 1.0]])
    ry = np.array([[ce, 0.0, se], [0.0, 1.0, 0.0], [-se, 0.0, ce]])
    return rz @ ry


def _direction(azimuth: float, elevation: float) -> np.ndarray:
    c, s = math.cos(elevation), math.sin(elevation)
    return np.array([c * math.cos(azimuth), c * math.sin(azimuth), s])


@dataclass
class Plane:
    """A plane with display colour, optional finite extent and a dual distance."""

    param: np.ndarray
    color: np.ndarray = field(default_factory=lambda: np.array([1.0, 0.0, 0.0]))
    plane_size: float = 0.0
    limited: bool = False
    dual_dis: float = 0.0
    center: np.ndarray = field(default_factory=lambda: np.zeros(3))

    def __post_init__(self) -> None:
        self.param = np.asarray(self.param, dtype=float).ravel().copy()
        if self.param.size != 4:
            raise ValueError("plane parameters must hold 4 values")
        self.color = np.asarray(self.color, dtype=float).ravel().copy()
        self.center = np.asarray(self.center, dtype=float).ravel().copy()

    def normal(self) -> np.ndarray:
        """The (unnormalised) normal vector ``(A, B, C)``."""
        return self.param[:3].copy()

    def azimuth(self) -> float:
        """Azimuth of the normal."""
        return math.atan2(self.param[1], self.param[0])

    def distance(self) -> float:
        """The signed offset ``-D``."""
        return -float(self.param[3])

    def oplus(self, update) -> None:
        """Apply ``(azimuth, elevation, distance)`` relative to the current normal."""
        v = np.asarray(update, dtype=float).ravel()
        n = _direction(v[0], v[1])
        rot = rotation_from_normal(self.normal())
        d = self.distance() + v[2]
        param = np.empty(4)
        param[:3] = rot @ n
        param[3] = -d
        self.param = normalized(param)

    def oplus_dual(self, update) -> None:
        """Apply ``(azimuth, distance, dual distance)``; the elevation stays fixed."""
        v = np.asarray(update, dtype=float).ravel()
        n = _direction(v[0], 0.0)
        rot = rotation_from_normal(self.normal())
        d = self.distance() + v[1]
        param = np.empty(4)
        param[:3] = rot @ n
        param[3] = -d
        self.param = normalized(param)
        self.dual_dis += float(v[2])

    def copy(self) -> "Plane":
        """An independent copy."""
        return _copy.deepcopy(self)