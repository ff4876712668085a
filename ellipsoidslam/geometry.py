"""Basic geometric types: coloured points and pinhole camera intrinsics."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass
class PointXYZRGB:
    """A 3-D point with an 8-bit colour and a display size."""

    x: float
    y: float
    z: float
    r: int = 0
    g: int = 0
    b: int = 0
    size: int = 1

    def __post_init__(self) -> None:
        # colour channels are unsigned bytes
        self.r = int(self.r) % 256
        self.g = int(self.g) % 256
        self.b = int(self.b) % 256

    def position(self) -> np.ndarray:
        """The point as a 3-vector."""
        return np.array([self.x, self.y, self.z], dtype=float)


PointCloud = list[PointXYZRGB]


@dataclass(frozen=True)
class CameraIntrinsic:
    """Pinhole camera parameters and the depth-image scale factor."""

    fx: float
    fy: float
    cx: float
    cy: float
    scale: float

    def calibration_matrix(self) -> np.ndarray:
        """The 3x3 calibration matrix K."""
        return np.array(
            [
                [self.fx, 0.0, self.cx],
                [0.0, self.fy, self.cy],
                [0.0, 0.0, 1.0],
            ]
        )