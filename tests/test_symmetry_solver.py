import math

import numpy as np
import pytest
from scipy.spatial import cKDTree

from ellipsoidslam.geometry import PointXYZRGB
from ellipsoidslam.plane import Plane, normalized
from ellipsoidslam.symmetry_solver import (
    SymmetrySolver,
    is_in_range,
    point_cloud_prob,
    projection_matrix,
    symmetry_point_cloud,
    symmetry_point_of_plane,
)

IDENTITY_POSE = np.array([0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 1.0])
CALIB = np.array([[100.0, 0.0, 50.0], [0.0, 100.0, 50.0], [0.0, 0.0, 1.0]])
NO_BOX = np.array([0.0, 0.0, 1.0, 1.0])


def symmetric_cloud():
    cloud = []
    for x in (0.2, 0.4):
        for y in (0.0, 0.1, 0.2, 0.3):
            for z in (2.0, 2.1, 2.2):
                cloud.append(PointXYZRGB(x, y, z, r=10, g=20, b=30))
                cloud.append(PointXYZRGB(-x, y, z, r=10, g=20, b=30))
    return cloud


def test_is_in_range_is_strict():
    assert is_in_range(5, 5, 0, 10, 0, 10)
    assert not is_in_range(0, 5, 0, 10, 0, 10)
    assert not is_in_range(5, 10, 0, 10, 0, 10)


def test_symmetry_point_of_plane_mirrors_across_yz_plane():
    mirrored = symmetry_point_of_plane([1.0, 2.0, 3.0], [1.0, 0.0, 0.0, 0.0])
    assert np.allclose(mirrored, [-1.0, 2.0, 3.0])


def test_symmetry_point_of_plane_is_involution():
    param = normalized([0.3, -0.5, 0.8, 0.4])
    point = np.array([0.7, -1.2, 2.5])
    twice = symmetry_point_of_plane(symmetry_point_of_plane(point, param), param)
    assert np.allclose(twice, point)
    once = symmetry_point_of_plane(point, param)
    assert math.isclose(param[:3] @ once + param[3], -(param[:3] @ point + param[3]))


def test_symmetry_point_of_plane_rejects_zero_normal():
    with pytest.raises(ValueError):
        symmetry_point_of_plane([1.0, 0.0, 0.0], [0.0, 0.0, 0.0, 1.0])


def test_symmetry_point_cloud_keeps_colour_but_sets_green():
    cloud = [PointXYZRGB(0.5, 1.0, 2.0, r=10, g=20, b=30)]
    mirrored = symmetry_point_cloud(cloud, Plane([1.0, 0.0, 0.0, 0.0]))
    assert len(mirrored) == 1
    p = mirrored[0]
    assert (p.r, p.g, p.b) == (10, 255, 30)
    assert np.allclose(p.position(), [-0.5, 1.0, 2.0])
    assert cloud[0].x == 0.5


def test_projection_matrix_identity_pose():
    proj = projection_matrix(IDENTITY_POSE, CALIB)
    assert np.allclose(proj[:, :3], CALIB)
    assert np.allclose(proj[:, 3], 0.0)
    uvw = proj @ np.array([0.0, 0.0, 2.0, 1.0])
    assert np.allclose(uvw[:2] / uvw[2], [CALIB[0, 2], CALIB[1, 2]])


def test_prob_is_zero_for_true_plane():
    cloud = symmetric_cloud()
    tree = cKDTree([p.position() for p in cloud])
    mirrored = symmetry_point_cloud(cloud, Plane([1.0, 0.0, 0.0, 0.0]))
    depth = np.zeros((100, 100), dtype=np.uint16)
    cost = point_cloud_prob(NO_BOX, mirrored, depth, IDENTITY_POSE, CALIB, 1000.0, tree, 1.0)
    assert cost == pytest.approx(0.0, abs=1e-12)


def test_prob_is_worse_for_wrong_plane_and_scales_with_sigma():
    cloud = symmetric_cloud()
    tree = cKDTree([p.position() for p in cloud])
    mirrored = symmetry_point_cloud(cloud, Plane([1.0, 0.0, 0.0, -0.05]))
    depth = np.zeros((100, 100), dtype=np.uint16)
    cost1 = point_cloud_prob(NO_BOX, mirrored, depth, IDENTITY_POSE, CALIB, 1000.0, tree, 1.0)
    cost2 = point_cloud_prob(NO_BOX, mirrored, depth, IDENTITY_POSE, CALIB, 1000.0, tree, 2.0)
    assert cost1 < 0.0
    assert cost2 == pytest.approx(cost1 / 4.0)


def test_prob_occlusion_rules():
    tree = cKDTree([[0.0, 0.0, 1.0]])
    sym = [PointXYZRGB(0.0, 0.0, 2.0)]
    bbox = np.array([0.0, 0.0, 99.0, 99.0])
    empty = np.zeros((100, 100), dtype=np.uint16)
    near = np.full((100, 100), 1000, dtype=np.uint16)
    far = np.full((100, 100), 5000, dtype=np.uint16)
    assert point_cloud_prob(bbox, sym, empty, IDENTITY_POSE, CALIB, 1000.0, tree, 1.0) == 0.0
    assert point_cloud_prob(bbox, sym, near, IDENTITY_POSE, CALIB, 1000.0, tree, 1.0) == 0.0
    assert point_cloud_prob(bbox, sym, far, IDENTITY_POSE, CALIB, 1000.0, tree, 1.0) == pytest.approx(-0.5)


def test_prob_without_valid_points_is_minus_infinity():
    tree = cKDTree([[0.0, 0.0, 1.0]])
    sym = [PointXYZRGB(math.nan, 0.0, 2.0)]
    depth = np.zeros((100, 100), dtype=np.uint16)
    cost = point_cloud_prob(NO_BOX, sym, depth, IDENTITY_POSE, CALIB, 1000.0, tree, 1.0)
    assert cost == -math.inf


def test_optimize_from_true_plane_keeps_zero_error():
    solver = SymmetrySolver()
    depth = np.zeros((100, 100), dtype=np.uint16)
    data = solver.optimize_symmetry_plane(
        NO_BOX, Plane([1.0, 0.0, 0.0, 0.0]), symmetric_cloud(), depth, IDENTITY_POSE, CALIB, 1000.0
    )
    assert data.result
    assert data.final_error == pytest.approx(0.0, abs=1e-9)
    assert data.prob == pytest.approx(1.0)


def test_optimize_does_not_increase_error():
    solver = SymmetrySolver()
    depth = np.zeros((100, 100), dtype=np.uint16)
    init = Plane(normalized([1.0, 0.1, 0.0, -0.05]))
    data = solver.optimize_symmetry_plane(
        NO_BOX, init, symmetric_cloud(), depth, IDENTITY_POSE, CALIB, 1000.0
    )
    assert data.final_error <= data.init_error + 1e-12
    assert data.prob == pytest.approx(math.exp(-data.final_error))
    assert np.allclose(data.plane.color, [1.0, 0.0, 0.0])
    assert np.allclose(data.init_plane.param, init.param)
    assert data.sym_type == 1


def test_optimize_with_borders_mirrors_only_borders():
    cloud = symmetric_cloud()
    solver = SymmetrySolver()
    solver.set_borders(cloud[:4])
    depth = np.zeros((100, 100), dtype=np.uint16)
    data = solver.optimize_symmetry_plane(
        NO_BOX, Plane([1.0, 0.0, 0.0, 0.0]), cloud, depth, IDENTITY_POSE, CALIB, 1000.0
    )
    assert len(data.symmetry_cloud) == 4


def test_optimize_rejects_empty_cloud():
    depth = np.zeros((100, 100), dtype=np.uint16)
    with pytest.raises(ValueError):
        SymmetrySolver().optimize_symmetry_plane(
            NO_BOX, Plane([1.0, 0.0, 0.0, 0.0]), [], depth, IDENTITY_POSE, CALIB, 1000.0
        )