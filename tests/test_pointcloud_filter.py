import numpy as np
import pytest

from ellipsoidslam.geometry import CameraIntrinsic, PointXYZRGB
from ellipsoidslam.matrix_utils import transform_from_vector, zyx_euler_to_quat
from ellipsoidslam.pointcloud_filter import (
    combine_point_clouds,
    downsample,
    downsample_and_filter,
    filter_ground,
    filter_outliers,
    point_cloud_in_rect,
    transform_point_cloud,
    xy_center,
)

CAMERA = CameraIntrinsic(fx=1.0, fy=1.0, cx=0.0, cy=0.0, scale=1000.0)


def _grid_cluster(spacing):
    return [
        PointXYZRGB(i * spacing, j * spacing, k * spacing)
        for i in range(3)
        for j in range(3)
        for k in range(3)
    ]


def test_xy_center():
    cloud = [PointXYZRGB(0.0, 0.0, 5.0), PointXYZRGB(2.0, 4.0, -1.0)]
    assert np.allclose(xy_center(cloud), [1.0, 2.0])


def test_xy_center_empty_raises():
    with pytest.raises(ValueError):
        xy_center([])


def test_point_cloud_in_rect_samples_every_third_pixel():
    depth = np.full((10, 10), 1000, dtype=np.uint16)
    cloud = point_cloud_in_rect(depth, [0, 0, 6, 6], CAMERA)
    assert [(p.x, p.y) for p in cloud] == [(0.0, 0.0), (3.0, 0.0), (0.0, 3.0), (3.0, 3.0)]
    assert all(p.z == 1.0 for p in cloud)


def test_point_cloud_in_rect_skips_invalid_depth():
    depth = np.full((10, 10), 1000, dtype=np.uint16)
    depth[3, 3] = 0
    depth[0, 3] = 60000
    cloud = point_cloud_in_rect(depth, [0, 0, 6, 6], CAMERA, max_range=50.0)
    assert [(p.x, p.y) for p in cloud] == [(0.0, 0.0), (0.0, 3.0)]


def test_point_cloud_in_rect_reads_bgr():
    depth = np.full((4, 4), 1000, dtype=np.uint16)
    rgb = np.zeros((4, 4, 3), dtype=np.uint8)
    rgb[..., 0], rgb[..., 1], rgb[..., 2] = 10, 20, 30
    (p,) = point_cloud_in_rect(depth, [0, 0, 1, 1], CAMERA, rgb=rgb)
    assert (p.r, p.g, p.b) == (30, 20, 10)


def test_point_cloud_in_rect_outside_image_raises():
    depth = np.full((4, 4), 1000, dtype=np.uint16)
    with pytest.raises(IndexError):
        point_cloud_in_rect(depth, [0, 0, 8, 2], CAMERA)


def test_filter_ground():
    cloud = [PointXYZRGB(0, 0, 0.05), PointXYZRGB(0, 0, 0.06), PointXYZRGB(0, 0, -1)]
    assert [p.z for p in filter_ground(cloud)] == [0.06]


def test_downsample_merges_points_in_one_voxel():
    cloud = [PointXYZRGB(0.001, 0.001, 0.001, r=10), PointXYZRGB(0.003, 0.005, 0.007, r=20)]
    (p,) = downsample(cloud, 0.02)
    assert np.allclose(p.position(), [0.002, 0.003, 0.004])
    assert p.r == 15


def test_downsample_keeps_separate_voxels():
    cloud = _grid_cluster(0.05)
    result = downsample(cloud, 0.02)
    assert len(result) == len(cloud)
    assert sorted(tuple(np.round(p.position(), 9)) for p in result) == sorted(
        tuple(np.round(p.position(), 9)) for p in cloud
    )


def test_downsample_invalid_grid_raises():
    with pytest.raises(ValueError):
        downsample([PointXYZRGB(0, 0, 0)], 0.0)


def test_filter_outliers_removes_far_point():
    cloud = _grid_cluster(0.01) + [PointXYZRGB(10.0, 10.0, 10.0)]
    result = filter_outliers(cloud, 5)
    assert len(result) == 27
    assert all(p.x != 10.0 for p in result)


def test_downsample_and_filter_removes_far_point():
    cloud = _grid_cluster(0.05) + [PointXYZRGB(10.0, 10.0, 10.0)]
    result = downsample_and_filter(cloud, 5)
    assert len(result) == 27
    assert max(p.x for p in result) < 1.0


def test_combine_point_clouds_keeps_order():
    a = [PointXYZRGB(1, 0, 0)]
    b = [PointXYZRGB(2, 0, 0), PointXYZRGB(3, 0, 0)]
    assert [p.x for p in combine_point_clouds(a, b)] == [1, 2, 3]
    assert len(a) == 1


def test_transform_point_cloud_round_trip():
    cloud = [PointXYZRGB(1.0, 2.0, 3.0, g=200), PointXYZRGB(-0.5, 0.25, 4.0)]
    pose = np.concatenate([[0.5, -1.0, 2.0], zyx_euler_to_quat(0.1, -0.2, 0.3)])
    moved = transform_point_cloud(cloud, pose)
    back = transform_point_cloud(moved, np.linalg.inv(transform_from_vector(pose)))
    for original, restored in zip(cloud, back):
        assert np.allclose(original.position(), restored.position())
    assert moved[0].g == 200


def test_transform_point_cloud_translation():
    transform = np.eye(4)
    transform[:3, 3] = [1.0, 2.0, 3.0]
    (p,) = transform_point_cloud([PointXYZRGB(0.0, 0.0, 0.0)], transform)
    assert np.allclose(p.position(), [1.0, 2.0, 3.0])


def test_transform_point_cloud_bad_shape_raises():
    with pytest.raises(ValueError):
        transform_point_cloud([PointXYZRGB(0, 0, 0)], np.eye(3))