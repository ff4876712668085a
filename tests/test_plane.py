import math

import numpy as np
import pytest

from ellipsoidslam.plane import (
    Plane,
    azimuth_of,
    elevation_of,
    normalized,
    rotation_from_normal,
)


def test_basic_accessors():
    p = Plane([0.0, 0.0, 1.0, -2.0])
    assert p.distance() == 2.0
    assert np.array_equal(p.normal(), [0.0, 0.0, 1.0])
    assert np.array_equal(p.color, [1.0, 0.0, 0.0])


def test_azimuth():
    assert Plane([1.0, 1.0, 0.0, 0.0]).azimuth() == pytest.approx(math.pi / 4)


def test_elevation_of_vertical():
    assert elevation_of([0.0, 0.0, 1.0]) == pytest.approx(math.pi / 2)
    assert azimuth_of([0.0, 2.0, 0.0]) == pytest.approx(Plane([0, 1, 0, 0]).azimuth())


def test_normalized_unit_normal_and_ratio():
    c = normalized([0.0, 3.0, 4.0, 10.0])
    assert np.linalg.norm(c[:3]) == pytest.approx(1.0)
    assert c[3] / c[2] == pytest.approx(10.0 / 4.0)


def test_normalized_zero_normal_raises():
    with pytest.raises(ValueError):
        normalized([0.0, 0.0, 0.0, 1.0])


def test_wrong_size_param_raises():
    with pytest.raises(ValueError):
        Plane([1.0, 2.0, 3.0])


@pytest.mark.parametrize("vec", [[1, 2, 3], [-1, 0.5, -2], [0.3, -0.7, 0.1]])
def test_rotation_from_normal_maps_x_axis(vec):
    rot = rotation_from_normal(vec)
    assert np.allclose(rot @ rot.T, np.eye(3))
    assert np.linalg.det(rot) == pytest.approx(1.0)
    v = np.asarray(vec, dtype=float)
    assert np.allclose(rot @ [1.0, 0.0, 0.0], v / np.linalg.norm(v))


def test_oplus_zero_keeps_plane():
    param = normalized([1.0, -2.0, 0.5, 3.0])
    p = Plane(param)
    p.oplus([0.0, 0.0, 0.0])
    assert np.allclose(p.param, param)


def test_oplus_distance_update():
    p = Plane(normalized([0.2, 0.3, 0.9, -1.0]))
    before = p.distance()
    p.oplus([0.0, 0.0, 0.25])
    assert p.distance() == pytest.approx(before + 0.25)


def test_oplus_azimuth_update_from_x_axis():
    p = Plane([1.0, 0.0, 0.0, 0.0])
    p.oplus([0.3, 0.0, 0.0])
    assert p.azimuth() == pytest.approx(0.3)
    assert np.linalg.norm(p.normal()) == pytest.approx(1.0)


def test_oplus_dual_ignores_elevation_and_tracks_dual_distance():
    p = Plane([1.0, 0.0, 0.0, -1.0])
    p.oplus_dual([0.2, 0.5, 0.7])
    assert p.azimuth() == pytest.approx(0.2)
    assert p.normal()[2] == pytest.approx(0.0)
    assert p.distance() == pytest.approx(1.5)
    assert p.dual_dis == pytest.approx(0.7)


def test_copy_is_independent():
    p = Plane([0.0, 1.0, 0.0, -1.0])
    q = p.copy()
    q.param[3] = 5.0
    q.dual_dis = 2.0
    assert p.param[3] == -1.0
    assert p.dual_dis == 0.0