"""Rotation, homogeneous-coordinate and small matrix helpers.

Quaternions are handled as arrays ordered ``(x, y, z, w)``, the same order
used by pose vectors ``x y z qx qy qz qw``.
"""

from __future__ import annotations

import math
from pathlib import Path
from typing import Iterable, Sequence

import numpy as np

_LINESPACE_LIMIT = 1000


def _quat_to_rot(quat: Sequence[float]) -> np.ndarray:
    x, y, z, w = (float(v) for v in quat)
    tx, ty, tz = 2.0 * x, 2.0 * y, 2.0 * z
    twx, twy, twz = tx * w, ty * w, tz * w
    txx, txy, txz = tx * x, ty * x, tz * x
    tyy, tyz, tzz = ty * y, tz * y, tz * z
    return np.array(
        [
            [1.0 - (tyy + tzz), txy - twz, txz + twy],
            [txy + twz, 1.0 - (txx + tzz), tyz - twx],
            [txz - twy, tyz + twx, 1.0 - (txx + tyy)],
        ]
    )


def rotation_to_quat(rot) -> np.ndarray:
    """Convert a 3x3 rotation matrix to a quaternion ``(x, y, z, w)``."""
    r = np.asarray(rot, dtype=float)
    if r.shape != (3, 3):
        raise ValueError(f"expected a 3x3 matrix, got shape {r.shape}")
    trace = r[0, 0] + r[1, 1] + r[2, 2]
    q = np.zeros(3)
    if trace > 0.0:
        t = math.sqrt(trace + 1.0)
        w = 0.5 * t
        t = 0.5 / t
        q[0] = (r[2, 1] - r[1, 2]) * t
        q[1] = (r[0, 2] - r[2, 0]) * t
        q[2] = (r[1, 0] - r[0, 1]) * t
    else:
        i = 0
        if r[1, 1] > r[0, 0]:
            i = 1
        if r[2, 2] > r[i, i]:
            i = 2
        j = (i + 1) % 3
        k = (j + 1) % 3
        t = math.sqrt(r[i, i] - r[j, j] - r[k, k] + 1.0)
        q[i] = 0.5 * t
        t = 0.5 / t
        w = (r[k, j] - r[j, k]) * t
        q[j] = (r[j, i] + r[i, j]) * t
        q[k] = (r[k, i] + r[i, k]) * t
    return np.array([q[0], q[1], q[2], w])


def transform_from_vector(pose) -> np.ndarray:
    """Build a 4x4 homogeneous transform from ``x y z qx qy qz qw``."""
    p = np.asarray(pose, dtype=float).ravel()
    if p.size != 7:
        raise ValueError(f"pose must hold 7 values (x y z qx qy qz qw), got {p.size}")
    transform = np.eye(4)
    transform[:3, :3] = _quat_to_rot(p[3:7])
    transform[:3, 3] = p[:3]
    return transform


def vector_from_transform(transform) -> np.ndarray:
    """Turn a 4x4 homogeneous transform into ``x y z qx qy qz qw``."""
    t = np.asarray(transform, dtype=float)
    if t.shape != (4, 4):
        raise ValueError(f"expected a 4x4 matrix, got shape {t.shape}")
    return np.concatenate([t[:3, 3], rotation_to_quat(t[:3, :3])])


def add_vec_to_matrix(mat, vec) -> np.ndarray:
    """Return ``mat`` with ``vec`` appended as a new last row."""
    m = np.asarray(mat, dtype=float)
    v = np.asarray(vec, dtype=float).ravel()
    if m.ndim != 2 or m.shape[1] != v.size:
        raise ValueError("the size of vec and the columns of mat must match")
    return np.vstack([m, v[np.newaxis, :]])


def zyx_euler_to_quat(roll: float, pitch: float, yaw: float) -> np.ndarray:
    """Quaternion ``(x, y, z, w)`` of a ZYX Euler rotation."""
    sy, cy = math.sin(yaw * 0.5), math.cos(yaw * 0.5)
    sp, cp = math.sin(pitch * 0.5), math.cos(pitch * 0.5)
    sr, cr = math.sin(roll * 0.5), math.cos(roll * 0.5)
    w = cr * cp * cy + sr * sp * sy
    x = sr * cp * cy - cr * sp * sy
    y = cr * sp * cy + sr * cp * sy
    z = cr * cp * sy - sr * sp * cy
    return np.array([x, y, z, w])


def quat_to_euler_zyx(quat) -> tuple[float, float, float]:
    """ZYX Euler angles ``(roll, pitch, yaw)`` of a quaternion ``(x, y, z, w)``."""
    qx, qy, qz, qw = (float(v) for v in quat)
    roll = math.atan2(2 * (qw * qx + qy * qz), 1 - 2 * (qx * qx + qy * qy))
    pitch = math.asin(max(-1.0, min(1.0, 2 * (qw * qy - qz * qx))))
    yaw = math.atan2(2 * (qw * qz + qx * qy), 1 - 2 * (qy * qy + qz * qz))
    return roll, pitch, yaw


def rot_to_euler_zyx(rot) -> tuple[float, float, float]:
    """ZYX Euler angles ``(roll, pitch, yaw)`` of a rotation matrix."""
    r = np.asarray(rot, dtype=float)
    pitch = math.asin(max(-1.0, min(1.0, -r[2, 0])))
    if abs(pitch - math.pi / 2.0) < 1.0e-3 or abs(pitch + math.pi / 2.0) < 1.0e-3:
        roll = 0.0
        yaw = math.atan2(r[1, 2] - r[0, 1], r[0, 2] + r[1, 1])
    else:
        roll = math.atan2(r[2, 1], r[2, 2])
        yaw = math.atan2(r[1, 0], r[0, 0])
    return roll, pitch, yaw


def euler_zyx_to_rot(roll: float, pitch: float, yaw: float) -> np.ndarray:
    """Rotation matrix of a ZYX Euler rotation."""
    cp, sp = math.cos(pitch), math.sin(pitch)
    cr, sr = math.cos(roll), math.sin(roll)
    cy, sy = math.cos(yaw), math.sin(yaw)
    return np.array(
        [
            [cp * cy, sr * sp * cy - cr * sy, cr * sp * cy + sr * sy],
            [cp * sy, sr * sp * sy + cr * cy, cr * sp * sy - sr * cy],
            [-sp, sr * cp, cr * cp],
        ]
    )


def real_to_homo_coord(pts) -> np.ndarray:
    """Append a row of ones to a ``d x n`` matrix of points."""
    p = np.asarray(pts, dtype=float)
    if p.ndim != 2:
        raise ValueError("points must be a 2-D matrix with one point per column")
    return np.vstack([p, np.ones((1, p.shape[1]))])


def real_to_homo_coord_vec(pt) -> np.ndarray:
    """Append a 1 to a single point."""
    return np.append(np.asarray(pt, dtype=float).ravel(), 1.0)


def homo_to_real_coord(pts) -> np.ndarray:
    """Divide a homogeneous ``(d+1) x n`` matrix by its last row and drop it."""
    p = np.asarray(pts, dtype=float)
    if p.ndim != 2 or p.shape[0] < 2:
        raise ValueError("homogeneous points need at least two rows")
    return p[:-1, :] / p[-1:, :]


def homo_to_real_coord_vec(pt) -> np.ndarray:
    """Convert a homogeneous 3- or 4-vector to a real 2- or 3-vector."""
    p = np.asarray(pt, dtype=float).ravel()
    if p.size not in (3, 4):
        raise ValueError(f"homogeneous vector must have 3 or 4 entries, got {p.size}")
    return p[:-1] / p[-1]


def vert_stack(a, b) -> np.ndarray:
    """Stack two matrices with the same number of columns vertically."""
    ma = np.asarray(a)
    mb = np.asarray(b)
    if ma.ndim != 2 or mb.ndim != 2 or ma.shape[1] != mb.shape[1]:
        raise ValueError("matrices must have the same number of columns")
    return np.vstack([ma, mb])


def fast_remove_row(matrix, row: int, total: int) -> tuple[np.ndarray, int]:
    """Overwrite ``row`` with the last valid row; return the matrix and new count.

    Only the first ``total`` rows are considered valid.
    """
    m = np.array(matrix, dtype=float, copy=True)
    if not 0 < total <= m.shape[0]:
        raise ValueError("total must lie between 1 and the number of rows")
    if not 0 <= row < total:
        raise IndexError(f"row {row} out of the {total} valid rows")
    m[row] = m[total - 1]
    return m, total - 1


def _leading_numbers(tokens: Iterable[str]) -> tuple[list[float], bool]:
    """Parse numbers until the first token that is not one.

    Returns the numbers and whether parsing stopped on a non-number.
    """
    numbers: list[float] = []
    for token in tokens:
        try:
            numbers.append(float(token))
        except ValueError:
            return numbers, True
    return numbers, False


def _rows_to_matrix(rows: list[list[float]]) -> np.ndarray:
    if not rows:
        return np.zeros((0, 0))
    cols = max(len(r) for r in rows)
    mat = np.zeros((len(rows), cols))
    for out, values in zip(mat, rows):
        out[: len(values)] = values
    return mat


def _content_lines(path) -> list[str]:
    with Path(path).open(encoding="utf-8") as handle:
        return [line.rstrip("\n") for line in handle if line.rstrip("\n")]


def read_all_number_txt(path) -> np.ndarray:
    """Read a whitespace-separated number table.

    Empty lines are skipped; each line is read up to its first non-number.
    Short rows are padded with zeros.
    """
    rows = [_leading_numbers(line.split())[0] for line in _content_lines(path)]
    return _rows_to_matrix(rows)


def read_obj_detection_txt(path) -> tuple[np.ndarray, list[str]]:
    """Read lines of ``name n1 n2 ...``; return the numbers and the names."""
    rows: list[list[float]] = []
    names: list[str] = []
    for line in _content_lines(path):
        tokens = line.split()
        names.append(tokens[0] if tokens else "")
        rows.append(_leading_numbers(tokens[1:])[0])
    return _rows_to_matrix(rows), names


def read_obj_detection2_txt(path, columns: int = 10) -> tuple[np.ndarray, list[str]]:
    """Read lines of ``n1 ... n_columns name``; return the numbers and the names.

    A name is only read when the numbers before it were read without failure;
    otherwise it is empty.
    """
    if columns < 1:
        raise ValueError("columns must be positive")
    rows: list[list[float]] = []
    names: list[str] = []
    for line in _content_lines(path):
        tokens = line.split()
        numbers: list[float] = []
        failed = False
        rest = tokens
        for position, token in enumerate(tokens):
            try:
                numbers.append(float(token))
            except ValueError:
                failed = True
                break
            if len(numbers) >= columns:
                rest = tokens[position + 1:]
                break
        else:
            rest = []
        names.append(rest[0] if rest and not failed else "")
        rows.append(numbers)
    mat = np.zeros((len(rows), columns))
    for out, values in zip(mat, rows):
        out[: len(values)] = values
    return mat, names


def sort_indexes(vec, idx: Sequence[int], top_k: int | None = None) -> list[int]:
    """Order indices by increasing ``vec[i]``.

    With ``top_k`` only the first ``top_k`` positions are guaranteed sorted;
    the remaining indices follow in their original order.
    """
    values = np.asarray(vec, dtype=float).ravel()
    ordered = sorted(idx, key=lambda i: values[i])
    if top_k is None:
        return ordered
    if not 0 <= top_k <= len(ordered):
        raise ValueError("top_k must lie between 0 and the number of indices")
    head = ordered[:top_k]
    remaining = list(idx)
    for i in head:
        remaining.remove(i)
    return head + remaining


def normalize_to_pi(angle: float) -> float:
    """Map an angle in [-pi, pi] to [-pi/2, pi/2] by adding or removing pi."""
    if angle > math.pi / 2.0:
        return angle - math.pi
    if angle < -math.pi / 2.0:
        return angle + math.pi
    return angle


def linespace(start, end, step) -> list:
    """Values from ``start`` up to ``end`` inclusive in steps of ``step``.

    Generation stops once more than 1000 values have been produced.
    """
    values = []
    current = start
    while current <= end:
        values.append(current)
        current += step
        if len(values) > _LINESPACE_LIMIT:
            break
    return values