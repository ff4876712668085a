"""Reading and writing numeric text tables, file listing and detection checks."""

from __future__ import annotations

import os
import re
from pathlib import Path

import numpy as np

_DELIMITERS = re.compile(r"[ \t,]+")


def _lines(path) -> list[str]:
    with Path(path).open(encoding="utf-8") as handle:
        return [line.removesuffix("\n") for line in handle]


def _split(line: str) -> list[str]:
    return _DELIMITERS.split(line)


def read_data_from_file(path, drop_first_line: bool = False) -> np.ndarray:
    """Read a table of numbers separated by spaces, tabs or commas.

    Every line must hold as many numbers as the first one.
    """
    lines = _lines(path)
    if drop_first_line:
        lines = lines[1:]
    rows: list[list[float]] = []
    for number, line in enumerate(lines, start=1):
        try:
            row = [float(token) for token in _split(line)]
        except ValueError as exc:
            raise ValueError(f"line {number} of {path} is not numeric: {line!r}") from exc
        if rows and len(row) != len(rows[0]):
            raise ValueError(
                f"line {number} of {path} has {len(row)} values, expected {len(rows[0])}"
            )
        rows.append(row)
    if not rows:
        return np.zeros((0, 0))
    return np.array(rows, dtype=float)


def read_string_from_file(path, drop_lines: int = 0) -> list[list[str]]:
    """Read every line as a list of tokens split on spaces, tabs and commas."""
    return [_split(line) for line in _lines(path)[drop_lines:]]


def save_mat_to_file(mat, path) -> None:
    """Write a matrix as space-separated rows with 12 significant digits."""
    m = np.asarray(mat, dtype=float)
    if m.ndim == 1:
        m = m.reshape(-1, 1)
    with Path(path).open("w", encoding="utf-8") as handle:
        for row in m:
            handle.write(" ".join(format(value, ".12g") for value in row) + "\n")


def get_file_names_under_dir(path) -> list[str]:
    """Full paths of every entry in a directory, in listing order."""
    base = str(path)
    return [base + "/" + name for name in os.listdir(base)]


def split_file_name_from_full_dir(path: str, bare: bool = False) -> str:
    """The file name after the last '/'; with ``bare`` the last extension is cut."""
    name = path[path.rfind("/") + 1:]
    if bare and "." in name:
        return name[: name.rfind(".")]
    return name


def sort_file_names(filenames) -> list[str]:
    """Sort paths by the numeric value of their bare file names."""
    return sorted(filenames, key=lambda s: float(split_file_name_from_full_dir(s, True)))


def calibrate_measurement(measure, rows: int, cols: int, border: int = 10, size: int = 100):
    """Check a detection box ``x1 y1 x2 y2`` against the image border and a minimum size.

    Returns ``(invalid, box)``. A box that is too small is returned unchanged;
    otherwise coordinates lying on the border are replaced with -1, and the box
    is invalid when any coordinate was replaced.
    """
    m = np.asarray(measure, dtype=float).ravel()
    x_length = int(m[2] - m[0])
    y_length = int(m[3] - m[1])
    if x_length < size or y_length < size:
        return True, m.copy()

    calibrated = np.full(4, -1.0)
    limits = {0: cols, 2: cols, 1: rows, 3: rows}
    correct = 0
    for index, extent in limits.items():
        if border < m[index] < extent - 1 - border:
            calibrated[index] = m[index]
            correct += 1
    return correct != 4, calibrated