[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ellipsoidslam"
version = "0.1.0"
description = "Single-frame ellipsoid estimation from RGB-D data with symmetry-based point cloud completion"
requires-python = ">=3.10"
keywords = [
    "ellipsoid",
    "point cloud",
    "rgb-d",
    "depth image",
    "symmetry",
    "pca",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Image Processing",
]
dependencies = [
    "numpy",
    "scipy",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["ellipsoidslam"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
ignore_missing_imports = true
