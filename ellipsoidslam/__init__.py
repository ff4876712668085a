"""Single-frame ellipsoid estimation from RGB-D data, with point-cloud filtering, PCA and symmetry-plane completion."""

__version__ = "0.1.0"