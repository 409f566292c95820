"""Template-to-native space transformations."""

from roioverlap.spatial.transform import (
    InterpolationMethod,
    inverse_warp_to_native,
    resample_to_grid,
    select_interpolation,
)

__all__ = [
    "InterpolationMethod",
    "inverse_warp_to_native",
    "resample_to_grid",
    "select_interpolation",
]
