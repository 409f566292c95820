"""Utility functions for image loading and processing.

Internal utilities for working with NIfTI images and file I/O.
"""

from roioverlap.utils.image import _check_same_grid, _load_nifti, _read_image, _same_grid, _save_nifti

__all__ = ["_check_same_grid", "_load_nifti", "_read_image", "_same_grid", "_save_nifti"]
