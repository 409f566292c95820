"""Voxel algebra on statistical maps and ROI masks.

Every operation that combines two volumes requires them to share the same
voxel grid (shape and affine). Volumes from different coordinate spaces must
be brought onto a common grid with :mod:`roioverlap.spatial.transform` first.
Operations return new images and never modify their inputs.
"""

from __future__ import annotations

from collections.abc import Sequence
from enum import Enum
from pathlib import Path
from typing import Literal

import nibabel as nib
import numpy as np
from nibabel.spatialimages import SpatialImage

from roioverlap.utils import _check_same_grid, _load_nifti, _save_nifti

Polarity = Literal["positive", "nonzero"]


class VoxelSemantic(str, Enum):
    """Declared meaning of the values stored in a volume."""

    CONTINUOUS = "continuous"  # Z, t and ICA statistics
    PROBABILITY = "probability"  # corrected significance (1 - p)
    LABEL = "label"  # binary ROI and brain masks


def load_volume(path: nib.Nifti1Image | str | Path, volume_index: int | None = None) -> nib.Nifti1Image:
    """Load a 3D volume, raising :class:`~roioverlap.exceptions.VolumeLoadError` on failure.

    ``volume_index`` selects one volume of a 4D series (e.g. the first
    component of a dual-regression output).
    """
    return _load_nifti(path, volume_index=volume_index)


def save_volume(img: nib.Nifti1Image, path: str | Path) -> Path:
    """Write ``img`` to ``path`` and return the path."""
    return _save_nifti(img, path)


def check_same_grid(first: nib.Nifti1Image, second: nib.Nifti1Image) -> None:
    """Raise :class:`~roioverlap.exceptions.SpaceMismatchError` unless both volumes share shape and affine."""
    _check_same_grid(first, second)


def _data(img: nib.Nifti1Image) -> np.ndarray:
    return np.nan_to_num(np.asarray(img.get_fdata(), dtype=np.float64), nan=0.0)


def _support(img: nib.Nifti1Image, polarity: Polarity = "nonzero") -> np.ndarray:
    data = _data(img)
    if polarity == "positive":
        return data > 0
    if polarity == "nonzero":
        return data != 0
    raise ValueError(f"Unknown polarity {polarity!r}; expected 'positive' or 'nonzero'.")


def _like(data: np.ndarray, template: nib.Nifti1Image) -> nib.Nifti1Image:
    return nib.Nifti1Image(data, template.affine)


def masked_count(
    stat_img: nib.Nifti1Image,
    mask: nib.Nifti1Image | Sequence[nib.Nifti1Image],
    polarity: Polarity = "positive",
) -> int:
    """Count voxels of ``stat_img`` inside the nonzero support of ``mask``.

    Parameters
    ----------
    stat_img : nib.Nifti1Image
        Map whose voxels are counted.
    mask : nib.Nifti1Image | Sequence[nib.Nifti1Image]
        One mask, or several masks that must all be nonzero.
    polarity : {"positive", "nonzero"}
        Whether a voxel of ``stat_img`` counts when strictly positive or when
        nonzero.

    Returns
    -------
    int
        Number of voxels satisfying both conditions.

    Raises
    ------
    SpaceMismatchError
        If any mask is not on the grid of ``stat_img``.
    """
    masks = [mask] if isinstance(mask, SpatialImage) else list(mask)
    selected = _support(stat_img, polarity)
    for mask_img in masks:
        check_same_grid(stat_img, mask_img)
        selected &= _support(mask_img)
    return int(np.count_nonzero(selected))


def total_count(img: nib.Nifti1Image) -> int:
    """Count nonzero voxels of ``img``."""
    return int(np.count_nonzero(_support(img)))


def positive_count(img: nib.Nifti1Image) -> int:
    """Count strictly positive voxels of ``img``."""
    return int(np.count_nonzero(_support(img, "positive")))


def threshold_above(img: nib.Nifti1Image, cutoff: float) -> nib.Nifti1Image:
    """Keep voxels with values ``>= cutoff`` and zero the rest."""
    data = _data(img).astype(np.float32)
    return _like(np.where(data >= cutoff, data, 0).astype(np.float32), img)


def threshold_positive(img: nib.Nifti1Image) -> nib.Nifti1Image:
    """Keep strictly positive voxels and zero the rest."""
    data = _data(img).astype(np.float32)
    return _like(np.where(data > 0, data, 0).astype(np.float32), img)


def mask_apply(img: nib.Nifti1Image, mask: nib.Nifti1Image) -> nib.Nifti1Image:
    """Zero ``img`` outside the nonzero support of ``mask``."""
    check_same_grid(img, mask)
    data = _data(img).astype(np.float32)
    return _like(np.where(_support(mask), data, 0).astype(np.float32), img)


def is_binary(img: nib.Nifti1Image) -> bool:
    """Return whether every voxel of ``img`` is 0 or 1."""
    values = np.unique(_data(img))
    return bool(np.isin(values, (0.0, 1.0)).all())
