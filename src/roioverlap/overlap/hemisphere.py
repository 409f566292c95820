"""Split volumes into left/right hemisphere sub-volumes.

The boundary is a fixed voxel index along the left-right axis of the template
grid. With a declared grid width ``W`` and first index ``f`` the left
hemisphere covers indices ``[f, W // 2)`` and the right hemisphere
``[W // 2, W)``; voxels outside ``[f, W)`` belong to neither half.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import nibabel as nib
import numpy as np

from roioverlap.overlap.volume import _data, _like


class Hemisphere(str, Enum):
    """Hemisphere partition of a volume."""

    WHOLE = "Whole-brain"
    LEFT = "Left"
    RIGHT = "Right"


@dataclass(frozen=True)
class HemisphereBoundary:
    """Left-right split convention of the template grid."""

    axis: int = 0
    grid_width: int | None = 90
    first_index: int = 1

    def bounds(self, shape: tuple[int, ...]) -> tuple[slice, slice]:
        """Return the (left, right) index ranges along :attr:`axis` for ``shape``."""
        if self.axis < 0 or self.axis >= len(shape):
            raise ValueError(f"Hemisphere axis {self.axis} is out of range for shape {shape}")
        width = self.grid_width if self.grid_width is not None else shape[self.axis]
        width = min(int(width), shape[self.axis])
        midline = width // 2
        return slice(self.first_index, midline), slice(midline, width)


def split_hemispheres(
    img: nib.Nifti1Image,
    axis: int = 0,
    grid_width: int | None = None,
    first_index: int = 0,
) -> tuple[nib.Nifti1Image, nib.Nifti1Image]:
    """Split ``img`` into left and right halves of the same shape.

    Parameters
    ----------
    img : nib.Nifti1Image
        Volume to split.
    axis : int, optional
        Voxel axis running left to right, by default 0.
    grid_width : int | None, optional
        Declared width of the grid along ``axis``; defaults to the image extent.
    first_index : int, optional
        First voxel index that belongs to the left half, by default 0.

    Returns
    -------
    tuple[nib.Nifti1Image, nib.Nifti1Image]
        ``(left, right)``, each with the opposite half (and anything outside the
        declared width) set to zero.
    """
    boundary = HemisphereBoundary(axis=axis, grid_width=grid_width, first_index=first_index)
    left_range, right_range = boundary.bounds(img.shape)
    data = _data(img).astype(np.float32)

    halves = []
    for index_range in (left_range, right_range):
        keep = [slice(None)] * data.ndim
        keep[axis] = index_range
        half = np.zeros_like(data)
        half[tuple(keep)] = data[tuple(keep)]
        halves.append(_like(half, img))
    return halves[0], halves[1]


def hemisphere_variants(
    img: nib.Nifti1Image,
    boundary: HemisphereBoundary | None = None,
) -> dict[Hemisphere, nib.Nifti1Image]:
    """Return the whole volume together with its left and right halves."""
    boundary = boundary or HemisphereBoundary()
    left, right = split_hemispheres(
        img,
        axis=boundary.axis,
        grid_width=boundary.grid_width,
        first_index=boundary.first_index,
    )
    return {Hemisphere.WHOLE: img, Hemisphere.LEFT: left, Hemisphere.RIGHT: right}
