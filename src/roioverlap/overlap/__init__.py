"""Voxel algebra and hemisphere partitioning of statistical maps and ROI masks."""

from roioverlap.overlap.hemisphere import (
    Hemisphere,
    HemisphereBoundary,
    hemisphere_variants,
    split_hemispheres,
)
from roioverlap.overlap.volume import (
    VoxelSemantic,
    check_same_grid,
    is_binary,
    load_volume,
    mask_apply,
    masked_count,
    positive_count,
    save_volume,
    threshold_above,
    threshold_positive,
    total_count,
)

__all__ = [
    "Hemisphere",
    "HemisphereBoundary",
    "VoxelSemantic",
    "check_same_grid",
    "hemisphere_variants",
    "is_binary",
    "load_volume",
    "mask_apply",
    "masked_count",
    "positive_count",
    "save_volume",
    "split_hemispheres",
    "threshold_above",
    "threshold_positive",
    "total_count",
]
