"""Overlap metrics between activation maps and regions of interest.

Provides percentages of activated voxels, the Dice coefficient, directional
coverage and the ROI/whole-brain activation ratio, together with the cell
formatting used by the report tables.

Degenerate denominators
-----------------------
A zero, negative or non-integer denominator never aborts processing: the
metric evaluates to 0.0, the event is logged, and the report cell is written
as ``"0.0"``. Metrics that do not apply to a row are written as ``"N/A"``.
"""

from roioverlap.metrics.base import DEGENERATE, NOT_APPLICABLE, OverlapCounts
from roioverlap.metrics.overlap import (
    activation_ratio,
    coverage,
    coverage_from_counts,
    dice,
    dice_cell,
    dice_from_counts,
    format_value,
    fraction_cell,
    overlap_counts,
    percentage,
    percentage_cell,
)

__all__ = [
    "DEGENERATE",
    "NOT_APPLICABLE",
    "OverlapCounts",
    "activation_ratio",
    "coverage",
    "coverage_from_counts",
    "dice",
    "dice_cell",
    "dice_from_counts",
    "format_value",
    "fraction_cell",
    "overlap_counts",
    "percentage",
    "percentage_cell",
]
