"""
Overlap metrics between statistical maps and ROI masks.
"""

import logging
import math
import numbers

import nibabel as nib

from roioverlap.exceptions import DegenerateDenominatorError
from roioverlap.metrics.base import DEGENERATE, NOT_APPLICABLE, OverlapCounts
from roioverlap.overlap.volume import masked_count, positive_count, threshold_positive

logger = logging.getLogger(__name__)


def _is_valid_denominator(denominator) -> bool:
    if isinstance(denominator, bool) or not isinstance(denominator, numbers.Real):
        return False
    if not math.isfinite(denominator) or float(denominator) != int(denominator):
        return False
    return denominator > 0


def percentage(numerator: int, denominator: int, *, strict: bool = False) -> float:
    """Return ``numerator / denominator`` as a percentage rounded to 3 decimals.

    Parameters
    ----------
    numerator : int
        Voxel count of the sub-region.
    denominator : int
        Voxel count of the reference region. Must be a positive integer.
    strict : bool, optional
        Raise instead of logging when the denominator is degenerate.

    Returns
    -------
    float
        The percentage, or 0.0 when the denominator is zero, negative or not
        integer-like.

    Raises
    ------
    DegenerateDenominatorError
        Only when ``strict`` is true and the denominator is degenerate.
    """
    if not _is_valid_denominator(denominator):
        error = DegenerateDenominatorError(numerator, denominator)
        if strict:
            raise error
        logger.warning("%s; reporting 0.0", error)
        return 0.0
    return round(100.0 * float(numerator) / float(denominator), 3)


def overlap_counts(first: nib.Nifti1Image, second: nib.Nifti1Image) -> OverlapCounts:
    """Count the overlap and the sizes of two maps.

    Only strictly positive voxels take part: the overlap counts voxels positive
    in both maps and each size counts the positive voxels of its map.
    """
    return OverlapCounts(
        overlap=masked_count(first, threshold_positive(second), polarity="positive"),
        first=positive_count(first),
        second=positive_count(second),
    )


def dice_from_counts(counts: OverlapCounts) -> float:
    """Dice coefficient from precomputed counts; 0.0 if either map is empty."""
    if counts.first <= 0 or counts.second <= 0:
        return 0.0
    return round(2.0 * counts.overlap / (counts.first + counts.second), 3)


def dice(first: nib.Nifti1Image, second: nib.Nifti1Image) -> float:
    """Dice coefficient ``2|A∩B| / (|A| + |B|)`` rounded to 3 decimals.

    Returns 0.0 when either map has no positive voxels, which is read as "no
    evidence of overlap" rather than an error.
    """
    return dice_from_counts(overlap_counts(first, second))


def coverage_from_counts(counts: OverlapCounts) -> tuple[float, float]:
    """Directional coverage fractions from precomputed counts."""
    cov_first = counts.overlap / counts.first if counts.first > 0 else 0.0
    cov_second = counts.overlap / counts.second if counts.second > 0 else 0.0
    return float(cov_first), float(cov_second)


def coverage(first: nib.Nifti1Image, second: nib.Nifti1Image) -> tuple[float, float]:
    """Return ``(|A∩B| / |A|, |A∩B| / |B|)``.

    Each fraction is independently 0.0 when its own denominator is 0.
    """
    return coverage_from_counts(overlap_counts(first, second))


def activation_ratio(pct_roi: float, pct_wb: float) -> float | None:
    """Ratio of ROI activation percentage to whole-brain activation percentage.

    Returns ``None`` (not applicable) when ``pct_wb`` is 0, so that "no
    activation anywhere" stays distinguishable from a computed ratio of 0.
    """
    if pct_wb == 0:
        return None
    return round(pct_roi / pct_wb, 3)


def format_value(value: float | None) -> str:
    """Format a metric as a 3-decimal string, or ``"N/A"`` for ``None``."""
    if value is None:
        return NOT_APPLICABLE
    return f"{value:.3f}"


def percentage_cell(value: float, denominator: int) -> str:
    """Format a percentage for the report; ``"0.0"`` when its denominator was empty."""
    if not _is_valid_denominator(denominator):
        return DEGENERATE
    return format_value(value)


def fraction_cell(fraction: float, denominator: int) -> str:
    """Coverage fraction formatted as a percentage; ``"0.0"`` for an empty denominator."""
    if denominator <= 0:
        return DEGENERATE
    return format_value(round(100.0 * fraction, 3))


def dice_cell(counts: OverlapCounts) -> str:
    """Dice coefficient formatted for the report; ``"0.0"`` when undefined."""
    if counts.first <= 0 or counts.second <= 0:
        return DEGENERATE
    return format_value(dice_from_counts(counts))
