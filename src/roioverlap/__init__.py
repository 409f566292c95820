"""Overlap between brain-activation maps and anatomical regions of interest.

This package quantifies how activation from a GLM Z-statistic map, a TFCE
permutation test and an ICA dual regression falls within anatomical ROIs,
in template and native space, per hemisphere and threshold. It provides
flexible Python and CLI interfaces for FEAT-style derivatives.
"""

from roioverlap.metrics import activation_ratio, coverage, dice, percentage
from roioverlap.overlap import Hemisphere, split_hemispheres

__all__ = ["Hemisphere", "activation_ratio", "coverage", "dice", "percentage", "split_hemispheres"]
