"""Exception hierarchy for roioverlap.

Structural errors (:class:`VolumeLoadError`, :class:`SpaceMismatchError`,
:class:`TransformError`, :class:`ConfigurationError`) abort the processing of
a subject. :class:`DegenerateDenominatorError` is recovered locally by the
metrics engine and only logged.
"""

from __future__ import annotations


class RoiOverlapError(Exception):
    """Base exception for all roioverlap errors."""


class VolumeLoadError(RoiOverlapError, OSError):
    """Raised when a volume is missing or cannot be read as a 3D grid."""


class MissingInputError(VolumeLoadError, FileNotFoundError):
    """Raised when an expected pipeline input or checkpoint output does not exist."""

    def __init__(self, description: str, path):
        self.description = description
        self.path = path
        super().__init__(f"Missing {description}: {path}")


class SpaceMismatchError(RoiOverlapError, ValueError):
    """Raised when two volumes do not share the same voxel grid."""

    def __init__(self, first_shape, second_shape, detail: str = "shape/affine"):
        self.first_shape = tuple(first_shape)
        self.second_shape = tuple(second_shape)
        super().__init__(
            f"Volumes are not on the same voxel grid ({detail} differ): {self.first_shape} vs {self.second_shape}"
        )


class TransformError(RoiOverlapError, RuntimeError):
    """Raised when a deformation field is missing or cannot be applied."""


class DegenerateDenominatorError(RoiOverlapError, ArithmeticError):
    """Raised (or logged) when a ratio has a zero, negative or non-integer denominator."""

    def __init__(self, numerator, denominator):
        self.numerator = numerator
        self.denominator = denominator
        super().__init__(f"Degenerate denominator {denominator!r} for numerator {numerator!r}")


class ConfigurationError(RoiOverlapError, ValueError):
    """Raised when a required configuration value is missing or inconsistent."""
