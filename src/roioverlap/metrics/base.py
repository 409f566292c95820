from dataclasses import dataclass

#: Cell text for metrics that do not apply to a row (e.g. Dice for Z-stat rows).
NOT_APPLICABLE = "N/A"

#: Cell text written when a metric's denominator is empty.
DEGENERATE = "0.0"


@dataclass(frozen=True)
class OverlapCounts:
    """Voxel counts shared by Dice and coverage between two maps."""

    overlap: int
    first: int
    second: int
