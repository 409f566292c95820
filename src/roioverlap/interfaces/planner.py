"""Plan overlap reports.

This module lays out the rows of a per-task overlap report.
"""

import logging
from collections.abc import Sequence

from roioverlap.interfaces.models import (
    CoordinateSpace,
    GridCell,
    StatisticKind,
    TaskDefinition,
    ThresholdSet,
)
from roioverlap.overlap.hemisphere import Hemisphere

logger = logging.getLogger(__name__)

HEMISPHERE_ORDER: tuple[Hemisphere, ...] = (Hemisphere.WHOLE, Hemisphere.LEFT, Hemisphere.RIGHT)


def _roi_variants(task: TaskDefinition):
    """Yield ``(slot, hemisphere)`` pairs in report order."""
    for slot in task.rois:
        for hemisphere in HEMISPHERE_ORDER:
            yield slot, hemisphere


def plan_report_grid(
    task: TaskDefinition,
    thresholds: ThresholdSet,
    spaces: Sequence[CoordinateSpace] = (CoordinateSpace.MNI, CoordinateSpace.NATIVE),
) -> list[GridCell]:
    """Plan the report rows for a task.

    For each space the rows are: every Z-stat threshold crossed with every ROI
    variant, then TFCE for every ROI variant, then ICA for every ROI variant.
    ROI variants run over the task's ROI slots and, within a slot, over the
    whole brain, left and right hemispheres.

    Parameters
    ----------
    task
        Task definition with its ROI slots.
    thresholds
        Thresholds evaluated for the task.
    spaces
        Coordinate spaces to report, in order.

    Returns
    -------
    list[GridCell]
        Planned rows; ``len == len(spaces) * (len(thresholds.zstat) + 2) * 3 * len(task.rois)``.
    """
    cells: list[GridCell] = []
    for space in spaces:
        for threshold in thresholds.zstat:
            cells.extend(
                GridCell(space=space, kind=StatisticKind.ZSTAT, threshold=threshold, hemisphere=hemisphere, slot=slot)
                for slot, hemisphere in _roi_variants(task)
            )
        for kind, threshold in ((StatisticKind.TFCE, thresholds.tfce), (StatisticKind.ICA, thresholds.ica)):
            cells.extend(
                GridCell(
                    space=space,
                    kind=kind,
                    threshold=threshold,
                    hemisphere=hemisphere,
                    slot=slot,
                    reference=thresholds.reference,
                )
                for slot, hemisphere in _roi_variants(task)
            )
    logger.debug("Planned %d report rows for task %s", len(cells), task.name)
    return cells
