"""Compute overlap reports.

This module turns planned report cells into :class:`OverlapRow` records and
assembles them into a table.
"""

import logging
from collections.abc import Callable, Sequence
from itertools import groupby
from pathlib import Path

import nibabel as nib
import pandas as pd

from roioverlap.interfaces.models import (
    REPORT_COLUMNS,
    GridCell,
    OverlapRow,
    StatisticKind,
    StatMapRole,
    TaskContext,
    TaskVolumes,
)
from roioverlap.metrics import (
    DEGENERATE,
    NOT_APPLICABLE,
    activation_ratio,
    coverage_from_counts,
    dice_cell,
    format_value,
    fraction_cell,
    overlap_counts,
    percentage,
    percentage_cell,
)
from roioverlap.overlap.volume import load_volume, masked_count, positive_count, total_count

logger = logging.getLogger(__name__)

VolumeLoader = Callable[[Path], nib.Nifti1Image]

# (whole-brain denominator map, activation map) per statistic kind.
# Z-stat activation maps come from the threshold of the cell instead.
_KIND_MAPS: dict[StatisticKind, tuple[StatMapRole, StatMapRole | None]] = {
    StatisticKind.ZSTAT: (StatMapRole.ZSTAT, None),
    StatisticKind.TFCE: (StatMapRole.TSTAT, StatMapRole.TFCE_CORRP),
    StatisticKind.ICA: (StatMapRole.ICA, StatMapRole.ICA_THRESH),
}


class VolumeStore:
    """Load each volume at most once until :meth:`clear` is called."""

    def __init__(self, loader: VolumeLoader = load_volume):
        self._loader = loader
        self._cache: dict[str, nib.Nifti1Image] = {}

    def __call__(self, path: Path) -> nib.Nifti1Image:
        key = str(path)
        if key not in self._cache:
            self._cache[key] = self._loader(path)
        return self._cache[key]

    def __len__(self) -> int:
        return len(self._cache)

    def clear(self) -> None:
        self._cache.clear()


def _roi_coverage(overlap: int, activated: int) -> str:
    if activated <= 0:
        return DEGENERATE
    return format_value(percentage(overlap, activated))


def compute_row(
    cell: GridCell,
    volumes: TaskVolumes,
    context: TaskContext,
    load: VolumeLoader = load_volume,
) -> OverlapRow:
    """Compute one report row.

    Parameters
    ----------
    cell
        Planned row (space, statistic kind, threshold, hemisphere, ROI slot).
    volumes
        Derived map variants of the task.
    context
        Task context providing the subject's ROI library.
    load
        Volume loader, typically a :class:`VolumeStore`.

    Returns
    -------
    OverlapRow
        The computed row. ``degenerate`` is set when the ROI or the
        whole-brain denominator has no voxels.

    Raises
    ------
    SpaceMismatchError
        If the maps and the ROI of the cell are not on the same voxel grid.
    """
    space, hemisphere = cell.space, cell.hemisphere
    roi = load(context.subject.roi(cell.slot.roi, space, hemisphere))

    whole_role, active_role = _KIND_MAPS[cell.kind]
    whole = load(volumes.stat_map(whole_role, space, hemisphere))
    if active_role is None:
        active = load(volumes.threshold_map(cell.threshold.label, space, hemisphere))
    else:
        active = load(volumes.stat_map(active_role, space, hemisphere))

    wb_voxels = total_count(whole)
    roi_voxels = total_count(roi)
    if cell.kind is StatisticKind.TFCE:
        activated_wb = positive_count(active)
    else:
        activated_wb = masked_count(active, whole)
    activated_roi = masked_count(active, roi)

    pct_wb = percentage(activated_wb, wb_voxels)
    pct_roi = percentage(activated_roi, roi_voxels)
    pct_roi_of_wb = percentage(activated_roi, wb_voxels)
    ratio = activation_ratio(pct_roi, pct_wb)

    dice = coverage_t = coverage_z = coverage_t_roi = coverage_z_roi = NOT_APPLICABLE
    if cell.reference is not None:
        reference = load(volumes.threshold_map(cell.reference.label, space, hemisphere))
        counts = overlap_counts(active, reference)
        cov_t, cov_z = coverage_from_counts(counts)
        dice = dice_cell(counts)
        coverage_t = fraction_cell(cov_t, counts.first)
        coverage_z = fraction_cell(cov_z, counts.second)

        activated_roi_reference = masked_count(reference, roi)
        overlap_roi = masked_count(active, [reference, roi])
        coverage_t_roi = _roi_coverage(overlap_roi, activated_roi)
        coverage_z_roi = _roi_coverage(overlap_roi, activated_roi_reference)

    degenerate = roi_voxels == 0 or wb_voxels == 0
    if degenerate:
        logger.warning(
            "Degenerate row for %s %s %s %s %s (ROI voxels=%d, whole-brain voxels=%d); empty cells report 0.0",
            context.task.name,
            space.value,
            cell.roi_label,
            cell.threshold.label,
            cell.kind.value,
            roi_voxels,
            wb_voxels,
        )

    return OverlapRow(
        subject=context.subject.context.subject_id,
        task=context.task.name,
        space=space.value,
        roi=cell.roi_label,
        threshold=cell.threshold.label,
        stat_type=cell.kind.value,
        activated_wb=activated_wb,
        activated_roi=activated_roi,
        pct_wb=percentage_cell(pct_wb, wb_voxels),
        pct_roi=percentage_cell(pct_roi, roi_voxels),
        pct_roi_of_wb=percentage_cell(pct_roi_of_wb, wb_voxels),
        ratio=format_value(ratio),
        roi_voxels=roi_voxels,
        wb_voxels=wb_voxels,
        dice=dice,
        coverage_t=coverage_t,
        coverage_z=coverage_z,
        coverage_t_roi=coverage_t_roi,
        coverage_z_roi=coverage_z_roi,
        degenerate=degenerate,
    )


def compute_rows(
    cells: Sequence[GridCell],
    volumes: TaskVolumes,
    context: TaskContext,
) -> list[OverlapRow]:
    """Compute all planned rows, keeping only one space's volumes in memory at a time."""
    store = VolumeStore()
    rows: list[OverlapRow] = []
    for space, space_cells in groupby(cells, key=lambda cell: cell.space):
        logger.info("Computing %s-space overlap for %s", space.value, context.task.name)
        rows.extend(compute_row(cell, volumes, context, load=store) for cell in space_cells)
        logger.debug("Released %d cached %s-space volumes", len(store), space.value)
        store.clear()
    return rows


def build_report(rows: Sequence[OverlapRow]) -> pd.DataFrame:
    """Assemble rows into a report table with the fixed column order."""
    return pd.DataFrame([row.to_record() for row in rows], columns=list(REPORT_COLUMNS))
