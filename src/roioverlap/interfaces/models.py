"""Shared structured representations of pipeline inputs and outputs."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from roioverlap.exceptions import ConfigurationError
from roioverlap.overlap.hemisphere import Hemisphere, HemisphereBoundary


class CoordinateSpace(str, Enum):
    """Coordinate space a volume or report row refers to."""

    MNI = "MNI"
    NATIVE = "Native"


class StatisticKind(str, Enum):
    """Analysis method a report row describes; the value is the ``Stat Type`` column text."""

    ZSTAT = "Z-stat"
    TFCE = "TFCE"
    ICA = "ICA"


class ThresholdRule(str, Enum):
    """How an activation map is obtained from a statistic map."""

    ABSOLUTE = "absolute"
    POSITIVE = "positive"


class StatMapRole(str, Enum):
    """Per-task statistical inputs supplied by the upstream analyses."""

    ZSTAT = "zstat"
    THRESH_ZSTAT = "thresh_zstat"
    TFCE_CORRP = "tfce_corrp"
    TSTAT = "tstat"
    ICA = "ica"
    ICA_THRESH = "ica_thresh"


@dataclass(frozen=True)
class ThresholdDescriptor:
    """A named activation threshold.

    ``precomputed`` marks thresholds whose activation map is delivered by an
    upstream tool (e.g. FEAT's cluster-corrected map) rather than derived here.
    """

    label: str
    rule: ThresholdRule = ThresholdRule.ABSOLUTE
    cutoff: float | None = None
    precomputed: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "rule", ThresholdRule(self.rule))
        if self.rule is ThresholdRule.ABSOLUTE and self.cutoff is None:
            raise ConfigurationError(f"Threshold {self.label!r} uses the absolute rule but has no cutoff.")

    @classmethod
    def z_threshold(cls, cutoff: float, precomputed: bool = False) -> ThresholdDescriptor:
        """Return an absolute Z threshold labelled ``Z=<cutoff>``."""
        return cls(label=f"Z={cutoff:g}", rule=ThresholdRule.ABSOLUTE, cutoff=float(cutoff), precomputed=precomputed)


@dataclass(frozen=True)
class ThresholdSet:
    """Thresholds evaluated for every task.

    Attributes
    ----------
    zstat
        Z-stat thresholds in report order; the first one is the primary
        (cluster-corrected) threshold.
    tfce
        Activation rule for the TFCE corrected-significance map.
    ica
        Threshold label of the precomputed thresholded ICA map.
    reference
        Z threshold that TFCE and ICA maps are compared against.
    """

    zstat: tuple[ThresholdDescriptor, ...]
    tfce: ThresholdDescriptor
    ica: ThresholdDescriptor
    reference: ThresholdDescriptor

    @classmethod
    def from_config(cls, config: PostStatsConfig) -> ThresholdSet:
        """Build the threshold set described by ``config``.

        Raises
        ------
        ConfigurationError
            If the reference threshold label is not one of the Z thresholds.
        """
        primary = ThresholdDescriptor.z_threshold(config.cluster_threshold, precomputed=True)
        zstat = [primary]
        if config.secondary_threshold is not None:
            zstat.append(ThresholdDescriptor.z_threshold(config.secondary_threshold))
        reference_label = config.reference_threshold or primary.label
        matches = [threshold for threshold in zstat if threshold.label == reference_label]
        if not matches:
            raise ConfigurationError(
                f"Unknown reference threshold {reference_label!r}; expected one of {[t.label for t in zstat]}."
            )
        return cls(
            zstat=tuple(zstat),
            tfce=ThresholdDescriptor(label="TFCE", rule=ThresholdRule.POSITIVE),
            ica=ThresholdDescriptor.z_threshold(config.ica_threshold, precomputed=True),
            reference=matches[0],
        )


@dataclass(frozen=True)
class RoiDefinition:
    """An anatomical region of interest in template space."""

    name: str
    nifti_path: Path


@dataclass(frozen=True)
class RoiSlot:
    """One ROI reported for a task, with the label used in the ``ROI`` column."""

    roi: str
    label: str = ""

    def row_label(self, hemisphere: Hemisphere) -> str:
        """Return the report label, e.g. ``"Left STG"`` or ``"Whole-brain"``."""
        return f"{Hemisphere(hemisphere).value} {self.label}".strip()


@dataclass(frozen=True)
class TaskDefinition:
    """A task and the ROI slots reported for it."""

    name: str
    rois: tuple[RoiSlot, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "rois", tuple(self.rois))
        if not self.rois:
            raise ConfigurationError(f"Task {self.name!r} has no ROI set configured.")


DEFAULT_ROI_NAMES: tuple[str, ...] = ("SMA_PMC", "STG", "Heschl")

DEFAULT_TASKS: tuple[TaskDefinition, ...] = (
    TaskDefinition(name="motor_run-01", rois=(RoiSlot(roi="SMA_PMC"),)),
    TaskDefinition(name="motor_run-02", rois=(RoiSlot(roi="SMA_PMC"),)),
    TaskDefinition(name="lang", rois=(RoiSlot(roi="STG", label="STG"), RoiSlot(roi="Heschl", label="Heschl"))),
)


@dataclass
class PostStatsConfig:
    """Configuration for the post-stats overlap workflow."""

    input_root: Path
    output_dir: Path
    roi_dir: Path | None = None
    rois: list[RoiDefinition] | None = None
    tasks: list[TaskDefinition] = field(default_factory=lambda: list(DEFAULT_TASKS))
    subjects: list[str] | None = None
    sessions: list[str] | None = None
    cluster_threshold: float = 3.1
    secondary_threshold: float | None = 2.35
    reference_threshold: str | None = None
    ica_threshold: float = 3.1
    hemisphere_axis: int = 0
    hemisphere_grid_width: int | None = 90
    hemisphere_first_index: int = 1
    reference_task: str | None = None
    template_space: str = "MNI152NLin6Asym"
    force: bool = False
    log_level: int = logging.INFO
    n_jobs: int = 1
    n_procs: int = 1

    @property
    def resolved_reference_task(self) -> str:
        """Task whose Z map defines the template grid for the ROI library."""
        return self.reference_task or self.tasks[0].name

    @property
    def boundary(self) -> HemisphereBoundary:
        return HemisphereBoundary(
            axis=self.hemisphere_axis,
            grid_width=self.hemisphere_grid_width,
            first_index=self.hemisphere_first_index,
        )


@dataclass(frozen=True)
class SubjectContext:
    """Minimal BIDS-like identifier for a subject/session."""

    subject_id: str
    session_id: str | None = None

    @property
    def label(self) -> str:
        """Return a compact label suitable for filenames."""

        return f"sub-{self.subject_id}" + (f"_ses-{self.session_id}" if self.session_id else "")

    @property
    def relative_dir(self) -> Path:
        """Return the ``sub-<id>[/ses-<id>]`` directory relative to a dataset root."""
        path = Path(f"sub-{self.subject_id}")
        if self.session_id:
            path = path / f"ses-{self.session_id}"
        return path


@dataclass(frozen=True)
class TaskInput:
    """Statistical inputs discovered for one task of a subject."""

    task: TaskDefinition
    brain_mask: Path
    stat_maps: Mapping[StatMapRole, Path]


@dataclass(frozen=True)
class SubjectInput:
    """Paths to the anatomical and statistical inputs of one subject/session."""

    context: SubjectContext
    t1w: Path
    brain_mask: Path
    deformation_field: Path
    tasks: Sequence[TaskInput]

    def task(self, name: str) -> TaskInput:
        """Return the inputs of task ``name``."""
        for task_input in self.tasks:
            if task_input.task.name == name:
                return task_input
        raise ConfigurationError(f"Task {name!r} is not configured for {self.context.label}.")


@dataclass(frozen=True)
class PreparedSubject:
    """ROI library of one subject after preprocessing.

    ``rois`` maps ``(roi name, space, hemisphere)`` to a cached binary mask.
    """

    context: SubjectContext
    output_dir: Path
    native_reference: Path
    deformation_field: Path
    rois: Mapping[tuple[str, CoordinateSpace, Hemisphere], Path]

    def roi(self, name: str, space: CoordinateSpace, hemisphere: Hemisphere) -> Path:
        """Return the mask of ROI ``name`` in ``space`` restricted to ``hemisphere``."""
        return self.rois[(name, CoordinateSpace(space), Hemisphere(hemisphere))]


@dataclass(frozen=True)
class TaskContext:
    """Explicit path context of one task unit."""

    subject: PreparedSubject
    inputs: TaskInput

    @property
    def task(self) -> TaskDefinition:
        return self.inputs.task

    @property
    def post_stats_dir(self) -> Path:
        return self.subject.output_dir / "post_stats"

    @property
    def work_dir(self) -> Path:
        """Directory holding the derived map variants of this task."""
        return self.post_stats_dir / f"task-{self.task.name}_maps"

    @property
    def csv_path(self) -> Path:
        return self.post_stats_dir / f"sub-{self.subject.context.subject_id}_task-{self.task.name}_roi_stats.csv"

    @property
    def log_path(self) -> Path:
        return self.post_stats_dir / f"log_{self.subject.context.subject_id}_{self.task.name}.txt"


@dataclass(frozen=True)
class TaskVolumes:
    """Derived map variants of one task, keyed by space and hemisphere."""

    stat_maps: Mapping[tuple[StatMapRole, CoordinateSpace, Hemisphere], Path]
    thresholded: Mapping[tuple[str, CoordinateSpace, Hemisphere], Path]

    def stat_map(self, role: StatMapRole, space: CoordinateSpace, hemisphere: Hemisphere) -> Path:
        return self.stat_maps[(StatMapRole(role), CoordinateSpace(space), Hemisphere(hemisphere))]

    def threshold_map(self, label: str, space: CoordinateSpace, hemisphere: Hemisphere) -> Path:
        return self.thresholded[(label, CoordinateSpace(space), Hemisphere(hemisphere))]


@dataclass(frozen=True)
class GridCell:
    """One planned report row."""

    space: CoordinateSpace
    kind: StatisticKind
    threshold: ThresholdDescriptor
    hemisphere: Hemisphere
    slot: RoiSlot
    reference: ThresholdDescriptor | None = None

    @property
    def roi_label(self) -> str:
        return self.slot.row_label(self.hemisphere)


REPORT_COLUMNS: tuple[str, ...] = (
    "Subject",
    "Task",
    "Space",
    "ROI",
    "Threshold",
    "Stat Type",
    "Activated Voxels across Whole Brain (counts)",
    "Activated Voxels within ROI (counts)",
    "Activated Voxels across Whole Brain (%)",
    "Activated Voxels within ROI (%)",
    "Activated ROI/WB (%)",
    "%Activated ROI/%Activated WB (ratio)",
    "Voxels in ROI (counts)",
    "Voxels in Whole Brain (counts)",
    "Dice Coefficient",
    "Coverage T-map (%)",
    "Coverage Z-map (%)",
    "Coverage T-map ROI (%)",
    "Coverage Z-map ROI (%)",
)


@dataclass(frozen=True)
class OverlapRow:
    """One row of the per-task overlap report.

    Decimal fields hold their final text (``"%.3f"``, ``"0.0"`` or ``"N/A"``).
    ``degenerate`` is set when the ROI or whole-brain denominator is empty; it
    is not written to the report.
    """

    subject: str
    task: str
    space: str
    roi: str
    threshold: str
    stat_type: str
    activated_wb: int
    activated_roi: int
    pct_wb: str
    pct_roi: str
    pct_roi_of_wb: str
    ratio: str
    roi_voxels: int
    wb_voxels: int
    dice: str
    coverage_t: str
    coverage_z: str
    coverage_t_roi: str
    coverage_z_roi: str
    degenerate: bool = False

    def to_record(self) -> dict[str, object]:
        """Return the row as a mapping from report column to value."""
        values = (
            self.subject,
            self.task,
            self.space,
            self.roi,
            self.threshold,
            self.stat_type,
            self.activated_wb,
            self.activated_roi,
            self.pct_wb,
            self.pct_roi,
            self.pct_roi_of_wb,
            self.ratio,
            self.roi_voxels,
            self.wb_voxels,
            self.dice,
            self.coverage_t,
            self.coverage_z,
            self.coverage_t_roi,
            self.coverage_z_roi,
        )
        return dict(zip(REPORT_COLUMNS, values))


@dataclass(frozen=True)
class TaskResult:
    """Outcome of one task unit."""

    task: str
    output_path: Path | None
    n_rows: int = 0
    n_degenerate: int = 0
    error: str | None = None
    reused: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and self.output_path is not None
