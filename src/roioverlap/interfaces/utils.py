"""Shared utility functions for interfaces.

This module provides configuration parsing helpers and provenance sidecars.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime, timezone
from pathlib import Path

from roioverlap.exceptions import ConfigurationError
from roioverlap.interfaces.models import (
    DEFAULT_ROI_NAMES,
    DEFAULT_TASKS,
    PostStatsConfig,
    RoiDefinition,
    RoiSlot,
    TaskDefinition,
    TaskResult,
    ThresholdSet,
)

logger = logging.getLogger(__name__)


def _parse_log_level(value: str | int | None) -> int:
    """Return a logging level from common string/int inputs.

    Parameters
    ----------
    value
        The value to parse.

    Returns
    -------
    int
        The logging level.

    Examples
    --------
    >>> _parse_log_level("INFO")
    20
    >>> _parse_log_level("DEBUG")
    10
    >>> _parse_log_level(logging.WARNING)
    30
    >>> _parse_log_level(None)
    20
    """
    if value is None:
        return logging.INFO
    if isinstance(value, int):
        return value
    return getattr(logging, str(value).upper(), logging.INFO)


def _as_list(value: Iterable[str] | str | None) -> list[str] | None:
    """Normalize configuration values into a list of strings.

    Parameters
    ----------
    value
        The value to normalize.

    Returns
    -------
    list[str] | None
        The normalized list of strings, or None if the input is None.
    """
    if value is None:
        return None
    if isinstance(value, str):
        return [value]
    return list(value)


def _strip_prefix(value: str, prefix: str) -> str:
    return value[len(prefix) :] if value.startswith(prefix) else value


def parse_rois(
    roi_configs: Sequence[Mapping[str, object]] | None,
    roi_dir: Path | None = None,
    names: Iterable[str] = DEFAULT_ROI_NAMES,
) -> list[RoiDefinition]:
    """Parse ROI definitions from configuration.

    Parameters
    ----------
    roi_configs
        List of ROI configuration dictionaries with ``name`` and ``path``
        keys. When empty, ``<roi_dir>/<name>.nii.gz`` is used for every name in
        ``names``.
    roi_dir
        Directory holding the ROI library.
    names
        ROI names to resolve from ``roi_dir`` when no explicit definitions
        are given.

    Returns
    -------
    list[RoiDefinition]
        List of parsed ROI definitions.

    Raises
    ------
    ConfigurationError
        If neither explicit definitions nor an ROI directory are available.
    """
    rois: list[RoiDefinition] = []
    for cfg in roi_configs or []:
        name = cfg.get("name")
        path = cfg.get("path")
        if not name or not path:
            logger.warning("Skipping ROI with missing name or path: %s", cfg)
            continue
        rois.append(RoiDefinition(name=str(name), nifti_path=Path(str(path)).expanduser().resolve()))
    if rois:
        return rois

    if roi_dir is None:
        raise ConfigurationError("No ROI definitions configured; set 'roi_dir' or provide [[rois]] tables.")
    roi_dir = Path(roi_dir).expanduser().resolve()
    return [RoiDefinition(name=name, nifti_path=roi_dir / f"{name}.nii.gz") for name in names]


def parse_tasks(
    task_configs: Sequence[Mapping[str, object]] | None,
    selected: Iterable[str] | None = None,
) -> list[TaskDefinition]:
    """Parse the task to ROI-set table from configuration.

    Parameters
    ----------
    task_configs
        List of ``[[tasks]]`` tables, each with a ``name`` and a ``rois`` list of
        ``{roi = ..., label = ...}`` tables. The built-in table is used when
        empty.
    selected
        Optional task names to keep, in the order given.

    Returns
    -------
    list[TaskDefinition]
        Task definitions to process.

    Raises
    ------
    ConfigurationError
        If a task has no ROI set or a selected task is unknown.
    """
    if task_configs:
        tasks = []
        for cfg in task_configs:
            name = cfg.get("name")
            if not name:
                raise ConfigurationError(f"Task table without a name: {cfg}")
            slots = []
            for slot in cfg.get("rois") or []:
                if isinstance(slot, str):
                    slots.append(RoiSlot(roi=slot))
                else:
                    slots.append(RoiSlot(roi=str(slot["roi"]), label=str(slot.get("label", ""))))
            tasks.append(TaskDefinition(name=str(name), rois=tuple(slots)))
    else:
        tasks = list(DEFAULT_TASKS)

    if not selected:
        return tasks

    by_name = {task.name: task for task in tasks}
    resolved = []
    for name in selected:
        name = _strip_prefix(name, "task-")
        if name not in by_name:
            raise ConfigurationError(f"Task {name!r} has no ROI set configured; known tasks: {sorted(by_name)}")
        resolved.append(by_name[name])
    return resolved


def validate_config(config: PostStatsConfig) -> None:
    """Check cross-field consistency of a configuration.

    Raises
    ------
    ConfigurationError
        If a task references an undefined ROI, the reference task is unknown,
        or the reference threshold label does not match a Z threshold.
    """
    if not config.tasks:
        raise ConfigurationError("No tasks configured.")
    roi_names = {roi.name for roi in config.rois or []}
    for task in config.tasks:
        missing = [slot.roi for slot in task.rois if slot.roi not in roi_names]
        if missing:
            raise ConfigurationError(f"Task {task.name!r} references undefined ROIs: {missing}")
    task_names = [task.name for task in config.tasks]
    if config.resolved_reference_task not in task_names:
        raise ConfigurationError(f"Reference task {config.resolved_reference_task!r} is not one of {task_names}")
    if config.n_jobs < 1 or config.n_procs < 1:
        raise ConfigurationError("n_jobs and n_procs must be positive integers.")
    ThresholdSet.from_config(config)


def write_report_sidecar(
    csv_path: Path,
    result: TaskResult,
    inputs: Mapping[str, Path],
    thresholds: ThresholdSet,
    config: PostStatsConfig,
) -> Path:
    """Write a JSON sidecar file alongside an overlap report CSV.

    The sidecar captures provenance: which statistical maps and ROIs were
    compared, the thresholds and hemisphere convention that were applied, and
    how many rows had an empty denominator.

    Parameters
    ----------
    csv_path
        Path to the report CSV. The JSON will share its stem.
    result
        Result of the task unit that produced the report.
    inputs
        Named input files (statistical maps, masks, ROIs).
    thresholds
        Threshold set used for the report.
    config
        Workflow configuration.

    Returns
    -------
    Path
        Path to the written JSON sidecar file.
    """
    try:
        from importlib.metadata import version as pkg_version

        software_version = pkg_version("roioverlap")
    except Exception:
        software_version = "unknown"

    sidecar: dict = {
        "task": result.task,
        "inputs": {name: str(path) for name, path in inputs.items()},
        "thresholds": {
            "zstat": [threshold.label for threshold in thresholds.zstat],
            "tfce": thresholds.tfce.label,
            "ica": thresholds.ica.label,
            "reference": thresholds.reference.label,
        },
        "hemisphere": {
            "axis": config.hemisphere_axis,
            "grid_width": config.hemisphere_grid_width,
            "first_index": config.hemisphere_first_index,
        },
        "template_space": config.template_space,
        "n_rows": result.n_rows,
        "n_degenerate": result.n_degenerate,
        "software_version": software_version,
        "timestamp": datetime.now(tz=timezone.utc).isoformat(),
    }

    json_path = csv_path.with_suffix(".json")
    json_path.write_text(json.dumps(sidecar, indent=2) + "\n")
    logger.debug("Wrote report sidecar to %s", json_path)
    return json_path
