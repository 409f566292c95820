"""High-level orchestration of ROI overlap reports for FEAT outputs.

This module reads a TOML configuration file, discovers fMRIPrep + FEAT
derivatives, prepares each subject's ROI library, runs one report unit per
task, and writes the reports into the subject's output directory.
"""

from __future__ import annotations

import argparse
import logging
from concurrent.futures import ProcessPoolExecutor, as_completed
from pathlib import Path

try:  # Python 3.11+
    import tomllib
except ModuleNotFoundError:  # pragma: no cover - fallback for older environments
    import tomli as tomllib  # type: ignore[import]

from roioverlap.exceptions import MissingInputError, RoiOverlapError
from roioverlap.interfaces.feat.loader import DEFAULT_SPACE, load_feat_inputs
from roioverlap.interfaces.models import (
    PostStatsConfig,
    SubjectInput,
    TaskContext,
    TaskResult,
    ThresholdSet,
)
from roioverlap.interfaces.planner import plan_report_grid
from roioverlap.interfaces.preprocess import derive_task_volumes, preprocess_subject, subject_output_dir
from roioverlap.interfaces.runner import build_report, compute_rows
from roioverlap.interfaces.shared import LOG_FORMAT, log_to_file, run_parallel_workflow
from roioverlap.interfaces.utils import (
    _as_list,
    _parse_log_level,
    parse_rois,
    parse_tasks,
    validate_config,
    write_report_sidecar,
)

LOGGER = logging.getLogger(__name__)


def _optional_float(value) -> float | None:
    if value is None or value is False or (isinstance(value, str) and value.lower() in {"", "none", "off"}):
        return None
    return float(value)


def load_config(args: argparse.Namespace) -> PostStatsConfig:
    """Parse a TOML configuration file and override with CLI arguments.

    The configuration accepts the following keys:
    - ``input_root``: Root directory of the fMRIPrep + FEAT derivatives.
    - ``output_dir``: Destination directory for the reports.
    - ``roi_dir``: Directory holding ``<name>.nii.gz`` ROI templates.
    - ``rois``: Optional list of ROI definitions (each with name, path).
    - ``tasks``: Optional list of task definitions (each with name and rois).
    - ``subjects`` / ``sessions``: Optional identifiers to process.
    - ``cluster_threshold``, ``secondary_threshold``, ``reference_threshold``,
      ``ica_threshold``: Threshold settings.
    - ``hemisphere_axis``, ``hemisphere_grid_width``, ``hemisphere_first_index``:
      Left-right split convention of the template grid.
    - ``reference_task``: Task whose Z map defines the ROI template grid.
    - ``template_space``: Space entity of the standard-space inputs.
    - ``force``: Whether to recompute existing outputs.
    - ``log_level``: Logging verbosity (e.g., ``INFO``, ``DEBUG``).
    - ``n_jobs``: Number of tasks processed in parallel within a subject.
    - ``n_procs``: Number of subjects processed in parallel.

    Raises
    ------
    ConfigurationError
        If the task table or ROI definitions are inconsistent.
    """

    data: dict = {}
    config_path = getattr(args, "config", None)
    if config_path:
        with Path(config_path).open("rb") as f:
            data = tomllib.load(f)

    input_root_str = getattr(args, "input_root", None) or data.get("input_root", ".")
    input_root = Path(str(input_root_str)).expanduser().resolve()
    output_dir_str = getattr(args, "output_dir", None) or data.get("output_dir", input_root / "post_stats")
    output_dir = Path(str(output_dir_str)).expanduser().resolve()
    subjects = getattr(args, "subjects", None) or _as_list(data.get("subjects"))
    sessions = getattr(args, "sessions", None) or _as_list(data.get("sessions"))

    roi_dir_value = getattr(args, "roi_dir", None) or data.get("roi_dir")
    roi_dir = Path(str(roi_dir_value)).expanduser().resolve() if roi_dir_value else None
    task_table = data.get("tasks")
    selected_tasks = getattr(args, "tasks", None)
    if task_table and all(isinstance(task, str) for task in task_table):
        selected_tasks = selected_tasks or task_table
        task_table = None
    tasks = parse_tasks(task_table, selected=selected_tasks)
    rois = parse_rois(
        data.get("rois"),
        roi_dir=roi_dir,
        names=dict.fromkeys(slot.roi for task in tasks for slot in task.rois),
    )

    cluster_threshold = getattr(args, "cluster_threshold", None)
    if cluster_threshold is None:
        cluster_threshold = float(data.get("cluster_threshold", 3.1))
    secondary_threshold = getattr(args, "secondary_threshold", None)
    if secondary_threshold is None:
        secondary_threshold = _optional_float(data.get("secondary_threshold", 2.35))
    ica_threshold = float(data.get("ica_threshold", cluster_threshold))

    grid_width = data.get("hemisphere_grid_width", 90)
    config = PostStatsConfig(
        input_root=input_root,
        output_dir=output_dir,
        roi_dir=roi_dir,
        rois=rois,
        tasks=tasks,
        subjects=subjects,
        sessions=sessions,
        cluster_threshold=float(cluster_threshold),
        secondary_threshold=secondary_threshold,
        reference_threshold=getattr(args, "reference_threshold", None) or data.get("reference_threshold"),
        ica_threshold=ica_threshold,
        hemisphere_axis=int(data.get("hemisphere_axis", 0)),
        hemisphere_grid_width=int(grid_width) if grid_width else None,
        hemisphere_first_index=int(data.get("hemisphere_first_index", 1)),
        reference_task=getattr(args, "reference_task", None) or data.get("reference_task"),
        template_space=data.get("template_space", DEFAULT_SPACE),
        force=bool(getattr(args, "force", False)) or bool(data.get("force", False)),
        log_level=_parse_log_level(getattr(args, "log_level", None) or data.get("log_level")),
        n_jobs=getattr(args, "n_jobs", None) or int(data.get("n_jobs", 1)),
        n_procs=getattr(args, "n_procs", None) or int(data.get("n_procs", 1)),
    )
    validate_config(config)
    return config


def _sidecar_inputs(context: TaskContext) -> dict[str, Path]:
    inputs: dict[str, Path] = {role.value: path for role, path in context.inputs.stat_maps.items()}
    inputs["brain_mask"] = context.inputs.brain_mask
    inputs["native_reference"] = context.subject.native_reference
    inputs["deformation_field"] = context.subject.deformation_field
    return inputs


def run_task_unit(context: TaskContext, config: PostStatsConfig, thresholds: ThresholdSet) -> TaskResult:
    """Derive map variants, compute and write the report of one task.

    Errors are logged to the task log and returned in the result rather than
    raised, so that every task of a subject reports back.
    """
    with log_to_file(context.log_path, config.log_level):
        label = f"{context.subject.context.label} task {context.task.name}"
        csv_path = context.csv_path
        if not config.force and csv_path.exists():
            LOGGER.info("Reusing existing report at %s", csv_path)
            return TaskResult(task=context.task.name, output_path=csv_path, reused=True)

        try:
            LOGGER.info("Starting post-stats for %s", label)
            volumes = derive_task_volumes(context, config, thresholds)
            cells = plan_report_grid(context.task, thresholds)
            rows = compute_rows(cells, volumes, context)
            report = build_report(rows)

            csv_path.parent.mkdir(parents=True, exist_ok=True)
            partial_path = csv_path.with_name(csv_path.name + ".part")
            report.to_csv(partial_path, index=False)
            partial_path.replace(csv_path)

            result = TaskResult(
                task=context.task.name,
                output_path=csv_path,
                n_rows=len(rows),
                n_degenerate=sum(row.degenerate for row in rows),
            )
            write_report_sidecar(csv_path, result, _sidecar_inputs(context), thresholds, config)
            if result.n_degenerate:
                LOGGER.warning(
                    "%d of %d rows for %s have an empty denominator", result.n_degenerate, result.n_rows, label
                )
            LOGGER.info("Completed post-stats for %s; results saved to %s", label, csv_path)
            return result  # noqa: TRY300
        except Exception as exc:
            LOGGER.exception("Post-stats failed for %s", label)
            return TaskResult(task=context.task.name, output_path=None, error=f"{type(exc).__name__}: {exc}")


def _run_task_units(contexts: list[TaskContext], config: PostStatsConfig, thresholds: ThresholdSet) -> list[TaskResult]:
    """Run all task units of a subject, in a process pool when ``n_jobs > 1``."""
    total = len(contexts)
    if config.n_jobs <= 1 or total <= 1:
        return [run_task_unit(context, config, thresholds) for context in contexts]

    results: dict[str, TaskResult] = {}
    with ProcessPoolExecutor(max_workers=min(config.n_jobs, total)) as executor:
        future_to_task = {
            executor.submit(run_task_unit, context, config, thresholds): context.task.name for context in contexts
        }
        for i, future in enumerate(as_completed(future_to_task), start=1):
            task = future_to_task[future]
            try:
                results[task] = future.result()
            except Exception as exc:
                LOGGER.exception("[%d/%d] Task worker for %s crashed", i, total, task)
                results[task] = TaskResult(task=task, output_path=None, error=f"{type(exc).__name__}: {exc}")
                continue
            LOGGER.info("[%d/%d] Finished task %s", i, total, task)
    return [results[context.task.name] for context in contexts]


def run_subject(subject: SubjectInput, config: PostStatsConfig) -> list[Path]:
    """Run preprocessing and every task unit of one subject.

    Returns
    -------
    list[Path]
        The per-task report CSVs.

    Raises
    ------
    RoiOverlapError
        If preprocessing fails, a task unit reports an error, or an expected
        report is missing after all units finished.
    """
    output_dir = subject_output_dir(config, subject)
    log_path = output_dir / "post_stats" / f"sub-{subject.context.subject_id}_post_stats.log"
    with log_to_file(log_path, config.log_level):
        LOGGER.info("Starting post-stats for %s", subject.context.label)
        try:
            thresholds = ThresholdSet.from_config(config)
            prepared = preprocess_subject(subject, config)
            contexts = [TaskContext(subject=prepared, inputs=task_input) for task_input in subject.tasks]

            results = _run_task_units(contexts, config, thresholds)
            failed = [result for result in results if not result.ok]
            if failed:
                details = "; ".join(f"{result.task}: {result.error}" for result in failed)
                raise RoiOverlapError(
                    f"{len(failed)} of {len(results)} tasks failed for {subject.context.label}: {details}"
                )

            for context in contexts:
                if not context.csv_path.exists():
                    raise MissingInputError("post-stats report", context.csv_path)
        except Exception:
            LOGGER.exception("Post-stats failed for %s", subject.context.label)
            raise

        LOGGER.info("All post-stats completed for %s", subject.context.label)
        return [context.csv_path for context in contexts]


def run_post_stats(config: PostStatsConfig, failed: list[str] | None = None) -> list[Path]:
    """Execute the full post-stats workflow from a parsed config.

    Labels of subjects whose run raised are appended to ``failed`` when given.
    """

    logging.basicConfig(level=config.log_level, format=LOG_FORMAT)
    LOGGER.info("Loading FEAT inputs from %s", config.input_root)

    subject_inputs = load_feat_inputs(
        root=config.input_root,
        tasks=config.tasks,
        subjects=config.subjects,
        sessions=config.sessions,
        space=config.template_space,
        max_workers=config.n_jobs,
    )
    if not subject_inputs:
        LOGGER.warning("No complete subject inputs discovered. Nothing to do.")
        return []

    return run_parallel_workflow(config, subject_inputs, run_subject, pipeline_name="post-stats", failed=failed)
