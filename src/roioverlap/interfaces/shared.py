"""Shared orchestration utilities for pipeline interfaces.

This module holds the parallel subject loop and the per-unit log files used
by the post-stats workflow.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from concurrent.futures import ProcessPoolExecutor, as_completed
from contextlib import contextmanager
from pathlib import Path

from roioverlap.interfaces.models import PostStatsConfig, SubjectInput

LOGGER = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"

#: Logger that receives every record emitted by the package.
PACKAGE_LOGGER = "roioverlap"


@contextmanager
def log_to_file(path: Path, level: int = logging.INFO) -> Iterator[Path]:
    """Copy package log records to ``path`` for the duration of the block.

    Parameters
    ----------
    path
        Log file; parent directories are created and the file is appended to.
    level
        Minimum level written to the file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, mode="a")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    previous_level = package_logger.level
    if previous_level == logging.NOTSET or previous_level > level:
        package_logger.setLevel(level)
    package_logger.addHandler(handler)
    try:
        yield path
    finally:
        package_logger.removeHandler(handler)
        package_logger.setLevel(previous_level)
        handler.close()


def run_parallel_workflow(
    config: PostStatsConfig,
    subject_inputs: list[SubjectInput],
    run_subject_fn: Callable[[SubjectInput, PostStatsConfig], list[Path]],
    pipeline_name: str = "post-stats",
    failed: list[str] | None = None,
) -> list[Path]:
    """Execute a workflow over all subjects, with optional parallelism.

    Respects ``config.n_procs``: when > 1, subjects are processed in a
    :class:`~concurrent.futures.ProcessPoolExecutor`; otherwise they are
    processed sequentially. A failing subject is logged and does not stop the
    others.

    Parameters
    ----------
    config
        Parsed pipeline configuration.
    subject_inputs
        List of per-subject/session inputs.
    run_subject_fn
        Callable that runs the workflow for a single subject and returns a
        list of output paths. Signature: ``(subject, config) -> list[Path]``.
    pipeline_name
        Human-readable name used in log messages.
    failed
        Optional list that receives the label of every failed subject.

    Returns
    -------
    list[Path]
        All output paths produced across all subjects.
    """
    outputs: list[Path] = []
    failures: list[str] = [] if failed is None else failed
    total = len(subject_inputs)

    if config.n_procs > 1:
        LOGGER.info("Running %s across subjects with %d processes", pipeline_name, config.n_procs)
        with ProcessPoolExecutor(max_workers=config.n_procs) as executor:
            future_to_subject = {
                executor.submit(run_subject_fn, subject, config): subject for subject in subject_inputs
            }
            for i, future in enumerate(as_completed(future_to_subject), start=1):
                subject = future_to_subject[future]
                try:
                    result = future.result()
                    outputs.extend(result)
                    LOGGER.info(
                        "[%d/%d] Finished %s for %s (%d outputs)",
                        i,
                        total,
                        pipeline_name,
                        subject.context.label,
                        len(result),
                    )
                except Exception:
                    failures.append(subject.context.label)
                    LOGGER.exception(
                        "[%d/%d] Failed %s for %s",
                        i,
                        total,
                        pipeline_name,
                        subject.context.label,
                    )
    else:
        for i, subject in enumerate(subject_inputs, start=1):
            try:
                result = run_subject_fn(subject, config)
                outputs.extend(result)
                LOGGER.info(
                    "[%d/%d] Finished %s for %s (%d outputs)",
                    i,
                    total,
                    pipeline_name,
                    subject.context.label,
                    len(result),
                )
            except Exception:
                failures.append(subject.context.label)
                LOGGER.exception(
                    "[%d/%d] Failed %s for %s",
                    i,
                    total,
                    pipeline_name,
                    subject.context.label,
                )

    LOGGER.info("Finished writing %d %s reports", len(outputs), pipeline_name)
    if failures:
        LOGGER.error("%s failed for %d of %d subjects: %s", pipeline_name, len(failures), total, ", ".join(failures))
    return outputs
