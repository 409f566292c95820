"""IO utilities for discovering fMRIPrep + FEAT post-stats inputs."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path

from roioverlap.exceptions import MissingInputError
from roioverlap.interfaces.models import (
    StatMapRole,
    SubjectContext,
    SubjectInput,
    TaskDefinition,
    TaskInput,
)

logger = logging.getLogger(__name__)

# Default space of the fMRIPrep/FEAT standard-space outputs
DEFAULT_SPACE = "MNI152NLin6Asym"

# Files inside ``fsl_stats/sub-<id>_task-<task>_contrasts.feat``
FEAT_PATTERNS: dict[StatMapRole, str] = {
    StatMapRole.ZSTAT: "stats/zstat1.nii.gz",
    StatMapRole.THRESH_ZSTAT: "thresh_zstat1.nii.gz",
    StatMapRole.TFCE_CORRP: "randomise_time_series_tfce_corrp_tstat1.nii.gz",
    StatMapRole.TSTAT: "randomise_time_series_tstat1.nii.gz",
    StatMapRole.ICA: "sub-{subject}_{task}_dual_regression_maps.nii.gz",
    StatMapRole.ICA_THRESH: "sub-{subject}_{task}_ica_thresholded.nii.gz",
}


def _discover_subjects(root: Path) -> list[str]:
    """Discover subject identifiers from directory structure.

    Parameters
    ----------
    root
        Root directory of the derivatives.

    Returns
    -------
    list[str]
        List of subject identifiers (without 'sub-' prefix).
    """
    subjects = []
    for path in root.glob("sub-*"):
        if path.is_dir():
            subjects.append(path.name.replace("sub-", ""))
    return sorted(subjects)


def _discover_sessions(root: Path, subject: str) -> list[str | None]:
    """Discover session identifiers for a subject.

    Returns
    -------
    list[str | None]
        List of session identifiers (without 'ses-' prefix), or [None] if no sessions.
    """
    subject_dir = root / f"sub-{subject}"
    sessions = []
    for path in subject_dir.glob("ses-*"):
        if path.is_dir():
            sessions.append(path.name.replace("ses-", ""))
    return sorted(sessions) if sessions else [None]


def _find_one(directory: Path, pattern: str, description: str, exclude: str | None = None) -> Path:
    """Return the first file in ``directory`` matching ``pattern``.

    Raises
    ------
    MissingInputError
        If nothing matches.
    """
    matches = sorted(
        path for path in directory.glob(pattern) if path.is_file() and not (exclude and exclude in path.name)
    )
    if not matches:
        raise MissingInputError(description, directory / pattern)
    if len(matches) > 1:
        logger.debug("Multiple candidates for %s in %s; using %s", description, directory, matches[0].name)
    return matches[0]


def discover_task_inputs(
    subject_dir: Path,
    subject: str,
    task: TaskDefinition,
    space: str = DEFAULT_SPACE,
) -> TaskInput:
    """Locate the FEAT, randomise and dual-regression outputs of one task.

    Parameters
    ----------
    subject_dir
        ``<root>/sub-<id>[/ses-<id>]`` directory.
    subject
        Subject identifier (without 'sub-' prefix).
    task
        Task definition.
    space
        Template space entity of the functional brain mask.

    Returns
    -------
    TaskInput
        Paths of the task's statistical inputs.

    Raises
    ------
    MissingInputError
        If the task brain mask or any statistical map is missing.
    """
    brain_mask = _find_one(
        subject_dir / "func",
        f"*task-{task.name}_*space-{space}_*desc-brain_mask.nii*",
        f"task brain mask for {task.name}",
    )
    feat_dir = subject_dir / "fsl_stats" / f"sub-{subject}_task-{task.name}_contrasts.feat"
    stat_maps: dict[StatMapRole, Path] = {}
    for role, pattern in FEAT_PATTERNS.items():
        path = feat_dir / pattern.format(subject=subject, task=task.name)
        if not path.exists():
            raise MissingInputError(f"{role.value} map for {task.name}", path)
        stat_maps[role] = path
    return TaskInput(task=task, brain_mask=brain_mask, stat_maps=stat_maps)


def discover_subject_inputs(
    root: Path,
    subject: str,
    session: str | None,
    tasks: Sequence[TaskDefinition],
    space: str = DEFAULT_SPACE,
) -> SubjectInput:
    """Locate every input of one subject/session.

    Raises
    ------
    MissingInputError
        If an anatomical input, the deformation field or a task input is missing.
    """
    context = SubjectContext(subject_id=subject, session_id=session)
    subject_dir = root / context.relative_dir
    anat_dir = subject_dir / "anat"
    t1w = _find_one(anat_dir, "*desc-preproc_T1w.nii*", "preprocessed T1w", exclude="space-")
    brain_mask = _find_one(anat_dir, "*desc-brain_mask.nii*", "anatomical brain mask", exclude="space-")
    deformation_field = _find_one(
        anat_dir,
        f"*from-{space}_to-T1w_mode-image_xfm.h5",
        "template-to-native transform",
    )
    task_inputs = tuple(discover_task_inputs(subject_dir, subject, task, space=space) for task in tasks)
    return SubjectInput(
        context=context,
        t1w=t1w,
        brain_mask=brain_mask,
        deformation_field=deformation_field,
        tasks=task_inputs,
    )


def _process_subject_session(
    root: Path,
    subject_id: str,
    session_id: str | None,
    tasks: Sequence[TaskDefinition],
    space: str,
) -> SubjectInput | None:
    """Discover inputs of a single subject/session, logging failures."""
    try:
        return discover_subject_inputs(root, subject_id, session_id, tasks, space=space)
    except MissingInputError:
        logger.exception("Skipping sub-%s ses-%s: incomplete inputs", subject_id, session_id)
        return None


def load_feat_inputs(
    root: Path,
    tasks: Sequence[TaskDefinition],
    subjects: Iterable[str] | None = None,
    sessions: Iterable[str] | None = None,
    space: str = DEFAULT_SPACE,
    max_workers: int | None = None,
) -> list[SubjectInput]:
    """Discover post-stats inputs for subjects/sessions of a derivative tree.

    Parameters
    ----------
    root
        Root directory holding ``sub-<id>`` folders.
    tasks
        Tasks to locate for every subject.
    subjects
        Optional list of subject identifiers to process.
    sessions
        Optional list of session identifiers to process.
    space
        Template space entity of the standard-space inputs.
    max_workers
        Threads used for discovery.

    Returns
    -------
    list[SubjectInput]
        One entry per complete subject/session, sorted by label.
    """
    root = Path(root)
    subj_list = [s.replace("sub-", "") for s in subjects] if subjects else _discover_subjects(root)
    if not subj_list:
        logger.warning("No subjects found in %s", root)
        return []

    logger.info("Discovered %d subjects. Processing with up to %s workers.", len(subj_list), max_workers or "unlimited")

    jobs = []
    for subject_id in subj_list:
        ses_list = [s.replace("ses-", "") for s in sessions] if sessions else _discover_sessions(root, subject_id)
        for session_id in ses_list or [None]:
            jobs.append((subject_id, session_id))

    subject_inputs: list[SubjectInput] = []
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = {
            executor.submit(_process_subject_session, root, subject_id, session_id, tasks, space)
            for subject_id, session_id in jobs
        }
        for future in as_completed(futures):
            result = future.result()
            if result:
                subject_inputs.append(result)

    return sorted(subject_inputs, key=lambda item: item.context.label)
