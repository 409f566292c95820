"""Prepare ROI masks and statistical map variants for overlap reports.

Subject preprocessing runs once per subject, before any task:

1. skull-strip the native T1w with the anatomical brain mask;
2. resample every ROI onto the grid of the reference task's Z map;
3. split each ROI into hemispheres;
4. warp every ROI variant into native space (nearest neighbour).

Task preprocessing then derives, per task, the brain-masked Z maps, the
secondary Z threshold, the hemisphere splits of every statistical map and
their native-space counterparts (linear interpolation).

Every derived volume is written under the subject's output directory and
reused on later runs unless ``force`` is set or the settings recorded next
to the cached volumes (hemisphere convention, template space, ROI grid)
have changed.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from dataclasses import replace
from pathlib import Path

import nibabel as nib

from roioverlap.exceptions import MissingInputError
from roioverlap.interfaces.models import (
    CoordinateSpace,
    PostStatsConfig,
    PreparedSubject,
    RoiDefinition,
    StatMapRole,
    SubjectInput,
    TaskContext,
    TaskVolumes,
    ThresholdSet,
)
from roioverlap.overlap.hemisphere import Hemisphere, hemisphere_variants
from roioverlap.overlap.volume import VoxelSemantic, load_volume, mask_apply, save_volume, threshold_above
from roioverlap.spatial.transform import inverse_warp_to_native, resample_to_grid
from roioverlap.utils import _read_image

logger = logging.getLogger(__name__)

_CACHE_RECORD = "cache_settings.json"

_HEMI_ENTITY = {Hemisphere.WHOLE: None, Hemisphere.LEFT: "L", Hemisphere.RIGHT: "R"}

_ROLE_SEMANTIC = {
    StatMapRole.ZSTAT: VoxelSemantic.CONTINUOUS,
    StatMapRole.THRESH_ZSTAT: VoxelSemantic.CONTINUOUS,
    StatMapRole.TFCE_CORRP: VoxelSemantic.PROBABILITY,
    StatMapRole.TSTAT: VoxelSemantic.CONTINUOUS,
    StatMapRole.ICA: VoxelSemantic.CONTINUOUS,
    StatMapRole.ICA_THRESH: VoxelSemantic.CONTINUOUS,
}


def _space_entity(space: CoordinateSpace, config: PostStatsConfig) -> str:
    return config.template_space if space is CoordinateSpace.MNI else "T1w"


def _desc_entity(value: str) -> str:
    """Return ``value`` reduced to the characters allowed in a BIDS label."""
    return re.sub(r"[^A-Za-z0-9]", "", value)


def _build_filename(prefix: str, space: str, hemisphere: Hemisphere, desc: str, suffix: str) -> str:
    entities = [prefix, f"space-{space}"]
    hemi = _HEMI_ENTITY[Hemisphere(hemisphere)]
    if hemi:
        entities.append(f"hemi-{hemi}")
    entities.append(f"desc-{desc}")
    return "_".join([*entities, suffix]) + ".nii.gz"


def _cache_settings(config: PostStatsConfig, **extra) -> dict:
    """Settings that change the content of cached volumes without changing their names."""
    return {
        "template_space": config.template_space,
        "hemisphere": {
            "axis": config.hemisphere_axis,
            "grid_width": config.hemisphere_grid_width,
            "first_index": config.hemisphere_first_index,
        },
        **extra,
    }


def _stale_cache(directory: Path, settings: dict) -> bool:
    """Return True when ``directory`` holds volumes built with other settings."""
    record = directory / _CACHE_RECORD
    if not record.exists():
        return any(directory.glob("*.nii.gz"))
    try:
        return json.loads(record.read_text()) != settings
    except ValueError:
        logger.warning("Unreadable cache record %s; rebuilding", record)
        return True


def _open_cache(directory: Path, settings: dict, config: PostStatsConfig) -> PostStatsConfig:
    """Return ``config``, forcing a rebuild when the cache in ``directory`` is stale.

    The record is removed until :func:`_close_cache` writes it again, so an
    interrupted rebuild is detected on the next run.
    """
    if not config.force and _stale_cache(directory, settings):
        logger.info("Volumes in %s were built with other settings; rebuilding", directory)
        config = replace(config, force=True)
    (directory / _CACHE_RECORD).unlink(missing_ok=True)
    return config


def _close_cache(directory: Path, settings: dict) -> None:
    directory.mkdir(parents=True, exist_ok=True)
    (directory / _CACHE_RECORD).write_text(json.dumps(settings, indent=2))


def _materialize(path: Path, build: Callable[[], nib.Nifti1Image], force: bool) -> Path:
    """Write ``build()`` to ``path`` unless a previous run already did."""
    if not force and path.exists():
        logger.debug("Reusing existing volume at %s", path)
        return path
    return save_volume(build(), path)


def _require(path: Path, description: str) -> Path:
    if not Path(path).exists():
        raise MissingInputError(description, path)
    return Path(path)


def subject_output_dir(config: PostStatsConfig, subject: SubjectInput) -> Path:
    """Return ``<output_dir>/sub-<id>[/ses-<id>]``."""
    return config.output_dir / subject.context.relative_dir


def skull_strip(subject: SubjectInput, output_dir: Path, force: bool = False) -> Path:
    """Mask the native T1w with the anatomical brain mask.

    Returns
    -------
    Path
        Path of the skull-stripped T1w, used as the native reference grid.
    """
    t1w = _require(subject.t1w, "preprocessed T1w")
    brain_mask = _require(subject.brain_mask, "anatomical brain mask")
    out_path = output_dir / "anat" / f"{subject.context.label}_desc-brain_T1w.nii.gz"
    logger.info("Skull-stripping T1w for %s", subject.context.label)
    return _materialize(out_path, lambda: mask_apply(load_volume(t1w), load_volume(brain_mask)), force)


def _prepare_roi(
    roi: RoiDefinition,
    reference_grid: Path,
    native_reference: Path,
    deformation_field: Path,
    roi_dir: Path,
    config: PostStatsConfig,
) -> dict[tuple[str, CoordinateSpace, Hemisphere], Path]:
    """Resample, split and warp one ROI; return its six variants."""
    template = _require(roi.nifti_path, f"ROI template {roi.name!r}")
    space_mni = _space_entity(CoordinateSpace.MNI, config)
    space_native = _space_entity(CoordinateSpace.NATIVE, config)

    whole_path = _materialize(
        roi_dir / _build_filename(roi.name, space_mni, Hemisphere.WHOLE, "resampled", "mask"),
        lambda: resample_to_grid(template, reference_grid, semantic=VoxelSemantic.LABEL),
        config.force,
    )
    variants = hemisphere_variants(load_volume(whole_path), config.boundary)

    paths: dict[tuple[str, CoordinateSpace, Hemisphere], Path] = {}
    for hemisphere, img in variants.items():
        if hemisphere is Hemisphere.WHOLE:
            mni_path = whole_path
        else:
            mni_path = _materialize(
                roi_dir / _build_filename(roi.name, space_mni, hemisphere, "resampled", "mask"),
                lambda img=img: img,
                config.force,
            )
        native_path = _materialize(
            roi_dir / _build_filename(roi.name, space_native, hemisphere, "warped", "mask"),
            lambda mni_path=mni_path: inverse_warp_to_native(
                mni_path,
                native_reference,
                deformation_field,
                semantic=VoxelSemantic.LABEL,
            ),
            config.force,
        )
        paths[(roi.name, CoordinateSpace.MNI, hemisphere)] = mni_path
        paths[(roi.name, CoordinateSpace.NATIVE, hemisphere)] = native_path
    return paths


def preprocess_subject(subject: SubjectInput, config: PostStatsConfig) -> PreparedSubject:
    """Build the subject's ROI library in template and native space.

    Parameters
    ----------
    subject
        Discovered inputs of the subject/session.
    config
        Workflow configuration (ROI definitions, reference task, hemisphere
        convention, ``force``).

    Returns
    -------
    PreparedSubject
        ROI masks for every (ROI, space, hemisphere) plus the native reference.

    Raises
    ------
    MissingInputError
        If the T1w, a brain mask, the deformation field, the reference Z map or
        an ROI template is missing.
    TransformError
        If an ROI cannot be warped into native space.
    """
    output_dir = subject_output_dir(config, subject)
    deformation_field = _require(subject.deformation_field, "template-to-native transform")
    native_reference = skull_strip(subject, output_dir, force=config.force)
    reference_task = subject.task(config.resolved_reference_task)
    reference_grid = _require(reference_task.stat_maps[StatMapRole.ZSTAT], "reference Z map")

    needed = {slot.roi for task_input in subject.tasks for slot in task_input.task.rois}
    roi_dir = output_dir / "ROI"
    settings = _cache_settings(config, reference_grid=str(reference_grid))
    roi_config = _open_cache(roi_dir, settings, config)
    rois: dict[tuple[str, CoordinateSpace, Hemisphere], Path] = {}
    for roi in config.rois or []:
        if roi.name not in needed:
            continue
        logger.info("Preparing ROI %s for %s", roi.name, subject.context.label)
        rois.update(_prepare_roi(roi, reference_grid, native_reference, deformation_field, roi_dir, roi_config))
    _close_cache(roi_dir, settings)

    return PreparedSubject(
        context=subject.context,
        output_dir=output_dir,
        native_reference=native_reference,
        deformation_field=deformation_field,
        rois=rois,
    )


def _split_and_warp(
    key,
    source: Path,
    semantic: VoxelSemantic,
    prefix: str,
    desc: str,
    context: TaskContext,
    config: PostStatsConfig,
    out: dict,
) -> None:
    """Record the hemisphere variants of ``source`` in both spaces under ``out[(key, space, hemi)]``."""
    space_mni = _space_entity(CoordinateSpace.MNI, config)
    space_native = _space_entity(CoordinateSpace.NATIVE, config)
    variants = hemisphere_variants(load_volume(source), config.boundary)
    for hemisphere, img in variants.items():
        if hemisphere is Hemisphere.WHOLE:
            mni_path = source
        else:
            mni_path = _materialize(
                context.work_dir / _build_filename(prefix, space_mni, hemisphere, desc, "stat"),
                lambda img=img: img,
                config.force,
            )
        native_path = _materialize(
            context.work_dir / _build_filename(prefix, space_native, hemisphere, desc, "stat"),
            lambda mni_path=mni_path: inverse_warp_to_native(
                mni_path,
                context.subject.native_reference,
                context.subject.deformation_field,
                semantic=semantic,
            ),
            config.force,
        )
        out[(key, CoordinateSpace.MNI, hemisphere)] = mni_path
        out[(key, CoordinateSpace.NATIVE, hemisphere)] = native_path


def derive_task_volumes(context: TaskContext, config: PostStatsConfig, thresholds: ThresholdSet) -> TaskVolumes:
    """Derive every map variant a task report needs.

    The Z map and the cluster-thresholded Z map are restricted to the task
    brain mask; Z thresholds that are not supplied upstream are derived from
    the masked Z map. Every map is then split into hemispheres and each
    variant is warped into native space with linear interpolation.

    Raises
    ------
    MissingInputError
        If a statistical input or the task brain mask is missing.
    SpaceMismatchError
        If a statistical map is not on the grid of the task brain mask.
    """
    inputs = context.inputs
    task_mask = _require(inputs.brain_mask, f"task brain mask for {context.task.name}")
    sources = {
        role: _require(path, f"{role.value} map for {context.task.name}") for role, path in inputs.stat_maps.items()
    }
    prefix = f"{context.subject.context.label}_task-{context.task.name}"
    settings = _cache_settings(config)
    config = _open_cache(context.work_dir, settings, config)
    space_mni = _space_entity(CoordinateSpace.MNI, config)

    def _masked(role: StatMapRole) -> Path:
        return _materialize(
            context.work_dir / _build_filename(prefix, space_mni, Hemisphere.WHOLE, f"{role.value}masked", "stat"),
            lambda: mask_apply(load_volume(sources[role], volume_index=0), load_volume(task_mask)),
            config.force,
        )

    def _first_volume(role: StatMapRole) -> Path:
        img = _read_image(sources[role])
        if len(img.shape) == 3:
            return sources[role]
        return _materialize(
            context.work_dir / _build_filename(prefix, space_mni, Hemisphere.WHOLE, role.value, "stat"),
            lambda: load_volume(sources[role], volume_index=0),
            config.force,
        )

    logger.info("Deriving map variants for %s task %s", context.subject.context.label, context.task.name)
    whole = {
        StatMapRole.ZSTAT: _masked(StatMapRole.ZSTAT),
        StatMapRole.THRESH_ZSTAT: _masked(StatMapRole.THRESH_ZSTAT),
        StatMapRole.TFCE_CORRP: _first_volume(StatMapRole.TFCE_CORRP),
        StatMapRole.TSTAT: _first_volume(StatMapRole.TSTAT),
        StatMapRole.ICA: _first_volume(StatMapRole.ICA),
        StatMapRole.ICA_THRESH: _first_volume(StatMapRole.ICA_THRESH),
    }

    stat_maps: dict = {}
    for role, source in whole.items():
        _split_and_warp(role, source, _ROLE_SEMANTIC[role], prefix, role.value, context, config, stat_maps)

    thresholded: dict = {}
    for threshold in thresholds.zstat:
        if threshold.precomputed:
            for (role, space, hemisphere), path in stat_maps.items():
                if role is StatMapRole.THRESH_ZSTAT:
                    thresholded[(threshold.label, space, hemisphere)] = path
            continue
        derived = _materialize(
            context.work_dir
            / _build_filename(prefix, space_mni, Hemisphere.WHOLE, f"thresh{_desc_entity(threshold.label)}", "stat"),
            lambda threshold=threshold: threshold_above(load_volume(whole[StatMapRole.ZSTAT]), threshold.cutoff),
            config.force,
        )
        _split_and_warp(
            threshold.label,
            derived,
            VoxelSemantic.CONTINUOUS,
            prefix,
            f"thresh{_desc_entity(threshold.label)}",
            context,
            config,
            thresholded,
        )

    _close_cache(context.work_dir, settings)
    return TaskVolumes(stat_maps=stat_maps, thresholded=thresholded)
