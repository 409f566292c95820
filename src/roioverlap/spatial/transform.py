"""Move volumes between template space and a subject's native space.

Two operations are provided:

- :func:`resample_to_grid` brings a template-space volume onto the exact voxel
  grid of another template-space image (rigid resampling through the image
  affines).
- :func:`inverse_warp_to_native` applies a subject's precomputed nonlinear
  template-to-native transform (an ITK/ANTs composite ``.h5`` file) to carry a
  volume into native anatomical space.

Interpolation follows the voxel semantic of the volume: label volumes are
always resampled with nearest neighbour so they stay binary, continuous and
probability maps use linear interpolation with zero fill outside the field of
view.
"""

from __future__ import annotations

import logging
from enum import Enum
from functools import lru_cache
from pathlib import Path

import nibabel as nib
import numpy as np
from nilearn.image import resample_to_img
from nitransforms.manip import load as load_chain
from nitransforms.resampling import apply as apply_transform

from roioverlap.exceptions import TransformError
from roioverlap.overlap.volume import VoxelSemantic, is_binary
from roioverlap.utils import _load_nifti

logger = logging.getLogger(__name__)


class InterpolationMethod(str, Enum):
    """Supported interpolation methods for spatial transformations."""

    NEAREST = "nearest"
    LINEAR = "linear"


_SPLINE_ORDER = {
    InterpolationMethod.NEAREST: 0,
    InterpolationMethod.LINEAR: 1,
}

_NILEARN_INTERPOLATION = {
    InterpolationMethod.NEAREST: "nearest",
    InterpolationMethod.LINEAR: "continuous",
}


def select_interpolation(
    semantic: VoxelSemantic,
    method: InterpolationMethod | str | None = None,
) -> InterpolationMethod:
    """Select the interpolation method for a volume with the given semantic.

    Parameters
    ----------
    semantic : VoxelSemantic
        Declared meaning of the voxel values.
    method : InterpolationMethod | str | None, optional
        Explicit override. Only nearest neighbour is accepted for label volumes.

    Returns
    -------
    InterpolationMethod
        Nearest neighbour for labels, linear otherwise.

    Raises
    ------
    TransformError
        If a non-nearest method is requested for a label volume.
    """
    semantic = VoxelSemantic(semantic)
    default = InterpolationMethod.NEAREST if semantic is VoxelSemantic.LABEL else InterpolationMethod.LINEAR
    if method is None:
        return default

    method = InterpolationMethod(method)
    if semantic is VoxelSemantic.LABEL and method is not InterpolationMethod.NEAREST:
        raise TransformError(
            f"Label volumes must be resampled with nearest-neighbour interpolation, not {method.value}."
        )
    return method


def resample_to_grid(
    source: nib.Nifti1Image | str | Path,
    reference: nib.Nifti1Image | str | Path,
    semantic: VoxelSemantic = VoxelSemantic.LABEL,
    interpolation: InterpolationMethod | str | None = None,
) -> nib.Nifti1Image:
    """Resample a template-space volume onto the voxel grid of ``reference``.

    Parameters
    ----------
    source : nib.Nifti1Image | str | Path
        Volume to resample.
    reference : nib.Nifti1Image | str | Path
        Image defining the target shape and affine.
    semantic : VoxelSemantic, optional
        Voxel semantic of ``source``, by default ``LABEL``.
    interpolation : InterpolationMethod | str | None, optional
        Explicit interpolation override.

    Returns
    -------
    nib.Nifti1Image
        ``source`` on the grid of ``reference``.
    """
    source_img = _load_nifti(source)
    reference_img = _load_nifti(reference)
    method = select_interpolation(semantic, interpolation)
    logger.debug(
        "Resampling %s volume %s -> %s using %s interpolation",
        VoxelSemantic(semantic).value,
        source_img.shape,
        reference_img.shape,
        method.value,
    )
    resampled = resample_to_img(
        source_img,
        reference_img,
        interpolation=_NILEARN_INTERPOLATION[method],
        fill_value=0,
        force_resample=True,
        copy_header=True,
    )
    return nib.Nifti1Image(np.asarray(resampled.get_fdata(), dtype=np.float32), reference_img.affine)


@lru_cache(maxsize=4)
def _load_deformation(deformation_field: str):
    """Load a composite ITK transform as a nitransforms chain."""
    return load_chain(deformation_field, fmt="itk")


def _apply_deformation(transform, source_img: nib.Nifti1Image, reference_img: nib.Nifti1Image, order: int):
    return apply_transform(
        transform,
        source_img,
        reference=reference_img,
        order=order,
        mode="constant",
        cval=0.0,
    )


def inverse_warp_to_native(
    source: nib.Nifti1Image | str | Path,
    native_reference: nib.Nifti1Image | str | Path,
    deformation_field: str | Path,
    semantic: VoxelSemantic,
    interpolation: InterpolationMethod | str | None = None,
) -> nib.Nifti1Image:
    """Carry a template-space volume into a subject's native space.

    Parameters
    ----------
    source : nib.Nifti1Image | str | Path
        Template-space volume.
    native_reference : nib.Nifti1Image | str | Path
        Native-space image defining the output grid (skull-stripped T1w).
    deformation_field : str | Path
        Template-to-native composite transform (``*_xfm.h5``).
    semantic : VoxelSemantic
        Voxel semantic of ``source``; selects the interpolation method.
    interpolation : InterpolationMethod | str | None, optional
        Explicit interpolation override.

    Returns
    -------
    nib.Nifti1Image
        The volume resampled onto the native reference grid.

    Raises
    ------
    TransformError
        If the deformation field or the native reference is missing, or the
        transform cannot be applied.
    """
    deformation_field = Path(deformation_field)
    if not deformation_field.exists():
        raise TransformError(f"Deformation field does not exist: {deformation_field}")
    if isinstance(native_reference, (str, Path)) and not Path(native_reference).exists():
        raise TransformError(f"Native reference image does not exist: {native_reference}")

    method = select_interpolation(semantic, interpolation)
    source_img = _load_nifti(source)
    reference_img = _load_nifti(native_reference)

    logger.debug(
        "Warping %s volume to native space with %s using %s interpolation",
        VoxelSemantic(semantic).value,
        deformation_field.name,
        method.value,
    )
    try:
        transform = _load_deformation(str(deformation_field))
        warped = _apply_deformation(transform, source_img, reference_img, _SPLINE_ORDER[method])
    except TransformError:
        raise
    except Exception as exc:
        raise TransformError(f"Failed to apply {deformation_field}: {exc}") from exc

    data = np.nan_to_num(np.asarray(warped.get_fdata(), dtype=np.float32), nan=0.0)
    result = nib.Nifti1Image(data, reference_img.affine)
    if VoxelSemantic(semantic) is VoxelSemantic.LABEL and is_binary(source_img) and not is_binary(result):
        raise TransformError("Nearest-neighbour warp of a binary mask produced non-binary values.")
    return result
