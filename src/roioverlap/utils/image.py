"""NIfTI loading and saving helpers."""

from __future__ import annotations

import logging
from pathlib import Path

import nibabel as nib
import numpy as np
from nibabel.spatialimages import SpatialImage

from roioverlap.exceptions import SpaceMismatchError, VolumeLoadError

logger = logging.getLogger(__name__)


def _read_image(path: str | Path) -> nib.Nifti1Image:
    """Open a NIfTI file lazily, raising :class:`VolumeLoadError` on failure."""
    path = Path(path)
    if not path.exists():
        raise VolumeLoadError(f"Volume does not exist: {path}")
    try:
        return nib.load(str(path))
    except Exception as exc:
        raise VolumeLoadError(f"Could not read volume {path}: {exc}") from exc


def _load_nifti(img: nib.Nifti1Image | str | Path, volume_index: int | None = None) -> nib.Nifti1Image:
    """Return a 3D NIfTI image from an image object or a path.

    A 4D image whose last axis has length one is squeezed to 3D; other 4D
    images are accepted only when ``volume_index`` selects one volume.

    Parameters
    ----------
    img : nib.Nifti1Image | str | Path
        Image object or path to a NIfTI file.
    volume_index : int | None, optional
        Volume to extract from a 4D image. When ``None`` only singleton 4D
        images are accepted.

    Returns
    -------
    nib.Nifti1Image
        The loaded 3D image.

    Raises
    ------
    VolumeLoadError
        If the file is missing, unreadable, or not a 3D scalar grid.
    """
    if isinstance(img, SpatialImage):
        loaded = img
    else:
        loaded = _read_image(img)

    if len(loaded.shape) == 4 and (loaded.shape[3] == 1 or volume_index is not None):
        index = volume_index or 0
        if index >= loaded.shape[3]:
            raise VolumeLoadError(f"Volume index {index} out of range for shape {loaded.shape}")
        logger.debug("Extracting volume %d from 4D image of shape %s", index, loaded.shape)
        data = np.asarray(loaded.dataobj[..., index])
        loaded = nib.Nifti1Image(data, loaded.affine)
    if len(loaded.shape) != 3:
        raise VolumeLoadError(f"Expected a 3D volume, got shape {loaded.shape}")
    return loaded


def _save_nifti(img: nib.Nifti1Image, path: str | Path) -> Path:
    """Write an image to a new file, creating parent directories."""
    out_path = Path(path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    nib.save(img, str(out_path))
    logger.debug("Wrote volume to %s", out_path)
    return out_path


def _same_grid(first: nib.Nifti1Image, second: nib.Nifti1Image) -> bool:
    return first.shape[:3] == second.shape[:3] and np.allclose(first.affine, second.affine)


def _check_same_grid(first: nib.Nifti1Image, second: nib.Nifti1Image) -> None:
    """Raise :class:`SpaceMismatchError` unless both images share shape and affine."""
    if first.shape[:3] != second.shape[:3]:
        raise SpaceMismatchError(first.shape, second.shape, detail="shapes")
    if not np.allclose(first.affine, second.affine):
        raise SpaceMismatchError(first.shape, second.shape, detail="affines")
