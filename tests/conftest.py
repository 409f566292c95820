"""Shared fixtures: a synthetic fMRIPrep + FEAT derivative tree."""

from __future__ import annotations

from pathlib import Path

import nibabel as nib
import numpy as np
import pytest
from nitransforms.linear import Affine

from roioverlap.spatial import transform

SHAPE = (12, 6, 6)
SPACE = "MNI152NLin6Asym"


def _save(path: Path, data: np.ndarray) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    nib.save(nib.Nifti1Image(np.asarray(data, dtype=np.float32), np.eye(4)), path)
    return path


def _slab(x_start: int, x_stop: int, value: float, y_stop: int = SHAPE[1]) -> np.ndarray:
    data = np.zeros(SHAPE, dtype=np.float32)
    data[x_start:x_stop, :y_stop, :] = value
    return data


def make_subject(root: Path, subject: str = "01", session: str | None = None, tasks: tuple[str, ...] = ("lang",)) -> Path:
    """Write the inputs of one subject/session under ``root`` and return its directory.

    The Z map is 4.0 for x < 3, 2.5 for 3 <= x < 6 and 0.5 elsewhere; the
    cluster-thresholded map keeps x < 3. The TFCE map is significant for x < 3
    and the thresholded ICA map covers 6 <= x < 9.
    """
    subject_dir = root / f"sub-{subject}"
    if session:
        subject_dir = subject_dir / f"ses-{session}"
    label = f"sub-{subject}" + (f"_ses-{session}" if session else "")

    anat = subject_dir / "anat"
    _save(anat / f"{label}_desc-preproc_T1w.nii.gz", np.full(SHAPE, 100.0))
    _save(anat / f"{label}_desc-brain_mask.nii.gz", np.ones(SHAPE))
    _save(anat / f"{label}_space-{SPACE}_desc-preproc_T1w.nii.gz", np.ones(SHAPE))
    (anat / f"{label}_from-{SPACE}_to-T1w_mode-image_xfm.h5").write_bytes(b"")

    zstat = np.full(SHAPE, 0.5, dtype=np.float32)
    zstat[:6] = 2.5
    zstat[:3] = 4.0
    for task in tasks:
        _save(subject_dir / "func" / f"{label}_task-{task}_space-{SPACE}_desc-brain_mask.nii.gz", np.ones(SHAPE))
        feat = subject_dir / "fsl_stats" / f"sub-{subject}_task-{task}_contrasts.feat"
        _save(feat / "stats" / "zstat1.nii.gz", zstat)
        _save(feat / "thresh_zstat1.nii.gz", np.where(zstat > 3.1, zstat, 0))
        _save(feat / "randomise_time_series_tfce_corrp_tstat1.nii.gz", _slab(0, 3, 0.99))
        _save(feat / "randomise_time_series_tstat1.nii.gz", np.ones(SHAPE))
        ica = np.stack([np.ones(SHAPE), np.full(SHAPE, 9.0)], axis=-1)
        _save(feat / f"sub-{subject}_{task}_dual_regression_maps.nii.gz", ica)
        _save(feat / f"sub-{subject}_{task}_ica_thresholded.nii.gz", _slab(6, 9, 3.5))
    return subject_dir


@pytest.fixture
def derivatives(tmp_path: Path) -> Path:
    """A derivative root with one complete subject."""
    root = tmp_path / "derivatives"
    make_subject(root, "01")
    return root


@pytest.fixture
def roi_dir(tmp_path: Path) -> Path:
    """ROI templates: STG in the left half (x < 6), Heschl in the right half (x >= 6), both y < 3."""
    rois = tmp_path / "rois"
    _save(rois / "STG.nii.gz", _slab(0, 6, 1.0, y_stop=3))
    _save(rois / "Heschl.nii.gz", _slab(6, 12, 1.0, y_stop=3))
    return rois


@pytest.fixture
def identity_transform(monkeypatch) -> None:
    """Resolve every template-to-native transform to the identity."""
    monkeypatch.setattr(transform, "_load_deformation", lambda _path: Affine(np.eye(4)))


@pytest.fixture
def subject_factory():
    """Return :func:`make_subject` for tests that build their own tree."""
    return make_subject
