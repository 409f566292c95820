"""Tests for voxel algebra and NIfTI loading."""

from __future__ import annotations

from pathlib import Path

import nibabel as nib
import numpy as np
import pytest

from roioverlap.exceptions import SpaceMismatchError, VolumeLoadError
from roioverlap.overlap.volume import (
    is_binary,
    load_volume,
    mask_apply,
    masked_count,
    positive_count,
    save_volume,
    threshold_above,
    threshold_positive,
    total_count,
)
from roioverlap.utils import _same_grid


def _image(data: np.ndarray, affine: np.ndarray | None = None) -> nib.Nifti1Image:
    return nib.Nifti1Image(np.asarray(data, dtype=np.float32), np.eye(4) if affine is None else affine)


@pytest.fixture
def stat_img() -> nib.Nifti1Image:
    """A 4x4x4 map with positive, negative and zero voxels."""
    data = np.zeros((4, 4, 4), dtype=np.float32)
    data[0, :, :] = 3.5
    data[1, :, :] = -2.0
    data[2, :2, :] = 1.0
    return _image(data)


@pytest.fixture
def mask_img() -> nib.Nifti1Image:
    data = np.zeros((4, 4, 4), dtype=np.float32)
    data[:2, :, :] = 1
    return _image(data)


class TestCounts:
    """Tests for voxel counting."""

    def test_total_count(self, stat_img: nib.Nifti1Image) -> None:
        assert total_count(stat_img) == 16 + 16 + 8

    def test_positive_count(self, stat_img: nib.Nifti1Image) -> None:
        assert positive_count(stat_img) == 16 + 8

    def test_masked_count_positive(self, stat_img: nib.Nifti1Image, mask_img: nib.Nifti1Image) -> None:
        assert masked_count(stat_img, mask_img) == 16

    def test_masked_count_nonzero(self, stat_img: nib.Nifti1Image, mask_img: nib.Nifti1Image) -> None:
        assert masked_count(stat_img, mask_img, polarity="nonzero") == 32

    def test_masked_count_multiple_masks(self, stat_img: nib.Nifti1Image, mask_img: nib.Nifti1Image) -> None:
        second = np.zeros((4, 4, 4), dtype=np.float32)
        second[:, :1, :] = 1
        assert masked_count(stat_img, [mask_img, _image(second)]) == 4

    def test_unknown_polarity_raises(self, stat_img: nib.Nifti1Image, mask_img: nib.Nifti1Image) -> None:
        with pytest.raises(ValueError, match="polarity"):
            masked_count(stat_img, mask_img, polarity="negative")  # type: ignore[arg-type]

    def test_nan_voxels_are_ignored(self) -> None:
        data = np.full((2, 2, 2), np.nan, dtype=np.float32)
        data[0, 0, 0] = 1.0
        assert total_count(_image(data)) == 1

    def test_shape_mismatch_raises(self, stat_img: nib.Nifti1Image) -> None:
        with pytest.raises(SpaceMismatchError, match="shapes"):
            masked_count(stat_img, _image(np.ones((4, 4, 5))))

    def test_affine_mismatch_raises(self, stat_img: nib.Nifti1Image) -> None:
        affine = np.diag([2.0, 2.0, 2.0, 1.0])
        with pytest.raises(SpaceMismatchError, match="affines"):
            masked_count(stat_img, _image(np.ones((4, 4, 4)), affine))


class TestThresholding:
    """Tests for thresholding and masking operations."""

    def test_threshold_above_is_inclusive(self, stat_img: nib.Nifti1Image) -> None:
        result = threshold_above(stat_img, 3.5)
        assert total_count(result) == 16
        assert float(result.get_fdata().max()) == pytest.approx(3.5)

    def test_threshold_above_keeps_values(self, stat_img: nib.Nifti1Image) -> None:
        result = threshold_above(stat_img, 0.5)
        assert positive_count(result) == 24
        assert total_count(result) == 24

    def test_threshold_positive(self, stat_img: nib.Nifti1Image) -> None:
        result = threshold_positive(stat_img)
        assert total_count(result) == positive_count(stat_img)
        assert float(result.get_fdata().min()) == 0.0

    def test_mask_apply(self, stat_img: nib.Nifti1Image, mask_img: nib.Nifti1Image) -> None:
        result = mask_apply(stat_img, mask_img)
        assert total_count(result) == 32
        assert float(result.get_fdata()[2:].sum()) == 0.0

    def test_operations_do_not_modify_inputs(self, stat_img: nib.Nifti1Image, mask_img: nib.Nifti1Image) -> None:
        before = stat_img.get_fdata().copy()
        mask_apply(stat_img, mask_img)
        threshold_above(stat_img, 2.0)
        np.testing.assert_array_equal(stat_img.get_fdata(), before)

    def test_is_binary(self, stat_img: nib.Nifti1Image, mask_img: nib.Nifti1Image) -> None:
        assert is_binary(mask_img)
        assert not is_binary(stat_img)


class TestLoadVolume:
    """Tests for load_volume and save_volume."""

    def test_round_trip(self, tmp_path: Path, stat_img: nib.Nifti1Image) -> None:
        path = save_volume(stat_img, tmp_path / "nested" / "stat.nii.gz")
        loaded = load_volume(path)
        assert loaded.shape == (4, 4, 4)
        assert _same_grid(loaded, stat_img)

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(VolumeLoadError, match="does not exist"):
            load_volume(tmp_path / "missing.nii.gz")

    def test_unreadable_file_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.nii.gz"
        path.write_text("not a nifti")
        with pytest.raises(VolumeLoadError, match="Could not read"):
            load_volume(path)

    def test_singleton_4d_is_squeezed(self) -> None:
        loaded = load_volume(_image(np.ones((3, 3, 3, 1))))
        assert loaded.shape == (3, 3, 3)

    def test_volume_index_selects_volume(self, tmp_path: Path) -> None:
        data = np.zeros((3, 3, 3, 2), dtype=np.float32)
        data[..., 1] = 7.0
        path = save_volume(_image(data), tmp_path / "series.nii.gz")

        assert float(load_volume(path, volume_index=0).get_fdata().max()) == 0.0
        assert float(load_volume(path, volume_index=1).get_fdata().max()) == 7.0

    def test_4d_without_index_raises(self) -> None:
        with pytest.raises(VolumeLoadError, match="3D"):
            load_volume(_image(np.ones((3, 3, 3, 2))))

    def test_volume_index_out_of_range(self) -> None:
        with pytest.raises(VolumeLoadError, match="out of range"):
            load_volume(_image(np.ones((3, 3, 3, 2))), volume_index=5)
