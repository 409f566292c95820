"""Integration tests for the full post-stats workflow."""

from __future__ import annotations

import json
from pathlib import Path

import nibabel as nib
import numpy as np
import pandas as pd
import pytest

from roioverlap.exceptions import MissingInputError, RoiOverlapError
from roioverlap.interfaces.feat.feat import run_post_stats, run_subject
from roioverlap.interfaces.feat.loader import discover_subject_inputs
from roioverlap.interfaces.models import DEFAULT_TASKS, REPORT_COLUMNS, PostStatsConfig, StatMapRole
from roioverlap.interfaces.utils import parse_rois

LANG = DEFAULT_TASKS[2]


@pytest.fixture
def config(tmp_path: Path, derivatives: Path, roi_dir: Path) -> PostStatsConfig:
    return PostStatsConfig(
        input_root=derivatives,
        output_dir=tmp_path / "output",
        rois=parse_rois(None, roi_dir=roi_dir, names=["STG", "Heschl"]),
        tasks=[LANG],
        hemisphere_grid_width=None,
        hemisphere_first_index=0,
    )


def _read(path: Path) -> pd.DataFrame:
    return pd.read_csv(path, dtype=str, keep_default_na=False)


def _row(report: pd.DataFrame, space: str, roi: str, threshold: str, stat_type: str) -> pd.Series:
    match = report[
        (report["Space"] == space)
        & (report["ROI"] == roi)
        & (report["Threshold"] == threshold)
        & (report["Stat Type"] == stat_type)
    ]
    assert len(match) == 1
    return match.iloc[0]


@pytest.mark.usefixtures("identity_transform")
class TestRunSubject:
    """End-to-end tests of run_subject on a synthetic subject."""

    def test_report_layout(self, config: PostStatsConfig) -> None:
        subject = discover_subject_inputs(config.input_root, "01", None, config.tasks)
        outputs = run_subject(subject, config)

        csv_path = config.output_dir / "sub-01" / "post_stats" / "sub-01_task-lang_roi_stats.csv"
        assert outputs == [csv_path]
        report = _read(csv_path)
        assert list(report.columns) == list(REPORT_COLUMNS)
        assert len(report) == 48
        assert (report["Subject"] == "01").all()
        assert (report["Task"] == "lang").all()
        assert list(report["Space"].iloc[[0, 23, 24, 47]]) == ["MNI", "MNI", "Native", "Native"]

    def test_zstat_rows(self, config: PostStatsConfig) -> None:
        subject = discover_subject_inputs(config.input_root, "01", None, config.tasks)
        report = _read(run_subject(subject, config)[0])

        primary = _row(report, "MNI", "Whole-brain STG", "Z=3.1", "Z-stat")
        assert primary["Activated Voxels across Whole Brain (counts)"] == "108"
        assert primary["Activated Voxels within ROI (counts)"] == "54"
        assert primary["Voxels in ROI (counts)"] == "108"
        assert primary["Voxels in Whole Brain (counts)"] == "432"
        assert primary["Activated Voxels across Whole Brain (%)"] == "25.000"
        assert primary["Activated Voxels within ROI (%)"] == "50.000"
        assert primary["Activated ROI/WB (%)"] == "12.500"
        assert primary["%Activated ROI/%Activated WB (ratio)"] == "2.000"
        assert primary["Dice Coefficient"] == "N/A"

        secondary = _row(report, "MNI", "Whole-brain STG", "Z=2.35", "Z-stat")
        assert secondary["Activated Voxels across Whole Brain (counts)"] == "216"
        assert secondary["Activated Voxels within ROI (%)"] == "100.000"

    def test_hemisphere_rows(self, config: PostStatsConfig) -> None:
        subject = discover_subject_inputs(config.input_root, "01", None, config.tasks)
        report = _read(run_subject(subject, config)[0])

        left = _row(report, "MNI", "Left STG", "Z=3.1", "Z-stat")
        assert left["Voxels in ROI (counts)"] == "108"
        assert left["Voxels in Whole Brain (counts)"] == "216"

        right = _row(report, "MNI", "Right STG", "Z=3.1", "Z-stat")
        assert right["Voxels in ROI (counts)"] == "0"
        assert right["Activated Voxels within ROI (%)"] == "0.0"
        assert right["Activated Voxels across Whole Brain (%)"] == "0.000"
        assert right["%Activated ROI/%Activated WB (ratio)"] == "N/A"

    def test_tfce_and_ica_rows(self, config: PostStatsConfig) -> None:
        subject = discover_subject_inputs(config.input_root, "01", None, config.tasks)
        report = _read(run_subject(subject, config)[0])

        tfce = _row(report, "MNI", "Whole-brain STG", "TFCE", "TFCE")
        assert tfce["Activated Voxels across Whole Brain (counts)"] == "108"
        assert tfce["Dice Coefficient"] == "1.000"
        assert tfce["Coverage T-map (%)"] == "100.000"
        assert tfce["Coverage Z-map ROI (%)"] == "100.000"

        ica = _row(report, "MNI", "Whole-brain Heschl", "Z=3.1", "ICA")
        assert ica["Activated Voxels across Whole Brain (counts)"] == "108"
        assert ica["Activated Voxels within ROI (%)"] == "50.000"
        assert ica["Dice Coefficient"] == "0.000"
        assert ica["Coverage T-map ROI (%)"] == "0.000"
        assert ica["Coverage Z-map ROI (%)"] == "0.0"

    def test_native_rows_match_template_rows_on_identity(self, config: PostStatsConfig) -> None:
        subject = discover_subject_inputs(config.input_root, "01", None, config.tasks)
        report = _read(run_subject(subject, config)[0])

        mni = report[report["Space"] == "MNI"].drop(columns="Space").reset_index(drop=True)
        native = report[report["Space"] == "Native"].drop(columns="Space").reset_index(drop=True)
        pd.testing.assert_frame_equal(mni, native)

    def test_outputs_and_provenance(self, config: PostStatsConfig) -> None:
        subject = discover_subject_inputs(config.input_root, "01", None, config.tasks)
        csv_path = run_subject(subject, config)[0]
        subject_dir = config.output_dir / "sub-01"

        assert (subject_dir / "anat" / "sub-01_desc-brain_T1w.nii.gz").exists()
        assert len(list((subject_dir / "ROI").glob("*.nii.gz"))) == 2 * 6
        assert (subject_dir / "post_stats" / "log_01_lang.txt").exists()
        assert (subject_dir / "post_stats" / "sub-01_post_stats.log").exists()
        assert not csv_path.with_name(csv_path.name + ".part").exists()

        sidecar = json.loads(csv_path.with_suffix(".json").read_text())
        assert sidecar["n_rows"] == 48
        assert sidecar["n_degenerate"] > 0
        assert sidecar["thresholds"]["reference"] == "Z=3.1"

    def test_existing_report_is_reused(self, config: PostStatsConfig) -> None:
        subject = discover_subject_inputs(config.input_root, "01", None, config.tasks)
        csv_path = run_subject(subject, config)[0]
        csv_path.write_text("cached\n")

        assert run_subject(subject, config) == [csv_path]
        assert csv_path.read_text() == "cached\n"

        config.force = True
        run_subject(subject, config)
        assert len(_read(csv_path)) == 48

    def test_changed_hemisphere_convention_rebuilds_cached_maps(self, config: PostStatsConfig) -> None:
        subject = discover_subject_inputs(config.input_root, "01", None, config.tasks)
        run_subject(subject, config)[0].unlink()

        config.hemisphere_first_index = 3
        report = _read(run_subject(subject, config)[0])

        for space in ("MNI", "Native"):
            left = _row(report, space, "Left STG", "Z=3.1", "Z-stat")
            assert left["Voxels in Whole Brain (counts)"] == "108"
            assert left["Voxels in ROI (counts)"] == "54"
            assert left["Activated Voxels within ROI (counts)"] == "0"

        sidecar = json.loads(
            (config.output_dir / "sub-01" / "post_stats" / "sub-01_task-lang_roi_stats.json").read_text()
        )
        assert sidecar["hemisphere"]["first_index"] == 3

    def test_task_failure_raises(self, config: PostStatsConfig) -> None:
        subject = discover_subject_inputs(config.input_root, "01", None, config.tasks)
        thresh = subject.task("lang").stat_maps[StatMapRole.THRESH_ZSTAT]
        nib.save(nib.Nifti1Image(np.ones((5, 5, 5), dtype=np.float32), np.eye(4)), thresh)

        with pytest.raises(RoiOverlapError, match="1 of 1 tasks failed"):
            run_subject(subject, config)

        log_text = (config.output_dir / "sub-01" / "post_stats" / "log_01_lang.txt").read_text()
        assert "SpaceMismatchError" in log_text

        subject_log = (config.output_dir / "sub-01" / "post_stats" / "sub-01_post_stats.log").read_text()
        assert "[ERROR] Post-stats failed for sub-01" in subject_log
        assert "1 of 1 tasks failed" in subject_log

    def test_corrupt_stat_map_is_a_volume_load_error(self, config: PostStatsConfig) -> None:
        subject = discover_subject_inputs(config.input_root, "01", None, config.tasks)
        subject.task("lang").stat_maps[StatMapRole.TFCE_CORRP].write_text("corrupt")

        with pytest.raises(RoiOverlapError, match="VolumeLoadError: Could not read volume"):
            run_subject(subject, config)

    def test_preprocess_failure_is_in_subject_log(self, config: PostStatsConfig, roi_dir: Path) -> None:
        subject = discover_subject_inputs(config.input_root, "01", None, config.tasks)
        (roi_dir / "Heschl.nii.gz").unlink()

        with pytest.raises(MissingInputError, match="ROI template 'Heschl'"):
            run_subject(subject, config)

        subject_log = (config.output_dir / "sub-01" / "post_stats" / "sub-01_post_stats.log").read_text()
        assert "[ERROR] Post-stats failed for sub-01" in subject_log
        assert "Missing ROI template 'Heschl'" in subject_log


@pytest.mark.usefixtures("identity_transform")
class TestRunPostStats:
    """Tests for run_post_stats across subjects."""

    def test_skips_incomplete_subjects(self, config: PostStatsConfig, subject_factory) -> None:
        subject_factory(config.input_root, "02", tasks=())

        outputs = run_post_stats(config)

        assert [path.name for path in outputs] == ["sub-01_task-lang_roi_stats.csv"]
        assert not (config.output_dir / "sub-02").exists()

    def test_failed_subject_reports_no_output(self, config: PostStatsConfig, subject_factory) -> None:
        subject_factory(config.input_root, "02")
        (config.input_root / "sub-02" / "anat" / "sub-02_desc-preproc_T1w.nii.gz").write_text("corrupt")

        outputs = run_post_stats(config)

        assert [path.parent.parent.name for path in outputs] == ["sub-01"]
