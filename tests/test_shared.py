"""Tests for the shared subject loop and log files."""

from __future__ import annotations

import logging
from pathlib import Path

from roioverlap.interfaces.models import PostStatsConfig, SubjectContext, SubjectInput
from roioverlap.interfaces.shared import log_to_file, run_parallel_workflow


def _subject(subject_id: str) -> SubjectInput:
    return SubjectInput(
        context=SubjectContext(subject_id=subject_id),
        t1w=Path("t1w.nii.gz"),
        brain_mask=Path("mask.nii.gz"),
        deformation_field=Path("xfm.h5"),
        tasks=(),
    )


class TestRunParallelWorkflow:
    """Tests for run_parallel_workflow."""

    def test_collects_outputs(self, tmp_path: Path) -> None:
        config = PostStatsConfig(input_root=tmp_path, output_dir=tmp_path)

        def _run(subject: SubjectInput, _config: PostStatsConfig) -> list[Path]:
            return [tmp_path / f"{subject.context.label}.csv"]

        outputs = run_parallel_workflow(config, [_subject("01"), _subject("02")], _run)
        assert outputs == [tmp_path / "sub-01.csv", tmp_path / "sub-02.csv"]

    def test_failing_subject_does_not_stop_others(self, tmp_path: Path, caplog) -> None:
        config = PostStatsConfig(input_root=tmp_path, output_dir=tmp_path)

        def _run(subject: SubjectInput, _config: PostStatsConfig) -> list[Path]:
            if subject.context.subject_id == "01":
                raise RuntimeError("broken subject")
            return [tmp_path / "ok.csv"]

        with caplog.at_level(logging.ERROR):
            outputs = run_parallel_workflow(config, [_subject("01"), _subject("02")], _run)

        assert outputs == [tmp_path / "ok.csv"]
        assert "Failed post-stats for sub-01" in caplog.text

    def test_records_failed_subjects(self, tmp_path: Path) -> None:
        config = PostStatsConfig(input_root=tmp_path, output_dir=tmp_path)

        def _run(subject: SubjectInput, _config: PostStatsConfig) -> list[Path]:
            if subject.context.subject_id != "02":
                raise RuntimeError("broken subject")
            return []

        failed: list[str] = []
        run_parallel_workflow(config, [_subject("01"), _subject("02"), _subject("03")], _run, failed=failed)

        assert failed == ["sub-01", "sub-03"]


class TestLogToFile:
    """Tests for log_to_file."""

    def test_writes_package_records(self, tmp_path: Path) -> None:
        log_path = tmp_path / "logs" / "unit.log"
        package_logger = logging.getLogger("roioverlap")
        before = list(package_logger.handlers)

        with log_to_file(log_path):
            logging.getLogger("roioverlap.interfaces.runner").info("inside the unit")
        logging.getLogger("roioverlap.interfaces.runner").info("after the unit")

        text = log_path.read_text()
        assert "inside the unit" in text
        assert "after the unit" not in text
        assert "[INFO]" in text
        assert package_logger.handlers == before
