"""FEAT / randomise / dual-regression post-stats interface."""

from roioverlap.interfaces.feat.feat import load_config, run_post_stats, run_subject, run_task_unit
from roioverlap.interfaces.feat.loader import discover_subject_inputs, load_feat_inputs
from roioverlap.interfaces.planner import plan_report_grid
from roioverlap.interfaces.runner import build_report, compute_row

__all__ = [
    "build_report",
    "compute_row",
    "discover_subject_inputs",
    "load_config",
    "load_feat_inputs",
    "plan_report_grid",
    "run_post_stats",
    "run_subject",
    "run_task_unit",
]
