"""Shared interface utilities and models."""

from roioverlap.interfaces.models import (
    DEFAULT_TASKS,
    CoordinateSpace,
    GridCell,
    OverlapRow,
    PostStatsConfig,
    RoiDefinition,
    RoiSlot,
    StatisticKind,
    StatMapRole,
    SubjectContext,
    TaskDefinition,
    TaskResult,
    ThresholdDescriptor,
    ThresholdRule,
    ThresholdSet,
)
from roioverlap.interfaces.utils import _parse_log_level, parse_rois, parse_tasks

__all__ = [
    "DEFAULT_TASKS",
    "CoordinateSpace",
    "GridCell",
    "OverlapRow",
    "PostStatsConfig",
    "RoiDefinition",
    "RoiSlot",
    "StatMapRole",
    "StatisticKind",
    "SubjectContext",
    "TaskDefinition",
    "TaskResult",
    "ThresholdDescriptor",
    "ThresholdRule",
    "ThresholdSet",
    "_parse_log_level",
    "parse_rois",
    "parse_tasks",
]
