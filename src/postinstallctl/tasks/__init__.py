"""Idempotent step orchestration: registry, engine and report models."""
from __future__ import annotations

from .engine import ALREADY_SATISFIED, ExecutionEngine
from .models import (
    OPTIONAL_GROUPS,
    STEP_GROUP_VALUES,
    Criticality,
    ExecutionContext,
    Outcome,
    RunReport,
    RunSummary,
    Step,
    StepGroup,
    StepStatus,
)
from .registry import TaskRegistry
from .report import render_summary, serialize_report

__all__ = [
    "ALREADY_SATISFIED",
    "Criticality",
    "ExecutionContext",
    "ExecutionEngine",
    "OPTIONAL_GROUPS",
    "Outcome",
    "RunReport",
    "RunSummary",
    "STEP_GROUP_VALUES",
    "Step",
    "StepGroup",
    "StepStatus",
    "TaskRegistry",
    "render_summary",
    "serialize_report",
]
