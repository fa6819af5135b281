"""
Pipeline orchestration: single-roster runs and batches over the same
session state machine (pending -> scoring -> assigning -> justifying -> complete).
"""
from __future__ import annotations

from teamroles.orchestration.assignment import (
    AssignmentOrchestrator,
    AssignmentOutcome,
    PipelineClaims,
)
from teamroles.orchestration.batch import (
    BatchAssignReport,
    BatchOptions,
    BatchOrchestrator,
    BatchRequest,
    BatchStatusReport,
)

__all__ = [
    "AssignmentOrchestrator",
    "AssignmentOutcome",
    "PipelineClaims",
    "BatchOrchestrator",
    "BatchOptions",
    "BatchRequest",
    "BatchAssignReport",
    "BatchStatusReport",
]
