from __future__ import annotations

from enum import Enum


class WorkflowStatus(str, Enum):
    pending = "pending"
    in_progress = "in-progress"
    completed = "completed"
    rejected = "rejected"
    cancelled = "cancelled"


class StepStatus(str, Enum):
    pending = "pending"
    in_progress = "in-progress"
    completed = "completed"
    skipped = "skipped"
    failed = "failed"


class StepOutcome(str, Enum):
    completed = "completed"
    failed = "failed"


class Priority(str, Enum):
    routine = "routine"
    urgent = "urgent"
    stat = "stat"


class ValidationType(str, Enum):
    automatic = "automatic"
    manual = "manual"
    peer_review = "peer-review"


class Severity(str, Enum):
    error = "error"
    warning = "warning"
    info = "info"


class SignatureMethod(str, Enum):
    password = "password"
    biometric = "biometric"
    token = "token"
    certificate = "certificate"


class ReportStatus(str, Enum):
    registered = "registered"
    partial = "partial"
    preliminary = "preliminary"
    final = "final"
    amended = "amended"
    cancelled = "cancelled"


TERMINAL_WORKFLOW_STATUSES = frozenset(
    {WorkflowStatus.completed.value, WorkflowStatus.rejected.value, WorkflowStatus.cancelled.value}
)
