"""Read-time state of a workflow: progress, deadline flags and days remaining.

Everything here is a pure function of a workflow and an explicit ``now``.
Nothing is cached on the workflow record.
"""
import math
from datetime import datetime, timedelta
from typing import Optional

from process_tracker.config import NEAR_DEADLINE_DAYS
from process_tracker.models import DerivedState, Workflow, WorkflowSummary
from process_tracker.utils import ensure_utc

ONE_DAY_SECONDS = timedelta(days=1).total_seconds()


def progress_percentage(current_step: int, total_steps: int) -> int:
    if total_steps <= 0:
        return 0
    # Half-up: 12.5 -> 13.
    value = math.floor(100 * current_step / total_steps + 0.5)
    return max(0, min(100, value))


def days_remaining(deadline: Optional[datetime], now: datetime) -> Optional[int]:
    if deadline is None:
        return None
    delta = ensure_utc(deadline) - ensure_utc(now)
    return math.ceil(delta.total_seconds() / ONE_DAY_SECONDS)


def is_overdue(workflow: Workflow, now: datetime) -> bool:
    if workflow.deadline is None or workflow.is_terminal:
        return False
    return ensure_utc(workflow.deadline) < ensure_utc(now)


def is_near_deadline(workflow: Workflow, now: datetime, near_deadline_days: int = NEAR_DEADLINE_DAYS) -> bool:
    if workflow.deadline is None or workflow.is_terminal or is_overdue(workflow, now):
        return False
    return ensure_utc(workflow.deadline) - ensure_utc(now) <= timedelta(days=near_deadline_days)


def derive_state(workflow: Workflow, now: datetime, near_deadline_days: int = NEAR_DEADLINE_DAYS) -> DerivedState:
    return DerivedState(
        progress_percentage=progress_percentage(workflow.current_step, workflow.total_steps),
        is_overdue=is_overdue(workflow, now),
        is_near_deadline=is_near_deadline(workflow, now, near_deadline_days),
        days_remaining=days_remaining(workflow.deadline, now),
        is_terminal=workflow.is_terminal,
    )


def summarize(workflow: Workflow, now: datetime, near_deadline_days: int = NEAR_DEADLINE_DAYS) -> WorkflowSummary:
    derived = derive_state(workflow, now, near_deadline_days)
    return WorkflowSummary(
        **workflow.model_dump(),
        progress_percentage=derived.progress_percentage,
        is_overdue=derived.is_overdue,
        is_near_deadline=derived.is_near_deadline,
        days_remaining=derived.days_remaining,
    )
