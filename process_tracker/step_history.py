"""Per-step assignment history.

Assignments are not stored separately: every transition already records the
step and the assignee before and after the change, so the list of who held
which step is replayed from the workflow's transition history.
"""
from datetime import datetime
from typing import List, Optional, Sequence

from process_tracker.db_models.enums import DefaultStatus
from process_tracker.models import StepAssignment, WorkflowTransition

CLOSING_STATUSES = (DefaultStatus.canceled.value, DefaultStatus.archived.value)


def _close(assignment: Optional[StepAssignment], when: datetime, completed: bool) -> None:
    if assignment is not None and assignment.is_open:
        assignment.ended_at = when
        assignment.completed = completed


def step_assignments(transitions: Sequence[WorkflowTransition]) -> List[StepAssignment]:
    """Replays a transition history into step assignments, oldest first.

    ``transitions`` is expected newest first, the order the repositories
    return it in. Moving to another step completes the open assignment, a
    new assignee on the same step ends it without completing it, and
    completing the workflow completes the last one.
    """
    ordered = sorted(reversed(list(transitions)), key=lambda t: t.created_at)
    assignments: List[StepAssignment] = []
    current: Optional[StepAssignment] = None

    for transition in ordered:
        when = transition.created_at
        if current is None:
            if transition.to_step is None:
                continue
            current = StepAssignment(step_number=transition.to_step, assignee_id=transition.to_user_id,
                                     started_at=when)
            assignments.append(current)
            continue

        if transition.to_step is not None and transition.to_step != current.step_number:
            _close(current, when, completed=True)
            current = StepAssignment(step_number=transition.to_step, assignee_id=transition.to_user_id,
                                     started_at=when)
            assignments.append(current)
        elif current.is_open and transition.to_user_id != current.assignee_id:
            _close(current, when, completed=False)
            current = StepAssignment(step_number=current.step_number, assignee_id=transition.to_user_id,
                                     started_at=when)
            assignments.append(current)

        if transition.to_status == DefaultStatus.completed.value:
            _close(current, when, completed=True)
        elif transition.to_status in CLOSING_STATUSES:
            _close(current, when, completed=False)

    return assignments
