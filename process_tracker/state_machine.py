"""Lifecycle rules for workflow instances.

The state machine performs no I/O. Each transition validates the workflow it
is given and returns an updated copy together with the history record that
describes the change; the input workflow is never mutated, so a rejected
transition leaves no partial state behind.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel

from process_tracker.db_models.enums import DefaultStatus, Priority, TransitionType, Visibility
from process_tracker.errors import InvalidTransitionError, StepOutOfRangeError, ValidationError
from process_tracker.models import (
    CustomStatusState,
    DefaultStatusState,
    StatusTemplate,
    Workflow,
    WorkflowTemplate,
    WorkflowTransition,
)

logger = logging.getLogger(__name__)

TransitionResult = Tuple[Workflow, WorkflowTransition]

UPDATABLE_FIELDS = ("title", "description", "priority", "visibility", "deadline", "team_id")


def status_label(workflow: Workflow) -> str:
    return workflow.status.label


class WorkflowStateMachine:

    def create(
            self,
            template: WorkflowTemplate,
            *,
            title: str,
            created_by_id: str,
            now: datetime,
            description: Optional[str] = "",
            priority: Priority = Priority.medium,
            visibility: Visibility = Visibility.public,
            deadline: Optional[datetime] = None,
            team_id: Optional[str] = None,
            assignee_id: Optional[str] = None,
            status_template: Optional[StatusTemplate] = None,
    ) -> TransitionResult:
        if not template.steps:
            raise ValidationError(f"template '{template.id}' has no steps")
        if not title or not title.strip():
            raise ValidationError("Workflow title cannot be empty.")

        status = DefaultStatusState(value=DefaultStatus.in_progress)
        if status_template is not None:
            initial = status_template.initial_item()
            if initial is None:
                raise ValidationError(f"status template '{status_template.id}' has no initial status")
            status = CustomStatusState.from_item(status_template.id, initial)

        workflow = Workflow(
            template_id=template.id,
            title=title.strip(),
            description=description or "",
            priority=priority,
            visibility=visibility,
            deadline=deadline,
            team_id=team_id,
            assignee_id=assignee_id,
            created_by_id=created_by_id,
            created_at=now,
            updated_at=now,
            current_step=1,
            total_steps=template.step_count,
            status_template_id=status_template.id if status_template else None,
            status=status,
        )
        transition = WorkflowTransition(
            workflow_id=workflow.id,
            transition_type=TransitionType.creation,
            to_step=1,
            to_status=status.label,
            to_user_id=assignee_id,
            created_by_id=created_by_id,
            created_at=now,
        )
        return workflow, transition

    def advance_step(self, workflow: Workflow, *, actor_id: str, now: datetime,
                     comments: Optional[str] = None, assignee_id: Optional[str] = None) -> TransitionResult:
        """Moves to the next step, optionally handing it to ``assignee_id``.

        Without an assignee the current one keeps the next step.
        """
        self._require_active(workflow, "advance_step")
        if workflow.current_step >= workflow.total_steps:
            raise StepOutOfRangeError(workflow.current_step, workflow.total_steps, "advance_step")
        if assignee_id is not None and not assignee_id.strip():
            raise ValidationError("Assignee id cannot be empty.")

        changes = {"current_step": workflow.current_step + 1}
        if assignee_id is not None:
            changes["assignee_id"] = assignee_id.strip()
        updated = self._copy(workflow, now, **changes)
        return updated, self._record(
            workflow, updated, TransitionType.step_change, actor_id, now, comments)

    def complete_final_step(self, workflow: Workflow, *, actor_id: str, now: datetime,
                            comments: Optional[str] = None) -> TransitionResult:
        self._require_active(workflow, "complete_final_step")
        self._require_default_model(workflow, "complete_final_step")
        if workflow.current_step != workflow.total_steps:
            raise StepOutOfRangeError(workflow.current_step, workflow.total_steps, "complete_final_step")

        updated = self._copy(workflow, now, status=DefaultStatusState(value=DefaultStatus.completed))
        return updated, self._record(
            workflow, updated, TransitionType.status_change, actor_id, now, comments)

    def pause(self, workflow: Workflow, *, actor_id: str, now: datetime,
              comments: Optional[str] = None) -> TransitionResult:
        return self._toggle(workflow, DefaultStatus.in_progress, DefaultStatus.paused, "pause",
                            actor_id, now, comments)

    def resume(self, workflow: Workflow, *, actor_id: str, now: datetime,
               comments: Optional[str] = None) -> TransitionResult:
        return self._toggle(workflow, DefaultStatus.paused, DefaultStatus.in_progress, "resume",
                            actor_id, now, comments)

    def cancel(self, workflow: Workflow, *, actor_id: str, now: datetime,
               comments: Optional[str] = None) -> TransitionResult:
        return self._close(workflow, DefaultStatus.canceled, "cancel", actor_id, now, comments)

    def archive(self, workflow: Workflow, *, actor_id: str, now: datetime,
                comments: Optional[str] = None) -> TransitionResult:
        return self._close(workflow, DefaultStatus.archived, "archive", actor_id, now, comments)

    def reassign(self, workflow: Workflow, assignee_id: str, *, actor_id: str, now: datetime,
                 comments: Optional[str] = None) -> TransitionResult:
        self._require_active(workflow, "reassign")
        if not assignee_id or not assignee_id.strip():
            raise ValidationError("Assignee id cannot be empty.")

        updated = self._copy(workflow, now, assignee_id=assignee_id)
        return updated, self._record(
            workflow, updated, TransitionType.assignment, actor_id, now, comments)

    def set_custom_status(self, workflow: Workflow, status_template: StatusTemplate, status_item_id: str, *,
                          actor_id: str, now: datetime, comments: Optional[str] = None) -> TransitionResult:
        self._require_active(workflow, "set_custom_status")
        if workflow.status_template_id and workflow.status_template_id != status_template.id:
            raise ValidationError(
                f"workflow '{workflow.id}' is bound to status template '{workflow.status_template_id}', "
                f"not '{status_template.id}'")
        item = status_template.find_item(status_item_id)
        if item is None:
            raise ValidationError(
                f"status '{status_item_id}' does not belong to status template '{status_template.id}'")

        updated = self._copy(
            workflow, now,
            status_template_id=status_template.id,
            status=CustomStatusState.from_item(status_template.id, item),
        )
        return updated, self._record(
            workflow, updated, TransitionType.custom_status_change, actor_id, now, comments)

    def use_default_status(self, workflow: Workflow, *, actor_id: str, now: datetime,
                           comments: Optional[str] = None) -> TransitionResult:
        self._require_active(workflow, "use_default_status")
        if not workflow.uses_custom_status:
            raise InvalidTransitionError(status_label(workflow), "use_default_status",
                                         "workflow already uses the default statuses")

        updated = self._copy(workflow, now, status=DefaultStatusState(value=DefaultStatus.in_progress))
        return updated, self._record(
            workflow, updated, TransitionType.status_change, actor_id, now, comments)

    def update_details(self, workflow: Workflow, changes: Dict[str, Any], *, actor_id: str, now: datetime,
                       comments: Optional[str] = None) -> TransitionResult:
        self._require_active(workflow, "update")
        unknown = set(changes) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"fields cannot be updated: {', '.join(sorted(unknown))}")
        changes = dict(changes)
        if "title" in changes:
            if not changes["title"] or not changes["title"].strip():
                raise ValidationError("Workflow title cannot be empty.")
            changes["title"] = changes["title"].strip()

        updated = self._copy(workflow, now, **changes)
        return updated, self._record(
            workflow, updated, TransitionType.update, actor_id, now,
            comments or "updated: " + ", ".join(sorted(changes)))

    # --- helpers ---

    def _require_active(self, workflow: Workflow, action: str) -> None:
        if workflow.is_terminal:
            logger.warning("Rejected %s on terminal workflow %s (%s)", action, workflow.id, status_label(workflow))
            raise InvalidTransitionError(status_label(workflow), action, "workflow is in a terminal state")

    def _require_default_model(self, workflow: Workflow, action: str) -> None:
        if workflow.uses_custom_status:
            raise InvalidTransitionError(status_label(workflow), action,
                                         "only available while the workflow uses the default statuses")

    def _toggle(self, workflow: Workflow, source: DefaultStatus, target: DefaultStatus, action: str,
                actor_id: str, now: datetime, comments: Optional[str]) -> TransitionResult:
        self._require_active(workflow, action)
        self._require_default_model(workflow, action)
        if workflow.status.value != source:
            raise InvalidTransitionError(status_label(workflow), action, f"workflow must be '{source.value}'")

        updated = self._copy(workflow, now, status=DefaultStatusState(value=target))
        return updated, self._record(
            workflow, updated, TransitionType.status_change, actor_id, now, comments)

    def _close(self, workflow: Workflow, target: DefaultStatus, action: str,
               actor_id: str, now: datetime, comments: Optional[str]) -> TransitionResult:
        self._require_active(workflow, action)
        updated = self._copy(workflow, now, status=DefaultStatusState(value=target))
        return updated, self._record(
            workflow, updated, TransitionType.status_change, actor_id, now, comments)

    @staticmethod
    def _copy(workflow: Workflow, now: datetime, **changes: Any) -> Workflow:
        data = workflow.model_dump()
        for key, value in changes.items():
            data[key] = value.model_dump() if isinstance(value, BaseModel) else value
        data["updated_at"] = now
        return Workflow.model_validate(data)

    @staticmethod
    def _record(before: Workflow, after: Workflow, transition_type: TransitionType, actor_id: str,
                now: datetime, comments: Optional[str]) -> WorkflowTransition:
        return WorkflowTransition(
            workflow_id=before.id,
            transition_type=transition_type,
            from_step=before.current_step,
            to_step=after.current_step,
            from_status=status_label(before),
            to_status=status_label(after),
            from_user_id=before.assignee_id,
            to_user_id=after.assignee_id,
            comments=comments,
            created_by_id=actor_id,
            created_at=now,
        )
