# services.py
import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from process_tracker import aggregator
from process_tracker.config import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    NEAR_DEADLINE_DAYS,
    STORE_TIMEOUT_SECONDS,
    WORKLOAD_THRESHOLD,
)
from process_tracker.derived_state import summarize
from process_tracker.errors import ConflictError, NotFoundError, UnavailableError, ValidationError
from process_tracker.models import (
    Page,
    StatusGroup,
    StatusItem,
    StatusTemplate,
    StatusTemplateCreateRequest,
    StepAssignment,
    TemplateStep,
    UserWorkload,
    Workflow,
    WorkflowCreateRequest,
    WorkflowFilter,
    WorkflowStats,
    WorkflowSummary,
    WorkflowTemplate,
    WorkflowTemplateCreateRequest,
    WorkflowTransition,
)
from process_tracker.repository import StatusTemplateRepository, TemplateRepository, WorkflowInstanceRepository
from process_tracker.state_machine import WorkflowStateMachine
from process_tracker.step_history import step_assignments
from process_tracker.utils import utcnow

logger = logging.getLogger(__name__)

R = TypeVar("R")


def clamp_page(page: int, size: Optional[int]) -> Tuple[int, int]:
    page = max(0, page or 0)
    size = DEFAULT_PAGE_SIZE if not size or size < 1 else min(size, MAX_PAGE_SIZE)
    return page, size


class WorkflowService:
    def __init__(
            self,
            template_repo: TemplateRepository,
            status_template_repo: StatusTemplateRepository,
            instance_repo: WorkflowInstanceRepository,
            state_machine: Optional[WorkflowStateMachine] = None,
            clock: Callable[[], datetime] = utcnow,
            store_timeout: float = STORE_TIMEOUT_SECONDS,
            near_deadline_days: int = NEAR_DEADLINE_DAYS,
            workload_threshold: int = WORKLOAD_THRESHOLD,
    ):
        self.template_repo = template_repo
        self.status_template_repo = status_template_repo
        self.instance_repo = instance_repo
        self.state_machine = state_machine or WorkflowStateMachine()
        self.clock = clock
        self.store_timeout = store_timeout
        self.near_deadline_days = near_deadline_days
        self.workload_threshold = workload_threshold

    async def _call(self, operation: str, awaitable: Awaitable[R]) -> R:
        """Runs one store call under the configured timeout."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.store_timeout)
        except asyncio.TimeoutError:
            logger.error("Store call %s timed out after %ss", operation, self.store_timeout)
            raise UnavailableError(f"store did not answer {operation} within {self.store_timeout}s")
        except SQLAlchemyError as e:
            logger.error("Store call %s failed: %s", operation, e)
            raise UnavailableError(f"store failed during {operation}") from e

    # --- Workflow templates ---

    @staticmethod
    def _build_steps(data: WorkflowTemplateCreateRequest) -> List[TemplateStep]:
        if not data.name or not data.name.strip():
            raise ValidationError("Template name cannot be empty.")
        if not data.steps:
            raise ValidationError("A template needs at least one step.")
        steps = sorted(data.steps, key=lambda s: s.step_order)
        if [s.step_order for s in steps] != list(range(1, len(steps) + 1)):
            raise ValidationError("Step orders must be 1..N without gaps or duplicates.")
        for step in steps:
            if not step.name or not step.name.strip():
                raise ValidationError("Step name cannot be empty.")
        return [TemplateStep(**step.model_dump()) for step in steps]

    async def get_template(self, template_id: str) -> WorkflowTemplate:
        template = await self._call("get_template", self.template_repo.get_template_by_id(template_id))
        if not template:
            raise NotFoundError("WorkflowTemplate", template_id)
        return template

    async def list_templates(self, page: int = 0, size: Optional[int] = None) -> Page[WorkflowTemplate]:
        page, size = clamp_page(page, size)
        items, total = await self._call("list_templates", self.template_repo.list_templates(page * size, size))
        return Page[WorkflowTemplate](items=items, page=page, size=size, total=total)

    async def create_template(self, data: WorkflowTemplateCreateRequest, actor_id: str) -> WorkflowTemplate:
        steps = self._build_steps(data)
        now = self.clock()
        template = WorkflowTemplate(
            name=data.name.strip(),
            description=data.description or "",
            visibility=data.visibility,
            created_by_id=actor_id,
            steps=steps,
            created_at=now,
            updated_at=now,
        )
        created = await self._call("create_template", self.template_repo.create_template(template))
        logger.info("Template %s created by %s with %d steps", created.id, actor_id, created.step_count)
        return created

    async def update_template(self, template_id: str, data: WorkflowTemplateCreateRequest) -> WorkflowTemplate:
        existing = await self.get_template(template_id)
        steps = self._build_steps(data)
        updated = existing.model_copy(update={
            "name": data.name.strip(),
            "description": data.description or "",
            "visibility": data.visibility,
            "steps": steps,
            "updated_at": self.clock(),
        })
        saved = await self._call("update_template", self.template_repo.update_template(updated))
        if not saved:
            raise NotFoundError("WorkflowTemplate", template_id)
        logger.info("Template %s updated", template_id)
        return saved

    async def delete_template(self, template_id: str) -> None:
        await self._call("delete_template", self.template_repo.delete_template(template_id))
        logger.info("Template %s deleted", template_id)

    # --- Status templates ---

    @staticmethod
    def _build_status_items(data: StatusTemplateCreateRequest) -> List[StatusItem]:
        if not data.name or not data.name.strip():
            raise ValidationError("Status template name cannot be empty.")
        if not data.status_items:
            raise ValidationError("A status template needs at least one status.")
        items = sorted(data.status_items, key=lambda i: i.order_index)
        if [i.order_index for i in items] != list(range(1, len(items) + 1)):
            raise ValidationError("Status order indexes must be 1..N without gaps or duplicates.")
        initial = [i for i in items if i.is_initial]
        if len(initial) != 1:
            raise ValidationError(f"A status template needs exactly one initial status, got {len(initial)}.")
        ids = [i.id for i in items if i.id]
        if len(ids) != len(set(ids)):
            raise ValidationError("Status ids must be unique.")
        for item in items:
            if not item.name or not item.name.strip():
                raise ValidationError("Status name cannot be empty.")
        return [StatusItem.from_create(item) for item in items]

    async def get_status_template(self, status_template_id: str) -> StatusTemplate:
        status_template = await self._call(
            "get_status_template", self.status_template_repo.get_status_template_by_id(status_template_id))
        if not status_template:
            raise NotFoundError("StatusTemplate", status_template_id)
        return status_template

    async def list_status_templates(self, page: int = 0, size: Optional[int] = None) -> Page[StatusTemplate]:
        page, size = clamp_page(page, size)
        items, total = await self._call(
            "list_status_templates", self.status_template_repo.list_status_templates(page * size, size))
        return Page[StatusTemplate](items=items, page=page, size=size, total=total)

    async def get_initial_status_item(self, status_template_id: str) -> StatusItem:
        status_template = await self.get_status_template(status_template_id)
        initial = status_template.initial_item()
        if initial is None:
            raise ValidationError(f"status template '{status_template_id}' has no initial status")
        return initial

    async def create_status_template(self, data: StatusTemplateCreateRequest, actor_id: str) -> StatusTemplate:
        items = self._build_status_items(data)
        now = self.clock()
        status_template = StatusTemplate(
            name=data.name.strip(),
            description=data.description or "",
            is_default=data.is_default,
            created_by_id=actor_id,
            status_items=items,
            created_at=now,
            updated_at=now,
        )
        created = await self._call(
            "create_status_template", self.status_template_repo.create_status_template(status_template))
        logger.info("Status template %s created by %s", created.id, actor_id)
        return created

    async def update_status_template(self, status_template_id: str,
                                     data: StatusTemplateCreateRequest) -> StatusTemplate:
        """Replaces the statuses of a template, keeping items whose id is passed back.

        Items that disappear from the list must not be in use by any workflow.
        """
        existing = await self.get_status_template(status_template_id)
        items = self._build_status_items(data)
        known_ids = {item.id for item in existing.status_items}
        for item in data.status_items:
            if item.id and item.id not in known_ids:
                raise ValidationError(
                    f"status '{item.id}' does not belong to status template '{status_template_id}'")

        kept_ids = {item.id for item in items}
        for removed_id in known_ids - kept_ids:
            in_use = await self._call(
                "count_workflows_with_custom_status",
                self.status_template_repo.count_workflows_with_custom_status(removed_id))
            if in_use:
                raise ConflictError(
                    f"cannot remove status '{removed_id}': {in_use} workflows use it", referenced_by=in_use)

        updated = existing.model_copy(update={
            "name": data.name.strip(),
            "description": data.description or "",
            "is_default": data.is_default,
            "status_items": items,
            "updated_at": self.clock(),
        })
        saved = await self._call(
            "update_status_template", self.status_template_repo.update_status_template(updated))
        if not saved:
            raise NotFoundError("StatusTemplate", status_template_id)
        logger.info("Status template %s updated", status_template_id)
        return saved

    async def delete_status_template(self, status_template_id: str) -> None:
        await self._call(
            "delete_status_template", self.status_template_repo.delete_status_template(status_template_id))
        logger.info("Status template %s deleted", status_template_id)

    # --- Workflow instances ---

    async def get_workflow(self, workflow_id: str) -> Workflow:
        workflow = await self._call("get_workflow", self.instance_repo.get_workflow_by_id(workflow_id))
        if not workflow:
            raise NotFoundError("Workflow", workflow_id)
        return workflow

    async def get_workflow_summary(self, workflow_id: str) -> WorkflowSummary:
        workflow = await self.get_workflow(workflow_id)
        return summarize(workflow, self.clock(), self.near_deadline_days)

    async def list_workflows(self, workflow_filter: Optional[WorkflowFilter] = None, page: int = 0,
                             size: Optional[int] = None) -> Page[WorkflowSummary]:
        page, size = clamp_page(page, size)
        items, total = await self._call(
            "list_workflows",
            self.instance_repo.list_workflows(workflow_filter or WorkflowFilter(), page * size, size))
        now = self.clock()
        summaries = [summarize(w, now, self.near_deadline_days) for w in items]
        return Page[WorkflowSummary](items=summaries, page=page, size=size, total=total)

    async def list_transitions(self, workflow_id: str) -> List[WorkflowTransition]:
        await self.get_workflow(workflow_id)
        return await self._call("list_transitions", self.instance_repo.list_transitions(workflow_id))

    async def list_step_assignments(self, workflow_id: str) -> List[StepAssignment]:
        return step_assignments(await self.list_transitions(workflow_id))

    async def create_workflow(self, data: WorkflowCreateRequest, actor_id: str) -> Workflow:
        template = await self.get_template(data.template_id)
        status_template = None
        if data.status_template_id:
            status_template = await self.get_status_template(data.status_template_id)

        workflow, transition = self.state_machine.create(
            template,
            title=data.title,
            created_by_id=actor_id,
            now=self.clock(),
            description=data.description,
            priority=data.priority,
            visibility=data.visibility,
            deadline=data.deadline,
            team_id=data.team_id,
            assignee_id=data.assignee_id,
            status_template=status_template,
        )
        created = await self._call("create_workflow", self.instance_repo.create_workflow(workflow, transition))
        logger.info("Workflow %s created from template %s by %s (%d steps)",
                    created.id, template.id, actor_id, created.total_steps)
        return created

    async def _transition(self, workflow_id: str, action: str, expected_version: Optional[int],
                          apply: Callable[[Workflow, datetime], Tuple[Workflow, WorkflowTransition]]) -> Workflow:
        """One read-modify-write: load, run the state machine, write guarded by the read version."""
        current = await self.get_workflow(workflow_id)
        if expected_version is not None and expected_version != current.version:
            raise ConflictError.version_mismatch(workflow_id, expected_version, current.version)

        updated, transition = apply(current, self.clock())
        saved = await self._call(action, self.instance_repo.update_workflow(updated, current.version, transition))
        logger.info("Workflow %s: %s (%s -> %s, step %d/%d, version %d)", workflow_id, action,
                    transition.from_status, transition.to_status, saved.current_step, saved.total_steps,
                    saved.version)
        return saved

    async def advance_step(self, workflow_id: str, actor_id: str, comments: Optional[str] = None,
                           expected_version: Optional[int] = None, assignee_id: Optional[str] = None) -> Workflow:
        return await self._transition(
            workflow_id, "advance_step", expected_version,
            lambda w, now: self.state_machine.advance_step(w, actor_id=actor_id, now=now, comments=comments,
                                                           assignee_id=assignee_id))

    async def complete_final_step(self, workflow_id: str, actor_id: str, comments: Optional[str] = None,
                                  expected_version: Optional[int] = None) -> Workflow:
        return await self._transition(
            workflow_id, "complete_final_step", expected_version,
            lambda w, now: self.state_machine.complete_final_step(w, actor_id=actor_id, now=now, comments=comments))

    async def pause(self, workflow_id: str, actor_id: str, comments: Optional[str] = None,
                    expected_version: Optional[int] = None) -> Workflow:
        return await self._transition(
            workflow_id, "pause", expected_version,
            lambda w, now: self.state_machine.pause(w, actor_id=actor_id, now=now, comments=comments))

    async def resume(self, workflow_id: str, actor_id: str, comments: Optional[str] = None,
                     expected_version: Optional[int] = None) -> Workflow:
        return await self._transition(
            workflow_id, "resume", expected_version,
            lambda w, now: self.state_machine.resume(w, actor_id=actor_id, now=now, comments=comments))

    async def cancel(self, workflow_id: str, actor_id: str, comments: Optional[str] = None,
                     expected_version: Optional[int] = None) -> Workflow:
        return await self._transition(
            workflow_id, "cancel", expected_version,
            lambda w, now: self.state_machine.cancel(w, actor_id=actor_id, now=now, comments=comments))

    async def archive(self, workflow_id: str, actor_id: str, comments: Optional[str] = None,
                      expected_version: Optional[int] = None) -> Workflow:
        return await self._transition(
            workflow_id, "archive", expected_version,
            lambda w, now: self.state_machine.archive(w, actor_id=actor_id, now=now, comments=comments))

    async def reassign(self, workflow_id: str, assignee_id: str, actor_id: str, comments: Optional[str] = None,
                       expected_version: Optional[int] = None) -> Workflow:
        return await self._transition(
            workflow_id, "reassign", expected_version,
            lambda w, now: self.state_machine.reassign(w, assignee_id, actor_id=actor_id, now=now,
                                                       comments=comments))

    async def set_custom_status(self, workflow_id: str, status_item_id: str, actor_id: str,
                                status_template_id: Optional[str] = None, comments: Optional[str] = None,
                                expected_version: Optional[int] = None) -> Workflow:
        if status_template_id:
            status_template = await self.get_status_template(status_template_id)
        else:
            status_template = await self._call(
                "find_status_template_by_item", self.status_template_repo.find_status_template_by_item(status_item_id))
            if not status_template:
                raise NotFoundError("StatusItem", status_item_id)

        return await self._transition(
            workflow_id, "set_custom_status", expected_version,
            lambda w, now: self.state_machine.set_custom_status(
                w, status_template, status_item_id, actor_id=actor_id, now=now, comments=comments))

    async def use_default_status(self, workflow_id: str, actor_id: str, comments: Optional[str] = None,
                                 expected_version: Optional[int] = None) -> Workflow:
        return await self._transition(
            workflow_id, "use_default_status", expected_version,
            lambda w, now: self.state_machine.use_default_status(w, actor_id=actor_id, now=now, comments=comments))

    async def update_workflow(self, workflow_id: str, changes: Dict[str, Any], actor_id: str,
                              comments: Optional[str] = None, expected_version: Optional[int] = None) -> Workflow:
        if not changes:
            raise ValidationError("No fields to update.")
        return await self._transition(
            workflow_id, "update", expected_version,
            lambda w, now: self.state_machine.update_details(w, changes, actor_id=actor_id, now=now,
                                                             comments=comments))

    # --- Dashboard ---

    async def _all_workflows(self, workflow_filter: Optional[WorkflowFilter]) -> List[Workflow]:
        items, _ = await self._call(
            "list_workflows", self.instance_repo.list_workflows(workflow_filter or WorkflowFilter(), 0, None))
        return items

    async def group_workflows(self, workflow_filter: Optional[WorkflowFilter] = None) -> List[StatusGroup]:
        return aggregator.group_by_effective_status(await self._all_workflows(workflow_filter))

    async def workload(self, workflow_filter: Optional[WorkflowFilter] = None) -> List[UserWorkload]:
        workflows = await self._all_workflows(workflow_filter)
        return aggregator.compute_workload(workflows, now=self.clock(), threshold=self.workload_threshold)

    async def stats(self, workflow_filter: Optional[WorkflowFilter] = None) -> WorkflowStats:
        workflows = await self._all_workflows(workflow_filter)
        return aggregator.compute_stats(workflows, self.clock(), self.near_deadline_days)
