# repository.py
import asyncio
import functools
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, or_, update
from sqlalchemy.exc import SQLAlchemyError

from process_tracker.db_models import StatusItem as StatusItemORM
from process_tracker.db_models import StatusTemplate as StatusTemplateORM
from process_tracker.db_models import TemplateStep as TemplateStepORM
from process_tracker.db_models import Workflow as WorkflowORM
from process_tracker.db_models import WorkflowTemplate as WorkflowTemplateORM
from process_tracker.db_models import WorkflowTransition as WorkflowTransitionORM
from process_tracker.db_models.enums import StatusKind
from process_tracker.errors import ConflictError, NotFoundError
from process_tracker.models import (
    CustomStatusState,
    DefaultStatusState,
    StatusItem,
    StatusTemplate,
    TemplateStep,
    Workflow,
    WorkflowFilter,
    WorkflowTemplate,
    WorkflowTransition,
)


class TemplateRepository(ABC):
    @abstractmethod
    async def get_template_by_id(self, template_id: str) -> Optional[WorkflowTemplate]:
        pass

    @abstractmethod
    async def list_templates(self, offset: int, limit: int) -> Tuple[List[WorkflowTemplate], int]:
        pass

    @abstractmethod
    async def create_template(self, template: WorkflowTemplate) -> WorkflowTemplate:
        pass

    @abstractmethod
    async def update_template(self, template: WorkflowTemplate) -> Optional[WorkflowTemplate]:
        pass

    @abstractmethod
    async def delete_template(self, template_id: str) -> None:
        """Raises NotFoundError, or ConflictError when workflows still reference the template."""
        pass


class StatusTemplateRepository(ABC):
    @abstractmethod
    async def get_status_template_by_id(self, status_template_id: str) -> Optional[StatusTemplate]:
        pass

    @abstractmethod
    async def find_status_template_by_item(self, status_item_id: str) -> Optional[StatusTemplate]:
        pass

    @abstractmethod
    async def list_status_templates(self, offset: int, limit: int) -> Tuple[List[StatusTemplate], int]:
        pass

    @abstractmethod
    async def create_status_template(self, status_template: StatusTemplate) -> StatusTemplate:
        pass

    @abstractmethod
    async def update_status_template(self, status_template: StatusTemplate) -> Optional[StatusTemplate]:
        pass

    @abstractmethod
    async def delete_status_template(self, status_template_id: str) -> None:
        """Raises NotFoundError, or ConflictError when workflows still reference the status template."""
        pass

    @abstractmethod
    async def count_workflows_with_custom_status(self, status_item_id: str) -> int:
        pass


class WorkflowInstanceRepository(ABC):
    @abstractmethod
    async def get_workflow_by_id(self, workflow_id: str) -> Optional[Workflow]:
        pass

    @abstractmethod
    async def list_workflows(self, workflow_filter: WorkflowFilter, offset: int, limit: Optional[int]) -> Tuple[
        List[Workflow], int]:
        pass

    @abstractmethod
    async def create_workflow(self, workflow: Workflow, transition: WorkflowTransition) -> Workflow:
        pass

    @abstractmethod
    async def update_workflow(self, workflow: Workflow, expected_version: int,
                              transition: WorkflowTransition) -> Workflow:
        """Writes the workflow only if the stored version still equals ``expected_version``.

        The stored version is incremented and the transition is recorded in the same write.
        Raises NotFoundError or ConflictError.
        """
        pass

    @abstractmethod
    async def list_transitions(self, workflow_id: str) -> List[WorkflowTransition]:
        pass


def _offloaded(func):
    """Runs a blocking session method in a worker thread so callers can time it out."""

    @functools.wraps(func)
    async def wrapper(self, *args, **kwargs):
        return await asyncio.to_thread(func, self, *args, **kwargs)

    return wrapper


def _sort_workflows(workflows: List[Workflow]) -> List[Workflow]:
    return sorted(workflows, key=lambda w: (w.updated_at, w.id), reverse=True)


class InMemoryWorkflowRepository(TemplateRepository, StatusTemplateRepository, WorkflowInstanceRepository):
    def __init__(self):
        self._lock = threading.Lock()
        self._templates: Dict[str, WorkflowTemplate] = {}
        self._status_templates: Dict[str, StatusTemplate] = {}
        self._workflows: Dict[str, Workflow] = {}
        self._transitions: Dict[str, List[WorkflowTransition]] = {}

    # --- templates ---

    async def get_template_by_id(self, template_id: str) -> Optional[WorkflowTemplate]:
        template = self._templates.get(template_id)
        return template.model_copy(deep=True) if template else None

    async def list_templates(self, offset: int, limit: int) -> Tuple[List[WorkflowTemplate], int]:
        templates = sorted(self._templates.values(), key=lambda t: (t.created_at, t.id))
        return [t.model_copy(deep=True) for t in templates[offset:offset + limit]], len(templates)

    async def create_template(self, template: WorkflowTemplate) -> WorkflowTemplate:
        with self._lock:
            self._templates[template.id] = template.model_copy(deep=True)
        return template.model_copy(deep=True)

    async def update_template(self, template: WorkflowTemplate) -> Optional[WorkflowTemplate]:
        with self._lock:
            if template.id not in self._templates:
                return None
            self._templates[template.id] = template.model_copy(deep=True)
        return template.model_copy(deep=True)

    async def delete_template(self, template_id: str) -> None:
        with self._lock:
            if template_id not in self._templates:
                raise NotFoundError("WorkflowTemplate", template_id)
            in_use = sum(1 for w in self._workflows.values() if w.template_id == template_id)
            if in_use:
                raise ConflictError.in_use(in_use)
            del self._templates[template_id]

    # --- status templates ---

    async def get_status_template_by_id(self, status_template_id: str) -> Optional[StatusTemplate]:
        status_template = self._status_templates.get(status_template_id)
        return status_template.model_copy(deep=True) if status_template else None

    async def find_status_template_by_item(self, status_item_id: str) -> Optional[StatusTemplate]:
        for status_template in self._status_templates.values():
            if status_template.find_item(status_item_id):
                return status_template.model_copy(deep=True)
        return None

    async def list_status_templates(self, offset: int, limit: int) -> Tuple[List[StatusTemplate], int]:
        templates = sorted(self._status_templates.values(), key=lambda t: (t.created_at, t.id))
        return [t.model_copy(deep=True) for t in templates[offset:offset + limit]], len(templates)

    async def create_status_template(self, status_template: StatusTemplate) -> StatusTemplate:
        with self._lock:
            self._status_templates[status_template.id] = status_template.model_copy(deep=True)
        return status_template.model_copy(deep=True)

    async def update_status_template(self, status_template: StatusTemplate) -> Optional[StatusTemplate]:
        with self._lock:
            if status_template.id not in self._status_templates:
                return None
            self._status_templates[status_template.id] = status_template.model_copy(deep=True)
        return status_template.model_copy(deep=True)

    async def delete_status_template(self, status_template_id: str) -> None:
        with self._lock:
            if status_template_id not in self._status_templates:
                raise NotFoundError("StatusTemplate", status_template_id)
            in_use = sum(1 for w in self._workflows.values() if w.status_template_id == status_template_id)
            if in_use:
                raise ConflictError.in_use(in_use)
            del self._status_templates[status_template_id]

    async def count_workflows_with_custom_status(self, status_item_id: str) -> int:
        return sum(
            1 for w in self._workflows.values()
            if isinstance(w.status, CustomStatusState) and w.status.status_item_id == status_item_id
        )

    # --- workflows ---

    async def get_workflow_by_id(self, workflow_id: str) -> Optional[Workflow]:
        workflow = self._workflows.get(workflow_id)
        return workflow.model_copy(deep=True) if workflow else None

    async def list_workflows(self, workflow_filter: WorkflowFilter, offset: int, limit: Optional[int]) -> Tuple[
        List[Workflow], int]:
        matching = _sort_workflows([w for w in self._workflows.values() if workflow_filter.matches(w)])
        window = matching[offset:] if limit is None else matching[offset:offset + limit]
        return [w.model_copy(deep=True) for w in window], len(matching)

    async def create_workflow(self, workflow: Workflow, transition: WorkflowTransition) -> Workflow:
        with self._lock:
            self._workflows[workflow.id] = workflow.model_copy(deep=True)
            self._transitions[workflow.id] = [transition.model_copy(deep=True)]
        return workflow.model_copy(deep=True)

    async def update_workflow(self, workflow: Workflow, expected_version: int,
                              transition: WorkflowTransition) -> Workflow:
        with self._lock:
            stored = self._workflows.get(workflow.id)
            if stored is None:
                raise NotFoundError("Workflow", workflow.id)
            if stored.version != expected_version:
                raise ConflictError.version_mismatch(workflow.id, expected_version, stored.version)
            saved = workflow.model_copy(update={"version": expected_version + 1}, deep=True)
            self._workflows[workflow.id] = saved
            self._transitions.setdefault(workflow.id, []).append(transition.model_copy(deep=True))
        return saved.model_copy(deep=True)

    async def list_transitions(self, workflow_id: str) -> List[WorkflowTransition]:
        transitions = self._transitions.get(workflow_id, [])
        ordered = sorted(enumerate(transitions), key=lambda pair: (pair[1].created_at, pair[0]), reverse=True)
        return [t.model_copy(deep=True) for _, t in ordered]


class SQLAlchemyWorkflowRepository(TemplateRepository, StatusTemplateRepository, WorkflowInstanceRepository):
    def __init__(self, db_session):
        self.db_session = db_session

    # --- mapping ---

    @staticmethod
    def _to_template(orm: WorkflowTemplateORM) -> WorkflowTemplate:
        return WorkflowTemplate(
            id=orm.id,
            name=orm.name,
            description=orm.description,
            visibility=orm.visibility,
            created_by_id=orm.created_by_id,
            steps=[TemplateStep.model_validate(step) for step in sorted(orm.steps, key=lambda s: s.step_order)],
            created_at=orm.created_at,
            updated_at=orm.updated_at,
        )

    @staticmethod
    def _to_status_template(orm: StatusTemplateORM) -> StatusTemplate:
        return StatusTemplate(
            id=orm.id,
            name=orm.name,
            description=orm.description,
            is_default=orm.is_default,
            created_by_id=orm.created_by_id,
            status_items=[StatusItem.model_validate(item)
                          for item in sorted(orm.status_items, key=lambda i: i.order_index)],
            created_at=orm.created_at,
            updated_at=orm.updated_at,
        )

    @staticmethod
    def _to_workflow(orm: WorkflowORM) -> Workflow:
        if orm.status_kind == StatusKind.custom:
            status = CustomStatusState(
                status_template_id=orm.status_template_id,
                status_item_id=orm.custom_status_id,
                name=orm.custom_status_name,
                color=orm.custom_status_color,
                order_index=orm.custom_status_order_index,
                is_final=bool(orm.custom_status_is_final),
            )
        else:
            status = DefaultStatusState(value=orm.default_status)
        return Workflow(
            id=orm.id,
            template_id=orm.template_id,
            title=orm.title,
            description=orm.description,
            priority=orm.priority,
            visibility=orm.visibility,
            deadline=orm.deadline,
            team_id=orm.team_id,
            assignee_id=orm.assignee_id,
            created_by_id=orm.created_by_id,
            created_at=orm.created_at,
            updated_at=orm.updated_at,
            current_step=orm.current_step,
            total_steps=orm.total_steps,
            status_template_id=orm.status_template_id,
            status=status,
            version=orm.version,
        )

    @staticmethod
    def _workflow_columns(workflow: Workflow) -> dict:
        values = {
            "title": workflow.title,
            "description": workflow.description,
            "priority": workflow.priority,
            "visibility": workflow.visibility,
            "deadline": workflow.deadline,
            "team_id": workflow.team_id,
            "assignee_id": workflow.assignee_id,
            "updated_at": workflow.updated_at,
            "current_step": workflow.current_step,
            "total_steps": workflow.total_steps,
            "status_template_id": workflow.status_template_id,
        }
        status = workflow.status
        if isinstance(status, CustomStatusState):
            values.update({
                "status_kind": StatusKind.custom,
                "default_status": None,
                "custom_status_id": status.status_item_id,
                "custom_status_name": status.name,
                "custom_status_color": status.color,
                "custom_status_order_index": status.order_index,
                "custom_status_is_final": status.is_final,
            })
        else:
            values.update({
                "status_kind": StatusKind.default,
                "default_status": status.value,
                "custom_status_id": None,
                "custom_status_name": None,
                "custom_status_color": None,
                "custom_status_order_index": None,
                "custom_status_is_final": None,
            })
        return values

    @staticmethod
    def _transition_to_orm(transition: WorkflowTransition) -> WorkflowTransitionORM:
        return WorkflowTransitionORM(**transition.model_dump())

    def _commit(self):
        try:
            self.db_session.commit()
        except SQLAlchemyError:
            self.db_session.rollback()
            raise

    # --- templates ---

    @_offloaded
    def get_template_by_id(self, template_id: str) -> Optional[WorkflowTemplate]:
        orm = self.db_session.query(WorkflowTemplateORM).filter(WorkflowTemplateORM.id == template_id).first()
        return self._to_template(orm) if orm else None

    @_offloaded
    def list_templates(self, offset: int, limit: int) -> Tuple[List[WorkflowTemplate], int]:
        query = self.db_session.query(WorkflowTemplateORM)
        total = query.count()
        rows = query.order_by(WorkflowTemplateORM.created_at, WorkflowTemplateORM.id).offset(offset).limit(limit).all()
        return [self._to_template(row) for row in rows], total

    @_offloaded
    def create_template(self, template: WorkflowTemplate) -> WorkflowTemplate:
        orm = WorkflowTemplateORM(
            id=template.id,
            name=template.name,
            description=template.description,
            visibility=template.visibility,
            created_by_id=template.created_by_id,
            created_at=template.created_at,
            updated_at=template.updated_at,
            steps=[TemplateStepORM(**step.model_dump()) for step in template.steps],
        )
        self.db_session.add(orm)
        self._commit()
        self.db_session.refresh(orm)
        return self._to_template(orm)

    @_offloaded
    def update_template(self, template: WorkflowTemplate) -> Optional[WorkflowTemplate]:
        orm = self.db_session.query(WorkflowTemplateORM).filter(WorkflowTemplateORM.id == template.id).first()
        if not orm:
            return None
        orm.name = template.name
        orm.description = template.description
        orm.visibility = template.visibility
        orm.updated_at = template.updated_at
        existing = {step.id: step for step in orm.steps}
        steps = []
        for step in template.steps:
            step_orm = existing.get(step.id) or TemplateStepORM(id=step.id)
            step_orm.name = step.name
            step_orm.description = step.description
            step_orm.step_order = step.step_order
            steps.append(step_orm)
        orm.steps = steps
        self._commit()
        self.db_session.refresh(orm)
        return self._to_template(orm)

    @_offloaded
    def delete_template(self, template_id: str) -> None:
        orm = self.db_session.query(WorkflowTemplateORM).filter(WorkflowTemplateORM.id == template_id).first()
        if not orm:
            raise NotFoundError("WorkflowTemplate", template_id)
        in_use = self.db_session.query(func.count(WorkflowORM.id)).filter(
            WorkflowORM.template_id == template_id).scalar()
        if in_use:
            raise ConflictError.in_use(in_use)
        self.db_session.delete(orm)
        self._commit()

    # --- status templates ---

    @_offloaded
    def get_status_template_by_id(self, status_template_id: str) -> Optional[StatusTemplate]:
        orm = self.db_session.query(StatusTemplateORM).filter(StatusTemplateORM.id == status_template_id).first()
        return self._to_status_template(orm) if orm else None

    @_offloaded
    def find_status_template_by_item(self, status_item_id: str) -> Optional[StatusTemplate]:
        item = self.db_session.query(StatusItemORM).filter(StatusItemORM.id == status_item_id).first()
        return self._to_status_template(item.template) if item else None

    @_offloaded
    def list_status_templates(self, offset: int, limit: int) -> Tuple[List[StatusTemplate], int]:
        query = self.db_session.query(StatusTemplateORM)
        total = query.count()
        rows = query.order_by(StatusTemplateORM.created_at, StatusTemplateORM.id).offset(offset).limit(limit).all()
        return [self._to_status_template(row) for row in rows], total

    @_offloaded
    def create_status_template(self, status_template: StatusTemplate) -> StatusTemplate:
        orm = StatusTemplateORM(
            id=status_template.id,
            name=status_template.name,
            description=status_template.description,
            is_default=status_template.is_default,
            created_by_id=status_template.created_by_id,
            created_at=status_template.created_at,
            updated_at=status_template.updated_at,
            status_items=[StatusItemORM(**item.model_dump()) for item in status_template.status_items],
        )
        self.db_session.add(orm)
        self._commit()
        self.db_session.refresh(orm)
        return self._to_status_template(orm)

    @_offloaded
    def update_status_template(self, status_template: StatusTemplate) -> Optional[StatusTemplate]:
        orm = self.db_session.query(StatusTemplateORM).filter(StatusTemplateORM.id == status_template.id).first()
        if not orm:
            return None
        orm.name = status_template.name
        orm.description = status_template.description
        orm.is_default = status_template.is_default
        orm.updated_at = status_template.updated_at

        existing = {item.id: item for item in orm.status_items}
        items = []
        for item in status_template.status_items:
            item_orm = existing.get(item.id) or StatusItemORM(id=item.id)
            item_orm.name = item.name
            item_orm.description = item.description
            item_orm.color = item.color
            item_orm.order_index = item.order_index
            item_orm.is_initial = item.is_initial
            item_orm.is_final = item.is_final
            items.append(item_orm)
        orm.status_items = items
        self._commit()
        self.db_session.refresh(orm)
        return self._to_status_template(orm)

    @_offloaded
    def delete_status_template(self, status_template_id: str) -> None:
        orm = self.db_session.query(StatusTemplateORM).filter(StatusTemplateORM.id == status_template_id).first()
        if not orm:
            raise NotFoundError("StatusTemplate", status_template_id)
        in_use = self.db_session.query(func.count(WorkflowORM.id)).filter(
            WorkflowORM.status_template_id == status_template_id).scalar()
        if in_use:
            raise ConflictError.in_use(in_use)
        self.db_session.delete(orm)
        self._commit()

    @_offloaded
    def count_workflows_with_custom_status(self, status_item_id: str) -> int:
        return self.db_session.query(func.count(WorkflowORM.id)).filter(
            WorkflowORM.custom_status_id == status_item_id).scalar()

    # --- workflows ---

    def _load_workflow(self, workflow_id: str) -> Optional[Workflow]:
        orm = self.db_session.query(WorkflowORM).filter(WorkflowORM.id == workflow_id).first()
        return self._to_workflow(orm) if orm else None

    @_offloaded
    def get_workflow_by_id(self, workflow_id: str) -> Optional[Workflow]:
        return self._load_workflow(workflow_id)

    def _filtered_query(self, workflow_filter: WorkflowFilter):
        query = self.db_session.query(WorkflowORM)
        if workflow_filter.status is not None:
            query = query.filter(WorkflowORM.status_kind == StatusKind.default,
                                 WorkflowORM.default_status == workflow_filter.status)
        if workflow_filter.custom_status_id is not None:
            query = query.filter(WorkflowORM.status_kind == StatusKind.custom,
                                 WorkflowORM.custom_status_id == workflow_filter.custom_status_id)
        if workflow_filter.template_id is not None:
            query = query.filter(WorkflowORM.template_id == workflow_filter.template_id)
        if workflow_filter.status_template_id is not None:
            query = query.filter(WorkflowORM.status_template_id == workflow_filter.status_template_id)
        if workflow_filter.team_id is not None:
            query = query.filter(WorkflowORM.team_id == workflow_filter.team_id)
        if workflow_filter.assignee_id is not None:
            query = query.filter(WorkflowORM.assignee_id == workflow_filter.assignee_id)
        if workflow_filter.created_by_id is not None:
            query = query.filter(WorkflowORM.created_by_id == workflow_filter.created_by_id)
        if workflow_filter.priority is not None:
            query = query.filter(WorkflowORM.priority == workflow_filter.priority)
        if workflow_filter.search and workflow_filter.search.strip():
            term = f"%{workflow_filter.search.strip()}%"
            query = query.filter(or_(WorkflowORM.title.ilike(term), WorkflowORM.description.ilike(term)))
        return query

    @_offloaded
    def list_workflows(self, workflow_filter: WorkflowFilter, offset: int, limit: Optional[int]) -> Tuple[
        List[Workflow], int]:
        query = self._filtered_query(workflow_filter)
        total = query.count()
        query = query.order_by(WorkflowORM.updated_at.desc(), WorkflowORM.id.desc()).offset(offset)
        if limit is not None:
            query = query.limit(limit)
        return [self._to_workflow(row) for row in query.all()], total

    @_offloaded
    def create_workflow(self, workflow: Workflow, transition: WorkflowTransition) -> Workflow:
        orm = WorkflowORM(
            id=workflow.id,
            template_id=workflow.template_id,
            created_by_id=workflow.created_by_id,
            created_at=workflow.created_at,
            version=workflow.version,
            **self._workflow_columns(workflow),
        )
        self.db_session.add(orm)
        self.db_session.add(self._transition_to_orm(transition))
        self._commit()
        self.db_session.refresh(orm)
        return self._to_workflow(orm)

    @_offloaded
    def update_workflow(self, workflow: Workflow, expected_version: int,
                              transition: WorkflowTransition) -> Workflow:
        values = self._workflow_columns(workflow)
        values["version"] = expected_version + 1
        try:
            result = self.db_session.execute(
                update(WorkflowORM)
                .where(WorkflowORM.id == workflow.id, WorkflowORM.version == expected_version)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                self.db_session.rollback()
                current = self.db_session.query(WorkflowORM.version).filter(WorkflowORM.id == workflow.id).scalar()
                if current is None:
                    raise NotFoundError("Workflow", workflow.id)
                raise ConflictError.version_mismatch(workflow.id, expected_version, current)
            self.db_session.add(self._transition_to_orm(transition))
            self.db_session.commit()
        except SQLAlchemyError:
            self.db_session.rollback()
            raise

        self.db_session.expire_all()
        return self._load_workflow(workflow.id)

    @_offloaded
    def list_transitions(self, workflow_id: str) -> List[WorkflowTransition]:
        rows = self.db_session.query(WorkflowTransitionORM).filter(
            WorkflowTransitionORM.workflow_id == workflow_id
        ).order_by(WorkflowTransitionORM.created_at.desc(), WorkflowTransitionORM.id.desc()).all()
        return [WorkflowTransition.model_validate(row) for row in rows]
