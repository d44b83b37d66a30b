from datetime import datetime, timezone

import pytest

from process_tracker.models import (
    StatusItem,
    StatusTemplate,
    TemplateStep,
    Workflow,
    WorkflowTemplate,
)
from process_tracker.repository import InMemoryWorkflowRepository
from process_tracker.services import WorkflowService
from process_tracker.state_machine import WorkflowStateMachine

FIXED_NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def state_machine() -> WorkflowStateMachine:
    return WorkflowStateMachine()


@pytest.fixture
def template(now) -> WorkflowTemplate:
    return WorkflowTemplate(
        id="tpl_onboard",
        name="Employee onboarding",
        steps=[
            TemplateStep(id="step_1", name="Collect documents", step_order=1),
            TemplateStep(id="step_2", name="Set up accounts", step_order=2),
            TemplateStep(id="step_3", name="Manager sign-off", step_order=3),
        ],
        created_at=now,
        updated_at=now,
    )


@pytest.fixture
def status_template(now) -> StatusTemplate:
    return StatusTemplate(
        id="stpl_review",
        name="Review board",
        status_items=[
            StatusItem(id="sts_todo", name="To do", color="#cccccc", order_index=1, is_initial=True),
            StatusItem(id="sts_review", name="In review", color="#3366ff", order_index=2),
            StatusItem(id="sts_done", name="Done", color="#00aa00", order_index=3, is_final=True),
        ],
        created_at=now,
        updated_at=now,
    )


@pytest.fixture
def workflow_factory(now):
    counter = {"n": 0}

    def make(**overrides) -> Workflow:
        counter["n"] += 1
        fields = {
            "id": f"wf_{counter['n']:03d}",
            "template_id": "tpl_onboard",
            "title": f"Workflow {counter['n']}",
            "created_by_id": "creator",
            "created_at": now,
            "updated_at": now,
            "current_step": 1,
            "total_steps": 3,
        }
        fields.update(overrides)
        return Workflow(**fields)

    return make


@pytest.fixture
def memory_repo() -> InMemoryWorkflowRepository:
    return InMemoryWorkflowRepository()


@pytest.fixture
def memory_service(memory_repo, clock) -> WorkflowService:
    return WorkflowService(
        template_repo=memory_repo,
        status_template_repo=memory_repo,
        instance_repo=memory_repo,
        clock=clock,
    )
