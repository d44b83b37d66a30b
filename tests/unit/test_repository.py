from datetime import timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from process_tracker.db_models import Base
from process_tracker.db_models.enums import DefaultStatus, Priority, TransitionType
from process_tracker.errors import ConflictError, NotFoundError
from process_tracker.models import (
    CustomStatusState,
    DefaultStatusState,
    StatusItem,
    WorkflowFilter,
    WorkflowTransition,
)
from process_tracker.repository import InMemoryWorkflowRepository, SQLAlchemyWorkflowRepository

# Use in-memory SQLite database for tests
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False},
                       poolclass=StaticPool)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db_session():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    yield session
    session.rollback()
    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(params=["memory", "sqlite"])
def repo(request):
    if request.param == "memory":
        return InMemoryWorkflowRepository()
    return SQLAlchemyWorkflowRepository(request.getfixturevalue("db_session"))


def _creation(workflow, when):
    return WorkflowTransition(workflow_id=workflow.id, transition_type=TransitionType.creation, to_step=1,
                              to_status=workflow.status.label, created_by_id=workflow.created_by_id,
                              created_at=when)


async def _seed(repo, template, status_template=None):
    await repo.create_template(template)
    if status_template is not None:
        await repo.create_status_template(status_template)


@pytest.mark.asyncio
async def test_template_round_trip(repo, template):
    await repo.create_template(template)

    loaded = await repo.get_template_by_id(template.id)

    assert loaded.name == "Employee onboarding"
    assert [s.step_order for s in loaded.steps] == [1, 2, 3]
    assert [s.id for s in loaded.steps] == ["step_1", "step_2", "step_3"]
    assert await repo.get_template_by_id("tpl_missing") is None


@pytest.mark.asyncio
async def test_list_templates_paginates(repo, template, now):
    for i in range(3):
        await repo.create_template(template.model_copy(update={
            "id": f"tpl_{i}", "steps": [], "created_at": now + timedelta(minutes=i)}))

    items, total = await repo.list_templates(offset=1, limit=1)

    assert total == 3
    assert [t.id for t in items] == ["tpl_1"]


@pytest.mark.asyncio
async def test_update_template_replaces_steps(repo, template):
    await repo.create_template(template)
    changed = template.model_copy(update={"name": "Renamed", "steps": template.steps[:2]}, deep=True)

    saved = await repo.update_template(changed)

    assert saved.name == "Renamed"
    assert saved.step_count == 2
    assert await repo.update_template(template.model_copy(update={"id": "tpl_missing"})) is None


@pytest.mark.asyncio
async def test_workflow_round_trip_with_custom_status(repo, template, status_template, workflow_factory, now):
    await _seed(repo, template, status_template)
    workflow = workflow_factory(
        status_template_id=status_template.id,
        status=CustomStatusState.from_item(status_template.id, status_template.status_items[1]),
        deadline=now + timedelta(days=2),
        assignee_id="alice",
    )

    await repo.create_workflow(workflow, _creation(workflow, now))
    loaded = await repo.get_workflow_by_id(workflow.id)

    assert loaded.status == workflow.status
    assert loaded.deadline == workflow.deadline
    assert loaded.created_at == now
    assert loaded.version == 1
    assert await repo.get_workflow_by_id("wf_missing") is None


@pytest.mark.asyncio
async def test_update_workflow_bumps_version(repo, template, workflow_factory, now):
    await _seed(repo, template)
    workflow = workflow_factory()
    await repo.create_workflow(workflow, _creation(workflow, now))

    advanced = workflow.model_copy(update={"current_step": 2, "updated_at": now + timedelta(minutes=5)})
    transition = WorkflowTransition(workflow_id=workflow.id, transition_type=TransitionType.step_change,
                                    from_step=1, to_step=2, created_at=now + timedelta(minutes=5))
    saved = await repo.update_workflow(advanced, expected_version=1, transition=transition)

    assert saved.version == 2
    assert saved.current_step == 2
    history = await repo.list_transitions(workflow.id)
    assert [t.transition_type for t in history] == [TransitionType.step_change, TransitionType.creation]


@pytest.mark.asyncio
async def test_update_workflow_with_stale_version_conflicts(repo, template, workflow_factory, now):
    await _seed(repo, template)
    workflow = workflow_factory()
    await repo.create_workflow(workflow, _creation(workflow, now))
    first = workflow.model_copy(update={"assignee_id": "alice"})
    second = workflow.model_copy(update={"assignee_id": "bob"})
    transition = WorkflowTransition(workflow_id=workflow.id, transition_type=TransitionType.assignment,
                                    created_at=now)

    await repo.update_workflow(first, expected_version=1, transition=transition)
    with pytest.raises(ConflictError) as exc_info:
        await repo.update_workflow(second, expected_version=1, transition=transition.model_copy(
            update={"id": "tr_second"}))

    assert exc_info.value.retryable is True
    stored = await repo.get_workflow_by_id(workflow.id)
    assert stored.assignee_id == "alice"
    assert stored.version == 2
    assert len(await repo.list_transitions(workflow.id)) == 2


@pytest.mark.asyncio
async def test_update_missing_workflow_is_not_found(repo, workflow_factory, now):
    workflow = workflow_factory()
    transition = WorkflowTransition(workflow_id=workflow.id, transition_type=TransitionType.update, created_at=now)
    with pytest.raises(NotFoundError):
        await repo.update_workflow(workflow, expected_version=1, transition=transition)


@pytest.mark.asyncio
async def test_list_workflows_filters_and_orders(repo, template, status_template, workflow_factory, now):
    await _seed(repo, template, status_template)
    workflows = [
        workflow_factory(id="wf_a", title="Laptop order", assignee_id="alice", updated_at=now),
        workflow_factory(id="wf_b", title="Badge request", assignee_id="alice", priority=Priority.high,
                         updated_at=now + timedelta(minutes=1)),
        workflow_factory(id="wf_c", title="Laptop return", assignee_id="bob", description="old LAPTOP",
                         status=DefaultStatusState(value=DefaultStatus.paused), updated_at=now + timedelta(minutes=2)),
        workflow_factory(id="wf_d", title="Review", status_template_id=status_template.id,
                         status=CustomStatusState.from_item(status_template.id, status_template.status_items[0]),
                         updated_at=now + timedelta(minutes=3)),
    ]
    for workflow in workflows:
        await repo.create_workflow(workflow, _creation(workflow, now))

    everything, total = await repo.list_workflows(WorkflowFilter(), 0, None)
    assert total == 4
    assert [w.id for w in everything] == ["wf_d", "wf_c", "wf_b", "wf_a"]

    page, total = await repo.list_workflows(WorkflowFilter(), 1, 2)
    assert total == 4
    assert [w.id for w in page] == ["wf_c", "wf_b"]

    by_assignee, _ = await repo.list_workflows(WorkflowFilter(assignee_id="alice"), 0, 10)
    assert {w.id for w in by_assignee} == {"wf_a", "wf_b"}

    by_search, _ = await repo.list_workflows(WorkflowFilter(search="laptop"), 0, 10)
    assert {w.id for w in by_search} == {"wf_a", "wf_c"}

    by_status, _ = await repo.list_workflows(WorkflowFilter(status=DefaultStatus.in_progress), 0, 10)
    assert {w.id for w in by_status} == {"wf_a", "wf_b"}

    by_custom, _ = await repo.list_workflows(WorkflowFilter(custom_status_id="sts_todo"), 0, 10)
    assert [w.id for w in by_custom] == ["wf_d"]

    combined, total = await repo.list_workflows(
        WorkflowFilter(assignee_id="alice", priority=Priority.high), 0, 10)
    assert total == 1
    assert combined[0].id == "wf_b"


@pytest.mark.asyncio
async def test_delete_template_in_use_conflicts(repo, template, workflow_factory, now):
    await _seed(repo, template)
    workflow = workflow_factory()
    await repo.create_workflow(workflow, _creation(workflow, now))

    with pytest.raises(ConflictError) as exc_info:
        await repo.delete_template(template.id)

    assert exc_info.value.referenced_by == 1
    assert await repo.get_template_by_id(template.id) is not None


@pytest.mark.asyncio
async def test_delete_unused_template(repo, template):
    await repo.create_template(template)

    await repo.delete_template(template.id)

    assert await repo.get_template_by_id(template.id) is None
    with pytest.raises(NotFoundError):
        await repo.delete_template(template.id)


@pytest.mark.asyncio
async def test_delete_status_template_referenced_by_two_workflows(repo, template, status_template,
                                                                  workflow_factory, now):
    await _seed(repo, template, status_template)
    for _ in range(2):
        workflow = workflow_factory(
            status_template_id=status_template.id,
            status=CustomStatusState.from_item(status_template.id, status_template.status_items[0]),
        )
        await repo.create_workflow(workflow, _creation(workflow, now))

    with pytest.raises(ConflictError) as exc_info:
        await repo.delete_status_template(status_template.id)

    assert exc_info.value.referenced_by == 2
    assert str(exc_info.value) == "cannot delete: 2 workflows use this template"
    assert await repo.get_status_template_by_id(status_template.id) is not None
    assert await repo.count_workflows_with_custom_status("sts_todo") == 2
    assert await repo.count_workflows_with_custom_status("sts_done") == 0


@pytest.mark.asyncio
async def test_status_template_lookup_and_item_merge(repo, status_template):
    await repo.create_status_template(status_template)

    found = await repo.find_status_template_by_item("sts_review")
    assert found.id == status_template.id
    assert await repo.find_status_template_by_item("sts_nowhere") is None

    items = [status_template.status_items[0].model_copy(update={"name": "Backlog"}),
             StatusItem(id="sts_closed", name="Closed", order_index=2, is_final=True)]
    saved = await repo.update_status_template(status_template.model_copy(update={"status_items": items}))

    assert [(i.id, i.name) for i in saved.status_items] == [("sts_todo", "Backlog"), ("sts_closed", "Closed")]
    assert saved.initial_item().id == "sts_todo"


@pytest.mark.asyncio
async def test_transitions_listed_newest_first(repo, template, workflow_factory, now):
    await _seed(repo, template)
    workflow = workflow_factory()
    await repo.create_workflow(workflow, _creation(workflow, now))
    current = workflow
    for minutes in (1, 2):
        when = now + timedelta(minutes=minutes)
        current = await repo.update_workflow(
            current.model_copy(update={"current_step": current.current_step + 1, "updated_at": when}),
            expected_version=current.version,
            transition=WorkflowTransition(workflow_id=workflow.id, transition_type=TransitionType.step_change,
                                          to_step=current.current_step + 1, created_at=when),
        )

    history = await repo.list_transitions(workflow.id)

    assert [t.to_step for t in history] == [3, 2, 1]
    assert history[0].created_at > history[-1].created_at
