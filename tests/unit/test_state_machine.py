import random
from datetime import timedelta

import pytest

from process_tracker.db_models.enums import DefaultStatus, Priority, TransitionType
from process_tracker.derived_state import progress_percentage
from process_tracker.errors import InvalidTransitionError, StepOutOfRangeError, ValidationError, WorkflowEngineError
from process_tracker.models import CustomStatusState, DefaultStatusState, StatusItem, StatusTemplate, WorkflowTemplate


def test_create_starts_at_first_step(state_machine, template, now):
    workflow, transition = state_machine.create(template, title="  Onboard Ada ", created_by_id="alice", now=now)

    assert workflow.total_steps == 3
    assert workflow.current_step == 1
    assert workflow.status == DefaultStatusState(value=DefaultStatus.in_progress)
    assert workflow.title == "Onboard Ada"
    assert workflow.version == 1
    assert workflow.created_at == now
    assert transition.transition_type == TransitionType.creation
    assert transition.workflow_id == workflow.id
    assert transition.to_step == 1
    assert transition.to_status == "in_progress"


def test_create_with_status_template_uses_initial_item(state_machine, template, status_template, now):
    workflow, transition = state_machine.create(
        template, title="Review", created_by_id="alice", now=now, status_template=status_template)

    assert isinstance(workflow.status, CustomStatusState)
    assert workflow.status.status_item_id == "sts_todo"
    assert workflow.status_template_id == "stpl_review"
    assert transition.to_status == "To do"


def test_create_rejects_template_without_steps(state_machine, now):
    empty = WorkflowTemplate(id="tpl_empty", name="Empty")
    with pytest.raises(ValidationError):
        state_machine.create(empty, title="Nothing to do", created_by_id="alice", now=now)


def test_create_rejects_blank_title(state_machine, template, now):
    with pytest.raises(ValidationError):
        state_machine.create(template, title="   ", created_by_id="alice", now=now)


def test_create_rejects_status_template_without_initial_item(state_machine, template, now):
    no_initial = StatusTemplate(
        id="stpl_broken", name="Broken",
        status_items=[StatusItem(id="sts_a", name="A", order_index=1)],
    )
    with pytest.raises(ValidationError):
        state_machine.create(template, title="T", created_by_id="alice", now=now, status_template=no_initial)


def test_total_steps_is_a_snapshot_of_the_template(state_machine, template, now):
    workflow, _ = state_machine.create(template, title="T", created_by_id="alice", now=now)
    template.steps.pop()

    assert workflow.total_steps == 3


def test_advance_step_moves_forward_and_records_history(state_machine, workflow_factory, now):
    workflow = workflow_factory()
    later = now + timedelta(hours=1)

    updated, transition = state_machine.advance_step(workflow, actor_id="bob", now=later, comments="docs in")

    assert updated.current_step == 2
    assert updated.updated_at == later
    assert workflow.current_step == 1
    assert transition.transition_type == TransitionType.step_change
    assert (transition.from_step, transition.to_step) == (1, 2)
    assert transition.created_by_id == "bob"
    assert transition.comments == "docs in"


def test_advance_step_hands_next_step_to_new_assignee(state_machine, workflow_factory, now):
    workflow = workflow_factory(assignee_id="carol")

    updated, transition = state_machine.advance_step(workflow, actor_id="carol", now=now, assignee_id=" dave ")

    assert updated.current_step == 2
    assert updated.assignee_id == "dave"
    assert workflow.assignee_id == "carol"
    assert (transition.from_user_id, transition.to_user_id) == ("carol", "dave")


def test_advance_step_without_assignee_keeps_current_one(state_machine, workflow_factory, now):
    updated, transition = state_machine.advance_step(workflow_factory(assignee_id="carol"), actor_id="bob", now=now)

    assert updated.assignee_id == "carol"
    assert transition.to_user_id == "carol"


def test_advance_step_rejects_blank_assignee(state_machine, workflow_factory, now):
    workflow = workflow_factory()

    with pytest.raises(ValidationError):
        state_machine.advance_step(workflow, actor_id="bob", now=now, assignee_id="  ")
    assert workflow.current_step == 1


def test_advance_past_last_step_is_out_of_range(state_machine, workflow_factory, now):
    workflow = workflow_factory(current_step=3)

    with pytest.raises(StepOutOfRangeError) as exc_info:
        state_machine.advance_step(workflow, actor_id="bob", now=now)

    assert exc_info.value.current_step == 3
    assert exc_info.value.total_steps == 3
    assert workflow.current_step == 3


def test_complete_final_step_requires_last_step(state_machine, workflow_factory, now):
    with pytest.raises(StepOutOfRangeError):
        state_machine.complete_final_step(workflow_factory(current_step=2), actor_id="bob", now=now)

    completed, transition = state_machine.complete_final_step(
        workflow_factory(current_step=3), actor_id="bob", now=now)
    assert completed.status.value == DefaultStatus.completed
    assert completed.is_terminal
    assert transition.to_status == "completed"


def test_complete_final_step_is_not_available_with_custom_statuses(state_machine, workflow_factory, status_template,
                                                                   now):
    workflow = workflow_factory(
        current_step=3,
        status_template_id=status_template.id,
        status=CustomStatusState.from_item(status_template.id, status_template.status_items[1]),
    )
    with pytest.raises(InvalidTransitionError):
        state_machine.complete_final_step(workflow, actor_id="bob", now=now)


def test_pause_and_resume_toggle(state_machine, workflow_factory, now):
    paused, _ = state_machine.pause(workflow_factory(), actor_id="bob", now=now)
    assert paused.status.value == DefaultStatus.paused
    assert not paused.is_terminal

    resumed, transition = state_machine.resume(paused, actor_id="bob", now=now)
    assert resumed.status.value == DefaultStatus.in_progress
    assert (transition.from_status, transition.to_status) == ("paused", "in_progress")


def test_resume_requires_paused(state_machine, workflow_factory, now):
    with pytest.raises(InvalidTransitionError) as exc_info:
        state_machine.resume(workflow_factory(), actor_id="bob", now=now)
    assert exc_info.value.from_state == "in_progress"
    assert exc_info.value.action == "resume"


def test_pause_is_rejected_under_custom_statuses(state_machine, workflow_factory, status_template, now):
    workflow = workflow_factory(
        status_template_id=status_template.id,
        status=CustomStatusState.from_item(status_template.id, status_template.status_items[0]),
    )
    with pytest.raises(InvalidTransitionError):
        state_machine.pause(workflow, actor_id="bob", now=now)


def test_paused_workflow_can_still_advance(state_machine, workflow_factory, now):
    paused = workflow_factory(status=DefaultStatusState(value=DefaultStatus.paused))
    updated, _ = state_machine.advance_step(paused, actor_id="bob", now=now)
    assert updated.current_step == 2
    assert updated.status.value == DefaultStatus.paused


@pytest.mark.parametrize("terminal", [DefaultStatus.completed, DefaultStatus.canceled, DefaultStatus.archived])
@pytest.mark.parametrize("action", [
    "advance_step", "complete_final_step", "pause", "resume", "cancel", "archive", "use_default_status",
])
def test_terminal_workflows_reject_every_transition(state_machine, workflow_factory, now, terminal, action):
    workflow = workflow_factory(current_step=3, status=DefaultStatusState(value=terminal))
    before = workflow.model_dump()

    with pytest.raises(InvalidTransitionError) as exc_info:
        getattr(state_machine, action)(workflow, actor_id="bob", now=now)

    assert exc_info.value.from_state == terminal.value
    assert workflow.model_dump() == before


def test_terminal_workflow_rejects_reassign_custom_status_and_update(state_machine, workflow_factory,
                                                                      status_template, now):
    workflow = workflow_factory(status=DefaultStatusState(value=DefaultStatus.canceled))
    before = workflow.model_dump()

    with pytest.raises(InvalidTransitionError):
        state_machine.reassign(workflow, "carol", actor_id="bob", now=now)
    with pytest.raises(InvalidTransitionError):
        state_machine.set_custom_status(workflow, status_template, "sts_review", actor_id="bob", now=now)
    with pytest.raises(InvalidTransitionError):
        state_machine.update_details(workflow, {"title": "New"}, actor_id="bob", now=now)
    assert workflow.model_dump() == before


def test_cancel_and_archive_close_the_workflow(state_machine, workflow_factory, now):
    canceled, _ = state_machine.cancel(workflow_factory(), actor_id="bob", now=now)
    archived, _ = state_machine.archive(workflow_factory(), actor_id="bob", now=now)

    assert canceled.status.value == DefaultStatus.canceled
    assert archived.status.value == DefaultStatus.archived
    assert canceled.is_terminal and archived.is_terminal


def test_cancel_leaves_custom_status_model(state_machine, workflow_factory, status_template, now):
    workflow = workflow_factory(
        status_template_id=status_template.id,
        status=CustomStatusState.from_item(status_template.id, status_template.status_items[1]),
    )
    canceled, transition = state_machine.cancel(workflow, actor_id="bob", now=now)

    assert canceled.status == DefaultStatusState(value=DefaultStatus.canceled)
    assert transition.from_status == "In review"


def test_reassign_changes_assignee_only(state_machine, workflow_factory, now):
    workflow = workflow_factory(assignee_id="alice", current_step=2)
    updated, transition = state_machine.reassign(workflow, "carol", actor_id="bob", now=now)

    assert updated.assignee_id == "carol"
    assert updated.current_step == 2
    assert updated.status == workflow.status
    assert transition.transition_type == TransitionType.assignment
    assert (transition.from_user_id, transition.to_user_id) == ("alice", "carol")


def test_reassign_rejects_blank_assignee(state_machine, workflow_factory, now):
    with pytest.raises(ValidationError):
        state_machine.reassign(workflow_factory(), " ", actor_id="bob", now=now)


def test_set_custom_status_binds_template_and_copies_item(state_machine, workflow_factory, status_template, now):
    updated, transition = state_machine.set_custom_status(
        workflow_factory(), status_template, "sts_review", actor_id="bob", now=now)

    assert updated.status_template_id == "stpl_review"
    assert updated.status == CustomStatusState(
        status_template_id="stpl_review", status_item_id="sts_review", name="In review", color="#3366ff",
        order_index=2, is_final=False,
    )
    assert transition.transition_type == TransitionType.custom_status_change
    assert (transition.from_status, transition.to_status) == ("in_progress", "In review")


def test_final_custom_status_is_terminal(state_machine, workflow_factory, status_template, now):
    done, _ = state_machine.set_custom_status(workflow_factory(), status_template, "sts_done", actor_id="bob", now=now)

    assert done.is_terminal
    with pytest.raises(InvalidTransitionError):
        state_machine.advance_step(done, actor_id="bob", now=now)


def test_set_custom_status_rejects_item_from_other_template(state_machine, workflow_factory, status_template, now):
    with pytest.raises(ValidationError):
        state_machine.set_custom_status(workflow_factory(), status_template, "sts_unknown", actor_id="bob", now=now)


def test_set_custom_status_rejects_other_bound_template(state_machine, workflow_factory, status_template, now):
    workflow = workflow_factory(status_template_id="stpl_other")
    with pytest.raises(ValidationError):
        state_machine.set_custom_status(workflow, status_template, "sts_review", actor_id="bob", now=now)


def test_use_default_status_switches_back(state_machine, workflow_factory, status_template, now):
    custom, _ = state_machine.set_custom_status(
        workflow_factory(), status_template, "sts_review", actor_id="bob", now=now)

    updated, _ = state_machine.use_default_status(custom, actor_id="bob", now=now)
    assert updated.status == DefaultStatusState(value=DefaultStatus.in_progress)

    with pytest.raises(InvalidTransitionError):
        state_machine.use_default_status(updated, actor_id="bob", now=now)


def test_update_details_edits_allowed_fields(state_machine, workflow_factory, now):
    deadline = now + timedelta(days=5)
    updated, transition = state_machine.update_details(
        workflow_factory(), {"title": "Renamed", "priority": Priority.high, "deadline": deadline},
        actor_id="bob", now=now)

    assert updated.title == "Renamed"
    assert updated.priority == Priority.high
    assert updated.deadline == deadline
    assert transition.transition_type == TransitionType.update
    assert transition.comments == "updated: deadline, priority, title"


def test_update_details_trims_title(state_machine, workflow_factory, now):
    changes = {"title": "  Renamed "}

    updated, _ = state_machine.update_details(workflow_factory(), changes, actor_id="bob", now=now)

    assert updated.title == "Renamed"
    assert changes == {"title": "  Renamed "}


def test_update_details_rejects_unknown_and_empty_fields(state_machine, workflow_factory, now):
    with pytest.raises(ValidationError):
        state_machine.update_details(workflow_factory(), {"current_step": 3}, actor_id="bob", now=now)
    with pytest.raises(ValidationError):
        state_machine.update_details(workflow_factory(), {"title": ""}, actor_id="bob", now=now)


@pytest.mark.parametrize("seed", range(5))
def test_random_transitions_keep_step_in_bounds_and_progress_monotonic(state_machine, workflow_factory, now, seed):
    rng = random.Random(seed)
    workflow = workflow_factory(total_steps=4)
    last_progress = progress_percentage(workflow.current_step, workflow.total_steps)
    actions = ["advance_step", "advance_step", "advance_step", "pause", "resume", "complete_final_step"]

    for _ in range(30):
        action = rng.choice(actions)
        try:
            workflow, _ = getattr(state_machine, action)(workflow, actor_id="bob", now=now)
        except WorkflowEngineError:
            pass
        assert 1 <= workflow.current_step <= workflow.total_steps
        progress = progress_percentage(workflow.current_step, workflow.total_steps)
        assert progress >= last_progress
        last_progress = progress

    if workflow.current_step == workflow.total_steps:
        assert last_progress == 100
