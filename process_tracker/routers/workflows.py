from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from process_tracker.core.security import AuthenticatedUser, get_current_user
from process_tracker.db_models.enums import DefaultStatus, Priority
from process_tracker.dependencies import get_workflow_service
from process_tracker.models import (
    AdvanceRequest,
    CustomStatusRequest,
    Page,
    ReassignRequest,
    StepAssignment,
    TransitionRequest,
    Workflow,
    WorkflowCreateRequest,
    WorkflowFilter,
    WorkflowSummary,
    WorkflowTransition,
    WorkflowUpdateRequest,
)
from process_tracker.services import WorkflowService

router = APIRouter(
    prefix="/api/workflows",
    tags=["Workflows"],
)


def get_workflow_filter(
        status: Optional[DefaultStatus] = None,
        custom_status_id: Optional[str] = None,
        template_id: Optional[str] = None,
        status_template_id: Optional[str] = None,
        team_id: Optional[str] = None,
        assignee_id: Optional[str] = None,
        created_by_id: Optional[str] = None,
        priority: Optional[Priority] = None,
        search: Optional[str] = None,
) -> WorkflowFilter:
    return WorkflowFilter(
        status=status,
        custom_status_id=custom_status_id,
        template_id=template_id,
        status_template_id=status_template_id,
        team_id=team_id,
        assignee_id=assignee_id,
        created_by_id=created_by_id,
        priority=priority,
        search=search,
    )


@router.post("", response_model=Workflow, status_code=status.HTTP_201_CREATED, operation_id="create_workflow")
async def create_workflow(
        data: WorkflowCreateRequest,
        current_user: AuthenticatedUser = Depends(get_current_user),
        service: WorkflowService = Depends(get_workflow_service),
):
    return await service.create_workflow(data, current_user.user_id)


@router.get("", response_model=Page[WorkflowSummary], operation_id="list_workflows")
async def list_workflows(
        workflow_filter: WorkflowFilter = Depends(get_workflow_filter),
        page: int = Query(0, ge=0),
        size: Optional[int] = Query(None, ge=1),
        current_user: AuthenticatedUser = Depends(get_current_user),
        service: WorkflowService = Depends(get_workflow_service),
):
    return await service.list_workflows(workflow_filter, page, size)


@router.get("/{workflow_id}", response_model=WorkflowSummary, operation_id="get_workflow")
async def get_workflow(
        workflow_id: str,
        current_user: AuthenticatedUser = Depends(get_current_user),
        service: WorkflowService = Depends(get_workflow_service),
):
    return await service.get_workflow_summary(workflow_id)


@router.patch("/{workflow_id}", response_model=Workflow, operation_id="update_workflow")
async def update_workflow(
        workflow_id: str,
        data: WorkflowUpdateRequest,
        current_user: AuthenticatedUser = Depends(get_current_user),
        service: WorkflowService = Depends(get_workflow_service),
):
    return await service.update_workflow(workflow_id, data.changes(), current_user.user_id,
                                         comments=data.comments, expected_version=data.expected_version)


@router.get("/{workflow_id}/transitions", response_model=List[WorkflowTransition],
            operation_id="list_workflow_transitions")
async def list_workflow_transitions(
        workflow_id: str,
        current_user: AuthenticatedUser = Depends(get_current_user),
        service: WorkflowService = Depends(get_workflow_service),
):
    """Transition history, newest first."""
    return await service.list_transitions(workflow_id)


@router.get("/{workflow_id}/assignments", response_model=List[StepAssignment],
            operation_id="list_workflow_step_assignments")
async def list_step_assignments(
        workflow_id: str,
        current_user: AuthenticatedUser = Depends(get_current_user),
        service: WorkflowService = Depends(get_workflow_service),
):
    """Who held each step, oldest first."""
    return await service.list_step_assignments(workflow_id)


@router.post("/{workflow_id}/advance", response_model=Workflow, operation_id="advance_workflow_step")
async def advance_step(
        workflow_id: str,
        data: Optional[AdvanceRequest] = None,
        current_user: AuthenticatedUser = Depends(get_current_user),
        service: WorkflowService = Depends(get_workflow_service),
):
    data = data or AdvanceRequest()
    return await service.advance_step(workflow_id, current_user.user_id, data.comments, data.expected_version,
                                      assignee_id=data.assignee_id)


@router.post("/{workflow_id}/complete", response_model=Workflow, operation_id="complete_workflow")
async def complete_final_step(
        workflow_id: str,
        data: Optional[TransitionRequest] = None,
        current_user: AuthenticatedUser = Depends(get_current_user),
        service: WorkflowService = Depends(get_workflow_service),
):
    data = data or TransitionRequest()
    return await service.complete_final_step(workflow_id, current_user.user_id, data.comments,
                                             data.expected_version)


@router.post("/{workflow_id}/pause", response_model=Workflow, operation_id="pause_workflow")
async def pause(
        workflow_id: str,
        data: Optional[TransitionRequest] = None,
        current_user: AuthenticatedUser = Depends(get_current_user),
        service: WorkflowService = Depends(get_workflow_service),
):
    data = data or TransitionRequest()
    return await service.pause(workflow_id, current_user.user_id, data.comments, data.expected_version)


@router.post("/{workflow_id}/resume", response_model=Workflow, operation_id="resume_workflow")
async def resume(
        workflow_id: str,
        data: Optional[TransitionRequest] = None,
        current_user: AuthenticatedUser = Depends(get_current_user),
        service: WorkflowService = Depends(get_workflow_service),
):
    data = data or TransitionRequest()
    return await service.resume(workflow_id, current_user.user_id, data.comments, data.expected_version)


@router.post("/{workflow_id}/cancel", response_model=Workflow, operation_id="cancel_workflow")
async def cancel(
        workflow_id: str,
        data: Optional[TransitionRequest] = None,
        current_user: AuthenticatedUser = Depends(get_current_user),
        service: WorkflowService = Depends(get_workflow_service),
):
    data = data or TransitionRequest()
    return await service.cancel(workflow_id, current_user.user_id, data.comments, data.expected_version)


@router.post("/{workflow_id}/archive", response_model=Workflow, operation_id="archive_workflow")
async def archive(
        workflow_id: str,
        data: Optional[TransitionRequest] = None,
        current_user: AuthenticatedUser = Depends(get_current_user),
        service: WorkflowService = Depends(get_workflow_service),
):
    data = data or TransitionRequest()
    return await service.archive(workflow_id, current_user.user_id, data.comments, data.expected_version)


@router.post("/{workflow_id}/reassign", response_model=Workflow, operation_id="reassign_workflow")
async def reassign(
        workflow_id: str,
        data: ReassignRequest,
        current_user: AuthenticatedUser = Depends(get_current_user),
        service: WorkflowService = Depends(get_workflow_service),
):
    return await service.reassign(workflow_id, data.assignee_id, current_user.user_id, data.comments,
                                  data.expected_version)


@router.post("/{workflow_id}/custom-status", response_model=Workflow, operation_id="set_custom_status")
async def set_custom_status(
        workflow_id: str,
        data: CustomStatusRequest,
        current_user: AuthenticatedUser = Depends(get_current_user),
        service: WorkflowService = Depends(get_workflow_service),
):
    return await service.set_custom_status(
        workflow_id, data.status_item_id, current_user.user_id,
        status_template_id=data.status_template_id, comments=data.comments,
        expected_version=data.expected_version,
    )


@router.post("/{workflow_id}/default-status", response_model=Workflow, operation_id="use_default_status")
async def use_default_status(
        workflow_id: str,
        data: Optional[TransitionRequest] = None,
        current_user: AuthenticatedUser = Depends(get_current_user),
        service: WorkflowService = Depends(get_workflow_service),
):
    data = data or TransitionRequest()
    return await service.use_default_status(workflow_id, current_user.user_id, data.comments,
                                            data.expected_version)
