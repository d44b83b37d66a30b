from typing import List

from fastapi import APIRouter, Depends

from process_tracker.core.security import AuthenticatedUser, get_current_user
from process_tracker.dependencies import get_workflow_service
from process_tracker.models import StatusGroup, UserWorkload, WorkflowFilter, WorkflowStats
from process_tracker.routers.workflows import get_workflow_filter
from process_tracker.services import WorkflowService

router = APIRouter(
    prefix="/api/dashboard",
    tags=["Dashboard"],
)


@router.get("/groups", response_model=List[StatusGroup], operation_id="dashboard_groups")
async def groups(
        workflow_filter: WorkflowFilter = Depends(get_workflow_filter),
        current_user: AuthenticatedUser = Depends(get_current_user),
        service: WorkflowService = Depends(get_workflow_service),
):
    """Workflows grouped by effective status, custom statuses first."""
    return await service.group_workflows(workflow_filter)


@router.get("/workload", response_model=List[UserWorkload], operation_id="dashboard_workload")
async def workload(
        workflow_filter: WorkflowFilter = Depends(get_workflow_filter),
        current_user: AuthenticatedUser = Depends(get_current_user),
        service: WorkflowService = Depends(get_workflow_service),
):
    return await service.workload(workflow_filter)


@router.get("/stats", response_model=WorkflowStats, operation_id="dashboard_stats")
async def stats(
        workflow_filter: WorkflowFilter = Depends(get_workflow_filter),
        current_user: AuthenticatedUser = Depends(get_current_user),
        service: WorkflowService = Depends(get_workflow_service),
):
    return await service.stats(workflow_filter)
