from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status

from process_tracker.core.security import AuthenticatedUser, get_current_user
from process_tracker.dependencies import get_workflow_service
from process_tracker.models import Page, StatusItem, StatusTemplate, StatusTemplateCreateRequest
from process_tracker.services import WorkflowService

router = APIRouter(
    prefix="/api/status-templates",
    tags=["Status Templates"],
)


@router.get("", response_model=Page[StatusTemplate], operation_id="list_status_templates")
async def list_status_templates(
        page: int = Query(0, ge=0),
        size: Optional[int] = Query(None, ge=1),
        current_user: AuthenticatedUser = Depends(get_current_user),
        service: WorkflowService = Depends(get_workflow_service),
):
    return await service.list_status_templates(page, size)


@router.post("", response_model=StatusTemplate, status_code=status.HTTP_201_CREATED,
             operation_id="create_status_template")
async def create_status_template(
        data: StatusTemplateCreateRequest,
        current_user: AuthenticatedUser = Depends(get_current_user),
        service: WorkflowService = Depends(get_workflow_service),
):
    return await service.create_status_template(data, current_user.user_id)


@router.get("/{status_template_id}", response_model=StatusTemplate, operation_id="get_status_template")
async def get_status_template(
        status_template_id: str,
        current_user: AuthenticatedUser = Depends(get_current_user),
        service: WorkflowService = Depends(get_workflow_service),
):
    return await service.get_status_template(status_template_id)


@router.get("/{status_template_id}/initial", response_model=StatusItem, operation_id="get_initial_status_item")
async def get_initial_status_item(
        status_template_id: str,
        current_user: AuthenticatedUser = Depends(get_current_user),
        service: WorkflowService = Depends(get_workflow_service),
):
    return await service.get_initial_status_item(status_template_id)


@router.put("/{status_template_id}", response_model=StatusTemplate, operation_id="update_status_template")
async def update_status_template(
        status_template_id: str,
        data: StatusTemplateCreateRequest,
        current_user: AuthenticatedUser = Depends(get_current_user),
        service: WorkflowService = Depends(get_workflow_service),
):
    """Statuses sent back with their id are kept; statuses left out are removed if no workflow uses them."""
    return await service.update_status_template(status_template_id, data)


@router.delete("/{status_template_id}", status_code=status.HTTP_204_NO_CONTENT,
               operation_id="delete_status_template")
async def delete_status_template(
        status_template_id: str,
        current_user: AuthenticatedUser = Depends(get_current_user),
        service: WorkflowService = Depends(get_workflow_service),
):
    await service.delete_status_template(status_template_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
