from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status

from process_tracker.core.security import AuthenticatedUser, get_current_user
from process_tracker.dependencies import get_workflow_service
from process_tracker.models import Page, WorkflowTemplate, WorkflowTemplateCreateRequest
from process_tracker.services import WorkflowService

router = APIRouter(
    prefix="/api/templates",
    tags=["Workflow Templates"],
)


@router.get("", response_model=Page[WorkflowTemplate], operation_id="list_templates")
async def list_templates(
        page: int = Query(0, ge=0),
        size: Optional[int] = Query(None, ge=1),
        current_user: AuthenticatedUser = Depends(get_current_user),
        service: WorkflowService = Depends(get_workflow_service),
):
    return await service.list_templates(page, size)


@router.post("", response_model=WorkflowTemplate, status_code=status.HTTP_201_CREATED,
             operation_id="create_template")
async def create_template(
        data: WorkflowTemplateCreateRequest,
        current_user: AuthenticatedUser = Depends(get_current_user),
        service: WorkflowService = Depends(get_workflow_service),
):
    return await service.create_template(data, current_user.user_id)


@router.get("/{template_id}", response_model=WorkflowTemplate, operation_id="get_template")
async def get_template(
        template_id: str,
        current_user: AuthenticatedUser = Depends(get_current_user),
        service: WorkflowService = Depends(get_workflow_service),
):
    return await service.get_template(template_id)


@router.put("/{template_id}", response_model=WorkflowTemplate, operation_id="update_template")
async def update_template(
        template_id: str,
        data: WorkflowTemplateCreateRequest,
        current_user: AuthenticatedUser = Depends(get_current_user),
        service: WorkflowService = Depends(get_workflow_service),
):
    """Replaces the template; running workflows keep the step count they started with."""
    return await service.update_template(template_id, data)


@router.delete("/{template_id}", status_code=status.HTTP_204_NO_CONTENT, operation_id="delete_template")
async def delete_template(
        template_id: str,
        current_user: AuthenticatedUser = Depends(get_current_user),
        service: WorkflowService = Depends(get_workflow_service),
):
    await service.delete_template(template_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
