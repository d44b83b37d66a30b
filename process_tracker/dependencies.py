from fastapi import Depends

from process_tracker.database import get_db
from process_tracker.repository import SQLAlchemyWorkflowRepository
from process_tracker.services import WorkflowService


# --- Dependencies ---
def get_workflow_repository(db=Depends(get_db)) -> SQLAlchemyWorkflowRepository:
    """Provides the repository bound to the request's database session."""
    return SQLAlchemyWorkflowRepository(db)


def get_workflow_service(
        repo: SQLAlchemyWorkflowRepository = Depends(get_workflow_repository)
) -> WorkflowService:
    """Provides an instance of the WorkflowService, injecting the repositories."""
    return WorkflowService(template_repo=repo, status_template_repo=repo, instance_repo=repo)
