from process_tracker.db_models.base import Base
from process_tracker.db_models.templates import StatusItem, StatusTemplate, TemplateStep, WorkflowTemplate
from process_tracker.db_models.workflow import Workflow, WorkflowTransition

__all__ = [
    "Base",
    "StatusItem",
    "StatusTemplate",
    "TemplateStep",
    "Workflow",
    "WorkflowTemplate",
    "WorkflowTransition",
]
