# models.py
import math
import uuid
from datetime import datetime
from typing import Annotated, Any, Dict, Generic, List, Literal, Optional, TypeVar, Union

from pydantic import BaseModel, Field, computed_field, field_validator

from process_tracker.db_models.enums import (
    TERMINAL_DEFAULT_STATUSES,
    DefaultStatus,
    Priority,
    TransitionType,
    Visibility,
)
from process_tracker.utils import ensure_utc, utcnow

T = TypeVar("T")


# --- Templates ---

class TemplateStepCreate(BaseModel):
    name: str = Field(..., description="Name of the step", title="Step Name",
                      examples=["Collect documents", "Manager approval"])
    description: Optional[str] = ""
    step_order: int = Field(..., description="1-based position of the step in the template", title="Step Order")


class TemplateStep(TemplateStepCreate):
    id: str = Field(default_factory=lambda: "step_" + str(uuid.uuid4())[:8])

    class Config:
        from_attributes = True


class WorkflowTemplateCreateRequest(BaseModel):
    name: str
    description: Optional[str] = ""
    visibility: Visibility = Visibility.public
    steps: List[TemplateStepCreate] = Field(default_factory=list)


class WorkflowTemplate(BaseModel):
    id: str = Field(default_factory=lambda: "tpl_" + str(uuid.uuid4())[:8])
    name: str
    description: Optional[str] = ""
    visibility: Visibility = Visibility.public
    created_by_id: Optional[str] = None
    steps: List[TemplateStep] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    class Config:
        from_attributes = True

    @field_validator("created_at", "updated_at")
    @classmethod
    def normalize_datetimes(cls, value):
        return ensure_utc(value)

    @property
    def step_count(self) -> int:
        return len(self.steps)


class StatusItemCreate(BaseModel):
    id: Optional[str] = Field(None, description="Existing status id to keep when updating a template")
    name: str
    description: Optional[str] = ""
    color: str = "#808080"
    order_index: int
    is_initial: bool = False
    is_final: bool = False


class StatusItem(StatusItemCreate):
    id: str = Field(default_factory=lambda: "sts_" + str(uuid.uuid4())[:8])

    class Config:
        from_attributes = True

    @classmethod
    def from_create(cls, data: StatusItemCreate) -> "StatusItem":
        fields = data.model_dump(exclude={"id"})
        if data.id:
            fields["id"] = data.id
        return cls(**fields)


class StatusTemplateCreateRequest(BaseModel):
    name: str
    description: Optional[str] = ""
    is_default: bool = False
    status_items: List[StatusItemCreate] = Field(default_factory=list)


class StatusTemplate(BaseModel):
    id: str = Field(default_factory=lambda: "stpl_" + str(uuid.uuid4())[:8])
    name: str
    description: Optional[str] = ""
    is_default: bool = False
    created_by_id: Optional[str] = None
    status_items: List[StatusItem] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    class Config:
        from_attributes = True

    @field_validator("created_at", "updated_at")
    @classmethod
    def normalize_datetimes(cls, value):
        return ensure_utc(value)

    def initial_item(self) -> Optional[StatusItem]:
        return next((item for item in self.status_items if item.is_initial), None)

    def find_item(self, status_item_id: str) -> Optional[StatusItem]:
        return next((item for item in self.status_items if item.id == status_item_id), None)


# --- Workflow status (tagged union) ---

class DefaultStatusState(BaseModel):
    kind: Literal["default"] = "default"
    value: DefaultStatus = DefaultStatus.in_progress

    @property
    def is_terminal(self) -> bool:
        return self.value in TERMINAL_DEFAULT_STATUSES

    @property
    def key(self) -> str:
        return self.value.value

    @property
    def label(self) -> str:
        return self.value.value


class CustomStatusState(BaseModel):
    kind: Literal["custom"] = "custom"
    status_template_id: str
    status_item_id: str
    name: str
    color: str
    order_index: int
    is_final: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.is_final

    @property
    def key(self) -> str:
        return self.status_item_id

    @property
    def label(self) -> str:
        return self.name

    @classmethod
    def from_item(cls, status_template_id: str, item: StatusItem) -> "CustomStatusState":
        return cls(
            status_template_id=status_template_id,
            status_item_id=item.id,
            name=item.name,
            color=item.color,
            order_index=item.order_index,
            is_final=item.is_final,
        )


WorkflowStatus = Annotated[Union[DefaultStatusState, CustomStatusState], Field(discriminator="kind")]


# --- Workflow instances ---

class Workflow(BaseModel):
    id: str = Field(default_factory=lambda: "wf_" + str(uuid.uuid4())[:8])
    template_id: str
    title: str
    description: Optional[str] = ""
    priority: Priority = Priority.medium
    visibility: Visibility = Visibility.public
    deadline: Optional[datetime] = None
    team_id: Optional[str] = None
    assignee_id: Optional[str] = None
    created_by_id: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    current_step: int = 1
    total_steps: int
    status_template_id: Optional[str] = None
    status: WorkflowStatus = Field(default_factory=DefaultStatusState)
    version: int = 1

    class Config:
        from_attributes = True

    @field_validator("deadline", "created_at", "updated_at")
    @classmethod
    def normalize_datetimes(cls, value):
        return ensure_utc(value)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def uses_custom_status(self) -> bool:
        return isinstance(self.status, CustomStatusState)


class WorkflowTransition(BaseModel):
    id: str = Field(default_factory=lambda: "tr_" + str(uuid.uuid4())[:8])
    workflow_id: str
    transition_type: TransitionType
    from_step: Optional[int] = None
    to_step: Optional[int] = None
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    from_user_id: Optional[str] = None
    to_user_id: Optional[str] = None
    comments: Optional[str] = None
    created_by_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    class Config:
        from_attributes = True

    @field_validator("created_at")
    @classmethod
    def normalize_datetimes(cls, value):
        return ensure_utc(value)


class StepAssignment(BaseModel):
    """Who held a step and for how long, rebuilt from the transition history."""
    step_number: int
    assignee_id: Optional[str] = None
    started_at: datetime
    ended_at: Optional[datetime] = None
    completed: bool = False

    @property
    def is_open(self) -> bool:
        return self.ended_at is None


class WorkflowFilter(BaseModel):
    status: Optional[DefaultStatus] = None
    custom_status_id: Optional[str] = None
    template_id: Optional[str] = None
    status_template_id: Optional[str] = None
    team_id: Optional[str] = None
    assignee_id: Optional[str] = None
    created_by_id: Optional[str] = None
    priority: Optional[Priority] = None
    search: Optional[str] = None

    def matches(self, workflow: Workflow) -> bool:
        status = workflow.status
        if self.status is not None and not (isinstance(status, DefaultStatusState) and status.value == self.status):
            return False
        if self.custom_status_id is not None and not (
                isinstance(status, CustomStatusState) and status.status_item_id == self.custom_status_id):
            return False
        if self.template_id is not None and workflow.template_id != self.template_id:
            return False
        if self.status_template_id is not None and workflow.status_template_id != self.status_template_id:
            return False
        if self.team_id is not None and workflow.team_id != self.team_id:
            return False
        if self.assignee_id is not None and workflow.assignee_id != self.assignee_id:
            return False
        if self.created_by_id is not None and workflow.created_by_id != self.created_by_id:
            return False
        if self.priority is not None and workflow.priority != self.priority:
            return False
        if self.search and self.search.strip():
            term = self.search.strip().lower()
            haystack = f"{workflow.title} {workflow.description or ''}".lower()
            if term not in haystack:
                return False
        return True


class Page(BaseModel, Generic[T]):
    items: List[T]
    page: int
    size: int
    total: int

    @computed_field
    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.size) if self.size else 0


# --- Request bodies ---

class WorkflowCreateRequest(BaseModel):
    template_id: str
    title: str
    description: Optional[str] = ""
    priority: Priority = Priority.medium
    visibility: Visibility = Visibility.public
    deadline: Optional[datetime] = None
    team_id: Optional[str] = None
    assignee_id: Optional[str] = None
    status_template_id: Optional[str] = None


class TransitionRequest(BaseModel):
    comments: Optional[str] = None
    expected_version: Optional[int] = None


class AdvanceRequest(TransitionRequest):
    assignee_id: Optional[str] = None


class ReassignRequest(TransitionRequest):
    assignee_id: str


class CustomStatusRequest(TransitionRequest):
    status_item_id: str
    status_template_id: Optional[str] = None


class WorkflowUpdateRequest(TransitionRequest):
    title: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[Priority] = None
    visibility: Optional[Visibility] = None
    deadline: Optional[datetime] = None
    team_id: Optional[str] = None

    def changes(self) -> Dict[str, Any]:
        """Fields the client actually sent; priority and visibility cannot be cleared."""
        data = self.model_dump(exclude_unset=True, exclude={"comments", "expected_version"})
        return {key: value for key, value in data.items()
                if value is not None or key not in ("priority", "visibility")}


# --- Derived and aggregated views ---

class DerivedState(BaseModel):
    progress_percentage: int
    is_overdue: bool
    is_near_deadline: bool
    days_remaining: Optional[int] = None
    is_terminal: bool


class WorkflowSummary(Workflow):
    progress_percentage: int = 0
    is_overdue: bool = False
    is_near_deadline: bool = False
    days_remaining: Optional[int] = None


class StatusGroup(BaseModel):
    key: str
    display_name: str
    color: str
    is_custom: bool
    order_index: Optional[int] = None
    items: List[Workflow] = Field(default_factory=list)


class UserWorkload(BaseModel):
    user_id: str
    active_count: int
    overdue_count: int = 0
    workload_percentage: float = 0.0
    is_overloaded: bool = False


class WorkflowStats(BaseModel):
    total: int = 0
    counts_by_status: Dict[str, int] = Field(default_factory=dict)
    counts_by_priority: Dict[str, int] = Field(default_factory=dict)
    counts_by_visibility: Dict[str, int] = Field(default_factory=dict)
    counts_by_template: Dict[str, int] = Field(default_factory=dict)
    overdue: List[WorkflowSummary] = Field(default_factory=list)
    near_deadline: List[WorkflowSummary] = Field(default_factory=list)
    on_track_count: int = 0
    completion_rate: float = 0.0
