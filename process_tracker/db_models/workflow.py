import uuid

from sqlalchemy import Boolean, Column, DateTime, Enum as SQLAlchemyEnum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from process_tracker.db_models.base import Base
from process_tracker.db_models.enums import DefaultStatus, Priority, StatusKind, TransitionType, Visibility


class Workflow(Base):
    __tablename__ = "workflows"

    id = Column(String, primary_key=True, index=True, default=lambda: "wf_" + str(uuid.uuid4())[:8])
    template_id = Column(String, ForeignKey("workflow_templates.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True, default="")
    priority = Column(SQLAlchemyEnum(Priority), nullable=False, default=Priority.medium)
    visibility = Column(SQLAlchemyEnum(Visibility), nullable=False, default=Visibility.public)
    deadline = Column(DateTime(timezone=True), nullable=True)
    team_id = Column(String, nullable=True, index=True)
    assignee_id = Column(String, nullable=True, index=True)
    created_by_id = Column(String, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    current_step = Column(Integer, nullable=False, default=1)
    total_steps = Column(Integer, nullable=False)

    status_template_id = Column(String, ForeignKey("status_templates.id"), nullable=True, index=True)
    status_kind = Column(SQLAlchemyEnum(StatusKind), nullable=False, default=StatusKind.default)
    default_status = Column(SQLAlchemyEnum(DefaultStatus), nullable=True, default=DefaultStatus.in_progress)
    custom_status_id = Column(String, ForeignKey("status_items.id"), nullable=True, index=True)
    custom_status_name = Column(String, nullable=True)
    custom_status_color = Column(String, nullable=True)
    custom_status_order_index = Column(Integer, nullable=True)
    custom_status_is_final = Column(Boolean, nullable=True)

    version = Column(Integer, nullable=False, default=1)

    template = relationship("WorkflowTemplate", back_populates="workflows")
    transitions = relationship("WorkflowTransition", back_populates="workflow")


class WorkflowTransition(Base):
    __tablename__ = "workflow_transitions"

    id = Column(String, primary_key=True, index=True, default=lambda: "tr_" + str(uuid.uuid4())[:8])
    workflow_id = Column(String, ForeignKey("workflows.id"), nullable=False, index=True)
    transition_type = Column(SQLAlchemyEnum(TransitionType), nullable=False)
    from_step = Column(Integer, nullable=True)
    to_step = Column(Integer, nullable=True)
    from_status = Column(String, nullable=True)
    to_status = Column(String, nullable=True)
    from_user_id = Column(String, nullable=True)
    to_user_id = Column(String, nullable=True)
    comments = Column(Text, nullable=True)
    created_by_id = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)

    workflow = relationship("Workflow", back_populates="transitions")
