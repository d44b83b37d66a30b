import uuid

from sqlalchemy import Boolean, Column, DateTime, Enum as SQLAlchemyEnum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from process_tracker.db_models.base import Base
from process_tracker.db_models.enums import Visibility


class WorkflowTemplate(Base):
    __tablename__ = "workflow_templates"

    id = Column(String, primary_key=True, index=True, default=lambda: "tpl_" + str(uuid.uuid4())[:8])
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True, default="")
    visibility = Column(SQLAlchemyEnum(Visibility), nullable=False, default=Visibility.public)
    created_by_id = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    steps = relationship(
        "TemplateStep",
        back_populates="template",
        order_by="TemplateStep.step_order",
        cascade="all, delete-orphan",
    )
    workflows = relationship("Workflow", back_populates="template")


class TemplateStep(Base):
    __tablename__ = "workflow_template_steps"

    id = Column(String, primary_key=True, index=True, default=lambda: "step_" + str(uuid.uuid4())[:8])
    template_id = Column(String, ForeignKey("workflow_templates.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True, default="")
    step_order = Column(Integer, nullable=False)

    template = relationship("WorkflowTemplate", back_populates="steps")


class StatusTemplate(Base):
    __tablename__ = "status_templates"

    id = Column(String, primary_key=True, index=True, default=lambda: "stpl_" + str(uuid.uuid4())[:8])
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True, default="")
    is_default = Column(Boolean, nullable=False, default=False)
    created_by_id = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    status_items = relationship(
        "StatusItem",
        back_populates="template",
        order_by="StatusItem.order_index",
        cascade="all, delete-orphan",
    )


class StatusItem(Base):
    __tablename__ = "status_items"

    id = Column(String, primary_key=True, index=True, default=lambda: "sts_" + str(uuid.uuid4())[:8])
    template_id = Column(String, ForeignKey("status_templates.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True, default="")
    color = Column(String, nullable=False, default="#808080")
    order_index = Column(Integer, nullable=False)
    is_initial = Column(Boolean, nullable=False, default=False)
    is_final = Column(Boolean, nullable=False, default=False)

    template = relationship("StatusTemplate", back_populates="status_items")
