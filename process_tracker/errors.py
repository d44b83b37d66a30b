"""Typed errors returned by the workflow engine.

Every failure surfaced to a caller is one of these kinds, carrying enough
context (current state, requested action, counts) to explain the rejection.
Only ``ConflictError`` and ``UnavailableError`` are meant to be retried, and
only by the caller after re-reading the workflow.
"""
from typing import Any, Dict, Optional


class WorkflowEngineError(Exception):
    kind = "error"
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def context(self) -> Dict[str, Any]:
        return {}

    def to_dict(self) -> Dict[str, Any]:
        data = {"error": self.kind, "detail": self.message, "retryable": self.retryable}
        data.update(self.context())
        return data


class NotFoundError(WorkflowEngineError):
    kind = "not_found"

    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} '{entity_id}' not found")
        self.entity = entity
        self.entity_id = entity_id

    def context(self) -> Dict[str, Any]:
        return {"entity": self.entity, "entity_id": self.entity_id}


class InvalidTransitionError(WorkflowEngineError):
    kind = "invalid_transition"

    def __init__(self, from_state: str, action: str, reason: Optional[str] = None):
        message = f"cannot {action} a workflow in state '{from_state}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.from_state = from_state
        self.action = action

    def context(self) -> Dict[str, Any]:
        return {"from_state": self.from_state, "action": self.action}


class StepOutOfRangeError(WorkflowEngineError):
    kind = "step_out_of_range"

    def __init__(self, current_step: int, total_steps: int, action: str):
        super().__init__(f"cannot {action}: workflow is at step {current_step} of {total_steps}")
        self.current_step = current_step
        self.total_steps = total_steps
        self.action = action

    def context(self) -> Dict[str, Any]:
        return {"current_step": self.current_step, "total_steps": self.total_steps, "action": self.action}


class ConflictError(WorkflowEngineError):
    kind = "conflict"
    retryable = True

    def __init__(self, message: str, referenced_by: Optional[int] = None):
        super().__init__(message)
        self.referenced_by = referenced_by
        # A delete blocked by references will not succeed on retry.
        if referenced_by is not None:
            self.retryable = False

    @classmethod
    def version_mismatch(cls, workflow_id: str, expected: int, actual: Optional[int]) -> "ConflictError":
        return cls(f"workflow '{workflow_id}' was modified concurrently (expected version {expected}, found {actual})")

    @classmethod
    def in_use(cls, referenced_by: int) -> "ConflictError":
        return cls(f"cannot delete: {referenced_by} workflows use this template", referenced_by=referenced_by)

    def context(self) -> Dict[str, Any]:
        if self.referenced_by is None:
            return {}
        return {"referenced_by": self.referenced_by}


class ValidationError(WorkflowEngineError):
    kind = "validation_error"


class UnavailableError(WorkflowEngineError):
    kind = "unavailable"
    retryable = True
