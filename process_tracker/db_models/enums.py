from enum import Enum


class DefaultStatus(str, Enum):
    in_progress = "in_progress"
    paused = "paused"
    completed = "completed"
    canceled = "canceled"
    archived = "archived"


class Priority(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    urgent = "urgent"


class Visibility(str, Enum):
    public = "public"
    restricted = "restricted"
    team = "team"


class StatusKind(str, Enum):
    default = "default"
    custom = "custom"


class TransitionType(str, Enum):
    creation = "creation"
    assignment = "assignment"
    step_change = "step_change"
    status_change = "status_change"
    custom_status_change = "custom_status_change"
    update = "update"


TERMINAL_DEFAULT_STATUSES = frozenset({
    DefaultStatus.completed,
    DefaultStatus.canceled,
    DefaultStatus.archived,
})
