"""Dashboard aggregations over collections of workflows.

All functions are pure: they take the workflows (and ``now`` where deadlines
matter) as arguments, never read a clock or a store, and produce the same
output for the same input regardless of input order.
"""
from collections import Counter, defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from process_tracker.config import NEAR_DEADLINE_DAYS, WORKLOAD_THRESHOLD
from process_tracker.db_models.enums import DefaultStatus
from process_tracker.derived_state import is_overdue, summarize
from process_tracker.models import (
    CustomStatusState,
    DefaultStatusState,
    StatusGroup,
    UserWorkload,
    Workflow,
    WorkflowStats,
)

DEFAULT_STATUS_ORDER = (
    DefaultStatus.in_progress.value,
    DefaultStatus.paused.value,
    DefaultStatus.completed.value,
    DefaultStatus.canceled.value,
    DefaultStatus.archived.value,
)

DEFAULT_STATUS_DISPLAY = {
    "in_progress": ("In progress", "#3498db"),
    "paused": ("Paused", "#f39c12"),
    "completed": ("Completed", "#2ecc71"),
    "canceled": ("Canceled", "#e74c3c"),
    "archived": ("Archived", "#95a5a6"),
}
UNKNOWN_STATUS_COLOR = "#808080"


def effective_status_key(workflow: Workflow) -> str:
    return workflow.status.key


def _group_for(workflow: Workflow) -> StatusGroup:
    status = workflow.status
    if isinstance(status, CustomStatusState):
        return StatusGroup(
            key=status.status_item_id,
            display_name=status.name,
            color=status.color,
            is_custom=True,
            order_index=status.order_index,
        )
    if isinstance(status, DefaultStatusState):
        display_name, color = DEFAULT_STATUS_DISPLAY.get(status.key, (status.key, UNKNOWN_STATUS_COLOR))
        return StatusGroup(key=status.key, display_name=display_name, color=color, is_custom=False)
    raise TypeError(f"unsupported status type: {type(status).__name__}")


def _group_sort_key(group: StatusGroup) -> Tuple:
    if group.is_custom:
        return 0, group.order_index if group.order_index is not None else 0, group.key
    try:
        rank = DEFAULT_STATUS_ORDER.index(group.key)
    except ValueError:
        rank = len(DEFAULT_STATUS_ORDER)
    return 1, rank, group.key


def group_by_effective_status(workflows: Iterable[Workflow]) -> List[StatusGroup]:
    """Groups workflows by their custom status item, or by default status when none is set.

    Custom groups come first ordered by ``order_index``; default groups follow in
    the fixed lifecycle order, with any unrecognised default status last.
    Workflows inside a group are ordered by creation time, then id.
    """
    groups: Dict[str, StatusGroup] = {}
    for workflow in workflows:
        key = effective_status_key(workflow)
        if key not in groups:
            groups[key] = _group_for(workflow)
        groups[key].items.append(workflow)

    ordered = sorted(groups.values(), key=_group_sort_key)
    for group in ordered:
        group.items.sort(key=lambda w: (w.created_at, w.id))
    return ordered


def compute_workload(
        workflows: Iterable[Workflow],
        now: Optional[datetime] = None,
        threshold: int = WORKLOAD_THRESHOLD,
) -> List[UserWorkload]:
    """Counts non-terminal workflows per assignee; unassigned workflows are skipped.

    ``overdue_count`` is only filled in when ``now`` is given.
    """
    active: Counter = Counter()
    overdue: Counter = Counter()
    for workflow in workflows:
        if not workflow.assignee_id or workflow.is_terminal:
            continue
        active[workflow.assignee_id] += 1
        if now is not None and is_overdue(workflow, now):
            overdue[workflow.assignee_id] += 1

    workloads = []
    for user_id, count in active.items():
        percentage = min(100.0, count / threshold * 100) if threshold > 0 else 100.0
        workloads.append(UserWorkload(
            user_id=user_id,
            active_count=count,
            overdue_count=overdue[user_id],
            workload_percentage=round(percentage, 2),
            is_overloaded=count > threshold,
        ))
    workloads.sort(key=lambda w: (-w.active_count, w.user_id))
    return workloads


def compute_stats(
        workflows: Iterable[Workflow],
        now: datetime,
        near_deadline_days: int = NEAR_DEADLINE_DAYS,
) -> WorkflowStats:
    by_status: Dict[str, int] = defaultdict(int)
    by_priority: Dict[str, int] = defaultdict(int)
    by_visibility: Dict[str, int] = defaultdict(int)
    by_template: Dict[str, int] = defaultdict(int)
    overdue = []
    near_deadline = []
    on_track = 0
    completed = 0
    total = 0

    for workflow in workflows:
        total += 1
        by_status[effective_status_key(workflow)] += 1
        by_priority[workflow.priority.value] += 1
        by_visibility[workflow.visibility.value] += 1
        by_template[workflow.template_id] += 1

        status = workflow.status
        if isinstance(status, DefaultStatusState) and status.value == DefaultStatus.completed:
            completed += 1

        summary = summarize(workflow, now, near_deadline_days)
        if summary.is_overdue:
            overdue.append(summary)
        elif summary.is_near_deadline:
            near_deadline.append(summary)
        elif not workflow.is_terminal:
            on_track += 1

    overdue.sort(key=lambda s: (s.deadline, s.id))
    near_deadline.sort(key=lambda s: (s.deadline, s.id))

    return WorkflowStats(
        total=total,
        counts_by_status=dict(sorted(by_status.items())),
        counts_by_priority=dict(sorted(by_priority.items())),
        counts_by_visibility=dict(sorted(by_visibility.items())),
        counts_by_template=dict(sorted(by_template.items())),
        overdue=overdue,
        near_deadline=near_deadline,
        on_track_count=on_track,
        completion_rate=round(completed / total * 100, 2) if total else 0.0,
    )
