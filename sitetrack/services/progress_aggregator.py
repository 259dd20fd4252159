"""
Progress Aggregator — derives work item completion and status.

Propagates completion upward through the work breakdown:
  leaf        = completion of its latest DailyProgressLog (0 when none)
  parent      = mean of its direct children, rounded to 2 decimals
  project     = ProjectProgress reconciliation (project_progress_service)

Status rule (evaluated against today):
  - percentage == 100                  → completed
  - no start date / before start date  → not_started
  - started, no end date               → in_progress
  - start ≤ today ≤ end                 → in_progress
  - past end date                      → delayed
A parent only reaches completed when every child is at exactly 100.

Write paths:
  ``apply_derived`` is the only writer of ``completion_percentage`` and
  ``status``. It accepts nothing but a ``DerivedProgress`` and never calls
  back into ``recompute``. Edits made by callers go through
  ``work_item_service.update_work_item``, which refuses those two fields.

Usage:
    from sitetrack.services.progress_aggregator import recompute, recalculate_all

    derived = recompute(work_item_id)
    recalculate_all(project_id)
"""

import logging
from dataclasses import dataclass
from datetime import date

from flask import current_app, has_app_context

from sitetrack.models import db
from sitetrack.models.work_item import DailyProgressLog, WorkItem
from sitetrack.services.helpers.side_effects import run_best_effort

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DerivedProgress:
    """Output of the aggregator; the only thing ``apply_derived`` accepts."""

    percentage: float
    status: str


NOT_STARTED = DerivedProgress(0.0, "not_started")


# ── Pure rules ──────────────────────────────────────────────────────────────

def status_for(percentage: float, start_date, end_date, today: date | None = None) -> str:
    """Map a percentage and a date window to a work item status."""
    today = today or date.today()
    if percentage >= 100:
        return "completed"
    if start_date is None or today < start_date:
        return "not_started"
    if end_date is None or today <= end_date:
        return "in_progress"
    return "delayed"


def _latest_log_percentage(work_item_id: int) -> float:
    log = (
        DailyProgressLog.query
        .filter_by(work_item_id=work_item_id)
        .order_by(DailyProgressLog.log_date.desc(), DailyProgressLog.id.desc())
        .first()
    )
    return float(log.completion_percentage) if log else 0.0


def _children_percentages(work_item_id: int) -> list[float]:
    rows = (
        db.session.query(WorkItem.completion_percentage)
        .filter(WorkItem.parent_id == work_item_id)
        .all()
    )
    return [float(pct or 0) for (pct,) in rows]


def derive(item: WorkItem, today: date | None = None) -> DerivedProgress:
    """Compute (without writing) the percentage and status ``item`` should hold."""
    children = _children_percentages(item.id)
    if children:
        percentage = round(sum(children) / len(children), 2)
        if all(pct >= 100 for pct in children):
            status = "completed"
        else:
            # Rounding must not let an unfinished parent read as completed
            status = status_for(min(percentage, 99.99), item.start_date, item.end_date, today)
        return DerivedProgress(percentage, status)

    percentage = round(_latest_log_percentage(item.id), 2)
    return DerivedProgress(percentage, status_for(percentage, item.start_date, item.end_date, today))


# ── System-derived write path ───────────────────────────────────────────────

def apply_derived(item: WorkItem, derived: DerivedProgress) -> bool:
    """
    Persist aggregator output on ``item``.

    Returns True when a stored value changed. Never recomputes anything.
    """
    if not isinstance(derived, DerivedProgress):
        raise TypeError("apply_derived only accepts DerivedProgress")
    if item.completion_percentage == derived.percentage and item.status == derived.status:
        return False
    logger.debug(
        "WorkItem %s: %.2f%% [%s] → %.2f%% [%s]",
        item.id, item.completion_percentage or 0, item.status,
        derived.percentage, derived.status,
        extra={"work_item_id": item.id, "project_id": item.project_id},
    )
    item.completion_percentage = derived.percentage
    item.status = derived.status
    db.session.flush()
    return True


# ── Cascades ────────────────────────────────────────────────────────────────

def recompute(work_item_id: int, *, recalc_project: bool = True) -> DerivedProgress:
    """
    Re-derive ``work_item_id`` and every ancestor, then the project.

    A missing item yields 0% / not_started and writes nothing.

    Returns:
        The DerivedProgress of the item itself.
    """
    item = db.session.get(WorkItem, work_item_id)
    if item is None:
        logger.debug("recompute: work item %s not found; treating as not started", work_item_id)
        return NOT_STARTED

    project_id = item.project_id
    result = None
    visited = set()
    current = item
    while current is not None and current.id not in visited:
        visited.add(current.id)
        derived = derive(current)
        apply_derived(current, derived)
        if result is None:
            result = derived
        if current.parent_id is None:
            _on_root_derived(current, derived)
            break
        current = db.session.get(WorkItem, current.parent_id)

    if recalc_project:
        from sitetrack.services.project_progress_service import recalculate_overall
        recalculate_overall(project_id)
    return result


def recalculate_all(project_id: int) -> int:
    """
    Re-derive the whole tree of a project from logs, deepest items first,
    then the project itself.

    Returns:
        Number of work items whose stored values changed.
    """
    items = WorkItem.query.filter_by(project_id=project_id).all()
    parent_of = {i.id: i.parent_id for i in items}

    def depth(item_id):
        d, seen, cur = 0, set(), parent_of.get(item_id)
        while cur is not None and cur not in seen:
            seen.add(cur)
            d += 1
            cur = parent_of.get(cur)
        return d

    changed = 0
    for item in sorted(items, key=lambda i: depth(i.id), reverse=True):
        derived = derive(item)
        if apply_derived(item, derived):
            changed += 1
        if item.parent_id is None:
            _on_root_derived(item, derived)

    from sitetrack.services.project_progress_service import recalculate_overall
    recalculate_overall(project_id)
    logger.info("Recalculated %d work items (%d changed)", len(items), changed,
                extra={"project_id": project_id})
    return changed


def _on_root_derived(item: WorkItem, derived: DerivedProgress) -> None:
    """A completed phase gets its acceptance stage (once)."""
    if derived.status != "completed":
        return
    if has_app_context() and not current_app.config.get("AUTO_CREATE_ACCEPTANCE_STAGE", True):
        return
    from sitetrack.services.acceptance_service import create_stage_for_phase
    run_best_effort("auto acceptance stage", create_stage_for_phase, item)
