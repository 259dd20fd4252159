"""
Work item service — the external edit path for the task tree.

Callers may change names, dates, ordering and parentage. They may never
write ``completion_percentage`` or ``status``; those belong to the progress
aggregator. Every change that can move a derived value (new node, new dates,
new parent, removed node) re-runs the aggregator on the affected chain.
"""

import logging

from sitetrack.core.exceptions import NotFoundError, ValidationError
from sitetrack.models import db
from sitetrack.models.acceptance import AcceptanceStage
from sitetrack.models.project import Project
from sitetrack.models.work_item import SYSTEM_OWNED_FIELDS, WorkItem, validate_no_cycle
from sitetrack.services.helpers.scoped_queries import get_scoped_or_none
from sitetrack.services.progress_aggregator import recompute
from sitetrack.utils.helpers import parse_date

logger = logging.getLogger(__name__)

_EDITABLE = ("name", "description", "start_date", "end_date", "duration", "sort_order", "parent_id")


def _reject_system_fields(data: dict) -> None:
    forbidden = sorted(SYSTEM_OWNED_FIELDS & set(data))
    if forbidden:
        raise ValidationError(
            "completion_percentage and status are derived from daily logs and cannot be set",
            details={f: "system-owned" for f in forbidden},
        )


def _check_dates(start, end) -> None:
    if start and end and end < start:
        raise ValidationError("end_date must not be before start_date",
                              details={"end_date": end.isoformat()})


def _planned_duration(start, end, explicit):
    if explicit not in (None, ""):
        try:
            duration = int(explicit)
        except (TypeError, ValueError) as exc:
            raise ValidationError("duration must be an integer", details={"duration": str(explicit)}) from exc
        if duration < 0:
            raise ValidationError("duration must not be negative", details={"duration": str(explicit)})
        return duration
    if start and end:
        return (end - start).days + 1
    return None


def _resolve_parent(project_id: int, parent_id):
    if parent_id in (None, ""):
        return None
    parent = get_scoped_or_none(WorkItem, int(parent_id), project_id=project_id)
    if parent is None:
        raise ValidationError(
            "parent_id must reference a work item of the same project",
            details={"parent_id": str(parent_id)},
        )
    return parent


def create_work_item(project_id: int, data: dict) -> WorkItem:
    """Add a node to the project's tree and derive its initial state."""
    if db.session.get(Project, project_id) is None:
        raise NotFoundError(resource="Project", resource_id=project_id)
    _reject_system_fields(data)

    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required", details={"name": "required"})

    parent = _resolve_parent(project_id, data.get("parent_id"))
    start = parse_date(data.get("start_date"))
    end = parse_date(data.get("end_date"))
    _check_dates(start, end)

    sort_order = data.get("sort_order")
    if sort_order is None:
        last = (
            db.session.query(db.func.max(WorkItem.sort_order))
            .filter(WorkItem.project_id == project_id,
                    WorkItem.parent_id == (parent.id if parent else None))
            .scalar()
        )
        sort_order = (last or 0) + 1

    item = WorkItem(
        project_id=project_id,
        parent_id=parent.id if parent else None,
        name=name,
        description=data.get("description", ""),
        start_date=start,
        end_date=end,
        duration=_planned_duration(start, end, data.get("duration")),
        sort_order=sort_order,
    )
    db.session.add(item)
    db.session.flush()

    # A new child at 0% changes its parent's mean
    recompute(item.id)
    logger.info("Work item %s created under parent %s", item.id, item.parent_id,
                extra={"project_id": project_id, "work_item_id": item.id})
    return item


def update_work_item(item: WorkItem, data: dict) -> WorkItem:
    """
    Apply a caller edit.

    Raises:
        ValidationError: system-owned fields present, bad dates, or a
            parent change that would leave the project or close a cycle.
    """
    _reject_system_fields(data)
    unknown = sorted(set(data) - set(_EDITABLE) - {"id", "project_id"})
    if unknown:
        raise ValidationError("Unknown fields", details={f: "not editable" for f in unknown})

    old_parent_id = item.parent_id
    rederive = False

    if "parent_id" in data:
        parent = _resolve_parent(item.project_id, data["parent_id"])
        new_parent_id = parent.id if parent else None
        if new_parent_id != old_parent_id:
            if not validate_no_cycle(db.session, item.id, new_parent_id):
                raise ValidationError(
                    "Circular parentage: the new parent is this item or one of its descendants",
                    details={"parent_id": str(new_parent_id)},
                )
            if new_parent_id is not None and AcceptanceStage.query.filter_by(work_item_id=item.id).count():
                raise ValidationError(
                    "Work item carries an acceptance stage and must stay a root item",
                    details={"parent_id": str(new_parent_id)},
                )
            item.parent_id = new_parent_id
            rederive = True

    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("name is required", details={"name": "required"})
        item.name = name
    if "description" in data:
        item.description = data["description"] or ""
    if "sort_order" in data:
        item.sort_order = int(data["sort_order"] or 0)

    if "start_date" in data or "end_date" in data:
        start = parse_date(data["start_date"]) if "start_date" in data else item.start_date
        end = parse_date(data["end_date"]) if "end_date" in data else item.end_date
        _check_dates(start, end)
        item.start_date, item.end_date = start, end
        rederive = True
        if "duration" not in data:
            item.duration = _planned_duration(start, end, None)
    if "duration" in data:
        item.duration = _planned_duration(item.start_date, item.end_date, data["duration"])

    db.session.flush()

    if rederive:
        recompute(item.id)
        if old_parent_id is not None and old_parent_id != item.parent_id:
            recompute(old_parent_id)
    return item


def delete_work_item(item: WorkItem) -> None:
    """Remove a childless node without an acceptance stage."""
    if WorkItem.query.filter_by(parent_id=item.id).count():
        raise ValidationError("Work item has children; delete or move them first")
    if AcceptanceStage.query.filter_by(work_item_id=item.id).count():
        raise ValidationError("Work item is referenced by an acceptance stage")

    parent_id, project_id = item.parent_id, item.project_id
    db.session.delete(item)
    db.session.flush()

    if parent_id is not None:
        recompute(parent_id)
    else:
        from sitetrack.services.project_progress_service import recalculate_overall
        recalculate_overall(project_id)


def build_tree(project_id: int) -> list[dict]:
    """
    Return the project's tree as nested dicts.

    Nodes are loaded flat and linked through a children index built for
    this call only.
    """
    rows = (
        WorkItem.query
        .filter_by(project_id=project_id)
        .order_by(WorkItem.sort_order, WorkItem.id)
        .all()
    )
    children_of: dict[int | None, list[WorkItem]] = {}
    for row in rows:
        children_of.setdefault(row.parent_id, []).append(row)

    def _node(item, seen):
        seen = seen | {item.id}
        kids = [_node(c, seen) for c in children_of.get(item.id, []) if c.id not in seen]
        return item.to_dict(include_children=True, children=kids)

    return [_node(root, frozenset()) for root in children_of.get(None, [])]
