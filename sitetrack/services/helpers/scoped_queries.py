"""
Project-scoped lookup helpers.

Cross-project references (a work item of project A as the parent of a work
item of project B, a defect on another project's stage) are always a caller
bug; these helpers make the scope explicit at every get-by-id.

Usage:
    item = get_scoped(WorkItem, work_item_id, project_id=project_id)
    parent = get_scoped_or_none(WorkItem, parent_id, project_id=project_id)
"""

import logging

from sqlalchemy import select

from sitetrack.core.exceptions import NotFoundError
from sitetrack.models import db

logger = logging.getLogger(__name__)


def get_scoped(model, pk, *, project_id):
    """Return the ``model`` row with ``pk`` inside ``project_id``.

    Raises:
        NotFoundError: the row is missing or belongs to another project.
        ValueError: ``model`` has no ``project_id`` column.
    """
    if not hasattr(model, "project_id"):
        raise ValueError(f"{model.__name__} is not project-scoped")
    stmt = select(model).where(model.id == pk, model.project_id == project_id)
    obj = db.session.execute(stmt).scalar_one_or_none()
    if obj is None:
        logger.debug("Scoped lookup miss: %s id=%s project=%s", model.__name__, pk, project_id)
        raise NotFoundError(resource=model.__name__, resource_id=pk, project_id=project_id)
    return obj


def get_scoped_or_none(model, pk, *, project_id):
    """Like :func:`get_scoped` but returns None instead of raising."""
    if pk is None:
        return None
    try:
        return get_scoped(model, pk, project_id=project_id)
    except NotFoundError:
        return None
