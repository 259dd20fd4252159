"""
Compare-and-set writes for guarded state transitions.

A transition reads the current status, decides, and then writes with
``UPDATE ... WHERE id = :id AND <field> = :expected``. The database applies
the predicate under its own row lock, so of two concurrent callers holding
the same pre-state exactly one sees ``rowcount == 1``.
"""

import logging

from sqlalchemy import update

from sitetrack.models import db

logger = logging.getLogger(__name__)


def compare_and_set(obj, field: str, expected, values: dict) -> bool:
    """Apply ``values`` to ``obj``'s row only if ``field`` still equals ``expected``.

    The instance is refreshed afterwards, on success and on failure, so the
    caller always sees the stored state.
    """
    model = type(obj)
    stmt = (
        update(model)
        .where(model.id == obj.id, getattr(model, field) == expected)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    db.session.refresh(obj)
    if result.rowcount != 1:
        logger.info(
            "Guarded write lost: %s id=%s expected %s=%r, found %r",
            model.__name__, obj.id, field, expected, getattr(obj, field),
        )
        return False
    return True
