"""Shared blueprint utilities.

get_or_404:          tuple-return lookup (NOT abort)
parse_date:          returns None on bad input
parse_percentage:    raises ValueError outside 0..100
db_commit_or_error:  single commit point for every mutating route
"""
import logging
from datetime import date, datetime

from flask import jsonify

from sitetrack.models import db

logger = logging.getLogger(__name__)


def get_or_404(model, pk, label=None):
    """Fetch a model instance by primary key or return a 404 error tuple.

    - Success: (obj, None)
    - Failure: (None, (jsonify_response, 404))

        obj, err = get_or_404(AcceptanceStage, sid)
        if err:
            return err
    """
    label = label or model.__name__
    obj = db.session.get(model, pk)
    if not obj:
        return None, (jsonify({"error": f"{label} not found", "code": "ERR_NOT_FOUND"}), 404)
    return obj, None


def parse_date(value):
    """Parse a date string (ISO or DD.MM.YYYY) to a date object.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD (ISO format)
    - YYYY-MM-DDTHH:MM:SS (datetime ISO → .date())
    - DD.MM.YYYY (site-report format)
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d.%m.%Y").date()
    except (ValueError, TypeError):
        return None


def parse_percentage(value):
    """Coerce *value* to a float percentage in 0..100.

    Raises ValueError for non-numeric or out-of-range input so services can
    surface it as a validation error.
    """
    try:
        pct = float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"percentage must be numeric, got {value!r}") from exc
    if pct < 0 or pct > 100:
        raise ValueError(f"percentage must be within 0..100, got {pct}")
    return round(pct, 2)


# ── Database commit helper ───────────────────────────────────────────────────

def db_commit_or_error():
    """Commit the current SQLAlchemy session, returning an error response on failure.

    Returns:
        None on success.
        (response, status_code) tuple on failure — ready for ``return``.

    IntegrityError → 409 (duplicate / constraint violation)
    OperationalError → 500 (connection / lock issues)
    Other → 500 (unexpected)
    """
    from sqlalchemy.exc import IntegrityError, OperationalError

    try:
        db.session.commit()
        return None
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error on commit: %s", exc.orig)
        return jsonify({"error": "Duplicate or constraint violation", "code": "ERR_CONFLICT_DUPLICATE"}), 409
    except OperationalError:
        db.session.rollback()
        logger.exception("Database operational error on commit")
        return jsonify({"error": "Database error", "code": "ERR_DATABASE"}), 500
    except Exception:
        db.session.rollback()
        logger.exception("Unexpected database error on commit")
        return jsonify({"error": "Database error", "code": "ERR_DATABASE"}), 500
