"""
Best-effort side effects.

Notifications, audit rows and other follow-up writes must never undo the
transition that triggered them. Each runs inside a SAVEPOINT: a failure rolls
back only the side effect, is logged with its traceback, and is swallowed.
"""

import logging

from sitetrack.models import db

logger = logging.getLogger(__name__)


def run_best_effort(label: str, fn, *args, **kwargs):
    """Call ``fn(*args, **kwargs)`` in a savepoint; return its result or None on failure."""
    try:
        with db.session.begin_nested():
            return fn(*args, **kwargs)
    except Exception:
        logger.warning("Best-effort step '%s' failed; continuing", label, exc_info=True)
        return None
