"""
Blueprint helpers shared by the HTTP adapters.
"""

from flask import request


def paginate_query(query, default_limit=200, max_limit=1000):
    """Apply limit/offset pagination to a SQLAlchemy query.

    Query params:
        limit  — max items (default 200, capped at max_limit)
        offset — starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = query.count()
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    items = query.limit(limit).offset(offset).all()
    return items, total


def actor_id():
    """Acting user id as resolved by the upstream identity provider.

    Read from the ``X-User-Id`` header, falling back to ``user_id`` in the
    JSON body. Returns None when neither is a valid integer.
    """
    raw = request.headers.get("X-User-Id")
    if raw is None:
        raw = (request.get_json(silent=True) or {}).get("user_id")
    try:
        return int(raw) if raw is not None else None
    except (TypeError, ValueError):
        return None
