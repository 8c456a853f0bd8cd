"""
Concept Paper Approval Workflow
Blueprint helpers shared by the route modules.
"""

from flask import request

from app.models import db
from app.models.auth import User


def pagination_args(default_limit=50, max_limit=200):
    """Read limit/offset from the query string.

    Query params:
        limit  : max items (default 50, capped at max_limit)
        offset : starting position (default 0)

    Returns:
        (limit, offset)
    """
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    return limit, offset


def current_user():
    """User named by the ``X-User-Id`` header, or None.

    Authentication happens upstream; this service trusts the header.
    """
    raw = request.headers.get("X-User-Id", "").strip()
    if not raw.isdigit():
        return None
    user = db.session.get(User, int(raw))
    if user is None or not user.is_active:
        return None
    return user
