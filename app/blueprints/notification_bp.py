"""
Concept Paper Approval Workflow
Notification & Scheduling Blueprint.

Provides:
    - In-app notifications for the calling user (list, mark read)
    - Scheduled job management (list, trigger, toggle) for administrators
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from app.blueprints import current_user, pagination_args
from app.core.exceptions import PermissionDenied
from app.models.scheduling import ScheduledJob
from app.services.notification import NotificationService
from app.services.scheduler_service import SchedulerService, get_registered_jobs
from app.services.stage_access import require_admin
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notification_bp", __name__, url_prefix="/api/v1")


@notification_bp.errorhandler(PermissionDenied)
def _handle_forbidden(error: PermissionDenied):
    return api_error(E.FORBIDDEN, str(error))


# ═══════════════════════════════════════════════════════════════════════════
#  NOTIFICATIONS
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/notifications", methods=["GET"])
def list_notifications():
    """Notifications for the caller. Query: unread_only=true, limit, offset"""
    user = current_user()
    if user is None:
        return api_error(E.UNAUTHENTICATED, "X-User-Id header with an active user is required")
    limit, offset = pagination_args()
    unread_only = request.args.get("unread_only", "false").lower() == "true"
    items = NotificationService.list_for_user(user, unread_only=unread_only, limit=limit, offset=offset)
    return jsonify([n.to_dict() for n in items])


@notification_bp.route("/notifications/<int:nid>/read", methods=["POST"])
def mark_notification_read(nid):
    user = current_user()
    if user is None:
        return api_error(E.UNAUTHENTICATED, "X-User-Id header with an active user is required")
    notif = NotificationService.mark_read(nid, user)
    if notif is None:
        return api_error(E.NOT_FOUND, "Notification not found")
    return jsonify(notif.to_dict())


@notification_bp.route("/notifications/read-all", methods=["POST"])
def mark_all_read():
    user = current_user()
    if user is None:
        return api_error(E.UNAUTHENTICATED, "X-User-Id header with an active user is required")
    return jsonify({"marked_read": NotificationService.mark_all_read(user)})


# ═══════════════════════════════════════════════════════════════════════════
#  SCHEDULED JOBS
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/scheduler/jobs", methods=["GET"])
def list_scheduled_jobs():
    require_admin(current_user())
    SchedulerService.ensure_jobs_registered()
    jobs = ScheduledJob.query.filter(ScheduledJob.job_name.in_(list(get_registered_jobs()))).all()
    return jsonify([j.to_dict() for j in jobs])


@notification_bp.route("/scheduler/jobs/<job_name>/trigger", methods=["POST"])
def trigger_job(job_name):
    require_admin(current_user())
    if job_name not in get_registered_jobs():
        return api_error(E.NOT_FOUND, f"Unknown job: {job_name}")
    result = SchedulerService.run_job(job_name)
    return jsonify(result)


@notification_bp.route("/scheduler/jobs/<job_name>/toggle", methods=["PATCH"])
def toggle_job_status(job_name):
    """Body: { enabled: bool }"""
    require_admin(current_user())
    data = request.get_json(silent=True) or {}
    if not isinstance(data.get("enabled"), bool):
        return api_error(E.VALIDATION_REQUIRED, "enabled (boolean) is required")
    SchedulerService.ensure_jobs_registered()
    result = SchedulerService.toggle_job(job_name, data["enabled"])
    if result is None:
        return api_error(E.NOT_FOUND, f"Unknown job: {job_name}")
    return jsonify(result)
