"""
Concept Paper Approval Workflow
Notification Service.

Turns workflow events into in-app notification rows. Delivery channels
(email, push) are not handled here.

Dispatch happens after the transition has committed; a failure here is
logged and never undoes the transition.
"""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from app.models import db
from app.models.notification import Notification
from app.services.workflow_events import (
    PaperCompleted,
    PaperReturned,
    StageAssigned,
    StageOverdue,
    StageReassigned,
)
from app.utils.helpers import isoformat

logger = logging.getLogger(__name__)


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, title, message="", category="system", severity="info",
               recipient_user_id=None, recipient_role=None, paper_id=None,
               entity_type="", entity_id=None, commit=True, at=None):
        """
        Create a single notification record.

        Addressed to ``recipient_user_id`` when known, otherwise broadcast to
        every holder of ``recipient_role``.
        """
        notif = Notification(
            concept_paper_id=paper_id,
            recipient_user_id=recipient_user_id,
            recipient_role=None if recipient_user_id else recipient_role,
            title=title,
            message=message,
            category=category,
            severity=severity,
            entity_type=entity_type,
            entity_id=entity_id,
        )
        if at is not None:
            notif.created_at = at
        db.session.add(notif)
        if commit:
            db.session.commit()
        return notif

    # ── Dispatch ──────────────────────────────────────────────────────────

    @staticmethod
    def dispatch(events) -> int:
        """
        Store a notification per event and commit once.

        Returns the number of notifications written. Never raises: on failure
        the notification batch is rolled back and the error logged.
        """
        if not events:
            return 0
        written = 0
        try:
            for event in events:
                if NotificationService._handle(event) is not None:
                    written += 1
            db.session.commit()
        except Exception:
            db.session.rollback()
            logger.exception("Notification dispatch failed for %d event(s)", len(events))
            return 0
        return written

    @staticmethod
    def _handle(event):
        match event:
            case StageAssigned():
                return NotificationService.notify_stage_assigned(event)
            case StageOverdue():
                return NotificationService.notify_stage_overdue(event)
            case PaperCompleted():
                return NotificationService.notify_paper_completed(event)
            case PaperReturned():
                return NotificationService.notify_paper_returned(event)
            case StageReassigned():
                return NotificationService.notify_stage_reassigned(event)
            case _:
                logger.warning("No notification handler for %s", type(event).__name__)
                return None

    # ── Workflow helpers ──────────────────────────────────────────────────

    @staticmethod
    def notify_stage_assigned(event: StageAssigned):
        return NotificationService.create(
            title=f"{event.tracking_number}: {event.stage_name} awaits your action",
            message=f"Due {isoformat(event.deadline)}.",
            category="assignment",
            severity="info",
            recipient_user_id=event.assigned_user_id,
            recipient_role=event.assigned_role,
            paper_id=event.paper_id,
            entity_type="workflow_stage",
            entity_id=event.stage_id,
            commit=False,
        )

    @staticmethod
    def notify_stage_overdue(event: StageOverdue, at=None):
        return NotificationService.create(
            title=f"{event.tracking_number}: {event.stage_name} is overdue",
            message=f"Deadline was {isoformat(event.deadline)}.",
            category="deadline",
            severity="warning",
            recipient_user_id=event.assigned_user_id,
            recipient_role=event.assigned_role,
            paper_id=event.paper_id,
            entity_type="workflow_stage",
            entity_id=event.stage_id,
            commit=False,
            at=at,
        )

    @staticmethod
    def notify_paper_completed(event: PaperCompleted):
        return NotificationService.create(
            title=f"{event.tracking_number} has completed all approval stages",
            category="completion",
            severity="success",
            recipient_user_id=event.requisitioner_id,
            recipient_role="requisitioner",
            paper_id=event.paper_id,
            entity_type="concept_paper",
            entity_id=event.paper_id,
            commit=False,
        )

    @staticmethod
    def notify_paper_returned(event: PaperReturned):
        return NotificationService.create(
            title=f"{event.tracking_number} returned to {event.to_stage_name}",
            message=f"Returned from {event.from_stage_name}: {event.remarks}",
            category="return",
            severity="warning",
            recipient_user_id=event.assigned_user_id,
            recipient_role=event.assigned_role,
            paper_id=event.paper_id,
            entity_type="workflow_stage",
            entity_id=event.to_stage_id,
            commit=False,
        )

    @staticmethod
    def notify_stage_reassigned(event: StageReassigned):
        return NotificationService.create(
            title=f"{event.tracking_number}: {event.stage_name} reassigned to you",
            category="reassignment",
            severity="info",
            recipient_user_id=event.new_user_id,
            paper_id=event.paper_id,
            entity_type="workflow_stage",
            entity_id=event.stage_id,
            commit=False,
        )

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_user(user, unread_only=False, limit=50, offset=0):
        """Notifications addressed to ``user`` directly or to their role, newest first."""
        stmt = select(Notification).where(
            (Notification.recipient_user_id == user.id)
            | ((Notification.recipient_user_id.is_(None)) & (Notification.recipient_role == user.role))
        )
        if unread_only:
            stmt = stmt.where(Notification.is_read.is_(False))
        stmt = stmt.order_by(Notification.created_at.desc(), Notification.id.desc())
        return list(db.session.execute(stmt.offset(offset).limit(limit)).scalars())

    @staticmethod
    def exists_today(*, category, entity_type, entity_id, now=None) -> bool:
        """True if a notification for this entity/category was written on ``now``'s UTC day."""
        now = now or datetime.now(timezone.utc)
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        stmt = select(Notification.id).where(
            Notification.category == category,
            Notification.entity_type == entity_type,
            Notification.entity_id == entity_id,
            Notification.created_at >= day_start,
            Notification.created_at < day_start + timedelta(days=1),
        ).limit(1)
        return db.session.execute(stmt).first() is not None

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id, user):
        """Mark one of ``user``'s notifications as read. Returns None if not theirs."""
        notif = db.session.get(Notification, notification_id)
        if notif is None or not NotificationService._is_recipient(notif, user):
            return None
        notif.mark_read()
        db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(user) -> int:
        count = 0
        for notif in NotificationService.list_for_user(user, unread_only=True, limit=None):
            notif.mark_read()
            count += 1
        db.session.commit()
        return count

    @staticmethod
    def _is_recipient(notif, user) -> bool:
        if notif.recipient_user_id is not None:
            return notif.recipient_user_id == user.id
        return notif.recipient_role == user.role
