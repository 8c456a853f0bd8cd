"""
Concept Paper Approval Workflow
Notification domain model.

Models:
    - Notification: in-app notification record with read tracking
"""

from datetime import datetime, timezone

from app.models import db
from app.utils.helpers import isoformat


# ── Constants ────────────────────────────────────────────────────────────────

NOTIFICATION_CATEGORIES = {"assignment", "deadline", "completion", "return", "reassignment", "system"}
NOTIFICATION_SEVERITIES = {"info", "warning", "error", "success"}


class Notification(db.Model):
    """
    In-app notification entity.

    One record per recipient per event. ``recipient_role`` is set for role
    broadcasts where the stage has no assigned user yet.
    """

    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("ix_notifications_entity", "entity_type", "entity_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    concept_paper_id = db.Column(
        db.Integer, db.ForeignKey("concept_papers.id", ondelete="CASCADE"), nullable=True, index=True,
    )
    recipient_user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True,
    )
    recipient_role = db.Column(db.String(30), nullable=True, index=True)
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")
    category = db.Column(db.String(30), default="system")
    severity = db.Column(db.String(20), default="info")

    # Link to source entity
    entity_type = db.Column(db.String(30), default="", comment="concept_paper / workflow_stage")
    entity_id = db.Column(db.Integer, nullable=True)

    # Read tracking
    is_read = db.Column(db.Boolean, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def mark_read(self):
        self.is_read = True
        self.read_at = datetime.now(timezone.utc)

    def to_dict(self):
        return {
            "id": self.id,
            "concept_paper_id": self.concept_paper_id,
            "recipient_user_id": self.recipient_user_id,
            "recipient_role": self.recipient_role,
            "title": self.title,
            "message": self.message,
            "category": self.category,
            "severity": self.severity,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "is_read": self.is_read,
            "read_at": isoformat(self.read_at),
            "created_at": isoformat(self.created_at),
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.title[:40]}>"
