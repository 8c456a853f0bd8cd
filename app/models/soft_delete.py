"""
Soft Delete Mixin.

Adds a ``deleted_at`` timestamp column. Concept papers and their attachments
are never removed by an admin delete; they are marked and hidden from every
list query instead.

Usage:
    class ConceptPaper(SoftDeleteMixin, db.Model):
        ...

    paper.soft_delete(now)
    db.session.commit()

    select(ConceptPaper).where(ConceptPaper.deleted_at.is_(None))
"""

from datetime import datetime, timezone

from app.models import db


class SoftDeleteMixin:
    """Mixin that adds soft delete support to any SQLAlchemy model."""

    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, default=None, index=True)

    def soft_delete(self, at: datetime | None = None):
        """Mark this record as deleted (first mark wins)."""
        if self.deleted_at is None:
            self.deleted_at = at or datetime.now(timezone.utc)

    @property
    def is_deleted(self):
        return self.deleted_at is not None
