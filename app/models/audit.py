"""
Concept Paper Approval Workflow
Audit domain model.

Models:
    - AuditLog: immutable, append-only trail of workflow events per paper.
"""

import json
import logging
from datetime import UTC, datetime

from sqlalchemy import event, select

from app.core.exceptions import AuditImmutableError
from app.models import db
from app.utils.helpers import isoformat

logger = logging.getLogger(__name__)


# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ACTIONS = {
    "submitted",
    "stage_skipped",
    "completed",
    "returned",
    "rejected",
    "reassigned",
    "stage_inserted",
    "deleted",
}


class AuditLog(db.Model):
    """
    Immutable audit trail for every workflow event.

    One row per action. ``metadata_json`` is opaque to the workflow engine;
    readers get it back through ``details``.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_paper_created", "concept_paper_id", "created_at"),
        db.Index("idx_audit_action", "action"),
    )

    id = db.Column(db.Integer, primary_key=True)
    concept_paper_id = db.Column(
        db.Integer,
        db.ForeignKey("concept_papers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="NULL for system-initiated entries",
    )
    action = db.Column(
        db.String(40), nullable=False,
        comment="submitted | completed | returned | rejected | stage_inserted | …",
    )
    stage_name = db.Column(db.String(100), nullable=True)
    remarks = db.Column(db.Text, nullable=True)
    metadata_json = db.Column(db.Text, default="{}")

    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    paper = db.relationship("ConceptPaper")

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def details(self) -> dict:
        """Deserialise *metadata_json* to a Python dict."""
        try:
            return json.loads(self.metadata_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "concept_paper_id": self.concept_paper_id,
            "user_id": self.user_id,
            "action": self.action,
            "stage_name": self.stage_name,
            "remarks": self.remarks,
            "metadata": self.details,
            "created_at": isoformat(self.created_at),
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on paper {self.concept_paper_id}>"


# ── Immutability guard ───────────────────────────────────────────────────────

@event.listens_for(AuditLog, "before_update")
def _block_audit_update(mapper, connection, target):
    raise AuditImmutableError(f"AuditLog {target.id} is append-only and cannot be updated")


@event.listens_for(AuditLog, "before_delete")
def _block_audit_delete(mapper, connection, target):
    raise AuditImmutableError(f"AuditLog {target.id} is append-only and cannot be deleted")


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    paper_id: int,
    action: str,
    actor_id: int | None = None,
    stage_name: str | None = None,
    remarks: str | None = None,
    metadata: dict | None = None,
    at: datetime | None = None,
) -> AuditLog:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control.

    Returns the (flushed) AuditLog instance.
    """
    if action not in AUDIT_ACTIONS:
        logger.warning("Unregistered audit action '%s' for paper %s", action, paper_id)

    log = AuditLog(
        concept_paper_id=paper_id,
        user_id=actor_id,
        action=action,
        stage_name=stage_name,
        remarks=remarks,
        metadata_json=json.dumps(metadata or {}, default=str),
    )
    if at is not None:
        log.created_at = at
    db.session.add(log)
    db.session.flush()
    return log


def get_paper_history(paper_id: int) -> list[AuditLog]:
    """All audit rows of one paper, oldest first."""
    stmt = (
        select(AuditLog)
        .where(AuditLog.concept_paper_id == paper_id)
        .order_by(AuditLog.created_at, AuditLog.id)
    )
    return list(db.session.execute(stmt).scalars())
