"""
Concept Paper Approval Workflow
Attachment model.

Only ownership and lifecycle are modelled here; upload and streaming live
outside this service. ``file_path`` is relative to ``UPLOAD_FOLDER``.
"""

from datetime import datetime, timezone

from app.models import db
from app.models.soft_delete import SoftDeleteMixin
from app.utils.helpers import isoformat


class Attachment(SoftDeleteMixin, db.Model):
    __tablename__ = "attachments"

    id = db.Column(db.Integer, primary_key=True)
    concept_paper_id = db.Column(
        db.Integer, db.ForeignKey("concept_papers.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    workflow_stage_id = db.Column(
        db.Integer, db.ForeignKey("workflow_stages.id", ondelete="SET NULL"), nullable=True,
    )
    original_name = db.Column(db.String(255), nullable=False)
    file_path = db.Column(db.String(500), nullable=False)
    uploaded_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    paper = db.relationship("ConceptPaper", back_populates="attachments", foreign_keys=[concept_paper_id])

    def to_dict(self):
        return {
            "id": self.id,
            "concept_paper_id": self.concept_paper_id,
            "workflow_stage_id": self.workflow_stage_id,
            "original_name": self.original_name,
            "file_path": self.file_path,
            "uploaded_by": self.uploaded_by,
            "created_at": isoformat(self.created_at),
            "deleted_at": isoformat(self.deleted_at),
        }

    def __repr__(self):
        return f"<Attachment {self.id}: {self.original_name}>"
