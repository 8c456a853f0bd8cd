"""
Concept Paper Approval Workflow
Workflow domain models.

Models:
    - ConceptPaper: one approval request, owns its stages, audit rows and attachments
    - WorkflowStage: one role-gated step of a paper's approval pipeline
    - DeadlineOption: administrator-configurable named duration

Status columns are plain strings holding ``PaperStatus`` / ``StageStatus``
values. Only the named transition functions in ``app.services.workflow_service``
and ``app.services.stage_insertion`` write ``status``, ``stage_order`` or
``current_stage_id``.
"""

import enum
from datetime import datetime, timezone

from app.models import db
from app.models.soft_delete import SoftDeleteMixin
from app.utils.helpers import isoformat


# ── Enumerations ─────────────────────────────────────────────────────────────

class PaperStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    RETURNED = "returned"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in (PaperStatus.COMPLETED, PaperStatus.REJECTED)


class StageStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    RETURNED = "returned"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in (StageStatus.COMPLETED, StageStatus.REJECTED)

    @property
    def is_open(self) -> bool:
        """Still awaiting action (counts towards overdue)."""
        return self in (StageStatus.PENDING, StageStatus.IN_PROGRESS)


class NatureOfRequest(str, enum.Enum):
    REGULAR = "regular"
    URGENT = "urgent"
    EMERGENCY = "emergency"


PAPER_STATUSES = frozenset(s.value for s in PaperStatus)
NATURES_OF_REQUEST = frozenset(n.value for n in NatureOfRequest)


class ConceptPaper(SoftDeleteMixin, db.Model):
    """
    A concept paper moving through the approval chain.

    Invariants:
    - status == completed  <=>  current_stage_id is NULL and completed_at is set
    - status == rejected is terminal
    - tracking_number and submitted_at are written once at intake
    """

    __tablename__ = "concept_papers"

    id = db.Column(db.Integer, primary_key=True)
    tracking_number = db.Column(db.String(30), nullable=False, unique=True,
                                comment="CP-YYYY-MM-NNNN, generated at intake")
    requisitioner_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    department = db.Column(db.String(255), nullable=False)
    title = db.Column(db.String(1000), nullable=False)
    nature_of_request = db.Column(db.String(20), nullable=False, default=NatureOfRequest.REGULAR.value,
                                  comment="regular | urgent | emergency")
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=False,
                             default=lambda: datetime.now(timezone.utc))
    current_stage_id = db.Column(
        db.Integer,
        db.ForeignKey("workflow_stages.id", ondelete="SET NULL", use_alter=True,
                      name="fk_concept_papers_current_stage"),
        nullable=True,
    )
    status = db.Column(db.String(20), nullable=False, default=PaperStatus.PENDING.value, index=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    students_involved = db.Column(db.Boolean, nullable=False, default=True)
    deadline_option = db.Column(db.String(50), nullable=True)
    deadline_date = db.Column(db.DateTime(timezone=True), nullable=True)

    # Optimistic lock: concurrent transitions on one paper cannot both commit
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    __mapper_args__ = {"version_id_col": version_id}

    stages = db.relationship(
        "WorkflowStage",
        back_populates="paper",
        foreign_keys="WorkflowStage.concept_paper_id",
        order_by="WorkflowStage.stage_order",
        cascade="all, delete-orphan",
    )
    current_stage = db.relationship(
        "WorkflowStage", foreign_keys=[current_stage_id], viewonly=True,
    )
    # Audit rows go away only through the database cascade on hard delete
    audit_logs = db.relationship(
        "AuditLog", viewonly=True, order_by="AuditLog.id",
    )
    attachments = db.relationship(
        "Attachment", back_populates="paper", cascade="all, delete-orphan",
        foreign_keys="Attachment.concept_paper_id",
    )
    requisitioner = db.relationship("User", foreign_keys=[requisitioner_id])

    @property
    def state(self) -> PaperStatus:
        return PaperStatus(self.status)

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def to_dict(self, include_stages=False):
        d = {
            "id": self.id,
            "tracking_number": self.tracking_number,
            "requisitioner_id": self.requisitioner_id,
            "department": self.department,
            "title": self.title,
            "nature_of_request": self.nature_of_request,
            "submitted_at": isoformat(self.submitted_at),
            "current_stage_id": self.current_stage_id,
            "status": self.status,
            "completed_at": isoformat(self.completed_at),
            "students_involved": self.students_involved,
            "deadline_option": self.deadline_option,
            "deadline_date": isoformat(self.deadline_date),
            "deleted_at": isoformat(self.deleted_at),
        }
        if include_stages:
            d["stages"] = [s.to_dict() for s in self.stages]
        return d

    def __repr__(self):
        return f"<ConceptPaper {self.id}: {self.tracking_number} [{self.status}]>"


class WorkflowStage(db.Model):
    """
    One approval step. ``stage_order`` is dense 1..N per paper.

    Deadlines are snapshotted: editing a DeadlineOption later never changes a
    stored ``deadline``; only (re)activation recomputes it.
    """

    __tablename__ = "workflow_stages"
    __table_args__ = (
        db.UniqueConstraint("concept_paper_id", "stage_order", name="uq_workflow_stage_order"),
        db.UniqueConstraint("concept_paper_id", "stage_name", name="uq_workflow_stage_name"),
        db.Index("ix_workflow_stages_status_deadline", "status", "deadline"),
    )

    id = db.Column(db.Integer, primary_key=True)
    concept_paper_id = db.Column(
        db.Integer, db.ForeignKey("concept_papers.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    stage_name = db.Column(db.String(100), nullable=False)
    stage_order = db.Column(db.Integer, nullable=False)
    assigned_role = db.Column(db.String(30), nullable=False, index=True)
    assigned_user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True,
        comment="NULL = any active user holding assigned_role may act",
    )
    status = db.Column(db.String(20), nullable=False, default=StageStatus.PENDING.value)
    deadline_option = db.Column(db.String(50), nullable=False,
                                comment="DeadlineOption.key used at each activation")

    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    deadline = db.Column(db.DateTime(timezone=True), nullable=False)
    remarks = db.Column(db.Text, nullable=True)
    signature = db.Column(db.Text, nullable=True, comment="Base64 signature captured on completion")

    is_rejected = db.Column(db.Boolean, nullable=False, default=False)
    rejection_reason = db.Column(db.Text, nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    paper = db.relationship("ConceptPaper", back_populates="stages", foreign_keys=[concept_paper_id])
    assigned_user = db.relationship("User", foreign_keys=[assigned_user_id])

    @property
    def state(self) -> StageStatus:
        return StageStatus(self.status)

    def to_dict(self):
        return {
            "id": self.id,
            "concept_paper_id": self.concept_paper_id,
            "stage_name": self.stage_name,
            "stage_order": self.stage_order,
            "assigned_role": self.assigned_role,
            "assigned_user_id": self.assigned_user_id,
            "status": self.status,
            "deadline_option": self.deadline_option,
            "started_at": isoformat(self.started_at),
            "completed_at": isoformat(self.completed_at),
            "deadline": isoformat(self.deadline),
            "remarks": self.remarks,
            "has_signature": bool(self.signature),
            "is_rejected": self.is_rejected,
            "rejection_reason": self.rejection_reason,
            "rejected_at": isoformat(self.rejected_at),
        }

    def __repr__(self):
        return f"<WorkflowStage {self.id}: #{self.stage_order} {self.stage_name} [{self.status}]>"


class DeadlineOption(db.Model):
    """
    Named duration used to compute stage deadlines.

    ``hours`` is authoritative. ``days`` is kept for rows written before the
    hours column existed and is read only when ``hours`` is NULL.
    """

    __tablename__ = "deadline_options"

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(50), nullable=False, unique=True)
    label = db.Column(db.String(100), nullable=False)
    hours = db.Column(db.Integer, nullable=True)
    days = db.Column(db.Numeric(8, 3), nullable=True, comment="Legacy fractional days")
    sort_order = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "key": self.key,
            "label": self.label,
            "hours": self.hours,
            "days": float(self.days) if self.days is not None else None,
            "sort_order": self.sort_order,
        }

    def __repr__(self):
        return f"<DeadlineOption {self.key}: {self.hours}h>"
