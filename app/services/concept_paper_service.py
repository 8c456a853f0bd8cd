"""
Concept paper intake, listing and deletion.

Intake validates the request, assigns a tracking number and hands the paper
to ``workflow_service.initialize_workflow``. Deletion is two-phase: rows are
marked deleted in one transaction, files are removed afterwards on a
best-effort basis.
"""

import logging
import os
from datetime import datetime

from flask import current_app
from sqlalchemy import func, select

from app.core.exceptions import NotFoundError, ValidationError
from app.models import db
from app.models.attachment import Attachment
from app.models.audit import write_audit
from app.models.auth import Role
from app.models.workflow import NATURES_OF_REQUEST, ConceptPaper, PaperStatus, StageStatus, WorkflowStage
from app.services import deadline_policy
from app.services.overdue import is_paper_overdue, is_stage_overdue
from app.services.workflow_service import initialize_workflow
from app.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)

TRACKING_PREFIX = "CP"


# ── Intake ───────────────────────────────────────────────────────────────────

def generate_tracking_number(now: datetime | None = None) -> str:
    """Next free ``CP-YYYY-MM-NNNN`` for the month of ``now``."""
    now = as_utc(now) or utcnow()
    prefix = f"{TRACKING_PREFIX}-{now:%Y}-{now:%m}-"
    count = db.session.execute(
        select(func.count(ConceptPaper.id)).where(ConceptPaper.tracking_number.like(f"{prefix}%"))
    ).scalar() or 0

    seq = count + 1
    while True:
        candidate = f"{prefix}{seq:04d}"
        taken = db.session.execute(
            select(ConceptPaper.id).where(ConceptPaper.tracking_number == candidate)
        ).first()
        if not taken:
            return candidate
        seq += 1


def _validate_intake(data: dict) -> dict:
    errors = {}
    department = (data.get("department") or "").strip()
    title = (data.get("title") or "").strip()
    nature = (data.get("nature_of_request") or "").strip()

    if not department:
        errors["department"] = "required"
    elif len(department) > 255:
        errors["department"] = "max 255 characters"
    if not title:
        errors["title"] = "required"
    elif len(title) > 1000:
        errors["title"] = "max 1000 characters"
    if nature not in NATURES_OF_REQUEST:
        errors["nature_of_request"] = f"must be one of {sorted(NATURES_OF_REQUEST)}"

    students_involved = data.get("students_involved", True)
    if not isinstance(students_involved, bool):
        errors["students_involved"] = "must be a boolean"

    if errors:
        raise ValidationError("Invalid concept paper", details=errors)
    return {
        "department": department,
        "title": title,
        "nature_of_request": nature,
        "students_involved": students_involved,
        "deadline_option": data.get("deadline_option"),
    }


def create_paper(data: dict, requisitioner, *, now: datetime | None = None,
                 initialize: bool = True) -> ConceptPaper:
    """Register a new paper and (by default) start its workflow.

    With ``initialize`` the paper row and its stages commit together: a
    failed initialization leaves no paper behind.
    """
    now = as_utc(now) or utcnow()
    fields = _validate_intake(data)
    if requisitioner is not None and not requisitioner.has_role(Role.REQUISITIONER) \
            and not requisitioner.is_admin:
        raise ValidationError(
            "Only requisitioners may submit concept papers",
            details={"requisitioner_id": requisitioner.id},
        )

    option_key = fields["deadline_option"] or current_app.config["DEFAULT_PAPER_DEADLINE_OPTION"]
    try:
        paper = ConceptPaper(
            tracking_number=generate_tracking_number(now),
            requisitioner_id=requisitioner.id if requisitioner is not None else None,
            department=fields["department"],
            title=fields["title"],
            nature_of_request=fields["nature_of_request"],
            students_involved=fields["students_involved"],
            deadline_option=option_key,
            deadline_date=deadline_policy.resolve(option_key, now),
            submitted_at=now,
            status=PaperStatus.PENDING.value,
        )
        db.session.add(paper)
        db.session.flush()
        if initialize:
            # Commits on success, rolls the paper back with the stages on failure
            initialize_workflow(
                paper.id, actor_id=requisitioner.id if requisitioner is not None else None, now=now,
            )
        else:
            db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Concept paper submitted", extra={
        "paper_id": paper.id, "tracking_number": paper.tracking_number, "action": "create",
    })
    return paper


# ── Read ─────────────────────────────────────────────────────────────────────

def get_paper(paper_id: int, *, include_deleted: bool = False) -> ConceptPaper:
    paper = db.session.get(ConceptPaper, paper_id)
    if paper is None or (paper.is_deleted and not include_deleted):
        raise NotFoundError("ConceptPaper", paper_id)
    return paper


def list_papers_for_user(user, *, status: str | None = None, limit: int = 50,
                         offset: int = 0) -> tuple[list[ConceptPaper], int]:
    """Papers visible to ``user``, newest first.

    Admins see everything, requisitioners their own papers, approvers the
    papers with a stage assigned to their role.
    """
    stmt = select(ConceptPaper).where(ConceptPaper.deleted_at.is_(None))
    if user.is_admin:
        pass
    elif user.has_role(Role.REQUISITIONER):
        stmt = stmt.where(ConceptPaper.requisitioner_id == user.id)
    else:
        role_stage = (
            select(WorkflowStage.id)
            .where(WorkflowStage.concept_paper_id == ConceptPaper.id,
                   WorkflowStage.assigned_role == user.role)
            .exists()
        )
        stmt = stmt.where(role_stage)
    if status:
        stmt = stmt.where(ConceptPaper.status == status)

    total = db.session.execute(select(func.count()).select_from(stmt.subquery())).scalar()
    stmt = stmt.order_by(ConceptPaper.submitted_at.desc(), ConceptPaper.id.desc())
    items = list(db.session.execute(stmt.offset(offset).limit(limit)).scalars())
    return items, total


def status_summary(paper: ConceptPaper, now: datetime | None = None) -> dict:
    """Progress snapshot for dashboards."""
    now = as_utc(now) or utcnow()
    stages = paper.stages
    completed = sum(1 for s in stages if s.state == StageStatus.COMPLETED)
    total = len(stages)
    current = paper.current_stage
    return {
        "tracking_number": paper.tracking_number,
        "status": paper.status,
        "current_stage": {
            "id": current.id,
            "name": current.stage_name,
            "assigned_role": current.assigned_role,
            "deadline": current.to_dict()["deadline"],
            "is_overdue": is_stage_overdue(current, now),
        } if current is not None else None,
        "progress": {
            "completed": completed,
            "total": total,
            "percentage": round(completed * 100 / total) if total else 0,
        },
        "is_overdue": is_paper_overdue(paper, now),
    }


# ── Deletion ─────────────────────────────────────────────────────────────────

def soft_delete_paper(paper_id: int, *, actor_id: int | None = None,
                      now: datetime | None = None) -> ConceptPaper:
    """Mark the paper and its attachments deleted, then remove the files.

    Phase 1 commits atomically. Phase 2 (file removal) never raises; files
    that cannot be removed are logged and left for manual cleanup.
    """
    now = as_utc(now) or utcnow()
    try:
        paper = get_paper(paper_id)
        attachments = list(paper.attachments)
        paper.soft_delete(now)
        for attachment in attachments:
            attachment.soft_delete(now)
        write_audit(
            paper_id=paper.id, action="deleted", actor_id=actor_id,
            metadata={"attachments": len(attachments), "status_at_deletion": paper.status},
            at=now,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Concept paper deleted", extra={
        "paper_id": paper.id, "tracking_number": paper.tracking_number, "action": "deleted",
    })
    remove_attachment_files(attachments)
    return paper


def remove_attachment_files(attachments: list[Attachment]) -> list[str]:
    """Delete attachment files under UPLOAD_FOLDER. Returns the paths that failed."""
    root = os.path.abspath(current_app.config["UPLOAD_FOLDER"])
    failed = []
    for attachment in attachments:
        path = os.path.abspath(os.path.join(root, attachment.file_path))
        if os.path.commonpath([root, path]) != root:
            logger.error("Refusing to delete %s outside the upload folder", attachment.file_path)
            failed.append(attachment.file_path)
            continue
        try:
            os.remove(path)
        except FileNotFoundError:
            logger.debug("Attachment file already gone: %s", attachment.file_path)
        except OSError:
            logger.warning("Could not delete attachment file %s", attachment.file_path, exc_info=True)
            failed.append(attachment.file_path)
    return failed
