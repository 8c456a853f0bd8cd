"""
Stage insertion: add an approval step to papers already in flight.

Inserting after a checkpoint stage shifts every later stage down by one and
places the new stage in the freed slot, keeping ``stage_order`` dense 1..N.

Current-stage policy when the paper has already moved past the checkpoint:
the new stage becomes current and is activated; the stage that was active is
reset to pending. If the paper was further along than the slot right after
the checkpoint this rewinds progress, which needs ``rewind_progress=True``.

Usage:
    from app.services.stage_insertion import insert_stage_after
    from app.services.stage_templates import StageDefinition

    insert_stage_after(
        paper_id, "Auditing Review",
        StageDefinition("Senior VP Approval", "senior_vp", "2_days"),
    )
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import func, select

from app.core.exceptions import (
    AlreadyInsertedError,
    CheckpointNotFoundError,
    IllegalTransitionError,
    WorkflowError,
)
from app.models import db
from app.models.audit import write_audit
from app.models.workflow import ConceptPaper, PaperStatus, StageStatus, WorkflowStage
from app.services import deadline_policy
from app.services.notification import NotificationService
from app.services.stage_templates import StageDefinition
from app.services.workflow_events import stage_assigned
from app.services.workflow_service import get_current_stage, lock_paper, reproject_deadlines
from app.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass
class BackfillResult:
    inserted: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    dry_run: bool = False

    def to_dict(self):
        return {
            "inserted": len(self.inserted),
            "skipped": len(self.skipped),
            "failed": len(self.failed),
            "dry_run": self.dry_run,
            "inserted_tracking_numbers": self.inserted,
            "failures": self.failed,
        }


def _find_stage(paper_id: int, stage_name: str) -> WorkflowStage | None:
    return db.session.execute(
        select(WorkflowStage).where(
            WorkflowStage.concept_paper_id == paper_id,
            WorkflowStage.stage_name == stage_name,
        )
    ).scalar_one_or_none()


def _check_insertable(paper: ConceptPaper, after_stage_name: str,
                      new_stage: StageDefinition) -> WorkflowStage:
    """Return the checkpoint stage or raise why the insert cannot happen."""
    if paper.is_terminal:
        raise IllegalTransitionError(
            f"Cannot insert a stage into {paper.tracking_number}: paper is {paper.status}",
            details={"paper_status": paper.status},
        )
    checkpoint = _find_stage(paper.id, after_stage_name)
    if checkpoint is None or checkpoint.state != StageStatus.COMPLETED:
        raise CheckpointNotFoundError(
            f"'{after_stage_name}' is not a completed stage of {paper.tracking_number}",
            details={"after_stage_name": after_stage_name,
                     "checkpoint_status": checkpoint.status if checkpoint else None},
        )
    if _find_stage(paper.id, new_stage.stage_name) is not None:
        raise AlreadyInsertedError(
            f"{paper.tracking_number} already has a '{new_stage.stage_name}' stage",
            details={"stage_name": new_stage.stage_name},
        )
    return checkpoint


def _shift_after(paper_id: int, order: int) -> int:
    """Move stages with stage_order > ``order`` down by one. Returns the count moved.

    Rows are shifted highest first and flushed one at a time so the
    (concept_paper_id, stage_order) unique constraint holds after every
    statement.
    """
    later = db.session.execute(
        select(WorkflowStage)
        .where(WorkflowStage.concept_paper_id == paper_id, WorkflowStage.stage_order > order)
        .order_by(WorkflowStage.stage_order.desc())
    ).scalars().all()
    for stage in later:
        stage.stage_order += 1
        db.session.flush()
    return len(later)


def insert_stage_after(paper_id: int, after_stage_name: str, new_stage: StageDefinition, *,
                       actor_id: int | None = None, rewind_progress: bool = True,
                       now: datetime | None = None) -> WorkflowStage:
    """Insert ``new_stage`` directly after ``after_stage_name`` in one paper.

    Raises:
        CheckpointNotFoundError: the checkpoint is missing or not completed.
        AlreadyInsertedError: the paper already has a stage with that name.
        IllegalTransitionError: paper is terminal, or the insert would rewind
            progress while ``rewind_progress`` is False.
    """
    now = as_utc(now) or utcnow()
    new_stage.validate()
    try:
        paper = lock_paper(paper_id)
        current = get_current_stage(paper)
        checkpoint = _check_insertable(paper, after_stage_name, new_stage)

        slot = checkpoint.stage_order + 1
        redirect = current is not None and current.stage_order > checkpoint.stage_order
        rewinds = current is not None and current.stage_order > slot
        if rewinds and not rewind_progress:
            raise IllegalTransitionError(
                f"{paper.tracking_number} is already at '{current.stage_name}'; "
                f"inserting after '{after_stage_name}' would rewind progress",
                details={"current_stage": current.stage_name, "after_stage_name": after_stage_name},
            )

        shifted = _shift_after(paper.id, checkpoint.stage_order)

        inserted = WorkflowStage(
            concept_paper_id=paper.id,
            stage_name=new_stage.stage_name,
            stage_order=slot,
            assigned_role=new_stage.assigned_role,
            assigned_user_id=None,
            deadline_option=new_stage.deadline_option,
            status=StageStatus.PENDING.value,
            deadline=deadline_policy.resolve(new_stage.deadline_option, now),
        )
        db.session.add(inserted)
        db.session.flush()

        events = []
        previous_current = None
        if redirect:
            previous_current = current.stage_name
            current.status = StageStatus.PENDING.value
            current.started_at = None
            db.session.flush()

            inserted.status = StageStatus.IN_PROGRESS.value
            inserted.started_at = now
            reproject_deadlines(inserted)
            paper.current_stage_id = inserted.id
            if paper.state == PaperStatus.RETURNED:
                paper.status = PaperStatus.IN_PROGRESS.value
            events.append(stage_assigned(paper, inserted))

        write_audit(
            paper_id=paper.id, action="stage_inserted", actor_id=actor_id,
            stage_name=inserted.stage_name,
            metadata={
                "after_stage": after_stage_name,
                "stage_order": slot,
                "shifted_stages": shifted,
                "became_current": redirect,
                "previous_current_stage": previous_current,
                "rewound": bool(redirect and rewinds),
            },
            at=now,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Inserted '%s' after '%s' (shifted %d, current=%s)",
        inserted.stage_name, after_stage_name, shifted, redirect,
        extra={"paper_id": paper.id, "tracking_number": paper.tracking_number,
               "stage_id": inserted.id, "action": "stage_inserted"},
    )
    NotificationService.dispatch(events)
    return inserted


# ── Bulk migration ───────────────────────────────────────────────────────────

def find_backfill_candidates(after_stage_name: str, new_stage_name: str) -> list[ConceptPaper]:
    """Live papers whose checkpoint is completed and which lack the new stage."""
    has_new = (
        select(WorkflowStage.id)
        .where(WorkflowStage.concept_paper_id == ConceptPaper.id,
               WorkflowStage.stage_name == new_stage_name)
        .exists()
    )
    checkpoint_done = (
        select(WorkflowStage.id)
        .where(WorkflowStage.concept_paper_id == ConceptPaper.id,
               WorkflowStage.stage_name == after_stage_name,
               WorkflowStage.status == StageStatus.COMPLETED.value)
        .exists()
    )
    stmt = (
        select(ConceptPaper)
        .where(
            ConceptPaper.deleted_at.is_(None),
            ConceptPaper.status.notin_([PaperStatus.COMPLETED.value, PaperStatus.REJECTED.value]),
            checkpoint_done,
            ~has_new,
        )
        .order_by(ConceptPaper.id)
    )
    return list(db.session.execute(stmt).scalars())


def backfill_stage(after_stage_name: str, new_stage: StageDefinition, *, dry_run: bool = False,
                   rewind_progress: bool = True, actor_id: int | None = None,
                   now: datetime | None = None) -> BackfillResult:
    """Insert ``new_stage`` into every eligible paper, one transaction per paper."""
    new_stage.validate()
    deadline_policy.get_option(new_stage.deadline_option)
    result = BackfillResult(dry_run=dry_run)

    candidates = [(p.id, p.tracking_number) for p in
                  find_backfill_candidates(after_stage_name, new_stage.stage_name)]
    logger.info("Backfill '%s': %d candidate paper(s)%s", new_stage.stage_name,
                len(candidates), " [dry run]" if dry_run else "")

    for paper_id, tracking_number in candidates:
        if dry_run:
            result.inserted.append(tracking_number)
            continue
        try:
            insert_stage_after(
                paper_id, after_stage_name, new_stage,
                actor_id=actor_id, rewind_progress=rewind_progress, now=now,
            )
            result.inserted.append(tracking_number)
        except AlreadyInsertedError:
            result.skipped.append(tracking_number)
        except WorkflowError as exc:
            logger.warning("Backfill skipped %s: %s", tracking_number, exc,
                           extra={"paper_id": paper_id, "tracking_number": tracking_number})
            result.failed[tracking_number] = str(exc)

    return result


def verify_stage_integrity() -> list[dict]:
    """Scan every paper for ordering and pointer violations. Read-only."""
    issues = []

    rows = db.session.execute(
        select(
            WorkflowStage.concept_paper_id,
            func.count(WorkflowStage.id),
            func.min(WorkflowStage.stage_order),
            func.max(WorkflowStage.stage_order),
            func.count(func.distinct(WorkflowStage.stage_order)),
        ).group_by(WorkflowStage.concept_paper_id)
    ).all()
    for paper_id, count, lo, hi, distinct in rows:
        if distinct != count:
            issues.append({"paper_id": paper_id, "issue": "duplicate_stage_order"})
        elif lo != 1 or hi != count:
            issues.append({"paper_id": paper_id, "issue": "gapped_stage_order",
                           "min": lo, "max": hi, "count": count})

    multi_active = db.session.execute(
        select(WorkflowStage.concept_paper_id, func.count(WorkflowStage.id))
        .where(WorkflowStage.status == StageStatus.IN_PROGRESS.value)
        .group_by(WorkflowStage.concept_paper_id)
        .having(func.count(WorkflowStage.id) > 1)
    ).all()
    for paper_id, count in multi_active:
        issues.append({"paper_id": paper_id, "issue": "multiple_in_progress", "count": count})

    completed_with_pointer = db.session.execute(
        select(ConceptPaper.id).where(
            ConceptPaper.status == PaperStatus.COMPLETED.value,
            ConceptPaper.current_stage_id.isnot(None),
        )
    ).scalars().all()
    for paper_id in completed_with_pointer:
        issues.append({"paper_id": paper_id, "issue": "completed_with_current_stage"})

    if issues:
        logger.warning("Stage integrity check found %d issue(s)", len(issues))
    return issues
