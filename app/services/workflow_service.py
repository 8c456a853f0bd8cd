"""
Concept Paper Workflow: State Machine Service

Owns every write to ``WorkflowStage.status`` and to the paper's
``current_stage_id`` / ``status`` pointers. Each public transition:

  1. locks the paper row (SELECT … FOR UPDATE)
  2. checks the stored state is consistent (``get_current_stage``)
  3. validates the transition
  4. mutates stage + paper, appends audit rows
  5. commits, then hands events to the notification collaborator

Any exception rolls the session back; nothing is partially written.

Transitions:
    initialize     : (no stages)      → stage 1 in_progress, paper in_progress
    advance        : current stage    → completed, next in_progress (or paper completed)
    return         : current stage    → returned, previous in_progress, paper returned
    reject         : current stage    → rejected, paper rejected (terminal)
    reassign       : current stage    → assigned_user_id changed

Usage:
    from app.services.workflow_service import advance_to_next_stage

    paper = advance_to_next_stage(stage_id, actor_id=user.id, remarks="OK")
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy import select

from app.core.exceptions import (
    AlreadyInitializedError,
    CorruptedStateError,
    EmptyTemplateError,
    IllegalTransitionError,
    NoPreviousStageError,
    NotFoundError,
    ValidationError,
)
from app.models import db
from app.models.audit import write_audit
from app.models.auth import User
from app.models.workflow import ConceptPaper, PaperStatus, StageStatus, WorkflowStage
from app.services import deadline_policy
from app.services.notification import NotificationService
from app.services.stage_templates import build_stage_plan
from app.services.workflow_events import (
    PaperCompleted,
    PaperReturned,
    StageReassigned,
    stage_assigned,
)
from app.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)

# Stage statuses an action may start from
_ACTIONABLE = (StageStatus.PENDING, StageStatus.IN_PROGRESS)


# ── Helpers ──────────────────────────────────────────────────────────────────

def _log_extra(paper, stage=None, action=None) -> dict:
    extra = {"paper_id": paper.id, "tracking_number": paper.tracking_number}
    if stage is not None:
        extra["stage_id"] = stage.id
    if action:
        extra["action"] = action
    return extra


def lock_paper(paper_id: int) -> ConceptPaper:
    """Load a paper with a row lock held until commit/rollback."""
    paper = db.session.execute(
        select(ConceptPaper).where(ConceptPaper.id == paper_id).with_for_update()
    ).scalar_one_or_none()
    if paper is None or paper.is_deleted:
        raise NotFoundError("ConceptPaper", paper_id)
    return paper


def _lock_stage(stage_id: int) -> tuple[ConceptPaper, WorkflowStage]:
    stage = db.session.get(WorkflowStage, stage_id)
    if stage is None:
        raise NotFoundError("WorkflowStage", stage_id)
    paper = lock_paper(stage.concept_paper_id)
    # Re-read the stage after the paper lock so concurrent writers are visible
    db.session.refresh(stage)
    return paper, stage


def _stage_at(paper: ConceptPaper, order: int) -> WorkflowStage | None:
    return db.session.execute(
        select(WorkflowStage).where(
            WorkflowStage.concept_paper_id == paper.id,
            WorkflowStage.stage_order == order,
        )
    ).scalar_one_or_none()


def _activate(stage: WorkflowStage, now: datetime) -> None:
    """Make ``stage`` the active stage with a fresh deadline from its own option."""
    stage.status = StageStatus.IN_PROGRESS.value
    stage.started_at = now
    stage.completed_at = None
    stage.remarks = None
    stage.deadline = deadline_policy.resolve(stage.deadline_option, now)
    reproject_deadlines(stage)


def reproject_deadlines(stage: WorkflowStage) -> None:
    """Chain the projected deadlines of the stages waiting after ``stage``.

    Each later pending or returned stage gets the previous deadline plus its
    own duration, so a projection never falls before the active deadline.
    """
    later = db.session.execute(
        select(WorkflowStage)
        .where(
            WorkflowStage.concept_paper_id == stage.concept_paper_id,
            WorkflowStage.stage_order > stage.stage_order,
            WorkflowStage.status.in_([StageStatus.PENDING.value, StageStatus.RETURNED.value]),
        )
        .order_by(WorkflowStage.stage_order)
    ).scalars().all()
    cursor = as_utc(stage.deadline)
    for waiting in later:
        cursor = cursor + deadline_policy.duration_for(waiting.deadline_option)
        waiting.deadline = cursor


def _set_current(paper: ConceptPaper, stage: WorkflowStage | None) -> None:
    paper.current_stage_id = stage.id if stage is not None else None


def _require_text(value, field: str) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationError(f"{field} is required", details={field: "required"})
    return text


def _ensure_actionable(paper: ConceptPaper, stage: WorkflowStage, action: str) -> None:
    if paper.is_terminal:
        raise IllegalTransitionError(
            f"Cannot {action}: paper {paper.tracking_number} is {paper.status}",
            details={"paper_status": paper.status},
        )
    current = get_current_stage(paper)
    if current is None or current.id != stage.id:
        raise IllegalTransitionError(
            f"Cannot {action}: '{stage.stage_name}' is not the current stage",
            details={"stage_id": stage.id, "current_stage_id": paper.current_stage_id},
        )
    if stage.state not in _ACTIONABLE:
        raise IllegalTransitionError(
            f"Cannot {action}: stage '{stage.stage_name}' is {stage.status}",
            details={"stage_status": stage.status},
        )


def _finish(paper: ConceptPaper, events: list) -> ConceptPaper:
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    NotificationService.dispatch(events)
    return paper


# ── Consistency ──────────────────────────────────────────────────────────────

def get_current_stage(paper: ConceptPaper) -> WorkflowStage | None:
    """The paper's current stage, after checking the pointer against the rows.

    Raises:
        CorruptedStateError: more than one stage is in_progress, or the
            pointer disagrees with the single in_progress stage.
    """
    active = db.session.execute(
        select(WorkflowStage).where(
            WorkflowStage.concept_paper_id == paper.id,
            WorkflowStage.status == StageStatus.IN_PROGRESS.value,
        )
    ).scalars().all()

    if len(active) > 1:
        logger.critical(
            "Paper %s has %d in_progress stages", paper.tracking_number, len(active),
            extra=_log_extra(paper),
        )
        raise CorruptedStateError(
            f"Paper {paper.tracking_number} has {len(active)} in_progress stages",
            details={"stage_ids": [s.id for s in active]},
        )
    if active and paper.current_stage_id != active[0].id:
        logger.critical(
            "Paper %s points at stage %s but stage %s is in_progress",
            paper.tracking_number, paper.current_stage_id, active[0].id,
            extra=_log_extra(paper),
        )
        raise CorruptedStateError(
            f"Paper {paper.tracking_number} current stage pointer is inconsistent",
            details={"current_stage_id": paper.current_stage_id, "in_progress_stage_id": active[0].id},
        )

    if paper.current_stage_id is None:
        return None
    current = db.session.get(WorkflowStage, paper.current_stage_id)
    if current is None or current.concept_paper_id != paper.id:
        logger.critical("Paper %s points at a foreign or missing stage", paper.tracking_number,
                        extra=_log_extra(paper))
        raise CorruptedStateError(
            f"Paper {paper.tracking_number} points at a stage it does not own",
            details={"current_stage_id": paper.current_stage_id},
        )
    return current


def get_available_actions(stage: WorkflowStage) -> list[str]:
    """Actions the UI may offer on ``stage`` (authorization is checked separately)."""
    paper = stage.paper
    if paper.is_terminal or paper.current_stage_id != stage.id or stage.state not in _ACTIONABLE:
        return []
    actions = ["complete", "reject", "reassign"]
    if stage.stage_order > 1:
        actions.insert(1, "return")
    return actions


# ═════════════════════════════════════════════════════════════════════════════
# Transitions
# ═════════════════════════════════════════════════════════════════════════════

def initialize_workflow(paper_id: int, *, actor_id: int | None = None,
                        now: datetime | None = None) -> ConceptPaper:
    """Create the paper's stages from the template and start stage 1."""
    now = as_utc(now) or utcnow()
    try:
        paper = lock_paper(paper_id)
        has_stages = db.session.execute(
            select(WorkflowStage.id).where(WorkflowStage.concept_paper_id == paper.id).limit(1)
        ).first()
        if has_stages or paper.state != PaperStatus.PENDING:
            raise AlreadyInitializedError(
                f"Workflow for {paper.tracking_number} is already initialized",
                details={"paper_id": paper.id, "status": paper.status},
            )

        plan = build_stage_plan(paper)
        if not plan.stages:
            raise EmptyTemplateError(f"No stages apply to {paper.tracking_number}")

        stages = []
        cursor = now
        for order, definition in enumerate(plan.stages, start=1):
            duration = deadline_policy.duration_for(definition.deadline_option)
            stage = WorkflowStage(
                concept_paper_id=paper.id,
                stage_name=definition.stage_name,
                stage_order=order,
                assigned_role=definition.assigned_role,
                deadline_option=definition.deadline_option,
                status=StageStatus.PENDING.value,
                # Projected; recomputed when the stage is activated
                deadline=cursor + duration,
            )
            cursor = cursor + duration
            stages.append(stage)
        paper.stages.extend(stages)

        first = stages[0]
        _activate(first, now)
        db.session.flush()

        _set_current(paper, first)
        paper.status = PaperStatus.IN_PROGRESS.value

        write_audit(
            paper_id=paper.id, action="submitted", actor_id=actor_id,
            stage_name=first.stage_name,
            metadata={"stage_count": len(stages), "stages": [s.stage_name for s in stages]},
            at=now,
        )
        for skipped in plan.skipped:
            write_audit(
                paper_id=paper.id, action="stage_skipped", actor_id=actor_id,
                stage_name=skipped.stage_name,
                metadata={"reason": "students_not_involved"},
                at=now,
            )
        events = [stage_assigned(paper, first)]
    except Exception:
        db.session.rollback()
        raise

    logger.info("Workflow initialized with %d stages", len(stages),
                extra=_log_extra(paper, first, "submitted"))
    return _finish(paper, events)


def advance_to_next_stage(stage_id: int, *, actor_id: int | None, remarks: str | None = None,
                          signature: str | None = None, now: datetime | None = None) -> ConceptPaper:
    """Complete the current stage and activate the next one (or finish the paper)."""
    now = as_utc(now) or utcnow()
    try:
        paper, stage = _lock_stage(stage_id)
        _ensure_actionable(paper, stage, "complete")

        stage.status = StageStatus.COMPLETED.value
        stage.completed_at = now
        if remarks is not None:
            stage.remarks = remarks.strip() or None
        if signature:
            stage.signature = signature

        nxt = _stage_at(paper, stage.stage_order + 1)
        if nxt is not None:
            _activate(nxt, now)
            _set_current(paper, nxt)
            paper.status = PaperStatus.IN_PROGRESS.value
            events = [stage_assigned(paper, nxt)]
        else:
            _set_current(paper, None)
            paper.status = PaperStatus.COMPLETED.value
            paper.completed_at = now
            events = [PaperCompleted(
                paper_id=paper.id, tracking_number=paper.tracking_number,
                requisitioner_id=paper.requisitioner_id, completed_at=now,
            )]

        write_audit(
            paper_id=paper.id, action="completed", actor_id=actor_id,
            stage_name=stage.stage_name, remarks=stage.remarks,
            metadata={
                "stage_order": stage.stage_order,
                "next_stage": nxt.stage_name if nxt is not None else None,
                "paper_completed": nxt is None,
                "signed": bool(signature),
            },
            at=now,
        )
    except Exception:
        db.session.rollback()
        raise

    logger.info("Stage '%s' completed", stage.stage_name, extra=_log_extra(paper, stage, "completed"))
    return _finish(paper, events)


def return_to_previous_stage(stage_id: int, *, actor_id: int | None, remarks: str,
                             now: datetime | None = None) -> ConceptPaper:
    """Send the paper back one stage. Remarks are mandatory."""
    now = as_utc(now) or utcnow()
    try:
        remarks = _require_text(remarks, "remarks")
        paper, stage = _lock_stage(stage_id)
        if stage.stage_order == 1:
            raise NoPreviousStageError(
                f"'{stage.stage_name}' is the first stage and cannot be returned",
                details={"stage_id": stage.id},
            )
        _ensure_actionable(paper, stage, "return")
        previous = _stage_at(paper, stage.stage_order - 1)
        if previous is None:
            raise CorruptedStateError(
                f"Paper {paper.tracking_number} has no stage at order {stage.stage_order - 1}",
            )

        stage.status = StageStatus.RETURNED.value
        stage.remarks = remarks
        stage.completed_at = None

        _activate(previous, now)
        _set_current(paper, previous)
        paper.status = PaperStatus.RETURNED.value

        write_audit(
            paper_id=paper.id, action="returned", actor_id=actor_id,
            stage_name=stage.stage_name, remarks=remarks,
            metadata={"from_stage": stage.stage_name, "to_stage": previous.stage_name},
            at=now,
        )
        events = [PaperReturned(
            paper_id=paper.id, tracking_number=paper.tracking_number,
            from_stage_name=stage.stage_name, to_stage_id=previous.id,
            to_stage_name=previous.stage_name, assigned_role=previous.assigned_role,
            assigned_user_id=previous.assigned_user_id, remarks=remarks,
        )]
    except Exception:
        db.session.rollback()
        raise

    logger.info("Stage '%s' returned to '%s'", stage.stage_name, previous.stage_name,
                extra=_log_extra(paper, stage, "returned"))
    return _finish(paper, events)


def reject_stage(stage_id: int, *, actor_id: int | None, rejection_reason: str,
                 now: datetime | None = None) -> ConceptPaper:
    """Reject the paper at its current stage. Terminal."""
    now = as_utc(now) or utcnow()
    try:
        reason = _require_text(rejection_reason, "rejection_reason")
        paper, stage = _lock_stage(stage_id)
        _ensure_actionable(paper, stage, "reject")

        stage.status = StageStatus.REJECTED.value
        stage.is_rejected = True
        stage.rejection_reason = reason
        stage.rejected_at = now
        paper.status = PaperStatus.REJECTED.value

        write_audit(
            paper_id=paper.id, action="rejected", actor_id=actor_id,
            stage_name=stage.stage_name, remarks=reason,
            metadata={"stage_order": stage.stage_order},
            at=now,
        )
    except Exception:
        db.session.rollback()
        raise

    logger.info("Paper rejected at '%s'", stage.stage_name, extra=_log_extra(paper, stage, "rejected"))
    return _finish(paper, [])


def reassign_stage(stage_id: int, *, new_user_id: int, actor_id: int | None,
                   now: datetime | None = None) -> WorkflowStage:
    """Assign the current stage to a specific user holding its role."""
    now = as_utc(now) or utcnow()
    try:
        paper, stage = _lock_stage(stage_id)
        _ensure_actionable(paper, stage, "reassign")

        user = db.session.get(User, new_user_id)
        if user is None:
            raise NotFoundError("User", new_user_id)
        if not user.is_active:
            raise ValidationError(f"User {user.id} is inactive", details={"new_user_id": "inactive"})
        if not user.has_role(stage.assigned_role):
            raise ValidationError(
                f"User {user.id} does not hold role '{stage.assigned_role}'",
                details={"new_user_id": f"must hold role {stage.assigned_role}"},
            )

        old_user_id = stage.assigned_user_id
        stage.assigned_user_id = user.id
        write_audit(
            paper_id=paper.id, action="reassigned", actor_id=actor_id,
            stage_name=stage.stage_name,
            metadata={"old_user_id": old_user_id, "new_user_id": user.id},
            at=now,
        )
        events = [StageReassigned(
            paper_id=paper.id, tracking_number=paper.tracking_number,
            stage_id=stage.id, stage_name=stage.stage_name,
            old_user_id=old_user_id, new_user_id=user.id,
        )]
    except Exception:
        db.session.rollback()
        raise

    logger.info("Stage '%s' reassigned %s → %s", stage.stage_name, old_user_id, user.id,
                extra=_log_extra(paper, stage, "reassigned"))
    _finish(paper, events)
    return stage


# ── Read helpers ─────────────────────────────────────────────────────────────

def get_stages(paper_id: int) -> list[WorkflowStage]:
    stmt = (
        select(WorkflowStage)
        .where(WorkflowStage.concept_paper_id == paper_id)
        .order_by(WorkflowStage.stage_order)
    )
    return list(db.session.execute(stmt).scalars())


def projected_completion(paper: ConceptPaper, now: datetime | None = None) -> datetime | None:
    """Estimated completion: current deadline plus the durations of the stages after it."""
    if paper.is_terminal or paper.current_stage_id is None:
        return None
    now = as_utc(now) or utcnow()
    current = db.session.get(WorkflowStage, paper.current_stage_id)
    eta = max(as_utc(current.deadline), now)
    remaining = timedelta()
    for stage in get_stages(paper.id):
        if stage.stage_order > current.stage_order:
            remaining += deadline_policy.duration_for(stage.deadline_option)
    return eta + remaining
