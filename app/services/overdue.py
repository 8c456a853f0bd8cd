"""
Overdue evaluation.

Pure reads with an injectable ``now``; nothing here mutates state. Only
completed work is exempt from the overdue check; a rejected stage that ran
past its deadline still reads as overdue. The sweep query only looks at live
papers.
"""

from datetime import datetime, timedelta

from sqlalchemy import select

from app.models import db
from app.models.workflow import ConceptPaper, PaperStatus, StageStatus, WorkflowStage
from app.utils.helpers import as_utc, utcnow

_OPEN_STATUSES = (StageStatus.PENDING.value, StageStatus.IN_PROGRESS.value)
_TERMINAL_PAPER_STATUSES = (PaperStatus.COMPLETED.value, PaperStatus.REJECTED.value)


def is_stage_overdue(stage: WorkflowStage, now: datetime | None = None) -> bool:
    now = as_utc(now) or utcnow()
    if stage.state == StageStatus.COMPLETED or stage.deadline is None:
        return False
    return as_utc(stage.deadline) < now


def is_paper_overdue(paper: ConceptPaper, now: datetime | None = None) -> bool:
    """Overdue unless completed, when its current or any open stage is past deadline."""
    now = as_utc(now) or utcnow()
    if paper.state == PaperStatus.COMPLETED:
        return False
    current = paper.current_stage
    if current is not None and is_stage_overdue(current, now):
        return True
    return any(
        s.state.is_open and as_utc(s.deadline) < now
        for s in paper.stages
    )


def time_remaining(stage: WorkflowStage, now: datetime | None = None) -> timedelta | None:
    """Time left before the deadline (negative when overdue); None for finished stages."""
    now = as_utc(now) or utcnow()
    if stage.state.is_terminal or stage.deadline is None:
        return None
    return as_utc(stage.deadline) - now


def find_overdue_stages(now: datetime | None = None, *, current_only: bool = True,
                        limit: int | None = None) -> list[WorkflowStage]:
    """Open stages past their deadline on live papers, oldest deadline first.

    ``current_only`` restricts the result to each paper's current stage,
    which is what the sweep notifies about.
    """
    now = as_utc(now) or utcnow()
    stmt = (
        select(WorkflowStage)
        .join(ConceptPaper, ConceptPaper.id == WorkflowStage.concept_paper_id)
        .where(
            ConceptPaper.deleted_at.is_(None),
            ConceptPaper.status.notin_(_TERMINAL_PAPER_STATUSES),
            WorkflowStage.status.in_(_OPEN_STATUSES),
            WorkflowStage.deadline < now,
        )
        .order_by(WorkflowStage.deadline, WorkflowStage.id)
    )
    if current_only:
        stmt = stmt.where(ConceptPaper.current_stage_id == WorkflowStage.id)
    if limit:
        stmt = stmt.limit(limit)
    return list(db.session.execute(stmt).scalars())
