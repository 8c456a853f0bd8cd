"""
Workflow events handed to the notification collaborator after commit.

Events carry ids and display strings only, never ORM instances, so they stay
valid after the session that produced them is closed.
"""

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class StageAssigned:
    paper_id: int
    tracking_number: str
    stage_id: int
    stage_name: str
    assigned_role: str
    assigned_user_id: int | None
    deadline: datetime


@dataclass(frozen=True)
class StageOverdue:
    paper_id: int
    tracking_number: str
    stage_id: int
    stage_name: str
    assigned_role: str
    assigned_user_id: int | None
    deadline: datetime


@dataclass(frozen=True)
class PaperCompleted:
    paper_id: int
    tracking_number: str
    requisitioner_id: int | None
    completed_at: datetime


@dataclass(frozen=True)
class PaperReturned:
    paper_id: int
    tracking_number: str
    from_stage_name: str
    to_stage_id: int
    to_stage_name: str
    assigned_role: str
    assigned_user_id: int | None
    remarks: str


@dataclass(frozen=True)
class StageReassigned:
    paper_id: int
    tracking_number: str
    stage_id: int
    stage_name: str
    old_user_id: int | None
    new_user_id: int


def stage_assigned(paper, stage) -> StageAssigned:
    return StageAssigned(
        paper_id=paper.id,
        tracking_number=paper.tracking_number,
        stage_id=stage.id,
        stage_name=stage.stage_name,
        assigned_role=stage.assigned_role,
        assigned_user_id=stage.assigned_user_id,
        deadline=stage.deadline,
    )


def stage_overdue(paper, stage) -> StageOverdue:
    return StageOverdue(
        paper_id=paper.id,
        tracking_number=paper.tracking_number,
        stage_id=stage.id,
        stage_name=stage.stage_name,
        assigned_role=stage.assigned_role,
        assigned_user_id=stage.assigned_user_id,
        deadline=stage.deadline,
    )
