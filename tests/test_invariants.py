"""
Randomised transition sequences.

Each seed drives a paper through a random mix of complete / return / reject /
reassign / insert calls and checks the structural invariants after every
step, whether the call succeeded or was refused.
"""

import random

import pytest

from app.core.exceptions import ValidationError, WorkflowError
from app.models.audit import get_paper_history
from app.services import workflow_service as wf
from app.services.stage_insertion import insert_stage_after
from app.services.stage_templates import StageDefinition

CHAIN = [("A", "sps", "1_day"), ("B", "vp_acad", "2_days"),
         ("C", "auditor", "3_hours"), ("D", "accounting", "1_day")]
ACTIONS = ("complete", "complete", "complete", "return", "reject", "reassign", "insert")


def _snapshot(paper):
    return (
        paper.status,
        paper.current_stage_id,
        tuple((s.id, s.stage_order, s.status) for s in wf.get_stages(paper.id)),
    )


def _check(paper):
    stages = wf.get_stages(paper.id)
    assert [s.stage_order for s in stages] == list(range(1, len(stages) + 1))
    assert len({s.stage_name for s in stages}) == len(stages)

    active = [s for s in stages if s.status == "in_progress"]
    assert len(active) <= 1

    if paper.status == "completed":
        assert paper.current_stage_id is None
        assert paper.completed_at is not None
        assert all(s.status == "completed" for s in stages)
    elif paper.status == "rejected":
        assert active == []
        rejected = [s for s in stages if s.status == "rejected"]
        assert [s.id for s in rejected] == [paper.current_stage_id]
    else:
        assert len(active) == 1
        assert paper.current_stage_id == active[0].id
        assert wf.get_current_stage(paper).id == active[0].id


@pytest.mark.parametrize("seed", range(8))
def test_random_sequences_keep_invariants(seed, stage_template, make_paper, make_user, users):
    stage_template(CHAIN)
    rng = random.Random(seed)
    paper = make_paper()
    audit_count = len(get_paper_history(paper.id))
    inserted = 0

    for _step in range(30):
        if paper.status in ("completed", "rejected"):
            break
        current = wf.get_current_stage(paper)
        action = rng.choice(ACTIONS)
        before = _snapshot(paper)
        try:
            if action == "complete":
                wf.advance_to_next_stage(current.id, actor_id=None, remarks="ok")
            elif action == "return":
                wf.return_to_previous_stage(current.id, actor_id=None, remarks="please revise")
            elif action == "reject":
                if rng.random() < 0.3:
                    wf.reject_stage(current.id, actor_id=None, rejection_reason="declined")
                else:
                    continue
            elif action == "reassign":
                holder = make_user(current.assigned_role)
                wf.reassign_stage(current.id, new_user_id=holder.id, actor_id=users["admin"].id)
            else:
                done = [s for s in wf.get_stages(paper.id) if s.status == "completed"]
                if not done:
                    continue
                inserted += 1
                insert_stage_after(
                    paper.id, rng.choice(done).stage_name,
                    StageDefinition(f"Extra {inserted}", "senior_vp", "3_hours"),
                )
        except (WorkflowError, ValidationError):
            assert _snapshot(paper) == before
            _check(paper)
            continue

        _check(paper)
        history = len(get_paper_history(paper.id))
        assert history > audit_count
        audit_count = history
