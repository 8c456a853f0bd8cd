"""Overdue evaluation with an injected clock."""

from datetime import timedelta

import pytest

from app.services import workflow_service as wf
from app.services.overdue import find_overdue_stages, is_paper_overdue, is_stage_overdue, time_remaining


@pytest.fixture()
def paper(stage_template, make_paper):
    stage_template([("A", "sps", "3_hours"), ("B", "vp_acad", "1_day")])
    return make_paper()


def test_not_overdue_before_deadline(paper, now):
    stage = wf.get_current_stage(paper)
    assert not is_stage_overdue(stage, now + timedelta(hours=2, minutes=59))
    assert time_remaining(stage, now + timedelta(hours=1)) == timedelta(hours=2)


def test_overdue_after_deadline(paper, now):
    stage = wf.get_current_stage(paper)
    later = now + timedelta(hours=3, seconds=1)
    assert is_stage_overdue(stage, later)
    assert is_paper_overdue(paper, later)
    assert time_remaining(stage, later) == timedelta(seconds=-1)


def test_exact_deadline_is_not_overdue(paper, now):
    assert not is_stage_overdue(wf.get_current_stage(paper), now + timedelta(hours=3))


def test_completed_stage_never_overdue(paper, users, now):
    stage_id = paper.current_stage_id
    wf.advance_to_next_stage(stage_id, actor_id=users["sps"].id, now=now + timedelta(days=5))
    done = [s for s in wf.get_stages(paper.id) if s.id == stage_id][0]
    assert not is_stage_overdue(done, now + timedelta(days=30))
    assert time_remaining(done, now) is None


def test_rejected_stage_past_deadline_is_overdue(paper, users, now):
    stage_id = paper.current_stage_id
    wf.reject_stage(stage_id, actor_id=users["sps"].id, rejection_reason="no funds", now=now)
    rejected = [s for s in wf.get_stages(paper.id) if s.id == stage_id][0]

    assert not is_stage_overdue(rejected, now + timedelta(hours=1))
    assert not is_paper_overdue(paper, now + timedelta(hours=1))
    assert is_stage_overdue(rejected, now + timedelta(days=2))
    assert is_paper_overdue(paper, now + timedelta(days=2))
    assert time_remaining(rejected, now) is None


def test_sweep_skips_rejected_papers(paper, users, now):
    wf.reject_stage(paper.current_stage_id, actor_id=users["sps"].id, rejection_reason="no funds")
    assert find_overdue_stages(now + timedelta(days=30)) == []


def test_completed_paper_never_overdue(stage_template, make_paper, users, now):
    stage_template([("A", "sps", "3_hours")])
    single = make_paper()
    wf.advance_to_next_stage(single.current_stage_id, actor_id=users["sps"].id, now=now + timedelta(days=1))
    assert single.status == "completed"
    assert not is_paper_overdue(single, now + timedelta(days=30))


def test_find_overdue_current_only(paper, make_paper, now):
    fresh = make_paper(now=now + timedelta(days=2))
    overdue = find_overdue_stages(now + timedelta(days=2, hours=1))
    assert [s.concept_paper_id for s in overdue] == [paper.id]
    assert fresh.id not in {s.concept_paper_id for s in overdue}


def test_find_overdue_all_open_stages(paper, now):
    # B's projected deadline passes too
    stages = find_overdue_stages(now + timedelta(days=2), current_only=False)
    assert [s.stage_name for s in stages] == ["A", "B"]


def test_deleted_papers_excluded(paper, users, now):
    from app.services.concept_paper_service import soft_delete_paper

    soft_delete_paper(paper.id, actor_id=users["admin"].id)
    assert find_overdue_stages(now + timedelta(days=2)) == []
