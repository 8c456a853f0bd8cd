"""
Workflow state machine unit tests.

Tests cover:
  - Initialization from the stage template (skips, deadlines, audit, notification)
  - advance / return / reject / reassign transitions
  - Rejected transitions leave no partial writes
  - Corrupted state detection
"""

from datetime import timedelta

import pytest

from app.core.exceptions import (
    AlreadyInitializedError,
    CorruptedStateError,
    EmptyTemplateError,
    IllegalTransitionError,
    NoPreviousStageError,
    NotFoundError,
    UnknownOptionError,
    ValidationError,
)
from app.models import db
from app.models.audit import get_paper_history
from app.models.notification import Notification
from app.models.workflow import WorkflowStage
from app.services import workflow_service as wf
from app.services.notification import NotificationService
from app.services.overdue import is_paper_overdue, is_stage_overdue
from app.utils.helpers import as_utc

THREE_STAGES = [("A", "sps", "1_day"), ("B", "vp_acad", "2_days"), ("C", "auditor", "3_hours")]


@pytest.fixture()
def abc(stage_template):
    stage_template(THREE_STAGES)


def _stages(paper):
    return {s.stage_name: s for s in wf.get_stages(paper.id)}


def _actions(paper, action=None):
    rows = get_paper_history(paper.id)
    return [r for r in rows if action is None or r.action == action]


# ═════════════════════════════════════════════════════════════════════════
# INITIALIZATION
# ═════════════════════════════════════════════════════════════════════════

class TestInitialize:
    def test_first_stage_active(self, abc, make_paper, now):
        paper = make_paper()
        stages = _stages(paper)

        assert [s.stage_order for s in wf.get_stages(paper.id)] == [1, 2, 3]
        assert stages["A"].status == "in_progress"
        assert as_utc(stages["A"].started_at) == now
        assert as_utc(stages["A"].deadline) == now + timedelta(days=1)
        assert stages["B"].status == "pending"
        assert stages["C"].status == "pending"
        assert paper.status == "in_progress"
        assert paper.current_stage_id == stages["A"].id

    def test_pending_stages_get_projected_deadlines(self, abc, make_paper, now):
        stages = _stages(make_paper())
        assert as_utc(stages["B"].deadline) == now + timedelta(days=3)
        assert as_utc(stages["C"].deadline) == now + timedelta(days=3, hours=3)

    def test_submitted_audit_row(self, abc, make_paper, users):
        paper = make_paper()
        rows = _actions(paper)
        assert [r.action for r in rows] == ["submitted"]
        assert rows[0].user_id == users["requisitioner"].id
        assert rows[0].details["stages"] == ["A", "B", "C"]

    def test_skipped_sps_review_is_audited(self, make_paper):
        paper = make_paper(students_involved=False)
        stages = wf.get_stages(paper.id)
        assert stages[0].stage_name == "VP Acad Review"
        assert stages[0].stage_order == 1
        skipped = _actions(paper, "stage_skipped")
        assert [r.stage_name for r in skipped] == ["SPS Review"]

    def test_assignment_notification(self, abc, make_paper):
        paper = make_paper()
        notif = Notification.query.filter_by(concept_paper_id=paper.id, category="assignment").one()
        assert notif.recipient_role == "sps"
        assert notif.entity_id == paper.current_stage_id

    def test_already_initialized(self, abc, make_paper):
        paper = make_paper()
        with pytest.raises(AlreadyInitializedError):
            wf.initialize_workflow(paper.id)
        assert len(wf.get_stages(paper.id)) == 3

    def test_empty_template(self, stage_template, make_paper):
        stage_template([])
        with pytest.raises(EmptyTemplateError):
            make_paper()

    def test_unknown_option_rolls_back(self, stage_template, users):
        from app.services.concept_paper_service import create_paper

        stage_template([("A", "sps", "1_day"), ("B", "vp_acad", "ten_days")])
        data = {"department": "CAS", "title": "T", "nature_of_request": "urgent"}
        paper = create_paper(data, users["requisitioner"], initialize=False)
        with pytest.raises(UnknownOptionError):
            wf.initialize_workflow(paper.id)
        assert wf.get_stages(paper.id) == []
        assert db.session.get(type(paper), paper.id).status == "pending"

    def test_missing_paper(self):
        with pytest.raises(NotFoundError):
            wf.initialize_workflow(999)


# ═════════════════════════════════════════════════════════════════════════
# ADVANCE
# ═════════════════════════════════════════════════════════════════════════

class TestAdvance:
    def test_three_stage_pipeline(self, abc, make_paper, users, now):
        paper = make_paper()
        t1, t2, t3 = now + timedelta(hours=1), now + timedelta(hours=5), now + timedelta(hours=6)

        wf.advance_to_next_stage(_stages(paper)["A"].id, actor_id=users["sps"].id,
                                 remarks="ok", now=t1)
        stages = _stages(paper)
        assert stages["A"].status == "completed"
        assert as_utc(stages["A"].completed_at) == t1
        assert stages["A"].remarks == "ok"
        assert stages["B"].status == "in_progress"
        assert as_utc(stages["B"].deadline) == t1 + timedelta(days=2)
        assert paper.status == "in_progress"
        assert paper.current_stage_id == stages["B"].id

        wf.advance_to_next_stage(stages["B"].id, actor_id=users["vp_acad"].id, now=t2)
        stages = _stages(paper)
        assert stages["C"].status == "in_progress"
        assert as_utc(stages["C"].deadline) == t2 + timedelta(hours=3)

        wf.advance_to_next_stage(stages["C"].id, actor_id=users["auditor"].id, now=t3)
        assert paper.status == "completed"
        assert paper.current_stage_id is None
        assert as_utc(paper.completed_at) == t3

        completed = _actions(paper, "completed")
        assert [r.stage_name for r in completed] == ["A", "B", "C"]
        assert completed[-1].details["paper_completed"] is True

    def test_late_stage_pushes_later_projections(self, abc, make_paper, users, now):
        paper = make_paper()
        late = now + timedelta(days=2)
        wf.advance_to_next_stage(paper.current_stage_id, actor_id=users["sps"].id, now=late)

        stages = _stages(paper)
        assert as_utc(stages["B"].deadline) == late + timedelta(days=2)
        assert as_utc(stages["C"].deadline) == late + timedelta(days=2, hours=3)

        check = now + timedelta(days=3, hours=4)
        assert not is_stage_overdue(stages["B"], check)
        assert not is_paper_overdue(paper, check)

    def test_completion_notifies_requisitioner(self, stage_template, make_paper, users):
        stage_template([("Only", "sps", "1_day")])
        paper = make_paper()
        wf.advance_to_next_stage(paper.current_stage_id, actor_id=users["sps"].id)
        notif = Notification.query.filter_by(concept_paper_id=paper.id, category="completion").one()
        assert notif.recipient_user_id == users["requisitioner"].id

    def test_signature_stored(self, abc, make_paper, users):
        paper = make_paper()
        sid = paper.current_stage_id
        wf.advance_to_next_stage(sid, actor_id=users["sps"].id, signature="data:image/png;base64,AAA")
        stage = db.session.get(WorkflowStage, sid)
        assert stage.signature.startswith("data:image/png")
        assert stage.to_dict()["has_signature"] is True

    def test_not_current_stage(self, abc, make_paper, users):
        paper = make_paper()
        with pytest.raises(IllegalTransitionError):
            wf.advance_to_next_stage(_stages(paper)["B"].id, actor_id=users["vp_acad"].id)

    def test_completed_stage_cannot_complete_again(self, abc, make_paper, users):
        paper = make_paper()
        a_id = paper.current_stage_id
        wf.advance_to_next_stage(a_id, actor_id=users["sps"].id)
        with pytest.raises(IllegalTransitionError):
            wf.advance_to_next_stage(a_id, actor_id=users["sps"].id)
        assert len(_actions(paper, "completed")) == 1

    def test_completed_paper_is_terminal(self, stage_template, make_paper, users):
        stage_template([("Only", "sps", "1_day")])
        paper = make_paper()
        sid = paper.current_stage_id
        wf.advance_to_next_stage(sid, actor_id=users["sps"].id)
        with pytest.raises(IllegalTransitionError):
            wf.advance_to_next_stage(sid, actor_id=users["sps"].id)

    def test_notification_failure_keeps_transition(self, abc, make_paper, users, monkeypatch):
        paper = make_paper()

        def boom(event):
            raise RuntimeError("mail relay down")

        monkeypatch.setattr(NotificationService, "notify_stage_assigned", staticmethod(boom))
        wf.advance_to_next_stage(paper.current_stage_id, actor_id=users["sps"].id)
        assert _stages(paper)["B"].status == "in_progress"
        assert paper.current_stage_id == _stages(paper)["B"].id


# ═════════════════════════════════════════════════════════════════════════
# RETURN
# ═════════════════════════════════════════════════════════════════════════

class TestReturn:
    def test_return_reactivates_previous(self, abc, make_paper, users, now):
        paper = make_paper()
        t1, t2 = now + timedelta(hours=1), now + timedelta(hours=2)
        wf.advance_to_next_stage(paper.current_stage_id, actor_id=users["sps"].id, now=t1)

        wf.return_to_previous_stage(_stages(paper)["B"].id, actor_id=users["vp_acad"].id,
                                    remarks="needs more detail", now=t2)
        stages = _stages(paper)
        assert stages["B"].status == "returned"
        assert stages["B"].remarks == "needs more detail"
        assert stages["A"].status == "in_progress"
        assert stages["A"].completed_at is None
        assert as_utc(stages["A"].deadline) == t2 + timedelta(days=1)
        assert paper.current_stage_id == stages["A"].id
        assert paper.status == "returned"

        row = _actions(paper, "returned")[0]
        assert row.remarks == "needs more detail"
        assert row.details == {"from_stage": "B", "to_stage": "A"}

    def test_round_trip_audit(self, abc, make_paper, users):
        paper = make_paper()
        sps, vp = users["sps"].id, users["vp_acad"].id
        wf.advance_to_next_stage(_stages(paper)["A"].id, actor_id=sps)
        wf.return_to_previous_stage(_stages(paper)["B"].id, actor_id=vp, remarks="fix budget")
        wf.advance_to_next_stage(_stages(paper)["A"].id, actor_id=sps, remarks="fixed")

        stages = _stages(paper)
        assert stages["B"].status == "in_progress"
        assert paper.status == "in_progress"
        assert [r.stage_name for r in _actions(paper, "completed")] == ["A", "A"]

    def test_reactivated_stage_drops_old_remarks(self, abc, make_paper, users):
        paper = make_paper()
        sps, vp = users["sps"].id, users["vp_acad"].id
        wf.advance_to_next_stage(_stages(paper)["A"].id, actor_id=sps, remarks="approved")
        wf.return_to_previous_stage(_stages(paper)["B"].id, actor_id=vp, remarks="fix budget")
        assert _stages(paper)["A"].remarks is None

        wf.advance_to_next_stage(_stages(paper)["A"].id, actor_id=sps)
        assert _stages(paper)["A"].remarks is None
        assert [r.remarks for r in _actions(paper, "completed")] == ["approved", None]

    def test_return_notifies_previous_owner(self, abc, make_paper, users):
        paper = make_paper()
        wf.advance_to_next_stage(paper.current_stage_id, actor_id=users["sps"].id)
        wf.return_to_previous_stage(paper.current_stage_id, actor_id=users["vp_acad"].id,
                                    remarks="redo")
        notif = Notification.query.filter_by(concept_paper_id=paper.id, category="return").one()
        assert notif.recipient_role == "sps"
        assert "redo" in notif.message

    def test_first_stage_has_no_previous(self, abc, make_paper, users):
        paper = make_paper()
        a_id = paper.current_stage_id
        with pytest.raises(NoPreviousStageError) as exc:
            wf.return_to_previous_stage(a_id, actor_id=users["sps"].id, remarks="why")
        assert isinstance(exc.value, IllegalTransitionError)

        stage = db.session.get(WorkflowStage, a_id)
        assert stage.status == "in_progress"
        assert paper.status == "in_progress"
        assert _actions(paper, "returned") == []

    @pytest.mark.parametrize("remarks", [None, "", "   "])
    def test_remarks_required(self, abc, make_paper, users, remarks):
        paper = make_paper()
        wf.advance_to_next_stage(paper.current_stage_id, actor_id=users["sps"].id)
        b_id = paper.current_stage_id
        with pytest.raises(ValidationError):
            wf.return_to_previous_stage(b_id, actor_id=users["vp_acad"].id, remarks=remarks)
        assert db.session.get(WorkflowStage, b_id).status == "in_progress"

    def test_blank_remarks_checked_before_stage_position(self, abc, make_paper, users):
        paper = make_paper()
        with pytest.raises(ValidationError):
            wf.return_to_previous_stage(paper.current_stage_id, actor_id=users["sps"].id, remarks="")


# ═════════════════════════════════════════════════════════════════════════
# REJECT / REASSIGN
# ═════════════════════════════════════════════════════════════════════════

class TestReject:
    def test_reject_is_terminal(self, abc, make_paper, users, now):
        paper = make_paper()
        wf.advance_to_next_stage(paper.current_stage_id, actor_id=users["sps"].id)
        b_id = paper.current_stage_id

        wf.reject_stage(b_id, actor_id=users["vp_acad"].id, rejection_reason="Out of budget",
                        now=now + timedelta(hours=3))
        stage = db.session.get(WorkflowStage, b_id)
        assert stage.status == "rejected"
        assert stage.is_rejected is True
        assert stage.rejection_reason == "Out of budget"
        assert as_utc(stage.rejected_at) == now + timedelta(hours=3)
        assert paper.status == "rejected"
        assert paper.current_stage_id == b_id
        assert _stages(paper)["C"].status == "pending"

        with pytest.raises(IllegalTransitionError):
            wf.advance_to_next_stage(b_id, actor_id=users["vp_acad"].id)
        with pytest.raises(IllegalTransitionError):
            wf.return_to_previous_stage(b_id, actor_id=users["vp_acad"].id, remarks="undo")

    def test_reason_required(self, abc, make_paper, users):
        paper = make_paper()
        with pytest.raises(ValidationError):
            wf.reject_stage(paper.current_stage_id, actor_id=users["sps"].id, rejection_reason=" ")
        assert paper.status == "in_progress"


class TestReassign:
    def test_reassign_to_role_holder(self, abc, make_paper, make_user, users):
        paper = make_paper()
        other_sps = make_user("sps")
        stage = wf.reassign_stage(paper.current_stage_id, new_user_id=other_sps.id,
                                  actor_id=users["admin"].id)
        assert stage.assigned_user_id == other_sps.id

        row = _actions(paper, "reassigned")[0]
        assert row.details == {"old_user_id": None, "new_user_id": other_sps.id}
        notif = Notification.query.filter_by(category="reassignment").one()
        assert notif.recipient_user_id == other_sps.id

    def test_reassign_wrong_role(self, abc, make_paper, users):
        paper = make_paper()
        with pytest.raises(ValidationError):
            wf.reassign_stage(paper.current_stage_id, new_user_id=users["auditor"].id,
                              actor_id=users["admin"].id)

    def test_reassign_inactive_user(self, abc, make_paper, make_user, users):
        paper = make_paper()
        idle = make_user("sps", is_active=False)
        with pytest.raises(ValidationError):
            wf.reassign_stage(paper.current_stage_id, new_user_id=idle.id, actor_id=users["admin"].id)

    def test_reassign_unknown_user(self, abc, make_paper, users):
        paper = make_paper()
        with pytest.raises(NotFoundError):
            wf.reassign_stage(paper.current_stage_id, new_user_id=4242, actor_id=users["admin"].id)

    def test_reassign_pending_stage(self, abc, make_paper, users):
        paper = make_paper()
        with pytest.raises(IllegalTransitionError):
            wf.reassign_stage(_stages(paper)["B"].id, new_user_id=users["vp_acad"].id,
                              actor_id=users["admin"].id)


# ═════════════════════════════════════════════════════════════════════════
# CONSISTENCY & READ HELPERS
# ═════════════════════════════════════════════════════════════════════════

class TestConsistency:
    def test_two_active_stages_detected(self, abc, make_paper, users):
        paper = make_paper()
        b = _stages(paper)["B"]
        b.status = "in_progress"
        db.session.commit()

        with pytest.raises(CorruptedStateError):
            wf.advance_to_next_stage(paper.current_stage_id, actor_id=users["sps"].id)
        assert _stages(paper)["A"].status == "in_progress"

    def test_pointer_mismatch_detected(self, abc, make_paper):
        paper = make_paper()
        paper.current_stage_id = _stages(paper)["C"].id
        db.session.commit()
        with pytest.raises(CorruptedStateError):
            wf.get_current_stage(paper)

    def test_available_actions(self, abc, make_paper, users):
        paper = make_paper()
        stages = _stages(paper)
        assert wf.get_available_actions(stages["A"]) == ["complete", "reject", "reassign"]
        assert wf.get_available_actions(stages["B"]) == []

        wf.advance_to_next_stage(stages["A"].id, actor_id=users["sps"].id)
        stages = _stages(paper)
        assert wf.get_available_actions(stages["B"]) == ["complete", "return", "reject", "reassign"]

    def test_projected_completion(self, abc, make_paper, now):
        paper = make_paper()
        assert wf.projected_completion(paper, now) == now + timedelta(days=3, hours=3)
