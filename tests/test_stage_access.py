"""Who may act on a stage."""

import pytest

from app.core.exceptions import PermissionDenied
from app.services import workflow_service as wf
from app.services.stage_access import authorize_stage_action, can_act, require_admin


@pytest.fixture()
def paper(stage_template, make_paper):
    stage_template([("A", "sps", "1_day"), ("B", "vp_acad", "2_days")])
    return make_paper()


def _current(paper):
    return wf.get_current_stage(paper)


def test_role_holder_may_complete(paper, users):
    authorize_stage_action(users["sps"], _current(paper), "complete")


def test_other_role_denied(paper, users):
    with pytest.raises(PermissionDenied) as exc:
        authorize_stage_action(users["auditor"], _current(paper), "complete")
    assert exc.value.user_id == users["auditor"].id
    assert exc.value.action == "complete"


def test_admin_may_reassign_only(paper, users):
    stage = _current(paper)
    assert can_act(users["admin"], stage, "reassign")
    assert not can_act(users["admin"], stage, "complete")


def test_assigned_user_required(paper, users, make_user):
    second = make_user("sps")
    stage = wf.reassign_stage(paper.current_stage_id, new_user_id=second.id, actor_id=users["admin"].id)
    assert can_act(second, stage, "complete")
    assert not can_act(users["sps"], stage, "complete")


def test_inactive_user_denied(paper, make_user):
    idle = make_user("sps", is_active=False)
    assert not can_act(idle, _current(paper), "complete")


def test_return_denied_on_first_stage(paper, users):
    assert not can_act(users["sps"], _current(paper), "return")


def test_unknown_action(paper, users):
    assert not can_act(users["sps"], _current(paper), "approve_all")


def test_anonymous(paper):
    assert not can_act(None, _current(paper), "complete")


def test_require_admin(users):
    require_admin(users["admin"])
    with pytest.raises(PermissionDenied):
        require_admin(users["senior_vp"])
    with pytest.raises(PermissionDenied):
        require_admin(None)
