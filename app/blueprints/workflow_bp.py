"""
Concept Paper Workflow Blueprint.

Routes:
  POST   /concept-papers                         – submit a paper (starts its workflow)
  GET    /concept-papers                         – papers visible to the caller
  GET    /concept-papers/<pid>                   – paper detail with stages + summary
  DELETE /concept-papers/<pid>                   – soft delete (admin)
  GET    /concept-papers/<pid>/stages            – ordered stages
  GET    /concept-papers/<pid>/audit             – audit trail, oldest first
  POST   /concept-papers/<pid>/stages/insert     – insert a stage after a checkpoint (admin)
  POST   /stages/<sid>/complete                  – complete the current stage
  POST   /stages/<sid>/return                    – return to the previous stage
  POST   /stages/<sid>/reject                    – reject the paper
  POST   /stages/<sid>/reassign                  – assign the stage to a user
  GET    /stages/overdue                         – overdue current stages

The caller is identified by the ``X-User-Id`` header. Service functions own
every commit; this module only parses, authorizes and renders.
"""

import logging

from flask import Blueprint, jsonify, request

from app.blueprints import current_user, pagination_args
from app.core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDenied,
    ValidationError,
    WorkflowError,
)
from app.models import db
from app.models.audit import get_paper_history
from app.models.workflow import PAPER_STATUSES, WorkflowStage
from app.services import concept_paper_service, workflow_service
from app.services.overdue import find_overdue_stages, is_stage_overdue, time_remaining
from app.services.stage_access import authorize_stage_action, require_admin
from app.services.stage_insertion import insert_stage_after
from app.services.stage_templates import StageDefinition
from app.utils.errors import E, api_error, workflow_error_response
from app.utils.helpers import parse_datetime

logger = logging.getLogger(__name__)

workflow_bp = Blueprint("workflow", __name__, url_prefix="/api/v1")


# ── Error handlers ────────────────────────────────────────────────────────────

@workflow_bp.errorhandler(WorkflowError)
def _handle_workflow_error(error: WorkflowError):
    return workflow_error_response(error)


@workflow_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, str(error))


@workflow_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return api_error(E.VALIDATION_RULE, str(error), details=error.details)


@workflow_bp.errorhandler(ConflictError)
def _handle_conflict(error: ConflictError):
    return api_error(E.CONFLICT_STATE, str(error))


@workflow_bp.errorhandler(PermissionDenied)
def _handle_forbidden(error: PermissionDenied):
    return api_error(E.FORBIDDEN, str(error))


# ── helpers ──────────────────────────────────────────────────────────────

def _require_user():
    user = current_user()
    if user is None:
        return None, api_error(E.UNAUTHENTICATED, "X-User-Id header with an active user is required")
    return user, None


def _as_of():
    """Optional ``?now=`` for read-only views. Writes always use the server clock."""
    try:
        return parse_datetime(request.args.get("now"))
    except ValueError as exc:
        raise ValidationError(str(exc), details={"now": "ISO-8601"})


def _get_stage(sid):
    stage = db.session.get(WorkflowStage, sid)
    if stage is None or stage.paper.is_deleted:
        raise NotFoundError("WorkflowStage", sid)
    return stage


def _stage_payload(stage, now=None):
    d = stage.to_dict()
    d["is_overdue"] = is_stage_overdue(stage, now)
    remaining = time_remaining(stage, now)
    d["seconds_remaining"] = int(remaining.total_seconds()) if remaining is not None else None
    d["available_actions"] = workflow_service.get_available_actions(stage)
    return d


# ═════════════════════════════════════════════════════════════════════════════
# CONCEPT PAPERS
# ═════════════════════════════════════════════════════════════════════════════

@workflow_bp.route("/concept-papers", methods=["POST"])
def create_paper():
    """Submit a concept paper.

    Body: { department, title, nature_of_request, students_involved?, deadline_option? }
    """
    user, err = _require_user()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    paper = concept_paper_service.create_paper(data, user)
    return jsonify(paper.to_dict(include_stages=True)), 201


@workflow_bp.route("/concept-papers", methods=["GET"])
def list_papers():
    user, err = _require_user()
    if err:
        return err
    status = request.args.get("status")
    if status and status not in PAPER_STATUSES:
        return api_error(E.VALIDATION_INVALID, f"status must be one of {sorted(PAPER_STATUSES)}")
    limit, offset = pagination_args()
    items, total = concept_paper_service.list_papers_for_user(
        user, status=status, limit=limit, offset=offset,
    )
    return jsonify({"items": [p.to_dict() for p in items], "total": total})


@workflow_bp.route("/concept-papers/<int:pid>", methods=["GET"])
def get_paper(pid):
    paper = concept_paper_service.get_paper(pid)
    now = _as_of()
    d = paper.to_dict()
    d["stages"] = [_stage_payload(s, now) for s in paper.stages]
    d["summary"] = concept_paper_service.status_summary(paper, now)
    return jsonify(d)


@workflow_bp.route("/concept-papers/<int:pid>", methods=["DELETE"])
def delete_paper(pid):
    user, err = _require_user()
    if err:
        return err
    require_admin(user)
    concept_paper_service.soft_delete_paper(pid, actor_id=user.id)
    return jsonify({"deleted": True, "id": pid})


@workflow_bp.route("/concept-papers/<int:pid>/stages", methods=["GET"])
def list_stages(pid):
    concept_paper_service.get_paper(pid)
    now = _as_of()
    return jsonify([_stage_payload(s, now) for s in workflow_service.get_stages(pid)])


@workflow_bp.route("/concept-papers/<int:pid>/audit", methods=["GET"])
def paper_audit(pid):
    concept_paper_service.get_paper(pid, include_deleted=True)
    return jsonify([row.to_dict() for row in get_paper_history(pid)])


@workflow_bp.route("/concept-papers/<int:pid>/stages/insert", methods=["POST"])
def insert_stage(pid):
    """Insert a stage after a completed checkpoint.

    Body: { after_stage_name, stage_name, assigned_role, deadline_option, rewind_progress? }
    """
    user, err = _require_user()
    if err:
        return err
    require_admin(user)
    data = request.get_json(silent=True) or {}
    after = (data.get("after_stage_name") or "").strip()
    if not after:
        return api_error(E.VALIDATION_REQUIRED, "after_stage_name is required")
    definition = StageDefinition.from_dict(data).validate()
    stage = insert_stage_after(
        pid, after, definition,
        actor_id=user.id,
        rewind_progress=bool(data.get("rewind_progress", True)),
    )
    return jsonify(stage.to_dict()), 201


# ═════════════════════════════════════════════════════════════════════════════
# STAGE ACTIONS
# ═════════════════════════════════════════════════════════════════════════════

@workflow_bp.route("/stages/<int:sid>/complete", methods=["POST"])
def complete_stage(sid):
    """Body: { remarks?, signature? }"""
    user, err = _require_user()
    if err:
        return err
    stage = _get_stage(sid)
    authorize_stage_action(user, stage, "complete")
    data = request.get_json(silent=True) or {}
    paper = workflow_service.advance_to_next_stage(
        sid, actor_id=user.id,
        remarks=data.get("remarks"), signature=data.get("signature"),
    )
    return jsonify(paper.to_dict(include_stages=True))


@workflow_bp.route("/stages/<int:sid>/return", methods=["POST"])
def return_stage(sid):
    """Body: { remarks }"""
    user, err = _require_user()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    if not (data.get("remarks") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "remarks is required")
    stage = _get_stage(sid)
    authorize_stage_action(user, stage, "return")
    paper = workflow_service.return_to_previous_stage(
        sid, actor_id=user.id, remarks=data["remarks"],
    )
    return jsonify(paper.to_dict(include_stages=True))


@workflow_bp.route("/stages/<int:sid>/reject", methods=["POST"])
def reject_stage(sid):
    """Body: { rejection_reason }"""
    user, err = _require_user()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    if not (data.get("rejection_reason") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "rejection_reason is required")
    stage = _get_stage(sid)
    authorize_stage_action(user, stage, "reject")
    paper = workflow_service.reject_stage(
        sid, actor_id=user.id, rejection_reason=data["rejection_reason"],
    )
    return jsonify(paper.to_dict(include_stages=True))


@workflow_bp.route("/stages/<int:sid>/reassign", methods=["POST"])
def reassign_stage(sid):
    """Body: { new_user_id }"""
    user, err = _require_user()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    new_user_id = data.get("new_user_id")
    if not isinstance(new_user_id, int) or isinstance(new_user_id, bool):
        return api_error(E.VALIDATION_REQUIRED, "new_user_id (integer) is required")
    stage = _get_stage(sid)
    authorize_stage_action(user, stage, "reassign")
    stage = workflow_service.reassign_stage(
        sid, new_user_id=new_user_id, actor_id=user.id,
    )
    return jsonify(stage.to_dict())


@workflow_bp.route("/stages/overdue", methods=["GET"])
def overdue_stages():
    """Overdue current stages. Query: now? (ISO-8601), limit?"""
    now = _as_of()
    limit, _offset = pagination_args(default_limit=100, max_limit=500)
    stages = find_overdue_stages(now, limit=limit)
    return jsonify([
        dict(_stage_payload(s, now), tracking_number=s.paper.tracking_number)
        for s in stages
    ])
