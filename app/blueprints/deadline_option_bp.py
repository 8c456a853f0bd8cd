"""
Deadline Option Blueprint.

Routes:
  GET    /deadline-options            – list options in display order
  POST   /deadline-options            – create (admin)
  PUT    /deadline-options/<key>      – update label / hours / sort_order (admin)
  DELETE /deadline-options/<key>      – delete an unused option (admin)
"""

from flask import Blueprint, jsonify, request

from app.blueprints import current_user
from app.core.exceptions import ConflictError, NotFoundError, PermissionDenied, ValidationError
from app.models import db
from app.services import deadline_policy
from app.services.stage_access import require_admin
from app.utils.errors import E, api_error

deadline_option_bp = Blueprint("deadline_options", __name__, url_prefix="/api/v1")


@deadline_option_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    db.session.rollback()
    return api_error(E.NOT_FOUND, str(error))


@deadline_option_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    db.session.rollback()
    return api_error(E.VALIDATION_RULE, str(error), details=error.details)


@deadline_option_bp.errorhandler(ConflictError)
def _handle_conflict(error: ConflictError):
    db.session.rollback()
    return api_error(E.CONFLICT_DUPLICATE, str(error))


@deadline_option_bp.errorhandler(PermissionDenied)
def _handle_forbidden(error: PermissionDenied):
    return api_error(E.FORBIDDEN, str(error))


@deadline_option_bp.route("/deadline-options", methods=["GET"])
def list_options():
    return jsonify([o.to_dict() for o in deadline_policy.list_options()])


@deadline_option_bp.route("/deadline-options", methods=["POST"])
def create_option():
    """Body: { key, label, hours, sort_order? }"""
    require_admin(current_user())
    data = request.get_json(silent=True) or {}
    option = deadline_policy.create_option(data)
    db.session.commit()
    return jsonify(option.to_dict()), 201


@deadline_option_bp.route("/deadline-options/<key>", methods=["PUT"])
def update_option(key):
    require_admin(current_user())
    data = request.get_json(silent=True) or {}
    option = deadline_policy.update_option(key, data)
    db.session.commit()
    return jsonify(option.to_dict())


@deadline_option_bp.route("/deadline-options/<key>", methods=["DELETE"])
def delete_option(key):
    require_admin(current_user())
    deadline_policy.delete_option(key)
    db.session.commit()
    return jsonify({"deleted": True, "key": key})
