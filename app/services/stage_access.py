"""
Stage access control.

Decides who may act on a workflow stage. The state machine itself never looks
at users; blueprints call ``authorize_stage_action`` before a transition.

Usage:
    from app.services.stage_access import authorize_stage_action

    authorize_stage_action(user, stage, "complete")   # raises PermissionDenied
    if can_act(user, stage, "return"):
        ...
"""

from app.core.exceptions import PermissionDenied
from app.models.auth import Role

STAGE_ACTIONS = ("complete", "return", "reject", "reassign")

# Actions an admin may take regardless of the stage's role
_ADMIN_ACTIONS = {"reassign"}


def authorize_stage_action(user, stage, action: str) -> None:
    """Raise ``PermissionDenied`` unless ``user`` may perform ``action`` on ``stage``.

    Rules:
      - the user must exist and be active
      - admins may reassign any stage
      - otherwise the user must hold the stage's role and, when the stage
        has an assigned user, be that user
      - ``return`` is never allowed on the first stage
    """
    if action not in STAGE_ACTIONS:
        raise PermissionDenied(f"Unknown stage action '{action}'", action=action)
    if user is None:
        raise PermissionDenied("Authentication required", action=action)

    user_id = user.id
    if not user.is_active:
        raise PermissionDenied(f"User {user_id} is inactive", user_id=user_id, action=action)

    if action in _ADMIN_ACTIONS and user.has_role(Role.ADMIN):
        return

    if not user.has_role(stage.assigned_role):
        raise PermissionDenied(
            f"User {user_id} does not hold role '{stage.assigned_role}' required by '{stage.stage_name}'",
            user_id=user_id, action=action,
        )
    if stage.assigned_user_id is not None and stage.assigned_user_id != user_id:
        raise PermissionDenied(
            f"Stage '{stage.stage_name}' is assigned to another user",
            user_id=user_id, action=action,
        )
    if action == "return" and stage.stage_order == 1:
        raise PermissionDenied(
            "The first stage cannot be returned", user_id=user_id, action=action,
        )


def can_act(user, stage, action: str) -> bool:
    try:
        authorize_stage_action(user, stage, action)
    except PermissionDenied:
        return False
    return True


def require_admin(user) -> None:
    if user is None:
        raise PermissionDenied("Authentication required")
    if not user.is_active or not user.has_role(Role.ADMIN):
        raise PermissionDenied(f"User {user.id} is not an administrator", user_id=user.id)
