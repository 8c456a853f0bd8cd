"""
Application-wide exception hierarchy.

Services raise these types; blueprints register one handler per type and get
consistent HTTP status codes everywhere. Service modules never import Flask
response helpers to report errors.

Usage:
    from app.core.exceptions import NotFoundError, IllegalTransitionError

    raise NotFoundError(resource="ConceptPaper", resource_id=42)
    raise IllegalTransitionError("Stage is not the paper's current stage")
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "ConceptPaper").
        resource_id: The PK or key that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    The data was well-formed but violated a rule (blank remarks, unknown
    role, out-of-range hours). Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would violate a uniqueness or reference rule.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None,
                 message: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(message or f"{resource} with {field}={value!r} already exists")


class PermissionDenied(Exception):
    """Raised when the acting user may not perform an action on a stage. HTTP 403."""

    def __init__(self, message: str, *, user_id: int | None = None, action: str | None = None) -> None:
        self.user_id = user_id
        self.action = action
        super().__init__(message)


class AuditImmutableError(Exception):
    """Raised when a persisted audit row is updated or deleted."""


# ═════════════════════════════════════════════════════════════════════════════
# Workflow errors
# ═════════════════════════════════════════════════════════════════════════════

class WorkflowError(Exception):
    """Base for every workflow state-machine error.

    ``code`` is machine-readable and stable; ``app.utils.errors`` maps it to
    an HTTP status.
    """

    code = "WORKFLOW_ERROR"

    def __init__(self, message: str, *, details: dict | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class IllegalTransitionError(WorkflowError):
    """Action not allowed in the stage's or paper's current state."""

    code = "ILLEGAL_TRANSITION"


class NoPreviousStageError(IllegalTransitionError):
    """Return requested from the first stage."""

    code = "NO_PREVIOUS_STAGE"


class AlreadyInitializedError(WorkflowError):
    code = "ALREADY_INITIALIZED"


class EmptyTemplateError(WorkflowError):
    code = "EMPTY_TEMPLATE"


class CheckpointNotFoundError(WorkflowError):
    """Insertion checkpoint stage is missing or not yet completed."""

    code = "CHECKPOINT_NOT_FOUND"


class AlreadyInsertedError(WorkflowError):
    code = "ALREADY_INSERTED"


class UnknownOptionError(WorkflowError):
    """Deadline option key is not configured."""

    code = "UNKNOWN_DEADLINE_OPTION"

    def __init__(self, option_key: str) -> None:
        self.option_key = option_key
        super().__init__(f"Unknown deadline option '{option_key}'", details={"option_key": option_key})


class CorruptedStateError(WorkflowError):
    """Stored stage rows contradict the workflow invariants. Needs manual repair."""

    code = "CORRUPTED_STATE"
