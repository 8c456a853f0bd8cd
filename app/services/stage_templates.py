"""
Stage template registry.

The approval chain is configuration (``WORKFLOW_STAGES``), not code. A
paper's plan is built once from the template at initialization and then
frozen in its own ``workflow_stages`` rows.
"""

import logging
from dataclasses import dataclass, field

from flask import current_app, has_app_context

from app.config import DEFAULT_WORKFLOW_STAGES
from app.core.exceptions import ValidationError
from app.models.auth import VALID_ROLES
from app.models.workflow import NATURES_OF_REQUEST

logger = logging.getLogger(__name__)

SPS_REVIEW = "SPS Review"


@dataclass(frozen=True)
class StageDefinition:
    stage_name: str
    assigned_role: str
    deadline_option: str
    skippable: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "StageDefinition":
        return cls(
            stage_name=(data.get("stage_name") or "").strip(),
            assigned_role=(data.get("assigned_role") or "").strip(),
            deadline_option=(data.get("deadline_option") or "").strip(),
            skippable=bool(data.get("skippable", False)),
        )

    def validate(self) -> "StageDefinition":
        errors = {}
        if not self.stage_name:
            errors["stage_name"] = "required"
        elif len(self.stage_name) > 100:
            errors["stage_name"] = "max 100 characters"
        if self.assigned_role not in VALID_ROLES:
            errors["assigned_role"] = f"must be one of {sorted(VALID_ROLES)}"
        if not self.deadline_option:
            errors["deadline_option"] = "required"
        if errors:
            raise ValidationError("Invalid stage definition", details=errors)
        return self


@dataclass(frozen=True)
class StagePlan:
    """Ordered stages to create plus the template stages left out."""

    stages: tuple[StageDefinition, ...]
    skipped: tuple[StageDefinition, ...] = field(default_factory=tuple)


def get_stage_templates() -> tuple[StageDefinition, ...]:
    """Ordered stage definitions from ``WORKFLOW_STAGES``."""
    raw = DEFAULT_WORKFLOW_STAGES
    if has_app_context():
        raw = current_app.config.get("WORKFLOW_STAGES", DEFAULT_WORKFLOW_STAGES)

    templates = []
    seen = set()
    for entry in raw:
        definition = entry if isinstance(entry, StageDefinition) else StageDefinition.from_dict(entry)
        definition.validate()
        if definition.stage_name in seen:
            raise ValidationError(
                f"Duplicate stage name '{definition.stage_name}' in WORKFLOW_STAGES",
                details={"stage_name": definition.stage_name},
            )
        seen.add(definition.stage_name)
        templates.append(definition)
    return tuple(templates)


def _should_skip(definition: StageDefinition, paper) -> bool:
    if not definition.skippable:
        return False
    if definition.stage_name == SPS_REVIEW:
        return not paper.students_involved
    return False


def build_stage_plan(paper) -> StagePlan:
    """Stages for ``paper`` in order; stage_order is the 1-based position."""
    if paper.nature_of_request not in NATURES_OF_REQUEST:
        raise ValidationError(
            f"Invalid nature_of_request '{paper.nature_of_request}'",
            details={"nature_of_request": f"must be one of {sorted(NATURES_OF_REQUEST)}"},
        )

    stages, skipped = [], []
    for definition in get_stage_templates():
        if _should_skip(definition, paper):
            skipped.append(definition)
        else:
            stages.append(definition)

    if skipped:
        logger.debug("Skipping %s for paper %s", [d.stage_name for d in skipped], paper.id)
    return StagePlan(stages=tuple(stages), skipped=tuple(skipped))
