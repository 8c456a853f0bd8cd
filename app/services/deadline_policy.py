"""
Deadline policy: named durations for stage deadlines.

A deadline is ``activation instant + duration(option)``. ``hours`` is the
authoritative column; legacy rows that only carry fractional ``days`` are read
as ``days × 24h``. No calendar or business-day arithmetic is applied.

Stage deadlines are snapshots: changing an option here never rewrites a
stored ``WorkflowStage.deadline``.
"""

import logging
import re
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import func, select

from app.core.exceptions import ConflictError, NotFoundError, UnknownOptionError, ValidationError
from app.models import db
from app.models.workflow import ConceptPaper, DeadlineOption, WorkflowStage
from app.utils.helpers import as_utc

logger = logging.getLogger(__name__)

KEY_PATTERN = re.compile(r"^[a-z0-9_]+$")
MAX_HOURS = 8760

# (key, label, hours) in display order
DEFAULT_OPTIONS = (
    ("3_hours", "3 Hours", 3),
    ("6_hours", "6 Hours", 6),
    ("12_hours", "12 Hours", 12),
    ("1_day", "1 Day", 24),
    ("2_days", "2 Days", 48),
    ("3_days", "3 Days", 72),
    ("4_days", "4 Days", 96),
    ("1_week", "1 Week", 168),
    ("2_weeks", "2 Weeks", 336),
)


# ── Resolution ───────────────────────────────────────────────────────────────

def get_option(option_key: str) -> DeadlineOption:
    option = db.session.execute(
        select(DeadlineOption).where(DeadlineOption.key == option_key)
    ).scalar_one_or_none()
    if option is None:
        raise UnknownOptionError(option_key)
    return option


def _duration(option: DeadlineOption) -> timedelta:
    if option.hours is not None:
        return timedelta(hours=option.hours)
    if option.days is not None:
        return timedelta(hours=float(Decimal(option.days) * 24))
    raise ValidationError(
        f"Deadline option '{option.key}' has neither hours nor days",
        details={"key": option.key},
    )


def duration_for(option_key: str) -> timedelta:
    """Duration configured for ``option_key``."""
    return _duration(get_option(option_key))


def resolve(option_key: str, activation_instant: datetime) -> datetime:
    """Absolute deadline for a stage activated at ``activation_instant``.

    Raises:
        UnknownOptionError: the key is not configured.
    """
    return as_utc(activation_instant) + duration_for(option_key)


# ── Seeding ──────────────────────────────────────────────────────────────────

def seed_default_options() -> int:
    """Insert the default options that are missing. Returns the number added.

    Idempotent; existing rows are left untouched. Caller commits.
    """
    existing = set(db.session.execute(select(DeadlineOption.key)).scalars())
    added = 0
    for sort_order, (key, label, hours) in enumerate(DEFAULT_OPTIONS, start=1):
        if key in existing:
            continue
        db.session.add(DeadlineOption(
            key=key, label=label, hours=hours,
            days=Decimal(hours) / Decimal(24), sort_order=sort_order,
        ))
        added += 1
    if added:
        db.session.flush()
        logger.info("Seeded %d deadline options", added)
    return added


# ── CRUD ─────────────────────────────────────────────────────────────────────

def list_options() -> list[DeadlineOption]:
    stmt = select(DeadlineOption).order_by(DeadlineOption.sort_order, DeadlineOption.id)
    return list(db.session.execute(stmt).scalars())


def _validate_hours(value):
    if isinstance(value, int) and not isinstance(value, bool):
        hours = value
    elif isinstance(value, str) and value.strip().isdigit():
        hours = int(value.strip())
    else:
        raise ValidationError("hours must be a whole number", details={"hours": "must be an integer"})
    if not 1 <= hours <= MAX_HOURS:
        raise ValidationError(
            f"hours must be between 1 and {MAX_HOURS}",
            details={"hours": f"1..{MAX_HOURS}"},
        )
    return hours


def _validate_label(value):
    label = (value or "").strip()
    if not label:
        raise ValidationError("label is required", details={"label": "required"})
    if len(label) > 100:
        raise ValidationError("label is too long", details={"label": "max 100 characters"})
    return label


def create_option(data: dict) -> DeadlineOption:
    """Create a deadline option. Caller commits."""
    key = (data.get("key") or "").strip()
    if not KEY_PATTERN.match(key) or len(key) > 50:
        raise ValidationError(
            "key must be lower-case letters, digits or underscores",
            details={"key": "^[a-z0-9_]+$"},
        )
    label = _validate_label(data.get("label"))
    hours = _validate_hours(data.get("hours"))

    exists = db.session.execute(
        select(DeadlineOption.id).where(DeadlineOption.key == key)
    ).first()
    if exists:
        raise ConflictError("DeadlineOption", "key", key)

    sort_order = data.get("sort_order")
    if sort_order is None:
        sort_order = (db.session.execute(select(func.max(DeadlineOption.sort_order))).scalar() or 0) + 1

    option = DeadlineOption(
        key=key, label=label, hours=hours,
        days=Decimal(hours) / Decimal(24), sort_order=int(sort_order),
    )
    db.session.add(option)
    db.session.flush()
    logger.info("Deadline option created: %s (%dh)", key, hours)
    return option


def update_option(option_key: str, data: dict) -> DeadlineOption:
    """Update label / hours / sort_order. Keys are immutable. Caller commits.

    Existing stage deadlines are not recomputed.
    """
    option = db.session.execute(
        select(DeadlineOption).where(DeadlineOption.key == option_key)
    ).scalar_one_or_none()
    if option is None:
        raise NotFoundError("DeadlineOption", option_key)

    if "key" in data and data["key"] != option.key:
        raise ConflictError(
            "DeadlineOption", "key", option.key,
            message="Deadline option keys cannot be renamed",
        )
    if "label" in data:
        option.label = _validate_label(data["label"])
    if "hours" in data:
        option.hours = _validate_hours(data["hours"])
        option.days = Decimal(option.hours) / Decimal(24)
    if "sort_order" in data:
        try:
            option.sort_order = int(data["sort_order"])
        except (TypeError, ValueError):
            raise ValidationError("sort_order must be an integer", details={"sort_order": "integer"})
    db.session.flush()
    return option


def option_in_use(option_key: str) -> bool:
    stage_ref = db.session.execute(
        select(WorkflowStage.id).where(WorkflowStage.deadline_option == option_key).limit(1)
    ).first()
    if stage_ref:
        return True
    paper_ref = db.session.execute(
        select(ConceptPaper.id).where(ConceptPaper.deadline_option == option_key).limit(1)
    ).first()
    return paper_ref is not None


def delete_option(option_key: str) -> None:
    """Delete an unused option. Caller commits.

    Raises:
        ConflictError: a stage or paper still references the key.
    """
    option = db.session.execute(
        select(DeadlineOption).where(DeadlineOption.key == option_key)
    ).scalar_one_or_none()
    if option is None:
        raise NotFoundError("DeadlineOption", option_key)
    if option_in_use(option_key):
        raise ConflictError(
            "DeadlineOption", "key", option_key,
            message=f"Deadline option '{option_key}' is referenced by existing stages or papers",
        )
    db.session.delete(option)
    db.session.flush()
    logger.info("Deadline option deleted: %s", option_key)
