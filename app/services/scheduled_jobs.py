"""
Concept Paper Approval Workflow
Scheduled Jobs.

Jobs:
    - overdue_stage_scanner: notifies owners of current stages past deadline
"""

from __future__ import annotations

import logging
from typing import Any

from app.models import db
from app.services.notification import NotificationService
from app.services.overdue import find_overdue_stages
from app.services.scheduler_service import register_job
from app.services.workflow_events import stage_overdue
from app.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)


@register_job("overdue_stage_scanner")
def scan_overdue_stages(app, now=None) -> dict[str, Any]:
    """Create one overdue notification per overdue current stage per day."""
    now = as_utc(now) or utcnow()
    results = {"stages_overdue": 0, "notifications_created": 0, "already_notified": 0}

    if not app.config.get("OVERDUE_SWEEP_ENABLED", True):
        logger.info("Overdue sweep disabled by configuration")
        results["disabled"] = True
        return results

    for stage in find_overdue_stages(now):
        results["stages_overdue"] += 1
        if NotificationService.exists_today(
            category="deadline", entity_type="workflow_stage", entity_id=stage.id, now=now,
        ):
            results["already_notified"] += 1
            continue
        NotificationService.notify_stage_overdue(stage_overdue(stage.paper, stage), at=now)
        results["notifications_created"] += 1

    db.session.commit()
    logger.info(
        "Overdue sweep: %d overdue, %d notified",
        results["stages_overdue"], results["notifications_created"],
        extra={"job_name": "overdue_stage_scanner"},
    )
    return results
