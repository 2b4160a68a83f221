"""Celery tasks for background work that runs outside the sync run guard.

Sync runs themselves never go through Celery: the run guard and the event
broadcaster live in the process that hosts the scheduler. A worker only
refreshes incident timelines, which are append-only and need the database
store to be shared with the web process.
"""

from __future__ import annotations

import logging
from typing import Any

from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task(bind=True)
def refresh_incident_updates_task(self, incident_id: int) -> dict[str, Any]:
    """
    Fetch the vendor timeline of one incident and append unseen updates.

    Args:
        incident_id: Primary key of the Incident.

    Returns:
        Status dict with the number of updates added.
    """
    from apps.incidents.connectors import ConnectorError
    from apps.sync.orchestrator import classify_error
    from apps.sync.services import get_orchestrator

    try:
        added = get_orchestrator().refresh_incident_updates(incident_id)
    except ConnectorError as e:
        logger.warning(f"Timeline refresh failed for incident {incident_id}: {e}")
        return {
            "status": "error",
            "incident_id": incident_id,
            "error": str(e),
            "error_kind": classify_error(e),
        }

    if added is None:
        return {"status": "skipped", "incident_id": incident_id, "reason": "incident not found"}
    return {"status": "completed", "incident_id": incident_id, "updates_added": added}
