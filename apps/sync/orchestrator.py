"""
Sync orchestrator.

Runs one sync pass over the active data sources. Each source is processed
through the same stages:

    connect → fetch_incidents → fetch_components → persist

Failure policy:
- Any exception inside one source's stages is caught at that source's
  boundary, classified into a SyncErrorKind, recorded on the DataSource
  (last_error, last_error_kind, retry_count += 1) and the run moves on.
- StoreUnavailableError is not source-scoped: it aborts the rest of the run.
- There is no retry within a run. The next scheduled run is the retry.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable

from django.conf import settings
from django.utils import timezone

from apps.incidents.connectors import (
    BaseConnector,
    ConnectorConfigurationError,
    ConnectorHTTPError,
    ConnectorNetworkError,
    ConnectorTimeoutError,
    ParsedComponent,
    ParsedIncident,
    PayloadError,
    create_connector,
)
from apps.incidents.models import DataSource, IncidentSeverity, IncidentStatus, SyncErrorKind
from apps.incidents.store import IncidentStore, StoreUnavailableError
from apps.sync.events import (
    DATA_SOURCE_SYNC,
    SYNC_COMPLETED,
    SYNC_STARTED,
    SYSTEM_SYNC,
    EventBroadcaster,
)

logger = logging.getLogger(__name__)


class SyncStage:
    CONNECT = "connect"
    FETCH_INCIDENTS = "fetch_incidents"
    FETCH_COMPONENTS = "fetch_components"
    PERSIST = "persist"


def classify_error(exc: BaseException) -> str:
    """Map an exception raised while syncing a source onto a SyncErrorKind."""
    # Timeout first: it is also a network error.
    if isinstance(exc, ConnectorTimeoutError):
        return SyncErrorKind.TIMEOUT
    if isinstance(exc, ConnectorNetworkError):
        return SyncErrorKind.NETWORK
    if isinstance(exc, ConnectorHTTPError):
        return SyncErrorKind.HTTP
    if isinstance(exc, PayloadError):
        return SyncErrorKind.PARSE
    if isinstance(exc, ConnectorConfigurationError):
        return SyncErrorKind.CONFIGURATION
    if isinstance(exc, TimeoutError):
        return SyncErrorKind.TIMEOUT
    if isinstance(exc, (KeyError, TypeError, ValueError)):
        return SyncErrorKind.PARSE
    return SyncErrorKind.UNKNOWN


@dataclass
class SourceSyncOutcome:
    """Result of syncing one data source."""

    data_source_id: int
    data_source_name: str
    success: bool = False
    incidents_created: int = 0
    incidents_updated: int = 0
    components_synced: int = 0
    updates_added: int = 0
    stage: str = SyncStage.CONNECT
    error: str | None = None
    error_kind: str = ""
    retry_count: int = 0
    duration_ms: float = 0.0

    @property
    def incidents_synced(self) -> int:
        return self.incidents_created + self.incidents_updated

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["incidents_synced"] = self.incidents_synced
        return data

    def to_event_payload(self) -> dict[str, Any]:
        return {
            "dataSourceId": self.data_source_id,
            "dataSourceName": self.data_source_name,
            "status": "success" if self.success else "error",
            "incidentsSynced": self.incidents_synced,
            "componentsSynced": self.components_synced,
            "error": self.error,
            "errorKind": self.error_kind or None,
        }


@dataclass
class SyncRunResult:
    """Result of one sync_all() pass."""

    run_id: str
    started_at: datetime
    completed_at: datetime | None = None
    outcomes: list[SourceSyncOutcome] = field(default_factory=list)
    aborted: bool = False
    abort_reason: str = ""

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.success)

    @property
    def duration_ms(self) -> float:
        if not self.completed_at:
            return 0.0
        return (self.completed_at - self.started_at).total_seconds() * 1000

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "aborted": self.aborted,
            "abort_reason": self.abort_reason,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


def build_daily_metric(
    incidents: list[ParsedIncident], components: list[ParsedComponent]
) -> dict[str, Any]:
    """Roll up one source's current incidents and components into metric fields."""
    resolved = [i for i in incidents if i.status == IncidentStatus.RESOLVED]
    durations = [
        (i.resolved_at - i.started_at).total_seconds() / 60
        for i in resolved
        if i.resolved_at and i.resolved_at >= i.started_at
    ]
    return {
        "total_incidents": len(incidents),
        "open_incidents": len(incidents) - len(resolved),
        "resolved_incidents": len(resolved),
        "critical_incidents": sum(1 for i in incidents if i.severity == IncidentSeverity.CRITICAL),
        "high_incidents": sum(1 for i in incidents if i.severity == IncidentSeverity.HIGH),
        "medium_incidents": sum(1 for i in incidents if i.severity == IncidentSeverity.MEDIUM),
        "low_incidents": sum(1 for i in incidents if i.severity == IncidentSeverity.LOW),
        "degraded_components": sum(1 for c in components if c.is_degraded),
        "mean_time_to_resolve_minutes": (
            round(sum(durations) / len(durations), 2) if durations else None
        ),
    }


class SyncOrchestrator:
    """
    Runs sync passes against a store.

    Built once per process (see SyncConfig.ready) and shared by the scheduler,
    the trigger endpoint and management commands.

    Usage:
        orchestrator = SyncOrchestrator(store, broadcaster)
        result = orchestrator.sync_all()
    """

    def __init__(
        self,
        store: IncidentStore,
        broadcaster: EventBroadcaster | None = None,
        retry_alert_threshold: int | None = None,
        connector_factory: Callable[[DataSource], BaseConnector] = create_connector,
    ):
        self.store = store
        self.broadcaster = broadcaster or EventBroadcaster()
        self.retry_alert_threshold = (
            retry_alert_threshold
            if retry_alert_threshold is not None
            else int(getattr(settings, "SYNC_RETRY_ALERT_THRESHOLD", 5))
        )
        self.connector_factory = connector_factory

    def sync_all(self) -> SyncRunResult:
        """Sync every active data source once."""
        run = SyncRunResult(run_id=uuid.uuid4().hex[:12], started_at=timezone.now())
        logger.info(f"Sync run {run.run_id} started")
        self.broadcaster.publish(SYNC_STARTED, runId=run.run_id)

        try:
            data_sources = self.store.list_active_data_sources()
            logger.info(f"Sync run {run.run_id}: {len(data_sources)} active data source(s)")
            for data_source in data_sources:
                run.outcomes.append(self._sync_source(data_source))
        except StoreUnavailableError as e:
            run.aborted = True
            run.abort_reason = str(e)
            logger.error(f"Sync run {run.run_id} aborted, store unavailable: {e}")
        finally:
            run.completed_at = timezone.now()

        logger.info(
            f"Sync run {run.run_id} finished in {run.duration_ms:.0f}ms: "
            f"{run.succeeded} succeeded, {run.failed} failed"
            + (" (aborted)" if run.aborted else "")
        )
        self.broadcaster.publish(
            SYNC_COMPLETED,
            runId=run.run_id,
            succeeded=run.succeeded,
            failed=run.failed,
            aborted=run.aborted,
        )
        return run

    def sync_one(self, data_source_id: int) -> SourceSyncOutcome | None:
        """
        Sync a single data source on operator request.

        Returns None when the source does not exist or is inactive.

        Raises:
            StoreUnavailableError: The store cannot be reached.
        """
        data_source = self.store.get_data_source(data_source_id)
        if data_source is None:
            logger.warning(f"Sync requested for unknown data source {data_source_id}")
            return None
        if not data_source.is_active:
            logger.warning(f"Sync requested for inactive data source {data_source.name}, skipping")
            return None

        outcome = self._sync_source(data_source)
        self.broadcaster.publish(
            SYSTEM_SYNC,
            systemId=data_source.pk,
            status="success" if outcome.success else "error",
        )
        return outcome

    def refresh_incident_updates(self, incident_id: int) -> int | None:
        """
        Fetch one incident's full timeline from its vendor and append unseen entries.

        This touches a single incident's append-only timeline and does not
        record a sync outcome, so it runs outside the run guard.

        Returns:
            Number of updates added, or None when the incident does not exist.

        Raises:
            ConnectorError: The vendor request failed.
        """
        incident = self.store.get_incident(incident_id)
        if incident is None:
            logger.warning(f"Timeline refresh requested for unknown incident {incident_id}")
            return None

        connector = self.connector_factory(incident.data_source)
        updates = connector.fetch_incident_updates(incident.external_id)
        added = self.store.append_incident_updates(incident, updates)
        logger.info(
            f"Refreshed timeline of incident {incident.external_id} "
            f"({incident.data_source.name}): {added} new of {len(updates)}"
        )
        return added

    def _sync_source(self, data_source: DataSource) -> SourceSyncOutcome:
        outcome = SourceSyncOutcome(
            data_source_id=data_source.pk,
            data_source_name=data_source.name,
        )
        start = time.perf_counter()

        try:
            connector = self.connector_factory(data_source)

            outcome.stage = SyncStage.FETCH_INCIDENTS
            incidents = connector.fetch_incidents()

            outcome.stage = SyncStage.FETCH_COMPONENTS
            components = connector.fetch_components()

            outcome.stage = SyncStage.PERSIST
            self._persist(data_source, incidents, components, outcome)
        except StoreUnavailableError:
            raise
        except Exception as e:
            outcome.duration_ms = (time.perf_counter() - start) * 1000
            return self._record_failure(data_source, outcome, e)

        outcome.duration_ms = (time.perf_counter() - start) * 1000
        outcome.success = True
        self.store.record_sync_outcome(data_source.pk)
        logger.info(
            f"Synced {data_source.name} (id={data_source.pk}): "
            f"{outcome.incidents_created} new, {outcome.incidents_updated} updated, "
            f"{outcome.components_synced} components, {outcome.updates_added} updates "
            f"in {outcome.duration_ms:.0f}ms"
        )
        self.broadcaster.publish(DATA_SOURCE_SYNC, **outcome.to_event_payload())
        return outcome

    def _persist(
        self,
        data_source: DataSource,
        incidents: list[ParsedIncident],
        components: list[ParsedComponent],
        outcome: SourceSyncOutcome,
    ) -> None:
        for parsed in incidents:
            incident, created = self.store.upsert_incident(data_source, parsed)
            if created:
                outcome.incidents_created += 1
            else:
                outcome.incidents_updated += 1
            if parsed.updates:
                outcome.updates_added += self.store.append_incident_updates(
                    incident, parsed.updates
                )

        for parsed in components:
            self.store.upsert_component(data_source, parsed)
            outcome.components_synced += 1

        self.store.upsert_metric(
            data_source,
            timezone.localdate(),
            build_daily_metric(incidents, components),
        )

    def _record_failure(
        self, data_source: DataSource, outcome: SourceSyncOutcome, exc: Exception
    ) -> SourceSyncOutcome:
        outcome.error = str(exc) or exc.__class__.__name__
        outcome.error_kind = classify_error(exc)

        updated = self.store.record_sync_outcome(
            data_source.pk, error=outcome.error, error_kind=outcome.error_kind
        )
        outcome.retry_count = updated.retry_count if updated else 0

        message = (
            f"Sync failed for {data_source.name} (id={data_source.pk}) "
            f"at {outcome.stage} [{outcome.error_kind}]: {outcome.error}"
        )
        if updated and updated.is_failing(self.retry_alert_threshold):
            logger.error(f"{message} - failing for {updated.retry_count} consecutive runs")
        else:
            logger.warning(message)

        self.broadcaster.publish(DATA_SOURCE_SYNC, **outcome.to_event_payload())
        return outcome
