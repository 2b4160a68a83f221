"""
Incident store: idempotent persistence for synced status-page data.

Incident and ServiceComponent rows are keyed by (external_id, data_source) and
IncidentMetric rows by (date, data_source). Every upsert is a single atomic
create-or-update on that key, so re-syncing the same vendor data never creates
duplicates and two writers of the same key serialize on it.

Two implementations share one interface:
- DatabaseStore: Django ORM, the default.
- MemoryStore: process-local dictionaries, for tests and database-less runs.

Use build_store() to pick one from the SYNC_STORE_BACKEND setting.
"""

import functools
import itertools
import logging
import threading
from abc import ABC, abstractmethod
from datetime import date
from typing import Any

from django.conf import settings
from django.db import InterfaceError, OperationalError, transaction
from django.db.models import F
from django.utils import timezone

from apps.incidents.connectors.base import (
    ParsedComponent,
    ParsedIncident,
    ParsedIncidentUpdate,
)
from apps.incidents.models import (
    DataSource,
    Incident,
    IncidentMetric,
    IncidentStatus,
    IncidentUpdate,
    ServiceComponent,
)

logger = logging.getLogger(__name__)


class StoreUnavailableError(Exception):
    """The backing store cannot be reached. Not scoped to any one data source."""


def _merge_resolved_at(fields: dict[str, Any], existing_resolved_at, now) -> dict[str, Any]:
    """
    Fill in resolved_at for incidents the vendor reports as resolved without a time.

    Keeps a previously stored value, otherwise uses ``now``. For any other status
    the vendor's value (usually None) is taken as-is.
    """
    if fields.get("status") == IncidentStatus.RESOLVED and not fields.get("resolved_at"):
        fields["resolved_at"] = existing_resolved_at or now
    return fields


def _update_key(update: ParsedIncidentUpdate | IncidentUpdate) -> tuple:
    """Identity of a timeline entry: vendor id when present, else (timestamp, message)."""
    if update.external_id:
        return ("id", update.external_id)
    return ("ts", update.timestamp, update.message)


class IncidentStore(ABC):
    """Persistence interface used by the sync orchestrator and read endpoints."""

    @abstractmethod
    def list_active_data_sources(self) -> list[DataSource]:
        """Data sources with is_active=True, in a stable order."""

    @abstractmethod
    def list_data_sources(self) -> list[DataSource]:
        """All data sources, active or not."""

    @abstractmethod
    def get_data_source(self, data_source_id: int) -> DataSource | None:
        pass

    @abstractmethod
    def get_incident(self, incident_id: int) -> Incident | None:
        """Incident by primary key, with its data source, or None."""

    @abstractmethod
    def upsert_incident(
        self, data_source: DataSource, parsed: ParsedIncident
    ) -> tuple[Incident, bool]:
        """Create or update the incident keyed by (external_id, data_source).

        Returns:
            (incident, created)
        """

    @abstractmethod
    def upsert_component(
        self, data_source: DataSource, parsed: ParsedComponent
    ) -> tuple[ServiceComponent, bool]:
        """Create or update the component keyed by (external_id, data_source)."""

    @abstractmethod
    def append_incident_updates(
        self, incident: Incident, updates: list[ParsedIncidentUpdate]
    ) -> int:
        """Add timeline entries not stored yet. Returns how many were added."""

    @abstractmethod
    def upsert_metric(
        self, data_source: DataSource, day: date, fields: dict[str, Any]
    ) -> tuple[IncidentMetric, bool]:
        """Create or update the daily metric keyed by (date, data_source)."""

    @abstractmethod
    def record_sync_outcome(
        self,
        data_source_id: int,
        error: str | None = None,
        error_kind: str = "",
    ) -> DataSource | None:
        """
        Record the result of one sync attempt for a data source.

        Success (error is None) clears last_error and resets retry_count to 0.
        Failure stores the message and kind and increments retry_count.
        last_sync_at is stamped in both cases.
        """

    @abstractmethod
    def list_active_incidents(self) -> list[Incident]:
        """Unresolved active incidents from active data sources, newest first."""

    @abstractmethod
    def list_incidents_by_status(self, status: str) -> list[Incident]:
        pass

    @abstractmethod
    def list_incidents_by_severity(self, severity: str) -> list[Incident]:
        pass

    @abstractmethod
    def list_incident_updates(self, incident: Incident) -> list[IncidentUpdate]:
        pass


def _translate_db_errors(method):
    """Re-raise connectivity failures from the ORM as StoreUnavailableError."""

    @functools.wraps(method)
    def wrapper(*args, **kwargs):
        try:
            return method(*args, **kwargs)
        except (OperationalError, InterfaceError) as e:
            logger.error(f"Store unavailable during {method.__name__}: {e}")
            raise StoreUnavailableError(str(e)) from e

    return wrapper


class DatabaseStore(IncidentStore):
    """Django ORM backed store."""

    @_translate_db_errors
    def list_active_data_sources(self) -> list[DataSource]:
        return list(DataSource.objects.filter(is_active=True).order_by("id"))

    @_translate_db_errors
    def list_data_sources(self) -> list[DataSource]:
        return list(DataSource.objects.order_by("id"))

    @_translate_db_errors
    def get_data_source(self, data_source_id: int) -> DataSource | None:
        return DataSource.objects.filter(pk=data_source_id).first()

    @_translate_db_errors
    def get_incident(self, incident_id):
        return Incident.objects.select_related("data_source").filter(pk=incident_id).first()

    @_translate_db_errors
    def upsert_incident(self, data_source, parsed):
        now = timezone.now()
        with transaction.atomic():
            existing_resolved_at = (
                Incident.objects.select_for_update()
                .filter(external_id=parsed.external_id, data_source=data_source)
                .values_list("resolved_at", flat=True)
                .first()
            )
            fields = _merge_resolved_at(parsed.to_fields(), existing_resolved_at, now)
            fields["synced_at"] = now
            incident, created = Incident.objects.update_or_create(
                external_id=parsed.external_id,
                data_source=data_source,
                defaults=fields,
            )
        return incident, created

    @_translate_db_errors
    def upsert_component(self, data_source, parsed):
        fields = parsed.to_fields()
        fields["synced_at"] = timezone.now()
        with transaction.atomic():
            return ServiceComponent.objects.update_or_create(
                external_id=parsed.external_id,
                data_source=data_source,
                defaults=fields,
            )

    @_translate_db_errors
    def append_incident_updates(self, incident, updates):
        if not updates:
            return 0
        with transaction.atomic():
            # Serializes appends for one incident (sync run and timeline refresh).
            locked = Incident.objects.select_for_update().filter(pk=incident.pk)
            list(locked.values_list("pk", flat=True))
            seen = {_update_key(u) for u in IncidentUpdate.objects.filter(incident=incident)}
            new_rows = []
            for update in updates:
                key = _update_key(update)
                if key in seen:
                    continue
                seen.add(key)
                new_rows.append(IncidentUpdate(incident=incident, **update.to_fields()))
            IncidentUpdate.objects.bulk_create(new_rows)
        return len(new_rows)

    @_translate_db_errors
    def upsert_metric(self, data_source, day, fields):
        defaults = dict(fields, synced_at=timezone.now())
        with transaction.atomic():
            return IncidentMetric.objects.update_or_create(
                date=day,
                data_source=data_source,
                defaults=defaults,
            )

    @_translate_db_errors
    def record_sync_outcome(self, data_source_id, error=None, error_kind=""):
        now = timezone.now()
        if error is None:
            changes = {
                "last_sync_at": now,
                "last_error": None,
                "last_error_kind": "",
                "retry_count": 0,
                "updated_at": now,
            }
        else:
            changes = {
                "last_sync_at": now,
                "last_error": error,
                "last_error_kind": error_kind,
                "retry_count": F("retry_count") + 1,
                "updated_at": now,
            }
        updated = DataSource.objects.filter(pk=data_source_id).update(**changes)
        if not updated:
            logger.warning(f"Cannot record sync outcome: data source {data_source_id} not found")
            return None
        return DataSource.objects.get(pk=data_source_id)

    def _active_incidents(self):
        return Incident.objects.select_related("data_source").filter(
            is_active=True,
            data_source__is_active=True,
        )

    @_translate_db_errors
    def list_active_incidents(self):
        return list(
            self._active_incidents()
            .exclude(status=IncidentStatus.RESOLVED)
            .order_by("-started_at")
        )

    @_translate_db_errors
    def list_incidents_by_status(self, status):
        return list(self._active_incidents().filter(status=status).order_by("-started_at"))

    @_translate_db_errors
    def list_incidents_by_severity(self, severity):
        return list(self._active_incidents().filter(severity=severity).order_by("-started_at"))

    @_translate_db_errors
    def list_incident_updates(self, incident):
        return list(incident.updates.order_by("-timestamp"))


class MemoryStore(IncidentStore):
    """
    In-process store holding unsaved model instances.

    Instances get synthetic primary keys so callers can treat them like rows.
    A single lock serializes all writes.
    """

    def __init__(self, data_sources: list[DataSource] | None = None):
        self._lock = threading.RLock()
        self._ids = itertools.count(1)
        self._data_sources: dict[int, DataSource] = {}
        self._incidents: dict[tuple[str, int], Incident] = {}
        self._components: dict[tuple[str, int], ServiceComponent] = {}
        self._updates: dict[int, list[IncidentUpdate]] = {}
        self._metrics: dict[tuple[date, int], IncidentMetric] = {}
        for data_source in data_sources or []:
            self.add_data_source(data_source)

    def add_data_source(self, data_source: DataSource) -> DataSource:
        with self._lock:
            if data_source.pk is None:
                data_source.pk = next(self._ids)
            now = timezone.now()
            data_source.created_at = data_source.created_at or now
            data_source.updated_at = data_source.updated_at or now
            self._data_sources[data_source.pk] = data_source
            return data_source

    def list_active_data_sources(self):
        with self._lock:
            return [ds for _, ds in sorted(self._data_sources.items()) if ds.is_active]

    def list_data_sources(self):
        with self._lock:
            return [ds for _, ds in sorted(self._data_sources.items())]

    def get_data_source(self, data_source_id):
        with self._lock:
            return self._data_sources.get(data_source_id)

    def get_incident(self, incident_id):
        with self._lock:
            return next((i for i in self._incidents.values() if i.pk == incident_id), None)

    def upsert_incident(self, data_source, parsed):
        now = timezone.now()
        key = (parsed.external_id, data_source.pk)
        with self._lock:
            incident = self._incidents.get(key)
            created = incident is None
            fields = _merge_resolved_at(
                parsed.to_fields(), None if created else incident.resolved_at, now
            )
            if created:
                incident = Incident(
                    pk=next(self._ids),
                    data_source=data_source,
                    external_id=parsed.external_id,
                    created_at=now,
                )
                self._incidents[key] = incident
            for name, value in fields.items():
                setattr(incident, name, value)
            incident.synced_at = now
            return incident, created

    def upsert_component(self, data_source, parsed):
        now = timezone.now()
        key = (parsed.external_id, data_source.pk)
        with self._lock:
            component = self._components.get(key)
            created = component is None
            if created:
                component = ServiceComponent(
                    pk=next(self._ids),
                    data_source=data_source,
                    external_id=parsed.external_id,
                    created_at=now,
                )
                self._components[key] = component
            for name, value in parsed.to_fields().items():
                setattr(component, name, value)
            component.updated_at = now
            component.synced_at = now
            return component, created

    def append_incident_updates(self, incident, updates):
        with self._lock:
            timeline = self._updates.setdefault(incident.pk, [])
            seen = {_update_key(u) for u in timeline}
            added = 0
            for update in updates:
                key = _update_key(update)
                if key in seen:
                    continue
                seen.add(key)
                timeline.append(
                    IncidentUpdate(
                        pk=next(self._ids),
                        incident=incident,
                        created_at=timezone.now(),
                        **update.to_fields(),
                    )
                )
                added += 1
            return added

    def upsert_metric(self, data_source, day, fields):
        key = (day, data_source.pk)
        with self._lock:
            metric = self._metrics.get(key)
            created = metric is None
            if created:
                metric = IncidentMetric(pk=next(self._ids), data_source=data_source, date=day)
                self._metrics[key] = metric
            for name, value in fields.items():
                setattr(metric, name, value)
            metric.synced_at = timezone.now()
            return metric, created

    def record_sync_outcome(self, data_source_id, error=None, error_kind=""):
        with self._lock:
            data_source = self._data_sources.get(data_source_id)
            if data_source is None:
                logger.warning(f"Cannot record sync outcome: data source {data_source_id} not found")
                return None
            now = timezone.now()
            data_source.last_sync_at = now
            data_source.updated_at = now
            if error is None:
                data_source.last_error = None
                data_source.last_error_kind = ""
                data_source.retry_count = 0
            else:
                data_source.last_error = error
                data_source.last_error_kind = error_kind
                data_source.retry_count += 1
            return data_source

    def _active_incidents(self) -> list[Incident]:
        with self._lock:
            incidents = [
                i for i in self._incidents.values() if i.is_active and i.data_source.is_active
            ]
        return sorted(incidents, key=lambda i: i.started_at, reverse=True)

    def list_active_incidents(self):
        return [i for i in self._active_incidents() if i.status != IncidentStatus.RESOLVED]

    def list_incidents_by_status(self, status):
        return [i for i in self._active_incidents() if i.status == status]

    def list_incidents_by_severity(self, severity):
        return [i for i in self._active_incidents() if i.severity == severity]

    def list_incident_updates(self, incident):
        with self._lock:
            timeline = list(self._updates.get(incident.pk, []))
        return sorted(timeline, key=lambda u: u.timestamp, reverse=True)

    def list_components(self, data_source_id: int | None = None) -> list[ServiceComponent]:
        with self._lock:
            components = list(self._components.values())
        if data_source_id is not None:
            components = [c for c in components if c.data_source_id == data_source_id]
        return components

    def list_metrics(self) -> list[IncidentMetric]:
        with self._lock:
            return list(self._metrics.values())


STORE_BACKENDS: dict[str, type[IncidentStore]] = {
    "database": DatabaseStore,
    "memory": MemoryStore,
}


def build_store(backend: str | None = None) -> IncidentStore:
    """
    Instantiate the configured store.

    Args:
        backend: "database" or "memory"; defaults to settings.SYNC_STORE_BACKEND.

    Raises:
        ValueError: Unknown backend name.
    """
    backend = backend or getattr(settings, "SYNC_STORE_BACKEND", "database")
    if backend not in STORE_BACKENDS:
        raise ValueError(
            f"Unknown store backend: {backend}. Available: {', '.join(STORE_BACKENDS.keys())}"
        )
    logger.info(f"Using {backend} incident store")
    return STORE_BACKENDS[backend]()
