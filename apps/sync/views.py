"""
HTTP endpoints for the sync pipeline.

POST /sync/trigger/            start an on-demand sync (202; 409 when busy or inactive; 503
                               when this process does not run the scheduler)
GET  /sync/status/             data source health and scheduler state
GET  /sync/events/             Server-Sent Events stream of sync events
GET  /sync/incidents/active/   active incidents (?status= or ?severity= to filter)
"""

import json
import logging

from django.conf import settings
from django.http import JsonResponse, StreamingHttpResponse
from django.utils.decorators import method_decorator
from django.views import View
from django.views.decorators.csrf import csrf_exempt

from apps.incidents.models import IncidentSeverity, IncidentStatus
from apps.incidents.store import StoreUnavailableError
from apps.sync.services import (
    SchedulerNotRunningError,
    get_broadcaster,
    get_scheduler,
    get_store,
    trigger_sync,
)

logger = logging.getLogger(__name__)


def _isoformat(value):
    return value.isoformat() if value else None


def incident_to_dict(incident) -> dict:
    return {
        "id": incident.pk,
        "data_source_id": incident.data_source_id,
        "external_id": incident.external_id,
        "system_name": incident.system_name,
        "title": incident.title,
        "description": incident.description,
        "status": incident.status,
        "severity": incident.severity,
        "impact": incident.impact,
        "external_url": incident.external_url,
        "affected_services": incident.affected_services,
        "tags": incident.tags,
        "started_at": _isoformat(incident.started_at),
        "resolved_at": _isoformat(incident.resolved_at),
        "updated_at": _isoformat(incident.updated_at),
        "synced_at": _isoformat(incident.synced_at),
    }


def data_source_to_dict(data_source, threshold: int) -> dict:
    return {
        "id": data_source.pk,
        "name": data_source.name,
        "connector_type": data_source.connector_type,
        "is_active": data_source.is_active,
        "last_sync_at": _isoformat(data_source.last_sync_at),
        "last_error": data_source.last_error,
        "last_error_kind": data_source.last_error_kind or None,
        "retry_count": data_source.retry_count,
        "failing": data_source.is_failing(threshold),
    }


@method_decorator(csrf_exempt, name="dispatch")
class SyncTriggerView(View):
    """
    On-demand sync trigger.

    POST /sync/trigger/
    Body (optional): {"data_source_id": 3}
    """

    def post(self, request):
        data_source_id = None
        if request.body:
            try:
                body = json.loads(request.body)
            except json.JSONDecodeError as e:
                logger.warning(f"Invalid JSON payload: {e}")
                return JsonResponse(
                    {"status": "error", "message": "Invalid JSON payload"},
                    status=400,
                )
            raw_id = body.get("data_source_id") if isinstance(body, dict) else None
            if raw_id is not None:
                try:
                    data_source_id = int(raw_id)
                except (TypeError, ValueError):
                    return JsonResponse(
                        {"status": "error", "message": "data_source_id must be an integer"},
                        status=400,
                    )

        if data_source_id is not None:
            try:
                data_source = get_store().get_data_source(data_source_id)
            except StoreUnavailableError as e:
                return JsonResponse({"status": "error", "message": str(e)}, status=503)
            if data_source is None:
                return JsonResponse(
                    {"status": "error", "message": f"Data source {data_source_id} not found"},
                    status=404,
                )
            if not data_source.is_active:
                return JsonResponse(
                    {
                        "status": "inactive",
                        "message": f"Data source '{data_source.name}' is inactive",
                    },
                    status=409,
                )

        try:
            accepted = trigger_sync(data_source_id=data_source_id)
        except SchedulerNotRunningError as e:
            logger.warning(f"Sync trigger refused: {e}")
            return JsonResponse({"status": "unavailable", "message": str(e)}, status=503)

        if not accepted:
            return JsonResponse(
                {"status": "busy", "message": "A sync is already in progress"},
                status=409,
            )

        return JsonResponse(
            {"status": "queued", "data_source_id": data_source_id},
            status=202,
        )


class SyncStatusView(View):
    """GET /sync/status/"""

    def get(self, request):
        threshold = getattr(settings, "SYNC_RETRY_ALERT_THRESHOLD", 5)
        try:
            data_sources = get_store().list_data_sources()
        except StoreUnavailableError as e:
            return JsonResponse({"status": "error", "message": str(e)}, status=503)

        return JsonResponse(
            {
                "scheduler": get_scheduler().status(),
                "retry_alert_threshold": threshold,
                "data_sources": [data_source_to_dict(ds, threshold) for ds in data_sources],
            }
        )


class SyncEventStreamView(View):
    """
    GET /sync/events/

    Server-Sent Events. The first message is a welcome event; comment lines
    are sent as heartbeats while nothing happens.
    """

    def get(self, request):
        stream = get_broadcaster().open_stream(
            maxsize=getattr(settings, "SYNC_EVENT_QUEUE_SIZE", 100)
        )
        heartbeat = getattr(settings, "SYNC_EVENT_HEARTBEAT_SECONDS", 15)

        def event_source():
            try:
                while True:
                    event = stream.get(timeout=heartbeat)
                    if event is None:
                        yield ": heartbeat\n\n"
                        continue
                    message = event.to_message()
                    yield f"event: {message['type']}\ndata: {json.dumps(message)}\n\n"
            finally:
                stream.close()

        response = StreamingHttpResponse(event_source(), content_type="text/event-stream")
        response["Cache-Control"] = "no-cache"
        response["X-Accel-Buffering"] = "no"
        return response


class ActiveIncidentsView(View):
    """
    GET /sync/incidents/active/
    GET /sync/incidents/active/?status=identified
    GET /sync/incidents/active/?severity=critical
    """

    def get(self, request):
        status = request.GET.get("status")
        severity = request.GET.get("severity")
        store = get_store()

        try:
            if status:
                if status not in IncidentStatus.values:
                    return self._bad_filter("status", status, IncidentStatus.values)
                incidents = store.list_incidents_by_status(status)
            elif severity:
                if severity not in IncidentSeverity.values:
                    return self._bad_filter("severity", severity, IncidentSeverity.values)
                incidents = store.list_incidents_by_severity(severity)
            else:
                incidents = store.list_active_incidents()
        except StoreUnavailableError as e:
            return JsonResponse({"status": "error", "message": str(e)}, status=503)

        return JsonResponse(
            {
                "count": len(incidents),
                "incidents": [incident_to_dict(i) for i in incidents],
            }
        )

    def _bad_filter(self, name, value, allowed):
        return JsonResponse(
            {
                "status": "error",
                "message": f"Unknown {name}: {value}. Allowed: {', '.join(allowed)}",
            },
            status=400,
        )
