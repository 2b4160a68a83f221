"""Custom admin site for the incident aggregator console."""

import json

from django.conf import settings
from django.contrib.admin import AdminSite
from django.db.models import Count, Q
from django.utils.html import format_html


def prettify_json(value):
    """Render a JSON value as an indented <pre> block for read-only admin fields."""
    if value in (None, "", {}, []):
        return "-"
    return format_html(
        '<pre style="white-space: pre-wrap; margin: 0;">{}</pre>',
        json.dumps(value, indent=2, sort_keys=True, default=str),
    )


class AggregatorAdminSite(AdminSite):
    site_header = "Incident Aggregator"
    site_title = "Incident Aggregator"
    index_title = "Dashboard"
    index_template = "admin/dashboard.html"

    def index(self, request, extra_context=None):
        extra_context = extra_context or {}
        extra_context.update(self._get_dashboard_context())
        return super().index(request, extra_context=extra_context)

    def _get_dashboard_context(self):
        from apps.incidents.models import (
            DataSource,
            Incident,
            IncidentSeverity,
            IncidentStatus,
            ServiceComponent,
        )

        threshold = getattr(settings, "SYNC_RETRY_ALERT_THRESHOLD", 5)

        # --- Active Incidents ---
        active_qs = Incident.objects.filter(
            is_active=True,
            data_source__is_active=True,
        ).exclude(status=IncidentStatus.RESOLVED)
        active_incidents = active_qs.aggregate(
            total=Count("id"),
            critical=Count("id", filter=Q(severity=IncidentSeverity.CRITICAL)),
            high=Count("id", filter=Q(severity=IncidentSeverity.HIGH)),
            medium=Count("id", filter=Q(severity=IncidentSeverity.MEDIUM)),
            low=Count("id", filter=Q(severity=IncidentSeverity.LOW)),
        )

        # --- Data Source Health ---
        source_qs = DataSource.objects.filter(is_active=True)
        source_health = source_qs.aggregate(
            total=Count("id"),
            healthy=Count("id", filter=Q(retry_count=0)),
            erroring=Count("id", filter=Q(retry_count__gt=0)),
            failing=Count("id", filter=Q(retry_count__gte=threshold)),
        )

        erroring_sources = list(
            source_qs.filter(retry_count__gt=0)
            .order_by("-retry_count")
            .only("id", "name", "connector_type", "last_error", "last_error_kind", "retry_count")[:5]
        )

        # --- Latest Incidents (last 10) ---
        recent_incidents = list(
            active_qs.select_related("data_source").order_by("-started_at")[:10]
        )

        degraded_components = ServiceComponent.objects.filter(
            data_source__is_active=True
        ).exclude(status="operational").count()

        return {
            "active_incidents": active_incidents,
            "source_health": source_health,
            "erroring_sources": erroring_sources,
            "recent_incidents": recent_incidents,
            "degraded_components": degraded_components,
            "retry_alert_threshold": threshold,
        }
