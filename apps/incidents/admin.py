"""Admin configuration for incident aggregation models."""

from django.conf import settings
from django.contrib import admin
from django.db import models as db_models
from django.utils.html import format_html
from django_json_widget.widgets import JSONEditorWidget
from django_object_actions import DjangoObjectActions
from django_object_actions import action as object_action

from apps.incidents.models import (
    DataSource,
    Incident,
    IncidentMetric,
    IncidentUpdate,
    ServiceComponent,
)
from config.admin import prettify_json

SEVERITY_COLORS = {
    "critical": "#dc3545",
    "high": "#fd7e14",
    "medium": "#ffc107",
    "low": "#17a2b8",
}

STATUS_COLORS = {
    "investigating": "#dc3545",
    "identified": "#fd7e14",
    "monitoring": "#17a2b8",
    "resolved": "#28a745",
}


def _badge(color, label):
    return format_html(
        '<span style="background-color: {}; color: white; padding: 3px 8px; '
        'border-radius: 3px; font-size: 11px;">{}</span>',
        color,
        label.upper(),
    )


class IncidentUpdateInline(admin.TabularInline):
    """Inline display of an incident's timeline."""

    model = IncidentUpdate
    extra = 0
    readonly_fields = ["external_id", "new_status", "message", "timestamp", "created_at"]
    fields = ["timestamp", "new_status", "message", "external_id"]
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(DataSource)
class DataSourceAdmin(DjangoObjectActions, admin.ModelAdmin):
    """Admin for DataSource model."""

    list_display = [
        "name",
        "connector_type",
        "is_active",
        "health_badge",
        "retry_count",
        "last_sync_at",
    ]
    list_filter = ["connector_type", "is_active", "last_error_kind"]
    search_fields = ["name", "base_url"]
    readonly_fields = [
        "last_sync_at",
        "last_error",
        "last_error_kind",
        "retry_count",
        "created_at",
        "updated_at",
    ]
    formfield_overrides = {db_models.JSONField: {"widget": JSONEditorWidget}}
    actions = ["activate_selected", "deactivate_selected"]
    change_actions = ["sync_now"]

    fieldsets = [
        (
            None,
            {
                "fields": ["name", "connector_type", "base_url", "is_active"],
            },
        ),
        (
            "Connection",
            {
                "fields": ["api_key", "config"],
                "classes": ["collapse"],
            },
        ),
        (
            "Sync Health",
            {
                "fields": ["last_sync_at", "last_error", "last_error_kind", "retry_count"],
            },
        ),
        (
            "Timestamps",
            {
                "fields": ["created_at", "updated_at"],
            },
        ),
    ]

    @admin.action(description="Activate selected sources")
    def activate_selected(self, request, queryset):
        updated = queryset.update(is_active=True)
        self.message_user(request, f"{updated} data source(s) activated.")

    @admin.action(description="Deactivate selected sources")
    def deactivate_selected(self, request, queryset):
        updated = queryset.update(is_active=False)
        self.message_user(request, f"{updated} data source(s) deactivated.")

    @object_action(label="Sync Now", description="Sync this data source in the background")
    def sync_now(self, request, obj):
        from apps.sync.services import SchedulerNotRunningError, trigger_sync

        if not obj.is_active:
            self.message_user(request, f"'{obj.name}' is inactive.", level="warning")
            return
        try:
            accepted = trigger_sync(data_source_id=obj.pk)
        except SchedulerNotRunningError as e:
            self.message_user(request, str(e), level="error")
            return
        if accepted:
            self.message_user(request, f"Sync queued for '{obj.name}'.")
        else:
            self.message_user(request, "A sync is already in progress.", level="warning")

    @admin.display(description="Health")
    def health_badge(self, obj):
        threshold = getattr(settings, "SYNC_RETRY_ALERT_THRESHOLD", 5)
        if obj.is_failing(threshold):
            return _badge("#dc3545", "failing")
        if obj.retry_count:
            return _badge("#ffc107", obj.last_error_kind or "error")
        if obj.last_sync_at is None:
            return _badge("#6c757d", "never synced")
        return _badge("#28a745", "ok")


@admin.register(Incident)
class IncidentAdmin(admin.ModelAdmin):
    """Admin for Incident model."""

    list_display = [
        "title",
        "data_source",
        "severity_badge",
        "status_badge",
        "is_active",
        "started_at",
        "resolved_at",
    ]
    list_filter = ["status", "severity", "is_active", "data_source"]
    search_fields = ["title", "description", "external_id", "system_name"]
    readonly_fields = [
        "data_source",
        "external_id",
        "created_at",
        "synced_at",
        "pretty_metadata",
        "pretty_affected_services",
    ]
    date_hierarchy = "started_at"
    inlines = [IncidentUpdateInline]
    actions = ["hide_selected", "refresh_timeline"]

    def get_queryset(self, request):
        return super().get_queryset(request).select_related("data_source")

    fieldsets = [
        (
            None,
            {
                "fields": ["title", "data_source", "external_id", "system_name", "is_active"],
            },
        ),
        (
            "Status",
            {
                "fields": ["status", "severity", "impact", "description", "external_url"],
            },
        ),
        (
            "Metadata",
            {
                "fields": ["pretty_affected_services", "tags", "pretty_metadata"],
                "classes": ["collapse"],
            },
        ),
        (
            "Timestamps",
            {
                "fields": ["started_at", "resolved_at", "updated_at", "created_at", "synced_at"],
            },
        ),
    ]

    @admin.action(description="Hide selected incidents")
    def hide_selected(self, request, queryset):
        updated = queryset.update(is_active=False)
        self.message_user(request, f"{updated} incident(s) hidden.")

    @admin.action(description="Refresh update timeline from the vendor")
    def refresh_timeline(self, request, queryset):
        from apps.sync.tasks import refresh_incident_updates_task

        incident_ids = list(queryset.values_list("pk", flat=True))
        for incident_id in incident_ids:
            refresh_incident_updates_task.delay(incident_id)
        self.message_user(request, f"Timeline refresh queued for {len(incident_ids)} incident(s).")

    @admin.display(description="Severity")
    def severity_badge(self, obj):
        return _badge(SEVERITY_COLORS.get(obj.severity, "#6c757d"), obj.severity)

    @admin.display(description="Status")
    def status_badge(self, obj):
        return _badge(STATUS_COLORS.get(obj.status, "#6c757d"), obj.status)

    @admin.display(description="Metadata")
    def pretty_metadata(self, obj):
        return prettify_json(obj.metadata)

    @admin.display(description="Affected Services")
    def pretty_affected_services(self, obj):
        return prettify_json(obj.affected_services)


@admin.register(ServiceComponent)
class ServiceComponentAdmin(admin.ModelAdmin):
    """Admin for ServiceComponent model."""

    list_display = ["name", "data_source", "status", "group", "synced_at"]
    list_filter = ["status", "data_source"]
    search_fields = ["name", "external_id", "group"]
    readonly_fields = ["data_source", "external_id", "created_at", "updated_at", "synced_at"]
    formfield_overrides = {db_models.JSONField: {"widget": JSONEditorWidget}}


@admin.register(IncidentMetric)
class IncidentMetricAdmin(admin.ModelAdmin):
    """Admin for IncidentMetric model."""

    list_display = [
        "date",
        "data_source",
        "total_incidents",
        "open_incidents",
        "critical_incidents",
        "degraded_components",
        "mean_time_to_resolve_minutes",
    ]
    list_filter = ["data_source"]
    date_hierarchy = "date"

    def has_add_permission(self, request):
        return False
