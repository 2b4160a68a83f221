"""
Models for aggregated status-page data.

DataSource rows describe the external status pages we poll. Incident and
ServiceComponent rows are identified only by (external_id, data_source) and are
created or updated in place by the sync pipeline, never deleted by it.
"""

from django.db import models
from django.utils import timezone


class ConnectorType(models.TextChoices):
    """Vendor APIs we know how to read."""

    STATUSPAGE = "statuspage", "StatusPage.io"
    GITHUB_STATUS = "github-status", "GitHub Status"
    AZURE_STATUS = "azure-status", "Azure Status"


class IncidentStatus(models.TextChoices):
    """Canonical incident status."""

    INVESTIGATING = "investigating", "Investigating"
    IDENTIFIED = "identified", "Identified"
    MONITORING = "monitoring", "Monitoring"
    RESOLVED = "resolved", "Resolved"


class IncidentSeverity(models.TextChoices):
    """Canonical incident severity."""

    CRITICAL = "critical", "Critical"
    HIGH = "high", "High"
    MEDIUM = "medium", "Medium"
    LOW = "low", "Low"


class SyncErrorKind(models.TextChoices):
    """Category of the last sync failure for a data source."""

    NETWORK = "network", "Network"
    TIMEOUT = "timeout", "Timeout"
    HTTP = "http", "HTTP error"
    PARSE = "parse", "Malformed payload"
    CONFIGURATION = "configuration", "Configuration"
    UNKNOWN = "unknown", "Unknown"


class DataSource(models.Model):
    """
    One configured external status page.

    Created by configuration (admin, seed command). The sync orchestrator is
    the only writer of last_sync_at, last_error, last_error_kind and retry_count.
    """

    name = models.CharField(
        max_length=255,
        unique=True,
        help_text="Display name (e.g., 'GitHub', 'Atlassian').",
    )
    connector_type = models.CharField(
        max_length=50,
        choices=ConnectorType.choices,
        db_index=True,
        help_text="Which connector reads this source.",
    )
    base_url = models.URLField(
        max_length=500,
        blank=True,
        default="",
        help_text="Root URL of the status page API. Blank uses the connector default.",
    )
    api_key = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Optional credential sent as a bearer token.",
    )
    config = models.JSONField(
        default=dict,
        blank=True,
        help_text="Extra connector options (e.g., {'headers': {...}}).",
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Inactive sources are skipped by the scheduler.",
    )

    # Sync health
    last_sync_at = models.DateTimeField(null=True, blank=True)
    last_error = models.TextField(null=True, blank=True)
    last_error_kind = models.CharField(
        max_length=20,
        choices=SyncErrorKind.choices,
        blank=True,
        default="",
    )
    retry_count = models.PositiveIntegerField(
        default=0,
        help_text="Consecutive failed sync attempts (reset on success).",
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return f"{self.name} ({self.connector_type})"

    @property
    def is_healthy(self) -> bool:
        return self.last_error is None and self.retry_count == 0

    def is_failing(self, threshold: int) -> bool:
        """Whether this source has failed at least ``threshold`` times in a row."""
        return threshold > 0 and self.retry_count >= threshold


class Incident(models.Model):
    """An incident reported by a data source, in canonical form."""

    data_source = models.ForeignKey(
        DataSource,
        on_delete=models.CASCADE,
        related_name="incidents",
    )
    external_id = models.CharField(
        max_length=255,
        help_text="Incident id as reported by the vendor.",
    )
    system_name = models.CharField(max_length=255, blank=True, default="")

    title = models.CharField(max_length=500)
    description = models.TextField(blank=True, default="")
    status = models.CharField(
        max_length=20,
        choices=IncidentStatus.choices,
        default=IncidentStatus.INVESTIGATING,
        db_index=True,
    )
    severity = models.CharField(
        max_length=20,
        choices=IncidentSeverity.choices,
        default=IncidentSeverity.MEDIUM,
        db_index=True,
    )
    impact = models.CharField(
        max_length=50,
        blank=True,
        default="",
        help_text="Raw vendor impact/severity value.",
    )
    external_url = models.URLField(max_length=500, blank=True, default="")

    affected_services = models.JSONField(default=list, blank=True)
    tags = models.JSONField(default=list, blank=True)
    metadata = models.JSONField(default=dict, blank=True)

    is_active = models.BooleanField(default=True, db_index=True)

    # Timestamps
    started_at = models.DateTimeField()
    resolved_at = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Last update time reported by the vendor.",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    synced_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["-started_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["external_id", "data_source"],
                name="uniq_incident_per_source",
            ),
        ]
        indexes = [
            models.Index(fields=["status", "severity"], name="incident_status_sev_idx"),
            models.Index(fields=["started_at"], name="incident_started_idx"),
        ]

    def __str__(self):
        return f"[{self.status}] {self.title}"

    @property
    def is_resolved(self) -> bool:
        return self.status == IncidentStatus.RESOLVED

    @property
    def duration(self):
        end = self.resolved_at or timezone.now()
        return end - self.started_at


class IncidentUpdate(models.Model):
    """Append-only timeline entry for an incident."""

    incident = models.ForeignKey(
        Incident,
        on_delete=models.CASCADE,
        related_name="updates",
    )
    external_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Update id as reported by the vendor, when it has one.",
    )
    update_type = models.CharField(max_length=50, default="status_change")
    new_status = models.CharField(
        max_length=20,
        choices=IncidentStatus.choices,
        default=IncidentStatus.INVESTIGATING,
    )
    message = models.TextField(blank=True, default="")
    timestamp = models.DateTimeField()
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-timestamp"]
        indexes = [
            models.Index(fields=["incident", "external_id"], name="incident_update_ext_idx"),
        ]

    def __str__(self):
        return f"{self.incident_id}: {self.new_status} @ {self.timestamp:%Y-%m-%d %H:%M}"


class ServiceComponent(models.Model):
    """A component (service) listed on a status page."""

    data_source = models.ForeignKey(
        DataSource,
        on_delete=models.CASCADE,
        related_name="components",
    )
    external_id = models.CharField(max_length=255)
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True, default="")
    status = models.CharField(
        max_length=50,
        default="operational",
        help_text="Vendor component status (e.g., 'operational', 'major_outage').",
    )
    group = models.CharField(max_length=255, blank=True, default="")
    position = models.IntegerField(default=0)
    show_uptime = models.BooleanField(default=False)
    metadata = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    synced_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["position", "name"]
        constraints = [
            models.UniqueConstraint(
                fields=["external_id", "data_source"],
                name="uniq_component_per_source",
            ),
        ]

    def __str__(self):
        return f"{self.name} ({self.status})"

    @property
    def is_operational(self) -> bool:
        return self.status == "operational"


class IncidentMetric(models.Model):
    """Daily incident roll-up per data source."""

    data_source = models.ForeignKey(
        DataSource,
        on_delete=models.CASCADE,
        related_name="metrics",
    )
    date = models.DateField()

    total_incidents = models.PositiveIntegerField(default=0)
    open_incidents = models.PositiveIntegerField(default=0)
    resolved_incidents = models.PositiveIntegerField(default=0)
    critical_incidents = models.PositiveIntegerField(default=0)
    high_incidents = models.PositiveIntegerField(default=0)
    medium_incidents = models.PositiveIntegerField(default=0)
    low_incidents = models.PositiveIntegerField(default=0)
    degraded_components = models.PositiveIntegerField(default=0)
    mean_time_to_resolve_minutes = models.FloatField(null=True, blank=True)

    synced_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["-date"]
        constraints = [
            models.UniqueConstraint(
                fields=["date", "data_source"],
                name="uniq_metric_per_source_day",
            ),
        ]

    def __str__(self):
        return f"{self.data_source_id} {self.date}: {self.total_incidents} incidents"
