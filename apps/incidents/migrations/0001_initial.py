import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="DataSource",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(help_text="Display name (e.g., 'GitHub', 'Atlassian').", max_length=255, unique=True)),
                (
                    "connector_type",
                    models.CharField(
                        choices=[
                            ("statuspage", "StatusPage.io"),
                            ("github-status", "GitHub Status"),
                            ("azure-status", "Azure Status"),
                        ],
                        db_index=True,
                        help_text="Which connector reads this source.",
                        max_length=50,
                    ),
                ),
                ("base_url", models.URLField(blank=True, default="", help_text="Root URL of the status page API. Blank uses the connector default.", max_length=500)),
                ("api_key", models.CharField(blank=True, default="", help_text="Optional credential sent as a bearer token.", max_length=255)),
                ("config", models.JSONField(blank=True, default=dict, help_text="Extra connector options (e.g., {'headers': {...}}).")),
                ("is_active", models.BooleanField(db_index=True, default=True, help_text="Inactive sources are skipped by the scheduler.")),
                ("last_sync_at", models.DateTimeField(blank=True, null=True)),
                ("last_error", models.TextField(blank=True, null=True)),
                (
                    "last_error_kind",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("network", "Network"),
                            ("timeout", "Timeout"),
                            ("http", "HTTP error"),
                            ("parse", "Malformed payload"),
                            ("configuration", "Configuration"),
                            ("unknown", "Unknown"),
                        ],
                        default="",
                        max_length=20,
                    ),
                ),
                ("retry_count", models.PositiveIntegerField(default=0, help_text="Consecutive failed sync attempts (reset on success).")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["name"],
            },
        ),
        migrations.CreateModel(
            name="Incident",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("external_id", models.CharField(help_text="Incident id as reported by the vendor.", max_length=255)),
                ("system_name", models.CharField(blank=True, default="", max_length=255)),
                ("title", models.CharField(max_length=500)),
                ("description", models.TextField(blank=True, default="")),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("investigating", "Investigating"),
                            ("identified", "Identified"),
                            ("monitoring", "Monitoring"),
                            ("resolved", "Resolved"),
                        ],
                        db_index=True,
                        default="investigating",
                        max_length=20,
                    ),
                ),
                (
                    "severity",
                    models.CharField(
                        choices=[
                            ("critical", "Critical"),
                            ("high", "High"),
                            ("medium", "Medium"),
                            ("low", "Low"),
                        ],
                        db_index=True,
                        default="medium",
                        max_length=20,
                    ),
                ),
                ("impact", models.CharField(blank=True, default="", help_text="Raw vendor impact/severity value.", max_length=50)),
                ("external_url", models.URLField(blank=True, default="", max_length=500)),
                ("affected_services", models.JSONField(blank=True, default=list)),
                ("tags", models.JSONField(blank=True, default=list)),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("is_active", models.BooleanField(db_index=True, default=True)),
                ("started_at", models.DateTimeField()),
                ("resolved_at", models.DateTimeField(blank=True, null=True)),
                ("updated_at", models.DateTimeField(blank=True, help_text="Last update time reported by the vendor.", null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("synced_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "data_source",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="incidents",
                        to="incidents.datasource",
                    ),
                ),
            ],
            options={
                "ordering": ["-started_at"],
                "indexes": [
                    models.Index(fields=["status", "severity"], name="incident_status_sev_idx"),
                    models.Index(fields=["started_at"], name="incident_started_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(fields=("external_id", "data_source"), name="uniq_incident_per_source"),
                ],
            },
        ),
        migrations.CreateModel(
            name="IncidentUpdate",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("external_id", models.CharField(blank=True, default="", help_text="Update id as reported by the vendor, when it has one.", max_length=255)),
                ("update_type", models.CharField(default="status_change", max_length=50)),
                (
                    "new_status",
                    models.CharField(
                        choices=[
                            ("investigating", "Investigating"),
                            ("identified", "Identified"),
                            ("monitoring", "Monitoring"),
                            ("resolved", "Resolved"),
                        ],
                        default="investigating",
                        max_length=20,
                    ),
                ),
                ("message", models.TextField(blank=True, default="")),
                ("timestamp", models.DateTimeField()),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "incident",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="updates",
                        to="incidents.incident",
                    ),
                ),
            ],
            options={
                "ordering": ["-timestamp"],
                "indexes": [
                    models.Index(fields=["incident", "external_id"], name="incident_update_ext_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="ServiceComponent",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("external_id", models.CharField(max_length=255)),
                ("name", models.CharField(max_length=255)),
                ("description", models.TextField(blank=True, default="")),
                ("status", models.CharField(default="operational", help_text="Vendor component status (e.g., 'operational', 'major_outage').", max_length=50)),
                ("group", models.CharField(blank=True, default="", max_length=255)),
                ("position", models.IntegerField(default=0)),
                ("show_uptime", models.BooleanField(default=False)),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("synced_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "data_source",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="components",
                        to="incidents.datasource",
                    ),
                ),
            ],
            options={
                "ordering": ["position", "name"],
                "constraints": [
                    models.UniqueConstraint(fields=("external_id", "data_source"), name="uniq_component_per_source"),
                ],
            },
        ),
        migrations.CreateModel(
            name="IncidentMetric",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("date", models.DateField()),
                ("total_incidents", models.PositiveIntegerField(default=0)),
                ("open_incidents", models.PositiveIntegerField(default=0)),
                ("resolved_incidents", models.PositiveIntegerField(default=0)),
                ("critical_incidents", models.PositiveIntegerField(default=0)),
                ("high_incidents", models.PositiveIntegerField(default=0)),
                ("medium_incidents", models.PositiveIntegerField(default=0)),
                ("low_incidents", models.PositiveIntegerField(default=0)),
                ("degraded_components", models.PositiveIntegerField(default=0)),
                ("mean_time_to_resolve_minutes", models.FloatField(blank=True, null=True)),
                ("synced_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "data_source",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="metrics",
                        to="incidents.datasource",
                    ),
                ),
            ],
            options={
                "ordering": ["-date"],
                "constraints": [
                    models.UniqueConstraint(fields=("date", "data_source"), name="uniq_metric_per_source_day"),
                ],
            },
        ),
    ]
