"""
Management command to run one sync pass now.

Usage:
    python manage.py sync_sources               # Sync all active sources
    python manage.py sync_sources --source 3    # Sync one source by id
    python manage.py sync_sources --source GitHub
    python manage.py sync_sources --list        # Show data source health
    python manage.py sync_sources --json        # Output the run result as JSON

The run is guarded by this command's own process only. Use it when the sync
service is not running, e.g. for a first sync after seeding data sources;
against a running service, POST /sync/trigger/ instead.
"""

import json

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError

from apps.sync.services import get_scheduler, get_store


class Command(BaseCommand):
    help = "Sync incidents from the configured status pages once"

    def add_arguments(self, parser):
        parser.add_argument(
            "--source",
            type=str,
            help="Data source id or name to sync. Syncs all active sources if not specified.",
        )
        parser.add_argument(
            "--list",
            action="store_true",
            help="List data sources with their sync health and exit.",
        )
        parser.add_argument(
            "--json",
            action="store_true",
            dest="json_output",
            help="Output the result as JSON.",
        )

    def handle(self, *args, **options):
        if options["list"]:
            self._list_sources()
            return

        data_source_id = self._resolve_source(options["source"]) if options["source"] else None

        scheduler = get_scheduler()
        if not scheduler.trigger(data_source_id=data_source_id, background=False):
            raise CommandError("A sync is already in progress")

        result = scheduler.last_result
        if result is None:
            raise CommandError(f"Data source {options['source']} is inactive")

        if options["json_output"]:
            self.stdout.write(json.dumps(result.to_dict(), indent=2, default=str))
            return

        outcomes = getattr(result, "outcomes", [result])
        for outcome in outcomes:
            if outcome.success:
                self.stdout.write(
                    self.style.SUCCESS(
                        f"  OK    {outcome.data_source_name}: "
                        f"{outcome.incidents_synced} incidents, {outcome.components_synced} components"
                    )
                )
            else:
                self.stdout.write(
                    self.style.ERROR(
                        f"  FAIL  {outcome.data_source_name} at {outcome.stage} "
                        f"[{outcome.error_kind}]: {outcome.error}"
                    )
                )

        if getattr(result, "aborted", False):
            raise CommandError(f"Sync aborted: {result.abort_reason}")

    def _resolve_source(self, value: str) -> int:
        data_sources = get_store().list_data_sources()
        for ds in data_sources:
            if str(ds.pk) == value or ds.name.lower() == value.lower():
                return ds.pk
        raise CommandError(
            f"Unknown data source: {value}. Available: {', '.join(ds.name for ds in data_sources)}"
        )

    def _list_sources(self):
        threshold = getattr(settings, "SYNC_RETRY_ALERT_THRESHOLD", 5)
        data_sources = get_store().list_data_sources()
        if not data_sources:
            self.stdout.write(self.style.WARNING("No data sources configured."))
            return

        self.stdout.write(f"{'ID':<5} {'Name':<24} {'Type':<15} {'Active':<7} {'Retries':<8} Last sync")
        self.stdout.write("-" * 90)
        for ds in data_sources:
            last_sync = f"{ds.last_sync_at:%Y-%m-%d %H:%M:%S}" if ds.last_sync_at else "never"
            line = (
                f"{ds.pk:<5} {ds.name:<24} {ds.connector_type:<15} "
                f"{'yes' if ds.is_active else 'no':<7} {ds.retry_count:<8} {last_sync}"
            )
            if ds.is_failing(threshold):
                self.stdout.write(self.style.ERROR(line))
            elif ds.retry_count:
                self.stdout.write(self.style.WARNING(line))
            else:
                self.stdout.write(line)
