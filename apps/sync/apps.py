"""Django app configuration for the sync app."""

from django.apps import AppConfig


class SyncConfig(AppConfig):
    """
    Configuration for the Incident Sync app.

    ready() builds the store, event broadcaster, orchestrator and scheduler
    once per process and keeps them on this instance; everything else reaches
    them through apps.sync.services. The scheduler is not started here, since
    management commands and tests load apps too (see services.start_scheduler).
    """

    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.sync"
    verbose_name = "Incident Sync"

    store = None
    broadcaster = None
    orchestrator = None
    scheduler = None

    def ready(self):
        from apps.incidents.store import build_store
        from apps.sync.events import EventBroadcaster
        from apps.sync.orchestrator import SyncOrchestrator
        from apps.sync.scheduler import SyncScheduler

        self.store = build_store()
        self.broadcaster = EventBroadcaster()
        self.orchestrator = SyncOrchestrator(self.store, self.broadcaster)
        self.scheduler = SyncScheduler(self.orchestrator)
