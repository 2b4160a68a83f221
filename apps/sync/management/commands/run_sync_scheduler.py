"""
Management command to run the sync service: the scheduler and the HTTP app in
one process.

Usage:
    python manage.py run_sync_scheduler                      # 127.0.0.1:8000, interval from settings
    python manage.py run_sync_scheduler --interval 60        # Sync every minute
    python manage.py run_sync_scheduler --addr 0.0.0.0 --port 8080
    python manage.py run_sync_scheduler --no-run-on-start

The trigger endpoint, admin actions and event stream are served by the same
process as the scheduler, so on-demand triggers share its run guard and
stream subscribers receive the events of scheduled runs.

SIGINT/SIGTERM stop the timer and the HTTP server; a sync already in progress
finishes first.
"""

import signal
import threading

from django.core.management.base import BaseCommand, CommandError
from django.core.servers.basehttp import (
    ThreadedWSGIServer,
    WSGIRequestHandler,
    get_internal_wsgi_application,
)

from apps.sync.services import get_scheduler


class Command(BaseCommand):
    help = "Run the incident sync scheduler and serve the app until interrupted"

    def add_arguments(self, parser):
        parser.add_argument(
            "--interval",
            type=float,
            help="Seconds between sync runs (default: SYNC_INTERVAL_SECONDS).",
        )
        parser.add_argument(
            "--no-run-on-start",
            action="store_true",
            help="Wait one interval before the first sync.",
        )
        parser.add_argument("--addr", default="127.0.0.1", help="Address to serve HTTP on.")
        parser.add_argument("--port", type=int, default=8000, help="Port to serve HTTP on.")

    def handle(self, *args, **options):
        scheduler = get_scheduler()

        if options["interval"] is not None:
            if options["interval"] <= 0:
                raise CommandError("--interval must be positive")
            scheduler.interval = options["interval"]
        if options["no_run_on_start"]:
            scheduler.run_on_start = False

        try:
            httpd = ThreadedWSGIServer((options["addr"], options["port"]), WSGIRequestHandler)
        except OSError as e:
            raise CommandError(f"Cannot listen on {options['addr']}:{options['port']}: {e}")
        # Loading the WSGI app may already start the scheduler; start() is then a no-op.
        httpd.set_app(get_internal_wsgi_application())

        def _handle_signal(signum, frame):
            self.stdout.write(f"\nReceived signal {signum}, stopping scheduler...")
            scheduler.stop()

        signal.signal(signal.SIGINT, _handle_signal)
        signal.signal(signal.SIGTERM, _handle_signal)

        scheduler.start()
        server_thread = threading.Thread(target=httpd.serve_forever, name="sync-http", daemon=True)
        server_thread.start()
        self.stdout.write(
            self.style.SUCCESS(
                f"Sync scheduler running every {scheduler.interval:.0f}s, "
                f"serving on http://{options['addr']}:{options['port']}/"
            )
        )

        try:
            # Short joins keep the main thread responsive to signals.
            while scheduler.is_running:
                scheduler.join(timeout=1.0)
        finally:
            httpd.shutdown()
            httpd.server_close()
            scheduler.join()
            scheduler.wait_until_idle()

        self.stdout.write(self.style.SUCCESS("Sync scheduler stopped."))
