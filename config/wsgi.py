"""WSGI entry point for the incident aggregator.

The process serving this application also hosts the sync scheduler, so the
trigger endpoint, the admin action and the event stream share its run guard
and event broadcaster. Serve it from a single process (threads are fine).
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

application = get_wsgi_application()

from apps.sync.services import start_scheduler  # noqa: E402

start_scheduler()
