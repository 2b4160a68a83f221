"""
Access to the per-process sync runtime.

The runtime objects are created in SyncConfig.ready(); these helpers are the
only way views, tasks, admin actions and commands reach them.

Scheduled ticks, on-demand triggers and the event stream must share one run
guard and one broadcaster, so the scheduler runs inside the process that
serves HTTP: config/wsgi.py calls start_scheduler(), and the
run_sync_scheduler command serves the app next to its scheduler.
"""

import logging

from django.apps import apps
from django.conf import settings

logger = logging.getLogger(__name__)


class SchedulerNotRunningError(RuntimeError):
    """On-demand sync requested in a process whose scheduler is not running."""


def get_sync_config():
    return apps.get_app_config("sync")


def get_store():
    return get_sync_config().store


def get_broadcaster():
    return get_sync_config().broadcaster


def get_orchestrator():
    return get_sync_config().orchestrator


def get_scheduler():
    return get_sync_config().scheduler


def start_scheduler() -> bool:
    """
    Start this process's scheduler when SYNC_AUTOSTART_SCHEDULER is set.

    Returns:
        Whether the scheduler is running afterwards.
    """
    scheduler = get_scheduler()
    if getattr(settings, "SYNC_AUTOSTART_SCHEDULER", True):
        scheduler.start()
    else:
        logger.info("SYNC_AUTOSTART_SCHEDULER is off, sync scheduler not started")
    return scheduler.is_running


def trigger_sync(data_source_id: int | None = None) -> bool:
    """
    Start an on-demand sync in a detached thread, without waiting for it.

    The run shares the guard of the scheduler running in this process, so a
    trigger during a scheduled run is dropped.

    Returns:
        False when a run is already in progress (the trigger is dropped).

    Raises:
        SchedulerNotRunningError: This process does not host the running
            scheduler, so its guard would not cover scheduled runs.
    """
    scheduler = get_scheduler()
    if not scheduler.is_running:
        raise SchedulerNotRunningError(
            "The sync scheduler is not running in this process; "
            "start the service with SYNC_AUTOSTART_SCHEDULER enabled or via run_sync_scheduler"
        )
    return scheduler.trigger(data_source_id=data_source_id, background=True)
