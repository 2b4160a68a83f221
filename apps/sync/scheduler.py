"""
Recurring sync scheduler.

A daemon thread calls SyncOrchestrator.sync_all() every ``interval`` seconds.
One run guard covers scheduled ticks and on-demand triggers alike: when a run
is already in progress, any further trigger is dropped, not queued.

stop() only sets an event, so it is safe to call from a signal handler. A run
already in progress is allowed to finish and record its outcomes.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

from django.conf import settings
from django.utils import timezone

from apps.sync.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)


class SyncScheduler:
    """
    Fixed-interval scheduler with a non-overlap guard.

    Usage:
        scheduler = SyncScheduler(orchestrator, interval=300)
        scheduler.start()
        ...
        scheduler.stop()
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        interval: float | None = None,
        run_on_start: bool | None = None,
    ):
        self.orchestrator = orchestrator
        self.interval = float(
            interval if interval is not None else getattr(settings, "SYNC_INTERVAL_SECONDS", 300)
        )
        if self.interval <= 0:
            raise ValueError(f"Sync interval must be positive, got {self.interval}")
        self.run_on_start = (
            run_on_start
            if run_on_start is not None
            else bool(getattr(settings, "SYNC_RUN_ON_START", True))
        )

        self._run_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._draining: list[threading.Thread] = []

        self.last_run_started_at = None
        self.last_run_finished_at = None
        self.last_result = None
        self.skipped_triggers = 0

    @property
    def is_running(self) -> bool:
        """Whether the recurring timer is active."""
        return self._thread is not None and self._thread.is_alive() and not self._stop_event.is_set()

    @property
    def sync_in_progress(self) -> bool:
        return self._run_lock.locked()

    def start(self) -> None:
        """Start the recurring timer. Calling start() twice is a no-op."""
        if self.is_running:
            logger.debug("Scheduler already running")
            return
        # A fresh event per loop: a previous loop thread still finishing a tick
        # keeps its own (set) event and exits afterwards.
        if self._thread is not None and self._thread.is_alive():
            self._draining.append(self._thread)
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._loop, args=(self._stop_event,), name="sync-scheduler", daemon=True
        )
        self._thread.start()
        logger.info(f"Sync scheduler started (interval={self.interval:.0f}s)")

    def stop(self) -> None:
        """Cancel future ticks. Does not interrupt a run in progress."""
        self._stop_event.set()

    def join(self, timeout: float | None = None) -> None:
        """Wait for the timer thread, and any stopped one still finishing a tick, to exit."""
        for thread in self._draining:
            thread.join(timeout)
        self._draining = [t for t in self._draining if t.is_alive()]
        if self._thread is not None:
            self._thread.join(timeout)

    def wait_until_idle(self, timeout: float | None = None) -> bool:
        """Block until no run is in progress. Returns False on timeout."""
        acquired = self._run_lock.acquire(timeout=-1 if timeout is None else timeout)
        if acquired:
            self._run_lock.release()
        return acquired

    def run_once(self, data_source_id: int | None = None) -> Any:
        """
        Run a sync now in the calling thread, unless one is already running.

        Returns:
            The SyncRunResult (or SourceSyncOutcome for a single source), or
            None when the trigger was dropped.
        """
        if not self._acquire():
            return None
        return self._execute(data_source_id)

    def trigger(self, data_source_id: int | None = None, background: bool = True) -> bool:
        """
        On-demand sync.

        Args:
            data_source_id: Sync only this source; None syncs all active sources.
            background: Run in a detached thread and return immediately.

        Returns:
            False if a run was already in progress (the trigger is dropped).
        """
        if not self._acquire():
            return False

        if not background:
            self._execute(data_source_id)
            return True

        thread = threading.Thread(
            target=self._run_detached,
            args=(data_source_id,),
            name="sync-trigger",
            daemon=True,
        )
        try:
            thread.start()
        except RuntimeError:
            self._run_lock.release()
            raise
        return True

    def _acquire(self) -> bool:
        if self._run_lock.acquire(blocking=False):
            return True
        self.skipped_triggers += 1
        logger.info("Sync already in progress, trigger dropped")
        return False

    def _execute(self, data_source_id: int | None) -> Any:
        # Caller holds the run lock.
        try:
            self.last_run_started_at = timezone.now()
            if data_source_id is None:
                result = self.orchestrator.sync_all()
            else:
                result = self.orchestrator.sync_one(data_source_id)
            self.last_result = result
            return result
        finally:
            self.last_run_finished_at = timezone.now()
            self._run_lock.release()

    def _run_detached(self, data_source_id: int | None) -> None:
        try:
            self._execute(data_source_id)
        except Exception:
            logger.exception("Background sync failed")

    def _loop(self, stop_event: threading.Event) -> None:
        if self.run_on_start and not stop_event.is_set():
            self._tick()
        while not stop_event.wait(self.interval):
            self._tick()
        logger.info("Sync scheduler stopped")

    def _tick(self) -> None:
        try:
            self.run_once()
        except Exception:
            logger.exception("Scheduled sync failed")

    def status(self) -> dict[str, Any]:
        return {
            "running": self.is_running,
            "sync_in_progress": self.sync_in_progress,
            "interval_seconds": self.interval,
            "last_run_started_at": (
                self.last_run_started_at.isoformat() if self.last_run_started_at else None
            ),
            "last_run_finished_at": (
                self.last_run_finished_at.isoformat() if self.last_run_finished_at else None
            ),
            "skipped_triggers": self.skipped_triggers,
        }
