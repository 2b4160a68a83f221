import threading
import time
from datetime import timedelta
from unittest.mock import MagicMock

from django.utils import timezone

from apps.incidents.connectors import ParsedComponent, ParsedIncident, ParsedIncidentUpdate
from apps.incidents.models import DataSource


class FakeConnector:
    """Connector double returning canned records, or raising at a chosen stage."""

    def __init__(
        self, incidents=None, components=None, error=None, fail_at="fetch_incidents", timeline=None
    ):
        self.incidents = incidents or []
        self.timeline = timeline or {}
        self.components = components or []
        self.error = error
        self.fail_at = fail_at

    def _maybe_fail(self, stage):
        if self.error is not None and self.fail_at == stage:
            raise self.error

    def fetch_incidents(self):
        self._maybe_fail("fetch_incidents")
        return list(self.incidents)

    def fetch_components(self):
        self._maybe_fail("fetch_components")
        return list(self.components)

    def fetch_incident_updates(self, incident_id):
        self._maybe_fail("fetch_incident_updates")
        return list(self.timeline.get(incident_id, []))


class BlockingConnector(FakeConnector):
    """fetch_incidents() blocks until released, so a test can act mid-run."""

    def __init__(self, *args, timeout=5.0, **kwargs):
        super().__init__(*args, **kwargs)
        self.started = threading.Event()
        self.release = threading.Event()
        self.timeout = timeout

    def fetch_incidents(self):
        self.started.set()
        self.release.wait(self.timeout)
        return super().fetch_incidents()


def connector_factory(connectors):
    """
    Factory keyed by data source name. A value that is an exception is raised
    at construction time, like the real factory does for bad configuration.
    """

    def factory(data_source):
        connector = connectors[data_source.name]
        if isinstance(connector, Exception):
            raise connector
        return connector

    return factory


def make_incident(external_id="inc-1", status="investigating", severity="high", **kwargs):
    started_at = kwargs.pop("started_at", timezone.now() - timedelta(hours=1))
    return ParsedIncident(
        external_id=external_id,
        title=kwargs.pop("title", f"Incident {external_id}"),
        status=status,
        severity=severity,
        started_at=started_at,
        **kwargs,
    )


def make_update(incident_id="inc-1", external_id="u1", status="investigating", message="Looking"):
    return ParsedIncidentUpdate(
        incident_external_id=incident_id,
        new_status=status,
        timestamp=timezone.now(),
        message=message,
        external_id=external_id,
    )


def make_component(external_id="c1", status="operational"):
    return ParsedComponent(external_id=external_id, name=f"Component {external_id}", status=status)


def add_source(store, name, connector_type="statuspage", **kwargs):
    kwargs.setdefault("base_url", "https://status.example.com")
    return store.add_data_source(DataSource(name=name, connector_type=connector_type, **kwargs))


WAIT = 5.0


def wait_until(predicate, timeout=WAIT):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class BlockingOrchestrator:
    """sync_all() blocks until released, so tests control run overlap."""

    def __init__(self):
        self.started = threading.Event()
        self.release = threading.Event()
        self.calls = 0
        self.single_calls = []

    def sync_all(self):
        self.calls += 1
        self.started.set()
        self.release.wait(WAIT)
        return MagicMock(name="SyncRunResult")

    def sync_one(self, data_source_id):
        self.single_calls.append(data_source_id)
        return MagicMock(name="SourceSyncOutcome")
