from datetime import timedelta
from unittest.mock import MagicMock, patch

from django.test import SimpleTestCase, TestCase
from django.utils import timezone

from apps.incidents.connectors import (
    ConnectorHTTPError,
    ConnectorNetworkError,
    ConnectorTimeoutError,
    PayloadError,
    UnsupportedConnectorError,
    create_connector,
)
from apps.incidents.models import DataSource, Incident, IncidentMetric, IncidentUpdate
from apps.incidents.store import DatabaseStore, MemoryStore, StoreUnavailableError
from apps.sync.events import EventBroadcaster
from apps.sync.orchestrator import SyncOrchestrator, build_daily_metric, classify_error
from apps.sync._tests.fakes import (
    FakeConnector,
    add_source,
    connector_factory,
    make_component,
    make_incident,
    make_update,
)


class SyncOrchestratorTests(SimpleTestCase):
    """sync_all() against the in-memory store."""

    def setUp(self):
        self.store = MemoryStore()
        self.broadcaster = EventBroadcaster()
        self.events = []
        self.broadcaster.subscribe(self.events.append)

    def _orchestrator(self, connectors, **kwargs):
        return SyncOrchestrator(
            self.store,
            self.broadcaster,
            connector_factory=connector_factory(connectors),
            **kwargs,
        )

    def test_failing_source_does_not_affect_others(self):
        broken = add_source(self.store, "Broken")
        healthy = add_source(self.store, "Healthy")
        orchestrator = self._orchestrator(
            {
                "Broken": FakeConnector(error=ConnectorNetworkError("connection refused")),
                "Healthy": FakeConnector(
                    incidents=[make_incident("a"), make_incident("b")],
                    components=[make_component()],
                ),
            }
        )

        result = orchestrator.sync_all()

        self.assertEqual(result.succeeded, 1)
        self.assertEqual(result.failed, 1)
        self.assertFalse(result.aborted)
        self.assertEqual(
            sorted(i.external_id for i in self.store.list_active_incidents()), ["a", "b"]
        )
        self.assertEqual(len(self.store.list_components(healthy.pk)), 1)
        self.assertEqual(broken.retry_count, 1)
        self.assertEqual(broken.last_error, "connection refused")
        self.assertEqual(broken.last_error_kind, "network")
        self.assertEqual(healthy.retry_count, 0)
        self.assertIsNone(healthy.last_error)
        self.assertIsNotNone(healthy.last_sync_at)

    def test_unknown_connector_type_is_recorded_and_others_proceed(self):
        bogus = add_source(self.store, "Bogus", connector_type="pagerduty-status")
        add_source(self.store, "Healthy")
        healthy_connector = FakeConnector(incidents=[make_incident()])

        def factory(data_source):
            if data_source.name == "Bogus":
                return create_connector(data_source)
            return healthy_connector

        orchestrator = SyncOrchestrator(self.store, self.broadcaster, connector_factory=factory)
        with patch("apps.incidents.connectors.base.urllib.request.urlopen") as mock_urlopen:
            result = orchestrator.sync_all()

        mock_urlopen.assert_not_called()
        bogus_outcome = result.outcomes[0]
        self.assertFalse(bogus_outcome.success)
        self.assertEqual(bogus_outcome.stage, "connect")
        self.assertEqual(bogus_outcome.error_kind, "configuration")
        self.assertIn("pagerduty-status", bogus.last_error)
        self.assertEqual(bogus.retry_count, 1)
        self.assertTrue(result.outcomes[1].success)
        self.assertEqual(len(self.store.list_active_incidents()), 1)

    def test_resync_is_idempotent(self):
        add_source(self.store, "Example")
        connector = FakeConnector(incidents=[make_incident("a")], components=[make_component()])
        orchestrator = self._orchestrator({"Example": connector})

        first = orchestrator.sync_all().outcomes[0]
        second = orchestrator.sync_all().outcomes[0]

        self.assertEqual((first.incidents_created, first.incidents_updated), (1, 0))
        self.assertEqual((second.incidents_created, second.incidents_updated), (0, 1))
        self.assertEqual(len(self.store.list_active_incidents()), 1)
        self.assertEqual(len(self.store.list_components()), 1)
        self.assertEqual(len(self.store.list_metrics()), 1)

    def test_status_change_updates_existing_incident(self):
        add_source(self.store, "Example")
        connector = FakeConnector(incidents=[make_incident("a")])
        orchestrator = self._orchestrator({"Example": connector})
        orchestrator.sync_all()

        connector.incidents = [make_incident("a", status="resolved")]
        orchestrator.sync_all()

        self.assertEqual(self.store.list_active_incidents(), [])
        resolved = self.store.list_incidents_by_status("resolved")
        self.assertEqual(len(resolved), 1)
        self.assertIsNotNone(resolved[0].resolved_at)

    def test_retry_count_accumulates_then_resets(self):
        source = add_source(self.store, "Flaky")
        connector = FakeConnector(error=ConnectorTimeoutError("timed out"))
        orchestrator = self._orchestrator({"Flaky": connector})

        orchestrator.sync_all()
        orchestrator.sync_all()
        self.assertEqual(source.retry_count, 2)
        self.assertEqual(source.last_error_kind, "timeout")

        connector.error = None
        orchestrator.sync_all()
        self.assertEqual(source.retry_count, 0)
        self.assertIsNone(source.last_error)
        self.assertEqual(source.last_error_kind, "")

    def test_failure_at_components_stage_is_reported(self):
        source = add_source(self.store, "Example")
        orchestrator = self._orchestrator(
            {
                "Example": FakeConnector(
                    incidents=[make_incident()],
                    error=PayloadError("components: expected a list"),
                    fail_at="fetch_components",
                )
            }
        )

        outcome = orchestrator.sync_all().outcomes[0]

        self.assertEqual(outcome.stage, "fetch_components")
        self.assertEqual(outcome.error_kind, "parse")
        self.assertEqual(source.retry_count, 1)

    def test_persistent_failure_logs_error(self):
        source = add_source(self.store, "Dead")
        source.retry_count = 2
        orchestrator = self._orchestrator(
            {"Dead": FakeConnector(error=ConnectorHTTPError("https://x", 500))},
            retry_alert_threshold=3,
        )

        with self.assertLogs("apps.sync.orchestrator", level="ERROR") as logs:
            orchestrator.sync_all()

        self.assertEqual(source.retry_count, 3)
        self.assertIn("failing for 3 consecutive runs", logs.output[0])

    def test_inactive_sources_are_skipped(self):
        add_source(self.store, "Disabled", is_active=False)
        orchestrator = self._orchestrator({})

        result = orchestrator.sync_all()

        self.assertEqual(result.outcomes, [])

    def test_store_unavailable_aborts_run(self):
        first = add_source(self.store, "First")
        add_source(self.store, "Second")
        second_connector = FakeConnector(incidents=[make_incident("b")])
        orchestrator = self._orchestrator(
            {"First": FakeConnector(incidents=[make_incident("a")]), "Second": second_connector}
        )

        with patch.object(
            self.store, "upsert_incident", side_effect=StoreUnavailableError("database is locked")
        ):
            result = orchestrator.sync_all()

        self.assertTrue(result.aborted)
        self.assertEqual(result.abort_reason, "database is locked")
        self.assertEqual(result.outcomes, [])
        self.assertEqual(first.retry_count, 0)
        self.assertEqual(self.events[-1].kind, "sync_completed")
        self.assertTrue(self.events[-1].payload["aborted"])

    def test_updates_appended_once(self):
        add_source(self.store, "Example")
        incident = make_incident(
            "a", updates=[make_update("a", "u1"), make_update("a", "u2", status="identified")]
        )
        orchestrator = self._orchestrator({"Example": FakeConnector(incidents=[incident])})

        first = orchestrator.sync_all().outcomes[0]
        second = orchestrator.sync_all().outcomes[0]

        self.assertEqual(first.updates_added, 2)
        self.assertEqual(second.updates_added, 0)
        stored = self.store.list_active_incidents()[0]
        self.assertEqual(len(self.store.list_incident_updates(stored)), 2)

    def test_daily_metric_written(self):
        source = add_source(self.store, "Example")
        orchestrator = self._orchestrator(
            {
                "Example": FakeConnector(
                    incidents=[make_incident("a", severity="critical"), make_incident("b")],
                    components=[make_component("c1", "major_outage"), make_component("c2")],
                )
            }
        )

        orchestrator.sync_all()

        metric = self.store.list_metrics()[0]
        self.assertEqual(metric.data_source_id, source.pk)
        self.assertEqual(metric.date, timezone.localdate())
        self.assertEqual(metric.total_incidents, 2)
        self.assertEqual(metric.critical_incidents, 1)
        self.assertEqual(metric.high_incidents, 1)
        self.assertEqual(metric.degraded_components, 1)

    def test_events_published_for_run(self):
        add_source(self.store, "Broken")
        add_source(self.store, "Healthy")
        orchestrator = self._orchestrator(
            {
                "Broken": UnsupportedConnectorError("bogus", ["statuspage"]),
                "Healthy": FakeConnector(incidents=[make_incident()]),
            }
        )

        orchestrator.sync_all()

        kinds = [event.kind for event in self.events]
        self.assertEqual(
            kinds, ["sync_started", "data_source_sync", "data_source_sync", "sync_completed"]
        )
        broken, healthy = self.events[1].payload, self.events[2].payload
        self.assertEqual(broken["status"], "error")
        self.assertEqual(broken["errorKind"], "configuration")
        self.assertEqual(healthy["status"], "success")
        self.assertEqual(healthy["incidentsSynced"], 1)
        self.assertEqual(self.events[3].payload["failed"], 1)

    def test_broken_subscriber_does_not_break_run(self):
        add_source(self.store, "Example")
        self.broadcaster.subscribe(MagicMock(side_effect=ConnectionResetError("gone")))
        orchestrator = self._orchestrator({"Example": FakeConnector(incidents=[make_incident()])})

        result = orchestrator.sync_all()

        self.assertEqual(result.succeeded, 1)
        self.assertEqual(self.broadcaster.subscriber_count, 1)

    def test_sync_one_emits_system_sync(self):
        source = add_source(self.store, "Example")
        add_source(self.store, "Other")
        orchestrator = self._orchestrator(
            {"Example": FakeConnector(incidents=[make_incident()]), "Other": FakeConnector()}
        )

        outcome = orchestrator.sync_one(source.pk)

        self.assertTrue(outcome.success)
        self.assertEqual(
            [event.kind for event in self.events], ["data_source_sync", "system_sync"]
        )
        self.assertEqual(self.events[-1].payload["systemId"], source.pk)

    def test_sync_one_unknown_or_inactive(self):
        inactive = add_source(self.store, "Disabled", is_active=False)
        orchestrator = self._orchestrator({})

        self.assertIsNone(orchestrator.sync_one(12345))
        self.assertIsNone(orchestrator.sync_one(inactive.pk))
        self.assertEqual(self.events, [])

    def test_refresh_incident_updates_appends_unseen_entries(self):
        source = add_source(self.store, "Example")
        incident, _ = self.store.upsert_incident(source, make_incident("inc-1"))
        self.store.append_incident_updates(incident, [make_update(external_id="u1")])
        connector = FakeConnector(
            timeline={
                "inc-1": [
                    make_update(external_id="u1"),
                    make_update(external_id="u2", status="resolved", message="Fixed"),
                ]
            }
        )
        orchestrator = self._orchestrator({"Example": connector})

        self.assertEqual(orchestrator.refresh_incident_updates(incident.pk), 1)
        self.assertEqual(orchestrator.refresh_incident_updates(incident.pk), 0)

        timeline = self.store.list_incident_updates(incident)
        self.assertEqual(sorted(u.external_id for u in timeline), ["u1", "u2"])
        self.assertEqual(self.events, [])

    def test_refresh_incident_updates_unknown_incident(self):
        orchestrator = self._orchestrator({})

        with self.assertLogs("apps.sync.orchestrator", level="WARNING"):
            self.assertIsNone(orchestrator.refresh_incident_updates(999))

    def test_refresh_incident_updates_propagates_connector_errors(self):
        source = add_source(self.store, "Example")
        incident, _ = self.store.upsert_incident(source, make_incident("inc-1"))
        connector = FakeConnector(
            error=ConnectorNetworkError("refused"), fail_at="fetch_incident_updates"
        )
        orchestrator = self._orchestrator({"Example": connector})

        with self.assertRaises(ConnectorNetworkError):
            orchestrator.refresh_incident_updates(incident.pk)
        self.assertEqual(self.store.get_data_source(source.pk).retry_count, 0)


class SyncOrchestratorDatabaseTests(TestCase):
    """sync_all() end to end against the database store."""

    def test_two_runs_leave_one_row_per_key(self):
        DataSource.objects.create(
            name="Example", connector_type="statuspage", base_url="https://status.example.com"
        )
        connector = FakeConnector(
            incidents=[make_incident("a", updates=[make_update("a", "u1")])],
            components=[make_component()],
        )
        orchestrator = SyncOrchestrator(
            DatabaseStore(), connector_factory=connector_factory({"Example": connector})
        )

        orchestrator.sync_all()
        connector.incidents = [make_incident("a", status="resolved", updates=[make_update("a", "u1")])]
        orchestrator.sync_all()

        incident = Incident.objects.get()
        self.assertEqual(incident.status, "resolved")
        self.assertIsNotNone(incident.resolved_at)
        self.assertEqual(IncidentUpdate.objects.count(), 1)
        self.assertEqual(IncidentMetric.objects.count(), 1)
        source = DataSource.objects.get()
        self.assertEqual(source.retry_count, 0)
        self.assertIsNotNone(source.last_sync_at)


class ClassifyErrorTests(SimpleTestCase):
    def test_kinds(self):
        cases = [
            (ConnectorTimeoutError("t"), "timeout"),
            (ConnectorNetworkError("n"), "network"),
            (ConnectorHTTPError("https://x", 502), "http"),
            (PayloadError("p"), "parse"),
            (UnsupportedConnectorError("x", []), "configuration"),
            (TimeoutError(), "timeout"),
            (KeyError("id"), "parse"),
            (RuntimeError("?"), "unknown"),
        ]
        for exc, expected in cases:
            with self.subTest(exc=exc):
                self.assertEqual(classify_error(exc), expected)


class BuildDailyMetricTests(SimpleTestCase):
    def test_mean_time_to_resolve(self):
        start = timezone.now() - timedelta(hours=3)
        incidents = [
            make_incident("a", status="resolved", started_at=start, resolved_at=start + timedelta(minutes=30)),
            make_incident("b", status="resolved", started_at=start, resolved_at=start + timedelta(minutes=90)),
            make_incident("c"),
        ]

        metric = build_daily_metric(incidents, [])

        self.assertEqual(metric["resolved_incidents"], 2)
        self.assertEqual(metric["open_incidents"], 1)
        self.assertEqual(metric["mean_time_to_resolve_minutes"], 60.0)

    def test_empty(self):
        metric = build_daily_metric([], [])
        self.assertEqual(metric["total_incidents"], 0)
        self.assertIsNone(metric["mean_time_to_resolve_minutes"])
