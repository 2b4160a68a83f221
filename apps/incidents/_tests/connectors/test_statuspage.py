from datetime import datetime, timezone as dt_tz
from unittest.mock import patch

from django.test import SimpleTestCase

from apps.incidents.connectors import PayloadError, StatusPageConnector
from apps.incidents._tests.connectors.helpers import (
    URLOPEN,
    make_data_source,
    mock_response,
    requested_urls,
)

INCIDENTS_PAYLOAD = {
    "page": {"id": "abc", "name": "Example"},
    "incidents": [
        {
            "id": "inc-1",
            "name": "Elevated API error rates",
            "status": "monitoring",
            "impact": "major",
            "created_at": "2024-03-01T10:00:00.000Z",
            "updated_at": "2024-03-01T11:30:00.000Z",
            "monitoring_at": "2024-03-01T11:30:00.000Z",
            "resolved_at": None,
            "shortlink": "https://stspg.io/inc-1",
            "component_ids": ["c1"],
            "components": [{"id": "c1", "name": "API"}, {"id": "c2", "name": "Webhooks"}],
            "incident_updates": [
                {
                    "id": "u2",
                    "status": "monitoring",
                    "body": "A fix has been deployed.",
                    "created_at": "2024-03-01T11:30:00.000Z",
                },
                {
                    "id": "u1",
                    "status": "investigating",
                    "body": "We are investigating elevated errors.",
                    "created_at": "2024-03-01T10:00:00.000Z",
                },
            ],
        },
        {
            "id": "inc-2",
            "name": "Past outage",
            "status": "postmortem",
            "impact": "critical",
            "created_at": "2024-02-01T10:00:00Z",
            "resolved_at": "2024-02-01T12:00:00Z",
            "incident_updates": [],
        },
    ],
}

COMPONENTS_PAYLOAD = {
    "components": [
        {
            "id": "c1",
            "name": "API",
            "status": "degraded_performance",
            "description": None,
            "group_id": "g1",
            "position": 2,
            "showcase": True,
        },
        {"id": "c2", "name": "Webhooks", "status": "operational", "position": 1},
    ]
}


class StatusPageConnectorTests(SimpleTestCase):
    """Tests for the Statuspage v2 connector."""

    def setUp(self):
        self.connector = StatusPageConnector(make_data_source())

    @patch(URLOPEN)
    def test_fetch_incidents_maps_monitoring_major(self, mock_urlopen):
        mock_urlopen.return_value = mock_response(INCIDENTS_PAYLOAD)

        incidents = self.connector.fetch_incidents()

        self.assertEqual(
            requested_urls(mock_urlopen), ["https://status.example.com/api/v2/incidents.json"]
        )
        incident = incidents[0]
        self.assertEqual(incident.external_id, "inc-1")
        self.assertEqual(incident.status, "monitoring")
        self.assertEqual(incident.severity, "high")
        self.assertEqual(incident.impact, "major")
        self.assertEqual(incident.title, "Elevated API error rates")
        self.assertEqual(incident.description, "A fix has been deployed.")
        self.assertEqual(incident.external_url, "https://stspg.io/inc-1")
        self.assertEqual(incident.affected_services, ["API", "Webhooks"])
        self.assertEqual(incident.tags, ["major", "monitoring"])
        self.assertEqual(incident.started_at, datetime(2024, 3, 1, 10, 0, tzinfo=dt_tz.utc))
        self.assertIsNone(incident.resolved_at)
        self.assertEqual(incident.metadata["source"], "statuspage")
        self.assertEqual(incident.metadata["component_ids"], ["c1"])

    @patch(URLOPEN)
    def test_fetch_incidents_extracts_update_timeline(self, mock_urlopen):
        mock_urlopen.return_value = mock_response(INCIDENTS_PAYLOAD)

        updates = self.connector.fetch_incidents()[0].updates

        self.assertEqual([u.external_id for u in updates], ["u2", "u1"])
        self.assertEqual(updates[1].new_status, "investigating")
        self.assertEqual(updates[1].incident_external_id, "inc-1")

    @patch(URLOPEN)
    def test_postmortem_maps_to_resolved(self, mock_urlopen):
        mock_urlopen.return_value = mock_response(INCIDENTS_PAYLOAD)

        incident = self.connector.fetch_incidents()[1]

        self.assertEqual(incident.status, "resolved")
        self.assertEqual(incident.severity, "critical")
        self.assertEqual(incident.description, "")
        self.assertIsNotNone(incident.resolved_at)
        self.assertEqual(incident.to_fields()["metadata"]["vendor_status"], "postmortem")

    @patch(URLOPEN)
    def test_fetch_components(self, mock_urlopen):
        mock_urlopen.return_value = mock_response(COMPONENTS_PAYLOAD)

        components = self.connector.fetch_components()

        self.assertEqual(
            requested_urls(mock_urlopen), ["https://status.example.com/api/v2/components.json"]
        )
        api, webhooks = components
        self.assertEqual(api.name, "API")
        self.assertEqual(api.status, "degraded_performance")
        self.assertEqual(api.description, "")
        self.assertEqual(api.group, "g1")
        self.assertEqual(api.position, 2)
        self.assertTrue(api.show_uptime)
        self.assertTrue(api.is_degraded)
        self.assertEqual(webhooks.group, "")
        self.assertFalse(webhooks.is_degraded)

    @patch(URLOPEN)
    def test_fetch_incident_updates_uses_detail_endpoint(self, mock_urlopen):
        mock_urlopen.return_value = mock_response({"incident": INCIDENTS_PAYLOAD["incidents"][0]})

        updates = self.connector.fetch_incident_updates("inc-1")

        self.assertEqual(
            requested_urls(mock_urlopen), ["https://status.example.com/api/v2/incidents/inc-1.json"]
        )
        self.assertEqual(len(updates), 2)
        self.assertEqual(updates[0].message, "A fix has been deployed.")

    @patch(URLOPEN)
    def test_missing_incidents_key_is_payload_error(self, mock_urlopen):
        mock_urlopen.return_value = mock_response({"page": {}})

        with self.assertRaises(PayloadError):
            self.connector.fetch_incidents()

    @patch(URLOPEN)
    def test_incident_without_id_is_payload_error(self, mock_urlopen):
        mock_urlopen.return_value = mock_response({"incidents": [{"name": "no id"}]})

        with self.assertRaises(PayloadError):
            self.connector.fetch_incidents()

    @patch(URLOPEN)
    def test_bad_update_list_is_payload_error(self, mock_urlopen):
        mock_urlopen.return_value = mock_response(
            {"incidents": [{"id": "x", "name": "x", "incident_updates": "nope"}]}
        )

        with self.assertRaises(PayloadError):
            self.connector.fetch_incidents()

    @patch(URLOPEN)
    def test_non_string_status_or_impact_is_payload_error(self, mock_urlopen):
        incidents = [
            {"id": "a", "name": "a", "status": 3},
            {"id": "a", "name": "a", "impact": {"level": "major"}},
            {"id": "a", "name": "a", "incident_updates": [{"id": "u", "status": 1}]},
        ]
        for raw in incidents:
            with self.subTest(raw=raw):
                mock_urlopen.return_value = mock_response({"incidents": [raw]})

                with self.assertRaises(PayloadError):
                    self.connector.fetch_incidents()

    @patch(URLOPEN)
    def test_non_string_component_status_is_payload_error(self, mock_urlopen):
        mock_urlopen.return_value = mock_response({"components": [{"id": "c", "status": 2}]})

        with self.assertRaises(PayloadError):
            self.connector.fetch_components()

    @patch(URLOPEN)
    def test_missing_timestamps_fall_back(self, mock_urlopen):
        mock_urlopen.return_value = mock_response(
            {"incidents": [{"id": "x", "name": "x", "created_at": "garbage"}]}
        )

        incident = self.connector.fetch_incidents()[0]

        self.assertIsNotNone(incident.started_at)
        self.assertIsNone(incident.updated_at)

    def test_status_mapping_is_total(self):
        cases = {
            "investigating": "investigating",
            "identified": "identified",
            "monitoring": "monitoring",
            "resolved": "resolved",
            "postmortem": "resolved",
            "Monitoring": "monitoring",
            "scheduled": "investigating",
            "": "investigating",
            None: "investigating",
        }
        for raw, expected in cases.items():
            with self.subTest(raw=raw):
                self.assertEqual(self.connector.map_status(raw), expected)

    def test_severity_mapping_is_total(self):
        cases = {
            "critical": "critical",
            "major": "high",
            "minor": "medium",
            "none": "low",
            "MAJOR": "high",
            "maintenance": "medium",
            None: "medium",
        }
        for raw, expected in cases.items():
            with self.subTest(raw=raw):
                self.assertEqual(self.connector.map_severity(raw), expected)
