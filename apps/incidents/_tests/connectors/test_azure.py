from unittest.mock import patch

from django.test import SimpleTestCase

from apps.incidents.connectors import AzureStatusConnector, PayloadError
from apps.incidents._tests.connectors.helpers import (
    URLOPEN,
    make_data_source,
    mock_response,
    requested_urls,
)

STATUS_PAYLOAD = {
    "issues": [
        {
            "id": "az-1",
            "title": "Virtual Machines - West Europe",
            "status": "Active",
            "severity": "Error",
            "summary": "Customers may experience failures starting VMs.",
            "startTime": "2024-03-01T08:00:00Z",
            "lastUpdateTime": "2024-03-01T09:00:00Z",
            "impactedServices": ["Virtual Machines"],
            "impactedRegions": ["West Europe"],
        },
        {
            "id": "az-2",
            "title": "Storage advisory",
            "status": "Information",
            "severity": "Warning",
            "startTime": "2024-03-01T07:00:00Z",
        },
    ],
    "services": [
        {"id": "vm", "name": "Virtual Machines", "status": "Degraded", "category": "Compute"},
        {"id": "st", "name": "Storage", "status": "Good"},
    ],
}


class AzureStatusConnectorTests(SimpleTestCase):
    """Tests for the Azure Status connector."""

    def setUp(self):
        self.connector = AzureStatusConnector(
            make_data_source(connector_type="azure-status", base_url="")
        )

    @patch(URLOPEN)
    def test_fetch_incidents(self, mock_urlopen):
        mock_urlopen.return_value = mock_response(STATUS_PAYLOAD)

        active, info = self.connector.fetch_incidents()

        self.assertEqual(
            requested_urls(mock_urlopen), ["https://status.azure.com/api/v2/status.json"]
        )
        self.assertEqual(active.status, "investigating")
        self.assertEqual(active.severity, "critical")
        self.assertEqual(active.system_name, "Microsoft Azure")
        self.assertEqual(active.description, "Customers may experience failures starting VMs.")
        self.assertEqual(active.affected_services, ["Virtual Machines"])
        self.assertEqual(active.metadata["regions"], ["West Europe"])
        self.assertEqual(active.tags, ["azure", "error", "active"])
        self.assertEqual(info.status, "monitoring")
        self.assertEqual(info.severity, "high")

    @patch(URLOPEN)
    def test_fetch_components(self, mock_urlopen):
        mock_urlopen.return_value = mock_response(STATUS_PAYLOAD)

        vm, storage = self.connector.fetch_components()

        self.assertEqual(vm.group, "Compute")
        self.assertEqual(vm.status, "degraded")
        self.assertEqual(vm.position, 0)
        self.assertEqual(storage.group, "Azure Services")
        self.assertEqual(storage.position, 1)

    @patch(URLOPEN)
    def test_missing_lists_are_empty(self, mock_urlopen):
        mock_urlopen.return_value = mock_response({})

        self.assertEqual(self.connector.fetch_incidents(), [])
        self.assertEqual(self.connector.fetch_components(), [])

    @patch(URLOPEN)
    def test_non_list_issues_is_payload_error(self, mock_urlopen):
        mock_urlopen.return_value = mock_response({"issues": {"id": "x"}})

        with self.assertRaises(PayloadError):
            self.connector.fetch_incidents()

    @patch(URLOPEN)
    def test_fetch_incident_updates_makes_no_request(self, mock_urlopen):
        self.assertEqual(self.connector.fetch_incident_updates("az-1"), [])
        mock_urlopen.assert_not_called()

    def test_mappings_are_total_and_case_insensitive(self):
        self.assertEqual(self.connector.map_status("RESOLVED"), "resolved")
        self.assertEqual(self.connector.map_status("Mitigated"), "investigating")
        self.assertEqual(self.connector.map_severity("information"), "medium")
        self.assertEqual(self.connector.map_severity("Sev0"), "medium")

    @patch(URLOPEN)
    def test_one_request_per_sync(self, mock_urlopen):
        mock_urlopen.return_value = mock_response(STATUS_PAYLOAD)

        self.connector.fetch_incidents()
        self.connector.fetch_components()

        self.assertEqual(mock_urlopen.call_count, 1)

    @patch(URLOPEN)
    def test_fresh_connector_fetches_again(self, mock_urlopen):
        mock_urlopen.return_value = mock_response(STATUS_PAYLOAD)
        data_source = make_data_source(connector_type="azure-status", base_url="")

        AzureStatusConnector(data_source).fetch_incidents()
        AzureStatusConnector(data_source).fetch_incidents()

        self.assertEqual(mock_urlopen.call_count, 2)

    @patch(URLOPEN)
    def test_non_string_fields_are_payload_errors(self, mock_urlopen):
        cases = [
            ("issues", {"id": "az-1", "status": 3}),
            ("issues", {"id": "az-1", "severity": ["Error"]}),
            ("services", {"id": "vm", "status": {"code": 1}}),
        ]
        for key, item in cases:
            with self.subTest(item=item):
                mock_urlopen.return_value = mock_response({key: [item]})
                connector = AzureStatusConnector(
                    make_data_source(connector_type="azure-status", base_url="")
                )
                fetch = connector.fetch_incidents if key == "issues" else connector.fetch_components

                with self.assertRaises(PayloadError):
                    fetch()
