"""
Azure Status connector.

GET {base_url}/api/v2/status.json returns:
{
    "issues": [
        {
            "id": "...",
            "title": "...",
            "status": "Active|Resolved|Information",
            "severity": "Error|Warning|Information",
            "summary": "...",
            "startTime": "...",
            "endTime": null,
            "lastUpdateTime": "...",
            "impactedServices": ["..."],
            "impactedRegions": ["..."]
        }
    ],
    "services": [
        {"id": "...", "name": "...", "status": "...", "category": "...", "description": "..."}
    ]
}

Both lists may be absent when Azure has nothing to report. Incidents and
components come from the same document, so a connector fetches it once and
reuses it; the orchestrator builds a fresh connector for every sync run.
"""

import logging
from typing import Any

from django.utils import timezone

from apps.incidents.connectors.base import (
    BaseConnector,
    ParsedComponent,
    ParsedIncident,
    ParsedIncidentUpdate,
    PayloadError,
)

logger = logging.getLogger(__name__)

STATUS_MAP = {
    "active": "investigating",
    "resolved": "resolved",
    "information": "monitoring",
}

SEVERITY_MAP = {
    "error": "critical",
    "warning": "high",
    "information": "medium",
}

STATUS_PATH = "/api/v2/status.json"


class AzureStatusConnector(BaseConnector):
    """Connector for the Azure status feed."""

    name = "azure-status"
    default_base_url = "https://status.azure.com"

    def __init__(self, data_source):
        super().__init__(data_source)
        self._status_document = None

    def fetch_incidents(self) -> list[ParsedIncident]:
        issues = self._optional_list(self._fetch_status(), "issues")
        return [self._parse_issue(raw) for raw in issues]

    def fetch_components(self) -> list[ParsedComponent]:
        services = self._optional_list(self._fetch_status(), "services")
        return [self._parse_service(raw, position) for position, raw in enumerate(services)]

    def fetch_incident_updates(self, incident_id: str) -> list[ParsedIncidentUpdate]:
        # The public feed has no per-incident timeline.
        return []

    def map_status(self, raw: str | None) -> str:
        return self._lookup(STATUS_MAP, raw, "investigating")

    def map_severity(self, raw: str | None) -> str:
        return self._lookup(SEVERITY_MAP, raw, "medium")

    def _fetch_status(self) -> Any:
        if self._status_document is None:
            self._status_document = self._request_json(STATUS_PATH)
        return self._status_document

    def _optional_list(self, data: Any, key: str) -> list[Any]:
        data = self._require_dict(data, "response")
        if key not in data or data[key] is None:
            logger.debug(f"{self.name}: response has no '{key}', treating as empty")
            return []
        value = data[key]
        if not isinstance(value, list):
            raise PayloadError(f"{self.name}: '{key}' must be a list")
        return value

    def _parse_issue(self, raw: Any) -> ParsedIncident:
        external_id = self._require_id(raw, "issue")
        raw_status = self._optional_str(raw, "status", "issue")
        raw_severity = self._optional_str(raw, "severity", "issue")

        updated_at = self._parse_timestamp(raw.get("lastUpdateTime"))
        started_at = self._parse_timestamp(raw.get("startTime")) or updated_at or timezone.now()

        return ParsedIncident(
            external_id=external_id,
            title=raw.get("title") or "Azure service issue",
            description=raw.get("summary") or "",
            status=self.map_status(raw_status),
            severity=self.map_severity(raw_severity),
            raw_status=raw_status,
            impact=raw_severity,
            system_name="Microsoft Azure",
            started_at=started_at,
            resolved_at=self._parse_timestamp(raw.get("endTime")),
            updated_at=updated_at,
            external_url=raw.get("url") or "",
            affected_services=list(raw.get("impactedServices") or []),
            tags=["azure", raw_severity.lower(), raw_status.lower()],
            metadata={
                "source": "azure",
                "regions": list(raw.get("impactedRegions") or []),
                "tracking_id": raw.get("trackingId"),
            },
        )

    def _parse_service(self, raw: Any, position: int) -> ParsedComponent:
        external_id = self._require_id(raw, "service")
        return ParsedComponent(
            external_id=external_id,
            name=raw.get("name") or external_id,
            description=raw.get("description") or "",
            status=(self._optional_str(raw, "status", "service") or "operational").lower(),
            group=raw.get("category") or "Azure Services",
            position=position,
            metadata={"source": "azure", "regions": list(raw.get("regions") or [])},
        )
