"""
StatusPage.io connector.

Reads the public Statuspage v2 API exposed by most hosted status pages.
See: https://metastatuspage.com/api
"""

import urllib.parse
from typing import Any

from django.utils import timezone

from apps.incidents.connectors.base import (
    BaseConnector,
    ParsedComponent,
    ParsedIncident,
    ParsedIncidentUpdate,
    PayloadError,
)

STATUS_MAP = {
    "investigating": "investigating",
    "identified": "identified",
    "monitoring": "monitoring",
    "resolved": "resolved",
    "postmortem": "resolved",
}

SEVERITY_MAP = {
    "critical": "critical",
    "major": "high",
    "minor": "medium",
    "none": "low",
}


class StatusPageConnector(BaseConnector):
    """
    Connector for Statuspage v2 APIs.

    GET {base_url}/api/v2/incidents.json returns:
    {
        "page": {...},
        "incidents": [
            {
                "id": "...",
                "name": "...",
                "status": "investigating|identified|monitoring|resolved|postmortem",
                "impact": "none|minor|major|critical",
                "created_at": "...",
                "updated_at": "...",
                "resolved_at": null,
                "shortlink": "...",
                "components": [{"id": "...", "name": "..."}],
                "incident_updates": [{"id": "...", "status": "...", "body": "...", "created_at": "..."}]
            }
        ]
    }
    """

    name = "statuspage"
    source_tag = "statuspage"

    def fetch_incidents(self) -> list[ParsedIncident]:
        data = self._request_json("/api/v2/incidents.json")
        return [self._parse_incident(raw) for raw in self._require_list(data, "incidents")]

    def fetch_components(self) -> list[ParsedComponent]:
        data = self._request_json("/api/v2/components.json")
        return [self._parse_component(raw) for raw in self._require_list(data, "components")]

    def fetch_incident_updates(self, incident_id: str) -> list[ParsedIncidentUpdate]:
        quoted = urllib.parse.quote(str(incident_id), safe="")
        data = self._require_dict(self._request_json(f"/api/v2/incidents/{quoted}.json"), "response")
        incident = self._require_dict(data.get("incident"), "incident")
        fallback = self._parse_timestamp(incident.get("updated_at")) or timezone.now()
        return self._parse_updates(str(incident_id), incident.get("incident_updates"), fallback)

    def map_status(self, raw: str | None) -> str:
        return self._lookup(STATUS_MAP, raw, "investigating")

    def map_severity(self, raw: str | None) -> str:
        return self._lookup(SEVERITY_MAP, raw, "medium")

    # --- Hooks specialised by pages that speak the same API ---

    def _system_name(self, raw: dict[str, Any]) -> str:
        return raw.get("name") or "StatusPage Incident"

    def _incident_tags(self, raw: dict[str, Any]) -> list[str]:
        return [raw.get("impact"), raw.get("status")]

    def _incident_metadata(self, raw: dict[str, Any]) -> dict[str, Any]:
        return {
            "source": self.source_tag,
            "monitoring_at": raw.get("monitoring_at"),
            "resolving_at": raw.get("resolving_at"),
            "component_ids": raw.get("component_ids") or [],
        }

    def _component_group(self, raw: dict[str, Any]) -> str:
        return str(raw.get("group_id") or "")

    def _component_metadata(self, raw: dict[str, Any]) -> dict[str, Any]:
        return {
            "source": self.source_tag,
            "is_group": bool(raw.get("group")),
            "only_show_if_degraded": raw.get("only_show_if_degraded"),
        }

    # --- Parsing ---

    def _parse_incident(self, raw: Any) -> ParsedIncident:
        external_id = self._require_id(raw, "incident")
        raw_status = self._optional_str(raw, "status", "incident")
        impact = self._optional_str(raw, "impact", "incident")

        updated_at = self._parse_timestamp(raw.get("updated_at"))
        started_at = self._parse_timestamp(raw.get("created_at")) or updated_at or timezone.now()

        updates = self._parse_updates(
            external_id, raw.get("incident_updates"), updated_at or started_at
        )
        # Statuspage lists updates newest first.
        description = updates[0].message if updates else ""

        components = raw.get("components") or []
        affected = [c.get("name") for c in components if isinstance(c, dict) and c.get("name")]

        return ParsedIncident(
            external_id=external_id,
            title=raw.get("name") or "Untitled incident",
            status=self.map_status(raw_status),
            severity=self.map_severity(impact),
            raw_status=raw_status,
            impact=impact,
            system_name=self._system_name(raw),
            description=description,
            started_at=started_at,
            resolved_at=self._parse_timestamp(raw.get("resolved_at")),
            updated_at=updated_at,
            external_url=raw.get("shortlink") or "",
            affected_services=affected,
            tags=self._incident_tags(raw),
            metadata=self._incident_metadata(raw),
            updates=updates,
        )

    def _parse_updates(
        self, incident_external_id: str, raw_updates: Any, fallback_time
    ) -> list[ParsedIncidentUpdate]:
        if raw_updates is None:
            return []
        if not isinstance(raw_updates, list):
            raise PayloadError(f"{self.name}: incident_updates must be a list")

        updates = []
        for raw in raw_updates:
            raw = self._require_dict(raw, "incident update")
            raw_status = self._optional_str(raw, "status", "incident update")
            updates.append(
                ParsedIncidentUpdate(
                    incident_external_id=incident_external_id,
                    external_id=raw.get("id") or "",
                    new_status=self.map_status(raw_status),
                    message=raw.get("body") or "",
                    timestamp=self._parse_timestamp(raw.get("created_at")) or fallback_time,
                    metadata={
                        "source": self.source_tag,
                        "vendor_status": raw_status,
                        "display_at": raw.get("display_at"),
                    },
                )
            )
        return updates

    def _parse_component(self, raw: Any) -> ParsedComponent:
        external_id = self._require_id(raw, "component")
        return ParsedComponent(
            external_id=external_id,
            name=raw.get("name") or external_id,
            description=raw.get("description") or "",
            status=self._optional_str(raw, "status", "component") or "operational",
            group=self._component_group(raw),
            position=raw.get("position") or 0,
            show_uptime=bool(raw.get("showcase")),
            metadata=self._component_metadata(raw),
        )

