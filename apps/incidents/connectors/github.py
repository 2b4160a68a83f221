"""
GitHub Status connector.

githubstatus.com is a hosted Statuspage, so this reuses StatusPageConnector and
only changes how incidents and components are labelled.
"""

from typing import Any

from apps.incidents.connectors.statuspage import StatusPageConnector


class GitHubStatusConnector(StatusPageConnector):
    """Connector for https://www.githubstatus.com."""

    name = "github-status"
    source_tag = "github"
    default_base_url = "https://www.githubstatus.com"

    def _system_name(self, raw: dict[str, Any]) -> str:
        return "GitHub"

    def _incident_tags(self, raw: dict[str, Any]) -> list[str]:
        return ["github", raw.get("impact"), raw.get("status")]

    def _incident_metadata(self, raw: dict[str, Any]) -> dict[str, Any]:
        metadata = super()._incident_metadata(raw)
        metadata["page_id"] = raw.get("page_id")
        return metadata

    def _component_group(self, raw: dict[str, Any]) -> str:
        return "GitHub Services"
