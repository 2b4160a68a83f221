"""Base connector and data structures for status-page ingestion.

Connectors read one vendor's status-page API and normalize incidents, service
components and incident updates into a common internal format.

Connectors never swallow failures: HTTP errors, timeouts and malformed payloads
are raised as ConnectorError subclasses so the sync orchestrator can record
them against the data source.

Public API:
- ParsedIncident
- ParsedIncidentUpdate
- ParsedComponent
- BaseConnector
- ConnectorError and subclasses
"""

from __future__ import annotations

import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from datetime import timezone as dt_tz
from typing import TYPE_CHECKING, Any

from django.utils import timezone

if TYPE_CHECKING:
    from apps.incidents.models import DataSource

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 30
USER_AGENT = "IncidentAggregator/1.0"

CANONICAL_STATUSES = ("investigating", "identified", "monitoring", "resolved")
CANONICAL_SEVERITIES = ("critical", "high", "medium", "low")
DEFAULT_STATUS = "investigating"
DEFAULT_SEVERITY = "medium"


class ConnectorError(Exception):
    """Base class for everything a connector raises."""


class ConnectorConfigurationError(ConnectorError):
    """The data source cannot be read with its current configuration."""


class UnsupportedConnectorError(ConnectorConfigurationError):
    """No connector is registered for the data source's connector type."""

    def __init__(self, connector_type: str, available: list[str]):
        self.connector_type = connector_type
        self.available = available
        super().__init__(
            f"Unsupported connector type: {connector_type!r}. Available: {', '.join(available)}"
        )


class ConnectorNetworkError(ConnectorError):
    """The vendor API could not be reached."""


class ConnectorTimeoutError(ConnectorNetworkError):
    """The vendor API did not answer within REQUEST_TIMEOUT_SECONDS."""


class ConnectorHTTPError(ConnectorError):
    """The vendor API answered with a non-success HTTP status."""

    def __init__(self, url: str, status_code: int, body: str = ""):
        self.url = url
        self.status_code = status_code
        self.body = body
        detail = f": {body[:200]}" if body else ""
        super().__init__(f"HTTP {status_code} from {url}{detail}")


class PayloadError(ConnectorError):
    """The vendor API answered with something we cannot parse."""


@dataclass
class ParsedIncidentUpdate:
    """One entry of an incident's timeline, as reported by the vendor."""

    incident_external_id: str
    new_status: str
    timestamp: datetime

    message: str = ""
    external_id: str = ""
    update_type: str = "status_change"
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.new_status = (self.new_status or "").lower()
        if self.new_status not in CANONICAL_STATUSES:
            self.new_status = DEFAULT_STATUS
        self.external_id = str(self.external_id or "")

    def to_fields(self) -> dict[str, Any]:
        return {
            "external_id": self.external_id,
            "update_type": self.update_type,
            "new_status": self.new_status,
            "message": self.message,
            "timestamp": self.timestamp,
            "metadata": self.metadata,
        }


@dataclass
class ParsedIncident:
    """Standardized incident format that all connectors produce."""

    # Required fields
    external_id: str
    title: str
    status: str  # canonical status
    severity: str  # canonical severity
    started_at: datetime

    # Optional fields with defaults
    description: str = ""
    impact: str = ""
    system_name: str = ""
    raw_status: str = ""
    resolved_at: datetime | None = None
    updated_at: datetime | None = None
    external_url: str = ""
    affected_services: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    updates: list[ParsedIncidentUpdate] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Validate and normalize fields after initialization."""
        self.external_id = str(self.external_id)

        self.status = (self.status or "").lower()
        if self.status not in CANONICAL_STATUSES:
            self.status = DEFAULT_STATUS

        self.severity = (self.severity or "").lower()
        if self.severity not in CANONICAL_SEVERITIES:
            self.severity = DEFAULT_SEVERITY

        # Tags behave as a set; keep first-seen order for stable storage.
        self.tags = list(dict.fromkeys(str(t) for t in self.tags if t))

    def to_fields(self) -> dict[str, Any]:
        """Mutable incident fields, as handed to the store."""
        metadata = dict(self.metadata)
        if self.raw_status:
            metadata.setdefault("vendor_status", self.raw_status)
        return {
            "system_name": self.system_name,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "severity": self.severity,
            "impact": self.impact,
            "started_at": self.started_at,
            "resolved_at": self.resolved_at,
            "updated_at": self.updated_at,
            "external_url": self.external_url,
            "affected_services": list(self.affected_services),
            "tags": list(self.tags),
            "metadata": metadata,
        }


@dataclass
class ParsedComponent:
    """Standardized service component format."""

    external_id: str
    name: str

    status: str = "operational"
    description: str = ""
    group: str = ""
    position: int = 0
    show_uptime: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.external_id = str(self.external_id)
        self.status = (self.status or "operational").lower()
        self.description = self.description or ""
        self.group = self.group or ""

    @property
    def is_degraded(self) -> bool:
        return self.status != "operational"

    def to_fields(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "status": self.status,
            "group": self.group,
            "position": self.position,
            "show_uptime": self.show_uptime,
            "metadata": self.metadata,
        }


class BaseConnector(ABC):
    """Abstract base class for status-page connectors.

    A connector instance is bound to one DataSource: its base URL and
    credentials are fixed at construction time.
    """

    name: str = "base"
    default_base_url: str = ""

    def __init__(self, data_source: DataSource):
        self.data_source = data_source

    @property
    def base_url(self) -> str:
        return (self.data_source.base_url or self.default_base_url).rstrip("/")

    @abstractmethod
    def fetch_incidents(self) -> list[ParsedIncident]:
        """Fetch current incidents from the vendor."""

    @abstractmethod
    def fetch_components(self) -> list[ParsedComponent]:
        """Fetch service components from the vendor."""

    @abstractmethod
    def fetch_incident_updates(self, incident_id: str) -> list[ParsedIncidentUpdate]:
        """Fetch the update timeline for one incident (vendor incident id)."""

    @abstractmethod
    def map_status(self, raw: str | None) -> str:
        """Map a raw vendor status onto a canonical status. Never raises."""

    @abstractmethod
    def map_severity(self, raw: str | None) -> str:
        """Map a raw vendor impact/severity onto a canonical severity. Never raises."""

    # --- HTTP ---

    def _request_headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        }
        if self.data_source.api_key:
            headers["Authorization"] = f"Bearer {self.data_source.api_key}"

        extra = (self.data_source.config or {}).get("headers") or {}
        headers.update({str(k): str(v) for k, v in extra.items()})
        # The client identification header is fixed.
        headers["User-Agent"] = USER_AGENT
        return headers

    def _request_json(self, path: str) -> Any:
        """GET ``base_url + path`` and decode the JSON body.

        Raises:
            ConnectorTimeoutError: No answer within REQUEST_TIMEOUT_SECONDS.
            ConnectorNetworkError: Connection-level failure.
            ConnectorHTTPError: Non-2xx response.
            PayloadError: Body is not valid JSON.
        """
        url = f"{self.base_url}{path}"
        request = urllib.request.Request(url, headers=self._request_headers(), method="GET")

        try:
            with urllib.request.urlopen(request, timeout=REQUEST_TIMEOUT_SECONDS) as response:
                body = response.read().decode("utf-8")
        except urllib.error.HTTPError as e:
            error_body = e.read().decode("utf-8", errors="replace") if e.fp else ""
            logger.warning(f"{self.name} HTTP error {e.code} for {url}")
            raise ConnectorHTTPError(url, e.code, error_body) from e
        except urllib.error.URLError as e:
            if isinstance(e.reason, TimeoutError):
                raise ConnectorTimeoutError(
                    f"Timed out after {REQUEST_TIMEOUT_SECONDS}s requesting {url}"
                ) from e
            raise ConnectorNetworkError(f"Failed to connect to {url}: {e.reason}") from e
        except TimeoutError as e:
            raise ConnectorTimeoutError(
                f"Timed out after {REQUEST_TIMEOUT_SECONDS}s requesting {url}"
            ) from e

        try:
            return json.loads(body)
        except json.JSONDecodeError as e:
            raise PayloadError(f"Invalid JSON from {url}: {e}") from e

    # --- Parsing helpers ---

    def _require_dict(self, data: Any, what: str) -> dict[str, Any]:
        if not isinstance(data, dict):
            raise PayloadError(f"{self.name}: expected an object for {what}, got {type(data).__name__}")
        return data

    def _require_list(self, data: Any, key: str) -> list[Any]:
        """Return ``data[key]`` as a list or raise PayloadError."""
        data = self._require_dict(data, "response")
        value = data.get(key)
        if not isinstance(value, list):
            raise PayloadError(f"{self.name}: response has no '{key}' list")
        return value

    def _optional_str(self, item: dict[str, Any], key: str, what: str) -> str:
        """Return item[key] as a string ('' when missing) or raise PayloadError."""
        value = item.get(key)
        if value is None:
            return ""
        if not isinstance(value, str):
            raise PayloadError(
                f"{self.name}: {what} '{key}' must be a string, got {type(value).__name__}"
            )
        return value

    def _require_id(self, item: Any, what: str) -> str:
        item = self._require_dict(item, what)
        value = item.get("id")
        if value in (None, ""):
            raise PayloadError(f"{self.name}: {what} without an id")
        return str(value)

    def _parse_timestamp(self, ts: str | None) -> datetime | None:
        """Parse an ISO 8601 timestamp; None when missing or unparseable."""
        if not ts or not isinstance(ts, str):
            return None
        try:
            parsed = datetime.fromisoformat(ts.replace("Z", "+00:00"))
        except ValueError:
            logger.debug(f"{self.name}: unparseable timestamp {ts!r}")
            return None
        if timezone.is_naive(parsed):
            parsed = timezone.make_aware(parsed, dt_tz.utc)
        return parsed

    @staticmethod
    def _lookup(table: dict[str, str], raw: str | None, default: str) -> str:
        """Case-insensitive table lookup with a fallback."""
        key = (raw or "").strip().lower()
        return table.get(key, default)
