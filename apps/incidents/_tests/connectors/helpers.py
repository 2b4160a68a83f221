import json
from unittest.mock import MagicMock

from apps.incidents.models import DataSource

URLOPEN = "apps.incidents.connectors.base.urllib.request.urlopen"


def make_data_source(connector_type="statuspage", base_url="https://status.example.com", **kwargs):
    """Unsaved DataSource; connectors never touch the database."""
    kwargs.setdefault("name", "Example")
    return DataSource(connector_type=connector_type, base_url=base_url, **kwargs)


def mock_response(body):
    """A urlopen() context manager returning ``body`` (JSON-encoded unless str)."""
    if not isinstance(body, str):
        body = json.dumps(body)
    response = MagicMock()
    response.read.return_value = body.encode("utf-8")
    response.__enter__ = MagicMock(return_value=response)
    response.__exit__ = MagicMock(return_value=False)
    return response


def requested_urls(mock_urlopen):
    return [call.args[0].full_url for call in mock_urlopen.call_args_list]
