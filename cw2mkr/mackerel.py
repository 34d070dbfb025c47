"""
HTTP client for the Mackerel API.

Covers the two time series endpoints cw2mkr writes to:
- POST /api/v0/services/<service>/tsdb  (service metrics)
- POST /api/v0/tsdb                     (host metrics)
"""

import http.client
import json
import urllib.request
from typing import Any, Dict, List
from urllib.error import HTTPError, URLError
from urllib.parse import quote

from . import __version__
from .errors import ConfigurationError, PublishFailure
from .schemas import HostMetricValue, MetricValue

DEFAULT_BASE_URL = "https://api.mackerelio.com"


class MackerelClient:
    """Client for the Mackerel API."""

    def __init__(self, api_key: str, base_url: str = DEFAULT_BASE_URL, timeout: int = 10):
        """
        Initialize Mackerel client.

        Args:
            api_key: Mackerel API key (write permission)
            base_url: API base URL
            timeout: Request timeout in seconds
        """
        if not api_key:
            raise ConfigurationError("Mackerel API key is required")
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def post_json(self, endpoint: str, data: Any) -> Dict[str, Any]:
        """
        Make a POST request with JSON data.

        Args:
            endpoint: API endpoint path (e.g., /api/v0/tsdb)
            data: JSON-serializable body

        Returns:
            Response data as dictionary

        Raises:
            PublishFailure: On HTTP or connection errors, timeouts or a non-JSON response
        """
        url = f"{self.base_url}{endpoint}"
        body = json.dumps(data).encode("utf-8")
        req = urllib.request.Request(url, data=body, method="POST")
        req.add_header("Content-Type", "application/json")
        req.add_header("X-Api-Key", self.api_key)
        req.add_header("User-Agent", f"cw2mkr/{__version__}")

        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                raw = resp.read()
        except HTTPError as e:
            raise PublishFailure(f"HTTP {e.code} from {endpoint}: {_error_body(e)}", status=e.code) from e
        except URLError as e:
            raise PublishFailure(f"failed to reach {self.base_url}: {e.reason}") from e
        except (OSError, http.client.HTTPException) as e:
            raise PublishFailure(f"request to {endpoint} failed: {e!r}") from e
        try:
            return json.loads(raw.decode("utf-8")) if raw else {}
        except ValueError as e:
            raise PublishFailure(f"invalid JSON response from {endpoint}: {raw[:200]!r}") from e

    def post_service_metric_values(self, service: str, values: List[MetricValue]) -> Dict[str, Any]:
        """Post metric values of a service."""
        endpoint = f"/api/v0/services/{quote(service, safe='')}/tsdb"
        return self.post_json(endpoint, [v.model_dump() for v in values])

    def post_host_metric_values(self, values: List[HostMetricValue]) -> Dict[str, Any]:
        """Post metric values of hosts. Values may belong to different hosts."""
        return self.post_json("/api/v0/tsdb", [v.to_api() for v in values])


def _error_body(e: HTTPError) -> str:
    try:
        return e.read().decode("utf-8")
    except Exception:
        return str(e)
