"""Low-level HTTP client for the identity provider admin API and the REST store.

Handles service-key authentication, timeouts and error translation.
"""
from __future__ import annotations
import logging
from typing import Optional, Dict, Any

import requests

from .exceptions import ProviderAPIError, ProviderUnavailableError

REQUEST_TIMEOUT = 10

logger = logging.getLogger(__name__)


class ProviderClient:
    """HTTP client for the provider admin API (``/auth/v1``) and PostgREST (``/rest/v1``).

    Features:
    - Service role key sent as both ``apikey`` and bearer token
    - Every call bounded by a timeout
    - Centralized error handling (HTTP errors and transport failures)

    Usage:
        client = ProviderClient("https://project.supabase.co", service_role_key)
        response = client.get("/auth/v1/admin/users", params={"page": 1, "per_page": 1000})
    """

    def __init__(self, base_url: str, api_key: str, timeout: Optional[int] = None):
        """Initialize provider client.

        Args:
            base_url: Project base URL (e.g. https://project.supabase.co)
            api_key: Service role key used for administrative calls
            timeout: Per-request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout or REQUEST_TIMEOUT

    def _headers(self, extra: Optional[Dict[str, str]] = None, bearer: Optional[str] = None,
                 api_key: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "apikey": api_key or self.api_key,
            "Authorization": f"Bearer {bearer or self.api_key}",
        }
        if extra:
            headers.update(extra)
        return headers

    def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        headers: Optional[Dict[str, str]] = None,
        bearer: Optional[str] = None,
        api_key: Optional[str] = None,
    ) -> requests.Response:
        """Execute a request against the provider.

        Args:
            method: HTTP method (GET, POST, PUT, PATCH, DELETE)
            path: API path (e.g. "/rest/v1/profiles")
            params: Query parameters
            json: JSON payload
            headers: Additional headers (e.g. PostgREST ``Prefer``)
            bearer: Override bearer token (caller token resolution)
            api_key: Override ``apikey`` header

        Returns:
            Response object

        Raises:
            ProviderAPIError: On HTTP error status
            ProviderUnavailableError: On timeout or connection failure
        """
        url = f"{self.base_url}{path}"
        sender = getattr(requests, method.lower())
        kwargs: Dict[str, Any] = {
            "headers": self._headers(headers, bearer=bearer, api_key=api_key),
            "timeout": self.timeout,
        }
        if params is not None:
            kwargs["params"] = params
        if json is not None:
            kwargs["json"] = json

        try:
            resp = sender(url, **kwargs)
        except requests.Timeout:
            logger.warning("[provider] %s %s timed out after %ss", method.upper(), path, self.timeout)
            raise ProviderUnavailableError(path, f"timed out after {self.timeout}s")
        except requests.RequestException as exc:
            logger.warning("[provider] %s %s failed: %s", method.upper(), path, exc)
            raise ProviderUnavailableError(path, str(exc))

        self._handle_error(resp, path)
        return resp

    def get(self, path: str, params: Optional[Dict] = None, **kwargs) -> requests.Response:
        return self.request("GET", path, params=params, **kwargs)

    def post(self, path: str, json: Any = None, **kwargs) -> requests.Response:
        return self.request("POST", path, json=json, **kwargs)

    def put(self, path: str, json: Any = None, **kwargs) -> requests.Response:
        return self.request("PUT", path, json=json, **kwargs)

    def patch(self, path: str, json: Any = None, **kwargs) -> requests.Response:
        return self.request("PATCH", path, json=json, **kwargs)

    def delete(self, path: str, **kwargs) -> requests.Response:
        return self.request("DELETE", path, **kwargs)

    @staticmethod
    def _handle_error(resp: requests.Response, path: str) -> None:
        """Centralized error handling for HTTP responses.

        Raises:
            ProviderAPIError: If response status indicates error
        """
        if resp.status_code >= 400:
            raise ProviderAPIError(resp.status_code, extract_error_message(resp), path)


def extract_error_message(resp: requests.Response) -> str:
    """Pull the human-readable diagnostic out of a provider error body.

    GoTrue answers with ``msg``/``error_description``, PostgREST with ``message``;
    anything else falls back to the raw body.
    """
    try:
        body = resp.json()
    except ValueError:
        return (resp.text or "").strip() or f"HTTP {resp.status_code}"
    if isinstance(body, dict):
        for key in ("msg", "message", "error_description", "error"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return (resp.text or "").strip() or f"HTTP {resp.status_code}"
