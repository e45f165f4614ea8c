"""Biblio-Globus API client — session cookies on every call, Z1 rotation, 401 detection."""

import logging
from typing import Any

import httpx

from tourdesk.config import settings
from tourdesk.errors import SessionExpiredError, UpstreamRequestError
from tourdesk.services.biblio_globus.auth import SessionCredentials, parse_set_cookie

logger = logging.getLogger(__name__)


class ApiClient:
    """Adapter for authenticated Biblio-Globus calls.

    The credentials object is shared, not copied: a rotated Z1 token is seen by
    every client holding the same ``SessionCredentials``. Re-authentication is
    left to the caller.
    """

    def __init__(
        self,
        credentials: SessionCredentials,
        *,
        http_client: httpx.AsyncClient | None = None,
        serialize_calls: bool | None = None,
        timeout: float | None = None,
    ):
        self.credentials = credentials
        self._client = http_client
        self._owns_client = http_client is None
        self._serialize = (
            settings.serialize_session_calls if serialize_calls is None else serialize_calls
        )
        self._timeout = timeout or settings.upstream_timeout_seconds

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def call(self, url: str, method: str = "GET", **options: Any) -> httpx.Response:
        """Send a request with the session attached and return the raw response.

        Raises SessionExpiredError on 401 and UpstreamRequestError on transport
        failures (timeouts included, flagged retryable).
        """
        if self._serialize:
            async with self.credentials.call_lock:
                return await self._send(method, url, **options)
        return await self._send(method, url, **options)

    async def _send(self, method: str, url: str, **options: Any) -> httpx.Response:
        client = await self._get_client()
        headers = dict(options.pop("headers", None) or {})
        headers["Cookie"] = await self.credentials.cookie_header()
        headers["Accept-Encoding"] = "gzip"

        try:
            resp = await client.request(method, url, headers=headers, **options)
        except httpx.TimeoutException as e:
            logger.warning(f"Biblio-Globus request timed out: {url}")
            raise UpstreamRequestError(f"Timed out calling {url}", retryable=True) from e
        except httpx.HTTPError as e:
            logger.warning(f"Biblio-Globus request error for {url}: {e}")
            raise UpstreamRequestError(f"Request to {url} failed: {e}", retryable=True) from e

        if resp.status_code == 401:
            logger.error("Biblio-Globus answered 401, the session cookie is invalid or expired")
            raise SessionExpiredError("Authentication required. The session may have expired.")

        if resp.is_success:
            await self._rotate_token(resp)
        return resp

    async def _rotate_token(self, resp: httpx.Response) -> None:
        cookies = parse_set_cookie(resp.headers.get_list("set-cookie"))
        token = cookies.get("Z1")
        if token and await self.credentials.rotate(token):
            logger.debug("Biblio-Globus Z1 token rotated")

    async def get_json(self, url: str, key: str | None = None) -> Any:
        """GET ``url`` and decode JSON, optionally returning one top-level key."""
        resp = await self.call(url)
        if not resp.is_success:
            raise UpstreamRequestError(
                f"Biblio-Globus returned HTTP {resp.status_code} for {url}",
                status_code=resp.status_code,
                retryable=resp.status_code >= 500,
            )
        try:
            data = resp.json()
        except ValueError as e:
            raise UpstreamRequestError(f"Malformed JSON from {url}") from e
        if key is None:
            return data
        if not isinstance(data, dict) or key not in data:
            raise UpstreamRequestError(f"Response from {url} has no {key!r} field")
        return data[key]

    async def close(self):
        if self._client and self._owns_client:
            await self._client.aclose()
        self._client = None
