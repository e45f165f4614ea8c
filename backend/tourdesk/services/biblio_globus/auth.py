"""Biblio-Globus authentication — form login that yields the three session cookies."""

import asyncio
import logging
from dataclasses import dataclass, field

import httpx

from tourdesk.config import settings
from tourdesk.errors import AuthConfigurationError, AuthProtocolError

logger = logging.getLogger(__name__)

# A1 = session id, Z1 = rotating token, L = locale token
REQUIRED_COOKIES = ("A1", "Z1", "L")


def parse_set_cookie(values: list[str]) -> dict[str, str]:
    """Name/value pairs from raw Set-Cookie header values, attributes dropped."""
    cookies: dict[str, str] = {}
    for raw in values:
        pair = raw.split(";", 1)[0].strip()
        name, sep, value = pair.partition("=")
        if sep and name:
            cookies[name.strip()] = value.strip()
    return cookies


@dataclass
class SessionCredentials:
    """Upstream session tokens, shared by reference between API clients.

    ``rotating_token`` is the only mutable field and is written through
    ``rotate`` alone, under the same lock that guards header reads.
    """

    session_id: str
    rotating_token: str
    locale_token: str
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False, compare=False)
    _call_lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False, compare=False)

    def __post_init__(self):
        if not (self.session_id and self.rotating_token and self.locale_token):
            raise ValueError("SessionCredentials requires A1, Z1 and L tokens")

    @classmethod
    def from_cookies(cls, cookies: dict[str, str]) -> "SessionCredentials":
        missing = [name for name in REQUIRED_COOKIES if not cookies.get(name)]
        if missing:
            raise AuthProtocolError(
                f"Authentication failed: missing required cookies ({', '.join(missing)})"
            )
        return cls(
            session_id=cookies["A1"],
            rotating_token=cookies["Z1"],
            locale_token=cookies["L"],
        )

    async def cookie_header(self) -> str:
        async with self._lock:
            return f"A1={self.session_id}; Z1={self.rotating_token}; L={self.locale_token}"

    async def rotate(self, token: str) -> bool:
        """Replace the rotating token. Returns True if it changed."""
        if not token:
            return False
        async with self._lock:
            if token == self.rotating_token:
                return False
            self.rotating_token = token
            return True

    @property
    def call_lock(self) -> asyncio.Lock:
        """Held across a whole request when calls on this session are serialized."""
        return self._call_lock


class SessionAuthenticator:
    """Logs in to Biblio-Globus. No retries; callers decide whether to try again."""

    def __init__(
        self,
        login: str | None = None,
        password: str | None = None,
        *,
        auth_url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self._login = login
        self._password = password
        self._auth_url = auth_url or settings.biblio_globus_auth_url
        self._client = http_client
        self._owns_client = http_client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=settings.upstream_timeout_seconds,
                follow_redirects=True,
            )
        return self._client

    async def authenticate(self) -> SessionCredentials:
        login = self._login if self._login is not None else settings.biblio_globus_login
        password = self._password if self._password is not None else settings.biblio_globus_password
        if not login or not password:
            raise AuthConfigurationError(
                "BIBLIO_GLOBUS_LOGIN and BIBLIO_GLOBUS_PASSWORD must be set"
            )

        client = await self._get_client()
        try:
            resp = await client.post(
                self._auth_url,
                data={"login": login, "pwd": password},
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except httpx.HTTPError as e:
            logger.error(f"Biblio-Globus login request failed: {e}")
            raise AuthProtocolError(f"Authentication request failed: {e}") from e

        if not resp.is_success:
            logger.error(
                f"Biblio-Globus login failed with status {resp.status_code}: {resp.text[:200]}"
            )
            raise AuthProtocolError(f"Authentication request failed: HTTP {resp.status_code}")

        cookies = parse_set_cookie(resp.headers.get_list("set-cookie"))
        credentials = SessionCredentials.from_cookies(cookies)
        logger.info("Biblio-Globus session established")
        return credentials

    async def close(self):
        if self._client and self._owns_client:
            await self._client.aclose()
        self._client = None
