"""Shared fixtures: an in-process Biblio-Globus double and a controllable clock."""

from collections import Counter
from urllib.parse import parse_qs

import httpx
import pytest
import pytest_asyncio

from tourdesk.services.biblio_globus.auth import SessionAuthenticator
from tourdesk.services.biblio_globus.references import ReferenceDataCache
from tourdesk.services.cache_service import InMemoryBackend
from tourdesk.services.search_orchestrator import TourSearchOrchestrator, make_search_cache

AUTH_URL = "https://login.test/auth"
EXPORT_URL = "http://export.test"

COUNTRIES = [
    {"id": 1, "title_ru": "Турция", "title_en": "Turkey"},
    {"id": 2, "title_ru": "Египет", "title_en": "Egypt"},
]

CITIES = [
    {"id": 10, "title_ru": "Москва", "country": 100},
    {"id": 20, "title_ru": "Анталья", "country": 1},
]

HOTELS = [
    {"key": "H1", "name": "Sunrise Resort", "cityKey": 20, "stars": "5"},
    {"key": "H2", "name": "Lara Beach", "cityKey": 20, "stars": "4*"},
]

PRICE_LISTS = [
    {"url": f"{EXPORT_URL}/price/P7?xml=11", "date": "12.09.2024", "duration": 7, "id_price": "P7"},
    {"url": f"{EXPORT_URL}/price/P8?xml=11", "date": "20.01.2025", "duration": 10, "id_price": "P8"},
]

OFFERS = {
    "P7": [
        {
            "id_hotel": "H1",
            "id_ns": "O3",
            "duration": 7,
            "prices": [
                {"amount": 120000, "RUR": 120000, "ag": "14-99"},
                {"RUR": 130000, "ag": "12+"},
                {"RUR": 50000, "ag": "2-11"},
            ],
        },
        # no duration of its own, falls back to the price list's
        {"id_hotel": "H2", "id_ns": "O4", "prices": [{"RUR": "98 500", "ag": "14-99"}]},
        {"id_hotel": "H404", "id_ns": "O5", "prices": [{"RUR": 1000, "ag": "14-99"}]},
        {"id_hotel": "H1", "id_ns": "O6", "prices": [{"RUR": 40000, "ag": "2-11"}]},
    ],
    "P8": [
        {"id_hotel": "H2", "id_ns": "O9", "duration": 10, "prices": [{"RUR": 150000, "ag": "14-99"}]},
    ],
}


class FakeBiblioGlobus:
    """MockTransport handler that behaves like the login and export hosts.

    Every successful export response rotates Z1. Routes can be told to answer
    401 once (``expire``) or 500 until further notice (``fail``).
    """

    def __init__(self):
        self.calls: Counter = Counter()
        self.cookies: list[str] = []
        self.urls: list[str] = []
        self.auth_bodies: list[dict] = []
        self.auth_status = 200
        self.auth_cookies = {"A1": None, "Z1": "z0", "L": "ru"}
        self.fail: set[str] = set()
        self._expire: Counter = Counter()
        self.price_lists: list = list(PRICE_LISTS)
        self.offers: dict = {key: list(value) for key, value in OFFERS.items()}
        self._rotations = 0

    def expire(self, route: str, times: int = 1) -> None:
        self._expire[route] += times

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if str(request.url) == AUTH_URL:
            return self._login(request)

        route, payload = self._route(request)
        self.calls[route] += 1
        self.urls.append(str(request.url))
        self.cookies.append(request.headers.get("cookie", ""))

        if self._expire[route]:
            self._expire[route] -= 1
            return httpx.Response(401, text="Unauthorized")
        if route in self.fail:
            return httpx.Response(500, text="Internal Server Error")
        if payload is None:
            return httpx.Response(404, text="Not Found")

        self._rotations += 1
        headers = [("set-cookie", f"Z1=z{self._rotations}; Path=/; HttpOnly")]
        if isinstance(payload, bytes):
            return httpx.Response(200, headers=headers, content=payload)
        return httpx.Response(200, headers=headers, json=payload)

    def _login(self, request: httpx.Request) -> httpx.Response:
        self.calls["auth"] += 1
        self.auth_bodies.append({k: v[0] for k, v in parse_qs(request.content.decode()).items()})
        if self.auth_status != 200:
            return httpx.Response(self.auth_status, text="Forbidden")

        cookies = dict(self.auth_cookies)
        if "A1" in cookies and cookies["A1"] is None:
            cookies["A1"] = f"sess{self.calls['auth']}"
        headers = [
            ("set-cookie", f"{name}={value}; Path=/; Domain=.test")
            for name, value in cookies.items()
            if value is not None
        ]
        return httpx.Response(200, headers=headers, text="OK")

    def _route(self, request: httpx.Request):
        path = request.url.path
        action = request.url.params.get("action")
        if path == "/yandex" and action == "countries":
            return "countries", COUNTRIES
        if path == "/auto/jsonResorts.json":
            return "cities", CITIES
        if path == "/yandex" and action == "hotelsJson":
            return "hotels", HOTELS
        if path == "/yandex" and action == "boards":
            return "meals", [{"id": 1, "title_ru": "Всё включено", "code": "AI"}]
        if path == "/yandex" and action == "files":
            return "files", {"entries": self.price_lists}
        if path.startswith("/price/"):
            return "price", {"entries": self.offers.get(path.rsplit("/", 1)[-1], [])}
        if path == "/broken":
            return "broken", b"<html>maintenance</html>"
        return "unknown", None


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_bg() -> FakeBiblioGlobus:
    return FakeBiblioGlobus()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def http_client(fake_bg):
    client = httpx.AsyncClient(transport=httpx.MockTransport(fake_bg))
    yield client
    await client.aclose()


@pytest.fixture
def make_orchestrator(http_client, clock):
    def _make(login: str = "agent", password: str = "secret", **options) -> TourSearchOrchestrator:
        authenticator = SessionAuthenticator(
            login, password, auth_url=AUTH_URL, http_client=http_client
        )
        return TourSearchOrchestrator(
            authenticator,
            ReferenceDataCache(base_url=EXPORT_URL, clock=clock),
            make_search_cache(backend=InMemoryBackend(), clock=clock),
            http_client=http_client,
            base_url=EXPORT_URL,
            departure_city="Москва",
            **options,
        )

    return _make
