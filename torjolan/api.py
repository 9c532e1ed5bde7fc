"""Station server client — bearer-authenticated JSON over HTTPS."""
import logging
from typing import Any, Optional
from urllib.parse import quote

import httpx

from .config import HTTP_TIMEOUT
from .errors import DecodingFailure, InvalidEndpoint, NetworkFailure, Unauthorized
from .models import AuthResponse, Rating, SearchResult, Station, Track

logger = logging.getLogger(__name__)


def _seg(value) -> str:
    return quote(str(value), safe="")


class ApiClient:
    """Thin async wrapper over the station server's REST endpoints.

    Every failure surfaces as one of InvalidEndpoint, NetworkFailure,
    Unauthorized (HTTP 401) or DecodingFailure.
    """

    def __init__(
        self,
        host: Optional[str],
        token: Optional[str] = None,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = HTTP_TIMEOUT,
    ):
        self.host = (host or "").rstrip("/")
        self.token = token
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def aclose(self):
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    # ── Plumbing ─────────────────────────────────────────────────────────────

    def _url(self, path: str) -> str:
        if not self.host:
            raise InvalidEndpoint("No server host configured")
        return self._check_url(f"{self.host}{path}")

    @staticmethod
    def _check_url(raw: str) -> str:
        try:
            url = httpx.URL(raw)
        except (httpx.InvalidURL, TypeError) as e:
            raise InvalidEndpoint(f"Invalid URL: {raw}") from e
        if url.scheme not in ("http", "https") or not url.host:
            raise InvalidEndpoint(f"Invalid URL: {raw}")
        return str(url)

    def _headers(self, authorized: bool = True) -> dict:
        headers = {"Content-Type": "application/json"}
        if authorized and self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _request(
        self,
        method: str,
        url: str,
        *,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
        authorized: bool = True,
    ) -> httpx.Response:
        try:
            r = await self._client.request(
                method, url, json=json, params=params, headers=self._headers(authorized),
            )
        except httpx.TimeoutException as e:
            raise NetworkFailure(f"{method} {url} timed out") from e
        except httpx.HTTPError as e:
            raise NetworkFailure(f"{method} {url} failed: {e}") from e

        if r.status_code == 401:
            raise Unauthorized(f"{method} {url} returned 401")
        if not 200 <= r.status_code < 300:
            raise NetworkFailure(
                f"{method} {url} returned HTTP {r.status_code}: {r.text[:200]}",
                status_code=r.status_code,
            )
        return r

    async def _json(self, method: str, path: str, **kwargs) -> Any:
        r = await self._request(method, self._url(path), **kwargs)
        try:
            return r.json()
        except ValueError as e:
            raise DecodingFailure(f"{method} {path}: response is not JSON") from e

    @staticmethod
    def _success(data: Any) -> bool:
        if not isinstance(data, dict) or "success" not in data:
            raise DecodingFailure("expected {\"success\": bool}")
        return bool(data["success"])

    @staticmethod
    def _list(data: Any, what: str) -> list:
        if not isinstance(data, list):
            raise DecodingFailure(f"expected a list of {what}")
        return data

    # ── Auth ─────────────────────────────────────────────────────────────────

    async def login(self, username: str) -> AuthResponse:
        """POST /api/auth. Stores the returned token on this client."""
        data = await self._json("POST", "/api/auth", json={"login": username}, authorized=False)
        auth = AuthResponse.from_json(data)
        self.token = auth.token
        return auth

    # ── Stations ─────────────────────────────────────────────────────────────

    async def list_stations(self) -> list[Station]:
        data = await self._json("GET", "/api/stations")
        return [Station.from_json(item) for item in self._list(data, "stations")]

    async def create_station(self, name: str, song_id: str) -> tuple[Station, Track]:
        """Create a station seeded by a song; returns it with its first track."""
        data = await self._json(
            "POST", "/api/stations", json={"station_name": name, "song_id": song_id},
        )
        if isinstance(data, dict) and "station" in data:
            station = Station.from_json(data["station"])
            if data.get("track"):
                return station, Track.from_json(data["track"])
        else:
            station = Station.from_json(data)
        # Older servers answer with the bare station
        return station, await self.fetch_next_track(station.id)

    async def create_station_from_query(self, name: str, seed_query: str) -> tuple[Station, Track]:
        """Search for a seed song by title and create a station from the best hit."""
        results = await self.search(title=seed_query)
        if not results:
            raise LookupError(f"No songs match '{seed_query}'")
        seed = results[0]
        logger.info("Seeding station %r with %s — %s", name, seed.artist, seed.title)
        return await self.create_station(name, seed.id)

    async def fetch_next_track(self, station_id) -> Track:
        """GET /api/stations/{id}: the server picks what plays next."""
        data = await self._json("GET", f"/api/stations/{_seg(station_id)}")
        return Track.from_json(data)

    async def report_completion(self, station_id, track_id: str) -> bool:
        data = await self._json("POST", f"/api/stations/{_seg(station_id)}/{_seg(track_id)}")
        return self._success(data)

    async def rate(self, station_id, track_id: str, direction: Rating) -> bool:
        direction = Rating(direction)
        data = await self._json(
            "POST", f"/api/stations/{_seg(station_id)}/{_seg(track_id)}/{direction.endpoint}",
        )
        return self._success(data)

    # ── Search / artwork ─────────────────────────────────────────────────────

    async def search(self, artist: Optional[str] = None, title: Optional[str] = None) -> list[SearchResult]:
        params = {}
        if artist:
            params["artist"] = artist
        if title:
            params["title"] = title
        data = await self._json("GET", "/api/search", params=params)
        return [SearchResult.from_json(item) for item in self._list(data, "search results")]

    async def fetch_artwork(self, url: str) -> bytes:
        """Download cover art. Cover URLs are public, so no bearer token is sent."""
        r = await self._request("GET", self._check_url(url), authorized=False)
        if not r.content:
            raise DecodingFailure(f"empty artwork body from {url}")
        return r.content
