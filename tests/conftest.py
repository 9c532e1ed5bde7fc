"""Pytest configuration and shared fixtures."""
import asyncio
from typing import Optional

import pytest
import pytest_asyncio

from torjolan import errors
from torjolan.credentials import CredentialStore
from torjolan.errors import NetworkFailure
from torjolan.models import Rating, Station, Track
from torjolan.nowplaying import NowPlayingPublisher
from torjolan.player import PLAYING, PAUSED, PlaybackEngine
from torjolan.session import SessionController


class FakeEngine(PlaybackEngine):
    """In-memory playback engine. Tests drive it with report()."""

    def __init__(self, tick_interval: float = 0.01):
        super().__init__(tick_interval)
        self.actions: list[str] = []
        self.loads: list[str] = []
        self.releases = 0
        self.playing = False
        self._position = 0.0

    async def _load_media(self, url: str, token: int):
        self.loads.append(url)
        self.actions.append(f"load:{url}")

    async def _release(self):
        self.releases += 1
        self.actions.append("release")
        self.playing = False
        self._position = 0.0

    async def play(self):
        self.actions.append("play")
        self.playing = True
        self._emit(PLAYING)

    async def pause(self):
        self.actions.append("pause")
        self.playing = False
        self._emit(PAUSED)

    async def seek(self, position: float) -> float:
        self._position = self._clamp(position)
        self.actions.append(f"seek:{self._position:g}")
        return self._position

    @property
    def position(self) -> float:
        return self._position

    def report(self, kind: str, token: Optional[int] = None, **kwargs):
        """Emit an engine event for the current (or a given) media token."""
        if kind == "ready":
            self._duration = kwargs.get("duration")
        self._emit(kind, token, **kwargs)


class FakeApi:
    """Scripted station server. Queue tracks (or exceptions) in next_tracks."""

    def __init__(self):
        self.next_tracks: list = []
        self.fetch_calls: list = []
        self.completion_calls: list = []
        self.rate_calls: list = []
        self.rate_result = True
        self.rate_error: Optional[Exception] = None
        self.completion_error: Optional[Exception] = None
        self.artwork_error: Optional[Exception] = None
        self.hold: Optional[asyncio.Event] = None
        self.rate_hold: Optional[asyncio.Event] = None

    async def fetch_next_track(self, station_id):
        self.fetch_calls.append(station_id)
        if self.hold is not None:
            await self.hold.wait()
        if not self.next_tracks:
            raise NetworkFailure("no more scripted tracks")
        item = self.next_tracks.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def report_completion(self, station_id, track_id):
        self.completion_calls.append((station_id, track_id))
        if self.completion_error:
            raise self.completion_error
        return True

    async def rate(self, station_id, track_id, direction):
        self.rate_calls.append((station_id, track_id, Rating(direction)))
        if self.rate_hold is not None:
            await self.rate_hold.wait()
        if self.rate_error:
            raise self.rate_error
        return self.rate_result

    async def fetch_artwork(self, url):
        if self.artwork_error:
            raise self.artwork_error
        return b"\x89PNG-cover"


def make_track(track_id: str, url: Optional[str] = None, cover_url: Optional[str] = None) -> Track:
    return Track(
        id=track_id,
        title=f"Song {track_id}",
        artist="Blind Guardian",
        album="A Night at the Opera",
        url=url or f"https://cdn.example.com/{track_id}.mp3",
        cover_url=cover_url,
    )


async def settle(rounds: int = 100):
    """Let queued messages and side tasks run to completion."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture(autouse=True)
def error_log(tmp_path, monkeypatch):
    """Keep format_error() output out of the repo."""
    monkeypatch.setattr(errors, "OUTPUT_DIR", tmp_path / "output")
    monkeypatch.setattr(errors, "ERRORS_LOG", tmp_path / "output" / "errors.log")
    return tmp_path / "output" / "errors.log"


@pytest.fixture
def station():
    return Station(id=1, name="Power Metal")


@pytest.fixture
def other_station():
    return Station(id=2, name="Doom")


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def api():
    return FakeApi()


@pytest.fixture
def publisher():
    return NowPlayingPublisher()


@pytest_asyncio.fixture
async def controller(api, engine, publisher):
    ctrl = SessionController(api, engine, publisher, retry_base_delay=0.0, retry_max_delay=0.0)
    await ctrl.start()
    yield ctrl
    await ctrl.close()


@pytest.fixture
def store(tmp_path, monkeypatch):
    from torjolan import credentials

    monkeypatch.setattr(credentials, "DEFAULT_HOST", "")
    return CredentialStore(tmp_path / "config" / "credentials.json")
