"""Now-Playing Publisher — observable state bridge between the session and its surfaces."""
import asyncio
import logging
from typing import TYPE_CHECKING, Any, Optional

from .models import Phase, PlaybackSession

if TYPE_CHECKING:
    from .session import SessionController

logger = logging.getLogger(__name__)


class NowPlayingPublisher:
    """Read-only projection of the PlaybackSession.

    Surfaces (terminal UI, WebSocket clients) subscribe and receive
    (event, data) tuples: session, now_playing, tick, artwork, cleared,
    error, unauthorized.
    """

    def __init__(self):
        self._subscribers: dict[str, asyncio.Queue] = {}
        self._session = PlaybackSession()
        self._position = 0.0
        self._duration = 0.0
        self._artwork: Optional[bytes] = None

    # ── Subscribers ────────────────────────────────────────────────────────────

    def subscribe(self, client_id: str) -> asyncio.Queue:
        """Register a new client. Returns a queue that receives (event, data) tuples."""
        q: asyncio.Queue = asyncio.Queue(maxsize=50)
        self._subscribers[client_id] = q
        return q

    def unsubscribe(self, client_id: str):
        self._subscribers.pop(client_id, None)

    @property
    def client_count(self) -> int:
        return len(self._subscribers)

    async def broadcast(self, event: str, data: Any):
        """Push an event to all subscribers. A lagging client loses its oldest event."""
        for cid, q in self._subscribers.items():
            if q.full():
                dropped, _ = q.get_nowait()
                logger.debug("Client %s lagging, dropped %s event", cid, dropped)
            q.put_nowait((event, data))

    # ── Updates from the controller ────────────────────────────────────────────

    async def update(self, session: PlaybackSession):
        prev = self._session
        self._session = session.copy()
        self._position = session.position
        self._duration = session.duration

        prev_id = prev.track.id if prev.track else None
        new_id = session.track.id if session.track else None
        if new_id != prev_id:
            self._artwork = None
            if session.track:
                await self.broadcast("now_playing", self.info())
            else:
                await self.broadcast("cleared", {})

        await self.broadcast("session", session.to_dict())

    async def tick(self, position: float, duration: Optional[float]):
        """Position sample from the engine's poll loop."""
        self._position = position
        if duration:
            self._duration = duration
        if self._session.track is None:
            return
        await self.broadcast("tick", {
            "position": round(self._position, 1),
            "duration": round(self._duration, 1),
        })

    async def set_artwork(self, track_id: str, data: bytes):
        track = self._session.track
        if track is None or track.id != track_id:
            return
        self._artwork = data
        await self.broadcast("artwork", {"track_id": track_id, "size": len(data)})

    async def error(self, message: str):
        await self.broadcast("error", {"message": message})

    async def unauthorized(self, message: str):
        await self.broadcast("unauthorized", {"message": message})

    # ── Reads ──────────────────────────────────────────────────────────────────

    @property
    def artwork(self) -> Optional[bytes]:
        return self._artwork

    @property
    def is_playing(self) -> bool:
        return self._session.phase == Phase.PLAYING

    def info(self) -> Optional[dict]:
        """Lock-screen style now-playing info; None when nothing is loaded."""
        track = self._session.track
        if track is None:
            return None
        return {
            "track_id": track.id,
            "title": track.title,
            "artist": track.artist,
            "album": track.album,
            "cover_url": track.cover_url,
            "elapsed": round(self._position, 1),
            "duration": round(self._duration, 1),
            "rate": 1.0 if self.is_playing else 0.0,
        }

    def snapshot(self) -> dict:
        """Full state for initial client sync."""
        session = self._session
        return {
            "phase": session.phase.value,
            "station": {"id": session.station.id, "name": session.station.name} if session.station else None,
            "now_playing": self.info(),
            "position": round(self._position, 1),
            "duration": round(self._duration, 1),
            "is_playing": self.is_playing,
            "thumbed_up": session.thumbed_up,
            "has_artwork": self._artwork is not None,
        }


class RemoteCommands:
    """System-level transport commands mapped 1:1 onto controller operations."""

    COMMANDS = ("play", "pause", "toggle", "like", "dislike", "stop")

    def __init__(self, controller: "SessionController"):
        self.controller = controller

    async def handle(self, command: str) -> Any:
        """Run a remote command. Unknown commands are logged and ignored."""
        if command == "play":
            return await self.controller.play()
        if command == "pause":
            return await self.controller.pause()
        if command == "toggle":
            return await self.controller.toggle_play_pause()
        if command == "like":
            return await self.controller.thumbs_up()
        if command == "dislike":
            return await self.controller.thumbs_down()
        if command == "stop":
            return await self.controller.stop_session()
        logger.warning("Unknown remote command: %s", command)
        return None
