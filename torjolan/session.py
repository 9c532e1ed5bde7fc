"""Session controller — continuous radio for one station at a time.

Every trigger (user command, engine event, network result) goes through
one inbox consumed by one task, so PlaybackSession has a single writer.
Network calls run as side tasks and post their results back, tagged with
the session generation they were started for.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from .api import ApiClient
from .config import MAX_CONSECUTIVE_FAILURES, RETRY_BASE_DELAY, RETRY_MAX_DELAY
from .errors import PlaybackFailure, TorjolanError, Unauthorized, format_error
from .models import Phase, PlaybackSession, Rating, Station, Track
from .nowplaying import NowPlayingPublisher
from .player import ENDED, FAILED, PAUSED, PLAYING, READY, PlaybackEngine, PlayerEvent

logger = logging.getLogger(__name__)

# Returned by handlers that resolve their caller's future later
_PENDING = object()


@dataclass
class _Message:
    kind: str
    data: dict = field(default_factory=dict)
    future: Optional[asyncio.Future] = None


class SessionController:
    def __init__(
        self,
        api: ApiClient,
        engine: PlaybackEngine,
        publisher: Optional[NowPlayingPublisher] = None,
        *,
        retry_base_delay: float = RETRY_BASE_DELAY,
        retry_max_delay: float = RETRY_MAX_DELAY,
        max_failures: int = MAX_CONSECUTIVE_FAILURES,
    ):
        self.api = api
        self.engine = engine
        self.publisher = publisher or NowPlayingPublisher()
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay
        self.max_failures = max_failures

        self._session = PlaybackSession()
        self._generation = 0
        self._media_token: Optional[int] = None
        self._disliked_id: Optional[str] = None
        self._inbox: asyncio.Queue = asyncio.Queue()
        self._fetch_task: Optional[asyncio.Task] = None
        self._fetch_seq = 0
        self._side_tasks: set[asyncio.Task] = set()
        self._loop_task: Optional[asyncio.Task] = None
        self._pump_task: Optional[asyncio.Task] = None

    # ── Lifecycle ────────────────────────────────────────────────────────────

    async def start(self):
        if self._loop_task is not None:
            return
        self.engine.set_tick_callback(self._on_tick)
        self._loop_task = asyncio.create_task(self._run())
        self._pump_task = asyncio.create_task(self._pump_engine_events())

    async def close(self):
        """Stop the session and the worker tasks."""
        if self._loop_task is None:
            return
        await self.stop_session()
        self.engine.set_tick_callback(None)
        for task in (self._pump_task, self._loop_task, *self._side_tasks):
            if task and not task.done():
                task.cancel()
        for task in (self._pump_task, self._loop_task, *self._side_tasks):
            if task is None:
                continue
            try:
                await task
            except (asyncio.CancelledError, Exception):
                pass
        self._side_tasks.clear()
        self._loop_task = None
        self._pump_task = None

    async def __aenter__(self) -> "SessionController":
        await self.start()
        return self

    async def __aexit__(self, *exc):
        await self.close()

    # ── Public API (UI buttons, remote commands) ─────────────────────────────

    async def start_station(self, station: Station) -> PlaybackSession:
        """Stop whatever plays and start continuous radio for station."""
        return await self._submit("start_station", station=station)

    async def start_new_station(self, station: Station, track: Track) -> PlaybackSession:
        """Start a freshly created station on the first track the server gave us."""
        return await self._submit("start_new_station", station=station, track=track)

    async def toggle_play_pause(self) -> Phase:
        return await self._submit("toggle_play_pause")

    async def play(self) -> Phase:
        return await self._submit("play")

    async def pause(self) -> Phase:
        return await self._submit("pause")

    async def seek(self, position: float) -> float:
        return await self._submit("seek", position=position)

    async def thumbs_up(self) -> bool:
        return await self._submit("rate", direction=Rating.UP)

    async def thumbs_down(self) -> bool:
        return await self._submit("rate", direction=Rating.DOWN)

    async def stop_session(self) -> PlaybackSession:
        return await self._submit("stop_session")

    @property
    def session(self) -> PlaybackSession:
        """Copy of the live session with the engine's current position."""
        snap = self._session.copy()
        if self.engine.is_loaded and snap.track is not None:
            snap.position = self.engine.position
            snap.duration = self.engine.duration or snap.duration
        return snap

    @property
    def phase(self) -> Phase:
        return self._session.phase

    @property
    def generation(self) -> int:
        return self._generation

    # ── Inbox ────────────────────────────────────────────────────────────────

    async def _submit(self, kind: str, **data) -> Any:
        if self._loop_task is None:
            raise RuntimeError("SessionController.start() hasn't been called")
        future = asyncio.get_running_loop().create_future()
        self._inbox.put_nowait(_Message(kind, data, future))
        return await future

    def _post(self, kind: str, **data):
        self._inbox.put_nowait(_Message(kind, data))

    async def _run(self):
        while True:
            msg = await self._inbox.get()
            handler = getattr(self, f"_on_{msg.kind}")
            try:
                result = await handler(msg)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if msg.future and not msg.future.done():
                    msg.future.set_exception(e)
                else:
                    logger.exception("Session error handling %s", msg.kind)
                continue
            if msg.future and result is not _PENDING and not msg.future.done():
                msg.future.set_result(result)

    async def _pump_engine_events(self):
        while True:
            event = await self.engine.next_event()
            self._post("engine_event", event=event)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._side_tasks.add(task)
        task.add_done_callback(self._side_tasks.discard)
        return task

    # ── Station lifecycle ────────────────────────────────────────────────────

    async def _on_start_station(self, msg: _Message) -> PlaybackSession:
        station = msg.data["station"]
        await self._teardown()
        self._begin(station)
        logger.info("Starting station %s (%s)", station.name, station.id)
        await self._request_next()
        return self.session

    async def _on_start_new_station(self, msg: _Message) -> PlaybackSession:
        station, track = msg.data["station"], msg.data["track"]
        await self._teardown()
        self._begin(station)
        logger.info("Starting new station %s on %s — %s", station.name, track.artist, track.title)
        await self._load_track(track)
        return self.session

    async def _on_stop_session(self, msg: _Message) -> PlaybackSession:
        await self._teardown()
        return self.session

    def _begin(self, station: Station):
        self._generation += 1
        self._disliked_id = None
        self._session = PlaybackSession(station=station, generation=self._generation)

    async def _teardown(self):
        """Playing/anything -> stopped -> idle. Releases the engine, clears now-playing."""
        if self._session.station is None and self._session.phase == Phase.IDLE:
            return
        self._generation += 1
        if self._fetch_task and not self._fetch_task.done():
            self._fetch_task.cancel()
        self._fetch_task = None
        self._media_token = None
        await self.engine.stop()

        self._session.phase = Phase.STOPPED
        await self.publisher.broadcast("session", self._session.to_dict())

        self._session = PlaybackSession(generation=self._generation)
        await self._publish()

    # ── Track acquisition ────────────────────────────────────────────────────

    async def _request_next(self, delay: float = 0.0):
        """Ask the server for the next track; result comes back through the inbox."""
        station = self._session.station
        if station is None:
            return
        if self._fetch_task and not self._fetch_task.done():
            self._fetch_task.cancel()
        if delay <= 0:
            self._session.phase = Phase.LOADING
            await self._publish()
        self._fetch_seq += 1
        self._fetch_task = asyncio.create_task(
            self._fetch(self._generation, self._fetch_seq, station.id, delay)
        )

    async def _fetch(self, generation: int, seq: int, station_id, delay: float):
        if delay > 0:
            await asyncio.sleep(delay)
            self._post("fetch_started", generation=generation, seq=seq)
        try:
            track = await self.api.fetch_next_track(station_id)
        except TorjolanError as e:
            self._post("fetch_failed", generation=generation, seq=seq, error=e)
            return
        self._post("track_fetched", generation=generation, seq=seq, track=track)

    def _is_current_fetch(self, msg: _Message) -> bool:
        """Result belongs to this session and to the latest request."""
        if msg.data["generation"] != self._generation:
            return False
        # A replaced request may have posted before it was cancelled
        return msg.data.get("seq", self._fetch_seq) == self._fetch_seq

    async def _on_fetch_started(self, msg: _Message):
        if not self._is_current_fetch(msg):
            return
        if self._session.phase == Phase.RECOVERING:
            self._session.phase = Phase.LOADING
            await self._publish()

    async def _on_track_fetched(self, msg: _Message):
        track = msg.data["track"]
        if not self._is_current_fetch(msg):
            logger.debug("Dropping stale track %s (generation %s)", track.id, msg.data["generation"])
            return
        if self._session.phase not in (Phase.LOADING, Phase.RECOVERING):
            return
        if track.id == self._disliked_id:
            await self._advance_after_error(f"server returned disliked track {track.id} again")
            return
        await self._load_track(track)

    async def _on_fetch_failed(self, msg: _Message):
        error = msg.data["error"]
        if not self._is_current_fetch(msg):
            return
        if isinstance(error, Unauthorized):
            await self._lose_auth(error)
            return
        station = self._session.station
        message = format_error("fetch_next", str(error), {"station": station.id if station else None})
        self._session.consecutive_failures += 1
        self._session.phase = Phase.RECOVERING
        await self._publish()
        await self.publisher.error(message)

    async def _load_track(self, track: Track):
        self._disliked_id = None
        self._session.track = track
        self._session.thumbed_up = False
        self._session.position = 0.0
        self._session.duration = track.duration or 0.0
        self._session.phase = Phase.LOADING
        self._media_token = await self.engine.load(track.url)
        await self._publish()
        if track.cover_url:
            self._spawn(self._load_artwork(self._generation, track))

    async def _load_artwork(self, generation: int, track: Track):
        """Best-effort; never touches playback state."""
        try:
            data = await self.api.fetch_artwork(track.cover_url)
        except TorjolanError as e:
            logger.warning("Artwork for %s unavailable: %s", track.id, e)
            return
        if generation == self._generation:
            await self.publisher.set_artwork(track.id, data)

    # ── Engine events ────────────────────────────────────────────────────────

    async def _on_engine_event(self, msg: _Message):
        event: PlayerEvent = msg.data["event"]
        if event.token != self._media_token:
            logger.debug("Dropping stale engine event %s (token %s)", event.kind, event.token)
            return
        phase = self._session.phase

        if event.kind == READY:
            if phase != Phase.LOADING or self._session.track is None:
                return
            self._session.duration = event.duration or self._session.track.duration or 0.0
            await self.engine.play()
            self._session.phase = Phase.PLAYING
            self._session.consecutive_failures = 0
            await self._publish()

        elif event.kind == PLAYING:
            if phase == Phase.PAUSED and self._session.track is not None:
                self._session.phase = Phase.PLAYING
                await self._publish()

        elif event.kind == PAUSED:
            if phase == Phase.PLAYING:
                self._session.phase = Phase.PAUSED
                await self._publish()

        elif event.kind == ENDED:
            if phase not in (Phase.PLAYING, Phase.PAUSED):
                return
            track, station = self._session.track, self._session.station
            logger.info("Finished %s — %s", track.artist, track.title)
            self._spawn(self._report_completion(station.id, track.id))
            self._media_token = None
            await self.engine.stop()
            await self._request_next()

        elif event.kind == FAILED:
            if phase not in (Phase.LOADING, Phase.PLAYING, Phase.PAUSED):
                return
            track = self._session.track
            error = PlaybackFailure(event.reason or "playback failed")
            format_error("playback", str(error), {"track": track.id if track else None})
            self._media_token = None
            await self.engine.stop()
            await self._advance_after_error(str(error))

    async def _advance_after_error(self, reason: str):
        """Advance-on-error: skip to another track, backing off on repeats."""
        self._session.consecutive_failures += 1
        failures = self._session.consecutive_failures
        self._session.phase = Phase.RECOVERING
        await self._publish()
        if failures >= self.max_failures:
            message = format_error("gave_up", reason, {"failures": failures})
            await self.publisher.error(message)
            return
        await self._request_next(delay=self._backoff(failures))

    def _backoff(self, failures: int) -> float:
        if failures <= 1:
            return 0.0
        return min(self.retry_base_delay * 2 ** (failures - 2), self.retry_max_delay)

    def _on_tick(self, position: float, duration: Optional[float]):
        return self.publisher.tick(position, duration)

    # ── Transport ────────────────────────────────────────────────────────────

    async def _on_toggle_play_pause(self, msg: _Message) -> Phase:
        if self._session.phase == Phase.PLAYING:
            await self._pause()
        elif self._session.phase in (Phase.PAUSED, Phase.RECOVERING):
            await self._resume()
        return self._session.phase

    async def _on_play(self, msg: _Message) -> Phase:
        if self._session.phase in (Phase.PAUSED, Phase.RECOVERING):
            await self._resume()
        return self._session.phase

    async def _on_pause(self, msg: _Message) -> Phase:
        if self._session.phase == Phase.PLAYING:
            await self._pause()
        return self._session.phase

    async def _pause(self):
        await self.engine.pause()
        self._session.phase = Phase.PAUSED
        await self._publish()

    async def _resume(self):
        if self._session.phase == Phase.RECOVERING:
            # User asked for music: drop any backoff wait and fetch now
            self._session.consecutive_failures = 0
            await self._request_next()
            return
        await self.engine.play()
        self._session.phase = Phase.PLAYING
        await self._publish()

    async def _on_seek(self, msg: _Message) -> float:
        if self._session.phase not in (Phase.PLAYING, Phase.PAUSED):
            return self.session.position
        position = await self.engine.seek(msg.data["position"])
        self._session.position = position
        await self.publisher.tick(position, self.engine.duration)
        return position

    # ── Ratings / completion ─────────────────────────────────────────────────

    async def _on_rate(self, msg: _Message):
        track, station = self._session.track, self._session.station
        if track is None or self._session.phase not in (Phase.PLAYING, Phase.PAUSED):
            return False
        self._spawn(self._rate(self._generation, station.id, track.id, msg.data["direction"], msg.future))
        return _PENDING

    async def _rate(self, generation: int, station_id, track_id: str, direction: Rating, future):
        try:
            ok = await self.api.rate(station_id, track_id, direction)
        except TorjolanError as e:
            self._post("rated", generation=generation, track_id=track_id,
                       direction=direction, ok=False, error=e, caller=future)
            return
        self._post("rated", generation=generation, track_id=track_id,
                   direction=direction, ok=ok, error=None, caller=future)

    async def _on_rated(self, msg: _Message):
        data = msg.data
        caller: asyncio.Future = data["caller"]
        error = data["error"]
        current = (
            data["generation"] == self._generation
            and self._session.track is not None
            and self._session.track.id == data["track_id"]
        )

        if isinstance(error, Unauthorized):
            if data["generation"] == self._generation:
                await self._lose_auth(error)
            if not caller.done():
                caller.set_exception(error)
            return
        if error is not None:
            format_error("rate", str(error), {"track": data["track_id"], "direction": data["direction"].value})
        elif not data["ok"]:
            logger.warning("Server declined thumbs %s for %s", data["direction"].value, data["track_id"])

        if data["ok"] and current:
            on_track = self._session.phase in (Phase.PLAYING, Phase.PAUSED)
            if data["direction"] == Rating.UP:
                if on_track:
                    self._session.thumbed_up = True
                    await self._publish()
            elif on_track:
                await self._skip_disliked()
            else:
                # Track already ended and its successor is being fetched
                self._disliked_id = data["track_id"]

        if not caller.done():
            caller.set_result(bool(data["ok"]))

    async def _skip_disliked(self):
        """playing -> stopped -> loading, same station, never the same track."""
        track = self._session.track
        logger.info("Thumbs down on %s — %s, skipping", track.artist, track.title)
        self._disliked_id = track.id
        self._media_token = None
        await self.engine.stop()
        self._session.track = None
        self._session.thumbed_up = False
        self._session.position = 0.0
        self._session.duration = 0.0
        self._session.phase = Phase.STOPPED
        await self._publish()
        await self._request_next()

    async def _report_completion(self, station_id, track_id: str):
        """Best-effort; failures are logged and never block advancing."""
        try:
            ok = await self.api.report_completion(station_id, track_id)
        except TorjolanError as e:
            format_error("completion", str(e), {"station": station_id, "track": track_id})
            return
        if not ok:
            logger.warning("Server declined completion of %s", track_id)

    # ── Helpers ──────────────────────────────────────────────────────────────

    async def _lose_auth(self, error: Unauthorized):
        message = format_error("auth", str(error))
        await self._teardown()
        await self.publisher.unauthorized(message)

    async def _publish(self):
        await self.publisher.update(self._session)
