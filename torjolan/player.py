"""Playback Engine — ffplay/ffprobe subprocesses behind a small event API"""
import asyncio
import inspect
import logging
import os
import signal
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .config import FFPLAY_BIN, FFPROBE_BIN, PROBE_TIMEOUT, TICK_INTERVAL

logger = logging.getLogger(__name__)

READY = "ready"
PLAYING = "playing"
PAUSED = "paused"
FAILED = "failed"
ENDED = "ended"


@dataclass(frozen=True)
class PlayerEvent:
    kind: str
    token: int
    reason: str = ""
    duration: Optional[float] = None


TickCallback = Callable[[float, Optional[float]], Any]


class PlaybackEngine:
    """Media-agnostic half: media tokens, the event queue and position polling.

    Every load() hands out a new token; events carry the token of the media
    they belong to so a consumer can drop anything left over from an
    earlier load.
    """

    def __init__(self, tick_interval: float = TICK_INTERVAL):
        self._events: asyncio.Queue = asyncio.Queue()
        self._token = 0
        self._loaded = False
        self._duration: Optional[float] = None
        self._tick_interval = min(tick_interval, 0.5)
        self._on_tick: Optional[TickCallback] = None
        self._poll_task: Optional[asyncio.Task] = None

    # ── Events ─────────────────────────────────────────────────────────────────

    async def next_event(self) -> PlayerEvent:
        """Single consumption point for ready/playing/paused/failed/ended."""
        return await self._events.get()

    def _emit(self, kind: str, token: Optional[int] = None, **kwargs):
        self._events.put_nowait(PlayerEvent(kind, self._token if token is None else token, **kwargs))

    # ── Load / unload ──────────────────────────────────────────────────────────

    async def load(self, url: str) -> int:
        """Replace whatever is loaded. Emits ready or failed later."""
        await self.stop()
        self._token += 1
        self._loaded = True
        self._duration = None
        self._start_polling()
        await self._load_media(url, self._token)
        return self._token

    async def stop(self):
        """Release the current media. No events follow for it."""
        if not self._loaded:
            return
        self._stop_polling()
        await self._release()
        self._loaded = False
        self._duration = None

    @property
    def token(self) -> int:
        return self._token

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    @property
    def duration(self) -> Optional[float]:
        return self._duration

    @property
    def position(self) -> float:
        return 0.0

    # ── Polling ────────────────────────────────────────────────────────────────

    def set_tick_callback(self, callback: Optional[TickCallback]):
        self._on_tick = callback

    def _start_polling(self):
        self._stop_polling()
        self._poll_task = asyncio.create_task(self._poll_loop())

    def _stop_polling(self):
        if self._poll_task and not self._poll_task.done():
            self._poll_task.cancel()
        self._poll_task = None

    async def _poll_loop(self):
        while self._loaded:
            await asyncio.sleep(self._tick_interval)
            if self._on_tick is None:
                continue
            try:
                result = self._on_tick(self.position, self.duration)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Tick callback failed")

    # ── Transport (subclasses) ─────────────────────────────────────────────────

    async def _load_media(self, url: str, token: int):
        raise NotImplementedError

    async def _release(self):
        raise NotImplementedError

    async def play(self):
        raise NotImplementedError

    async def pause(self):
        raise NotImplementedError

    async def seek(self, position: float) -> float:
        raise NotImplementedError

    def _clamp(self, position: float) -> float:
        position = max(0.0, position)
        if self._duration:
            position = min(position, self._duration)
        return position


class FFPlayEngine(PlaybackEngine):
    """Plays URLs through ffplay; ffprobe supplies the duration.

    Pause is SIGSTOP/SIGCONT on the ffplay process, so position is kept.
    Seek restarts ffplay with -ss at the target offset.
    """

    def __init__(self, tick_interval: float = TICK_INTERVAL,
                 ffplay: str = FFPLAY_BIN, ffprobe: str = FFPROBE_BIN):
        super().__init__(tick_interval)
        self._ffplay = ffplay
        self._ffprobe = ffprobe
        self._url: Optional[str] = None
        self._ready = False
        self._proc: Optional[asyncio.subprocess.Process] = None
        self._probe_task: Optional[asyncio.Task] = None
        self._watcher_task: Optional[asyncio.Task] = None
        self._paused = False
        self._play_start = 0.0
        self._paused_at = 0.0
        self._total_paused = 0.0
        self._seek_offset = 0.0

    # ── Load / probe ───────────────────────────────────────────────────────────

    async def _load_media(self, url: str, token: int):
        self._url = url
        self._ready = False
        self._probe_task = asyncio.create_task(self._probe(url, token))

    async def _probe(self, url: str, token: int):
        try:
            proc = await asyncio.create_subprocess_exec(
                self._ffprobe, "-v", "error",
                "-show_entries", "format=duration",
                "-of", "default=noprint_wrappers=1:nokey=1",
                url,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            self._emit(FAILED, token, reason=f"can't run {self._ffprobe}: {e}")
            return
        try:
            out, err = await asyncio.wait_for(proc.communicate(), timeout=PROBE_TIMEOUT)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            self._emit(FAILED, token, reason=f"probe timed out after {PROBE_TIMEOUT:.0f}s")
            return
        if proc.returncode != 0:
            self._emit(FAILED, token, reason=err.decode(errors="replace").strip()[:200] or "probe failed")
            return

        try:
            self._duration = float(out.decode().strip())
        except ValueError:
            # Live streams report N/A
            self._duration = None
        self._ready = True
        self._emit(READY, token, duration=self._duration)

    # ── Transport ──────────────────────────────────────────────────────────────

    async def play(self):
        """Start output for loaded media, or resume it in place."""
        if not self._loaded or not self._ready:
            return
        if self._proc and self._paused:
            self._signal(signal.SIGCONT)
            if self._paused_at > 0:
                self._total_paused += time.monotonic() - self._paused_at
                self._paused_at = 0.0
            self._paused = False
            self._emit(PLAYING)
            return
        if self._proc is None:
            await self._spawn(self._seek_offset)
            self._emit(PLAYING)

    async def pause(self):
        if self._proc and not self._paused:
            self._signal(signal.SIGSTOP)
            self._paused = True
            self._paused_at = time.monotonic()
            self._emit(PAUSED)

    async def seek(self, position: float) -> float:
        """Jump to position (clamped to [0, duration]). Keeps paused state."""
        position = self._clamp(position)
        if not self._loaded or not self._ready:
            return position
        was_paused = self._paused
        if self._proc is None:
            # Not started yet; play() picks the offset up
            self._seek_offset = position
            return position
        await self._kill()
        await self._spawn(position)
        if was_paused:
            self._signal(signal.SIGSTOP)
            self._paused = True
            self._paused_at = time.monotonic()
        return position

    async def _spawn(self, offset: float):
        args = [self._ffplay, "-nodisp", "-autoexit", "-loglevel", "error"]
        if offset > 0:
            args += ["-ss", f"{offset:.2f}"]
        args.append(self._url)
        try:
            self._proc = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            self._proc = None
            self._emit(FAILED, reason=f"can't run {self._ffplay}: {e}")
            return
        self._paused = False
        self._play_start = time.monotonic()
        self._paused_at = 0.0
        self._total_paused = 0.0
        self._seek_offset = offset
        self._watcher_task = asyncio.create_task(self._watch(self._proc, self._token))

    async def _watch(self, proc: asyncio.subprocess.Process, token: int):
        """Waits for ffplay to exit, then reports why."""
        _, err = await proc.communicate()
        if proc is not self._proc:
            return
        self._proc = None
        if proc.returncode == 0:
            self._emit(ENDED, token)
        else:
            reason = err.decode(errors="replace").strip()[:200] if err else ""
            self._emit(FAILED, token, reason=reason or f"ffplay exited with {proc.returncode}")

    def _signal(self, sig: int):
        if self._proc is None:
            return
        try:
            os.kill(self._proc.pid, sig)
        except ProcessLookupError:
            pass

    async def _kill(self):
        """Terminate ffplay without reporting it; the watcher is cancelled first."""
        if self._watcher_task and not self._watcher_task.done():
            self._watcher_task.cancel()
        self._watcher_task = None
        proc, self._proc = self._proc, None
        if proc is None or proc.returncode is not None:
            return
        if self._paused:
            # SIGSTOP blocks SIGTERM, resume first
            try:
                os.kill(proc.pid, signal.SIGCONT)
            except ProcessLookupError:
                pass
        try:
            proc.terminate()
            await asyncio.wait_for(proc.wait(), timeout=2)
        except ProcessLookupError:
            pass
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()

    async def _release(self):
        if self._probe_task and not self._probe_task.done():
            self._probe_task.cancel()
        self._probe_task = None
        await self._kill()
        self._url = None
        self._ready = False
        self._paused = False
        self._play_start = 0.0
        self._paused_at = 0.0
        self._total_paused = 0.0
        self._seek_offset = 0.0

    # ── State ──────────────────────────────────────────────────────────────────

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def position(self) -> float:
        """Seconds into the track, accounting for pauses and seeks."""
        if self._play_start == 0:
            return self._seek_offset
        if self._paused and self._paused_at > 0:
            raw = self._paused_at - self._play_start - self._total_paused
        else:
            raw = time.monotonic() - self._play_start - self._total_paused
        return self._clamp(self._seek_offset + raw)
