"""Starlette app — HTTP routes + WebSocket remote control / now-playing feed."""
import asyncio
import contextlib
import logging
import shutil
import uuid
from typing import Optional

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route, WebSocketRoute
from starlette.websockets import WebSocket, WebSocketDisconnect

from ..api import ApiClient
from ..config import APP_VERSION, FFPLAY_BIN, FFPROBE_BIN
from ..credentials import CredentialStore
from ..errors import InvalidEndpoint, TorjolanError, Unauthorized
from ..models import Station
from ..nowplaying import NowPlayingPublisher, RemoteCommands
from ..player import FFPlayEngine, PlaybackEngine
from ..session import SessionController

logger = logging.getLogger(__name__)

# Shared state, wired by create_app()
_publisher = NowPlayingPublisher()
_store: Optional[CredentialStore] = None
_api: Optional[ApiClient] = None
_controller: Optional[SessionController] = None
_remote: Optional[RemoteCommands] = None


def _error_response(e: Exception) -> JSONResponse:
    if isinstance(e, Unauthorized):
        return JSONResponse({"error": "unauthorized", "message": e.message}, status_code=401)
    if isinstance(e, InvalidEndpoint):
        return JSONResponse({"error": "invalid_endpoint", "message": e.message}, status_code=503)
    if isinstance(e, LookupError):
        return JSONResponse({"error": "not_found", "message": str(e)}, status_code=404)
    if isinstance(e, TorjolanError):
        return JSONResponse({"error": e.stage, "message": e.message}, status_code=502)
    raise e


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse({"error": "bad_request", "message": message}, status_code=400)


async def _json_body(request: Request) -> Optional[dict]:
    """Request body as a dict, or None when it isn't a JSON object."""
    try:
        body = await request.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


# ── Health ───────────────────────────────────────────────────────────────────

async def health(request):
    checks = {}

    host = _store.host if _store else None
    checks["host"] = {"ok": bool(host), "host": host}
    checks["credentials"] = {"ok": bool(_store and _store.load())}
    checks["ffplay"] = {"ok": shutil.which(FFPLAY_BIN) is not None}
    checks["ffprobe"] = {"ok": shutil.which(FFPROBE_BIN) is not None}

    all_ok = all(c["ok"] for c in checks.values())
    return JSONResponse({
        "status": "ok" if all_ok else "degraded",
        "version": APP_VERSION,
        "checks": checks,
    })


# ── Auth ─────────────────────────────────────────────────────────────────────

async def login(request: Request):
    body = await _json_body(request)
    if body is None:
        return _bad_request("body must be a JSON object")
    username = (body.get("username") or "").strip()
    if not username:
        return _bad_request("username is required")
    try:
        auth = await _api.login(username)
    except TorjolanError as e:
        return _error_response(e)
    _store.save(auth.token)
    return JSONResponse({"id": auth.id, "username": auth.username})


# ── Stations ─────────────────────────────────────────────────────────────────

async def list_stations(request):
    try:
        stations = await _api.list_stations()
    except TorjolanError as e:
        return _error_response(e)
    current = _controller.session.station if _controller else None
    return JSONResponse({
        "stations": [
            {"id": s.id, "name": s.name, "is_current": current is not None and current.id == s.id}
            for s in stations
        ],
    })


async def create_station(request: Request):
    """Create a station from a song id (or a title query) and start playing it."""
    body = await _json_body(request)
    if body is None:
        return _bad_request("body must be a JSON object")
    name = (body.get("name") or "").strip()
    song_id = body.get("song_id")
    query = (body.get("query") or "").strip()
    if not name or not (song_id or query):
        return _bad_request("name and song_id or query are required")
    try:
        if song_id:
            station, track = await _api.create_station(name, str(song_id))
        else:
            station, track = await _api.create_station_from_query(name, query)
    except (TorjolanError, LookupError) as e:
        return _error_response(e)
    session = await _controller.start_new_station(station, track)
    return JSONResponse({"station": {"id": station.id, "name": station.name},
                         "session": session.to_dict()}, status_code=201)


async def play_station(request: Request):
    raw_id = request.path_params["station_id"]
    station_id = int(raw_id) if raw_id.isdigit() else raw_id
    try:
        stations = await _api.list_stations()
    except TorjolanError as e:
        return _error_response(e)
    station = next((s for s in stations if s.id == station_id), None)
    if station is None:
        return _error_response(LookupError(f"No station {station_id}"))
    session = await _controller.start_station(station)
    return JSONResponse({"session": session.to_dict()})


async def search(request: Request):
    artist = request.query_params.get("artist")
    title = request.query_params.get("title")
    try:
        results = await _api.search(artist=artist, title=title)
    except TorjolanError as e:
        return _error_response(e)
    return JSONResponse({"results": [
        {"id": r.id, "artist": r.artist, "album": r.album, "title": r.title} for r in results
    ]})


# ── Now playing ──────────────────────────────────────────────────────────────

async def now_playing(request):
    return JSONResponse(_publisher.snapshot())


async def artwork(request):
    data = _publisher.artwork
    if data is None:
        return Response("Not found", status_code=404)
    return Response(data, media_type="image/jpeg")


# ── WebSocket ────────────────────────────────────────────────────────────────

async def websocket_endpoint(websocket: WebSocket):
    await websocket.accept()
    client_id = str(uuid.uuid4())
    queue = _publisher.subscribe(client_id)
    logger.info("WS connected: %s", client_id)

    # Send initial sync
    await websocket.send_json({"type": "sync", "data": _publisher.snapshot()})

    # Two tasks: one reads from client, one writes from queue
    async def _reader():
        while True:
            try:
                data = await websocket.receive_json()
            except WebSocketDisconnect:
                return
            except ValueError:
                await _reject(websocket, "messages must be JSON objects")
                continue
            if not isinstance(data, dict):
                await _reject(websocket, "messages must be JSON objects")
                continue
            try:
                await _handle_ws_message(data)
            except (TorjolanError, ValueError, TypeError) as e:
                logger.warning("WS %s: %r failed: %s", client_id, data.get("type"), e)
                await _reject(websocket, str(e))

    async def _writer():
        try:
            while True:
                event, data = await queue.get()
                await websocket.send_json({"type": event, "data": data})
        except (WebSocketDisconnect, RuntimeError):
            # Socket closed under us; the reader sees the disconnect too
            return

    reader_task = asyncio.create_task(_reader())
    writer_task = asyncio.create_task(_writer())

    try:
        done, pending = await asyncio.wait(
            [reader_task, writer_task],
            return_when=asyncio.FIRST_COMPLETED,
        )
        for task in pending:
            task.cancel()
    finally:
        _publisher.unsubscribe(client_id)
        logger.info("WS disconnected: %s", client_id)


async def _reject(websocket: WebSocket, message: str):
    """Tell one client its message was refused; the connection stays open."""
    await websocket.send_json({"type": "error", "data": {"message": message}})


async def _handle_ws_message(data: dict):
    """Route incoming WebSocket messages to the same operations the buttons use."""
    if not _controller:
        return

    msg_type = data.get("type", "")

    try:
        if msg_type in RemoteCommands.COMMANDS:
            await _remote.handle(msg_type)

        elif msg_type == "seek":
            await _controller.seek(float(data.get("position", 0)))

        elif msg_type == "start_station":
            station_id = data.get("id")
            name = str(data.get("name") or "").strip()
            if station_id is not None:
                await _controller.start_station(Station(id=station_id, name=name or str(station_id)))

        else:
            logger.warning("Unknown WS message type: %s", msg_type)
    except Unauthorized:
        # Already broadcast as an "unauthorized" event
        pass


# ── App factory ──────────────────────────────────────────────────────────────

def create_app(
    store: Optional[CredentialStore] = None,
    engine: Optional[PlaybackEngine] = None,
    api: Optional[ApiClient] = None,
) -> Starlette:
    global _store, _api, _controller, _remote, _publisher

    _publisher = NowPlayingPublisher()
    _store = store or CredentialStore()
    _api = api or ApiClient(_store.host, _store.load())
    _controller = SessionController(_api, engine or FFPlayEngine(), _publisher)
    _remote = RemoteCommands(_controller)

    routes = [
        Route("/api/health", health),
        Route("/api/login", login, methods=["POST"]),
        Route("/api/stations", list_stations, methods=["GET"]),
        Route("/api/stations", create_station, methods=["POST"]),
        Route("/api/stations/{station_id}/play", play_station, methods=["POST"]),
        Route("/api/search", search),
        Route("/api/now-playing", now_playing),
        Route("/api/artwork", artwork),
        WebSocketRoute("/ws", websocket_endpoint),
    ]

    return Starlette(routes=routes, lifespan=_lifespan)


@contextlib.asynccontextmanager
async def _lifespan(app):
    """Start the session controller; tear it down with the app."""
    await _controller.start()
    logger.info("Session controller started")
    try:
        yield
    finally:
        await _controller.close()
        await _api.aclose()
        logger.info("Session controller stopped")
