"""Typed records decoded from the station server's JSON."""
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Optional

from .errors import DecodingFailure


def _require(data: Any, *keys: str) -> dict:
    if not isinstance(data, dict):
        raise DecodingFailure(f"expected object, got {type(data).__name__}")
    missing = [k for k in keys if k not in data]
    if missing:
        raise DecodingFailure(f"missing keys: {', '.join(missing)}", {"keys": missing})
    return data


def _optional_float(value: Any) -> Optional[float]:
    if value in (None, ""):
        return None
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise DecodingFailure(f"bad duration: {value!r}") from e


@dataclass(frozen=True)
class Station:
    id: int | str
    name: str

    @classmethod
    def from_json(cls, data: Any) -> "Station":
        data = _require(data, "id", "name")
        return cls(id=data["id"], name=str(data["name"]))


@dataclass(frozen=True)
class Track:
    id: str
    title: str
    artist: str
    album: str
    url: str
    cover_url: Optional[str] = None
    duration: Optional[float] = None

    @classmethod
    def from_json(cls, data: Any) -> "Track":
        """Decode a stream response: url, song_id, artist, title, album, cover_url."""
        data = _require(data, "url", "song_id", "artist", "title", "album")
        if not data["url"]:
            raise DecodingFailure("stream response has an empty url")
        return cls(
            id=str(data["song_id"]),
            title=str(data["title"]),
            artist=str(data["artist"]),
            album=str(data["album"]),
            url=str(data["url"]),
            cover_url=data.get("cover_url") or None,
            duration=_optional_float(data.get("duration")),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "artist": self.artist,
            "album": self.album,
            "url": self.url,
            "cover_url": self.cover_url,
            "duration": self.duration,
        }


@dataclass(frozen=True)
class SearchResult:
    id: str
    artist: str
    album: str
    title: str

    @classmethod
    def from_json(cls, data: Any) -> "SearchResult":
        data = _require(data, "id", "artist", "album", "title")
        return cls(
            id=str(data["id"]),
            artist=str(data["artist"]),
            album=str(data["album"]),
            title=str(data["title"]),
        )


@dataclass(frozen=True)
class AuthResponse:
    token: str
    id: int
    username: str

    @classmethod
    def from_json(cls, data: Any) -> "AuthResponse":
        data = _require(data, "token", "id", "username")
        return cls(token=str(data["token"]), id=data["id"], username=str(data["username"]))


class Rating(str, Enum):
    UP = "up"
    DOWN = "down"

    @property
    def endpoint(self) -> str:
        return f"thumbs_{self.value}"


class Phase(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    PLAYING = "playing"
    PAUSED = "paused"
    RECOVERING = "recovering"
    STOPPED = "stopped"


@dataclass
class PlaybackSession:
    """Live state of the one active session. Mutated only by SessionController."""

    station: Optional[Station] = None
    track: Optional[Track] = None
    phase: Phase = Phase.IDLE
    position: float = 0.0
    duration: float = 0.0
    thumbed_up: bool = False
    generation: int = 0
    consecutive_failures: int = field(default=0, repr=False)

    def copy(self) -> "PlaybackSession":
        return replace(self)

    def to_dict(self) -> dict:
        return {
            "phase": self.phase.value,
            "station": {"id": self.station.id, "name": self.station.name} if self.station else None,
            "track": self.track.to_dict() if self.track else None,
            "position": round(self.position, 1),
            "duration": round(self.duration, 1),
            "thumbed_up": self.thumbed_up,
            "generation": self.generation,
        }
