"""Unit tests for the decoded server records."""

import pytest

from torjolan.errors import DecodingFailure
from torjolan.models import AuthResponse, Phase, PlaybackSession, Rating, SearchResult, Station, Track


def test_track_from_stream_response():
    """Test stream JSON decodes into a Track."""
    track = Track.from_json({
        "url": "https://cdn.example.com/1.mp3",
        "song_id": 1,
        "artist": "Sabaton",
        "title": "Primo Victoria",
        "album": "Primo Victoria",
        "cover_url": "",
        "duration": "245.5",
    })

    assert track.id == "1"
    assert track.cover_url is None
    assert track.duration == 245.5


def test_track_requires_url():
    """Test a track without something to play is rejected."""
    with pytest.raises(DecodingFailure):
        Track.from_json({"url": "", "song_id": 1, "artist": "a", "title": "t", "album": "b"})


def test_track_missing_keys():
    """Test missing keys are named in the error."""
    with pytest.raises(DecodingFailure) as exc_info:
        Track.from_json({"url": "https://x/1.mp3", "song_id": 1})

    assert exc_info.value.details["keys"] == ["artist", "title", "album"]


def test_track_bad_duration():
    """Test a non-numeric duration is a decoding failure."""
    with pytest.raises(DecodingFailure):
        Track.from_json({
            "url": "https://x/1.mp3", "song_id": 1, "artist": "a", "title": "t", "album": "b",
            "duration": "long",
        })


@pytest.mark.parametrize("payload", [None, [], "station"])
def test_station_requires_object(payload):
    """Test non-objects are rejected."""
    with pytest.raises(DecodingFailure):
        Station.from_json(payload)


def test_search_result_and_auth():
    """Test search hits and login answers decode."""
    hit = SearchResult.from_json({"id": 5, "artist": "a", "album": "b", "title": "t"})
    auth = AuthResponse.from_json({"token": "tok", "id": 3, "username": "kai"})

    assert hit.id == "5"
    assert auth.token == "tok"


def test_rating_endpoints():
    """Test each direction knows its endpoint."""
    assert Rating.UP.endpoint == "thumbs_up"
    assert Rating("down").endpoint == "thumbs_down"


def test_session_copy_is_independent():
    """Test copies don't share mutations with the original."""
    session = PlaybackSession(station=Station(1, "S"), phase=Phase.PLAYING)
    snap = session.copy()
    snap.phase = Phase.PAUSED

    assert session.phase == Phase.PLAYING


def test_session_to_dict():
    """Test the serialised session has no internal counters."""
    track = Track(id="1", title="t", artist="a", album="b", url="https://x/1.mp3")
    session = PlaybackSession(
        station=Station(1, "S"), track=track, phase=Phase.PAUSED,
        position=12.345, duration=200.0, consecutive_failures=2,
    )

    data = session.to_dict()

    assert data["phase"] == "paused"
    assert data["station"] == {"id": 1, "name": "S"}
    assert data["track"]["url"] == "https://x/1.mp3"
    assert data["position"] == 12.3
    assert "consecutive_failures" not in data
