"""Error taxonomy + structured error logging (JSON lines to errors.log)."""
import json
import logging
import sys
from datetime import datetime
from typing import Optional

from .config import ERRORS_LOG, OUTPUT_DIR, DEV_MODE

logger = logging.getLogger(__name__)


class TorjolanError(Exception):
    """Base for every error raised by the client."""

    stage = "client"

    def __init__(self, message: str = "", details: Optional[dict] = None):
        self.message = message or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)


class InvalidEndpoint(TorjolanError):
    """No server host configured, or the request URL can't be built."""

    stage = "endpoint"


class NetworkFailure(TorjolanError):
    """Transport error, timeout or non-2xx response other than 401."""

    stage = "network"

    def __init__(self, message: str = "", status_code: Optional[int] = None, details: Optional[dict] = None):
        self.status_code = status_code
        super().__init__(message, details)


class Unauthorized(TorjolanError):
    """HTTP 401. The caller has to log in again."""

    stage = "auth"


class DecodingFailure(TorjolanError):
    """Response body isn't the JSON shape we expect."""

    stage = "decode"


class PlaybackFailure(TorjolanError):
    """Reported by the playback engine."""

    stage = "playback"


class CredentialError(TorjolanError):
    """Credential file couldn't be written or removed."""

    stage = "credentials"


_FRIENDLY_MESSAGES = {
    "fetch_next": "Couldn't get the next track. Press play to try again.",
    "playback": "Track failed to play — skipping ahead...",
    "rate": "Couldn't save your rating.",
    "completion": "Couldn't report the finished track.",
    "artwork": "Artwork unavailable.",
    "auth": "Session expired. Log in again.",
    "gave_up": "Too many failures in a row — press play to try again.",
}


def format_error(
    stage: str,
    raw: str = "",
    context: Optional[dict] = None,
) -> str:
    entry = {
        "timestamp": datetime.now().isoformat(),
        "stage": stage,
        "context": context,
        "error": raw,
        "python": sys.version.split()[0],
    }

    _append_to_log(entry)
    logger.error("Error at %s: %s", stage, raw)

    if DEV_MODE:
        return json.dumps(entry, indent=2)
    return _FRIENDLY_MESSAGES.get(stage, f"Something went wrong ({stage}).")


def _append_to_log(entry: dict):
    try:
        OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
        with open(ERRORS_LOG, "a") as f:
            f.write(json.dumps(entry) + "\n")
    except OSError:
        pass
