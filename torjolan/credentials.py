"""Credential Store — bearer token + server host, one JSON file."""
import json
import logging
import os
from pathlib import Path
from typing import Optional

from .config import CREDENTIALS_FILE, DEFAULT_HOST
from .errors import CredentialError

logger = logging.getLogger(__name__)


class CredentialStore:
    def __init__(self, path: Path = CREDENTIALS_FILE):
        self.path = Path(path)

    # ── File I/O ───────────────────────────────────────────────────────────────

    def _read(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text())
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Ignoring unreadable credentials file %s: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict):
        """Atomic write (tmp then replace), owner-only permissions."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(".tmp")
            fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2)
            tmp.replace(self.path)
        except OSError as e:
            raise CredentialError(f"Couldn't write {self.path}: {e}") from e

    # ── Token ──────────────────────────────────────────────────────────────────

    def load(self) -> Optional[str]:
        return self._read().get("token") or None

    def save(self, token: str):
        data = self._read()
        data["token"] = token
        self._write(data)

    def delete(self):
        """Forget the token. Missing token is fine."""
        data = self._read()
        if data.pop("token", None) is None:
            return
        self._write(data)

    # ── Host ───────────────────────────────────────────────────────────────────

    @property
    def host(self) -> Optional[str]:
        return self._read().get("host") or DEFAULT_HOST or None

    @host.setter
    def host(self, value: Optional[str]):
        data = self._read()
        if value:
            data["host"] = value.rstrip("/")
        else:
            data.pop("host", None)
        self._write(data)

    @property
    def is_host_configured(self) -> bool:
        return self.host is not None

    @property
    def is_logged_in(self) -> bool:
        return self.is_host_configured and self.load() is not None
