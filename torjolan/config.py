"""Config & Constants"""
import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root (one level up from torjolan/)
_ROOT = Path(__file__).parent.parent
load_dotenv(_ROOT / ".env")

# ─── Paths ────────────────────────────────────────────────────────────────────
ROOT_DIR = _ROOT
CONFIG_DIR = Path(os.getenv("CONFIG_DIR", str(Path.home() / ".config" / "torjolan"))).expanduser()
CREDENTIALS_FILE = CONFIG_DIR / "credentials.json"
OUTPUT_DIR = ROOT_DIR / os.getenv("OUTPUT_DIR", "output")
ERRORS_LOG = OUTPUT_DIR / "errors.log"

# ─── Remote service ───────────────────────────────────────────────────────────
# Used only when no host has been saved with `radio.py host <url>`
DEFAULT_HOST = os.getenv("TORJOLAN_HOST", "").rstrip("/")
HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", "10"))

# ─── Playback ─────────────────────────────────────────────────────────────────
FFPLAY_BIN = os.getenv("FFPLAY_BIN", "ffplay")
FFPROBE_BIN = os.getenv("FFPROBE_BIN", "ffprobe")
PROBE_TIMEOUT = float(os.getenv("PROBE_TIMEOUT", "15"))
# Position/duration sampling; the lock-screen surface needs at least 2 Hz
TICK_INTERVAL = min(float(os.getenv("TICK_INTERVAL", "0.5")), 0.5)

# ─── Recovery ─────────────────────────────────────────────────────────────────
RETRY_BASE_DELAY = float(os.getenv("RETRY_BASE_DELAY", "1.0"))
RETRY_MAX_DELAY = float(os.getenv("RETRY_MAX_DELAY", "30.0"))
MAX_CONSECUTIVE_FAILURES = int(os.getenv("MAX_CONSECUTIVE_FAILURES", "5"))

APP_VERSION = "0.1.0"

# ─── Web server ──────────────────────────────────────────────────────────────
WEB_HOST = os.getenv("WEB_HOST", "127.0.0.1")
WEB_PORT = int(os.getenv("WEB_PORT", "8888"))

# ─── Dev mode / logging ───────────────────────────────────────────────────────
DEV_MODE = os.getenv("DEV_MODE", "0").strip() in ("1", "true", "yes")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
