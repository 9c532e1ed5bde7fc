"""Terminal input — raw single-key reading mapped to player actions."""
import select as _sel
import sys
import termios
import tty
from typing import Optional

# Keys -> RemoteCommands names, plus local seek/quit actions
KEYMAP = {
    " ": "toggle",
    "\x10": "toggle",   # Ctrl+P
    "p": "toggle",
    "+": "like",
    "=": "like",
    "-": "dislike",
    "q": "quit",
    "\x03": "quit",     # Ctrl+C in raw mode
}


def _read_key_timeout(timeout: float = 0.5) -> Optional[str]:
    """Read one logical keypress if one arrives within timeout, else None.

    Arrow keys come back as "left"/"right"/"up"/"down".
    """
    fd = sys.stdin.fileno()
    old = termios.tcgetattr(fd)
    try:
        tty.setcbreak(fd)
        readable, _, _ = _sel.select([sys.stdin], [], [], timeout)
        if not readable:
            return None
        ch = sys.stdin.read(1)
        if ch != "\x1b":
            return ch
        readable, _, _ = _sel.select([sys.stdin], [], [], 0.05)
        if not readable or sys.stdin.read(1) != "[":
            return "esc"
        readable, _, _ = _sel.select([sys.stdin], [], [], 0.05)
        if not readable:
            return "esc"
        return {"A": "up", "B": "down", "C": "right", "D": "left"}.get(sys.stdin.read(1), "ignore")
    finally:
        termios.tcsetattr(fd, termios.TCSADRAIN, old)


def key_action(key: Optional[str]) -> Optional[str]:
    if key is None:
        return None
    if key == "left":
        return "seek_back"
    if key == "right":
        return "seek_forward"
    return KEYMAP.get(key.lower() if len(key) == 1 else key)
