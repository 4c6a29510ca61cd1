"""
=============================================================================
ACCESS LOG
=============================================================================

Appends one line per completed exchange.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    AccessLog.write(message)                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   disabled?           → skip                                         │
    │   no file configured  → "webserve.access" logger at INFO            │
    │   otherwise           → append line (serialized by a lock)          │
    │        │                                                             │
    │        ├── FileNotFoundError                                         │
    │        │      create missing directories one level at a time,        │
    │        │      then retry the append ONCE                             │
    │        │                                                             │
    │        └── any other OSError (or the retry failing)                  │
    │               report through on_error, never raise                   │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Worker threads finish exchanges concurrently; the lock keeps lines from
interleaving.

=============================================================================
"""

import logging
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Sequence, Union

from .http.message import Message


logger = logging.getLogger(__name__)
access_logger = logging.getLogger("webserve.access")

ErrorCallback = Callable[[Dict[str, Any]], None]


def make_directories(directory: Path) -> None:
    """Create a directory chain one level at a time, outermost first."""
    missing = []
    current = directory
    while not current.exists():
        missing.append(current)
        if current.parent == current:
            break
        current = current.parent

    for level in reversed(missing):
        try:
            level.mkdir()
        except FileExistsError:
            pass


class AccessLog:
    """
    Writer for access-log lines.

    Args:
        path:     Log file, or None to log through "webserve.access".
        enabled:  Master switch.
        format:   Line layout passed to Message.to_string().
        fields:   Field list for the "w3c" layout.
        on_error: Called with {"error", "entry", "file"} when a line is lost.
    """

    def __init__(
        self,
        path: Union[str, Path, None] = None,
        enabled: bool = True,
        format: Optional[str] = None,
        fields: Sequence[str] = (),
        on_error: Optional[ErrorCallback] = None,
    ):
        self.path = Path(path) if path else None
        self.enabled = enabled
        self.format = format
        self.fields = list(fields)
        self.on_error = on_error
        self._lock = threading.Lock()

    def format_entry(self, message: Message) -> str:
        return message.to_string(self.format, self.fields)

    def write(self, message: Message) -> bool:
        """
        Record one exchange.

        Returns:
            True if the line was written (or logging is off), False if lost.
        """
        if not self.enabled:
            return True

        entry = self.format_entry(message)
        if self.path is None:
            access_logger.info(entry)
            return True

        return self.append(entry)

    def append(self, entry: str) -> bool:
        """Append a raw line, creating parent directories on demand."""
        with self._lock:
            try:
                self._append(entry)
                return True
            except FileNotFoundError:
                pass
            except OSError as e:
                self._report(e, entry)
                return False

            try:
                make_directories(self.path.parent)
                self._append(entry)
                return True
            except OSError as e:
                self._report(e, entry)
                return False

    def _append(self, entry: str) -> None:
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(entry + "\n")

    def _report(self, error: OSError, entry: str) -> None:
        logger.error(f"Could not write access log {self.path}: {error}")
        if self.on_error:
            self.on_error({"error": error, "entry": entry, "file": str(self.path)})
