"""User-facing notifications (info / warn / error)."""

from typing import List, Tuple

INFO = "info"
WARN = "warn"
ERROR = "error"

_MARKERS = {INFO: "✓", WARN: "⚠", ERROR: "✗"}


class Notifier:
    """Prints notifications and keeps them for later inspection."""

    def __init__(self, quiet: bool = False):
        self.quiet = quiet
        self.messages: List[Tuple[str, str]] = []

    def _notify(self, level: str, message: str) -> None:
        self.messages.append((level, message))
        if not self.quiet:
            print(f"{_MARKERS[level]} {message}")

    def info(self, message: str) -> None:
        self._notify(INFO, message)

    def warn(self, message: str) -> None:
        self._notify(WARN, message)

    def error(self, message: str) -> None:
        self._notify(ERROR, message)

    def errors(self) -> List[str]:
        return [m for level, m in self.messages if level == ERROR]

    def warnings(self) -> List[str]:
        return [m for level, m in self.messages if level == WARN]
