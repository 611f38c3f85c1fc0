"""Per-request diagnostic trace."""

from datetime import datetime


class LogTrace:
    """Ordered, append-only list of timestamped messages. Usable as a log sink."""

    def __init__(self):
        self._entries: list[str] = []

    def __call__(self, message: str) -> None:
        stamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]
        self._entries.append(f"[{stamp}] {message}")

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> list[str]:
        return list(self._entries)
