"""In-memory transcript sink."""

from core.logger import get_logger

from .models import TranscriptEntry

logger = get_logger(__name__)


class TranscriptLog:
    """Ordered record of conversation lines; logs each one as it arrives."""

    def __init__(self):
        self.entries: list[TranscriptEntry] = []

    def __call__(self, entry: TranscriptEntry) -> None:
        self.entries.append(entry)
        emotions = ", ".join(f"{e.label}: {e.formatted}" for e in entry.emotions)
        logger.info(f"[{entry.role}] {entry.content}" + (f" ({emotions})" if emotions else ""))

    def __len__(self) -> int:
        return len(self.entries)

    def clear(self) -> None:
        self.entries.clear()
