"""Bounded operational log shown to the operator."""
import logging
import threading
from collections import deque
from datetime import datetime
from typing import List, Optional, Tuple

from sorabatch import settings
from sorabatch.logging_conf import logger


class OperationalLog:
    """Append-only event sink that keeps only the most recent entries.

    Every entry is also forwarded to the application logger, so the file and
    Betterstack handlers see the same events the console shows.
    """

    def __init__(self, max_entries: Optional[int] = None):
        self.max_entries = max_entries or settings.LOG_BUFFER_SIZE
        self._entries: deque = deque(maxlen=self.max_entries)
        self._lock = threading.RLock()

    def append(self, message: str, level: int = logging.INFO) -> None:
        stamp = datetime.now().strftime("%H:%M:%S")
        with self._lock:
            self._entries.append((stamp, message))
        logger.log(level, message)

    def entries(self) -> List[Tuple[str, str]]:
        """Return (time, message) pairs, newest first."""
        with self._lock:
            return list(reversed(self._entries))

    def messages(self) -> List[str]:
        return [message for _, message in self.entries()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
