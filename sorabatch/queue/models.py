"""Queue data models."""
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple


class ItemStatus(str, Enum):
    """Lifecycle state of a queue item."""

    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    ERROR = "error"


# Legal transitions; ERROR -> PENDING is the operator reset.
TRANSITIONS = {
    ItemStatus.PENDING: {ItemStatus.PROCESSING},
    ItemStatus.PROCESSING: {ItemStatus.SUCCESS, ItemStatus.ERROR},
    ItemStatus.SUCCESS: set(),
    ItemStatus.ERROR: {ItemStatus.PENDING},
}


@dataclass
class QueueItem:
    """Represents one video in the download queue."""

    id: str  # Opaque video ID, unique within the store
    source_url: str  # Link as the operator supplied it
    resource_url: str  # CDN location derived from the ID
    status: ItemStatus = ItemStatus.PENDING
    error_message: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
    seq: int = 0  # Insertion counter assigned by the store
    attempts: int = 0
    bytes_written: Optional[int] = None
    skipped: bool = False
    tag: Optional[str] = None

    @classmethod
    def create(cls, video_id: str, source_url: str, resource_url: str):
        """Factory method to create a pending QueueItem."""
        return cls(
            id=video_id,
            source_url=source_url,
            resource_url=resource_url,
        )

    def copy(self) -> "QueueItem":
        return replace(self)

    @property
    def claim_token(self) -> Tuple[int, int]:
        """Identifies one claim of this item; changes on re-ingest and on every retry."""
        return (self.seq, self.attempts)

    @property
    def size_mb(self) -> Optional[float]:
        if self.bytes_written is None:
            return None
        return self.bytes_written / 1024 / 1024


@dataclass
class IngestResult:
    """Outcome of ingesting a block of raw input."""

    added: List[QueueItem] = field(default_factory=list)
    duplicates: List[str] = field(default_factory=list)
    rejected: List[str] = field(default_factory=list)

    @property
    def added_ids(self) -> List[str]:
        return [item.id for item in self.added]
