"""In-memory queue store shared by the scheduler and fetch workers."""
import itertools
import logging
import threading
from collections import OrderedDict
from typing import Dict, List, Optional, Set, Tuple

from sorabatch.errors import ExtractionFailure
from sorabatch.extractor import build_resource_url, extract_id, split_candidates
from sorabatch.logging_conf import logger
from sorabatch.queue.models import TRANSITIONS, IngestResult, ItemStatus, QueueItem

_UPDATABLE_FIELDS = {"bytes_written", "skipped"}


class QueueStore:
    """Ordered collection of queue items keyed by video ID.

    All access goes through one condition variable. Callers only ever get
    copies back, so nothing outside the store mutates an item directly.
    """

    def __init__(self, oplog=None, base_url: Optional[str] = None):
        self.oplog = oplog
        self.base_url = base_url
        self._items: "OrderedDict[str, QueueItem]" = OrderedDict()
        self._source_urls = set()
        self._seq = itertools.count(1)
        self._cond = threading.Condition()
        self._version = 0
        # Claims of items removed while processing; their workers still hold a slot
        self._orphans: Set[Tuple[str, int, int]] = set()

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def enqueue(self, item: QueueItem) -> bool:
        """Append an item. Returns False if its ID or source URL is already queued."""
        with self._cond:
            if item.id in self._items or item.source_url in self._source_urls:
                logger.debug(f"Already queued: {item.id} ({item.source_url})")
                return False
            stored = item.copy()
            stored.seq = next(self._seq)
            self._items[stored.id] = stored
            self._source_urls.add(stored.source_url)
            self._changed()
        logger.debug(f"Enqueued {stored.id}")
        return True

    def ingest(self, text: str) -> IngestResult:
        """Split raw input, extract IDs and enqueue everything new."""
        result = IngestResult()
        for candidate in split_candidates(text):
            if self._has_source_url(candidate):
                result.duplicates.append(candidate)
                continue

            video_id = extract_id(candidate)
            if not video_id:
                failure = ExtractionFailure(candidate)
                result.rejected.append(candidate)
                self._log(failure.message, logging.WARNING)
                continue

            item = QueueItem.create(
                video_id=video_id,
                source_url=candidate,
                resource_url=build_resource_url(video_id, self.base_url),
            )
            if self.enqueue(item):
                result.added.append(self.get(video_id) or item)
            else:
                result.duplicates.append(candidate)

        if result.added:
            self._log(f"Added {len(result.added)} video URLs to queue.")
        else:
            self._log("No valid Sora URLs detected in the input.")
        return result

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def claim_next_pending(self, limit: int) -> Optional[QueueItem]:
        """Atomically mark the earliest pending item as processing.

        Returns None when `limit` claims are already in flight or nothing is
        pending. Claims whose item was removed still count until their worker
        reports back. Selection and marking happen under one lock acquisition,
        so two callers can never claim the same item.

        The returned copy carries the `claim_token` the worker must pass back
        to update_status.
        """
        with self._cond:
            if self._in_flight() >= limit:
                return None
            for item in self._items.values():
                if item.status is ItemStatus.PENDING:
                    item.status = ItemStatus.PROCESSING
                    item.error_message = None
                    item.skipped = False
                    item.bytes_written = None
                    item.attempts += 1
                    self._changed()
                    return item.copy()
        return None

    def update_status(
        self,
        item_id: str,
        status: ItemStatus,
        error_message: Optional[str] = None,
        claim: Optional[Tuple[int, int]] = None,
        **fields,
    ) -> bool:
        """Set an item's status by ID.

        Workers pass the `claim` token they were handed. An update whose token
        no longer matches the stored item (removed, re-ingested or re-claimed
        since) is ignored and only releases the slot that claim held.

        Returns:
            True if the item was updated
        """
        status = ItemStatus(status)
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise TypeError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        with self._cond:
            if claim is not None and self._release_orphan(item_id, claim):
                logger.debug(f"Result for removed claim {item_id} {tuple(claim)} dropped")
                return False
            item = self._items.get(item_id)
            if item is None:
                logger.debug(f"Status update for removed item {item_id} ignored")
                return False
            if claim is not None and not self._holds_claim(item, claim):
                logger.debug(f"Stale result for {item_id} {tuple(claim)} ignored")
                return False
            if status is not item.status and status not in TRANSITIONS[item.status]:
                logger.warning(f"Illegal transition for {item_id}: {item.status.value} -> {status.value}")
                return False
            item.status = status
            item.error_message = error_message if status is ItemStatus.ERROR else None
            for name, value in fields.items():
                setattr(item, name, value)
            self._changed()
        return True

    def reset_error(self, item_id: str) -> bool:
        """Move an errored item back to pending so the next cycle picks it up."""
        with self._cond:
            item = self._items.get(item_id)
            if item is None or item.status is not ItemStatus.ERROR:
                return False
            item.status = ItemStatus.PENDING
            item.error_message = None
            self._changed()
        self._log(f"Reset {item_id} for retry.")
        return True

    def reset_all_errors(self) -> int:
        with self._cond:
            failed = [i.id for i in self._items.values() if i.status is ItemStatus.ERROR]
        return sum(1 for item_id in failed if self.reset_error(item_id))

    def remove(self, item_id: str) -> bool:
        with self._cond:
            item = self._items.pop(item_id, None)
            if item is None:
                return False
            self._source_urls.discard(item.source_url)
            self._orphan(item)
            self._changed()
        self._log(f"Removed {item_id} from queue.")
        return True

    def clear(self) -> None:
        with self._cond:
            for item in self._items.values():
                self._orphan(item)
            self._items.clear()
            self._source_urls.clear()
            self._changed()
        self._log("Queue purged.")

    def is_current_claim(self, item_id: str, claim: Tuple[int, int]) -> bool:
        """True while `claim` is still the live processing claim for item_id."""
        with self._cond:
            item = self._items.get(item_id)
            return item is not None and self._holds_claim(item, claim)

    def set_tags(self, tags: Dict[str, str]) -> int:
        """Attach enrichment tags to known items. Returns how many were applied."""
        applied = 0
        with self._cond:
            for item_id, tag in tags.items():
                item = self._items.get(item_id)
                if item is not None and tag:
                    item.tag = str(tag)
                    applied += 1
            if applied:
                self._changed()
        return applied

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def snapshot(self) -> List[QueueItem]:
        with self._cond:
            return [item.copy() for item in self._items.values()]

    def get(self, item_id: str) -> Optional[QueueItem]:
        with self._cond:
            item = self._items.get(item_id)
            return item.copy() if item else None

    def ids(self) -> List[str]:
        with self._cond:
            return list(self._items)

    def count_by_status(self) -> Dict[ItemStatus, int]:
        with self._cond:
            counts = {status: 0 for status in ItemStatus}
            for item in self._items.values():
                counts[item.status] += 1
            return counts

    def count(self, status: ItemStatus) -> int:
        return self.count_by_status()[status]

    def has_pending(self) -> bool:
        return self.count(ItemStatus.PENDING) > 0

    def has_active_work(self) -> bool:
        counts = self.count_by_status()
        return counts[ItemStatus.PENDING] > 0 or counts[ItemStatus.PROCESSING] > 0

    def in_flight(self) -> int:
        """Claims currently holding a concurrency slot, removed items included."""
        with self._cond:
            return self._in_flight()

    def failed_source_urls(self) -> List[str]:
        with self._cond:
            return [i.source_url for i in self._items.values() if i.status is ItemStatus.ERROR]

    def _has_source_url(self, source_url: str) -> bool:
        with self._cond:
            return source_url in self._source_urls

    def __len__(self) -> int:
        with self._cond:
            return len(self._items)

    def __contains__(self, item_id) -> bool:
        with self._cond:
            return item_id in self._items

    # ------------------------------------------------------------------
    # Change notification
    # ------------------------------------------------------------------

    @property
    def version(self) -> int:
        with self._cond:
            return self._version

    def wait_for_change(self, since_version: int, timeout: Optional[float] = None) -> bool:
        """Block until the store changes after `since_version` or the timeout expires."""
        with self._cond:
            return self._cond.wait_for(lambda: self._version != since_version, timeout=timeout)

    def wake(self) -> None:
        """Wake anyone blocked in wait_for_change without mutating items."""
        with self._cond:
            self._changed()

    # The helpers below expect the caller to hold self._cond

    def _in_flight(self) -> int:
        processing = sum(1 for i in self._items.values() if i.status is ItemStatus.PROCESSING)
        return processing + len(self._orphans)

    @staticmethod
    def _holds_claim(item: QueueItem, claim) -> bool:
        return item.status is ItemStatus.PROCESSING and item.claim_token == tuple(claim)

    def _orphan(self, item: QueueItem) -> None:
        if item.status is ItemStatus.PROCESSING:
            self._orphans.add((item.id, *item.claim_token))

    def _release_orphan(self, item_id: str, claim) -> bool:
        key = (item_id, *claim)
        if key not in self._orphans:
            return False
        self._orphans.discard(key)
        self._changed()
        return True

    def _changed(self) -> None:
        # Caller holds self._cond
        self._version += 1
        self._cond.notify_all()

    def _log(self, message: str, level: int = logging.INFO) -> None:
        if self.oplog is not None:
            self.oplog.append(message, level)
        else:
            logger.log(level, message)
