"""Batch scheduler: claims pending items and runs them on a bounded pool."""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import List, Optional, Tuple, Type

from sorabatch import settings
from sorabatch.errors import DownloadError
from sorabatch.logging_conf import logger
from sorabatch.queue.models import ItemStatus, QueueItem


class BatchState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"


def validate_concurrency(limit: int) -> int:
    if limit not in settings.CONCURRENCY_CHOICES:
        raise ValueError(
            f"Concurrency limit must be one of {list(settings.CONCURRENCY_CHOICES)}: {limit}"
        )
    return limit


class Scheduler:
    """Drives a batch until no pending or processing items remain.

    The loop claims work through QueueStore.claim_next_pending, which checks
    the concurrency limit and marks the item in one step. Between claims it
    sleeps on the store's change notification, so a finished download wakes
    it immediately; POLL_INTERVAL is only a fallback.
    """

    def __init__(
        self,
        store,
        worker,
        oplog=None,
        concurrency_limit: Optional[int] = None,
        poll_interval: Optional[float] = None,
        fatal_errors: Tuple[Type[DownloadError], ...] = (),
    ):
        self.store = store
        self.worker = worker
        self.oplog = oplog
        self.concurrency_limit = validate_concurrency(concurrency_limit or settings.CONCURRENCY_LIMIT)
        self.poll_interval = poll_interval or settings.POLL_INTERVAL
        self.fatal_errors = tuple(fatal_errors)
        self.max_workers = max(settings.CONCURRENCY_CHOICES)

        self.state = BatchState.IDLE
        self.fatal_error: Optional[DownloadError] = None
        self.dispatched: List[str] = []

        self._state_lock = threading.RLock()
        self._stop_requested = threading.Event()
        self._cancel_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self.state is not BatchState.IDLE

    def start(self) -> bool:
        """Run the batch on a background thread."""
        if not self._begin():
            return False
        self._thread = threading.Thread(target=self._run, name="sorabatch-scheduler", daemon=True)
        self._thread.start()
        return True

    def run(self) -> None:
        """Run the batch on the calling thread until it finishes or is stopped."""
        if self._begin():
            self._run()

    def stop(self, abort: bool = False) -> None:
        """Stop claiming new work. With abort, in-flight transfers are cancelled too."""
        with self._state_lock:
            if self.state is BatchState.IDLE:
                return
            self.state = BatchState.STOPPING
            self._stop_requested.set()
            if abort:
                self._cancel_event.set()
        self._log("Sequence termination requested.")
        self.store.wake()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Join the background thread. Returns True once the batch is idle."""
        thread = self._thread
        if thread is not None:
            thread.join(timeout)
            return not thread.is_alive()
        return not self.is_running

    def set_concurrency_limit(self, limit: int) -> None:
        """Takes effect on the next claim; running downloads are never preempted."""
        self.concurrency_limit = validate_concurrency(limit)
        self._log(f"Concurrency limit set to {limit}.")
        self.store.wake()

    def _begin(self) -> bool:
        with self._state_lock:
            if self.state is not BatchState.IDLE:
                logger.warning("Scheduler is already running")
                return False
            self.state = BatchState.RUNNING
            self._stop_requested.clear()
            self._cancel_event.clear()
            self.fatal_error = None
        self._log("Batch download sequence initiated.")
        return True

    def _run(self) -> None:
        """Main dispatch loop."""
        executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="sorabatch-fetch")
        try:
            while not self._stop_requested.is_set():
                version = self.store.version
                if not self.store.has_active_work():
                    break

                item = self.store.claim_next_pending(self.concurrency_limit)
                if item is not None:
                    self._dispatch(executor, item)
                    continue

                self.store.wait_for_change(version, timeout=self.poll_interval)
        except Exception as e:
            logger.error(f"Scheduler error: {e}", exc_info=True)
        finally:
            # In-flight downloads always run to a terminal state
            executor.shutdown(wait=True)
            with self._state_lock:
                self.state = BatchState.IDLE
            self._log("Batch sequence completed.")

    def _dispatch(self, executor: ThreadPoolExecutor, item: QueueItem) -> None:
        self.dispatched.append(item.id)
        logger.info(f"Dispatching {item.id} (attempt {item.attempts})")
        executor.submit(self._work, item)

    def _work(self, item: QueueItem) -> None:
        try:
            error = self.worker.process(item, self._cancel_event)
        except Exception as e:
            logger.error(f"Worker crashed on {item.id}: {e}", exc_info=True)
            self.store.update_status(item.id, ItemStatus.ERROR, f"Unexpected error: {e}", claim=item.claim_token)
            return

        if error is not None and self.fatal_errors and isinstance(error, self.fatal_errors):
            self.fatal_error = error
            self._log(f"Fatal error on {item.id}, stopping batch: {error.message}", logging.ERROR)
            self.stop()

    def _log(self, message: str, level: int = logging.INFO) -> None:
        if self.oplog is not None:
            self.oplog.append(message, level)
        else:
            logger.log(level, message)
