"""Download one queued video and save it to local storage."""
import logging
import os
import threading
import time
from pathlib import Path
from typing import Optional

import requests

from sorabatch import settings
from sorabatch.errors import (
    DownloadCancelled,
    DownloadError,
    EmptyBody,
    NetworkError,
    NotFound,
    TransportError,
    WriteFailure,
)
from sorabatch.extractor import output_filename
from sorabatch.logging_conf import logger
from sorabatch.queue.models import ItemStatus, QueueItem

OVERWRITE = "overwrite"
SKIP = "skip"
EXISTING_POLICIES = (OVERWRITE, SKIP)

USER_AGENT = "SoraBatch/1.0"


class FetchWorker:
    """Performs download attempts for claimed queue items."""

    def __init__(
        self,
        store,
        download_dir=None,
        oplog=None,
        session: Optional[requests.Session] = None,
        existing: str = OVERWRITE,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_backoff: Optional[float] = None,
        chunk_size: Optional[int] = None,
    ):
        if existing not in EXISTING_POLICIES:
            raise ValueError(f"existing must be one of {EXISTING_POLICIES}: {existing}")
        self.store = store
        self.oplog = oplog
        self.download_dir = Path(download_dir or settings.DOWNLOAD_DIR)
        self.existing = existing
        self.timeout = timeout or settings.REQUEST_TIMEOUT
        self.max_retries = settings.MAX_RETRIES if max_retries is None else max_retries
        self.retry_backoff = settings.RETRY_BACKOFF_SECONDS if retry_backoff is None else retry_backoff
        self.chunk_size = chunk_size or settings.CHUNK_SIZE
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", USER_AGENT)

    def destination(self, video_id: str) -> Path:
        return self.download_dir / output_filename(video_id)

    def process(self, item: QueueItem, cancel_event: Optional[threading.Event] = None) -> Optional[DownloadError]:
        """
        Run one download attempt for a claimed item and record the outcome.

        Args:
            item: Snapshot of the item, already marked processing by the store
            cancel_event: Set by the scheduler to abort the transfer

        Returns:
            The classified error, or None on success (including skips)
        """
        file_path = self.destination(item.id)
        claim = item.claim_token

        if self.existing == SKIP and file_path.exists():
            if self.store.update_status(
                item.id, ItemStatus.SUCCESS, claim=claim, skipped=True, bytes_written=file_path.stat().st_size
            ):
                self._log(f"Skipping existing file: {item.id}")
            return None

        try:
            size = self._download_with_retry(item, file_path, cancel_event)
        except DownloadError as e:
            if self.store.update_status(item.id, ItemStatus.ERROR, e.message, claim=claim):
                self._log(f"Error [{item.id}]: {e.message}", logging.WARNING)
            return e
        except Exception as e:
            logger.error(f"Unexpected failure downloading {item.id}: {e}", exc_info=True)
            error = DownloadError(f"Unexpected error: {e}")
            if self.store.update_status(item.id, ItemStatus.ERROR, error.message, claim=claim):
                self._log(f"Error [{item.id}]: {error.message}", logging.ERROR)
            return error

        if self.store.update_status(item.id, ItemStatus.SUCCESS, claim=claim, bytes_written=size):
            self._log(f"Downloaded: {item.id} ({size / 1024 / 1024:.2f} MB)")
        else:
            logger.info(f"Discarded result for {item.id}; it was removed or re-queued meanwhile")
        return None

    def _download_with_retry(self, item: QueueItem, file_path: Path, cancel_event=None) -> int:
        """Download, retrying transient failures with exponential backoff."""
        retry_count = 0
        while True:
            try:
                return self._download(item, file_path, cancel_event)
            except DownloadError as e:
                if not e.retryable or retry_count >= self.max_retries:
                    raise
                wait_time = self.retry_backoff * 2 ** retry_count
                retry_count += 1
                logger.warning(
                    f"{e.message} for {item.id}. Retrying in {wait_time}s ({retry_count}/{self.max_retries})..."
                )
                if self._sleep(wait_time, cancel_event):
                    raise DownloadCancelled()

    def _download(self, item: QueueItem, file_path: Path, cancel_event=None) -> int:
        """Fetch the item's resource into file_path. Returns bytes written."""
        self._check_cancelled(cancel_event)
        logger.debug(f"GET {item.resource_url}")
        try:
            response = self.session.get(item.resource_url, stream=True, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise TransportError(f"Request timed out: {e}")
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Connection failed: {e}")

        try:
            if response.status_code == 404:
                raise NotFound()
            if not 200 <= response.status_code < 300:
                raise NetworkError(response.status_code)
            return self._save(response, item, file_path, cancel_event)
        finally:
            response.close()

    @staticmethod
    def part_path(file_path: Path, item: QueueItem) -> Path:
        """Scratch file for one claim, so overlapping claims of an ID never share it."""
        seq, attempts = item.claim_token
        return file_path.with_name(f"{file_path.name}.{seq}-{attempts}.part")

    def _save(self, response, item: QueueItem, file_path: Path, cancel_event=None) -> int:
        """Stream the body to a .part file and move it into place."""
        part_path = self.part_path(file_path, item)
        written = 0
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(part_path, "wb") as f:
                for chunk in response.iter_content(chunk_size=self.chunk_size):
                    self._check_cancelled(cancel_event)
                    if chunk:
                        f.write(chunk)
                        written += len(chunk)
            if written == 0:
                raise EmptyBody()
            if self.store.is_current_claim(item.id, item.claim_token):
                os.replace(part_path, file_path)
            else:
                logger.info(f"Not saving {file_path.name}; claim {item.claim_token} is no longer current")
        # RequestException derives from IOError, so it must be caught first
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Transfer interrupted: {e}")
        except OSError as e:
            raise WriteFailure(f"Could not write {file_path.name}: {e}")
        finally:
            try:
                part_path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"Failed to delete partial file {part_path}: {e}")
        return written

    @staticmethod
    def _check_cancelled(cancel_event) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise DownloadCancelled()

    @staticmethod
    def _sleep(seconds: float, cancel_event=None) -> bool:
        """Sleep for the backoff period. Returns True if cancelled meanwhile."""
        if cancel_event is None:
            time.sleep(seconds)
            return False
        return cancel_event.wait(seconds)

    def _log(self, message: str, level: int = logging.INFO) -> None:
        if self.oplog is not None:
            self.oplog.append(message, level)
        else:
            logger.log(level, message)
