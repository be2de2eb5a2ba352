"""Unattended mode - reads a URL list from disk and downloads everything in it."""
import argparse
import signal
import sys
from pathlib import Path
from typing import Optional

from sorabatch.logging_conf import logger, use_log_file
from sorabatch import settings
from sorabatch.errors import WriteFailure
from sorabatch.fetcher import SKIP, FetchWorker
from sorabatch.oplog import OperationalLog
from sorabatch.queue.models import ItemStatus
from sorabatch.queue.store import QueueStore
from sorabatch.scheduler import Scheduler


class Application:
    """Headless batch run over an input file."""

    def __init__(
        self,
        input_file: Optional[str] = None,
        download_dir: Optional[str] = None,
        concurrency: Optional[int] = None,
        max_retries: Optional[int] = None,
        session=None,
    ):
        self.input_file = Path(input_file or settings.INPUT_FILE)
        self.download_dir = Path(download_dir or settings.DOWNLOAD_DIR)
        self.oplog = OperationalLog()
        self.store = QueueStore(oplog=self.oplog)
        self.worker = FetchWorker(
            self.store,
            download_dir=self.download_dir,
            oplog=self.oplog,
            session=session,
            existing=SKIP,
            max_retries=max_retries,
        )
        self.scheduler = Scheduler(
            self.store,
            self.worker,
            oplog=self.oplog,
            concurrency_limit=concurrency,
            fatal_errors=(WriteFailure,),
        )

    def start(self):
        """Validate configuration and prepare the output directory."""
        logger.info("=" * 50)
        logger.info("SoraBatch - headless batch downloader")
        logger.info("=" * 50)
        logger.info(f"Input: {self.input_file}")
        logger.info(f"Output: {self.download_dir}")
        logger.info(f"Concurrency: {self.scheduler.concurrency_limit}")
        logger.info("=" * 50)

        settings.validate_config()
        if not self.input_file.exists():
            raise FileNotFoundError(f"Input file not found: {self.input_file}")
        self.download_dir.mkdir(parents=True, exist_ok=True)

    def stop(self):
        """Stop claiming new downloads; in-flight ones finish."""
        self.scheduler.stop()

    def run(self) -> int:
        """Run the whole batch. Returns the process exit code."""
        self.start()

        content = self.input_file.read_text(encoding="utf-8")
        result = self.store.ingest(content)
        logger.info(
            f"Found {len(result.added)} URLs to process "
            f"({len(result.duplicates)} duplicates, {len(result.rejected)} unrecognized)"
        )

        self.scheduler.run()
        self.print_summary()

        if self.scheduler.fatal_error is not None:
            logger.error(f"Batch aborted: {self.scheduler.fatal_error.message}")
            return 1
        return 0

    def print_summary(self):
        items = self.store.snapshot()
        downloaded = [i for i in items if i.status is ItemStatus.SUCCESS and not i.skipped]
        skipped = [i for i in items if i.status is ItemStatus.SUCCESS and i.skipped]
        failed = [i for i in items if i.status is ItemStatus.ERROR]
        not_run = [i for i in items if i.status is ItemStatus.PENDING]

        logger.info("=" * 50)
        logger.info(f"Downloaded: {len(downloaded)}")
        logger.info(f"Skipped (already on disk): {len(skipped)}")
        logger.info(f"Failed: {len(failed)}")
        if not_run:
            logger.info(f"Not started: {len(not_run)}")
        for item in failed:
            logger.info(f"  {item.id}: {item.error_message}")
        logger.info("=" * 50)
        logger.info("Batch download process completed.")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Download Sora videos listed in a text file.")
    parser.add_argument("-i", "--input", default=None, help=f"URL list (default: {settings.INPUT_FILE})")
    parser.add_argument("-o", "--output", default=None, help=f"Output directory (default: {settings.DOWNLOAD_DIR})")
    parser.add_argument(
        "-c",
        "--concurrency",
        type=int,
        choices=settings.CONCURRENCY_CHOICES,
        default=None,
        help=f"Parallel downloads (default: {settings.CONCURRENCY_LIMIT})",
    )
    parser.add_argument(
        "--retries",
        type=int,
        default=None,
        help=f"Automatic retries for transient failures (default: {settings.MAX_RETRIES})",
    )
    return parser.parse_args(argv)


def main(argv=None):
    """Entry point."""
    args = parse_args(argv)
    use_log_file("headless")

    try:
        app = Application(
            input_file=args.input,
            download_dir=args.output,
            concurrency=args.concurrency,
            max_retries=args.retries,
        )
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    def signal_handler(sig, frame):
        logger.info(f"Received signal {sig}")
        app.stop()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        sys.exit(app.run())
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)
    except FileNotFoundError as e:
        logger.error(str(e))
        sys.exit(1)
    except OSError as e:
        logger.error(f"I/O error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
