"""Attended mode - interactive shell for building and running a download queue."""
import argparse
import cmd
import logging
import sys
from pathlib import Path
from typing import Optional

from sorabatch.logging_conf import logger, set_console_level, use_log_file
from sorabatch import settings
from sorabatch.enrichment import TagEnricher, annotate_in_background
from sorabatch.fetcher import OVERWRITE, FetchWorker
from sorabatch.oplog import OperationalLog
from sorabatch.queue.models import ItemStatus
from sorabatch.queue.store import QueueStore
from sorabatch.scheduler import Scheduler

STATUS_LABELS = {
    ItemStatus.PENDING: "Awaiting batch signal",
    ItemStatus.PROCESSING: "Acquiring stream data...",
    ItemStatus.SUCCESS: "Saved",
    ItemStatus.ERROR: "Error",
}


class BatchConsole(cmd.Cmd):
    """Command shell over a QueueStore and Scheduler."""

    intro = "SoraBatch console. Type 'help' for commands, 'add <urls>' to queue links."
    prompt = "sorabatch> "

    def __init__(
        self,
        download_dir: Optional[str] = None,
        concurrency: Optional[int] = None,
        auto_tag: Optional[bool] = None,
        session=None,
        enricher: Optional[TagEnricher] = None,
        stdin=None,
        stdout=None,
    ):
        super().__init__(stdin=stdin, stdout=stdout)
        if stdin is not None:
            self.use_rawinput = False
        self.oplog = OperationalLog()
        self.store = QueueStore(oplog=self.oplog)
        self.worker = FetchWorker(
            self.store, download_dir=download_dir, oplog=self.oplog, session=session, existing=OVERWRITE
        )
        self.scheduler = Scheduler(self.store, self.worker, oplog=self.oplog, concurrency_limit=concurrency)
        self.enricher = enricher or TagEnricher()
        self.auto_tag = settings.AUTO_TAG if auto_tag is None else auto_tag

    def emptyline(self):
        return False

    def _print(self, text: str = "") -> None:
        self.stdout.write(text + "\n")

    def do_add(self, arg):
        """add <urls...>  Queue share or CDN links (newline, comma or space separated)."""
        result = self.store.ingest(arg)
        self._print(
            f"Added {len(result.added)}, duplicates {len(result.duplicates)}, unrecognized {len(result.rejected)}"
        )
        if result.added and self.auto_tag:
            annotate_in_background(self.store, self.enricher, result.added_ids)

    def do_load(self, arg):
        """load <path>  Queue every link in a text file."""
        path = Path(arg.strip())
        if not arg.strip() or not path.is_file():
            self._print(f"No such file: {arg.strip()}")
            return
        self.do_add(path.read_text(encoding="utf-8"))

    def do_start(self, arg):
        """start  Run the batch in the background."""
        if not self.store.has_pending():
            self._print("Nothing pending.")
            return
        if not self.scheduler.start():
            self._print("Batch already running.")

    def do_stop(self, arg):
        """stop [abort]  Stop dispatching; 'abort' also cancels downloads in flight."""
        if not self.scheduler.is_running:
            self._print("Batch is not running.")
            return
        self.scheduler.stop(abort=arg.strip().lower() == "abort")

    def do_wait(self, arg):
        """wait  Block until the running batch finishes."""
        self.scheduler.wait()
        self.do_status("")

    def do_retry(self, arg):
        """retry <id>|all  Reset failed items to pending."""
        target = arg.strip()
        if target == "all":
            count = self.store.reset_all_errors()
            self._print(f"Reset {count} failed items.")
        elif not target or not self.store.reset_error(target):
            self._print(f"No failed item '{target}'.")

    def do_remove(self, arg):
        """remove <id>  Drop an item from the queue."""
        if not self.store.remove(arg.strip()):
            self._print(f"No item '{arg.strip()}'.")

    def do_clear(self, arg):
        """clear  Remove every item from the queue."""
        self.store.clear()

    def do_export(self, arg):
        """export [path]  Print failed source URLs, or write them to a file."""
        failed = "\n".join(self.store.failed_source_urls())
        if not failed:
            self.oplog.append("No failed URLs found.")
            self._print("No failed URLs found.")
            return
        if arg.strip():
            Path(arg.strip()).write_text(failed + "\n", encoding="utf-8")
            self.oplog.append(f"Failed URLs written to {arg.strip()}.")
        else:
            self._print(failed)
            self.oplog.append("Failed URLs exported.")

    def do_limit(self, arg):
        """limit [n]  Show or set the concurrency limit."""
        if not arg.strip():
            self._print(f"Concurrency limit: {self.scheduler.concurrency_limit}")
            return
        try:
            self.scheduler.set_concurrency_limit(int(arg))
        except ValueError:
            self._print(f"Choose one of {', '.join(str(n) for n in settings.CONCURRENCY_CHOICES)}")

    def do_tag(self, arg):
        """tag  Ask the enrichment service for descriptive tags."""
        if not self.enricher.enabled:
            self._print("Tagging disabled (no GEMINI_API_KEY).")
            return
        annotate_in_background(self.store, self.enricher, self.store.ids())

    def do_status(self, arg):
        """status  Show the queue."""
        items = self.store.snapshot()
        counts = self.store.count_by_status()
        self._print(
            f"[{self.scheduler.state.value}] {len(items)} total, "
            f"{counts[ItemStatus.SUCCESS]} success, {counts[ItemStatus.ERROR]} errors, "
            f"{counts[ItemStatus.PROCESSING]} active, limit {self.scheduler.concurrency_limit}"
        )
        for position, item in enumerate(items, 1):
            label = STATUS_LABELS[item.status]
            if item.status is ItemStatus.ERROR:
                label = item.error_message or "Unknown link error"
            elif item.status is ItemStatus.SUCCESS and item.skipped:
                label = "Already on disk"
            tag = f" [{item.tag}]" if item.tag else ""
            self._print(f"{position:>3}. {item.id:<24} {item.status.value:<10} {label}{tag}")

    def do_log(self, arg):
        """log [n]  Show the most recent operational log entries."""
        limit = int(arg) if arg.strip().isdigit() else 20
        for stamp, message in self.oplog.entries()[:limit]:
            self._print(f"[{stamp}] {message}")

    def do_quit(self, arg):
        """quit  Stop the batch and exit."""
        if self.scheduler.is_running:
            self.scheduler.stop()
            self.scheduler.wait()
        return True

    do_exit = do_quit
    do_EOF = do_quit


def main(argv=None):
    """Entry point."""
    parser = argparse.ArgumentParser(description="Interactive Sora batch downloader.")
    parser.add_argument("-o", "--output", default=None, help=f"Output directory (default: {settings.DOWNLOAD_DIR})")
    parser.add_argument("-c", "--concurrency", type=int, choices=settings.CONCURRENCY_CHOICES, default=None)
    parser.add_argument("--auto-tag", action="store_true", default=None, help="Tag new items via Gemini")
    args = parser.parse_args(argv)

    try:
        settings.validate_config()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    use_log_file("console")
    set_console_level(logging.WARNING)
    console = BatchConsole(download_dir=args.output, concurrency=args.concurrency, auto_tag=args.auto_tag)
    try:
        console.cmdloop()
    except KeyboardInterrupt:
        console.do_quit("")


if __name__ == "__main__":
    main()
