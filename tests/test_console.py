import io

from sorabatch.console import BatchConsole
from sorabatch.enrichment import TagEnricher
from sorabatch.queue.models import ItemStatus

from conftest import FakeResponse, FakeSession


def make_console(tmp_path, session=None):
    out = io.StringIO()
    console = BatchConsole(
        download_dir=tmp_path,
        concurrency=2,
        session=session or FakeSession(),
        enricher=TagEnricher(api_key=""),
        stdin=io.StringIO(),
        stdout=out,
    )
    return console, out


def test_add_and_status(tmp_path):
    console, out = make_console(tmp_path)

    console.onecmd("add https://x/p/abc123, https://x/MP4/def-456.mp4 junk")
    console.onecmd("status")

    text = out.getvalue()
    assert "Added 2, duplicates 0, unrecognized 1" in text
    assert "abc123" in text
    assert "def-456" in text
    assert "Awaiting batch signal" in text


def test_batch_retry_and_export(tmp_path):
    session = FakeSession()  # every request 404s
    console, out = make_console(tmp_path, session)
    console.onecmd("add https://x/p/z9")
    console.onecmd("start")
    console.onecmd("wait")

    assert console.store.get("z9").status is ItemStatus.ERROR

    console.onecmd("export")
    assert "https://x/p/z9" in out.getvalue()

    export_path = tmp_path / "failed.txt"
    console.onecmd(f"export {export_path}")
    assert export_path.read_text(encoding="utf-8") == "https://x/p/z9\n"

    session.default = FakeResponse(chunks=[b"mp4"])
    console.onecmd("retry z9")
    assert console.store.get("z9").status is ItemStatus.PENDING
    console.onecmd("start")
    console.onecmd("wait")
    assert console.store.get("z9").status is ItemStatus.SUCCESS
    assert (tmp_path / "Sora_z9.mp4").exists()


def test_limit_command(tmp_path):
    console, out = make_console(tmp_path)

    console.onecmd("limit 16")
    assert console.scheduler.concurrency_limit == 16

    console.onecmd("limit 7")
    assert "Choose one of" in out.getvalue()
    assert console.scheduler.concurrency_limit == 16


def test_remove_clear_and_unknown_ids(tmp_path):
    console, out = make_console(tmp_path)
    console.onecmd("add https://x/p/a1 https://x/p/b2")

    console.onecmd("remove a1")
    assert console.store.ids() == ["b2"]
    console.onecmd("remove nope")
    console.onecmd("retry nope")
    assert "No item 'nope'." in out.getvalue()
    assert "No failed item 'nope'." in out.getvalue()

    console.onecmd("clear")
    assert len(console.store) == 0


def test_tag_disabled_without_key(tmp_path):
    console, out = make_console(tmp_path)
    console.onecmd("tag")
    assert "Tagging disabled" in out.getvalue()


def test_quit_returns_true(tmp_path):
    console, _ = make_console(tmp_path)
    assert console.onecmd("quit") is True
