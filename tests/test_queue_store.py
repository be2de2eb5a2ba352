import threading

import pytest

from sorabatch.queue.models import ItemStatus, QueueItem
from sorabatch.queue.store import QueueStore

from conftest import cdn_url


def test_ingest_mixed_grammars(store):
    result = store.ingest("https://x/p/abc123\nhttps://x/MP4/def-456.mp4")

    assert result.added_ids == ["abc123", "def-456"]
    items = store.snapshot()
    assert [i.id for i in items] == ["abc123", "def-456"]
    assert items[0].resource_url == cdn_url("abc123")
    assert items[1].source_url == "https://x/MP4/def-456.mp4"
    assert all(i.status is ItemStatus.PENDING for i in items)


def test_ingest_same_source_url_twice_yields_one_item(store):
    store.ingest("https://x/p/abc123")
    second = store.ingest("https://x/p/abc123")

    assert len(store) == 1
    assert second.added == []
    assert second.duplicates == ["https://x/p/abc123"]


def test_ingest_different_url_same_id_is_noop(store):
    store.ingest("https://x/p/abc123")
    result = store.ingest("https://other/MP4/abc123.mp4")

    assert len(store) == 1
    assert result.duplicates == ["https://other/MP4/abc123.mp4"]


def test_ingest_logs_unrecognized_candidates(store, oplog):
    result = store.ingest("not-a-link https://x/p/ok1")

    assert result.rejected == ["not-a-link"]
    assert result.added_ids == ["ok1"]
    messages = oplog.messages()
    assert "Could not extract ID from URL: not-a-link" in messages
    assert messages[0] == "Added 1 video URLs to queue."


def test_ingest_nothing_valid(store, oplog):
    result = store.ingest("hello world")
    assert result.added == []
    assert oplog.messages()[0] == "No valid Sora URLs detected in the input."


def test_enqueue_rejects_duplicates():
    store = QueueStore()
    assert store.enqueue(QueueItem.create("a1", "https://x/p/a1", cdn_url("a1")))
    assert not store.enqueue(QueueItem.create("a1", "https://y/p/a1", cdn_url("a1")))
    assert not store.enqueue(QueueItem.create("b2", "https://x/p/a1", cdn_url("b2")))
    assert store.ids() == ["a1"]


def test_claim_is_fifo_and_respects_limit(store):
    store.ingest("https://x/p/A https://x/p/B https://x/p/C")

    first = store.claim_next_pending(2)
    second = store.claim_next_pending(2)
    third = store.claim_next_pending(2)

    assert (first.id, second.id) == ("A", "B")
    assert third is None
    assert first.status is ItemStatus.PROCESSING
    assert first.attempts == 1

    store.update_status("A", ItemStatus.SUCCESS, bytes_written=10)
    assert store.claim_next_pending(2).id == "C"


def test_claim_uses_insertion_order_after_removal(store):
    store.ingest("https://x/p/A https://x/p/B https://x/p/C")
    store.remove("A")
    assert store.claim_next_pending(1).id == "B"


def test_concurrent_claims_never_double_dispatch(store):
    store.ingest(" ".join(f"https://x/p/item{n}" for n in range(200)))
    claimed = []
    lock = threading.Lock()
    barrier = threading.Barrier(8)

    def claimer():
        barrier.wait()
        while True:
            item = store.claim_next_pending(1000)
            if item is None:
                return
            with lock:
                claimed.append(item.id)

    threads = [threading.Thread(target=claimer) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(5)

    assert len(claimed) == 200
    assert len(set(claimed)) == 200
    assert all(i.attempts == 1 for i in store.snapshot())


def test_update_status_unknown_id_is_noop(store):
    assert store.update_status("missing", ItemStatus.SUCCESS) is False


def test_update_status_rejects_illegal_transition(store):
    store.ingest("https://x/p/A")
    assert store.update_status("A", ItemStatus.SUCCESS) is False
    assert store.get("A").status is ItemStatus.PENDING


def test_update_status_rejects_unknown_fields(store):
    store.ingest("https://x/p/A")
    with pytest.raises(TypeError):
        store.update_status("A", ItemStatus.PENDING, id="B")


def test_error_message_only_kept_for_error_status(store):
    store.ingest("https://x/p/A")
    store.claim_next_pending(1)
    store.update_status("A", ItemStatus.ERROR, "File not found on CDN (404)")
    assert store.get("A").error_message == "File not found on CDN (404)"


def test_reset_error(store):
    store.ingest("https://x/p/A https://x/p/B")
    store.claim_next_pending(2)
    store.claim_next_pending(2)
    store.update_status("A", ItemStatus.ERROR, "Network error (500)")
    store.update_status("B", ItemStatus.SUCCESS, bytes_written=1)

    assert store.reset_error("A") is True
    item = store.get("A")
    assert item.status is ItemStatus.PENDING
    assert item.error_message is None

    # Not an error item: no-op
    assert store.reset_error("B") is False
    assert store.get("B").status is ItemStatus.SUCCESS
    assert store.reset_error("A") is False

    # Retry cycle claims it again
    assert store.claim_next_pending(1).attempts == 2


def test_reset_all_errors(store):
    store.ingest("https://x/p/A https://x/p/B")
    for _ in range(2):
        item = store.claim_next_pending(2)
        store.update_status(item.id, ItemStatus.ERROR, "boom")
    assert store.reset_all_errors() == 2
    assert store.count(ItemStatus.PENDING) == 2


def test_remove_and_clear(store, oplog):
    store.ingest("https://x/p/A https://x/p/B")
    assert store.remove("A") is True
    assert store.remove("A") is False
    assert "Removed A from queue." in oplog.messages()

    # A removed source URL can be queued again
    assert store.ingest("https://x/p/A").added_ids == ["A"]

    store.clear()
    assert len(store) == 0
    assert oplog.messages()[0] == "Queue purged."


def test_counts_and_failed_export(store):
    store.ingest("https://x/p/A https://x/MP4/B.mp4 https://x/p/C")
    store.claim_next_pending(3)
    store.claim_next_pending(3)
    store.update_status("A", ItemStatus.ERROR, "Network error (503)")
    store.update_status("B", ItemStatus.ERROR, "File not found on CDN (404)")

    counts = store.count_by_status()
    assert counts[ItemStatus.ERROR] == 2
    assert counts[ItemStatus.PENDING] == 1
    assert counts[ItemStatus.SUCCESS] == 0
    assert store.failed_source_urls() == ["https://x/p/A", "https://x/MP4/B.mp4"]
    assert store.has_active_work()


def test_snapshot_returns_copies(store):
    store.ingest("https://x/p/A")
    snap = store.snapshot()
    snap[0].status = ItemStatus.SUCCESS
    assert store.get("A").status is ItemStatus.PENDING


def test_set_tags_ignores_unknown_ids(store):
    store.ingest("https://x/p/A")
    assert store.set_tags({"A": "Neon City", "Z": "Nope"}) == 1
    assert store.get("A").tag == "Neon City"


def test_wait_for_change_wakes_on_update(store):
    store.ingest("https://x/p/A")
    version = store.version
    threading.Timer(0.05, store.claim_next_pending, args=(1,)).start()
    assert store.wait_for_change(version, timeout=2) is True
    assert store.wait_for_change(store.version, timeout=0.01) is False


def test_stale_result_after_remove_and_reingest_is_ignored(store):
    store.ingest("https://x/p/A")
    old = store.claim_next_pending(3)
    store.remove("A")
    store.ingest("https://x/p/A")
    new = store.claim_next_pending(3)
    assert old.claim_token != new.claim_token

    assert store.update_status("A", ItemStatus.SUCCESS, claim=old.claim_token, bytes_written=1) is False

    item = store.get("A")
    assert item.status is ItemStatus.PROCESSING
    assert item.bytes_written is None
    assert store.count(ItemStatus.PROCESSING) == 1
    assert store.update_status("A", ItemStatus.SUCCESS, claim=new.claim_token, bytes_written=2) is True
    assert store.get("A").bytes_written == 2


def test_result_from_previous_attempt_is_ignored(store):
    store.ingest("https://x/p/A")
    first = store.claim_next_pending(1)
    store.update_status("A", ItemStatus.ERROR, "Network error (503)", claim=first.claim_token)
    store.reset_error("A")
    second = store.claim_next_pending(1)
    assert second.claim_token == (first.seq, 2)

    assert store.update_status("A", ItemStatus.ERROR, "late", claim=first.claim_token) is False
    assert store.get("A").status is ItemStatus.PROCESSING
    assert store.is_current_claim("A", second.claim_token)
    assert not store.is_current_claim("A", first.claim_token)


def test_removed_claim_holds_its_slot_until_worker_reports(store):
    store.ingest("https://x/p/A")
    claimed = store.claim_next_pending(1)
    store.remove("A")
    store.ingest("https://x/p/B")

    assert store.in_flight() == 1
    assert store.claim_next_pending(1) is None

    version = store.version
    assert store.update_status("A", ItemStatus.SUCCESS, claim=claimed.claim_token) is False
    assert store.version != version
    assert store.in_flight() == 0
    assert store.claim_next_pending(1).id == "B"


def test_clear_keeps_in_flight_claims_counted(store):
    store.ingest("https://x/p/A https://x/p/B https://x/p/C")
    a = store.claim_next_pending(2)
    b = store.claim_next_pending(2)
    store.clear()
    store.ingest("https://x/p/D")

    assert store.claim_next_pending(2) is None
    store.update_status("A", ItemStatus.ERROR, "Download cancelled", claim=a.claim_token)
    assert store.claim_next_pending(2).id == "D"
    store.update_status("B", ItemStatus.SUCCESS, claim=b.claim_token)
    assert store.in_flight() == 1
