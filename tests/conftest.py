"""Shared fakes for the download tests. Nothing here touches the network."""
from __future__ import annotations

import threading

import pytest

from sorabatch.oplog import OperationalLog
from sorabatch.queue.store import QueueStore

CDN = "https://cdn.test/MP4"


class FakeResponse:
    """Streams predefined chunks; an Exception in `chunks` is raised mid-transfer."""

    def __init__(self, status_code=200, chunks=(b"video-bytes",)):
        self.status_code = status_code
        self.chunks = list(chunks)
        self.closed = False

    def iter_content(self, chunk_size=1):
        for chunk in self.chunks:
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk

    def close(self):
        self.closed = True


class FakeSession:
    """Maps URL -> response, exception, or list of those consumed in order."""

    def __init__(self, routes=None, default=None):
        self.routes = dict(routes or {})
        self.default = default
        self.headers = {}
        self.calls = []
        self._lock = threading.Lock()

    def get(self, url, stream=False, timeout=None):
        with self._lock:
            self.calls.append(url)
            outcome = self.routes.get(url, self.default)
            if isinstance(outcome, list):
                outcome = outcome.pop(0) if len(outcome) > 1 else outcome[0]
        if outcome is None:
            return FakeResponse(status_code=404, chunks=())
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def oplog():
    return OperationalLog(max_entries=50)


@pytest.fixture
def store(oplog):
    return QueueStore(oplog=oplog, base_url=CDN)


def cdn_url(video_id: str) -> str:
    return f"{CDN}/{video_id}.mp4"
