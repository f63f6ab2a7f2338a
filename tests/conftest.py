"""Shared fixtures: SQLite databases in tmp_path and a scripted feed API."""

import time
from typing import Any, Callable, Optional

import httpx
import pytest

from apps.ingestor.worker import IngestionWorker
from utils.backoff import RunLifecycle
from utils.db import init_schema

FEED_ORIGIN = "http://feed.test"
API_KEY = "test-api-key"


class RecordingLifecycle(RunLifecycle):
    """Lifecycle whose sleeps return immediately and are recorded."""

    def __init__(self) -> None:
        super().__init__()
        self.sleeps: list[float] = []

    async def sleep(self, delay_ms: float) -> None:
        self.sleeps.append(delay_ms)
        await super().sleep(0)


class ScriptedFeed:
    """MockTransport handler serving queued responses in order.

    Queue items are httpx.Response objects, exceptions to raise, or
    callables taking the request and returning a response.
    """

    def __init__(self, *responses: Any) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.responses:
            raise AssertionError(f"Unexpected request: {request.url}")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        if callable(item):
            return item(request)
        return item

    @property
    def params(self) -> list[dict[str, str]]:
        return [dict(r.url.params) for r in self.requests]


def make_event(event_id: str, timestamp: Any, **fields: Any) -> dict[str, Any]:
    return {"id": event_id, "timestamp": timestamp, **fields}


def page_response(
    events: list[dict[str, Any]],
    has_more: bool = False,
    next_cursor: Optional[str] = None,
    headers: Optional[dict[str, str]] = None,
) -> httpx.Response:
    pagination: dict[str, Any] = {"limit": 100, "hasMore": has_more}
    if next_cursor is not None:
        pagination["nextCursor"] = next_cursor
        pagination["cursorExpiresIn"] = 300
    body = {"data": events, "pagination": pagination, "meta": {"returned": len(events)}}
    return httpx.Response(200, json=body, headers=headers or {})


def error_response(status: int, body: Any = None, headers: Optional[dict[str, str]] = None) -> httpx.Response:
    if body is None:
        return httpx.Response(status, content=b"", headers=headers or {})
    if isinstance(body, (dict, list)):
        return httpx.Response(status, json=body, headers=headers or {})
    return httpx.Response(status, text=str(body), headers=headers or {})


@pytest.fixture
def db_path(tmp_path) -> str:
    path = str(tmp_path / "db" / "ingestion.db")
    init_schema(path)
    return path


@pytest.fixture
def lifecycle() -> RecordingLifecycle:
    return RecordingLifecycle()


@pytest.fixture
def make_worker(db_path, lifecycle) -> Callable[..., IngestionWorker]:
    def _make(
        feed: ScriptedFeed,
        clock: Callable[[], float] = time.monotonic,
        progress_name: str = "events",
    ) -> IngestionWorker:
        return IngestionWorker(
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(feed)),
            db_path=db_path,
            origin=FEED_ORIGIN,
            api_key=API_KEY,
            feed_limit=100,
            timeout_ms=5_000,
            progress_name=progress_name,
            lifecycle=lifecycle,
            clock=clock,
        )

    return _make
