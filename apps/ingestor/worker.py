"""
Ingestion Worker - Resumable Feed Pagination

Pulls the events feed page by page and persists it into SQLite. Every page
is committed together with the progress row that describes it, so a crash
at any point resumes from the last committed cursor/checkpoint without
losing or duplicating rows.

Loop:
    LOAD_PROGRESS -> FETCH -> (CLASSIFY_FAILURE | APPLY_PAGE) -> PACE -> FETCH ... -> DONE

Failure handling:
- Transport faults (timeouts, connection errors): retried by with_retries()
- Invalid cursor (HTTP 400 mentioning the cursor): restart from the checkpoint
- Empty or non-object 200 bodies, HTTP 429 and 5xx: retried with backoff, no cap
- Anything else, malformed pages or events and failed commits: fatal
"""

import logging
import math
import time
from dataclasses import dataclass, replace
from typing import Callable, Optional

import httpx

from apps.ingestor import events as event_store
from apps.ingestor import progress as progress_store
from apps.ingestor.client import (
    EMPTY_RESPONSE,
    INVALID_RESPONSE,
    FetchFailed,
    FetchOk,
    FetchResult,
    RateLimitInfo,
    fetch_page,
    with_retries,
)
from apps.ingestor.normalizer import normalize_batch
from apps.ingestor.progress import Progress
from utils.backoff import RunLifecycle, compute_backoff_ms
from utils.config import Settings
from utils.db import connection
from utils.errors import BatchCommitError, FeedApiError, IngestionError, WorkerStopped
from utils.schemas import FeedError, FeedPage

logger = logging.getLogger(__name__)

TRANSIENT_BASE_MS = 200
TRANSIENT_MAX_MS = 5_000
PACING_EXHAUSTED_PADDING_MS = 250


@dataclass(frozen=True)
class IngestionSummary:
    pages: int
    fetched: int
    inserted: int
    total_rows: int
    progress: Progress


def is_invalid_cursor(status: int, error: Optional[FeedError]) -> bool:
    if status != 400:
        return False
    code = ((error.code if error else None) or "").upper()
    message = ((error.message if error else None) or "").lower()
    return "CURSOR" in code or "cursor" in message


def is_transient_response(status: int, error: Optional[FeedError]) -> bool:
    if status != 200:
        return False
    code = ((error.code if error else None) or "").upper()
    return code in (EMPTY_RESPONSE, INVALID_RESPONSE)


def is_overloaded(status: int) -> bool:
    return status == 429 or status >= 500


def compute_pacing_ms(rate_limit: RateLimitInfo, elapsed_ms: float) -> int:
    """
    Delay that spreads the remaining request quota over the reset window.

    Args:
        rate_limit: Quota headers of the last response
        elapsed_ms: Time already spent since the fetch started

    Returns:
        Milliseconds to wait before the next fetch (0 if no pacing applies)
    """
    limit = rate_limit.limit
    remaining = rate_limit.remaining
    reset_seconds = rate_limit.reset_seconds
    if not limit or remaining is None or reset_seconds is None or reset_seconds <= 0:
        return 0

    if remaining <= 0:
        target_spacing_ms = reset_seconds * 1000 + PACING_EXHAUSTED_PADDING_MS
    else:
        target_spacing_ms = math.ceil(reset_seconds * 1000 / (remaining + 1))

    return max(0, math.ceil(target_spacing_ms - elapsed_ms))


class IngestionWorker:
    """
    Single-writer ingestion loop for one feed.

    Only one worker may run per progress name at a time.
    """

    def __init__(
        self,
        *,
        http_client: httpx.AsyncClient,
        db_path: str,
        origin: str,
        api_key: str,
        feed_limit: int,
        timeout_ms: int,
        progress_name: str = "events",
        lifecycle: Optional[RunLifecycle] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize worker.

        Args:
            http_client: HTTP client used for every feed request
            db_path: SQLite database path (schema must already exist)
            origin: Feed API origin
            api_key: Feed API key
            feed_limit: Page size
            timeout_ms: Per-request timeout
            progress_name: Progress row to resume from and update
            lifecycle: Shared run lifecycle; owns all delays
            clock: Monotonic clock in seconds, used for pacing
        """
        self.http_client = http_client
        self.db_path = db_path
        self.origin = origin
        self.api_key = api_key
        self.feed_limit = feed_limit
        self.timeout_ms = timeout_ms
        self.progress_name = progress_name
        self.lifecycle = lifecycle or RunLifecycle()
        self._clock = clock

    def load_progress(self) -> Progress:
        with connection(self.db_path) as conn, conn:
            progress_store.ensure(conn, self.progress_name)
            return progress_store.load(conn, self.progress_name)

    def save_progress(self, progress: Progress) -> None:
        with connection(self.db_path) as conn, conn:
            progress_store.save(conn, self.progress_name, progress)

    async def fetch(self, progress: Progress) -> FetchResult:
        return await with_retries(
            lambda: fetch_page(
                self.http_client,
                origin=self.origin,
                api_key=self.api_key,
                limit=self.feed_limit,
                cursor=progress.cursor,
                until_ms=progress.until_ms,
                timeout_ms=self.timeout_ms,
            ),
            label="Fetch events page",
            sleep=self.lifecycle.sleep,
        )

    async def handle_failure(self, result: FetchFailed, progress: Progress, consecutive_errors: int) -> tuple[Progress, int]:
        """
        Classify a failed fetch and apply its recovery.

        Returns:
            (progress, consecutive_errors) to continue the loop with

        Raises:
            FeedApiError: For failures that cannot be recovered from
            WorkerStopped: If shutdown is requested during a backoff
        """
        status, error = result.status, result.error
        code = error.code if error else None
        message = error.message if error else None

        if is_invalid_cursor(status, error):
            fallback_until = progress.checkpoint_ms if progress.checkpoint_ms is not None else progress.until_ms
            logger.warning(
                "Cursor invalid, restarting from checkpoint",
                extra={"fallback_until": fallback_until, "code": code, "error_message": message},
            )
            progress = replace(progress, until_ms=fallback_until, cursor=None)
            self.save_progress(progress)
            return progress, 0

        if is_transient_response(status, error):
            consecutive_errors += 1
            wait_ms = compute_backoff_ms(consecutive_errors, TRANSIENT_BASE_MS, TRANSIENT_MAX_MS)
            logger.warning(
                "Transient API response, retrying",
                extra={
                    "status": status,
                    "wait_ms": wait_ms,
                    "code": code,
                    "error_message": message,
                    "chaos": result.chaos.applied,
                },
            )
            await self.lifecycle.sleep(wait_ms)
            return progress, consecutive_errors

        if is_overloaded(status):
            consecutive_errors += 1
            wait_ms = max(result.retry_after_ms or 0, compute_backoff_ms(consecutive_errors))
            logger.warning(
                "Transient API error, backing off",
                extra={
                    "status": status,
                    "wait_ms": wait_ms,
                    "retry_after_ms": result.retry_after_ms,
                    "code": code,
                    "error_message": message,
                    "chaos": result.chaos.applied,
                },
            )
            await self.lifecycle.sleep(wait_ms)
            return progress, consecutive_errors

        logger.error(
            "Unrecoverable API error",
            extra={
                "status": status,
                "code": code,
                "error_message": message,
                "hint": error.hint if error else None,
                "chaos": result.chaos.applied,
            },
        )
        raise FeedApiError(status, code=code, message=message)

    def apply_page(self, page: FeedPage, progress: Progress) -> tuple[Progress, int, int]:
        """
        Persist a page and the progress describing it in one transaction.

        Returns:
            (new_progress, fetched_count, inserted_count)

        Raises:
            UnparseableTimestamp, MalformedEvent: If an event breaks the feed contract
            BatchCommitError: If the transaction fails; nothing from this page is kept
        """
        batch = normalize_batch(page.events)
        if batch.failure is not None:
            logger.error(
                "Page contains an event that cannot be normalized",
                extra={"error": str(batch.failure), "normalized_before_failure": len(batch.records)},
            )
            raise batch.failure

        oldest_ms = batch.oldest_timestamp_ms
        new_progress = Progress(
            until_ms=progress.until_ms,
            cursor=page.next_cursor if page.has_more else None,
            checkpoint_ms=oldest_ms if oldest_ms is not None else progress.checkpoint_ms,
        )

        try:
            with connection(self.db_path) as conn, conn:
                inserted = event_store.upsert_batch(conn, batch.records)
                progress_store.save(conn, self.progress_name, new_progress)
        except Exception as e:
            logger.error(
                "Page commit failed, transaction rolled back",
                extra={"records": len(batch.records), "error": str(e)},
            )
            raise BatchCommitError(f"Failed to commit page of {len(batch.records)} events: {e}") from e

        return new_progress, len(batch.records), inserted

    def count_rows(self) -> int:
        with connection(self.db_path) as conn:
            return event_store.count_events(conn)

    async def run(self) -> IngestionSummary:
        """
        Run the ingestion loop until the feed reports no more pages.

        Returns:
            Summary of the run; total_rows is informational only

        Raises:
            IngestionError: On any fatal condition (see module docstring)
        """
        progress = self.load_progress()
        logger.info(
            "Loaded progress",
            extra={
                "progress_name": self.progress_name,
                "until_ms": progress.until_ms,
                "has_cursor": progress.cursor is not None,
                "checkpoint_ms": progress.checkpoint_ms,
            },
        )

        pages = 0
        fetched_total = 0
        inserted_total = 0
        consecutive_errors = 0

        while True:
            if self.lifecycle.stopping:
                raise WorkerStopped("Shutdown requested")

            started = self._clock()
            result = await self.fetch(progress)

            if isinstance(result, FetchFailed):
                progress, consecutive_errors = await self.handle_failure(result, progress, consecutive_errors)
                continue

            if not isinstance(result, FetchOk):
                raise IngestionError(f"Unexpected fetch result: {type(result).__name__}")

            consecutive_errors = 0
            page = result.page

            if not page.events and not page.has_more:
                if progress.cursor is not None:
                    progress = replace(progress, cursor=None)
                    self.save_progress(progress)
                break

            progress, fetched, inserted = self.apply_page(page, progress)
            pages += 1
            fetched_total += fetched
            inserted_total += inserted

            logger.info(
                "Page ingested",
                extra={
                    "page": pages,
                    "fetched": fetched,
                    "inserted": inserted,
                    "fetched_total": fetched_total,
                    "inserted_total": inserted_total,
                    "has_more": page.has_more,
                    "cursor_expires_in": page.cursor_expires_in,
                    "rate_limit_remaining": result.rate_limit.remaining,
                    "rate_limit_reset_seconds": result.rate_limit.reset_seconds,
                    "checkpoint_ms": progress.checkpoint_ms,
                    "chaos": result.chaos.applied,
                },
            )

            if not page.has_more:
                break

            elapsed_ms = (self._clock() - started) * 1000
            sleep_ms = compute_pacing_ms(result.rate_limit, elapsed_ms)
            if sleep_ms > 0:
                logger.info(
                    "Rate limit pacing",
                    extra={
                        "sleep_ms": sleep_ms,
                        "remaining": result.rate_limit.remaining,
                        "reset_seconds": result.rate_limit.reset_seconds,
                        "limit": result.rate_limit.limit,
                    },
                )
                await self.lifecycle.sleep(sleep_ms)

        total_rows = self.count_rows()
        logger.info(
            "Ingestion finished",
            extra={"count": total_rows, "pages": pages, "fetched": fetched_total, "inserted": inserted_total},
        )
        return IngestionSummary(
            pages=pages,
            fetched=fetched_total,
            inserted=inserted_total,
            total_rows=total_rows,
            progress=progress,
        )


async def run_ingestion(settings: Settings, lifecycle: Optional[RunLifecycle] = None) -> IngestionSummary:
    """
    Run one ingestion pass with a fresh HTTP client.

    Args:
        settings: Validated application settings
        lifecycle: Shared run lifecycle (signal handlers stop it)
    """
    timeout = httpx.Timeout(settings.REQUEST_TIMEOUT_MS / 1000)
    async with httpx.AsyncClient(timeout=timeout) as http_client:
        worker = IngestionWorker(
            http_client=http_client,
            db_path=settings.SQLITE_PATH,
            origin=settings.API_ORIGIN,
            api_key=settings.TARGET_API_KEY,
            feed_limit=settings.FEED_LIMIT,
            timeout_ms=settings.REQUEST_TIMEOUT_MS,
            progress_name=settings.PROGRESS_NAME,
            lifecycle=lifecycle,
        )
        return await worker.run()
