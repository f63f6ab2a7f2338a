"""
DataSync Feed API Client

Fetches one page of the events feed and classifies the response.

Features:
- Whole-request timeout (connect + body) surfaced as FeedTimeoutError
- Absent-tolerant parsing of rate-limit, Retry-After and chaos headers
- Defensive body parsing: empty, non-JSON and non-object bodies become
  structured errors with fixed codes so callers can classify uniformly
- Generic tenacity-based retry wrapper for transport faults

Usage:
    async with httpx.AsyncClient() as http:
        result = await with_retries(
            lambda: fetch_page(http, origin=origin, api_key=key, limit=500, timeout_ms=30_000),
            label="fetch events page",
            sleep=lifecycle.sleep,
        )
        if isinstance(result, FetchOk):
            ...
"""

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

import httpx
import orjson
from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
)

from utils.backoff import compute_backoff_ms
from utils.errors import FeedTimeoutError, MalformedPage, WorkerStopped
from utils.schemas import FeedError, FeedPage
from utils.timestamps import parse_datetime

logger = logging.getLogger(__name__)

T = TypeVar("T")

EVENTS_PATH = "/api/v1/events"
API_KEY_HEADER = "X-API-Key"
MAX_ATTEMPTS = 8

EMPTY_RESPONSE = "EMPTY_RESPONSE"
INVALID_RESPONSE = "INVALID_RESPONSE"

NOT_RETRIED = (WorkerStopped, MalformedPage)


@dataclass(frozen=True)
class RateLimitInfo:
    limit: Optional[float] = None
    remaining: Optional[float] = None
    reset_seconds: Optional[float] = None


@dataclass(frozen=True)
class ChaosInfo:
    """Diagnostic markers set when the upstream injected a fault on purpose."""

    applied: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class FetchOk:
    page: FeedPage
    rate_limit: RateLimitInfo
    chaos: ChaosInfo


@dataclass(frozen=True)
class FetchFailed:
    status: int
    error: Optional[FeedError]
    rate_limit: RateLimitInfo
    retry_after_ms: Optional[int]
    chaos: ChaosInfo


FetchResult = Union[FetchOk, FetchFailed]


def _number_header(headers: httpx.Headers, name: str) -> Optional[float]:
    value = headers.get(name)
    if not value:
        return None
    try:
        parsed = float(value)
    except ValueError:
        return None
    if not math.isfinite(parsed):
        return None
    return int(parsed) if parsed.is_integer() else parsed


def read_rate_limit_info(headers: httpx.Headers) -> RateLimitInfo:
    return RateLimitInfo(
        limit=_number_header(headers, "X-RateLimit-Limit"),
        remaining=_number_header(headers, "X-RateLimit-Remaining"),
        reset_seconds=_number_header(headers, "X-RateLimit-Reset"),
    )


def read_retry_after_ms(headers: httpx.Headers, now: Optional[float] = None) -> Optional[int]:
    """
    Convert a Retry-After header to a non-negative delay in milliseconds.

    Accepts a number of seconds or an HTTP date. Returns None when the
    header is absent or unparseable.
    """
    header = headers.get("Retry-After")
    if not header:
        return None

    try:
        seconds = float(header)
    except ValueError:
        seconds = None
    if seconds is not None and math.isfinite(seconds):
        return max(0, math.floor(seconds * 1000))

    when = parse_datetime(header)
    if when is None:
        return None
    now = time.time() if now is None else now
    return max(0, math.floor((when.timestamp() - now) * 1000))


def read_chaos_info(headers: httpx.Headers) -> ChaosInfo:
    return ChaosInfo(
        applied=headers.get("X-Chaos-Applied"),
        description=headers.get("X-Chaos-Description"),
    )


def read_body(response: httpx.Response) -> Any:
    """Empty body -> None, JSON -> decoded value, anything else -> raw text."""
    text = response.text
    if not text:
        return None
    try:
        return orjson.loads(text)
    except orjson.JSONDecodeError:
        return text


async def fetch_page(
    http_client: httpx.AsyncClient,
    *,
    origin: str,
    api_key: str,
    limit: int,
    cursor: Optional[str] = None,
    until_ms: Optional[int] = None,
    timeout_ms: int,
) -> FetchResult:
    """
    Fetch one page of the events feed.

    Args:
        http_client: Shared async HTTP client
        origin: Feed origin, e.g. https://api.example.com
        api_key: Value for the X-API-Key header
        limit: Page size
        cursor: Continuation token, omitted when falsy
        until_ms: Upper time bound, omitted when None
        timeout_ms: Budget for the whole request

    Returns:
        FetchOk with the parsed page, or FetchFailed with status and error

    Raises:
        FeedTimeoutError: If the request exceeds timeout_ms
        httpx.TransportError: On connection-level failures
        MalformedPage: If a successful object body has an invalid envelope
    """
    url = f"{origin.rstrip('/')}{EVENTS_PATH}"
    params: dict[str, str] = {"limit": str(limit)}
    if cursor:
        params["cursor"] = cursor
    if until_ms is not None:
        params["until"] = str(until_ms)

    try:
        response = await asyncio.wait_for(
            http_client.get(url, params=params, headers={API_KEY_HEADER: api_key}),
            timeout=timeout_ms / 1000,
        )
    except (asyncio.TimeoutError, httpx.TimeoutException) as e:
        raise FeedTimeoutError(url, timeout_ms) from e

    rate_limit = read_rate_limit_info(response.headers)
    retry_after_ms = read_retry_after_ms(response.headers)
    chaos = read_chaos_info(response.headers)
    body = read_body(response)

    def failed(error: Optional[FeedError]) -> FetchFailed:
        return FetchFailed(
            status=response.status_code,
            error=error,
            rate_limit=rate_limit,
            retry_after_ms=retry_after_ms,
            chaos=chaos,
        )

    if not response.is_success:
        return failed(FeedError.model_validate(body) if isinstance(body, dict) else None)

    if body is None:
        return failed(
            FeedError(error="EmptyResponse", message="Received an empty response body", code=EMPTY_RESPONSE)
        )

    if not isinstance(body, dict):
        return failed(
            FeedError(
                error="InvalidResponse",
                message=f"Unexpected response type: {type(body).__name__}",
                code=INVALID_RESPONSE,
            )
        )

    try:
        page = FeedPage.model_validate(body)
    except ValidationError as e:
        logger.error(
            "Feed page envelope failed validation",
            extra={"status": response.status_code, "error_count": e.error_count(), "error": str(e)},
        )
        raise MalformedPage(f"Response does not match the feed page schema: {e.error_count()} error(s)") from e

    return FetchOk(page=page, rate_limit=rate_limit, chaos=chaos)


def _backoff_wait(retry_state: RetryCallState) -> float:
    return compute_backoff_ms(retry_state.attempt_number) / 1000


async def with_retries(
    operation: Callable[[], Awaitable[T]],
    label: str,
    sleep: Callable[[float], Awaitable[None]],
    max_attempts: int = MAX_ATTEMPTS,
) -> T:
    """
    Run `operation`, retrying on any exception up to `max_attempts` times.

    WorkerStopped and MalformedPage propagate on the first occurrence.

    Args:
        operation: Zero-argument callable returning an awaitable
        label: Name used in retry log lines
        sleep: Cancellable delay taking milliseconds
        max_attempts: Total attempts before the last exception is re-raised

    Raises:
        Exception: The last exception raised by `operation`, unchanged
    """

    async def sleep_seconds(seconds: float) -> None:
        await sleep(seconds * 1000)

    def log_retry(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        wait_s = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            "%s failed, retrying",
            label,
            extra={
                "attempt": retry_state.attempt_number,
                "wait_ms": int(wait_s * 1000),
                "error": str(error),
                "error_type": type(error).__name__,
            },
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=_backoff_wait,
        retry=retry_if_exception_type(Exception) & retry_if_not_exception_type(NOT_RETRIED),
        sleep=sleep_seconds,
        before_sleep=log_retry,
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            return await operation()
