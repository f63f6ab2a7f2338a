"""
Ingestion error taxonomy.

Transport faults are retried by the generic retry wrapper; API-level
failures are classified by the worker; everything defined here except
FeedTimeoutError is fatal for a run.
"""

from typing import Any, Optional


class IngestionError(RuntimeError):
    pass


class FeedTimeoutError(IngestionError):
    """A feed request did not complete within the configured timeout."""

    def __init__(self, url: str, timeout_ms: int) -> None:
        super().__init__(f"Request to {url} timed out after {timeout_ms}ms")
        self.url = url
        self.timeout_ms = timeout_ms


class UnparseableTimestamp(IngestionError, ValueError):
    """An event timestamp could not be converted to epoch milliseconds."""

    def __init__(self, value: Any, event_id: Optional[str] = None) -> None:
        super().__init__(f"Unparseable timestamp: {value!r}")
        self.value = value
        self.event_id = event_id


class MalformedEvent(IngestionError, ValueError):
    """A feed event is missing data required to persist it."""


class MalformedPage(IngestionError, ValueError):
    """A successful feed response whose envelope breaks the page contract."""


class FeedApiError(IngestionError):
    """The feed API returned an error the worker cannot recover from."""

    def __init__(self, status: int, code: Optional[str] = None, message: Optional[str] = None) -> None:
        detail = code or message or "unknown"
        super().__init__(f"API error HTTP {status}: {detail}")
        self.status = status
        self.code = code
        self.message = message


class BatchCommitError(IngestionError):
    """Persisting a page and its progress failed; the transaction was rolled back."""


class WorkerStopped(IngestionError):
    """Shutdown was requested while the worker was waiting."""
