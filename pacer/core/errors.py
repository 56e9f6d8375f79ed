"""PACER — Error Taxonomy.

Upstream failures are split by whether a retry can help. Everything below
`ResyncAbortedError` is a per-unit failure: callers record it and move on.
"""

from typing import Any


class PacerError(Exception):
    """Base class for all PACER errors."""


class FetchFailure(PacerError):
    """Raised when the Meta API call for a unit of work cannot succeed."""

    def __init__(
        self,
        message: str,
        endpoint: str = "",
        status_code: int = 0,
        payload: Any = None,
    ):
        self.endpoint = endpoint
        self.status_code = status_code
        self.payload = payload
        super().__init__(message)


class TransientFetchFailure(FetchFailure):
    """429 / 5xx / connection errors that outlived the retry budget."""

    def __init__(
        self,
        message: str,
        endpoint: str = "",
        status_code: int = 0,
        attempts: int = 0,
        last_body: Any = None,
    ):
        self.attempts = attempts
        self.last_body = last_body
        super().__init__(message, endpoint, status_code, last_body)


class PermanentFetchFailure(FetchFailure):
    """4xx (other than 429) or an unparseable payload. Never retried."""


class ResyncAbortedError(PacerError):
    """The reset step of a full resync failed; the run must stop."""
