"""InsightStream: Error Taxonomy & Classification.

Three outcomes exist for a failed unit of work:

- skipped   the entity or metric has no usable data; logged and dropped
- retryable a transient failure; the exact operation is re-run
- fatal     anything else; ends the stream

The rest of the pipeline only ever asks ``is_skipped`` / ``is_retryable``
and never looks at Graph API error codes.
"""

from typing import Any, Dict, Optional

from insightstream.models.options import InsightOptions

# GraphMethodException: object does not exist, cannot be loaded due to
# missing permissions, or does not support this operation
MISSING_ERROR_CODE = 100
NOT_SUPPORTED_CODE = 3001
# Service unavailable, app / user / page throttling, custom rate limit
TRANSIENT_ERROR_CODES = frozenset({2, 4, 17, 32, 613})


class InsightStreamError(Exception):
    """Base exception for all stream errors."""

    skip = False
    retry = False

    def __init__(self, message: str, payload: Optional[Dict[str, Any]] = None):
        self.message = message
        self.payload = payload or {}
        super().__init__(message)


class GraphAPIError(InsightStreamError):
    """Raised when the Graph API answers with an ``error`` object."""

    def __init__(self, message: str, payload: Optional[Dict[str, Any]] = None):
        super().__init__(message, payload)
        self.code = self.payload.get("code", 0)
        self.error_subcode = self.payload.get("error_subcode")
        self.error_type = self.payload.get("type", "")
        self.fbtrace_id = self.payload.get("fbtrace_id")

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "GraphAPIError":
        return cls(payload.get("message") or "Graph API error", payload)

    def __str__(self) -> str:
        return f"{self.message} (code={self.code})"


class SkippedError(GraphAPIError):
    """A unit of work that should be dropped without failing the run."""

    skip = True


class NoDataError(SkippedError):
    """The API returned an empty ``data`` list for a metric."""

    def __init__(self, metric: str):
        super().__init__(f"No data found for the metric {metric}", {"metric": metric})


class RetryableError(InsightStreamError):
    """A transient failure; the failed operation may simply be re-run."""

    retry = True


class StreamCancelledError(InsightStreamError):
    """The consumer closed the stream; no further requests are issued."""


def is_skipped(error: BaseException) -> bool:
    return getattr(error, "skip", False) is True


def is_retryable(error: BaseException) -> bool:
    return getattr(error, "retry", False) is True


def classify(body: Dict[str, Any], options: InsightOptions) -> Dict[str, Any]:
    """Return ``body`` unchanged, or raise the classified API error."""
    error = body.get("error") if isinstance(body, dict) else None
    if not error:
        return body

    code = error.get("code")
    if code == NOT_SUPPORTED_CODE:
        raise SkippedError.from_payload(error)
    if code == MISSING_ERROR_CODE and options.ignore_missing:
        raise SkippedError.from_payload(error)
    if error.get("is_transient") or code in TRANSIENT_ERROR_CODES:
        raise RetryableError(error.get("message") or "Transient Graph API error", error)
    raise GraphAPIError.from_payload(error)
