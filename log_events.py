"""
Event helper functions for structured JSON logging.

This module provides consistent event emission and stage timing utilities
for the transcript pipeline and the message bridge.
"""

import logging
import time
from typing import Optional

from transcript_errors import TranscriptError

# Events go to the root logger so the JSON handler picks them up
logger = logging.getLogger()


def evt(event: str, **fields) -> None:
    """
    Emit a structured event with consistent field naming.

    Args:
        event: The event type/name
        **fields: Additional fields to include in the event

    Example:
        evt("catalog_fetched", video_id="abc123", track_count=2)
        evt("stage_result", stage="payload", outcome="success", dur_ms=1250)
    """
    event_data = {"event": event}
    event_data.update(fields)

    logger.info("", extra=event_data)


class StageTimer:
    """
    Context manager for automatic stage timing with structured logging.

    Emits stage_start event on entry and stage_result event on exit,
    with automatic duration calculation and exception handling.

    Example:
        with StageTimer("catalog", video_id=video_id):
            await fetch_catalog()
    """

    def __init__(self, stage: str, **context_fields):
        self.stage = stage
        self.context_fields = context_fields
        self.start_time: Optional[float] = None

    def __enter__(self):
        self.start_time = time.time()
        evt("stage_start", stage=self.stage, **self.context_fields)
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        if self.start_time is None:
            duration_ms = 0
        else:
            duration_ms = int((time.time() - self.start_time) * 1000)

        event_fields = {
            "stage": self.stage,
            "outcome": "success" if exc_type is None else "error",
            "dur_ms": duration_ms,
            **self.context_fields
        }

        if exc_type is not None:
            event_fields["detail"] = f"{exc_type.__name__}: {exc_value}"
            event_fields["error_type"] = classify_error_type(exc_value)

        evt("stage_result", **event_fields)

        # Never suppress the exception
        return False


def request_received(correlation_id: str, **fields) -> None:
    """Emit request_received when the responder accepts a transcript request."""
    evt("request_received", correlation_id=correlation_id, **fields)


def request_finished(correlation_id: str, outcome: str, duration_ms: int, **fields) -> None:
    """
    Emit request_finished once a response has been posted back.

    Args:
        correlation_id: Correlation identifier of the request
        outcome: success or error
        duration_ms: Time from request receipt to response in milliseconds
        **fields: Extra context (transcript length, error type)
    """
    evt("request_finished",
        correlation_id=correlation_id,
        outcome=outcome,
        dur_ms=duration_ms,
        **fields)


def classify_error_type(exception: Optional[BaseException]) -> str:
    """
    Classify an exception into an error type for structured logging.

    Classified pipeline errors report their own reason; anything else is
    bucketed by its message.
    """
    if exception is None:
        return "unknown_error"

    if isinstance(exception, TranscriptError):
        return exception.reason

    exception_str = str(exception).lower()

    if any(term in exception_str for term in ["connection", "timeout", "network", "dns", "ssl"]):
        return "network_error"

    if "json" in exception_str or "decode" in exception_str:
        return "decode_error"

    return "unexpected_error"
