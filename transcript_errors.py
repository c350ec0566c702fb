"""
Classified failures of the transcript pipeline and the message bridge.

Every failure the extractor can produce is a ``TranscriptError`` subclass with
a stable ``reason`` string; the bridge serializes ``str(error)`` into the
response message.
"""

from typing import Optional


class TranscriptError(Exception):
    """Base class for all classified transcript failures."""

    reason = "transcript_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationUnavailable(TranscriptError):
    """The page configuration (API key) could not be read."""

    reason = "configuration_unavailable"


class VideoIdUnavailable(ConfigurationUnavailable):
    """The current page location carries no content identifier."""


class UpstreamUnavailable(TranscriptError):
    """Non-success status, transport failure or empty body from an upstream call."""

    reason = "upstream_unavailable"

    def __init__(self, message: str, status_code: Optional[int] = None, stage: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.stage = stage


class CaptionsUnavailable(TranscriptError):
    """The caption catalog was fetched but lists no tracks."""

    reason = "captions_unavailable"


class ParseFailure(TranscriptError):
    """The raw payload was present but yielded no transcript lines."""

    reason = "parse_failure"


class FetchTimeout(TranscriptError):
    """The raw payload fetch exceeded its bound."""

    reason = "fetch_timeout"

    def __init__(self, message: str, timeout: Optional[float] = None):
        super().__init__(message)
        self.timeout = timeout


class ChannelTimeout(TranscriptError):
    """No correlated response arrived over the bridge within its bound."""

    reason = "channel_timeout"

    def __init__(self, message: str, correlation_id: Optional[str] = None):
        super().__init__(message)
        self.correlation_id = correlation_id


class TranscriptRequestFailed(TranscriptError):
    """The peer answered a bridge request with an explicit error message."""

    reason = "request_failed"

    def __init__(self, message: str, correlation_id: Optional[str] = None):
        super().__init__(message)
        self.correlation_id = correlation_id
