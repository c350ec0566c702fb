"""
Core logging infrastructure for the transcript fetcher.

Provides minimal JSON logging with request-scoped context management,
rate limiting, and third-party library noise suppression.
"""

import json
import logging
import threading
import time
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Dict, Optional, Set
from collections import defaultdict


# Request context lives in a ContextVar so concurrent asyncio tasks keep their own copy
_request_ctx: ContextVar[Optional[Dict[str, str]]] = ContextVar("request_ctx", default=None)


def set_request_ctx(correlation_id: str = None, video_id: str = None):
    """
    Set request-scoped context for log correlation.

    Args:
        correlation_id: Bridge correlation identifier of the request
        video_id: Content identifier being processed
    """
    context = dict(_request_ctx.get() or {})

    if correlation_id is not None:
        context['correlation_id'] = correlation_id
    if video_id is not None:
        context['video_id'] = video_id

    _request_ctx.set(context)


def clear_request_ctx():
    """Clear request-scoped context."""
    _request_ctx.set(None)


def get_request_ctx() -> Dict[str, str]:
    """Get current request-scoped context."""
    return dict(_request_ctx.get() or {})


class JsonFormatter(logging.Formatter):
    """
    JSON formatter with standardized field order and context injection.

    Produces single-line JSON with stable schema:
    ts, lvl, correlation_id, video_id, stage, event, outcome, dur_ms, detail
    """

    # Standard LogRecord attributes and fields handled explicitly
    _SKIP_FIELDS = {
        'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename',
        'module', 'lineno', 'funcName', 'created', 'msecs', 'relativeCreated',
        'thread', 'threadName', 'processName', 'process', 'taskName', 'getMessage',
        'exc_info', 'exc_text', 'stack_info', 'message', 'ts', 'lvl',
        'correlation_id', 'video_id', 'stage', 'event', 'outcome', 'dur_ms', 'detail',
    }

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as single-line JSON."""
        try:
            # Millisecond precision, UTC
            dt = datetime.fromtimestamp(record.created, tz=timezone.utc)
            timestamp = dt.strftime('%Y-%m-%dT%H:%M:%S') + f'.{int(dt.microsecond / 1000):03d}Z'

            log_data = {
                'ts': timestamp,
                'lvl': record.levelname
            }

            # Explicit event fields win over the ambient request context
            context = get_request_ctx()
            for field in ['correlation_id', 'video_id']:
                value = getattr(record, field, None) or context.get(field)
                if value is not None:
                    log_data[field] = value

            for field in ['stage', 'event', 'outcome', 'dur_ms', 'detail']:
                if getattr(record, field, None) is not None:
                    log_data[field] = getattr(record, field)

            # Extra fields passed via logger.info(extra=...)
            for attr_name, attr_value in record.__dict__.items():
                if (not attr_name.startswith('_') and
                        attr_name not in self._SKIP_FIELDS and
                        attr_value is not None):
                    log_data[attr_name] = attr_value

            if 'detail' not in log_data and record.getMessage():
                log_data['detail'] = record.getMessage()

            if record.exc_info:
                log_data['exc'] = self.formatException(record.exc_info)

            return json.dumps(log_data, separators=(',', ':'), ensure_ascii=False, default=str)

        except Exception:
            # Fallback to basic formatting on any error
            return json.dumps({
                'ts': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
                'lvl': record.levelname,
                'detail': str(record.msg),
            })


class RateLimitFilter(logging.Filter):
    """
    Rate limiting filter to prevent log spam.

    Limits messages to 5 per key per 60-second sliding window.
    Emits a suppression marker when the limit is first exceeded.
    """

    def __init__(self, per_key: int = 5, window_sec: int = 60):
        super().__init__()
        self.per_key = per_key
        self.window_sec = window_sec
        self.counts: Dict[str, list] = defaultdict(list)
        self.suppressed: Set[str] = set()
        self._lock = threading.Lock()

    def _get_message_key(self, record: logging.LogRecord) -> str:
        """Key on level, event, stage and the first 100 chars of the message."""
        event = getattr(record, 'event', '') or ''
        stage = getattr(record, 'stage', '') or ''
        message = record.getMessage()[:100]
        return f"{record.levelname}:{event}:{stage}:{message}"

    def _cleanup_old_entries(self, key: str, now: float):
        cutoff = now - self.window_sec
        self.counts[key] = [ts for ts in self.counts[key] if ts > cutoff]

    def filter(self, record: logging.LogRecord) -> bool:
        key = self._get_message_key(record)
        now = time.time()

        with self._lock:
            self._cleanup_old_entries(key, now)

            if len(self.counts[key]) < self.per_key:
                self.counts[key].append(now)
                self.suppressed.discard(key)
                return True

            if key not in self.suppressed:
                # First hit over the limit in this window
                self.suppressed.add(key)
                record.msg = f"{record.getMessage()} [suppressed]"
                record.args = ()
                return True

            return False


def configure_logging(log_level: str = "INFO", use_json: bool = True) -> logging.Logger:
    """
    Configure application logging with JSON formatting and noise suppression.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        use_json: Whether to use JSON formatting (True) or basic formatting (False)

    Returns:
        Configured root logger
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    # stderr keeps stdout free for transcript output
    handler = logging.StreamHandler()

    if use_json:
        formatter = JsonFormatter()
        handler.addFilter(RateLimitFilter())
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    _suppress_library_noise()

    return root_logger


def _suppress_library_noise():
    """Suppress verbose logging from third-party libraries."""
    library_levels = {
        'asyncio': logging.WARNING,
        'httpx': logging.WARNING,
        'httpcore': logging.WARNING,
    }

    for library, level in library_levels.items():
        logging.getLogger(library).setLevel(level)


def get_logger(name: str = None) -> logging.Logger:
    """Get a logger instance (defaults to the root logger)."""
    return logging.getLogger(name)
