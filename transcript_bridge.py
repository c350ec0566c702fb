"""
Request/response relay between isolated execution contexts.

The two sides never call each other; they only exchange messages over a
shared ``MessageChannel``:

    requester                               responder
    {type: GET_TRANSCRIPT, correlationId}  ──►  extractor.get_transcript()
    ◄──  {type: TRANSCRIPT_RESULT, correlationId, transcript | error}

``TranscriptBridge`` (requester) keeps one future per in-flight correlation
id, accepts the first correlated response only and gives up after a fixed
bound. ``TranscriptResponder`` answers each request exactly once, turning any
extractor failure into the ``error`` field.
"""

import asyncio
import copy
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set

from log_events import evt, request_finished, request_received
from logging_setup import get_logger, set_request_ctx
from transcript_errors import ChannelTimeout, TranscriptError, TranscriptRequestFailed

logger = get_logger(__name__)

GET_TRANSCRIPT = "GET_TRANSCRIPT"
TRANSCRIPT_RESULT = "TRANSCRIPT_RESULT"

DEFAULT_BRIDGE_TIMEOUT = 15.0

# Attempts at minting a correlation id not already in flight
MAX_ID_ATTEMPTS = 100


# --- Channel ---

@dataclass(frozen=True)
class MessageEvent:
    """A delivered message together with the context that posted it."""
    data: Any
    source: Any


MessageHandler = Callable[[MessageEvent], None]


class MessageChannel(ABC):
    """Bidirectional, fire-and-forget message surface shared by both contexts."""

    @abstractmethod
    def post(self, message: Dict[str, Any]) -> None:
        """Queue a message for every subscriber; never blocks, never fails on delivery."""

    @abstractmethod
    def subscribe(self, handler: MessageHandler) -> Callable[[], None]:
        """Register a handler; returns a callable that removes it."""


class InMemoryChannel(MessageChannel):
    """
    Single-loop channel double.

    Delivery is asynchronous (scheduled on the running loop) and each
    subscriber receives its own copy of the message, so neither side can
    observe the other's objects.
    """

    def __init__(self):
        self._handlers: List[MessageHandler] = []

    def post(self, message: Dict[str, Any], source: Any = None) -> None:
        loop = asyncio.get_running_loop()
        sender = self if source is None else source
        for handler in list(self._handlers):
            event = MessageEvent(data=copy.deepcopy(message), source=sender)
            loop.call_soon(self._deliver, handler, event)

    def subscribe(self, handler: MessageHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)

    def _deliver(self, handler: MessageHandler, event: MessageEvent) -> None:
        # Handlers removed after posting do not receive queued messages
        if handler not in self._handlers:
            return
        try:
            handler(event)
        except Exception:
            logger.exception("Message handler raised")


# --- Protocol ---

def make_request(correlation_id: str) -> Dict[str, Any]:
    return {"type": GET_TRANSCRIPT, "correlationId": correlation_id}


def make_response(correlation_id: str, transcript: Optional[str] = None,
                  error: Optional[str] = None) -> Dict[str, Any]:
    """Build a result message; exactly one of transcript/error must be given."""
    if (transcript is None) == (error is None):
        raise ValueError("exactly one of transcript or error is required")

    message = {"type": TRANSCRIPT_RESULT, "correlationId": correlation_id}
    if transcript is not None:
        message["transcript"] = transcript
    else:
        message["error"] = error
    return message


def _correlation_id(data: Any, message_type: str) -> Optional[str]:
    """Return the correlation id of a well-formed message of the given type."""
    if not isinstance(data, dict) or data.get("type") != message_type:
        return None
    correlation_id = data.get("correlationId")
    if not isinstance(correlation_id, str) or not correlation_id:
        return None
    return correlation_id


def _is_valid_result(data: Dict[str, Any]) -> bool:
    transcript = data.get("transcript")
    error = data.get("error")
    if (transcript is None) == (error is None):
        return False
    return isinstance(transcript if transcript is not None else error, str)


@dataclass(frozen=True)
class BridgeResult:
    """Outcome of one bridge round trip."""
    correlation_id: str
    transcript: Optional[str] = None
    error: Optional[str] = None
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.transcript is not None

    def raise_for_error(self) -> str:
        """Return the transcript, or raise ChannelTimeout / TranscriptRequestFailed."""
        if self.timed_out:
            raise ChannelTimeout("Transcript request timeout", correlation_id=self.correlation_id)
        if self.error is not None:
            raise TranscriptRequestFailed(self.error, correlation_id=self.correlation_id)
        return self.transcript


# --- Requester side ---

class TranscriptBridge:
    """
    Issues transcript requests over a channel and matches their responses.

    Use as ``async with TranscriptBridge(channel) as bridge`` or call
    ``start()``/``close()`` explicitly.
    """

    def __init__(self, channel: MessageChannel, timeout: float = DEFAULT_BRIDGE_TIMEOUT,
                 id_factory: Callable[[], str] = None):
        self._channel = channel
        self.timeout = timeout
        self._id_factory = id_factory or (lambda: uuid.uuid4().hex)
        self._pending: Dict[str, asyncio.Future] = {}
        self._unsubscribe: Optional[Callable[[], None]] = None

    async def __aenter__(self) -> 'TranscriptBridge':
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_value, traceback):
        self.close()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def start(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self._channel.subscribe(self._on_message)

    def close(self) -> None:
        """Stop listening; requests still waiting settle as errors."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

        for correlation_id, future in list(self._pending.items()):
            if not future.done():
                future.set_result(BridgeResult(correlation_id, error="Bridge closed"))
        self._pending.clear()

    def _new_correlation_id(self) -> str:
        for _ in range(MAX_ID_ATTEMPTS):
            correlation_id = self._id_factory()
            if correlation_id not in self._pending:
                return correlation_id
        raise RuntimeError(f"No free correlation id after {MAX_ID_ATTEMPTS} attempts")

    async def request(self) -> BridgeResult:
        """
        Send one GET_TRANSCRIPT and wait for its correlated result.

        A timeout produces ``BridgeResult(timed_out=True)`` rather than an
        exception; the responder's work is not cancelled, only no longer
        awaited.
        """
        if self._unsubscribe is None:
            raise RuntimeError("TranscriptBridge.start() must be called before request()")

        loop = asyncio.get_running_loop()
        correlation_id = self._new_correlation_id()
        future = loop.create_future()
        self._pending[correlation_id] = future

        started = loop.time()
        evt("bridge_request_sent", correlation_id=correlation_id)
        try:
            self._channel.post(make_request(correlation_id))
            result = await asyncio.wait_for(future, timeout=self.timeout)
        except asyncio.TimeoutError:
            evt("bridge_request_timeout",
                correlation_id=correlation_id,
                timeout=self.timeout,
                dur_ms=int((loop.time() - started) * 1000))
            return BridgeResult(correlation_id, timed_out=True)
        finally:
            self._pending.pop(correlation_id, None)

        evt("bridge_request_settled",
            correlation_id=correlation_id,
            outcome="success" if result.ok else "error",
            dur_ms=int((loop.time() - started) * 1000))
        return result

    async def request_transcript(self) -> Optional[str]:
        """Transcript text, or None for an error or a timeout alike."""
        result = await self.request()
        return result.transcript

    def _on_message(self, event: MessageEvent) -> None:
        if event.source is not self._channel:
            return

        correlation_id = _correlation_id(event.data, TRANSCRIPT_RESULT)
        if correlation_id is None or not _is_valid_result(event.data):
            return

        future = self._pending.pop(correlation_id, None)
        if future is None or future.done():
            evt("bridge_response_ignored", correlation_id=correlation_id, reason="not_pending")
            return

        future.set_result(BridgeResult(
            correlation_id,
            transcript=event.data.get("transcript"),
            error=event.data.get("error"),
        ))


# --- Responder side ---

class TranscriptResponder:
    """
    Answers GET_TRANSCRIPT messages by running the extractor.

    Each request is handled in its own task and gets exactly one
    TRANSCRIPT_RESULT message back.
    """

    def __init__(self, channel: MessageChannel, extractor):
        self._channel = channel
        self._extractor = extractor
        self._tasks: Set[asyncio.Task] = set()
        self._unsubscribe: Optional[Callable[[], None]] = None

    async def __aenter__(self) -> 'TranscriptResponder':
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_value, traceback):
        await self.close()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def start(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self._channel.subscribe(self._on_message)

    async def close(self) -> None:
        """Stop listening and cancel requests still being extracted."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _on_message(self, event: MessageEvent) -> None:
        if event.source is not self._channel:
            return

        correlation_id = _correlation_id(event.data, GET_TRANSCRIPT)
        if correlation_id is None:
            return

        task = asyncio.get_running_loop().create_task(self._handle(correlation_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _handle(self, correlation_id: str) -> None:
        # Runs in its own task, so this context does not leak to other requests
        set_request_ctx(correlation_id=correlation_id)
        request_received(correlation_id)
        started = time.time()

        try:
            transcript = await self._extractor.get_transcript()
        except TranscriptError as e:
            logger.error(f"Transcript extraction failed: {e}", extra={"error_type": e.reason})
            response = make_response(correlation_id, error=str(e))
            outcome = "error"
        except Exception as e:
            logger.exception("Unexpected transcript extraction failure")
            response = make_response(correlation_id, error=str(e) or type(e).__name__)
            outcome = "error"
        else:
            response = make_response(correlation_id, transcript=transcript)
            outcome = "success"

        self._channel.post(response)
        request_finished(correlation_id,
                         outcome=outcome,
                         duration_ms=int((time.time() - started) * 1000),
                         length=len(response.get("transcript") or ""))
