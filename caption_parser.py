"""
Caption payload parsing.

The caption endpoint answers in one of two encodings, selected by the track
URL's own query parameters:

- tag-delimited: ``<p t="1000" d="2000">Hello</p>`` elements, start offset in
  milliseconds, text inline (possibly split into ``<s>`` segments);
- segment-event (``fmt=json3``): ``{"events": [{"tStartMs": 1000, "segs":
  [{"utf8": "Hello"}]}]}``.

The format is detected from the payload's shape, never from a content-type
header, and both parsers return the same ``TranscriptLine`` sequence.
"""

import enum
import json
import re
from typing import Any, Callable, Dict, List, Optional

from log_events import evt
from logging_setup import get_logger
from transcript_errors import ParseFailure
from transcript_models import TranscriptLine

logger = get_logger(__name__)


class PayloadFormat(enum.Enum):
    TAGGED = "tagged"
    SEGMENT_EVENT = "segment_event"
    UNKNOWN = "unknown"


# Applied in order, "&amp;" first, so double-escaped text like "&amp;#39;"
# comes out fully decoded; remaining numeric forms are handled afterwards
_ENTITY_TABLE = {
    '&amp;': '&',
    '&lt;': '<',
    '&gt;': '>',
    '&quot;': '"',
    '&#39;': "'",
    '&apos;': "'",
    '&#x27;': "'",
    '&#x2F;': '/',
    '&#47;': '/',
    '&nbsp;': ' ',
}

_DECIMAL_ENTITY_RE = re.compile(r'&#(\d+);')
_HEX_ENTITY_RE = re.compile(r'&#[xX]([0-9a-fA-F]+);')
_LINE_BREAK_RE = re.compile(r'\r\n|\r|\n')
_P_ELEMENT_RE = re.compile(r'<p\b([^>]*)>(.*?)</p>', re.DOTALL)
_START_ATTR_RE = re.compile(r'\bt="(\d+)"')
_INNER_TAG_RE = re.compile(r'<[^>]*>')


def _code_point(match: 're.Match', base: int) -> str:
    try:
        return chr(int(match.group(1), base))
    except (ValueError, OverflowError):
        # Out of range, leave as-is
        return match.group(0)


def decode_html_entities(text: str) -> str:
    """Decode the markup entities used in caption text."""
    if '&' not in text:
        return text

    for entity, char in _ENTITY_TABLE.items():
        text = text.replace(entity, char)

    text = _DECIMAL_ENTITY_RE.sub(lambda m: _code_point(m, 10), text)
    return _HEX_ENTITY_RE.sub(lambda m: _code_point(m, 16), text)


def _clean_text(text: str) -> str:
    """Collapse embedded line breaks to single spaces and trim."""
    return _LINE_BREAK_RE.sub(' ', text).strip()


def _to_ms(value: Any) -> Optional[int]:
    try:
        ms = int(value)
    except (TypeError, ValueError):
        return None
    return ms if ms >= 0 else None


def detect_payload_format(raw: str) -> PayloadFormat:
    """Classify a raw payload by its leading character."""
    head = raw.lstrip('\ufeff \t\r\n')
    if head.startswith('{'):
        return PayloadFormat.SEGMENT_EVENT
    if head.startswith('<'):
        return PayloadFormat.TAGGED
    return PayloadFormat.UNKNOWN


def parse_tagged_payload(raw: str) -> List[TranscriptLine]:
    """Linear scan over ``<p t="ms">`` elements; empty lines are dropped."""
    lines = []
    for match in _P_ELEMENT_RE.finditer(raw):
        start = _START_ATTR_RE.search(match.group(1))
        if not start:
            continue

        inner = _INNER_TAG_RE.sub('', match.group(2))
        text = _clean_text(decode_html_entities(inner))
        if text:
            lines.append(TranscriptLine(start_ms=int(start.group(1)), text=text))
    return lines


def parse_segment_payload(raw: str) -> List[TranscriptLine]:
    """
    Parse the segment-event JSON payload.

    Events without a ``segs`` list are non-text markers (window definitions,
    style changes) and are skipped.
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ParseFailure(f"Malformed segment-event payload: {e}") from e

    if not isinstance(data, dict):
        raise ParseFailure("Segment-event payload is not a JSON object")

    lines = []
    for event in data.get("events") or []:
        if not isinstance(event, dict):
            continue
        segs = event.get("segs")
        if not isinstance(segs, list):
            continue

        start_ms = _to_ms(event.get("tStartMs", 0))
        if start_ms is None:
            continue

        text = _clean_text("".join(
            seg.get("utf8", "") for seg in segs if isinstance(seg, dict)
        ))
        if text:
            lines.append(TranscriptLine(start_ms=start_ms, text=text))
    return lines


_PARSERS: Dict[PayloadFormat, Callable[[str], List[TranscriptLine]]] = {
    PayloadFormat.TAGGED: parse_tagged_payload,
    PayloadFormat.SEGMENT_EVENT: parse_segment_payload,
}


def parse_payload(raw: str) -> List[TranscriptLine]:
    """
    Normalize a raw caption payload into transcript lines.

    A blank payload yields no lines. A non-blank payload that yields no lines
    is an unrecognized format and raises ``ParseFailure``.
    """
    if not raw or not raw.strip():
        return []

    payload_format = detect_payload_format(raw)
    parser = _PARSERS.get(payload_format)
    if parser is None:
        evt("payload_format_unknown", content_preview=raw[:80])
        logger.debug(f"Unrecognized caption payload ({len(raw)} chars)")
        raise ParseFailure("Failed to parse transcript: unrecognized payload format")

    lines = parser(raw)
    evt("payload_parsed", format=payload_format.value, line_count=len(lines), payload_bytes=len(raw))

    if not lines:
        raise ParseFailure(f"Failed to parse transcript: no lines in {payload_format.value} payload")
    return lines
