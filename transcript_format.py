"""
Timestamp formatting and transcript rendering.

Rendered transcripts are ``[mm:ss] text`` lines (``[h:mm:ss] text`` past the
first hour) joined by single newlines, without a trailing newline.
"""

import re
from typing import Iterable, List, Tuple

from transcript_models import TranscriptLine

_RENDERED_LINE_RE = re.compile(r'^\[(?:(\d+):)?(\d{2}):(\d{2})\] (.*)$')


def format_timestamp(ms: int) -> str:
    """Format milliseconds as ``mm:ss`` or ``h:mm:ss``; fractions are dropped."""
    if ms < 0:
        raise ValueError(f"negative offset: {ms}")

    total_seconds = int(ms) // 1000
    hours = total_seconds // 3600
    minutes = (total_seconds // 60) % 60
    seconds = total_seconds % 60

    if hours > 0:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes:02d}:{seconds:02d}"


def render_transcript(lines: Iterable[TranscriptLine]) -> str:
    return "\n".join(f"[{format_timestamp(line.start_ms)}] {line.text}" for line in lines)


def parse_rendered_transcript(text: str) -> List[Tuple[int, str]]:
    """
    Split a rendered transcript back into ``(seconds, text)`` pairs.

    Raises ValueError on a line that does not carry a timestamp prefix.
    """
    if not text:
        return []

    entries = []
    for line in text.split("\n"):
        match = _RENDERED_LINE_RE.match(line)
        if not match:
            raise ValueError(f"not a transcript line: {line!r}")
        hours, minutes, seconds, body = match.groups()
        offset = int(hours or 0) * 3600 + int(minutes) * 60 + int(seconds)
        entries.append((offset, body))
    return entries
