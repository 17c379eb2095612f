"""Semantic splitting of long narration into speech-bubble segments.

Splitting order:
  1. Text at or under max_length passes through as a single segment.
  2. Paragraph breaks (blank lines) split first.
  3. A paragraph still over max_length splits at sentence endings (. ! ?),
     with consecutive short sentences grouped back together up to max_length.

Boundaries are always whitespace, so a segment never ends mid-word. Each
segment is a verbatim slice of the source text: joining the segments of a
single paragraph with the whitespace that separated them restores it exactly.
"""

from __future__ import annotations

import re
import uuid
from collections.abc import Iterator

from pydantic import BaseModel

from tutor_chat.models import NarrationMessage, display_ms_for, gap_ms_for

DEFAULT_MAX_LENGTH = 100

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
_SENTENCE_BREAK = re.compile(r"(?<=[.!?])\s+")


class Segment(BaseModel):
    """One bubble's worth of narration plus its timing hints."""

    text: str
    display_ms: int
    gap_ms: int


def semantic_split(
    text: str,
    max_length: int = DEFAULT_MAX_LENGTH,
    pacing: str = "normal",
) -> Iterator[Segment]:
    """Lazily yield segments of text. Empty or blank text yields nothing."""
    if max_length < 1:
        raise ValueError("max_length must be positive")
    for chunk in _split_text(text.strip(), max_length):
        yield Segment(
            text=chunk,
            display_ms=display_ms_for(chunk),
            gap_ms=gap_ms_for(chunk, pacing),
        )


def split_narration(
    message: NarrationMessage, max_length: int = DEFAULT_MAX_LENGTH
) -> Iterator[NarrationMessage]:
    """Yield one NarrationMessage per segment, keeping scenario, pacing and media."""
    for segment in semantic_split(message.content, max_length, message.pacing):
        yield message.model_copy(update={"id": uuid.uuid4().hex, "content": segment.text})


def _split_text(text: str, max_length: int) -> Iterator[str]:
    if not text:
        return
    if len(text) <= max_length:
        yield text
        return

    paragraphs = [p.strip() for p in _PARAGRAPH_BREAK.split(text) if p.strip()]
    if len(paragraphs) > 1:
        for paragraph in paragraphs:
            yield from _split_text(paragraph, max_length)
        return

    yield from _split_sentences(text, max_length)


def _split_sentences(text: str, max_length: int) -> Iterator[str]:
    # Sentence spans as (start, end) offsets into text
    spans: list[tuple[int, int]] = []
    start = 0
    for sep in _SENTENCE_BREAK.finditer(text):
        spans.append((start, sep.start()))
        start = sep.end()
    spans.append((start, len(text)))

    group_start, group_end = spans[0]
    for span_start, span_end in spans[1:]:
        if span_end - group_start <= max_length:
            group_end = span_end
            continue
        yield text[group_start:group_end]
        group_start, group_end = span_start, span_end
    yield text[group_start:group_end]
